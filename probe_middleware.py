import ipaddress
import logging
import os
import re
import socket
import subprocess
import sys
import time
from typing import List, Optional

log = logging.getLogger(__name__)

_PROBE_TIMEOUT = float(os.environ.get("HARANALYZER_PROBE_TIMEOUT", "1.0"))
_RTT_RX = re.compile(r"time[=<]\s*([\d.]+)\s*ms", re.I)


class ProbeError(Exception):
    pass


# =============================
# ICMP echo via the system ping binary
# =============================
def _ping_cmd(address: str, timeout: float) -> List[str]:
    if sys.platform.startswith("win"):
        return ["ping", "-n", "1", "-w", str(max(1, int(timeout * 1000))), address]
    wait = str(max(1, int(round(timeout))))
    if sys.platform == "darwin":
        return ["ping", "-c", "1", "-t", wait, address]
    cmd = ["ping", "-c", "1", "-W", wait]
    if ipaddress.ip_address(address).version == 6:
        cmd.append("-6")
    cmd.append(address)
    return cmd


def _first_line(text: Optional[str]) -> str:
    for line in (text or "").splitlines():
        if line.strip():
            return line.strip()
    return ""


class IcmpProber:
    """One echo request, no retries. Returns round-trip seconds."""

    method = "icmp"

    def __init__(self, timeout: float = _PROBE_TIMEOUT):
        self.timeout = timeout

    def probe(self, address: str) -> float:
        try:
            cmd = _ping_cmd(address, self.timeout)
        except ValueError as e:
            raise ProbeError(str(e)) from e

        started = time.perf_counter()
        try:
            proc = subprocess.run(
                cmd, capture_output=True, text=True, timeout=self.timeout + 1.0, check=False
            )
        except subprocess.TimeoutExpired:
            raise ProbeError(f"timeout: no reply from {address} within {self.timeout:g}s") from None
        except FileNotFoundError:
            raise ProbeError("ping command not found") from None
        except OSError as e:
            raise ProbeError(f"ping failed: {e}") from e
        elapsed = time.perf_counter() - started

        # exit 1: sent but no reply; anything else is a local or routing failure
        if proc.returncode == 1:
            raise ProbeError(f"timeout: no reply from {address} within {self.timeout:g}s")
        if proc.returncode != 0:
            reason = _first_line(proc.stderr) or _first_line(proc.stdout) or f"exit status {proc.returncode}"
            raise ProbeError(f"ping {address} failed: {reason}")

        m = _RTT_RX.search(proc.stdout or "")
        if m:
            rtt = float(m.group(1)) / 1000.0
            # "time<1ms" on Windows
            return rtt if rtt > 0 else elapsed
        if sys.platform.startswith("win"):
            # Windows exits 0 on "Destination host unreachable"
            reply = [ln for ln in (proc.stdout or "").splitlines() if ln.strip()]
            reason = reply[1].strip() if len(reply) > 1 else "no echo reply"
            raise ProbeError(f"ping {address} failed: {reason}")
        return elapsed


# =============================
# TCP connect timing
# =============================
class TcpProber:
    """Wall-clock time of a single TCP handshake."""

    method = "tcp"

    def __init__(self, port: int = 443, timeout: float = _PROBE_TIMEOUT):
        self.port = port
        self.timeout = timeout

    def probe(self, address: str) -> float:
        started = time.perf_counter()
        try:
            sock = socket.create_connection((address, self.port), timeout=self.timeout)
        except socket.timeout:
            raise ProbeError(f"timeout: no reply from {address}:{self.port} within {self.timeout:g}s") from None
        except ConnectionRefusedError:
            raise ProbeError(f"connection refused by {address}:{self.port}") from None
        except OSError as e:
            raise ProbeError(f"connect to {address}:{self.port} failed: {e}") from e
        elapsed = time.perf_counter() - started
        try:
            sock.close()
        except OSError:
            pass
        return elapsed


def build_prober(method: str = "icmp", timeout: Optional[float] = None, port: int = 443):
    timeout = _PROBE_TIMEOUT if timeout is None else timeout
    if method == "icmp":
        return IcmpProber(timeout=timeout)
    if method == "tcp":
        return TcpProber(port=port, timeout=timeout)
    raise ValueError(f"unknown probe method {method!r}")
