import ipaddress
import logging
import os
from typing import List, Optional, Tuple

import dns.exception
import dns.resolver

log = logging.getLogger(__name__)

DEFAULT_DNS_PORT = 53
_DNS_TIMEOUT = float(os.environ.get("HARANALYZER_DNS_TIMEOUT", "3.0"))
_DNS_LIFETIME = float(os.environ.get("HARANALYZER_DNS_LIFETIME", "5.0"))


class ResolverConfigError(ValueError):
    """Bad server override or unusable system resolver configuration."""


class ResolveError(Exception):
    """A single domain could not be resolved to any address."""


# =============================
# Server override parsing
# =============================
def parse_server(server: str) -> Tuple[str, int]:
    """
    Parse "ip", "ip:port", "[v6]" or "[v6]:port".
    The host part must be a literal address; names are rejected.
    """
    text = (server or "").strip()
    if not text:
        raise ResolverConfigError("empty DNS server override")

    host, port_text = text, None
    if text.startswith("["):
        end = text.find("]")
        if end < 0:
            raise ResolverConfigError(f"invalid DNS server {server!r}: missing ']'")
        host = text[1:end]
        rest = text[end + 1:]
        if rest:
            if not rest.startswith(":"):
                raise ResolverConfigError(f"invalid DNS server {server!r}")
            port_text = rest[1:]
    elif text.count(":") == 1:
        host, port_text = text.split(":", 1)

    try:
        addr = ipaddress.ip_address(host)
    except ValueError:
        raise ResolverConfigError(f"invalid DNS server address {host!r}") from None

    port = DEFAULT_DNS_PORT
    if port_text is not None:
        if not port_text.isdigit() or not 0 < int(port_text) < 65536:
            raise ResolverConfigError(f"invalid DNS server port {port_text!r}")
        port = int(port_text)
    return str(addr), port


def _make_resolver(nameservers: Optional[List[str]], port: int, timeout: float, lifetime: float) -> dns.resolver.Resolver:
    """
    Build a resolver. If nameservers is None -> use system resolver; otherwise set explicit servers.
    """
    r = dns.resolver.Resolver(configure=(nameservers is None))
    if nameservers:
        # port first: newer dnspython binds it when nameservers are assigned
        r.port = port
        r.nameservers = list(nameservers)
    r.timeout = timeout
    r.lifetime = lifetime
    return r


# =============================
# Resolver Middleware
# =============================
class ResolverMiddleware:
    """
    DNS capability shared by every worker. Holds only immutable settings;
    each resolve() call gets its own dnspython Resolver.
    """

    def __init__(
        self,
        nameservers: Optional[List[str]] = None,
        port: int = DEFAULT_DNS_PORT,
        timeout: float = _DNS_TIMEOUT,
        lifetime: float = _DNS_LIFETIME,
    ):
        self.nameservers = tuple(nameservers) if nameservers else None
        self.port = port
        self.timeout = timeout
        self.lifetime = max(lifetime, timeout)
        if self.nameservers is None:
            # fail now rather than once per domain
            try:
                system = _make_resolver(None, port, timeout, lifetime)
            except dns.resolver.NoResolverConfiguration as e:
                raise ResolverConfigError(f"no usable system DNS configuration: {e}") from e
            log.debug("using system resolvers %s", system.nameservers)
        else:
            log.debug("using DNS server %s port %d", self.nameservers[0], self.port)

    @classmethod
    def from_server(cls, server: Optional[str], timeout: float = _DNS_TIMEOUT, lifetime: float = _DNS_LIFETIME) -> "ResolverMiddleware":
        if server is None:
            return cls(timeout=timeout, lifetime=lifetime)
        ip, port = parse_server(server)
        return cls(nameservers=[ip], port=port, timeout=timeout, lifetime=lifetime)

    def describe(self) -> str:
        if self.nameservers is None:
            return "system"
        host = self.nameservers[0]
        if ":" in host:
            host = f"[{host}]"
        return f"{host}:{self.port}"

    def resolve(self, domain: str) -> List[str]:
        """A records first; AAAA only when there is no IPv4 answer."""
        r = _make_resolver(
            list(self.nameservers) if self.nameservers else None,
            self.port, self.timeout, self.lifetime,
        )
        try:
            ips = self._query(r, domain, "A")
            if not ips:
                ips = self._query(r, domain, "AAAA")
        except dns.exception.DNSException as e:
            raise ResolveError(str(e) or e.__class__.__name__) from e
        if not ips:
            raise ResolveError(f"no A or AAAA records found for {domain}")
        return ips

    @staticmethod
    def _query(r: dns.resolver.Resolver, name: str, rtype: str) -> List[str]:
        try:
            ans = r.resolve(name, rtype, raise_on_no_answer=False)
        except dns.resolver.NoAnswer:
            return []
        if not ans or not getattr(ans, "rrset", None):
            return []
        return [rd.address for rd in ans]


def build_resolver(server: Optional[str] = None, timeout: float = _DNS_TIMEOUT, lifetime: float = _DNS_LIFETIME) -> ResolverMiddleware:
    return ResolverMiddleware.from_server(server, timeout=timeout, lifetime=lifetime)
