import json
import logging
import os
from typing import Iterable, List, Optional
from urllib.parse import urlsplit

log = logging.getLogger(__name__)


class HarFormatError(ValueError):
    pass


def _hostname(url: str) -> Optional[str]:
    try:
        host = urlsplit(url).hostname
    except ValueError:
        return None
    if not host:
        return None
    return host.rstrip(".") or None


def _canonical(hosts: Iterable[str]) -> List[str]:
    return sorted(set(hosts))


def har_urls(har: dict) -> List[str]:
    """request.url of every entry in a parsed HAR document."""
    if not isinstance(har, dict) or not isinstance(har.get("log"), dict):
        raise HarFormatError("not a HAR document: missing 'log' object")
    entries = har["log"].get("entries")
    if not isinstance(entries, list):
        raise HarFormatError("not a HAR document: missing 'log.entries' list")
    urls = []
    for entry in entries:
        req = (entry or {}).get("request") if isinstance(entry, dict) else None
        url = (req or {}).get("url") if isinstance(req, dict) else None
        if isinstance(url, str):
            urls.append(url)
    return urls


def read_har_domains(path: str) -> List[str]:
    """
    Hostnames requested in a HAR capture, sorted and de-duplicated.
    URLs without a parsable host are skipped.
    """
    try:
        with open(path, "r", encoding="utf-8-sig") as fh:
            har = json.load(fh)
    except FileNotFoundError:
        raise HarFormatError(f"HAR file not found: {path}") from None
    except (OSError, UnicodeDecodeError) as e:
        raise HarFormatError(f"cannot read HAR file {path}: {e}") from e
    except json.JSONDecodeError as e:
        raise HarFormatError(f"invalid JSON in HAR file {path}: {e}") from e

    urls = har_urls(har)
    hosts = [h for h in (_hostname(u) for u in urls) if h]
    skipped = len(urls) - len(hosts)
    if skipped:
        log.debug("skipped %d HAR entries without a usable host", skipped)
    return _canonical(hosts)


def read_input_file(path: str) -> List[str]:
    """
    Read domains from a file (one per line), stripping comments/empties.
    Returns in file order (stable), de-duplicated.
    """
    if not os.path.isfile(path):
        raise HarFormatError(f"domain list not found: {path}")
    seen = set()
    out = []
    with open(path, "r", encoding="utf-8", errors="ignore") as fh:
        for line in fh:
            s = line.strip().lower().rstrip(".")
            if not s or s.startswith("#"):
                continue
            if s not in seen:
                out.append(s)
                seen.add(s)
    return out
