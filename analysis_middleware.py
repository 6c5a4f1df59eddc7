import logging
import os
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from probe_middleware import IcmpProber

log = logging.getLogger(__name__)


# =============================
# Record
# =============================
@dataclass
class Record:
    domain: str
    addresses: List[str] = field(default_factory=list)
    latency: float = 0.0  # seconds
    geo: str = ""
    error: Optional[str] = None

    def to_row(self) -> Dict[str, str]:
        return {
            "domain": self.domain,
            "addrs": "\n".join(self.addresses),
            "latency": f"{int(self.latency * 1000)}ms",
            "geo": self.geo,
            "err": self.error or "",
        }

    def to_dict(self) -> dict:
        return {
            "domain": self.domain,
            "addresses": list(self.addresses),
            "latency_ms": round(self.latency * 1000, 3),
            "geo": self.geo,
            "error": self.error,
        }


def _geo_summary(geo_provider, addresses: List[str]) -> str:
    """Country / City per address, one line each. Raises on any lookup failure."""
    lines = []
    for addr in addresses:
        rec = geo_provider.lookup(addr)
        parts: List[str] = []
        if rec.country_names is not None:
            parts.append(rec.country_name("en"))
        if rec.city_names is not None:
            parts.append(rec.city_name("en"))
        deduped = [p for i, p in enumerate(parts) if i == 0 or p != parts[i - 1]]
        lines.append(" / ".join(deduped))
    return "\n".join(lines)


# =============================
# Analysis Middleware
# =============================
class AnalysisMiddleware:
    """
    Resolve -> probe (first address) -> geo for one domain.
    Only resolution failure ends the pipeline early.
    """

    def __init__(self, resolver, geo_provider, prober=None):
        self.resolver = resolver
        self.geo_provider = geo_provider
        self.prober = prober if prober is not None else IcmpProber()

    def analyze(self, domain: str) -> Record:
        record = Record(domain)
        self.run(record)
        return record

    def run(self, record: Record) -> None:
        try:
            record.addresses = list(self.resolver.resolve(record.domain))
        except Exception as e:
            record.error = str(e)
            log.debug("%s: resolve failed: %s", record.domain, e)
            return

        if not record.addresses:
            record.error = f"no addresses resolved for {record.domain}"
            return

        try:
            record.latency = self.prober.probe(record.addresses[0])
        except Exception as e:
            record.error = str(e)
            log.debug("%s: probe of %s failed: %s", record.domain, record.addresses[0], e)

        try:
            record.geo = _geo_summary(self.geo_provider, record.addresses)
        except Exception as e:
            log.debug("%s: geo lookup failed: %s", record.domain, e)


def process_one(record: Record, am: AnalysisMiddleware) -> Record:
    try:
        am.run(record)
    except Exception as e:
        record.error = record.error or str(e)
    return record


def analyze(domains: List[str], resolver, geo_provider, prober=None, max_workers: Optional[int] = None, progress=None) -> List[Record]:
    """
    One Record per domain, in input order. Each worker owns the record in
    its slot; the list is returned only after every future has finished.
    """
    am = AnalysisMiddleware(resolver, geo_provider, prober)
    records = [Record(d) for d in domains]
    if not records:
        return records

    workers = max_workers or os.cpu_count() or 1
    with ThreadPoolExecutor(max_workers=workers) as pool:
        futs = [pool.submit(process_one, rec, am) for rec in records]
        if progress is not None:
            for f in progress.wrap_futures(futs):
                f.result()
        else:
            for f in futs:
                f.result()
    return records
