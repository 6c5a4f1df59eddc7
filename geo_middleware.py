import ipaddress
import logging
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional

import maxminddb
import requests

log = logging.getLogger(__name__)

DEFAULT_DB_NAME = "GeoLite2-City.mmdb"
DEFAULT_DB_URL = "https://github.com/P3TERX/GeoLite.mmdb/raw/download/GeoLite2-City.mmdb"
_DOWNLOAD_TIMEOUT = float(os.environ.get("HARANALYZER_GEOIP_TIMEOUT", "60.0"))


class GeoDatabaseError(Exception):
    """The geo database could not be fetched or opened."""


class GeoLookupError(Exception):
    pass


@dataclass(frozen=True)
class GeoRecord:
    country_names: Optional[Dict[str, str]] = None
    city_names: Optional[Dict[str, str]] = None

    def country_name(self, lang: str = "en") -> str:
        return (self.country_names or {}).get(lang, "")

    def city_name(self, lang: str = "en") -> str:
        return (self.city_names or {}).get(lang, "")

    @classmethod
    def from_city(cls, data: dict) -> "GeoRecord":
        country = data.get("country")
        city = data.get("city")
        return cls(
            country_names=dict(country.get("names") or {}) if isinstance(country, dict) else None,
            city_names=dict(city.get("names") or {}) if isinstance(city, dict) else None,
        )


# =============================
# Database location / lazy fetch
# =============================
def default_db_path() -> Path:
    env_path = os.environ.get("HARANALYZER_GEOIP_DB")
    if env_path:
        return Path(env_path).expanduser()
    return Path.home() / ".geolite2" / DEFAULT_DB_NAME


def ensure_database(path: Optional[Path] = None, url: Optional[str] = None) -> Path:
    """
    Return a local database path, downloading it first if missing.
    The file is written under a temporary name and renamed into place.
    """
    path = Path(path).expanduser() if path else default_db_path()
    if path.exists():
        return path

    url = url or os.environ.get("HARANALYZER_GEOIP_URL") or DEFAULT_DB_URL
    log.info("downloading %s from %s", path.name, url)
    tmp_name = None
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with requests.get(url, stream=True, timeout=_DOWNLOAD_TIMEOUT) as resp:
            resp.raise_for_status()
            fd, tmp_name = tempfile.mkstemp(prefix=".download-", dir=str(path.parent))
            with os.fdopen(fd, "wb") as fh:
                for chunk in resp.iter_content(chunk_size=1 << 16):
                    if chunk:
                        fh.write(chunk)
        os.replace(tmp_name, path)
        tmp_name = None
    except requests.RequestException as e:
        raise GeoDatabaseError(f"failed to download geo database from {url}: {e}") from e
    except OSError as e:
        raise GeoDatabaseError(f"failed to write geo database {path}: {e}") from e
    finally:
        if tmp_name and os.path.exists(tmp_name):
            os.unlink(tmp_name)
    return path


# =============================
# Geo Middleware
# =============================
class GeoMiddleware:
    """Read-only MaxMind City reader shared by all workers."""

    def __init__(self, db_path: Path):
        self.db_path = Path(db_path)
        try:
            self._reader = maxminddb.open_database(str(self.db_path))
        except (OSError, ValueError, maxminddb.InvalidDatabaseError) as e:
            raise GeoDatabaseError(f"failed to open geo database {self.db_path}: {e}") from e

    def lookup(self, address: str) -> GeoRecord:
        try:
            ip = ipaddress.ip_address(address)
        except ValueError as e:
            raise GeoLookupError(str(e)) from e
        data = self._reader.get(ip)
        if data is None:
            raise GeoLookupError(f"the address {address} is not in the database")
        if not isinstance(data, dict):
            raise GeoLookupError(f"unexpected record type for {address}")
        return GeoRecord.from_city(data)

    def close(self):
        self._reader.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()


def build_geo_provider(path: Optional[Path] = None, url: Optional[str] = None) -> GeoMiddleware:
    return GeoMiddleware(ensure_database(path, url))
