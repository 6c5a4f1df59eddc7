"""Geo provider: record mapping, lookups and lazy database download."""

import ipaddress

import pytest
import requests

import geo_middleware
from geo_middleware import (
    GeoDatabaseError,
    GeoLookupError,
    GeoMiddleware,
    GeoRecord,
    build_geo_provider,
    ensure_database,
)

CITY = {
    "city": {"geoname_id": 4945256, "names": {"en": "Norwell", "ru": "Норвелл"}},
    "country": {"iso_code": "US", "names": {"en": "United States", "de": "USA"}},
}


class FakeReader:
    def __init__(self, data):
        self.data = data
        self.closed = False

    def get(self, ip):
        return self.data.get(str(ip))

    def close(self):
        self.closed = True


class TestGeoRecord:

    def test_from_city(self):
        rec = GeoRecord.from_city(CITY)
        assert rec.country_name() == "United States"
        assert rec.city_name() == "Norwell"
        assert rec.country_name("de") == "USA"

    def test_missing_sections(self):
        rec = GeoRecord.from_city({"continent": {"code": "EU"}})
        assert rec.country_names is None
        assert rec.city_names is None
        assert rec.country_name() == ""

    def test_missing_english_name(self):
        rec = GeoRecord.from_city({"country": {"names": {"fr": "Allemagne"}}})
        assert rec.country_name() == ""


class TestGeoMiddleware:

    def setup_method(self):
        self.reader = FakeReader({"93.184.216.34": CITY, "10.1.1.1": ["odd"]})

    def _open(self, monkeypatch, tmp_path):
        monkeypatch.setattr(geo_middleware.maxminddb, "open_database", lambda path: self.reader)
        return GeoMiddleware(tmp_path / "City.mmdb")

    def test_lookup(self, monkeypatch, tmp_path):
        geo = self._open(monkeypatch, tmp_path)
        rec = geo.lookup("93.184.216.34")
        assert rec.country_name() == "United States"

    def test_address_not_in_database(self, monkeypatch, tmp_path):
        geo = self._open(monkeypatch, tmp_path)
        with pytest.raises(GeoLookupError, match="not in the database"):
            geo.lookup("192.0.2.1")

    def test_malformed_address(self, monkeypatch, tmp_path):
        geo = self._open(monkeypatch, tmp_path)
        with pytest.raises(GeoLookupError):
            geo.lookup("not-an-ip")

    def test_unexpected_record_shape(self, monkeypatch, tmp_path):
        geo = self._open(monkeypatch, tmp_path)
        with pytest.raises(GeoLookupError):
            geo.lookup("10.1.1.1")

    def test_context_manager_closes_reader(self, monkeypatch, tmp_path):
        with self._open(monkeypatch, tmp_path):
            pass
        assert self.reader.closed

    def test_unreadable_database(self, tmp_path):
        bad = tmp_path / "broken.mmdb"
        bad.write_bytes(b"definitely not a maxmind database")
        with pytest.raises(GeoDatabaseError):
            GeoMiddleware(bad)

    def test_reader_receives_ip_object(self, monkeypatch, tmp_path):
        seen = []

        class Recording(FakeReader):
            def get(self, ip):
                seen.append(ip)
                return CITY

        monkeypatch.setattr(geo_middleware.maxminddb, "open_database", lambda path: Recording({}))
        GeoMiddleware(tmp_path / "x.mmdb").lookup("2001:db8::1")
        assert seen == [ipaddress.ip_address("2001:db8::1")]


class FakeResponse:
    def __init__(self, chunks, status=200):
        self.chunks = chunks
        self.status = status

    def raise_for_status(self):
        if self.status >= 400:
            raise requests.HTTPError(f"{self.status} Client Error")

    def iter_content(self, chunk_size=1):
        return iter(self.chunks)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        pass


class TestEnsureDatabase:

    def test_existing_file_is_not_downloaded(self, monkeypatch, tmp_path):
        db = tmp_path / "GeoLite2-City.mmdb"
        db.write_bytes(b"x")

        def no_download(*a, **k):
            raise AssertionError("should not download")

        monkeypatch.setattr(geo_middleware.requests, "get", no_download)
        assert ensure_database(db) == db

    def test_download_on_first_use(self, monkeypatch, tmp_path):
        db = tmp_path / "nested" / "GeoLite2-City.mmdb"
        calls = []

        def fake_get(url, stream=False, timeout=None):
            calls.append(url)
            return FakeResponse([b"abc", b"", b"def"])

        monkeypatch.setattr(geo_middleware.requests, "get", fake_get)
        assert ensure_database(db, url="https://mirror.example/City.mmdb") == db
        assert db.read_bytes() == b"abcdef"
        assert calls == ["https://mirror.example/City.mmdb"]
        assert [p.name for p in db.parent.iterdir()] == ["GeoLite2-City.mmdb"]

    def test_http_error_is_a_construction_failure(self, monkeypatch, tmp_path):
        db = tmp_path / "GeoLite2-City.mmdb"
        monkeypatch.setattr(geo_middleware.requests, "get", lambda *a, **k: FakeResponse([], status=404))
        with pytest.raises(GeoDatabaseError, match="download"):
            ensure_database(db)
        assert list(tmp_path.iterdir()) == []

    def test_connection_error(self, monkeypatch, tmp_path):
        def refuse(*a, **k):
            raise requests.ConnectionError("unreachable")

        monkeypatch.setattr(geo_middleware.requests, "get", refuse)
        with pytest.raises(GeoDatabaseError):
            ensure_database(tmp_path / "GeoLite2-City.mmdb")

    def test_env_overrides_default_location(self, monkeypatch, tmp_path):
        db = tmp_path / "env.mmdb"
        db.write_bytes(b"x")
        monkeypatch.setenv("HARANALYZER_GEOIP_DB", str(db))
        assert ensure_database() == db

    def test_build_geo_provider(self, monkeypatch, tmp_path):
        db = tmp_path / "GeoLite2-City.mmdb"
        db.write_bytes(b"x")
        opened = []

        def fake_open(path):
            opened.append(path)
            return FakeReader({})

        monkeypatch.setattr(geo_middleware.maxminddb, "open_database", fake_open)
        geo = build_geo_provider(db)
        assert opened == [str(db)]
        assert geo.db_path == db
