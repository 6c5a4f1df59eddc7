"""Shared fakes for the resolver, probe and geo capabilities."""

import threading
import time

import pytest

from geo_middleware import GeoLookupError, GeoRecord
from probe_middleware import ProbeError
from resolver_middleware import ResolveError


class FakeResolver:
    def __init__(self, table, delays=None):
        self.table = table
        self.delays = delays or {}
        self.calls = []
        self._lock = threading.Lock()

    def resolve(self, domain):
        with self._lock:
            self.calls.append(domain)
        time.sleep(self.delays.get(domain, 0))
        value = self.table.get(domain)
        if value is None:
            raise ResolveError(f"The DNS query name does not exist: {domain}.")
        if isinstance(value, Exception):
            raise value
        return list(value)


class FakeProber:
    method = "fake"

    def __init__(self, rtts=None, default=0.012):
        self.rtts = rtts or {}
        self.default = default
        self.calls = []
        self._lock = threading.Lock()

    def probe(self, address):
        with self._lock:
            self.calls.append(address)
        value = self.rtts.get(address, self.default)
        if isinstance(value, Exception):
            raise value
        return value


class FakeGeo:
    def __init__(self, table=None):
        self.table = table or {}
        self.calls = []
        self._lock = threading.Lock()

    def lookup(self, address):
        with self._lock:
            self.calls.append(address)
        value = self.table.get(address)
        if value is None:
            raise GeoLookupError(f"the address {address} is not in the database")
        if isinstance(value, Exception):
            raise value
        return value

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        pass


def geo(country=None, city=None):
    return GeoRecord(
        country_names={"en": country} if country is not None else None,
        city_names={"en": city} if city is not None else None,
    )


@pytest.fixture
def fake_geo():
    return FakeGeo({
        "93.184.216.34": geo("United States", "Norwell"),
        "1.1.1.1": geo("Australia"),
        "8.8.8.8": geo("United States"),
    })


@pytest.fixture
def probe_timeout():
    return ProbeError("timeout: no reply from 10.0.0.1 within 1s")
