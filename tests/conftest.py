"""Shared fixtures: in-memory database, fake clock, fake extractor and catalog."""

import json
from datetime import datetime, timezone

import pytest

from intake_pipeline import db
from intake_pipeline.access import Approvers
from intake_pipeline.batches import BatchService
from intake_pipeline.errors import PriceSourceUnavailable
from intake_pipeline.operators import OperatorRegistry
from intake_pipeline.pricelist import PriceCatalog
from intake_pipeline.schema import PriceItem
from intake_pipeline.store import MemoryStore

ADMIN_ID = 1001
OTHER_ADMIN_ID = 1002
OUTSIDER_ID = 5555


class FakeClock:
    def __init__(self, start=1000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class FakeExtractor:
    """Returns canned responses and records every request it receives."""

    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.requests = []

    def extract(self, request):
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        return self.response


class FakeCatalogSource:
    def __init__(self, items=None, error=None):
        self.items = items or []
        self.error = error
        self.calls = 0

    def fetch_catalog(self):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return list(self.items)


def order_json(items, **fields):
    payload = {
        "plateNumber": "А123ВС77",
        "vin": "XTA210990Y2765432",
        "mileage": 120500,
        "city": "Москва",
        "date": "12.03.2025",
        "items": items,
        "needsOperatorReview": False,
        "reviewReason": None,
    }
    payload.update(fields)
    return json.dumps(payload, ensure_ascii=False)


@pytest.fixture
def conn():
    connection = db.prepare(db.connect(":memory:"))
    yield connection
    connection.close()


@pytest.fixture
def fixed_now():
    return datetime(2025, 3, 13, 10, 30, tzinfo=timezone.utc)  # a Thursday


@pytest.fixture
def approvers():
    return Approvers([ADMIN_ID, OTHER_ADMIN_ID])


@pytest.fixture
def batches(conn, approvers, fixed_now):
    return BatchService(conn, approvers, clock=lambda: fixed_now)


@pytest.fixture
def registry(conn):
    return OperatorRegistry(conn)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    return MemoryStore(clock=clock)


@pytest.fixture
def oil_change_catalog(store):
    source = FakeCatalogSource([PriceItem(code="A-1", name="Замена масла", price=1200.0, unit="шт")])
    return PriceCatalog(source, store, ttl_seconds=3600)


@pytest.fixture
def unavailable_catalog(store):
    return PriceCatalog(FakeCatalogSource(error=PriceSourceUnavailable("offline")), store)
