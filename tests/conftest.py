import json
import threading
from datetime import date, datetime, timezone

import pytest

from fit_data.db.stores import CredentialStore
from fit_data.errors import Unauthenticated
from fit_data.models import METRIC_FIELDS, Credentials, TimeWindow
from fit_data.sources.base.adapter import SourceAdapter
from fit_data.sources.google_fit.api import RequestExecutor
from fit_data.sources.google_fit.auth import CredentialRefresher

API_BASE = "https://fit.test/fitness/v1"
TOKEN_URL = "https://oauth.test/token"
AGGREGATE_URL = f"{API_BASE}/users/me/dataset:aggregate"
DATA_SOURCES_URL = f"{API_BASE}/users/me/dataSources"


class MemoryCredentialStore(CredentialStore):
    def __init__(self):
        self._lock = threading.Lock()
        self._pairs = {}
        self.writes = []

    def get(self, user_id):
        with self._lock:
            return self._pairs.get(user_id)

    def set(self, user_id, access_token, refresh_token=None):
        with self._lock:
            previous = self._pairs.get(user_id)
            if refresh_token is None and previous:
                refresh_token = previous.refresh_token
            self._pairs[user_id] = Credentials(access_token, refresh_token)
            self.writes.append((user_id, access_token, refresh_token))


class FakeAdapter(SourceAdapter):
    """Adapter answering from a dict; a callable value is called with the window."""

    source_system = "fake"

    def __init__(self, values=None, barrier=None):
        self.values = values or {}
        self.barrier = barrier
        self.fetched_days = []
        self._lock = threading.Lock()

    def authenticate(self, user_id):
        if user_id == "nobody":
            raise Unauthenticated("no credentials")

    def list_metrics(self):
        return list(METRIC_FIELDS)

    def fetch_metric(self, user_id, metric, window):
        if self.barrier is not None:
            self.barrier.wait()
        if metric == "steps":
            with self._lock:
                self.fetched_days.append(window.day)
        value = self.values.get(metric)
        return value(window) if callable(value) else value


def nanos(dt: datetime) -> str:
    return str(int(dt.timestamp()) * 1_000_000_000)


def point(value=None, start=None, end=None, key="fpVal"):
    p = {}
    if value is not None:
        p["value"] = [{key: value}]
    if start is not None:
        p["startTimeNanos"] = nanos(start)
    if end is not None:
        p["endTimeNanos"] = nanos(end)
    return p


def aggregate(*buckets):
    """Each positional arg is the list of points of one bucket."""
    return {"bucket": [{"dataset": [{"point": list(points)}]} for points in buckets]}


def data_type_of(request) -> str:
    body = json.loads(request.body)
    return body["aggregateBy"][0]["dataTypeName"]


@pytest.fixture
def store():
    s = MemoryCredentialStore()
    s.set("alice", "old-token", "refresh-1")
    return s


@pytest.fixture
def refresher(store):
    return CredentialRefresher(store, client_id="cid", client_secret="secret", token_url=TOKEN_URL)


@pytest.fixture
def executor(store, refresher):
    return RequestExecutor(store, refresher, api_base=API_BASE, timeout=5)


@pytest.fixture
def window():
    return TimeWindow.for_day(date(2026, 2, 10), "UTC")


@pytest.fixture
def at():
    def _at(hour, minute=0):
        return datetime(2026, 2, 10, hour, minute, tzinfo=timezone.utc)
    return _at
