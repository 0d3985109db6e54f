"""Google Fit adapter: credential check plus per-metric dispatch."""
from __future__ import annotations
from typing import Optional, Sequence

from fit_data.db.stores import CredentialStore
from fit_data.errors import Unauthenticated
from fit_data.models import METRIC_FIELDS, MetricValue, TimeWindow
from fit_data.sources.base.adapter import SourceAdapter
from .api import RequestExecutor
from .auth import CredentialRefresher
from .heart_rate import fetch_heart_rate
from .resources import SIMPLE_FETCHERS

METRIC_FETCHERS = dict(SIMPLE_FETCHERS, heart_rate=fetch_heart_rate)


class GoogleFitAdapter(SourceAdapter):
    source_system = 'google_fit'

    def __init__(self, store: CredentialStore, executor: Optional[RequestExecutor] = None, fetchers=None):
        self.store = store
        self.executor = executor or RequestExecutor(store, CredentialRefresher(store))
        self.fetchers = fetchers or METRIC_FETCHERS

    def authenticate(self, user_id: str) -> None:
        creds = self.store.get(user_id)
        if not creds or not creds.access_token:
            raise Unauthenticated(f'User {user_id} is not authenticated with Google Fit')

    def list_metrics(self) -> Sequence[str]:
        return [m for m in METRIC_FIELDS if m in self.fetchers]

    def fetch_metric(self, user_id: str, metric: str, window: TimeWindow) -> MetricValue:
        fetcher = self.fetchers[metric]
        # raise instead of degrading so the orchestrator can record the failure
        fetcher = getattr(fetcher, 'strict', fetcher)
        return fetcher(self.executor, user_id, window)
