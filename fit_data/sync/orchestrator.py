"""Concurrent multi-metric fetch and day-by-day backfill."""
from __future__ import annotations
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import date, timedelta
from typing import Callable, Optional

from fit_data import config
from fit_data.db.stores import DailyRecordStore
from fit_data.errors import FitDataError, MetricUnavailable, Unauthenticated
from fit_data.models import DailyRecord, MetricFailure, TimeWindow
from fit_data.sources.base.adapter import SourceAdapter

logger = logging.getLogger(__name__)


class MetricFetchOrchestrator:
    def __init__(self, adapter: SourceAdapter, records: DailyRecordStore,
                 tz: str = config.FIT_TIMEZONE, delay: float = config.BACKFILL_DELAY,
                 sleep: Callable[[float], None] = time.sleep):
        self.adapter = adapter
        self.records = records
        self.tz = tz
        self.delay = delay
        self._sleep = sleep

    def fetch_all(self, user_id: str, window: TimeWindow) -> DailyRecord:
        """Fetch every metric concurrently and upsert what the provider returned.

        Individual metric failures never fail the run; only a missing credential
        does (``Unauthenticated``). Only observed metrics are written, so a day
        with no observations is never stored.
        """
        self.adapter.authenticate(user_id)
        metrics = list(self.adapter.list_metrics())
        record = DailyRecord(user_id=user_id, day=window.day)

        with ThreadPoolExecutor(max_workers=len(metrics) or 1) as pool:
            futures = {m: pool.submit(self.adapter.fetch_metric, user_id, m, window) for m in metrics}
            for metric, future in futures.items():
                try:
                    value = future.result()
                except Exception as e:  # noqa: BLE001
                    if isinstance(e, MetricUnavailable):
                        logger.info('%s not available for %s (%s); skipping', metric, user_id, e)
                    elif isinstance(e, FitDataError):
                        logger.warning('Error fetching %s for %s [%s]: %s', metric, user_id, e.kind, e)
                    else:
                        logger.error('Unexpected error fetching %s for %s', metric, user_id, exc_info=True)
                    kind = e.kind if isinstance(e, FitDataError) else type(e).__name__
                    record.failures.append(MetricFailure(metric=metric, kind=kind, message=str(e)))
                    record.values[metric] = self.adapter.default_value(metric)
                    continue
                if value is None:
                    record.values[metric] = self.adapter.default_value(metric)
                else:
                    record.values[metric] = value
                    record.observed.add(metric)

        if record.has_data():
            stored = self.records.upsert(user_id, record.day, record.partial())
            logger.info('Health data saved for %s on %s: steps=%s heart_rate=%s calories=%s',
                        user_id, record.day, stored.get('steps'), stored.get('heart_rate'), stored.get('calories'))
        else:
            logger.info('No data found for %s on %s', user_id, record.day)
        return record

    def fetch_day(self, user_id: str, day: Optional[date] = None) -> DailyRecord:
        day = day or date.today()
        return self.fetch_all(user_id, TimeWindow.for_day(day, self.tz))

    def backfill(self, user_id: str, days: int, today: Optional[date] = None) -> int:
        """Fetch the last ``days`` calendar days not yet stored; return how many gained data."""
        today = today or date.today()
        fetched = 0
        errors = []
        for offset in range(days):
            day = today - timedelta(days=offset)
            if self.records.exists(user_id, day):
                logger.debug('Data already exists for %s, skipping', day.isoformat())
                continue
            try:
                record = self.fetch_all(user_id, TimeWindow.for_day(day, self.tz))
            except Unauthenticated:
                raise
            except Exception as e:  # noqa: BLE001
                logger.error('Error fetching data for %s: %s', day.isoformat(), e)
                errors.append(f'{day.isoformat()}: {e}')
            else:
                if record.has_data():
                    fetched += 1
            # throttle provider calls between days
            if self.delay:
                self._sleep(self.delay)
        logger.info('Fetched %d day(s) of data for %s. Errors: %d', fetched, user_id, len(errors))
        return fetched


def build_orchestrator(records: Optional[DailyRecordStore] = None, dsn: Optional[str] = None, **kwargs) -> MetricFetchOrchestrator:
    """Wire the PostgreSQL stores, Google Fit adapter and orchestrator together."""
    from fit_data.db.postgres import PostgresCredentialStore, PostgresDailyRecordStore
    from fit_data.sources.google_fit.adapter import GoogleFitAdapter

    adapter = GoogleFitAdapter(PostgresCredentialStore(dsn))
    return MetricFetchOrchestrator(adapter, records or PostgresDailyRecordStore(dsn), **kwargs)
