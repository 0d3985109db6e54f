"""Heart-rate resolution.

Aggregate heart-rate queries often come back empty even when the account holds
raw measurements, so resolution runs in two stages:

1. the standard aggregate query: latest point by start time, else the mean of
   every value seen;
2. the registered raw data streams for the heart-rate type, in listing order,
   applying the same extraction per stream until one yields a value.

A ``MetricUnavailable`` or ``ReauthRequired`` at any stage ends the search
with an absent value.
"""
from __future__ import annotations
import logging
import math
from datetime import datetime
from typing import Any, Dict, Iterable, Optional
from urllib.parse import quote

from fit_data.errors import FitDataError, MetricUnavailable, ProviderError, ReauthRequired
from fit_data.models import TimeWindow
from .api import RequestExecutor, RequestSpec
from .resources import HEART_RATE, aggregate_spec, degrade_to_absent, iter_points, point_value, parse_nanos

logger = logging.getLogger(__name__)

DATA_SOURCES_PATH = '/users/me/dataSources'


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def extract_heart_rate(points: Iterable[Dict[str, Any]]) -> Optional[int]:
    latest: Optional[float] = None
    latest_ts = 0
    values = []
    for point in points:
        value = point_value(point)
        if value is None:
            continue
        values.append(value)
        ts = parse_nanos(point.get('startTimeNanos')) or 0
        if ts > latest_ts:
            latest_ts, latest = ts, value
    if latest is not None:
        return _round_half_up(latest)
    if values:
        return _round_half_up(sum(values) / len(values))
    return None


def dataset_spec(stream_id: str, window: TimeWindow) -> RequestSpec:
    return RequestSpec(
        path=f"{DATA_SOURCES_PATH}/{quote(stream_id, safe='')}/datasets/{window.start_nanos}-{window.end_nanos}",
    )


def _from_raw_streams(executor: RequestExecutor, user_id: str, window: TimeWindow) -> Optional[int]:
    try:
        listing = executor.execute(user_id, RequestSpec(path=DATA_SOURCES_PATH, params={'dataTypeName': HEART_RATE}))
    except (MetricUnavailable, ReauthRequired):
        raise
    except FitDataError as e:
        logger.warning('Could not list heart rate data sources: %s', e)
        return None
    sources = listing.get('dataSource') or []
    logger.debug('Found %d heart rate data sources for %s', len(sources), user_id)
    for source in sources:
        stream_id = source.get('dataStreamId')
        if not stream_id:
            continue
        try:
            dataset = executor.execute(user_id, dataset_spec(stream_id, window))
        except (MetricUnavailable, ReauthRequired):
            raise
        except FitDataError as e:
            logger.info('Skipping heart rate stream %s: %s', stream_id, e)
            continue
        value = extract_heart_rate(dataset.get('point') or [])
        if value is not None:
            logger.info('Heart rate for %s resolved from raw stream %s', user_id, stream_id)
            return value
    return None


@degrade_to_absent('heart_rate')
def fetch_heart_rate(executor: RequestExecutor, user_id: str, window: TimeWindow) -> Optional[int]:
    aggregate = executor.execute(user_id, aggregate_spec(HEART_RATE, window))
    value = extract_heart_rate(iter_points(aggregate))
    if value is not None:
        return value
    logger.debug('Aggregate heart rate empty for %s; trying raw data sources', user_id)
    value = _from_raw_streams(executor, user_id, window)
    if value is None:
        logger.info('No heart rate data found in any source for %s', user_id)
    return value


def app_stream_id(client_id: str) -> str:
    return f'raw:{HEART_RATE}:{client_id}:heart_rate_tracker:heart_rate'


def insert_heart_rate(executor: RequestExecutor, user_id: str, bpm: float, at: datetime, client_id: str) -> bool:
    """Write one heart-rate measurement into this application's raw stream."""
    stream_id = app_stream_id(client_id)
    ts = str(int(at.timestamp() * 1000) * 1_000_000)
    source = {
        'dataStreamId': stream_id,
        'name': 'Heart Rate Tracker',
        'type': 'raw',
        'dataType': {'name': HEART_RATE, 'field': [{'name': 'bpm', 'format': 'floatPoint'}]},
        'application': {'name': 'fit-data-sync', 'version': '1.0'},
        'device': {'manufacturer': 'fit-data-sync', 'model': 'cli', 'type': 'unknown', 'uid': user_id, 'version': '1.0'},
    }
    try:
        executor.execute(user_id, RequestSpec(path=DATA_SOURCES_PATH, method='POST', body=source))
    except ProviderError as e:
        if e.status != 409:  # 409: source already registered
            logger.error('Could not create heart rate data source: %s', e)
            return False
    except FitDataError as e:
        logger.error('Could not create heart rate data source: %s', e)
        return False
    dataset = {
        'dataSourceId': stream_id,
        'minStartTimeNs': ts,
        'maxEndTimeNs': ts,
        'point': [{
            'startTimeNanos': ts,
            'endTimeNanos': ts,
            'dataTypeName': HEART_RATE,
            'value': [{'fpVal': float(bpm)}],
        }],
    }
    try:
        executor.execute(user_id, RequestSpec(
            path=f"{DATA_SOURCES_PATH}/{quote(stream_id, safe='')}/datasets/{ts}-{ts}",
            method='PATCH', body=dataset,
        ))
    except FitDataError as e:
        logger.error('Error inserting heart rate for %s: %s', user_id, e)
        return False
    logger.info('Heart rate inserted for %s: %s bpm at %s', user_id, bpm, at.isoformat())
    return True
