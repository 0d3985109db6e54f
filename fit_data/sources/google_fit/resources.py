"""Google Fit metric fetchers built on the aggregate endpoint."""
from __future__ import annotations
import functools
import logging
from typing import Any, Dict, Iterable, Optional

from fit_data.errors import FitDataError, MetricUnavailable
from fit_data.models import MetricValue, TimeWindow
from .api import RequestExecutor, RequestSpec

logger = logging.getLogger(__name__)

AGGREGATE_PATH = '/users/me/dataset:aggregate'
DAY_MILLIS = 86_400_000
NANOS_PER_HOUR = 3_600 * 1_000_000_000

STEPS = 'com.google.step_count.delta'
CALORIES = 'com.google.calories.expended'
DISTANCE = 'com.google.distance.delta'
WEIGHT = 'com.google.weight'
HEIGHT = 'com.google.height'
SLEEP = 'com.google.sleep.segment'
ACTIVE_MINUTES = 'com.google.active_minutes'
SPEED = 'com.google.speed'
HEART_RATE = 'com.google.heart_rate.bpm'


def aggregate_spec(data_type: str, window: TimeWindow) -> RequestSpec:
    return RequestSpec(
        path=AGGREGATE_PATH,
        method='POST',
        body={
            'aggregateBy': [{'dataTypeName': data_type}],
            'bucketByTime': {'durationMillis': DAY_MILLIS},
            'startTimeMillis': window.start_millis,
            'endTimeMillis': window.end_millis,
        },
    )


def bucket_points(bucket: Dict[str, Any]) -> Iterable[Dict[str, Any]]:
    for dataset in bucket.get('dataset') or []:
        yield from dataset.get('point') or []


def iter_points(response: Dict[str, Any]) -> Iterable[Dict[str, Any]]:
    for bucket in response.get('bucket') or []:
        yield from bucket_points(bucket)


def point_value(point: Dict[str, Any]) -> Optional[float]:
    """First value of a point; fpVal and intVal are interchangeable."""
    values = point.get('value') or []
    if not values:
        return None
    first = values[0]
    if first.get('fpVal') is not None:
        return first['fpVal']
    if first.get('intVal') is not None:
        return first['intVal']
    return None


def parse_nanos(raw: Any) -> Optional[int]:
    try:
        return int(raw)
    except (TypeError, ValueError):
        return None


def degrade_to_absent(metric: str):
    """Turn provider-side failures of a single metric into an absent value.

    The undecorated function stays reachable as ``.strict`` for callers that
    record failures themselves.
    """

    def decorator(func):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            try:
                return func(*args, **kwargs)
            except MetricUnavailable as e:
                logger.info('%s not available or permission denied (%s); skipping', metric, e)
                return None
            except FitDataError as e:
                logger.warning('Error fetching %s [%s]: %s', metric, e.kind, e)
                return None

        wrapper.strict = func
        return wrapper

    return decorator


def sum_values(response: Dict[str, Any]) -> Optional[float]:
    total = None
    for point in iter_points(response):
        value = point_value(point)
        if value is not None:
            total = (total or 0) + value
    return total


def latest_bucket_value(response: Dict[str, Any]) -> Optional[float]:
    """First point value of the most recent bucket that has one."""
    for bucket in reversed(response.get('bucket') or []):
        for point in bucket_points(bucket):
            value = point_value(point)
            if value is not None:
                return value
    return None


def sleep_hours(response: Dict[str, Any]) -> Optional[float]:
    total_nanos = 0
    for point in iter_points(response):
        start, end = parse_nanos(point.get('startTimeNanos')), parse_nanos(point.get('endTimeNanos'))
        if start is not None and end is not None and end > start:
            total_nanos += end - start
    return total_nanos / NANOS_PER_HOUR if total_nanos > 0 else None


@degrade_to_absent('steps')
def fetch_steps(executor: RequestExecutor, user_id: str, window: TimeWindow) -> MetricValue:
    total = sum_values(executor.execute(user_id, aggregate_spec(STEPS, window)))
    return int(total) if total is not None else None


@degrade_to_absent('calories')
def fetch_calories(executor: RequestExecutor, user_id: str, window: TimeWindow) -> MetricValue:
    total = sum_values(executor.execute(user_id, aggregate_spec(CALORIES, window)))
    return round(total) if total is not None else None


@degrade_to_absent('distance')
def fetch_distance(executor: RequestExecutor, user_id: str, window: TimeWindow) -> MetricValue:
    total = sum_values(executor.execute(user_id, aggregate_spec(DISTANCE, window)))
    return total / 1000 if total is not None else None  # metres -> km


@degrade_to_absent('active_minutes')
def fetch_active_minutes(executor: RequestExecutor, user_id: str, window: TimeWindow) -> MetricValue:
    total = sum_values(executor.execute(user_id, aggregate_spec(ACTIVE_MINUTES, window)))
    return int(total) if total is not None else None


@degrade_to_absent('weight')
def fetch_weight(executor: RequestExecutor, user_id: str, window: TimeWindow) -> MetricValue:
    return latest_bucket_value(executor.execute(user_id, aggregate_spec(WEIGHT, window)))  # kg


@degrade_to_absent('height')
def fetch_height(executor: RequestExecutor, user_id: str, window: TimeWindow) -> MetricValue:
    return latest_bucket_value(executor.execute(user_id, aggregate_spec(HEIGHT, window)))  # metres


@degrade_to_absent('speed')
def fetch_speed(executor: RequestExecutor, user_id: str, window: TimeWindow) -> MetricValue:
    value = latest_bucket_value(executor.execute(user_id, aggregate_spec(SPEED, window)))
    return value * 3.6 if value is not None else None  # m/s -> km/h


@degrade_to_absent('sleep_duration')
def fetch_sleep_duration(executor: RequestExecutor, user_id: str, window: TimeWindow) -> MetricValue:
    return sleep_hours(executor.execute(user_id, aggregate_spec(SLEEP, window)))


SIMPLE_FETCHERS = {
    'steps': fetch_steps,
    'calories': fetch_calories,
    'distance': fetch_distance,
    'weight': fetch_weight,
    'height': fetch_height,
    'sleep_duration': fetch_sleep_duration,
    'active_minutes': fetch_active_minutes,
    'speed': fetch_speed,
}
