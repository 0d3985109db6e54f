"""Shared value types: credentials, query windows and merged daily records."""
from __future__ import annotations
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, tzinfo
from typing import Dict, List, Optional, Set, Union
from zoneinfo import ZoneInfo

MetricValue = Optional[Union[int, float]]

# Storage column order; also the fan-out order of the orchestrator.
METRIC_FIELDS = (
    'steps',
    'heart_rate',
    'calories',
    'distance',
    'weight',
    'height',
    'sleep_duration',
    'active_minutes',
    'speed',
)

# Zero is a legitimate observation for steps, so a failed fetch reports 0.
METRIC_DEFAULTS: Dict[str, MetricValue] = {name: None for name in METRIC_FIELDS}
METRIC_DEFAULTS['steps'] = 0


@dataclass(frozen=True)
class Credentials:
    access_token: str
    refresh_token: Optional[str] = None


@dataclass(frozen=True)
class TimeWindow:
    start: datetime
    end: datetime

    @classmethod
    def for_day(cls, day: date, tz: Union[str, tzinfo] = 'UTC') -> 'TimeWindow':
        zone = ZoneInfo(tz) if isinstance(tz, str) else tz
        start = datetime.combine(day, time.min, tzinfo=zone)
        end = datetime.combine(day + timedelta(days=1), time.min, tzinfo=zone)
        return cls(start=start, end=end)

    @property
    def day(self) -> date:
        return self.start.date()

    @property
    def start_millis(self) -> int:
        return int(self.start.timestamp() * 1000)

    @property
    def end_millis(self) -> int:
        return int(self.end.timestamp() * 1000)

    @property
    def start_nanos(self) -> int:
        return self.start_millis * 1_000_000

    @property
    def end_nanos(self) -> int:
        return self.end_millis * 1_000_000


@dataclass
class MetricFailure:
    metric: str
    kind: str
    message: str


@dataclass
class DailyRecord:
    """Outcome of one fetch run for a (user, day)."""
    user_id: str
    day: date
    values: Dict[str, MetricValue] = field(default_factory=dict)
    observed: Set[str] = field(default_factory=set)
    failures: List[MetricFailure] = field(default_factory=list)

    def has_data(self) -> bool:
        return bool(self.observed)

    def partial(self) -> Dict[str, MetricValue]:
        """Only the metrics the provider actually returned, for a field-wise upsert."""
        return {name: self.values[name] for name in METRIC_FIELDS if name in self.observed}
