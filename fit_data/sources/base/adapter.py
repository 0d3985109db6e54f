"""Base adapter interface for metric sources."""
from __future__ import annotations
from abc import ABC, abstractmethod
from typing import Sequence

from fit_data.models import METRIC_DEFAULTS, MetricValue, TimeWindow


class SourceAdapter(ABC):
    source_system: str

    @abstractmethod
    def authenticate(self, user_id: str) -> None:
        """Fail with Unauthenticated when the user holds no usable credential."""

    @abstractmethod
    def list_metrics(self) -> Sequence[str]:
        """Return supported metric names."""

    @abstractmethod
    def fetch_metric(self, user_id: str, metric: str, window: TimeWindow) -> MetricValue:
        """Return one metric value for the window, or None when absent."""

    def default_value(self, metric: str) -> MetricValue:
        """Value reported for a metric whose fetch raised."""
        return METRIC_DEFAULTS.get(metric)
