"""Error taxonomy for the Google Fit client.

Callers branch on the class, never on a loose status field. ``kind`` is a short
tag used when a failure is recorded for diagnostics.
"""
from __future__ import annotations
from typing import Optional


class FitDataError(Exception):
    kind = 'error'

    def __init__(self, message: str = ''):
        super().__init__(message)
        self.message = message


class Unauthenticated(FitDataError):
    """No stored credential for the user; full authorization required."""
    kind = 'unauthenticated'


class ReauthRequired(FitDataError):
    """The refresh path is exhausted; the user must authorize again."""
    kind = 'reauth_required'


class NoRefreshCredential(ReauthRequired):
    kind = 'no_refresh_credential'


class RefreshCredentialExpired(ReauthRequired):
    kind = 'refresh_credential_expired'


class RefreshFailed(FitDataError):
    """Token endpoint failed for a transient reason. Safe to retry later."""
    kind = 'refresh_failed'


class _StatusError(FitDataError):
    def __init__(self, message: str = '', status: Optional[int] = None):
        super().__init__(message)
        self.status = status

    def __str__(self) -> str:
        if self.status is None:
            return self.message
        return f'{self.status}: {self.message}'


class MetricUnavailable(_StatusError):
    """Metric not authorized or not present for this account (403/404)."""
    kind = 'metric_unavailable'


class ProviderError(_StatusError):
    kind = 'provider_error'
