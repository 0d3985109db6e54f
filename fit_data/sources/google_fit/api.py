"""Low-level Google Fit API helpers (authorized request + one-shot token refresh)."""
from __future__ import annotations
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import requests

from fit_data import config
from fit_data.db.stores import CredentialStore
from fit_data.errors import MetricUnavailable, ProviderError, ReauthRequired, RefreshFailed, Unauthenticated
from .auth import CredentialRefresher

logger = logging.getLogger(__name__)

UNAVAILABLE_STATUSES = (403, 404)


@dataclass(frozen=True)
class RequestSpec:
    path: str
    method: str = 'GET'
    params: Optional[Dict[str, Any]] = None
    body: Optional[Dict[str, Any]] = None


def _provider_message(resp: requests.Response) -> str:
    try:
        data = resp.json()
    except ValueError:
        return resp.text[:200] or resp.reason or ''
    err = data.get('error') if isinstance(data, dict) else None
    if isinstance(err, dict):
        return err.get('message') or resp.reason or ''
    return str(err or resp.reason or '')


class RequestExecutor:
    def __init__(self, store: CredentialStore, refresher: CredentialRefresher,
                 api_base: str = config.FIT_API_BASE, timeout: int = config.HTTP_TIMEOUT):
        self.store = store
        self.refresher = refresher
        self.api_base = api_base.rstrip('/')
        self.timeout = timeout

    def _send(self, spec: RequestSpec, token: str) -> requests.Response:
        headers = {'Authorization': f'Bearer {token}'}
        if spec.body is not None:
            headers['Content-Type'] = 'application/json'
        try:
            return requests.request(
                spec.method, f'{self.api_base}{spec.path}',
                params=spec.params, json=spec.body, headers=headers, timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise ProviderError(f'{spec.method} {spec.path} failed: {e}') from e

    def _result(self, spec: RequestSpec, resp: requests.Response) -> Dict[str, Any]:
        if resp.ok:
            if not resp.content:
                return {}
            try:
                return resp.json()
            except ValueError as e:
                raise ProviderError(f'{spec.method} {spec.path} returned non-JSON body', status=resp.status_code) from e
        message = _provider_message(resp)
        if resp.status_code in UNAVAILABLE_STATUSES:
            raise MetricUnavailable(message or 'Data type not available or permission denied', status=resp.status_code)
        raise ProviderError(message or f'{spec.method} {spec.path} failed', status=resp.status_code)

    def execute(self, user_id: str, spec: RequestSpec) -> Dict[str, Any]:
        creds = self.store.get(user_id)
        if not creds or not creds.access_token:
            raise Unauthenticated(f'User {user_id} is not authenticated with Google Fit')
        resp = self._send(spec, creds.access_token)
        if resp.status_code != 401:
            return self._result(spec, resp)

        logger.info('401 Unauthorized on %s %s; refreshing token for %s', spec.method, spec.path, user_id)
        try:
            token = self.refresher.refresh(user_id, stale_token=creds.access_token)
        except ReauthRequired:
            raise
        except RefreshFailed as e:
            raise ReauthRequired(f'Token refresh failed for user {user_id}: {e}') from e
        # The retry's outcome is final; a second 401 is an ordinary provider error.
        return self._result(spec, self._send(spec, token))
