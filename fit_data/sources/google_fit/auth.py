"""Google OAuth2 token management (authorization code + refresh)."""
from __future__ import annotations
import os, threading, time, webbrowser
from concurrent.futures import Future
from http.server import BaseHTTPRequestHandler, HTTPServer
from typing import Callable, Dict, Optional, Tuple
from urllib.parse import urlencode, urlparse, parse_qs
import logging

import requests

from fit_data import config
from fit_data.db.stores import CredentialStore
from fit_data.errors import NoRefreshCredential, RefreshCredentialExpired, RefreshFailed, Unauthenticated
from fit_data.models import Credentials

logger = logging.getLogger(__name__)

AUTH_URL = 'https://accounts.google.com/o/oauth2/v2/auth'
TOKEN_URL = 'https://oauth2.googleapis.com/token'


def _error_text(resp: requests.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return resp.text[:200]
    return body.get('error_description') or body.get('error') or resp.text[:200]


class CredentialRefresher:
    """Exchanges a user's refresh token for a new access token.

    Concurrent refreshes for the same user are coalesced: the first caller talks
    to the token endpoint, later callers wait on its result.
    """

    def __init__(self, store: CredentialStore, client_id: Optional[str] = None,
                 client_secret: Optional[str] = None, token_url: str = TOKEN_URL,
                 timeout: int = 30):
        self.store = store
        self.client_id = client_id or config.GOOGLE_CLIENT_ID
        self.client_secret = client_secret or config.GOOGLE_CLIENT_SECRET
        self.token_url = token_url
        self.timeout = timeout
        self._lock = threading.Lock()
        self._inflight: Dict[str, Future] = {}

    def refresh(self, user_id: str, stale_token: Optional[str] = None) -> str:
        """Return a fresh access token for ``user_id``.

        ``stale_token`` is the token the caller was rejected with. If the store
        already holds a different one, another caller refreshed in the meantime
        and that token is returned without contacting the endpoint.
        """
        with self._lock:
            pending = self._inflight.get(user_id)
            if pending is None and stale_token is not None:
                current = self.store.get(user_id)
                if current and current.access_token and current.access_token != stale_token:
                    logger.debug('Token for %s already refreshed; reusing it', user_id)
                    return current.access_token
            if pending is None:
                pending = Future()
                self._inflight[user_id] = pending
                leader = True
            else:
                leader = False
        if not leader:
            logger.debug('Refresh for %s already in flight; waiting', user_id)
            return pending.result()
        try:
            token = self._exchange(user_id)
        except BaseException as e:
            pending.set_exception(e)
            raise
        else:
            pending.set_result(token)
            return token
        finally:
            with self._lock:
                self._inflight.pop(user_id, None)

    def _exchange(self, user_id: str) -> str:
        current = self.store.get(user_id)
        if not current or not current.refresh_token:
            raise NoRefreshCredential(f'No refresh token stored for user {user_id}; re-authorize.')
        data = {
            'grant_type': 'refresh_token',
            'refresh_token': current.refresh_token,
            'client_id': self.client_id,
            'client_secret': self.client_secret,
        }
        try:
            resp = requests.post(self.token_url, data=data, timeout=self.timeout)
        except requests.RequestException as e:
            raise RefreshFailed(f'Token endpoint unreachable: {e}') from e
        if resp.status_code in (400, 401):
            # invalid_grant: refresh token revoked or expired
            raise RefreshCredentialExpired(f'Refresh token rejected: {_error_text(resp)}')
        if resp.status_code != 200:
            raise RefreshFailed(f'Token refresh failed {resp.status_code}: {_error_text(resp)}')
        tk = resp.json()
        access_token = tk.get('access_token')
        if not access_token:
            raise RefreshFailed('Missing access_token in token payload')
        # Google does not always rotate the refresh token
        self.store.set(user_id, access_token, tk.get('refresh_token') or current.refresh_token)
        logger.info('Access token refreshed for user %s', user_id)
        return access_token


class PendingAuthorizations:
    """OAuth ``state`` -> user id, each entry expiring after ``ttl`` seconds."""

    def __init__(self, ttl: int = config.AUTH_STATE_TTL, clock: Callable[[], float] = time.monotonic):
        self.ttl = ttl
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: Dict[str, Tuple[str, float]] = {}

    def _purge(self, now: float):
        for key in [k for k, (_, exp) in self._entries.items() if exp <= now]:
            del self._entries[key]

    def add(self, user_id: str) -> str:
        state = os.urandom(16).hex()
        with self._lock:
            now = self._clock()
            self._purge(now)
            self._entries[state] = (user_id, now + self.ttl)
        return state

    def pop(self, state: str) -> Optional[str]:
        with self._lock:
            self._purge(self._clock())
            entry = self._entries.pop(state, None)
        return entry[0] if entry else None

    def __len__(self) -> int:
        with self._lock:
            self._purge(self._clock())
            return len(self._entries)


class AuthorizationFlow:
    def __init__(self, store: CredentialStore, client_id: Optional[str] = None,
                 client_secret: Optional[str] = None, redirect_uri: Optional[str] = None,
                 scopes: Optional[str] = None, pending: Optional[PendingAuthorizations] = None):
        self.store = store
        self.client_id = client_id or config.GOOGLE_CLIENT_ID
        self.client_secret = client_secret or config.GOOGLE_CLIENT_SECRET
        self.redirect_uri = redirect_uri or config.GOOGLE_REDIRECT_URI
        self.scopes = scopes or config.GOOGLE_FIT_SCOPES
        self.pending = pending or PendingAuthorizations()

    def begin(self, user_id: str) -> Tuple[str, str]:
        if not self.client_id or not self.client_secret:
            raise RuntimeError('Missing GOOGLE_CLIENT_ID / GOOGLE_CLIENT_SECRET')
        state = self.pending.add(user_id)
        params = {
            'response_type': 'code',
            'client_id': self.client_id,
            'redirect_uri': self.redirect_uri,
            'scope': self.scopes,
            'access_type': 'offline',
            'prompt': 'consent',  # forces a refresh token on re-consent
            'state': state,
        }
        return f'{AUTH_URL}?{urlencode(params)}', state

    def complete(self, state: str, code: str) -> Credentials:
        user_id = self.pending.pop(state)
        if user_id is None:
            raise Unauthenticated('Unknown or expired authorization state')
        data = {
            'grant_type': 'authorization_code',
            'code': code,
            'redirect_uri': self.redirect_uri,
            'client_id': self.client_id,
            'client_secret': self.client_secret,
        }
        resp = requests.post(TOKEN_URL, data=data, timeout=30)
        if resp.status_code != 200:
            raise Unauthenticated(f'Authorization code exchange failed {resp.status_code}: {_error_text(resp)}')
        tk = resp.json()
        self.store.set(user_id, tk['access_token'], tk.get('refresh_token'))
        logger.info('Google Fit credentials stored for user %s', user_id)
        stored = self.store.get(user_id)
        return stored or Credentials(tk['access_token'], tk.get('refresh_token'))

    def run_local(self, user_id: str, port: int = 8765, timeout: int = 300) -> Credentials:
        url, state = self.begin(user_id)
        logger.info('Open this URL if the browser does not open automatically:\n%s', url)
        webbrowser.open(url)
        code_holder: Dict[str, str] = {}

        class Handler(BaseHTTPRequestHandler):
            def do_GET(self_inner):  # noqa: N802
                parsed = urlparse(self_inner.path)
                if parsed.path != '/callback':
                    self_inner.send_response(404)
                    self_inner.end_headers()
                    return
                qs = parse_qs(parsed.query)
                if qs.get('state', [''])[0] != state or 'code' not in qs:
                    self_inner.send_response(400)
                    self_inner.end_headers()
                    self_inner.wfile.write(b'Invalid callback')
                    return
                code_holder['code'] = qs['code'][0]
                self_inner.send_response(200)
                self_inner.end_headers()
                self_inner.wfile.write(b'Authorization complete. You may close this tab.')

            def log_message(self_inner, format, *args):  # noqa: A002
                return

        server = HTTPServer(('localhost', port), Handler)
        t = threading.Thread(target=server.serve_forever, daemon=True)
        t.start()
        deadline = time.time() + timeout
        while 'code' not in code_holder and time.time() < deadline:
            time.sleep(0.2)
        server.shutdown()
        if 'code' not in code_holder:
            raise Unauthenticated('Authorization timed out')
        return self.complete(state, code_holder['code'])
