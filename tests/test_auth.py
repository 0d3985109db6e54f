import threading
import time
from concurrent.futures import ThreadPoolExecutor
from urllib.parse import parse_qs, urlparse

import pytest
import requests
import responses

from fit_data.errors import NoRefreshCredential, RefreshCredentialExpired, RefreshFailed, Unauthenticated
from fit_data.sources.google_fit.auth import TOKEN_URL as GOOGLE_TOKEN_URL
from fit_data.sources.google_fit.auth import AuthorizationFlow, PendingAuthorizations

from conftest import TOKEN_URL


@responses.activate
def test_refresh_persists_rotated_refresh_token(refresher, store):
    responses.add(responses.POST, TOKEN_URL, json={"access_token": "a2", "refresh_token": "r2"}, status=200)

    assert refresher.refresh("alice") == "a2"
    assert store.get("alice").refresh_token == "r2"
    body = parse_qs(responses.calls[0].request.body)
    assert body["grant_type"] == ["refresh_token"]
    assert body["refresh_token"] == ["refresh-1"]


@responses.activate
def test_refresh_keeps_previous_refresh_token(refresher, store):
    responses.add(responses.POST, TOKEN_URL, json={"access_token": "a2"}, status=200)

    refresher.refresh("alice")

    assert store.get("alice").refresh_token == "refresh-1"
    assert store.writes[-1] == ("alice", "a2", "refresh-1")


def test_refresh_without_refresh_token(refresher, store):
    store.set("bob", "access-only")

    with pytest.raises(NoRefreshCredential):
        refresher.refresh("bob")


@pytest.mark.parametrize("status", [400, 401])
@responses.activate
def test_rejected_refresh_token(refresher, status):
    responses.add(responses.POST, TOKEN_URL, json={"error": "invalid_grant"}, status=status)

    with pytest.raises(RefreshCredentialExpired):
        refresher.refresh("alice")


@responses.activate
def test_server_failure_is_retryable(refresher, store):
    responses.add(responses.POST, TOKEN_URL, body="upstream down", status=502)

    with pytest.raises(RefreshFailed):
        refresher.refresh("alice")
    assert store.get("alice").access_token == "old-token"


@responses.activate
def test_transport_failure_is_retryable(refresher):
    responses.add(responses.POST, TOKEN_URL, body=requests.ConnectionError("reset"))

    with pytest.raises(RefreshFailed):
        refresher.refresh("alice")


@responses.activate
def test_concurrent_refreshes_share_one_exchange(refresher):
    release = threading.Event()
    entered = threading.Event()

    def slow_token(request):
        entered.set()
        release.wait(timeout=5)
        return (200, {}, '{"access_token": "shared"}')

    responses.add_callback(responses.POST, TOKEN_URL, callback=slow_token)

    with ThreadPoolExecutor(max_workers=4) as pool:
        leader = pool.submit(refresher.refresh, "alice")
        assert entered.wait(timeout=5)
        followers = [pool.submit(refresher.refresh, "alice") for _ in range(3)]
        # followers must be parked on the in-flight future before the leader finishes
        time.sleep(0.3)
        release.set()
        results = [leader.result(timeout=5)] + [f.result(timeout=5) for f in followers]

    assert results == ["shared"] * 4
    assert len(responses.calls) == 1
    assert refresher._inflight == {}


@responses.activate
def test_failed_refresh_is_not_cached(refresher):
    responses.add(responses.POST, TOKEN_URL, status=503)
    responses.add(responses.POST, TOKEN_URL, json={"access_token": "later"}, status=200)

    with pytest.raises(RefreshFailed):
        refresher.refresh("alice")
    assert refresher.refresh("alice") == "later"


def test_pending_authorizations_expire():
    now = [1000.0]
    pending = PendingAuthorizations(ttl=60, clock=lambda: now[0])
    state = pending.add("alice")
    stale = pending.add("bob")

    now[0] += 30
    assert pending.pop(state) == "alice"
    assert pending.pop(state) is None

    now[0] += 31
    assert pending.pop(stale) is None
    assert len(pending) == 0


def test_begin_builds_consent_url(store):
    flow = AuthorizationFlow(store, client_id="cid", client_secret="secret", redirect_uri="http://localhost:8765/callback")

    url, state = flow.begin("alice")

    qs = parse_qs(urlparse(url).query)
    assert qs["client_id"] == ["cid"]
    assert qs["state"] == [state]
    assert qs["access_type"] == ["offline"]
    assert "fitness.activity.read" in qs["scope"][0]
    assert len(flow.pending) == 1


@responses.activate
def test_complete_exchanges_code_and_stores_pair(store):
    responses.add(responses.POST, GOOGLE_TOKEN_URL, json={"access_token": "a1", "refresh_token": "r1"}, status=200)
    flow = AuthorizationFlow(store, client_id="cid", client_secret="secret")
    _, state = flow.begin("carol")

    creds = flow.complete(state, "the-code")

    assert creds.access_token == "a1"
    assert store.get("carol").refresh_token == "r1"
    assert parse_qs(responses.calls[0].request.body)["code"] == ["the-code"]


def test_complete_rejects_unknown_state(store):
    flow = AuthorizationFlow(store, client_id="cid", client_secret="secret")

    with pytest.raises(Unauthenticated):
        flow.complete("forged", "code")


@responses.activate
def test_stale_token_skips_exchange_when_already_rotated(refresher, store):
    store.set("alice", "rotated-token")

    assert refresher.refresh("alice", stale_token="old-token") == "rotated-token"
    assert len(responses.calls) == 0


@responses.activate
def test_stale_token_matching_store_still_refreshes(refresher):
    responses.add(responses.POST, TOKEN_URL, json={"access_token": "a2"}, status=200)

    assert refresher.refresh("alice", stale_token="old-token") == "a2"
    assert len(responses.calls) == 1
