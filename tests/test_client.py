"""
Tests for the polling client.

These tests verify:
1. FETCH: The API client is a complaint source; every failure is a ComplaintSourceError
2. TRANSITIONS: Rejected or interrupted status changes raise TransitionError
3. POLLER: Triggers never cancel in-flight cycles; a crashing cycle is contained
4. WATCHER: The JSON ledger reproduces read/cleared state across restarts
"""

import asyncio
import json
from uuid import uuid4

import httpx
import jwt
import pytest

from sarana_care.client import NotificationPoller, SaranaClient, SaranaClientError, TransitionError
from sarana_care.client.__main__ import token_subject
from sarana_care.core.security import create_access_token
from sarana_care.models import ComplaintStatus
from sarana_care.schemas import ComplaintPage
from sarana_care.services.notification_ledger import InMemoryLedgerStore, JsonFileLedgerStore
from sarana_care.services.notifications import notification_key
from sarana_care.services.reconciler import (
    ComplaintSourceError,
    NotificationContext,
    NotificationReconciler,
)

from factories import newest_first


def complaint_payload(complaints) -> list[dict]:
    return [c.model_dump(mode="json") for c in complaints]


def make_client(handler) -> SaranaClient:
    return SaranaClient(
        "test-token",
        base_url="http://sarana.test",
        transport=httpx.MockTransport(handler),
    )


# =============================================================================
# TEST: API CLIENT
# =============================================================================


class TestFetchComplaints:

    async def test_returns_parsed_complaints(self):
        complaints = newest_first(2)
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=complaint_payload(complaints))

        async with make_client(handler) as client:
            fetched = await client.fetch_complaints()

        assert [c.id for c in fetched] == [c.id for c in complaints]
        request = seen[0]
        assert request.url.path == "/api/v1/complaints"
        assert request.url.params["page"] == "history"
        assert request.headers["Authorization"] == "Bearer test-token"

    async def test_passes_filters(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=[])

        async with make_client(handler) as client:
            await client.fetch_complaints(
                page=ComplaintPage.TRACKING, status=ComplaintStatus.DONE, query="lamp"
            )

        params = seen[0].url.params
        assert (params["page"], params["status"], params["q"]) == ("tracking", "done", "lamp")

    @pytest.mark.parametrize(
        "response",
        [
            httpx.Response(500, text="boom"),
            httpx.Response(401, json={"detail": "Not authenticated"}),
            httpx.Response(200, text="<html>not json</html>"),
            httpx.Response(200, json=[{"id": "not-a-complaint"}]),
        ],
    )
    async def test_bad_responses_are_source_errors(self, response):
        async with make_client(lambda request: response) as client:
            with pytest.raises(ComplaintSourceError):
                await client.fetch_complaints()

    async def test_network_error_is_source_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        async with make_client(handler) as client:
            with pytest.raises(ComplaintSourceError):
                await client.fetch_complaints()


class TestTransitionStatus:

    async def test_sends_status_and_note(self):
        complaint = newest_first(1)[0]
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            body = complaint.model_dump(mode="json")
            body["current_status"] = "in_progress"
            return httpx.Response(200, json=body)

        async with make_client(handler) as client:
            updated = await client.transition_status(
                complaint.id, ComplaintStatus.IN_PROGRESS, note="On it"
            )

        assert updated.current_status == ComplaintStatus.IN_PROGRESS
        assert seen[0].method == "PUT"
        assert json.loads(seen[0].content) == {"status": "in_progress", "description": "On it"}

    async def test_conflict_raises_transition_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(409, json={"detail": "Cannot move complaint"})

        async with make_client(handler) as client:
            with pytest.raises(TransitionError) as exc_info:
                await client.transition_status(uuid4(), ComplaintStatus.DONE)

        assert exc_info.value.status_code == 409
        assert "Cannot move complaint" in str(exc_info.value)

    async def test_timeout_raises_transition_error(self):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            raise httpx.ReadTimeout("timed out", request=request)

        async with make_client(handler) as client:
            with pytest.raises(TransitionError):
                await client.transition_status(uuid4(), ComplaintStatus.IN_PROGRESS)

        # Never retried
        assert len(calls) == 1


class TestReferenceCalls:

    async def test_missing_profile_is_none(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(404, json={"detail": "Profile not found"})

        async with make_client(handler) as client:
            assert await client.get_profile("auth-nobody") is None

    async def test_other_errors_propagate(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(403, json={"detail": "Cannot read another user's profile"})

        async with make_client(handler) as client:
            with pytest.raises(SaranaClientError) as exc_info:
                await client.get_profile("auth-someone")

        assert exc_info.value.status_code == 403

    async def test_categories(self):
        category_id = uuid4()

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json=[{"id": str(category_id), "name": "Plumbing"}])

        async with make_client(handler) as client:
            categories = await client.list_categories()

        assert [(c.id, c.name) for c in categories] == [(category_id, "Plumbing")]

    async def test_non_dict_error_body(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(502, json=["bad gateway"])

        async with make_client(handler) as client:
            with pytest.raises(SaranaClientError) as exc_info:
                await client.list_categories()

        assert exc_info.value.status_code == 502


# =============================================================================
# TEST: POLLER
# =============================================================================


class ListSource:

    def __init__(self, complaints=None):
        self.complaints = list(complaints or [])
        self.fail_with: Exception | None = None

    async def fetch_complaints(self):
        if self.fail_with is not None:
            raise self.fail_with
        return list(self.complaints)


class SlowSource:
    """Each fetch waits for the test to release it."""

    def __init__(self, complaints):
        self.complaints = complaints
        self.release = asyncio.Event()

    async def fetch_complaints(self):
        await self.release.wait()
        return list(self.complaints)


@pytest.fixture
def ctx() -> NotificationContext:
    return NotificationContext(user_id="student-1")


class TestNotificationPoller:

    async def test_trigger_runs_a_cycle(self, settings, ctx):
        results = []
        reconciler = NotificationReconciler(
            InMemoryLedgerStore(), ListSource(newest_first(2)), settings
        )
        poller = NotificationPoller(reconciler, ctx, on_refresh=results.append)

        result = await poller.trigger()

        assert poller.trigger_count == 1
        assert result.applied is True
        assert results == [result]
        assert len(ctx.visible) == 2

    async def test_triggers_do_not_cancel_in_flight_cycles(self, settings, ctx):
        source = SlowSource(newest_first(1))
        reconciler = NotificationReconciler(InMemoryLedgerStore(), source, settings)
        poller = NotificationPoller(reconciler, ctx)

        first = poller.trigger()
        second = poller.trigger()
        await asyncio.sleep(0)
        assert poller.in_flight == 2

        source.release.set()
        await poller.drain()

        assert poller.in_flight == 0
        assert not first.cancelled() and not second.cancelled()
        assert ctx.fetch_count == 2

    async def test_failed_fetch_keeps_previous_list(self, settings, ctx):
        source = ListSource(newest_first(2))
        reconciler = NotificationReconciler(InMemoryLedgerStore(), source, settings)
        poller = NotificationPoller(reconciler, ctx)
        await poller.trigger()

        source.fail_with = ComplaintSourceError("offline")
        result = await poller.trigger()

        assert result.applied is False
        assert len(ctx.visible) == 2

    async def test_crashing_cycle_is_contained(self, settings, ctx):
        source = ListSource()
        source.fail_with = RuntimeError("bug in the source")
        reconciler = NotificationReconciler(InMemoryLedgerStore(), source, settings)
        poller = NotificationPoller(reconciler, ctx)

        assert await poller.trigger() is None
        assert poller.in_flight == 0

    async def test_run_until_stopped(self, settings, ctx):
        reconciler = NotificationReconciler(
            InMemoryLedgerStore(), ListSource(newest_first(1)), settings
        )
        results = []

        def on_refresh(result):
            results.append(result)
            if len(results) == 2:
                poller.stop()

        poller = NotificationPoller(reconciler, ctx, interval_seconds=0.01, on_refresh=on_refresh)

        await asyncio.wait_for(poller.run(), timeout=5)

        assert len(results) == 2
        assert poller.trigger_count == 2


# =============================================================================
# TEST: WATCHER
# =============================================================================


class TestWatcher:

    def test_token_subject(self):
        token = create_access_token("auth-sari-123")
        assert token_subject(token) == "auth-sari-123"

    def test_token_subject_rejects_garbage(self):
        with pytest.raises(jwt.DecodeError):
            token_subject("not-a-token")

    async def test_json_ledger_reproduces_state_after_restart(self, settings, tmp_path):
        complaints = newest_first(3)
        source = ListSource(complaints)
        read_key = notification_key(complaints[0].id, ComplaintStatus.PENDING)
        cleared_key = notification_key(complaints[1].id, ComplaintStatus.PENDING)

        first_run = NotificationReconciler(JsonFileLedgerStore(tmp_path), source, settings)
        ctx = NotificationContext(user_id="auth-sari-123")
        await first_run.refresh(ctx)
        await first_run.mark_read(ctx, read_key)
        await first_run.delete(ctx, cleared_key)

        restarted = NotificationReconciler(JsonFileLedgerStore(tmp_path), source, settings)
        fresh = NotificationContext(user_id="auth-sari-123")
        await restarted.refresh(fresh)

        visible = {n.key: n for n in fresh.visible}
        assert cleared_key not in visible
        assert visible[read_key].is_read is True
        assert fresh.unread_count == 1
