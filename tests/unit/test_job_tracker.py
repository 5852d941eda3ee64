"""Tests for single-job status tracking.

Covers:
- One update per poll through to the terminal status
- Attempt budget exhaustion → synthetic timeout failure
- Cancellation (idempotent, suppresses in-flight responses)
- Fatal vs transient error handling
- Result caching on completion
"""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import pytest

from buildable_area.core.classifier import AUTH_MESSAGE
from buildable_area.core.exceptions import AuthError, HttpError, NetworkError, RateLimitedError
from buildable_area.models.job import JobState, JobUpdate
from buildable_area.services.polling import CONNECTION_LOST_MESSAGE
from buildable_area.services.tracker import JobStatusTracker

PENDING = {"status": "pending", "progress": 0, "message": "Queued"}
PROCESSING = {"status": "processing", "progress": 40, "message": "Analysing slope"}
COMPLETED = {
    "status": "completed",
    "progress": 100,
    "message": "Analysis complete",
    "result": {"buildable_area_summary": {"net_buildable_acres": 12.5}},
}


async def _track(tracker: JobStatusTracker, job_id: str = "job-1", **options):
    updates: list[JobUpdate] = []
    options.setdefault("interval_s", 0)
    handle = tracker.start(job_id, updates.append, **options)
    await asyncio.wait_for(handle.wait(), timeout=2)
    return handle, updates


class TestLifecycle:
    @pytest.mark.asyncio()
    async def test_reports_each_status_until_completed(self, make_scripted, cache) -> None:
        transport = make_scripted(get=[PENDING, PROCESSING, COMPLETED])
        tracker = JobStatusTracker(transport, cache)

        handle, updates = await _track(tracker)

        assert [u.status for u in updates] == [
            JobState.PENDING,
            JobState.PROCESSING,
            JobState.COMPLETED,
        ]
        assert transport.paths() == ["status/job-1"] * 3
        assert handle.done
        assert handle.job.status is JobState.COMPLETED
        assert handle.job.progress == 100

    @pytest.mark.asyncio()
    async def test_failed_status_stops_polling(self, make_scripted) -> None:
        transport = make_scripted(get=[{"status": "failed", "error": "DEM unavailable"}])
        tracker = JobStatusTracker(transport)

        _handle, updates = await _track(tracker)

        assert len(updates) == 1
        assert updates[0].status is JobState.FAILED
        assert updates[0].error == "DEM unavailable"

    @pytest.mark.asyncio()
    async def test_progress_never_decreases(self, make_scripted) -> None:
        transport = make_scripted(
            get=[
                {"status": "processing", "progress": 50},
                {"status": "processing", "progress": 30},
                COMPLETED,
            ]
        )
        tracker = JobStatusTracker(transport)

        _handle, updates = await _track(tracker)

        assert [u.progress for u in updates] == [50, 50, 100]

    @pytest.mark.asyncio()
    async def test_async_callback_is_awaited(self, make_scripted) -> None:
        transport = make_scripted(get=[COMPLETED])
        tracker = JobStatusTracker(transport)
        on_update = AsyncMock()

        handle = tracker.start("job-1", on_update, interval_s=0)
        await handle.wait()

        on_update.assert_awaited_once()
        assert on_update.await_args.args[0].status is JobState.COMPLETED

    @pytest.mark.asyncio()
    async def test_empty_job_id_rejected(self, make_scripted) -> None:
        tracker = JobStatusTracker(make_scripted())
        with pytest.raises(ValueError):
            tracker.start("", lambda update: None)


class TestAttemptBudget:
    @pytest.mark.asyncio()
    async def test_timeout_after_max_attempts(self, make_scripted) -> None:
        transport = make_scripted(get=[PENDING])
        tracker = JobStatusTracker(transport)

        _handle, updates = await _track(tracker, max_attempts=2)

        assert transport.paths() == ["status/job-1"] * 2
        assert [u.status for u in updates] == [
            JobState.PENDING,
            JobState.PENDING,
            JobState.FAILED,
        ]
        assert "timed out" in updates[-1].error

    @pytest.mark.asyncio()
    async def test_single_attempt_budget(self, make_scripted) -> None:
        transport = make_scripted(get=[PROCESSING])
        tracker = JobStatusTracker(transport)

        _handle, updates = await _track(tracker, max_attempts=1)

        assert len(transport.paths()) == 1
        assert updates[-1].status is JobState.FAILED
        assert updates[-1].progress == 40


class TestCancellation:
    @pytest.mark.asyncio()
    async def test_cancel_suppresses_in_flight_response(self, make_scripted) -> None:
        transport = make_scripted(get=[COMPLETED])
        transport.gate = asyncio.Event()
        tracker = JobStatusTracker(transport)
        updates: list[JobUpdate] = []

        handle = tracker.start("job-1", updates.append, interval_s=0)
        await transport.request_started.wait()
        handle()
        transport.gate.set()
        await handle.wait()

        assert updates == []
        assert handle.cancelled
        assert handle.job.status is JobState.CANCELLED

    @pytest.mark.asyncio()
    async def test_cancel_is_idempotent(self, make_scripted) -> None:
        transport = make_scripted(get=[PENDING])
        tracker = JobStatusTracker(transport)

        handle = tracker.start("job-1", lambda update: None, interval_s=10)
        await transport.request_started.wait()

        assert handle.cancel() is True
        assert handle.cancel() is False
        await asyncio.wait_for(handle.wait(), timeout=1)

    @pytest.mark.asyncio()
    async def test_cancel_wakes_sleeping_poller(self, make_scripted) -> None:
        transport = make_scripted(get=[PENDING])
        tracker = JobStatusTracker(transport)

        handle = tracker.start("job-1", lambda update: None, interval_s=60)
        await transport.request_started.wait()
        await asyncio.sleep(0)
        assert tracker.cancel("job-1") is True

        await asyncio.wait_for(handle.wait(), timeout=1)
        assert transport.paths() == ["status/job-1"]

    @pytest.mark.asyncio()
    async def test_cancel_after_completion_keeps_state(self, make_scripted) -> None:
        tracker = JobStatusTracker(make_scripted(get=[COMPLETED]))

        handle, _updates = await _track(tracker)
        handle.cancel()

        assert handle.job.status is JobState.COMPLETED

    @pytest.mark.asyncio()
    async def test_restart_cancels_previous_loop(self, make_scripted) -> None:
        transport = make_scripted(get=[PENDING])
        tracker = JobStatusTracker(transport)

        first = tracker.start("job-1", lambda update: None, interval_s=60)
        second = tracker.start("job-1", lambda update: None, interval_s=60)

        assert first.cancelled
        assert tracker.get("job-1") is second
        tracker.cancel_all()
        await asyncio.gather(first.wait(), second.wait())


class TestErrors:
    @pytest.mark.asyncio()
    async def test_not_found_is_fatal(self, make_scripted) -> None:
        transport = make_scripted(get=[HttpError(404, payload={"detail": "no job"})])
        tracker = JobStatusTracker(transport)

        _handle, updates = await _track(tracker)

        assert len(transport.paths()) == 1
        assert len(updates) == 1
        assert updates[0].status is JobState.FAILED
        assert updates[0].error.startswith("Resource not found")

    @pytest.mark.asyncio()
    async def test_auth_error_is_fatal(self, make_scripted) -> None:
        transport = make_scripted(get=[AuthError("rejected")])
        tracker = JobStatusTracker(transport)

        _handle, updates = await _track(tracker)

        assert updates[-1].status is JobState.FAILED
        assert updates[-1].error == AUTH_MESSAGE

    @pytest.mark.asyncio()
    async def test_transient_errors_keep_polling(self, make_scripted) -> None:
        transport = make_scripted(
            get=[
                NetworkError("reset"),
                HttpError(503),
                RateLimitedError(0),
                COMPLETED,
            ]
        )
        tracker = JobStatusTracker(transport)

        _handle, updates = await _track(tracker)

        assert len(transport.paths()) == 4
        assert [u.status for u in updates] == [JobState.COMPLETED]

    @pytest.mark.asyncio()
    async def test_consecutive_errors_report_connection_lost(self, make_scripted) -> None:
        transport = make_scripted(get=[NetworkError("down")])
        tracker = JobStatusTracker(transport)

        _handle, updates = await _track(tracker, max_consecutive_errors=3)

        assert len(transport.paths()) == 3
        assert updates == [
            JobUpdate.failure("job-1", CONNECTION_LOST_MESSAGE),
        ]

    @pytest.mark.asyncio()
    async def test_bad_gateway_is_transient(self, make_scripted) -> None:
        transport = make_scripted(get=[HttpError(502), COMPLETED])
        tracker = JobStatusTracker(transport)

        _handle, updates = await _track(tracker)

        assert len(transport.paths()) == 2
        assert [u.status for u in updates] == [JobState.COMPLETED]

    @pytest.mark.asyncio()
    async def test_repeated_client_error_reports_its_message(self, make_scripted) -> None:
        transport = make_scripted(get=[HttpError(422, payload={"detail": "bad job id"})])
        tracker = JobStatusTracker(transport)

        _handle, updates = await _track(tracker, max_consecutive_errors=2)

        assert len(transport.paths()) == 2
        assert updates == [JobUpdate.failure("job-1", "bad job id")]

    @pytest.mark.asyncio()
    async def test_errors_count_against_attempt_budget(self, make_scripted) -> None:
        transport = make_scripted(get=[HttpError(500)])
        tracker = JobStatusTracker(transport)

        _handle, updates = await _track(tracker, max_attempts=2)

        assert len(transport.paths()) == 2
        assert "timed out" in updates[-1].error


class TestCaching:
    @pytest.mark.asyncio()
    async def test_completed_payload_cached_before_callback(self, make_scripted, cache) -> None:
        transport = make_scripted(get=[COMPLETED])
        tracker = JobStatusTracker(transport, cache)
        seen_in_cache: list[object] = []

        handle = tracker.start(
            "job-1", lambda update: seen_in_cache.append(cache.get("job-1")), interval_s=0
        )
        await handle.wait()

        assert seen_in_cache[0] is not None
        cached = cache.get("job-1")
        assert cached["status"] == "completed"
        assert cached["result"] == COMPLETED["result"]

    @pytest.mark.asyncio()
    async def test_cache_failure_does_not_interrupt_tracking(self, make_scripted, clock) -> None:
        from buildable_area.storage.result_cache import ResultCache
        from buildable_area.storage.stores import MemoryStore

        full_cache = ResultCache(MemoryStore(quota_bytes=1), clock=clock)
        tracker = JobStatusTracker(make_scripted(get=[COMPLETED]), full_cache)

        _handle, updates = await _track(tracker)

        assert updates[-1].status is JobState.COMPLETED
        assert full_cache.get("job-1") is None


class TestRegistry:
    @pytest.mark.asyncio()
    async def test_finished_jobs_are_forgotten(self, make_scripted) -> None:
        tracker = JobStatusTracker(make_scripted(get=[COMPLETED]))

        handles = [tracker.start(f"job-{i}", lambda update: None, interval_s=0) for i in range(50)]
        await asyncio.wait_for(asyncio.gather(*(h.wait() for h in handles)), timeout=2)
        await asyncio.sleep(0)

        assert all(tracker.get(f"job-{i}") is None for i in range(50))
        assert all(h.job.status is JobState.COMPLETED for h in handles)

    @pytest.mark.asyncio()
    async def test_replaced_loop_does_not_evict_its_successor(self, make_scripted) -> None:
        tracker = JobStatusTracker(make_scripted(get=[PROCESSING]))

        first = tracker.start("job-1", lambda update: None, interval_s=60)
        second = tracker.start("job-1", lambda update: None, interval_s=60)
        await asyncio.wait_for(first.wait(), timeout=1)
        await asyncio.sleep(0)

        assert tracker.get("job-1") is second
        tracker.cancel_all()
        await second.wait()
