# tests/unit/pipeline/test_unit_posting_pipeline.py — v1
"""Tests for pipeline/posting_pipeline.py — the async posting driver."""

from __future__ import annotations

import asyncio
from datetime import timedelta

import pytest

from partledger.core.errors import ContentValidationError, PipelineBusyError
from partledger.core.models import PublishResult, VerificationReport
from partledger.manifest.builder import update_after_publish
from partledger.pipeline.posting_pipeline import PostingPipeline, default_owner
from partledger.storage.json_store import JsonStateStore


@pytest.fixture
def store(tmp_path):
    return JsonStateStore(tmp_path / "store")


@pytest.fixture
def make_pipeline(sample_manifest, sample_texts, settings, fast_policy, fake_sleep, fixed_clock, store):
    def _make(transport, **kwargs):
        kwargs.setdefault("store", store)
        kwargs.setdefault("settings", settings)
        kwargs.setdefault("policy", fast_policy)
        kwargs.setdefault("owner", "me")
        kwargs.setdefault("sleep", fake_sleep)
        kwargs.setdefault("clock", fixed_clock)
        return PostingPipeline(
            kwargs.pop("manifest", sample_manifest),
            kwargs.pop("parts", sample_texts),
            transport,
            kwargs.pop("author", "alice"),
            **kwargs,
        )

    return _make


class HangingTransport:
    """Publishes nothing until ``release`` is set."""

    def __init__(self) -> None:
        self.called = asyncio.Event()
        self.release = asyncio.Event()
        self.calls = 0

    async def __call__(self, payload):
        self.calls += 1
        self.called.set()
        await self.release.wait()
        return PublishResult(locator=payload.locator, author=payload.author)


class TestConstruction:
    def test_part_count_mismatch(self, make_pipeline, transport, sample_texts):
        with pytest.raises(ContentValidationError, match="3"):
            make_pipeline(transport, parts=sample_texts[:2])

    def test_author_required(self, make_pipeline, transport):
        with pytest.raises(ContentValidationError, match="author"):
            make_pipeline(transport, author="")

    def test_default_owner_format(self):
        host, pid, suffix = default_owner().rsplit(":", 2)
        assert host and pid.isdigit() and len(suffix) == 8


class TestHappyPath:
    @pytest.mark.asyncio
    async def test_publishes_all_parts(self, make_pipeline, transport, fake_sleep, store, recorded_events):
        pipeline = make_pipeline(transport, observer=recorded_events.append)
        outcome = await pipeline.start()

        assert outcome == "completed"
        assert transport.published_parts == [1, 2, 3]
        root = transport.payloads[0].locator
        assert [p.parent_locator for p in transport.payloads[1:]] == [root, root]
        # Two cooldowns of two units each.
        assert len(fake_sleep.calls) == 4
        assert recorded_events[0].phase == "preparing"
        assert recorded_events[-1].phase == "success"
        assert pipeline.manifest.is_complete
        assert pipeline.get_state().posted_count == 3
        assert await store.load_state(pipeline.series_id) is None
        assert await store.load_parts(pipeline.series_id) is None

    @pytest.mark.asyncio
    async def test_async_observer_and_failing_observer(self, make_pipeline, transport):
        seen = []

        async def observer(event):
            seen.append(event.phase)
            raise RuntimeError("observer bug")

        outcome = await make_pipeline(transport, observer=observer).start()
        assert outcome == "completed"
        assert "cooldown" in seen

    @pytest.mark.asyncio
    async def test_without_store(self, make_pipeline, transport):
        assert await make_pipeline(transport, store=None).start() == "completed"


class TestFailures:
    @pytest.mark.asyncio
    async def test_transient_failures_pause_at_part(
        self, make_pipeline, transport_factory, transient_error, fake_sleep, store
    ):
        transport = transport_factory({3: [transient_error] * 3})
        pipeline = make_pipeline(transport)
        outcome = await pipeline.start()

        assert outcome == "paused"
        state = pipeline.state
        assert state.current_part == 3
        assert state.attempts == {3: 3}
        assert len(state.errors) == 3
        assert transport.published_parts == [1, 2, 3, 3, 3]
        # Four cooldown units, then backoffs of 1 and 3 units.
        assert len(fake_sleep.calls) == 8

        persisted = await store.load_state(pipeline.series_id)
        assert persisted.status == "paused"
        assert persisted.state.attempts == {3: 3}
        assert persisted.state.active_owner is None

    @pytest.mark.asyncio
    async def test_snapshot_stamped_with_injected_clock(
        self, make_pipeline, transport_factory, transient_error, store, fixed_clock
    ):
        pipeline = make_pipeline(transport_factory({2: [transient_error] * 3}))
        assert await pipeline.start() == "paused"
        persisted = await store.load_state(pipeline.series_id)
        assert persisted.saved_at == fixed_clock()

    @pytest.mark.asyncio
    async def test_resume_after_pause(self, make_pipeline, transport_factory, transient_error):
        transport = transport_factory({3: [transient_error] * 3})
        pipeline = make_pipeline(transport)
        await pipeline.start()

        assert await pipeline.resume() == "completed"
        assert transport.published_parts == [1, 2, 3, 3, 3, 3]

    @pytest.mark.asyncio
    async def test_permanent_failure_stops_without_retry(
        self, make_pipeline, transport_factory, auth_error, fake_sleep
    ):
        transport = transport_factory({2: [auth_error]})
        pipeline = make_pipeline(transport)
        outcome = await pipeline.start()

        assert outcome == "failed"
        assert pipeline.state.failed is True
        assert pipeline.state.attempts == {2: 1}
        assert transport.published_parts == [1, 2]
        assert len(fake_sleep.calls) == 2

        # Failed is terminal until the failure is reset.
        assert await pipeline.start() == "failed"
        assert transport.published_parts == [1, 2]
        await pipeline.reset_failure()
        assert await pipeline.start() == "completed"
        assert transport.published_parts == [1, 2, 2, 3]

    @pytest.mark.asyncio
    async def test_result_without_locator_is_permanent(self, make_pipeline):
        pipeline = make_pipeline(lambda payload: {"author": "alice"})
        assert await pipeline.start() == "failed"
        assert "missing locator" in pipeline.state.errors[0].message


class TestInterruptions:
    @pytest.mark.asyncio
    async def test_cancel_during_cooldown(self, make_pipeline, transport, store):
        pipeline = None

        async def observer(event):
            if event.phase == "cooldown" and event.part_number == 1:
                await pipeline.cancel()

        pipeline = make_pipeline(transport, observer=observer)
        assert await pipeline.start() == "cancelled"
        assert pipeline.state.cancelled is True
        assert pipeline.manifest.part(1).status == "posted"
        assert (await store.load_state(pipeline.series_id)).status == "cancelled"

        # Resuming never republishes a posted part.
        assert await pipeline.resume() == "completed"
        assert transport.published_parts == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_cancel_aborts_inflight_publish(self, make_pipeline):
        transport = HangingTransport()
        pipeline = make_pipeline(transport)
        task = asyncio.create_task(pipeline.start())
        await transport.called.wait()

        with pytest.raises(PipelineBusyError):
            await pipeline.start()

        await pipeline.cancel()
        assert await asyncio.wait_for(task, timeout=5) == "cancelled"
        assert pipeline.manifest.part(1).status == "pending"
        assert pipeline.running is False

    @pytest.mark.asyncio
    async def test_pause_waits_for_inflight_publish(self, make_pipeline):
        transport = HangingTransport()
        pipeline = make_pipeline(transport)
        task = asyncio.create_task(pipeline.start())
        await transport.called.wait()

        await pipeline.pause()
        transport.release.set()
        assert await asyncio.wait_for(task, timeout=5) == "paused"
        assert pipeline.manifest.part(1).status == "posted"
        assert transport.calls == 1

    @pytest.mark.asyncio
    async def test_idle_pause_and_cancel(self, make_pipeline, transport, store):
        pipeline = make_pipeline(transport)
        await pipeline.pause()
        assert pipeline.state.paused is True
        assert (await store.load_state(pipeline.series_id)).status == "paused"

        await pipeline.cancel()
        assert pipeline.state.status == "cancelled"
        assert transport.payloads == []

    @pytest.mark.asyncio
    async def test_cancel_after_completion_ignored(self, make_pipeline, transport):
        pipeline = make_pipeline(transport)
        await pipeline.start()
        await pipeline.cancel()
        assert pipeline.state.status == "completed"


class TestLock:
    @pytest.mark.asyncio
    async def test_live_owner_blocks_start(self, make_pipeline, transport, store, snapshot_factory, fixed_clock):
        await store.save_state(
            snapshot_factory(active_owner="other", heartbeat_at=fixed_clock() - timedelta(seconds=30))
        )
        with pytest.raises(PipelineBusyError, match="other"):
            await make_pipeline(transport).start()
        assert transport.payloads == []

    @pytest.mark.asyncio
    async def test_stale_owner_is_taken_over(self, make_pipeline, transport, store, snapshot_factory, fixed_clock):
        await store.save_state(
            snapshot_factory(active_owner="other", heartbeat_at=fixed_clock() - timedelta(seconds=600))
        )
        assert await make_pipeline(transport).start() == "completed"


class TestRestore:
    @pytest.mark.asyncio
    async def test_from_snapshot(
        self, make_pipeline, transport_factory, transport, transient_error, store,
        sample_texts, settings, fast_policy, fake_sleep, fixed_clock,
    ):
        first = make_pipeline(transport_factory({2: [transient_error] * 3}))
        assert await first.start() == "paused"

        snapshot = await PostingPipeline.load_persisted(store, first.series_id)
        resumed = PostingPipeline.from_snapshot(
            snapshot, sample_texts, transport,
            store=store, settings=settings, policy=fast_policy,
            sleep=fake_sleep, clock=fixed_clock,
        )
        assert resumed.state.current_part == 2
        assert await resumed.start() == "completed"
        assert transport.published_parts == [2, 3]
        assert transport.payloads[0].parent_locator == snapshot.state.root_locator

    def test_restore_state_rejects_other_series(self, make_pipeline, transport, snapshot_factory):
        pipeline = make_pipeline(transport)
        with pytest.raises(ContentValidationError):
            pipeline.restore_state(snapshot_factory("8a1d2e3f-4b5c-4d6e-9f70-8192a3b4c5d6"))

    def test_restore_state(self, make_pipeline, transport, snapshot_factory):
        pipeline = make_pipeline(transport)
        pipeline.restore_state(snapshot_factory(current_part=2, attempts={2: 2}))
        assert pipeline.state.current_part == 2
        assert pipeline.get_state().attempts == {2: 2}


class TestReconcile:
    @pytest.mark.asyncio
    async def test_failed_parts_reset(self, make_pipeline, transport, sample_manifest, store):
        manifest = update_after_publish(sample_manifest, 1, "root-1", "alice")
        manifest = update_after_publish(manifest, 2, "loc-2", "alice")
        manifest = manifest.model_copy(update={"root_locator": "root-1"})
        pipeline = make_pipeline(transport, manifest=manifest)

        await pipeline.reconcile(VerificationReport(verified=[1], failed=[2], missing=[3]))
        assert pipeline.manifest.part(2).status == "pending"
        assert pipeline.state.current_part == 2
        assert pipeline.state.root_locator == "root-1"
        assert (await store.load_state(pipeline.series_id)).state.current_part == 2

        assert await pipeline.start() == "completed"
        assert transport.published_parts == [2, 3]

    @pytest.mark.asyncio
    async def test_failed_root_clears_locator(self, make_pipeline, transport, sample_manifest):
        manifest = update_after_publish(sample_manifest, 1, "root-1", "alice")
        pipeline = make_pipeline(transport, manifest=manifest.model_copy(update={"root_locator": "root-1"}))
        await pipeline.reconcile(VerificationReport(failed=[1], missing=[2, 3]))
        assert pipeline.state.current_part == 1
        assert pipeline.state.root_locator is None
        assert pipeline.manifest.root_locator is None

    @pytest.mark.asyncio
    async def test_live_owner_blocks_reconcile(
        self, make_pipeline, transport, sample_manifest, store, snapshot_factory, fixed_clock
    ):
        await store.save_state(
            snapshot_factory(
                current_part=3, active_owner="other", heartbeat_at=fixed_clock() - timedelta(seconds=30)
            )
        )
        manifest = update_after_publish(sample_manifest, 1, "root-1", "alice")
        manifest = update_after_publish(manifest, 2, "loc-2", "alice")
        pipeline = make_pipeline(transport, manifest=manifest)

        with pytest.raises(PipelineBusyError, match="other"):
            await pipeline.reconcile(VerificationReport(verified=[1], failed=[2], missing=[3]))

        assert pipeline.manifest.part(2).status == "posted"
        stored = await store.load_state(pipeline.series_id)
        assert stored.state.current_part == 3
        assert stored.state.active_owner == "other"
