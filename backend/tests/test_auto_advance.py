import asyncio

import pytest

from imposter.core.config import settings
from imposter.core.exceptions import TransientStoreError
from imposter.models.round_model import RoundPhase
from imposter.services.auto_advance import AutoAdvanceScheduler
from imposter.services.round_controller import RoundController


@pytest.fixture
async def scheduler(session_factory, notifier, clock):
    scheduler = AutoAdvanceScheduler(session_factory=session_factory, notifier=notifier, clock=clock)
    yield scheduler
    scheduler.cancel_all()
    await asyncio.sleep(0)


async def _start(controller, room, host):
    started = await controller.start_round(room.id, 3, actor_token=host.write_token)
    return started.round_id


async def test_scheduled_advance_fires(scheduler, controller, room, host, notifier):
    round_id = await _start(controller, room, host)

    scheduler.schedule(round_id, RoundPhase.ROLE_REVEAL, 0, "deadline")
    task = scheduler.pending[round_id][2]
    await task

    assert controller.store.get_round(round_id).phase is RoundPhase.ANSWER_ENTRY
    # 新阶段的截止时间已经重新排期
    assert scheduler.pending[round_id][0] is RoundPhase.ANSWER_ENTRY
    assert notifier.of_type("RoundPhaseChanged")[-1].payload["phase"] == "answer_entry"


async def test_stale_scheduled_advance_is_noop(scheduler, controller, room, host):
    round_id = await _start(controller, room, host)

    scheduler.schedule(round_id, RoundPhase.VOTE, 0, "all_voted")
    await scheduler.pending[round_id][2]

    assert controller.store.get_round(round_id).phase is RoundPhase.ROLE_REVEAL
    assert round_id not in scheduler.pending


async def test_cancel_pending_advance(scheduler, controller, room, host):
    round_id = await _start(controller, room, host)

    scheduler.schedule(round_id, RoundPhase.ROLE_REVEAL, 30, "deadline")
    task = scheduler.pending[round_id][2]
    scheduler.cancel(round_id)

    with pytest.raises(asyncio.CancelledError):
        await task
    assert round_id not in scheduler.pending
    assert controller.store.get_round(round_id).phase is RoundPhase.ROLE_REVEAL


async def test_earlier_trigger_replaces_later_one(scheduler, controller, room, host):
    round_id = await _start(controller, room, host)

    scheduler.schedule(round_id, RoundPhase.ROLE_REVEAL, 30, "deadline")
    first = scheduler.pending[round_id][2]
    scheduler.schedule(round_id, RoundPhase.ROLE_REVEAL, 60, "deadline")
    assert scheduler.pending[round_id][2] is first

    scheduler.schedule(round_id, RoundPhase.ROLE_REVEAL, 5, "all_answered")
    assert scheduler.pending[round_id][2] is not first
    with pytest.raises(asyncio.CancelledError):
        await first


async def test_phase_change_cancels_pending_advance(scheduler, db, notifier, clock, room, host):
    controller = RoundController(db, notifier=notifier, clock=clock, scheduler=scheduler)
    round_id = await _start(controller, room, host)
    task = scheduler.pending[round_id][2]

    await controller.advance_phase(round_id, host.write_token)

    with pytest.raises(asyncio.CancelledError):
        await task
    assert scheduler.pending[round_id][0] is RoundPhase.ANSWER_ENTRY


async def test_reconcile_advances_expired_rounds(scheduler, controller, room, host, fake_clock):
    round_id = await _start(controller, room, host)

    assert await scheduler.reconcile() == 1
    assert controller.store.get_round(round_id).phase is RoundPhase.ROLE_REVEAL

    fake_clock.advance(settings.ROLE_REVEAL_SECONDS)
    await scheduler.reconcile()
    assert controller.store.get_round(round_id).phase is RoundPhase.ANSWER_ENTRY


async def test_transient_errors_are_retried(scheduler, controller, room, host, monkeypatch):
    round_id = await _start(controller, room, host)
    monkeypatch.setattr(settings, "STORE_RETRY_BASE_DELAY", 0)

    calls = []
    original = RoundController.advance_due

    async def flaky(self, round_obj, reason):
        calls.append(reason)
        if len(calls) == 1:
            raise TransientStoreError("数据库忙")
        return await original(self, round_obj, reason)

    monkeypatch.setattr(RoundController, "advance_due", flaky)

    scheduler.schedule(round_id, RoundPhase.ROLE_REVEAL, 0, "deadline")
    await scheduler.pending[round_id][2]

    assert calls == ["deadline", "deadline"]
    assert controller.store.get_round(round_id).phase is RoundPhase.ANSWER_ENTRY
