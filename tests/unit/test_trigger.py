"""
Unit tests for the polling trigger.
"""

import asyncio

import pytest

from submission.sequence import SequenceGenerator
from submission.trigger import ConditionProbe, PollingTrigger, TriggerHandle


class Conditions:
    """Mutable network/idle state for a ConditionProbe."""

    def __init__(self, unmetered: bool = True, idle: bool = True):
        self.unmetered = unmetered
        self.idle = idle

    def probe(self) -> ConditionProbe:
        return ConditionProbe(
            network_unmetered=lambda: self.unmetered,
            device_idle=lambda: self.idle,
        )


def recording_callback(results=None):
    calls = []

    async def callback(job_id: int) -> bool:
        calls.append(job_id)
        if results:
            return results.pop(0)
        return False

    return callback, calls


class TestConditionProbe:
    """Tests for condition evaluation."""

    def test_all_requirements_met(self):
        handle = TriggerHandle(job_id=1, requires_unmetered=True, requires_idle=True)
        assert Conditions().probe().satisfied(handle) is True

    def test_metered_network_blocks(self):
        handle = TriggerHandle(job_id=1, requires_unmetered=True, requires_idle=False)
        assert Conditions(unmetered=False).probe().satisfied(handle) is False

    def test_idle_waived(self):
        handle = TriggerHandle(job_id=1, requires_unmetered=True, requires_idle=False)
        assert Conditions(idle=False).probe().satisfied(handle) is True

    def test_idle_required(self):
        handle = TriggerHandle(job_id=1, requires_unmetered=True, requires_idle=True)
        assert Conditions(idle=False).probe().satisfied(handle) is False


class TestPollingTrigger:
    """Tests for PollingTrigger."""

    def test_backoff(self):
        trigger = PollingTrigger(initial_backoff=30.0, max_backoff=100.0)
        assert trigger.backoff(0) == 0.0
        assert trigger.backoff(1) == 30.0
        assert trigger.backoff(2) == 60.0
        assert trigger.backoff(3) == 100.0

    def test_schedule_replaces_existing(self):
        trigger = PollingTrigger()
        trigger.schedule_when(1, network_unmetered=True, device_idle=True)
        trigger.schedule_when(1, network_unmetered=True, device_idle=False)
        assert len(trigger.handles) == 1
        assert trigger.handles[1].requires_idle is False

    @pytest.mark.asyncio
    async def test_poll_requires_callback(self):
        trigger = PollingTrigger()
        with pytest.raises(RuntimeError):
            trigger.poll_once()

    @pytest.mark.asyncio
    async def test_fires_when_conditions_hold(self):
        trigger = PollingTrigger(conditions=Conditions().probe())
        callback, calls = recording_callback()
        trigger.bind(callback)
        trigger.schedule_when(1, network_unmetered=True, device_idle=True)

        assert trigger.poll_once() == 1
        await trigger.wait_idle()

        assert calls == [1]
        assert trigger.handles == {}

    @pytest.mark.asyncio
    async def test_waits_for_conditions(self):
        conditions = Conditions(unmetered=False, idle=False)
        trigger = PollingTrigger(conditions=conditions.probe())
        callback, calls = recording_callback()
        trigger.bind(callback)
        trigger.schedule_when(1, network_unmetered=True, device_idle=True)

        assert trigger.poll_once() == 0
        conditions.unmetered = True
        assert trigger.poll_once() == 0
        conditions.idle = True
        assert trigger.poll_once() == 1
        await trigger.wait_idle()
        assert calls == [1]

    @pytest.mark.asyncio
    async def test_debug_job_ignores_idle(self):
        trigger = PollingTrigger(conditions=Conditions(idle=False).probe())
        callback, calls = recording_callback()
        trigger.bind(callback)
        trigger.schedule_when(1, network_unmetered=True, device_idle=False)

        assert trigger.poll_once() == 1
        await trigger.wait_idle()
        assert calls == [1]

    @pytest.mark.asyncio
    async def test_reschedule_applies_backoff(self):
        trigger = PollingTrigger(initial_backoff=60.0)
        callback, calls = recording_callback(results=[True])
        trigger.bind(callback)
        trigger.schedule_when(1, network_unmetered=True, device_idle=True)

        trigger.poll_once()
        await trigger.wait_idle()

        handle = trigger.handles[1]
        assert handle.attempts == 1
        assert handle.not_before > asyncio.get_running_loop().time()
        # Still backing off
        assert trigger.poll_once() == 0

    @pytest.mark.asyncio
    async def test_callback_error_reschedules(self):
        trigger = PollingTrigger()

        async def broken(job_id: int) -> bool:
            raise RuntimeError("boom")

        trigger.bind(broken)
        trigger.schedule_when(1, network_unmetered=True, device_idle=True)
        assert await trigger.fire(1) is True
        assert trigger.handles[1].attempts == 1

    @pytest.mark.asyncio
    async def test_concurrent_jobs(self):
        release = asyncio.Event()
        started = []

        async def slow(job_id: int) -> bool:
            started.append(job_id)
            await release.wait()
            return False

        trigger = PollingTrigger()
        trigger.bind(slow)
        for job_id in (1, 2, 3):
            trigger.schedule_when(job_id, network_unmetered=True, device_idle=True)

        assert trigger.poll_once() == 3
        await asyncio.sleep(0)
        assert sorted(started) == [1, 2, 3]
        # Running jobs are not launched twice
        assert trigger.poll_once() == 0

        release.set()
        await trigger.wait_idle()
        assert trigger.handles == {}

    @pytest.mark.asyncio
    async def test_fire_unknown_job(self):
        trigger = PollingTrigger()
        trigger.bind(recording_callback()[0])
        with pytest.raises(KeyError):
            await trigger.fire(42)

    @pytest.mark.asyncio
    async def test_start_polls(self):
        trigger = PollingTrigger(poll_interval=0.01)
        callback, calls = recording_callback()
        trigger.bind(callback)
        trigger.schedule_when(5, network_unmetered=True, device_idle=True)

        await trigger.start()
        assert trigger.is_running
        for _ in range(100):
            if calls:
                break
            await asyncio.sleep(0.01)
        await trigger.stop()

        assert calls == [5]
        assert trigger.is_running is False

    @pytest.mark.asyncio
    async def test_stop_notifies_running_jobs_without_cancelling(self):
        release = asyncio.Event()
        finished = []
        stopped = []

        async def slow(job_id: int) -> bool:
            await release.wait()
            finished.append(job_id)
            return False

        def on_stop(job_id: int) -> bool:
            stopped.append(job_id)
            release.set()
            return True

        trigger = PollingTrigger(stop_timeout=1.0)
        trigger.bind(slow, on_stop)
        trigger.schedule_when(1, network_unmetered=True, device_idle=True)
        trigger.poll_once()
        await asyncio.sleep(0)

        await trigger.stop()
        assert stopped == [1]
        assert finished == [1]

    @pytest.mark.asyncio
    async def test_stop_timeout_abandons_completion(self):
        finished = []

        async def hanging(job_id: int) -> bool:
            await asyncio.Event().wait()
            finished.append(job_id)
            return False

        trigger = PollingTrigger(stop_timeout=0.05)
        trigger.bind(hanging, lambda job_id: True)
        trigger.schedule_when(3, network_unmetered=True, device_idle=True)
        trigger.poll_once()
        await asyncio.sleep(0)
        task = trigger.handles[3].task

        await trigger.stop()

        assert task.done()
        assert task.cancelled()
        assert finished == []
        assert 3 in trigger.handles


class TestSequenceGenerator:
    """Tests for the job id sequence."""

    def test_monotonic(self):
        sequence = SequenceGenerator()
        assert [sequence.next() for _ in range(3)] == [1, 2, 3]

    def test_advance_past(self):
        sequence = SequenceGenerator()
        sequence.next()
        sequence.advance_past(10)
        assert sequence.next() == 11
        sequence.advance_past(5)
        assert sequence.next() == 12

    def test_thread_safe(self):
        from concurrent.futures import ThreadPoolExecutor

        sequence = SequenceGenerator()
        with ThreadPoolExecutor(max_workers=8) as pool:
            ids = list(pool.map(lambda _: sequence.next(), range(1000)))
        assert sorted(ids) == list(range(1, 1001))
