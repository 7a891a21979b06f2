"""
Trigger Adapters

A trigger decides *when* a pending job may run. The job queue only talks
to the abstract ``Trigger``; host-specific adapters decide how network and
power conditions are observed.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional

from core.logger import get_logger

TriggerCallback = Callable[[int], Awaitable[bool]]
StopCallback = Callable[[int], bool]
Probe = Callable[[], bool]


@dataclass
class TriggerHandle:
    """A job registered with a trigger."""

    job_id: int
    requires_unmetered: bool
    requires_idle: bool
    attempts: int = 0
    not_before: float = 0.0
    task: Optional[asyncio.Task] = field(default=None, repr=False)

    @property
    def is_running(self) -> bool:
        return self.task is not None and not self.task.done()


@dataclass
class ConditionProbe:
    """Host-provided views of the network and power state."""

    network_unmetered: Probe = lambda: True
    device_idle: Probe = lambda: True

    def satisfied(self, handle: TriggerHandle) -> bool:
        if handle.requires_unmetered and not self.network_unmetered():
            return False
        if handle.requires_idle and not self.device_idle():
            return False
        return True


class Trigger(ABC):
    """Releases pending jobs to a callback once their conditions hold."""

    def __init__(self) -> None:
        self._callback: Optional[TriggerCallback] = None
        self._on_stop: Optional[StopCallback] = None

    def bind(self, callback: TriggerCallback, on_stop: Optional[StopCallback] = None) -> None:
        """
        Register the job callbacks.

        Args:
            callback: Runs a job, returns True when it must be rescheduled
            on_stop: Told when a running job is torn down, returns True
                when the job must be rescheduled
        """
        self._callback = callback
        self._on_stop = on_stop

    @abstractmethod
    def schedule_when(
        self,
        job_id: int,
        network_unmetered: bool,
        device_idle: bool,
    ) -> TriggerHandle:
        """Register a job; replaces any earlier registration of the same id."""
        pass

    @abstractmethod
    def cancel(self, job_id: int) -> None:
        """Forget a job."""
        pass

    async def start(self) -> None:
        """Start observing conditions."""

    async def stop(self) -> None:
        """Stop observing conditions."""


class PollingTrigger(Trigger):
    """
    In-process trigger polling condition probes on a timer.

    Jobs whose callback asks for a reschedule are retried with exponential
    backoff, capped at ``max_backoff``.
    """

    def __init__(
        self,
        conditions: Optional[ConditionProbe] = None,
        poll_interval: float = 30.0,
        initial_backoff: float = 30.0,
        max_backoff: float = 5 * 60 * 60,
        stop_timeout: float = 30.0,
    ):
        super().__init__()
        self._conditions = conditions or ConditionProbe()
        self._poll_interval = poll_interval
        self._initial_backoff = initial_backoff
        self._max_backoff = max_backoff
        self._stop_timeout = stop_timeout
        self._handles: dict[int, TriggerHandle] = {}
        self._poll_task: Optional[asyncio.Task] = None
        self._logger = get_logger("crowdsubmit.trigger")

    @property
    def handles(self) -> dict[int, TriggerHandle]:
        return self._handles.copy()

    @property
    def is_running(self) -> bool:
        return self._poll_task is not None and not self._poll_task.done()

    def schedule_when(
        self,
        job_id: int,
        network_unmetered: bool,
        device_idle: bool,
    ) -> TriggerHandle:
        handle = TriggerHandle(
            job_id=job_id,
            requires_unmetered=network_unmetered,
            requires_idle=device_idle,
        )
        self._handles[job_id] = handle
        return handle

    def cancel(self, job_id: int) -> None:
        self._handles.pop(job_id, None)

    def backoff(self, attempts: int) -> float:
        """Delay before the next run after ``attempts`` failed runs."""
        if attempts <= 0:
            return 0.0
        return min(self._initial_backoff * 2 ** (attempts - 1), self._max_backoff)

    async def start(self) -> None:
        if self.is_running:
            return
        self._poll_task = asyncio.create_task(self._poll_loop())
        self._logger.info("trigger_started", interval=self._poll_interval)

    async def stop(self) -> None:
        if self._poll_task:
            self._poll_task.cancel()
            try:
                await self._poll_task
            except asyncio.CancelledError:
                pass
            self._poll_task = None

        running = [h for h in self._handles.values() if h.is_running]
        for handle in running:
            reschedule = self._on_stop(handle.job_id) if self._on_stop else True
            self._logger.info("job_stopped", job_id=handle.job_id, reschedule=reschedule)

        # In-flight submissions get up to stop_timeout to finish.
        tasks = [h.task for h in running if h.task is not None]
        if tasks:
            _, pending = await asyncio.wait(tasks, timeout=self._stop_timeout)
            if pending:
                abandoned = sorted(h.job_id for h in running if h.task in pending)
                self._logger.warning("trigger_stop_timeout", abandoned=abandoned)
                # Worker threads keep their request; only the completion is
                # dropped, so the job stays registered and persisted.
                for task in pending:
                    task.cancel()
                await asyncio.gather(*pending, return_exceptions=True)

        self._logger.info("trigger_stopped")

    async def _poll_loop(self) -> None:
        while True:
            try:
                self.poll_once()
            except Exception as e:
                self._logger.error("trigger_poll_error", error=str(e), exc_info=True)
            await asyncio.sleep(self._poll_interval)

    def poll_once(self) -> int:
        """Launch every due job whose conditions hold; returns how many."""
        if self._callback is None:
            raise RuntimeError("Trigger has no callback bound")

        now = asyncio.get_running_loop().time()
        launched = 0
        for handle in list(self._handles.values()):
            if handle.is_running or now < handle.not_before:
                continue
            if not self._conditions.satisfied(handle):
                continue
            handle.task = asyncio.create_task(self._run(handle))
            launched += 1
        return launched

    async def fire(self, job_id: int) -> bool:
        """Run one job immediately, ignoring conditions and backoff."""
        handle = self._handles.get(job_id)
        if handle is None:
            raise KeyError(f"Unknown job: {job_id}")
        if handle.is_running:
            return await handle.task
        handle.task = asyncio.create_task(self._run(handle))
        return await handle.task

    async def wait_idle(self) -> None:
        """Wait for all running jobs to finish."""
        tasks = [h.task for h in self._handles.values() if h.is_running]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _run(self, handle: TriggerHandle) -> bool:
        try:
            reschedule = await self._callback(handle.job_id)
        except Exception as e:
            self._logger.error(
                "job_callback_error",
                job_id=handle.job_id,
                error=str(e),
                exc_info=True,
            )
            reschedule = True

        if self._handles.get(handle.job_id) is not handle:
            return reschedule

        if reschedule:
            handle.attempts += 1
            delay = self.backoff(handle.attempts)
            handle.not_before = asyncio.get_running_loop().time() + delay
            self._logger.info(
                "job_rescheduled",
                job_id=handle.job_id,
                attempts=handle.attempts,
                delay=delay,
            )
        else:
            self._handles.pop(handle.job_id, None)
        return reschedule
