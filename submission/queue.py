"""
Job Queue

Durably persists pending submissions and runs the submission pipeline
when the trigger releases a job. The value returned to the trigger is
"needs reschedule".
"""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Optional

from sqlalchemy import delete, func, select, update

from core.config import Config
from core.database import DatabaseManager, PendingJob
from core.logger import JobLogger
from submission.client import SubmissionClient
from submission.errors import BuildFailure
from submission.identity import IdentityProvider
from submission.models import OutcomeStatus, SubmissionOutcome, SubmissionRecord
from submission.payload import build_payload
from submission.sequence import SequenceGenerator
from submission.trigger import Trigger


class JobQueue:
    """Scheduler adapter between the telemetry core and a ``Trigger``."""

    def __init__(
        self,
        config: Config,
        db: DatabaseManager,
        trigger: Trigger,
        client: SubmissionClient,
        identity: IdentityProvider,
        sequence: Optional[SequenceGenerator] = None,
    ):
        self._config = config
        self._db = db
        self._trigger = trigger
        self._client = client
        self._identity = identity
        self._sequence = sequence or SequenceGenerator()
        self._logger = JobLogger("queue")

        self._trigger.bind(self.on_trigger, self.on_stop)

    def can_submit(self) -> bool:
        """Both enqueue preconditions: submit preference and platform level."""
        return self._config.can_submit()

    async def enqueue(self, record: SubmissionRecord) -> Optional[int]:
        """
        Persist a record and hand it to the trigger.

        Returns:
            The assigned job id, or None when submission is disabled
        """
        if not self.can_submit():
            self._logger.debug("enqueue_skipped", kind=record.kind.value)
            return None

        job_id = self._sequence.next()
        requires_idle = not self._config.scheduler.debug_build

        async with self._db.session() as session:
            session.add(
                PendingJob(
                    job_id=job_id,
                    kind=record.kind.value,
                    fields=record.to_bundle(),
                    created_at=record.created_at,
                    requires_unmetered=True,
                    requires_idle=requires_idle,
                )
            )

        record.job_id = job_id
        self._trigger.schedule_when(job_id, network_unmetered=True, device_idle=requires_idle)
        self._logger.scheduled(
            job_id=job_id,
            kind=record.kind.value,
            requires_unmetered=True,
            requires_idle=requires_idle,
        )
        return job_id

    async def on_trigger(self, job_id: int) -> bool:
        """
        Run the pipeline for one released job.

        Returns:
            True when the trigger must reschedule the job
        """
        job = await self._load(job_id)
        if job is None:
            self._logger.warning("job_missing", job_id=job_id)
            return False

        self._logger.started(job_id=job_id, attempt=job.attempts + 1)

        try:
            record = SubmissionRecord.from_bundle(
                job.kind, job.fields, created_at=job.created_at, job_id=job_id
            )
            payload = build_payload(record.fields, self._identity.current())
            outcome = await asyncio.to_thread(self._client.submit, payload)
        except (BuildFailure, ValueError) as e:
            self._logger.exception("job_build_failed", job_id=job_id)
            outcome = SubmissionOutcome.fatal(str(e))

        return await self._complete(job_id, outcome)

    def on_stop(self, job_id: int) -> bool:
        """The host tore down a running job; the in-flight call keeps going."""
        self._logger.info("job_stop_requested", job_id=job_id)
        return True

    async def restore(self) -> int:
        """Hand every persisted job back to the trigger after a restart."""
        async with self._db.session() as session:
            result = await session.execute(select(PendingJob).order_by(PendingJob.id))
            jobs = list(result.scalars())

        if not jobs:
            return 0

        self._sequence.advance_past(max(job.job_id for job in jobs))
        for job in jobs:
            self._trigger.schedule_when(
                job.job_id,
                network_unmetered=job.requires_unmetered,
                device_idle=job.requires_idle,
            )
        self._logger.info("jobs_restored", count=len(jobs))
        return len(jobs)

    async def pending(self) -> list[SubmissionRecord]:
        """List persisted records, oldest first."""
        async with self._db.session() as session:
            result = await session.execute(select(PendingJob).order_by(PendingJob.id))
            return [
                SubmissionRecord.from_bundle(
                    job.kind, job.fields, created_at=job.created_at, job_id=job.job_id
                )
                for job in result.scalars()
            ]

    async def count(self) -> int:
        async with self._db.session() as session:
            result = await session.execute(select(func.count()).select_from(PendingJob))
            return result.scalar_one()

    async def _load(self, job_id: int) -> Optional[PendingJob]:
        async with self._db.session() as session:
            result = await session.execute(
                select(PendingJob).where(PendingJob.job_id == job_id)
            )
            return result.scalars().first()

    async def _complete(self, job_id: int, outcome: SubmissionOutcome) -> bool:
        reschedule = outcome.needs_reschedule

        async with self._db.session() as session:
            if reschedule:
                await session.execute(
                    update(PendingJob)
                    .where(PendingJob.job_id == job_id)
                    .values(
                        attempts=PendingJob.attempts + 1,
                        last_error=outcome.reason,
                        last_attempt_at=datetime.utcnow(),
                    )
                )
            else:
                await session.execute(delete(PendingJob).where(PendingJob.job_id == job_id))

        if outcome.status is OutcomeStatus.FATAL:
            self._logger.error("job_dropped", job_id=job_id, reason=outcome.reason)

        self._logger.finished(
            job_id=job_id,
            status=outcome.status.value,
            reschedule=reschedule,
            reason=outcome.reason,
        )
        return reschedule
