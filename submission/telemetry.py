"""
CrowdSubmit Telemetry Core

Entry points used by the firewall: record rule changes and host access
decisions, and tell the UI whether submission is available. Also owns
the lifecycle of the database, the queue and the trigger.
"""

from __future__ import annotations

from typing import Optional

from core.config import Config, get_config
from core.database import DatabaseManager
from core.logger import get_logger
from submission.client import SubmissionClient
from submission.identity import FileInstallationId, IdentityProvider
from submission.models import ConnectionDecision, Rule
from submission.payload import host_record, rule_record
from submission.queue import JobQueue
from submission.sequence import SequenceGenerator
from submission.trigger import ConditionProbe, PollingTrigger, Trigger


class TelemetryCore:
    """
    Binds payload building, submission and the job queue together.

    Collaborators may be injected; anything left out is built from the
    configuration.
    """

    def __init__(
        self,
        config: Optional[Config] = None,
        db: Optional[DatabaseManager] = None,
        trigger: Optional[Trigger] = None,
        client: Optional[SubmissionClient] = None,
        identity: Optional[IdentityProvider] = None,
        conditions: Optional[ConditionProbe] = None,
    ):
        self._config = config or get_config()
        self._owns_db = db is None
        self._db = db or DatabaseManager(
            database_url=self._config.database.url,
            echo=self._config.database.echo,
        )
        self._trigger = trigger or PollingTrigger(
            conditions=conditions,
            poll_interval=self._config.scheduler.poll_interval_seconds,
            initial_backoff=self._config.scheduler.initial_backoff_seconds,
            max_backoff=self._config.scheduler.max_backoff_seconds,
        )
        self._client = client or SubmissionClient(
            endpoint_url=self._config.submit.endpoint_url,
            timeout_ms=self._config.submit.timeout_ms,
        )
        self._identity = identity or IdentityProvider(
            installation_id=FileInstallationId(self._config.device.installation_id_path),
            sdk_level=self._config.device.sdk_level,
            version_code=self._config.device.version_code,
        )
        self._queue = JobQueue(
            config=self._config,
            db=self._db,
            trigger=self._trigger,
            client=self._client,
            identity=self._identity,
            sequence=SequenceGenerator(),
        )
        self._running = False
        self._logger = get_logger("crowdsubmit.core")

    @property
    def queue(self) -> JobQueue:
        return self._queue

    @property
    def trigger(self) -> Trigger:
        return self._trigger

    @property
    def is_running(self) -> bool:
        return self._running

    def is_enabled(self) -> bool:
        """Whether submission is available; mirrors the enqueue preconditions."""
        return self._queue.can_submit()

    async def record_rule_change(self, rule: Rule) -> Optional[int]:
        """Queue a rule change; returns the job id or None when disabled."""
        return await self._queue.enqueue(rule_record(rule))

    async def record_host_access(
        self, rule: Rule, decision: ConnectionDecision
    ) -> Optional[int]:
        """Queue a host access decision; returns the job id or None when disabled."""
        return await self._queue.enqueue(host_record(rule, decision))

    async def start(self) -> None:
        """Open the database, restore pending jobs and start the trigger."""
        if self._running:
            self._logger.warning("core_already_running")
            return

        self._logger.info(
            "core_starting",
            env=self._config.env,
            enabled=self.is_enabled(),
            debug_build=self._config.scheduler.debug_build,
        )

        if self._owns_db:
            await self._db.initialize()
        await self._db.create_tables()

        restored = await self._queue.restore()
        await self._trigger.start()
        self._running = True
        self._logger.info("core_started", restored=restored)

    async def stop(self) -> None:
        """Stop the trigger and release the database."""
        if not self._running:
            return

        self._logger.info("core_stopping")
        self._running = False
        await self._trigger.stop()
        if self._owns_db:
            await self._db.close()
        self._logger.info("core_stopped")
