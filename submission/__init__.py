"""CrowdSubmit Submission Module - deferred telemetry pipeline."""

from submission.client import SubmissionClient
from submission.errors import BuildFailure
from submission.models import (
    Access,
    ConnectionDecision,
    OutcomeStatus,
    RecordKind,
    Rule,
    SubmissionOutcome,
    SubmissionRecord,
)
from submission.queue import JobQueue
from submission.telemetry import TelemetryCore
from submission.trigger import ConditionProbe, PollingTrigger, Trigger

__all__ = [
    "Access",
    "BuildFailure",
    "ConditionProbe",
    "ConnectionDecision",
    "JobQueue",
    "OutcomeStatus",
    "PollingTrigger",
    "RecordKind",
    "Rule",
    "SubmissionClient",
    "SubmissionOutcome",
    "SubmissionRecord",
    "TelemetryCore",
    "Trigger",
]
