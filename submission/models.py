"""
Submission Data Models

Domain inputs (rules and connection decisions), the persisted submission
record and the outcome reported back to the scheduler.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum, IntEnum
from typing import Any, Optional, Union

from submission.errors import InvalidRecord

Scalar = Union[str, int]


class RecordKind(Enum):
    """Kinds of telemetry records."""
    RULE = "rule"
    HOST = "host"


class Access(IntEnum):
    """Access decision codes for a connection attempt."""
    UNKNOWN = -1
    BLOCKED = 0
    ALLOWED = 1


class OutcomeStatus(Enum):
    """Result classes of a submission attempt."""
    SUCCESS = "success"
    TRANSIENT = "transient"
    FATAL = "fatal"


@dataclass
class Rule:
    """Per-application network policy as seen by the firewall."""

    package: str
    label: str
    wifi_default: bool = False
    other_default: bool = False
    screen_wifi_default: bool = False
    screen_other_default: bool = False
    roaming_default: bool = False
    wifi_blocked: bool = False
    other_blocked: bool = False
    screen_wifi: bool = False
    screen_other: bool = False
    roaming: bool = False
    apply: bool = True
    notify: bool = True


@dataclass(frozen=True)
class ConnectionDecision:
    """A single access decision taken for an outgoing connection."""

    version: int
    protocol: int
    daddr: str
    dport: int
    access: int

    def __post_init__(self) -> None:
        if self.version not in (4, 6):
            raise ValueError(f"Invalid IP version: {self.version}")
        if not 0 <= self.dport <= 65535:
            raise ValueError(f"Invalid port: {self.dport}")


@dataclass
class SubmissionRecord:
    """Unit of deferred work owned by the job queue once enqueued."""

    kind: RecordKind
    fields: dict[str, Scalar]
    created_at: datetime = field(default_factory=datetime.utcnow)
    job_id: Optional[int] = None

    def __post_init__(self) -> None:
        self.fields = self.to_bundle()

    def to_bundle(self) -> dict[str, Scalar]:
        """Return the fields as a bundle of str/int scalars."""
        bundle: dict[str, Scalar] = {}
        for key, value in self.fields.items():
            if not isinstance(key, str):
                raise InvalidRecord(f"Field name must be a string: {key!r}")
            if isinstance(value, bool):
                value = int(value)
            elif not isinstance(value, (str, int)):
                raise InvalidRecord(
                    f"Field {key!r} has unsupported type {type(value).__name__}"
                )
            bundle[key] = value
        return bundle

    @classmethod
    def from_bundle(
        cls,
        kind: str | RecordKind,
        bundle: dict[str, Any],
        created_at: Optional[datetime] = None,
        job_id: Optional[int] = None,
    ) -> "SubmissionRecord":
        """Rebuild a record from its persisted bundle."""
        return cls(
            kind=RecordKind(kind),
            fields=dict(bundle),
            created_at=created_at or datetime.utcnow(),
            job_id=job_id,
        )


@dataclass(frozen=True)
class SubmissionOutcome:
    """Result of one submission attempt."""

    status: OutcomeStatus
    reason: Optional[str] = None

    @classmethod
    def success(cls) -> "SubmissionOutcome":
        return cls(OutcomeStatus.SUCCESS)

    @classmethod
    def transient(cls, reason: str) -> "SubmissionOutcome":
        return cls(OutcomeStatus.TRANSIENT, reason)

    @classmethod
    def fatal(cls, reason: str) -> "SubmissionOutcome":
        return cls(OutcomeStatus.FATAL, reason)

    @property
    def ok(self) -> bool:
        return self.status is OutcomeStatus.SUCCESS

    @property
    def needs_reschedule(self) -> bool:
        """Only transient failures are worth another attempt."""
        return self.status is OutcomeStatus.TRANSIENT
