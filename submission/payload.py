"""
Payload Builder

Pure functions turning firewall events into flat, JSON-serializable
records. Identity fields are merged only when the payload is built for
transmission, so persisted fields never carry the device identifier.
"""

from __future__ import annotations

import json
from typing import Any, Mapping

from submission.errors import BuildFailure
from submission.identity import DeviceIdentity
from submission.models import ConnectionDecision, RecordKind, Rule, SubmissionRecord

RULE_FLAGS = (
    "wifi_default",
    "other_default",
    "screen_wifi_default",
    "screen_other_default",
    "roaming_default",
    "wifi_blocked",
    "other_blocked",
    "screen_wifi",
    "screen_other",
    "roaming",
    "apply",
    "notify",
)

HOST_FIELDS = ("version", "protocol", "daddr", "dport", "access")

IDENTITY_KEYS = ("android_id", "android_sdk", "netguard")


def _base_fields(kind: RecordKind, rule: Rule) -> dict[str, Any]:
    return {
        "type": kind.value,
        "package": rule.package,
        "label": rule.label,
    }


def rule_fields(rule: Rule) -> dict[str, Any]:
    """Fields describing a rule change."""
    fields = _base_fields(RecordKind.RULE, rule)
    for flag in RULE_FLAGS:
        fields[flag] = 1 if getattr(rule, flag) else 0
    return fields


def host_fields(rule: Rule, decision: ConnectionDecision) -> dict[str, Any]:
    """Fields describing a host access decision."""
    fields = _base_fields(RecordKind.HOST, rule)
    fields["version"] = int(decision.version)
    fields["protocol"] = int(decision.protocol)
    fields["daddr"] = decision.daddr
    fields["dport"] = int(decision.dport)
    fields["access"] = int(decision.access)
    return fields


def rule_record(rule: Rule) -> SubmissionRecord:
    return SubmissionRecord(kind=RecordKind.RULE, fields=rule_fields(rule))


def host_record(rule: Rule, decision: ConnectionDecision) -> SubmissionRecord:
    return SubmissionRecord(kind=RecordKind.HOST, fields=host_fields(rule, decision))


def build_payload(fields: Mapping[str, Any], identity: DeviceIdentity) -> dict[str, Any]:
    """
    Merge identity and record fields into the transmitted payload.

    Args:
        fields: Persisted record fields
        identity: Identity computed for this submission

    Returns:
        Flat payload dict, identity keys first

    Raises:
        BuildFailure: if the identity is missing or the fields try to
            override an identity key
    """
    if not identity.android_id:
        raise BuildFailure("Missing hashed device identifier")

    clash = set(IDENTITY_KEYS) & set(fields)
    if clash:
        raise BuildFailure(f"Record fields override identity keys: {sorted(clash)}")

    payload: dict[str, Any] = identity.as_fields()
    payload.update(fields)
    return payload


def encode_payload(payload: Mapping[str, Any]) -> bytes:
    """Serialize a payload to UTF-8 JSON."""
    try:
        return json.dumps(payload, ensure_ascii=False, separators=(",", ":")).encode("utf-8")
    except (TypeError, ValueError) as e:
        raise BuildFailure(f"Payload is not JSON serializable: {e}") from e
