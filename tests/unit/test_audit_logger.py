"""Tests for the audit logger."""

from __future__ import annotations

import hashlib
import json
from pathlib import Path

from src.audit.logger import AuditLogger, validate_audit_chain
from src.models import AuditEvent, AuditEventType, RiskLevel


def _make_event(**kwargs: object) -> AuditEvent:
    defaults: dict[str, object] = {
        "event_type": AuditEventType.AUTH_FAILURE,
        "action": "POST /send",
        "result": "failure",
        "risk_level": RiskLevel.HIGH,
    }
    defaults.update(kwargs)
    return AuditEvent(**defaults)  # type: ignore[arg-type]


def test_log_appends_json_line(tmp_path: Path) -> None:
    log_file = tmp_path / "audit.jsonl"
    logger = AuditLogger(log_path=str(log_file))
    logger.log(_make_event())

    lines = log_file.read_text().strip().split("\n")
    assert len(lines) == 1
    parsed = json.loads(lines[0])
    assert parsed["event_type"] == "auth_failure"
    assert parsed["risk_level"] == "high"


def test_log_multiple_events_append(tmp_path: Path) -> None:
    log_file = tmp_path / "audit.jsonl"
    logger = AuditLogger(log_path=str(log_file))

    for i in range(3):
        logger.log(_make_event(action=f"action_{i}"))

    lines = log_file.read_text().strip().split("\n")
    assert [json.loads(line)["action"] for line in lines] == ["action_0", "action_1", "action_2"]


def test_log_creates_file_if_missing(tmp_path: Path) -> None:
    log_file = tmp_path / "subdir" / "audit.jsonl"
    logger = AuditLogger(log_path=str(log_file))
    logger.log(_make_event())
    assert log_file.exists()


def test_bridge_event_types_serialized(tmp_path: Path) -> None:
    log_file = tmp_path / "audit.jsonl"
    logger = AuditLogger(log_path=str(log_file))

    logger.log(_make_event(event_type=AuditEventType.CONNECTION_STATE, action="disconnected->connected"))
    logger.log(_make_event(event_type=AuditEventType.WEBHOOK_RELAY, details={"webhook_status": 502}))
    logger.log(_make_event(event_type=AuditEventType.MESSAGE_DISPATCH))

    parsed = [json.loads(line) for line in log_file.read_text().strip().split("\n")]
    assert [p["event_type"] for p in parsed] == [
        "connection_state", "webhook_relay", "message_dispatch",
    ]
    assert parsed[1]["details"] == {"webhook_status": 502}
    assert all("T" in p["timestamp"] for p in parsed)


# --- Rotation tests ---


def test_rotation_triggers_at_threshold(tmp_path: Path) -> None:
    log_file = tmp_path / "audit.jsonl"
    logger = AuditLogger(log_path=str(log_file), max_bytes=100, backup_count=3)
    for i in range(20):
        logger.log(_make_event(action=f"event-{i}"))
    assert (tmp_path / "audit.jsonl.1").exists()


def test_rotation_deletes_oldest(tmp_path: Path) -> None:
    log_file = tmp_path / "audit.jsonl"
    logger = AuditLogger(log_path=str(log_file), max_bytes=50, backup_count=2)
    for i in range(50):
        logger.log(_make_event(action=f"event-{i}"))
    assert not (tmp_path / "audit.jsonl.3").exists()


def test_rotated_files_validate_independently(tmp_path: Path) -> None:
    log_file = tmp_path / "audit.jsonl"
    logger = AuditLogger(log_path=str(log_file), max_bytes=400, backup_count=3)
    for i in range(10):
        logger.log(_make_event(action=f"event-{i}"))

    assert validate_audit_chain(log_file).valid
    assert validate_audit_chain(tmp_path / "audit.jsonl.1").valid


def test_rotation_configurable_via_env(monkeypatch, tmp_path: Path) -> None:
    monkeypatch.setenv("AUDIT_LOG_MAX_BYTES", "500")
    monkeypatch.setenv("AUDIT_LOG_BACKUP_COUNT", "7")
    logger = AuditLogger.from_env(str(tmp_path / "audit.jsonl"))
    assert logger._max_bytes == 500
    assert logger._backup_count == 7


# --- Hash chain tests ---


def test_first_entry_has_null_prev_hash(tmp_path: Path) -> None:
    log_file = tmp_path / "audit.jsonl"
    AuditLogger(log_path=str(log_file)).log(_make_event())
    assert json.loads(log_file.read_text().strip())["prev_hash"] is None


def test_log_entries_include_prev_hash(tmp_path: Path) -> None:
    log_file = tmp_path / "audit.jsonl"
    logger = AuditLogger(log_path=str(log_file))
    logger.log(_make_event(action="first"))
    logger.log(_make_event(action="second"))
    lines = log_file.read_text().strip().split("\n")
    expected = hashlib.sha256(lines[0].encode()).hexdigest()
    assert json.loads(lines[1])["prev_hash"] == expected


def test_chain_resumes_after_restart(tmp_path: Path) -> None:
    log_file = tmp_path / "audit.jsonl"
    AuditLogger(log_path=str(log_file)).log(_make_event(action="before"))
    AuditLogger(log_path=str(log_file)).log(_make_event(action="after"))

    result = validate_audit_chain(log_file)
    assert result.valid
    assert result.entries == 2


def test_validate_empty_file(tmp_path: Path) -> None:
    log_file = tmp_path / "audit.jsonl"
    log_file.write_text("")
    result = validate_audit_chain(log_file)
    assert result.valid
    assert result.entries == 0


def test_validate_chain_detects_tampering(tmp_path: Path) -> None:
    log_file = tmp_path / "audit.jsonl"
    logger = AuditLogger(log_path=str(log_file))
    for i in range(5):
        logger.log(_make_event(action=f"event-{i}"))
    lines = log_file.read_text().strip().split("\n")
    lines[2] = lines[2].replace("event-2", "TAMPERED")
    log_file.write_text("\n".join(lines) + "\n")

    result = validate_audit_chain(log_file)
    assert not result.valid
    # Line 4's prev_hash no longer matches the edited line 3
    assert result.broken_at_line == 4
