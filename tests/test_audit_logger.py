import json
import os
import stat

from audit import logger as audit_logger
from audit.logger import AuditJournal, redact


def test_record_event_creates_signed_chain(tmp_path):
    journal = AuditJournal(tmp_path)

    first = journal.record("first", {"value": 1})
    second = journal.record("second", {"value": 2})

    assert first["payload"]["prev_hash"] == "GENESIS"
    assert second["payload"]["prev_hash"] == first["chain_hash"]
    assert journal.events() == ["first", "second"]
    assert journal.verify()

    lines = (tmp_path / "journal.jsonl").read_text().splitlines()
    assert [json.loads(line)["chain_hash"] for line in lines] == [
        first["chain_hash"],
        second["chain_hash"],
    ]


def test_signing_key_is_private(tmp_path):
    AuditJournal(tmp_path).record("boot")
    mode = stat.S_IMODE(os.stat(tmp_path / "signing_key.pem").st_mode)
    assert mode == 0o600


def test_chain_resumes_after_restart(tmp_path):
    first = AuditJournal(tmp_path).record("first")
    reopened = AuditJournal(tmp_path)
    second = reopened.record("second")
    assert second["payload"]["prev_hash"] == first["chain_hash"]
    assert reopened.verify()


def test_tampering_is_detected(tmp_path):
    journal = AuditJournal(tmp_path)
    journal.record("room.entered", {"room_id": "ABCD"})
    journal.record("room.left", {"room_id": "ABCD"})

    path = tmp_path / "journal.jsonl"
    lines = path.read_text().splitlines()
    entry = json.loads(lines[0])
    entry["payload"]["details"]["room_id"] = "WXYZ"
    lines[0] = json.dumps(entry, sort_keys=True)
    path.write_text("\n".join(lines) + "\n")

    assert not AuditJournal(tmp_path).verify()


def test_tokens_are_redacted():
    cleaned = redact({"token": "secret", "nested": {"Authorization": "Bearer x"}, "room_id": "ABCD"})
    assert cleaned == {
        "token": "[redacted]",
        "nested": {"Authorization": "[redacted]"},
        "room_id": "ABCD",
    }


def test_module_journal_follows_configure(tmp_path):
    journal = audit_logger.configure(tmp_path / "custom")
    assert audit_logger.get_journal() is journal
    assert (tmp_path / "custom").is_dir()

    audit_logger.record_event("test", details={"token": "abc"})
    entry = next(journal.entries())
    assert entry["payload"]["details"] == {"token": "[redacted]"}
    assert audit_logger.verify_journal()


def test_try_record_event_logs_failed_writes(tmp_path, monkeypatch, caplog):
    journal = audit_logger.configure(tmp_path / "audit")

    def full_disk(event, details=None):
        raise OSError(28, "No space left on device")

    monkeypatch.setattr(journal, "record", full_disk)

    assert audit_logger.try_record_event("room.left", details={"room_id": "ABCD"}) is None
    assert "Audit write failed for room.left" in caplog.text
