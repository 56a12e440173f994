"""Append-only audit journal with Ed25519 signatures and hash chaining.

Every entry is one JSON line in ``journal.jsonl``. Each payload carries the
chain hash of the previous entry, and the chain hash of an entry is
``sha3_512(payload || signature)``. Credentials never reach the journal:
detail keys naming a token or an authorization header are redacted before
signing.
"""
from __future__ import annotations

import hashlib
import json
import logging
import os
import threading
import time
from pathlib import Path
from typing import Any, Dict, Iterator, Mapping, Optional

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey

_logger = logging.getLogger(__name__)

GENESIS = "GENESIS"
REDACTED = "[redacted]"
_SENSITIVE_KEYS = frozenset({"token", "authorization", "bearer"})


def _resolve_audit_dir() -> Path:
    """Return the directory where audit artefacts should be stored.

    ``CMUC_AUDIT_DIR`` points the journal elsewhere; otherwise it lives in
    the user's home directory.
    """

    override = os.environ.get("CMUC_AUDIT_DIR")
    if override:
        return Path(override).expanduser()
    return Path.home() / ".connectme_audit"


def redact(details: Mapping[str, Any]) -> Dict[str, Any]:
    cleaned: Dict[str, Any] = {}
    for key, value in details.items():
        if key.lower() in _SENSITIVE_KEYS:
            cleaned[key] = REDACTED
        elif isinstance(value, Mapping):
            cleaned[key] = redact(value)
        else:
            cleaned[key] = value
    return cleaned


class AuditJournal:
    def __init__(self, directory: Path) -> None:
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)
        self.journal_path = self.directory / "journal.jsonl"
        self.key_path = self.directory / "signing_key.pem"
        self._lock = threading.Lock()
        self._private_key: Ed25519PrivateKey | None = None
        self._last_hash: str | None = None

    def _load_private_key(self) -> Ed25519PrivateKey:
        if self._private_key is not None:
            return self._private_key
        if self.key_path.exists():
            key = serialization.load_pem_private_key(self.key_path.read_bytes(), password=None)
            if not isinstance(key, Ed25519PrivateKey):
                raise RuntimeError(f"{self.key_path} is not an Ed25519 key")
        else:
            key = Ed25519PrivateKey.generate()
            self.key_path.write_bytes(
                key.private_bytes(
                    encoding=serialization.Encoding.PEM,
                    format=serialization.PrivateFormat.PKCS8,
                    encryption_algorithm=serialization.NoEncryption(),
                )
            )
            os.chmod(self.key_path, 0o600)
        self._private_key = key
        return key

    def _last_chain_hash(self) -> str:
        if self._last_hash is None:
            last = GENESIS
            for entry in self.entries():
                last = entry["chain_hash"]
            self._last_hash = last
        return self._last_hash

    def record(self, event: str, details: Mapping[str, Any] | None = None) -> Dict[str, Any]:
        with self._lock:
            payload = {
                "event": event,
                "details": redact(details or {}),
                "timestamp": int(time.time()),
                "prev_hash": self._last_chain_hash(),
            }
            message = json.dumps(payload, ensure_ascii=False, sort_keys=True).encode("utf-8")
            signature = self._load_private_key().sign(message)
            entry = {
                "payload": payload,
                "signature": signature.hex(),
                "chain_hash": hashlib.sha3_512(message + signature).hexdigest(),
            }
            with open(self.journal_path, "a", encoding="utf-8") as handle:
                handle.write(json.dumps(entry, ensure_ascii=False, sort_keys=True) + "\n")
            self._last_hash = entry["chain_hash"]
            return entry

    def entries(self) -> Iterator[Dict[str, Any]]:
        try:
            handle = open(self.journal_path, "r", encoding="utf-8")
        except FileNotFoundError:
            return
        with handle:
            for line in handle:
                if line.strip():
                    yield json.loads(line)

    def events(self) -> list[str]:
        return [entry["payload"]["event"] for entry in self.entries()]

    def verify(self) -> bool:
        """Check every signature and every link of the chain."""

        public_key = self._load_private_key().public_key()
        expected_prev = GENESIS
        for entry in self.entries():
            payload = entry["payload"]
            if payload.get("prev_hash") != expected_prev:
                return False
            message = json.dumps(payload, ensure_ascii=False, sort_keys=True).encode("utf-8")
            signature = bytes.fromhex(entry.get("signature") or "")
            try:
                public_key.verify(signature, message)
            except InvalidSignature:
                return False
            chain_hash = hashlib.sha3_512(message + signature).hexdigest()
            if chain_hash != entry.get("chain_hash"):
                return False
            expected_prev = chain_hash
        return True


_journal = AuditJournal(_resolve_audit_dir())


def configure(directory: os.PathLike[str] | str) -> AuditJournal:
    """Point the process-wide journal at *directory*."""

    global _journal
    _journal = AuditJournal(Path(directory))
    return _journal


def get_journal() -> AuditJournal:
    return _journal


def record_event(event: str, *, details: Dict[str, Any] | None = None) -> Dict[str, Any]:
    return _journal.record(event, details)


def try_record_event(event: str, *, details: Dict[str, Any] | None = None) -> Optional[Dict[str, Any]]:
    """Like :func:`record_event`, but a failed write is logged instead of raised."""

    try:
        return _journal.record(event, details)
    except OSError:
        _logger.exception("Audit write failed for %s", event)
        return None


def verify_journal() -> bool:
    return _journal.verify()


__all__ = [
    "AuditJournal",
    "configure",
    "get_journal",
    "record_event",
    "redact",
    "try_record_event",
    "verify_journal",
]
