"""
Audit trail for pairing, session and spending events.

Each event is one JSON line. Every line carries the HMAC of its own
payload chained to the previous line's digest, so an edited, dropped or
reordered line breaks verification on the next read.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import os
import secrets
import threading
import time
from dataclasses import asdict, dataclass, fields
from enum import Enum
from pathlib import Path
from typing import Any, Iterator, Optional

from .store import ensure_private_dir, ensure_private_file


DEFAULT_AUDIT_PATH = Path.home() / ".odyssey" / "audit.jsonl"
DEFAULT_AUDIT_KEY_PATH = Path.home() / ".odyssey-secrets" / "audit_hmac.key"
AUDIT_KEY_ENV = "ODYSSEY_AUDIT_HMAC_KEY"

_CHAIN_FIELDS = ("prev_hash", "event_hash")


class EventType(str, Enum):
    AGENT_PAIRED = "agent_paired"
    AGENT_STATUS_CHANGED = "agent_status_changed"
    AGENT_REMOVED = "agent_removed"
    SESSION_REQUESTED = "session_requested"
    SESSION_APPROVED = "session_approved"
    SESSION_REJECTED = "session_rejected"
    SESSION_REVOKED = "session_revoked"
    SESSION_EXPIRED = "session_expired"
    SESSION_EXHAUSTED = "session_exhausted"
    SPEND_AUTHORIZED = "spend_authorized"
    SPEND_DENIED = "spend_denied"
    SPEND_ROLLED_BACK = "spend_rolled_back"
    TRANSFER_SUBMITTED = "transfer_submitted"
    TRANSFER_FAILED = "transfer_failed"


class AuditChainError(RuntimeError):
    """The log on disk no longer matches its hash chain."""

    def __init__(self, line_no: int, problem: str):
        self.line_no = line_no
        super().__init__(f"Audit chain broken: {problem} (line {line_no})")


@dataclass
class AuditEvent:
    """One audit line. Amounts are integer base units of ``mint``."""

    event_type: str
    timestamp: float
    session_id: Optional[str] = None
    agent_id: Optional[str] = None
    wallet_key: Optional[str] = None
    mint: Optional[str] = None
    amount: Optional[int] = None
    success: bool = True
    reason: Optional[str] = None
    details: Optional[dict[str, Any]] = None
    prev_hash: Optional[str] = None
    event_hash: Optional[str] = None

    def payload(self) -> dict[str, Any]:
        """Hashed content: every set field except the chain links."""
        return {k: v for k, v in asdict(self).items() if v is not None and k not in _CHAIN_FIELDS}

    def to_line(self) -> str:
        record = {k: v for k, v in asdict(self).items() if v is not None}
        return json.dumps(record, separators=(",", ":"))

    @classmethod
    def from_record(cls, raw: dict[str, Any]) -> AuditEvent:
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in raw.items() if k in known})


def _load_key(key_path: Path) -> bytes:
    env_key = os.getenv(AUDIT_KEY_ENV)
    if env_key:
        return env_key.encode()
    existing = key_path.read_bytes().strip() if key_path.exists() else b""
    if existing:
        return existing
    key = secrets.token_hex(32).encode()
    key_path.write_bytes(key)
    ensure_private_file(key_path)
    return key


def _digest(key: bytes, prev_hash: str, payload: dict[str, Any]) -> str:
    canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"))
    return hmac.new(key, f"{prev_hash}|{canonical}".encode(), hashlib.sha256).hexdigest()


class AuditTrail:
    """Tamper-evident append-only log shared by every component."""

    def __init__(self, path: Optional[Path] = None, key_path: Optional[Path] = None):
        self.path = path or DEFAULT_AUDIT_PATH
        self.key_path = key_path or DEFAULT_AUDIT_KEY_PATH
        for p in (self.path, self.key_path):
            ensure_private_dir(p.parent)
            ensure_private_file(p)

        self._lock = threading.Lock()
        self._key = _load_key(self.key_path)
        self._head = self._last_digest()

    def _lines(self) -> Iterator[tuple[int, dict[str, Any]]]:
        if not self.path.exists():
            return
        with open(self.path, encoding="utf-8") as f:
            for line_no, line in enumerate(f, start=1):
                if line.strip():
                    yield line_no, json.loads(line)

    def _last_digest(self) -> str:
        head = ""
        for _, raw in self._lines():
            head = raw.get("event_hash") or ""
        return head

    def _verified(self) -> Iterator[AuditEvent]:
        expected_prev = ""
        for line_no, raw in self._lines():
            event = AuditEvent.from_record(raw)
            prev_hash = event.prev_hash or ""
            if prev_hash != expected_prev:
                raise AuditChainError(line_no, "previous hash mismatch")
            if not hmac.compare_digest(_digest(self._key, prev_hash, event.payload()), event.event_hash or ""):
                raise AuditChainError(line_no, "event hash mismatch")
            expected_prev = event.event_hash
            yield event

    def log(
        self,
        event_type: EventType,
        session_id: Optional[str] = None,
        agent_id: Optional[str] = None,
        wallet_key: Optional[str] = None,
        mint: Optional[str] = None,
        amount: Optional[int] = None,
        success: bool = True,
        reason: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> AuditEvent:
        event = AuditEvent(
            event_type=event_type.value,
            timestamp=time.time(),
            session_id=session_id,
            agent_id=agent_id,
            wallet_key=wallet_key,
            mint=mint,
            amount=amount,
            success=success,
            reason=reason,
            details=details,
        )
        with self._lock:
            event.prev_hash = self._head or None
            event.event_hash = _digest(self._key, self._head, event.payload())
            with open(self.path, "a", encoding="utf-8") as f:
                f.write(event.to_line() + "\n")
                f.flush()
                os.fsync(f.fileno())
            self._head = event.event_hash
        return event

    def verify(self) -> int:
        """Check the whole chain; returns the number of events."""
        return sum(1 for _ in self._verified())

    def read_events(
        self,
        session_id: Optional[str] = None,
        agent_id: Optional[str] = None,
        event_type: Optional[EventType] = None,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """Most recent matching events, oldest first. Verifies the full chain."""
        matches = [
            event
            for event in self._verified()
            if (session_id is None or event.session_id == session_id)
            and (agent_id is None or event.agent_id == agent_id)
            and (event_type is None or event.event_type == event_type.value)
        ]
        return matches[-limit:]
