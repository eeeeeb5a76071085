"""Append-only audit log with per-subject hash chaining."""

import hashlib
import json
import logging
from datetime import datetime
from enum import Enum
from typing import Any, Optional, Union

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from pactlink_api.models import AuditEntry, AuditEvent
from pactlink_api.providers import Clock, SystemClock
from pactlink_api.utils.metrics import audit_write_failures

logger = logging.getLogger(__name__)

# Keys that could carry secret material are dropped from entry details.
SENSITIVE_DETAIL_KEYS = frozenset({"secret", "token_secret", "code", "otp", "code_hash", "salt"})


def _json_default(value: Any):
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    return str(value)


def _scrub(detail: Optional[dict]) -> dict:
    """Normalize a detail dict to plain JSON and strip sensitive keys."""
    clean = {k: v for k, v in (detail or {}).items() if k not in SENSITIVE_DETAIL_KEYS}
    return json.loads(json.dumps(clean, default=_json_default))


class AuditLog:
    """Tamper-evident audit trail of token, OTP and signature transitions.

    Entries are written inside a SAVEPOINT in the caller's transaction, so
    they commit together with the transition they describe. A failed write
    is escalated (CRITICAL log line plus a counter) instead of aborting the
    business operation: losing an audit record is less harmful than losing
    a legitimate signature.
    """

    def __init__(self, db: Session, clock: Optional[Clock] = None, correlation_id: Optional[str] = None):
        """Initialize audit log."""
        self.db = db
        self.clock = clock or SystemClock()
        self.correlation_id = correlation_id

    def _hash_entry(self, entry_data: dict) -> str:
        """Compute hash of entry data."""
        entry_str = json.dumps(entry_data, sort_keys=True)
        return hashlib.sha256(entry_str.encode()).hexdigest()

    def _entry_data(self, entry: AuditEntry) -> dict:
        return {
            "subject_id": entry.subject_id,
            "event_type": entry.event_type,
            "actor_hint": entry.actor_hint,
            "detail": entry.detail,
            "correlation_id": entry.correlation_id,
            "previous_hash": entry.previous_event_hash,
            "timestamp": entry.timestamp.isoformat(),
        }

    def _get_last_entry_hash(self, subject_id: Optional[str]) -> Optional[str]:
        """Get hash of the latest entry for a subject."""
        last_entry = (
            self.db.query(AuditEntry)
            .filter(AuditEntry.subject_id == subject_id)
            .order_by(AuditEntry.id.desc())
            .first()
        )
        return last_entry.event_hash if last_entry else None

    def record(
        self,
        subject_id: Optional[str],
        event_type: Union[AuditEvent, str],
        actor_hint: Optional[str] = None,
        detail: Optional[dict] = None,
    ) -> Optional[AuditEntry]:
        """Append an entry. Returns None if the write had to be dropped."""
        event_type = event_type.value if isinstance(event_type, AuditEvent) else event_type

        # Pending business changes must surface their own errors, not ours.
        self.db.flush()

        try:
            previous_hash = self._get_last_entry_hash(subject_id)
            with self.db.begin_nested():
                entry = AuditEntry(
                    subject_id=subject_id,
                    event_type=event_type,
                    actor_hint=actor_hint,
                    timestamp=self.clock.now(),
                    detail=_scrub(detail),
                    correlation_id=self.correlation_id,
                    previous_event_hash=previous_hash,
                )
                entry.event_hash = self._hash_entry(self._entry_data(entry))
                self.db.add(entry)
        except SQLAlchemyError as e:
            logger.critical(
                f"Audit write failed for {event_type}: {e.__class__.__name__}",
                extra={"subject_id": subject_id, "event_type": event_type, "correlation_id": self.correlation_id},
            )
            audit_write_failures.labels(event_type=event_type).inc()
            return None

        return entry

    def query(self, subject_id: str) -> list[AuditEntry]:
        """Entries for a subject in timestamp order."""
        return (
            self.db.query(AuditEntry)
            .filter(AuditEntry.subject_id == subject_id)
            .order_by(AuditEntry.timestamp.asc(), AuditEntry.id.asc())
            .all()
        )

    def verify_chain(self, subject_id: str) -> tuple[bool, Optional[str]]:
        """Verify hash chain integrity for a subject.

        Concurrent writers may both chain onto the same predecessor, so a
        previous hash only has to reference some earlier entry.
        """
        entries = (
            self.db.query(AuditEntry)
            .filter(AuditEntry.subject_id == subject_id)
            .order_by(AuditEntry.id.asc())
            .all()
        )

        seen_hashes = set()
        for entry in entries:
            if entry.previous_event_hash is not None and entry.previous_event_hash not in seen_hashes:
                return False, f"Entry {entry.id} references an unknown predecessor"

            computed_hash = self._hash_entry(self._entry_data(entry))
            if computed_hash != entry.event_hash:
                return False, f"Entry {entry.id} hash mismatch"

            seen_hashes.add(entry.event_hash)

        return True, None
