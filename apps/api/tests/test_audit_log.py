"""Tests for the audit log hash chain."""

from unittest.mock import patch

from sqlalchemy.exc import OperationalError

from pactlink_api.audit.log import AuditLog
from pactlink_api.models import AuditEntry, AuditEvent, TokenPurpose


def test_chain_valid(audit):
    audit.record("deal-A", AuditEvent.TOKEN_ISSUED, "dashboard", {"token_id": "t1"})
    audit.record("deal-A", AuditEvent.TOKEN_CLAIMED, "brand@example.com", {"token_id": "t1"})
    audit.record("deal-A", AuditEvent.TOKEN_REVOKED, "ops", {"token_id": "t1"})
    audit.db.commit()

    is_valid, error = audit.verify_chain("deal-A")
    assert is_valid, f"Chain should be valid: {error}"

    entries = audit.query("deal-A")
    assert entries[0].previous_event_hash is None
    assert entries[1].previous_event_hash == entries[0].event_hash
    assert entries[2].previous_event_hash == entries[1].event_hash
    assert all(e.correlation_id == "test-correlation" for e in entries)


def test_chains_are_per_subject(audit):
    audit.record("deal-A", AuditEvent.TOKEN_ISSUED, "dashboard", {})
    audit.record("deal-B", AuditEvent.TOKEN_ISSUED, "dashboard", {})
    audit.db.commit()

    assert audit.query("deal-B")[0].previous_event_hash is None


def test_tampered_detail_fails_verification(db, audit):
    entry = audit.record("deal-A", AuditEvent.SIGNATURE_APPLIED, "Casey", {"role": "creator"})
    db.commit()

    entry.detail = {"role": "brand"}
    db.commit()

    is_valid, error = audit.verify_chain("deal-A")
    assert not is_valid
    assert error is not None


def test_deleted_entry_breaks_chain(db, audit):
    audit.record("deal-A", AuditEvent.TOKEN_ISSUED, "dashboard", {})
    middle = audit.record("deal-A", AuditEvent.TOKEN_CLAIMED, "brand", {})
    audit.record("deal-A", AuditEvent.TOKEN_REVOKED, "ops", {})
    db.commit()

    db.delete(middle)
    db.commit()

    is_valid, _ = audit.verify_chain("deal-A")
    assert not is_valid


def test_sensitive_keys_are_stripped(audit):
    entry = audit.record(
        "deal-A",
        AuditEvent.OTP_ISSUED,
        "signer",
        {"token_id": "t1", "code": "123456", "secret": "s3cr3t", "salt": "abc", "max_attempts": 5},
    )
    assert entry.detail == {"token_id": "t1", "max_attempts": 5}


def test_enum_and_datetime_details_are_serialized(audit, clock):
    entry = audit.record("deal-A", AuditEvent.TOKEN_ISSUED, None, {"purpose": TokenPurpose.BRAND_REPLY, "at": clock.now()})
    assert entry.detail == {"purpose": "brand_reply", "at": clock.now().isoformat()}


def test_query_is_ordered_by_timestamp(audit, clock):
    audit.record("deal-A", AuditEvent.TOKEN_ISSUED, None, {})
    clock.advance(minutes=5)
    audit.record("deal-A", AuditEvent.TOKEN_CLAIMED, None, {})
    audit.db.commit()

    timestamps = [e.timestamp for e in audit.query("deal-A")]
    assert timestamps == sorted(timestamps)


def test_write_failure_does_not_raise(db, clock):
    """A failed audit write is escalated, not propagated to the business operation."""
    audit = AuditLog(db, clock)
    error = OperationalError("INSERT", {}, Exception("disk I/O error"))

    with patch.object(AuditLog, "_get_last_entry_hash", side_effect=error):
        with patch("pactlink_api.audit.log.logger") as mock_logger:
            result = audit.record("deal-A", AuditEvent.TOKEN_ISSUED, None, {})

    assert result is None
    mock_logger.critical.assert_called_once()
    assert db.query(AuditEntry).count() == 0
