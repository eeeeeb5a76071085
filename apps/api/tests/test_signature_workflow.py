"""Tests for the contract signature workflow."""

from datetime import timedelta

import pytest

from pactlink_api.errors import (
    InvalidTokenRequest,
    OTPMismatch,
    SignatureAlreadyApplied,
    SignatureNotFound,
    TokenAlreadyUsed,
    TokenExpired,
    TokenRevoked,
)
from pactlink_api.models import (
    AuditEntry,
    AuditEvent,
    ContractSignature,
    OTPChallenge,
    SignatureStatus,
    SignerRole,
    TokenPurpose,
)
from pactlink_api.signatures.workflow import ContractStatus, SignatureWorkflow

from conftest import FailingDispatcher


def _request(workflow, deal_id="deal-D", role=SignerRole.CREATOR, **kwargs):
    kwargs.setdefault("signer_email", f"{role.value}@example.com")
    return workflow.request_signature(deal_id, role, "dashboard", **kwargs)


def test_full_signing_scenario(db, workflow, otp_service, token_store, publisher):
    """Issue, claim with OTP, mistype once, verify, sign; the link cannot be reused."""
    issued = _request(workflow, ttl=timedelta(days=14))

    challenge = workflow.begin_verification(issued.secret)
    assert challenge.code == "123456"
    assert workflow.get_signature("deal-D", SignerRole.CREATOR).status == SignatureStatus.OTP_PENDING.value

    with pytest.raises(OTPMismatch):
        otp_service.verify(issued.token.id, "654321")
    challenge_row = db.query(OTPChallenge).filter(OTPChallenge.token_id == issued.token.id).one()
    assert challenge_row.attempts == 1

    assert otp_service.verify(issued.token.id, "123456").already_verified is False

    signature = workflow.confirm_signature(issued.token.id, "123456", "Casey Creator")
    assert signature.deal_id == "deal-D"
    assert signature.signer_role == "creator"
    assert signature.signed is True
    assert signature.otp_verified is True
    assert signature.status == SignatureStatus.SIGNED.value
    assert signature.signer_name == "Casey Creator"

    with pytest.raises(TokenAlreadyUsed):
        token_store.claim(issued.secret, TokenPurpose.SIGN_CONTRACT)

    assert len(publisher.events) == 1
    assert publisher.events[0].deal_id == "deal-D"
    assert publisher.events[0].role == "creator"
    assert publisher.events[0].fully_executed is False


def test_request_creates_slot_and_notifies(db, workflow, dispatcher):
    issued = _request(workflow, signer_name="Casey")

    signature = workflow.get_signature("deal-D", SignerRole.CREATOR)
    assert signature.status == SignatureStatus.AWAITING_SIGNATURE.value
    assert signature.active_token_id == issued.token.id
    assert issued.token.recipient_hint == "creator@example.com"
    assert dispatcher.sent[-1][0] == "creator@example.com"
    assert dispatcher.sent[-1][2]["link"] == issued.link


def test_new_slot_needs_signer_email(workflow):
    with pytest.raises(InvalidTokenRequest):
        workflow.request_signature("deal-D", SignerRole.BRAND, "dashboard")


def test_rerequest_supersedes_previous_link(workflow, token_store):
    first = _request(workflow)
    second = _request(workflow)

    assert token_store.get(first.token.id).revoked is True
    assert workflow.get_signature("deal-D", SignerRole.CREATOR).active_token_id == second.token.id
    with pytest.raises(TokenRevoked):
        workflow.begin_verification(first.secret)


def test_rejected_rerequest_keeps_current_link(db, workflow, token_store):
    first = _request(workflow)

    with pytest.raises(InvalidTokenRequest):
        _request(workflow, signer_email="someone-else@example.com", ttl=timedelta(days=365))

    assert token_store.get(first.token.id).revoked is False
    signature = workflow.get_signature("deal-D", SignerRole.CREATOR)
    assert signature.status == SignatureStatus.AWAITING_SIGNATURE.value
    assert signature.active_token_id == first.token.id
    assert signature.signer_email == "creator@example.com"
    assert workflow.begin_verification(first.secret).code == "123456"


def test_rejected_first_request_creates_no_slot(db, workflow):
    with pytest.raises(InvalidTokenRequest):
        _request(workflow, ttl=timedelta(0))

    assert db.query(ContractSignature).count() == 0
    assert db.query(AuditEntry).count() == 0


def test_request_audit_sequence(db, workflow):
    first = _request(workflow)

    entries = db.query(AuditEntry).filter(AuditEntry.subject_id == "deal-D").order_by(AuditEntry.id.asc()).all()
    assert [e.event_type for e in entries] == [
        AuditEvent.TOKEN_ISSUED.value,
        AuditEvent.SIGNATURE_REQUESTED.value,
    ]
    assert entries[-1].detail["previous_status"] is None
    assert entries[-1].detail["token_id"] == first.token.id

    _request(workflow)

    entries = db.query(AuditEntry).filter(AuditEntry.subject_id == "deal-D").order_by(AuditEntry.id.asc()).all()
    assert [e.event_type for e in entries[2:]] == [
        AuditEvent.TOKEN_REVOKED.value,
        AuditEvent.TOKEN_ISSUED.value,
        AuditEvent.SIGNATURE_REQUESTED.value,
    ]
    assert entries[-1].detail["previous_status"] == SignatureStatus.AWAITING_SIGNATURE.value


def test_failed_claim_creates_no_challenge(db, workflow, clock):
    issued = _request(workflow, ttl=timedelta(days=1))
    clock.advance(days=2)

    with pytest.raises(TokenExpired):
        workflow.begin_verification(issued.secret)
    assert db.query(OTPChallenge).count() == 0
    assert workflow.get_signature("deal-D", SignerRole.CREATOR).status == SignatureStatus.AWAITING_SIGNATURE.value


def test_otp_error_leaves_row_untouched(workflow):
    issued = _request(workflow)
    workflow.begin_verification(issued.secret)

    with pytest.raises(OTPMismatch):
        workflow.confirm_signature(issued.token.id, "111111", "Casey")

    signature = workflow.get_signature("deal-D", SignerRole.CREATOR)
    assert signature.signed is False
    assert signature.status == SignatureStatus.OTP_PENDING.value


def test_signing_requires_verified_otp(db, workflow):
    """A row only becomes signed through a verified challenge on its token."""
    issued = _request(workflow)
    workflow.begin_verification(issued.secret)
    workflow.confirm_signature(issued.token.id, "123456", "Casey")

    for signature in db.query(ContractSignature).filter(ContractSignature.signed == True).all():  # noqa: E712
        challenge = db.query(OTPChallenge).filter(OTPChallenge.token_id == signature.active_token_id).one()
        assert challenge.verified is True
        assert signature.otp_verified is True


def test_confirm_twice_returns_final_row(workflow):
    issued = _request(workflow)
    workflow.begin_verification(issued.secret)
    workflow.confirm_signature(issued.token.id, "123456", "Casey")

    with pytest.raises(SignatureAlreadyApplied) as exc_info:
        workflow.confirm_signature(issued.token.id, "123456", "Casey")
    assert exc_info.value.signature.signed is True


def test_cannot_request_after_signing(workflow):
    issued = _request(workflow)
    workflow.begin_verification(issued.secret)
    workflow.confirm_signature(issued.token.id, "123456", "Casey")

    with pytest.raises(SignatureAlreadyApplied):
        _request(workflow)


def test_reset_requires_fresh_token_and_otp(db, workflow, token_store):
    issued = _request(workflow)
    workflow.begin_verification(issued.secret)
    workflow.confirm_signature(issued.token.id, "123456", "Casey")

    signature = workflow.reset_signature("deal-D", SignerRole.CREATOR, "admin", reason="wrong contract version")
    assert signature.status == SignatureStatus.NOT_READY.value
    assert signature.signed is False
    assert signature.otp_verified is False
    assert signature.active_token_id is None
    assert token_store.get(issued.token.id).revoked is True

    # The old token and its verified challenge are worthless now
    with pytest.raises(TokenRevoked):
        workflow.confirm_signature(issued.token.id, "123456", "Casey")

    fresh = _request(workflow)
    workflow.begin_verification(fresh.secret)
    assert workflow.confirm_signature(fresh.token.id, "123456", "Casey").signed is True

    reset_entry = (
        db.query(AuditEntry)
        .filter(AuditEntry.event_type == AuditEvent.SIGNATURE_RESET.value)
        .one()
    )
    assert reset_entry.actor_hint == "admin"
    assert reset_entry.detail["was_signed"] is True
    assert reset_entry.detail["reason"] == "wrong contract version"


def test_reset_unknown_slot(workflow):
    with pytest.raises(SignatureNotFound):
        workflow.reset_signature("nope", SignerRole.BRAND, "admin")


def test_revoking_active_token_revokes_slot(workflow, token_store):
    issued = _request(workflow)
    token = token_store.revoke(issued.token.id, "ops")

    signature = workflow.handle_token_revoked(token, "ops")
    assert signature.status == SignatureStatus.REVOKED.value

    # A fresh request recovers the slot
    _request(workflow)
    assert workflow.get_signature("deal-D", SignerRole.CREATOR).status == SignatureStatus.AWAITING_SIGNATURE.value


def test_contract_status_progression(workflow):
    assert workflow.contract_status("deal-D") == ContractStatus.DRAFT

    creator = _request(workflow, role=SignerRole.CREATOR)
    brand = _request(workflow, role=SignerRole.BRAND)
    assert workflow.contract_status("deal-D") == ContractStatus.READY

    workflow.begin_verification(brand.secret)
    assert workflow.contract_status("deal-D") == ContractStatus.OTP_CHALLENGED

    workflow.confirm_signature(brand.token.id, "123456", "Blake Brand")
    assert workflow.contract_status("deal-D") == ContractStatus.SIGNED_BY_BRAND

    workflow.begin_verification(creator.secret)
    workflow.confirm_signature(creator.token.id, "123456", "Casey Creator")
    assert workflow.contract_status("deal-D") == ContractStatus.FULLY_EXECUTED


def test_fully_executed_event(workflow, publisher):
    for role in (SignerRole.CREATOR, SignerRole.BRAND):
        issued = _request(workflow, role=role)
        workflow.begin_verification(issued.secret)
        workflow.confirm_signature(issued.token.id, "123456", f"{role.value} signer")

    assert [e.fully_executed for e in publisher.events] == [False, True]


def test_otp_dispatch_failure_is_audited(db, token_store, otp_service, audit, clock, publisher):
    workflow = SignatureWorkflow(db, token_store, otp_service, audit, clock, FailingDispatcher(), publisher)
    issued = _request(workflow)

    challenge = workflow.begin_verification(issued.secret)
    assert challenge.challenge.token_id == issued.token.id

    failures = db.query(AuditEntry).filter(AuditEntry.event_type == AuditEvent.NOTIFICATION_FAILED.value).all()
    assert len(failures) == 1
    assert "123456" not in str(failures[0].detail)
