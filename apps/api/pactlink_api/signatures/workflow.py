"""Contract signature state machine.

States per (deal, role)::

    not_ready -> awaiting_signature -> otp_pending -> signed

with ``expired`` and ``revoked`` reachable from every pre-signed state.
A signature row only reaches ``signed`` through a verified OTP challenge
on the row's active signing token.
"""

import logging
from datetime import timedelta
from enum import Enum
from typing import Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from pactlink_api.audit.log import AuditLog
from pactlink_api.errors import (
    InvalidTokenRequest,
    SignatureAlreadyApplied,
    SignatureNotFound,
    TokenNotFound,
    TokenRevoked,
)
from pactlink_api.models import (
    ActionToken,
    AuditEvent,
    ContractSignature,
    SignatureStatus,
    SignerRole,
    TokenPurpose,
)
from pactlink_api.notifications.dispatcher import NotificationDispatcher, dispatch_with_audit
from pactlink_api.otp.service import IssuedChallenge, OTPService
from pactlink_api.providers import Clock, SystemClock
from pactlink_api.signatures.events import EventPublisher, SignatureCompleted
from pactlink_api.tokens.store import IssuedToken, TokenStore
from pactlink_api.utils.metrics import signature_resets, signatures_applied

logger = logging.getLogger(__name__)

OTP_NOTIFICATION_PURPOSE = "sign_contract_otp"


class ContractStatus(str, Enum):
    """Deal-level signing status derived from the signature rows."""

    DRAFT = "draft"
    READY = "ready"
    OTP_CHALLENGED = "otp_challenged"
    SIGNED_BY_BRAND = "signed_by_brand"
    SIGNED_BY_CREATOR = "signed_by_creator"
    FULLY_EXECUTED = "fully_executed"


class SignatureWorkflow:
    """Drive a (deal, role) signature slot from request to signed."""

    def __init__(
        self,
        db: Session,
        token_store: TokenStore,
        otp_service: OTPService,
        audit: Optional[AuditLog] = None,
        clock: Optional[Clock] = None,
        dispatcher: Optional[NotificationDispatcher] = None,
        publisher: Optional[EventPublisher] = None,
    ):
        """Initialize signature workflow."""
        self.db = db
        self.tokens = token_store
        self.otp = otp_service
        self.clock = clock or SystemClock()
        self.audit = audit or AuditLog(db, self.clock)
        self.dispatcher = dispatcher
        self.publisher = publisher

    def get_signature(self, deal_id: str, role: SignerRole) -> Optional[ContractSignature]:
        return (
            self.db.query(ContractSignature)
            .filter(
                ContractSignature.deal_id == deal_id,
                ContractSignature.signer_role == SignerRole(role).value,
            )
            .populate_existing()
            .first()
        )

    def list_signatures(self, deal_id: str) -> list[ContractSignature]:
        return (
            self.db.query(ContractSignature)
            .filter(ContractSignature.deal_id == deal_id)
            .order_by(ContractSignature.signer_role.asc())
            .populate_existing()
            .all()
        )

    def _require_signature(self, deal_id: str, role: SignerRole) -> ContractSignature:
        signature = self.get_signature(deal_id, role)
        if signature is None:
            raise SignatureNotFound()
        return signature

    def _signature_for_token(self, token: ActionToken) -> ContractSignature:
        if token.purpose != TokenPurpose.SIGN_CONTRACT.value or not token.signer_role:
            raise TokenNotFound()
        return self._require_signature(token.subject_id, SignerRole(token.signer_role))

    def _set_status(self, signature: ContractSignature, status: SignatureStatus) -> str:
        previous = signature.status
        signature.status = status.value
        signature.updated_at = self.clock.now()
        return previous

    def request_signature(
        self,
        deal_id: str,
        role: SignerRole,
        actor: Optional[str],
        signer_email: Optional[str] = None,
        signer_name: Optional[str] = None,
        ttl: Optional[timedelta] = None,
    ) -> IssuedToken:
        """Issue a fresh signing link for a (deal, role) slot.

        Creates the slot on first use. Any earlier signing token for the
        slot is revoked, so only the newest link can lead to a signature.
        Nothing changes unless the new link can be issued.
        """
        role = SignerRole(role)
        if not deal_id:
            raise InvalidTokenRequest("deal_id is required")
        ttl = self.tokens.resolve_ttl(TokenPurpose.SIGN_CONTRACT, ttl)
        signature = self.get_signature(deal_id, role)
        previous = signature.status if signature is not None else None

        if signature is None:
            if not signer_email:
                raise InvalidTokenRequest("signer_email is required for a new signature slot")
            now = self.clock.now()
            signature = ContractSignature(
                deal_id=deal_id,
                signer_role=role.value,
                signer_email=signer_email,
                signer_name=signer_name,
                status=SignatureStatus.NOT_READY.value,
                created_at=now,
                updated_at=now,
            )
            self.db.add(signature)
            try:
                self.db.flush()
            except IntegrityError:
                # Created concurrently by another request
                self.db.rollback()
                signature = self._require_signature(deal_id, role)
                previous = signature.status

        if signature.signed:
            raise SignatureAlreadyApplied(signature)

        if signer_email:
            signature.signer_email = signer_email
        if signer_name:
            signature.signer_name = signer_name

        # Revoke, issue and move the slot in one transaction
        self.tokens.revoke_outstanding(
            deal_id, TokenPurpose.SIGN_CONTRACT, actor, signer_role=role, commit=False
        )
        issued = self.tokens.issue(
            TokenPurpose.SIGN_CONTRACT,
            deal_id,
            ttl=ttl,
            recipient_hint=signature.signer_email,
            actor=actor,
            signer_role=role,
            commit=False,
        )
        self._set_status(signature, SignatureStatus.AWAITING_SIGNATURE)
        signature.active_token_id = issued.token.id
        self.audit.record(
            deal_id,
            AuditEvent.SIGNATURE_REQUESTED,
            actor_hint=actor,
            detail={"role": role, "token_id": issued.token.id, "previous_status": previous},
        )
        self.db.commit()
        self.tokens.finish_issue(issued)

        logger.info(
            f"Signature requested for {role.value}",
            extra={"deal_id": deal_id, "token_id": issued.token.id},
        )
        return issued

    def begin_verification(self, secret: str) -> IssuedChallenge:
        """Claim a signing link and send the signer a one-time code.

        If the claim fails, its typed error propagates and no challenge is
        created.
        """
        token = self.tokens.claim(secret, TokenPurpose.SIGN_CONTRACT)
        signature = self._signature_for_token(token)
        if signature.signed:
            raise SignatureAlreadyApplied(signature)
        if signature.active_token_id != token.id:
            raise TokenRevoked()

        issued = self.otp.challenge(token.id)

        signature = self._signature_for_token(token)
        self._set_status(signature, SignatureStatus.OTP_PENDING)
        self.audit.record(
            token.subject_id,
            AuditEvent.SIGNATURE_OTP_PENDING,
            actor_hint=token.recipient_hint,
            detail={
                "role": signature.signer_role,
                "token_id": token.id,
                "otp_expires_at": issued.challenge.expires_at,
            },
        )
        self.db.commit()

        dispatch_with_audit(
            self.dispatcher,
            self.audit,
            token.subject_id,
            signature.signer_email,
            OTP_NOTIFICATION_PURPOSE,
            {
                "token_id": token.id,
                "deal_id": token.subject_id,
                "role": signature.signer_role,
                "code": issued.code,
                "expires_at": issued.challenge.expires_at.isoformat(),
            },
        )
        return issued

    def confirm_signature(
        self,
        token_id: str,
        code: str,
        signer_name: Optional[str],
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> ContractSignature:
        """Verify the OTP and apply the signature.

        On any OTP error the row is left untouched and the error propagates.
        """
        token = self.tokens.get(token_id)
        signature = self._signature_for_token(token)
        if signature.signed:
            raise SignatureAlreadyApplied(signature)
        if token.revoked or signature.active_token_id != token.id:
            raise TokenRevoked()

        verification = self.otp.verify(token.id, code)

        now = self.clock.now()
        signer_name = signer_name or signature.signer_name
        applied = self.db.execute(
            update(ContractSignature)
            .where(
                ContractSignature.id == signature.id,
                ContractSignature.signed == False,  # noqa: E712
                ContractSignature.active_token_id == token.id,
            )
            .values(
                status=SignatureStatus.SIGNED.value,
                signed=True,
                signed_at=now,
                otp_verified=True,
                otp_verified_at=verification.verified_at,
                signer_name=signer_name,
                ip_address=ip_address,
                user_agent=user_agent,
                updated_at=now,
            )
            .returning(ContractSignature.id)
            .execution_options(synchronize_session=False)
        ).scalar_one_or_none()

        if applied is None:
            # Signed, reset or superseded by a concurrent request
            self.db.rollback()
            signature = self._signature_for_token(token)
            if signature.signed:
                raise SignatureAlreadyApplied(signature)
            raise TokenRevoked()

        self.audit.record(
            token.subject_id,
            AuditEvent.SIGNATURE_APPLIED,
            actor_hint=signer_name,
            detail={
                "role": token.signer_role,
                "token_id": token.id,
                "signer_name": signer_name,
                "ip_address": ip_address,
                "otp_verified_at": verification.verified_at,
            },
        )
        self.db.commit()

        signature = self._signature_for_token(token)
        signatures_applied.labels(role=signature.signer_role).inc()
        logger.info(
            f"Signature applied for {signature.signer_role}",
            extra={"deal_id": signature.deal_id, "token_id": token.id},
        )

        self._publish(
            SignatureCompleted(
                deal_id=signature.deal_id,
                role=signature.signer_role,
                fully_executed=self.contract_status(signature.deal_id) == ContractStatus.FULLY_EXECUTED,
            )
        )
        return signature

    def _publish(self, event: SignatureCompleted) -> None:
        if self.publisher is None:
            return
        try:
            self.publisher.publish(event)
        except Exception as e:
            # The signature is committed; subscribers can be replayed from the audit log
            logger.error(
                f"Failed to publish SignatureCompleted: {e.__class__.__name__}",
                extra={"deal_id": event.deal_id, "role": event.role},
            )

    def reset_signature(
        self,
        deal_id: str,
        role: SignerRole,
        actor: Optional[str],
        reason: Optional[str] = None,
    ) -> ContractSignature:
        """Administrative reset back to ``not_ready``.

        Clears the signature, revokes every signing token for the slot and
        detaches the active one. Signing again needs a new request, a new
        token and a new OTP.
        """
        role = SignerRole(role)
        signature = self._require_signature(deal_id, role)
        active_token_id = signature.active_token_id

        self.tokens.revoke_outstanding(
            deal_id, TokenPurpose.SIGN_CONTRACT, actor, signer_role=role, reason="signature_reset"
        )
        if active_token_id:
            active = self.db.get(ActionToken, active_token_id, populate_existing=True)
            if active is not None and not active.revoked:
                self.tokens.revoke(active.id, actor, reason="signature_reset")

        signature = self._require_signature(deal_id, role)
        was_signed = signature.signed
        previous = self._set_status(signature, SignatureStatus.NOT_READY)
        signature.signed = False
        signature.signed_at = None
        signature.otp_verified = False
        signature.otp_verified_at = None
        signature.active_token_id = None
        signature.ip_address = None
        signature.user_agent = None

        self.audit.record(
            deal_id,
            AuditEvent.SIGNATURE_RESET,
            actor_hint=actor,
            detail={
                "role": role,
                "reason": reason,
                "previous_status": previous,
                "was_signed": was_signed,
                "revoked_token_id": active_token_id,
            },
        )
        self.db.commit()

        signature_resets.labels(role=role.value).inc()
        logger.warning(
            f"Signature reset for {role.value}",
            extra={"deal_id": deal_id, "actor": actor, "was_signed": was_signed},
        )
        return signature

    def handle_token_revoked(self, token: ActionToken, actor: Optional[str]) -> Optional[ContractSignature]:
        """Move a slot to ``revoked`` when its active signing token is revoked."""
        if token.purpose != TokenPurpose.SIGN_CONTRACT.value:
            return None

        signature = (
            self.db.query(ContractSignature)
            .filter(ContractSignature.active_token_id == token.id)
            .populate_existing()
            .first()
        )
        if signature is None or signature.signed or signature.status == SignatureStatus.REVOKED.value:
            return signature

        previous = self._set_status(signature, SignatureStatus.REVOKED)
        self.audit.record(
            signature.deal_id,
            AuditEvent.SIGNATURE_REVOKED,
            actor_hint=actor,
            detail={"role": signature.signer_role, "token_id": token.id, "previous_status": previous},
        )
        self.db.commit()
        return signature

    def contract_status(self, deal_id: str) -> ContractStatus:
        """Derive the deal-level status from its signature rows."""
        signatures = self.list_signatures(deal_id)
        signed_roles = {s.signer_role for s in signatures if s.signed}
        statuses = {s.status for s in signatures}

        if signed_roles >= {SignerRole.CREATOR.value, SignerRole.BRAND.value}:
            return ContractStatus.FULLY_EXECUTED
        if SignerRole.CREATOR.value in signed_roles:
            return ContractStatus.SIGNED_BY_CREATOR
        if SignerRole.BRAND.value in signed_roles:
            return ContractStatus.SIGNED_BY_BRAND
        if SignatureStatus.OTP_PENDING.value in statuses:
            return ContractStatus.OTP_CHALLENGED
        if SignatureStatus.AWAITING_SIGNATURE.value in statuses:
            return ContractStatus.READY
        return ContractStatus.DRAFT
