"""Periodic expiry sweep.

Every read path already rejects expired tokens and challenges; the sweep
only stamps ``expired_at`` and moves stale signature slots to ``expired``
so reporting and the audit trail reflect it.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from pactlink_api.audit.log import AuditLog
from pactlink_api.models import (
    ActionToken,
    AuditEvent,
    ContractSignature,
    OTPChallenge,
    SignatureStatus,
)
from pactlink_api.providers import Clock, SystemClock
from pactlink_api.settings import Settings, get_settings
from pactlink_api.utils.metrics import expiry_sweep_marked

logger = logging.getLogger(__name__)


@dataclass
class SweepResult:
    tokens: int = 0
    challenges: int = 0
    signatures: int = 0

    def to_dict(self) -> dict:
        return {"tokens": self.tokens, "challenges": self.challenges, "signatures": self.signatures}


class ExpirySweeper:
    """Mark expired tokens, challenges and signature slots in batches."""

    def __init__(
        self,
        db: Session,
        clock: Optional[Clock] = None,
        audit: Optional[AuditLog] = None,
        settings: Optional[Settings] = None,
    ):
        self.db = db
        self.settings = settings or get_settings()
        self.clock = clock or SystemClock()
        self.audit = audit or AuditLog(db, self.clock)
        self.batch_size = self.settings.expiry_sweep_batch_size

    def run(self) -> SweepResult:
        """Run one full sweep."""
        now = self.clock.now()
        result = SweepResult(
            tokens=self._sweep_tokens(now),
            challenges=self._sweep_challenges(now),
            signatures=self._sweep_signatures(now),
        )
        logger.info("Expiry sweep finished", extra=result.to_dict())
        return result

    def _sweep_tokens(self, now) -> int:
        marked = 0
        while True:
            batch = (
                self.db.query(ActionToken)
                .filter(
                    ActionToken.used == False,  # noqa: E712
                    ActionToken.revoked == False,  # noqa: E712
                    ActionToken.expires_at <= now,
                    ActionToken.expired_at.is_(None),
                )
                .order_by(ActionToken.expires_at.asc())
                .limit(self.batch_size)
                .all()
            )
            if not batch:
                break

            for token in batch:
                token.expired_at = now
                self.audit.record(
                    token.subject_id,
                    AuditEvent.TOKEN_EXPIRED,
                    actor_hint="system",
                    detail={"token_id": token.id, "purpose": token.purpose, "expires_at": token.expires_at},
                )
            self.db.commit()
            marked += len(batch)
            expiry_sweep_marked.labels(kind="token").inc(len(batch))

        return marked

    def _sweep_challenges(self, now) -> int:
        marked = 0
        while True:
            batch = (
                self.db.query(OTPChallenge)
                .filter(
                    OTPChallenge.verified == False,  # noqa: E712
                    OTPChallenge.expires_at <= now,
                    OTPChallenge.expired_at.is_(None),
                )
                .order_by(OTPChallenge.id.asc())
                .limit(self.batch_size)
                .all()
            )
            if not batch:
                break

            for challenge in batch:
                challenge.expired_at = now
                self.audit.record(
                    challenge.token.subject_id,
                    AuditEvent.OTP_EXPIRED,
                    actor_hint="system",
                    detail={"token_id": challenge.token_id, "attempts": challenge.attempts, "source": "sweep"},
                )
            self.db.commit()
            marked += len(batch)
            expiry_sweep_marked.labels(kind="challenge").inc(len(batch))

        return marked

    def _sweep_signatures(self, now) -> int:
        marked = 0
        while True:
            batch = (
                self.db.query(ContractSignature)
                .join(ActionToken, ContractSignature.active_token_id == ActionToken.id)
                .outerjoin(OTPChallenge, OTPChallenge.token_id == ActionToken.id)
                .filter(
                    ContractSignature.status.in_(
                        [SignatureStatus.AWAITING_SIGNATURE.value, SignatureStatus.OTP_PENDING.value]
                    ),
                    ContractSignature.signed == False,  # noqa: E712
                    or_(ActionToken.expires_at <= now, OTPChallenge.expires_at <= now),
                )
                .order_by(ContractSignature.id.asc())
                .limit(self.batch_size)
                .all()
            )
            if not batch:
                break

            for signature in batch:
                previous = signature.status
                signature.status = SignatureStatus.EXPIRED.value
                signature.updated_at = now
                self.audit.record(
                    signature.deal_id,
                    AuditEvent.SIGNATURE_EXPIRED,
                    actor_hint="system",
                    detail={
                        "role": signature.signer_role,
                        "token_id": signature.active_token_id,
                        "previous_status": previous,
                    },
                )
            self.db.commit()
            marked += len(batch)
            expiry_sweep_marked.labels(kind="signature").inc(len(batch))

        return marked
