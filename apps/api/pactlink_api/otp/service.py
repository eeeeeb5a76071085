"""One-time passcode challenges bound to action tokens."""

import hashlib
import hmac
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from pactlink_api.audit.log import AuditLog
from pactlink_api.errors import (
    OTPAttemptsExceeded,
    OTPChallengeExists,
    OTPExpired,
    OTPMismatch,
    OTPNotIssued,
    TokenNotFound,
)
from pactlink_api.models import ActionToken, AuditEvent, OTPChallenge
from pactlink_api.providers import Clock, RandomSource, SystemClock
from pactlink_api.settings import Settings, get_settings
from pactlink_api.utils.metrics import otp_challenges_issued, otp_verifications

logger = logging.getLogger(__name__)


def hash_code(code: str, salt: str) -> str:
    """Compute salted HMAC-SHA256 of an OTP code."""
    return hmac.new(salt.encode(), code.encode(), hashlib.sha256).hexdigest()


@dataclass
class IssuedChallenge:
    """A stored challenge plus the plaintext code, which is never persisted."""

    challenge: OTPChallenge
    code: str


@dataclass
class OTPVerification:
    token_id: str
    verified_at: datetime
    attempts: int
    already_verified: bool = False


class OTPService:
    """Issue and verify OTP challenges.

    Every verification consumes an attempt before the code is compared, via
    a conditional increment that refuses to go past ``max_attempts``. Two
    concurrent wrong guesses therefore cost two attempts, and no number of
    parallel requests can exceed the limit.
    """

    def __init__(
        self,
        db: Session,
        clock: Optional[Clock] = None,
        random_source: Optional[RandomSource] = None,
        audit: Optional[AuditLog] = None,
        settings: Optional[Settings] = None,
    ):
        """Initialize OTP service."""
        self.db = db
        self.settings = settings or get_settings()
        self.clock = clock or SystemClock()
        self.random = random_source or RandomSource(self.settings.token_secret_bytes)
        self.audit = audit or AuditLog(db, self.clock)

    def _get_challenge(self, token_id: str) -> Optional[OTPChallenge]:
        return (
            self.db.query(OTPChallenge)
            .filter(OTPChallenge.token_id == token_id)
            .populate_existing()
            .first()
        )

    def challenge(self, token_id: str) -> IssuedChallenge:
        """Create the single challenge for a token.

        The challenge never outlives its token. A second call for the same
        token raises OTPChallengeExists; a fresh code needs a fresh token.
        """
        token = self.db.get(ActionToken, token_id)
        if token is None:
            raise TokenNotFound()
        if self._get_challenge(token_id) is not None:
            raise OTPChallengeExists()

        now = self.clock.now()
        code = self.random.otp_code(self.settings.otp_digits)
        salt = self.random.salt()
        expires_at = min(now + timedelta(seconds=self.settings.otp_ttl_seconds), token.expires_at)

        challenge = OTPChallenge(
            token_id=token.id,
            code_hash=hash_code(code, salt),
            salt=salt,
            created_at=now,
            expires_at=expires_at,
            attempts=0,
            max_attempts=self.settings.otp_max_attempts,
            verified=False,
        )
        self.db.add(challenge)
        try:
            self.db.flush()
        except IntegrityError:
            # Lost a race with a concurrent challenge for the same token
            self.db.rollback()
            raise OTPChallengeExists()

        self.audit.record(
            token.subject_id,
            AuditEvent.OTP_ISSUED,
            actor_hint=token.recipient_hint,
            detail={
                "token_id": token.id,
                "expires_at": expires_at,
                "max_attempts": challenge.max_attempts,
            },
        )
        self.db.commit()

        otp_challenges_issued.inc()
        logger.info("OTP challenge issued", extra={"token_id": token.id, "subject_id": token.subject_id})
        return IssuedChallenge(challenge=challenge, code=code)

    def verify(self, token_id: str, code: str) -> OTPVerification:
        """Check a submitted code.

        Raises OTPNotIssued, OTPExpired, OTPAttemptsExceeded or OTPMismatch.
        Re-verifying an already verified, unexpired challenge succeeds
        without consuming an attempt.
        """
        now = self.clock.now()

        landed = self.db.execute(
            update(OTPChallenge)
            .where(
                OTPChallenge.token_id == token_id,
                OTPChallenge.attempts < OTPChallenge.max_attempts,
                OTPChallenge.verified == False,  # noqa: E712
            )
            .values(attempts=OTPChallenge.attempts + 1)
            .returning(OTPChallenge.attempts, OTPChallenge.max_attempts)
            .execution_options(synchronize_session=False)
        ).one_or_none()
        # The attempt stays consumed whatever the outcome
        self.db.commit()

        challenge = self._get_challenge(token_id)
        if challenge is None:
            otp_verifications.labels(outcome="not_issued").inc()
            raise OTPNotIssued()
        token = challenge.token

        if landed is None:
            if challenge.verified:
                if now >= challenge.expires_at:
                    self._fail(challenge, token, AuditEvent.OTP_EXPIRED, "expired")
                    raise OTPExpired()
                return self._verified(challenge, token, already_verified=True)
            self._fail(challenge, token, AuditEvent.OTP_ATTEMPTS_EXCEEDED, "attempts_exceeded")
            raise OTPAttemptsExceeded()

        if now >= challenge.expires_at:
            self._fail(challenge, token, AuditEvent.OTP_EXPIRED, "expired")
            raise OTPExpired()

        if not hmac.compare_digest(hash_code(str(code or ""), challenge.salt), challenge.code_hash):
            # Concurrent attempts may have landed since; report this attempt's own count
            attempts, max_attempts = landed
            self._fail(challenge, token, AuditEvent.OTP_MISMATCH, "mismatch", attempts=attempts)
            raise OTPMismatch(attempts_remaining=max(max_attempts - attempts, 0))

        marked = self.db.execute(
            update(OTPChallenge)
            .where(OTPChallenge.id == challenge.id, OTPChallenge.verified == False)  # noqa: E712
            .values(verified=True, verified_at=now)
            .returning(OTPChallenge.id)
            .execution_options(synchronize_session=False)
        ).scalar_one_or_none()

        challenge = self._get_challenge(token_id)
        return self._verified(challenge, token, already_verified=marked is None)

    def _verified(self, challenge: OTPChallenge, token: ActionToken, already_verified: bool) -> OTPVerification:
        self.audit.record(
            token.subject_id,
            AuditEvent.OTP_VERIFIED,
            actor_hint=token.recipient_hint,
            detail={
                "token_id": token.id,
                "attempts": challenge.attempts,
                "already_verified": already_verified,
            },
        )
        self.db.commit()

        otp_verifications.labels(outcome="already_verified" if already_verified else "verified").inc()
        logger.info("OTP verified", extra={"token_id": token.id, "subject_id": token.subject_id})
        return OTPVerification(
            token_id=token.id,
            verified_at=challenge.verified_at,
            attempts=challenge.attempts,
            already_verified=already_verified,
        )

    def _fail(
        self,
        challenge: OTPChallenge,
        token: ActionToken,
        event: AuditEvent,
        outcome: str,
        attempts: Optional[int] = None,
    ) -> None:
        attempts = challenge.attempts if attempts is None else attempts
        self.audit.record(
            token.subject_id,
            event,
            actor_hint=token.recipient_hint,
            detail={
                "token_id": token.id,
                "attempts": attempts,
                "attempts_remaining": max(challenge.max_attempts - attempts, 0),
            },
        )
        self.db.commit()
        otp_verifications.labels(outcome=outcome).inc()
        logger.info(f"OTP verification failed: {outcome}", extra={"token_id": token.id})
