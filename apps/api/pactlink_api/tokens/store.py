"""Token store: issue, claim and revoke action tokens."""

import hashlib
import hmac
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from pactlink_api.audit.log import AuditLog
from pactlink_api.errors import (
    InvalidTokenRequest,
    TokenAlreadyUsed,
    TokenError,
    TokenExpired,
    TokenNotFound,
    TokenRevoked,
)
from pactlink_api.models import ActionToken, AuditEvent, SignerRole, TokenPurpose
from pactlink_api.notifications.dispatcher import NotificationDispatcher, dispatch_with_audit
from pactlink_api.providers import Clock, RandomSource, SystemClock
from pactlink_api.settings import Settings, get_settings
from pactlink_api.tokens.purposes import policy_for
from pactlink_api.utils.metrics import token_claims, tokens_issued, tokens_revoked

logger = logging.getLogger(__name__)


def compute_secret_digest(secret: str, key: str) -> str:
    """Compute HMAC-SHA256 digest of a token secret."""
    return hmac.new(key.encode(), secret.encode(), hashlib.sha256).hexdigest()


@dataclass
class IssuedToken:
    """A freshly minted token together with its one-time plaintext secret."""

    token: ActionToken
    secret: str
    link: str


class TokenStore:
    """Persists action tokens and enforces their single-use and expiry rules.

    Claims of single-use tokens are one conditional UPDATE (compare-and-set
    on ``used``/``revoked``/``expires_at``), so concurrent claims across any
    number of service instances are linearized by the database.
    """

    def __init__(
        self,
        db: Session,
        clock: Optional[Clock] = None,
        random_source: Optional[RandomSource] = None,
        dispatcher: Optional[NotificationDispatcher] = None,
        audit: Optional[AuditLog] = None,
        settings: Optional[Settings] = None,
    ):
        """Initialize token store."""
        self.db = db
        self.settings = settings or get_settings()
        self.clock = clock or SystemClock()
        self.random = random_source or RandomSource(self.settings.token_secret_bytes)
        self.dispatcher = dispatcher
        self.audit = audit or AuditLog(db, self.clock)

    def _digest(self, secret: str) -> str:
        return compute_secret_digest(secret or "", self.settings.secret_key)

    def link_for(self, secret: str) -> str:
        return f"{self.settings.public_base_url.rstrip('/')}/t/{secret}"

    def _lookup(self, secret: str) -> Optional[ActionToken]:
        return (
            self.db.query(ActionToken)
            .filter(ActionToken.secret_digest == self._digest(secret))
            .populate_existing()
            .first()
        )

    def resolve_ttl(self, purpose: TokenPurpose, ttl: Optional[timedelta] = None) -> timedelta:
        """Apply the purpose default and the configured ceiling to a requested TTL."""
        ttl = ttl if ttl is not None else policy_for(purpose, self.settings).default_ttl
        if ttl <= timedelta(0) or ttl > timedelta(days=self.settings.max_token_ttl_days):
            raise InvalidTokenRequest(
                f"TTL must be positive and at most {self.settings.max_token_ttl_days} days"
            )
        return ttl

    def issue(
        self,
        purpose: TokenPurpose,
        subject_id: str,
        ttl: Optional[timedelta] = None,
        recipient_hint: Optional[str] = None,
        actor: Optional[str] = None,
        signer_role: Optional[SignerRole] = None,
        notify: bool = True,
        commit: bool = True,
    ) -> IssuedToken:
        """Mint and persist a token, then hand its link to the dispatcher.

        With ``commit=False`` the token joins the caller's transaction and no
        link is sent; the caller commits and then calls ``finish_issue``.
        """
        try:
            purpose = TokenPurpose(purpose)
        except ValueError:
            raise InvalidTokenRequest(f"Unknown token purpose: {purpose}")
        if not subject_id:
            raise InvalidTokenRequest("subject_id is required")
        ttl = self.resolve_ttl(purpose, ttl)
        if purpose == TokenPurpose.SIGN_CONTRACT and signer_role is None:
            raise InvalidTokenRequest("sign_contract tokens require a signer role")

        now = self.clock.now()
        secret = self.random.token_secret()
        token = ActionToken(
            secret_digest=self._digest(secret),
            purpose=purpose.value,
            subject_id=subject_id,
            signer_role=SignerRole(signer_role).value if signer_role else None,
            recipient_hint=recipient_hint,
            issued_by=actor,
            created_at=now,
            expires_at=now + ttl,
            used=False,
            revoked=False,
        )
        self.db.add(token)
        self.db.flush()

        self.audit.record(
            subject_id,
            AuditEvent.TOKEN_ISSUED,
            actor_hint=actor,
            detail={
                "token_id": token.id,
                "purpose": purpose,
                "expires_at": token.expires_at,
                "signer_role": token.signer_role,
                "recipient_hint": recipient_hint,
            },
        )
        issued = IssuedToken(token=token, secret=secret, link=self.link_for(secret))
        if not commit:
            return issued
        self.db.commit()
        self.finish_issue(issued, notify=notify)
        return issued

    def finish_issue(self, issued: IssuedToken, notify: bool = True) -> None:
        """Count, log and send a token once its transaction has committed."""
        token = issued.token
        tokens_issued.labels(purpose=token.purpose).inc()
        logger.info(
            f"Issued {token.purpose} token",
            extra={"token_id": token.id, "subject_id": token.subject_id, "purpose": token.purpose},
        )
        if notify:
            self.send_link(issued)

    def send_link(self, issued: IssuedToken) -> None:
        """Hand a committed token's link to the dispatcher."""
        token = issued.token
        dispatch_with_audit(
            self.dispatcher,
            self.audit,
            token.subject_id,
            token.recipient_hint,
            token.purpose,
            {
                "token_id": token.id,
                "subject_id": token.subject_id,
                "purpose": token.purpose,
                "expires_at": token.expires_at.isoformat(),
                "link": issued.link,
            },
        )

    def claim(self, secret: str, purpose: TokenPurpose) -> ActionToken:
        """Validate a token and, for single-use purposes, consume it atomically."""
        purpose = TokenPurpose(purpose)
        policy = policy_for(purpose, self.settings)
        now = self.clock.now()

        if policy.single_use:
            claimed_id = self.db.execute(
                update(ActionToken)
                .where(
                    ActionToken.secret_digest == self._digest(secret),
                    ActionToken.purpose == purpose.value,
                    ActionToken.used == False,  # noqa: E712
                    ActionToken.revoked == False,  # noqa: E712
                    ActionToken.expires_at > now,
                )
                .values(used=True, used_at=now)
                .returning(ActionToken.id)
                .execution_options(synchronize_session=False)
            ).scalar_one_or_none()
            if claimed_id is None:
                self._reject(secret, purpose, now)
            token = self.db.get(ActionToken, claimed_id, populate_existing=True)
        else:
            token = self._lookup(secret)
            if token is None or token.purpose != purpose.value or not token.is_usable(now):
                self._reject(secret, purpose, now)

        self.audit.record(
            token.subject_id,
            AuditEvent.TOKEN_CLAIMED,
            actor_hint=token.recipient_hint,
            detail={"token_id": token.id, "purpose": purpose, "single_use": policy.single_use},
        )
        self.db.commit()

        token_claims.labels(purpose=purpose.value, outcome="claimed").inc()
        logger.info(
            f"Claimed {purpose.value} token",
            extra={"token_id": token.id, "subject_id": token.subject_id},
        )
        return token

    def _classify(self, token: Optional[ActionToken], purpose: TokenPurpose, now: datetime) -> tuple[str, TokenError]:
        """Pick the failure reason. Expiry wins over the used/revoked flags."""
        if token is None:
            return "not_found", TokenNotFound()
        if token.purpose != purpose.value:
            # Reported as not-found so callers cannot probe for other purposes.
            return "purpose_mismatch", TokenNotFound()
        if now >= token.expires_at:
            return "expired", TokenExpired()
        if token.revoked:
            return "revoked", TokenRevoked()
        return "already_used", TokenAlreadyUsed()

    def _reject(self, secret: str, purpose: TokenPurpose, now: datetime):
        """Audit a failed claim and raise its typed error."""
        token = self._lookup(secret)
        reason, error = self._classify(token, purpose, now)

        self.audit.record(
            token.subject_id if token else None,
            AuditEvent.TOKEN_CLAIM_REJECTED,
            actor_hint=token.recipient_hint if token else None,
            detail={"reason": reason, "purpose": purpose, "token_id": token.id if token else None},
        )
        self.db.commit()

        token_claims.labels(purpose=purpose.value, outcome=reason).inc()
        logger.info(f"Rejected {purpose.value} token claim: {reason}")
        raise error

    def inspect(self, secret: str, purpose: Optional[TokenPurpose] = None) -> ActionToken:
        """Read-only usability check; changes nothing and writes no audit entry."""
        token = self._lookup(secret)
        if token is None or (purpose is not None and token.purpose != TokenPurpose(purpose).value):
            raise TokenNotFound()
        now = self.clock.now()
        if now >= token.expires_at:
            raise TokenExpired()
        if token.revoked:
            raise TokenRevoked()
        if token.used:
            raise TokenAlreadyUsed()
        return token

    def get(self, token_id: str) -> ActionToken:
        token = self.db.get(ActionToken, token_id, populate_existing=True)
        if token is None:
            raise TokenNotFound()
        return token

    def get_by_secret(self, secret: str) -> ActionToken:
        """Resolve a secret to its token regardless of usability."""
        token = self._lookup(secret)
        if token is None:
            raise TokenNotFound()
        return token

    def _revoke(self, token: ActionToken, actor: Optional[str], reason: Optional[str] = None) -> None:
        already_revoked = token.revoked
        if not already_revoked:
            token.revoked = True
            token.revoked_at = self.clock.now()
            token.revoked_by = actor
            tokens_revoked.labels(purpose=token.purpose).inc()

        self.audit.record(
            token.subject_id,
            AuditEvent.TOKEN_REVOKED,
            actor_hint=actor,
            detail={
                "token_id": token.id,
                "purpose": token.purpose,
                "already_revoked": already_revoked,
                "reason": reason,
            },
        )

    def revoke(self, token_id: str, actor: Optional[str], reason: Optional[str] = None) -> ActionToken:
        """Revoke a token. Idempotent; every call is audited."""
        token = self.get(token_id)
        self._revoke(token, actor, reason)
        self.db.commit()
        logger.info(f"Revoked token {token.id}", extra={"subject_id": token.subject_id})
        return token

    def revoke_outstanding(
        self,
        subject_id: str,
        purpose: TokenPurpose,
        actor: Optional[str],
        signer_role: Optional[SignerRole] = None,
        reason: str = "superseded",
        commit: bool = True,
    ) -> list[ActionToken]:
        """Revoke every still-usable token for a subject and purpose."""
        query = self.db.query(ActionToken).filter(
            ActionToken.subject_id == subject_id,
            ActionToken.purpose == TokenPurpose(purpose).value,
            ActionToken.used == False,  # noqa: E712
            ActionToken.revoked == False,  # noqa: E712
            ActionToken.expires_at > self.clock.now(),
        )
        if signer_role is not None:
            query = query.filter(ActionToken.signer_role == SignerRole(signer_role).value)

        tokens = query.all()
        for token in tokens:
            self._revoke(token, actor, reason)
        if commit:
            self.db.commit()
        return tokens
