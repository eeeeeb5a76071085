"""Database models - import all models here for Alembic discovery."""

from pactlink_api.models.api_key import InternalAPIKey
from pactlink_api.models.audit import AuditEntry, AuditEvent
from pactlink_api.models.signature import ContractSignature, SignatureStatus, SignerRole
from pactlink_api.models.token import ActionToken, OTPChallenge, TokenPurpose

__all__ = [
    "ActionToken",
    "OTPChallenge",
    "TokenPurpose",
    "ContractSignature",
    "SignatureStatus",
    "SignerRole",
    "AuditEntry",
    "AuditEvent",
    "InternalAPIKey",
]
