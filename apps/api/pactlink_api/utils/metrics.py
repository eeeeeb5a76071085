"""Prometheus metrics."""

from prometheus_client import Counter

# Token metrics
tokens_issued = Counter(
    "pactlink_tokens_issued_total",
    "Total action tokens issued",
    ["purpose"],
)

token_claims = Counter(
    "pactlink_token_claims_total",
    "Token claim attempts by outcome",
    ["purpose", "outcome"],
)

tokens_revoked = Counter(
    "pactlink_tokens_revoked_total",
    "Total action tokens revoked",
    ["purpose"],
)

# OTP metrics
otp_challenges_issued = Counter(
    "pactlink_otp_challenges_issued_total",
    "Total OTP challenges issued",
)

otp_verifications = Counter(
    "pactlink_otp_verifications_total",
    "OTP verification attempts by outcome",
    ["outcome"],
)

# Signature metrics
signatures_applied = Counter(
    "pactlink_signatures_applied_total",
    "Total contract signatures applied",
    ["role"],
)

signature_resets = Counter(
    "pactlink_signature_resets_total",
    "Administrative signature resets",
    ["role"],
)

# Collaborator and audit health
audit_write_failures = Counter(
    "pactlink_audit_write_failures_total",
    "Audit entries that could not be persisted",
    ["event_type"],
)

notification_failures = Counter(
    "pactlink_notification_failures_total",
    "Notification dispatches that failed to enqueue",
    ["purpose"],
)

expiry_sweep_marked = Counter(
    "pactlink_expiry_sweep_marked_total",
    "Records marked expired by the periodic sweep",
    ["kind"],
)
