"""Per-purpose token policy.

One polymorphic ActionToken serves every flow; what differs between flows
is captured here instead of in separate tables or code paths.
"""

from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from pactlink_api.models import TokenPurpose
from pactlink_api.settings import Settings, get_settings


@dataclass(frozen=True)
class PurposePolicy:
    purpose: TokenPurpose
    single_use: bool
    requires_otp: bool
    default_ttl: timedelta


def policy_for(purpose: TokenPurpose, settings: Optional[Settings] = None) -> PurposePolicy:
    """Return the policy for a purpose."""
    settings = settings or get_settings()
    purpose = TokenPurpose(purpose)

    if purpose == TokenPurpose.VIEW_CONTRACT:
        return PurposePolicy(purpose, single_use=False, requires_otp=False,
                             default_ttl=timedelta(hours=settings.view_contract_ttl_hours))
    if purpose == TokenPurpose.BRAND_REPLY:
        return PurposePolicy(purpose, single_use=True, requires_otp=False,
                             default_ttl=timedelta(hours=settings.brand_reply_ttl_hours))
    if purpose == TokenPurpose.SHIPPING_UPDATE:
        return PurposePolicy(purpose, single_use=True, requires_otp=False,
                             default_ttl=timedelta(hours=settings.shipping_update_ttl_hours))
    if purpose == TokenPurpose.DEAL_DETAILS:
        return PurposePolicy(purpose, single_use=True, requires_otp=False,
                             default_ttl=timedelta(hours=settings.deal_details_ttl_hours))
    # sign_contract
    return PurposePolicy(purpose, single_use=True, requires_otp=True,
                         default_ttl=timedelta(hours=settings.sign_contract_ttl_hours))
