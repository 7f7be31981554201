"""Membership classification (single source of truth).

The Relay classifies the provider's identity document once; the Session Controller
only consumes the result. Both sides import the models below so the wire shape of
`/identity` is defined in one place.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict


class MembershipType(str, Enum):
    CREATOR = "creator"
    ACTIVE_PATRON = "active_patron"
    DECLINED_PATRON = "declined_patron"
    FORMER_PATRON = "former_patron"
    FREE_MEMBER = "free_member"
    NONE = "none"


PAYING_MEMBERSHIP_TYPES = frozenset({MembershipType.CREATOR, MembershipType.ACTIVE_PATRON})

# Provider-reported `last_charge_status` for a successful charge.
CHARGE_STATUS_PAID = "Paid"


class IdentityUser(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    full_name: str = ""
    image_url: Optional[str] = None
    thumb_url: Optional[str] = None


class MembershipData(BaseModel):
    """Membership attributes for the configured campaign. Amounts are in cents."""

    model_config = ConfigDict(extra="ignore")

    patron_status: Optional[str] = None
    last_charge_status: Optional[str] = None
    last_charge_date: Optional[str] = None
    lifetime_support_amount: Optional[int] = None
    currently_entitled_amount: Optional[int] = None
    pledge_start_date: Optional[str] = None


class Identity(BaseModel):
    """Normalized `/identity` response."""

    user: IdentityUser
    membership_type: MembershipType = MembershipType.NONE
    membership_data: Optional[MembershipData] = None
    is_paying_member: bool = False

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")


def is_paying_member(membership_type: MembershipType) -> bool:
    return MembershipType(membership_type) in PAYING_MEMBERSHIP_TYPES


def classify_patron_status(patron_status: Optional[str], last_charge_status: Optional[str]) -> MembershipType:
    if patron_status == "active_patron":
        if last_charge_status == CHARGE_STATUS_PAID:
            return MembershipType.ACTIVE_PATRON
        return MembershipType.DECLINED_PATRON
    if patron_status == "declined_patron":
        return MembershipType.DECLINED_PATRON
    if patron_status == "former_patron":
        return MembershipType.FORMER_PATRON
    return MembershipType.FREE_MEMBER


def _member_records(document: Dict[str, Any]) -> List[Dict[str, Any]]:
    included = document.get("included") or []
    if not isinstance(included, list):
        return []
    return [item for item in included if isinstance(item, dict) and item.get("type") == "member"]


def _campaign_id_of(member: Dict[str, Any]) -> Optional[str]:
    rel = ((member.get("relationships") or {}).get("campaign") or {}).get("data") or {}
    cid = rel.get("id") if isinstance(rel, dict) else None
    return str(cid) if cid is not None else None


def find_campaign_membership(document: Dict[str, Any], campaign_id: Optional[str]) -> Optional[Dict[str, Any]]:
    if not campaign_id:
        return None
    for member in _member_records(document):
        if _campaign_id_of(member) == str(campaign_id):
            return member
    return None


def _membership_data(member: Dict[str, Any]) -> MembershipData:
    attrs = member.get("attributes") or {}
    return MembershipData(
        patron_status=attrs.get("patron_status"),
        last_charge_status=attrs.get("last_charge_status"),
        last_charge_date=attrs.get("last_charge_date"),
        lifetime_support_amount=attrs.get("lifetime_support_cents"),
        currently_entitled_amount=attrs.get("currently_entitled_amount_cents"),
        pledge_start_date=attrs.get("pledge_relationship_start"),
    )


def classify_membership(
    document: Dict[str, Any],
    *,
    campaign_id: Optional[str],
    creator_id: Optional[str],
) -> Identity:
    """
    Classify a raw provider identity document.

    Args:
        document: JSON:API identity response (`data` = user, `included` = member/campaign records)
        campaign_id: The operator's campaign id
        creator_id: The operator's own user id

    Returns:
        Identity with membership_type, membership_data and the derived is_paying_member flag
    """
    user = document.get("data") or {}
    if not isinstance(user, dict) or user.get("id") is None:
        raise ValueError("Identity document missing user record")
    attrs = user.get("attributes") or {}
    identity_user = IdentityUser(
        id=str(user["id"]),
        full_name=str(attrs.get("full_name") or ""),
        image_url=attrs.get("image_url") or None,
        thumb_url=attrs.get("thumb_url") or None,
    )

    membership_type = MembershipType.NONE
    membership_data: Optional[MembershipData] = None

    if creator_id and identity_user.id == str(creator_id):
        membership_type = MembershipType.CREATOR
    else:
        member = find_campaign_membership(document, campaign_id)
        if member is not None:
            membership_data = _membership_data(member)
            membership_type = classify_patron_status(
                membership_data.patron_status, membership_data.last_charge_status
            )

    return Identity(
        user=identity_user,
        membership_type=membership_type,
        membership_data=membership_data,
        is_paying_member=is_paying_member(membership_type),
    )


# Display tables used by the login button and the user menu.
MEMBERSHIP_EMOJI: Dict[MembershipType, str] = {
    MembershipType.CREATOR: "\U0001f451",
    MembershipType.ACTIVE_PATRON: "⭐",
    MembershipType.DECLINED_PATRON: "⚠️",
    MembershipType.FORMER_PATRON: "\U0001f494",
    MembershipType.FREE_MEMBER: "\U0001f464",
    MembershipType.NONE: "\U0001f464",
}

MEMBERSHIP_LABELS: Dict[MembershipType, str] = {
    MembershipType.CREATOR: "Creator",
    MembershipType.ACTIVE_PATRON: "Active Patron",
    MembershipType.DECLINED_PATRON: "Payment Declined",
    MembershipType.FORMER_PATRON: "Former Patron",
    MembershipType.FREE_MEMBER: "Free Member",
    MembershipType.NONE: "Not a Member",
}

DEFAULT_EMOJI = MEMBERSHIP_EMOJI[MembershipType.NONE]
DEFAULT_LABEL = "Member"


def membership_emoji(membership_type: Any) -> str:
    try:
        return MEMBERSHIP_EMOJI.get(MembershipType(membership_type), DEFAULT_EMOJI)
    except ValueError:
        return DEFAULT_EMOJI


def membership_label(membership_type: Any) -> str:
    try:
        return MEMBERSHIP_LABELS.get(MembershipType(membership_type), DEFAULT_LABEL)
    except ValueError:
        return DEFAULT_LABEL


__all__ = [
    "CHARGE_STATUS_PAID",
    "Identity",
    "IdentityUser",
    "MembershipData",
    "MembershipType",
    "PAYING_MEMBERSHIP_TYPES",
    "classify_membership",
    "classify_patron_status",
    "find_campaign_membership",
    "is_paying_member",
    "membership_emoji",
    "membership_label",
]
