from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

from patron_gate.client.storage import KeyValueStore
from patron_gate.membership import Identity, MembershipData, MembershipType

logger = logging.getLogger(__name__)


class SessionUser(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    display_name: str = ""
    avatar_url: Optional[str] = None
    avatar_thumb_url: Optional[str] = None

    @property
    def first_name(self) -> str:
        parts = self.display_name.split()
        return parts[0] if parts else ""


class Session(BaseModel):
    """Authenticated visitor state, persisted wholesale under one durable key."""

    model_config = ConfigDict(extra="ignore")

    user: SessionUser
    membership_type: MembershipType = MembershipType.NONE
    membership_data: Optional[MembershipData] = None
    is_paying_member: bool = False
    access_token: str
    refresh_token: Optional[str] = None
    expires_at: datetime

    @field_validator("expires_at")
    @classmethod
    def _ensure_timezone_aware(cls, v: datetime) -> datetime:
        # Prevent naive/aware mixing bugs in expiry comparisons.
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v

    def is_valid(self, now: datetime) -> bool:
        return self.expires_at > now

    @classmethod
    def from_login(cls, identity: Identity, tokens: Dict[str, Any], *, issued_at: datetime) -> "Session":
        """Merge the relay's identity answer with the token payload."""
        access_token = str(tokens.get("access_token") or "").strip()
        if not access_token:
            raise ValueError("Token response missing access_token")
        try:
            expires_in = float(tokens.get("expires_in") or 0)
        except (TypeError, ValueError):
            expires_in = 0.0
        return cls(
            user=SessionUser(
                id=identity.user.id,
                display_name=identity.user.full_name,
                avatar_url=identity.user.image_url,
                avatar_thumb_url=identity.user.thumb_url,
            ),
            membership_type=identity.membership_type,
            membership_data=identity.membership_data,
            is_paying_member=identity.is_paying_member,
            access_token=access_token,
            refresh_token=(str(tokens["refresh_token"]) if tokens.get("refresh_token") else None),
            expires_at=issued_at + timedelta(seconds=expires_in),
        )


def save_session(store: KeyValueStore, key: str, session: Session) -> None:
    store.set(key, session.model_dump_json())


def load_session(store: KeyValueStore, key: str, *, now: datetime) -> Optional[Session]:
    """
    Load a persisted session.

    Corrupt or expired payloads are deleted from the store and never returned.
    """
    try:
        raw = store.get(key)
        if not raw:
            return None
        session = Session.model_validate_json(raw)
    except (ValidationError, ValueError, OSError) as e:
        # UnicodeDecodeError is a ValueError: undecodable bytes count as corrupt.
        logger.warning("Discarding unreadable stored session: %s", type(e).__name__)
        store.remove(key)
        return None
    if not session.is_valid(now):
        logger.info("Stored session expired at %s", session.expires_at.isoformat())
        store.remove(key)
        return None
    return session


def clear_session(store: KeyValueStore, key: str) -> None:
    store.remove(key)
