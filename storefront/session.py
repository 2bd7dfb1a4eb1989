from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass
from typing import Literal, Optional

from storefront.events import SESSION_CHANGED, EventBus

logger = logging.getLogger(__name__)

SESSION_KEY = "session_v1"

Role = Literal["customer", "vendor", "admin"]
ROLES = ("customer", "vendor", "admin")


@dataclass
class Session:
    """
    Who is using the storefront right now.

    Fields:
      - user_id: remote users id; None for a guest
      - email / display_name: shown on reviews and in the header
      - role: "customer" | "vendor" | "admin"
      - token: bearer token issued by /api/login
    """

    user_id: Optional[str] = None
    email: Optional[str] = None
    display_name: Optional[str] = None
    role: Optional[str] = None
    token: Optional[str] = None

    @property
    def signed_in(self) -> bool:
        return bool(self.user_id)

    @property
    def authenticated(self) -> bool:
        return bool(self.user_id and self.token)

    @property
    def user_role(self) -> Role:
        normalized = str(self.role or "").strip().lower()
        return normalized if normalized in ROLES else "customer"

    def has_role(self, role: Role) -> bool:
        return self.signed_in and self.user_role == role

    @property
    def reviewer_name(self) -> str:
        return str(self.display_name or "").strip() or str(self.email or "").strip()

    @classmethod
    def from_login(cls, payload: dict) -> Session:
        user = payload.get("user") or {}
        return cls(
            user_id=str(user.get("id")) if user.get("id") else None,
            email=user.get("email") or None,
            display_name=user.get("name") or None,
            role=user.get("role") or None,
            token=payload.get("access_token") or None,
        )


class SessionStore:
    key = SESSION_KEY

    def __init__(self, storage, bus: Optional[EventBus] = None):
        self.storage = storage
        self.bus = bus

    def load(self) -> Session:
        raw = self.storage.get_item(self.key)
        if not raw:
            return Session()
        try:
            data = json.loads(raw)
        except ValueError as exc:
            logger.warning("Failed to parse session from storage: %s", exc)
            return Session()
        if not isinstance(data, dict):
            return Session()
        known = {name: data.get(name) for name in Session.__dataclass_fields__}
        return Session(**known)

    def save(self, session: Session) -> None:
        payload = asdict(session)
        try:
            self.storage.set_item(self.key, json.dumps(payload))
        except (OSError, TypeError, ValueError) as exc:
            logger.error("Failed to store session: %s", exc)
            return
        if self.bus is not None:
            self.bus.notify_change(SESSION_CHANGED, self.key, payload)

    def clear(self) -> None:
        try:
            self.storage.remove_item(self.key)
        except OSError as exc:
            logger.error("Failed to clear session: %s", exc)
            return
        if self.bus is not None:
            self.bus.notify_change(SESSION_CHANGED, self.key, None)
