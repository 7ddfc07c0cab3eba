from __future__ import annotations

import logging
from enum import Enum

from studyhub.core.errors import Forbidden, Unauthenticated
from studyhub.users import Role, UserDirectory, UserRecord

logger = logging.getLogger("studyhub")


class Decision(str, Enum):
    AUTHORIZED = "authorized"
    FORBIDDEN = "forbidden"
    UNAUTHENTICATED = "unauthenticated"


class AccessControl:
    """Role gate checked before any admin-only read or write reaches the store."""

    def __init__(self, users: UserDirectory) -> None:
        self.users = users

    def authorize(self, identity_id: str | None, required_role: Role) -> Decision:
        decision, _ = self._decide(identity_id, required_role)
        return decision

    def require(self, identity_id: str | None, required_role: Role) -> UserRecord:
        decision, user = self._decide(identity_id, required_role)
        if decision is Decision.UNAUTHENTICATED:
            raise Unauthenticated()
        if decision is Decision.FORBIDDEN:
            logger.warning(
                "event=access_denied identity_id=%s role=%s required=%s",
                identity_id, user.role.value, required_role.value,
            )
            raise Forbidden()
        return user

    def _decide(self, identity_id: str | None, required_role: Role) -> tuple[Decision, UserRecord | None]:
        user = self.users.find_user(identity_id) if identity_id else None
        if user is None:
            return Decision.UNAUTHENTICATED, None
        if not user.role.meets(required_role):
            return Decision.FORBIDDEN, user
        return Decision.AUTHORIZED, user
