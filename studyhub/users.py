from __future__ import annotations

import logging
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from studyhub.core.errors import DuplicateUser, NotFound
from studyhub.models import utcnow
from studyhub.store import RecordStore

logger = logging.getLogger("studyhub")

USER_PREFIX = "user:"


class Role(str, Enum):
    MEMBER = "member"
    ADMIN = "admin"

    @classmethod
    def _missing_(cls, value):
        # Legacy records say "user"; anything unrecognized gets the least privilege
        return cls.MEMBER

    def meets(self, required: Role) -> bool:
        return self is Role.ADMIN or required is Role.MEMBER


class UserRecord(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str
    email: str
    name: str = ""
    role: Role = Role.MEMBER
    created_at: datetime = Field(default_factory=utcnow)

    def dump(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


def user_key(identity_id: str) -> str:
    return f"{USER_PREFIX}{identity_id}"


class UserDirectory:
    def __init__(self, store: RecordStore) -> None:
        self.store = store

    def create_user(self, identity_id: str, email: str, name: str) -> UserRecord:
        user = UserRecord(id=identity_id, email=email, name=name, role=Role.MEMBER)
        if not self.store.add(user_key(identity_id), user.dump()):
            raise DuplicateUser()
        logger.info("event=user_created identity_id=%s", identity_id)
        return user

    def find_user(self, identity_id: str) -> UserRecord | None:
        value = self.store.get(user_key(identity_id))
        return UserRecord.model_validate(value) if value is not None else None

    def get_user(self, identity_id: str) -> UserRecord:
        user = self.find_user(identity_id)
        if user is None:
            raise NotFound("User not found")
        return user

    def list_all(self) -> list[UserRecord]:
        users = [UserRecord.model_validate(v) for v in self.store.scan_by_prefix(USER_PREFIX)]
        return sorted(users, key=lambda u: u.created_at)

    def provision_admin(self, identity_id: str, email: str, name: str) -> UserRecord:
        """Out-of-band escalation: create an admin profile or promote an existing one."""
        admin = UserRecord(id=identity_id, email=email, name=name, role=Role.ADMIN)
        if self.store.add(user_key(identity_id), admin.dump()):
            logger.warning("event=admin_provisioned identity_id=%s created=true", identity_id)
            return admin

        def _promote(value: dict) -> dict:
            value["role"] = Role.ADMIN.value
            return value

        promoted = self.store.update(user_key(identity_id), _promote)
        if promoted is None:
            raise NotFound("User not found")
        logger.warning("event=admin_provisioned identity_id=%s created=false", identity_id)
        return UserRecord.model_validate(promoted)
