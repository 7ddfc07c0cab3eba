from __future__ import annotations

import logging
import os
import secrets
import string
import time
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from studyhub.core.errors import NotFound, StoreUnavailable, UnknownOwner
from studyhub.models import utcnow
from studyhub.store import RecordStore
from studyhub.users import UserDirectory

logger = logging.getLogger("studyhub")

FILE_PREFIX = "file:"

_SUFFIX_ALPHABET = string.ascii_lowercase + string.digits
_SUFFIX_LENGTH = 9
_MAX_ID_ATTEMPTS = 5


class Category(str, Enum):
    NOTES = "notes"
    RESEARCH = "research"
    ASSIGNMENTS = "assignments"
    PRESENTATIONS = "presentations"
    OTHER = "other"

    @classmethod
    def bucket(cls, value: str | None) -> Category:
        """Map a stored category string onto the known set; unknown values land in OTHER."""
        try:
            return cls((value or "").strip().lower())
        except ValueError:
            return cls.OTHER


DEFAULT_CATEGORY = Category.NOTES


class FileRecord(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str
    title: str
    description: str = ""
    category: str = DEFAULT_CATEGORY.value  # Raw value, see Category.bucket
    file_name: str
    file_size: int = Field(ge=0)
    author_id: str
    author: str  # Display name copied at upload time
    upload_date: datetime = Field(default_factory=utcnow)
    downloads: int = Field(default=0, ge=0)
    approved: bool = True
    shared: bool = True

    @property
    def category_bucket(self) -> Category:
        return Category.bucket(self.category)

    def dump(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


def _generate_file_id() -> str:
    suffix = "".join(secrets.choice(_SUFFIX_ALPHABET) for _ in range(_SUFFIX_LENGTH))
    return f"{int(time.time() * 1000)}-{suffix}"


def normalize_file_id(file_id: str) -> str:
    """Accept ids with or without the legacy ``file:`` prefix."""
    return file_id[len(FILE_PREFIX):] if file_id.startswith(FILE_PREFIX) else file_id


def file_key(file_id: str) -> str:
    return f"{FILE_PREFIX}{normalize_file_id(file_id)}"


def default_title(file_name: str) -> str:
    stem, _ = os.path.splitext(file_name)
    return stem or file_name


class FileRegistry:
    def __init__(self, store: RecordStore, users: UserDirectory) -> None:
        self.store = store
        self.users = users

    def create_file(
        self,
        owner_id: str,
        *,
        file_name: str,
        file_size: int,
        title: str | None = None,
        description: str = "",
        category: str | None = None,
    ) -> FileRecord:
        owner = self.users.find_user(owner_id)
        if owner is None:
            raise UnknownOwner()

        fields = dict(
            title=title or default_title(file_name),
            description=description or "",
            category=category or DEFAULT_CATEGORY.value,
            file_name=file_name,
            file_size=file_size,
            author_id=owner.id,
            author=owner.name or owner.email,
        )
        for _ in range(_MAX_ID_ATTEMPTS):
            record = FileRecord(id=_generate_file_id(), **fields)
            if self.store.add(file_key(record.id), record.dump()):
                logger.info(
                    "event=file_created file_id=%s owner_id=%s category=%s size_bytes=%s",
                    record.id, owner.id, record.category, record.file_size,
                )
                return record
        logger.error("event=file_id_exhausted owner_id=%s attempts=%d", owner_id, _MAX_ID_ATTEMPTS)
        raise StoreUnavailable()

    def get_file(self, file_id: str) -> FileRecord:
        value = self.store.get(file_key(file_id))
        if value is None:
            raise NotFound("File not found")
        return FileRecord.model_validate(value)

    def list_files(
        self,
        *,
        category: str | None = None,
        query: str | None = None,
        include_unapproved: bool = True,
    ) -> list[FileRecord]:
        files = [FileRecord.model_validate(v) for v in self.store.scan_by_prefix(FILE_PREFIX)]
        if not include_unapproved:
            files = [f for f in files if f.approved]
        if category and category != "all":
            wanted = Category.bucket(category)
            files = [f for f in files if f.category_bucket is wanted]
        if query:
            needle = query.lower()
            files = [
                f for f in files
                if needle in f.title.lower() or needle in f.description.lower() or needle in f.author.lower()
            ]
        return sorted(files, key=lambda f: f.upload_date, reverse=True)

    def record_download(self, file_id: str) -> int:
        def _increment(value: dict) -> dict:
            value["downloads"] = int(value.get("downloads") or 0) + 1
            return value

        updated = self.store.update(file_key(file_id), _increment)
        if updated is None:
            raise NotFound("File not found")
        logger.info("event=download_recorded file_id=%s downloads=%s", normalize_file_id(file_id), updated["downloads"])
        return updated["downloads"]

    def approve_file(self, file_id: str) -> FileRecord:
        def _approve(value: dict) -> dict:
            value["approved"] = True
            return value

        updated = self.store.update(file_key(file_id), _approve)
        if updated is None:
            raise NotFound("File not found")
        logger.info("event=file_approved file_id=%s", normalize_file_id(file_id))
        return FileRecord.model_validate(updated)

    def delete_file(self, file_id: str) -> None:
        if not self.store.delete(file_key(file_id)):
            raise NotFound("File not found")
        logger.info("event=file_deleted file_id=%s", normalize_file_id(file_id))
