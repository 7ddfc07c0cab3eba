from __future__ import annotations

from collections import Counter

from studyhub.files import Category, FileRecord
from studyhub.users import UserRecord


def human_bytes(value: int) -> str:
    units = ["B", "KB", "MB", "GB", "TB"]
    size = float(max(value, 0))
    for unit in units:
        if size < 1024 or unit == units[-1]:
            formatted = f"{size:.1f}".rstrip("0").rstrip(".")
            return f"{formatted or '0'} {unit}"
        size /= 1024
    return "0 B"


def summarize(files: list[FileRecord], users: list[UserRecord]) -> dict:
    buckets = Counter(f.category_bucket for f in files)
    total_bytes = sum(f.file_size for f in files)
    return {
        "total_files": len(files),
        "pending_files": sum(1 for f in files if not f.approved),
        "total_downloads": sum(f.downloads for f in files),
        "total_bytes": total_bytes,
        "storage_human": human_bytes(total_bytes),
        "total_users": len(users),
        "categories": {category.value: buckets.get(category, 0) for category in Category},
    }
