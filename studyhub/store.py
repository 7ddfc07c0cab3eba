from __future__ import annotations

import logging
import random
import time
from typing import Any, Callable, TypeVar

from sqlalchemy import delete, func, insert, select, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeout
from sqlmodel import col

from studyhub.core.errors import StoreUnavailable
from studyhub.models import Record, utcnow

logger = logging.getLogger("studyhub.store")

T = TypeVar("T")

_TRANSIENT_ERRORS = (OperationalError, PoolTimeout)


class RecordStore:
    """Durable mapping of string keys to JSON records with prefix enumeration.

    Every call runs in its own short transaction. Transient database failures are
    retried with exponential backoff and surface as ``StoreUnavailable`` once the
    retry budget is spent.
    """

    def __init__(
        self,
        engine: Engine,
        *,
        max_retries: int = 3,
        retry_base_delay: float = 0.1,
        cas_attempts: int = 50,
    ) -> None:
        self._engine = engine
        self.max_retries = max_retries
        self.retry_base_delay = retry_base_delay
        self.cas_attempts = cas_attempts

    def get(self, key: str) -> dict | None:
        def _get():
            with self._engine.connect() as conn:
                return conn.execute(select(Record.value).where(col(Record.key) == key)).scalar_one_or_none()

        return self._run("get", key, _get)

    def set(self, key: str, value: dict) -> None:
        def _set():
            with self._engine.begin() as conn:
                result = conn.execute(
                    update(Record)
                    .where(col(Record.key) == key)
                    .values(value=value, version=col(Record.version) + 1, updated_at=utcnow())
                )
                if result.rowcount:
                    return
                conn.execute(insert(Record).values(key=key, value=value, version=1, updated_at=utcnow()))

        for _ in range(2):
            try:
                return self._run("set", key, _set)
            except IntegrityError:
                # Lost an insert race; the second pass takes the update branch
                continue
        raise StoreUnavailable()

    def add(self, key: str, value: dict) -> bool:
        """Insert ``value`` only if ``key`` is absent. Returns False when it already exists."""

        def _add():
            try:
                with self._engine.begin() as conn:
                    conn.execute(insert(Record).values(key=key, value=value, version=1, updated_at=utcnow()))
            except IntegrityError:
                return False
            return True

        return self._run("add", key, _add)

    def delete(self, key: str) -> bool:
        def _delete():
            with self._engine.begin() as conn:
                return conn.execute(delete(Record).where(col(Record.key) == key)).rowcount > 0

        return self._run("delete", key, _delete)

    def scan_by_prefix(self, prefix: str) -> list[dict]:
        # A single SELECT: rows come back whole, either before or after a concurrent write
        def _scan():
            with self._engine.connect() as conn:
                # LIKE narrows the scan; the substr comparison keeps it case-sensitive on SQLite
                stmt = select(Record.value).where(
                    col(Record.key).startswith(prefix, autoescape=True),
                    func.substr(col(Record.key), 1, len(prefix)) == prefix,
                )
                return list(conn.execute(stmt).scalars())

        return self._run("scan", prefix, _scan)

    def update(self, key: str, mutate: Callable[[dict], dict]) -> dict | None:
        """Apply ``mutate`` to the stored value with optimistic compare-and-swap.

        ``mutate`` receives a private copy and may be called more than once when
        writers collide. Returns the value that was written, or None if the key
        does not exist.
        """
        for attempt in range(self.cas_attempts):
            outcome = self._run("update", key, lambda: self._compare_and_swap(key, mutate))
            if outcome is not _CONFLICT:
                return outcome
            logger.debug("event=store_cas_conflict key=%s attempt=%d", key, attempt + 1)
            time.sleep(random.uniform(0, 0.005))

        logger.error("event=store_cas_exhausted key=%s attempts=%d", key, self.cas_attempts)
        raise StoreUnavailable()

    def _compare_and_swap(self, key: str, mutate: Callable[[dict], dict]) -> Any:
        with self._engine.begin() as conn:
            row = conn.execute(
                select(Record.value, Record.version).where(col(Record.key) == key)
            ).one_or_none()
            if row is None:
                return None
            current, version = row
            new_value = mutate(current)
            result = conn.execute(
                update(Record)
                .where(col(Record.key) == key, col(Record.version) == version)
                .values(value=new_value, version=version + 1, updated_at=utcnow())
            )
            if result.rowcount != 1:
                return _CONFLICT
            return new_value

    def _run(self, op: str, key: str, fn: Callable[[], T]) -> T:
        for attempt in range(self.max_retries + 1):
            try:
                return fn()
            except _TRANSIENT_ERRORS as e:
                if attempt < self.max_retries:
                    # Exponential backoff: wait longer after each failed attempt
                    delay = self.retry_base_delay * (2 ** attempt)
                    logger.warning(
                        "event=store_retry op=%s key=%s attempt=%d delay_seconds=%.2f error=%s",
                        op, key, attempt + 1, delay, str(e),
                    )
                    time.sleep(delay)
                    continue
                logger.error(
                    "event=store_give_up op=%s key=%s max_retries=%d error=%s",
                    op, key, self.max_retries, str(e),
                )
                raise StoreUnavailable() from e
        raise StoreUnavailable()


_CONFLICT = object()
