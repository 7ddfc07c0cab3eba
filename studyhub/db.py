import logging

from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.pool import QueuePool
from sqlmodel import SQLModel, create_engine

from studyhub.config import DB_CONNECT_ARGS, DB_URL, STORE_TIMEOUT_SECONDS, connect_args_for

logger = logging.getLogger("studyhub.db")


def create_db_engine(url: str, connect_args: dict | None = None) -> Engine:
    if connect_args is None:
        connect_args = connect_args_for(url)
    return create_engine(
        url,
        connect_args=connect_args,
        poolclass=QueuePool,
        pool_size=5,
        max_overflow=10,
        pool_timeout=STORE_TIMEOUT_SECONDS,  # Checkout waits are bounded like every other store call
        pool_pre_ping=True,  # Verify connections before use
        pool_recycle=3600,   # Recycle connections after 1 hour
        echo=False,
    )


engine = create_db_engine(DB_URL, DB_CONNECT_ARGS)


def init_db(bind: Engine | None = None) -> None:
    # Register the record table on SQLModel.metadata before creating it
    from studyhub import models  # noqa: F401

    SQLModel.metadata.create_all(bind or engine)
    logger.info("event=db_ready url=%s", (bind or engine).url.render_as_string(hide_password=True))


def ensure_connection(bind: Engine | None = None) -> bool:
    """
    Verify that the database connection is alive.
    Used by the health check so load balancers can drop an instance with a dead pool.
    """
    try:
        with (bind or engine).connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except OperationalError:
        return False
