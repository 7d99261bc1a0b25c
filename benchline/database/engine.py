"""
benchline.database.engine — Database Connection, Locks & Retries
=================================================================

SQLAlchemy + psycopg2 is **synchronous**.  Services are plain sync
functions taking an :class:`Engine`; FastAPI runs sync routes on its
thread pool, and the async sweep loop reaches them through
:func:`run_db`.

Per-activity serialization
--------------------------
Every mutation of an activity's registrations (capacity check, waitlist
insert, promotion, renumbering) starts by taking a row lock on the
activity (:func:`lock_activity`).  Two writers racing for the last slot
therefore run one after the other, and the second one re-counts the
roster after the first has committed.

Serialization failures and unique-constraint collisions that still slip
through are retried by :func:`with_retry`.

Usage::

    from benchline.database.engine import create_db_engine, init_db, run_db

    engine = create_db_engine()          # reads DATABASE_URL from .env
    init_db(engine)                      # CREATE TABLE IF NOT EXISTS …

    # From async code:
    summary = await run_db(process_expired_payment_deadlines, engine, dispatcher=d)
"""

from __future__ import annotations

import asyncio
import logging
import os
import time
from collections.abc import Callable
from contextlib import contextmanager
from typing import ParamSpec, TypeVar

from sqlalchemy import Engine, create_engine, select
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session

from benchline.constants import MAX_RETRIES, RETRY_BACKOFF_SECONDS
from benchline.database.models import Activity, Base
from benchline.errors import ConcurrentModificationError

logger = logging.getLogger(__name__)

P = ParamSpec("P")
T = TypeVar("T")


# ---------------------------------------------------------------------------
# Engine creation
# ---------------------------------------------------------------------------
def create_db_engine() -> Engine:
    """Build a SQLAlchemy :class:`Engine` from the ``DATABASE_URL`` env var.

    Raises
    ------
    RuntimeError
        If ``DATABASE_URL`` is not set.
    """
    url = os.getenv("DATABASE_URL")
    if not url:
        raise RuntimeError(
            "DATABASE_URL is not set.  "
            "Copy .env.example → .env and set a valid PostgreSQL URL."
        )

    engine = create_engine(
        url,
        echo=False,        # Set True for SQL debugging
        pool_size=5,
        max_overflow=10,
        pool_pre_ping=True,   # Reconnect stale connections automatically
        pool_timeout=10,      # Fail after 10s instead of hanging forever
        pool_recycle=3600,    # Recycle connections after 1 hour
    )
    logger.info("Database engine created → %s", engine.url.host)
    return engine


# ---------------------------------------------------------------------------
# Schema initialization
# ---------------------------------------------------------------------------
def init_db(engine: Engine) -> None:
    """Create all tables defined in :mod:`benchline.database.models`.

    .. note::

        In production the schema is managed by Alembic (``alembic upgrade
        head``).  ``create_all`` is retained as a safety net for dev/test
        environments where Alembic may not have run.
    """
    Base.metadata.create_all(engine)
    logger.info("Database tables verified / created.")


# ---------------------------------------------------------------------------
# Session helper
# ---------------------------------------------------------------------------
@contextmanager
def get_session(engine: Engine):
    """Yield a :class:`Session` that auto-commits on success and rolls back
    on exception.
    """
    session = Session(engine, expire_on_commit=False)
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


# ---------------------------------------------------------------------------
# Per-activity row lock
# ---------------------------------------------------------------------------
def lock_activity(session: Session, activity_id: int) -> Activity | None:
    """Load *activity_id* with ``SELECT … FOR UPDATE``.

    Held until the surrounding transaction ends.  Returns ``None`` when
    the activity doesn't exist.

    SQLite drops ``FOR UPDATE``, and pysqlite's deferred ``BEGIN`` takes
    no lock until the first write, so two transactions can both read the
    same roster count.  Serializing there needs every transaction to
    open with ``BEGIN IMMEDIATE`` (see ``tests/test_concurrency.py``).
    """
    return session.scalar(
        select(Activity)
        .where(Activity.id == activity_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )


# ---------------------------------------------------------------------------
# Retry on concurrent modification
# ---------------------------------------------------------------------------
def with_retry(
    func: Callable[P, T],
    *args: P.args,
    **kwargs: P.kwargs,
) -> T:
    """Run *func*, retrying on serialization failures and unique collisions.

    *func* must own its transaction (open and commit its own session) so
    each attempt starts from fresh state.  Linear backoff of
    ``RETRY_BACKOFF_SECONDS × attempt``.

    Raises
    ------
    ConcurrentModificationError
        When every attempt fails.
    """
    for attempt in range(1, MAX_RETRIES + 1):
        try:
            return func(*args, **kwargs)
        except (OperationalError, IntegrityError) as exc:
            if attempt == MAX_RETRIES:
                raise ConcurrentModificationError(
                    "The operation failed due to a concurrent modification. "
                    "Please try again."
                ) from exc
            logger.warning(
                "Concurrent modification in %s (attempt %d/%d): %s",
                getattr(func, "__name__", func), attempt, MAX_RETRIES, exc,
            )
            time.sleep(RETRY_BACKOFF_SECONDS * attempt)
    raise AssertionError("unreachable")


# ---------------------------------------------------------------------------
# Async bridge
# ---------------------------------------------------------------------------
async def run_db(func: Callable[P, T], *args: P.args, **kwargs: P.kwargs) -> T:
    """Run a **synchronous** database function on a background thread.

    Under the hood it calls :func:`asyncio.to_thread`, which schedules
    *func* on the default ``ThreadPoolExecutor`` so the event loop is
    never blocked.
    """
    return await asyncio.to_thread(func, *args, **kwargs)
