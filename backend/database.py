import os
import random
import time
from contextlib import contextmanager

from sqlalchemy import create_engine, event
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session, sessionmaker, declarative_base
from config import (
    DATABASE_URL,
    LOG_LEVEL,
    TRANSACTION_RETRY_ATTEMPTS,
    TRANSACTION_RETRY_BACKOFF_SECONDS,
)
from errors import AppError, ConflictError, TransactionAbortError
import logging

logging.basicConfig(level=getattr(logging, LOG_LEVEL, logging.INFO))
logger = logging.getLogger(__name__)


def _enable_sqlite_write_locking(engine):
    """
    pysqlite defers BEGIN until the first write, so two sessions can both read
    a row before either locks it. Emit BEGIN IMMEDIATE ourselves so writers
    serialize from the start of the transaction, and turn on FK enforcement.
    """

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def create_db_engine(url: str):
    # Only use connect_args if we are using SQLite
    engine_args = {}
    if url.startswith("sqlite"):
        engine_args["connect_args"] = {"check_same_thread": False, "timeout": 30}
    else:
        # Production settings for PostgreSQL
        engine_args.update({
            "pool_size": 5,
            "max_overflow": 10,
            "pool_timeout": 30,
            "pool_recycle": 1800,
        })

    engine = create_engine(url, **engine_args, echo=False)
    if url.startswith("sqlite"):
        _enable_sqlite_write_locking(engine)
    return engine


try:
    engine = create_db_engine(DATABASE_URL)
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
except Exception as e:
    logger.error(f"Failed to create engine: {e}")
    raise e

Base = declarative_base()


def get_db():
    """FastAPI dependency: yields a database session and closes it after use."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


# Postgres SQLSTATEs: unique_violation, serialization_failure, deadlock_detected
RETRYABLE_SQLSTATES = {"23505", "40001", "40P01"}
RETRYABLE_SQLITE_MESSAGES = ("database is locked", "unique constraint failed")


def is_retryable(error: Exception) -> bool:
    """True for unique-key violations and write conflicts, the failures a retry can fix."""
    orig = getattr(error, "orig", None)
    sqlstate = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    if sqlstate:
        return sqlstate in RETRYABLE_SQLSTATES
    message = str(orig if orig is not None else error).lower()
    return any(m in message for m in RETRYABLE_SQLITE_MESSAGES)


@contextmanager
def transaction(db: Session):
    """
    One unit of work: commit when the block finishes, roll everything back
    when it raises. Unique-key violations and write conflicts come out as
    ConflictError, anything else unexpected as TransactionAbortError.
    """
    try:
        yield db
        db.commit()
    except AppError:
        db.rollback()
        raise
    except (IntegrityError, OperationalError) as e:
        db.rollback()
        if not is_retryable(e):
            logger.error(f"Transaction aborted by the store: {e}")
            raise TransactionAbortError(cause=e) from e
        logger.warning(f"Transaction conflict, rolled back: {e}")
        raise ConflictError("Concurrent update conflict, please retry") from e
    except Exception as e:
        db.rollback()
        logger.error(f"Transaction aborted: {e}")
        raise TransactionAbortError(cause=e) from e


def run_with_retry(work, attempts: int | None = None, backoff_seconds: float | None = None):
    """Run `work()` again on ConflictError, with exponential backoff and jitter."""
    attempts = attempts or TRANSACTION_RETRY_ATTEMPTS
    base_delay = TRANSACTION_RETRY_BACKOFF_SECONDS if backoff_seconds is None else backoff_seconds

    for attempt in range(1, attempts + 1):
        try:
            return work()
        except ConflictError:
            if attempt == attempts:
                raise
            delay = base_delay * (2 ** (attempt - 1))
            delay += random.uniform(0, base_delay)
            logger.warning(f"Write conflict (attempt {attempt}/{attempts}), retrying in {delay:.3f}s")
            time.sleep(delay)


def init_db(bind=None):
    """Create the data/ directory if it doesn't exist, then create all tables."""
    bind = bind or engine
    if str(bind.url).startswith("sqlite:///./data"):
        os.makedirs("data", exist_ok=True)

    # Import all models so they register with Base.metadata
    import models  # noqa: F401

    try:
        Base.metadata.create_all(bind=bind)
        logger.info("Database initialized successfully.")
    except Exception as e:
        logger.error(f"Error during database initialization: {e}")
        raise
