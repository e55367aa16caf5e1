"""SQLModel engine singleton and scoped store sessions."""
import logging
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, SQLModel, create_engine

from tablesync.config import get_settings
from tablesync.errors import StoreError

logger = logging.getLogger(__name__)

_engine = None


def get_engine():
    """Return the module-level engine, creating it on first call."""
    global _engine
    if _engine is None:
        settings = get_settings()
        connect_args = {}
        if settings.database_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False  # safe for FastAPI + scheduler
        _engine = create_engine(settings.database_url, connect_args=connect_args)
        init_db(_engine)
    return _engine


def init_db(engine) -> None:
    """Create all tables. Idempotent."""
    # Import all models so metadata is populated before create_all
    from tablesync.models.config import SyncConfig  # noqa
    from tablesync.models.job import SyncJob  # noqa
    from tablesync.models.record import SyncedRecord  # noqa
    from tablesync.models.sync import SyncHistory  # noqa
    SQLModel.metadata.create_all(engine)


@contextmanager
def store_session(engine) -> Iterator[Session]:
    """
    Scoped store handle for one unit of work.

    Commits on a clean exit, rolls back on any exception, and always closes
    the session. SQLAlchemy failures surface as StoreError. Objects stay
    loaded after commit so callers can read a job once the scope has closed.
    """
    session = Session(engine, expire_on_commit=False)
    try:
        yield session
        session.commit()
    except SQLAlchemyError as exc:
        session.rollback()
        logger.error("Store operation failed: %s", exc)
        raise StoreError(f"Store unavailable: {exc}") from exc
    except BaseException:
        session.rollback()
        raise
    finally:
        session.close()
