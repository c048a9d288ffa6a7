"""Engine setup and session management."""

import logging
from contextlib import contextmanager
from typing import Optional

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from ..config import get_database_url
from .models import Base

logger = logging.getLogger("scangrade.database")

_engine = None
_SessionLocal = None


def init_db(database_url: Optional[str] = None):
    """Create the engine and any missing tables. Safe to call repeatedly."""
    global _engine, _SessionLocal

    url = database_url or get_database_url()
    _engine = create_engine(url)
    Base.metadata.create_all(_engine)
    _SessionLocal = sessionmaker(bind=_engine, expire_on_commit=False)
    logger.debug("Database ready at %s", url)
    return _engine


@contextmanager
def get_session():
    """Yield a session. Callers commit explicitly; errors roll back."""
    if _SessionLocal is None:
        init_db()

    session = _SessionLocal()
    try:
        yield session
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
