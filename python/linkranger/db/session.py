"""Sessions and transactions.

Routes receive a request-scoped Session through get_db(). Code running
outside a request (the auth bootstrap) opens its own with session_scope().
Services wrap writes in transaction(db) so every mutation commits or rolls
back as one unit.
"""

from collections.abc import Generator
from contextlib import contextmanager

from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from linkranger.db.engine import get_engine


def create_session_factory(engine: Engine | None = None) -> sessionmaker[Session]:
    # Objects stay readable after commit; handlers serialize them afterwards
    return sessionmaker(
        bind=engine or get_engine(),
        autoflush=False,
        expire_on_commit=False,
    )


_session_factory: sessionmaker[Session] | None = None


def get_session_factory() -> sessionmaker[Session]:
    """Process-wide factory bound to DATABASE_URL, created on first use."""
    global _session_factory
    if _session_factory is None:
        _session_factory = create_session_factory()
    return _session_factory


@contextmanager
def session_scope(factory: sessionmaker[Session] | None = None) -> Generator[Session, None, None]:
    """Open a session that is always closed on exit. Commits are up to the caller."""
    db = (factory or get_session_factory())()
    try:
        yield db
    finally:
        db.close()


def get_db() -> Generator[Session, None, None]:
    """FastAPI dependency yielding one session per request."""
    with session_scope() as db:
        yield db


@contextmanager
def transaction(db: Session) -> Generator[None, None, None]:
    """Commit on success, roll back and re-raise on any exception.

    Usage:
        with transaction(db):
            db.add(record)
            db.execute(update(...))
    """
    try:
        yield
        db.commit()
    except Exception:
        db.rollback()
        raise
