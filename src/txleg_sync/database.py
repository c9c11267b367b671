"""SQLAlchemy engine / session plumbing."""

from __future__ import annotations

import logging

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from .config import DATABASE_URL

LOGGER = logging.getLogger(__name__)


class Base(DeclarativeBase):
    pass


def make_engine(url: str = DATABASE_URL, **kwargs) -> Engine:
    if url.startswith("sqlite"):
        # Web requests and the sync worker may share a SQLite file across threads.
        kwargs.setdefault("connect_args", {"check_same_thread": False})
    return create_engine(url, **kwargs)


def make_session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(bind=engine, expire_on_commit=False)


def init_db(engine: Engine) -> None:
    """Create any missing tables."""
    from . import tables  # noqa: F401  (registers models on Base.metadata)

    Base.metadata.create_all(engine)
    LOGGER.debug("Database schema ready (%s)", engine.url.render_as_string(hide_password=True))


_default_factory: sessionmaker[Session] | None = None


def get_session_factory() -> sessionmaker[Session]:
    """Process-wide factory bound to ``TXLEG_DATABASE_URL`` (tables created on first use)."""
    global _default_factory
    if _default_factory is None:
        engine = make_engine()
        init_db(engine)
        _default_factory = make_session_factory(engine)
    return _default_factory
