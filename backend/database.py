"""
Database engine and session management.

SQLite URLs get ``check_same_thread`` disabled so the background due-check
loop can open its own sessions from a worker thread.
"""

import logging

from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker

import config

logger = logging.getLogger(__name__)

connect_args = {}
if config.DATABASE_URL.startswith("sqlite"):
    connect_args["check_same_thread"] = False

engine = create_engine(config.DATABASE_URL, connect_args=connect_args, pool_pre_ping=True)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    """FastAPI dependency yielding a session that is always closed afterwards."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db() -> None:
    """Create missing tables. Existing tables are left untouched."""
    import models  # noqa: F401  (registers tables on Base.metadata)

    logger.debug(f"Ensuring schema exists for {engine.url.render_as_string(hide_password=True)}")
    Base.metadata.create_all(bind=engine)
