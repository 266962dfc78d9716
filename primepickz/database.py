# primepickz/database.py
from contextlib import contextmanager
from typing import Iterator

from flask import g
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from primepickz.config import Config

engine_kwargs = {
    "echo": Config.SQL_ECHO,
    "future": True,
    "pool_pre_ping": True,
}

if not Config.DATABASE_URL.startswith("sqlite"):
    engine_kwargs["pool_size"] = Config.DB_POOL_SIZE
    engine_kwargs["max_overflow"] = Config.DB_MAX_OVERFLOW
else:
    # Flask's dev server and the test client may hand a connection across threads
    engine_kwargs["connect_args"] = {"check_same_thread": False}

engine = create_engine(Config.DATABASE_URL, **engine_kwargs)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine, future=True)

Base = declarative_base()


def init_db() -> None:
    """Create all tables registered on Base."""
    # Import for side effects: model classes register themselves on Base.metadata
    from primepickz import models  # noqa: F401

    Base.metadata.create_all(bind=engine)


def get_db() -> Session:
    if "db" not in g:
        g.db = SessionLocal()
    return g.db


def close_db(e=None):
    try:
        db = g.pop("db", None)
        if db is not None:
            db.close()
    except RuntimeError:
        # Outside of an application context (test teardown)
        pass


@contextmanager
def session_scope() -> Iterator[Session]:
    """Session for work running outside a request, such as scheduled jobs."""
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
