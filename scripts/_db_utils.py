from __future__ import annotations

from contextlib import contextmanager

from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session, sessionmaker


def create_script_engine(db_url: str):
    if db_url.startswith("sqlite"):
        engine = create_engine(db_url, future=True)

        @event.listens_for(engine, "connect")
        def _sqlite_pragmas(dbapi_connection, connection_record):  # type: ignore[no-redef]
            cur = dbapi_connection.cursor()
            cur.execute("PRAGMA foreign_keys=ON")
            cur.close()

        return engine
    return create_engine(
        db_url,
        future=True,
        pool_pre_ping=True,
        pool_recycle=1800,
    )


@contextmanager
def script_session(db_url: str):
    """Commit-on-success session for release/seed scripts; the engine is disposed afterwards."""
    engine = create_script_engine(db_url)
    sm = sessionmaker(bind=engine, class_=Session, autoflush=False, autocommit=False, expire_on_commit=False, future=True)
    s: Session = sm()
    try:
        yield s
        s.commit()
    except Exception:
        s.rollback()
        raise
    finally:
        s.close()
        engine.dispose()
