from __future__ import annotations

from contextlib import contextmanager
from collections.abc import Generator

from flask import Flask, g
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker


def _engine_options(db_url: str, *, echo: bool) -> dict[str, object]:
    opts: dict[str, object] = {
        "future": True,
        "pool_pre_ping": True,
        "echo": echo,
    }
    if db_url.startswith("postgres"):
        opts.update(
            {
                "pool_recycle": 1800,
                "pool_size": 5,
                "max_overflow": 10,
                "pool_timeout": 30,
            }
        )
    elif db_url.startswith("sqlite"):
        # Concurrent writers wait for the file lock instead of failing immediately.
        opts["connect_args"] = {"timeout": 15}
    return opts


def _enable_sqlite_foreign_keys(engine: Engine) -> None:
    # Votes and signatures cascade with their resolution; board members are RESTRICT.
    @event.listens_for(engine, "connect")
    def _sqlite_pragmas(dbapi_connection, connection_record):  # type: ignore[no-redef]
        cur = dbapi_connection.cursor()
        cur.execute("PRAGMA foreign_keys=ON")
        cur.close()


def init_db(app: Flask) -> None:
    db_url = app.config["DATABASE_URL"]
    engine = create_engine(db_url, **_engine_options(db_url, echo=bool(app.config.get("SQL_ECHO"))))
    if engine.dialect.name == "sqlite":
        _enable_sqlite_foreign_keys(engine)

    if app.config.get("ENV") != "production":
        @event.listens_for(engine, "checkout")
        def _receive_checkout(dbapi_connection, connection_record, connection_proxy):  # type: ignore[no-redef]
            app.logger.debug("DB connection checkout from pool")
    app.extensions["sqlalchemy_engine"] = engine
    app.extensions["sqlalchemy_sessionmaker"] = sessionmaker(
        bind=engine,
        class_=Session,
        autoflush=False,
        autocommit=False,
        expire_on_commit=False,
        future=True,
    )


def db_session(app: Flask | None = None) -> Session:
    """
    Request-scoped session. Use inside request handlers; handlers commit, services only flush.
    """
    if getattr(g, "db_session", None) is not None:
        return g.db_session
    if app is None:
        from flask import current_app

        app = current_app
    sm = app.extensions["sqlalchemy_sessionmaker"]
    g.db_session = sm()  # type: ignore[assignment]
    return g.db_session


def teardown_db_session(_exc: BaseException | None) -> None:
    s: Session | None = g.pop("db_session", None)
    if s is not None:
        # Anything not committed by the handler is discarded here.
        s.close()


@contextmanager
def session_scope(app: Flask) -> Generator[Session, None, None]:
    """
    Non-request helper for scripts and tests: yields a session and commits/rolls back.
    """
    sm = app.extensions["sqlalchemy_sessionmaker"]
    s: Session = sm()
    try:
        yield s
        s.commit()
    except Exception:
        s.rollback()
        raise
    finally:
        s.close()
