import logging
from datetime import timedelta

from flask import Flask, g, jsonify, request, session
from dotenv import load_dotenv
from sqlalchemy import inspect as sa_inspect
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.exceptions import HTTPException

from app.boardroom.config import load_config
from app.boardroom.db import init_db, teardown_db_session
from app.boardroom.errors import GovernanceError, StorageFailure
from app.boardroom.routes import bp as routes_bp
from app.boardroom.auth import bp as auth_bp, load_current_user
from app.boardroom.modules.resolutions.api import bp as resolutions_bp

REQUIRED_TABLES = ("resolutions", "votes", "signatures", "board_members", "meetings", "audit_events")


def create_app() -> Flask:
    load_dotenv()
    app = Flask(__name__)
    app.config.from_mapping(load_config())
    app.config["PERMANENT_SESSION_LIFETIME"] = timedelta(hours=app.config["SESSION_HOURS"])
    app.config["SESSION_REFRESH_EACH_REQUEST"] = True

    logging.basicConfig(
        level=app.config.get("LOG_LEVEL") or "INFO",
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    from app.boardroom.security import csrf_required, ensure_csrf_token, validate_csrf

    def _rollback_request_session() -> None:
        s = getattr(g, "db_session", None)
        if s is not None:
            s.rollback()

    def _load_user_wrapper():
        if request.path.startswith(("/static/", "/health", "/healthz")):
            g.current_user = None
            return None
        return load_current_user()

    # Before the CSRF guard so rejected requests still carry a request_id.
    app.before_request(_load_user_wrapper)

    @app.before_request
    def _csrf_guard():
        if request.path.startswith(("/static/", "/health", "/healthz")):
            return None
        ensure_csrf_token()
        session.permanent = True
        if csrf_required(request, getattr(g, "current_user", None)) and not validate_csrf(request):
            app.logger.warning("CSRF rejected: %s %s request_id=%s", request.method, request.path, getattr(g, "request_id", None))
            return jsonify({"error": "CSRF token missing or invalid.", "kind": "csrf"}), 400
        return None

    # Production guardrails (fail fast with clear logs)
    env = (app.config.get("ENV") or "").strip().lower()
    if env in ("prod", "production"):
        if not app.config.get("DATABASE_URL") or str(app.config["DATABASE_URL"]).strip() == "":
            raise RuntimeError("DATABASE_URL is required in production.")
        if str(app.config["DATABASE_URL"]).startswith("sqlite"):
            raise RuntimeError("DATABASE_URL must be Postgres in production (not sqlite).")
        if not app.config.get("SECRET_KEY") or str(app.config["SECRET_KEY"]) in ("", "change-me"):
            raise RuntimeError("SECRET_KEY must be set to a strong value in production (not default).")

    init_db(app)

    def _dispose_engine_on_fork() -> None:
        import os
        if hasattr(os, "register_at_fork"):
            def _after_fork_child():
                engine = app.extensions.get("sqlalchemy_engine")
                if engine:
                    engine.dispose()
                    app.logger.info("Disposed DB engine after fork (pid=%s)", os.getpid())

            os.register_at_fork(after_in_child=_after_fork_child)

    _dispose_engine_on_fork()

    app.register_blueprint(routes_bp)
    app.register_blueprint(auth_bp, url_prefix="/auth")
    app.register_blueprint(resolutions_bp, url_prefix="/api/resolutions")

    app.teardown_appcontext(teardown_db_session)

    # Migration health (lean): detect a database that predates the resolution tables.
    def _run_schema_health_check() -> None:
        try:
            insp = sa_inspect(app.extensions["sqlalchemy_engine"])
            missing = [t for t in REQUIRED_TABLES if not insp.has_table(t)]
        except SQLAlchemyError as e:
            app.logger.exception("Schema health check failed: %s", e)
            return
        if missing:
            app.logger.warning("DB schema out of date; run `alembic upgrade head`. Missing: %s", ", ".join(missing))

    _run_schema_health_check()

    @app.errorhandler(GovernanceError)
    def _err_governance(e: GovernanceError):  # type: ignore[no-redef]
        _rollback_request_session()
        if e.status_code >= 500:
            app.logger.error("%s (request_id=%s)", e.message, getattr(g, "request_id", None))
        return jsonify(e.to_dict()), e.status_code

    @app.errorhandler(SQLAlchemyError)
    def _err_storage(e: SQLAlchemyError):  # type: ignore[no-redef]
        _rollback_request_session()
        app.logger.exception("Storage failure (request_id=%s)", getattr(g, "request_id", None))
        failure = StorageFailure()
        return jsonify(failure.to_dict()), failure.status_code

    @app.errorhandler(HTTPException)
    def _err_http(e: HTTPException):  # type: ignore[no-redef]
        return jsonify({"error": e.description, "kind": (e.name or "error").lower().replace(" ", "_")}), e.code

    @app.errorhandler(500)
    def _err_500(e):  # type: ignore[no-redef]
        # Stack trace goes to the app log for the request_id.
        _rollback_request_session()
        app.logger.exception("Unhandled 500 (request_id=%s)", getattr(g, "request_id", None))
        return jsonify({"error": "Internal server error", "kind": "error"}), 500

    logging.getLogger(__name__).info("create_app() complete; app ready to serve")

    return app
