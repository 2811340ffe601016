import pytest
from sqlalchemy import create_engine
from werkzeug.security import check_password_hash

from app.boardroom.config import load_config, load_settings
from app.boardroom.db import session_scope
from app.boardroom.models import Base, Organization, Role, User
from app.boardroom.rbac import user_permissions
from scripts import init_db


def test_settings_defaults(monkeypatch):
    for k in ("SECRET_KEY", "ENV", "DATABASE_URL", "LOG_LEVEL", "SQL_ECHO", "SESSION_HOURS", "LOGIN_RATE_LIMIT"):
        monkeypatch.delenv(k, raising=False)
    s = load_settings()
    assert s.database_url == "sqlite:///boardroom.db"
    assert s.env == "development"
    assert s.log_level == "INFO"
    assert s.sql_echo is False
    assert s.login_rate_limit == 5

    cfg = load_config()
    assert cfg["SESSION_COOKIE_SECURE"] is False
    assert cfg["SESSION_HOURS"] == 8


def test_settings_bad_integer(monkeypatch):
    monkeypatch.setenv("LOGIN_RATE_LIMIT", "lots")
    with pytest.raises(RuntimeError):
        load_settings()


def test_production_requires_postgres(monkeypatch, tmp_path):
    from app.boardroom import create_app

    monkeypatch.setenv("ENV", "production")
    monkeypatch.setenv("SECRET_KEY", "a-real-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'prod.db'}")
    with pytest.raises(RuntimeError):
        create_app()


def test_seed_is_idempotent(tmp_path, monkeypatch):
    db_url = f"sqlite:///{tmp_path/'seed.db'}"
    engine = create_engine(db_url, future=True)
    Base.metadata.create_all(bind=engine)
    engine.dispose()

    monkeypatch.setenv("ADMIN_EMAIL", "Chair@Example.com")
    monkeypatch.setenv("ADMIN_PASSWORD", "first")
    monkeypatch.setenv("ORG_NAME", "Acme Holdings")
    init_db.seed_only(database_url=db_url)
    monkeypatch.setenv("ADMIN_PASSWORD", "second")
    init_db.seed_only(database_url=db_url)

    with init_db.script_session(db_url) as s:
        assert s.query(Role).count() == 3
        admin = s.query(User).filter(User.email == "chair@example.com").one()
        org = s.query(Organization).one()
        assert org.slug == "acme-holdings"
        assert admin.organization_id == org.id
        assert [r.key for r in admin.roles] == ["admin"]
        # Existing admin password is never overwritten.
        assert check_password_hash(admin.password_hash, "first")
        assert {"resolutions.manage", "votes.record", "signatures.record"} <= user_permissions(admin)

        member_role = s.query(Role).filter(Role.key == "board_member").one()
        assert "resolutions.manage" not in {p.key for p in member_role.permissions}


def test_health_reports_database(app):
    r = app.test_client().get("/health")
    assert r.status_code == 200
    assert r.json == {"ok": True, "database": "ok"}


def test_session_scope_rolls_back_on_error(app, world):
    with pytest.raises(ValueError):
        with session_scope(app) as s:
            s.add(Organization(name="Temp", slug="temp"))
            s.flush()
            raise ValueError("boom")
    with session_scope(app) as s:
        assert s.query(Organization).filter(Organization.slug == "temp").count() == 0
