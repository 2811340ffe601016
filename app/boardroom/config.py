import os
from dataclasses import dataclass


@dataclass(frozen=True)
class Settings:
    secret_key: str
    env: str
    database_url: str

    log_level: str
    sql_echo: bool

    session_hours: int
    login_rate_limit: int
    login_rate_window_seconds: int


def _getenv(name: str, default: str = "") -> str:
    return (os.environ.get(name) or default).strip()


def _getint(name: str, default: int) -> int:
    raw = _getenv(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise RuntimeError(f"{name} must be an integer (got {raw!r}).")


def load_settings() -> Settings:
    return Settings(
        secret_key=_getenv("SECRET_KEY", "change-me"),
        env=_getenv("ENV", "development"),
        database_url=_getenv("DATABASE_URL", "sqlite:///boardroom.db"),
        log_level=_getenv("LOG_LEVEL", "INFO").upper(),
        sql_echo=_getenv("SQL_ECHO", "0") == "1",
        session_hours=_getint("SESSION_HOURS", 8),
        login_rate_limit=_getint("LOGIN_RATE_LIMIT", 5),
        login_rate_window_seconds=_getint("LOGIN_RATE_WINDOW", 300),
    )


def load_config() -> dict:
    s = load_settings()
    is_production = s.env in ("prod", "production")
    return {
        "SECRET_KEY": s.secret_key,
        "ENV": s.env,
        "DATABASE_URL": s.database_url,
        "LOG_LEVEL": s.log_level,
        "SQL_ECHO": s.sql_echo,
        "SESSION_HOURS": s.session_hours,
        "LOGIN_RATE_LIMIT": s.login_rate_limit,
        "LOGIN_RATE_WINDOW": s.login_rate_window_seconds,
        # security defaults
        "SESSION_COOKIE_HTTPONLY": True,
        "SESSION_COOKIE_SAMESITE": "Lax",
        "SESSION_COOKIE_SECURE": is_production,  # Require HTTPS in production
        # drawn signatures arrive as data URLs; 2MB is plenty
        "MAX_CONTENT_LENGTH": 2 * 1024 * 1024,
    }
