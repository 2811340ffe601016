#!/usr/bin/env python3
"""
Production startup script.

1. Runs migrations + seed (release.py) unless RUN_RELEASE=0
2. Starts gunicorn on app.wsgi:app (replaces this process via os.execvp)

Usage:
    python scripts/start.py

Environment: PORT (default 8080), WEB_CONCURRENCY (default 2),
GUNICORN_TIMEOUT (default 60), RUN_RELEASE (default 1).
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


def _int_env(name: str, default: int, *, low: int = 1, high: int | None = None) -> int:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        value = low - 1
    if value < low or (high is not None and value > high):
        print(f"ERROR: Invalid {name} value '{raw}'.", flush=True)
        sys.exit(1)
    return value


def gunicorn_argv(port: int, workers: int, timeout: int) -> list[str]:
    return [
        "gunicorn",
        "app.wsgi:app",
        "--bind", f"0.0.0.0:{port}",
        "--workers", str(workers),
        "--timeout", str(timeout),
        # Engine is disposed in each worker after fork (see create_app).
        "--preload",
        "--access-logfile", "-",
        "--error-logfile", "-",
    ]


def main() -> None:
    if not os.environ.get("PORT", "").strip():
        print("WARNING: PORT not set, using default 8080", flush=True)
    port = _int_env("PORT", 8080, high=65535)
    workers = _int_env("WEB_CONCURRENCY", 2)
    timeout = _int_env("GUNICORN_TIMEOUT", 60)

    if os.environ.get("RUN_RELEASE", "1").strip() != "0":
        print("=== Running release phase ===", flush=True)
        from scripts.release import run_release
        try:
            run_release()
        except Exception as e:
            print(f"Release failed: {e}", flush=True)
            sys.exit(1)

    print(f"=== Starting gunicorn on 0.0.0.0:{port} ({workers} workers) ===", flush=True)
    print("Liveness at /healthz, readiness at /health", flush=True)

    # exec so gunicorn becomes PID 1 and receives signals directly
    os.execvp("gunicorn", gunicorn_argv(port, workers, timeout))


if __name__ == "__main__":
    main()
