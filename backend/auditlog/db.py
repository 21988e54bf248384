# backend/auditlog/db.py
from __future__ import annotations

import json
import logging
import os
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional
from urllib.parse import quote_plus

from dotenv import load_dotenv
from flask import g, has_app_context
from sqlalchemy import create_engine, text
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.orm import Session, scoped_session, sessionmaker

log = logging.getLogger(__name__)

# Module-level singletons
_ENGINE: Optional[Engine] = None
_SESSION_FACTORY: Optional[sessionmaker] = None
_SESSION_LOCAL: Optional[scoped_session] = None
_INIT_LOCK = threading.Lock()

# repo_root/backend/auditlog/db.py -> parents[2] == repo_root
REPO_ROOT = Path(__file__).resolve().parents[2]
BACKEND_ENV = REPO_ROOT / "backend" / ".env"
ROOT_ENV = REPO_ROOT / ".env"
OPTIONAL_DB_JSON = REPO_ROOT / "config" / "db.json"


def _load_env_once() -> None:
    """Load env files if present. Safe to call multiple times."""
    if BACKEND_ENV.exists():
        log.debug("loading backend/.env")
        load_dotenv(BACKEND_ENV, override=False)
    if ROOT_ENV.exists():
        log.debug("loading root/.env")
        load_dotenv(ROOT_ENV, override=False)


def _from_db_json() -> dict[str, str]:
    """
    Optional: read config/db.json (non-secret) for connection parts if envs are missing.
    File format example:
        {
          "DB_USER": "auditlog",
          "DB_NAME": "auditlog",
          "DB_HOST": "127.0.0.1",
          "DB_PORT": 5432
        }
    """
    if not OPTIONAL_DB_JSON.exists():
        return {}
    try:
        data = json.loads(OPTIONAL_DB_JSON.read_text(encoding="utf-8"))
    except Exception:
        log.warning("Failed to read %s", OPTIONAL_DB_JSON, exc_info=True)
        return {}
    if not isinstance(data, dict):
        return {}
    log.debug("db cfg loaded json file %s", OPTIONAL_DB_JSON)
    return {str(k): str(v) for k, v in data.items()}


def _build_db_url() -> str:
    """
    Decide the effective DATABASE_URL.
    Precedence:
      1) DATABASE_URL
      2) DB_* envs (or PG*), possibly backed by config/db.json
    """
    _load_env_once()

    url = os.getenv("DATABASE_URL")
    if url:
        return url

    cfg = {
        "DB_USER": os.getenv("DB_USER") or os.getenv("PGUSER"),
        "DB_PASSWORD": os.getenv("DB_PASSWORD") or os.getenv("PGPASSWORD"),
        "DB_NAME": os.getenv("DB_NAME") or os.getenv("PGDATABASE"),
        "DB_HOST": os.getenv("DB_HOST") or os.getenv("PGHOST"),
        "DB_PORT": os.getenv("DB_PORT") or os.getenv("PGPORT"),
    }

    if any(v is None for v in cfg.values()):
        json_fallback = _from_db_json()
        for k in cfg:
            if cfg[k] is None and k in json_fallback:
                cfg[k] = json_fallback[k]

    user = cfg["DB_USER"] or "auditlog"
    pwd = cfg["DB_PASSWORD"] or "auditlog"
    name = cfg["DB_NAME"] or "auditlog"
    host = cfg["DB_HOST"] or "127.0.0.1"
    port = str(cfg["DB_PORT"] or "5432")

    # SQLAlchemy 2.x psycopg (v3) driver
    return f"postgresql+psycopg://{user}:{quote_plus(pwd)}@{host}:{port}/{name}"


def _redact_url(url: str) -> str:
    scheme, sep, rest = url.partition("://")
    if not sep or "@" not in rest:
        return url
    credentials, _, location = rest.rpartition("@")
    user = credentials.split(":", 1)[0]
    return f"{scheme}://{user}:***@{location}"


def get_engine() -> Engine:
    """
    Return a process-wide SQLAlchemy Engine (with pooling).
    Creates it on first use, thread-safe.
    """
    global _ENGINE, _SESSION_FACTORY, _SESSION_LOCAL
    if _ENGINE is not None:
        return _ENGINE

    with _INIT_LOCK:
        if _ENGINE is not None:
            return _ENGINE

        db_url = _build_db_url()

        echo = bool(int(os.getenv("SQLALCHEMY_ECHO", "0")))
        pool_size = int(os.getenv("SQLALCHEMY_POOL_SIZE", "5"))
        max_overflow = int(os.getenv("SQLALCHEMY_MAX_OVERFLOW", "10"))
        pool_pre_ping = bool(int(os.getenv("SQLALCHEMY_POOL_PRE_PING", "1")))

        log.info("Creating DB engine url=%s echo=%s pool_size=%s max_overflow=%s pre_ping=%s",
                 _redact_url(db_url), echo, pool_size, max_overflow, pool_pre_ping)

        _ENGINE = create_engine(
            db_url,
            echo=echo,
            pool_size=pool_size,
            max_overflow=max_overflow,
            pool_pre_ping=pool_pre_ping,
        )

        _SESSION_FACTORY = sessionmaker(bind=_ENGINE)
        _SESSION_LOCAL = scoped_session(_SESSION_FACTORY)
        return _ENGINE


def get_db_conn() -> Connection:
    """
    Get a SQLAlchemy Connection from the global Engine.
    Caller is responsible for closing it:

        with get_db_conn() as conn:
            rows = conn.execute(text("select 1")).all()
    """
    return get_engine().connect()


def get_or_create_session() -> Session:
    """
    Return the current request's Session if it exists, otherwise
    create one from the scoped_session and attach it to g.
    """
    if _SESSION_LOCAL is None:
        get_engine()

    s = getattr(g, "db", None)
    if s is None:
        s = _SESSION_LOCAL()      # current thread's Session (creates if absent)
        g.db = s
    return s


@contextmanager
def session_scope() -> Iterator[Session]:
    """Yield a database session and guarantee the associated connection is released.

    Inside a Flask application context the request-scoped session from
    :func:`get_or_create_session` is reused. Anywhere else (CLI tools, scripts)
    a temporary session is created and closed when the block exits.
    """
    global _SESSION_FACTORY

    created_here = False
    if has_app_context():
        session = get_or_create_session()
    else:
        if _SESSION_FACTORY is None:
            get_engine()
        session = _SESSION_FACTORY()
        created_here = True

    try:
        yield session
    except Exception:
        if session.in_transaction():
            session.rollback()
        raise
    finally:
        if created_here:
            session.close()


def ping_db() -> bool:
    """Quick health check."""
    try:
        with get_db_conn() as conn:
            conn.execute(text("select 1"))
        return True
    except Exception:
        log.exception("DB ping failed")
        return False


def dispose_engine() -> None:
    """Close all pooled connections (useful in tests or graceful shutdown)."""
    global _ENGINE, _SESSION_FACTORY, _SESSION_LOCAL

    if _SESSION_LOCAL is not None:
        _SESSION_LOCAL.remove()
        _SESSION_LOCAL = None
    _SESSION_FACTORY = None

    if _ENGINE is not None:
        _ENGINE.dispose()
        _ENGINE = None


def db_cleanup(_exc) -> None:
    try:
        g.pop("db", None)
    except RuntimeError:
        # Outside an application context there is no ``g`` to mutate.
        pass

    if _SESSION_LOCAL is not None:
        _SESSION_LOCAL.remove()
