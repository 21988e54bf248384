# backend/auditlog/schema.py
"""SQLAlchemy description of the ``audit_logs`` table.

The service itself only reads through hand-written SQL (see :mod:`auditlog.search`);
this module exists so ``tools/db_init.py`` can create the table, the generated
``search_vector`` column, and the indexes the search queries rely on.

The generated column is built with the same text search configuration that
:mod:`auditlog.search` binds into ``to_tsquery``; both read it from
``config/appconfig.json`` via :func:`auditlog.config_loader.get_text_search_config`.
Changing the setting on an existing table needs a drop and re-create.
"""
from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy import (
    BigInteger,
    Column,
    Computed,
    DateTime,
    Index,
    MetaData,
    String,
    Table,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import INET, JSONB, TSVECTOR
from sqlalchemy.engine import Engine

from .config_loader import get_text_search_config

log = logging.getLogger(__name__)

AUDIT_LOG_TABLE = "audit_logs"

# Text that feeds the full-text index. ip_address is cast so the generated
# expression stays immutable.
SEARCH_VECTOR_SOURCE = (
    "COALESCE(user_id, '') || ' ' || "
    "COALESCE(user_name, '') || ' ' || "
    "COALESCE(action, '') || ' ' || "
    "COALESCE(resource_type, '') || ' ' || "
    "COALESCE(resource_id, '') || ' ' || "
    "COALESCE(host(ip_address), '') || ' ' || "
    "COALESCE(status, '') || ' ' || "
    "COALESCE(details, '')"
)


def search_vector_expression(ts_config: str) -> str:
    """Generated-column SQL for ``search_vector`` under the given text search configuration."""
    # DDL cannot take bound parameters, so the name goes in as a literal.
    if not isinstance(ts_config, str) or not ts_config.isidentifier():
        raise ValueError(f"Invalid text search configuration {ts_config!r}")
    return f"to_tsvector('{ts_config}', {SEARCH_VECTOR_SOURCE})"


def build_audit_logs_table(metadata: MetaData, ts_config: Optional[str] = None) -> Table:
    """Attach the ``audit_logs`` table and its indexes to ``metadata``."""
    ts_config = ts_config or get_text_search_config()
    table = Table(
        AUDIT_LOG_TABLE,
        metadata,
        Column("id", BigInteger, primary_key=True, autoincrement=True),
        Column("timestamp", DateTime(timezone=True), nullable=False),
        Column("user_id", String(100), nullable=False),
        Column("user_name", String(255)),
        Column("action", String(100), nullable=False),
        Column("resource_type", String(100), nullable=False),
        Column("resource_id", String(255)),
        Column("ip_address", INET),
        Column("status", String(50), nullable=False),
        Column("details", Text),
        Column("metadata", JSONB),
        Column("created_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
        Column("search_vector", TSVECTOR, Computed(search_vector_expression(ts_config), persisted=True)),
    )

    Index("ix_audit_logs_search_vector", table.c.search_vector, postgresql_using="gin")
    Index("ix_audit_logs_timestamp", table.c.timestamp.desc())
    Index("ix_audit_logs_user_id", table.c.user_id)
    Index("ix_audit_logs_action", table.c.action)
    Index("ix_audit_logs_status", table.c.status)
    return table


def create_schema(engine: Engine, ts_config: Optional[str] = None) -> Table:
    """Create ``audit_logs`` and its indexes if they do not exist yet."""
    metadata = MetaData()
    table = build_audit_logs_table(metadata, ts_config)
    log.info("Creating table %s (if missing) search_vector=%s", AUDIT_LOG_TABLE, table.c.search_vector.computed.sqltext)
    metadata.create_all(engine, checkfirst=True)
    return table


def drop_schema(engine: Engine) -> None:
    log.warning("Dropping table %s", AUDIT_LOG_TABLE)
    metadata = MetaData()
    build_audit_logs_table(metadata)
    metadata.drop_all(engine, checkfirst=True)
