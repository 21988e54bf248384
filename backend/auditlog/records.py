# backend/auditlog/records.py
from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Any, Dict, Mapping, Optional, Tuple

from sqlalchemy import text

from .db import session_scope
from .helpers import isoformat_utc
from .schema import AUDIT_LOG_TABLE

log = logging.getLogger(__name__)

# Columns returned for every hit, in response order.
AUDIT_LOG_COLUMNS: Tuple[str, ...] = (
    "id",
    "timestamp",
    "user_id",
    "user_name",
    "action",
    "resource_type",
    "resource_id",
    "ip_address",
    "status",
    "details",
    "metadata",
    "created_at",
)

SELECT_COLUMNS = ", ".join(AUDIT_LOG_COLUMNS)


def _decode_metadata(value: Any) -> Any:
    """psycopg hands jsonb over already decoded, so a ``str`` here is a JSON string value.

    Only raw bytes still need parsing.
    """
    if not isinstance(value, (bytes, bytearray)):
        return value
    try:
        return json.loads(value)
    except ValueError:
        return value.decode("utf-8", errors="replace")


def serialize_audit_log(row: Mapping[str, Any]) -> Dict[str, Any]:
    """Turn a result row into the JSON-ready audit log record.

    ``rank`` is only included when the row carries one, which is the case for
    full-text results.
    """
    record: Dict[str, Any] = {}
    for column in AUDIT_LOG_COLUMNS:
        value = row.get(column)
        if isinstance(value, datetime):
            value = isoformat_utc(value)
        elif column == "ip_address" and value is not None:
            value = str(value)
        elif column == "metadata":
            value = _decode_metadata(value)
        record[column] = value

    if "rank" in row and row.get("rank") is not None:
        record["rank"] = float(row["rank"])
    return record


def get_audit_log_by_id(log_id: int, db_session: Optional[Any] = None) -> Optional[Dict[str, Any]]:
    """Fetch one audit log record, or ``None`` when the id does not exist."""
    sql = text(
        f"""
        SELECT {SELECT_COLUMNS}
        FROM {AUDIT_LOG_TABLE}
        WHERE id = :log_id
        LIMIT 1
        """
    )

    def _fetch(session: Any) -> Optional[Dict[str, Any]]:
        row = session.execute(sql, {"log_id": int(log_id)}).mappings().first()
        if row is None:
            log.debug("audit log %s not found", log_id)
            return None
        return serialize_audit_log(row)

    if db_session is not None:
        return _fetch(db_session)

    with session_scope() as session:
        return _fetch(session)
