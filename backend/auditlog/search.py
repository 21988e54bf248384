# backend/auditlog/search.py

from __future__ import annotations

import functools
import logging
import math
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from flask import Blueprint, abort, current_app, jsonify, request
from sqlalchemy import text

from .config_loader import (
    MAX_PAGE_SIZE,
    MIN_PAGE_SIZE,
    get_default_page_size,
    get_text_search_config,
    get_timezone,
)
from .db import session_scope
from .helpers import isoformat_utc, to_bool, to_int, to_timestamptz
from .query_compiler import (
    JOIN_OPERATORS,
    VALID_COLUMNS,
    QueryCondition,
    compile_query,
)
from .records import SELECT_COLUMNS, get_audit_log_by_id, serialize_audit_log
from .schema import AUDIT_LOG_TABLE

log = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 10

# Sort keys a caller may ask for, mapped to the column placed in ORDER BY.
SORT_COLUMNS: Mapping[str, str] = {
    "timestamp": "timestamp",
    "user_id": "user_id",
    "user_name": "user_name",
    "action": "action",
    "resource_type": "resource_type",
    "status": "status",
    "created_at": "created_at",
}
DEFAULT_SORT_COLUMN = "timestamp"
RANK_SORT_KEYS = frozenset({"rank", "relevance"})

# Columns a bare (column-less) term is matched against in the column strategy.
FREE_TEXT_COLUMNS: Tuple[str, ...] = (
    "user_id",
    "user_name",
    "action",
    "resource_type",
    "resource_id",
    "ip_address",
    "status",
    "details",
)

SEARCH_VECTOR_COLUMN = "search_vector"
TSQUERY_EXPRESSION = "to_tsquery(CAST(:ts_config AS regconfig), :query)"
RANK_EXPRESSION = f"ts_rank({SEARCH_VECTOR_COLUMN}, {TSQUERY_EXPRESSION})"

SEARCH_FAILED_MESSAGE = "An error occurred while searching"
LIST_FAILED_MESSAGE = "An error occurred while retrieving audit logs"
GET_FAILED_MESSAGE = "An error occurred while retrieving audit log"

bp = Blueprint("auditlogs", __name__, url_prefix="/api/auditlogs")


def _app_config_value(key: str) -> Any:
    try:
        return current_app.config.get(key)
    except RuntimeError:
        return None


@functools.lru_cache(maxsize=1)
def _default_text_search_config() -> str:
    """appconfig.json value, read once per process for searches outside a Flask app."""
    return get_text_search_config()


def _text_search_config() -> str:
    """Return the text search configuration, consulting Flask config when available."""
    configured = _app_config_value("TEXT_SEARCH_CONFIG")
    if isinstance(configured, str) and configured:
        return configured
    return _default_text_search_config()


def get_sort_column(sort_by: Optional[str]) -> str:
    if not isinstance(sort_by, str):
        return DEFAULT_SORT_COLUMN
    return SORT_COLUMNS.get(sort_by.strip().lower(), DEFAULT_SORT_COLUMN)


def get_sql_date_range(
    from_date: Optional[datetime],
    to_date: Optional[datetime],
) -> Tuple[List[str], Dict[str, Any]]:
    """WHERE fragments and params bounding ``timestamp`` by the optional dates."""
    if from_date is not None and to_date is not None:
        return ["timestamp BETWEEN :from_date AND :to_date"], {"from_date": from_date, "to_date": to_date}
    if from_date is not None:
        return ["timestamp >= :from_date"], {"from_date": from_date}
    if to_date is not None:
        return ["timestamp <= :to_date"], {"to_date": to_date}
    return [], {}


def get_sql_order_and_limit(
    sort_by: Optional[str],
    sort_descending: bool,
    *,
    page: int,
    page_size: int,
    use_rank: bool = False,
) -> Tuple[List[str], int, int]:
    """Resolve ORDER BY clauses plus (limit, offset) for a 1-based page."""
    if page < 1:
        raise ValueError(f"page must be >= 1, got {page}")
    if page_size < MIN_PAGE_SIZE or page_size > MAX_PAGE_SIZE:
        raise ValueError(f"page_size must be between {MIN_PAGE_SIZE} and {MAX_PAGE_SIZE}, got {page_size}")

    sort_key = sort_by.strip().lower() if isinstance(sort_by, str) else None
    if use_rank and sort_key in RANK_SORT_KEYS:
        # Relevance always sorts best-first; the direction flag does not apply.
        order_by_clauses = ["rank DESC"]
    else:
        direction = "DESC" if sort_descending else "ASC"
        order_by_clauses = [f"{get_sort_column(sort_by)} {direction}"]

    return order_by_clauses, page_size, (page - 1) * page_size


def _build_sql(
    select_clause: str,
    where_clauses: Sequence[str],
    order_by_clauses: Optional[Sequence[str]] = None,
    paginate: bool = False,
) -> str:
    sql_lines = [
        "SELECT",
        f"    {select_clause}",
        f"FROM {AUDIT_LOG_TABLE}",
    ]
    if where_clauses:
        sql_lines.append("WHERE")
        sql_lines.append(f"    {where_clauses[0]}")
        for condition in where_clauses[1:]:
            sql_lines.append(f"    AND {condition}")
    if order_by_clauses:
        sql_lines.append("ORDER BY")
        for idx, clause in enumerate(order_by_clauses):
            prefix = "    " if idx == 0 else "    , "
            sql_lines.append(f"{prefix}{clause}")
    if paginate:
        sql_lines.append("LIMIT :limit")
        sql_lines.append("OFFSET :offset")
    return "\n".join(sql_lines)


def _execute_count_and_page(
    session: Any,
    where_clauses: Sequence[str],
    params: Mapping[str, Any],
    *,
    select_clause: str,
    order_by_clauses: Sequence[str],
    limit_value: int,
    offset_value: int,
) -> Tuple[List[Dict[str, Any]], int]:
    """Run the count query, then the page query, over the same predicate."""
    count_sql = text(_build_sql("COUNT(*) AS total", where_clauses))
    total = session.execute(count_sql, dict(params)).scalar() or 0

    data_sql = text(_build_sql(select_clause, where_clauses, order_by_clauses, paginate=True))
    data_params = dict(params)
    data_params["limit"] = limit_value
    data_params["offset"] = offset_value
    rows = session.execute(data_sql, data_params).mappings().all()

    return [serialize_audit_log(row) for row in rows], int(total)


def _execute_fulltext_search(
    session: Any,
    tsquery: str,
    *,
    page: int,
    page_size: int,
    from_date: Optional[datetime],
    to_date: Optional[datetime],
    sort_by: Optional[str],
    sort_descending: bool,
) -> Tuple[List[Dict[str, Any]], int]:
    where_clauses = [f"{SEARCH_VECTOR_COLUMN} @@ {TSQUERY_EXPRESSION}"]
    params: Dict[str, Any] = {"query": tsquery, "ts_config": _text_search_config()}

    date_clauses, date_params = get_sql_date_range(from_date, to_date)
    where_clauses.extend(date_clauses)
    params.update(date_params)

    order_by_clauses, limit_value, offset_value = get_sql_order_and_limit(
        sort_by, sort_descending, page=page, page_size=page_size, use_rank=True
    )

    return _execute_count_and_page(
        session,
        where_clauses,
        params,
        select_clause=f"{SELECT_COLUMNS}, {RANK_EXPRESSION} AS rank",
        order_by_clauses=order_by_clauses,
        limit_value=limit_value,
        offset_value=offset_value,
    )


def _canonical_column(column: str) -> str:
    """Map a condition's column onto the allow-list entry; anything else is a bug upstream."""
    column_key = column.lower()
    if column_key not in VALID_COLUMNS:
        raise ValueError(f"Column {column!r} is not searchable")
    return column_key


def _condition_sql(condition: QueryCondition, param_name: str, params: Dict[str, Any]) -> str:
    pattern = f"%{condition.search_term}%"

    if condition.column is None:
        params[param_name] = pattern
        matches = [f"{column}::text ILIKE :{param_name}" for column in FREE_TEXT_COLUMNS]
        return "(" + " OR ".join(matches) + ")"

    column = _canonical_column(condition.column)
    if column == "id":
        # Exact numeric lookup, with a partial-text fallback.
        params[param_name] = condition.search_term
        params[f"{param_name}_like"] = pattern
        return f"(id::text = :{param_name} OR id::text LIKE :{param_name}_like)"

    # timestamp/created_at and metadata are matched against their text rendering,
    # like every other column.
    params[param_name] = pattern
    return f"{column}::text ILIKE :{param_name}"


def build_condition_where(conditions: Sequence[QueryCondition]) -> Tuple[str, Dict[str, Any]]:
    """Fold conditions into one parenthesized WHERE fragment with bound params.

    Each condition's operator joins it to the condition before it.
    """
    params: Dict[str, Any] = {}
    fragments: List[str] = []
    for index, condition in enumerate(conditions):
        fragment = _condition_sql(condition, f"p{index}", params)
        if index == 0:
            fragments.append(fragment)
            continue
        operator = (condition.operator or "").upper()
        if operator not in JOIN_OPERATORS:
            raise ValueError(f"Unsupported join operator {condition.operator!r}")
        fragments.append(f"{operator} {fragment}")

    if not fragments:
        return "", params
    return "(" + " ".join(fragments) + ")", params


def _execute_column_search(
    session: Any,
    conditions: Sequence[QueryCondition],
    *,
    page: int,
    page_size: int,
    from_date: Optional[datetime],
    to_date: Optional[datetime],
    sort_by: Optional[str],
    sort_descending: bool,
) -> Tuple[List[Dict[str, Any]], int]:
    condition_where, params = build_condition_where(conditions)
    where_clauses = [condition_where] if condition_where else []

    date_clauses, date_params = get_sql_date_range(from_date, to_date)
    where_clauses.extend(date_clauses)
    params.update(date_params)

    order_by_clauses, limit_value, offset_value = get_sql_order_and_limit(
        sort_by, sort_descending, page=page, page_size=page_size
    )

    return _execute_count_and_page(
        session,
        where_clauses,
        params,
        select_clause=SELECT_COLUMNS,
        order_by_clauses=order_by_clauses,
        limit_value=limit_value,
        offset_value=offset_value,
    )


def _execute_listing(
    session: Any,
    *,
    page: int,
    page_size: int,
    from_date: Optional[datetime],
    to_date: Optional[datetime],
) -> Tuple[List[Dict[str, Any]], int]:
    where_clauses, params = get_sql_date_range(from_date, to_date)
    # Listings are always newest first; a requested sort is not applied here.
    order_by_clauses, limit_value, offset_value = get_sql_order_and_limit(
        DEFAULT_SORT_COLUMN, True, page=page, page_size=page_size
    )
    return _execute_count_and_page(
        session,
        where_clauses,
        params,
        select_clause=SELECT_COLUMNS,
        order_by_clauses=order_by_clauses,
        limit_value=limit_value,
        offset_value=offset_value,
    )


def list_audit_logs(
    page: int = 1,
    page_size: int = DEFAULT_PAGE_SIZE,
    from_date: Optional[datetime] = None,
    to_date: Optional[datetime] = None,
    db_session: Optional[Any] = None,
) -> Tuple[List[Dict[str, Any]], int]:
    """Unfiltered listing, newest first, bounded only by the optional dates."""
    if db_session is not None:
        return _execute_listing(db_session, page=page, page_size=page_size, from_date=from_date, to_date=to_date)

    with session_scope() as session:
        return _execute_listing(session, page=page, page_size=page_size, from_date=from_date, to_date=to_date)


def search_audit_logs(
    raw_query: Optional[str],
    page: int = 1,
    page_size: int = DEFAULT_PAGE_SIZE,
    from_date: Optional[datetime] = None,
    to_date: Optional[datetime] = None,
    sort_by: Optional[str] = None,
    sort_descending: bool = True,
    db_session: Optional[Any] = None,
) -> Tuple[List[Dict[str, Any]], int]:
    """
    Execute an audit log search.

    Parameters
    ----------
    raw_query : str
        Query text as typed by the user, e.g. ``login OR logout`` or
        ``user_name:John AND action:LOGIN``. Blank text lists everything.
    page, page_size : int
        1-based page number and page length.
    from_date, to_date : Optional[datetime]
        Optional inclusive bounds on ``timestamp``.
    sort_by : Optional[str]
        A key of :data:`SORT_COLUMNS`, or ``rank``/``relevance`` for full-text
        searches. Unknown keys sort by timestamp.
    sort_descending : bool
        Direction for column sorts. Ignored for relevance sorting.
    db_session : Optional[Any]
        SQLAlchemy session to reuse. When omitted one is taken from
        :func:`session_scope`.

    Returns
    -------
    Tuple[List[Dict[str, Any]], int]
        The serialized page of records and the total number of matches.
    """
    if not (raw_query and raw_query.strip()):
        log.debug("search_audit_logs: blank query -> unfiltered listing")
        return list_audit_logs(page, page_size, from_date, to_date, db_session=db_session)

    compiled = compile_query(raw_query)

    def _execute_with_session(session: Any) -> Tuple[List[Dict[str, Any]], int]:
        if compiled.is_column_specific and compiled.conditions:
            log.debug("search_audit_logs: column strategy with %d condition(s)", len(compiled.conditions))
            return _execute_column_search(
                session,
                compiled.conditions,
                page=page,
                page_size=page_size,
                from_date=from_date,
                to_date=to_date,
                sort_by=sort_by,
                sort_descending=sort_descending,
            )
        if compiled.fulltext_expression:
            log.debug("search_audit_logs: full-text strategy tsquery=%r", compiled.fulltext_expression)
            return _execute_fulltext_search(
                session,
                compiled.fulltext_expression,
                page=page,
                page_size=page_size,
                from_date=from_date,
                to_date=to_date,
                sort_by=sort_by,
                sort_descending=sort_descending,
            )
        log.info("search_audit_logs: query %r has no searchable terms", raw_query)
        return [], 0

    if db_session is not None:
        return _execute_with_session(db_session)

    with session_scope() as session:
        return _execute_with_session(session)


# ---------------------------------------------------------------------------
# HTTP
# ---------------------------------------------------------------------------

def _date_timezone() -> Any:
    configured = _app_config_value("TZ")
    return configured if configured is not None else get_timezone()


def _require_page_window(page: Optional[int], page_size: Optional[int]) -> Tuple[int, int]:
    if page is None or page < 1:
        abort(400, description="Parameter 'from' must be greater than 0")
    if page_size is None or page_size < MIN_PAGE_SIZE or page_size > MAX_PAGE_SIZE:
        abort(400, description=f"Parameter 'size' must be between {MIN_PAGE_SIZE} and {MAX_PAGE_SIZE}")
    return page, page_size


def _parse_int_param(raw: Any, name: str, default: Optional[int]) -> Optional[int]:
    try:
        return to_int(raw, default)
    except ValueError:
        abort(400, description=f"Parameter '{name}' must be an integer")


def _parse_date_param(raw: Any, name: str) -> Optional[datetime]:
    try:
        return to_timestamptz(raw, default_tz=_date_timezone())
    except ValueError:
        abort(400, description=f"Parameter '{name}' is not a valid date/time")


def _parse_search_request(data: Any) -> Dict[str, Any]:
    """Validate a search body before anything is compiled or executed."""
    if not isinstance(data, Mapping):
        abort(400, description="Request body must be a JSON object")

    raw_query = data.get("query")
    if not isinstance(raw_query, str):
        abort(400, description="Parameter 'query' is required and must be a string")

    page = _parse_int_param(data.get("from"), "from", 1)
    page_size = _parse_int_param(data.get("size"), "size", DEFAULT_PAGE_SIZE)
    page, page_size = _require_page_window(page, page_size)

    sort_by = data.get("sort")
    if sort_by is not None and not isinstance(sort_by, str):
        abort(400, description="Parameter 'sort' must be a string")

    try:
        sort_descending = to_bool(data.get("sortDescending"), default=True)
    except ValueError:
        abort(400, description="Parameter 'sortDescending' must be a boolean")

    return {
        "raw_query": raw_query,
        "page": page,
        "page_size": page_size,
        "from_date": _parse_date_param(data.get("fromDate"), "fromDate"),
        "to_date": _parse_date_param(data.get("toDate"), "toDate"),
        "sort_by": sort_by or None,
        "sort_descending": sort_descending,
    }


def build_search_response(
    hits: List[Dict[str, Any]],
    total: int,
    page: int,
    page_size: int,
    took_ms: int,
) -> Dict[str, Any]:
    return {
        "total": total,
        "from": page,
        "size": page_size,
        "hits": hits,
        "took": took_ms,
        "hasMore": (page - 1) * page_size + len(hits) < total,
        "totalPages": math.ceil(total / page_size) if page_size else 0,
    }


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)


@bp.route("/search", methods=["POST"])
@bp.route("/_search", methods=["POST"])
def search_api():
    """
    POST /api/auditlogs/search
    JSON body:
      {
        "query": "string",           # required; "" lists everything
        "from": 1,                   # 1-based page, >= 1
        "size": 10,                  # 1..1000
        "sort": "timestamp",         # optional; "rank"/"relevance" for full-text
        "sortDescending": true,      # optional
        "fromDate": "ISO-8601",      # optional
        "toDate": "ISO-8601"         # optional
      }

    Response:
      { "total", "from", "size", "hits": [...], "took", "hasMore", "totalPages" }
    """
    params = _parse_search_request(request.get_json(silent=True))

    started = time.perf_counter()
    try:
        hits, total = search_audit_logs(**params)
    except Exception:
        log.exception("search_api: error executing search query=%r", params["raw_query"])
        return jsonify(ok=False, error=SEARCH_FAILED_MESSAGE), 500
    took_ms = _elapsed_ms(started)

    log.info(
        "Search executed: query=%r total=%s from=%s size=%s took=%sms",
        params["raw_query"], total, params["page"], params["page_size"], took_ms,
    )
    return jsonify(build_search_response(hits, total, params["page"], params["page_size"], took_ms))


@bp.route("/", methods=["GET"])
def list_api():
    """GET /api/auditlogs/?from=1&size=10&fromDate=...&toDate=..."""
    default_size = _app_config_value("DEFAULT_PAGE_SIZE") or get_default_page_size()
    page = _parse_int_param(request.args.get("from"), "from", 1)
    page_size = _parse_int_param(request.args.get("size"), "size", default_size)
    page, page_size = _require_page_window(page, page_size)
    from_date = _parse_date_param(request.args.get("fromDate"), "fromDate")
    to_date = _parse_date_param(request.args.get("toDate"), "toDate")

    started = time.perf_counter()
    try:
        hits, total = list_audit_logs(page, page_size, from_date, to_date)
    except Exception:
        log.exception("list_api: error retrieving audit logs")
        return jsonify(ok=False, error=LIST_FAILED_MESSAGE), 500

    return jsonify(build_search_response(hits, total, page, page_size, _elapsed_ms(started)))


@bp.route("/<int:log_id>", methods=["GET"])
def get_api(log_id: int):
    try:
        record = get_audit_log_by_id(log_id)
    except Exception:
        log.exception("get_api: error retrieving audit log %s", log_id)
        return jsonify(ok=False, error=GET_FAILED_MESSAGE), 500

    if record is None:
        abort(404, description=f"Audit log {log_id} not found")
    return jsonify(record)


@bp.route("/_health", methods=["GET"])
def health_api():
    return jsonify(status="healthy", timestamp=isoformat_utc(datetime.now(timezone.utc)))
