# backend/auditlog/query_compiler.py
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import FrozenSet, List, Optional, Sequence, Tuple

log = logging.getLogger(__name__)

# Columns that may be named in "column:value" terms. Anything that reaches SQL
# text as an identifier has to come out of this set.
VALID_COLUMNS: FrozenSet[str] = frozenset(
    {
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
    }
)

OPERATOR_AND = "AND"
OPERATOR_OR = "OR"
OPERATOR_NOT = "NOT"
JOIN_OPERATORS: FrozenSet[str] = frozenset({OPERATOR_AND, OPERATOR_OR})

TSQUERY_AND = "&"
TSQUERY_OR = "|"
TSQUERY_NOT = "!"

_QUOTE_CHARS = "\"'"
_COLUMN_TERM_PATTERN = re.compile(r"(\w+):([^\s\)]+)")
_TSQUERY_UNSAFE = re.compile(r"[^\w\s-]")


@dataclass(frozen=True)
class QueryCondition:
    """One ``column:value`` (or bare) term of a column-specific query.

    ``column`` is ``None`` for a bare term, which is matched against every
    default searchable column. ``operator`` joins this condition to the one
    before it; the operator on the first condition is never applied.
    """

    column: Optional[str]
    search_term: str
    operator: str = OPERATOR_AND


@dataclass(frozen=True)
class CompiledQuery:
    is_column_specific: bool = False
    fulltext_expression: str = ""
    conditions: Tuple[QueryCondition, ...] = field(default_factory=tuple)


def is_valid_column(column_name: Optional[str]) -> bool:
    if not isinstance(column_name, str):
        return False
    return column_name.lower() in VALID_COLUMNS


def get_valid_columns() -> List[str]:
    return sorted(VALID_COLUMNS)


def tokenize(text: str) -> List[str]:
    """Split ``text`` on whitespace, keeping quoted substrings in one token.

    The quote characters stay in the emitted token. An unterminated quote runs
    to the end of the input. There is no escaping inside quotes.
    """
    tokens: List[str] = []
    if not text:
        return tokens

    current: List[str] = []
    quote_char: Optional[str] = None

    for ch in text:
        if quote_char is None:
            if ch in _QUOTE_CHARS:
                quote_char = ch
                current.append(ch)
            elif ch.isspace():
                if current:
                    tokens.append("".join(current))
                    current = []
            else:
                current.append(ch)
        else:
            current.append(ch)
            if ch == quote_char:
                quote_char = None

    if current:
        tokens.append("".join(current))
    return tokens


def is_column_specific(text: str) -> bool:
    """True when any ``identifier:value`` pattern appears anywhere in ``text``."""
    if not text:
        return False
    return _COLUMN_TERM_PATTERN.search(text) is not None


def _strip_quotes(token: str) -> str:
    return token.strip().strip(_QUOTE_CHARS)


def escape_for_tsquery(term: str) -> str:
    """Reduce a literal to prefix-matching tsquery lexemes.

    ``"user login"`` becomes ``user:*&login:*``. Returns an empty string when
    nothing searchable is left.
    """
    cleaned = _TSQUERY_UNSAFE.sub("", term or "")
    words = cleaned.split()
    if not words:
        return ""
    return ":*&".join(words) + ":*"


def compile_fulltext(tokens: Sequence[str]) -> str:
    parts: List[str] = []
    joiner = TSQUERY_AND

    def _emit(lexeme: str) -> None:
        if parts:
            parts.append(joiner)
        parts.append(lexeme)

    index = 0
    while index < len(tokens):
        token = tokens[index].strip()
        index += 1
        if not token:
            continue

        keyword = token.upper()
        if keyword == OPERATOR_AND:
            joiner = TSQUERY_AND
        elif keyword == OPERATOR_OR:
            joiner = TSQUERY_OR
        elif keyword == OPERATOR_NOT:
            # NOT swallows the following token, whatever it is.
            if index >= len(tokens):
                continue
            negated = escape_for_tsquery(_strip_quotes(tokens[index]))
            index += 1
            if negated:
                _emit(TSQUERY_NOT + negated)
                joiner = TSQUERY_AND
        else:
            lexeme = escape_for_tsquery(_strip_quotes(token))
            if lexeme:
                _emit(lexeme)
                joiner = TSQUERY_AND

    return " ".join(parts)


def _split_column_term(token: str) -> Optional[Tuple[str, str]]:
    colon_index = token.find(":")
    if 0 < colon_index < len(token) - 1:
        return token[:colon_index], _strip_quotes(token[colon_index + 1:])
    return None


def compile_column_conditions(tokens: Sequence[str]) -> List[QueryCondition]:
    conditions: List[QueryCondition] = []
    operator = OPERATOR_AND

    for raw_token in tokens:
        token = raw_token.strip()
        if not token:
            continue

        keyword = token.upper()
        if keyword in JOIN_OPERATORS:
            operator = keyword
            continue

        column_term = _split_column_term(token)
        if column_term is not None:
            column, value = column_term
            if is_valid_column(column):
                conditions.append(QueryCondition(column.lower(), value, operator))
                operator = OPERATOR_AND
            else:
                # Unknown columns are dropped without touching the pending operator.
                log.debug("Ignoring term for unknown column %r", column)
            continue

        free_text = _strip_quotes(token)
        if free_text:
            conditions.append(QueryCondition(None, free_text, operator))
            operator = OPERATOR_AND

    return conditions


def compile_query(text: Optional[str]) -> CompiledQuery:
    normalized = (text or "").strip()
    if not normalized:
        return CompiledQuery()

    tokens = tokenize(normalized)
    if is_column_specific(normalized):
        return CompiledQuery(
            is_column_specific=True,
            conditions=tuple(compile_column_conditions(tokens)),
        )
    return CompiledQuery(fulltext_expression=compile_fulltext(tokens))
