"""Tests for the audit_logs table definition and its generated search vector."""

from __future__ import annotations

import pytest
from sqlalchemy import MetaData
from sqlalchemy.dialects import postgresql
from sqlalchemy.schema import CreateTable

import auditlog.config_loader as config_loader
import auditlog.schema as schema
import auditlog.search as search_module
from auditlog.records import AUDIT_LOG_COLUMNS
from auditlog.schema import build_audit_logs_table, create_schema, search_vector_expression
from auditlog.search import search_audit_logs


@pytest.fixture
def simple_config(monkeypatch):
    """Point appconfig.json at the 'simple' text search configuration."""
    monkeypatch.setattr(config_loader, "load_app_config", lambda: {"text_search_config": "simple"})
    search_module._default_text_search_config.cache_clear()
    yield "simple"
    search_module._default_text_search_config.cache_clear()


def _vector_sql(table) -> str:
    return str(table.c.search_vector.computed.sqltext)


class TestSearchVectorExpression:
    def test_uses_given_configuration(self) -> None:
        assert search_vector_expression("german").startswith("to_tsvector('german', ")

    @pytest.mark.parametrize("bad", ["", "x'); DROP TABLE audit_logs; --", "two words", None])
    def test_rejects_non_identifiers(self, bad) -> None:
        with pytest.raises(ValueError):
            search_vector_expression(bad)


class TestAuditLogsTable:
    def test_columns_match_record_layout(self) -> None:
        table = build_audit_logs_table(MetaData(), "english")
        assert tuple(table.c.keys()) == AUDIT_LOG_COLUMNS + ("search_vector",)

    def test_default_configuration(self) -> None:
        table = build_audit_logs_table(MetaData())
        assert _vector_sql(table).startswith("to_tsvector('english', ")

    def test_ddl_has_stored_generated_vector_and_gin_index(self) -> None:
        table = build_audit_logs_table(MetaData(), "english")
        ddl = str(CreateTable(table).compile(dialect=postgresql.dialect()))
        assert "GENERATED ALWAYS AS (to_tsvector('english', " in ddl
        assert "STORED" in ddl
        gin = [ix for ix in table.indexes if ix.name == "ix_audit_logs_search_vector"]
        assert gin and gin[0].dialect_options["postgresql"]["using"] == "gin"


class TestConfigurationIsShared:
    def test_vector_and_query_use_the_same_configuration(self, simple_config, make_session) -> None:
        table = build_audit_logs_table(MetaData())
        assert _vector_sql(table).startswith("to_tsvector('simple', ")

        session = make_session()
        search_audit_logs("running", db_session=session)
        assert session.count_call[1]["ts_config"] == "simple"
        assert session.data_call[1]["ts_config"] == "simple"

    def test_create_schema_builds_with_configured_vector(self, simple_config, monkeypatch) -> None:
        created = []
        monkeypatch.setattr(schema.MetaData, "create_all", lambda self, bind, checkfirst=True: created.append(bind))

        table = create_schema("engine")

        assert created == ["engine"]
        assert _vector_sql(table).startswith("to_tsvector('simple', ")
