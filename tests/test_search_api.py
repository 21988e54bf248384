"""HTTP tests for the audit log blueprint, with the executor functions stubbed out."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List

import pytest

import auditlog.search as search_module

HIT = {
    "id": 1,
    "timestamp": "2024-01-02T03:04:05Z",
    "user_id": "user001",
    "user_name": "John Doe",
    "action": "LOGIN",
    "resource_type": "session",
    "resource_id": None,
    "ip_address": None,
    "status": "SUCCESS",
    "details": None,
    "metadata": None,
    "created_at": "2024-01-02T03:04:05Z",
}


@pytest.fixture
def search_calls(monkeypatch) -> List[Dict[str, Any]]:
    calls: List[Dict[str, Any]] = []

    def _fake_search(**kwargs):
        calls.append(kwargs)
        return [HIT], 25

    monkeypatch.setattr(search_module, "search_audit_logs", _fake_search)
    return calls


@pytest.fixture
def list_calls(monkeypatch) -> List[tuple]:
    calls: List[tuple] = []

    def _fake_list(*args, **kwargs):
        calls.append(args)
        return [HIT, HIT], 2

    monkeypatch.setattr(search_module, "list_audit_logs", _fake_list)
    return calls


class TestSearchEndpoint:
    def test_returns_envelope(self, client, search_calls) -> None:
        resp = client.post("/api/auditlogs/search", json={"query": "login", "from": 1, "size": 10})

        assert resp.status_code == 200
        body = resp.get_json()
        assert body["total"] == 25
        assert body["from"] == 1
        assert body["size"] == 10
        assert body["hits"] == [HIT]
        assert isinstance(body["took"], int)
        assert body["hasMore"] is True
        assert body["totalPages"] == 3
        assert search_calls == [
            {
                "raw_query": "login",
                "page": 1,
                "page_size": 10,
                "from_date": None,
                "to_date": None,
                "sort_by": None,
                "sort_descending": True,
            }
        ]

    def test_underscore_alias(self, client, search_calls) -> None:
        resp = client.post("/api/auditlogs/_search", json={"query": "login"})
        assert resp.status_code == 200
        assert len(search_calls) == 1

    def test_dates_are_passed_through(self, client, search_calls) -> None:
        resp = client.post(
            "/api/auditlogs/search",
            json={"query": "login", "fromDate": "2024-01-01T00:00:00Z", "toDate": "2024-01-31T12:30:00+00:00"},
        )
        assert resp.status_code == 200
        assert search_calls[0]["from_date"] == datetime(2024, 1, 1, tzinfo=timezone.utc)
        assert search_calls[0]["to_date"] == datetime(2024, 1, 31, 12, 30, tzinfo=timezone.utc)

    def test_sort_request_is_passed_through(self, client, search_calls) -> None:
        resp = client.post(
            "/api/auditlogs/search",
            json={"query": "login", "sort": "timestamp", "sortDescending": False},
        )
        assert resp.status_code == 200
        assert search_calls[0]["sort_by"] == "timestamp"
        assert search_calls[0]["sort_descending"] is False

    def test_pagination_values(self, client, search_calls) -> None:
        resp = client.post("/api/auditlogs/search", json={"query": "login", "from": 2, "size": 10})
        assert resp.status_code == 200
        assert search_calls[0]["page"] == 2
        assert search_calls[0]["page_size"] == 10
        assert resp.get_json()["hasMore"] is True

    @pytest.mark.parametrize(
        "body",
        [
            {"query": "login", "from": 0},
            {"query": "login", "size": 2000},
            {"query": "login", "size": 0},
            {"query": "login", "from": "two"},
            {"query": "login", "from": True},
            {"query": "login", "fromDate": "not a date"},
            {"query": "login", "sortDescending": "sideways"},
            {"query": "login", "sort": 5},
            {"from": 1},
            {"query": 42},
        ],
    )
    def test_invalid_requests_rejected_before_search(self, client, search_calls, body) -> None:
        resp = client.post("/api/auditlogs/search", json=body)
        assert resp.status_code == 400
        payload = resp.get_json()
        assert payload["ok"] is False
        assert payload["code"] == 400
        assert search_calls == []

    def test_non_json_body_rejected(self, client, search_calls) -> None:
        resp = client.post("/api/auditlogs/search", data="query=login", content_type="text/plain")
        assert resp.status_code == 400
        assert search_calls == []

    def test_store_failure_is_generic_500(self, client, monkeypatch) -> None:
        def _boom(**kwargs):
            raise RuntimeError("password authentication failed for user secret")

        monkeypatch.setattr(search_module, "search_audit_logs", _boom)
        resp = client.post("/api/auditlogs/search", json={"query": "login"})

        assert resp.status_code == 500
        body = resp.get_json()
        assert body == {"ok": False, "error": "An error occurred while searching"}


class TestListEndpoint:
    def test_defaults(self, client, list_calls) -> None:
        resp = client.get("/api/auditlogs/")
        assert resp.status_code == 200
        body = resp.get_json()
        assert body["from"] == 1
        assert body["size"] == 10
        assert body["total"] == 2
        assert body["hasMore"] is False
        assert list_calls == [(1, 10, None, None)]

    def test_query_parameters(self, client, list_calls) -> None:
        resp = client.get("/api/auditlogs/?from=3&size=50&fromDate=2024-02-01")
        assert resp.status_code == 200
        page, size, from_date, to_date = list_calls[0]
        assert (page, size) == (3, 50)
        assert from_date == datetime(2024, 2, 1, tzinfo=timezone.utc)
        assert to_date is None

    @pytest.mark.parametrize("query_string", ["from=0", "size=1001", "size=abc", "toDate=yesterday-ish"])
    def test_invalid_parameters(self, client, list_calls, query_string) -> None:
        resp = client.get(f"/api/auditlogs/?{query_string}")
        assert resp.status_code == 400
        assert list_calls == []


class TestGetByIdEndpoint:
    def test_found(self, client, monkeypatch) -> None:
        monkeypatch.setattr(search_module, "get_audit_log_by_id", lambda log_id: dict(HIT, id=log_id))
        resp = client.get("/api/auditlogs/1")
        assert resp.status_code == 200
        assert resp.get_json()["id"] == 1

    def test_not_found(self, client, monkeypatch) -> None:
        monkeypatch.setattr(search_module, "get_audit_log_by_id", lambda log_id: None)
        resp = client.get("/api/auditlogs/999")
        assert resp.status_code == 404
        body = resp.get_json()
        assert body["ok"] is False
        assert body["code"] == 404
        assert "999" in body["description"]


def test_health(client) -> None:
    resp = client.get("/api/auditlogs/_health")
    assert resp.status_code == 200
    body = resp.get_json()
    assert body["status"] == "healthy"
    assert body["timestamp"].endswith("Z")
