"""Tests for API error response formats."""

from typing import Any

from fastapi.testclient import TestClient

import ruleflow.api.app as app_module
from ruleflow.api.app import create_app
from ruleflow.api.deps import get_automation_service, get_rule_store
from ruleflow.core.errors import ManualInvocationError, RuleValidationError, StorageError

HEADERS = {"X-User-Id": "user_1"}


class FakeRuleStore:
    """Minimal rule store for error response tests."""

    async def get_by_id_and_user(self, rule_id: str, user_id: str) -> Any | None:
        if rule_id == "broken":
            raise StorageError("redis down")
        if rule_id == "existing":
            return object()
        return None

    async def update(self, rule_id: str, changes: dict) -> Any | None:
        raise RuleValidationError("schedule_interval is required when schedule is enabled", "schedule_interval")


class FakeService:
    """Service whose manual invocation always rejects."""

    def __init__(self, reason: str):
        self._reason = reason

    async def invoke_manual(self, user_id: str, rule_id: str, **kwargs: Any) -> Any:
        raise ManualInvocationError("Rule does not support manual invocation", self._reason, rule_id)


def _make_client(monkeypatch, service: FakeService | None = None) -> TestClient:
    async def _noop() -> None:
        return None

    monkeypatch.setattr(app_module, "init_redis_pool", _noop)
    monkeypatch.setattr(app_module, "close_redis_pool", _noop)
    monkeypatch.setattr(app_module, "close_automation_service", _noop)

    app = create_app()
    app.dependency_overrides[get_rule_store] = lambda: FakeRuleStore()
    if service is not None:
        app.dependency_overrides[get_automation_service] = lambda: service
    return TestClient(app)


def test_http_exception_response_format(monkeypatch) -> None:
    client = _make_client(monkeypatch)

    response = client.get("/api/v1/rules/missing-rule", headers=HEADERS)

    assert response.status_code == 404
    payload = response.json()
    assert payload["code"] == 404
    assert payload["message"] == "Rule missing-rule not found"
    assert "data" in payload


def test_missing_user_header_is_rejected(monkeypatch) -> None:
    client = _make_client(monkeypatch)

    response = client.get("/api/v1/rules/missing-rule")

    assert response.status_code == 401
    assert response.json()["message"] == "Missing X-User-Id header"


def test_validation_error_response_format(monkeypatch) -> None:
    client = _make_client(monkeypatch)

    response = client.post("/api/v1/rules", json={"name": ""}, headers=HEADERS)

    assert response.status_code == 422
    payload = response.json()
    assert payload["code"] == 422
    assert payload["message"] == "Validation error"
    assert isinstance(payload["data"], list)
    assert payload["data"]


def test_rule_validation_error_response_format(monkeypatch) -> None:
    client = _make_client(monkeypatch)

    response = client.patch("/api/v1/rules/existing", json={"schedule_enabled": True}, headers=HEADERS)

    assert response.status_code == 422
    payload = response.json()
    assert payload["message"] == "schedule_interval is required when schedule is enabled"
    assert payload["data"] == {"field": "schedule_interval"}


def test_storage_error_maps_to_service_unavailable(monkeypatch) -> None:
    client = _make_client(monkeypatch)

    response = client.get("/api/v1/rules/broken", headers=HEADERS)

    assert response.status_code == 503
    assert response.json()["message"] == "Storage unavailable"


def test_manual_invocation_rejection_response(monkeypatch) -> None:
    client = _make_client(monkeypatch, FakeService(ManualInvocationError.MODE_NOT_ALLOWED))

    response = client.post("/api/v1/automations/invoke", json={"rule_id": "rule_t"}, headers=HEADERS)

    assert response.status_code == 400
    payload = response.json()
    assert payload["message"] == "Rule does not support manual invocation"
    assert payload["data"]["reason"] == "mode_not_allowed"


def test_manual_invocation_unknown_rule_response(monkeypatch) -> None:
    client = _make_client(monkeypatch, FakeService(ManualInvocationError.NOT_FOUND))

    response = client.post("/api/v1/automations/invoke", json={"rule_id": "nope"}, headers=HEADERS)

    assert response.status_code == 404
