import sqlite3

import pytest
from fastapi.testclient import TestClient

from bakehouse import inventory_check, main, repository


def _post_schedule(client: TestClient, headers: dict[str, str], schedule_id: str = "week-42", batches: float = 6) -> None:
    resp = client.post(
        "/api/production-schedules",
        json={
            "scheduleId": schedule_id,
            "weekStart": "2026-10-19",
            "entries": [{"recipeId": "brownies-1kg", "batchCount": batches, "productionDate": "2026-10-20"}],
        },
        headers=headers,
    )
    assert resp.status_code == 201


def test_login_rejects_bad_password(client: TestClient) -> None:
    resp = client.post("/api/auth/login", json={"username": "admin", "password": "nope"})

    assert resp.status_code == 401
    assert resp.json() == {"error": "Invalid credentials"}


def test_me_reports_preview_role(client: TestClient, admin_headers: dict[str, str]) -> None:
    resp = client.get("/api/auth/me", headers={**admin_headers, "X-Preview-Role": "baker"})

    assert resp.status_code == 200
    body = resp.json()
    assert body["username"] == "admin"
    assert body["role"] == "admin"
    assert body["effective_role"] == "baker"


def test_unknown_preview_role_is_rejected(client: TestClient, admin_headers: dict[str, str]) -> None:
    resp = client.get("/api/auth/me", headers={**admin_headers, "X-Preview-Role": "pastry_wizard"})

    assert resp.status_code == 400


def test_run_requires_schedule_id(client: TestClient) -> None:
    resp = client.post("/api/inventory-check/run", json={})

    assert resp.status_code == 400
    assert resp.json() == {"error": "scheduleId is required"}


def test_run_unknown_schedule_is_not_found(client: TestClient) -> None:
    resp = client.post("/api/inventory-check/run", json={"scheduleId": "week-99"})

    assert resp.status_code == 404
    assert "week-99" in resp.json()["error"]


def test_invalid_json_body(client: TestClient) -> None:
    resp = client.post(
        "/api/inventory-check/run",
        content=b"{not json",
        headers={"Content-Type": "application/json"},
    )

    assert resp.status_code == 400


def test_get_check_without_runs_is_not_found(client: TestClient) -> None:
    resp = client.get("/api/inventory-check/week-42")

    assert resp.status_code == 404
    assert resp.json() == {"error": "No check found for this schedule"}


def test_saving_schedule_needs_a_planner(client: TestClient) -> None:
    payload = {"scheduleId": "week-42", "entries": [{"recipeId": "brownies-1kg", "batchCount": 1}]}

    assert client.post("/api/production-schedules", json=payload).status_code == 401

    baker = client.post("/api/auth/login", json={"username": "baker1", "password": "admin123"}).json()
    resp = client.post(
        "/api/production-schedules", json=payload, headers={"Authorization": f"Bearer {baker['token']}"}
    )
    assert resp.status_code == 403


def test_run_get_delete_flow(client: TestClient, admin_headers: dict[str, str]) -> None:
    _post_schedule(client, admin_headers)

    run = client.post("/api/inventory-check/run", json={"scheduleId": "week-42"}, headers=admin_headers)

    assert run.status_code == 200
    result = run.json()["result"]
    assert result["check"]["schedule_id"] == "week-42"
    assert result["check"]["overall_status"] == "PARTIAL_SHORTAGE"
    assert result["check"]["check_type"] == "MANUAL"
    assert result["check"]["production_dates"] == ["2026-10-20"]
    [flour] = result["shortages"]
    assert flour["ingredient_id"] == "flour"
    assert flour["required_quantity"] == 720
    assert flour["available_quantity"] == 500
    assert flour["deficit"] == 220
    assert flour["resolution_status"] == "PENDING"
    assert flour["display"]["available"] == {"value": "500.00", "unit": "GM"}

    latest = client.get("/api/inventory-check/week-42")
    assert latest.status_code == 200
    assert latest.json()["result"] == result

    deleted = client.delete("/api/inventory-check/week-42/delete")
    assert deleted.status_code == 200
    assert deleted.json()["success"] is True
    assert deleted.json()["deleted"] == {"checks": 1, "shortages": 1}
    assert client.get("/api/inventory-check/week-42").status_code == 404


def test_rerun_after_restock_has_no_shortages(client: TestClient, admin_headers: dict[str, str]) -> None:
    _post_schedule(client, admin_headers)
    first = client.post("/api/inventory-check/run", json={"scheduleId": "week-42"}).json()["result"]

    restock = client.put(
        "/api/inventory/flour", json={"current_quantity": 1.5, "unit": "KG"}, headers=admin_headers
    )
    assert restock.status_code == 200
    second = client.post("/api/inventory-check/run", json={"scheduleId": "week-42"}).json()["result"]

    assert second["check"]["id"] != first["check"]["id"]
    assert second["shortages"] == []
    assert second["check"]["overall_status"] == "ALL_GOOD"
    assert client.get("/api/inventory-check/week-42").json()["result"]["check"]["id"] == second["check"]["id"]


def test_list_and_resolve_shortages(client: TestClient, admin_headers: dict[str, str]) -> None:
    _post_schedule(client, admin_headers)
    client.post("/api/inventory-check/run", json={"scheduleId": "week-42"})

    pending = client.get("/api/inventory-shortages", params={"scheduleId": "week-42"}).json()["shortages"]
    assert [s["ingredient_id"] for s in pending] == ["flour"]
    shortage_id = pending[0]["id"]

    resolved = client.patch(
        f"/api/inventory-shortages/{shortage_id}/resolve",
        json={"resolutionNotes": "Extra sacks delivered"},
        headers=admin_headers,
    )
    assert resolved.status_code == 200
    assert resolved.json()["shortage"]["resolution_status"] == "RESOLVED"
    assert resolved.json()["shortage"]["resolved_by"] == "admin"

    again = client.patch(f"/api/inventory-shortages/{shortage_id}/resolve", json={"resolvedBy": "chef1"})
    assert again.status_code == 409

    assert client.get("/api/inventory-shortages", params={"scheduleId": "week-42"}).json()["shortages"] == []
    everything = client.get("/api/inventory-shortages", params={"scheduleId": "week-42", "status": "all"})
    assert len(everything.json()["shortages"]) == 1


def test_resolve_unknown_shortage(client: TestClient) -> None:
    resp = client.patch("/api/inventory-shortages/abc/resolve", json={"resolvedBy": "chef1"})

    assert resp.status_code == 404


def test_clear_all_checks_is_admin_only(client: TestClient, admin_headers: dict[str, str]) -> None:
    _post_schedule(client, admin_headers)
    client.post("/api/inventory-check/run", json={"scheduleId": "week-42"})

    assert client.delete("/api/admin/clear-inventory-checks").status_code == 401
    previewing = client.delete(
        "/api/admin/clear-inventory-checks", headers={**admin_headers, "X-Preview-Role": "baker"}
    )
    assert previewing.status_code == 403

    cleared = client.delete("/api/admin/clear-inventory-checks", headers=admin_headers)
    assert cleared.status_code == 200
    assert cleared.json()["deleted"] == {"checks": 1, "shortages": 1}

    empty = client.delete("/api/admin/clear-inventory-checks", headers=admin_headers)
    assert empty.json()["message"] == "No records to delete - tables are already empty"


def test_wrong_verb_is_rejected(client: TestClient) -> None:
    resp = client.put("/api/inventory-check/run", json={"scheduleId": "week-42"})

    assert resp.status_code == 405


@pytest.mark.parametrize(
    "payload",
    [
        {"scheduleId": 42},
        {"scheduleId": "week-42", "entries": "abc"},
        {"scheduleId": "week-42", "entries": [1, 2]},
        {"scheduleId": "week-42", "days": [{"date": "2026-10-19", "items": [{"recipeId": "brownies-1kg", "quantity": "lots"}]}]},
    ],
)
def test_save_schedule_rejects_wrong_types(client: TestClient, admin_headers: dict[str, str], payload) -> None:
    resp = client.post("/api/production-schedules", json=payload, headers=admin_headers)

    assert resp.status_code == 400
    assert "error" in resp.json()


def test_wrong_types_elsewhere_are_caller_errors(client: TestClient, admin_headers: dict[str, str]) -> None:
    run = client.post("/api/inventory-check/run", json={"scheduleId": ["week-42"]})
    stock = client.put("/api/inventory/flour", json={"current_quantity": "NaN", "unit": "GM"}, headers=admin_headers)
    recipe = client.post(
        "/api/recipes", json={"id": "tart", "name": "Tart", "ingredients": "flour"}, headers=admin_headers
    )
    login = client.post("/api/auth/login", json={"username": "admin", "password": 123})

    assert run.status_code == 400
    assert stock.status_code == 400
    assert recipe.status_code == 400
    assert login.status_code == 400


def test_run_reports_storage_failure(client: TestClient, admin_headers: dict[str, str], monkeypatch) -> None:
    _post_schedule(client, admin_headers)

    def broken_insert(conn, query, params=()):
        raise sqlite3.OperationalError("disk I/O error")

    monkeypatch.setattr(repository, "tx_insert", broken_insert)
    resp = client.post("/api/inventory-check/run", json={"scheduleId": "week-42"})

    assert resp.status_code == 500
    assert resp.json() == {"error": "Failed to save inventory check for schedule week-42"}
    assert client.get("/api/inventory-check/week-42").status_code == 404


def test_delete_reports_storage_failure(client: TestClient, monkeypatch) -> None:
    def broken_execute(conn, query, params=()):
        raise sqlite3.OperationalError("database is locked")

    monkeypatch.setattr(repository, "tx_execute", broken_execute)
    resp = client.delete("/api/inventory-check/week-42/delete")

    assert resp.status_code == 500
    assert resp.json() == {"error": "Failed to delete inventory checks"}


def test_unexpected_error_is_a_generic_500(client: TestClient, monkeypatch) -> None:
    def crash(schedule_id):
        raise RuntimeError("boom")

    monkeypatch.setattr(inventory_check, "get_latest_check", crash)
    resp = client.get("/api/inventory-check/week-42")

    assert resp.status_code == 500
    assert resp.json() == {"error": "Internal server error"}


def test_auth_lookup_failure_is_json(client: TestClient, monkeypatch) -> None:
    def broken_lookup(authorization, preview_role=None):
        raise sqlite3.OperationalError("no such table: auth_tokens")

    monkeypatch.setattr(main, "resolve_context", broken_lookup)
    resp = client.get("/api/auth/me", headers={"Authorization": "Bearer abc"})

    assert resp.status_code == 500
    assert resp.json() == {"error": "Internal server error"}


def test_resolve_with_action(client: TestClient, admin_headers: dict[str, str]) -> None:
    _post_schedule(client, admin_headers)
    client.post("/api/inventory-check/run", json={"scheduleId": "week-42"})
    shortage_id = client.get("/api/inventory-shortages").json()["shortages"][0]["id"]

    bad = client.patch(
        f"/api/inventory-shortages/{shortage_id}/resolve", json={"resolvedBy": "chef1", "resolutionAction": "shrug"}
    )
    good = client.patch(
        f"/api/inventory-shortages/{shortage_id}/resolve", json={"resolvedBy": "chef1", "resolutionAction": "ordered"}
    )

    assert bad.status_code == 400
    assert good.status_code == 200
    assert good.json()["shortage"]["resolution_action"] == "ORDERED"
