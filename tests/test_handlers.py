from bakehouse.auth import RequestContext
from bakehouse.handlers import ROUTES, ApiRequest, dispatch
from conftest import add_recipe, add_schedule


def _request(method: str, path: str, **kwargs) -> ApiRequest:
    return ApiRequest(method=method, path=path, **kwargs)


def test_every_route_has_a_handler_per_verb() -> None:
    for path, verbs in ROUTES.items():
        assert path.startswith("/api/")
        assert verbs
        assert all(callable(handler) for handler in verbs.values())


def test_dispatch_runs_check_without_a_web_server(database) -> None:
    add_recipe("brownies-1kg", "Brownies 1kg", [("flour", 200, "GM")])
    add_schedule("week-42", [("brownies-1kg", 6)])

    resp = dispatch(
        "/api/inventory-check/run",
        _request("POST", "/api/inventory-check/run", body={"scheduleId": "week-42", "userId": "42"}),
    )

    assert resp.status == 200
    assert resp.body["success"] is True
    assert resp.body["result"]["check"]["user_id"] == "42"
    assert resp.body["result"]["shortages"][0]["status"] == "MISSING"


def test_dispatch_maps_errors_to_status(database) -> None:
    missing = dispatch(
        "/api/inventory-check/run",
        _request("POST", "/api/inventory-check/run", body={"scheduleId": "nowhere"}),
    )
    not_object = dispatch(
        "/api/inventory-check/run",
        _request("POST", "/api/inventory-check/run", body=["week-42"]),
    )
    wrong_verb = dispatch("/api/inventory-check/run", _request("GET", "/api/inventory-check/run"))

    assert missing.status == 404
    assert not_object.status == 400
    assert wrong_verb.status == 405


def test_admin_route_checks_context_role(database) -> None:
    baker = RequestContext(user={"id": 3, "username": "baker1", "role": "baker"})
    admin_previewing = RequestContext(user={"id": 1, "username": "admin", "role": "admin"}, preview_role="baker")
    admin = RequestContext(user={"id": 1, "username": "admin", "role": "admin"})
    path = "/api/admin/clear-inventory-checks"

    assert dispatch(path, _request("DELETE", path)).status == 401
    assert dispatch(path, _request("DELETE", path, context=baker)).status == 403
    assert dispatch(path, _request("DELETE", path, context=admin_previewing)).status == 403
    assert dispatch(path, _request("DELETE", path, context=admin)).status == 200


def test_preview_role_is_ignored_for_non_admins() -> None:
    ctx = RequestContext(user={"id": 3, "username": "baker1", "role": "baker"}, preview_role="admin")

    assert ctx.role == "baker"
    assert ctx.user_id == "3"
