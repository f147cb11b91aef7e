"""Request handlers, one plain function per (path, verb), free of any web framework.

`ROUTES` maps each path template to its verbs and handlers; `dispatch` runs one and
turns raised errors into `{"error": ...}` responses.
"""

import math
from typing import Any, Callable

from pydantic import BaseModel, Field

from . import inventory_check, repository
from .auth import RequestContext, login, require_roles
from .errors import BakehouseError, InvalidInput, NotFound, PersistenceError
from .logs import get_logger
from .models import IngredientLine, ProductionSchedule

logger = get_logger(__name__)


class ApiRequest(BaseModel):
    method: str
    path: str
    path_params: dict[str, str] = Field(default_factory=dict)
    query: dict[str, str] = Field(default_factory=dict)
    body: Any = None
    context: RequestContext = Field(default_factory=RequestContext)

    def json_body(self) -> dict[str, Any]:
        if self.body is None:
            return {}
        if not isinstance(self.body, dict):
            raise InvalidInput("Request body must be a JSON object")
        return self.body


class ApiResponse(BaseModel):
    status: int = 200
    body: Any = None


Handler = Callable[[ApiRequest], ApiResponse]


def ok(body: Any, status: int = 200) -> ApiResponse:
    return ApiResponse(status=status, body=body)


def text_field(payload: dict[str, Any], key: str) -> str:
    value = payload.get(key)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise InvalidInput(f"{key} must be a string")
    return value.strip()


def parse_float(value: Any, field_name: str) -> float:
    if isinstance(value, bool):
        raise InvalidInput(f"{field_name} must be a valid number")
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise InvalidInput(f"{field_name} must be a valid number")
    if not math.isfinite(number):
        raise InvalidInput(f"{field_name} must be a finite number")
    return number


def auth_login(req: ApiRequest) -> ApiResponse:
    payload = req.json_body()
    password = payload.get("password") or ""
    if not isinstance(password, str):
        raise InvalidInput("password must be a string")
    return ok(login(text_field(payload, "username"), password))


def auth_me(req: ApiRequest) -> ApiResponse:
    user = require_roles(req.context)
    return ok({**user, "effective_role": req.context.role, "preview_role": req.context.preview_role})


def list_recipes(req: ApiRequest) -> ApiResponse:
    return ok(repository.list_recipes())


def get_recipe(req: ApiRequest) -> ApiResponse:
    recipe = repository.load_recipe(req.path_params["recipeId"])
    if not recipe:
        raise NotFound("Recipe not found")
    return ok(recipe.model_dump(mode="json"))


def save_recipe(req: ApiRequest) -> ApiResponse:
    require_roles(req.context, "admin", "head_chef")
    payload = req.json_body()
    recipe_id = text_field(payload, "id")
    name = text_field(payload, "name")
    if not recipe_id or not name:
        raise InvalidInput("Recipe id and name are required")

    lines = []
    raw_lines = payload.get("ingredients") or []
    if not isinstance(raw_lines, list) or not all(isinstance(raw, dict) for raw in raw_lines):
        raise InvalidInput("ingredients must be a list of objects")
    for raw in raw_lines:
        if not raw.get("ingredient_id") or not isinstance(raw["ingredient_id"], str):
            raise InvalidInput("Every ingredient line needs an ingredient_id")
        quantity = parse_float(raw.get("quantity"), "quantity")
        if quantity < 0:
            raise InvalidInput("Ingredient quantity cannot be negative")
        kind = raw.get("kind", "ingredient")
        if kind not in ("ingredient", "subrecipe"):
            raise InvalidInput("Ingredient kind must be ingredient or subrecipe")
        lines.append(IngredientLine(ingredient_id=raw["ingredient_id"], quantity=quantity, unit=text_field(raw, "unit"), kind=kind))

    repository.save_recipe(recipe_id, name, text_field(payload, "category") or "general", lines)
    return ok({"id": recipe_id}, status=201)


def list_inventory(req: ApiRequest) -> ApiResponse:
    return ok(repository.list_stock())


def set_inventory_item(req: ApiRequest) -> ApiResponse:
    require_roles(req.context, "admin", "head_chef", "baker")
    payload = req.json_body()
    quantity = parse_float(payload.get("current_quantity"), "current_quantity")
    if quantity < 0:
        raise InvalidInput("Stock quantity cannot be negative")
    unit = text_field(payload, "unit")
    if not unit:
        raise InvalidInput("unit is required")
    item = repository.set_stock(
        req.path_params["ingredientId"],
        quantity,
        unit,
        text_field(payload, "name") or None,
        text_field(payload, "category") or None,
    )
    return ok(item)


def list_schedules(req: ApiRequest) -> ApiResponse:
    return ok(repository.list_schedules())


def get_schedule(req: ApiRequest) -> ApiResponse:
    schedule = repository.load_schedule(req.path_params["scheduleId"])
    if not schedule:
        raise NotFound("Production schedule not found")
    return ok(schedule.model_dump(mode="json"))


def save_schedule(req: ApiRequest) -> ApiResponse:
    require_roles(req.context, "admin", "head_chef")
    payload = req.json_body()
    schedule_id = text_field(payload, "scheduleId")
    if not schedule_id:
        raise InvalidInput("scheduleId is required")
    # decode once so malformed schedules are rejected before they are stored
    ProductionSchedule.from_schedule_data(schedule_id, payload)
    repository.save_schedule(schedule_id, payload)
    return ok(payload, status=201)


def run_check(req: ApiRequest) -> ApiResponse:
    payload = req.json_body()
    schedule_id = payload.get("scheduleId")
    if not schedule_id:
        return ok({"error": "scheduleId is required"}, status=400)
    user_id = payload.get("userId") or req.context.user_id
    for key, value in (("scheduleId", schedule_id), ("userId", user_id)):
        if value is not None and (isinstance(value, bool) or not isinstance(value, (str, int))):
            raise InvalidInput(f"{key} must be a string")
    logger.info("inventory_check_requested", schedule_id=schedule_id, user_id=user_id)
    result = inventory_check.run_inventory_check(str(schedule_id), str(user_id) if user_id else None)
    return ok({"success": True, "result": inventory_check.result_payload(result)})


def get_check(req: ApiRequest) -> ApiResponse:
    result = inventory_check.get_latest_check(req.path_params["scheduleId"])
    if result is None:
        return ok({"error": "No check found for this schedule"}, status=404)
    return ok({"success": True, "result": inventory_check.result_payload(result)})


def delete_check(req: ApiRequest) -> ApiResponse:
    schedule_id = req.path_params["scheduleId"]
    deleted = inventory_check.delete_checks_for_schedule(schedule_id)
    return ok(
        {
            "success": True,
            "message": f"Deleted inventory check for schedule {schedule_id}",
            "deleted": deleted,
        }
    )


def clear_checks(req: ApiRequest) -> ApiResponse:
    require_roles(req.context, "admin")
    deleted = inventory_check.clear_all_checks()
    if not deleted["checks"] and not deleted["shortages"]:
        message = "No records to delete - tables are already empty"
    else:
        message = "All inventory check records have been deleted"
    return ok({"success": True, "message": message, "deleted": deleted})


def list_shortages(req: ApiRequest) -> ApiResponse:
    status = (req.query.get("status") or "PENDING").upper()
    shortages = inventory_check.list_shortages(
        schedule_id=req.query.get("scheduleId") or None,
        resolution_status=None if status == "ALL" else status,
        priority=(req.query.get("priority") or "").upper() or None,
    )
    return ok({"success": True, "shortages": shortages})


def resolve_shortage(req: ApiRequest) -> ApiResponse:
    payload = req.json_body()
    try:
        shortage_id = int(req.path_params["shortageId"])
    except ValueError:
        raise NotFound("Shortage not found")
    resolved_by = text_field(payload, "resolvedBy") or (req.context.user or {}).get("username")
    if not resolved_by:
        raise InvalidInput("resolvedBy is required")
    action = text_field(payload, "resolutionAction").upper() or None
    shortage = inventory_check.resolve_shortage(
        shortage_id, str(resolved_by), text_field(payload, "resolutionNotes") or None, action
    )
    return ok({"success": True, "shortage": shortage.model_dump(mode="json")})


ROUTES: dict[str, dict[str, Handler]] = {
    "/api/auth/login": {"POST": auth_login},
    "/api/auth/me": {"GET": auth_me},
    "/api/recipes": {"GET": list_recipes, "POST": save_recipe},
    "/api/recipes/{recipeId}": {"GET": get_recipe},
    "/api/inventory": {"GET": list_inventory},
    "/api/inventory/{ingredientId}": {"PUT": set_inventory_item},
    "/api/production-schedules": {"GET": list_schedules, "POST": save_schedule},
    "/api/production-schedules/{scheduleId}": {"GET": get_schedule},
    "/api/inventory-check/run": {"POST": run_check},
    "/api/inventory-check/{scheduleId}": {"GET": get_check},
    "/api/inventory-check/{scheduleId}/delete": {"DELETE": delete_check},
    "/api/inventory-shortages": {"GET": list_shortages},
    "/api/inventory-shortages/{shortageId}/resolve": {"PATCH": resolve_shortage},
    "/api/admin/clear-inventory-checks": {"DELETE": clear_checks},
}


def dispatch(path: str, req: ApiRequest) -> ApiResponse:
    handler = ROUTES.get(path, {}).get(req.method.upper())
    if handler is None:
        return ApiResponse(status=405, body={"error": f"{req.method} not allowed on {path}"})
    try:
        return handler(req)
    except PersistenceError as exc:
        logger.error("request_failed", path=req.path, method=req.method, error=exc.message)
        return ApiResponse(status=exc.status_code, body={"error": exc.message})
    except BakehouseError as exc:
        logger.info("request_rejected", path=req.path, method=req.method, status=exc.status_code, error=exc.message)
        return ApiResponse(status=exc.status_code, body={"error": exc.message})
    except Exception:
        logger.exception("request_crashed", path=req.path, method=req.method)
        return ApiResponse(status=500, body={"error": "Internal server error"})
