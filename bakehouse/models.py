"""Typed entities for recipes, schedules, stock and inventory checks."""

from datetime import date
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, Field, ValidationError

from .errors import InvalidInput


class ResolutionStatus(str, Enum):
    PENDING = "PENDING"
    RESOLVED = "RESOLVED"


class ShortageStatus(str, Enum):
    MISSING = "MISSING"
    CRITICAL = "CRITICAL"
    PARTIAL = "PARTIAL"


class ShortagePriority(str, Enum):
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


class ResolutionAction(str, Enum):
    ORDERED = "ORDERED"
    IN_STOCK_ERROR = "IN_STOCK_ERROR"
    SUBSTITUTED = "SUBSTITUTED"
    RESCHEDULED = "RESCHEDULED"
    CANCELLED = "CANCELLED"


class OverallStatus(str, Enum):
    ALL_GOOD = "ALL_GOOD"
    PARTIAL_SHORTAGE = "PARTIAL_SHORTAGE"
    CRITICAL_SHORTAGE = "CRITICAL_SHORTAGE"


class CheckStage(str, Enum):
    LOADING = "LOADING"
    EXPANDING = "EXPANDING"
    COMPARING = "COMPARING"
    PERSISTING = "PERSISTING"
    DONE = "DONE"
    FAILED = "FAILED"


class IngredientLine(BaseModel):
    ingredient_id: str
    quantity: float
    unit: str
    kind: Literal["ingredient", "subrecipe"] = "ingredient"


class Recipe(BaseModel):
    id: str
    name: str
    ingredients: list[IngredientLine] = Field(default_factory=list)


class ScheduleEntry(BaseModel):
    recipe_id: str
    batch_count: float
    production_date: str | None = None


class ProductionSchedule(BaseModel):
    id: str
    week_start: date | None = None
    entries: list[ScheduleEntry] = Field(default_factory=list)

    @property
    def production_dates(self) -> list[str]:
        seen: list[str] = []
        for entry in self.entries:
            if entry.production_date and entry.production_date not in seen:
                seen.append(entry.production_date)
        return seen

    @classmethod
    def from_schedule_data(cls, schedule_id: str, data: dict[str, Any]) -> "ProductionSchedule":
        """Decode a stored schedule blob, flat `entries` or per-day `days[].items[]`."""
        if not isinstance(data, dict):
            raise InvalidInput(f"Schedule {schedule_id} has malformed data")

        entries: list[ScheduleEntry] = []
        for raw in _objects(data.get("entries"), "entries", schedule_id):
            entries.append(
                ScheduleEntry(
                    recipe_id=_recipe_ref(raw, schedule_id),
                    batch_count=_number(raw.get("batchCount", raw.get("quantity")), schedule_id),
                    production_date=_date_text(raw.get("productionDate"), schedule_id),
                )
            )
        for day in _objects(data.get("days"), "days", schedule_id):
            production_date = _date_text(day.get("date"), schedule_id)
            for raw in _objects(day.get("items"), "items", schedule_id):
                quantity = raw.get("adjustedQuantity") or raw.get("quantity")
                entries.append(
                    ScheduleEntry(
                        recipe_id=_recipe_ref(raw, schedule_id),
                        batch_count=_number(quantity, schedule_id),
                        production_date=production_date,
                    )
                )

        try:
            return cls(id=schedule_id, week_start=data.get("weekStart"), entries=entries)
        except ValidationError as exc:
            raise InvalidInput(f"Schedule {schedule_id} has malformed data: {exc.errors()[0]['msg']}")


def _objects(value: Any, field_name: str, schedule_id: str) -> list[dict[str, Any]]:
    if value is None:
        return []
    if not isinstance(value, list) or not all(isinstance(v, dict) for v in value):
        raise InvalidInput(f"Schedule {schedule_id}: {field_name} must be a list of objects")
    return value


def _recipe_ref(raw: dict[str, Any], schedule_id: str) -> str:
    ref = raw.get("recipeId") or raw.get("recipeName")
    if not ref:
        raise InvalidInput(f"Schedule {schedule_id} has an entry without a recipe")
    if not isinstance(ref, (str, int)) or isinstance(ref, bool):
        raise InvalidInput(f"Schedule {schedule_id} has a malformed recipe reference: {ref!r}")
    return str(ref)


def _number(value: Any, schedule_id: str) -> float:
    if isinstance(value, bool):
        raise InvalidInput(f"Schedule {schedule_id} has a non-numeric quantity: {value!r}")
    try:
        return float(value)
    except (TypeError, ValueError):
        raise InvalidInput(f"Schedule {schedule_id} has a non-numeric quantity: {value!r}")


def _date_text(value: Any, schedule_id: str) -> str | None:
    if value is None or value == "":
        return None
    try:
        return date.fromisoformat(str(value)[:10]).isoformat()
    except ValueError:
        raise InvalidInput(f"Schedule {schedule_id} has an invalid production date: {value!r}")


class StockLevel(BaseModel):
    quantity: float
    unit: str
    item_id: str | None = None


class RequiredIngredient(BaseModel):
    ingredient_id: str
    required_quantity: float
    unit: str
    kind: Literal["ingredient", "subrecipe"] = "ingredient"
    production_date: str | None = None


class Requirement(BaseModel):
    """Aggregated need for one ingredient, in its base unit."""

    required_quantity: float
    unit: str | None = None
    affected_recipes: list[str] = Field(default_factory=list)
    production_date: str | None = None


class ShortageDraft(BaseModel):
    ingredient_id: str
    required_quantity: float
    available_quantity: float
    deficit: float
    unit: str
    status: ShortageStatus
    priority: ShortagePriority
    affected_recipes: list[str] = Field(default_factory=list)
    resolution_status: ResolutionStatus = ResolutionStatus.PENDING
    inventory_item: str | None = None
    production_date: str | None = None


class IngredientShortage(ShortageDraft):
    id: int
    check_id: int
    schedule_id: str
    resolved_by: str | None = None
    resolved_at: str | None = None
    resolution_notes: str | None = None
    resolution_action: ResolutionAction | None = None
    created_at: str | None = None


class InventoryCheck(BaseModel):
    id: int
    schedule_id: str
    created_at: str
    user_id: str | None = None
    shortage_count: int
    status: str = "COMPLETED"
    overall_status: OverallStatus
    total_ingredients: int = 0
    missing: int = 0
    partial: int = 0
    sufficient: int = 0
    production_dates: list[str] = Field(default_factory=list)
    check_type: str = "AUTOMATIC"


class InventoryCheckResult(BaseModel):
    check: InventoryCheck
    shortages: list[IngredientShortage] = Field(default_factory=list)
