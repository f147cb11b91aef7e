"""Inventory checks: explode a production schedule into ingredient needs and record shortages.

A run reads the schedule, its recipes and current stock fresh every time, writes one
check plus its shortages in a single transaction and returns what was written. Nothing
is cached between runs and concurrent runs for one schedule are not serialized; the
latest check by creation time is the current one.
"""

import math
from contextlib import contextmanager
from datetime import date
from typing import Any, Callable, Iterator, Mapping

from . import repository
from .db import DB_ERRORS
from .errors import Conflict, InvalidInput, NotFound, PersistenceError, UnitMismatch
from .logs import get_logger
from .models import (
    CheckStage,
    IngredientShortage,
    InventoryCheckResult,
    OverallStatus,
    ProductionSchedule,
    Recipe,
    RequiredIngredient,
    Requirement,
    ResolutionAction,
    ResolutionStatus,
    ShortageDraft,
    ShortagePriority,
    ShortageStatus,
    StockLevel,
)
from .units import format_quantity, normalize_unit, to_base_unit

logger = get_logger(__name__)

MAX_SUBRECIPE_DEPTH = 10
CRITICAL_SHORTFALL_RATIO = 0.8
URGENT_WITHIN_DAYS = 1
SOON_WITHIN_DAYS = 3
FLOAT_NOISE = 1e-9


def expand_recipe(recipe: Recipe, batch_count: float) -> list[RequiredIngredient]:
    """Scale every ingredient line of `recipe` by `batch_count`, keeping recipe order."""
    if isinstance(batch_count, bool) or not isinstance(batch_count, (int, float)):
        raise InvalidInput(f"Batch count for recipe {recipe.id} must be a number")
    if not math.isfinite(batch_count) or batch_count < 0:
        raise InvalidInput(f"Batch count for recipe {recipe.id} must be a non-negative number, got {batch_count}")

    return [
        RequiredIngredient(
            ingredient_id=line.ingredient_id,
            required_quantity=line.quantity * batch_count,
            unit=line.unit,
            kind=line.kind,
        )
        for line in recipe.ingredients
    ]


def _status(required: float, available: float, deficit: float) -> ShortageStatus:
    if available <= 0:
        return ShortageStatus.MISSING
    if deficit / required >= CRITICAL_SHORTFALL_RATIO:
        return ShortageStatus.CRITICAL
    return ShortageStatus.PARTIAL


def _days_until(production_date: str | None, today: date) -> int | None:
    if not production_date:
        return None
    try:
        return (date.fromisoformat(production_date[:10]) - today).days
    except ValueError:
        logger.warning("unparseable_production_date", production_date=production_date)
        return None


def _priority(status: ShortageStatus, days_until: int | None) -> ShortagePriority:
    if status != ShortageStatus.PARTIAL:
        return ShortagePriority.HIGH
    if days_until is None:
        return ShortagePriority.MEDIUM
    if days_until <= URGENT_WITHIN_DAYS:
        return ShortagePriority.HIGH
    if days_until <= SOON_WITHIN_DAYS:
        return ShortagePriority.MEDIUM
    return ShortagePriority.LOW


def _available_in(requirement: Requirement, level: StockLevel | None, ingredient_id: str) -> tuple[float, str]:
    if requirement.unit is None:
        if level is None:
            return 0.0, "UNIT"
        return level.quantity, normalize_unit(level.unit)
    if level is None:
        return 0.0, requirement.unit

    available, stock_unit = to_base_unit(level.quantity, level.unit)
    if stock_unit != requirement.unit:
        raise UnitMismatch(
            f"Stock for {ingredient_id} is kept in {level.unit}, which cannot be compared with {requirement.unit}"
        )
    return available, requirement.unit


def _covered(required: float, available: float) -> bool:
    # unit conversions leave float noise such as 300.00000000000006 GM against 300 GM
    return available >= required or math.isclose(required, available, rel_tol=FLOAT_NOISE, abs_tol=0.0)


def compare_stock(
    requirements: Mapping[str, Requirement | float],
    stock: Mapping[str, StockLevel],
    today: date | None = None,
) -> list[ShortageDraft]:
    """Shortage drafts for every requirement that stock does not cover, in requirement order."""
    today = today or date.today()
    drafts: list[ShortageDraft] = []
    for ingredient_id, need in requirements.items():
        requirement = need if isinstance(need, Requirement) else Requirement(required_quantity=float(need), unit=None)
        level = stock.get(ingredient_id)
        available, unit = _available_in(requirement, level, ingredient_id)
        required = requirement.required_quantity

        if _covered(required, available):
            continue
        deficit = required - available

        status = _status(required, available, deficit)
        drafts.append(
            ShortageDraft(
                ingredient_id=ingredient_id,
                required_quantity=required,
                available_quantity=available,
                deficit=deficit,
                unit=unit,
                status=status,
                priority=_priority(status, _days_until(requirement.production_date, today)),
                affected_recipes=list(requirement.affected_recipes),
                resolution_status=ResolutionStatus.PENDING,
                inventory_item=level.item_id if level else None,
                production_date=requirement.production_date,
            )
        )
    return drafts


def overall_status(drafts: list[ShortageDraft]) -> OverallStatus:
    if any(d.status in (ShortageStatus.MISSING, ShortageStatus.CRITICAL) for d in drafts):
        return OverallStatus.CRITICAL_SHORTAGE
    if drafts:
        return OverallStatus.PARTIAL_SHORTAGE
    return OverallStatus.ALL_GOOD


def _flatten(
    recipe: Recipe,
    batch_count: float,
    load_recipe: Callable[[str], Recipe],
    trail: tuple[str, ...],
    source: str | None = None,
) -> list[tuple[RequiredIngredient, str]]:
    """Expand `recipe`, replacing sub-recipe lines with their ingredients.

    Each ingredient is paired with the recipe path it came from, e.g. "Cake > Ganache".
    """
    if len(trail) > MAX_SUBRECIPE_DEPTH:
        raise InvalidInput(f"Sub-recipes nest deeper than {MAX_SUBRECIPE_DEPTH} levels under {trail[0]}")

    source = source or recipe.name
    flattened: list[tuple[RequiredIngredient, str]] = []
    for line in expand_recipe(recipe, batch_count):
        if line.kind != "subrecipe":
            flattened.append((line, source))
            continue
        if line.ingredient_id in trail:
            raise InvalidInput(f"Recipe {line.ingredient_id} includes itself: {' > '.join(trail + (line.ingredient_id,))}")
        sub_recipe = load_recipe(line.ingredient_id)
        flattened.extend(
            _flatten(
                sub_recipe,
                line.required_quantity,
                load_recipe,
                trail + (sub_recipe.id,),
                f"{source} > {sub_recipe.name}",
            )
        )
    return flattened


def aggregate_requirements(lines: list[tuple[RequiredIngredient, str]]) -> dict[str, Requirement]:
    """Sum required quantities per ingredient in base units, keyed in first-seen order.

    The earliest production date among the contributing lines is kept.
    """
    aggregated: dict[str, Requirement] = {}
    for line, recipe_name in lines:
        quantity, unit = to_base_unit(line.required_quantity, line.unit)
        current = aggregated.get(line.ingredient_id)
        if current is None:
            aggregated[line.ingredient_id] = Requirement(
                required_quantity=quantity,
                unit=unit,
                affected_recipes=[recipe_name],
                production_date=line.production_date,
            )
            continue
        if current.unit != unit:
            raise UnitMismatch(
                f"Ingredient {line.ingredient_id} is required in both {current.unit} and {unit}"
            )
        current.required_quantity += quantity
        if recipe_name not in current.affected_recipes:
            current.affected_recipes.append(recipe_name)
        if line.production_date and (not current.production_date or line.production_date < current.production_date):
            current.production_date = line.production_date
    return aggregated


class CheckRun:
    """Stage tracker for one run; LOADING -> EXPANDING -> COMPARING -> PERSISTING -> DONE."""

    def __init__(self, schedule_id: str):
        self.schedule_id = schedule_id
        self.stage = CheckStage.LOADING
        self.log = logger.bind(schedule_id=schedule_id)

    def advance(self, stage: CheckStage) -> None:
        self.stage = stage
        self.log.debug("inventory_check_stage", stage=stage.value)

    def fail(self, exc: Exception) -> None:
        failed_at = self.stage
        self.stage = CheckStage.FAILED
        self.log.warning("inventory_check_failed", stage=failed_at.value, error=str(exc), error_type=type(exc).__name__)


@contextmanager
def _reading(action: str) -> Iterator[None]:
    try:
        yield
    except DB_ERRORS as exc:
        logger.error("inventory_store_read_failed", action=action, error=str(exc))
        raise PersistenceError(f"Failed to {action}") from exc


def _recipe_loader() -> Callable[[str], Recipe]:
    loaded: dict[str, Recipe] = {}

    def load(recipe_id: str) -> Recipe:
        if recipe_id not in loaded:
            recipe = repository.load_recipe(recipe_id)
            if recipe is None:
                raise NotFound(f"Recipe not found: {recipe_id}")
            loaded[recipe_id] = recipe
        return loaded[recipe_id]

    return load


def run_inventory_check(schedule_id: str, user_id: str | None = None) -> InventoryCheckResult:
    if not schedule_id:
        raise InvalidInput("scheduleId is required")

    run = CheckRun(schedule_id)
    run.log.info("inventory_check_started", user_id=user_id)
    try:
        with _reading(f"load schedule {schedule_id}"):
            schedule: ProductionSchedule | None = repository.load_schedule(schedule_id)
            if schedule is None:
                raise NotFound(f"Production schedule not found: {schedule_id}")
            load_recipe = _recipe_loader()
            for entry in schedule.entries:
                load_recipe(entry.recipe_id)

            run.advance(CheckStage.EXPANDING)
            lines: list[tuple[RequiredIngredient, str]] = []
            for entry in schedule.entries:
                recipe = load_recipe(entry.recipe_id)
                for line, source in _flatten(recipe, entry.batch_count, load_recipe, (recipe.id,)):
                    line.production_date = entry.production_date
                    lines.append((line, source))
            requirements = aggregate_requirements(lines)

            run.advance(CheckStage.COMPARING)
            stock = repository.load_stock(requirements.keys())
        drafts = compare_stock(requirements, stock)
        status = overall_status(drafts)

        run.advance(CheckStage.PERSISTING)
        check_id = repository.save_check(
            schedule_id=schedule_id,
            user_id=user_id,
            overall_status=status,
            total_ingredients=len(requirements),
            production_dates=schedule.production_dates,
            drafts=drafts,
        )
        with _reading(f"read back inventory check {check_id}"):
            result = repository.load_check(check_id)
        if result is None:
            raise PersistenceError(f"Inventory check {check_id} vanished after it was written")
    except Exception as exc:
        run.fail(exc)
        raise

    run.advance(CheckStage.DONE)
    run.log.info(
        "inventory_check_completed",
        check_id=result.check.id,
        overall_status=status.value,
        ingredients=len(requirements),
        shortages=len(drafts),
    )
    return result


def get_latest_check(schedule_id: str) -> InventoryCheckResult | None:
    with _reading(f"load latest inventory check for {schedule_id}"):
        return repository.latest_check(schedule_id)


def delete_checks_for_schedule(schedule_id: str) -> dict[str, int]:
    deleted = repository.delete_checks(schedule_id)
    logger.info("inventory_checks_deleted", schedule_id=schedule_id, **deleted)
    return deleted


def clear_all_checks() -> dict[str, int]:
    deleted = repository.delete_checks()
    logger.info("inventory_checks_cleared", **deleted)
    return deleted


def list_shortages(
    schedule_id: str | None = None,
    resolution_status: str | None = ResolutionStatus.PENDING.value,
    priority: str | None = None,
) -> list[dict[str, Any]]:
    if resolution_status is not None and resolution_status not in ResolutionStatus.__members__:
        raise InvalidInput(f"Unknown resolution status: {resolution_status}")
    if priority is not None and priority not in ShortagePriority.__members__:
        raise InvalidInput(f"Unknown priority: {priority}")
    with _reading("list shortages"):
        rows = repository.list_shortages(schedule_id, resolution_status, priority)
    for row in rows:
        row["display"] = display_quantities(row["required_quantity"], row["available_quantity"], row["deficit"], row["unit"])
    return rows


def resolve_shortage(
    shortage_id: int,
    resolved_by: str,
    notes: str | None = None,
    action: str | None = None,
) -> IngredientShortage:
    """Mark a PENDING shortage RESOLVED. Resolved shortages never go back to PENDING.

    `action` records what was done about it (ORDERED, SUBSTITUTED, ...).
    """
    if action is not None and action not in ResolutionAction.__members__:
        raise InvalidInput(f"Unknown resolution action: {action}")
    resolution_action = ResolutionAction(action) if action else None
    with _reading(f"resolve shortage {shortage_id}"):
        current = repository.load_shortage(shortage_id)
        if current is None:
            raise NotFound(f"Shortage not found: {shortage_id}")
        if current.resolution_status == ResolutionStatus.RESOLVED:
            raise Conflict(f"Shortage {shortage_id} is already resolved")
        if not repository.mark_shortage_resolved(shortage_id, resolved_by, notes, resolution_action):
            raise Conflict(f"Shortage {shortage_id} is already resolved")
        updated = repository.load_shortage(shortage_id)
    logger.info("shortage_resolved", shortage_id=shortage_id, resolved_by=resolved_by, action=action)
    return updated


def display_quantities(required: float, available: float, deficit: float, unit: str) -> dict[str, dict[str, str]]:
    return {
        "required": format_quantity(required, unit),
        "available": format_quantity(available, unit),
        "deficit": format_quantity(deficit, unit),
    }


def result_payload(result: InventoryCheckResult) -> dict[str, Any]:
    """JSON-ready check result, each shortage carrying display-friendly quantities."""
    payload = result.model_dump(mode="json")
    for shortage in payload["shortages"]:
        shortage["display"] = display_quantities(
            shortage["required_quantity"], shortage["available_quantity"], shortage["deficit"], shortage["unit"]
        )
    return payload
