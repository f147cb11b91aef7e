"""SQL for schedules, recipes, stock, inventory checks and their shortages."""

import json
from typing import Any, Iterable

from .db import (
    DB_ERRORS,
    execute,
    now_iso,
    query_all,
    query_one,
    transaction,
    tx_execute,
    tx_insert,
)
from .errors import PersistenceError
from .logs import get_logger
from .models import (
    IngredientLine,
    IngredientShortage,
    InventoryCheck,
    InventoryCheckResult,
    OverallStatus,
    ProductionSchedule,
    Recipe,
    ResolutionAction,
    ShortageDraft,
    ShortageStatus,
    StockLevel,
)

logger = get_logger(__name__)


def _json_list(value: Any) -> list:
    if value is None:
        return []
    if isinstance(value, list):
        return value
    return json.loads(value)


def _json_dict(value: Any) -> Any:
    if isinstance(value, (dict, list)):
        return value
    return json.loads(value)


def load_schedule(schedule_id: str) -> ProductionSchedule | None:
    row = query_one("SELECT schedule_data FROM production_schedules WHERE schedule_id=?", (schedule_id,))
    if not row:
        return None
    return ProductionSchedule.from_schedule_data(schedule_id, _json_dict(row["schedule_data"]))


def save_schedule(schedule_id: str, schedule_data: dict[str, Any]) -> None:
    now = now_iso()
    payload = json.dumps(schedule_data)
    with transaction() as conn:
        updated = tx_execute(
            conn,
            "UPDATE production_schedules SET schedule_data=?, updated_at=? WHERE schedule_id=?",
            (payload, now, schedule_id),
        )
        if not updated:
            tx_execute(
                conn,
                "INSERT INTO production_schedules(schedule_id, schedule_data, created_at, updated_at) VALUES (?, ?, ?, ?)",
                (schedule_id, payload, now, now),
            )


def list_schedules() -> list[dict[str, Any]]:
    rows = query_all("SELECT schedule_id, schedule_data FROM production_schedules ORDER BY schedule_id")
    return [{"scheduleId": r["schedule_id"], **_json_dict(r["schedule_data"])} for r in rows]


def load_recipe(recipe_id: str) -> Recipe | None:
    recipe = query_one("SELECT id, name FROM recipes WHERE id=?", (recipe_id,))
    if not recipe:
        return None
    lines = query_all(
        """
        SELECT ingredient_id, quantity, unit, item_type
        FROM recipe_ingredients
        WHERE recipe_id = ?
        ORDER BY position, id
        """,
        (recipe_id,),
    )
    return Recipe(
        id=recipe["id"],
        name=recipe["name"],
        ingredients=[
            IngredientLine(
                ingredient_id=line["ingredient_id"],
                quantity=float(line["quantity"]),
                unit=line["unit"],
                kind=line["item_type"],
            )
            for line in lines
        ],
    )


def list_recipes() -> list[dict[str, Any]]:
    return query_all("SELECT * FROM recipes ORDER BY name")


def save_recipe(recipe_id: str, name: str, category: str, lines: list[IngredientLine]) -> None:
    now = now_iso()
    with transaction() as conn:
        updated = tx_execute(
            conn,
            "UPDATE recipes SET name=?, category=?, updated_at=? WHERE id=?",
            (name, category, now, recipe_id),
        )
        if not updated:
            tx_execute(
                conn,
                "INSERT INTO recipes(id, name, category, created_at, updated_at) VALUES (?, ?, ?, ?, ?)",
                (recipe_id, name, category, now, now),
            )
        tx_execute(conn, "DELETE FROM recipe_ingredients WHERE recipe_id=?", (recipe_id,))
        for position, line in enumerate(lines):
            tx_insert(
                conn,
                """
                INSERT INTO recipe_ingredients(recipe_id, ingredient_id, quantity, unit, item_type, position)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (recipe_id, line.ingredient_id, line.quantity, line.unit, line.kind, position),
            )


def load_stock(ingredient_ids: Iterable[str]) -> dict[str, StockLevel]:
    """Current stock keyed by recipe ingredient id, following ingredient_mappings where present."""
    ids = list(dict.fromkeys(ingredient_ids))
    if not ids:
        return {}
    marks = ", ".join("?" for _ in ids)
    mappings = {
        r["recipe_ingredient_id"]: r["inventory_item_id"]
        for r in query_all(
            f"SELECT recipe_ingredient_id, inventory_item_id FROM ingredient_mappings WHERE recipe_ingredient_id IN ({marks})",
            tuple(ids),
        )
    }
    item_ids = list(dict.fromkeys(mappings.get(i, i) for i in ids))
    item_marks = ", ".join("?" for _ in item_ids)
    items = {
        r["id"]: r
        for r in query_all(
            f"SELECT id, current_quantity, unit FROM inventory_items WHERE id IN ({item_marks})",
            tuple(item_ids),
        )
    }

    snapshot: dict[str, StockLevel] = {}
    for ingredient_id in ids:
        item = items.get(mappings.get(ingredient_id, ingredient_id))
        if item:
            snapshot[ingredient_id] = StockLevel(
                quantity=float(item["current_quantity"]), unit=item["unit"], item_id=item["id"]
            )
    return snapshot


def list_stock() -> list[dict[str, Any]]:
    return query_all("SELECT * FROM inventory_items ORDER BY name")


def set_stock(item_id: str, quantity: float, unit: str, name: str | None, category: str | None) -> dict[str, Any]:
    now = now_iso()
    with transaction() as conn:
        updated = tx_execute(
            conn,
            """
            UPDATE inventory_items
            SET current_quantity=?, unit=?, name=COALESCE(?, name), category=COALESCE(?, category), updated_at=?
            WHERE id=?
            """,
            (quantity, unit, name, category, now, item_id),
        )
        if not updated:
            tx_execute(
                conn,
                """
                INSERT INTO inventory_items(id, name, category, unit, current_quantity, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (item_id, name or item_id, category or "general", unit, quantity, now, now),
            )
    return query_one("SELECT * FROM inventory_items WHERE id=?", (item_id,))


def _check_from_row(row: dict[str, Any]) -> InventoryCheck:
    return InventoryCheck(
        id=int(row["id"]),
        schedule_id=row["schedule_id"],
        created_at=str(row["created_at"]),
        user_id=row.get("user_id"),
        shortage_count=int(row["shortage_count"]),
        status=row["status"],
        overall_status=row["overall_status"],
        total_ingredients=int(row["total_ingredients"]),
        missing=int(row.get("missing_count") or 0),
        partial=int(row.get("partial_count") or 0),
        sufficient=int(row.get("sufficient_count") or 0),
        production_dates=_json_list(row.get("production_dates")),
        check_type=row["check_type"],
    )


def _shortage_from_row(row: dict[str, Any]) -> IngredientShortage:
    return IngredientShortage(
        id=int(row["id"]),
        check_id=int(row["check_id"]),
        schedule_id=row["schedule_id"],
        ingredient_id=row["ingredient_id"],
        inventory_item=row.get("inventory_item"),
        production_date=row.get("production_date"),
        required_quantity=float(row["required_quantity"]),
        available_quantity=float(row["available_quantity"]),
        deficit=float(row["deficit"]),
        unit=row["unit"],
        status=row["status"],
        priority=row["priority"],
        affected_recipes=_json_list(row.get("affected_recipes")),
        resolution_status=row.get("resolution_status") or "PENDING",
        resolved_by=row.get("resolved_by"),
        resolved_at=row.get("resolved_at"),
        resolution_notes=row.get("resolution_notes"),
        resolution_action=row.get("resolution_action"),
        created_at=row.get("created_at"),
    )


def save_check(
    schedule_id: str,
    user_id: str | None,
    overall_status: OverallStatus,
    total_ingredients: int,
    production_dates: list[str],
    drafts: list[ShortageDraft],
) -> int:
    """Write a check and all of its shortages in one transaction; returns the check id."""
    now = now_iso()
    missing = sum(1 for d in drafts if d.status in (ShortageStatus.MISSING, ShortageStatus.CRITICAL))
    partial = sum(1 for d in drafts if d.status == ShortageStatus.PARTIAL)
    try:
        with transaction() as conn:
            check_id = tx_insert(
                conn,
                """
                INSERT INTO inventory_checks(
                  schedule_id, status, overall_status, shortage_count, total_ingredients,
                  missing_count, partial_count, sufficient_count,
                  production_dates, user_id, check_type, created_at
                ) VALUES (?, 'COMPLETED', ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    schedule_id,
                    overall_status.value,
                    len(drafts),
                    total_ingredients,
                    missing,
                    partial,
                    max(total_ingredients - len(drafts), 0),
                    json.dumps(production_dates),
                    user_id,
                    "MANUAL" if user_id else "AUTOMATIC",
                    now,
                ),
            )
            for d in drafts:
                tx_insert(
                    conn,
                    """
                    INSERT INTO ingredient_shortages(
                      check_id, schedule_id, ingredient_id, inventory_item, production_date,
                      required_quantity, available_quantity, deficit, unit, status, priority,
                      affected_recipes, resolution_status, created_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        check_id,
                        schedule_id,
                        d.ingredient_id,
                        d.inventory_item,
                        d.production_date,
                        d.required_quantity,
                        d.available_quantity,
                        d.deficit,
                        d.unit,
                        d.status.value,
                        d.priority.value,
                        json.dumps(d.affected_recipes),
                        d.resolution_status.value,
                        now,
                    ),
                )
    except DB_ERRORS as exc:
        logger.error("inventory_check_write_failed", schedule_id=schedule_id, error=str(exc))
        raise PersistenceError(f"Failed to save inventory check for schedule {schedule_id}") from exc
    return check_id


def load_check(check_id: int) -> InventoryCheckResult | None:
    row = query_one("SELECT * FROM inventory_checks WHERE id=?", (check_id,))
    if not row:
        return None
    return _with_shortages(row)


def latest_check(schedule_id: str) -> InventoryCheckResult | None:
    row = query_one(
        """
        SELECT *
        FROM inventory_checks
        WHERE schedule_id = ?
        ORDER BY created_at DESC, id DESC
        LIMIT 1
        """,
        (schedule_id,),
    )
    if not row:
        return None
    return _with_shortages(row)


def _with_shortages(check_row: dict[str, Any]) -> InventoryCheckResult:
    rows = query_all("SELECT * FROM ingredient_shortages WHERE check_id=? ORDER BY id", (check_row["id"],))
    return InventoryCheckResult(
        check=_check_from_row(check_row),
        shortages=[_shortage_from_row(r) for r in rows],
    )


def delete_checks(schedule_id: str | None = None) -> dict[str, int]:
    """Delete shortages, then their checks; all of them when no schedule is given."""
    try:
        with transaction() as conn:
            if schedule_id is None:
                shortages = tx_execute(conn, "DELETE FROM ingredient_shortages")
                checks = tx_execute(conn, "DELETE FROM inventory_checks")
            else:
                shortages = tx_execute(
                    conn,
                    """
                    DELETE FROM ingredient_shortages
                    WHERE check_id IN (SELECT id FROM inventory_checks WHERE schedule_id = ?)
                    """,
                    (schedule_id,),
                )
                checks = tx_execute(conn, "DELETE FROM inventory_checks WHERE schedule_id = ?", (schedule_id,))
    except DB_ERRORS as exc:
        logger.error("inventory_check_delete_failed", schedule_id=schedule_id, error=str(exc))
        raise PersistenceError("Failed to delete inventory checks") from exc
    return {"checks": checks, "shortages": shortages}


def count_shortages(schedule_id: str) -> int:
    row = query_one("SELECT COUNT(*) AS c FROM ingredient_shortages WHERE schedule_id=?", (schedule_id,))
    return int(row["c"]) if row else 0


def list_shortages(
    schedule_id: str | None = None,
    resolution_status: str | None = None,
    priority: str | None = None,
) -> list[dict[str, Any]]:
    sql = """
      SELECT s.*, c.created_at AS check_date, c.overall_status
      FROM ingredient_shortages s
      JOIN inventory_checks c ON c.id = s.check_id
      WHERE 1=1
    """
    params: list[Any] = []
    if resolution_status:
        sql += " AND s.resolution_status = ?"
        params.append(resolution_status)
    if schedule_id:
        sql += " AND s.schedule_id = ?"
        params.append(schedule_id)
    if priority:
        sql += " AND s.priority = ?"
        params.append(priority)
    sql += " ORDER BY CASE s.priority WHEN 'HIGH' THEN 1 WHEN 'MEDIUM' THEN 2 ELSE 3 END, s.created_at DESC, s.id DESC"
    rows = query_all(sql, tuple(params))
    return [
        {**_shortage_from_row(r).model_dump(mode="json"), "check_date": r["check_date"], "overall_status": r["overall_status"]}
        for r in rows
    ]


def load_shortage(shortage_id: int) -> IngredientShortage | None:
    row = query_one("SELECT * FROM ingredient_shortages WHERE id=?", (shortage_id,))
    return _shortage_from_row(row) if row else None


def mark_shortage_resolved(
    shortage_id: int, resolved_by: str, notes: str | None, action: ResolutionAction | None = None
) -> int:
    """Flip a PENDING shortage to RESOLVED; returns the number of rows changed."""
    return execute(
        """
        UPDATE ingredient_shortages
        SET resolution_status='RESOLVED', resolved_by=?, resolved_at=?, resolution_notes=?, resolution_action=?
        WHERE id=? AND resolution_status='PENDING'
        """,
        (resolved_by, now_iso(), notes, action.value if action else None, shortage_id),
    )
