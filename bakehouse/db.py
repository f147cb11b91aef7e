import os
import re
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator

DB_PATH = Path(os.getenv("BAKEHOUSE_DB_PATH") or Path(__file__).resolve().parent.parent / "bakehouse.db")
DATABASE_URL = os.getenv("DATABASE_URL", "").strip()
USING_POSTGRES = DATABASE_URL.startswith("postgres://") or DATABASE_URL.startswith("postgresql://")

if USING_POSTGRES:
    import psycopg
    from psycopg.rows import dict_row

DB_ERRORS: tuple[type[Exception], ...] = (sqlite3.Error, psycopg.Error) if USING_POSTGRES else (sqlite3.Error,)


SQLITE_SCHEMA_SQL = """
PRAGMA foreign_keys = ON;

CREATE TABLE IF NOT EXISTS roles (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  name TEXT UNIQUE NOT NULL
);

CREATE TABLE IF NOT EXISTS users (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  username TEXT UNIQUE NOT NULL,
  full_name TEXT NOT NULL,
  password_hash TEXT NOT NULL,
  role_id INTEGER NOT NULL,
  active INTEGER NOT NULL DEFAULT 1,
  created_at TEXT NOT NULL,
  FOREIGN KEY(role_id) REFERENCES roles(id)
);

CREATE TABLE IF NOT EXISTS auth_tokens (
  token TEXT PRIMARY KEY,
  user_id INTEGER NOT NULL,
  expires_at TEXT NOT NULL,
  created_at TEXT NOT NULL,
  FOREIGN KEY(user_id) REFERENCES users(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS inventory_items (
  id TEXT PRIMARY KEY,
  name TEXT NOT NULL,
  category TEXT NOT NULL DEFAULT 'general',
  unit TEXT NOT NULL,
  current_quantity REAL NOT NULL DEFAULT 0,
  created_at TEXT NOT NULL,
  updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS ingredient_mappings (
  recipe_ingredient_id TEXT PRIMARY KEY,
  inventory_item_id TEXT NOT NULL,
  notes TEXT,
  created_at TEXT NOT NULL,
  FOREIGN KEY(inventory_item_id) REFERENCES inventory_items(id)
);

CREATE TABLE IF NOT EXISTS recipes (
  id TEXT PRIMARY KEY,
  name TEXT NOT NULL,
  category TEXT NOT NULL DEFAULT 'general',
  created_at TEXT NOT NULL,
  updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS recipe_ingredients (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  recipe_id TEXT NOT NULL,
  ingredient_id TEXT NOT NULL,
  quantity REAL NOT NULL,
  unit TEXT NOT NULL,
  item_type TEXT NOT NULL DEFAULT 'ingredient',
  position INTEGER NOT NULL DEFAULT 0,
  FOREIGN KEY(recipe_id) REFERENCES recipes(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS production_schedules (
  schedule_id TEXT PRIMARY KEY,
  schedule_data TEXT NOT NULL,
  created_at TEXT NOT NULL,
  updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS inventory_checks (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  schedule_id TEXT NOT NULL,
  status TEXT NOT NULL DEFAULT 'COMPLETED',
  overall_status TEXT NOT NULL,
  shortage_count INTEGER NOT NULL DEFAULT 0,
  total_ingredients INTEGER NOT NULL DEFAULT 0,
  missing_count INTEGER NOT NULL DEFAULT 0,
  partial_count INTEGER NOT NULL DEFAULT 0,
  sufficient_count INTEGER NOT NULL DEFAULT 0,
  production_dates TEXT NOT NULL DEFAULT '[]',
  user_id TEXT,
  check_type TEXT NOT NULL DEFAULT 'AUTOMATIC',
  created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS ingredient_shortages (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  check_id INTEGER NOT NULL,
  schedule_id TEXT NOT NULL,
  ingredient_id TEXT NOT NULL,
  inventory_item TEXT,
  production_date TEXT,
  required_quantity REAL NOT NULL,
  available_quantity REAL NOT NULL DEFAULT 0,
  deficit REAL NOT NULL,
  unit TEXT NOT NULL,
  status TEXT NOT NULL,
  priority TEXT NOT NULL,
  affected_recipes TEXT NOT NULL DEFAULT '[]',
  resolution_status TEXT NOT NULL DEFAULT 'PENDING',
  resolved_by TEXT,
  resolved_at TEXT,
  resolution_notes TEXT,
  resolution_action TEXT,
  created_at TEXT NOT NULL,
  FOREIGN KEY(check_id) REFERENCES inventory_checks(id)
);

CREATE INDEX IF NOT EXISTS idx_inventory_checks_schedule ON inventory_checks(schedule_id);
CREATE INDEX IF NOT EXISTS idx_shortages_check ON ingredient_shortages(check_id);
CREATE INDEX IF NOT EXISTS idx_shortages_resolution_status ON ingredient_shortages(resolution_status);
"""

POSTGRES_SCHEMA_SQL = (
    SQLITE_SCHEMA_SQL.replace("PRAGMA foreign_keys = ON;", "")
    .replace("INTEGER PRIMARY KEY AUTOINCREMENT", "SERIAL PRIMARY KEY")
    .replace("REAL", "DOUBLE PRECISION")
)


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _adapt_query(query: str) -> str:
    if USING_POSTGRES:
        return query.replace("?", "%s")
    return query


def _extract_insert_table(query: str) -> str | None:
    m = re.match(r"\s*INSERT\s+INTO\s+([a-zA-Z_][a-zA-Z0-9_]*)", query, flags=re.IGNORECASE)
    return m.group(1) if m else None


def get_conn() -> Any:
    if USING_POSTGRES:
        return psycopg.connect(DATABASE_URL, row_factory=dict_row)
    conn = sqlite3.connect(DB_PATH)
    conn.row_factory = sqlite3.Row
    # sqlite only enforces foreign keys when asked to, per connection
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


def init_db() -> None:
    conn = get_conn()
    try:
        if USING_POSTGRES:
            statements = [s.strip() for s in POSTGRES_SCHEMA_SQL.split(";") if s.strip()]
            pending = statements[:]

            # Postgres validates FK dependencies at CREATE TABLE time.
            # Execute in multiple passes to tolerate declaration order.
            while pending:
                next_pending: list[str] = []
                progressed = False
                first_error: Exception | None = None
                for stmt in pending:
                    try:
                        with conn.cursor() as cur:
                            cur.execute(stmt)
                        conn.commit()
                        progressed = True
                    except Exception as ex:
                        conn.rollback()
                        next_pending.append(stmt)
                        if first_error is None:
                            first_error = ex
                if not progressed:
                    raise first_error if first_error else RuntimeError("Failed to initialize Postgres schema")
                pending = next_pending
        else:
            conn.executescript(SQLITE_SCHEMA_SQL)
            conn.commit()
    finally:
        conn.close()


def _inserted_id(conn: Any, cur: Any, query: str) -> int:
    if USING_POSTGRES:
        table = _extract_insert_table(query)
        if not table:
            return 0
        seq_row = conn.execute("SELECT currval(pg_get_serial_sequence(%s, 'id')) AS id", (table,)).fetchone()
        return int(seq_row["id"]) if seq_row and seq_row["id"] is not None else 0
    return int(cur.lastrowid or 0)


@contextmanager
def transaction() -> Iterator[Any]:
    """Yield one connection; commit on success, roll back on any error."""
    conn = get_conn()
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def tx_execute(conn: Any, query: str, params: tuple = ()) -> int:
    """Run a statement inside an open transaction and return the affected row count."""
    cur = conn.execute(_adapt_query(query), params)
    return max(int(cur.rowcount), 0)


def tx_insert(conn: Any, query: str, params: tuple = ()) -> int:
    """Insert into a table with a serial `id` column and return the new id."""
    cur = conn.execute(_adapt_query(query), params)
    return _inserted_id(conn, cur, query)


def execute(query: str, params: tuple = ()) -> int:
    with transaction() as conn:
        return tx_execute(conn, query, params)


def execute_many(query: str, rows: list[tuple]) -> None:
    with transaction() as conn:
        sql = _adapt_query(query)
        if USING_POSTGRES:
            with conn.cursor() as cur:
                cur.executemany(sql, rows)
        else:
            conn.executemany(sql, rows)


def query_all(query: str, params: tuple = ()) -> list[dict]:
    conn = get_conn()
    try:
        rows = conn.execute(_adapt_query(query), params).fetchall()
        return [dict(r) for r in rows]
    finally:
        conn.close()


def query_one(query: str, params: tuple = ()) -> dict | None:
    conn = get_conn()
    try:
        row = conn.execute(_adapt_query(query), params).fetchone()
        return dict(row) if row else None
    finally:
        conn.close()


def seed_data(password_hash: str) -> None:
    role_count = query_one("SELECT COUNT(*) AS c FROM roles")
    if role_count and role_count["c"] > 0:
        return

    now = now_iso()
    roles = [("admin",), ("head_chef",), ("baker",)]
    execute_many("INSERT INTO roles(name) VALUES (?)", roles)

    admin_role = query_one("SELECT id FROM roles WHERE name='admin'")["id"]
    chef_role = query_one("SELECT id FROM roles WHERE name='head_chef'")["id"]
    baker_role = query_one("SELECT id FROM roles WHERE name='baker'")["id"]

    users = [
        ("admin", "Bakehouse Admin", password_hash, admin_role, 1, now),
        ("chef1", "Chef Amira", password_hash, chef_role, 1, now),
        ("baker1", "Baker Tom", password_hash, baker_role, 1, now),
    ]
    execute_many(
        """
        INSERT INTO users(username, full_name, password_hash, role_id, active, created_at)
        VALUES (?, ?, ?, ?, ?, ?)
        """,
        users,
    )

    inventory = [
        ("dark-chocolate", "Dark Chocolate (70% cocoa)", "Dry Goods", "GM", 5000, now, now),
        ("butter", "Unsalted Butter", "Dairy", "KG", 4, now, now),
        ("sugar", "Granulated Sugar", "Dry Goods", "KG", 10, now, now),
        ("eggs", "Eggs (Large)", "Dairy", "UNIT", 60, now, now),
        ("flour", "All-Purpose Flour", "Dry Goods", "GM", 500, now, now),
        ("cocoa-powder", "Cocoa Powder", "Dry Goods", "GM", 800, now, now),
        ("vanilla", "Vanilla Extract", "Dry Goods", "ML", 250, now, now),
    ]
    execute_many(
        """
        INSERT INTO inventory_items(id, name, category, unit, current_quantity, created_at, updated_at)
        VALUES (?, ?, ?, ?, ?, ?, ?)
        """,
        inventory,
    )

    execute(
        "INSERT INTO recipes(id, name, category, created_at, updated_at) VALUES (?, ?, ?, ?, ?)",
        ("brownies-1kg", "Brownies 1 KG", "Dessert", now, now),
    )
    recipe_ings = [
        ("brownies-1kg", "dark-chocolate", 300, "GM", "ingredient", 0),
        ("brownies-1kg", "butter", 200, "GM", "ingredient", 1),
        ("brownies-1kg", "sugar", 250, "GM", "ingredient", 2),
        ("brownies-1kg", "eggs", 4, "UNIT", "ingredient", 3),
        ("brownies-1kg", "flour", 120, "GM", "ingredient", 4),
        ("brownies-1kg", "cocoa-powder", 40, "GM", "ingredient", 5),
        ("brownies-1kg", "vanilla", 10, "ML", "ingredient", 6),
    ]
    execute_many(
        """
        INSERT INTO recipe_ingredients(recipe_id, ingredient_id, quantity, unit, item_type, position)
        VALUES (?, ?, ?, ?, ?, ?)
        """,
        recipe_ings,
    )
