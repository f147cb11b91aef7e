"""Pytest configuration and fixtures."""

from typing import Generator

import pytest
from fastapi.testclient import TestClient

from bakehouse import db, repository
from bakehouse.models import IngredientLine


@pytest.fixture
def database(tmp_path, monkeypatch) -> Generator[None, None, None]:
    """Point the app at a fresh SQLite file with the schema created."""
    monkeypatch.setattr(db, "DB_PATH", tmp_path / "bakehouse-test.db")
    db.init_db()
    yield


@pytest.fixture
def client(tmp_path, monkeypatch) -> Generator[TestClient, None, None]:
    monkeypatch.setattr(db, "DB_PATH", tmp_path / "bakehouse-api.db")
    from bakehouse.main import app

    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def admin_headers(client: TestClient) -> dict[str, str]:
    resp = client.post("/api/auth/login", json={"username": "admin", "password": "admin123"})
    assert resp.status_code == 200
    return {"Authorization": f"Bearer {resp.json()['token']}"}


def add_recipe(recipe_id: str, name: str, lines: list[tuple]) -> None:
    """lines: (ingredient_id, quantity, unit) or (ingredient_id, quantity, unit, kind)."""
    repository.save_recipe(
        recipe_id,
        name,
        "test",
        [
            IngredientLine(ingredient_id=l[0], quantity=l[1], unit=l[2], kind=l[3] if len(l) > 3 else "ingredient")
            for l in lines
        ],
    )


def add_schedule(schedule_id: str, entries: list[tuple[str, float]], week_start: str = "2026-10-19") -> None:
    repository.save_schedule(
        schedule_id,
        {
            "scheduleId": schedule_id,
            "weekStart": week_start,
            "entries": [{"recipeId": recipe_id, "batchCount": count} for recipe_id, count in entries],
        },
    )


def set_stock(item_id: str, quantity: float, unit: str) -> None:
    repository.set_stock(item_id, quantity, unit, None, None)
