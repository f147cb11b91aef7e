import math
from typing import Any

from .logs import get_logger

logger = get_logger(__name__)

DEFAULT_UNIT = "UNIT"

# factor to the base unit: GM for weight, ML for volume, UNIT for counts
UNIT_CONVERSIONS: dict[str, tuple[float, str]] = {
    "GM": (1, "GM"),
    "G": (1, "GM"),
    "KG": (1000, "GM"),
    "LB": (453.592, "GM"),
    "OZ": (28.3495, "GM"),
    "ML": (1, "ML"),
    "L": (1000, "ML"),
    "LITER": (1000, "ML"),
    "LITRE": (1000, "ML"),
    "CUP": (240, "ML"),
    "TBSP": (15, "ML"),
    "TSP": (5, "ML"),
    "UNIT": (1, "UNIT"),
    "UNITS": (1, "UNIT"),
    "PIECE": (1, "UNIT"),
    "EA": (1, "UNIT"),
}


def normalize_unit(unit: str | None) -> str:
    value = (unit or "").strip().upper()
    return value or DEFAULT_UNIT


def _is_missing(quantity: Any) -> bool:
    if quantity is None:
        return True
    try:
        return math.isnan(float(quantity))
    except (TypeError, ValueError):
        return True


def format_quantity(quantity: float | None, unit: str | None) -> dict[str, str]:
    """Render a stored quantity for display, switching GM/G to KG and ML to L from 1000 up."""
    normalized = normalize_unit(unit)
    if _is_missing(quantity):
        return {"value": "0.00", "unit": normalized}

    value = float(quantity)
    if normalized in ("GM", "G") and abs(value) >= 1000:
        return {"value": f"{value / 1000:.2f}", "unit": "KG"}
    if normalized == "ML" and abs(value) >= 1000:
        return {"value": f"{value / 1000:.2f}", "unit": "L"}
    return {"value": f"{value:.2f}", "unit": normalized}


def to_base_unit(quantity: float, unit: str | None) -> tuple[float, str]:
    normalized = normalize_unit(unit)
    conversion = UNIT_CONVERSIONS.get(normalized)
    if conversion is None:
        logger.warning("unknown_unit", unit=unit)
        return float(quantity), normalized
    factor, base_unit = conversion
    return float(quantity) * factor, base_unit
