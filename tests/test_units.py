import math

import pytest

from bakehouse.units import format_quantity, normalize_unit, to_base_unit


@pytest.mark.parametrize(
    "quantity, unit, expected",
    [
        (1200, "GM", {"value": "1.20", "unit": "KG"}),
        (1000, "g", {"value": "1.00", "unit": "KG"}),
        (-2500, "GM", {"value": "-2.50", "unit": "KG"}),
        (1500, " ml ", {"value": "1.50", "unit": "L"}),
        (999, "GM", {"value": "999.00", "unit": "GM"}),
        (500, "gm", {"value": "500.00", "unit": "GM"}),
        (2000, "KG", {"value": "2000.00", "unit": "KG"}),
        (3, "units", {"value": "3.00", "unit": "UNITS"}),
    ],
)
def test_format_quantity(quantity, unit, expected) -> None:
    assert format_quantity(quantity, unit) == expected


def test_format_quantity_missing_values() -> None:
    assert format_quantity(None, "gm") == {"value": "0.00", "unit": "GM"}
    assert format_quantity(math.nan, "ml") == {"value": "0.00", "unit": "ML"}
    assert format_quantity(None, None) == {"value": "0.00", "unit": "UNIT"}
    assert format_quantity(12.5, "   ") == {"value": "12.50", "unit": "UNIT"}


def test_normalize_unit_defaults_to_unit() -> None:
    assert normalize_unit(" kg ") == "KG"
    assert normalize_unit("") == "UNIT"
    assert normalize_unit(None) == "UNIT"


def test_to_base_unit() -> None:
    assert to_base_unit(1.2, "kg") == (1200.0, "GM")
    assert to_base_unit(2, "L") == (2000.0, "ML")
    assert to_base_unit(3, "tsp") == (15.0, "ML")
    assert to_base_unit(4, "ea") == (4.0, "UNIT")


def test_to_base_unit_keeps_unknown_units() -> None:
    assert to_base_unit(7, "pinch") == (7.0, "PINCH")
