import logging
from decimal import Decimal
from typing import Optional

logger = logging.getLogger("inventory.units")

# Factors to the base unit of each family (grams / ml)
WEIGHT_UNITS = {
    "grams": Decimal("1"),
    "g": Decimal("1"),
    "kg": Decimal("1000"),
    "kilograms": Decimal("1000"),
    "ounces": Decimal("28.35"),
    "oz": Decimal("28.35"),
    "pounds": Decimal("453.59"),
    "lbs": Decimal("453.59"),
}

VOLUME_UNITS = {
    "ml": Decimal("1"),
    "milliliters": Decimal("1"),
    "liters": Decimal("1000"),
    "l": Decimal("1000"),
    "cups": Decimal("237"),
    "tablespoons": Decimal("15"),
    "tbsp": Decimal("15"),
    "teaspoons": Decimal("5"),
    "tsp": Decimal("5"),
}

COUNT_UNITS = {"pieces": Decimal("1"), "pcs": Decimal("1")}

KNOWN_UNITS = sorted(set(WEIGHT_UNITS) | set(VOLUME_UNITS) | set(COUNT_UNITS))


def normalize_unit(unit: Optional[str]) -> str:
    return (unit or "").strip().lower()


def _family(unit: str) -> Optional[dict]:
    for table in (WEIGHT_UNITS, VOLUME_UNITS, COUNT_UNITS):
        if unit in table:
            return table
    return None


def convert_quantity(quantity: Decimal, from_unit: Optional[str], to_unit: Optional[str]) -> Decimal:
    """Convert between units of the same family; incompatible units pass through unchanged."""
    quantity = Decimal(quantity)
    src = normalize_unit(from_unit)
    dst = normalize_unit(to_unit)
    if not src or not dst or src == dst:
        return quantity

    family = _family(src)
    if family is None or dst not in family:
        logger.warning("Cannot convert between incompatible units: %s to %s", src, dst)
        return quantity

    return quantity * family[src] / family[dst]
