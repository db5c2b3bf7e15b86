from decimal import Decimal

import pytest
from sqlalchemy import func, select

from db.inventory import InventoryMovement
from db.reservation import InventoryReservation
from services.inventory_reports import generate_alerts, generate_report
from services.recipe_resolver import OrderLine


@pytest.mark.asyncio
async def test_check_reports_shortages_without_holding(db, services, make_item, make_menu_item, level):
    milk = await make_item("milk", "300", unit="ml")
    beans = await make_item("beans", "100", unit="grams")
    latte = await make_menu_item("Latte", [
        {"inventory_item_id": milk, "quantity": 240, "unit": "ml"},
        {"inventory_item_id": beans, "quantity": 18, "unit": "grams"},
    ])
    movements_before = (await db.execute(select(func.count()).select_from(InventoryMovement))).scalar_one()

    result = await services.availability.check_availability(db, [OrderLine(latte, 2)])

    assert not result.is_available
    assert result.has_ingredient_tracking
    assert [c.name for c in result.insufficient] == ["milk"]
    assert result.insufficient[0].shortage == Decimal("180")
    assert not result.lines[0].is_available

    # Nothing was held or recorded
    assert (await level(milk)).reserved == Decimal("0")
    assert (await level(beans)).reserved == Decimal("0")
    movements_after = (await db.execute(select(func.count()).select_from(InventoryMovement))).scalar_one()
    assert movements_after == movements_before
    reservations = (await db.execute(select(func.count()).select_from(InventoryReservation))).scalar_one()
    assert reservations == 0


@pytest.mark.asyncio
async def test_check_counts_active_holds(db, services, make_item, make_menu_item):
    cups = await make_item("cups", "2")
    coffee = await make_menu_item("Filter Coffee", [
        {"inventory_item_id": cups, "quantity": 1, "unit": "pieces"},
    ])

    assert (await services.availability.check_availability(db, [OrderLine(coffee, 2)])).is_available
    await services.reservations.reserve(db, "order-1", [OrderLine(coffee)])

    result = await services.availability.check_availability(db, [OrderLine(coffee, 2)])
    assert not result.is_available
    assert result.ingredients[0].available == Decimal("1")


@pytest.mark.asyncio
async def test_optional_and_untracked_items_do_not_block(db, services, make_item, make_menu_item):
    beans = await make_item("beans", "100", unit="grams")
    lids = await make_item("lids", "0")
    espresso = await make_menu_item("Espresso", [
        {"inventory_item_id": beans, "quantity": 18, "unit": "grams"},
        {"inventory_item_id": lids, "quantity": 1, "unit": "pieces", "is_required": False},
    ])
    water = await make_menu_item("Tap Water")

    result = await services.availability.check_availability(db, [OrderLine(espresso), OrderLine(water)])

    assert result.is_available
    assert result.insufficient == []
    assert [line.has_ingredient_tracking for line in result.lines] == [True, False]


@pytest.mark.asyncio
async def test_untracked_only_order(db, services, make_menu_item):
    water = await make_menu_item("Tap Water")
    result = await services.availability.check_availability(db, [OrderLine(water)])
    assert result.is_available
    assert not result.has_ingredient_tracking
    assert result.ingredients == []


@pytest.mark.asyncio
async def test_alerts_by_priority(db, make_item):
    await make_item("beans", "0", min_level="2")
    await make_item("milk", "1", min_level="2")
    await make_item("cups", "5", min_level="2")
    await make_item("napkins", "100", min_level="2")

    alerts = await generate_alerts(db)

    assert [(a["name"], a["type"], a["priority"]) for a in alerts["alerts"]] == [
        ("beans", "low_stock", "critical"),
        ("milk", "low_stock", "high"),
        ("cups", "restock_needed", "medium"),
    ]
    assert alerts["summary"] == {"total": 3, "critical": 1, "high": 1, "medium": 1}


@pytest.mark.asyncio
async def test_report_values_stock(db, make_item):
    await make_item("beans", "2", unit="kg", min_level="1", unit_cost="28.00")
    await make_item("milk", "3", unit="liters", min_level="5", unit_cost="1.50")

    report = await generate_report(db)

    assert report["summary"]["total_items"] == 2
    assert report["summary"]["low_stock_items"] == 1
    assert report["summary"]["total_value"] == 60.5
    assert {i["name"]: i["stock_level"] for i in report["items"]} == {"beans": "normal", "milk": "low"}
    assert report["summary"]["adjustments_count"] == 2
