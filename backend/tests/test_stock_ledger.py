import uuid
from datetime import datetime, timedelta
from decimal import Decimal

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from core.exceptions import InsufficientStock, InventoryItemNotFound, PersistenceUnavailable
from db.inventory import InventoryItem, InventoryMovement, InventoryStock
from services.recipe_resolver import OrderLine


@pytest.mark.asyncio
async def test_adjust_adds_and_removes_stock(db, services, make_item):
    item_id = await make_item("milk", "10", unit="liters")

    assert await services.ledger.adjust(db, item_id, Decimal("2.5"), reason="Delivery") == Decimal("12.5")
    assert await services.ledger.adjust(db, item_id, Decimal("-4"), reason="Waste") == Decimal("8.5")
    assert await services.ledger.get_stock(db, item_id) == Decimal("8.5")
    assert await services.ledger.get_free_stock(db, item_id) == Decimal("8.5")


@pytest.mark.asyncio
async def test_adjust_never_goes_negative(db, services, make_item):
    item_id = await make_item("cups", "3")

    with pytest.raises(InsufficientStock) as exc:
        await services.ledger.adjust(db, item_id, Decimal("-4"))

    assert exc.value.shortages[0]["available"] == 3.0
    assert await services.ledger.get_stock(db, item_id) == Decimal("3")


@pytest.mark.asyncio
async def test_adjust_cannot_eat_into_held_stock(db, session_maker, services, make_item, make_menu_item, level):
    beans = await make_item("beans", "10")
    espresso = await make_menu_item("Espresso", [
        {"inventory_item_id": beans, "quantity": 6, "unit": "pieces"},
    ])
    async with session_maker() as session:
        await services.reservations.reserve(session, "order-1", [OrderLine(espresso)])

    with pytest.raises(InsufficientStock):
        await services.ledger.adjust(db, beans, Decimal("-5"))

    # Removing only unheld stock is fine
    assert await services.ledger.adjust(db, beans, Decimal("-4")) == Decimal("6")
    current = await level(beans)
    assert current.reserved == Decimal("6")
    assert current.free == Decimal("0")


@pytest.mark.asyncio
async def test_adjust_creates_missing_stock_row(db, services):
    item = InventoryItem(name="napkins", unit="pieces")
    db.add(item)
    await db.commit()

    assert await services.ledger.get_stock(db, item.id) == Decimal("0")
    assert await services.ledger.adjust(db, item.id, Decimal("50")) == Decimal("50")


@pytest.mark.asyncio
async def test_unknown_item(db, services):
    with pytest.raises(InventoryItemNotFound):
        await services.ledger.get_stock(db, uuid.uuid4())
    with pytest.raises(InventoryItemNotFound):
        await services.ledger.adjust(db, uuid.uuid4(), Decimal("1"))


@pytest.mark.asyncio
async def test_every_adjustment_is_recorded(db, services, make_item):
    item_id = await make_item("syrup", "100", unit="ml")
    await services.ledger.adjust(db, item_id, Decimal("-10"), reason="Spilled")

    res = await db.execute(select(InventoryMovement).where(InventoryMovement.inventory_item_id == item_id))
    movements = sorted(res.scalars().all(), key=lambda m: m.change)
    assert [m.change for m in movements] == [Decimal("-10"), Decimal("100")]
    assert movements[0].reason == "Spilled"
    assert all(m.source_type == "manual" for m in movements)


@pytest.mark.asyncio
async def test_open_item_records_opening_stock(db, services):
    item = InventoryItem(name="oat milk", unit="liters")
    level = await services.ledger.open_item(db, item, Decimal("6"))

    assert level.quantity == Decimal("6")
    assert await services.ledger.get_stock(db, item.id) == Decimal("6")
    history = await services.ledger.get_history(db, item.id)
    assert [m.change for m in history.movements] == [Decimal("6")]
    assert history.movements[0].reason == "Opening stock"


@pytest.mark.asyncio
async def test_open_item_is_all_or_nothing(db, services, monkeypatch):
    def fail(*args, **kwargs):
        raise OperationalError("INSERT INTO inventory_movements", {}, Exception("disk I/O error"))

    monkeypatch.setattr(services.ledger, "_record", fail)
    with pytest.raises(PersistenceUnavailable):
        await services.ledger.open_item(db, InventoryItem(name="oat milk", unit="liters"), Decimal("6"))
    monkeypatch.undo()

    items = (await db.execute(select(func.count()).select_from(InventoryItem))).scalar_one()
    stock_rows = (await db.execute(select(func.count()).select_from(InventoryStock))).scalar_one()
    assert (items, stock_rows) == (0, 0)

    # Nothing half-created blocks the retry
    item = InventoryItem(name="oat milk", unit="liters")
    await services.ledger.open_item(db, item, Decimal("6"))
    assert await services.ledger.get_stock(db, item.id) == Decimal("6")


@pytest.mark.asyncio
async def test_history_of_one_item(db, services, make_item, make_menu_item):
    beans = await make_item("beans", "10")
    await make_item("milk", "5")
    drink = await make_menu_item("Double Shot", [
        {"inventory_item_id": beans, "quantity": 6, "unit": "pieces"},
    ])
    await services.ledger.adjust(db, beans, Decimal("-1"), reason="Spilled")
    outcome = await services.reservations.reserve(db, "order-1", [OrderLine(drink)])
    await services.reservations.commit(db, outcome.reservation.id)

    history = await services.ledger.get_history(db, beans)

    assert history.item.name == "beans"
    assert history.total_records == 4
    assert sorted(m.source_type for m in history.movements) == ["commit", "manual", "manual", "reservation"]
    by_source = {s["source_type"]: s for s in history.by_source}
    assert by_source["manual"]["count"] == 2
    assert by_source["manual"]["change"] == Decimal("9")
    assert by_source["reservation"]["reserved_change"] == Decimal("6")
    assert by_source["commit"]["change"] == Decimal("-6")

    limited = await services.ledger.get_history(db, beans, limit=2)
    assert len(limited.movements) == 2
    assert limited.total_records == 4

    tomorrow = datetime.utcnow() + timedelta(days=1)
    assert (await services.ledger.get_history(db, beans, start=tomorrow)).movements == []
    assert (await services.ledger.get_history(db, beans, end=tomorrow)).total_records == 4

    with pytest.raises(InventoryItemNotFound):
        await services.ledger.get_history(db, uuid.uuid4())
