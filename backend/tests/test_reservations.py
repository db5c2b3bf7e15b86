import asyncio
import uuid
from datetime import timedelta
from decimal import Decimal

import pytest

from core.exceptions import InsufficientStock, InvalidState, InventoryError, ReservationNotFound
from db.reservation import ACTIVE, COMMITTED, EXPIRED, RELEASED
from services.recipe_resolver import OrderLine


@pytest.fixture
async def espresso_bar(make_item, make_menu_item):
    """Ten units of beans and a drink that needs six of them."""
    beans = await make_item("beans", "10")
    drink = await make_menu_item("Double Shot", [
        {"inventory_item_id": beans, "quantity": 6, "unit": "pieces"},
    ])
    return beans, drink


async def _reserve(session_maker, services, order_id, lines, **kwargs):
    async with session_maker() as session:
        return await services.reservations.reserve(session, order_id, lines, **kwargs)


@pytest.mark.asyncio
async def test_concurrent_reserves_never_oversell(session_maker, services, espresso_bar, level):
    beans, drink = espresso_bar

    results = await asyncio.gather(
        _reserve(session_maker, services, "order-a", [OrderLine(drink)]),
        _reserve(session_maker, services, "order-b", [OrderLine(drink)]),
        return_exceptions=True,
    )

    won = [r for r in results if not isinstance(r, Exception)]
    lost = [r for r in results if isinstance(r, Exception)]
    assert len(won) == 1
    assert len(lost) == 1
    assert isinstance(lost[0], InsufficientStock)
    assert lost[0].shortages[0]["available"] == 4.0

    current = await level(beans)
    assert current.quantity == Decimal("10")
    assert current.reserved == Decimal("6")
    assert current.free == Decimal("4")


@pytest.mark.asyncio
async def test_many_concurrent_orders_hold_at_most_stock(session_maker, services, make_item, make_menu_item, level):
    cups = await make_item("cups", "5")
    coffee = await make_menu_item("Filter Coffee", [
        {"inventory_item_id": cups, "quantity": 1, "unit": "pieces"},
    ])

    results = await asyncio.gather(
        *[_reserve(session_maker, services, f"order-{i}", [OrderLine(coffee)]) for i in range(12)],
        return_exceptions=True,
    )

    assert sum(1 for r in results if not isinstance(r, Exception)) == 5
    assert all(isinstance(r, InsufficientStock) for r in results if isinstance(r, Exception))
    current = await level(cups)
    assert current.reserved == Decimal("5")
    assert current.free == Decimal("0")


@pytest.mark.asyncio
async def test_commit_deducts_stock(db, services, make_item, make_menu_item, level):
    beans = await make_item("beans", "10")
    shot = await make_menu_item("Single Shot", [
        {"inventory_item_id": beans, "quantity": 1, "unit": "pieces"},
    ])

    outcome = await services.reservations.reserve(db, "order-3x", [OrderLine(shot, 3)])
    assert outcome.created
    assert (await level(beans)).free == Decimal("7")

    reservation = await services.reservations.commit(db, outcome.reservation.id)

    assert reservation.status == COMMITTED
    current = await level(beans)
    assert current.quantity == Decimal("7")
    assert current.reserved == Decimal("0")


@pytest.mark.asyncio
async def test_release_restores_free_stock(db, services, espresso_bar, level):
    beans, drink = espresso_bar
    outcome = await services.reservations.reserve(db, "order-1", [OrderLine(drink)])
    assert (await level(beans)).free == Decimal("4")

    reservation = await services.reservations.release(db, outcome.reservation.id, "Customer left")

    assert reservation.status == RELEASED
    assert "Customer left" in reservation.notes
    current = await level(beans)
    assert current.quantity == Decimal("10")
    assert current.free == Decimal("10")

    # Releasing again changes nothing
    again = await services.reservations.release(db, outcome.reservation.id)
    assert again.status == RELEASED
    assert (await level(beans)).free == Decimal("10")


@pytest.mark.asyncio
async def test_committed_reservation_cannot_be_released(db, services, espresso_bar, level):
    beans, drink = espresso_bar
    outcome = await services.reservations.reserve(db, "order-1", [OrderLine(drink)])
    await services.reservations.commit(db, outcome.reservation.id)

    with pytest.raises(InvalidState) as exc:
        await services.reservations.release(db, outcome.reservation.id)
    assert exc.value.current_status == COMMITTED

    with pytest.raises(InvalidState):
        await services.reservations.commit(db, outcome.reservation.id)

    current = await level(beans)
    assert current.quantity == Decimal("4")
    assert current.reserved == Decimal("0")


@pytest.mark.asyncio
async def test_all_or_nothing_across_items(db, services, make_item, make_menu_item, level):
    milk = await make_item("milk", "1000", unit="ml")
    beans = await make_item("beans", "10", unit="grams")
    latte = await make_menu_item("Latte", [
        {"inventory_item_id": milk, "quantity": 240, "unit": "ml"},
        {"inventory_item_id": beans, "quantity": 18, "unit": "grams"},
    ])

    with pytest.raises(InsufficientStock) as exc:
        await services.reservations.reserve(db, "order-1", [OrderLine(latte)])

    assert [s["name"] for s in exc.value.shortages] == ["beans"]
    assert exc.value.shortages[0]["shortage"] == 8.0
    assert (await level(milk)).reserved == Decimal("0")
    assert (await level(beans)).reserved == Decimal("0")

    reservations, summary = await services.reservations.list_reservations(db)
    assert reservations == []
    assert summary["total"] == 0


@pytest.mark.asyncio
async def test_same_order_reuses_active_reservation(db, services, espresso_bar, level):
    beans, drink = espresso_bar
    first = await services.reservations.reserve(db, "order-1", [OrderLine(drink)])
    second = await services.reservations.reserve(db, "order-1", [OrderLine(drink)])

    assert first.created
    assert not second.created
    assert second.reservation.id == first.reservation.id
    assert (await level(beans)).reserved == Decimal("6")


@pytest.mark.asyncio
async def test_overdue_reservation_is_replaced_on_reserve(db, services, clock, espresso_bar, level):
    beans, drink = espresso_bar
    first = await services.reservations.reserve(db, "order-1", [OrderLine(drink)])
    old_id = first.reservation.id

    # Past its expiry but the sweeper has not run yet
    clock.advance(minutes=16)
    second = await services.reservations.reserve(db, "order-1", [OrderLine(drink)])

    assert second.created
    assert second.reservation.id != old_id
    assert second.reservation.status == ACTIVE
    assert second.reservation.expires_at == clock() + timedelta(minutes=15)
    assert (await services.reservations.get(db, old_id)).status == EXPIRED
    assert (await level(beans)).reserved == Decimal("6")

    committed = await services.reservations.commit(db, second.reservation.id)
    assert committed.status == COMMITTED
    current = await level(beans)
    assert current.quantity == Decimal("4")
    assert current.reserved == Decimal("0")


@pytest.mark.asyncio
async def test_overdue_reservation_on_other_items_is_expired_on_reserve(db, services, clock, make_item, make_menu_item, level):
    cups = await make_item("cups", "5")
    lids = await make_item("lids", "5")
    coffee = await make_menu_item("Filter Coffee", [
        {"inventory_item_id": cups, "quantity": 1, "unit": "pieces"},
    ])
    tea = await make_menu_item("Tea", [
        {"inventory_item_id": lids, "quantity": 2, "unit": "pieces"},
    ])
    first = await services.reservations.reserve(db, "order-1", [OrderLine(coffee)])

    clock.advance(minutes=20)
    second = await services.reservations.reserve(db, "order-1", [OrderLine(tea)])

    assert second.created
    assert (await services.reservations.get(db, first.reservation.id)).status == EXPIRED
    assert (await level(cups)).reserved == Decimal("0")
    assert (await level(lids)).reserved == Decimal("2")


@pytest.mark.asyncio
async def test_overdue_reservation_stays_expired_when_new_hold_is_short(db, services, clock, espresso_bar, make_item, make_menu_item, level):
    beans, drink = espresso_bar
    milk = await make_item("milk", "1")
    latte = await make_menu_item("Latte", [
        {"inventory_item_id": milk, "quantity": 2, "unit": "pieces"},
    ])
    first = await services.reservations.reserve(db, "order-1", [OrderLine(drink)])

    clock.advance(minutes=16)
    with pytest.raises(InsufficientStock):
        await services.reservations.reserve(db, "order-1", [OrderLine(latte)])

    assert (await services.reservations.get(db, first.reservation.id)).status == EXPIRED
    assert (await level(beans)).reserved == Decimal("0")
    assert (await level(milk)).reserved == Decimal("0")


@pytest.mark.asyncio
async def test_optional_ingredient_short_is_skipped(db, services, make_item, make_menu_item, level):
    beans = await make_item("beans", "100", unit="grams")
    lids = await make_item("lids", "0")
    espresso = await make_menu_item("Espresso", [
        {"inventory_item_id": beans, "quantity": 18, "unit": "grams"},
        {"inventory_item_id": lids, "quantity": 1, "unit": "pieces", "is_required": False},
    ])

    outcome = await services.reservations.reserve(db, "order-1", [OrderLine(espresso)])

    assert [s["inventory_item_id"] for s in outcome.skipped_optional] == [lids]
    assert [line.inventory_item_id for line in outcome.reservation.lines] == [beans]
    assert (await level(beans)).reserved == Decimal("18")


@pytest.mark.asyncio
async def test_untracked_order_gets_empty_reservation(db, services, make_menu_item):
    water = await make_menu_item("Tap Water")

    outcome = await services.reservations.reserve(db, "order-water", [OrderLine(water)])

    assert outcome.created
    assert outcome.reservation.status == ACTIVE
    assert outcome.reservation.lines == []
    assert not outcome.has_ingredient_tracking
    assert [line.menu_item_id for line in outcome.untracked] == [water]

    committed = await services.reservations.commit(db, outcome.reservation.id)
    assert committed.status == COMMITTED


@pytest.mark.asyncio
async def test_sweep_expires_overdue_reservations(session_maker, services, clock, espresso_bar, level):
    beans, drink = espresso_bar
    outcome = await _reserve(session_maker, services, "order-1", [OrderLine(drink)])
    assert outcome.reservation.expires_at == clock() + timedelta(minutes=15)

    # Not due yet
    assert await services.reservations.sweep_expired(session_maker) == 0
    assert (await level(beans)).reserved == Decimal("6")

    clock.advance(minutes=16)
    assert await services.reservations.sweep_expired(session_maker) == 1

    async with session_maker() as session:
        reservation = await services.reservations.get(session, outcome.reservation.id)
    assert reservation.status == EXPIRED
    current = await level(beans)
    assert current.reserved == Decimal("0")
    assert current.free == Decimal("10")

    # The order can be reserved again once its old hold expired
    again = await _reserve(session_maker, services, "order-1", [OrderLine(drink)])
    assert again.created
    assert again.reservation.id != outcome.reservation.id


@pytest.mark.asyncio
async def test_commit_after_expiry_fails_and_frees_stock(db, services, clock, espresso_bar, level):
    beans, drink = espresso_bar
    outcome = await services.reservations.reserve(db, "order-1", [OrderLine(drink)], ttl_minutes=5)

    clock.advance(minutes=6)
    with pytest.raises(InvalidState) as exc:
        await services.reservations.commit(db, outcome.reservation.id)
    assert exc.value.current_status == EXPIRED

    reservation = await services.reservations.get(db, outcome.reservation.id)
    assert reservation.status == EXPIRED
    current = await level(beans)
    assert current.quantity == Decimal("10")
    assert current.reserved == Decimal("0")


@pytest.mark.asyncio
async def test_extend_pushes_expiry(db, services, clock, espresso_bar):
    _, drink = espresso_bar
    outcome = await services.reservations.reserve(db, "order-1", [OrderLine(drink)])
    original = outcome.reservation.expires_at

    extended = await services.reservations.extend(db, outcome.reservation.id, 10)
    assert extended.expires_at == original + timedelta(minutes=10)

    clock.advance(minutes=20)
    assert await services.reservations.sweep_expired(services.sweeper.session_maker) == 0

    with pytest.raises(InventoryError):
        await services.reservations.extend(db, outcome.reservation.id, 0)


@pytest.mark.asyncio
async def test_unknown_reservation(db, services):
    missing = uuid.uuid4()
    with pytest.raises(ReservationNotFound):
        await services.reservations.get(db, missing)
    with pytest.raises(ReservationNotFound):
        await services.reservations.commit(db, missing)
    with pytest.raises(ReservationNotFound):
        await services.reservations.release(db, missing)


@pytest.mark.asyncio
async def test_reserve_rejects_empty_input(db, services, espresso_bar):
    _, drink = espresso_bar
    with pytest.raises(InventoryError):
        await services.reservations.reserve(db, "  ", [OrderLine(drink)])
    with pytest.raises(InventoryError):
        await services.reservations.reserve(db, "order-1", [])


@pytest.mark.asyncio
async def test_list_reservations_summary(db, services, make_item, make_menu_item):
    cups = await make_item("cups", "10")
    coffee = await make_menu_item("Filter Coffee", [
        {"inventory_item_id": cups, "quantity": 1, "unit": "pieces"},
    ])
    a = await services.reservations.reserve(db, "order-a", [OrderLine(coffee)])
    b = await services.reservations.reserve(db, "order-b", [OrderLine(coffee)])
    await services.reservations.reserve(db, "order-c", [OrderLine(coffee)])
    await services.reservations.commit(db, a.reservation.id)
    await services.reservations.release(db, b.reservation.id)

    reservations, summary = await services.reservations.list_reservations(db)
    assert len(reservations) == 3
    assert summary == {"active": 1, "committed": 1, "released": 1, "expired": 0, "total": 3}

    active, _ = await services.reservations.list_reservations(db, status="active")
    assert [r.order_id for r in active] == ["order-c"]
