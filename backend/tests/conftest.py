import os

# Must be set before any app module reads core.config
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["RESERVATION_SWEEP_ENABLED"] = "false"

from datetime import datetime, timedelta
from decimal import Decimal

import httpx
import pytest

from db.database import create_db_and_tables, get_async_session, make_engine, make_session_maker
from db.inventory import InventoryItem
from db.menu_item import MenuItem
from services.registry import build_services


class FakeClock:
    """Naive-UTC clock the tests can move forward."""

    def __init__(self, start=None):
        self.now = start or datetime.utcnow().replace(microsecond=0)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
async def engine(tmp_path):
    eng = make_engine(f"sqlite+aiosqlite:///{tmp_path / 'inventory.db'}")
    await create_db_and_tables(eng)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_maker(engine):
    return make_session_maker(engine)


@pytest.fixture
async def db(session_maker):
    async with session_maker() as session:
        yield session


@pytest.fixture
def services(session_maker, clock):
    return build_services(
        session_maker,
        ttl_minutes=15,
        cache_ttl_seconds=300,
        sweep_interval_seconds=0.05,
        clock=clock,
    )


@pytest.fixture
def make_item(session_maker, services):
    """Create an inventory item with opening stock; returns its id."""

    async def _make(name, quantity="0", unit="pieces", min_level="0", unit_cost="0", category="Ingredients"):
        async with session_maker() as session:
            item = InventoryItem(
                name=name,
                unit=unit,
                category=category,
                min_level=Decimal(min_level),
                unit_cost=Decimal(unit_cost),
            )
            await services.ledger.open_item(session, item, Decimal(quantity))
            return item.id

    return _make


@pytest.fixture
def make_menu_item(session_maker, services):
    """Create a menu item and, when ingredients are given, its recipe; returns its id."""

    async def _make(name, ingredients=None, size=None):
        async with session_maker() as session:
            menu_item = MenuItem(name=name, category="Coffee", price=Decimal("3.50"))
            session.add(menu_item)
            await session.commit()
            if ingredients:
                await services.resolver.set_recipe(session, menu_item.id, size, ingredients)
            return menu_item.id

    return _make


@pytest.fixture
def level(session_maker, services):
    async def _level(item_id):
        async with session_maker() as session:
            return await services.ledger.get_level(session, item_id)

    return _level


@pytest.fixture
async def client(session_maker, services):
    from main import app

    async def _session():
        async with session_maker() as session:
            yield session

    app.dependency_overrides[get_async_session] = _session
    app.state.services = services
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()
