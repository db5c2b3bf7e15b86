import asyncio
import sys
from pathlib import Path
from decimal import Decimal

"""
Seed a small demo cafe: inventory items with opening stock, menu items and recipes.

This script can be run from either:
- backend/: `python scripts/seed_demo_cafe.py`
- repo root: `python backend/scripts/seed_demo_cafe.py`

Re-running is safe: existing items (matched by name) are reused and recipes are replaced.
"""

# Allow running from repo root by ensuring `backend/` is on sys.path
BACKEND_DIR = Path(__file__).resolve().parents[1]
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

from sqlalchemy import func, select

from core.locks import KeyedLocks
from db.database import async_session_maker, create_db_and_tables
from db.inventory import InventoryItem, InventoryStock
from db.menu_item import MenuItem
from services.recipe_resolver import RecipeResolver
from services.stock_ledger import StockLedger


INVENTORY = [
    # name, category, unit, opening stock, min level, unit cost
    ("espresso beans", "Ingredients", "kg", "5", "1", "28.00"),
    ("whole milk", "Beverages", "liters", "20", "4", "1.40"),
    ("oat milk", "Beverages", "liters", "6", "2", "2.90"),
    ("vanilla syrup", "Ingredients", "ml", "1500", "250", "0.02"),
    ("paper cup 12oz", "Packaging", "pieces", "300", "50", "0.09"),
    ("croissant", "Food", "pieces", "24", "6", "0.85"),
]

MENU = [
    ("Espresso", "Coffee", "2.50"),
    ("Latte", "Coffee", "4.20"),
    ("Vanilla Latte", "Coffee", "4.80"),
    ("Croissant", "Pastry", "3.10"),
    ("Tap Water", "Drinks", "0.00"),
]

# menu item -> size -> [(inventory item, quantity, unit, required)]
RECIPES = {
    "Espresso": {
        None: [("espresso beans", 18, "grams", True), ("paper cup 12oz", 1, "pieces", False)],
    },
    "Latte": {
        None: [
            ("espresso beans", 18, "grams", True),
            ("whole milk", 240, "ml", True),
            ("paper cup 12oz", 1, "pieces", False),
        ],
        "large": [
            ("espresso beans", 36, "grams", True),
            ("whole milk", 350, "ml", True),
            ("paper cup 12oz", 1, "pieces", False),
        ],
    },
    "Vanilla Latte": {
        None: [
            ("espresso beans", 18, "grams", True),
            ("whole milk", 240, "ml", True),
            ("vanilla syrup", 2, "tablespoons", True),
        ],
    },
    "Croissant": {
        None: [("croissant", 1, "pieces", True)],
    },
    # Tap Water has no recipe: untracked
}


async def get_or_create_inventory_item(session, ledger: StockLedger, name, category, unit, opening, min_level, unit_cost):
    result = await session.execute(select(InventoryItem).where(func.lower(InventoryItem.name) == name.lower()))
    item = result.scalar_one_or_none()
    if item:
        return item

    item = InventoryItem(
        name=name,
        category=category,
        unit=unit,
        min_level=Decimal(min_level),
        unit_cost=Decimal(unit_cost),
    )
    session.add(item)
    await session.flush()
    session.add(InventoryStock(inventory_item_id=item.id, quantity=Decimal("0"), reserved_quantity=Decimal("0")))
    await session.commit()

    await ledger.adjust(session, item.id, Decimal(opening), reason="Opening stock (demo seed)")
    print(f"  + {name}: {opening} {unit}")
    return item


async def get_or_create_menu_item(session, name, category, price):
    result = await session.execute(select(MenuItem).where(func.lower(MenuItem.name) == name.lower()))
    menu_item = result.scalar_one_or_none()
    if menu_item:
        return menu_item

    menu_item = MenuItem(name=name, category=category, price=Decimal(price), is_available=True)
    session.add(menu_item)
    await session.commit()
    print(f"  + {name} ({price})")
    return menu_item


async def seed():
    await create_db_and_tables()
    ledger = StockLedger(KeyedLocks())
    resolver = RecipeResolver()

    async with async_session_maker() as session:
        print("Inventory:")
        items = {}
        for row in INVENTORY:
            items[row[0]] = await get_or_create_inventory_item(session, ledger, *row)

        print("Menu:")
        menu = {}
        for name, category, price in MENU:
            menu[name] = await get_or_create_menu_item(session, name, category, price)

        print("Recipes:")
        for menu_name, sizes in RECIPES.items():
            for size, rows in sizes.items():
                await resolver.set_recipe(
                    session,
                    menu[menu_name].id,
                    size,
                    [
                        {
                            "inventory_item_id": items[item_name].id,
                            "quantity": qty,
                            "unit": unit,
                            "is_required": required,
                        }
                        for item_name, qty, unit, required in rows
                    ],
                )
                print(f"  = {menu_name} [{size or 'default'}]: {len(rows)} ingredients")

    print("Done.")


if __name__ == "__main__":
    asyncio.run(seed())
