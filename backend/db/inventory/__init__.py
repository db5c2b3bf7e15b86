"""
Inventory ledger.

Models:
- InventoryItem (an ingredient or supply the café stocks)
- InventoryStock (on-hand quantity and active reservation holds per item)
- InventoryMovement (append-only record of every stock change)
"""

from .item import InventoryItem
from .movement import InventoryMovement
from .stock import InventoryStock

__all__ = ["InventoryItem", "InventoryMovement", "InventoryStock"]
