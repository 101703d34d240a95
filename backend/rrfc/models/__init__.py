from .catalog import Role, AppUser, LookupListEntry, Vendor, Item
from .ledger import InventoryBatch, Transaction, MacSnapshot, ReturnDetail, Correction
from .audit import SystemLog

__all__ = [
    'Role', 'AppUser', 'LookupListEntry', 'Vendor', 'Item',
    'InventoryBatch', 'Transaction', 'MacSnapshot', 'ReturnDetail', 'Correction',
    'SystemLog',
]
