from .inventory import Supplier, Product, InventoryMovement, Replenishment
from .expirations import ExpirationBatch, ExpirationBatchAdjustment
from .cash import CashSession
from .sales import Sale, SaleLine
from .notifications import Notification

__all__ = [
    'Supplier', 'Product', 'InventoryMovement', 'Replenishment',
    'ExpirationBatch', 'ExpirationBatchAdjustment',
    'CashSession',
    'Sale', 'SaleLine',
    'Notification',
]
