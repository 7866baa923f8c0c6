from .catalog import ProductParent, ProductVariant
from .orders import (
    Order,
    OrderLine,
    OrderStatus,
    ORDER_STATUSES,
    TERMINAL_STATUSES,
    DELIVERY_METHODS,
    PAYMENT_METHODS,
)
from .inventory import StockMovement
from .audit import AuditLog
from .documents import DocumentSequence

__all__ = [
    'ProductParent', 'ProductVariant',
    'Order', 'OrderLine', 'OrderStatus',
    'ORDER_STATUSES', 'TERMINAL_STATUSES', 'DELIVERY_METHODS', 'PAYMENT_METHODS',
    'StockMovement',
    'AuditLog',
    'DocumentSequence',
]
