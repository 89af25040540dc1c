from .branches import Branch
from .inventory import Product, StockMovement, MOVEMENT_KINDS, INBOUND_KINDS, OUTBOUND_KINDS, movement_sign
from .sales import Sale, SaleLine, SaleSequence, SALE_STATUS_COMPLETED, SALE_STATUS_CANCELLED

__all__ = [
    'Branch',
    'Product', 'StockMovement', 'MOVEMENT_KINDS', 'INBOUND_KINDS', 'OUTBOUND_KINDS', 'movement_sign',
    'Sale', 'SaleLine', 'SaleSequence', 'SALE_STATUS_COMPLETED', 'SALE_STATUS_CANCELLED',
]
