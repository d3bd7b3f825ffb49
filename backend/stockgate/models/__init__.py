from .inventory import Product, StockAddition, StockCorrection, DamageRecord
from .movements import MutationRequest
from .sales import Sale, SaleAudit
from .audit import AuditEntry

__all__ = [
    'Product', 'StockAddition', 'StockCorrection', 'DamageRecord',
    'MutationRequest',
    'Sale', 'SaleAudit',
    'AuditEntry',
]
