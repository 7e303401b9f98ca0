from .auth import User
from .inventory import Product, StockMovement
from .customers import Customer, CustomerFavoriteProduct, CustomerCreditTransaction
from .sales import Sale, SaleLine, SalePayment, SaleRefund, SaleRefundLine
from .documents import DocumentSequence
from .audit import ActivityLog

__all__ = [
    'User',
    'Product', 'StockMovement',
    'Customer', 'CustomerFavoriteProduct', 'CustomerCreditTransaction',
    'Sale', 'SaleLine', 'SalePayment', 'SaleRefund', 'SaleRefundLine',
    'DocumentSequence',
    'ActivityLog',
]
