from .inventory import Product, StockHistory
from .customers import Customer
from .invoices import Invoice, InvoiceItem
from .documents import DocumentSequence
from .notifications import NotificationLog

__all__ = [
    'Product', 'StockHistory',
    'Customer',
    'Invoice', 'InvoiceItem',
    'DocumentSequence',
    'NotificationLog',
]
