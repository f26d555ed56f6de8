from .catalog import Product, TaxConfig, Discount
from .documents import DocumentSequence
from .inventory import StockMovement, SerialItem
from .orders import Order, OrderItem, Payment, Receipt
from .returns import Return, ReturnItem

__all__ = [
    'Product', 'TaxConfig', 'Discount',
    'StockMovement', 'SerialItem', 'DocumentSequence',
    'Order', 'OrderItem', 'Payment', 'Receipt',
    'Return', 'ReturnItem',
]
