from .customers import Customer
from .inventory import Product, StockBatch, InventoryMovement
from .sales import Order, OrderItem, Payment
from .accounting import Expense, RecurringExpenseDefinition, Refund, BadDebt

__all__ = [
    'Customer',
    'Product', 'StockBatch', 'InventoryMovement',
    'Order', 'OrderItem', 'Payment',
    'Expense', 'RecurringExpenseDefinition', 'Refund', 'BadDebt',
]
