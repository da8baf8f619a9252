from .auth import User
from .catalog import Printer, Category, Product, DiningTable
from .orders import Order, OrderItem, AdditionalCharge, OrderAdditionalCharge, OrderSequence
from .payments import Payment, Transaction
from .shifts import CashierShift, CashMovement
from .printing import PrintJob

__all__ = [
    'User',
    'Printer', 'Category', 'Product', 'DiningTable',
    'Order', 'OrderItem', 'AdditionalCharge', 'OrderAdditionalCharge', 'OrderSequence',
    'Payment', 'Transaction',
    'CashierShift', 'CashMovement',
    'PrintJob',
]
