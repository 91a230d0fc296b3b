from .tenancy import Salon, DocumentSequence
from .auth import Staff, SessionToken
from .catalog import Customer, Service, Product
from .inventory import StockMovement
from .billing import Bill, BillLine, Payment
from .expenses import Expense

__all__ = [
    'Salon', 'DocumentSequence',
    'Staff', 'SessionToken',
    'Customer', 'Service', 'Product',
    'StockMovement',
    'Bill', 'BillLine', 'Payment',
    'Expense',
]
