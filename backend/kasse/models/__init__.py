from .base import SoftDeleteMixin, active
from .auth import User, Role, UserRole, SessionToken
from .catalog import Product
from .carts import Cart, CartItem
from .invoices import Invoice
from .payments import PaymentDetails
from .registers import CashRegister, CashRegisterTransaction, RegisterClosing
from .fiscal import TseDevice, CompanySettings, FinanzOnlineSubmission
from .tables import RestaurantTable

__all__ = [
    'SoftDeleteMixin', 'active',
    'User', 'Role', 'UserRole', 'SessionToken',
    'Product',
    'Cart', 'CartItem',
    'Invoice',
    'PaymentDetails',
    'CashRegister', 'CashRegisterTransaction', 'RegisterClosing',
    'TseDevice', 'CompanySettings', 'FinanzOnlineSubmission',
    'RestaurantTable',
]
