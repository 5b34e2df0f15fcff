from .auth import User, SessionToken, OtpVerification, LoginAttempt
from .catalog import Product
from .orders import Order, OrderItem
from .payments import Transaction
from .notifications import Notification

__all__ = [
    'User', 'SessionToken', 'OtpVerification', 'LoginAttempt',
    'Product',
    'Order', 'OrderItem',
    'Transaction',
    'Notification',
]
