from .audit import PaymentEvent
from .coupon import Coupon
from .customer import Customer
from .enums import TERMINAL_STATUSES, DiscountType, PaymentMethod, PaymentStatus
from .error_log import ErrorLog
from .payment import PaymentSession
from .security_log import SecurityLog
from .user import AdminUser

__all__ = [
    "AdminUser",
    "Coupon",
    "Customer",
    "DiscountType",
    "ErrorLog",
    "PaymentEvent",
    "PaymentMethod",
    "PaymentSession",
    "PaymentStatus",
    "SecurityLog",
    "TERMINAL_STATUSES",
]
