from .admin import (
    AdminLogin,
    AdminMe,
    CouponCreate,
    CouponOut,
    CouponUpdate,
    CustomerList,
    CustomerOut,
    CustomerUpdate,
    Pagination,
    PaymentList,
    PaymentOut,
    PaymentStats,
    PaymentStatusUpdate,
    Token,
)
from .checkout import (
    CheckoutRequest,
    CheckoutResponse,
    CouponSummary,
    CouponValidationRequest,
    CouponValidationResponse,
    PaymentStatusResponse,
    WebhookNotification,
)

__all__ = [
    "AdminLogin",
    "AdminMe",
    "CheckoutRequest",
    "CheckoutResponse",
    "CouponCreate",
    "CouponOut",
    "CouponSummary",
    "CouponUpdate",
    "CouponValidationRequest",
    "CouponValidationResponse",
    "CustomerList",
    "CustomerOut",
    "CustomerUpdate",
    "Pagination",
    "PaymentList",
    "PaymentOut",
    "PaymentStats",
    "PaymentStatusResponse",
    "PaymentStatusUpdate",
    "Token",
    "WebhookNotification",
]
