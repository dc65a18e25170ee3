"""Enumerações fechadas: valor desconhecido falha na construção, não passa adiante."""
from enum import Enum


class PaymentStatus(str, Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    EXPIRED = "EXPIRED"
    CANCELLED = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {PaymentStatus.APPROVED, PaymentStatus.REJECTED, PaymentStatus.EXPIRED, PaymentStatus.CANCELLED}
)


class PaymentMethod(str, Enum):
    CREDIT_CARD = "CREDIT_CARD"
    PIX = "PIX"


class DiscountType(str, Enum):
    PERCENTAGE = "PERCENTAGE"
    FIXED = "FIXED"
