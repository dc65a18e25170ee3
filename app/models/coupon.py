"""Cupom de desconto: percentual ou fixo, janela de validade e limite de usos."""
from datetime import datetime
from decimal import Decimal

from sqlmodel import Field, SQLModel

from app.core.clock import utcnow
from app.models.enums import DiscountType


class Coupon(SQLModel, table=True):
    """Criado pelo admin, consumido no checkout. Código sempre em maiúsculas."""

    id: int | None = Field(default=None, primary_key=True)
    code: str = Field(unique=True, index=True, max_length=64)  # ex: PROMO10
    description: str | None = Field(default=None, max_length=255)
    discount_type: DiscountType
    discount_value: Decimal = Field(max_digits=12, decimal_places=2)  # percentual: 0-100, fixo: reais
    min_amount: Decimal | None = Field(default=None, max_digits=12, decimal_places=2)
    max_discount: Decimal | None = Field(default=None, max_digits=12, decimal_places=2)  # só PERCENTAGE
    valid_from: datetime = Field(default_factory=utcnow)
    valid_until: datetime | None = None  # None = sem fim
    max_uses: int | None = None  # None = ilimitado
    current_uses: int = Field(default=0)  # só cresce; incrementado em redeem_coupon
    is_active: bool = True
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
