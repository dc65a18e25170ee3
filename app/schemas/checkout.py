"""Contratos HTTP do checkout (JSON em camelCase, valores monetários como número)."""
from datetime import date, datetime
from decimal import Decimal
from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field, PlainSerializer
from pydantic.alias_generators import to_camel

from app.core.clock import as_utc
from app.core.money import to_money
from app.models import PaymentMethod, PaymentSession, PaymentStatus
from app.models.enums import DiscountType

Money = Annotated[Decimal, PlainSerializer(lambda v: float(v), return_type=float, when_used="json")]
UtcDatetime = Annotated[datetime, PlainSerializer(lambda v: as_utc(v).isoformat(), return_type=str, when_used="json")]


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CustomerIn(CamelModel):
    name: str
    email: str
    phone: str
    cpf: str
    birth_date: date | None = None


class BillingAddress(CamelModel):
    street: str
    number: str
    neighborhood: str
    zipcode: str
    city: str
    state: str


class CreditCardIn(CamelModel):
    payment_token: str
    billing_address: BillingAddress | None = None


class CheckoutRequest(CamelModel):
    customer: CustomerIn
    amount: Decimal | None = None
    payment_method: PaymentMethod
    installments: int = 1
    coupon_code: str | None = None
    credit_card: CreditCardIn | None = None


class PixInfo(CamelModel):
    qr_code: str
    key: str
    expires_at: UtcDatetime


class CheckoutResponse(CamelModel):
    id: str
    status: PaymentStatus
    amount: Money
    discount_amount: Money
    final_amount: Money
    payment_method: PaymentMethod
    installments: int
    installment_value: Money
    created_at: UtcDatetime
    pix: PixInfo | None = None

    @classmethod
    def from_session(cls, s: PaymentSession) -> "CheckoutResponse":
        pix = None
        if s.payment_method == PaymentMethod.PIX and s.pix_expires_at is not None:
            pix = PixInfo(qr_code=s.pix_qr_code or "", key=s.pix_key or "", expires_at=s.pix_expires_at)
        return cls(
            id=s.id,
            status=s.status,
            amount=to_money(s.amount),
            discount_amount=to_money(s.discount_amount),
            final_amount=to_money(s.final_amount),
            payment_method=s.payment_method,
            installments=s.installments,
            installment_value=to_money(s.installment_value),
            created_at=s.created_at,
            pix=pix,
        )


class CouponValidationRequest(CamelModel):
    code: str
    amount: Decimal = Field(gt=0)


class CouponSummary(CamelModel):
    code: str
    discount_type: DiscountType
    discount_value: Money


class CouponValidationResponse(CamelModel):
    valid: bool
    discount_amount: Money | None = None
    final_amount: Money | None = None
    coupon: CouponSummary | None = None
    error: str | None = None
    reason: str | None = None


class PaymentStatusResponse(CamelModel):
    id: str
    status: PaymentStatus
    amount: Money
    discount_amount: Money
    final_amount: Money
    payment_method: PaymentMethod
    installments: int
    created_at: UtcDatetime
    updated_at: UtcDatetime
    expires_at: UtcDatetime | None = None
    remaining_seconds: int | None = None

    @classmethod
    def from_session(cls, s: PaymentSession, remaining: int | None = None) -> "PaymentStatusResponse":
        return cls(
            id=s.id,
            status=s.status,
            amount=to_money(s.amount),
            discount_amount=to_money(s.discount_amount),
            final_amount=to_money(s.final_amount),
            payment_method=s.payment_method,
            installments=s.installments,
            created_at=s.created_at,
            updated_at=s.updated_at,
            expires_at=s.pix_expires_at,
            remaining_seconds=remaining,
        )


class WebhookNotification(CamelModel):
    """Notificação do processador: transação + status final ou intermediário."""
    transaction_id: str
    status: PaymentStatus
