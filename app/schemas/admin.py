from datetime import date, datetime
from decimal import Decimal

from pydantic import EmailStr, Field, model_validator

from app.core.clock import to_naive_utc
from app.models import DiscountType, PaymentMethod, PaymentStatus
from app.schemas.checkout import CamelModel, Money, UtcDatetime


class AdminLogin(CamelModel):
    email: EmailStr
    password: str


class Token(CamelModel):
    access_token: str
    token_type: str = "bearer"


class AdminMe(CamelModel):
    id: int
    email: str
    name: str


class Pagination(CamelModel):
    page: int
    limit: int
    total: int
    total_pages: int


class CustomerOut(CamelModel):
    id: int
    name: str
    email: str
    phone: str
    cpf: str
    birth_date: date | None = None
    created_at: UtcDatetime
    updated_at: UtcDatetime | None = None


class CustomerUpdate(CamelModel):
    name: str | None = None
    email: str | None = None
    phone: str | None = None
    cpf: str | None = None
    birth_date: date | None = None


class CustomerList(CamelModel):
    users: list[CustomerOut]
    pagination: Pagination


class PaymentOut(CamelModel):
    id: str
    user_id: int
    amount: Money
    discount_amount: Money
    final_amount: Money
    discount_source: str | None = None
    payment_method: PaymentMethod
    installments: int
    installment_value: Money
    status: PaymentStatus
    coupon_code: str | None = None
    efi_transaction_id: str | None = None
    pix_qr_code: str | None = None
    pix_key: str | None = None
    pix_expires_at: UtcDatetime | None = None
    created_at: UtcDatetime
    updated_at: UtcDatetime
    user: CustomerOut | None = None


class PaymentList(CamelModel):
    payments: list[PaymentOut]
    pagination: Pagination


class PaymentStatusUpdate(CamelModel):
    status: PaymentStatus


class PaymentStats(CamelModel):
    total: int
    by_status: dict[PaymentStatus, int]
    by_method: dict[PaymentMethod, int]
    total_amount: Money
    approved_amount: Money


class CouponBase(CamelModel):
    description: str | None = None
    discount_type: DiscountType
    discount_value: Decimal = Field(gt=0)
    min_amount: Decimal | None = Field(default=None, ge=0)
    max_discount: Decimal | None = Field(default=None, gt=0)
    valid_from: datetime | None = None
    valid_until: datetime | None = None
    max_uses: int | None = Field(default=None, ge=1)
    is_active: bool = True

    @model_validator(mode="after")
    def check_rules(self):
        if self.discount_type == DiscountType.PERCENTAGE and self.discount_value > 100:
            raise ValueError("Desconto percentual não pode passar de 100.")
        if self.discount_type == DiscountType.FIXED and self.max_discount is not None:
            raise ValueError("Desconto máximo só vale para cupom percentual.")
        # datas com e sem fuso chegam misturadas; compara tudo em UTC
        if self.valid_from and self.valid_until and to_naive_utc(self.valid_until) <= to_naive_utc(self.valid_from):
            raise ValueError("validUntil deve ser posterior a validFrom.")
        return self


class CouponCreate(CouponBase):
    code: str = Field(min_length=3, max_length=64)


class CouponUpdate(CamelModel):
    description: str | None = None
    discount_type: DiscountType | None = None
    discount_value: Decimal | None = Field(default=None, gt=0)
    min_amount: Decimal | None = Field(default=None, ge=0)
    max_discount: Decimal | None = Field(default=None, gt=0)
    valid_from: datetime | None = None
    valid_until: datetime | None = None
    max_uses: int | None = Field(default=None, ge=1)
    is_active: bool | None = None


class CouponOut(CamelModel):
    code: str
    description: str | None = None
    discount_type: DiscountType
    discount_value: Money
    min_amount: Money | None = None
    max_discount: Money | None = None
    valid_from: UtcDatetime
    valid_until: UtcDatetime | None = None
    max_uses: int | None = None
    current_uses: int
    is_active: bool
    created_at: UtcDatetime
    updated_at: UtcDatetime
