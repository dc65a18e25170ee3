from datetime import datetime
from decimal import Decimal

from sqlmodel import Field, SQLModel

from app.core.clock import utcnow
from app.models.enums import PaymentMethod, PaymentStatus


class PaymentSession(SQLModel, table=True):
    """Uma tentativa de pagamento do checkout. Nunca é apagada, só vai para um status terminal."""

    id: str = Field(primary_key=True, max_length=36)  # uuid4
    customer_id: int = Field(foreign_key="customer.id", index=True)
    amount: Decimal = Field(max_digits=12, decimal_places=2)  # preço base
    discount_amount: Decimal = Field(max_digits=12, decimal_places=2)
    final_amount: Decimal = Field(max_digits=12, decimal_places=2)
    discount_source: str | None = Field(default=None, max_length=16)  # "PIX" | "COUPON"
    payment_method: PaymentMethod
    installments: int = 1
    installment_value: Decimal = Field(max_digits=12, decimal_places=2)
    status: PaymentStatus = Field(default=PaymentStatus.PENDING, index=True)
    coupon_code: str | None = Field(default=None, max_length=64)
    # Marcado uma única vez (CAS) quando o uso do cupom é contabilizado
    coupon_redeemed: bool = False
    processor_transaction_id: str | None = Field(default=None, index=True, max_length=64)
    # Pix: QR, copia e cola e expiração definidos na criação (autoritativos)
    pix_qr_code: str | None = None
    pix_key: str | None = None
    pix_expires_at: datetime | None = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
