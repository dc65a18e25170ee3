"""Validação de cupom e cálculo do desconto; contabilização atômica de uso."""
import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from sqlalchemy import or_, update
from sqlmodel import Session, select

from app.core.clock import utcnow
from app.core.money import ZERO, percent_of, to_money
from app.models import Coupon, DiscountType

log = logging.getLogger("checkout.coupon")

# Códigos de rejeição, na ordem em que são verificados (o primeiro que falhar vence)
NOT_FOUND = "NotFound"
INACTIVE = "Inactive"
NOT_YET_VALID = "NotYetValid"
EXPIRED = "Expired"
USAGE_EXCEEDED = "UsageExceeded"
BELOW_MINIMUM = "BelowMinimum"

REJECTION_MESSAGES = {
    NOT_FOUND: "Cupom inválido.",
    INACTIVE: "Este cupom não está ativo.",
    NOT_YET_VALID: "Este cupom ainda não é válido.",
    EXPIRED: "Este cupom expirou.",
    USAGE_EXCEEDED: "Este cupom atingiu o limite de usos.",
    BELOW_MINIMUM: "Valor mínimo para este cupom não atingido.",
}


@dataclass(frozen=True)
class CouponAccepted:
    coupon: Coupon
    discount_amount: Decimal
    final_amount: Decimal
    valid = True


@dataclass(frozen=True)
class CouponRejection:
    reason: str
    valid = False

    @property
    def message(self) -> str:
        return REJECTION_MESSAGES[self.reason]


def normalize_code(code: str | None) -> str:
    return (code or "").strip().upper()


def compute_discount(coupon: Coupon, amount: Decimal) -> Decimal:
    """PERCENTAGE: amount * valor / 100 limitado a max_discount. FIXED: nunca passa do próprio valor."""
    amount = to_money(amount)
    if coupon.discount_type == DiscountType.PERCENTAGE:
        discount = percent_of(amount, coupon.discount_value)
        if coupon.max_discount is not None:
            discount = min(discount, to_money(coupon.max_discount))
    else:
        discount = min(to_money(coupon.discount_value), amount)
    return max(discount, ZERO)


def check_coupon(coupon: Coupon | None, proposed_amount: Decimal, now: datetime) -> CouponAccepted | CouponRejection:
    """Regras puras, sem I/O. Ordem fixa; não altera current_uses."""
    if coupon is None:
        return CouponRejection(NOT_FOUND)
    if not coupon.is_active:
        return CouponRejection(INACTIVE)
    if coupon.valid_from and now < coupon.valid_from:
        return CouponRejection(NOT_YET_VALID)
    if coupon.valid_until and now > coupon.valid_until:
        return CouponRejection(EXPIRED)
    if coupon.max_uses is not None and (coupon.current_uses or 0) >= coupon.max_uses:
        return CouponRejection(USAGE_EXCEEDED)
    amount = to_money(proposed_amount)
    if coupon.min_amount is not None and amount < to_money(coupon.min_amount):
        return CouponRejection(BELOW_MINIMUM)
    discount = compute_discount(coupon, amount)
    return CouponAccepted(coupon=coupon, discount_amount=discount, final_amount=amount - discount)


def get_coupon(db: Session, code: str) -> Coupon | None:
    code_upper = normalize_code(code)
    if not code_upper:
        return None
    return db.exec(select(Coupon).where(Coupon.code == code_upper)).first()


class CouponValidator:
    """Consulta o cupom (sem diferenciar maiúsculas) e aplica check_coupon. Só pré-visualiza."""

    def __init__(self, db: Session):
        self.db = db

    def validate(
        self, code: str, proposed_amount: Decimal, now: datetime | None = None
    ) -> CouponAccepted | CouponRejection:
        now = now or utcnow()
        result = check_coupon(get_coupon(self.db, code), proposed_amount, now)
        if isinstance(result, CouponRejection):
            log.info("Cupom recusado code=%s reason=%s", normalize_code(code), result.reason)
        return result


def redeem_coupon(db: Session, code: str) -> bool:
    """
    Soma 1 em current_uses num único UPDATE condicional; com max_uses definido
    nunca ultrapassa o limite, mesmo com resgates concorrentes. Retorna se contabilizou.
    """
    code_upper = normalize_code(code)
    stmt = (
        update(Coupon)
        .where(Coupon.code == code_upper)
        .where(or_(Coupon.max_uses.is_(None), Coupon.current_uses < Coupon.max_uses))
        .values(current_uses=Coupon.current_uses + 1, updated_at=utcnow())
    )
    result = db.connection().execute(stmt)
    db.commit()
    redeemed = (result.rowcount or 0) > 0
    if redeemed:
        log.info("Uso de cupom contabilizado code=%s", code_upper)
    else:
        log.warning("Cupom não contabilizado (inexistente ou limite atingido) code=%s", code_upper)
    return redeemed
