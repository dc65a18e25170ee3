"""
Cálculo de preço: desconto, valor final e parcelamento.

Política de desconto: não acumula. Pix dá 15% do valor base; um cupom válido dá o
seu próprio desconto; vale o MAIOR dos dois (empate: Pix, para não consumir o cupom).
"""
import logging
from dataclasses import dataclass
from decimal import Decimal

from app.core.config import settings
from app.core.errors import InvalidAmount, InvalidInstallments
from app.core.money import CENT, ZERO, percent_of, split_installments, to_money
from app.models.enums import PaymentMethod

log = logging.getLogger("checkout.pricing")

SOURCE_PIX = "PIX"
SOURCE_COUPON = "COUPON"


@dataclass(frozen=True)
class PricingResult:
    base_amount: Decimal
    discount_amount: Decimal
    final_amount: Decimal
    payment_method: PaymentMethod
    installments: int
    installment_value: Decimal
    discount_source: str | None = None
    coupon_code: str | None = None

    def schedule(self) -> list[Decimal]:
        """Parcelas; a última absorve o arredondamento e a soma fecha em final_amount."""
        return split_installments(self.final_amount, self.installments)

    @property
    def last_installment_value(self) -> Decimal:
        return self.schedule()[-1]


def price(
    base_amount: Decimal | int | str,
    payment_method: PaymentMethod,
    installments: int = 1,
    coupon_result=None,
    *,
    pix_discount_percent: Decimal | int | None = None,
    max_installments: int | None = None,
) -> PricingResult:
    """
    coupon_result: CouponAccepted (services/coupon.py) já validado contra base_amount, ou None.
    """
    base = to_money(base_amount)
    if base <= ZERO:
        raise InvalidAmount()
    method = PaymentMethod(payment_method)
    limit = max_installments if max_installments is not None else settings.max_installments
    pix_percent = pix_discount_percent if pix_discount_percent is not None else settings.pix_discount_percent

    if method is PaymentMethod.PIX:
        installments = 1
    elif not isinstance(installments, int) or not 1 <= installments <= limit:
        raise InvalidInstallments(f"Parcelas devem estar entre 1 e {limit}.")

    candidates: list[tuple[Decimal, str, str | None]] = []
    if method is PaymentMethod.PIX:
        candidates.append((percent_of(base, pix_percent), SOURCE_PIX, None))
    if coupon_result is not None:
        candidates.append((to_money(coupon_result.discount_amount), SOURCE_COUPON, coupon_result.coupon.code))

    discount, source, coupon_code = ZERO, None, None
    for value, src, code in candidates:
        # estritamente maior: no empate fica o primeiro (Pix)
        if value > discount:
            discount, source, coupon_code = value, src, code

    # desconto em [0, base): valor final sempre > 0
    discount = min(max(discount, ZERO), base - CENT)
    if discount == ZERO:
        source, coupon_code = None, None
    final = base - discount

    schedule = split_installments(final, installments)
    result = PricingResult(
        base_amount=base,
        discount_amount=discount,
        final_amount=final,
        payment_method=method,
        installments=installments,
        installment_value=schedule[0],
        discount_source=source,
        coupon_code=coupon_code,
    )
    log.debug(
        "price base=%s method=%s installments=%s discount=%s source=%s final=%s",
        base, method.value, installments, discount, source, final,
    )
    return result
