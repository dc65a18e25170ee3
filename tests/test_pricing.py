"""Preço: desconto Pix, parcelamento, cupom sem acumular."""
from decimal import Decimal

import pytest

from app.core.errors import InvalidAmount, InvalidInstallments
from app.core.money import split_installments, to_money
from app.models import Coupon, DiscountType, PaymentMethod
from app.services.coupon import CouponAccepted
from app.services.pricing import SOURCE_COUPON, SOURCE_PIX, price

PLAN = Decimal("154.80")


def _accepted(discount: str, code: str = "PROMO") -> CouponAccepted:
    coupon = Coupon(code=code, discount_type=DiscountType.FIXED, discount_value=Decimal(discount))
    return CouponAccepted(coupon=coupon, discount_amount=Decimal(discount), final_amount=PLAN - Decimal(discount))


def test_pix_gets_fifteen_percent():
    r = price(PLAN, PaymentMethod.PIX)
    assert r.discount_amount == Decimal("23.22")
    assert r.final_amount == Decimal("131.58")
    assert r.installments == 1
    assert r.installment_value == Decimal("131.58")
    assert r.discount_source == SOURCE_PIX


def test_pix_ignores_installments():
    r = price(PLAN, PaymentMethod.PIX, installments=6)
    assert r.installments == 1


def test_card_twelve_installments():
    r = price(PLAN, PaymentMethod.CREDIT_CARD, installments=12)
    assert r.discount_amount == Decimal("0.00")
    assert r.final_amount == PLAN
    assert r.installment_value == Decimal("12.90")
    assert sum(r.schedule()) == PLAN
    assert r.discount_source is None


def test_last_installment_absorbs_remainder():
    r = price(Decimal("100.00"), PaymentMethod.CREDIT_CARD, installments=3)
    assert r.installment_value == Decimal("33.33")
    assert r.schedule() == [Decimal("33.33"), Decimal("33.33"), Decimal("33.34")]
    assert r.last_installment_value == Decimal("33.34")


@pytest.mark.parametrize("installments", [0, 13, -1])
def test_installments_out_of_range(installments):
    with pytest.raises(InvalidInstallments):
        price(PLAN, PaymentMethod.CREDIT_CARD, installments=installments)


@pytest.mark.parametrize("base", ["0", "-10"])
def test_non_positive_base_is_invalid(base):
    with pytest.raises(InvalidAmount):
        price(Decimal(base), PaymentMethod.PIX)


def test_coupon_on_card():
    r = price(PLAN, PaymentMethod.CREDIT_CARD, installments=2, coupon_result=_accepted("20.00"))
    assert r.final_amount == Decimal("134.80")
    assert r.discount_source == SOURCE_COUPON
    assert r.coupon_code == "PROMO"
    assert r.installment_value == Decimal("67.40")


def test_pix_wins_over_smaller_coupon():
    r = price(PLAN, PaymentMethod.PIX, coupon_result=_accepted("10.00"))
    assert r.discount_amount == Decimal("23.22")
    assert r.discount_source == SOURCE_PIX
    assert r.coupon_code is None


def test_larger_coupon_wins_on_pix():
    r = price(PLAN, PaymentMethod.PIX, coupon_result=_accepted("50.00"))
    assert r.discount_amount == Decimal("50.00")
    assert r.final_amount == Decimal("104.80")
    assert r.discount_source == SOURCE_COUPON


def test_tie_keeps_pix_and_does_not_use_coupon():
    r = price(PLAN, PaymentMethod.PIX, coupon_result=_accepted("23.22"))
    assert r.discount_source == SOURCE_PIX
    assert r.coupon_code is None


def test_final_amount_never_reaches_zero():
    r = price(PLAN, PaymentMethod.CREDIT_CARD, coupon_result=_accepted("154.80"))
    assert r.final_amount == Decimal("0.01")
    assert r.discount_amount == Decimal("154.79")


def test_configurable_discount_and_limit():
    r = price(PLAN, PaymentMethod.PIX, pix_discount_percent=10)
    assert r.final_amount == Decimal("139.32")
    with pytest.raises(InvalidInstallments):
        price(PLAN, PaymentMethod.CREDIT_CARD, installments=7, max_installments=6)


def test_money_helpers():
    assert to_money("0.005") == Decimal("0.01")
    assert to_money(0.1) == Decimal("0.10")
    assert split_installments(Decimal("10.00"), 1) == [Decimal("10.00")]
    with pytest.raises(ValueError):
        to_money("abc")


@pytest.mark.parametrize("base", ["1.00", "9.99", "100.00", "154.80", "1234.57"])
@pytest.mark.parametrize("installments", range(1, 13))
def test_schedule_adds_up_for_every_installment_count(base, installments):
    r = price(Decimal(base), PaymentMethod.CREDIT_CARD, installments=installments)
    schedule = r.schedule()
    assert len(schedule) == installments
    assert sum(schedule) == r.final_amount
    assert r.installment_value == schedule[0]
    assert all(value > 0 for value in schedule)


def _huge_coupon(base: Decimal) -> CouponAccepted:
    coupon = Coupon(code="GIGANTE", discount_type=DiscountType.FIXED, discount_value=Decimal("1000.00"))
    return CouponAccepted(coupon=coupon, discount_amount=Decimal("1000.00"), final_amount=base)


@pytest.mark.parametrize("base", ["0.01", "0.02", "0.03", "0.99", "1.00", "154.80"])
@pytest.mark.parametrize(
    "method, with_coupon",
    [(PaymentMethod.PIX, False), (PaymentMethod.PIX, True), (PaymentMethod.CREDIT_CARD, True)],
)
def test_discount_stays_below_base(base, method, with_coupon):
    amount = Decimal(base)
    coupon = _huge_coupon(amount) if with_coupon else None
    r = price(amount, method, coupon_result=coupon)
    assert Decimal("0.00") <= r.discount_amount < amount
    assert r.final_amount > 0
    assert r.final_amount + r.discount_amount == amount
