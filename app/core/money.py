"""Valores monetários em Decimal com 2 casas, arredondamento half-up."""
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def to_money(value: Decimal | int | str | float) -> Decimal:
    """Converte para Decimal com 2 casas. float passa por str() para não herdar o erro binário."""
    if isinstance(value, float):
        value = str(value)
    try:
        return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)
    except (InvalidOperation, TypeError) as e:
        raise ValueError(f"valor monetário inválido: {value!r}") from e


def percent_of(amount: Decimal, percent: Decimal | int) -> Decimal:
    """amount * percent / 100, arredondado uma única vez."""
    return to_money(Decimal(amount) * Decimal(percent) / Decimal(100))


def split_installments(total: Decimal, count: int) -> list[Decimal]:
    """
    Divide total em count parcelas: todas com total/count (half-up),
    a última absorve a diferença para a soma fechar exatamente em total.
    """
    if count < 1:
        raise ValueError("count deve ser >= 1")
    total = to_money(total)
    value = to_money(total / count)
    last = total - value * (count - 1)
    return [value] * (count - 1) + [last]
