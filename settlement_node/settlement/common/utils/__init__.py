import decimal
from decimal import Decimal


def to_atomic(amount: Decimal | int | str, decimals: int) -> int:
    """
    Convert a decimal token amount to atomic units, rounding half-up exactly once.
    """
    if not isinstance(amount, (int, Decimal, str)) or isinstance(amount, bool):
        raise TypeError(f"Invalid type: {type(amount)}")
    if decimals < 0:
        raise ValueError(f"decimals must be non-negative, got {decimals}")
    with decimal.localcontext() as ctx:
        ctx.prec = 999
        scaled = Decimal(amount) * 10**decimals
        return int(scaled.to_integral_value(rounding=decimal.ROUND_HALF_UP))


def to_decimal(amount: int, decimals: int) -> Decimal:
    if not isinstance(amount, int) or isinstance(amount, bool):
        raise TypeError(f"Invalid type: {type(amount)}")
    with decimal.localcontext() as ctx:
        ctx.prec = 999
        return Decimal(amount) / Decimal(10**decimals)
