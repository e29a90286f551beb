# app/utils/money.py

"""
Денежные суммы: в базе Numeric(10, 2) -> Decimal, шлюзам нужны
целые пайсы (Razorpay, PhonePe) или строка в рупиях "250.00" (PayU).
float здесь не используется нигде.
"""

from decimal import Decimal, ROUND_HALF_UP

CENT = Decimal("0.01")
MINOR_UNITS = 100  # пайсов в рупии


def to_decimal(value) -> Decimal:
    """Приводит число/строку к Decimal с двумя знаками; float идёт через str."""
    if isinstance(value, float):
        value = repr(value)
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def to_minor_units(amount) -> int:
    """Decimal("250.00") -> 25000"""
    return int((to_decimal(amount) * MINOR_UNITS).to_integral_value(rounding=ROUND_HALF_UP))


def from_minor_units(minor: int) -> Decimal:
    """25000 -> Decimal("250.00")"""
    return (Decimal(int(minor)) / MINOR_UNITS).quantize(CENT)


def format_major(amount) -> str:
    """Decimal("250") -> "250.00" (формат суммы PayU)"""
    return f"{to_decimal(amount):.2f}"
