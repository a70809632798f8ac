"""Money and pricing rules for the Sari POS core.

All helpers are pure. Amounts are :class:`~decimal.Decimal` values and are
rounded half-up to two places only when a figure leaves a helper, never per
line, so totals do not drift with the number of items in a cart.

VAT follows the inclusive convention: shelf prices already contain VAT, so the
VAT amount is the share of the total given by ``total * rate / (1 + rate)``
and the total itself is never increased.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Iterable, Optional, Union

from . import log
from .constants import MONEY_PLACES, DiscountType, PaymentMethod
from .errors import InvalidDiscountError
from .models import BusinessSettings, Discount, PaymentInfo, PricedLine, Totals


MoneyLike = Union[Decimal, int, float, str]

ZERO = Decimal("0.00")


def to_money(value: MoneyLike) -> Decimal:
    """Coerce ``value`` into a finite :class:`~decimal.Decimal`.

    Floats are routed through ``str`` so ``0.1`` becomes ``Decimal("0.1")``
    rather than its binary expansion.

    Args:
        value (Decimal | int | float | str): Raw monetary input.

    Returns:
        Decimal: Unrounded decimal representation of ``value``.

    Raises:
        ValueError: If ``value`` is not a finite number.
    """

    if isinstance(value, bool):
        raise ValueError(f"Invalid monetary value: {value!r}")
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            result = Decimal(str(value).strip())
        except InvalidOperation as exc:
            raise ValueError(f"Invalid monetary value: {value!r}") from exc
    if not result.is_finite():
        raise ValueError(f"Invalid monetary value: {value!r}")
    return result


def quantize_money(value: MoneyLike) -> Decimal:
    """Round ``value`` half-up to two decimal places."""

    return to_money(value).quantize(MONEY_PLACES, rounding=ROUND_HALF_UP)


def subtotal(lines: Iterable[PricedLine]) -> Decimal:
    """Sum ``quantity * unit price`` across ``lines`` using current prices."""

    raw = sum((line.subtotal for line in lines), Decimal("0"))
    return quantize_money(raw)


def discount_amount(
    subtotal_value: MoneyLike,
    amount: MoneyLike,
    discount_type: Union[DiscountType, str],
) -> Decimal:
    """Compute the discount granted on ``subtotal_value``.

    Percentage discounts take ``amount`` percent of the subtotal; fixed
    discounts take ``amount`` as-is. Either way the result is clamped to the
    range ``[0, subtotal]`` so the total can never go negative.

    Args:
        subtotal_value (Decimal | int | float | str): Cart subtotal.
        amount (Decimal | int | float | str): Percentage points or a fixed
            currency amount, depending on ``discount_type``.
        discount_type (DiscountType | str): How ``amount`` is interpreted.

    Returns:
        Decimal: Rounded discount amount.

    Raises:
        InvalidDiscountError: If ``amount`` is negative or not a number, or if
            ``discount_type`` is unknown.
    """

    try:
        amount_value = to_money(amount)
    except ValueError as exc:
        raise InvalidDiscountError(str(exc)) from exc
    if amount_value < 0:
        log.warning("Rejected negative discount amount: %s", amount_value)
        raise InvalidDiscountError("Discount amount must be zero or positive")
    try:
        kind = DiscountType(discount_type)
    except ValueError as exc:
        raise InvalidDiscountError(f"Unsupported discount type: {discount_type}") from exc

    base = to_money(subtotal_value)
    if base <= 0:
        return ZERO
    if kind is DiscountType.PERCENTAGE:
        raw = base * amount_value / Decimal(100)
    else:
        raw = amount_value
    return quantize_money(min(raw, base))


def total(subtotal_value: MoneyLike, discount_value: MoneyLike) -> Decimal:
    """Return ``subtotal - discount`` floored at zero."""

    raw = to_money(subtotal_value) - to_money(discount_value)
    return quantize_money(max(raw, Decimal("0")))


def vat(total_value: MoneyLike, rate: MoneyLike, *, enabled: bool = True) -> Decimal:
    """Return the VAT portion contained in a VAT-inclusive ``total_value``.

    Raises:
        ValueError: If ``rate`` is negative.
    """

    rate_value = to_money(rate)
    if rate_value < 0:
        raise ValueError("VAT rate must be zero or positive")
    if not enabled or rate_value == 0:
        return ZERO
    return quantize_money(to_money(total_value) * rate_value / (1 + rate_value))


def change(amount_tendered: MoneyLike, total_value: MoneyLike) -> Decimal:
    """Return the change owed, never negative."""

    raw = to_money(amount_tendered) - to_money(total_value)
    return quantize_money(max(raw, Decimal("0")))


def compute_totals(
    lines: Iterable[PricedLine],
    settings: BusinessSettings,
    *,
    discount: Optional[Discount] = None,
    payment: Optional[PaymentInfo] = None,
) -> Totals:
    """Price a cart snapshot.

    The discount is rounded before the total is derived from it, which keeps
    ``total == subtotal - discount_amount`` exact on the returned figures.
    Non-cash payments are recorded as tendering exactly the total.

    Args:
        lines (Iterable[PricedLine]): Lines resolved against the catalog.
        settings (BusinessSettings): Source of the VAT configuration.
        discount (Discount | None): Discount configuration, none by default.
        payment (PaymentInfo | None): Tender details, cash with nothing
            tendered by default.

    Returns:
        Totals: Rounded pricing figures.
    """

    discount = discount or Discount()
    payment = payment or PaymentInfo()

    sub = subtotal(lines)
    off = discount_amount(sub, discount.amount, discount.discount_type)
    grand = total(sub, off)
    vat_amount = vat(grand, settings.vat_rate, enabled=settings.vat_enabled)

    if PaymentMethod(payment.method) is PaymentMethod.CASH:
        tendered = quantize_money(payment.amount_tendered)
        owed = change(tendered, grand)
    else:
        tendered = grand
        owed = ZERO

    return Totals(
        subtotal=sub,
        discount_amount=off,
        discount_type=DiscountType(discount.discount_type),
        total=grand,
        vat_amount=vat_amount,
        amount_tendered=tendered,
        change=owed,
    )


__all__ = [
    "to_money",
    "quantize_money",
    "subtotal",
    "discount_amount",
    "total",
    "vat",
    "change",
    "compute_totals",
]
