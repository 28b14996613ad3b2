"""Ledger entry arithmetic.

Fixed recompute order: discounts in application order (a percentage discount
is taken from the running subtotal), then adjustments, then tax on the
adjusted subtotal, then the flat platform fee. Every money value is a Decimal
rounded to cents with ROUND_HALF_UP after each step.
"""

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Sequence, Tuple

CENTS = Decimal("0.01")
ZERO = Decimal("0.00")

DISCOUNT_KINDS = ("percentage", "fixed")
ADJUSTMENT_KINDS = ("late_penalty", "technical_issue", "quality_bonus", "manual")


def to_money(value: Decimal | float | int | str | None) -> Decimal:
    if value is None:
        return ZERO
    return Decimal(str(value)).quantize(CENTS, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class DiscountLine:
    kind: str
    value: Decimal


@dataclass(frozen=True)
class Totals:
    subtotal: Decimal
    discount_total: Decimal
    adjustment_total: Decimal
    tax_amount: Decimal
    platform_fee: Decimal
    total_amount: Decimal
    applied_discounts: Tuple[Decimal, ...] = ()


def discount_amount(kind: str, value: Decimal, running_subtotal: Decimal) -> Decimal:
    """Amount a single discount takes off ``running_subtotal``, never more than it."""
    if kind == "percentage":
        applied = to_money(running_subtotal * Decimal(str(value)) / Decimal("100"))
    elif kind == "fixed":
        applied = to_money(value)
    else:
        raise ValueError(f"Unknown discount kind: {kind}")
    if applied > running_subtotal:
        applied = max(running_subtotal, ZERO)
    return applied


def compute_totals(
    amount: Decimal | float | str,
    discounts: Sequence[DiscountLine] = (),
    adjustments: Iterable[Decimal] = (),
    tax_rate: Decimal | float | str = ZERO,
    platform_fee: Decimal | float | str = ZERO,
) -> Totals:
    subtotal = to_money(amount)

    applied_discounts = []
    for line in discounts:
        applied = discount_amount(line.kind, line.value, subtotal)
        applied_discounts.append(applied)
        subtotal -= applied

    adjustment_total = sum((to_money(a) for a in adjustments), ZERO)
    subtotal += adjustment_total

    tax_amount = to_money(subtotal * Decimal(str(tax_rate)) / Decimal("100"))
    fee = to_money(platform_fee)
    total = to_money(subtotal + tax_amount + fee)

    return Totals(
        subtotal=to_money(subtotal),
        discount_total=sum(applied_discounts, ZERO),
        adjustment_total=adjustment_total,
        tax_amount=tax_amount,
        platform_fee=fee,
        total_amount=total,
        applied_discounts=tuple(applied_discounts),
    )
