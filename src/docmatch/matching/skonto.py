"""Skonto (early-payment discount) arithmetic."""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal

HUNDRED = Decimal("100")
# Discount most suppliers grant when no Skonto is recorded on the document
COMMON_EARLY_PAYMENT_PERCENT = Decimal("3")


def has_valid_skonto(percentage: Decimal | None) -> bool:
    return percentage is not None and percentage > 0


def is_applicable_skonto(percentage: Decimal | None) -> bool:
    """Skonto that may be used to adjust a payable amount (0 < pct < 100)."""
    return has_valid_skonto(percentage) and percentage < HUNDRED


def calculate_discounted_amount(total: Decimal | None, percentage: Decimal | None) -> Decimal | None:
    """Amount payable after Skonto.

    Missing or non-positive percentages and non-positive totals leave the
    total unchanged; percentages above 100 are capped; never negative.
    """
    if total is None:
        return None
    if not has_valid_skonto(percentage) or total <= 0:
        return total

    pct = min(percentage, HUNDRED)
    discounted = total * (1 - pct / HUNDRED)
    return max(discounted, Decimal("0"))


def calculate_discount(total: Decimal | None, percentage: Decimal | None) -> Decimal:
    """Absolute discount granted by Skonto (0 when not applicable)."""
    discounted = calculate_discounted_amount(total, percentage)
    if total is None or discounted is None:
        return Decimal("0")
    return total - discounted


def net_amount_after_skonto(sub_total: Decimal, percentage: Decimal) -> Decimal:
    """Net amount reduced by Skonto, rounded to cents."""
    return (sub_total * (HUNDRED - percentage) / HUNDRED).quantize(
        Decimal("0.01"), rounding=ROUND_HALF_UP
    )
