"""Discount calculation and totals aggregation for purchase receipts.

The same rule applies at item and bill level: a positive percentage wins over
any fixed amount, and a fixed amount is clamped so it never exceeds the base
it discounts. All monetary results are quantized to cents with
``ROUND_HALF_UP`` so totals are reproducible across backends.
"""

from __future__ import annotations

from dataclasses import replace
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable

from . import log
from .models import PurchaseReceipt, PurchaseReceiptItem


TWOPLACES = Decimal("0.01")
HUNDRED = Decimal("100")


def money(value: object) -> Decimal:
    """Coerce ``value`` into a cent-quantized :class:`~decimal.Decimal`.

    ``None`` and empty strings are treated as zero. Values are converted via
    ``str`` first so floats do not leak binary artefacts into the result.
    """

    if value is None or value == "":
        return Decimal("0.00")
    return Decimal(str(value)).quantize(TWOPLACES, rounding=ROUND_HALF_UP)


def calculate_discount(base: Decimal, percentage: Decimal, fixed: Decimal) -> Decimal:
    """Return the discount owed on ``base``.

    Args:
        base (Decimal): Amount being discounted.
        percentage (Decimal): Percentage discount; takes precedence when
            strictly positive.
        fixed (Decimal): Fixed discount used only when ``percentage`` is not
            positive. Clamped to ``base``.

    Returns:
        Decimal: Discount amount quantized to cents.
    """

    base = Decimal(base)
    if Decimal(percentage) > 0:
        return money(base * Decimal(percentage) / HUNDRED)
    return money(min(Decimal(fixed), base))


def calculate_item_discount(quantity: int, unit_cost: Decimal, percentage: Decimal, fixed: Decimal) -> Decimal:
    """Apply :func:`calculate_discount` to ``quantity * unit_cost``."""

    return calculate_discount(item_base_amount(quantity, unit_cost), percentage, fixed)


def calculate_bill_discount(items_total: Decimal, percentage: Decimal, fixed: Decimal) -> Decimal:
    """Apply :func:`calculate_discount` to the summed line totals."""

    return calculate_discount(items_total, percentage, fixed)


def item_base_amount(quantity: int, unit_cost: Decimal) -> Decimal:
    # Unrounded; unit costs may carry more than two decimal places.
    return Decimal(quantity) * Decimal(str(unit_cost))


def price_item(item: PurchaseReceiptItem) -> PurchaseReceiptItem:
    """Return ``item`` with its discount amount and line total recomputed."""

    base = item_base_amount(item.quantity, item.unit_cost)
    discount = calculate_discount(base, item.item_discount_percentage, item.item_discount_amount)
    return replace(
        item,
        unit_cost=Decimal(str(item.unit_cost)),
        item_discount_amount=discount,
        line_total=money(money(base) - discount),
    )


def sum_line_totals(items: Iterable[PurchaseReceiptItem]) -> Decimal:
    total = Decimal("0.00")
    for item in items:
        total += item.line_total
    return money(total)


def calculate_totals(receipt: PurchaseReceipt, items: Iterable[PurchaseReceiptItem]) -> PurchaseReceipt:
    """Recompute the bill discount and total amount of ``receipt``.

    ``items`` must be the authoritative item set loaded from storage. The
    total is floored at zero.
    """

    items_total = sum_line_totals(items)
    bill_discount = calculate_bill_discount(
        items_total,
        receipt.bill_discount_percentage,
        receipt.bill_discount_amount,
    )
    total = max(items_total - bill_discount, Decimal("0.00"))
    log.debug(
        "Calculated totals for receipt '%s': items=%s bill_discount=%s total=%s",
        receipt.receipt_id,
        items_total,
        bill_discount,
        total,
    )
    return replace(receipt, bill_discount_amount=bill_discount, total_amount=money(total))


__all__ = [
    "money",
    "calculate_discount",
    "calculate_item_discount",
    "calculate_bill_discount",
    "item_base_amount",
    "price_item",
    "sum_line_totals",
    "calculate_totals",
]
