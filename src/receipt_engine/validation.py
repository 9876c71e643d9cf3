"""Field-level validation for receipt headers and line items.

Each guard raises a single :class:`ValidationError` naming the first offending
field; callers never receive partial results.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Optional

from . import log
from .constants import (
    MAX_DISCOUNT_PERCENTAGE,
    MAX_NOTES_LENGTH,
    MAX_RECEIPT_NUMBER_LENGTH,
    MAX_SUPPLIER_BILL_NUMBER_LENGTH,
)
from .errors import MissingReferenceError, ValidationError
from .models import Product, PurchaseReceipt, PurchaseReceiptItem


def _fail(field: str, message: str) -> None:
    log.error("Validation failed for '%s': %s", field, message)
    raise ValidationError(field, message)


def require_present(field: str, value: object) -> None:
    if value is None or (isinstance(value, str) and not value.strip()):
        _fail(field, "is required")


def require_max_length(field: str, value: Optional[str], limit: int) -> None:
    if value is not None and len(value) > limit:
        _fail(field, f"must be at most {limit} characters")


def require_nonnegative_money(field: str, amount: object) -> None:
    """Validate that a monetary value is a nonnegative decimal."""

    try:
        value = Decimal(str(amount))
    except (InvalidOperation, ValueError):
        _fail(field, "must be a decimal number")
        return
    if not value.is_finite() or value < 0:
        _fail(field, "cannot be negative")


def require_percentage(field: str, value: object) -> None:
    require_nonnegative_money(field, value)
    if Decimal(str(value)) > MAX_DISCOUNT_PERCENTAGE:
        _fail(field, "must be between 0 and 100")


def require_positive_quantity(quantity: object) -> None:
    """Validate that a quantity is a strictly positive integer.

    ``bool`` is rejected explicitly because it is an ``int`` subclass.
    """

    if isinstance(quantity, bool) or not isinstance(quantity, int):
        _fail("quantity", "must be an integer")
    if quantity <= 0:  # type: ignore[operator]
        _fail("quantity", "must be greater than zero")


def validate_receipt(receipt: PurchaseReceipt) -> None:
    """Check the header contract before a create or update.

    Raises:
        ValidationError: On the first field that breaks its contract.
    """

    require_present("supplier_id", receipt.supplier_id)
    require_present("created_by_id", receipt.created_by_id)
    require_present("purchase_date", receipt.purchase_date)
    require_max_length("receipt_number", receipt.receipt_number, MAX_RECEIPT_NUMBER_LENGTH)
    require_max_length("supplier_bill_number", receipt.supplier_bill_number, MAX_SUPPLIER_BILL_NUMBER_LENGTH)
    require_max_length("notes", receipt.notes, MAX_NOTES_LENGTH)
    require_nonnegative_money("bill_discount_amount", receipt.bill_discount_amount)
    require_percentage("bill_discount_percentage", receipt.bill_discount_percentage)
    require_nonnegative_money("total_amount", receipt.total_amount)


def validate_item(item: PurchaseReceiptItem, product: Optional[Product]) -> None:
    """Check a line item and the product it references.

    Args:
        item (PurchaseReceiptItem): Line item about to be written.
        product (Product | None): Result of the product lookup for
            ``item.product_id``.

    Raises:
        ValidationError: For bad quantities, costs, discounts, or an inactive
            product.
        MissingReferenceError: If the product does not exist.
    """

    require_positive_quantity(item.quantity)
    require_present("product_id", item.product_id)
    require_nonnegative_money("unit_cost", item.unit_cost)
    require_nonnegative_money("item_discount_amount", item.item_discount_amount)
    require_percentage("item_discount_percentage", item.item_discount_percentage)
    if product is None:
        log.warning("Product lookup failed for id '%s'", item.product_id)
        raise MissingReferenceError(f"Unknown product id: {item.product_id}")
    if not product.is_active:
        _fail("product_id", f"product '{item.product_id}' is inactive")


__all__ = [
    "require_present",
    "require_max_length",
    "require_nonnegative_money",
    "require_percentage",
    "require_positive_quantity",
    "validate_receipt",
    "validate_item",
]
