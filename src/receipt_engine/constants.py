"""Enumerations and limits shared across the receipt engine modules.

Centralises domain constants so that the storage adapters, the business
logic layer, and the command-line front-end rely on a single source of truth
for status names, sheet names, and field bounds.
"""

from __future__ import annotations

from decimal import Decimal
from enum import Enum


# Central schema version expected by all layers when validating workbooks.
EXPECTED_SCHEMA_VERSION = "1.0.0"

RECEIPT_NUMBER_PREFIX = "PR"
RECEIPT_SEQUENCE_DIGITS = 4
MAX_RECEIPT_SEQUENCE = 9999
DEFAULT_NUMBER_ATTEMPTS = 5
DEFAULT_LOCK_TIMEOUT = 10.0
DEFAULT_INTEGRATION_WORKERS = 4

DEFAULT_REORDER_LEVEL = 10
DEFAULT_MAX_LEVEL = 100

MAX_RECEIPT_NUMBER_LENGTH = 50
MAX_SUPPLIER_BILL_NUMBER_LENGTH = 100
MAX_NOTES_LENGTH = 1000

MAX_DISCOUNT_PERCENTAGE = Decimal("100")

# Reference type stamped on ledger movements that originate from receipts.
PURCHASE_RECEIPT_REFERENCE = "purchase_receipt"


class ReceiptStatus(str, Enum):
    """Enumerate the lifecycle states of a purchase receipt."""

    PENDING = "pending"
    RECEIVED = "received"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (ReceiptStatus.COMPLETED, ReceiptStatus.CANCELLED)


class MovementType(str, Enum):
    """Enumerate the movement kinds recorded in the stock ledger."""

    IN = "IN"
    OUT = "OUT"
    TRANSFER = "TRANSFER"
    ADJUSTMENT = "ADJUSTMENT"
    SALE = "SALE"
    RETURN = "RETURN"
    DAMAGE = "DAMAGE"


class SheetName(str, Enum):
    """Enumerate the workbook sheet names managed by the data layer."""

    SUPPLIERS = "Suppliers"
    PRODUCTS = "Products"
    RECEIPTS = "PurchaseReceipts"
    RECEIPT_ITEMS = "PurchaseReceiptItems"
    STOCK_BATCHES = "StockBatches"
    STOCK_MOVEMENTS = "StockMovements"
    INVENTORY = "Inventory"


__all__ = [
    "EXPECTED_SCHEMA_VERSION",
    "RECEIPT_NUMBER_PREFIX",
    "RECEIPT_SEQUENCE_DIGITS",
    "MAX_RECEIPT_SEQUENCE",
    "DEFAULT_NUMBER_ATTEMPTS",
    "DEFAULT_LOCK_TIMEOUT",
    "DEFAULT_INTEGRATION_WORKERS",
    "DEFAULT_REORDER_LEVEL",
    "DEFAULT_MAX_LEVEL",
    "MAX_RECEIPT_NUMBER_LENGTH",
    "MAX_SUPPLIER_BILL_NUMBER_LENGTH",
    "MAX_NOTES_LENGTH",
    "MAX_DISCOUNT_PERCENTAGE",
    "PURCHASE_RECEIPT_REFERENCE",
    "ReceiptStatus",
    "MovementType",
    "SheetName",
]
