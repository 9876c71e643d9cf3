"""Immutable records exchanged between the engine and its repositories."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from .constants import MovementType, ReceiptStatus


ZERO = Decimal("0.00")


@dataclass(frozen=True)
class Supplier:
    """Supplier reference data; only existence and activity are consulted."""

    supplier_id: str
    name: str
    is_active: bool = True


@dataclass(frozen=True)
class Product:
    """Product reference data; only existence and activity are consulted."""

    product_id: str
    name: str
    is_active: bool = True


@dataclass(frozen=True)
class PurchaseReceipt:
    """Header of a supplier purchase document."""

    receipt_id: str
    receipt_number: str
    supplier_id: str
    status: ReceiptStatus
    purchase_date: Optional[date]
    created_by_id: str
    supplier_bill_number: str = ""
    notes: str = ""
    bill_discount_amount: Decimal = ZERO
    bill_discount_percentage: Decimal = ZERO
    total_amount: Decimal = ZERO
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    version: int = 1


@dataclass(frozen=True)
class PurchaseReceiptItem:
    """One product line on a receipt."""

    item_id: str
    receipt_id: str
    product_id: str
    quantity: int
    unit_cost: Decimal
    item_discount_amount: Decimal = ZERO
    item_discount_percentage: Decimal = ZERO
    line_total: Decimal = ZERO


@dataclass(frozen=True)
class StockBatch:
    """A lot of inventory received under a single line item."""

    batch_id: str
    product_id: str
    supplier_id: Optional[str]
    quantity: int
    available_quantity: int
    cost_price: Decimal
    received_date: Optional[date]
    batch_number: str
    notes: str = ""
    is_active: bool = True


@dataclass(frozen=True)
class StockMovement:
    """Append-only ledger entry explaining an inventory change."""

    movement_id: str
    product_id: str
    batch_id: Optional[str]
    movement_type: MovementType
    quantity: int
    unit_cost: Decimal
    total_cost: Decimal
    reference_type: str
    reference_id: str
    user_id: str
    notes: str = ""
    created_at: Optional[datetime] = None


@dataclass(frozen=True)
class InventoryRecord:
    """Aggregate on-hand quantity for one product."""

    inventory_id: str
    product_id: str
    quantity: int
    reorder_level: int
    max_level: int
    updated_at: Optional[datetime] = None

    @property
    def is_low_stock(self) -> bool:
        return self.quantity <= self.reorder_level


@dataclass(frozen=True)
class ReceiptDetails:
    """A receipt header bundled with its current line items."""

    receipt: PurchaseReceipt
    items: List[PurchaseReceiptItem] = field(default_factory=list)


__all__ = [
    "ZERO",
    "Supplier",
    "Product",
    "PurchaseReceipt",
    "PurchaseReceiptItem",
    "StockBatch",
    "StockMovement",
    "InventoryRecord",
    "ReceiptDetails",
]
