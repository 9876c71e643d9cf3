"""Storage contract consumed by the business logic layer.

The engine never touches a storage medium directly. It talks to the
capabilities declared here, bundled into :class:`Repositories` and injected
through the runtime context. Two adapters ship with the package:
:mod:`receipt_engine.memory` and :mod:`receipt_engine.data_manager`.

Contract notes for implementers:

* ``ReceiptRepository.create`` must raise
  :class:`~receipt_engine.errors.DuplicateReceiptNumber` when the number is
  taken, and ``update`` must raise
  :class:`~receipt_engine.errors.ConcurrentModificationError` when the stored
  version differs from the incoming one. A successful update stores the
  record with ``version + 1`` and returns it.
* ``ReceiptRepository.latest_number`` returns the highest number made of
  ``prefix`` followed by exactly ``RECEIPT_SEQUENCE_DIGITS`` digits, or
  ``None``.
* ``InventoryRepository.increment`` must be atomic per product.
* ``UnitOfWork.atomic`` must undo every write made inside the block when the
  block raises.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import ContextManager, List, Optional, Protocol

from .constants import ReceiptStatus
from .models import (
    InventoryRecord,
    Product,
    PurchaseReceipt,
    PurchaseReceiptItem,
    StockBatch,
    StockMovement,
    Supplier,
)


class ReceiptRepository(Protocol):
    def create(self, receipt: PurchaseReceipt) -> PurchaseReceipt: ...

    def get(self, receipt_id: str) -> Optional[PurchaseReceipt]: ...

    def get_by_number(self, receipt_number: str) -> Optional[PurchaseReceipt]: ...

    def update(self, receipt: PurchaseReceipt) -> PurchaseReceipt: ...

    def delete(self, receipt_id: str) -> None: ...

    def list(self, *, limit: Optional[int] = None, offset: int = 0) -> List[PurchaseReceipt]: ...

    def list_by_supplier(self, supplier_id: str) -> List[PurchaseReceipt]: ...

    def list_by_status(self, status: ReceiptStatus) -> List[PurchaseReceipt]: ...

    def list_by_created_range(self, start: datetime, end: datetime) -> List[PurchaseReceipt]: ...

    def search(self, query: str, *, limit: Optional[int] = None, offset: int = 0) -> List[PurchaseReceipt]: ...

    def count(self) -> int: ...

    def latest_number(self, prefix: str) -> Optional[str]: ...

    def create_item(self, item: PurchaseReceiptItem) -> PurchaseReceiptItem: ...

    def get_item(self, item_id: str) -> Optional[PurchaseReceiptItem]: ...

    def list_items(self, receipt_id: str) -> List[PurchaseReceiptItem]: ...

    def update_item(self, item: PurchaseReceiptItem) -> PurchaseReceiptItem: ...

    def delete_item(self, item_id: str) -> None: ...


class SupplierRepository(Protocol):
    def get(self, supplier_id: str) -> Optional[Supplier]: ...

    def add(self, supplier: Supplier) -> Supplier: ...


class ProductRepository(Protocol):
    def get(self, product_id: str) -> Optional[Product]: ...

    def add(self, product: Product) -> Product: ...


class InventoryRepository(Protocol):
    def get_by_product(self, product_id: str) -> Optional[InventoryRecord]: ...

    def create(self, record: InventoryRecord) -> InventoryRecord: ...

    def increment(self, product_id: str, quantity: int) -> InventoryRecord: ...

    def list(self) -> List[InventoryRecord]: ...


class StockBatchRepository(Protocol):
    def create(self, batch: StockBatch) -> StockBatch: ...

    def find_by_batch_number(self, product_id: str, batch_number: str) -> Optional[StockBatch]: ...

    def list_by_product(self, product_id: str) -> List[StockBatch]: ...


class StockMovementRepository(Protocol):
    def append(self, movement: StockMovement) -> StockMovement: ...

    def list_by_reference(self, reference_type: str, reference_id: str) -> List[StockMovement]: ...


class UnitOfWork(Protocol):
    def atomic(self) -> ContextManager[None]: ...


@dataclass(frozen=True)
class Repositories:
    """Every storage capability the engine needs, injected as one bundle."""

    receipts: ReceiptRepository
    suppliers: SupplierRepository
    products: ProductRepository
    inventory: InventoryRepository
    batches: StockBatchRepository
    movements: StockMovementRepository
    unit_of_work: UnitOfWork


__all__ = [
    "ReceiptRepository",
    "SupplierRepository",
    "ProductRepository",
    "InventoryRepository",
    "StockBatchRepository",
    "StockMovementRepository",
    "UnitOfWork",
    "Repositories",
]
