"""In-memory storage adapter.

Backs every repository with plain dictionaries guarded by a lock. Because all
records are frozen dataclasses, a transaction snapshot is a shallow copy of
each table, and rollback swaps the copies back in.

Transactions are serialized store-wide: only one ``atomic()`` block runs at a
time, while worker threads spawned inside the block may still read and write
through the data lock.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from dataclasses import replace
from datetime import UTC, datetime
from typing import Any, Dict, Iterator, List, Optional

from . import log
from .constants import RECEIPT_SEQUENCE_DIGITS, ReceiptStatus
from .errors import ConcurrentModificationError, ConflictError, DuplicateReceiptNumber, MissingReferenceError
from .models import (
    InventoryRecord,
    Product,
    PurchaseReceipt,
    PurchaseReceiptItem,
    StockBatch,
    StockMovement,
    Supplier,
)
from .repositories import Repositories


def _page(records: List[Any], limit: Optional[int], offset: int) -> List[Any]:
    end = None if limit is None else offset + limit
    return records[offset:end]


def _is_sequence_number(receipt_number: str, prefix: str) -> bool:
    suffix = receipt_number[len(prefix):]
    return receipt_number.startswith(prefix) and len(suffix) == RECEIPT_SEQUENCE_DIGITS and suffix.isdigit()


class InMemoryStore:
    """Own the tables shared by the in-memory repositories."""

    def __init__(self) -> None:
        self._data_lock = threading.RLock()
        self._tx_lock = threading.RLock()
        self._depth = 0
        self.receipts: Dict[str, PurchaseReceipt] = {}
        self.items: Dict[str, PurchaseReceiptItem] = {}
        self.suppliers: Dict[str, Supplier] = {}
        self.products: Dict[str, Product] = {}
        self.inventory: Dict[str, InventoryRecord] = {}
        self.batches: Dict[str, StockBatch] = {}
        self.movements: List[StockMovement] = []

    @property
    def lock(self) -> threading.RLock:
        return self._data_lock

    def _snapshot(self) -> Dict[str, Any]:
        with self._data_lock:
            return {
                "receipts": dict(self.receipts),
                "items": dict(self.items),
                "suppliers": dict(self.suppliers),
                "products": dict(self.products),
                "inventory": dict(self.inventory),
                "batches": dict(self.batches),
                "movements": list(self.movements),
            }

    def _restore(self, snapshot: Dict[str, Any]) -> None:
        with self._data_lock:
            for name, table in snapshot.items():
                setattr(self, name, table)

    @contextmanager
    def atomic(self) -> Iterator[None]:
        """Run the block as one transaction; nested blocks join the outer one."""

        with self._tx_lock:
            outermost = self._depth == 0
            snapshot = self._snapshot() if outermost else None
            self._depth += 1
            try:
                yield
            except BaseException:
                if outermost:
                    self._restore(snapshot)  # type: ignore[arg-type]
                    log.info("Rolled back in-memory transaction")
                raise
            finally:
                self._depth -= 1

    def repositories(self) -> Repositories:
        """Bundle repositories bound to this store."""

        return Repositories(
            receipts=MemoryReceiptRepository(self),
            suppliers=MemorySupplierRepository(self),
            products=MemoryProductRepository(self),
            inventory=MemoryInventoryRepository(self),
            batches=MemoryStockBatchRepository(self),
            movements=MemoryStockMovementRepository(self),
            unit_of_work=self,
        )


class MemoryReceiptRepository:
    def __init__(self, store: InMemoryStore) -> None:
        self._store = store

    def create(self, receipt: PurchaseReceipt) -> PurchaseReceipt:
        with self._store.lock:
            if self.get_by_number(receipt.receipt_number) is not None:
                raise DuplicateReceiptNumber(f"Receipt number already exists: {receipt.receipt_number}")
            self._store.receipts[receipt.receipt_id] = receipt
            return receipt

    def get(self, receipt_id: str) -> Optional[PurchaseReceipt]:
        with self._store.lock:
            return self._store.receipts.get(receipt_id)

    def get_by_number(self, receipt_number: str) -> Optional[PurchaseReceipt]:
        with self._store.lock:
            for receipt in self._store.receipts.values():
                if receipt.receipt_number == receipt_number:
                    return receipt
            return None

    def update(self, receipt: PurchaseReceipt) -> PurchaseReceipt:
        with self._store.lock:
            stored = self._store.receipts.get(receipt.receipt_id)
            if stored is None:
                raise MissingReferenceError(f"Unknown receipt id: {receipt.receipt_id}")
            if stored.version != receipt.version:
                raise ConcurrentModificationError(
                    f"Receipt '{receipt.receipt_id}' was modified concurrently "
                    f"(stored version {stored.version}, incoming {receipt.version})"
                )
            updated = replace(receipt, version=receipt.version + 1, updated_at=datetime.now(UTC))
            self._store.receipts[receipt.receipt_id] = updated
            return updated

    def delete(self, receipt_id: str) -> None:
        with self._store.lock:
            self._store.receipts.pop(receipt_id, None)
            for item_id in [i.item_id for i in self._store.items.values() if i.receipt_id == receipt_id]:
                del self._store.items[item_id]

    def list(self, *, limit: Optional[int] = None, offset: int = 0) -> List[PurchaseReceipt]:
        with self._store.lock:
            return _page(list(self._store.receipts.values()), limit, offset)

    def list_by_supplier(self, supplier_id: str) -> List[PurchaseReceipt]:
        with self._store.lock:
            return [r for r in self._store.receipts.values() if r.supplier_id == supplier_id]

    def list_by_status(self, status: ReceiptStatus) -> List[PurchaseReceipt]:
        with self._store.lock:
            return [r for r in self._store.receipts.values() if r.status == status]

    def list_by_created_range(self, start: datetime, end: datetime) -> List[PurchaseReceipt]:
        with self._store.lock:
            return [
                r
                for r in self._store.receipts.values()
                if r.created_at is not None and start <= r.created_at <= end
            ]

    def search(self, query: str, *, limit: Optional[int] = None, offset: int = 0) -> List[PurchaseReceipt]:
        needle = query.casefold()
        with self._store.lock:
            matches = [
                r
                for r in self._store.receipts.values()
                if needle in r.receipt_number.casefold() or needle in (r.supplier_bill_number or "").casefold()
            ]
        return _page(matches, limit, offset)

    def count(self) -> int:
        with self._store.lock:
            return len(self._store.receipts)

    def latest_number(self, prefix: str) -> Optional[str]:
        with self._store.lock:
            numbers = [
                r.receipt_number
                for r in self._store.receipts.values()
                if _is_sequence_number(r.receipt_number, prefix)
            ]
        return max(numbers) if numbers else None

    def create_item(self, item: PurchaseReceiptItem) -> PurchaseReceiptItem:
        with self._store.lock:
            self._store.items[item.item_id] = item
            return item

    def get_item(self, item_id: str) -> Optional[PurchaseReceiptItem]:
        with self._store.lock:
            return self._store.items.get(item_id)

    def list_items(self, receipt_id: str) -> List[PurchaseReceiptItem]:
        with self._store.lock:
            return [i for i in self._store.items.values() if i.receipt_id == receipt_id]

    def update_item(self, item: PurchaseReceiptItem) -> PurchaseReceiptItem:
        with self._store.lock:
            if item.item_id not in self._store.items:
                raise MissingReferenceError(f"Unknown item id: {item.item_id}")
            self._store.items[item.item_id] = item
            return item

    def delete_item(self, item_id: str) -> None:
        with self._store.lock:
            self._store.items.pop(item_id, None)


class MemorySupplierRepository:
    def __init__(self, store: InMemoryStore) -> None:
        self._store = store

    def get(self, supplier_id: str) -> Optional[Supplier]:
        with self._store.lock:
            return self._store.suppliers.get(supplier_id)

    def add(self, supplier: Supplier) -> Supplier:
        with self._store.lock:
            self._store.suppliers[supplier.supplier_id] = supplier
            return supplier


class MemoryProductRepository:
    def __init__(self, store: InMemoryStore) -> None:
        self._store = store

    def get(self, product_id: str) -> Optional[Product]:
        with self._store.lock:
            return self._store.products.get(product_id)

    def add(self, product: Product) -> Product:
        with self._store.lock:
            self._store.products[product.product_id] = product
            return product


class MemoryInventoryRepository:
    def __init__(self, store: InMemoryStore) -> None:
        self._store = store

    def get_by_product(self, product_id: str) -> Optional[InventoryRecord]:
        with self._store.lock:
            return self._store.inventory.get(product_id)

    def create(self, record: InventoryRecord) -> InventoryRecord:
        with self._store.lock:
            if record.product_id in self._store.inventory:
                raise ConflictError(
                    f"Inventory record already exists for product {record.product_id}"
                )
            self._store.inventory[record.product_id] = record
            return record

    def increment(self, product_id: str, quantity: int) -> InventoryRecord:
        with self._store.lock:
            current = self._store.inventory.get(product_id)
            if current is None:
                raise MissingReferenceError(f"No inventory record for product {product_id}")
            updated = replace(current, quantity=current.quantity + quantity, updated_at=datetime.now(UTC))
            self._store.inventory[product_id] = updated
            return updated

    def list(self) -> List[InventoryRecord]:
        with self._store.lock:
            return list(self._store.inventory.values())


class MemoryStockBatchRepository:
    def __init__(self, store: InMemoryStore) -> None:
        self._store = store

    def create(self, batch: StockBatch) -> StockBatch:
        with self._store.lock:
            self._store.batches[batch.batch_id] = batch
            return batch

    def find_by_batch_number(self, product_id: str, batch_number: str) -> Optional[StockBatch]:
        with self._store.lock:
            for batch in self._store.batches.values():
                if batch.product_id == product_id and batch.batch_number == batch_number:
                    return batch
            return None

    def list_by_product(self, product_id: str) -> List[StockBatch]:
        with self._store.lock:
            return [b for b in self._store.batches.values() if b.product_id == product_id]


class MemoryStockMovementRepository:
    def __init__(self, store: InMemoryStore) -> None:
        self._store = store

    def append(self, movement: StockMovement) -> StockMovement:
        with self._store.lock:
            self._store.movements.append(movement)
            return movement

    def list_by_reference(self, reference_type: str, reference_id: str) -> List[StockMovement]:
        with self._store.lock:
            return [
                m
                for m in self._store.movements
                if m.reference_type == reference_type and m.reference_id == reference_id
            ]


__all__ = [
    "InMemoryStore",
    "MemoryReceiptRepository",
    "MemorySupplierRepository",
    "MemoryProductRepository",
    "MemoryInventoryRepository",
    "MemoryStockBatchRepository",
    "MemoryStockMovementRepository",
]
