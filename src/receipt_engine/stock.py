"""Stock integration: turn a completed receipt into durable inventory state.

For every line item the integrator writes one :class:`StockBatch`, one ``IN``
:class:`StockMovement`, and creates or increments the product's
:class:`InventoryRecord`. Items are independent of each other and run on a
bounded thread pool; inventory read-increment-write is serialized per product.

The integrator is idempotent per ``(receipt, item)``: the batch number is
deterministic, so an item whose batch already exists is skipped. The caller
wraps the call in the repositories' unit of work so a failure anywhere rolls
back every write of the attempt.
"""

from __future__ import annotations

import uuid
from concurrent.futures import FIRST_EXCEPTION, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, List, Optional, Sequence

from . import log
from .constants import PURCHASE_RECEIPT_REFERENCE, MovementType
from .models import InventoryRecord, PurchaseReceipt, PurchaseReceiptItem, StockBatch, StockMovement

if TYPE_CHECKING:
    from .core_logic import RuntimeContext


@dataclass(frozen=True)
class ItemIntegration:
    """Records written for a single line item."""

    item_id: str
    batch: StockBatch
    movement: StockMovement
    inventory: InventoryRecord


@dataclass(frozen=True)
class IntegrationResult:
    """Outcome of integrating one receipt."""

    receipt_id: str
    integrated: List[ItemIntegration] = field(default_factory=list)
    skipped_item_ids: List[str] = field(default_factory=list)


def build_batch_number(receipt_number: str, item_id: str) -> str:
    """Return ``<receipt number>-<first 8 chars of the item id>``."""

    return f"{receipt_number}-{item_id[:8]}"


def build_stock_batch(receipt: PurchaseReceipt, item: PurchaseReceiptItem) -> StockBatch:
    return StockBatch(
        batch_id=str(uuid.uuid4()),
        product_id=item.product_id,
        supplier_id=receipt.supplier_id,
        quantity=item.quantity,
        available_quantity=item.quantity,
        cost_price=item.unit_cost,
        received_date=receipt.purchase_date,
        batch_number=build_batch_number(receipt.receipt_number, item.item_id),
        notes=f"From purchase receipt {receipt.receipt_number}",
        is_active=True,
    )


def build_stock_movement(
    receipt: PurchaseReceipt,
    item: PurchaseReceiptItem,
    batch: StockBatch,
    *,
    user_id: str,
    timestamp: datetime,
) -> StockMovement:
    return StockMovement(
        movement_id=str(uuid.uuid4()),
        product_id=item.product_id,
        batch_id=batch.batch_id,
        movement_type=MovementType.IN,
        quantity=item.quantity,
        unit_cost=item.unit_cost,
        total_cost=item.line_total,
        reference_type=PURCHASE_RECEIPT_REFERENCE,
        reference_id=receipt.receipt_id,
        user_id=user_id,
        notes=f"Stock received from purchase receipt {receipt.receipt_number}",
        created_at=timestamp,
    )


def apply_inventory_delta(context: "RuntimeContext", product_id: str, quantity: int) -> InventoryRecord:
    """Create or increment the inventory record of ``product_id``.

    The read-increment-write sequence holds the product lock, so two receipts
    completing concurrently never lose an update for the same product.
    """

    inventory = context.repositories.inventory
    with context.product_locks.hold(product_id):
        record = inventory.get_by_product(product_id)
        if record is None:
            record = inventory.create(
                InventoryRecord(
                    inventory_id=str(uuid.uuid4()),
                    product_id=product_id,
                    quantity=quantity,
                    reorder_level=context.settings.default_reorder_level,
                    max_level=context.settings.default_max_level,
                    updated_at=datetime.now(UTC),
                )
            )
            log.debug("Created inventory record for product '%s' (quantity=%s)", product_id, quantity)
            return record
        record = inventory.increment(product_id, quantity)
        log.debug("Incremented inventory for product '%s' by %s to %s", product_id, quantity, record.quantity)
        return record


def integrate_item(
    context: "RuntimeContext",
    receipt: PurchaseReceipt,
    item: PurchaseReceiptItem,
    *,
    user_id: str,
) -> Optional[ItemIntegration]:
    """Materialize a single line item; return ``None`` when already done."""

    repositories = context.repositories
    batch_number = build_batch_number(receipt.receipt_number, item.item_id)
    if repositories.batches.find_by_batch_number(item.product_id, batch_number) is not None:
        log.info("Skipping item '%s': batch '%s' already materialized", item.item_id, batch_number)
        return None

    batch = repositories.batches.create(build_stock_batch(receipt, item))
    movement = repositories.movements.append(
        build_stock_movement(receipt, item, batch, user_id=user_id, timestamp=datetime.now(UTC))
    )
    record = apply_inventory_delta(context, item.product_id, item.quantity)
    return ItemIntegration(item_id=item.item_id, batch=batch, movement=movement, inventory=record)


def integrate_receipt(
    context: "RuntimeContext",
    receipt: PurchaseReceipt,
    items: Sequence[PurchaseReceiptItem],
    *,
    user_id: str,
) -> IntegrationResult:
    """Materialize every item of ``receipt`` into batches, movements, and inventory.

    Args:
        context (RuntimeContext): Runtime context supplying repositories,
            settings, and product locks.
        receipt (PurchaseReceipt): Receipt being completed.
        items (Sequence[PurchaseReceiptItem]): Item set freshly loaded from
            the receipt repository.
        user_id (str): Actor recorded on each movement.

    Returns:
        IntegrationResult: Written records plus the ids of skipped items.

    Raises:
        Exception: The first failure raised by any item. Remaining queued
            items are cancelled; items already running finish before the
            exception propagates so the caller's rollback sees every write.
    """

    workers = max(1, min(context.settings.integration_workers, len(items)))
    outcomes: List[Optional[ItemIntegration]] = []

    if workers == 1:
        for item in items:
            outcomes.append(integrate_item(context, receipt, item, user_id=user_id))
    else:
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="stock-integration") as executor:
            futures = [
                executor.submit(integrate_item, context, receipt, item, user_id=user_id)
                for item in items
            ]
            done, pending = wait(futures, return_when=FIRST_EXCEPTION)
            for future in pending:
                future.cancel()
            wait(futures)
            for future in futures:
                if future.cancelled():
                    continue
                error = future.exception()
                if error is not None:
                    raise error
            outcomes = [future.result() for future in futures]

    result = IntegrationResult(receipt_id=receipt.receipt_id)
    for item, outcome in zip(items, outcomes):
        if outcome is None:
            result.skipped_item_ids.append(item.item_id)
        else:
            result.integrated.append(outcome)

    log.info(
        "Integrated receipt '%s': %d item(s) materialized, %d skipped",
        receipt.receipt_number,
        len(result.integrated),
        len(result.skipped_item_ids),
    )
    return result


__all__ = [
    "ItemIntegration",
    "IntegrationResult",
    "build_batch_number",
    "build_stock_batch",
    "build_stock_movement",
    "apply_inventory_delta",
    "integrate_item",
    "integrate_receipt",
]
