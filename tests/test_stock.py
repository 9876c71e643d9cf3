"""Tests for materializing completed receipts into stock records."""

from __future__ import annotations

from dataclasses import replace
from datetime import date
from decimal import Decimal

import pytest

from receipt_engine import constants, core_logic, stock
from receipt_engine.models import InventoryRecord, PurchaseReceipt, PurchaseReceiptItem

from conftest import DEFAULT_USER_ID, PRODUCT_ID, SECOND_PRODUCT_ID, SUPPLIER_ID


@pytest.fixture
def receipt() -> PurchaseReceipt:
    return PurchaseReceipt(
        receipt_id="R-100",
        receipt_number="PR2024030007",
        supplier_id=SUPPLIER_ID,
        status=constants.ReceiptStatus.RECEIVED,
        purchase_date=date(2024, 3, 15),
        created_by_id=DEFAULT_USER_ID,
    )


def _item(item_id: str, product_id: str, quantity: int, unit_cost: str, line_total: str) -> PurchaseReceiptItem:
    return PurchaseReceiptItem(
        item_id=item_id,
        receipt_id="R-100",
        product_id=product_id,
        quantity=quantity,
        unit_cost=Decimal(unit_cost),
        line_total=Decimal(line_total),
    )


@pytest.fixture
def items() -> list[PurchaseReceiptItem]:
    return [
        _item("abcdef0123456789", PRODUCT_ID, 10, "15.50", "139.50"),
        _item("fedcba9876543210", SECOND_PRODUCT_ID, 3, "4.00", "12.00"),
    ]


def test_batch_number_uses_first_eight_item_id_chars():
    """Batch numbers should be deterministic per receipt and item."""

    assert stock.build_batch_number("PR2024030007", "abcdef0123456789") == "PR2024030007-abcdef01"


def test_build_stock_batch_copies_item_values(receipt, items):
    """A batch should carry quantity, cost, supplier, and purchase date."""

    batch = stock.build_stock_batch(receipt, items[0])

    assert batch.product_id == PRODUCT_ID
    assert batch.supplier_id == SUPPLIER_ID
    assert batch.quantity == batch.available_quantity == 10
    assert batch.cost_price == Decimal("15.50")
    assert batch.received_date == date(2024, 3, 15)
    assert batch.batch_number == "PR2024030007-abcdef01"
    assert batch.is_active
    assert "PR2024030007" in batch.notes


def test_integrate_receipt_writes_batches_movements_and_inventory(context, receipt, items):
    """Every item should yield one batch, one IN movement, and an inventory bump."""

    result = stock.integrate_receipt(context, receipt, items, user_id="U-42")

    assert len(result.integrated) == 2
    assert result.skipped_item_ids == []
    movements = context.repositories.movements.list_by_reference(
        constants.PURCHASE_RECEIPT_REFERENCE, receipt.receipt_id
    )
    assert len(movements) == 2
    by_product = {movement.product_id: movement for movement in movements}
    first = by_product[PRODUCT_ID]
    assert first.movement_type is constants.MovementType.IN
    assert first.quantity == 10
    assert first.unit_cost == Decimal("15.50")
    assert first.total_cost == Decimal("139.50")
    assert first.user_id == "U-42"
    assert first.created_at is not None and first.created_at.tzinfo is not None
    assert len(context.repositories.batches.list_by_product(PRODUCT_ID)) == 1
    assert core_logic.inventory_levels(context) == {PRODUCT_ID: 10, SECOND_PRODUCT_ID: 3}


def test_new_inventory_records_use_configured_levels(context, receipt, items):
    """Inventory created on first receipt should take default reorder and max levels."""

    stock.integrate_receipt(context, receipt, items[:1], user_id=DEFAULT_USER_ID)

    record = context.repositories.inventory.get_by_product(PRODUCT_ID)
    assert record.quantity == 10
    assert record.reorder_level == context.settings.default_reorder_level
    assert record.max_level == context.settings.default_max_level


def test_existing_inventory_is_incremented(context, receipt, items):
    """Inventory already on hand should be incremented, not replaced."""

    context.repositories.inventory.create(
        InventoryRecord(inventory_id="INV-1", product_id=PRODUCT_ID, quantity=5, reorder_level=2, max_level=50)
    )

    stock.integrate_receipt(context, receipt, items[:1], user_id=DEFAULT_USER_ID)

    record = context.repositories.inventory.get_by_product(PRODUCT_ID)
    assert record.quantity == 15
    assert record.reorder_level == 2


def test_integration_is_idempotent_per_item(context, receipt, items):
    """Running the integrator twice should not double-count stock."""

    stock.integrate_receipt(context, receipt, items, user_id=DEFAULT_USER_ID)
    second = stock.integrate_receipt(context, receipt, items, user_id=DEFAULT_USER_ID)

    assert second.integrated == []
    assert sorted(second.skipped_item_ids) == sorted(item.item_id for item in items)
    assert core_logic.inventory_levels(context) == {PRODUCT_ID: 10, SECOND_PRODUCT_ID: 3}
    assert len(context.repositories.batches.list_by_product(PRODUCT_ID)) == 1


def test_items_for_same_product_accumulate_under_concurrency(context, receipt):
    """Parallel workers hitting one product should never lose an increment."""

    many = [_item(f"item{index:04d}xxxx", PRODUCT_ID, 2, "1.00", "2.00") for index in range(12)]

    result = stock.integrate_receipt(context, receipt, many, user_id=DEFAULT_USER_ID)

    assert len(result.integrated) == 12
    assert core_logic.inventory_levels(context) == {PRODUCT_ID: 24}


def test_single_worker_runs_sequentially(context, receipt, items):
    """A worker count of one should still integrate every item."""

    sequential = replace(context, settings=replace(context.settings, integration_workers=1))

    result = stock.integrate_receipt(sequential, receipt, items, user_id=DEFAULT_USER_ID)

    assert [entry.item_id for entry in result.integrated] == [item.item_id for item in items]


def test_first_failure_propagates(monkeypatch, context, receipt, items):
    """An exception from any item should surface to the caller."""

    original = stock.apply_inventory_delta

    def flaky(ctx, product_id, quantity):
        if product_id == SECOND_PRODUCT_ID:
            raise RuntimeError("inventory backend unavailable")
        return original(ctx, product_id, quantity)

    monkeypatch.setattr(stock, "apply_inventory_delta", flaky)

    with pytest.raises(RuntimeError, match="inventory backend unavailable"):
        stock.integrate_receipt(context, receipt, items, user_id=DEFAULT_USER_ID)


def test_failure_inside_unit_of_work_rolls_back_every_write(monkeypatch, context, receipt, items):
    """Wrapped in atomic(), a failed integration should leave no stock behind."""

    def broken(ctx, product_id, quantity):
        raise RuntimeError("boom")

    monkeypatch.setattr(stock, "apply_inventory_delta", broken)

    with pytest.raises(RuntimeError):
        with context.repositories.unit_of_work.atomic():
            stock.integrate_receipt(context, receipt, items, user_id=DEFAULT_USER_ID)

    assert context.repositories.batches.list_by_product(PRODUCT_ID) == []
    assert context.repositories.movements.list_by_reference(
        constants.PURCHASE_RECEIPT_REFERENCE, receipt.receipt_id
    ) == []
    assert core_logic.inventory_levels(context) == {}
