"""Unit tests documenting the expected behavior of the data access layer."""

from __future__ import annotations

import configparser
from dataclasses import replace
from datetime import UTC, date, datetime
from decimal import Decimal
from pathlib import Path

import openpyxl
import pytest

from receipt_engine import constants, data_manager, errors
from receipt_engine.constants import ReceiptStatus, SheetName
from receipt_engine.models import InventoryRecord, PurchaseReceipt, PurchaseReceiptItem, Supplier

from conftest import DEFAULT_USER_ID


def _parser(text: str) -> configparser.ConfigParser:
    parser = configparser.ConfigParser()
    parser.read_string(text)
    return parser


_MINIMAL_CONFIG = (
    "[System]\nDataFile = receipts.xlsx\nStoreName = Depot\nSchemaVersion = 1.0.0\n"
    "[Defaults]\nDefaultUser = U-1\n"
)


def _receipt(receipt_id: str = "R-1", number: str = "PR2024030001", **overrides) -> PurchaseReceipt:
    values = dict(
        receipt_id=receipt_id,
        receipt_number=number,
        supplier_id="SUP-1",
        status=ReceiptStatus.PENDING,
        purchase_date=date(2024, 3, 15),
        created_by_id=DEFAULT_USER_ID,
        supplier_bill_number="BILL-9",
        bill_discount_amount=Decimal("20.00"),
        bill_discount_percentage=Decimal("0"),
        total_amount=Decimal("259.00"),
        created_at=datetime(2024, 3, 15, 8, 0, tzinfo=UTC),
        updated_at=datetime(2024, 3, 15, 8, 0, tzinfo=UTC),
    )
    values.update(overrides)
    return PurchaseReceipt(**values)


def _receipt_item(item_id: str = "I-1", receipt_id: str = "R-1") -> PurchaseReceiptItem:
    return PurchaseReceiptItem(
        item_id=item_id,
        receipt_id=receipt_id,
        product_id="PROD-1",
        quantity=10,
        unit_cost=Decimal("15.50"),
        item_discount_amount=Decimal("15.50"),
        item_discount_percentage=Decimal("10"),
        line_total=Decimal("139.50"),
    )


@pytest.fixture
def workbook_store(master_workbook_path: Path) -> data_manager.WorkbookStore:
    return data_manager.WorkbookStore(data_manager.open_workbook(master_workbook_path))


@pytest.fixture
def repositories(workbook_store):
    return workbook_store.repositories()


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


def test_find_config_file_respects_explicit_path(config_file: Path):
    """Supplying an explicit path should be treated as the winning answer."""

    result = data_manager.find_config_file(config_file)
    assert result == config_file


def test_find_config_file_discovers_in_parent_directories(tmp_path, monkeypatch):
    """Auto-discovery should walk up from the working directory."""

    config_file = tmp_path / "config.ini"
    config_file.write_text(_MINIMAL_CONFIG)
    nested = tmp_path / "a" / "b"
    nested.mkdir(parents=True)
    monkeypatch.chdir(nested)

    result = data_manager.find_config_file()
    assert result == config_file


def test_find_config_file_raises_when_missing(tmp_path, monkeypatch):
    """Absent configuration should surface a clear FileNotFoundError."""

    monkeypatch.chdir(tmp_path)
    with pytest.raises(FileNotFoundError):
        data_manager.find_config_file()


def test_read_config_loads_sections(config_file: Path):
    """read_config should return a populated ConfigParser."""

    parser = data_manager.read_config(config_file)
    assert parser.get("System", "StoreName") == "Test Store"
    assert parser.get("Defaults", "DefaultUser") == DEFAULT_USER_ID


def test_read_config_missing_file_raises(tmp_path):
    """Missing files should propagate a FileNotFoundError."""

    with pytest.raises(FileNotFoundError):
        data_manager.read_config(tmp_path / "not_there.ini")


def test_parse_settings_resolves_relative_paths(config_factory):
    """Relative DataFile entries should be anchored to the config location."""

    bundle = config_factory(make_relative=True)
    parser = data_manager.read_config(bundle.config_path)

    settings = data_manager.parse_settings(parser, base_path=bundle.config_path.parent)

    assert settings.data_file == bundle.workbook_path.resolve()
    assert settings.default_user_id == DEFAULT_USER_ID


def test_parse_settings_applies_defaults():
    """Optional sections should fall back to the package defaults."""

    settings = data_manager.parse_settings(_parser(_MINIMAL_CONFIG), base_path=Path("/srv"))

    assert settings.number_prefix == constants.RECEIPT_NUMBER_PREFIX
    assert settings.number_attempts == constants.DEFAULT_NUMBER_ATTEMPTS
    assert settings.lock_timeout == constants.DEFAULT_LOCK_TIMEOUT
    assert settings.integration_workers == constants.DEFAULT_INTEGRATION_WORKERS
    assert settings.default_reorder_level == constants.DEFAULT_REORDER_LEVEL
    assert settings.default_max_level == constants.DEFAULT_MAX_LEVEL


def test_parse_settings_reads_optional_sections():
    """[Receipts] and [Inventory] entries should override the defaults."""

    text = _MINIMAL_CONFIG + (
        "[Receipts]\nNumberPrefix = GRN\nNumberAttempts = 3\nLockTimeout = 2.5\nIntegrationWorkers = 8\n"
        "[Inventory]\nDefaultReorderLevel = 5\nDefaultMaxLevel = 40\n"
    )

    settings = data_manager.parse_settings(_parser(text))

    assert settings.number_prefix == "GRN"
    assert settings.number_attempts == 3
    assert settings.lock_timeout == 2.5
    assert settings.integration_workers == 8
    assert (settings.default_reorder_level, settings.default_max_level) == (5, 40)


def test_parse_settings_requires_default_user():
    """A missing [Defaults] section should raise KeyError."""

    with pytest.raises(KeyError):
        data_manager.parse_settings(_parser("[System]\nDataFile = x.xlsx\nStoreName = s\nSchemaVersion = 1.0.0\n"))


@pytest.mark.parametrize(
    "extra",
    [
        "[Receipts]\nNumberAttempts = 0\n",
        "[Receipts]\nIntegrationWorkers = 0\n",
        "[Receipts]\nLockTimeout = 0\n",
        "[Inventory]\nDefaultReorderLevel = 50\nDefaultMaxLevel = 10\n",
    ],
)
def test_parse_settings_rejects_out_of_range_values(extra):
    with pytest.raises(ValueError):
        data_manager.parse_settings(_parser(_MINIMAL_CONFIG + extra))


# ---------------------------------------------------------------------------
# Workbook lifecycle
# ---------------------------------------------------------------------------


def test_open_workbook_missing_file_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        data_manager.open_workbook(tmp_path / "missing.xlsx")


def test_open_workbook_requires_every_sheet(tmp_path):
    """A workbook lacking one of the managed sheets should be rejected."""

    path = tmp_path / "partial.xlsx"
    workbook = openpyxl.Workbook()
    workbook.active.title = SheetName.SUPPLIERS.value
    workbook.save(path)

    with pytest.raises(KeyError, match="PurchaseReceipts"):
        data_manager.open_workbook(path)


def test_locate_row_unknown_column_raises(master_workbook_path):
    workbook = data_manager.open_workbook(master_workbook_path)
    with pytest.raises(KeyError):
        data_manager.locate_row(workbook, SheetName.RECEIPTS.value, "Nope", "x")


def test_append_row_after_delete_reuses_freed_rows(master_workbook_path):
    """Rows appended after a deletion should land directly below the data."""

    workbook = data_manager.open_workbook(master_workbook_path)
    sheet_name = SheetName.SUPPLIERS.value
    data_manager.append_row(workbook, sheet_name, ["S1", "One", True])
    data_manager.append_row(workbook, sheet_name, ["S2", "Two", True])
    workbook[sheet_name].delete_rows(2, 2)

    index = data_manager.append_row(workbook, sheet_name, ["S3", "Three", True])

    assert index == 2
    assert [row for _, row in data_manager.iter_rows(workbook, sheet_name)] == [("S3", "Three", True)]


# ---------------------------------------------------------------------------
# Repositories
# ---------------------------------------------------------------------------


def test_receipt_round_trip_through_sheet(repositories):
    """A stored receipt should read back with identical values."""

    receipt = _receipt()
    repositories.receipts.create(receipt)

    assert repositories.receipts.get("R-1") == receipt
    assert repositories.receipts.get_by_number("PR2024030001") == receipt


def test_receipt_create_rejects_duplicate_number(repositories):
    repositories.receipts.create(_receipt())

    with pytest.raises(errors.DuplicateReceiptNumber):
        repositories.receipts.create(_receipt(receipt_id="R-2"))


def test_receipt_update_checks_version(repositories):
    """update should bump the version and refuse stale writers."""

    stored = repositories.receipts.create(_receipt())

    updated = repositories.receipts.update(_receipt(notes="edited"))

    assert updated.version == stored.version + 1
    assert repositories.receipts.get("R-1").notes == "edited"
    with pytest.raises(errors.ConcurrentModificationError):
        repositories.receipts.update(_receipt(notes="stale"))


def test_receipt_delete_cascades_to_items(repositories):
    repositories.receipts.create(_receipt())
    repositories.receipts.create(_receipt(receipt_id="R-2", number="PR2024030002"))
    repositories.receipts.create_item(_receipt_item("I-1", "R-1"))
    repositories.receipts.create_item(_receipt_item("I-2", "R-2"))
    repositories.receipts.create_item(_receipt_item("I-3", "R-1"))

    repositories.receipts.delete("R-1")

    assert repositories.receipts.get("R-1") is None
    assert [item.item_id for item in repositories.receipts.list_items("R-2")] == ["I-2"]
    assert repositories.receipts.list_items("R-1") == []
    assert repositories.receipts.count() == 1


def test_latest_number_only_counts_four_digit_suffixes(repositories):
    repositories.receipts.create(_receipt(number="PR2024030007"))
    repositories.receipts.create(_receipt(receipt_id="R-2", number="PR2024030012"))
    repositories.receipts.create(_receipt(receipt_id="R-3", number="PR202403ZZZZ"))
    repositories.receipts.create(_receipt(receipt_id="R-4", number="PR2024039"))
    repositories.receipts.create(_receipt(receipt_id="R-5", number="PR20240399999"))

    assert repositories.receipts.latest_number("PR202403") == "PR2024030012"
    assert repositories.receipts.latest_number("PR202404") is None


def test_search_and_filters(repositories):
    repositories.receipts.create(_receipt())
    repositories.receipts.create(
        _receipt(receipt_id="R-2", number="PR2024030002", supplier_id="SUP-2", status=ReceiptStatus.RECEIVED)
    )

    assert [r.receipt_id for r in repositories.receipts.search("bill-9")] == ["R-1", "R-2"]
    assert [r.receipt_id for r in repositories.receipts.list_by_supplier("SUP-2")] == ["R-2"]
    assert [r.receipt_id for r in repositories.receipts.list_by_status(ReceiptStatus.RECEIVED)] == ["R-2"]
    assert [r.receipt_id for r in repositories.receipts.list(limit=1, offset=1)] == ["R-2"]


def test_inventory_create_and_increment(repositories):
    repositories.inventory.create(
        InventoryRecord(inventory_id="INV-1", product_id="PROD-1", quantity=4, reorder_level=10, max_level=100)
    )

    record = repositories.inventory.increment("PROD-1", 6)

    assert record.quantity == 10
    assert record.is_low_stock
    with pytest.raises(errors.ConflictError):
        repositories.inventory.create(
            InventoryRecord(inventory_id="INV-2", product_id="PROD-1", quantity=1, reorder_level=1, max_level=2)
        )
    with pytest.raises(errors.MissingReferenceError):
        repositories.inventory.increment("PROD-404", 1)


def test_supplier_add_overwrites_existing_row(repositories):
    repositories.suppliers.add(Supplier("SUP-1", "Acme"))
    repositories.suppliers.add(Supplier("SUP-1", "Acme", is_active=False))

    assert repositories.suppliers.get("SUP-1").is_active is False


# ---------------------------------------------------------------------------
# Unit of work and persistence
# ---------------------------------------------------------------------------


def test_atomic_restores_sheets_on_failure(workbook_store, repositories):
    """Every write inside a failed block should be undone."""

    repositories.receipts.create(_receipt())

    with pytest.raises(RuntimeError):
        with workbook_store.atomic():
            repositories.receipts.create(_receipt(receipt_id="R-2", number="PR2024030002"))
            repositories.receipts.create_item(_receipt_item("I-9", "R-2"))
            repositories.receipts.delete("R-1")
            raise RuntimeError("abort")

    assert [r.receipt_id for r in repositories.receipts.list()] == ["R-1"]
    assert repositories.receipts.get_item("I-9") is None

    repositories.receipts.create(_receipt(receipt_id="R-3", number="PR2024030003"))
    assert [r.receipt_id for r in repositories.receipts.list()] == ["R-1", "R-3"]


def test_nested_atomic_blocks_join_outer_transaction(workbook_store, repositories):
    with pytest.raises(RuntimeError):
        with workbook_store.atomic():
            repositories.receipts.create(_receipt())
            with workbook_store.atomic():
                repositories.receipts.create_item(_receipt_item())
            raise RuntimeError("abort")

    assert repositories.receipts.count() == 0
    assert repositories.receipts.get_item("I-1") is None


def test_saved_workbook_reloads_with_same_values(master_workbook_path):
    """Values written through the store should survive save and reload."""

    store = data_manager.WorkbookStore(data_manager.open_workbook(master_workbook_path))
    repositories = store.repositories()
    receipt = repositories.receipts.create(_receipt())
    item = repositories.receipts.create_item(_receipt_item())
    data_manager.save_workbook(store.workbook, master_workbook_path)

    reloaded = data_manager.WorkbookStore(data_manager.refresh_workbook(master_workbook_path)).repositories()

    assert reloaded.receipts.get("R-1") == receipt
    assert reloaded.receipts.get_item("I-1") == item


def test_sub_cent_unit_cost_survives_reload(master_workbook_path):
    """Unit costs are stored as given; only money totals are quantized."""

    store = data_manager.WorkbookStore(data_manager.open_workbook(master_workbook_path))
    item = replace(_receipt_item(), quantity=1000, unit_cost=Decimal("0.035"), line_total=Decimal("35.00"))
    repositories = store.repositories()
    repositories.receipts.create(_receipt())
    repositories.receipts.create_item(item)
    data_manager.save_workbook(store.workbook, master_workbook_path)

    reloaded = data_manager.WorkbookStore(data_manager.refresh_workbook(master_workbook_path)).repositories()

    assert reloaded.receipts.get_item("I-1").unit_cost == Decimal("0.035")


def test_unparseable_row_raises_repository_error(workbook_store, repositories):
    """A hand-edited row that no longer parses should surface as a permanent RepositoryError."""

    repositories.receipts.create(_receipt())
    columns = data_manager.header_map(workbook_store.workbook, SheetName.RECEIPTS.value)
    workbook_store.workbook[SheetName.RECEIPTS.value].cell(row=2, column=columns["Status"], value="archived")

    with pytest.raises(errors.RepositoryError) as excinfo:
        repositories.receipts.get("R-1")
    assert not excinfo.value.retryable
    assert isinstance(excinfo.value.__cause__, ValueError)


def test_missing_sheet_raises_repository_error(workbook_store, repositories):
    del workbook_store.workbook[SheetName.STOCK_BATCHES.value]

    with pytest.raises(errors.RepositoryError, match="StockBatches"):
        repositories.batches.list_by_product("PROD-1")
