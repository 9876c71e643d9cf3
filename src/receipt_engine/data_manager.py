"""Data access layer for the receipt engine.

This module provides low-level helpers that read from and write to the
receipts workbook, plus repository adapters that expose the workbook through
the storage contract in :mod:`receipt_engine.repositories`. Business logic
belongs elsewhere.

The public API is designed around four responsibilities:

1. Configuration handling: finding and parsing ``config.ini``.
2. Workbook lifecycle: opening, validating, and persisting the Excel file.
3. Sheet operations: converting rows to records and locating, appending,
   replacing, or deleting individual rows.
4. Repositories: :class:`WorkbookStore` bundles one adapter per sheet and a
   unit of work that restores sheet contents when a block fails.
"""


from __future__ import annotations

import configparser
import threading
from contextlib import contextmanager
from dataclasses import dataclass, replace
from datetime import UTC, date, datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, Callable, Dict, Generic, Iterator, List, Optional, Sequence, Tuple, TypeVar

import openpyxl
from openpyxl.workbook import Workbook

from . import log
from .constants import (
    DEFAULT_INTEGRATION_WORKERS,
    DEFAULT_LOCK_TIMEOUT,
    DEFAULT_MAX_LEVEL,
    DEFAULT_NUMBER_ATTEMPTS,
    DEFAULT_REORDER_LEVEL,
    RECEIPT_NUMBER_PREFIX,
    RECEIPT_SEQUENCE_DIGITS,
    MovementType,
    ReceiptStatus,
    SheetName,
)
from .discounts import money
from .errors import (
    ConcurrentModificationError,
    ConflictError,
    DuplicateReceiptNumber,
    MissingReferenceError,
    RepositoryError,
)
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


CONFIG_FILE_NAME = "config.ini"

RecordT = TypeVar("RecordT")


@dataclass(frozen=True)
class ConfigSettings:
    """Typed representation of the ``config.ini`` settings we care about."""

    data_file: Path
    store_name: str
    schema_version: str
    default_user_id: str
    number_prefix: str = RECEIPT_NUMBER_PREFIX
    number_attempts: int = DEFAULT_NUMBER_ATTEMPTS
    lock_timeout: float = DEFAULT_LOCK_TIMEOUT
    integration_workers: int = DEFAULT_INTEGRATION_WORKERS
    default_reorder_level: int = DEFAULT_REORDER_LEVEL
    default_max_level: int = DEFAULT_MAX_LEVEL


def find_config_file(explicit_path: Optional[Path] = None) -> Path:
    """Locate the configuration file that controls how the data layer behaves.

    If the caller provides ``explicit_path`` the value is returned immediately
    without any verification. Otherwise the function walks up from the current
    working directory toward the filesystem root looking for a file named
    ``CONFIG_FILE_NAME``; the first match is considered authoritative.

    Args:
        explicit_path (Path | None): Optional path to use instead of performing
            the upward search. May be relative to the current working directory.

    Returns:
        Path: The path provided by the caller or the discovered configuration
            file.

    Raises:
        FileNotFoundError: If the search exhausts all parent directories without
            finding ``CONFIG_FILE_NAME``.
    """

    if explicit_path:
        return explicit_path

    current = Path.cwd()
    for p in (current, *current.parents):
        candidate = p / CONFIG_FILE_NAME
        if candidate.exists():
            return candidate

    raise FileNotFoundError(
        f"Configuration file not found: {CONFIG_FILE_NAME}")


def read_config(config_path: Path) -> configparser.ConfigParser:
    """Load ``config.ini`` and return a populated ``ConfigParser`` instance.

    Callers receive the parser even if individual sections are missing;
    validation of required entries happens in :func:`parse_settings`.

    Args:
        config_path (Path): Path to the configuration file, relative or
            absolute.

    Returns:
        configparser.ConfigParser: Initialized parser containing the raw
            configuration data.

    Raises:
        FileNotFoundError: If ``config_path`` does not exist after expansion and
            resolution.
    """

    config_path = config_path.expanduser().resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    parser = configparser.ConfigParser()
    parser.read(config_path)
    return parser


def parse_settings(parser: configparser.ConfigParser, *, base_path: Optional[Path] = None) -> ConfigSettings:
    """Convert a ``ConfigParser`` into strongly typed :class:`ConfigSettings`.

    ``[System]`` and ``[Defaults]`` are mandatory. ``[Receipts]`` and
    ``[Inventory]`` are optional and fall back to the package defaults.
    Relative ``DataFile`` entries are anchored to ``base_path`` (or the current
    working directory) and resolved.

    Args:
        parser (configparser.ConfigParser): Parsed configuration data.
        base_path (Path | None): Directory to use as the anchor for relative
            ``DataFile`` entries. Defaults to :func:`Path.cwd` when omitted.

    Returns:
        ConfigSettings: Immutable settings container.

    Raises:
        KeyError: If one of the required sections or options is missing from the
            configuration.
        ValueError: If an optional numeric entry is malformed or out of range.
    """

    try:
        data_file_raw = parser.get("System", "DataFile")
        store_name = parser.get("System", "StoreName")
        schema_version = parser.get("System", "SchemaVersion")
        default_user = parser.get("Defaults", "DefaultUser")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    number_prefix = parser.get("Receipts", "NumberPrefix", fallback=RECEIPT_NUMBER_PREFIX)
    number_attempts = parser.getint("Receipts", "NumberAttempts", fallback=DEFAULT_NUMBER_ATTEMPTS)
    lock_timeout = parser.getfloat("Receipts", "LockTimeout", fallback=DEFAULT_LOCK_TIMEOUT)
    integration_workers = parser.getint("Receipts", "IntegrationWorkers", fallback=DEFAULT_INTEGRATION_WORKERS)
    reorder_level = parser.getint("Inventory", "DefaultReorderLevel", fallback=DEFAULT_REORDER_LEVEL)
    max_level = parser.getint("Inventory", "DefaultMaxLevel", fallback=DEFAULT_MAX_LEVEL)

    if number_attempts < 1:
        raise ValueError("Receipts.NumberAttempts must be at least 1")
    if integration_workers < 1:
        raise ValueError("Receipts.IntegrationWorkers must be at least 1")
    if lock_timeout <= 0:
        raise ValueError("Receipts.LockTimeout must be greater than zero")
    if reorder_level < 0 or max_level < reorder_level:
        raise ValueError("Inventory levels must satisfy 0 <= DefaultReorderLevel <= DefaultMaxLevel")

    data_file_path = Path(data_file_raw)
    if not data_file_path.is_absolute():
        if base_path is None:
            base_path = Path.cwd()
        data_file_path = (base_path / data_file_path).resolve()

    return ConfigSettings(
        data_file=data_file_path,
        store_name=store_name,
        schema_version=schema_version,
        default_user_id=default_user,
        number_prefix=number_prefix,
        number_attempts=number_attempts,
        lock_timeout=lock_timeout,
        integration_workers=integration_workers,
        default_reorder_level=reorder_level,
        default_max_level=max_level,
    )


def open_workbook(data_file: Path) -> Workbook:
    """Open the receipts workbook and return a live ``openpyxl`` workbook.

    Args:
        data_file (Path): Filesystem path to the workbook.

    Returns:
        Workbook: ``openpyxl`` workbook instance backed by the provided file.

    Raises:
        FileNotFoundError: If ``data_file`` does not exist after expansion and
            resolution.
        KeyError: If one of the expected sheets is missing.
    """

    data_file = Path(data_file).expanduser().resolve()
    if not data_file.exists():
        raise FileNotFoundError(f"Workbook not found: {data_file}")

    wb = openpyxl.load_workbook(data_file)
    missing = [sheet.value for sheet in SheetName if sheet.value not in wb.sheetnames]
    if missing:
        raise KeyError(f"Workbook {data_file} is missing sheets: {', '.join(missing)}")
    return wb


def save_workbook(workbook: Workbook, destination: Path) -> None:
    """Persist the workbook to disk at an explicitly provided destination.

    Parent directories are created on demand.
    """

    dest = Path(destination).expanduser().resolve()
    dest.parent.mkdir(parents=True, exist_ok=True)
    workbook.save(dest)


def refresh_workbook(data_file: Path) -> Workbook:
    """Reload the workbook from disk, discarding any unsaved in-memory changes."""

    return open_workbook(data_file)


def header_map(workbook: Workbook, sheet_name: str) -> Dict[str, int]:
    """Map header titles of ``sheet_name`` to 1-based column indices."""

    sheet = workbook[sheet_name]
    return {cell.value: idx + 1 for idx, cell in enumerate(sheet[1])}


def locate_row(workbook: Workbook, sheet_name: str, key_column: str, key_value: str) -> Optional[int]:
    """Find a row by matching a key value within the specified worksheet.

    Args:
        workbook (Workbook): Workbook providing access to ``sheet_name``.
        sheet_name (str): Name of the worksheet to search.
        key_column (str): Header title identifying the column that stores the
            lookup key.
        key_value (str): Value to match within the key column.

    Returns:
        int | None: 1-based Excel row index when a match is found, otherwise
            ``None``.

    Raises:
        KeyError: If ``key_column`` is not present in the worksheet header.
    """

    columns = header_map(workbook, sheet_name)
    if key_column not in columns:
        raise KeyError(f"Unknown column: {key_column}")

    key_col_index = columns[key_column]
    sheet = workbook[sheet_name]
    for row_idx, row in enumerate(sheet.iter_rows(min_row=2, values_only=True), start=2):
        if row[key_col_index - 1] == key_value:
            return row_idx

    return None


def iter_rows(workbook: Workbook, sheet_name: str) -> Iterator[Tuple[int, Tuple[object, ...]]]:
    """Yield ``(row index, values)`` for every non-empty data row."""

    sheet = workbook[sheet_name]
    for row_idx, raw in enumerate(sheet.iter_rows(min_row=2, values_only=True), start=2):
        if any(cell is not None for cell in raw):
            yield row_idx, raw


def read_row(workbook: Workbook, sheet_name: str, row_index: int) -> Tuple[object, ...]:
    sheet = workbook[sheet_name]
    return next(sheet.iter_rows(min_row=row_index, max_row=row_index, values_only=True))


def write_row(workbook: Workbook, sheet_name: str, row_index: int, values: Sequence[object]) -> None:
    """Overwrite every cell of ``row_index`` with ``values`` in column order."""

    sheet = workbook[sheet_name]
    for column, value in enumerate(values, start=1):
        sheet.cell(row=row_index, column=column, value=value)


def append_row(workbook: Workbook, sheet_name: str, values: Sequence[object]) -> int:
    """Write ``values`` below the last used row and return its index.

    Rows are addressed explicitly because ``Worksheet.append`` keeps its own
    cursor, which is not rewound by ``delete_rows``.
    """

    row_index = workbook[sheet_name].max_row + 1
    write_row(workbook, sheet_name, row_index, values)
    return row_index


def _text(value: object) -> str:
    return str(value) if value is not None else ""


def _optional_text(value: object) -> Optional[str]:
    return str(value) if value not in (None, "") else None


def _decimal(value: object, default: str = "0.00") -> Decimal:
    return Decimal(str(value)) if value not in (None, "") else Decimal(default)


def _int(value: object) -> int:
    return int(value) if value not in (None, "") else 0


def _bool(value: object) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"true", "1", "yes"}
    return bool(value)


def _iso(value: Optional[date]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _parse_date(value: object) -> Optional[date]:
    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value))


def _parse_datetime(value: object) -> Optional[datetime]:
    if value in (None, ""):
        return None
    parsed = value if isinstance(value, datetime) else datetime.fromisoformat(str(value))
    return parsed if parsed.tzinfo is not None else parsed.replace(tzinfo=UTC)


def serialize_supplier(record: Supplier) -> list[object]:
    """Return ``[SupplierID, SupplierName, IsActive]``."""

    return [record.supplier_id, record.name, record.is_active]


def deserialize_supplier(raw_row: Sequence[object]) -> Supplier:
    supplier_id, name, is_active = raw_row[:3]
    return Supplier(supplier_id=str(supplier_id), name=_text(name), is_active=_bool(is_active))


def serialize_product(record: Product) -> list[object]:
    """Return ``[ProductID, ProductName, IsActive]``."""

    return [record.product_id, record.name, record.is_active]


def deserialize_product(raw_row: Sequence[object]) -> Product:
    product_id, name, is_active = raw_row[:3]
    return Product(product_id=str(product_id), name=_text(name), is_active=_bool(is_active))


def serialize_receipt(record: PurchaseReceipt) -> list[object]:
    """Convert a receipt header into the ``PurchaseReceipts`` column order.

    Monetary fields stay :class:`~decimal.Decimal`; dates and timestamps are
    stored as ISO 8601 strings so they survive a save without Excel date
    conversion.
    """

    return [
        record.receipt_id,
        record.receipt_number,
        record.supplier_id,
        record.status.value,
        _iso(record.purchase_date),
        record.supplier_bill_number,
        record.notes,
        record.bill_discount_amount,
        record.bill_discount_percentage,
        record.total_amount,
        record.created_by_id,
        _iso(record.created_at),
        _iso(record.updated_at),
        record.version,
    ]


def deserialize_receipt(raw_row: Sequence[object]) -> PurchaseReceipt:
    """Convert a raw ``PurchaseReceipts`` row into a :class:`PurchaseReceipt`."""

    (
        receipt_id,
        receipt_number,
        supplier_id,
        status,
        purchase_date,
        supplier_bill_number,
        notes,
        bill_discount_amount,
        bill_discount_percentage,
        total_amount,
        created_by_id,
        created_at,
        updated_at,
        version,
    ) = raw_row[:14]

    return PurchaseReceipt(
        receipt_id=str(receipt_id),
        receipt_number=_text(receipt_number),
        supplier_id=_text(supplier_id),
        status=ReceiptStatus(str(status)),
        purchase_date=_parse_date(purchase_date),
        created_by_id=_text(created_by_id),
        supplier_bill_number=_text(supplier_bill_number),
        notes=_text(notes),
        bill_discount_amount=money(bill_discount_amount),
        bill_discount_percentage=_decimal(bill_discount_percentage, "0"),
        total_amount=money(total_amount),
        created_at=_parse_datetime(created_at),
        updated_at=_parse_datetime(updated_at),
        version=_int(version) or 1,
    )


def serialize_receipt_item(record: PurchaseReceiptItem) -> list[object]:
    return [
        record.item_id,
        record.receipt_id,
        record.product_id,
        record.quantity,
        record.unit_cost,
        record.item_discount_amount,
        record.item_discount_percentage,
        record.line_total,
    ]


def deserialize_receipt_item(raw_row: Sequence[object]) -> PurchaseReceiptItem:
    (
        item_id,
        receipt_id,
        product_id,
        quantity,
        unit_cost,
        item_discount_amount,
        item_discount_percentage,
        line_total,
    ) = raw_row[:8]
    return PurchaseReceiptItem(
        item_id=str(item_id),
        receipt_id=_text(receipt_id),
        product_id=_text(product_id),
        quantity=_int(quantity),
        unit_cost=_decimal(unit_cost),
        item_discount_amount=money(item_discount_amount),
        item_discount_percentage=_decimal(item_discount_percentage, "0"),
        line_total=money(line_total),
    )


def serialize_stock_batch(record: StockBatch) -> list[object]:
    return [
        record.batch_id,
        record.product_id,
        record.supplier_id,
        record.quantity,
        record.available_quantity,
        record.cost_price,
        _iso(record.received_date),
        record.batch_number,
        record.notes,
        record.is_active,
    ]


def deserialize_stock_batch(raw_row: Sequence[object]) -> StockBatch:
    (
        batch_id,
        product_id,
        supplier_id,
        quantity,
        available_quantity,
        cost_price,
        received_date,
        batch_number,
        notes,
        is_active,
    ) = raw_row[:10]
    return StockBatch(
        batch_id=str(batch_id),
        product_id=_text(product_id),
        supplier_id=_optional_text(supplier_id),
        quantity=_int(quantity),
        available_quantity=_int(available_quantity),
        cost_price=_decimal(cost_price),
        received_date=_parse_date(received_date),
        batch_number=_text(batch_number),
        notes=_text(notes),
        is_active=_bool(is_active),
    )


def serialize_stock_movement(record: StockMovement) -> list[object]:
    return [
        record.movement_id,
        record.product_id,
        record.batch_id,
        record.movement_type.value,
        record.quantity,
        record.unit_cost,
        record.total_cost,
        record.reference_type,
        record.reference_id,
        record.user_id,
        record.notes,
        _iso(record.created_at),
    ]


def deserialize_stock_movement(raw_row: Sequence[object]) -> StockMovement:
    (
        movement_id,
        product_id,
        batch_id,
        movement_type,
        quantity,
        unit_cost,
        total_cost,
        reference_type,
        reference_id,
        user_id,
        notes,
        created_at,
    ) = raw_row[:12]
    return StockMovement(
        movement_id=str(movement_id),
        product_id=_text(product_id),
        batch_id=_optional_text(batch_id),
        movement_type=MovementType(str(movement_type)),
        quantity=_int(quantity),
        unit_cost=_decimal(unit_cost),
        total_cost=money(total_cost),
        reference_type=_text(reference_type),
        reference_id=_text(reference_id),
        user_id=_text(user_id),
        notes=_text(notes),
        created_at=_parse_datetime(created_at),
    )


def serialize_inventory(record: InventoryRecord) -> list[object]:
    return [
        record.inventory_id,
        record.product_id,
        record.quantity,
        record.reorder_level,
        record.max_level,
        _iso(record.updated_at),
    ]


def deserialize_inventory(raw_row: Sequence[object]) -> InventoryRecord:
    inventory_id, product_id, quantity, reorder_level, max_level, updated_at = raw_row[:6]
    return InventoryRecord(
        inventory_id=str(inventory_id),
        product_id=_text(product_id),
        quantity=_int(quantity),
        reorder_level=_int(reorder_level),
        max_level=_int(max_level),
        updated_at=_parse_datetime(updated_at),
    )


class _SheetTable(Generic[RecordT]):
    """Typed view over one worksheet keyed by its first column.

    Missing sheets or columns and rows that no longer parse surface as a
    permanent :class:`RepositoryError`.
    """

    def __init__(
        self,
        store: "WorkbookStore",
        sheet: SheetName,
        key_column: str,
        serialize: Callable[[RecordT], list[object]],
        deserialize: Callable[[Sequence[object]], RecordT],
    ) -> None:
        self._store = store
        self.sheet_name = sheet.value
        self.key_column = key_column
        self._serialize = serialize
        self._deserialize = deserialize

    @property
    def workbook(self) -> Workbook:
        return self._store.workbook

    @contextmanager
    def _access(self, action: str) -> Iterator[None]:
        try:
            yield
        except (KeyError, ValueError, TypeError) as exc:
            log.error("Sheet '%s' failed to %s: %s", self.sheet_name, action, exc)
            raise RepositoryError(f"Sheet {self.sheet_name} failed to {action}: {exc}") from exc

    def rows(self) -> List[Tuple[int, RecordT]]:
        with self._access("read rows"):
            return [(idx, self._deserialize(raw)) for idx, raw in iter_rows(self.workbook, self.sheet_name)]

    def records(self) -> List[RecordT]:
        return [record for _, record in self.rows()]

    def find_row(self, key: str, column: Optional[str] = None) -> Optional[int]:
        with self._access("locate a row"):
            return locate_row(self.workbook, self.sheet_name, column or self.key_column, key)

    def get(self, key: str, column: Optional[str] = None) -> Optional[RecordT]:
        row_idx = self.find_row(key, column)
        if row_idx is None:
            return None
        return self.read_at(row_idx)

    def read_at(self, row_idx: int) -> RecordT:
        with self._access(f"read row {row_idx}"):
            return self._deserialize(read_row(self.workbook, self.sheet_name, row_idx))

    def append(self, record: RecordT) -> RecordT:
        with self._access("append a row"):
            append_row(self.workbook, self.sheet_name, self._serialize(record))
        return record

    def overwrite(self, row_idx: int, record: RecordT) -> RecordT:
        with self._access(f"write row {row_idx}"):
            write_row(self.workbook, self.sheet_name, row_idx, self._serialize(record))
        return record

    def delete(self, row_idx: int) -> None:
        with self._access(f"delete row {row_idx}"):
            self.workbook[self.sheet_name].delete_rows(row_idx)


def _page(records: List[Any], limit: Optional[int], offset: int) -> List[Any]:
    end = None if limit is None else offset + limit
    return records[offset:end]


def _is_sequence_number(receipt_number: str, prefix: str) -> bool:
    suffix = receipt_number[len(prefix):]
    return receipt_number.startswith(prefix) and len(suffix) == RECEIPT_SEQUENCE_DIGITS and suffix.isdigit()


class WorkbookStore:
    """Serve the repository contract from an open ``openpyxl`` workbook.

    ``openpyxl`` worksheets are not thread-safe, so every sheet access goes
    through :attr:`lock`. ``atomic()`` snapshots the data rows of every sheet
    and writes them back when the block raises; nothing reaches disk until
    :func:`save_workbook` is called.
    """

    def __init__(self, workbook: Workbook) -> None:
        self.workbook = workbook
        self.lock = threading.RLock()
        self._tx_lock = threading.RLock()
        self._depth = 0
        self.suppliers = _SheetTable(self, SheetName.SUPPLIERS, "SupplierID", serialize_supplier, deserialize_supplier)
        self.products = _SheetTable(self, SheetName.PRODUCTS, "ProductID", serialize_product, deserialize_product)
        self.receipts = _SheetTable(self, SheetName.RECEIPTS, "ReceiptID", serialize_receipt, deserialize_receipt)
        self.items = _SheetTable(
            self, SheetName.RECEIPT_ITEMS, "ItemID", serialize_receipt_item, deserialize_receipt_item
        )
        self.batches = _SheetTable(
            self, SheetName.STOCK_BATCHES, "BatchID", serialize_stock_batch, deserialize_stock_batch
        )
        self.movements = _SheetTable(
            self, SheetName.STOCK_MOVEMENTS, "MovementID", serialize_stock_movement, deserialize_stock_movement
        )
        self.inventory = _SheetTable(self, SheetName.INVENTORY, "InventoryID", serialize_inventory, deserialize_inventory)

    def _snapshot(self) -> Dict[str, List[Tuple[object, ...]]]:
        with self.lock:
            return {
                sheet.value: list(self.workbook[sheet.value].iter_rows(min_row=2, values_only=True))
                for sheet in SheetName
            }

    def _restore(self, snapshot: Dict[str, List[Tuple[object, ...]]]) -> None:
        with self.lock:
            for sheet_name, rows in snapshot.items():
                sheet = self.workbook[sheet_name]
                if sheet.max_row > 1:
                    sheet.delete_rows(2, sheet.max_row - 1)
                for row in rows:
                    append_row(self.workbook, sheet_name, row)

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
                    log.info("Rolled back workbook transaction")
                raise
            finally:
                self._depth -= 1

    def repositories(self) -> Repositories:
        """Bundle workbook repositories bound to this store."""

        return Repositories(
            receipts=WorkbookReceiptRepository(self),
            suppliers=WorkbookSupplierRepository(self),
            products=WorkbookProductRepository(self),
            inventory=WorkbookInventoryRepository(self),
            batches=WorkbookStockBatchRepository(self),
            movements=WorkbookStockMovementRepository(self),
            unit_of_work=self,
        )


class WorkbookReceiptRepository:
    def __init__(self, store: WorkbookStore) -> None:
        self._store = store

    def create(self, receipt: PurchaseReceipt) -> PurchaseReceipt:
        with self._store.lock:
            if self._store.receipts.find_row(receipt.receipt_number, "ReceiptNumber") is not None:
                raise DuplicateReceiptNumber(f"Receipt number already exists: {receipt.receipt_number}")
            return self._store.receipts.append(receipt)

    def get(self, receipt_id: str) -> Optional[PurchaseReceipt]:
        with self._store.lock:
            return self._store.receipts.get(receipt_id)

    def get_by_number(self, receipt_number: str) -> Optional[PurchaseReceipt]:
        with self._store.lock:
            return self._store.receipts.get(receipt_number, "ReceiptNumber")

    def update(self, receipt: PurchaseReceipt) -> PurchaseReceipt:
        with self._store.lock:
            row_idx = self._store.receipts.find_row(receipt.receipt_id)
            if row_idx is None:
                raise MissingReferenceError(f"Unknown receipt id: {receipt.receipt_id}")
            stored = self._store.receipts.read_at(row_idx)
            if stored.version != receipt.version:
                raise ConcurrentModificationError(
                    f"Receipt '{receipt.receipt_id}' was modified concurrently "
                    f"(stored version {stored.version}, incoming {receipt.version})"
                )
            updated = replace(receipt, version=receipt.version + 1, updated_at=datetime.now(UTC))
            return self._store.receipts.overwrite(row_idx, updated)

    def delete(self, receipt_id: str) -> None:
        with self._store.lock:
            item_rows = [idx for idx, item in self._store.items.rows() if item.receipt_id == receipt_id]
            for row_idx in sorted(item_rows, reverse=True):
                self._store.items.delete(row_idx)
            row_idx = self._store.receipts.find_row(receipt_id)
            if row_idx is not None:
                self._store.receipts.delete(row_idx)

    def list(self, *, limit: Optional[int] = None, offset: int = 0) -> List[PurchaseReceipt]:
        with self._store.lock:
            return _page(self._store.receipts.records(), limit, offset)

    def list_by_supplier(self, supplier_id: str) -> List[PurchaseReceipt]:
        with self._store.lock:
            return [r for r in self._store.receipts.records() if r.supplier_id == supplier_id]

    def list_by_status(self, status: ReceiptStatus) -> List[PurchaseReceipt]:
        with self._store.lock:
            return [r for r in self._store.receipts.records() if r.status == status]

    def list_by_created_range(self, start: datetime, end: datetime) -> List[PurchaseReceipt]:
        with self._store.lock:
            return [
                r
                for r in self._store.receipts.records()
                if r.created_at is not None and start <= r.created_at <= end
            ]

    def search(self, query: str, *, limit: Optional[int] = None, offset: int = 0) -> List[PurchaseReceipt]:
        needle = query.casefold()
        with self._store.lock:
            matches = [
                r
                for r in self._store.receipts.records()
                if needle in r.receipt_number.casefold() or needle in r.supplier_bill_number.casefold()
            ]
        return _page(matches, limit, offset)

    def count(self) -> int:
        with self._store.lock:
            return len(self._store.receipts.rows())

    def latest_number(self, prefix: str) -> Optional[str]:
        with self._store.lock:
            numbers = [
                r.receipt_number
                for r in self._store.receipts.records()
                if _is_sequence_number(r.receipt_number, prefix)
            ]
        return max(numbers) if numbers else None

    def create_item(self, item: PurchaseReceiptItem) -> PurchaseReceiptItem:
        with self._store.lock:
            return self._store.items.append(item)

    def get_item(self, item_id: str) -> Optional[PurchaseReceiptItem]:
        with self._store.lock:
            return self._store.items.get(item_id)

    def list_items(self, receipt_id: str) -> List[PurchaseReceiptItem]:
        with self._store.lock:
            return [i for i in self._store.items.records() if i.receipt_id == receipt_id]

    def update_item(self, item: PurchaseReceiptItem) -> PurchaseReceiptItem:
        with self._store.lock:
            row_idx = self._store.items.find_row(item.item_id)
            if row_idx is None:
                raise MissingReferenceError(f"Unknown item id: {item.item_id}")
            return self._store.items.overwrite(row_idx, item)

    def delete_item(self, item_id: str) -> None:
        with self._store.lock:
            row_idx = self._store.items.find_row(item_id)
            if row_idx is not None:
                self._store.items.delete(row_idx)


class WorkbookSupplierRepository:
    def __init__(self, store: WorkbookStore) -> None:
        self._store = store

    def get(self, supplier_id: str) -> Optional[Supplier]:
        with self._store.lock:
            return self._store.suppliers.get(supplier_id)

    def add(self, supplier: Supplier) -> Supplier:
        with self._store.lock:
            row_idx = self._store.suppliers.find_row(supplier.supplier_id)
            if row_idx is not None:
                return self._store.suppliers.overwrite(row_idx, supplier)
            return self._store.suppliers.append(supplier)


class WorkbookProductRepository:
    def __init__(self, store: WorkbookStore) -> None:
        self._store = store

    def get(self, product_id: str) -> Optional[Product]:
        with self._store.lock:
            return self._store.products.get(product_id)

    def add(self, product: Product) -> Product:
        with self._store.lock:
            row_idx = self._store.products.find_row(product.product_id)
            if row_idx is not None:
                return self._store.products.overwrite(row_idx, product)
            return self._store.products.append(product)


class WorkbookInventoryRepository:
    def __init__(self, store: WorkbookStore) -> None:
        self._store = store

    def get_by_product(self, product_id: str) -> Optional[InventoryRecord]:
        with self._store.lock:
            return self._store.inventory.get(product_id, "ProductID")

    def create(self, record: InventoryRecord) -> InventoryRecord:
        with self._store.lock:
            if self._store.inventory.find_row(record.product_id, "ProductID") is not None:
                raise ConflictError(f"Inventory record already exists for product {record.product_id}")
            return self._store.inventory.append(record)

    def increment(self, product_id: str, quantity: int) -> InventoryRecord:
        with self._store.lock:
            row_idx = self._store.inventory.find_row(product_id, "ProductID")
            if row_idx is None:
                raise MissingReferenceError(f"No inventory record for product {product_id}")
            current = self._store.inventory.read_at(row_idx)
            updated = replace(current, quantity=current.quantity + quantity, updated_at=datetime.now(UTC))
            return self._store.inventory.overwrite(row_idx, updated)

    def list(self) -> List[InventoryRecord]:
        with self._store.lock:
            return self._store.inventory.records()


class WorkbookStockBatchRepository:
    def __init__(self, store: WorkbookStore) -> None:
        self._store = store

    def create(self, batch: StockBatch) -> StockBatch:
        with self._store.lock:
            return self._store.batches.append(batch)

    def find_by_batch_number(self, product_id: str, batch_number: str) -> Optional[StockBatch]:
        with self._store.lock:
            for batch in self._store.batches.records():
                if batch.product_id == product_id and batch.batch_number == batch_number:
                    return batch
            return None

    def list_by_product(self, product_id: str) -> List[StockBatch]:
        with self._store.lock:
            return [b for b in self._store.batches.records() if b.product_id == product_id]


class WorkbookStockMovementRepository:
    def __init__(self, store: WorkbookStore) -> None:
        self._store = store

    def append(self, movement: StockMovement) -> StockMovement:
        with self._store.lock:
            return self._store.movements.append(movement)

    def list_by_reference(self, reference_type: str, reference_id: str) -> List[StockMovement]:
        with self._store.lock:
            return [
                m
                for m in self._store.movements.records()
                if m.reference_type == reference_type and m.reference_id == reference_id
            ]


__all__ = [
    "CONFIG_FILE_NAME",
    "ConfigSettings",
    "find_config_file",
    "read_config",
    "parse_settings",
    "open_workbook",
    "save_workbook",
    "refresh_workbook",
    "header_map",
    "locate_row",
    "iter_rows",
    "read_row",
    "write_row",
    "append_row",
    "serialize_supplier",
    "deserialize_supplier",
    "serialize_product",
    "deserialize_product",
    "serialize_receipt",
    "deserialize_receipt",
    "serialize_receipt_item",
    "deserialize_receipt_item",
    "serialize_stock_batch",
    "deserialize_stock_batch",
    "serialize_stock_movement",
    "deserialize_stock_movement",
    "serialize_inventory",
    "deserialize_inventory",
    "WorkbookStore",
    "WorkbookReceiptRepository",
    "WorkbookSupplierRepository",
    "WorkbookProductRepository",
    "WorkbookInventoryRepository",
    "WorkbookStockBatchRepository",
    "WorkbookStockMovementRepository",
]
