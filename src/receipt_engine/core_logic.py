"""Business logic layer for the purchase-receipt engine.

This module is the receipt service: it orchestrates validation, discount and
totals calculation, the status machine, and stock integration. All I/O goes
through the repositories bundled in :class:`RuntimeContext`, so the same rules
run against the in-memory store and the Excel workbook alike.

Every mutating call holds the per-receipt lock and runs inside the
repositories' unit of work; a failure leaves storage exactly as it was.
"""

from __future__ import annotations

import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from datetime import UTC, date, datetime, time
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple, Union

from openpyxl.workbook import Workbook

from . import data_manager, log, stock
from .constants import (
    EXPECTED_SCHEMA_VERSION,
    MAX_RECEIPT_SEQUENCE,
    RECEIPT_SEQUENCE_DIGITS,
    ReceiptStatus,
)
from .discounts import calculate_totals, money, price_item
from .errors import (
    ConflictError,
    ConcurrentModificationError,
    DuplicateReceiptNumber,
    IntegrationError,
    MissingReferenceError,
    TerminalStateError,
    ValidationError,
)
from .locking import KeyedLock
from .models import (
    ZERO,
    Product,
    PurchaseReceipt,
    PurchaseReceiptItem,
    ReceiptDetails,
    Supplier,
)
from .repositories import Repositories
from .status import validate_transition
from .validation import validate_item, validate_receipt


@dataclass(frozen=True)
class RuntimeContext:
    """Container for configuration, repositories, and locks used by the BLL."""

    settings: data_manager.ConfigSettings
    repositories: Repositories
    receipt_locks: KeyedLock = field(repr=False, compare=False)
    product_locks: KeyedLock = field(repr=False, compare=False)
    workbook: Optional[Workbook] = field(default=None, repr=False, compare=False)


@dataclass(frozen=True)
class ItemCommand:
    """User intent for one line item, on creation or when added later."""

    product_id: str
    quantity: int
    unit_cost: Decimal
    item_discount_amount: Decimal = ZERO
    item_discount_percentage: Decimal = ZERO


@dataclass(frozen=True)
class ReceiptCommand:
    """User intent for creating a receipt together with its initial items."""

    supplier_id: str
    created_by_id: str
    purchase_date: Optional[date]
    items: Sequence[ItemCommand] = ()
    receipt_number: Optional[str] = None
    supplier_bill_number: str = ""
    notes: str = ""
    bill_discount_amount: Decimal = ZERO
    bill_discount_percentage: Decimal = ZERO


@dataclass(frozen=True)
class ReceiptUpdateCommand:
    """Partial header update; ``None`` leaves a field unchanged.

    ``expected_version`` lets a caller that read the receipt earlier reject
    the update if someone else changed it in between.
    """

    receipt_id: str
    supplier_id: Optional[str] = None
    purchase_date: Optional[date] = None
    receipt_number: Optional[str] = None
    supplier_bill_number: Optional[str] = None
    notes: Optional[str] = None
    bill_discount_amount: Optional[Decimal] = None
    bill_discount_percentage: Optional[Decimal] = None
    expected_version: Optional[int] = None


@dataclass(frozen=True)
class ItemUpdateCommand:
    """Partial line item update; ``None`` leaves a field unchanged."""

    item_id: str
    product_id: Optional[str] = None
    quantity: Optional[int] = None
    unit_cost: Optional[Decimal] = None
    item_discount_amount: Optional[Decimal] = None
    item_discount_percentage: Optional[Decimal] = None


DateBound = Union[date, datetime]


def _resolve_timestamp(candidate: Optional[datetime]) -> datetime:
    """Return ``candidate`` or the current UTC time when it is ``None``."""

    return candidate if candidate is not None else datetime.now(UTC)


def _decimal(value: object) -> Decimal:
    return Decimal(str(value)) if value is not None else ZERO


def build_context(
    settings: data_manager.ConfigSettings,
    repositories: Repositories,
    *,
    workbook: Optional[Workbook] = None,
) -> RuntimeContext:
    """Assemble a :class:`RuntimeContext` with fresh receipt and product locks.

    Args:
        settings (data_manager.ConfigSettings): Resolved settings; the lock
            timeout is taken from here.
        repositories (Repositories): Storage capabilities to inject.
        workbook (Workbook | None): Workbook backing ``repositories`` when the
            workbook store is used, so it can be persisted later.

    Returns:
        RuntimeContext: Context ready for the service functions.
    """

    return RuntimeContext(
        settings=settings,
        repositories=repositories,
        receipt_locks=KeyedLock("receipt", timeout=settings.lock_timeout),
        product_locks=KeyedLock("product", timeout=settings.lock_timeout),
        workbook=workbook,
    )


def load_runtime_context(config_path: Optional[Path] = None) -> RuntimeContext:
    """Load configuration settings and a workbook-backed context.

    The helper resolves ``config.ini``, parses settings, opens the Excel
    workbook, and wires the workbook repositories into a new
    :class:`RuntimeContext`.

    Args:
        config_path (Path | None): Optional override path for the configuration
            file. When omitted the data layer performs its upward search from
            the current working directory.

    Returns:
        RuntimeContext: Fully populated context ready for orchestration
            functions.

    Raises:
        FileNotFoundError: If the configuration file or workbook cannot be
            located.
        KeyError: When mandatory configuration options are missing.
    """
    located_config = data_manager.find_config_file(config_path)
    resolved_config = Path(located_config).expanduser().resolve()
    parser = data_manager.read_config(resolved_config)
    settings = data_manager.parse_settings(parser, base_path=resolved_config.parent)
    workbook = data_manager.open_workbook(settings.data_file)
    store = data_manager.WorkbookStore(workbook)
    log.info("Loaded runtime context for workbook '%s'", settings.data_file)
    return build_context(settings, store.repositories(), workbook=workbook)


def ensure_schema_version(context: RuntimeContext) -> None:
    """Validate workbook compatibility before mutating state.

    Args:
        context (RuntimeContext): Runtime context containing the resolved
            settings.

    Raises:
        RuntimeError: If the schema version declared in the configuration does
            not match ``EXPECTED_SCHEMA_VERSION``.
    """
    if context.settings.schema_version != EXPECTED_SCHEMA_VERSION:
        log.error(
            "Workbook schema mismatch: expected %s, found %s",
            EXPECTED_SCHEMA_VERSION,
            context.settings.schema_version,
        )
        raise RuntimeError(
            "Workbook schema mismatch: expected %s, found %s"
            % (EXPECTED_SCHEMA_VERSION, context.settings.schema_version)
        )

    log.debug("Schema version '%s' validated", context.settings.schema_version)


def persist_context(context: RuntimeContext) -> None:
    """Persist in-memory workbook changes to the configured data file.

    Contexts without a workbook (the in-memory store) have nothing to save.
    """
    if context.workbook is None:
        log.debug("Context has no workbook; nothing to persist")
        return
    data_manager.save_workbook(
        context.workbook,
        destination=context.settings.data_file,
    )
    log.info("Persisted workbook '%s'", context.settings.data_file)


def refresh_context(context: RuntimeContext) -> RuntimeContext:
    """Reload the workbook to discard unsaved modifications.

    Args:
        context (RuntimeContext): Runtime context whose settings should be
            reused.

    Returns:
        RuntimeContext: Fresh context over a newly opened workbook.

    Raises:
        FileNotFoundError: If the backing workbook cannot be reloaded.
    """
    workbook = data_manager.refresh_workbook(context.settings.data_file)
    store = data_manager.WorkbookStore(workbook)
    log.info("Reloaded workbook '%s'", context.settings.data_file)
    return build_context(context.settings, store.repositories(), workbook=workbook)


@contextmanager
def _receipt_scope(context: RuntimeContext, receipt_id: str) -> Iterator[None]:
    """Hold the receipt lock and run the block as one unit of work."""

    with context.receipt_locks.hold(receipt_id):
        with context.repositories.unit_of_work.atomic():
            yield


def _require_receipt(context: RuntimeContext, receipt_id: str) -> PurchaseReceipt:
    receipt = context.repositories.receipts.get(receipt_id)
    if receipt is None:
        log.warning("Receipt lookup failed for id '%s'", receipt_id)
        raise MissingReferenceError(f"Unknown receipt id: {receipt_id}")
    return receipt


def _require_item(context: RuntimeContext, item_id: str) -> PurchaseReceiptItem:
    item = context.repositories.receipts.get_item(item_id)
    if item is None:
        log.warning("Receipt item lookup failed for id '%s'", item_id)
        raise MissingReferenceError(f"Unknown receipt item id: {item_id}")
    return item


def _require_mutable(receipt: PurchaseReceipt) -> None:
    if receipt.status.is_terminal:
        log.error(
            "Attempted to modify receipt '%s' in terminal status '%s'",
            receipt.receipt_number,
            receipt.status.value,
        )
        raise TerminalStateError(
            f"Receipt {receipt.receipt_number} is {receipt.status.value} and can no longer be modified"
        )


def _require_active_supplier(context: RuntimeContext, supplier_id: str) -> Supplier:
    supplier = context.repositories.suppliers.get(supplier_id)
    if supplier is None:
        log.warning("Supplier lookup failed for id '%s'", supplier_id)
        raise MissingReferenceError(f"Unknown supplier id: {supplier_id}")
    if not supplier.is_active:
        log.error("Attempted to use inactive supplier '%s'", supplier_id)
        raise ValidationError("supplier_id", f"supplier '{supplier_id}' is inactive")
    return supplier


def _prepare_item(context: RuntimeContext, item: PurchaseReceiptItem) -> PurchaseReceiptItem:
    """Validate ``item`` against its product and return it priced."""

    product = context.repositories.products.get(item.product_id) if item.product_id else None
    validate_item(item, product)
    normalized = replace(
        item,
        unit_cost=_decimal(item.unit_cost),
        item_discount_amount=money(item.item_discount_amount),
        item_discount_percentage=_decimal(item.item_discount_percentage),
    )
    return price_item(normalized)


def _recalculate_totals(context: RuntimeContext, receipt: PurchaseReceipt) -> PurchaseReceipt:
    """Reload the receipt's items, recompute totals, and store the header."""

    items = context.repositories.receipts.list_items(receipt.receipt_id)
    return context.repositories.receipts.update(calculate_totals(receipt, items))


def _sequence_of(prefix: str, receipt_number: Optional[str]) -> int:
    if not receipt_number:
        return 0
    suffix = receipt_number[len(prefix):]
    if not receipt_number.startswith(prefix) or len(suffix) != RECEIPT_SEQUENCE_DIGITS or not suffix.isdigit():
        return 0
    return int(suffix)


def _first_free_number(context: RuntimeContext, prefix: str) -> str:
    """Scan the month for the lowest sequence not yet stored."""

    for sequence in range(1, MAX_RECEIPT_SEQUENCE + 1):
        candidate = f"{prefix}{sequence:0{RECEIPT_SEQUENCE_DIGITS}d}"
        if context.repositories.receipts.get_by_number(candidate) is None:
            log.warning("Receipt sequence for '%s' is past %d; reusing gap '%s'", prefix, MAX_RECEIPT_SEQUENCE, candidate)
            return candidate
    log.error("Receipt number sequence exhausted for prefix '%s'", prefix)
    raise ConflictError(f"Unable to generate unique receipt number for {prefix}")


def generate_receipt_number(
    context: RuntimeContext,
    when: Optional[datetime] = None,
    *,
    after: Optional[str] = None,
) -> str:
    """Return the next free receipt number for the month of ``when``.

    Args:
        context (RuntimeContext): Runtime context providing the receipt
            repository and the configured number prefix.
        when (datetime | None): Moment whose year and month form the number.
            Defaults to the current UTC time.
        after (str | None): A number just found taken; the result is placed
            past its sequence.

    Returns:
        str: Identifier formed as ``{prefix}{YYYYMM}{NNNN}``, one past the
            highest sequence already stored for that month. Once that passes
            ``MAX_RECEIPT_SEQUENCE`` the lowest unused sequence is returned.

    Raises:
        ConflictError: If every sequence of the month is taken.
    """
    when = _resolve_timestamp(when)
    prefix = f"{context.settings.number_prefix}{when.strftime('%Y%m')}"
    latest = context.repositories.receipts.latest_number(prefix)
    sequence = max(_sequence_of(prefix, latest), _sequence_of(prefix, after)) + 1
    if sequence > MAX_RECEIPT_SEQUENCE:
        return _first_free_number(context, prefix)
    return f"{prefix}{sequence:0{RECEIPT_SEQUENCE_DIGITS}d}"


def _insert_header(context: RuntimeContext, receipt: PurchaseReceipt, *, supplied_number: bool) -> PurchaseReceipt:
    """Create the header, moving past taken numbers on collisions."""

    attempts = max(1, context.settings.number_attempts)
    candidate = receipt
    taken: Optional[str] = None
    for attempt in range(1, attempts + 1):
        if not supplied_number:
            number = generate_receipt_number(context, receipt.created_at, after=taken)
            candidate = replace(receipt, receipt_number=number)
        try:
            return context.repositories.receipts.create(candidate)
        except DuplicateReceiptNumber:
            if supplied_number:
                log.error("Receipt number '%s' already exists", candidate.receipt_number)
                raise
            log.warning(
                "Receipt number '%s' was taken concurrently (attempt %d of %d)",
                candidate.receipt_number,
                attempt,
                attempts,
            )
            taken = candidate.receipt_number
    raise ConflictError(f"Unable to allocate a unique receipt number after {attempts} attempts")


def create_receipt(context: RuntimeContext, command: ReceiptCommand) -> ReceiptDetails:
    """Validate and store a new ``pending`` receipt with its initial items.

    The header is validated first, then the supplier, then every item against
    its product. Nothing is written until all checks pass. When no receipt
    number is supplied one is generated; collisions with concurrent writers are
    retried up to ``number_attempts`` times.

    Args:
        context (RuntimeContext): Runtime context providing repositories.
        command (ReceiptCommand): Structured intent describing the receipt.

    Returns:
        ReceiptDetails: The stored header and its priced items.

    Raises:
        ValidationError: If a header or item field breaks its contract, or the
            supplier or a product is inactive.
        MissingReferenceError: If the supplier or a product is unknown.
        DuplicateReceiptNumber: If a supplied receipt number is taken.
        ConflictError: If no unique number could be allocated.
    """
    timestamp = _resolve_timestamp(None)
    receipt_id = str(uuid.uuid4())
    header = PurchaseReceipt(
        receipt_id=receipt_id,
        receipt_number=command.receipt_number or "",
        supplier_id=command.supplier_id,
        status=ReceiptStatus.PENDING,
        purchase_date=command.purchase_date,
        created_by_id=command.created_by_id,
        supplier_bill_number=command.supplier_bill_number or "",
        notes=command.notes or "",
        bill_discount_amount=command.bill_discount_amount,
        bill_discount_percentage=command.bill_discount_percentage,
        created_at=timestamp,
        updated_at=timestamp,
    )
    validate_receipt(header)
    header = replace(
        header,
        bill_discount_amount=money(header.bill_discount_amount),
        bill_discount_percentage=_decimal(header.bill_discount_percentage),
    )

    with context.receipt_locks.hold(receipt_id):
        with context.repositories.unit_of_work.atomic():
            _require_active_supplier(context, command.supplier_id)
            items = [
                _prepare_item(
                    context,
                    PurchaseReceiptItem(
                        item_id=str(uuid.uuid4()),
                        receipt_id=receipt_id,
                        product_id=item.product_id,
                        quantity=item.quantity,
                        unit_cost=item.unit_cost,
                        item_discount_amount=item.item_discount_amount,
                        item_discount_percentage=item.item_discount_percentage,
                    ),
                )
                for item in command.items
            ]
            header = calculate_totals(header, items)
            stored = _insert_header(context, header, supplied_number=bool(command.receipt_number))
            stored_items = [context.repositories.receipts.create_item(item) for item in items]

    log.info(
        "Created receipt '%s' for supplier '%s' with %d item(s) (total=%s)",
        stored.receipt_number,
        stored.supplier_id,
        len(stored_items),
        stored.total_amount,
    )
    return ReceiptDetails(receipt=stored, items=stored_items)


def update_receipt(context: RuntimeContext, command: ReceiptUpdateCommand) -> PurchaseReceipt:
    """Apply a partial header update and recompute the totals.

    Args:
        context (RuntimeContext): Runtime context providing repositories.
        command (ReceiptUpdateCommand): Fields to change.

    Returns:
        PurchaseReceipt: The stored header after the update.

    Raises:
        MissingReferenceError: If the receipt or a new supplier is unknown.
        TerminalStateError: If the receipt is completed or cancelled.
        ConcurrentModificationError: If ``expected_version`` is stale.
        ValidationError: If a field breaks its contract or the receipt number
            would change.
    """
    with _receipt_scope(context, command.receipt_id):
        existing = _require_receipt(context, command.receipt_id)
        _require_mutable(existing)
        if command.expected_version is not None and command.expected_version != existing.version:
            log.warning(
                "Stale update for receipt '%s': expected version %s, stored %s",
                existing.receipt_number,
                command.expected_version,
                existing.version,
            )
            raise ConcurrentModificationError(
                f"Receipt {existing.receipt_number} changed since version {command.expected_version}"
            )
        if command.receipt_number is not None and command.receipt_number != existing.receipt_number:
            log.error("Attempted to change receipt number of '%s'", existing.receipt_number)
            raise ValidationError("receipt_number", "cannot be changed once assigned")

        changes: Dict[str, Any] = {}
        for name in (
            "supplier_id",
            "purchase_date",
            "supplier_bill_number",
            "notes",
            "bill_discount_amount",
            "bill_discount_percentage",
        ):
            value = getattr(command, name)
            if value is not None:
                changes[name] = value
        candidate = replace(existing, **changes)
        validate_receipt(candidate)
        if candidate.supplier_id != existing.supplier_id:
            _require_active_supplier(context, candidate.supplier_id)
        candidate = replace(
            candidate,
            bill_discount_amount=money(candidate.bill_discount_amount),
            bill_discount_percentage=_decimal(candidate.bill_discount_percentage),
        )
        updated = _recalculate_totals(context, candidate)

    log.info(
        "Updated receipt '%s' (%s); total=%s",
        updated.receipt_number,
        ", ".join(sorted(changes)) or "no field changes",
        updated.total_amount,
    )
    return updated


def delete_receipt(context: RuntimeContext, receipt_id: str) -> None:
    """Delete a non-terminal receipt together with its items.

    Raises:
        MissingReferenceError: If the receipt is unknown.
        TerminalStateError: If the receipt is completed or cancelled.
    """
    with _receipt_scope(context, receipt_id):
        receipt = _require_receipt(context, receipt_id)
        _require_mutable(receipt)
        context.repositories.receipts.delete(receipt_id)
    log.info("Deleted receipt '%s'", receipt.receipt_number)


def add_item(context: RuntimeContext, receipt_id: str, command: ItemCommand) -> PurchaseReceiptItem:
    """Add a line item to a receipt and recompute the receipt totals.

    Args:
        context (RuntimeContext): Runtime context providing repositories.
        receipt_id (str): Receipt receiving the item.
        command (ItemCommand): Product, quantity, cost, and discount inputs.

    Returns:
        PurchaseReceiptItem: The stored, priced item.

    Raises:
        MissingReferenceError: If the receipt or product is unknown.
        TerminalStateError: If the receipt is completed or cancelled.
        ValidationError: If the item breaks its contract or the product is
            inactive.
    """
    with _receipt_scope(context, receipt_id):
        receipt = _require_receipt(context, receipt_id)
        _require_mutable(receipt)
        item = _prepare_item(
            context,
            PurchaseReceiptItem(
                item_id=str(uuid.uuid4()),
                receipt_id=receipt_id,
                product_id=command.product_id,
                quantity=command.quantity,
                unit_cost=command.unit_cost,
                item_discount_amount=command.item_discount_amount,
                item_discount_percentage=command.item_discount_percentage,
            ),
        )
        stored = context.repositories.receipts.create_item(item)
        updated = _recalculate_totals(context, receipt)

    log.info(
        "Added item '%s' to receipt '%s' (product=%s, quantity=%s, line_total=%s); total=%s",
        stored.item_id,
        receipt.receipt_number,
        stored.product_id,
        stored.quantity,
        stored.line_total,
        updated.total_amount,
    )
    return stored


def update_item(context: RuntimeContext, command: ItemUpdateCommand) -> PurchaseReceiptItem:
    """Apply a partial line item update and recompute the receipt totals.

    Raises:
        MissingReferenceError: If the item, its receipt, or a new product is
            unknown.
        TerminalStateError: If the receipt is completed or cancelled.
        ValidationError: If the resulting item breaks its contract.
    """
    receipt_id = _require_item(context, command.item_id).receipt_id
    with _receipt_scope(context, receipt_id):
        existing = _require_item(context, command.item_id)
        receipt = _require_receipt(context, existing.receipt_id)
        _require_mutable(receipt)
        changes = {
            name: getattr(command, name)
            for name in (
                "product_id",
                "quantity",
                "unit_cost",
                "item_discount_amount",
                "item_discount_percentage",
            )
            if getattr(command, name) is not None
        }
        item = _prepare_item(context, replace(existing, **changes))
        stored = context.repositories.receipts.update_item(item)
        updated = _recalculate_totals(context, receipt)

    log.info(
        "Updated item '%s' on receipt '%s' (line_total=%s); total=%s",
        stored.item_id,
        receipt.receipt_number,
        stored.line_total,
        updated.total_amount,
    )
    return stored


def remove_item(context: RuntimeContext, item_id: str) -> PurchaseReceipt:
    """Remove a line item and return the receipt with recomputed totals.

    Raises:
        MissingReferenceError: If the item or its receipt is unknown.
        TerminalStateError: If the receipt is completed or cancelled.
    """
    receipt_id = _require_item(context, item_id).receipt_id
    with _receipt_scope(context, receipt_id):
        _require_item(context, item_id)
        receipt = _require_receipt(context, receipt_id)
        _require_mutable(receipt)
        context.repositories.receipts.delete_item(item_id)
        updated = _recalculate_totals(context, receipt)

    log.info("Removed item '%s' from receipt '%s'; total=%s", item_id, updated.receipt_number, updated.total_amount)
    return updated


def _transition(context: RuntimeContext, receipt_id: str, target: ReceiptStatus) -> PurchaseReceipt:
    with _receipt_scope(context, receipt_id):
        receipt = _require_receipt(context, receipt_id)
        validate_transition(receipt.status, target)
        updated = context.repositories.receipts.update(replace(receipt, status=target))
    log.info(
        "Receipt '%s' moved from '%s' to '%s'",
        updated.receipt_number,
        receipt.status.value,
        target.value,
    )
    return updated


def receive(context: RuntimeContext, receipt_id: str) -> PurchaseReceipt:
    """Mark a ``pending`` receipt as ``received``.

    Raises:
        MissingReferenceError: If the receipt is unknown.
        InvalidStatusTransition: If the receipt is not ``pending``.
    """
    return _transition(context, receipt_id, ReceiptStatus.RECEIVED)


def cancel(context: RuntimeContext, receipt_id: str) -> PurchaseReceipt:
    """Cancel a ``pending`` or ``received`` receipt without touching stock.

    Raises:
        MissingReferenceError: If the receipt is unknown.
        InvalidStatusTransition: If the receipt is already terminal.
    """
    return _transition(context, receipt_id, ReceiptStatus.CANCELLED)


def complete(context: RuntimeContext, receipt_id: str, *, user_id: Optional[str] = None) -> PurchaseReceipt:
    """Integrate a ``received`` receipt into stock and mark it ``completed``.

    Stock batches, ledger movements, inventory increments, and the status
    write share one unit of work. If any item fails to integrate, every write
    of the attempt is rolled back and the receipt stays ``received``.

    Args:
        context (RuntimeContext): Runtime context providing repositories,
            settings, and locks.
        receipt_id (str): Receipt to complete.
        user_id (str | None): Actor recorded on the stock movements. Defaults
            to the configured default user.

    Returns:
        PurchaseReceipt: The stored ``completed`` header.

    Raises:
        MissingReferenceError: If the receipt is unknown.
        InvalidStatusTransition: If the receipt is not ``received``.
        ValidationError: If the receipt has no items.
        IntegrationError: If stock materialization fails; ``retryable``
            reflects the underlying cause.
    """
    actor = user_id or context.settings.default_user_id
    with context.receipt_locks.hold(receipt_id):
        receipt = _require_receipt(context, receipt_id)
        validate_transition(receipt.status, ReceiptStatus.COMPLETED)
        try:
            with context.repositories.unit_of_work.atomic():
                items = context.repositories.receipts.list_items(receipt_id)
                if not items:
                    log.error("Cannot complete receipt '%s' without items", receipt.receipt_number)
                    raise ValidationError("items", "no items in purchase receipt")
                try:
                    result = stock.integrate_receipt(context, receipt, items, user_id=actor)
                except Exception as exc:
                    log.error("Stock integration failed for receipt '%s': %s", receipt.receipt_number, exc)
                    raise IntegrationError(
                        f"Stock integration failed for receipt {receipt.receipt_number}: {exc}",
                        cause=exc,
                    ) from exc
                completed = context.repositories.receipts.update(replace(receipt, status=ReceiptStatus.COMPLETED))
        except IntegrationError:
            current = context.repositories.receipts.get(receipt_id)
            log.warning(
                "Receipt '%s' left in status '%s' after failed integration",
                receipt.receipt_number,
                current.status.value if current is not None else "missing",
            )
            raise

    log.info(
        "Completed receipt '%s': %d batch(es) created by '%s'",
        completed.receipt_number,
        len(result.integrated),
        actor,
    )
    return completed


def register_supplier(
    context: RuntimeContext,
    name: str,
    *,
    supplier_id: Optional[str] = None,
    is_active: bool = True,
) -> Supplier:
    """Add a supplier reference record."""
    if not name or not name.strip():
        raise ValidationError("name", "is required")
    supplier = Supplier(supplier_id=supplier_id or str(uuid.uuid4()), name=name.strip(), is_active=is_active)
    with context.repositories.unit_of_work.atomic():
        stored = context.repositories.suppliers.add(supplier)
    log.info("Registered supplier '%s' (%s)", stored.name, stored.supplier_id)
    return stored


def register_product(
    context: RuntimeContext,
    name: str,
    *,
    product_id: Optional[str] = None,
    is_active: bool = True,
) -> Product:
    """Add a product reference record."""
    if not name or not name.strip():
        raise ValidationError("name", "is required")
    product = Product(product_id=product_id or str(uuid.uuid4()), name=name.strip(), is_active=is_active)
    with context.repositories.unit_of_work.atomic():
        stored = context.repositories.products.add(product)
    log.info("Registered product '%s' (%s)", stored.name, stored.product_id)
    return stored


def get_receipt(context: RuntimeContext, receipt_id: str) -> PurchaseReceipt:
    """Resolve a receipt by identifier.

    Raises:
        MissingReferenceError: If ``receipt_id`` is unknown.
    """
    return _require_receipt(context, receipt_id)


def get_receipt_by_number(context: RuntimeContext, receipt_number: str) -> PurchaseReceipt:
    """Resolve a receipt by its human-readable number.

    Raises:
        MissingReferenceError: If no receipt carries ``receipt_number``.
    """
    receipt = context.repositories.receipts.get_by_number(receipt_number)
    if receipt is None:
        log.warning("Receipt lookup failed for number '%s'", receipt_number)
        raise MissingReferenceError(f"Unknown receipt number: {receipt_number}")
    return receipt


def get_receipt_details(context: RuntimeContext, receipt_id: str) -> ReceiptDetails:
    """Return a receipt together with its current items."""
    receipt = _require_receipt(context, receipt_id)
    return ReceiptDetails(receipt=receipt, items=context.repositories.receipts.list_items(receipt_id))


def _check_page(limit: Optional[int], offset: int) -> None:
    if limit is not None and limit < 0:
        raise ValidationError("limit", "cannot be negative")
    if offset < 0:
        raise ValidationError("offset", "cannot be negative")


def list_receipts(context: RuntimeContext, *, limit: Optional[int] = None, offset: int = 0) -> List[PurchaseReceipt]:
    """Return receipts in storage order, optionally paginated."""
    _check_page(limit, offset)
    return context.repositories.receipts.list(limit=limit, offset=offset)


def list_receipts_by_supplier(context: RuntimeContext, supplier_id: str) -> List[PurchaseReceipt]:
    return context.repositories.receipts.list_by_supplier(supplier_id)


def list_receipts_by_status(context: RuntimeContext, status: Union[ReceiptStatus, str]) -> List[PurchaseReceipt]:
    """Return receipts currently in ``status``.

    Raises:
        ValidationError: If ``status`` is not a known receipt status.
    """
    try:
        resolved = ReceiptStatus(status)
    except ValueError as exc:
        raise ValidationError("status", f"unknown receipt status '{status}'") from exc
    return context.repositories.receipts.list_by_status(resolved)


def search_receipts(
    context: RuntimeContext,
    query: str,
    *,
    limit: Optional[int] = None,
    offset: int = 0,
) -> List[PurchaseReceipt]:
    """Case-insensitive substring search over receipt and supplier bill numbers."""
    _check_page(limit, offset)
    return context.repositories.receipts.search(query.strip(), limit=limit, offset=offset)


def count_receipts(context: RuntimeContext) -> int:
    return context.repositories.receipts.count()


def list_items(context: RuntimeContext, receipt_id: str) -> List[PurchaseReceiptItem]:
    """Return the current items of an existing receipt."""
    _require_receipt(context, receipt_id)
    return context.repositories.receipts.list_items(receipt_id)


def inventory_levels(context: RuntimeContext) -> Dict[str, int]:
    """Map each product with an inventory record to its on-hand quantity."""
    levels = {record.product_id: record.quantity for record in context.repositories.inventory.list()}
    log.debug("Collected inventory levels for %d products", len(levels))
    return levels


def low_stock_products(context: RuntimeContext) -> List[str]:
    """Return the ids of products at or below their reorder level, sorted."""
    low = sorted(record.product_id for record in context.repositories.inventory.list() if record.is_low_stock)
    if low:
        log.info("%d product(s) at or below reorder level", len(low))
    return low


def _datetime_range(start: DateBound, end: DateBound) -> Tuple[datetime, datetime]:
    """Widen plain dates to whole UTC days; pass datetimes through."""

    if not isinstance(start, datetime):
        start = datetime.combine(start, time.min, tzinfo=UTC)
    if not isinstance(end, datetime):
        end = datetime.combine(end, time.max, tzinfo=UTC)
    return start, end


def _date_range(start: DateBound, end: DateBound) -> Tuple[date, date]:
    if isinstance(start, datetime):
        start = start.date()
    if isinstance(end, datetime):
        end = end.date()
    return start, end


def receipt_summary(context: RuntimeContext, start: DateBound, end: DateBound) -> Dict[str, Any]:
    """Aggregate receipts created within ``[start, end]``.

    Args:
        context (RuntimeContext): Runtime context providing repositories.
        start (date | datetime): Inclusive lower bound on ``created_at``.
            Plain dates cover the whole UTC day.
        end (date | datetime): Inclusive upper bound on ``created_at``.

    Returns:
        dict[str, Any]: ``total_receipts``, ``total_value``, and one
            ``<status>_receipts`` count per receipt status.
    """
    lower, upper = _datetime_range(start, end)
    receipts = context.repositories.receipts.list_by_created_range(lower, upper)
    total_value = Decimal("0.00")
    counts = {status: 0 for status in ReceiptStatus}
    for receipt in receipts:
        total_value += receipt.total_amount
        counts[receipt.status] += 1

    summary: Dict[str, Any] = {"total_receipts": len(receipts), "total_value": money(total_value)}
    for status, count in counts.items():
        summary[f"{status.value}_receipts"] = count
    log.debug("Calculated receipt summary for %s..%s: %s", lower, upper, summary)
    return summary


def supplier_performance(
    context: RuntimeContext,
    supplier_id: str,
    start: DateBound,
    end: DateBound,
) -> Dict[str, Any]:
    """Summarize a supplier's receipts whose purchase date lies in ``[start, end]``.

    Every completed receipt counts as an on-time delivery; late deliveries are
    not tracked and always report zero.

    Returns:
        dict[str, Any]: ``supplier_id``, ``period_start``, ``period_end``,
            ``total_receipts``, ``total_order_value``, ``completed_receipts``,
            ``delivery_rate`` (percentage of completed receipts),
            ``on_time_deliveries``, and ``late_deliveries``.
    """
    lower, upper = _date_range(start, end)
    receipts = [
        receipt
        for receipt in context.repositories.receipts.list_by_supplier(supplier_id)
        if receipt.purchase_date is not None and lower <= receipt.purchase_date <= upper
    ]
    total_order_value = money(sum((receipt.total_amount for receipt in receipts), Decimal("0.00")))
    completed = sum(1 for receipt in receipts if receipt.status == ReceiptStatus.COMPLETED)
    delivery_rate = money(Decimal(completed) * Decimal("100") / Decimal(len(receipts))) if receipts else Decimal("0.00")
    performance = {
        "supplier_id": supplier_id,
        "period_start": lower,
        "period_end": upper,
        "total_receipts": len(receipts),
        "total_order_value": total_order_value,
        "completed_receipts": completed,
        "delivery_rate": delivery_rate,
        "on_time_deliveries": completed,
        "late_deliveries": 0,
    }
    log.debug("Calculated supplier performance for '%s': %s", supplier_id, performance)
    return performance


__all__ = [
    "RuntimeContext",
    "ItemCommand",
    "ReceiptCommand",
    "ReceiptUpdateCommand",
    "ItemUpdateCommand",
    "build_context",
    "load_runtime_context",
    "ensure_schema_version",
    "persist_context",
    "refresh_context",
    "generate_receipt_number",
    "create_receipt",
    "update_receipt",
    "delete_receipt",
    "add_item",
    "update_item",
    "remove_item",
    "receive",
    "complete",
    "cancel",
    "register_supplier",
    "register_product",
    "get_receipt",
    "get_receipt_by_number",
    "get_receipt_details",
    "list_receipts",
    "list_receipts_by_supplier",
    "list_receipts_by_status",
    "search_receipts",
    "count_receipts",
    "list_items",
    "inventory_levels",
    "low_stock_products",
    "receipt_summary",
    "supplier_performance",
]
