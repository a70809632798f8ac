"""Data access layer for Sari POS.

This module is the only place that knows how records are stored. Business
logic talks to a :class:`PersistenceAdapter` and exchanges flat records
(dictionaries of primitive values keyed by column name).

The public API covers three responsibilities:

1. Configuration handling: finding and parsing ``config.ini``.
2. Adapters: an in-memory adapter for tests and embedding, and a workbook
   adapter that keeps every collection in one ``openpyxl`` workbook.
3. Record codecs: converting domain records to and from flat records.
"""


from __future__ import annotations

import configparser
import json
import os
import tempfile
import zipfile
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Union

import openpyxl
from openpyxl.styles import Font
from openpyxl.utils.exceptions import IllegalCharacterError, InvalidFileException
from openpyxl.workbook import Workbook

from . import log
from .constants import (
    DEFAULT_LOW_STOCK_THRESHOLD,
    DEFAULT_RECEIPT_PREFIX,
    AdjustmentType,
    CollectionKey,
    DiscountType,
    PaymentMethod,
)
from .errors import IOFailure
from .models import BusinessSettings, Product, Sale, SaleLine, StockAdjustment


CONFIG_FILE_NAME = "config.ini"

Record = Dict[str, Any]
KeyLike = Union[CollectionKey, str]

SHEET_NAMES: Mapping[CollectionKey, str] = {
    CollectionKey.PRODUCTS: "Products",
    CollectionKey.SALES: "Sales",
    CollectionKey.SETTINGS: "Settings",
    CollectionKey.STOCK_ADJUSTMENTS: "StockAdjustments",
}

SHEET_COLUMNS: Mapping[CollectionKey, Sequence[str]] = {
    CollectionKey.PRODUCTS: [
        "ProductID",
        "Name",
        "Category",
        "Price",
        "Stock",
        "Barcode",
        "Cost",
        "CreatedAt",
        "UpdatedAt",
    ],
    CollectionKey.SALES: [
        "SaleID",
        "ReceiptNumber",
        "ReceiptPrefix",
        "Lines",
        "Subtotal",
        "DiscountAmount",
        "DiscountType",
        "VatAmount",
        "Total",
        "PaymentMethod",
        "AmountTendered",
        "Change",
        "CashierID",
        "CashierName",
        "Timestamp",
    ],
    CollectionKey.SETTINGS: [
        "BusinessName",
        "Address",
        "TIN",
        "PermitNumber",
        "ContactNumber",
        "Email",
        "ReceiptFooter",
        "VatEnabled",
        "VatRate",
    ],
    CollectionKey.STOCK_ADJUSTMENTS: [
        "AdjustmentID",
        "ProductID",
        "ProductName",
        "AdjustmentType",
        "Quantity",
        "Reason",
        "ActorID",
        "Timestamp",
    ],
}


@dataclass(frozen=True)
class ConfigSettings:
    """Typed representation of the ``config.ini`` settings we care about."""

    data_file: Path
    store_name: str
    schema_version: str
    default_cashier_id: str
    low_stock_threshold: int = DEFAULT_LOW_STOCK_THRESHOLD
    receipt_prefix: str = DEFAULT_RECEIPT_PREFIX


def find_config_file(explicit_path: Optional[Path] = None) -> Path:
    """Locate the configuration file that controls the data layer.

    An explicit path is returned as-is. Otherwise the function walks up from
    the current working directory and returns the first ``CONFIG_FILE_NAME``
    it finds.

    Args:
        explicit_path (Path | None): Optional path to use instead of searching.

    Returns:
        Path: The explicit path or the discovered configuration file.

    Raises:
        FileNotFoundError: If no configuration file exists on the way to the
            filesystem root.
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
    """Load ``config.ini`` and return a populated ``ConfigParser``.

    Raises:
        FileNotFoundError: If ``config_path`` does not exist after expansion
            and resolution.
    """

    config_path = Path(config_path).expanduser().resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    parser = configparser.ConfigParser()
    parser.read(config_path)
    return parser


def parse_settings(parser: configparser.ConfigParser, *, base_path: Optional[Path] = None) -> ConfigSettings:
    """Convert a ``ConfigParser`` into :class:`ConfigSettings`.

    Relative ``DataFile`` entries are anchored to ``base_path`` (the current
    working directory when omitted) and resolved to an absolute path.
    ``LowStockThreshold`` and ``ReceiptPrefix`` are optional.

    Args:
        parser (configparser.ConfigParser): Parsed configuration data.
        base_path (Path | None): Directory used to resolve relative paths.

    Returns:
        ConfigSettings: Immutable settings container.

    Raises:
        KeyError: If a required section or option is missing.
        ValueError: If ``LowStockThreshold`` is not an integer.
    """

    try:
        data_file_raw = parser.get("System", "DataFile")
        store_name = parser.get("System", "StoreName")
        schema_version = parser.get("System", "SchemaVersion")
        default_cashier = parser.get("Defaults", "DefaultCashier")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    low_stock_threshold = parser.getint(
        "Defaults", "LowStockThreshold", fallback=DEFAULT_LOW_STOCK_THRESHOLD)
    receipt_prefix = parser.get(
        "Defaults", "ReceiptPrefix", fallback=DEFAULT_RECEIPT_PREFIX)

    data_file_path = Path(data_file_raw)
    if not data_file_path.is_absolute():
        if base_path is None:
            base_path = Path.cwd()
        data_file_path = (base_path / data_file_path).resolve()

    return ConfigSettings(
        data_file=data_file_path,
        store_name=store_name,
        schema_version=schema_version,
        default_cashier_id=default_cashier,
        low_stock_threshold=low_stock_threshold,
        receipt_prefix=receipt_prefix,
    )


# ---------------------------------------------------------------------------
# Adapters
# ---------------------------------------------------------------------------


class PersistenceAdapter:
    """Storage boundary used by the store for durable load and save.

    Subclasses implement :meth:`load` and :meth:`save`. :meth:`save_batch`
    has a generic implementation that restores already-written collections
    when a later write fails; adapters able to write several collections in
    one step should override it.
    """

    def load(self, key: KeyLike) -> List[Record]:
        """Return the persisted records for ``key``, or ``[]`` on first use."""
        raise NotImplementedError

    def save(self, key: KeyLike, records: Iterable[Record]) -> None:
        """Replace the persisted records for ``key``.

        Raises:
            IOFailure: If the write did not complete.
        """
        raise NotImplementedError

    def save_batch(self, changes: Mapping[KeyLike, Iterable[Record]]) -> None:
        """Replace several collections so that either all or none change.

        Raises:
            IOFailure: If any write failed. Collections written earlier in the
                batch have been restored by the time the error propagates.
        """

        written: Dict[CollectionKey, List[Record]] = {}
        try:
            for key, records in changes.items():
                collection = CollectionKey(key)
                previous = self.load(collection)
                self.save(collection, records)
                written[collection] = previous
        except IOFailure:
            log.error("Batch save failed; restoring %d collection(s)", len(written))
            for collection, previous in written.items():
                self.save(collection, previous)
            raise


class InMemoryAdapter(PersistenceAdapter):
    """Adapter keeping collections in process memory.

    Records are copied on the way in and out so callers can never mutate the
    stored state through a reference they hold.
    """

    def __init__(self, initial: Optional[Mapping[KeyLike, Iterable[Record]]] = None) -> None:
        self._collections: Dict[CollectionKey, List[Record]] = {}
        for key, records in (initial or {}).items():
            self._collections[CollectionKey(key)] = [dict(record) for record in records]

    def load(self, key: KeyLike) -> List[Record]:
        return [dict(record) for record in self._collections.get(CollectionKey(key), [])]

    def save(self, key: KeyLike, records: Iterable[Record]) -> None:
        self._collections[CollectionKey(key)] = [dict(record) for record in records]

    def save_batch(self, changes: Mapping[KeyLike, Iterable[Record]]) -> None:
        staged = {CollectionKey(key): [dict(record) for record in records] for key, records in changes.items()}
        self._collections.update(staged)


class WorkbookAdapter(PersistenceAdapter):
    """Adapter storing every collection as a sheet of one Excel workbook.

    The workbook is read once when the adapter is created. Each save renders
    a complete workbook to a temporary file next to ``data_file`` and moves it
    into place with :func:`os.replace`, so readers never observe a partially
    written file.
    """

    def __init__(self, data_file: Path) -> None:
        self.data_file = Path(data_file).expanduser().resolve()
        self._collections = read_workbook(self.data_file)

    def load(self, key: KeyLike) -> List[Record]:
        return [dict(record) for record in self._collections[CollectionKey(key)]]

    def save(self, key: KeyLike, records: Iterable[Record]) -> None:
        self.save_batch({key: records})

    def save_batch(self, changes: Mapping[KeyLike, Iterable[Record]]) -> None:
        staged = dict(self._collections)
        for key, records in changes.items():
            staged[CollectionKey(key)] = [dict(record) for record in records]
        write_workbook(self.data_file, staged)
        self._collections = staged


def build_workbook(collections: Mapping[CollectionKey, Sequence[Record]]) -> Workbook:
    """Render ``collections`` into a new workbook with one sheet each.

    Every sheet starts with a bold header row; columns follow
    :data:`SHEET_COLUMNS`.
    """

    workbook = openpyxl.Workbook()
    if workbook.active and workbook.active.title == "Sheet":
        workbook.remove(workbook.active)

    bold_font = Font(bold=True)
    for key in CollectionKey:
        columns = SHEET_COLUMNS[key]
        sheet = workbook.create_sheet(title=SHEET_NAMES[key])
        for column_index, column_name in enumerate(columns, start=1):
            cell = sheet.cell(row=1, column=column_index)
            cell.value = column_name
            cell.font = bold_font
        for record in collections.get(key, []):
            sheet.append([record.get(column) for column in columns])
    return workbook


def write_workbook(destination: Path, collections: Mapping[CollectionKey, Sequence[Record]]) -> None:
    """Atomically write ``collections`` to ``destination``.

    Raises:
        IOFailure: If the workbook could not be written or moved into place.
    """

    destination = Path(destination).expanduser().resolve()
    tmp_name: Optional[str] = None
    try:
        workbook = build_workbook(collections)
        destination.parent.mkdir(parents=True, exist_ok=True)
        with tempfile.NamedTemporaryFile(
            dir=destination.parent, prefix=f".{destination.stem}-", suffix=".xlsx", delete=False
        ) as handle:
            tmp_name = handle.name
        workbook.save(tmp_name)
        os.replace(tmp_name, destination)
        tmp_name = None
    except (OSError, ValueError, IllegalCharacterError) as exc:
        log.error("Unable to write workbook '%s': %s", destination, exc)
        raise IOFailure(f"Unable to write workbook {destination}: {exc}") from exc
    finally:
        if tmp_name is not None and os.path.exists(tmp_name):
            os.remove(tmp_name)
    log.debug("Wrote workbook '%s'", destination)


def read_workbook(data_file: Path) -> Dict[CollectionKey, List[Record]]:
    """Read every collection from ``data_file``.

    A missing file or a missing sheet yields empty collections. Fully empty
    rows are skipped.

    Raises:
        IOFailure: If the file exists but cannot be opened as a workbook.
    """

    collections: Dict[CollectionKey, List[Record]] = {key: [] for key in CollectionKey}
    data_file = Path(data_file).expanduser().resolve()
    if not data_file.exists():
        log.info("Workbook '%s' not found; starting with empty collections", data_file)
        return collections

    try:
        workbook = openpyxl.load_workbook(data_file)
    except (OSError, InvalidFileException, zipfile.BadZipFile) as exc:
        log.error("Unable to open workbook '%s': %s", data_file, exc)
        raise IOFailure(f"Unable to open workbook {data_file}: {exc}") from exc

    for key, sheet_name in SHEET_NAMES.items():
        if sheet_name not in workbook.sheetnames:
            continue
        sheet = workbook[sheet_name]
        headers = [cell.value for cell in sheet[1]]
        for raw in sheet.iter_rows(min_row=2, values_only=True):
            # skip fully empty rows
            if any(cell is not None for cell in raw):
                collections[key].append(dict(zip(headers, raw)))
    return collections


# ---------------------------------------------------------------------------
# Record codecs
# ---------------------------------------------------------------------------


def _text(value: object) -> str:
    return "" if value is None else str(value)


def _optional_text(value: object) -> Optional[str]:
    text = _text(value).strip()
    return text or None


def _decimal(value: object, default: str = "0.00") -> Decimal:
    if value is None or value == "":
        return Decimal(default)
    return Decimal(str(value))


def _int(value: object) -> int:
    if value is None or value == "":
        return 0
    return int(Decimal(str(value)))


def to_bool(value: object) -> bool:
    """Interpret a stored or user-supplied flag; text such as ``"false"`` is false."""

    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "y"}
    return bool(value)


def _timestamp(value: object) -> datetime:
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


def serialize_product(product: Product) -> Record:
    """Convert a :class:`Product` into a flat record."""

    return {
        "ProductID": product.product_id,
        "Name": product.name,
        "Category": product.category,
        "Price": str(product.price),
        "Stock": product.stock,
        "Barcode": product.barcode,
        "Cost": str(product.cost),
        "CreatedAt": product.created_at.isoformat(),
        "UpdatedAt": product.updated_at.isoformat(),
    }


def deserialize_product(record: Mapping[str, Any]) -> Product:
    """Convert a flat record into a :class:`Product`.

    Blank barcodes become ``None`` and text columns default to empty strings,
    hiding spreadsheet quirks from the catalog.
    """

    return Product(
        product_id=_text(record.get("ProductID")),
        name=_text(record.get("Name")),
        category=_text(record.get("Category")),
        price=_decimal(record.get("Price")),
        stock=_int(record.get("Stock")),
        barcode=_optional_text(record.get("Barcode")),
        cost=_decimal(record.get("Cost")),
        created_at=_timestamp(record.get("CreatedAt")),
        updated_at=_timestamp(record.get("UpdatedAt")),
    )


def serialize_sale(sale: Sale) -> Record:
    """Convert a :class:`Sale` into a flat record.

    Line snapshots are stored as a JSON array in the ``Lines`` column so the
    record stays one row per sale.
    """

    lines = [
        {
            "ProductID": line.product_id,
            "Name": line.name,
            "UnitPrice": str(line.unit_price),
            "Quantity": line.quantity,
            "Subtotal": str(line.subtotal),
        }
        for line in sale.lines
    ]
    return {
        "SaleID": sale.sale_id,
        "ReceiptNumber": sale.receipt_number,
        "ReceiptPrefix": sale.receipt_prefix,
        "Lines": json.dumps(lines),
        "Subtotal": str(sale.subtotal),
        "DiscountAmount": str(sale.discount_amount),
        "DiscountType": sale.discount_type.value,
        "VatAmount": str(sale.vat_amount),
        "Total": str(sale.total),
        "PaymentMethod": sale.payment_method.value,
        "AmountTendered": str(sale.amount_tendered),
        "Change": str(sale.change),
        "CashierID": sale.cashier_id,
        "CashierName": sale.cashier_name,
        "Timestamp": sale.timestamp.isoformat(),
    }


def deserialize_sale(record: Mapping[str, Any]) -> Sale:
    """Convert a flat record into a :class:`Sale`."""

    raw_lines = json.loads(_text(record.get("Lines")) or "[]")
    lines = tuple(
        SaleLine(
            product_id=_text(item.get("ProductID")),
            name=_text(item.get("Name")),
            unit_price=_decimal(item.get("UnitPrice")),
            quantity=_int(item.get("Quantity")),
            subtotal=_decimal(item.get("Subtotal")),
        )
        for item in raw_lines
    )
    return Sale(
        sale_id=_text(record.get("SaleID")),
        receipt_number=_int(record.get("ReceiptNumber")),
        lines=lines,
        subtotal=_decimal(record.get("Subtotal")),
        discount_amount=_decimal(record.get("DiscountAmount")),
        discount_type=DiscountType(_text(record.get("DiscountType")) or DiscountType.PERCENTAGE.value),
        vat_amount=_decimal(record.get("VatAmount")),
        total=_decimal(record.get("Total")),
        payment_method=PaymentMethod(_text(record.get("PaymentMethod")) or PaymentMethod.CASH.value),
        amount_tendered=_decimal(record.get("AmountTendered")),
        change=_decimal(record.get("Change")),
        cashier_id=_text(record.get("CashierID")),
        cashier_name=_text(record.get("CashierName")),
        timestamp=_timestamp(record.get("Timestamp")),
        receipt_prefix=_text(record.get("ReceiptPrefix")) or DEFAULT_RECEIPT_PREFIX,
    )


def serialize_adjustment(adjustment: StockAdjustment) -> Record:
    """Convert a :class:`StockAdjustment` into a flat record."""

    return {
        "AdjustmentID": adjustment.adjustment_id,
        "ProductID": adjustment.product_id,
        "ProductName": adjustment.product_name,
        "AdjustmentType": adjustment.adjustment_type.value,
        "Quantity": adjustment.quantity,
        "Reason": adjustment.reason,
        "ActorID": adjustment.actor_id,
        "Timestamp": adjustment.timestamp.isoformat(),
    }


def deserialize_adjustment(record: Mapping[str, Any]) -> StockAdjustment:
    """Convert a flat record into a :class:`StockAdjustment`."""

    return StockAdjustment(
        adjustment_id=_text(record.get("AdjustmentID")),
        product_id=_text(record.get("ProductID")),
        product_name=_text(record.get("ProductName")),
        adjustment_type=AdjustmentType(_text(record.get("AdjustmentType"))),
        quantity=_int(record.get("Quantity")),
        reason=_text(record.get("Reason")),
        actor_id=_text(record.get("ActorID")),
        timestamp=_timestamp(record.get("Timestamp")),
    )


def serialize_settings(settings: BusinessSettings) -> Record:
    """Convert :class:`BusinessSettings` into a flat record."""

    return {
        "BusinessName": settings.business_name,
        "Address": settings.address,
        "TIN": settings.tin,
        "PermitNumber": settings.permit_number,
        "ContactNumber": settings.contact_number,
        "Email": settings.email,
        "ReceiptFooter": settings.receipt_footer,
        "VatEnabled": settings.vat_enabled,
        "VatRate": str(settings.vat_rate),
    }


def deserialize_settings(record: Mapping[str, Any]) -> BusinessSettings:
    """Convert a flat record into :class:`BusinessSettings`."""

    defaults = BusinessSettings()
    return BusinessSettings(
        business_name=_text(record.get("BusinessName")),
        address=_text(record.get("Address")),
        tin=_text(record.get("TIN")),
        permit_number=_text(record.get("PermitNumber")),
        contact_number=_text(record.get("ContactNumber")),
        email=_text(record.get("Email")),
        receipt_footer=_text(record.get("ReceiptFooter")),
        vat_enabled=to_bool(record.get("VatEnabled", defaults.vat_enabled)),
        vat_rate=_decimal(record.get("VatRate"), default=str(defaults.vat_rate)),
    )
