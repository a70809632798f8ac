"""Store object tying the Sari POS components together.

A :class:`PosStore` owns one catalog, one sale ledger, one stock adjustment
ledger and the business settings, all loaded from a single
:class:`~sari_pos.data_manager.PersistenceAdapter`. One re-entrant lock per
store guards every stock mutation, ledger append and durable write, which is
what keeps concurrent cashier sessions from overselling.

Typical use::

    store = PosStore.open(InMemoryAdapter())
    cart = store.new_cart()
    cart.add_item(product.product_id, 3)
    sale = store.commit(cart, PaymentInfo(PaymentMethod.CASH, Decimal("100")))
    store.close()
"""

from __future__ import annotations

import dataclasses
import threading
from decimal import InvalidOperation
from pathlib import Path
from typing import Any, Callable, List, Optional, TypeVar, Union

from . import data_manager, log, pricing
from .adjustments import StockAdjustmentLedger
from .cart import Cart
from .catalog import CatalogStore
from .constants import (
    DEFAULT_LOW_STOCK_THRESHOLD,
    DEFAULT_RECEIPT_PREFIX,
    EXPECTED_SCHEMA_VERSION,
    AdjustmentType,
    CollectionKey,
)
from .errors import IOFailure, StoreClosedError
from .ledger import SaleLedger
from .models import BusinessSettings, Cashier, PaymentInfo, Product, Sale, StockAdjustment


T = TypeVar("T")

SETTINGS_FIELDS = frozenset(field.name for field in dataclasses.fields(BusinessSettings))


def _decode(records: List[data_manager.Record], decoder: Callable[[Any], T], label: str) -> List[T]:
    try:
        return [decoder(record) for record in records]
    except (ValueError, TypeError, KeyError, InvalidOperation) as exc:
        log.error("Unable to decode %s records: %s", label, exc)
        raise IOFailure(f"Corrupt {label} data: {exc}") from exc


class PosStore:
    """Owned store with an explicit ``open``/``close`` lifecycle.

    Use :meth:`open` to create an instance; the constructor only wires the
    components together. After :meth:`close` every operation raises
    :class:`~sari_pos.errors.StoreClosedError`.
    """

    def __init__(
        self,
        adapter: data_manager.PersistenceAdapter,
        *,
        receipt_prefix: str = DEFAULT_RECEIPT_PREFIX,
        low_stock_threshold: int = DEFAULT_LOW_STOCK_THRESHOLD,
        config: Optional[data_manager.ConfigSettings] = None,
    ) -> None:
        self._adapter = adapter
        self._lock = threading.RLock()
        self._closed = False
        self.config = config
        self.low_stock_threshold = low_stock_threshold

        products = _decode(adapter.load(CollectionKey.PRODUCTS), data_manager.deserialize_product, "product")
        sales = _decode(adapter.load(CollectionKey.SALES), data_manager.deserialize_sale, "sale")
        adjustments = _decode(
            adapter.load(CollectionKey.STOCK_ADJUSTMENTS),
            data_manager.deserialize_adjustment,
            "stock adjustment",
        )
        settings_records = adapter.load(CollectionKey.SETTINGS)
        if settings_records:
            self._settings = _decode(settings_records[:1], data_manager.deserialize_settings, "settings")[0]
        else:
            self._settings = BusinessSettings()

        self._catalog = CatalogStore(
            products, lock=self._lock, adapter=adapter, ensure_open=self._ensure_open
        )
        self._sales = SaleLedger(
            sales,
            self._catalog,
            settings_provider=lambda: self._settings,
            lock=self._lock,
            adapter=adapter,
            receipt_prefix=receipt_prefix,
            ensure_open=self._ensure_open,
        )
        self._adjustments = StockAdjustmentLedger(
            adjustments,
            self._catalog,
            lock=self._lock,
            adapter=adapter,
            ensure_open=self._ensure_open,
        )

    @classmethod
    def open(cls, adapter: data_manager.PersistenceAdapter, **options: Any) -> "PosStore":
        """Load every collection from ``adapter`` and return an open store.

        Raises:
            IOFailure: If the adapter cannot load a collection or a stored
                record cannot be decoded.
        """

        store = cls(adapter, **options)
        log.info(
            "Opened store with %d product(s), %d sale(s), %d adjustment(s)",
            len(store._catalog),
            len(store._sales),
            len(store._adjustments),
        )
        return store

    def close(self) -> None:
        """Release the store. Closing twice is harmless."""

        with self._lock:
            if not self._closed:
                self._closed = True
                log.info("Closed store")

    @property
    def closed(self) -> bool:
        return self._closed

    def __enter__(self) -> "PosStore":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _ensure_open(self) -> None:
        if self._closed:
            raise StoreClosedError("The store has been closed")

    # -- components ---------------------------------------------------------

    @property
    def catalog(self) -> CatalogStore:
        self._ensure_open()
        return self._catalog

    @property
    def sales(self) -> SaleLedger:
        self._ensure_open()
        return self._sales

    @property
    def adjustments(self) -> StockAdjustmentLedger:
        self._ensure_open()
        return self._adjustments

    @property
    def settings(self) -> BusinessSettings:
        self._ensure_open()
        return self._settings

    # -- operations ---------------------------------------------------------

    def new_cart(self) -> Cart:
        """Start an empty cart bound to this store's catalog."""

        self._ensure_open()
        return Cart(self._catalog)

    def commit(
        self,
        cart: Cart,
        payment: Optional[PaymentInfo] = None,
        cashier: Union[Cashier, str, None] = None,
    ) -> Sale:
        """Commit ``cart`` through the sale ledger."""

        if cashier is None and self.config is not None:
            cashier = self.config.default_cashier_id
        return self.sales.commit(cart, payment, cashier)

    def adjust_stock(
        self,
        product_id: str,
        quantity: int,
        direction: Union[AdjustmentType, str],
        reason: str = "",
        actor_id: str = "",
    ) -> StockAdjustment:
        """Record a stock adjustment through the adjustment ledger."""

        return self.adjustments.adjust(product_id, quantity, direction, reason, actor_id)

    def low_stock(self) -> List[Product]:
        """Return products at or below the configured low-stock threshold."""

        return self.catalog.low_stock(self.low_stock_threshold)

    def update_settings(self, **changes: Any) -> BusinessSettings:
        """Replace business settings fields and persist them.

        Raises:
            ValueError: If a field is unknown or the VAT rate is negative.
            IOFailure: If the settings could not be persisted; the previous
                settings stay in effect.
        """

        self._ensure_open()
        unknown = set(changes) - SETTINGS_FIELDS
        if unknown:
            raise ValueError(f"Unknown settings field(s): {', '.join(sorted(unknown))}")

        normalized: dict[str, Any] = {}
        for name, value in changes.items():
            if name == "vat_rate":
                rate = pricing.to_money(value)
                if rate < 0:
                    raise ValueError("VAT rate must be zero or positive")
                normalized[name] = rate
            elif name == "vat_enabled":
                normalized[name] = data_manager.to_bool(value)
            else:
                normalized[name] = str(value)

        with self._lock:
            updated = dataclasses.replace(self._settings, **normalized)
            self._adapter.save(CollectionKey.SETTINGS, [data_manager.serialize_settings(updated)])
            self._settings = updated

        log.info("Updated settings: %s", ", ".join(sorted(normalized)) or "-")
        return updated


def ensure_schema_version(config: data_manager.ConfigSettings) -> None:
    """Validate data file compatibility before opening a store.

    Raises:
        RuntimeError: If the schema version declared in ``config.ini`` does
            not match ``EXPECTED_SCHEMA_VERSION``.
    """

    if config.schema_version != EXPECTED_SCHEMA_VERSION:
        log.error(
            "Data file schema mismatch: expected %s, found %s",
            EXPECTED_SCHEMA_VERSION,
            config.schema_version,
        )
        raise RuntimeError(
            "Data file schema mismatch: expected %s, found %s"
            % (EXPECTED_SCHEMA_VERSION, config.schema_version)
        )


def load_store(config_path: Optional[Path] = None) -> PosStore:
    """Open a workbook-backed store described by ``config.ini``.

    Args:
        config_path (Path | None): Optional path to the configuration file.
            When omitted the data layer searches upward from the current
            working directory.

    Returns:
        PosStore: Open store bound to the configured workbook.

    Raises:
        FileNotFoundError: If the configuration file cannot be located.
        KeyError: When mandatory configuration options are missing.
        RuntimeError: If the schema version does not match.
        IOFailure: If the workbook exists but cannot be read.
    """

    located_config = data_manager.find_config_file(config_path)
    resolved_config = Path(located_config).expanduser().resolve()
    parser = data_manager.read_config(resolved_config)
    config = data_manager.parse_settings(parser, base_path=resolved_config.parent)
    ensure_schema_version(config)
    adapter = data_manager.WorkbookAdapter(config.data_file)
    log.info("Loading store '%s' from '%s'", config.store_name, config.data_file)
    return PosStore.open(
        adapter,
        receipt_prefix=config.receipt_prefix,
        low_stock_threshold=config.low_stock_threshold,
        config=config,
    )
