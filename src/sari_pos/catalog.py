"""Catalog store for Sari POS.

The catalog owns the mutable product set. Products are frozen dataclasses, so
every mutation swaps in a new instance and refreshes ``updated_at``. Stock is
changed only through :meth:`CatalogStore.mutate_stock`, which the sale ledger
and the stock adjustment ledger call while holding the store lock; field
edits through :meth:`CatalogStore.update` cannot touch stock.
"""

from __future__ import annotations

import threading
import uuid
from dataclasses import replace
from datetime import UTC, datetime
from typing import Any, Callable, Dict, Iterable, List, Optional

from . import log
from .constants import DEFAULT_LOW_STOCK_THRESHOLD, CollectionKey
from .data_manager import PersistenceAdapter, Record, serialize_product
from .errors import (
    DuplicateBarcodeError,
    InsufficientStockError,
    InvalidQuantityError,
    IOFailure,
    NotFoundError,
)
from .models import Product, ProductDraft
from .pricing import quantize_money


EDITABLE_FIELDS = frozenset({"name", "category", "price", "barcode", "cost"})


def _now() -> datetime:
    return datetime.now(UTC)


def new_id() -> str:
    """Return a collision-resistant identifier for a new record."""

    return uuid.uuid4().hex


def _normalize_barcode(barcode: Optional[str]) -> Optional[str]:
    if barcode is None:
        return None
    barcode = str(barcode).strip()
    return barcode or None


def _require_nonnegative(label: str, value: Any):
    amount = quantize_money(value)
    if amount < 0:
        log.error("%s validation failed: %s", label, amount)
        raise ValueError(f"{label} must be zero or positive")
    return amount


class CatalogStore:
    """Mutable product set with barcode uniqueness and non-negative stock.

    Args:
        products (Iterable[Product]): Initial products in insertion order.
        lock (threading.RLock | None): Lock shared with the ledgers. A private
            lock is created when omitted.
        adapter (PersistenceAdapter | None): Destination for product writes
            made by :meth:`add`, :meth:`update` and :meth:`delete`. Nothing is
            persisted when omitted.
        ensure_open (Callable[[], None] | None): Guard invoked before every
            operation; the owning store uses it to reject calls after close.
    """

    def __init__(
        self,
        products: Iterable[Product] = (),
        *,
        lock: Optional[threading.RLock] = None,
        adapter: Optional[PersistenceAdapter] = None,
        ensure_open: Optional[Callable[[], None]] = None,
    ) -> None:
        self._products: Dict[str, Product] = {product.product_id: product for product in products}
        self._lock = lock if lock is not None else threading.RLock()
        self._adapter = adapter
        self._ensure_open = ensure_open or (lambda: None)

    def __len__(self) -> int:
        return len(self._products)

    def __contains__(self, product_id: object) -> bool:
        return product_id in self._products

    # -- writes -------------------------------------------------------------

    def add(self, draft: ProductDraft) -> Product:
        """Register a new product and persist the catalog.

        Args:
            draft (ProductDraft): Caller-supplied product fields.

        Returns:
            Product: The stored product with its id and timestamps assigned.

        Raises:
            DuplicateBarcodeError: If the barcode already belongs to a product.
            InvalidQuantityError: If the initial stock is negative.
            ValueError: If the price or cost is negative.
            IOFailure: If the catalog could not be persisted; the product is
                not added in that case.
        """

        self._ensure_open()
        price = _require_nonnegative("Price", draft.price)
        cost = _require_nonnegative("Cost", draft.cost)
        if int(draft.stock) != draft.stock or draft.stock < 0:
            raise InvalidQuantityError("Initial stock must be a whole number of zero or more")
        barcode = _normalize_barcode(draft.barcode)

        with self._lock:
            self._check_barcode_free(barcode)
            timestamp = _now()
            product = Product(
                product_id=new_id(),
                name=draft.name.strip(),
                category=draft.category.strip(),
                price=price,
                stock=int(draft.stock),
                barcode=barcode,
                cost=cost,
                created_at=timestamp,
                updated_at=timestamp,
            )
            previous = dict(self._products)
            self._products[product.product_id] = product
            self._persist_or_revert(previous)

        log.info("Added product '%s' (%s) with stock %d", product.name, product.product_id, product.stock)
        return product

    def update(self, product_id: str, **fields: Any) -> Product:
        """Edit descriptive fields of a product.

        Only ``name``, ``category``, ``price``, ``barcode`` and ``cost`` may be
        changed here. Stock changes must go through a sale or a stock
        adjustment so that every change has an audit record.

        Raises:
            NotFoundError: If ``product_id`` is unknown.
            DuplicateBarcodeError: If the new barcode belongs to another product.
            ValueError: If a field is not editable or a price is negative.
            IOFailure: If the catalog could not be persisted; the edit is
                reverted in that case.
        """

        self._ensure_open()
        if "stock" in fields:
            raise ValueError("Stock cannot be edited directly; record a stock adjustment instead")
        unknown = set(fields) - EDITABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown product field(s): {', '.join(sorted(unknown))}")

        changes: Dict[str, Any] = {}
        for name, value in fields.items():
            if name in ("price", "cost"):
                changes[name] = _require_nonnegative(name.capitalize(), value)
            elif name == "barcode":
                changes[name] = _normalize_barcode(value)
            else:
                changes[name] = str(value).strip()

        with self._lock:
            current = self.find_by_id(product_id)
            if "barcode" in changes:
                self._check_barcode_free(changes["barcode"], ignore_id=product_id)
            updated = replace(current, **changes, updated_at=_now())
            previous = dict(self._products)
            self._products[product_id] = updated
            self._persist_or_revert(previous)

        log.info("Updated product '%s' fields: %s", product_id, ", ".join(sorted(changes)) or "-")
        return updated

    def delete(self, product_id: str) -> None:
        """Remove a product permanently.

        Raises:
            NotFoundError: If ``product_id`` is unknown.
            IOFailure: If the catalog could not be persisted; the product is
                kept in that case.
        """

        self._ensure_open()
        with self._lock:
            self.find_by_id(product_id)
            previous = dict(self._products)
            del self._products[product_id]
            self._persist_or_revert(previous)
        log.info("Deleted product '%s'", product_id)

    def mutate_stock(self, product_id: str, delta: int) -> Product:
        """Apply ``delta`` to a product's stock in memory.

        This is the only path that changes stock. Callers hold the store lock
        and persist the catalog together with their own ledger record.

        Raises:
            NotFoundError: If ``product_id`` is unknown.
            InsufficientStockError: If the resulting stock would be negative.
        """

        self._ensure_open()
        with self._lock:
            current = self.find_by_id(product_id)
            new_stock = current.stock + int(delta)
            if new_stock < 0:
                log.warning(
                    "Stock change of %d rejected for '%s' (available %d)",
                    delta,
                    product_id,
                    current.stock,
                )
                raise InsufficientStockError(
                    product_id,
                    requested=-int(delta),
                    available=current.stock,
                    product_name=current.name,
                )
            updated = replace(current, stock=new_stock, updated_at=_now())
            self._products[product_id] = updated
        log.debug("Stock for '%s' changed by %d to %d", product_id, delta, new_stock)
        return updated

    def restore(self, products: Iterable[Product]) -> None:
        """Put exact product snapshots back in place after a failed operation."""

        with self._lock:
            for product in products:
                self._products[product.product_id] = product

    # -- reads --------------------------------------------------------------

    def find_by_id(self, product_id: str) -> Product:
        """Return the product registered under ``product_id``.

        Raises:
            NotFoundError: If ``product_id`` is unknown.
        """

        self._ensure_open()
        try:
            return self._products[product_id]
        except KeyError as exc:
            log.warning("Product lookup failed for id '%s'", product_id)
            raise NotFoundError(f"Unknown product id: {product_id}") from exc

    def find_by_barcode(self, barcode: str) -> Product:
        """Return the product carrying ``barcode``.

        Raises:
            NotFoundError: If no product has that barcode.
        """

        self._ensure_open()
        code = _normalize_barcode(barcode)
        if code is not None:
            for product in list(self._products.values()):
                if product.barcode == code:
                    return product
        log.warning("Product lookup failed for barcode '%s'", barcode)
        raise NotFoundError(f"Unknown barcode: {barcode}")

    def search(self, query: str) -> List[Product]:
        """Match ``query`` against name, category, and barcode.

        Name and category match case-insensitively on substrings; barcodes
        match on substrings of the raw query. A blank query returns the whole
        catalog in insertion order.
        """

        self._ensure_open()
        products = list(self._products.values())
        raw = (query or "").strip()
        if not raw:
            return products
        lowered = raw.lower()
        return [
            product
            for product in products
            if lowered in product.name.lower()
            or lowered in product.category.lower()
            or (product.barcode is not None and raw in product.barcode)
        ]

    def list_products(self) -> List[Product]:
        """Return every product in insertion order."""

        self._ensure_open()
        return list(self._products.values())

    def low_stock(self, threshold: int = DEFAULT_LOW_STOCK_THRESHOLD) -> List[Product]:
        """Return products that are running low but not yet sold out."""

        return [product for product in self.list_products() if 0 < product.stock <= threshold]

    def out_of_stock(self) -> List[Product]:
        """Return products with no stock left."""

        return [product for product in self.list_products() if product.stock == 0]

    def records(self) -> List[Record]:
        """Serialize the catalog for the persistence adapter."""

        return [serialize_product(product) for product in self._products.values()]

    # -- helpers ------------------------------------------------------------

    def _check_barcode_free(self, barcode: Optional[str], *, ignore_id: Optional[str] = None) -> None:
        if barcode is None:
            return
        for product in self._products.values():
            if product.barcode == barcode and product.product_id != ignore_id:
                log.warning("Barcode '%s' already assigned to '%s'", barcode, product.product_id)
                raise DuplicateBarcodeError(f"Barcode {barcode} is already assigned to {product.name}")

    def _persist_or_revert(self, previous: Dict[str, Product]) -> None:
        if self._adapter is None:
            return
        try:
            self._adapter.save(CollectionKey.PRODUCTS, self.records())
        except IOFailure:
            log.error("Catalog save failed; reverting in-memory change")
            self._products = previous
            raise
