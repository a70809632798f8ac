"""Stock adjustment ledger for Sari POS.

Restocks and shrinkage corrections are recorded here, independently of sales.
Each adjustment changes stock through the catalog and appends an audit record;
a rejected or unpersisted adjustment leaves neither the stock change nor the
record behind.
"""

from __future__ import annotations

import threading
from datetime import UTC, datetime
from typing import Callable, Iterable, List, Optional, Union

from . import log
from .catalog import CatalogStore, new_id
from .constants import AdjustmentType, CollectionKey
from .data_manager import PersistenceAdapter, Record, serialize_adjustment
from .errors import InvalidQuantityError
from .models import StockAdjustment


def _now() -> datetime:
    return datetime.now(UTC)


class StockAdjustmentLedger:
    """Append-only audit trail of manual stock changes."""

    def __init__(
        self,
        adjustments: Iterable[StockAdjustment],
        catalog: CatalogStore,
        *,
        lock: Optional[threading.RLock] = None,
        adapter: Optional[PersistenceAdapter] = None,
        ensure_open: Optional[Callable[[], None]] = None,
    ) -> None:
        self._adjustments: List[StockAdjustment] = list(adjustments)
        self._catalog = catalog
        self._lock = lock if lock is not None else threading.RLock()
        self._adapter = adapter
        self._ensure_open = ensure_open or (lambda: None)

    def __len__(self) -> int:
        return len(self._adjustments)

    def adjust(
        self,
        product_id: str,
        quantity: int,
        direction: Union[AdjustmentType, str],
        reason: str = "",
        actor_id: str = "",
    ) -> StockAdjustment:
        """Add or remove stock and record why.

        Args:
            product_id (str): Product whose stock changes.
            quantity (int): Number of units, strictly positive.
            direction (AdjustmentType | str): ``add`` or ``remove``.
            reason (str): Free-text justification, e.g. ``"breakage"``.
            actor_id (str): Operator performing the adjustment.

        Returns:
            StockAdjustment: The appended audit record.

        Raises:
            InvalidQuantityError: If ``quantity`` is not a positive integer.
            ValueError: If ``direction`` is unknown.
            NotFoundError: If the product is unknown.
            InsufficientStockError: If removing more than is in stock. No
                record is appended and stock is unchanged.
            IOFailure: If the change could not be persisted. Stock and the
                ledger are restored before the error propagates.
        """

        self._ensure_open()
        if isinstance(quantity, bool) or int(quantity) != quantity or quantity <= 0:
            log.warning("Adjustment rejected: invalid quantity %s", quantity)
            raise InvalidQuantityError("Adjustment quantity must be a positive whole number")
        kind = AdjustmentType(direction)
        delta = int(quantity) if kind is AdjustmentType.ADD else -int(quantity)

        with self._lock:
            before = self._catalog.find_by_id(product_id)
            self._catalog.mutate_stock(product_id, delta)
            adjustment = StockAdjustment(
                adjustment_id=new_id(),
                product_id=product_id,
                product_name=before.name,
                adjustment_type=kind,
                quantity=int(quantity),
                reason=reason,
                actor_id=actor_id,
                timestamp=_now(),
            )
            self._adjustments.append(adjustment)
            try:
                if self._adapter is not None:
                    self._adapter.save_batch(
                        {
                            CollectionKey.PRODUCTS: self._catalog.records(),
                            CollectionKey.STOCK_ADJUSTMENTS: self.records(),
                        }
                    )
            except Exception:
                log.error("Adjustment for '%s' failed to persist; rolling back", product_id)
                self._adjustments.pop()
                self._catalog.restore([before])
                raise

        log.info(
            "Recorded %s of %d for '%s' (%s)",
            kind.value,
            adjustment.quantity,
            product_id,
            reason or "no reason given",
        )
        return adjustment

    def all(self) -> List[StockAdjustment]:
        """Return every adjustment in the order it was recorded."""

        self._ensure_open()
        return list(self._adjustments)

    def for_product(self, product_id: str) -> List[StockAdjustment]:
        return [adjustment for adjustment in self.all() if adjustment.product_id == product_id]

    def records(self) -> List[Record]:
        """Serialize the ledger for the persistence adapter."""

        return [serialize_adjustment(adjustment) for adjustment in self._adjustments]
