"""Sale ledger for Sari POS.

The ledger is append-only. :meth:`SaleLedger.commit` turns a cart into a
:class:`~sari_pos.models.Sale` while holding the store lock for the whole
check-then-decrement sequence, so two cashiers can never both sell the last
unit of a product. Stock decrements, the ledger append, and the durable write
succeed or fail together: on any failure the touched products are restored to
their exact prior state and the sale is dropped before the error propagates.
"""

from __future__ import annotations

import threading
from datetime import UTC, date, datetime
from decimal import Decimal
from typing import Callable, Iterable, List, Optional, Union

from . import log, pricing
from .cart import Cart
from .catalog import CatalogStore, new_id
from .constants import DEFAULT_RECEIPT_PREFIX, CollectionKey, PaymentMethod
from .data_manager import PersistenceAdapter, Record, serialize_sale
from .errors import (
    EmptyCartError,
    InsufficientPaymentError,
    InsufficientStockError,
    NotFoundError,
)
from .models import BusinessSettings, Cashier, PaymentInfo, PricedLine, Sale, SaleLine, Totals


def _now() -> datetime:
    return datetime.now(UTC)


def _sale_date(sale: Sale) -> date:
    return sale.timestamp.astimezone(UTC).date()


def build_sale(
    lines: Iterable[PricedLine],
    totals: Totals,
    *,
    sale_id: str,
    receipt_number: int,
    receipt_prefix: str,
    payment_method: PaymentMethod,
    cashier: Cashier,
    timestamp: datetime,
) -> Sale:
    """Materialize a priced cart into an immutable :class:`Sale`.

    Line values are copied out of the product snapshots so later catalog edits
    never alter a committed sale.
    """

    snapshot = tuple(
        SaleLine(
            product_id=line.product.product_id,
            name=line.product.name,
            unit_price=line.product.price,
            quantity=line.quantity,
            subtotal=pricing.quantize_money(line.subtotal),
        )
        for line in lines
    )
    return Sale(
        sale_id=sale_id,
        receipt_number=receipt_number,
        lines=snapshot,
        subtotal=totals.subtotal,
        discount_amount=totals.discount_amount,
        discount_type=totals.discount_type,
        vat_amount=totals.vat_amount,
        total=totals.total,
        payment_method=payment_method,
        amount_tendered=totals.amount_tendered,
        change=totals.change,
        cashier_id=cashier.cashier_id,
        cashier_name=cashier.name,
        timestamp=timestamp,
        receipt_prefix=receipt_prefix,
    )


class SaleLedger:
    """Append-only store of completed sales.

    Args:
        sales (Iterable[Sale]): Previously committed sales.
        catalog (CatalogStore): Catalog whose stock the ledger decrements.
        settings_provider (Callable[[], BusinessSettings]): Returns the
            current VAT configuration at commit time.
        lock (threading.RLock | None): Lock shared with the catalog.
        adapter (PersistenceAdapter | None): Destination for the combined
            products and sales write.
        receipt_prefix (str): Prefix used for receipt labels.
        ensure_open (Callable[[], None] | None): Guard from the owning store.
    """

    def __init__(
        self,
        sales: Iterable[Sale],
        catalog: CatalogStore,
        *,
        settings_provider: Callable[[], BusinessSettings] = BusinessSettings,
        lock: Optional[threading.RLock] = None,
        adapter: Optional[PersistenceAdapter] = None,
        receipt_prefix: str = DEFAULT_RECEIPT_PREFIX,
        ensure_open: Optional[Callable[[], None]] = None,
    ) -> None:
        self._sales: List[Sale] = list(sales)
        self._catalog = catalog
        self._settings_provider = settings_provider
        self._lock = lock if lock is not None else threading.RLock()
        self._adapter = adapter
        self._receipt_prefix = receipt_prefix
        self._ensure_open = ensure_open or (lambda: None)
        self._next_receipt = max((sale.receipt_number for sale in self._sales), default=0) + 1

    def __len__(self) -> int:
        return len(self._sales)

    @property
    def next_receipt_number(self) -> int:
        return self._next_receipt

    def commit(
        self,
        cart: Cart,
        payment: Optional[PaymentInfo] = None,
        cashier: Union[Cashier, str, None] = None,
    ) -> Sale:
        """Finalize ``cart`` into a sale, decrement stock, and persist both.

        The cart's own payment configuration is used when ``payment`` is
        omitted. On success the cart is cleared.

        Args:
            cart (Cart): Cart to commit.
            payment (PaymentInfo | None): Tender details.
            cashier (Cashier | str | None): Operator recording the sale.

        Returns:
            Sale: The appended sale.

        Raises:
            EmptyCartError: If the cart has no lines.
            NotFoundError: If a cart product no longer exists.
            InsufficientStockError: If any line exceeds the current stock. No
                stock is changed.
            InsufficientPaymentError: If cash tendered is below the total.
            IOFailure: If the adapter could not persist the sale. Stock and
                the ledger are restored before the error propagates.
        """

        self._ensure_open()
        if cart.is_empty:
            log.warning("Commit rejected: cart is empty")
            raise EmptyCartError("Cannot commit an empty cart")
        payment = payment or cart.payment
        method = PaymentMethod(payment.method)
        if isinstance(cashier, Cashier):
            operator = cashier
        else:
            operator = Cashier(cashier_id=cashier or "")

        with self._lock:
            priced = cart.priced_lines()
            for line in priced:
                if line.quantity > line.product.stock:
                    log.warning(
                        "Commit rejected: '%s' requested %d, available %d",
                        line.product.product_id,
                        line.quantity,
                        line.product.stock,
                    )
                    raise InsufficientStockError(
                        line.product.product_id,
                        requested=line.quantity,
                        available=line.product.stock,
                        product_name=line.product.name,
                    )

            totals = pricing.compute_totals(
                priced,
                self._settings_provider(),
                discount=cart.discount,
                payment=payment,
            )
            if method is PaymentMethod.CASH and pricing.quantize_money(payment.amount_tendered) < totals.total:
                log.warning(
                    "Commit rejected: tendered %s below total %s",
                    payment.amount_tendered,
                    totals.total,
                )
                raise InsufficientPaymentError(
                    f"Amount tendered {payment.amount_tendered} is less than the total {totals.total}"
                )

            snapshots = [line.product for line in priced]
            sale: Optional[Sale] = None
            try:
                for line in priced:
                    self._catalog.mutate_stock(line.product.product_id, -line.quantity)
                receipt_number = self._next_receipt
                self._next_receipt += 1
                sale = build_sale(
                    priced,
                    totals,
                    sale_id=new_id(),
                    receipt_number=receipt_number,
                    receipt_prefix=self._receipt_prefix,
                    payment_method=method,
                    cashier=operator,
                    timestamp=_now(),
                )
                self._sales.append(sale)
                if self._adapter is not None:
                    self._adapter.save_batch(
                        {
                            CollectionKey.PRODUCTS: self._catalog.records(),
                            CollectionKey.SALES: self.records(),
                        }
                    )
            except Exception:
                log.error("Commit failed; rolling back stock for %d product(s)", len(snapshots))
                if sale is not None and self._sales and self._sales[-1] is sale:
                    self._sales.pop()
                self._catalog.restore(snapshots)
                raise

            cart.clear()

        log.info(
            "Committed sale %s (%s) total=%s items=%d",
            sale.receipt_label,
            sale.sale_id,
            sale.total,
            sale.item_count,
        )
        return sale

    # -- reads --------------------------------------------------------------

    def all(self) -> List[Sale]:
        """Return every sale in commit order."""

        self._ensure_open()
        return list(self._sales)

    def by_receipt_number(self, receipt_number: int) -> Sale:
        """Return the sale printed with ``receipt_number``.

        Raises:
            NotFoundError: If no sale carries that number.
        """

        for sale in self.all():
            if sale.receipt_number == receipt_number:
                return sale
        raise NotFoundError(f"Unknown receipt number: {receipt_number}")

    def by_date(self, day: date) -> List[Sale]:
        """Return sales committed on ``day`` (UTC)."""

        return [sale for sale in self.all() if _sale_date(sale) == day]

    def today(self) -> List[Sale]:
        return self.by_date(_now().date())

    def daily_total(self, day: date) -> Decimal:
        """Sum the totals of sales committed on ``day``."""

        return sum((sale.total for sale in self.by_date(day)), Decimal("0.00"))

    def monthly_revenue(self, year: int, month: int) -> Decimal:
        """Sum the totals of sales committed in ``month`` (1-12) of ``year``."""

        if not 1 <= month <= 12:
            raise ValueError("Month must be between 1 and 12")
        return sum(
            (
                sale.total
                for sale in self.all()
                if (_sale_date(sale).year, _sale_date(sale).month) == (year, month)
            ),
            Decimal("0.00"),
        )

    def records(self) -> List[Record]:
        """Serialize the ledger for the persistence adapter."""

        return [serialize_sale(sale) for sale in self._sales]
