"""In-progress cart for one cashier session.

Lines store a product id and a quantity only. Prices and stock are resolved
from the catalog every time the cart is validated or priced, so a price change
or a concurrent sale is always reflected before the cart is committed.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Dict, List, Optional, Tuple, Union

from . import log, pricing
from .catalog import CatalogStore
from .constants import DiscountType, PaymentMethod
from .errors import InsufficientStockError, InvalidQuantityError
from .models import BusinessSettings, CartLine, Discount, PaymentInfo, PricedLine, Totals
from .pricing import MoneyLike


class Cart:
    """Mutable collection of cart lines plus discount and payment settings.

    A cart belongs to a single session and is not locked; catalog reads go
    through the catalog's own lock.
    """

    def __init__(self, catalog: CatalogStore) -> None:
        self._catalog = catalog
        self._lines: Dict[str, CartLine] = {}
        self.discount = Discount()
        self.payment = PaymentInfo()

    def __len__(self) -> int:
        return len(self._lines)

    @property
    def is_empty(self) -> bool:
        return not self._lines

    @property
    def lines(self) -> Tuple[CartLine, ...]:
        return tuple(self._lines.values())

    def quantity_of(self, product_id: str) -> int:
        line = self._lines.get(product_id)
        return line.quantity if line else 0

    def add_item(self, product_id: str, quantity: int = 1) -> CartLine:
        """Add ``quantity`` units of a product, merging with an existing line.

        Raises:
            InvalidQuantityError: If ``quantity`` is less than one or not a
                whole number.
            NotFoundError: If the product is not in the catalog.
            InsufficientStockError: If the merged quantity exceeds the current
                stock. The cart is left unchanged.
        """

        quantity = _whole_quantity(quantity)
        if quantity < 1:
            raise InvalidQuantityError("Quantity must be at least 1")
        product = self._catalog.find_by_id(product_id)
        requested = self.quantity_of(product_id) + quantity
        if requested > product.stock:
            log.warning(
                "Cart add rejected for '%s': requested %d, available %d",
                product_id,
                requested,
                product.stock,
            )
            raise InsufficientStockError(
                product_id, requested=requested, available=product.stock, product_name=product.name
            )
        line = CartLine(product_id=product_id, quantity=requested)
        self._lines[product_id] = line
        return line

    def set_quantity(self, product_id: str, quantity: int) -> Optional[CartLine]:
        """Overwrite a line's quantity; zero or less removes the line.

        Raises:
            NotFoundError: If the product is not in the catalog.
            InvalidQuantityError: If ``quantity`` is not a whole number.
            InsufficientStockError: If ``quantity`` exceeds the current stock.
        """

        quantity = _whole_quantity(quantity)
        if quantity <= 0:
            self.remove_item(product_id)
            return None
        product = self._catalog.find_by_id(product_id)
        if quantity > product.stock:
            raise InsufficientStockError(
                product_id, requested=quantity, available=product.stock, product_name=product.name
            )
        line = CartLine(product_id=product_id, quantity=quantity)
        self._lines[product_id] = line
        return line

    def remove_item(self, product_id: str) -> None:
        self._lines.pop(product_id, None)

    def clear(self) -> None:
        """Empty the cart and reset discount and payment to their defaults."""

        self._lines.clear()
        self.discount = Discount()
        self.payment = PaymentInfo()

    def set_discount(self, amount: MoneyLike, discount_type: Union[DiscountType, str] = DiscountType.PERCENTAGE) -> Discount:
        """Configure the cart discount.

        Raises:
            InvalidDiscountError: If ``amount`` is negative or ``discount_type``
                is unknown.
        """

        # Validated against a zero subtotal so bad input fails before storing.
        pricing.discount_amount(0, amount, discount_type)
        self.discount = Discount(amount=pricing.to_money(amount), discount_type=DiscountType(discount_type))
        return self.discount

    def set_payment(self, method: Union[PaymentMethod, str], amount_tendered: MoneyLike = 0) -> PaymentInfo:
        """Configure how the customer pays.

        Raises:
            ValueError: If ``method`` is unknown or ``amount_tendered`` is
                negative.
        """

        tendered = pricing.to_money(amount_tendered)
        if tendered < 0:
            raise ValueError("Amount tendered must be zero or positive")
        self.payment = PaymentInfo(method=PaymentMethod(method), amount_tendered=tendered)
        return self.payment

    def priced_lines(self) -> List[PricedLine]:
        """Resolve every line against the current catalog state.

        Raises:
            NotFoundError: If a product was removed from the catalog after it
                was added to the cart.
        """

        return [
            PricedLine(product=self._catalog.find_by_id(line.product_id), quantity=line.quantity)
            for line in self._lines.values()
        ]

    def snapshot_totals(self, settings: BusinessSettings) -> Totals:
        """Price the cart as it stands without changing anything."""

        return pricing.compute_totals(
            self.priced_lines(),
            settings,
            discount=self.discount,
            payment=self.payment,
        )


def _whole_quantity(quantity: object) -> int:
    if isinstance(quantity, (int, float, Decimal)) and not isinstance(quantity, bool):
        try:
            if int(quantity) == quantity:
                return int(quantity)
        except (OverflowError, ValueError):
            pass
    log.warning("Cart quantity rejected: %r", quantity)
    raise InvalidQuantityError("Quantity must be a whole number")
