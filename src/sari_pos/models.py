"""Immutable records exchanged between the Sari POS components.

Every record is a frozen dataclass. Catalog changes produce new
:class:`Product` instances via :func:`dataclasses.replace`; ledger records are
created once and never modified afterwards.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Optional, Tuple

from .constants import (
    DEFAULT_RECEIPT_PREFIX,
    AdjustmentType,
    DiscountType,
    PaymentMethod,
)


@dataclass(frozen=True)
class Product:
    """Current catalog state of a sellable product."""

    product_id: str
    name: str
    category: str
    price: Decimal
    stock: int
    barcode: Optional[str]
    cost: Decimal
    created_at: datetime
    updated_at: datetime


@dataclass(frozen=True)
class ProductDraft:
    """Caller-supplied fields for registering a new product."""

    name: str
    category: str = ""
    price: Decimal = Decimal("0.00")
    stock: int = 0
    barcode: Optional[str] = None
    cost: Decimal = Decimal("0.00")


@dataclass(frozen=True)
class CartLine:
    """A requested quantity of a product, referenced by id only."""

    product_id: str
    quantity: int


@dataclass(frozen=True)
class PricedLine:
    """A cart line resolved against the catalog at the moment of pricing."""

    product: Product
    quantity: int

    @property
    def subtotal(self) -> Decimal:
        return self.product.price * self.quantity


@dataclass(frozen=True)
class Discount:
    """Transient discount configuration held by a cart."""

    amount: Decimal = Decimal("0")
    discount_type: DiscountType = DiscountType.PERCENTAGE


@dataclass(frozen=True)
class PaymentInfo:
    """Tender details supplied when a cart is committed."""

    method: PaymentMethod = PaymentMethod.CASH
    amount_tendered: Decimal = Decimal("0.00")


@dataclass(frozen=True)
class Cashier:
    """Identity of the operator recording a sale."""

    cashier_id: str
    name: str = ""


@dataclass(frozen=True)
class Totals:
    """Rounded pricing figures for a cart snapshot."""

    subtotal: Decimal
    discount_amount: Decimal
    discount_type: DiscountType
    total: Decimal
    vat_amount: Decimal
    amount_tendered: Decimal
    change: Decimal


@dataclass(frozen=True)
class SaleLine:
    """Line snapshot captured by value when a sale is committed."""

    product_id: str
    name: str
    unit_price: Decimal
    quantity: int
    subtotal: Decimal


@dataclass(frozen=True)
class Sale:
    """Completed sale appended to the ledger.

    ``receipt_number`` is the sequential counter; :attr:`receipt_label` is the
    human-readable form printed on receipts.
    """

    sale_id: str
    receipt_number: int
    lines: Tuple[SaleLine, ...]
    subtotal: Decimal
    discount_amount: Decimal
    discount_type: DiscountType
    vat_amount: Decimal
    total: Decimal
    payment_method: PaymentMethod
    amount_tendered: Decimal
    change: Decimal
    cashier_id: str
    cashier_name: str
    timestamp: datetime
    receipt_prefix: str = field(default=DEFAULT_RECEIPT_PREFIX, compare=False)

    @property
    def receipt_label(self) -> str:
        return f"{self.receipt_prefix}{self.receipt_number:06d}"

    @property
    def item_count(self) -> int:
        return sum(line.quantity for line in self.lines)


@dataclass(frozen=True)
class StockAdjustment:
    """Audit record of a manual stock change."""

    adjustment_id: str
    product_id: str
    product_name: str
    adjustment_type: AdjustmentType
    quantity: int
    reason: str
    actor_id: str
    timestamp: datetime

    @property
    def delta(self) -> int:
        if self.adjustment_type is AdjustmentType.ADD:
            return self.quantity
        return -self.quantity


@dataclass(frozen=True)
class BusinessSettings:
    """Store identity and tax configuration."""

    business_name: str = "Sari-Sari Store POS"
    address: str = "123 Barangay Street, Manila, Philippines"
    tin: str = "123-456-789-000"
    permit_number: str = "FP-12345678"
    contact_number: str = "+63 912 345 6789"
    email: str = "store@example.com"
    receipt_footer: str = "Salamat sa inyong pagbili!"
    vat_enabled: bool = True
    vat_rate: Decimal = Decimal("0.12")


__all__ = [
    "Product",
    "ProductDraft",
    "CartLine",
    "PricedLine",
    "Discount",
    "PaymentInfo",
    "Cashier",
    "Totals",
    "SaleLine",
    "Sale",
    "StockAdjustment",
    "BusinessSettings",
]
