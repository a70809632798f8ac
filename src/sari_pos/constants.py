"""Enumerations shared across the Sari POS modules.

Keeps the identifiers used by the pricing rules, the ledgers, and the
persistence layer in one place so every layer agrees on their spelling.
"""

from __future__ import annotations

from decimal import Decimal
from enum import Enum


# Schema version expected in config.ini before the store touches a data file.
EXPECTED_SCHEMA_VERSION = "1.0.0"

DEFAULT_RECEIPT_PREFIX = "R-"
DEFAULT_LOW_STOCK_THRESHOLD = 10
MONEY_PLACES = Decimal("0.01")


class DiscountType(str, Enum):
    """Enumerate how a cart discount amount is interpreted."""

    PERCENTAGE = "percentage"
    FIXED = "fixed"


class PaymentMethod(str, Enum):
    """Enumerate the tender types accepted at the counter."""

    CASH = "cash"
    GCASH = "gcash"
    MAYA = "maya"
    CARD = "card"


class AdjustmentType(str, Enum):
    """Enumerate the directions of a manual stock adjustment."""

    ADD = "add"
    REMOVE = "remove"


class CollectionKey(str, Enum):
    """Enumerate the logical collections handed to the persistence adapter."""

    PRODUCTS = "products"
    SALES = "sales"
    SETTINGS = "settings"
    STOCK_ADJUSTMENTS = "stock_adjustments"


__all__ = [
    "EXPECTED_SCHEMA_VERSION",
    "DEFAULT_RECEIPT_PREFIX",
    "DEFAULT_LOW_STOCK_THRESHOLD",
    "MONEY_PLACES",
    "DiscountType",
    "PaymentMethod",
    "AdjustmentType",
    "CollectionKey",
]
