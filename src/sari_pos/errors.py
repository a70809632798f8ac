"""Exception hierarchy raised by the Sari POS core.

Every error is recoverable by the caller. Front-ends are expected to catch
:class:`PosError` and present the message to the operator.
"""

from __future__ import annotations

from typing import Optional


class PosError(Exception):
    """Raised when a requested operation violates a domain constraint."""


class NotFoundError(PosError):
    """Raised when a referenced product or sale is unknown."""


class DuplicateBarcodeError(PosError):
    """Raised when a barcode is already assigned to another product."""


class InsufficientStockError(PosError):
    """Raised when a requested quantity exceeds the available stock."""

    def __init__(
        self,
        product_id: str,
        *,
        requested: int,
        available: int,
        product_name: Optional[str] = None,
    ) -> None:
        label = product_name or product_id
        super().__init__(
            f"Insufficient stock for '{label}': requested {requested}, available {available}"
        )
        self.product_id = product_id
        self.requested = requested
        self.available = available


class InvalidDiscountError(PosError):
    """Raised when a discount amount or type cannot be applied."""


class InvalidQuantityError(PosError):
    """Raised when a quantity is zero, negative, or otherwise unusable."""


class EmptyCartError(PosError):
    """Raised when committing a cart without any lines."""


class InsufficientPaymentError(PosError):
    """Raised when the cash tendered does not cover the sale total."""


class IOFailure(PosError):
    """Raised when the persistence adapter cannot load or save a collection."""


class StoreClosedError(PosError):
    """Raised when an operation targets a store that has been closed."""


__all__ = [
    "PosError",
    "NotFoundError",
    "DuplicateBarcodeError",
    "InsufficientStockError",
    "InvalidDiscountError",
    "InvalidQuantityError",
    "EmptyCartError",
    "InsufficientPaymentError",
    "IOFailure",
    "StoreClosedError",
]
