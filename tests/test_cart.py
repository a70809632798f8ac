"""Unit tests for the cashier cart."""

from __future__ import annotations

from decimal import Decimal

import pytest

from sari_pos.constants import DiscountType, PaymentMethod
from sari_pos.errors import (
    InsufficientStockError,
    InvalidDiscountError,
    InvalidQuantityError,
    NotFoundError,
)
from sari_pos.models import BusinessSettings, Discount, PaymentInfo


def test_new_cart_is_empty(store):
    cart = store.new_cart()

    assert cart.is_empty
    assert len(cart) == 0
    assert cart.discount == Discount()
    assert cart.payment == PaymentInfo()


def test_add_item_merges_quantities(store, product_factory):
    product = product_factory(stock=10)
    cart = store.new_cart()

    cart.add_item(product.product_id, 2)
    line = cart.add_item(product.product_id, 3)

    assert line.quantity == 5
    assert len(cart) == 1
    assert cart.quantity_of(product.product_id) == 5


def test_add_item_rejects_quantity_below_one(store, product_factory):
    product = product_factory()
    cart = store.new_cart()

    with pytest.raises(InvalidQuantityError):
        cart.add_item(product.product_id, 0)


@pytest.mark.parametrize("quantity", [2.5, True, "2", Decimal("1.5")])
def test_add_item_rejects_non_whole_quantity(store, product_factory, quantity):
    product = product_factory(stock=10)
    cart = store.new_cart()

    with pytest.raises(InvalidQuantityError):
        cart.add_item(product.product_id, quantity)
    assert cart.is_empty


def test_add_item_accepts_whole_float_as_int(store, product_factory):
    product = product_factory(price="25.00", stock=10)
    cart = store.new_cart()

    line = cart.add_item(product.product_id, 2.0)

    assert type(line.quantity) is int
    assert cart.priced_lines()[0].subtotal == Decimal("50.00")


def test_add_item_unknown_product(store):
    with pytest.raises(NotFoundError):
        store.new_cart().add_item("missing")


def test_add_item_checks_merged_quantity_against_stock(store, product_factory):
    """Adding more than is on the shelf leaves the cart unchanged."""

    product = product_factory(stock=4)
    cart = store.new_cart()
    cart.add_item(product.product_id, 3)

    with pytest.raises(InsufficientStockError) as excinfo:
        cart.add_item(product.product_id, 2)

    assert excinfo.value.requested == 5
    assert excinfo.value.available == 4
    assert cart.quantity_of(product.product_id) == 3


def test_add_more_than_stock_to_empty_cart(store, product_factory):
    product = product_factory(stock=10)
    cart = store.new_cart()

    with pytest.raises(InsufficientStockError):
        cart.add_item(product.product_id, 11)
    assert cart.is_empty


def test_set_quantity_overwrites_line(store, product_factory):
    product = product_factory(stock=10)
    cart = store.new_cart()
    cart.add_item(product.product_id, 2)

    cart.set_quantity(product.product_id, 7)

    assert cart.quantity_of(product.product_id) == 7


def test_set_quantity_zero_removes_line(store, product_factory):
    product = product_factory()
    cart = store.new_cart()
    cart.add_item(product.product_id, 2)

    assert cart.set_quantity(product.product_id, 0) is None
    assert cart.is_empty


def test_set_quantity_above_stock(store, product_factory):
    product = product_factory(stock=2)
    cart = store.new_cart()
    cart.add_item(product.product_id)

    with pytest.raises(InsufficientStockError):
        cart.set_quantity(product.product_id, 3)
    assert cart.quantity_of(product.product_id) == 1


@pytest.mark.parametrize("quantity", [2.5, True])
def test_set_quantity_rejects_non_whole_quantity(store, product_factory, quantity):
    product = product_factory(stock=10)
    cart = store.new_cart()
    cart.add_item(product.product_id, 2)

    with pytest.raises(InvalidQuantityError):
        cart.set_quantity(product.product_id, quantity)
    assert cart.quantity_of(product.product_id) == 2


def test_remove_item_ignores_unknown_lines(store, product_factory):
    product = product_factory()
    cart = store.new_cart()
    cart.add_item(product.product_id)

    cart.remove_item("missing")
    cart.remove_item(product.product_id)

    assert cart.is_empty


def test_clear_resets_discount_and_payment(store, product_factory):
    product = product_factory()
    cart = store.new_cart()
    cart.add_item(product.product_id)
    cart.set_discount(5, DiscountType.FIXED)
    cart.set_payment(PaymentMethod.CASH, 100)

    cart.clear()

    assert cart.is_empty
    assert cart.discount == Discount()
    assert cart.payment == PaymentInfo()


def test_set_discount_stores_configuration(store):
    cart = store.new_cart()

    discount = cart.set_discount("10", "percentage")

    assert discount == Discount(Decimal("10"), DiscountType.PERCENTAGE)
    assert cart.discount is discount


@pytest.mark.parametrize("amount, kind", [(-1, "percentage"), (5, "bogus")])
def test_set_discount_rejects_bad_input(store, amount, kind):
    cart = store.new_cart()

    with pytest.raises(InvalidDiscountError):
        cart.set_discount(amount, kind)
    assert cart.discount == Discount()


def test_set_payment_rejects_negative_tender(store):
    with pytest.raises(ValueError):
        store.new_cart().set_payment(PaymentMethod.CASH, -5)


def test_set_payment_rejects_unknown_method(store):
    with pytest.raises(ValueError):
        store.new_cart().set_payment("barter", 5)


def test_priced_lines_follow_current_catalog_price(store, product_factory):
    """Prices are resolved at pricing time, not when the item was added."""

    product = product_factory(price="25.00")
    cart = store.new_cart()
    cart.add_item(product.product_id, 2)
    store.catalog.update(product.product_id, price="30.00")

    (line,) = cart.priced_lines()

    assert line.product.price == Decimal("30.00")
    assert line.subtotal == Decimal("60.00")


def test_priced_lines_fail_for_deleted_product(store, product_factory):
    product = product_factory()
    cart = store.new_cart()
    cart.add_item(product.product_id)
    store.catalog.delete(product.product_id)

    with pytest.raises(NotFoundError):
        cart.priced_lines()


def test_snapshot_totals_does_not_touch_stock(store, product_factory):
    product = product_factory(price="25.00", stock=10)
    cart = store.new_cart()
    cart.add_item(product.product_id, 3)
    cart.set_discount(10)
    cart.set_payment("cash", 100)

    totals = cart.snapshot_totals(BusinessSettings())

    assert totals.total == Decimal("67.50")
    assert totals.change == Decimal("32.50")
    assert store.catalog.find_by_id(product.product_id).stock == 10
    assert not cart.is_empty
