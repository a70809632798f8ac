"""Unit tests for the stock adjustment ledger."""

from __future__ import annotations

from datetime import UTC, datetime
from unittest.mock import Mock

import pytest

from sari_pos.adjustments import StockAdjustmentLedger
from sari_pos.catalog import CatalogStore
from sari_pos.constants import AdjustmentType, CollectionKey
from sari_pos.errors import InsufficientStockError, InvalidQuantityError, IOFailure, NotFoundError
from sari_pos.models import ProductDraft


def test_restock_adds_stock_and_records_reason(store, product_factory, set_fixed_datetime):
    moment = set_fixed_datetime(datetime(2024, 8, 1, 7, 0, tzinfo=UTC))
    product = product_factory(name="Tanduay Ice", stock=25)

    adjustment = store.adjust_stock(product.product_id, 12, AdjustmentType.ADD, "delivery", "C-02")

    assert adjustment.adjustment_type is AdjustmentType.ADD
    assert adjustment.quantity == 12
    assert adjustment.delta == 12
    assert adjustment.product_name == "Tanduay Ice"
    assert adjustment.reason == "delivery"
    assert adjustment.actor_id == "C-02"
    assert adjustment.timestamp == moment
    assert store.catalog.find_by_id(product.product_id).stock == 37
    assert store.adjustments.all() == [adjustment]


def test_removal_reduces_stock(store, product_factory):
    product = product_factory(stock=10)

    adjustment = store.adjust_stock(product.product_id, 4, "remove", "expired")

    assert adjustment.delta == -4
    assert store.catalog.find_by_id(product.product_id).stock == 6


def test_removal_beyond_stock_fails_without_record(store, product_factory):
    """Removing 5 from a shelf of 3 is refused outright."""

    product = product_factory(stock=3)

    with pytest.raises(InsufficientStockError):
        store.adjust_stock(product.product_id, 5, AdjustmentType.REMOVE, "breakage")

    assert store.catalog.find_by_id(product.product_id).stock == 3
    assert store.adjustments.all() == []


@pytest.mark.parametrize("quantity", [0, -2, True, 1.5])
def test_adjust_rejects_bad_quantity(store, product_factory, quantity):
    product = product_factory(stock=3)

    with pytest.raises(InvalidQuantityError):
        store.adjust_stock(product.product_id, quantity, "add")
    assert len(store.adjustments) == 0


def test_adjust_rejects_unknown_direction(store, product_factory):
    product = product_factory()

    with pytest.raises(ValueError):
        store.adjust_stock(product.product_id, 1, "sideways")


def test_adjust_unknown_product(store):
    with pytest.raises(NotFoundError):
        store.adjust_stock("missing", 1, "add")


def test_adjust_persists_products_and_adjustments(store, adapter, product_factory):
    product = product_factory(stock=3)

    adjustment = store.adjust_stock(product.product_id, 2, "add", "recount")

    assert adapter.load(CollectionKey.PRODUCTS)[0]["Stock"] == 5
    stored = adapter.load(CollectionKey.STOCK_ADJUSTMENTS)
    assert [record["AdjustmentID"] for record in stored] == [adjustment.adjustment_id]


def test_adjust_rolls_back_when_persist_fails():
    catalog = CatalogStore()
    product = catalog.add(ProductDraft(name="Maggi", stock=8))
    adapter = Mock()
    adapter.save_batch.side_effect = IOFailure("disk full")
    ledger = StockAdjustmentLedger([], catalog, adapter=adapter)

    with pytest.raises(IOFailure):
        ledger.adjust(product.product_id, 5, "remove", "spoilage")

    assert catalog.find_by_id(product.product_id) == product
    assert ledger.all() == []


def test_for_product_filters_history(store, product_factory):
    first = product_factory(stock=5)
    second = product_factory(stock=5)
    store.adjust_stock(first.product_id, 1, "add")
    store.adjust_stock(second.product_id, 2, "add")
    store.adjust_stock(first.product_id, 3, "remove")

    history = store.adjustments.for_product(first.product_id)

    assert [item.delta for item in history] == [1, -3]
