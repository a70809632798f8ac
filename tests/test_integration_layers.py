"""Integration tests describing end-to-end Sari POS workflows.

These scenarios run the store against real workbooks on disk so the catalog,
both ledgers, and the workbook adapter are exercised together.
"""

from __future__ import annotations

from datetime import UTC, datetime
from decimal import Decimal

import openpyxl
import pytest

from sari_pos import data_manager
from sari_pos.constants import CollectionKey, DiscountType, PaymentMethod
from sari_pos.errors import InsufficientStockError, IOFailure
from sari_pos.models import Cashier, PaymentInfo, ProductDraft
from sari_pos.store import load_store
from setup_excel import SAMPLE_PRODUCTS, create_master_workbook
import setup_excel


def _sample(pos_store, name_fragment):
    (product,) = pos_store.catalog.search(name_fragment)
    return product


def test_sale_lifecycle_flow(config_factory, set_fixed_datetime):
    """Restock, sell, reload from disk, and report."""

    set_fixed_datetime(datetime(2024, 6, 15, 9, 0, tzinfo=UTC))
    bundle = config_factory(with_samples=True)

    with load_store(bundle.config_path) as pos_store:
        crackers = _sample(pos_store, "Skyflakes")
        pos_store.adjust_stock(crackers.product_id, 10, "add", "delivery", "C-01")

        cart = pos_store.new_cart()
        cart.add_item(crackers.product_id, 4)
        cart.set_discount(20, DiscountType.FIXED)
        sale = pos_store.commit(cart, PaymentInfo(PaymentMethod.CASH, Decimal("200")), Cashier("C-01", "Ana"))

    assert sale.subtotal == Decimal("140.00")
    assert sale.total == Decimal("120.00")
    assert sale.vat_amount == Decimal("12.86")
    assert sale.change == Decimal("80.00")

    with load_store(bundle.config_path) as reopened:
        assert _sample(reopened, "Skyflakes").stock == 36
        assert reopened.sales.all() == [sale]
        assert reopened.sales.daily_total(sale.timestamp.date()) == Decimal("120.00")
        (adjustment,) = reopened.adjustments.for_product(crackers.product_id)
        assert adjustment.quantity == 10
        assert adjustment.actor_id == "C-01"


def test_failed_write_leaves_workbook_and_memory_untouched(config_factory, monkeypatch):
    """A sale that cannot be written changes neither disk nor memory."""

    bundle = config_factory(with_samples=True)

    with load_store(bundle.config_path) as pos_store:
        cola = _sample(pos_store, "Coca-Cola")
        cart = pos_store.new_cart()
        cart.add_item(cola.product_id, 5)

        def _fail(*_args, **_kwargs):
            raise IOFailure("workbook is open in another program")

        monkeypatch.setattr(data_manager, "write_workbook", _fail)
        with pytest.raises(IOFailure):
            pos_store.commit(cart, PaymentInfo(PaymentMethod.CARD, Decimal("0")))

        assert pos_store.catalog.find_by_id(cola.product_id) == cola
        assert pos_store.sales.all() == []
        monkeypatch.undo()

    with load_store(bundle.config_path) as reopened:
        assert _sample(reopened, "Coca-Cola").stock == 50
        assert reopened.sales.all() == []


def test_unwritable_product_name_is_not_kept(config_factory):
    """A value the workbook cannot store leaves both memory and disk unchanged."""

    bundle = config_factory(with_samples=True)

    with load_store(bundle.config_path) as pos_store:
        with pytest.raises(IOFailure):
            pos_store.catalog.add(ProductDraft(name="Bagoong\x01", price=Decimal("25"), stock=3))
        assert pos_store.catalog.search("Bagoong") == []
        assert len(pos_store.catalog) == len(SAMPLE_PRODUCTS)

    on_disk = data_manager.read_workbook(bundle.workbook_path)[CollectionKey.PRODUCTS]
    assert len(on_disk) == len(SAMPLE_PRODUCTS)


def test_shrinkage_cannot_drive_stock_negative(config_factory):
    bundle = config_factory(with_samples=True)

    with load_store(bundle.config_path) as pos_store:
        liquor = _sample(pos_store, "Tanduay")
        with pytest.raises(InsufficientStockError):
            pos_store.adjust_stock(liquor.product_id, 26, "remove", "breakage")

    with load_store(bundle.config_path) as reopened:
        assert _sample(reopened, "Tanduay").stock == 25
        assert reopened.adjustments.all() == []


def test_receipt_numbers_continue_after_reload(config_factory):
    bundle = config_factory(with_samples=True)

    for expected in (1, 2):
        with load_store(bundle.config_path) as pos_store:
            maggi = _sample(pos_store, "Maggi")
            cart = pos_store.new_cart()
            cart.add_item(maggi.product_id)
            sale = pos_store.commit(cart, PaymentInfo(PaymentMethod.GCASH, Decimal("0")))
            assert sale.receipt_number == expected


# ---------------------------------------------------------------------------
# Workbook bootstrap
# ---------------------------------------------------------------------------


def test_create_master_workbook_layout(tmp_path):
    destination = create_master_workbook(tmp_path / "pos.xlsx", store_name="Aling Nena's", with_samples=True)

    workbook = openpyxl.load_workbook(destination)
    assert workbook.sheetnames == ["Products", "Sales", "Settings", "StockAdjustments"]
    collections = data_manager.read_workbook(destination)
    assert len(collections[CollectionKey.PRODUCTS]) == len(SAMPLE_PRODUCTS)
    assert collections[CollectionKey.SETTINGS][0]["BusinessName"] == "Aling Nena's"
    assert collections[CollectionKey.SALES] == []


def test_create_master_workbook_refuses_overwrite(master_workbook_path):
    with pytest.raises(FileExistsError):
        create_master_workbook(master_workbook_path)


def test_setup_main_uses_config(config_factory, capsys):
    bundle = config_factory()
    bundle.workbook_path.unlink()

    exit_code = setup_excel.main(["--config", str(bundle.config_path), "--with-samples"])

    assert exit_code == 0
    assert bundle.workbook_path.exists()
    assert "[SUCCESS]" in capsys.readouterr().out
    with load_store(bundle.config_path) as pos_store:
        assert len(pos_store.catalog) == len(SAMPLE_PRODUCTS)
        assert pos_store.settings.business_name == bundle.store_name


def test_setup_main_reports_existing_workbook(config_factory, capsys):
    bundle = config_factory()

    assert setup_excel.main(["--config", str(bundle.config_path)]) == 1
    assert "--force" in capsys.readouterr().out
