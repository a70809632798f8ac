"""Shared pytest fixtures and utilities for Sari POS tests."""

from __future__ import annotations

import argparse
import sys
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal
from pathlib import Path
from typing import Callable, Iterator

import pytest

# Ensure source packages are importable without installation.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "src"

for candidate in (SRC_DIR, PROJECT_ROOT):
    candidate_str = str(candidate)
    if candidate_str not in sys.path:
        sys.path.insert(0, candidate_str)

from sari_pos import adjustments, catalog, cli, constants, data_manager, ledger  # noqa: E402
from sari_pos.models import Product, ProductDraft  # noqa: E402
from sari_pos.store import PosStore  # noqa: E402
from setup_excel import create_master_workbook  # noqa: E402

DEFAULT_SCHEMA_VERSION = constants.EXPECTED_SCHEMA_VERSION
DEFAULT_CASHIER_ID = "C-DEFAULT"
_CONFIG_TEMPLATE = (
    "[System]\n"
    "DataFile = {data_file}\n"
    "StoreName = {store_name}\n"
    "SchemaVersion = {schema_version}\n\n"
    "[Defaults]\n"
    "DefaultCashier = {default_cashier_id}\n"
    "LowStockThreshold = 5\n"
)


@dataclass(frozen=True)
class ConfigBundle:
    """Container bundling together config metadata for tests."""

    directory: Path
    config_path: Path
    workbook_path: Path
    default_cashier_id: str
    schema_version: str
    store_name: str


@pytest.fixture(scope="session", autouse=True)
def _restore_sys_path() -> Iterator[None]:
    """Ensure sys.path modifications are undone after the test session."""

    original = sys.path.copy()
    try:
        yield
    finally:
        sys.path[:] = original


@pytest.fixture
def workbook_factory(tmp_path: Path) -> Callable[..., Path]:
    """Factory that creates an initialized data workbook in a temp folder."""

    def _create_workbook(
        *,
        subdir: str | None = None,
        filename: str = "pos_data.xlsx",
        with_samples: bool = False,
    ) -> Path:
        base_dir = tmp_path if subdir is None else tmp_path / subdir
        base_dir.mkdir(parents=True, exist_ok=True)
        workbook_path = base_dir / filename
        create_master_workbook(workbook_path, with_samples=with_samples, overwrite=True)
        return workbook_path

    return _create_workbook


@pytest.fixture
def master_workbook_path(workbook_factory: Callable[..., Path]) -> Path:
    """Return a fresh data workbook ready for use in a test."""

    unique_dir = f"workbook_{uuid.uuid4().hex}"
    return workbook_factory(subdir=unique_dir)


@pytest.fixture
def config_factory(tmp_path: Path, workbook_factory: Callable[..., Path]) -> Callable[..., ConfigBundle]:
    """Provide a callable that creates config/workbook bundles on demand."""

    def _create_config(
        *,
        make_relative: bool = False,
        store_name: str = "Test Store",
        schema_version: str = DEFAULT_SCHEMA_VERSION,
        default_cashier_id: str = DEFAULT_CASHIER_ID,
        with_samples: bool = False,
    ) -> ConfigBundle:
        bundle_id = uuid.uuid4().hex
        bundle_dir = tmp_path / f"bundle_{bundle_id}"
        bundle_dir.mkdir(parents=True, exist_ok=True)
        workbook_path = workbook_factory(subdir=f"bundle_{bundle_id}", with_samples=with_samples)
        data_file_entry = workbook_path.name if make_relative else str(workbook_path)
        config_path = bundle_dir / "config.ini"
        config_path.write_text(
            _CONFIG_TEMPLATE.format(
                data_file=data_file_entry,
                store_name=store_name,
                schema_version=schema_version,
                default_cashier_id=default_cashier_id,
            )
        )
        return ConfigBundle(
            directory=bundle_dir,
            config_path=config_path,
            workbook_path=workbook_path,
            default_cashier_id=default_cashier_id,
            schema_version=schema_version,
            store_name=store_name,
        )

    return _create_config


@pytest.fixture
def config_file(config_factory: Callable[..., ConfigBundle]) -> Path:
    """Convenience fixture returning only the config path."""

    return config_factory().config_path


# ---------------------------------------------------------------------------
# Store fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def adapter() -> data_manager.InMemoryAdapter:
    """Return an empty in-memory persistence adapter."""

    return data_manager.InMemoryAdapter()


@pytest.fixture
def store(adapter: data_manager.InMemoryAdapter) -> Iterator[PosStore]:
    """Open a store over the in-memory adapter and close it afterwards."""

    pos_store = PosStore.open(adapter)
    try:
        yield pos_store
    finally:
        pos_store.close()


@pytest.fixture
def product_factory(store: PosStore) -> Callable[..., Product]:
    """Register products in the store's catalog with sensible defaults."""

    counter = {"n": 0}

    def _add(
        *,
        name: str | None = None,
        category: str = "General",
        price: str = "25.00",
        stock: int = 10,
        barcode: str | None = None,
        cost: str = "18.00",
    ) -> Product:
        counter["n"] += 1
        return store.catalog.add(
            ProductDraft(
                name=name or f"Product {counter['n']}",
                category=category,
                price=Decimal(price),
                stock=stock,
                barcode=barcode,
                cost=Decimal(cost),
            )
        )

    return _add


# ---------------------------------------------------------------------------
# CLI layer fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def cli_parser() -> argparse.ArgumentParser:
    """Return a fresh CLI parser instance for tests."""

    return argparse.ArgumentParser(prog="sari-pos", description="Sari POS CLI")


@pytest.fixture
def subparsers_action(
    cli_parser: argparse.ArgumentParser,
) -> argparse._SubParsersAction[argparse.ArgumentParser]:
    """Return the subparser action used to register commands."""

    return cli_parser.add_subparsers(dest="command")


@pytest.fixture
def command_spec_iterable() -> list[cli.CommandSpec]:
    """Provide a list of command specs for indexing tests."""

    def _make_spec(name: str) -> cli.CommandSpec:
        return cli.CommandSpec(
            name,
            f"{name} help",
            lambda subparsers: subparsers.add_parser(name),
            lambda *_: 0,
        )

    return [_make_spec("alpha"), _make_spec("beta"), _make_spec("gamma")]


# ---------------------------------------------------------------------------
# Clock fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def set_fixed_datetime(monkeypatch: pytest.MonkeyPatch) -> Callable[[datetime], datetime]:
    """Patch the clock of the catalog and both ledgers to a fixed moment."""

    def _apply(moment: datetime) -> datetime:
        class _FixedDateTime:
            @staticmethod
            def now(tz=None):
                assert tz is UTC
                return moment

        for module in (catalog, ledger, adjustments):
            monkeypatch.setattr(module, "datetime", _FixedDateTime)
        return moment

    return _apply
