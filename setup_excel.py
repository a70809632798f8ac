"""Utility for initializing the Sari POS data workbook.

The module doubles as a script (``python setup_excel.py``) and as a library
used by tests or other tooling. The workbook layout itself comes from
:mod:`sari_pos.data_manager`, so a bootstrapped file is always readable by the
workbook adapter.
"""

from __future__ import annotations

import argparse
from datetime import UTC, datetime
from decimal import Decimal
from pathlib import Path
from typing import Dict, List, Sequence
import sys

from sari_pos import data_manager
from sari_pos.catalog import new_id
from sari_pos.constants import CollectionKey
from sari_pos.errors import IOFailure
from sari_pos.models import BusinessSettings, Product

# Starter catalog for a neighbourhood sari-sari store.
SAMPLE_PRODUCTS: Sequence[Dict[str, object]] = [
    {"name": "Coca-Cola 350ml", "category": "Beverages", "price": "25", "stock": 50,
     "barcode": "4902102119825", "cost": "18"},
    {"name": "Lucky Me Pancit Canton", "category": "Instant Noodles", "price": "15", "stock": 100,
     "barcode": "4806516440119", "cost": "11"},
    {"name": "Skyflakes Crackers", "category": "Snacks", "price": "35", "stock": 30,
     "barcode": "4800016005039", "cost": "25"},
    {"name": "Maggi Magic Sarap 8g", "category": "Seasonings", "price": "8", "stock": 80,
     "barcode": "4800024112059", "cost": "6"},
    {"name": "Tanduay Ice 330ml", "category": "Beverages", "price": "45", "stock": 25,
     "barcode": "4800012050016", "cost": "32"},
]


def load_settings(config_path: Path) -> data_manager.ConfigSettings:
    """Read ``config.ini`` the same way the store does.

    Relative ``DataFile`` entries are anchored to the config file's directory,
    so the workbook created here is the one :func:`sari_pos.store.load_store`
    later opens.

    Raises:
        FileNotFoundError: If ``config_path`` does not exist.
        KeyError: If a required entry is missing.
    """

    config_path = config_path.expanduser().resolve()
    parser = data_manager.read_config(config_path)
    return data_manager.parse_settings(parser, base_path=config_path.parent)


def build_sample_products() -> List[Product]:
    """Materialize :data:`SAMPLE_PRODUCTS` into catalog products."""

    timestamp = datetime.now(UTC)
    return [
        Product(
            product_id=new_id(),
            name=str(item["name"]),
            category=str(item["category"]),
            price=Decimal(str(item["price"])).quantize(Decimal("0.01")),
            stock=int(item["stock"]),  # type: ignore[call-overload]
            barcode=str(item["barcode"]),
            cost=Decimal(str(item["cost"])).quantize(Decimal("0.01")),
            created_at=timestamp,
            updated_at=timestamp,
        )
        for item in SAMPLE_PRODUCTS
    ]


def create_master_workbook(
    destination: Path,
    *,
    store_name: str | None = None,
    with_samples: bool = False,
    overwrite: bool = False,
) -> Path:
    """Create the Sari POS data workbook at ``destination``.

    The workbook receives every sheet with its header row and one settings
    row. When ``overwrite`` is ``False`` (the default) this function raises
    ``FileExistsError`` if the target already exists.
    """

    destination = destination.expanduser().resolve()
    if destination.exists() and not overwrite:
        raise FileExistsError(
            f"Refusing to overwrite existing data workbook: {destination}"
        )

    settings = BusinessSettings()
    if store_name:
        settings = BusinessSettings(business_name=store_name)

    collections: Dict[CollectionKey, List[data_manager.Record]] = {key: [] for key in CollectionKey}
    collections[CollectionKey.SETTINGS] = [data_manager.serialize_settings(settings)]
    if with_samples:
        collections[CollectionKey.PRODUCTS] = [
            data_manager.serialize_product(product) for product in build_sample_products()
        ]

    data_manager.write_workbook(destination, collections)
    return destination


def run_from_config(config_path: Path, *, overwrite: bool = False, with_samples: bool = False) -> Path:
    """Create the workbook named by ``config.ini``."""

    settings = load_settings(config_path)
    return create_master_workbook(
        settings.data_file,
        store_name=settings.store_name,
        with_samples=with_samples,
        overwrite=overwrite,
    )


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse CLI arguments for the setup script."""

    parser = argparse.ArgumentParser(description="Initialize the Sari POS data file")
    parser.add_argument(
        "--config",
        default=data_manager.CONFIG_FILE_NAME,
        help="Path to configuration file (default: config.ini)",
    )
    parser.add_argument("--force", action="store_true", help="Overwrite an existing data workbook.")
    parser.add_argument(
        "--with-samples",
        action="store_true",
        help="Seed the catalog with a starter set of products.",
    )
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for the setup script; returns a process exit code."""

    args = parse_args(argv)
    config_path = Path(args.config).expanduser().resolve()

    print("--- Sari POS Setup Script ---")
    print(f"Using configuration: {config_path}")

    try:
        output_path = run_from_config(config_path, overwrite=args.force, with_samples=args.with_samples)
    except FileExistsError as exc:
        print(f"\n[ERROR] {exc}")
        print("Run with --force to overwrite the existing file if appropriate.")
        return 1
    except (FileNotFoundError, KeyError, ValueError, IOFailure) as exc:
        print(f"\n[ERROR] {exc}")
        return 1

    suffix = f" with {len(SAMPLE_PRODUCTS)} sample products" if args.with_samples else ""
    print(f"\n[SUCCESS] Created data workbook at '{output_path}'{suffix}.")
    return 0


if __name__ == "__main__":  # pragma: no cover - exercised via manual runs
    sys.exit(main())
