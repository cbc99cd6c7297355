"""Utility for initializing the Comanda POS data file.

The module doubles as a script (``python -m comanda_pos.setup_store``) and as
a library used by tests. It reads ``config.ini``, then writes a fresh JSON data
file holding the seed catalog, an empty sale history, and the order counter
set to the configured starting number.
"""

from __future__ import annotations

import argparse
import sys
import uuid
from decimal import Decimal
from pathlib import Path
from typing import Iterable, Mapping, Sequence, Tuple

from . import data_manager
from .constants import DEFAULT_STARTING_ORDER_NUMBER, StoreKey

# (code, name, price) rows every new terminal starts with.
SEED_PRODUCTS: Tuple[Tuple[str, str, Decimal], ...] = (
    ("001", "Coxinha", Decimal("5.00")),
    ("002", "Suco", Decimal("3.50")),
)

CONFIG_FILE = "config.ini"


def build_initial_document(
    *,
    starting_order_number: int = DEFAULT_STARTING_ORDER_NUMBER,
    seed_products: Iterable[Tuple[str, str, Decimal]] = SEED_PRODUCTS,
) -> Mapping[str, object]:
    """Return the JSON document a new data file starts with."""

    products = [
        data_manager.Product(id=uuid.uuid4().hex, code=code, name=name, price=price)
        for code, name, price in seed_products
    ]
    return {
        StoreKey.PRODUCTS.value: [data_manager.serialize_product(p) for p in products],
        StoreKey.SALES.value: [],
        StoreKey.LAST_ORDER_NUMBER.value: starting_order_number,
    }


def create_data_file(
    destination: Path,
    *,
    starting_order_number: int = DEFAULT_STARTING_ORDER_NUMBER,
    seed_products: Iterable[Tuple[str, str, Decimal]] = SEED_PRODUCTS,
    overwrite: bool = False,
) -> Path:
    """Create the terminal data file at ``destination``.

    Parameters are overridable to facilitate testing. When ``overwrite`` is
    ``False`` (the default) this function raises ``FileExistsError`` if the
    target already exists, since replacing it would discard the sale history.
    """

    destination = destination.expanduser().resolve()
    if destination.exists() and not overwrite:
        raise FileExistsError(
            f"Refusing to overwrite existing data file: {destination}"
        )

    document = build_initial_document(
        starting_order_number=starting_order_number,
        seed_products=seed_products,
    )
    data_manager.write_document(destination, document)
    return destination


def run_from_config(config_path: Path, *, overwrite: bool = False) -> Path:
    """Create the data file named by ``config_path``."""

    parser = data_manager.read_config(config_path)
    settings = data_manager.parse_settings(parser, base_path=config_path.parent)
    return create_data_file(
        settings.data_file,
        starting_order_number=settings.starting_order_number,
        overwrite=overwrite,
    )


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse CLI arguments for the setup script."""

    parser = argparse.ArgumentParser(description="Initialize the Comanda POS data file")
    parser.add_argument(
        "--config",
        default=CONFIG_FILE,
        help="Path to configuration file (default: config.ini)",
    )
    parser.add_argument(
        "--force",
        action="store_true",
        help="Overwrite the data file if it already exists.",
    )
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for the setup script."""

    args = parse_args(argv)
    config_path = Path(args.config).expanduser().resolve()

    print("--- Comanda POS Setup ---")
    print(f"Using configuration: {config_path}")

    try:
        output_path = run_from_config(config_path, overwrite=args.force)
    except (FileNotFoundError, KeyError, ValueError) as exc:
        print(f"\n[ERROR] {exc}")
        return 1
    except FileExistsError as exc:
        print(f"\n[ERROR] {exc}")
        print("Run with --force to overwrite the existing file if appropriate.")
        return 1
    except (PermissionError, OSError) as exc:
        print(f"\n[ERROR] Unable to write data file: {exc}")
        return 1

    print(f"\n[SUCCESS] Created data file at '{output_path}'.")
    return 0


if __name__ == "__main__":  # pragma: no cover - exercised via manual runs
    sys.exit(main())
