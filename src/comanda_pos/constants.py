"""Enumerations and defaults shared across the Comanda POS modules.

The data access layer, the transaction engine, and the output adapters all read
store keys and sheet titles from here so the data file layout has one
definition.
"""

from __future__ import annotations

from decimal import Decimal
from enum import Enum


# Layout version written into config.ini and checked before any mutation.
EXPECTED_SCHEMA_VERSION = "1.0.0"

# Order numbers start right above this value on a fresh terminal.
DEFAULT_STARTING_ORDER_NUMBER = 1000

DEFAULT_STORE_NAME = "Loja Exemplo"

MONEY_QUANTUM = Decimal("0.01")


class StoreKey(str, Enum):
    """Enumerate the logical keys held by the key-value data file."""

    PRODUCTS = "products"
    SALES = "sales"
    LAST_ORDER_NUMBER = "last_order_number"


class SheetName(str, Enum):
    """Enumerate the worksheet titles produced by the spreadsheet exporter."""

    PRODUCTS = "Products"
    SALES = "Sales"


class ExportKind(str, Enum):
    """Entity names embedded in exported file names."""

    PRODUCTS = "products"
    SALES = "sales"


__all__ = [
    "EXPECTED_SCHEMA_VERSION",
    "DEFAULT_STARTING_ORDER_NUMBER",
    "DEFAULT_STORE_NAME",
    "MONEY_QUANTUM",
    "StoreKey",
    "SheetName",
    "ExportKind",
]
