"""Data access layer for Comanda POS.

This module provides low-level helpers that read from and write to the
terminal's data file. Business rules belong in :mod:`comanda_pos.core_logic`.

The public API is designed around three responsibilities:

1. Configuration handling: finding and parsing ``config.ini``.
2. Store lifecycle: opening the JSON key-value data file and persisting each
   key durably.
3. Entity repositories: loading and saving products, sales, and the last
   issued order number, converting between records and JSON values.
"""


from __future__ import annotations

import configparser
import json
import os
import tempfile
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Protocol, Sequence, Tuple

from . import log
from .constants import (
    DEFAULT_STARTING_ORDER_NUMBER,
    DEFAULT_STORE_NAME,
    StoreKey,
)


CONFIG_FILE_NAME = "config.ini"
PRODUCTS_KEY = StoreKey.PRODUCTS.value
SALES_KEY = StoreKey.SALES.value
LAST_ORDER_NUMBER_KEY = StoreKey.LAST_ORDER_NUMBER.value


class PersistenceError(RuntimeError):
    """Raised when the data file cannot be read back or written durably."""


@dataclass(frozen=True)
class ConfigSettings:
    """Typed representation of the ``config.ini`` settings we care about."""

    data_file: Path
    store_name: str
    schema_version: str
    starting_order_number: int = DEFAULT_STARTING_ORDER_NUMBER
    export_dir: Optional[Path] = None
    receipt_dir: Optional[Path] = None


@dataclass(frozen=True)
class Product:
    """Catalog entry as stored under the ``products`` key."""

    id: str
    code: str
    name: str
    price: Decimal


@dataclass(frozen=True)
class SaleLine:
    """Immutable copy of a cart line captured when a sale is finalized."""

    product_id: str
    name: str
    quantity: int
    price: Decimal

    @property
    def subtotal(self) -> Decimal:
        return self.price * self.quantity


@dataclass(frozen=True)
class Sale:
    """Finalized order as stored under the ``sales`` key."""

    id: str
    order_number: int
    timestamp: datetime
    lines: Tuple[SaleLine, ...]
    total: Decimal

    @property
    def sale_date(self) -> date:
        """Calendar day the sale belongs to, taken from its timestamp."""
        return self.timestamp.date()


class KeyValueStore(Protocol):
    """Minimal interface the repositories need from a backing store."""

    def get(self, key: str, default: Any = None) -> Any: ...

    def set(self, key: str, value: Any) -> None: ...


def find_config_file(explicit_path: Optional[Path] = None) -> Path:
    """Locate the configuration file that controls the terminal.

    If the caller provides ``explicit_path`` the value is returned immediately
    without any verification. Otherwise the function walks up from the current
    working directory toward the filesystem root looking for a file named
    ``CONFIG_FILE_NAME``; the first match is considered authoritative.

    Args:
        explicit_path (Path | None): Optional path to use instead of performing
            the upward search.

    Returns:
        Path: The path provided by the caller or the discovered configuration
            file.

    Raises:
        FileNotFoundError: If no parent directory holds ``CONFIG_FILE_NAME``.
    """

    if explicit_path:
        return explicit_path

    current = Path.cwd()
    for p in (current, *current.parents):
        candidate = p / CONFIG_FILE_NAME
        if candidate.exists():
            return candidate

    raise FileNotFoundError(
        f"Configuration file not found: {CONFIG_FILE_NAME}")


def read_config(config_path: Path) -> configparser.ConfigParser:
    """Load ``config.ini`` and return a populated ``ConfigParser`` instance.

    Validation of required entries happens in :func:`parse_settings`.

    Args:
        config_path (Path): Path to the configuration file, relative or
            absolute.

    Returns:
        configparser.ConfigParser: Parser holding the raw configuration data.

    Raises:
        FileNotFoundError: If ``config_path`` does not exist after expansion and
            resolution.
    """

    config_path = config_path.expanduser().resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    parser = configparser.ConfigParser()
    parser.read(config_path, encoding="utf-8")
    return parser


def _resolve_path(raw: str, base_path: Path) -> Path:
    path = Path(raw).expanduser()
    if not path.is_absolute():
        path = (base_path / path).resolve()
    return path


def parse_settings(parser: configparser.ConfigParser, *, base_path: Optional[Path] = None) -> ConfigSettings:
    """Convert a ``ConfigParser`` into strongly typed :class:`ConfigSettings`.

    The ``[System]`` section is mandatory. ``[Orders]`` and ``[Output]`` are
    optional: a missing starting number falls back to
    :data:`~comanda_pos.constants.DEFAULT_STARTING_ORDER_NUMBER` and missing
    output directories disable the matching adapter. Relative paths are
    anchored to ``base_path`` (or the current working directory).

    Args:
        parser (configparser.ConfigParser): Parsed configuration data.
        base_path (Path | None): Directory used to resolve relative paths.

    Returns:
        ConfigSettings: Immutable settings container.

    Raises:
        KeyError: If a required section or option is missing.
        ValueError: If ``StartingNumber`` is not an integer.
    """

    try:
        data_file_raw = parser.get("System", "DataFile")
        schema_version = parser.get("System", "SchemaVersion")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    if base_path is None:
        base_path = Path.cwd()

    store_name = parser.get("System", "StoreName", fallback=DEFAULT_STORE_NAME)
    starting_order_number = parser.getint(
        "Orders", "StartingNumber", fallback=DEFAULT_STARTING_ORDER_NUMBER)
    export_raw = parser.get("Output", "ExportDir", fallback=None)
    receipt_raw = parser.get("Output", "ReceiptDir", fallback=None)

    return ConfigSettings(
        data_file=_resolve_path(data_file_raw, base_path),
        store_name=store_name,
        schema_version=schema_version,
        starting_order_number=starting_order_number,
        export_dir=_resolve_path(export_raw, base_path) if export_raw else None,
        receipt_dir=_resolve_path(receipt_raw, base_path) if receipt_raw else None,
    )


class JsonFileStore:
    """Key-value store backed by a single JSON document on disk.

    Every :meth:`set` rewrites the document through a temporary file that is
    flushed, fsynced, and atomically moved over the original, so a value is
    durable once the call returns.
    """

    def __init__(self, path: Path, data: Optional[Dict[str, Any]] = None):
        self.path = Path(path)
        self._data: Dict[str, Any] = dict(data or {})

    def get(self, key: str, default: Any = None) -> Any:
        return self._data.get(key, default)

    def set(self, key: str, value: Any) -> None:
        candidate = dict(self._data)
        candidate[key] = value
        try:
            write_document(self.path, candidate)
        except (OSError, TypeError, ValueError) as exc:
            log.error("Failed to persist key '%s' to '%s': %s", key, self.path, exc)
            raise PersistenceError(f"Unable to persist '{key}' to {self.path}: {exc}") from exc
        self._data = candidate


def write_document(destination: Path, document: Mapping[str, Any]) -> None:
    """Atomically replace ``destination`` with ``document`` serialized as JSON.

    Parent directories are created on demand.

    Args:
        destination (Path): File that should receive the document.
        document (Mapping[str, Any]): JSON-serializable mapping.
    """

    dest = Path(destination).expanduser().resolve()
    dest.parent.mkdir(parents=True, exist_ok=True)
    payload = json.dumps(document, ensure_ascii=False, indent=2)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{dest.name}.", dir=dest.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(payload)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_name, dest)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


def open_store(data_file: Path) -> JsonFileStore:
    """Open the terminal data file and return a live :class:`JsonFileStore`.

    Args:
        data_file (Path): Filesystem path to the JSON data file.

    Returns:
        JsonFileStore: Store preloaded with the file contents.

    Raises:
        FileNotFoundError: If ``data_file`` does not exist.
        PersistenceError: If the file is not a JSON object.
    """

    data_file = Path(data_file).expanduser().resolve()
    if not data_file.exists():
        raise FileNotFoundError(f"Data file not found: {data_file}")

    try:
        document = json.loads(data_file.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise PersistenceError(f"Data file is not valid JSON: {data_file}") from exc
    if not isinstance(document, dict):
        raise PersistenceError(f"Data file must hold a JSON object: {data_file}")

    log.debug("Opened data file '%s' with keys %s", data_file, sorted(document))
    return JsonFileStore(data_file, document)


class ProductRepository:
    """Load and save the product catalog under the ``products`` key."""

    def __init__(self, store: KeyValueStore):
        self.store = store

    def load(self) -> List[Product]:
        return [deserialize_product(raw) for raw in self.store.get(PRODUCTS_KEY, [])]

    def save(self, products: Sequence[Product]) -> None:
        self.store.set(PRODUCTS_KEY, [serialize_product(p) for p in products])


class SaleRepository:
    """Load and save the newest-first sale history under the ``sales`` key."""

    def __init__(self, store: KeyValueStore):
        self.store = store

    def load(self) -> List[Sale]:
        return [deserialize_sale(raw) for raw in self.store.get(SALES_KEY, [])]

    def save(self, sales: Sequence[Sale]) -> None:
        self.store.set(SALES_KEY, [serialize_sale(s) for s in sales])


class OrderCounterRepository:
    """Load and save the last issued order number."""

    def __init__(self, store: KeyValueStore):
        self.store = store

    def load(self, default: int) -> int:
        raw = self.store.get(LAST_ORDER_NUMBER_KEY)
        if raw is None:
            return default
        return int(raw)

    def save(self, value: int) -> None:
        self.store.set(LAST_ORDER_NUMBER_KEY, int(value))


def _decimal(raw: Any, *, field_name: str) -> Decimal:
    try:
        return Decimal(str(raw))
    except InvalidOperation as exc:
        raise PersistenceError(f"Stored {field_name} is not a number: {raw!r}") from exc


def serialize_product(record: Product) -> Dict[str, Any]:
    """Convert a product into its JSON mapping, keeping prices as strings."""

    return {
        "id": record.id,
        "code": record.code,
        "name": record.name,
        "price": str(record.price),
    }


def deserialize_product(raw: Mapping[str, Any]) -> Product:
    """Rebuild a :class:`Product` from its stored mapping.

    Identifier, code, and name are coerced to ``str``; the price is parsed
    through ``str`` into :class:`~decimal.Decimal` so float values written by
    older tools keep their printed digits.
    """

    return Product(
        id=str(raw["id"]),
        code=str(raw.get("code", "")),
        name=str(raw.get("name", "")),
        price=_decimal(raw.get("price", "0"), field_name="price"),
    )


def serialize_sale(record: Sale) -> Dict[str, Any]:
    """Convert a sale into its JSON mapping.

    Returns:
        dict[str, Any]: Mapping with ISO-8601 ``timestamp``, the derived
            ``date`` for readability, string money values, and one mapping per
            line in cart order.
    """

    return {
        "id": record.id,
        "order_number": record.order_number,
        "timestamp": record.timestamp.isoformat(),
        "date": record.sale_date.isoformat(),
        "lines": [
            {
                "product_id": line.product_id,
                "name": line.name,
                "quantity": line.quantity,
                "price": str(line.price),
            }
            for line in record.lines
        ],
        "total": str(record.total),
    }


def deserialize_sale(raw: Mapping[str, Any]) -> Sale:
    """Rebuild a :class:`Sale` from its stored mapping.

    The stored ``date`` entry is informational only; the sale date is always
    derived from ``timestamp``.
    """

    lines = tuple(
        SaleLine(
            product_id=str(line["product_id"]),
            name=str(line["name"]),
            quantity=int(line["quantity"]),
            price=_decimal(line["price"], field_name="line price"),
        )
        for line in raw.get("lines", [])
    )
    return Sale(
        id=str(raw["id"]),
        order_number=int(raw["order_number"]),
        timestamp=datetime.fromisoformat(str(raw["timestamp"])),
        lines=lines,
        total=_decimal(raw["total"], field_name="total"),
    )
