"""Business logic layer for Comanda POS.

This module holds the order/sale transaction engine: the product catalog, the
working cart, order number issuance, the append-only sale ledger, and the
reporting projections over it. All I/O goes through the repositories of
:mod:`comanda_pos.data_manager`; every mutation is persisted before the
in-memory state is updated so a failed write never leaves the session ahead
of the data file.
"""

from __future__ import annotations

import re
import uuid
from dataclasses import dataclass, field, replace
from datetime import UTC, date, datetime
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Callable, Dict, List, Optional, Union

from . import data_manager, log
from .constants import EXPECTED_SCHEMA_VERSION
from .data_manager import PersistenceError, Product, Sale, SaleLine


class BusinessRuleViolation(Exception):
    """Raised when a requested operation violates a domain constraint."""


class MissingReferenceError(BusinessRuleViolation):
    """Raised when a referenced product or sale is unknown."""


class EmptyCartError(BusinessRuleViolation):
    """Raised when finalizing a cart that holds no lines."""


class InvalidPriceError(BusinessRuleViolation, ValueError):
    """Raised when a price cannot be parsed or is negative."""


SaleListener = Callable[[Sale], None]

_PRICE_PATTERN = re.compile(r"^[+-]?\d+(?:[.,]\d+)?$")


def _resolve_timestamp(candidate: Optional[datetime]) -> datetime:
    """Return ``candidate`` when given, otherwise the current UTC datetime."""

    return candidate if candidate is not None else datetime.now(UTC)


def _as_day(value: Union[date, datetime]) -> date:
    return value.date() if isinstance(value, datetime) else value


def generate_record_id() -> str:
    """Return an opaque identifier for products and sales."""

    return uuid.uuid4().hex


def parse_price(raw: Union[str, int, float, Decimal]) -> Decimal:
    """Parse user input into a non-negative money value.

    Text input must consist of digits with at most one decimal separator
    (``.`` or ``,``) and an optional leading sign, e.g. ``"5"``, ``"3,50"`` or
    ``"+12.00"``. Surrounding whitespace is ignored. Numeric input is accepted
    as-is after the same sign check.

    Args:
        raw (str | int | float | Decimal): Price as typed by the operator or
            supplied programmatically.

    Returns:
        Decimal: Parsed price.

    Raises:
        InvalidPriceError: If the text does not follow the grammar, the value
            is not finite, or the price is negative.
    """

    if isinstance(raw, bool):
        raise InvalidPriceError(f"Invalid price: {raw!r}")

    if isinstance(raw, str):
        text = raw.strip()
        if not _PRICE_PATTERN.match(text):
            log.error("Price validation failed: %r", raw)
            raise InvalidPriceError(f"Invalid price: {raw!r}")
        value = Decimal(text.replace(",", "."))
    else:
        try:
            value = raw if isinstance(raw, Decimal) else Decimal(str(raw))
        except InvalidOperation as exc:
            raise InvalidPriceError(f"Invalid price: {raw!r}") from exc
        if not value.is_finite():
            raise InvalidPriceError(f"Invalid price: {raw!r}")

    if value < Decimal("0"):
        log.error("Price validation failed, negative value: %s", value)
        raise InvalidPriceError(f"Price must be zero or positive: {raw!r}")
    return value.copy_abs()


class ProductCatalog:
    """Registry of products keyed by their opaque identifier.

    Products keep their insertion order, which is also the order in which they
    are listed and exported.
    """

    def __init__(self, repository: data_manager.ProductRepository):
        self.repository = repository
        self._products: Dict[str, Product] = {
            product.id: product for product in repository.load()
        }
        log.debug("Loaded %d products into the catalog", len(self._products))

    def __len__(self) -> int:
        return len(self._products)

    def __contains__(self, product_id: object) -> bool:
        return product_id in self._products

    def list_products(self) -> List[Product]:
        return list(self._products.values())

    def get_product(self, product_id: str) -> Product:
        """Resolve a product by identifier.

        Raises:
            MissingReferenceError: If ``product_id`` is not in the catalog.
        """

        try:
            return self._products[product_id]
        except KeyError as exc:
            log.warning("Product lookup failed for id '%s'", product_id)
            raise MissingReferenceError(f"Unknown product id: {product_id}") from exc

    def find_by_code(self, code: str) -> Product:
        """Return the first product, in catalog order, whose code is ``code``.

        Codes are not unique; the earliest registered product wins.

        Raises:
            MissingReferenceError: If no product carries ``code``.
        """

        for product in self._products.values():
            if product.code == code:
                return product
        log.warning("Product lookup failed for code '%s'", code)
        raise MissingReferenceError(f"Unknown product code: {code}")

    def add_product(self, name: str, price: Union[str, Decimal, int, float], *, code: Optional[str] = None) -> Product:
        """Register a new product and persist the catalog.

        When ``code`` is blank the next sequential code is assigned, formed by
        the catalog size plus one padded to three digits (``"001"``).

        Args:
            name (str): Display name, must not be blank.
            price (str | Decimal | int | float): Price, parsed with
                :func:`parse_price`.
            code (str | None): Optional user-facing code.

        Returns:
            Product: The stored product.

        Raises:
            BusinessRuleViolation: If ``name`` is blank.
            InvalidPriceError: If ``price`` cannot be parsed.
            PersistenceError: If the catalog cannot be saved.
        """

        name = _require_name(name)
        parsed_price = parse_price(price)
        code = (code or "").strip() or str(len(self._products) + 1).zfill(3)
        product = Product(id=generate_record_id(), code=code, name=name, price=parsed_price)

        candidate = dict(self._products)
        candidate[product.id] = product
        self._commit(candidate)
        log.info("Added product '%s' (%s) code=%s price=%s", product.name, product.id, product.code, product.price)
        return product

    def update_product(
        self,
        product_id: str,
        *,
        code: Optional[str] = None,
        name: Optional[str] = None,
        price: Union[str, Decimal, int, float, None] = None,
    ) -> Product:
        """Replace selected fields of an existing product.

        Only the arguments that are not ``None`` are changed. Finalized sales
        keep the name and price they were sold with.

        Raises:
            MissingReferenceError: If the product is unknown.
            BusinessRuleViolation: If ``name`` is given but blank.
            InvalidPriceError: If ``price`` cannot be parsed.
        """

        current = self.get_product(product_id)
        changes: Dict[str, object] = {}
        if code is not None:
            changes["code"] = code.strip()
        if name is not None:
            changes["name"] = _require_name(name)
        if price is not None:
            changes["price"] = parse_price(price)
        updated = replace(current, **changes)

        candidate = dict(self._products)
        candidate[product_id] = updated
        self._commit(candidate)
        log.info("Updated product '%s' fields: %s", product_id, ", ".join(sorted(changes)) or "none")
        return updated

    def remove_product(self, product_id: str) -> Product:
        """Delete a product from the catalog and return the removed record."""

        removed = self.get_product(product_id)
        candidate = dict(self._products)
        del candidate[product_id]
        self._commit(candidate)
        log.info("Removed product '%s' (%s)", removed.name, product_id)
        return removed

    def _commit(self, candidate: Dict[str, Product]) -> None:
        self.repository.save(list(candidate.values()))
        self._products = candidate


def _require_name(name: str) -> str:
    cleaned = (name or "").strip()
    if not cleaned:
        log.warning("Rejected product with blank name")
        raise BusinessRuleViolation("Product name is required")
    return cleaned


def _require_quantity(quantity: int) -> int:
    if isinstance(quantity, bool) or not isinstance(quantity, int):
        log.warning("Rejected non-integer cart quantity %r", quantity)
        raise BusinessRuleViolation(f"Quantity must be a whole number: {quantity!r}")
    return quantity


@dataclass(frozen=True)
class CartLine:
    """One product in the working cart, with name and price frozen at add time."""

    product_id: str
    name: str
    price: Decimal
    quantity: int

    @property
    def subtotal(self) -> Decimal:
        return self.price * self.quantity


class CartManager:
    """Working set of lines for the order currently being assembled.

    The cart holds at most one line per product and never keeps a line whose
    quantity dropped to zero or below. Lines copy the product name and price
    when first added; later catalog edits do not reach lines already in the
    cart.
    """

    def __init__(self, catalog: ProductCatalog):
        self.catalog = catalog
        self._lines: Dict[str, CartLine] = {}

    def __len__(self) -> int:
        return len(self._lines)

    @property
    def is_empty(self) -> bool:
        return not self._lines

    def lines(self) -> List[CartLine]:
        return list(self._lines.values())

    def get_line(self, product_id: str) -> Optional[CartLine]:
        return self._lines.get(product_id)

    def add_line(self, product_id: str, quantity: int = 1) -> Optional[CartLine]:
        """Add ``quantity`` units of a catalog product to the cart.

        Adding a product already in the cart increases that line's quantity.
        Non-positive quantities are ignored.

        Returns:
            CartLine | None: The line after the change, or ``None`` when the
                call was ignored.

        Raises:
            BusinessRuleViolation: If ``quantity`` is not an integer.
            MissingReferenceError: If the product is not in the catalog.
        """

        _require_quantity(quantity)
        product = self.catalog.get_product(product_id)
        if quantity <= 0:
            log.debug("Ignored add of non-positive quantity %s for '%s'", quantity, product_id)
            return None

        existing = self._lines.get(product_id)
        if existing is None:
            line = CartLine(product_id=product.id, name=product.name, price=product.price, quantity=quantity)
        else:
            line = replace(existing, quantity=existing.quantity + quantity)
        self._lines[product_id] = line
        log.debug("Cart line '%s' now has quantity %d", line.name, line.quantity)
        return line

    def set_quantity(self, product_id: str, quantity: int) -> Optional[CartLine]:
        """Replace the quantity of a line; ``quantity <= 0`` removes it."""

        _require_quantity(quantity)
        existing = self._lines.get(product_id)
        if existing is None:
            return None
        if quantity <= 0:
            self.remove_line(product_id)
            return None
        line = replace(existing, quantity=quantity)
        self._lines[product_id] = line
        return line

    def remove_line(self, product_id: str) -> None:
        if self._lines.pop(product_id, None) is not None:
            log.debug("Removed cart line for '%s'", product_id)

    def clear(self) -> None:
        self._lines.clear()

    def total(self) -> Decimal:
        return sum((line.subtotal for line in self._lines.values()), Decimal("0"))


class OrderSequencer:
    """Issue strictly increasing order numbers that survive restarts.

    The counter stores the last number handed out. A fresh terminal starts at
    the configured offset, so its first order is ``offset + 1``.
    """

    def __init__(self, repository: data_manager.OrderCounterRepository, *, starting_number: int):
        self.repository = repository
        self.starting_number = starting_number
        self._last = repository.load(default=starting_number)

    def current(self) -> int:
        return self._last

    def peek_next(self) -> int:
        return self._last + 1

    def next_number(self) -> int:
        """Consume and return the next order number.

        The incremented value is written to the data file before it is
        returned; if the write fails the counter stays where it was.

        Raises:
            PersistenceError: If the counter cannot be persisted.
        """

        candidate = self._last + 1
        self.repository.save(candidate)
        self._last = candidate
        log.debug("Issued order number %d", candidate)
        return candidate


class SaleLedger:
    """Append-only, newest-first history of finalized sales.

    Sales are never updated or deleted. Listeners registered with
    :meth:`subscribe` are called with each sale once it is committed; printing
    and other presentation concerns hook in there.
    """

    def __init__(self, repository: data_manager.SaleRepository, sequencer: OrderSequencer):
        self.repository = repository
        self.sequencer = sequencer
        self._sales: List[Sale] = repository.load()
        self._listeners: List[SaleListener] = []
        log.debug("Loaded %d sales into the ledger", len(self._sales))

    def __len__(self) -> int:
        return len(self._sales)

    def subscribe(self, listener: SaleListener) -> None:
        self._listeners.append(listener)

    def finalize(self, cart: CartManager, *, timestamp: Optional[datetime] = None) -> Sale:
        """Turn the cart into a committed :class:`Sale`.

        The order number is consumed first. The new history is then persisted,
        and only after that succeeds is the sale added to the in-memory ledger
        and the cart cleared.

        Args:
            cart (CartManager): Cart holding the lines to sell.
            timestamp (datetime | None): Moment of the sale, defaults to now
                in UTC.

        Returns:
            Sale: The committed sale.

        Raises:
            EmptyCartError: If the cart has no lines. Nothing is changed.
            PersistenceError: If the counter or the history cannot be saved.
                Ledger and cart are unchanged; an order number consumed before
                the failure is not reused.
        """

        if cart.is_empty:
            log.warning("Attempted to finalize an empty cart")
            raise EmptyCartError("Cannot finalize an empty cart")

        order_number = self.sequencer.next_number()
        timestamp = _resolve_timestamp(timestamp)
        lines = tuple(
            SaleLine(product_id=line.product_id, name=line.name, quantity=line.quantity, price=line.price)
            for line in cart.lines()
        )
        total = sum((line.subtotal for line in lines), Decimal("0"))
        sale = Sale(
            id=generate_record_id(),
            order_number=order_number,
            timestamp=timestamp,
            lines=lines,
            total=total,
        )

        history = [sale, *self._sales]
        try:
            self.repository.save(history)
        except PersistenceError:
            log.error("Sale for order %d was not recorded; the number stays consumed", order_number)
            raise
        self._sales = history
        cart.clear()
        log.info(
            "Finalized order %d with %d lines (total=%s)",
            order_number,
            len(lines),
            total,
        )
        self._publish(sale)
        return sale

    def _publish(self, sale: Sale) -> None:
        for listener in list(self._listeners):
            try:
                listener(sale)
            except Exception:
                log.exception("Sale listener %r failed for order %d", listener, sale.order_number)

    def all_sales(self) -> List[Sale]:
        return list(self._sales)

    def sales_on(self, day: Union[date, datetime]) -> List[Sale]:
        """Return the sales whose timestamp falls on calendar day ``day``."""

        day = _as_day(day)
        return [sale for sale in self._sales if sale.sale_date == day]

    def get_sale(self, sale_id: str) -> Sale:
        for sale in self._sales:
            if sale.id == sale_id:
                return sale
        log.warning("Sale lookup failed for id '%s'", sale_id)
        raise MissingReferenceError(f"Unknown sale id: {sale_id}")

    def find_by_order_number(self, order_number: int) -> Sale:
        for sale in self._sales:
            if sale.order_number == order_number:
                return sale
        log.warning("Sale lookup failed for order %s", order_number)
        raise MissingReferenceError(f"Unknown order number: {order_number}")


@dataclass(frozen=True)
class DailyTotals:
    """Revenue and per-product quantities for one calendar day."""

    sale_date: date
    total: Decimal
    items: Dict[str, int] = field(default_factory=dict)
    sale_count: int = 0


class ReportAggregator:
    """Read-only projections computed from the ledger at call time."""

    def __init__(self, ledger: SaleLedger):
        self.ledger = ledger

    def daily_totals(self, day: Union[date, datetime]) -> DailyTotals:
        """Sum the sales of ``day`` and count units sold per product name.

        A day without sales yields a zero total and an empty mapping.
        """

        day = _as_day(day)
        sales = self.ledger.sales_on(day)
        total = sum((sale.total for sale in sales), Decimal("0"))
        items: Dict[str, int] = {}
        for sale in sales:
            for line in sale.lines:
                items[line.name] = items.get(line.name, 0) + line.quantity
        log.debug("Aggregated %d sales for %s", len(sales), day.isoformat())
        return DailyTotals(sale_date=day, total=total, items=items, sale_count=len(sales))


@dataclass(frozen=True)
class RuntimeContext:
    """Session state: settings, the backing store, and one of each component."""

    settings: data_manager.ConfigSettings
    store: data_manager.KeyValueStore
    catalog: ProductCatalog
    cart: CartManager
    sequencer: OrderSequencer
    ledger: SaleLedger
    reports: ReportAggregator


def build_runtime_context(settings: data_manager.ConfigSettings, store: data_manager.KeyValueStore) -> RuntimeContext:
    """Wire the engine components on top of ``store``."""

    catalog = ProductCatalog(data_manager.ProductRepository(store))
    sequencer = OrderSequencer(
        data_manager.OrderCounterRepository(store),
        starting_number=settings.starting_order_number,
    )
    ledger = SaleLedger(data_manager.SaleRepository(store), sequencer)
    return RuntimeContext(
        settings=settings,
        store=store,
        catalog=catalog,
        cart=CartManager(catalog),
        sequencer=sequencer,
        ledger=ledger,
        reports=ReportAggregator(ledger),
    )


def load_runtime_context(config_path: Optional[Path] = None) -> RuntimeContext:
    """Load configuration settings and the data file into a session.

    Args:
        config_path (Path | None): Optional override path for the configuration
            file. When omitted the data layer searches upward from the current
            working directory.

    Returns:
        RuntimeContext: Fully wired session with an empty cart.

    Raises:
        FileNotFoundError: If the configuration file or data file cannot be
            located.
        KeyError: When mandatory configuration options are missing.
    """
    located_config = data_manager.find_config_file(config_path)
    resolved_config = Path(located_config).expanduser().resolve()
    parser = data_manager.read_config(resolved_config)
    settings = data_manager.parse_settings(parser, base_path=resolved_config.parent)
    store = data_manager.open_store(settings.data_file)
    log.info("Loaded runtime context for data file '%s'", settings.data_file)
    return build_runtime_context(settings, store)


def ensure_schema_version(context: RuntimeContext) -> None:
    """Refuse to work on a data file declared with another layout version.

    Raises:
        RuntimeError: If the configured schema version does not match
            ``EXPECTED_SCHEMA_VERSION``.
    """
    if context.settings.schema_version != EXPECTED_SCHEMA_VERSION:
        log.error(
            "Data file schema mismatch: expected %s, found %s",
            EXPECTED_SCHEMA_VERSION,
            context.settings.schema_version,
        )
        raise RuntimeError(
            "Data file schema mismatch: expected %s, found %s"
            % (EXPECTED_SCHEMA_VERSION, context.settings.schema_version)
        )

    log.debug("Schema version '%s' validated", context.settings.schema_version)
