"""Receipt rendering and dispatch for finalized sales.

The ledger knows nothing about printing. A :class:`ReceiptPrinter` is
subscribed to :meth:`~comanda_pos.core_logic.SaleLedger.subscribe` and, for
every committed sale, renders a plain-text receipt and hands it to its
printing surface: either a spool directory (one ``order_<n>.txt`` per sale,
picked up by the OS print queue) or an open text stream.
"""

from __future__ import annotations

from pathlib import Path
from typing import List, Optional, TextIO

from . import log
from .constants import MONEY_QUANTUM
from .data_manager import Sale

RECEIPT_WIDTH = 40


def _money(value) -> str:
    return f"R$ {value.quantize(MONEY_QUANTUM)}"


def render_receipt(sale: Sale, *, store_name: str, width: int = RECEIPT_WIDTH) -> str:
    """Render ``sale`` as a fixed-width text receipt.

    Args:
        sale (Sale): Committed sale to print.
        store_name (str): Header line printed above the order number.
        width (int): Total character width of the receipt.

    Returns:
        str: Receipt text ending with a newline.
    """

    rule = "-" * width
    lines: List[str] = [
        store_name.center(width).rstrip(),
        rule,
        f"Comanda: {sale.order_number}",
        f"Data: {sale.timestamp.strftime('%Y-%m-%d %H:%M:%S %Z').strip()}",
        rule,
        "Itens:",
    ]
    for line in sale.lines:
        label = f"{line.name} x{line.quantity}"
        amount = _money(line.subtotal)
        padding = max(1, width - len(label) - len(amount))
        lines.append(f"{label}{' ' * padding}{amount}")
        lines.append(f"  @ {_money(line.price)}")
    total = _money(sale.total)
    lines.append(rule)
    lines.append(f"Total:{' ' * max(1, width - len('Total:') - len(total))}{total}")
    return "\n".join(lines) + "\n"


def receipt_filename(sale: Sale) -> str:
    return f"order_{sale.order_number}.txt"


class ReceiptPrinter:
    """Sale listener that renders receipts onto a spool directory or a stream.

    Exactly one of ``spool_dir`` and ``stream`` must be given.
    """

    def __init__(self, store_name: str, *, spool_dir: Optional[Path] = None, stream: Optional[TextIO] = None):
        if (spool_dir is None) == (stream is None):
            raise ValueError("Provide exactly one of spool_dir or stream")
        self.store_name = store_name
        self.spool_dir = Path(spool_dir) if spool_dir is not None else None
        self.stream = stream

    def __call__(self, sale: Sale) -> None:
        self.print_sale(sale)

    def print_sale(self, sale: Sale) -> Optional[Path]:
        """Render ``sale`` and dispatch it; returns the spooled file, if any."""

        text = render_receipt(sale, store_name=self.store_name)
        if self.stream is not None:
            self.stream.write(text)
            self.stream.flush()
            log.info("Printed receipt for order %d to stream", sale.order_number)
            return None

        self.spool_dir.mkdir(parents=True, exist_ok=True)
        destination = self.spool_dir / receipt_filename(sale)
        destination.write_text(text, encoding="utf-8")
        log.info("Spooled receipt for order %d to '%s'", sale.order_number, destination)
        return destination
