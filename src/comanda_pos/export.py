"""Spreadsheet export for the product catalog and the sale history.

Each export produces a single-sheet ``.xlsx`` workbook with a bold header row.
File names embed the exported entity, the selected sale date (or ``all``), and
the day the export was produced, e.g. ``sales_2024-05-01_2024-05-02.xlsx``.
"""

from __future__ import annotations

from datetime import date
from pathlib import Path
from typing import Iterable, Optional, Sequence

import openpyxl
from openpyxl.styles import Font
from openpyxl.workbook import Workbook

from . import log
from .constants import MONEY_QUANTUM, ExportKind, SheetName
from .data_manager import Product, Sale, SaleLine

PRODUCT_COLUMNS: Sequence[str] = ("Code", "Name", "Price")
SALE_COLUMNS: Sequence[str] = ("Order", "Timestamp", "Total", "Items")
LINE_SEPARATOR = " | "


def build_export_filename(kind: ExportKind, *, today: date, sale_date: Optional[date] = None) -> str:
    """Return the conventional file name for an export.

    Product exports ignore ``sale_date``. Sale exports use ``all`` when no date
    filter was applied.
    """

    if kind is ExportKind.PRODUCTS:
        return f"{kind.value}_{today.isoformat()}.xlsx"
    scope = sale_date.isoformat() if sale_date is not None else "all"
    return f"{kind.value}_{scope}_{today.isoformat()}.xlsx"


def format_sale_line(line: SaleLine) -> str:
    return f"{line.name} x{line.quantity} ({line.price.quantize(MONEY_QUANTUM)})"


def format_sale_items(sale: Sale) -> str:
    """Flatten the lines of ``sale`` into one cell value."""

    return LINE_SEPARATOR.join(format_sale_line(line) for line in sale.lines)


def product_rows(products: Iterable[Product]) -> list[list[object]]:
    return [[product.code, product.name, product.price] for product in products]


def sale_rows(sales: Iterable[Sale]) -> list[list[object]]:
    """Convert sales into worksheet rows, one row per sale.

    Timestamps are written as ISO-8601 text so the timezone survives; openpyxl
    refuses timezone-aware datetimes.
    """

    return [
        [sale.order_number, sale.timestamp.isoformat(), sale.total, format_sale_items(sale)]
        for sale in sales
    ]


def build_workbook(sheet_name: str, columns: Sequence[str], rows: Iterable[Sequence[object]]) -> Workbook:
    """Create an in-memory workbook with one titled sheet and a bold header."""

    workbook = openpyxl.Workbook()
    worksheet = workbook.active
    worksheet.title = sheet_name

    bold_font = Font(bold=True)
    for column_index, column_name in enumerate(columns, start=1):
        cell = worksheet.cell(row=1, column=column_index)
        cell.value = column_name
        cell.font = bold_font

    for row in rows:
        worksheet.append(list(row))
    return workbook


def _save(workbook: Workbook, destination: Path) -> Path:
    destination = Path(destination).expanduser().resolve()
    destination.parent.mkdir(parents=True, exist_ok=True)
    workbook.save(destination)
    return destination


def export_products(products: Iterable[Product], output_dir: Path, *, today: date) -> Path:
    """Write the catalog to ``output_dir`` and return the created file path."""

    rows = product_rows(products)
    workbook = build_workbook(SheetName.PRODUCTS.value, PRODUCT_COLUMNS, rows)
    destination = _save(workbook, Path(output_dir) / build_export_filename(ExportKind.PRODUCTS, today=today))
    log.info("Exported %d products to '%s'", len(rows), destination)
    return destination


def export_sales(
    sales: Iterable[Sale],
    output_dir: Path,
    *,
    today: date,
    sale_date: Optional[date] = None,
) -> Path:
    """Write sales to ``output_dir`` and return the created file path.

    Args:
        sales (Iterable[Sale]): Sales to export, already filtered by the
            caller when ``sale_date`` is given.
        output_dir (Path): Directory receiving the workbook.
        today (date): Export day embedded in the file name.
        sale_date (date | None): Day the sales were filtered on, or ``None``
            for the full history.

    Returns:
        Path: Location of the saved workbook.
    """

    rows = sale_rows(sales)
    workbook = build_workbook(SheetName.SALES.value, SALE_COLUMNS, rows)
    filename = build_export_filename(ExportKind.SALES, today=today, sale_date=sale_date)
    destination = _save(workbook, Path(output_dir) / filename)
    log.info("Exported %d sales to '%s'", len(rows), destination)
    return destination

