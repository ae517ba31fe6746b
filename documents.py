"""PDF invoices and Excel import/export."""
import io
import logging
from typing import Any, Dict, Iterable, List, Sequence
from zipfile import BadZipFile

from openpyxl import Workbook, load_workbook
from openpyxl.utils.exceptions import InvalidFileException
from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.units import mm
from reportlab.pdfgen import canvas

from currency import format_currency
from errors import ValidationError

logger = logging.getLogger(__name__)

PRODUCT_IMPORT_COLUMNS = ["name", "sku", "price", "purchasePrice", "stock", "category", "description"]
STOCK_EDIT_COLUMNS = ["id", "sku", "name", "stock", "price", "purchasePrice"]

STORE_NAME = "Reseller Store"


# PDF

def _draw_order(pdf: canvas.Canvas, order: Dict[str, Any]) -> None:
    width, height = A4
    left, right = 15 * mm, width - 15 * mm
    y = height - 20 * mm

    pdf.setFont("Helvetica-Bold", 16)
    pdf.drawString(left, y, f"INVOICE - {STORE_NAME}")
    y -= 10 * mm

    details = order.get("customer_details") or {}
    date = order.get("date")
    pdf.setFont("Helvetica", 10)
    for line in (
        f"Order ID: {order.get('_id') or order.get('id')}",
        f"Date: {date.strftime('%d %b %Y %H:%M') if hasattr(date, 'strftime') else date or '-'}",
        f"Customer: {details.get('name') or order.get('customer', '')}",
        f"Address: {details.get('address', '-')}",
        f"WhatsApp: {details.get('whatsapp', '-')}",
        f"Order status: {order.get('status')}",
        f"Payment status: {order.get('payment_status')} ({order.get('payment_method', '-')})",
    ):
        pdf.drawString(left, y, line)
        y -= 5 * mm

    y -= 4 * mm
    columns = [(left, "Product"), (left + 95 * mm, "Qty"), (left + 115 * mm, "Price"), (right, "Subtotal")]
    pdf.setFillColor(colors.lightgrey)
    pdf.rect(left - 2, y - 2, right - left + 4, 6 * mm, stroke=0, fill=1)
    pdf.setFillColor(colors.black)
    pdf.setFont("Helvetica-Bold", 10)
    for x, title in columns[:-1]:
        pdf.drawString(x, y, title)
    pdf.drawRightString(right, y, columns[-1][1])
    y -= 7 * mm

    pdf.setFont("Helvetica", 10)
    for item in order.get("products") or []:
        quantity = int(item.get("quantity", 0))
        price = int(item.get("price", 0))
        name = str(item.get("name", ""))
        if item.get("sku"):
            name = f"{name} ({item['sku']})"
        pdf.drawString(left, y, name[:55])
        pdf.drawString(left + 95 * mm, y, str(quantity))
        pdf.drawString(left + 115 * mm, y, format_currency(price))
        pdf.drawRightString(right, y, format_currency(price * quantity))
        y -= 6 * mm
        if y < 40 * mm:
            pdf.showPage()
            pdf.setFont("Helvetica", 10)
            y = height - 20 * mm

    y -= 4 * mm
    for label, amount, bold in (
        ("Subtotal", order.get("subtotal", 0), False),
        ("Shipping", order.get("shipping_fee", 0), False),
        ("Total", order.get("total", 0), True),
    ):
        pdf.setFont("Helvetica-Bold" if bold else "Helvetica", 11 if bold else 10)
        pdf.drawString(left + 115 * mm, y, f"{label}:")
        pdf.drawRightString(right, y, format_currency(amount))
        y -= 6 * mm


def render_orders_pdf(orders: Sequence[Dict[str, Any]]) -> bytes:
    """One invoice page per order."""
    buffer = io.BytesIO()
    pdf = canvas.Canvas(buffer, pagesize=A4)
    pdf.setTitle("Invoice")
    for order in orders:
        _draw_order(pdf, order)
        pdf.showPage()
    pdf.save()
    return buffer.getvalue()


# Excel

def write_rows(columns: Sequence[str], rows: Iterable[Dict[str, Any]], sheet_title: str) -> bytes:
    workbook = Workbook()
    sheet = workbook.active
    sheet.title = sheet_title
    sheet.append(list(columns))
    for row in rows:
        sheet.append([row.get(column) for column in columns])
    buffer = io.BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


def product_import_template() -> bytes:
    example = {
        "name": "Sample Product",
        "sku": "SKU-001",
        "price": 50000,
        "purchasePrice": 35000,
        "stock": 10,
        "category": "General",
        "description": "Short description",
    }
    return write_rows(PRODUCT_IMPORT_COLUMNS, [example], "Products")


def read_rows(data: bytes) -> List[Dict[str, Any]]:
    """Rows of the first sheet as dicts keyed by the header row."""
    try:
        workbook = load_workbook(io.BytesIO(data), read_only=True, data_only=True)
    except (InvalidFileException, BadZipFile, KeyError, OSError) as e:
        logger.warning("Rejected spreadsheet upload: %s", e)
        raise ValidationError("Upload an .xlsx file") from e
    try:
        sheet = workbook.worksheets[0]
        rows = sheet.iter_rows(values_only=True)
        header = next(rows, None)
        if not header:
            return []
        keys = [str(h).strip() if h is not None else "" for h in header]
        result = []
        for values in rows:
            if values is None or all(v is None or v == "" for v in values):
                continue
            result.append({k: v for k, v in zip(keys, values) if k})
        return result
    finally:
        workbook.close()
