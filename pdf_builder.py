import base64
import binascii
import io
import logging
from collections import namedtuple
from datetime import date

from reportlab.lib.pagesizes import A4
from reportlab.lib.units import mm
from reportlab.lib.utils import ImageReader
from reportlab.pdfgen import canvas

logger = logging.getLogger(__name__)

# Layout works in millimetres with the origin at the top-left corner of an A4 page
PAGE_HEIGHT = 297
TOP_MARGIN = 20
ITEMS_PAGE_BREAK_Y = 250
SIGNATURE_MAX_Y = 260
CURRENCY = '£'

FONT = 'Helvetica'
BOLD_FONT = 'Helvetica-Bold'
HEADER_FILL = (240, 240, 240)

TextOp = namedtuple('TextOp', 'x y text font size align')
RectOp = namedtuple('RectOp', 'x y width height fill')
LineOp = namedtuple('LineOp', 'x1 y1 x2 y2')
ImageOp = namedtuple('ImageOp', 'x y width height data name')


def format_money(value):
    return f"{CURRENCY}{(value or 0):.2f}"


def format_number(value):
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def format_date(value):
    if not value:
        return ''
    try:
        parsed = value if isinstance(value, date) else date.fromisoformat(str(value)[:10])
    except ValueError:
        return str(value)
    return parsed.strftime('%d/%m/%Y')


def line_total(item):
    # Display total for one row: VAT added first, then the discount
    return (item['quantity'] * item['unitPrice'] * (1 + item['vatRate'] / 100)
            * (1 - (item.get('discount') or 0) / 100))


class _Layout:
    """Collects drawing operations page by page while tracking the font state."""

    def __init__(self):
        self.pages = [[]]
        self.font = FONT
        self.size = 16

    def set_font(self, font=None, size=None):
        if font:
            self.font = font
        if size:
            self.size = size

    def new_page(self):
        self.pages.append([])

    def text(self, text, x, y, align='left'):
        self.pages[-1].append(TextOp(x, y, text, self.font, self.size, align))

    def rect(self, x, y, width, height, fill):
        self.pages[-1].append(RectOp(x, y, width, height, fill))

    def line(self, x1, y1, x2, y2):
        self.pages[-1].append(LineOp(x1, y1, x2, y2))

    def image(self, data, x, y, width, height, name):
        self.pages[-1].append(ImageOp(x, y, width, height, data, name))


def layout_invoice(invoice, settings, client=None):
    """Lay out an invoice as a list of pages of drawing operations.

    Deterministic: the same invoice, settings and client always give the
    same geometry. The cursor ``y`` only moves down; line items spill onto a
    new page once it passes ``ITEMS_PAGE_BREAK_Y``.
    """
    settings = settings or {}
    client = client or {}
    doc = _Layout()

    # ------------------------------------------------------------------
    # Header: logo (left) and company block (right)
    # ------------------------------------------------------------------
    y = TOP_MARGIN
    if settings.get('logo'):
        doc.image(settings['logo'], 15, y, 40, 40, 'logo')

    doc.set_font(BOLD_FONT, 18)
    doc.text(settings.get('companyName') or 'Your Company', 200, y, align='right')

    y += 8
    doc.set_font(FONT, 9)
    if settings.get('companyAddress'):
        for line in settings['companyAddress'].split('\n'):
            doc.text(line, 200, y, align='right')
            y += 4
    if settings.get('email'):
        doc.text(f"Email: {settings['email']}", 200, y, align='right')
        y += 4
    if settings.get('phone'):
        doc.text(f"Phone: {settings['phone']}", 200, y, align='right')
        y += 4
    if settings.get('vatNumber'):
        doc.text(f"VAT: {settings['vatNumber']}", 200, y, align='right')
        y += 4

    # ------------------------------------------------------------------
    # Title and invoice details
    # ------------------------------------------------------------------
    y = 80
    doc.set_font(BOLD_FONT, 24)
    doc.text('INVOICE', 15, y)

    y += 12
    doc.set_font(FONT, 10)
    doc.text(f"Invoice No: {invoice.get('invoiceNo') or ''}", 15, y)
    doc.text(f"Date: {format_date(invoice.get('issueDate'))}", 15, y + 6)
    if invoice.get('dueDate'):
        doc.text(f"Due Date: {format_date(invoice['dueDate'])}", 15, y + 12)

    # ------------------------------------------------------------------
    # Bill To
    # ------------------------------------------------------------------
    y += 25
    doc.set_font(BOLD_FONT)
    doc.text('Bill To:', 15, y)
    y += 6
    doc.set_font(FONT)
    doc.text(client.get('name') or '', 15, y)
    if client.get('company'):
        y += 5
        doc.text(client['company'], 15, y)
    if client.get('address'):
        for line in client['address'].split('\n'):
            y += 5
            doc.text(line, 15, y)
    if client.get('email'):
        y += 5
        doc.text(client['email'], 15, y)
    if client.get('vatNumber'):
        y += 5
        doc.text(f"VAT: {client['vatNumber']}", 15, y)

    # ------------------------------------------------------------------
    # Line Items Table
    # ------------------------------------------------------------------
    y += 15
    doc.rect(15, y, 180, 8, HEADER_FILL)
    doc.set_font(BOLD_FONT, 9)
    doc.text('Description', 17, y + 5)
    doc.text('Qty', 120, y + 5)
    doc.text('Price', 140, y + 5)
    doc.text('VAT%', 160, y + 5)
    doc.text('Total', 180, y + 5, align='right')

    y += 12
    doc.set_font(FONT)
    for item in invoice.get('items') or []:
        if y > ITEMS_PAGE_BREAK_Y:
            doc.new_page()
            y = TOP_MARGIN

        doc.text(item.get('description') or '', 17, y)
        doc.text(format_number(item['quantity']), 120, y)
        doc.text(format_money(item['unitPrice']), 140, y)
        doc.text(f"{format_number(item['vatRate'])}%", 160, y)
        doc.text(format_money(line_total(item)), 193, y, align='right')
        y += 8

    # ------------------------------------------------------------------
    # Totals Section
    # ------------------------------------------------------------------
    y += 10
    doc.set_font(BOLD_FONT)
    doc.line(130, y, 195, y)
    y += 8

    doc.set_font(FONT)
    doc.text('Subtotal:', 150, y)
    doc.text(format_money(invoice.get('subtotal')), 193, y, align='right')
    y += 6

    doc.text('VAT Total:', 150, y)
    doc.text(format_money(invoice.get('vatTotal')), 193, y, align='right')
    y += 8

    doc.set_font(BOLD_FONT, 11)
    doc.text('Total:', 150, y)
    doc.text(format_money(invoice.get('total')), 193, y, align='right')

    # ------------------------------------------------------------------
    # Payment terms and bank details
    # ------------------------------------------------------------------
    y += 20
    if settings.get('paymentTerms'):
        doc.set_font(BOLD_FONT, 9)
        doc.text('Payment Terms:', 15, y)
        y += 5
        doc.set_font(FONT)
        for line in settings['paymentTerms'].split('\n'):
            doc.text(line, 15, y)
            y += 4

    if settings.get('bankDetails'):
        y += 5
        doc.set_font(BOLD_FONT)
        doc.text('Bank Details:', 15, y)
        y += 5
        doc.set_font(FONT)
        for line in settings['bankDetails'].split('\n'):
            doc.text(line, 15, y)
            y += 4

    if settings.get('signature') and y < SIGNATURE_MAX_Y:
        doc.image(settings['signature'], 15, y + 5, 40, 20, 'signature')

    return doc.pages


def decode_image(data):
    """Turn a ``data:`` URI (or bare base64) into an ImageReader."""
    if isinstance(data, bytes):
        raw = data
    else:
        if data.startswith('data:'):
            _, sep, data = data.partition(',')
            if not sep:
                raise ValueError("data URI has no payload")
        raw = base64.b64decode(data, validate=True)
    return ImageReader(io.BytesIO(raw))


class InvoicePDF:
    def __init__(self, invoice, settings, client=None):
        self.invoice = invoice
        self.settings = settings or {}
        self.client = client or {}

    @property
    def filename(self):
        return f"{self.invoice.get('invoiceNo') or 'invoice'}.pdf"

    def layout(self):
        return layout_invoice(self.invoice, self.settings, self.client)

    def generate(self, target):
        """Draw the invoice into ``target`` (a filename or a binary file object)."""
        # invariant=True keeps timestamps out of the file so output is reproducible
        c = canvas.Canvas(target, pagesize=A4, invariant=True)
        c.setTitle(f"Invoice {self.invoice.get('invoiceNo') or ''}")
        c.setAuthor(self.settings.get('companyName') or '')

        for index, page in enumerate(self.layout()):
            if index:
                c.showPage()
            for op in page:
                self._draw(c, op)
        c.save()
        return target

    def to_bytes(self):
        buffer = io.BytesIO()
        self.generate(buffer)
        return buffer.getvalue()

    def _draw(self, c, op):
        if isinstance(op, TextOp):
            c.setFont(op.font, op.size)
            if op.align == 'right':
                c.drawRightString(op.x * mm, (PAGE_HEIGHT - op.y) * mm, op.text)
            else:
                c.drawString(op.x * mm, (PAGE_HEIGHT - op.y) * mm, op.text)
        elif isinstance(op, RectOp):
            r, g, b = op.fill
            c.setFillColorRGB(r / 255, g / 255, b / 255)
            c.rect(op.x * mm, (PAGE_HEIGHT - op.y - op.height) * mm, op.width * mm, op.height * mm,
                   stroke=0, fill=1)
            c.setFillColorRGB(0, 0, 0)
        elif isinstance(op, LineOp):
            c.line(op.x1 * mm, (PAGE_HEIGHT - op.y1) * mm, op.x2 * mm, (PAGE_HEIGHT - op.y2) * mm)
        elif isinstance(op, ImageOp):
            try:
                image = decode_image(op.data)
                c.drawImage(image, op.x * mm, (PAGE_HEIGHT - op.y - op.height) * mm,
                            op.width * mm, op.height * mm, mask='auto')
            except (binascii.Error, ValueError, OSError) as e:
                logger.warning("%s not added to invoice %s: %s",
                               op.name.capitalize(), self.invoice.get('invoiceNo'), e)


def render_invoice_pdf(invoice, settings, client=None):
    """Return ``(pdf_bytes, filename)`` for an invoice."""
    pdf = InvoicePDF(invoice, settings, client)
    return pdf.to_bytes(), pdf.filename
