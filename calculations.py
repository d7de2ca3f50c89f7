"""Invoice arithmetic and boundary parsing.

Everything here is pure: no database access, no Flask context.
"""
import math
from datetime import date, datetime

from errors import ValidationError
from models import INVOICE_STATUSES

INVOICE_NUMBER_WIDTH = 6


def calculate_totals(items):
    """Return ``(subtotal, vat_total, total)`` for a sequence of line items.

    Discount is applied before VAT. Nothing is rounded here; rounding to
    2 decimal places only happens when values are displayed.
    """
    subtotal = 0.0
    vat_total = 0.0
    for item in items:
        item_subtotal = item['quantity'] * item['unitPrice'] * (1 - (item.get('discount') or 0) / 100)
        item_vat = item_subtotal * (item['vatRate'] / 100)
        subtotal += item_subtotal
        vat_total += item_vat
    return subtotal, vat_total, subtotal + vat_total


def format_invoice_number(prefix, number):
    # Pads to 6 digits but never truncates: 1000000 stays 1000000
    return f"{prefix or ''}{str(number).zfill(INVOICE_NUMBER_WIDTH)}"


def summarize_invoices(invoices):
    total_invoices = 0
    total_billed = 0.0
    total_paid = 0.0
    for inv in invoices:
        amount = inv.get('total') or 0
        total_invoices += 1
        total_billed += amount
        if inv.get('status') == 'paid':
            total_paid += amount

    return {
        'totalInvoices': total_invoices,
        'totalBilled': total_billed,
        'totalPaid': total_paid,
        'outstanding': total_billed - total_paid,
    }


def _parse_number(value, field, index):
    if isinstance(value, bool) or value is None:
        raise ValidationError(f"Item {index + 1}: {field} must be a number")
    if isinstance(value, str):
        value = value.strip()
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"Item {index + 1}: {field} must be a number")
    if not math.isfinite(number):
        raise ValidationError(f"Item {index + 1}: {field} must be a finite number")
    return number


def parse_line_items(raw_items, allow_negative=False):
    """Validate raw line items into clean dicts ready for ``calculate_totals``."""
    if raw_items is None:
        return []
    if not isinstance(raw_items, (list, tuple)):
        raise ValidationError("Items must be a list")

    items = []
    for index, raw in enumerate(raw_items):
        if not isinstance(raw, dict):
            raise ValidationError(f"Item {index + 1}: must be an object")

        for field in ('quantity', 'unitPrice', 'vatRate'):
            if field not in raw:
                raise ValidationError(f"Item {index + 1}: {field} is required")

        quantity = _parse_number(raw['quantity'], 'quantity', index)
        unit_price = _parse_number(raw['unitPrice'], 'unitPrice', index)
        vat_rate = _parse_number(raw['vatRate'], 'vatRate', index)
        discount = raw.get('discount')
        discount = 0.0 if discount in (None, '') else _parse_number(discount, 'discount', index)

        if not allow_negative and (quantity < 0 or unit_price < 0):
            raise ValidationError(f"Item {index + 1}: quantity and unitPrice must not be negative")
        if not 0 <= vat_rate <= 100:
            raise ValidationError(f"Item {index + 1}: vatRate must be between 0 and 100")
        if not 0 <= discount <= 100:
            raise ValidationError(f"Item {index + 1}: discount must be between 0 and 100")

        items.append({
            'description': str(raw.get('description') or ''),
            'quantity': quantity,
            'unitPrice': unit_price,
            'vatRate': vat_rate,
            'discount': discount,
        })
    return items


def parse_status(value):
    if value not in INVOICE_STATUSES:
        raise ValidationError(f"Status must be one of: {', '.join(INVOICE_STATUSES)}")
    return value


def parse_date(value, field):
    if value in (None, ''):
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        # Accept a full ISO timestamp and keep only its date part
        return datetime.strptime(str(value)[:10], '%Y-%m-%d').date()
    except ValueError:
        raise ValidationError(f"{field} must be a date in YYYY-MM-DD format")
