import logging
from datetime import date, datetime

from flask import current_app
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from werkzeug.security import check_password_hash, generate_password_hash

from calculations import (
    calculate_totals,
    format_invoice_number,
    parse_date,
    parse_line_items,
    parse_status,
    summarize_invoices,
)
from errors import Conflict, InvalidCredentials, InvoiceAppError, NotFound, ValidationError
from models import RETENTION_PERIOD, SETTINGS_ID, Client, Invoice, Settings, User, db

logger = logging.getLogger(__name__)

DEFAULT_SETTINGS = {
    'company_name': 'InvoiceGen Ltd',
    'company_address': '123 Business Street\nLondon, UK\nSW1A 1AA',
    'vat_number': 'GB123456789',
    'email': 'info@invoicegen.com',
    'phone': '+44 20 1234 5678',
    'website': 'www.invoicegen.com',
    'invoice_prefix': 'INV-',
    'next_invoice_number': 1,
    'payment_terms': 'Payment due within 30 days\nBank transfer preferred',
    'bank_details': 'Account Name: InvoiceGen Ltd\nSort Code: 12-34-56\nAccount Number: 12345678',
    'logo': None,
    'signature': None,
    'accent_color': '#1e40af',
}

# Derived or identity fields a caller may send back but never overwrite
IMMUTABLE_INVOICE_FIELDS = ('id', '_id', 'invoiceNo', 'subtotal', 'vatTotal', 'total', 'createdAt', 'expiresAt')


def _insert_if_absent(instance, description):
    # The primary key / unique constraint decides who wins when two processes provision at once
    db.session.add(instance)
    try:
        db.session.commit()
        logger.info("Default %s created", description)
    except IntegrityError:
        db.session.rollback()
        logger.info("Default %s already provisioned", description)


def init_db():
    """Provision the default admin user and company settings if missing."""
    username = current_app.config['DEFAULT_ADMIN_USERNAME']
    if User.query.filter_by(username=username).first() is None:
        _insert_if_absent(User(
            username=username,
            password=generate_password_hash(current_app.config['DEFAULT_ADMIN_PASSWORD']),
            role='admin',
        ), 'admin user')

    if db.session.get(Settings, SETTINGS_ID) is None:
        _insert_if_absent(Settings(id=SETTINGS_ID, **DEFAULT_SETTINGS), 'settings')


# ----------------------------------------------------------------------
# Settings
# ----------------------------------------------------------------------

def _get_settings_row():
    settings = db.session.get(Settings, SETTINGS_ID)
    if settings is None:
        raise NotFound("Settings not found")
    return settings


def get_settings():
    return _get_settings_row().to_dict()


def update_settings(data):
    """Merge ``data`` into the settings record. Unknown keys are ignored."""
    settings = _get_settings_row()

    changes = _settings_changes(data, settings.next_invoice_number)
    for attr, value in changes.items():
        setattr(settings, attr, value)

    settings.updated_at = datetime.utcnow()
    db.session.commit()
    return settings.to_dict()


def _settings_changes(data, current=None):
    """Map wire keys in ``data`` to validated column values.

    With ``current`` set the counter may only move forwards; restores pass None.
    """
    changes = {attr: data[key] for key, attr in Settings.FIELDS.items() if key in data}
    if 'next_invoice_number' in changes:
        changes['next_invoice_number'] = _parse_counter(changes['next_invoice_number'], current)
    if 'invoice_prefix' in changes and changes['invoice_prefix'] is None:
        changes['invoice_prefix'] = ''
    return changes


def _parse_counter(value, current=None):
    if isinstance(value, bool):
        raise ValidationError("nextInvoiceNumber must be an integer")
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ValidationError("nextInvoiceNumber must be an integer")
    if number != value and str(number) != str(value).strip():
        raise ValidationError("nextInvoiceNumber must be an integer")
    if number < 1:
        raise ValidationError("nextInvoiceNumber must be at least 1")
    if current is not None and number < current:
        raise ValidationError(f"nextInvoiceNumber cannot go backwards (currently {current})")
    return number


def allocate_invoice_number():
    """Atomically take the next invoice number and advance the counter.

    The increment runs as a single UPDATE so concurrent creators queue on the
    row lock instead of reading the same value.
    """
    result = db.session.execute(
        update(Settings)
        .where(Settings.id == SETTINGS_ID)
        .values(next_invoice_number=Settings.next_invoice_number + 1),
        execution_options={'synchronize_session': False},
    )
    if result.rowcount == 0:
        db.session.rollback()
        raise NotFound("Settings not found")

    prefix, next_number = db.session.execute(
        select(Settings.invoice_prefix, Settings.next_invoice_number).where(Settings.id == SETTINGS_ID)
    ).one()
    db.session.commit()
    return format_invoice_number(prefix, next_number - 1)


# ----------------------------------------------------------------------
# Clients
# ----------------------------------------------------------------------

def _get_client_row(client_id):
    client = db.session.get(Client, client_id)
    if client is None:
        raise NotFound("Client not found")
    return client


def get_clients():
    clients = Client.query.order_by(Client.created_at.desc()).all()
    return [c.to_dict() for c in clients]


def get_client(client_id):
    return _get_client_row(client_id).to_dict()


def find_client(client_id):
    """Like ``get_client`` but returns None for a missing (orphaned) reference."""
    if not client_id:
        return None
    client = db.session.get(Client, client_id)
    return client.to_dict() if client else None


def add_client(data):
    name = (data.get('name') or '').strip()
    if not name:
        raise ValidationError("Client name is required")

    client = Client(**{attr: data.get(key) for key, attr in Client.FIELDS.items()})
    client.name = name
    db.session.add(client)
    db.session.commit()
    logger.info("Client %s created", client.id)
    return client.to_dict()


def update_client(client_id, data):
    client = _get_client_row(client_id)
    for key, attr in Client.FIELDS.items():
        if key in data:
            setattr(client, attr, data[key])

    if not (client.name or '').strip():
        db.session.rollback()
        raise ValidationError("Client name is required")

    client.updated_at = datetime.utcnow()
    db.session.commit()
    return client.to_dict()


def delete_client(client_id):
    # Invoices keep their clientId; the reference simply dangles
    client = _get_client_row(client_id)
    db.session.delete(client)
    db.session.commit()
    logger.info("Client %s deleted", client_id)


# ----------------------------------------------------------------------
# Invoices
# ----------------------------------------------------------------------

def _get_invoice_row(invoice_id):
    invoice = db.session.get(Invoice, invoice_id)
    if invoice is None:
        raise NotFound("Invoice not found")
    return invoice


def _apply_items(invoice, raw_items):
    items = parse_line_items(raw_items, allow_negative=current_app.config['ALLOW_NEGATIVE_LINE_ITEMS'])
    subtotal, vat_total, total = calculate_totals(items)
    invoice.items = items
    invoice.subtotal = subtotal
    invoice.vat_total = vat_total
    invoice.total = total


def get_invoices(status=None):
    query = Invoice.query
    if status and status.lower() != 'all':
        query = query.filter_by(status=parse_status(status))
    return [inv.to_dict() for inv in query.order_by(Invoice.created_at.desc()).all()]


def get_invoice(invoice_id):
    return _get_invoice_row(invoice_id).to_dict()


def find_invoice_by_number(invoice_no):
    invoice = Invoice.query.filter_by(invoice_no=invoice_no).first()
    return invoice.to_dict() if invoice else None


def create_invoice(data):
    # Validate everything before a number is taken so bad input never burns one
    invoice = Invoice(
        client_id=data.get('clientId'),
        status=parse_status(data.get('status') or 'draft'),
        issue_date=parse_date(data.get('issueDate'), 'issueDate') or date.today(),
        due_date=parse_date(data.get('dueDate'), 'dueDate'),
        notes=data.get('notes') or '',
    )
    _apply_items(invoice, data.get('items'))

    invoice.invoice_no = allocate_invoice_number()
    now = datetime.utcnow()
    invoice.created_at = now
    invoice.updated_at = now
    invoice.expires_at = now + RETENTION_PERIOD

    db.session.add(invoice)
    db.session.commit()
    logger.info("Invoice %s created (%s)", invoice.invoice_no, invoice.id)
    return invoice.to_dict()


def update_invoice(invoice_id, data):
    invoice = _get_invoice_row(invoice_id)
    data = {k: v for k, v in data.items() if k not in IMMUTABLE_INVOICE_FIELDS}

    # Parse everything first so a bad field leaves the record untouched
    changes = {}
    if 'clientId' in data:
        changes['client_id'] = data['clientId']
    if 'status' in data:
        changes['status'] = parse_status(data['status'])
    if 'issueDate' in data:
        changes['issue_date'] = parse_date(data['issueDate'], 'issueDate') or invoice.issue_date
    if 'dueDate' in data:
        changes['due_date'] = parse_date(data['dueDate'], 'dueDate')
    if 'notes' in data:
        changes['notes'] = data['notes'] or ''
    if 'items' in data:
        items = parse_line_items(data['items'], allow_negative=current_app.config['ALLOW_NEGATIVE_LINE_ITEMS'])
        subtotal, vat_total, total = calculate_totals(items)
        changes.update(items=items, subtotal=subtotal, vat_total=vat_total, total=total)

    for attr, value in changes.items():
        setattr(invoice, attr, value)
    invoice.updated_at = datetime.utcnow()
    db.session.commit()
    return invoice.to_dict()


def update_invoice_status(invoice_id, new_status):
    return update_invoice(invoice_id, {'status': new_status})


def delete_invoice(invoice_id):
    invoice = _get_invoice_row(invoice_id)
    invoice_no = invoice.invoice_no
    db.session.delete(invoice)
    db.session.commit()
    logger.info("Invoice %s deleted", invoice_no)


def mark_overdue_invoices(today=None):
    """Flip issued invoices past their due date to overdue, returning them."""
    today = today or date.today()
    newly_overdue = Invoice.query.filter(
        Invoice.due_date < today,
        Invoice.status == 'issued',
    ).all()

    for invoice in newly_overdue:
        invoice.status = 'overdue'
        invoice.updated_at = datetime.utcnow()

    if newly_overdue:
        db.session.commit()
        logger.info("Checked invoices: %d marked as overdue", len(newly_overdue))
    return [inv.to_dict() for inv in newly_overdue]


def get_invoices_due_on(day):
    invoices = Invoice.query.filter(
        Invoice.due_date == day,
        Invoice.status.in_(('draft', 'issued')),
    ).all()
    return [inv.to_dict() for inv in invoices]


# ----------------------------------------------------------------------
# Dashboard
# ----------------------------------------------------------------------

def get_dashboard_stats():
    rows = db.session.execute(select(Invoice.total, Invoice.status)).all()
    return summarize_invoices({'total': total, 'status': status} for total, status in rows)


# ----------------------------------------------------------------------
# Auth
# ----------------------------------------------------------------------

def _get_user_row(username):
    user = User.query.filter_by(username=username).first()
    if user is None:
        raise NotFound("User not found")
    return user


def authenticate(username, password):
    user = User.query.filter_by(username=username).first()
    if user is None or not check_password_hash(user.password, password or ''):
        raise InvalidCredentials("Invalid credentials")
    return user.to_dict()


def change_password(username, current_password, new_password):
    user = _get_user_row(username)
    if not check_password_hash(user.password, current_password or ''):
        raise InvalidCredentials("Current password is incorrect")

    user.password = generate_password_hash(new_password)
    user.updated_at = datetime.utcnow()
    db.session.commit()
    logger.info("Password changed for user %s", user.id)


def change_username(current_username, new_username, password):
    user = _get_user_row(current_username)
    if not check_password_hash(user.password, password or ''):
        raise InvalidCredentials("Password is incorrect")

    if User.query.filter_by(username=new_username).first() is not None:
        raise Conflict("Username already exists")

    user.username = new_username
    user.updated_at = datetime.utcnow()
    try:
        db.session.commit()
    except IntegrityError:
        # Lost a race against another rename to the same name
        db.session.rollback()
        raise Conflict("Username already exists")
    logger.info("Username changed for user %s", user.id)


# ----------------------------------------------------------------------
# Export / import
# ----------------------------------------------------------------------

def export_data():
    """Export clients, invoices and settings to a dictionary."""
    return {
        'clients': [c.to_dict() for c in Client.query.all()],
        'invoices': [i.to_dict() for i in Invoice.query.all()],
        'settings': get_settings(),
    }


def _parse_timestamp(value):
    return datetime.fromisoformat(value) if value else None


def import_data(data):
    """Replace clients, invoices and settings with ``data`` in one transaction."""
    try:
        Invoice.query.delete()
        Client.query.delete()

        for c_data in data.get('clients', []):
            client = Client(
                id=c_data['id'],
                created_at=_parse_timestamp(c_data.get('createdAt')),
                updated_at=_parse_timestamp(c_data.get('updatedAt')),
                **{attr: c_data.get(key) for key, attr in Client.FIELDS.items()}
            )
            db.session.add(client)

        for i_data in data.get('invoices', []):
            # Backups may hold credit-note lines, so negatives are let through
            items = parse_line_items(i_data.get('items'), allow_negative=True)
            subtotal, vat_total, total = calculate_totals(items)
            invoice = Invoice(
                id=i_data['id'],
                invoice_no=i_data['invoiceNo'],
                client_id=i_data.get('clientId'),
                items=items,
                subtotal=i_data.get('subtotal', subtotal),
                vat_total=i_data.get('vatTotal', vat_total),
                total=i_data.get('total', total),
                status=parse_status(i_data.get('status') or 'draft'),
                issue_date=parse_date(i_data.get('issueDate'), 'issueDate'),
                due_date=parse_date(i_data.get('dueDate'), 'dueDate'),
                notes=i_data.get('notes') or '',
                created_at=_parse_timestamp(i_data.get('createdAt')),
                updated_at=_parse_timestamp(i_data.get('updatedAt')),
                archived_at=_parse_timestamp(i_data.get('archivedAt')),
                expires_at=_parse_timestamp(i_data.get('expiresAt')),
            )
            db.session.add(invoice)

        s_data = data.get('settings')
        if s_data:
            settings = _get_settings_row()
            # A restore may lower the counter, but it must stay a valid number
            for attr, value in _settings_changes(s_data).items():
                setattr(settings, attr, value)

        db.session.commit()
    except InvoiceAppError:
        db.session.rollback()
        raise
    except (AttributeError, KeyError, TypeError, ValueError) as e:
        db.session.rollback()
        raise ValidationError(f"Error importing data: {e}")
    except Exception:
        db.session.rollback()
        raise
    logger.info("Data imported: %d clients, %d invoices",
                len(data.get('clients', [])), len(data.get('invoices', [])))
