from flask_sqlalchemy import SQLAlchemy
from datetime import datetime, timedelta
import uuid

db = SQLAlchemy()

SETTINGS_ID = 'company-settings'
INVOICE_STATUSES = ('draft', 'issued', 'paid', 'overdue')
RETENTION_PERIOD = timedelta(days=6 * 365)


def new_id():
    return str(uuid.uuid4())


def _iso(value):
    return value.isoformat() if value else None


class Settings(db.Model):
    __tablename__ = 'settings'
    id = db.Column(db.String, primary_key=True, default=SETTINGS_ID)
    company_name = db.Column(db.String)
    company_address = db.Column(db.Text)
    vat_number = db.Column(db.String)
    email = db.Column(db.String)
    phone = db.Column(db.String)
    website = db.Column(db.String)
    invoice_prefix = db.Column(db.String, nullable=False, default='INV-')
    next_invoice_number = db.Column(db.Integer, nullable=False, default=1)
    payment_terms = db.Column(db.Text)
    bank_details = db.Column(db.Text)
    logo = db.Column(db.Text)
    signature = db.Column(db.Text)
    accent_color = db.Column(db.String)
    discord_webhook_url = db.Column(db.String)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # wire name -> column attribute, for fields a settings update may touch
    FIELDS = {
        'companyName': 'company_name',
        'companyAddress': 'company_address',
        'vatNumber': 'vat_number',
        'email': 'email',
        'phone': 'phone',
        'website': 'website',
        'invoicePrefix': 'invoice_prefix',
        'nextInvoiceNumber': 'next_invoice_number',
        'paymentTerms': 'payment_terms',
        'bankDetails': 'bank_details',
        'logo': 'logo',
        'signature': 'signature',
        'accentColor': 'accent_color',
        'discordWebhookUrl': 'discord_webhook_url',
    }

    def to_dict(self):
        data = {'id': self.id}
        for key, attr in self.FIELDS.items():
            data[key] = getattr(self, attr)
        data['updatedAt'] = _iso(self.updated_at)
        return data


class Client(db.Model):
    __tablename__ = 'clients'
    id = db.Column(db.String, primary_key=True, default=new_id)
    name = db.Column(db.String, nullable=False)
    company = db.Column(db.String)
    email = db.Column(db.String)
    phone = db.Column(db.String)
    address = db.Column(db.Text)
    country = db.Column(db.String)
    vat_number = db.Column(db.String)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    FIELDS = {
        'name': 'name',
        'company': 'company',
        'email': 'email',
        'phone': 'phone',
        'address': 'address',
        'country': 'country',
        'vatNumber': 'vat_number',
    }

    def to_dict(self):
        data = {'id': self.id}
        for key, attr in self.FIELDS.items():
            data[key] = getattr(self, attr)
        data['createdAt'] = _iso(self.created_at)
        data['updatedAt'] = _iso(self.updated_at)
        return data


class Invoice(db.Model):
    __tablename__ = 'invoices'
    id = db.Column(db.String, primary_key=True, default=new_id)
    invoice_no = db.Column(db.String, nullable=False, index=True)
    # Weak reference: no foreign key, deleting a client leaves its invoices alone
    client_id = db.Column(db.String, index=True)
    items = db.Column(db.JSON, nullable=False, default=list)
    subtotal = db.Column(db.Float, nullable=False, default=0.0)
    vat_total = db.Column(db.Float, nullable=False, default=0.0)
    total = db.Column(db.Float, nullable=False, default=0.0)
    status = db.Column(db.String, nullable=False, default='draft')
    issue_date = db.Column(db.Date)
    due_date = db.Column(db.Date)
    notes = db.Column(db.Text, default='')
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    archived_at = db.Column(db.DateTime)
    expires_at = db.Column(db.DateTime)

    def to_dict(self):
        return {
            'id': self.id,
            'invoiceNo': self.invoice_no,
            'clientId': self.client_id,
            'items': list(self.items or []),
            'subtotal': self.subtotal,
            'vatTotal': self.vat_total,
            'total': self.total,
            'status': self.status,
            'issueDate': _iso(self.issue_date),
            'dueDate': _iso(self.due_date),
            'notes': self.notes or '',
            'createdAt': _iso(self.created_at),
            'updatedAt': _iso(self.updated_at),
            'archivedAt': _iso(self.archived_at),
            'expiresAt': _iso(self.expires_at),
        }


class User(db.Model):
    __tablename__ = 'users'
    id = db.Column(db.String, primary_key=True, default=new_id)
    username = db.Column(db.String, unique=True, nullable=False)
    password = db.Column(db.String, nullable=False)
    role = db.Column(db.String, nullable=False, default='admin')
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def to_dict(self):
        # Never expose the password hash
        return {'id': self.id, 'username': self.username, 'role': self.role}
