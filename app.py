from flask import Flask, request, jsonify, send_file
from flask_cors import CORS
from flask_migrate import Migrate, upgrade
from flask_apscheduler import APScheduler
from werkzeug.exceptions import HTTPException
import datetime
import io
import json
import logging
import os
import requests

import db_manager
import notifications
from config import Config
from errors import InvoiceAppError, ValidationError
from models import db
from pdf_builder import render_invoice_pdf

logger = logging.getLogger(__name__)

migrate = Migrate()
scheduler = APScheduler()


def configure_logging(level):
    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format='%(asctime)s %(levelname)s [%(name)s] %(message)s',
    )


def _ensure_sqlite_dir(uri):
    if uri.startswith('sqlite:///') and uri != 'sqlite:///:memory:':
        folder = os.path.dirname(uri[len('sqlite:///'):])
        if folder:
            os.makedirs(folder, exist_ok=True)


def _init_database(app):
    # Apply migrations if they exist, otherwise create tables directly
    migration_dir = os.path.join(os.path.dirname(os.path.abspath(__file__)), 'migrations')
    if os.path.exists(migration_dir):
        try:
            upgrade(directory=migration_dir)
            logger.info("Database migrated successfully.")
        except Exception:
            logger.exception("Migration failed. Attempting db.create_all() as fallback.")
            db.create_all()
    else:
        db.create_all()
        logger.info("Database tables created using db.create_all().")

    db_manager.init_db()


def run_overdue_check(today=None):
    """Mark overdue invoices and send Discord alerts and due-today reminders."""
    today = today or datetime.date.today()
    newly_overdue = db_manager.mark_overdue_invoices(today)

    webhook_url = db_manager.get_settings().get('discordWebhookUrl')
    if not webhook_url:
        return newly_overdue

    for invoice in newly_overdue:
        client = db_manager.find_client(invoice['clientId'])
        client_name = client['name'] if client else "Unknown Client"
        notifications.send_discord_notification(webhook_url, invoice, client_name, type='overdue')

    for invoice in db_manager.get_invoices_due_on(today):
        client = db_manager.find_client(invoice['clientId'])
        client_name = client['name'] if client else "Unknown Client"
        notifications.send_discord_notification(webhook_url, invoice, client_name, type='reminder')

    return newly_overdue


def check_overdue_invoices():
    with scheduler.app.app_context():
        run_overdue_check()


def _start_scheduler(app):
    scheduler.init_app(app)
    # Run check daily, by default at 9:00 AM
    scheduler.add_job(id='invoice_check', func=check_overdue_invoices, trigger='cron',
                      hour=app.config['OVERDUE_CHECK_HOUR'], replace_existing=True)
    scheduler.start()


def _json_body():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def _require(data, *fields):
    missing = [f for f in fields if not data.get(f)]
    if missing:
        raise ValidationError(f"Missing field(s): {', '.join(missing)}")
    _check_strings(data, *fields)


def _check_strings(data, *fields):
    wrong = [f for f in fields if data.get(f) is not None and not isinstance(data[f], str)]
    if wrong:
        raise ValidationError(f"Field(s) must be strings: {', '.join(wrong)}")


def register_error_handlers(app):
    @app.errorhandler(InvoiceAppError)
    def handle_app_error(e):
        return jsonify({'error': e.message}), e.status_code

    @app.errorhandler(HTTPException)
    def handle_http_error(e):
        return jsonify({'error': e.description}), e.code

    @app.errorhandler(Exception)
    def handle_unexpected_error(e):
        logger.exception("Unhandled error on %s %s", request.method, request.path)
        db.session.rollback()
        return jsonify({'error': str(e) or 'Internal server error'}), 500


def register_routes(app):
    # ------------------------------------------------------------------
    # Auth
    # ------------------------------------------------------------------
    @app.route('/api/auth/login', methods=['POST'])
    def login():
        data = _json_body()
        _check_strings(data, 'username', 'password')
        user = db_manager.authenticate(data.get('username'), data.get('password'))
        return jsonify({'success': True, 'user': user})

    @app.route('/api/auth/change-password', methods=['PUT'])
    def change_password():
        data = _json_body()
        _require(data, 'username', 'currentPassword', 'newPassword')
        min_length = app.config['MIN_PASSWORD_LENGTH']
        if len(data['newPassword']) < min_length:
            raise ValidationError(f"New password must be at least {min_length} characters")

        db_manager.change_password(data['username'], data['currentPassword'], data['newPassword'])
        return jsonify({'success': True, 'message': 'Password updated successfully'})

    @app.route('/api/auth/change-username', methods=['PUT'])
    def change_username():
        data = _json_body()
        _require(data, 'currentUsername', 'newUsername', 'password')
        new_username = str(data['newUsername']).strip()
        if not new_username:
            raise ValidationError("New username must not be empty")

        db_manager.change_username(data['currentUsername'], new_username, data['password'])
        return jsonify({'success': True, 'message': 'Username updated successfully'})

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------
    @app.route('/api/settings', methods=['GET', 'PUT'])
    def settings():
        if request.method == 'PUT':
            return jsonify(db_manager.update_settings(_json_body()))
        return jsonify(db_manager.get_settings())

    @app.route('/api/settings/test-discord', methods=['POST'])
    def test_discord_webhook():
        data = _json_body()
        webhook_url = data.get('discordWebhookUrl')
        if not webhook_url:
            return jsonify({"error": "Missing Webhook URL"}), 400

        try:
            notifications.post_discord_message(
                webhook_url, "✅ **Test Notification**\nThis is a test message from Invoice Manager.")
        except requests.RequestException as e:
            return jsonify({"error": f"Failed to send: {e}"}), 502
        return jsonify({"message": "Test message sent successfully!"})

    @app.route('/api/settings/export')
    def export_data():
        json_str = json.dumps(db_manager.export_data(), indent=4)
        mem = io.BytesIO(json_str.encode('utf-8'))

        filename = f"invoice_data_{datetime.date.today()}.json"
        return send_file(mem, as_attachment=True, download_name=filename, mimetype='application/json')

    @app.route('/api/settings/import', methods=['POST'])
    def import_data():
        if 'file' in request.files:
            file = request.files['file']
            if file.filename == '':
                raise ValidationError("No file selected")
            try:
                data = json.load(file)
            except (json.JSONDecodeError, UnicodeDecodeError):
                raise ValidationError("Invalid JSON file")
        else:
            data = _json_body()

        db_manager.import_data(data)
        return jsonify({"message": "Data imported successfully"})

    # ------------------------------------------------------------------
    # Clients
    # ------------------------------------------------------------------
    @app.route('/api/clients', methods=['GET', 'POST'])
    def clients():
        if request.method == 'POST':
            return jsonify(db_manager.add_client(_json_body())), 201
        return jsonify(db_manager.get_clients())

    @app.route('/api/clients/<client_id>', methods=['GET', 'PUT', 'DELETE'])
    def manage_client(client_id):
        if request.method == 'DELETE':
            db_manager.delete_client(client_id)
            return jsonify({'success': True})

        if request.method == 'PUT':
            return jsonify(db_manager.update_client(client_id, _json_body()))

        return jsonify(db_manager.get_client(client_id))

    # ------------------------------------------------------------------
    # Invoices
    # ------------------------------------------------------------------
    @app.route('/api/invoices', methods=['GET', 'POST'])
    def invoices():
        if request.method == 'POST':
            return jsonify(db_manager.create_invoice(_json_body())), 201
        return jsonify(db_manager.get_invoices(status=request.args.get('status')))

    @app.route('/api/invoices/<invoice_id>', methods=['GET', 'PUT', 'DELETE'])
    def manage_invoice(invoice_id):
        if request.method == 'DELETE':
            db_manager.delete_invoice(invoice_id)
            return jsonify({'success': True})

        if request.method == 'PUT':
            return jsonify(db_manager.update_invoice(invoice_id, _json_body()))

        return jsonify(db_manager.get_invoice(invoice_id))

    @app.route('/api/invoices/<invoice_id>/status', methods=['POST'])
    def update_status(invoice_id):
        data = _json_body()
        _require(data, 'status')
        return jsonify(db_manager.update_invoice_status(invoice_id, data['status']))

    @app.route('/api/invoices/<invoice_id>/pdf')
    def download_pdf(invoice_id):
        invoice = db_manager.get_invoice(invoice_id)
        settings = db_manager.get_settings()
        client = db_manager.find_client(invoice['clientId'])

        pdf_bytes, filename = render_invoice_pdf(invoice, settings, client)
        return send_file(io.BytesIO(pdf_bytes), as_attachment=True, download_name=filename,
                         mimetype='application/pdf')

    # ------------------------------------------------------------------
    # Dashboard
    # ------------------------------------------------------------------
    @app.route('/api/dashboard/stats')
    def dashboard_stats():
        return jsonify(db_manager.get_dashboard_stats())


def create_app(config_object=None):
    app = Flask(__name__)
    app.config.from_object(config_object or Config)
    # Keep the camelCase wire order as written
    app.json.sort_keys = False

    configure_logging(app.config['LOG_LEVEL'])
    _ensure_sqlite_dir(app.config['SQLALCHEMY_DATABASE_URI'])

    db.init_app(app)
    migrate.init_app(app, db)
    CORS(app)  # Enable CORS for all routes

    register_error_handlers(app)
    register_routes(app)

    with app.app_context():
        _init_database(app)

    if app.config.get('SCHEDULER_ENABLED'):
        _start_scheduler(app)

    return app


if __name__ == '__main__':
    create_app().run(debug=False, port=int(os.environ.get('PORT', 5000)))
