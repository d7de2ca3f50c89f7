import os


def _env_flag(name, default=False):
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


# Database Config
def get_db_path():
    data_dir = os.environ.get('INVOICE_DATA_DIR')
    if data_dir:
        return os.path.join(data_dir, 'invoices.db')

    # In production (Docker), use the mapped 'data' volume
    if os.environ.get('FLASK_ENV') == 'production':
        return os.path.join('/app', 'data', 'invoices.db')

    # In dev, use the local data directory
    base_path = os.path.dirname(os.path.abspath(__file__))
    return os.path.join(base_path, 'data', 'invoices.db')


class Config:
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL') or f'sqlite:///{get_db_path()}'
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    DEFAULT_ADMIN_USERNAME = 'admin'
    DEFAULT_ADMIN_PASSWORD = os.environ.get('DEFAULT_ADMIN_PASSWORD', 'admin123')
    MIN_PASSWORD_LENGTH = 6

    # Credit-note style lines (negative quantity or price) are refused unless enabled
    ALLOW_NEGATIVE_LINE_ITEMS = _env_flag('ALLOW_NEGATIVE_LINE_ITEMS')

    SCHEDULER_ENABLED = _env_flag('SCHEDULER_ENABLED', True)
    SCHEDULER_API_ENABLED = False
    OVERDUE_CHECK_HOUR = int(os.environ.get('OVERDUE_CHECK_HOUR', 9))

    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')


class ProductionConfig(Config):
    pass


class TestingConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SCHEDULER_ENABLED = False
    ALLOW_NEGATIVE_LINE_ITEMS = False
    DEFAULT_ADMIN_PASSWORD = 'admin123'
