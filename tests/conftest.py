import pytest

from app import create_app
from config import TestingConfig
from models import db


@pytest.fixture
def app(tmp_path):
    class Config(TestingConfig):
        SQLALCHEMY_DATABASE_URI = f"sqlite:///{tmp_path / 'invoices.db'}"

    app = create_app(Config)
    yield app

    with app.app_context():
        db.session.remove()
        db.engine.dispose()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def ctx(app):
    with app.app_context():
        yield
        db.session.remove()


@pytest.fixture
def item():
    return {'description': 'Consulting', 'quantity': 2, 'unitPrice': 100, 'vatRate': 20, 'discount': 10}
