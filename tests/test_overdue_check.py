import datetime

import pytest
import requests

import db_manager
import notifications
from app import run_overdue_check

pytestmark = pytest.mark.usefixtures('ctx')

TODAY = datetime.date(2024, 6, 10)


@pytest.fixture
def posted(monkeypatch):
    messages = []

    class FakeResponse:
        def raise_for_status(self):
            pass

    def fake_post(url, json=None, timeout=None):
        messages.append(json['content'])
        return FakeResponse()

    monkeypatch.setattr(notifications.requests, 'post', fake_post)
    return messages


def _invoice(item, status, due):
    return db_manager.create_invoice({'items': [item], 'status': status, 'dueDate': due.isoformat()})


def test_marks_overdue_without_webhook(item, posted):
    invoice = _invoice(item, 'issued', TODAY - datetime.timedelta(days=1))

    marked = run_overdue_check(TODAY)

    assert [i['id'] for i in marked] == [invoice['id']]
    assert db_manager.get_invoice(invoice['id'])['status'] == 'overdue'
    assert posted == []


def test_notifies_overdue_and_due_today(item, posted):
    db_manager.update_settings({'discordWebhookUrl': 'https://hook.example'})
    client = db_manager.add_client({'name': 'Jane'})
    late = db_manager.create_invoice({'items': [item], 'status': 'issued', 'clientId': client['id'],
                                      'dueDate': (TODAY - datetime.timedelta(days=5)).isoformat()})
    _invoice(item, 'issued', TODAY)
    _invoice(item, 'paid', TODAY)

    run_overdue_check(TODAY)

    assert len(posted) == 2
    assert 'OVERDUE INVOICE ALERT' in posted[0]
    assert late['invoiceNo'] in posted[0]
    assert 'Jane' in posted[0]
    assert 'Invoice Reminder' in posted[1]
    assert '£216.00' in posted[1]


def test_notification_failure_does_not_abort(item, monkeypatch):
    def failing_post(url, json=None, timeout=None):
        raise requests.ConnectionError('down')

    monkeypatch.setattr(notifications.requests, 'post', failing_post)
    db_manager.update_settings({'discordWebhookUrl': 'https://hook.example'})
    invoice = _invoice(item, 'issued', TODAY - datetime.timedelta(days=1))

    run_overdue_check(TODAY)

    assert db_manager.get_invoice(invoice['id'])['status'] == 'overdue'
