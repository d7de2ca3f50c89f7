import builtins

import pytest

import db_manager
import main


@pytest.fixture
def answers(monkeypatch):
    def feed(*values):
        replies = iter(values)
        monkeypatch.setattr(builtins, 'input', lambda prompt='': next(replies))
    return feed


def test_add_client_and_dashboard(app, answers, capsys):
    answers(
        '1', 'Jane Doe', 'Doe Ltd', '1 Road\\nTown', 'jane@example.com', '0123', 'UK', 'GB1',
        '7',
        '8',
    )

    main.main(app)

    out = capsys.readouterr().out
    assert 'Client added successfully!' in out
    assert 'Outstanding: £0.00' in out
    assert 'Goodbye!' in out
    with app.app_context():
        assert db_manager.get_clients()[0]['address'] == '1 Road\nTown'


def test_create_and_pay_invoice(app, answers, capsys):
    with app.app_context():
        client_id = db_manager.add_client({'name': 'Jane'})['id']

    answers(
        '3', client_id, '2024-03-05', '',
        'Consulting', '2', '100', '20', '10',
        '',
        '6', 'INV-000001',
        '8',
    )

    main.main(app)

    out = capsys.readouterr().out
    assert 'Invoice INV-000001 created successfully! Total: £216.00' in out
    assert 'Invoice INV-000001 marked as paid.' in out
    with app.app_context():
        assert db_manager.get_dashboard_stats()['totalPaid'] == pytest.approx(216)


def test_errors_are_reported_not_raised(app, answers, capsys):
    answers('1', '', '', '', '', '', '', '', '9', '8')

    main.main(app)

    out = capsys.readouterr().out
    assert 'Error: Client name is required' in out
    assert 'Invalid choice' in out


def test_generate_pdf(app, answers, capsys, tmp_path, monkeypatch, item):
    monkeypatch.chdir(tmp_path)
    with app.app_context():
        db_manager.create_invoice({'items': [item]})

    answers('5', 'INV-000001', '5', 'INV-404', '8')

    main.main(app)

    out = capsys.readouterr().out
    assert 'PDF generated: INV-000001.pdf' in out
    assert 'Invoice not found.' in out
    assert (tmp_path / 'INV-000001.pdf').read_bytes().startswith(b'%PDF')
