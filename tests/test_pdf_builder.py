import logging

import pytest

from pdf_builder import (
    ImageOp,
    InvoicePDF,
    LineOp,
    RectOp,
    TextOp,
    format_date,
    format_money,
    format_number,
    layout_invoice,
    line_total,
    render_invoice_pdf,
)


@pytest.fixture
def invoice(item):
    return {
        'invoiceNo': 'INV-000042',
        'issueDate': '2024-03-05',
        'dueDate': '2024-04-04',
        'items': [item],
        'subtotal': 180.0,
        'vatTotal': 36.0,
        'total': 216.0,
    }


@pytest.fixture
def settings():
    return {
        'companyName': 'InvoiceGen Ltd',
        'companyAddress': '123 Business Street\nLondon, UK',
        'email': 'info@invoicegen.com',
        'vatNumber': 'GB123456789',
        'paymentTerms': 'Payment due within 30 days',
        'bankDetails': 'Sort Code: 12-34-56\nAccount Number: 12345678',
    }


def _texts(page):
    return [op.text for op in page if isinstance(op, TextOp)]


def _find(page, text):
    return next(op for op in page if isinstance(op, TextOp) and op.text == text)


def _many_items(count):
    return [{'description': f'Item {n}', 'quantity': 1, 'unitPrice': 10, 'vatRate': 20} for n in range(1, count + 1)]


class TestFormatting:

    def test_money(self):
        assert format_money(216) == '£216.00'
        assert format_money(0.125) == '£0.12'
        assert format_money(None) == '£0.00'

    def test_number(self):
        assert format_number(2.0) == '2'
        assert format_number(2.5) == '2.5'
        assert format_number(3) == '3'

    def test_date_is_day_first(self):
        assert format_date('2024-03-05') == '05/03/2024'
        assert format_date('2024-03-05T12:00:00') == '05/03/2024'
        assert format_date(None) == ''

    def test_line_total_adds_vat_then_discount(self, item):
        assert line_total(item) == pytest.approx(216)
        assert line_total({'quantity': 3, 'unitPrice': 10, 'vatRate': 0}) == 30


class TestLayout:

    def test_sections_in_order(self, invoice, settings):
        client = {'name': 'Jane Doe', 'company': 'Doe Ltd', 'address': '1 Road\nTown', 'vatNumber': 'GB1'}
        pages = layout_invoice(invoice, settings, client)

        assert len(pages) == 1
        texts = _texts(pages[0])
        order = ['InvoiceGen Ltd', 'INVOICE', 'Invoice No: INV-000042', 'Bill To:', 'Jane Doe',
                 'Description', 'Consulting', 'Subtotal:', 'VAT Total:', 'Total:',
                 'Payment Terms:', 'Bank Details:']
        positions = [texts.index(t) for t in order]
        assert positions == sorted(positions)
        assert 'Date: 05/03/2024' in texts
        assert 'Due Date: 04/04/2024' in texts
        assert 'VAT: GB1' in texts

    def test_company_block_right_aligned(self, invoice, settings):
        page = layout_invoice(invoice, settings)[0]

        name = _find(page, 'InvoiceGen Ltd')
        assert (name.x, name.y, name.align, name.font, name.size) == (200, 20, 'right', 'Helvetica-Bold', 18)
        assert _find(page, 'London, UK').y == 32
        assert _find(page, 'Email: info@invoicegen.com').y == 36

    def test_item_row(self, invoice, settings):
        page = layout_invoice(invoice, settings)[0]

        assert _find(page, '2').x == 120
        assert _find(page, '£100.00').x == 140
        assert _find(page, '20%').x == 160
        row_total = next(op for op in page if isinstance(op, TextOp) and op.text == '£216.00' and op.x == 193)
        assert row_total.align == 'right'

    def test_totals_and_table_decoration(self, invoice, settings):
        page = layout_invoice(invoice, settings)[0]

        header = next(op for op in page if isinstance(op, RectOp))
        assert (header.x, header.width, header.height, header.fill) == (15, 180, 8, (240, 240, 240))
        assert any(isinstance(op, LineOp) and (op.x1, op.x2) == (130, 195) for op in page)
        total = _find(page, 'Total:')
        assert (total.font, total.size) == ('Helvetica-Bold', 11)

    def test_items_overflow_to_new_page(self):
        invoice = {'invoiceNo': 'INV-1', 'issueDate': '2024-01-01', 'items': _many_items(14),
                   'subtotal': 140, 'vatTotal': 28, 'total': 168}
        pages = layout_invoice(invoice, {}, None)

        assert len(pages) == 2
        assert 'Item 13' in _texts(pages[0])
        assert 'Item 14' not in _texts(pages[0])
        first_on_new_page = _find(pages[1], 'Item 14')
        assert first_on_new_page.y == 20
        assert all(op.y <= 258 for op in pages[0] if isinstance(op, TextOp) and op.text.startswith('Item'))

    def test_layout_is_deterministic(self, invoice, settings):
        assert layout_invoice(invoice, settings) == layout_invoice(invoice, settings)

    def test_orphaned_client_renders_empty_bill_to(self, invoice, settings):
        page = layout_invoice(invoice, settings, None)[0]

        bill_to = _find(page, 'Bill To:')
        name = next(op for op in page if isinstance(op, TextOp) and op.y == bill_to.y + 6)
        assert name.text == ''

    def test_default_company_name(self, invoice):
        assert 'Your Company' in _texts(layout_invoice(invoice, {})[0])

    def test_optional_images(self, invoice):
        settings = {'logo': 'data:image/png;base64,AAAA', 'signature': 'data:image/png;base64,BBBB'}
        images = [op for op in layout_invoice(invoice, settings)[0] if isinstance(op, ImageOp)]

        assert [(i.name, i.x, i.y, i.width, i.height) for i in images][0] == ('logo', 15, 20, 40, 40)
        assert images[1].name == 'signature'
        assert (images[1].width, images[1].height) == (40, 20)

    def test_signature_dropped_when_no_room(self, invoice):
        settings = {'signature': 'data:image/png;base64,BBBB',
                    'bankDetails': '\n'.join(f'Line {n}' for n in range(40))}
        pages = layout_invoice(invoice, settings)

        assert not any(isinstance(op, ImageOp) for page in pages for op in page)


class TestRendering:

    def test_render_returns_pdf_and_filename(self, invoice, settings):
        data, filename = render_invoice_pdf(invoice, settings, {'name': 'Jane'})

        assert data.startswith(b'%PDF')
        assert filename == 'INV-000042.pdf'

    def test_output_is_reproducible(self, invoice, settings):
        assert InvoicePDF(invoice, settings).to_bytes() == InvoicePDF(invoice, settings).to_bytes()

    def test_multi_page_document(self):
        invoice = {'invoiceNo': 'INV-2', 'items': _many_items(60), 'subtotal': 600, 'vatTotal': 120, 'total': 720}
        pdf = InvoicePDF(invoice, {})

        assert len(pdf.layout()) == 3
        assert pdf.to_bytes().startswith(b'%PDF')

    def test_bad_logo_is_skipped(self, invoice, caplog):
        with caplog.at_level(logging.WARNING, logger='pdf_builder'):
            data = InvoicePDF(invoice, {'logo': 'data:image/png;base64,not-base64!!'}).to_bytes()

        assert data.startswith(b'%PDF')
        assert 'Logo not added' in caplog.text

    def test_data_uri_without_payload_is_skipped(self, invoice, caplog):
        with caplog.at_level(logging.WARNING, logger='pdf_builder'):
            data = InvoicePDF(invoice, {'signature': 'data:image/png'}).to_bytes()

        assert data.startswith(b'%PDF')
        assert 'Signature not added' in caplog.text

    def test_generate_to_file(self, invoice, tmp_path):
        target = tmp_path / 'out.pdf'
        InvoicePDF(invoice, {}).generate(str(target))

        assert target.read_bytes().startswith(b'%PDF')
