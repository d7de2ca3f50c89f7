import sys
import datetime

import db_manager
from app import create_app
from config import Config
from errors import InvoiceAppError
from pdf_builder import InvoicePDF, format_money


def print_menu():
    print("\n--- Invoice Manager ---")
    print("1. Add Client")
    print("2. List Clients")
    print("3. Create Invoice")
    print("4. List Invoices")
    print("5. Generate PDF for Invoice")
    print("6. Mark Invoice as Paid")
    print("7. Dashboard")
    print("8. Exit")
    print("-----------------------")


def add_client_flow():
    print("\n[Add Client]")
    data = {
        'name': input("Name: "),
        'company': input("Company: "),
        'address': input("Address (use \\n for newlines): ").replace("\\n", "\n"),
        'email': input("Email: "),
        'phone': input("Phone: "),
        'country': input("Country: "),
        'vatNumber': input("VAT Number: "),
    }
    client = db_manager.add_client(data)
    print(f"Client added successfully! (ID: {client['id']})")


def list_clients_flow():
    print("\n[List Clients]")
    for c in db_manager.get_clients():
        print(f"ID: {c['id']} | Name: {c['name']} | Company: {c['company'] or '-'}")


def create_invoice_flow():
    print("\n[Create Invoice]")
    # Select Client
    list_clients_flow()
    client_id = input("Enter Client ID: ").strip()

    date_str = input("Issue Date (YYYY-MM-DD) [Today]: ")
    issue_date = date_str or datetime.date.today().isoformat()
    due_str = input("Due Date (YYYY-MM-DD) [none]: ")

    # Items
    items = []
    print("Enter items (leave Description empty to finish):")
    while True:
        desc = input("Description: ")
        if not desc:
            break
        try:
            items.append({
                "description": desc,
                "quantity": float(input("Quantity: ")),
                "unitPrice": float(input("Unit Price: ")),
                "vatRate": float(input("VAT Rate % [20]: ") or 20),
                "discount": float(input("Discount % [0]: ") or 0),
            })
        except ValueError:
            print("Invalid number format, try again.")

    if not items:
        print("No items added. Invoice cancelled.")
        return

    invoice = db_manager.create_invoice({
        'clientId': client_id,
        'issueDate': issue_date,
        'dueDate': due_str or None,
        'items': items,
    })
    print(f"Invoice {invoice['invoiceNo']} created successfully! Total: {format_money(invoice['total'])}")


def list_invoices_flow():
    print("\n[List Invoices]")
    for inv in db_manager.get_invoices():
        client = db_manager.find_client(inv['clientId'])
        client_name = client['name'] if client else "Unknown Client"
        print(f"#{inv['invoiceNo']} | {client_name} | {inv['issueDate']} | {inv['status']} | "
              f"{format_money(inv['total'])}")


def generate_pdf_flow():
    print("\n[Generate PDF]")
    invoice = db_manager.find_invoice_by_number(input("Enter Invoice Number: ").strip())
    if not invoice:
        print("Invoice not found.")
        return

    pdf = InvoicePDF(invoice, db_manager.get_settings(), db_manager.find_client(invoice['clientId']))
    pdf.generate(pdf.filename)
    print(f"PDF generated: {pdf.filename}")


def mark_paid_flow():
    print("\n[Mark Paid]")
    invoice_number = input("Enter Invoice Number: ").strip()
    invoice = db_manager.find_invoice_by_number(invoice_number)
    if not invoice:
        print("Invoice not found.")
        return

    db_manager.update_invoice_status(invoice['id'], 'paid')
    print(f"Invoice {invoice_number} marked as paid.")


def dashboard_flow():
    print("\n[Dashboard]")
    stats = db_manager.get_dashboard_stats()
    print(f"Invoices:    {stats['totalInvoices']}")
    print(f"Billed:      {format_money(stats['totalBilled'])}")
    print(f"Paid:        {format_money(stats['totalPaid'])}")
    print(f"Outstanding: {format_money(stats['outstanding'])}")


ACTIONS = {
    '1': add_client_flow,
    '2': list_clients_flow,
    '3': create_invoice_flow,
    '4': list_invoices_flow,
    '5': generate_pdf_flow,
    '6': mark_paid_flow,
    '7': dashboard_flow,
}


def run_menu():
    while True:
        print_menu()
        choice = input("Select an option: ").strip()

        if choice == '8':
            print("Goodbye!")
            break

        action = ACTIONS.get(choice)
        if action is None:
            print("Invalid choice, please try again.")
            continue

        try:
            action()
        except InvoiceAppError as e:
            print(f"Error: {e.message}")


class ConsoleConfig(Config):
    SCHEDULER_ENABLED = False


def main(app=None):
    if app is None:
        app = create_app(ConsoleConfig)

    with app.app_context():
        run_menu()
    return 0


if __name__ == "__main__":
    sys.exit(main())
