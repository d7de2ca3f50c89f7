import logging

import requests

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = 10


def post_discord_message(webhook_url, content):
    """Post a plain message to a Discord webhook. Raises on HTTP failure."""
    resp = requests.post(webhook_url, json={'content': content}, timeout=REQUEST_TIMEOUT)
    resp.raise_for_status()
    return resp


def send_discord_notification(webhook_url, invoice, client_name, type='reminder'):
    if type == 'overdue':
        emoji = "\U0001F6A8"
        title = "**OVERDUE INVOICE ALERT**"
        time_info = f"was due on **{invoice['dueDate']}**"
    else:
        emoji = "\U0001F4E2"
        title = "**Invoice Reminder**"
        time_info = f"is due **today** ({invoice['dueDate']})"

    content = (
        f"{emoji} {title}\n"
        f"Invoice **#{invoice['invoiceNo']}** for **{client_name}** {time_info} and is unpaid.\n"
        f"Total Amount: £{invoice['total'] or 0:,.2f}"
    )
    try:
        post_discord_message(webhook_url, content)
        return True
    except requests.RequestException as e:
        logger.warning("Failed to send Discord notification for %s: %s", invoice['invoiceNo'], e)
        return False
