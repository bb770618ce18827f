"""
Email service for payment receipts.
Uses Flask-Mail for SMTP integration with UTF-8 support.
"""
import logging
from html import escape
from flask import current_app
from flask_mail import Mail, Message

logger = logging.getLogger(__name__)

mail = Mail()


def init_mail(app):
    """Initialize Flask-Mail with app."""
    mail.init_app(app)


def mail_enabled() -> bool:
    """
    Check if mail is properly configured and enabled.
    Prevents errors in dev or misconfigured environments.
    """
    cfg = current_app.config
    return bool(
        not cfg.get("MAIL_SUPPRESS_SEND", False)
        and cfg.get("MAIL_SERVER")
        and cfg.get("MAIL_USERNAME")
    )


def format_cents(amount_in_cents) -> str:
    """Format an amount in cents as dollars, e.g. 5000 -> '$50.00'."""
    return f"${(amount_in_cents or 0) / 100:,.2f}"


def render_payment_receipt(template_data: dict) -> tuple:
    """
    Render the receipt bodies.

    Args:
        template_data: client_name, amount_in_cents, method, receipt_url, description

    Returns:
        tuple: (text_body, html_body)
    """
    business_name = current_app.config.get('BUSINESS_NAME', '')
    client_name = template_data.get('client_name') or 'there'
    amount = format_cents(template_data.get('amount_in_cents'))
    method = (template_data.get('method') or 'card').replace('_', ' ')
    description = template_data.get('description') or 'Payment'
    receipt_url = template_data.get('receipt_url')

    receipt_link_html = (
        f'<p><a href="{escape(receipt_url)}">View your Square receipt</a></p>'
        if receipt_url else ''
    )

    html_body = f"""
    <!DOCTYPE html>
    <html>
    <head><meta charset="UTF-8"></head>
    <body style="font-family: Arial, sans-serif; color: #333;">
        <div style="max-width: 600px; margin: auto; padding: 20px;">
            <h2>Thank you, {escape(client_name)}!</h2>
            <p>We received your payment.</p>
            <table cellpadding="6">
                <tr><td>Description</td><td><strong>{escape(description)}</strong></td></tr>
                <tr><td>Amount</td><td><strong>{amount}</strong></td></tr>
                <tr><td>Method</td><td>{escape(method)}</td></tr>
            </table>
            {receipt_link_html}
            <p style="font-size: 13px; color: #666;">{escape(business_name)}</p>
        </div>
    </body>
    </html>
    """

    text_body = f"""
Thank you, {client_name}!

We received your payment.
Description: {description}
Amount: {amount}
Method: {method}
"""
    if receipt_url:
        text_body += f"Receipt: {receipt_url}\n"

    return text_body, html_body


def send_payment_receipt(to: str, subject: str, template_data: dict) -> bool:
    """
    Send a payment receipt email.

    Args:
        to: Recipient email
        subject: Email subject
        template_data: Values for the receipt template

    Returns:
        True if sent successfully, False otherwise
    """
    try:
        logger.info(f"[EMAIL] Sending payment receipt to {to}")

        text_body, html_body = render_payment_receipt(template_data)
        msg = Message(
            subject=subject,
            recipients=[to],
            body=text_body,
            html=html_body,
        )

        mail.send(msg)
        logger.info(f"[EMAIL] Payment receipt sent to {to}")
        return True

    except Exception as e:
        logger.exception(f"[EMAIL] Failed to send payment receipt to {to}: {e}")
        return False
