"""
Payment reconciliation: applies Square payment and refund events to local
Payment, Booking and ProductOrder rows.

Handlers never commit; the router owns the transaction.
"""
import logging
from datetime import datetime, timezone
from typing import Optional

from flask import current_app

from payhook.models.payment import Payment, PaymentStatus, PaymentMethod, normalize_payment_method
from payhook.models.product_order import OrderStatus
from payhook.services import outbox_service
from payhook.services.entity_resolver import resolve, ResolvedEntity
from payhook.services.results import HandlerResult

logger = logging.getLogger(__name__)

DEPOSIT_MARKER = '(deposit)'
MANUAL_LINKING_MESSAGE = 'Payment received but no matching booking or order found — needs manual linking'


def utcnow():
    return datetime.now(timezone.utc)


def money_to_cents(money) -> int:
    """Square Money object -> integer cents (missing -> 0)."""
    if not money:
        return 0
    try:
        return int(money.get('amount') or 0)
    except (TypeError, ValueError):
        return 0


def tender_method(square_payment: dict) -> Optional[str]:
    """Payment method from the first tender, or None when no tenders are present."""
    tenders = square_payment.get('tenders') or []
    if not tenders or not tenders[0].get('type'):
        return None
    return normalize_payment_method(tenders[0]['type'])


def is_deposit(note: Optional[str]) -> bool:
    """Deposits are flagged by the '(deposit)' marker in the payment note."""
    return bool(note) and DEPOSIT_MARKER in note


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse a Square RFC 3339 timestamp; None if missing or malformed."""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace('Z', '+00:00'))
    except (TypeError, ValueError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def refund_status(refunded_in_cents: int, amount_in_cents: int, current: str) -> str:
    """Status implied by the refunded total."""
    if refunded_in_cents <= 0:
        return current
    if refunded_in_cents >= amount_in_cents:
        return PaymentStatus.REFUNDED.value
    return PaymentStatus.PARTIALLY_REFUNDED.value


def apply_refund(payment: Payment, refund_cents: int, refunded_at: Optional[datetime] = None) -> Optional[int]:
    """
    Add a refund to a payment, keeping refunded_in_cents within the amount.

    Args:
        payment: Payment row to update
        refund_cents: Refund amount in cents
        refunded_at: Timestamp to record (defaults to now)

    Returns:
        The unclamped total when Square reported more than the payment
        amount (an anomaly to audit), otherwise None
    """
    reported_total = (payment.refunded_in_cents or 0) + max(refund_cents, 0)
    amount = payment.amount_in_cents or 0
    anomaly = reported_total if reported_total > amount else None

    payment.refunded_in_cents = min(reported_total, amount)
    payment.refunded_at = refunded_at or utcnow()
    payment.status = refund_status(payment.refunded_in_cents, amount, payment.status)
    return anomaly


def _find_payment(session, square_payment_id: str) -> Optional[Payment]:
    return session.query(Payment).filter(
        Payment.square_payment_id == square_payment_id
    ).first()


def _queue_side_effects(session, client, invoice_id, local_id, square_payment_id,
                        amount_cents, method, receipt_url, subject, description, books_description):
    """Queue the receipt email and accounting payment for a linked payment."""
    queued = []

    if client is not None and client.email:
        queued.append(outbox_service.enqueue_receipt(
            session,
            to=client.email,
            subject=subject,
            template_data={
                'client_name': client.first_name,
                'amount_in_cents': amount_cents,
                'method': method,
                'receipt_url': receipt_url,
                'description': description,
            },
            local_id=local_id,
        ))

    if invoice_id:
        queued.append(outbox_service.enqueue_books_payment(
            session,
            invoice_id=invoice_id,
            amount_in_cents=amount_cents,
            external_payment_id=square_payment_id,
            description=books_description,
        ))

    return queued


def handle_payment_completed(session, data: dict, order_client=None) -> HandlerResult:
    """
    Handle `payment.completed`.

    1. Existing payment with this square_payment_id -> mark paid, stop.
    2. Booking resolved -> create payment, track deposit, queue side effects.
    3. Product order resolved -> order in_progress, queue side effects.
    4. Nothing resolved -> skipped, kept for manual linking.
    """
    square_payment = ((data or {}).get('object') or {}).get('payment') or {}
    square_payment_id = square_payment.get('id')
    if not square_payment_id:
        return HandlerResult.skipped('No payment ID in event')

    square_order_id = square_payment.get('order_id')
    receipt_url = square_payment.get('receipt_url')

    existing = _find_payment(session, square_payment_id)
    if existing:
        existing.status = refund_status(
            existing.refunded_in_cents or 0, existing.amount_in_cents or 0, PaymentStatus.PAID.value
        )
        existing.paid_at = parse_timestamp(square_payment.get('updated_at')) or utcnow()
        existing.square_receipt_url = receipt_url
        existing.square_order_id = square_order_id
        logger.info(f"Square payment {square_payment_id} matched existing payment #{existing.id}")
        return HandlerResult.success(f"Updated existing payment #{existing.id}", local_id=existing.id)

    amount_cents = money_to_cents(square_payment.get('amount_money'))
    tip_cents = money_to_cents(square_payment.get('tip_money'))
    method = tender_method(square_payment) or PaymentMethod.OTHER.value
    business_name = current_app.config.get('BUSINESS_NAME', '')

    match = resolve(session, square_order_id, order_client=order_client)

    if match and match.is_booking:
        booking = match.record
        deposit = is_deposit(square_payment.get('note'))
        now = utcnow()

        payment = Payment(
            booking_id=booking.id,
            client_id=booking.client_id,
            amount_in_cents=amount_cents,
            tip_in_cents=tip_cents,
            refunded_in_cents=0,
            method=method,
            status=PaymentStatus.PAID.value,
            paid_at=now,
            square_payment_id=square_payment_id,
            square_order_id=square_order_id,
            square_receipt_url=receipt_url,
            notes='Deposit collected via Square' if deposit else 'Auto-linked via Square order',
        )
        session.add(payment)

        if deposit:
            booking.deposit_paid_in_cents = amount_cents
            booking.deposit_paid_at = now

        session.flush()

        side_effects = _queue_side_effects(
            session,
            client=booking.client,
            invoice_id=booking.books_invoice_id,
            local_id=booking.id,
            square_payment_id=square_payment_id,
            amount_cents=amount_cents,
            method=method,
            receipt_url=receipt_url,
            subject=f"Payment receipt — {business_name}",
            description='Deposit payment' if deposit else 'Appointment payment',
            books_description='Deposit via Square' if deposit else 'Payment via Square',
        )

        return HandlerResult.success(
            f"Auto-linked payment to booking #{booking.id}{' (deposit)' if deposit else ''}",
            local_id=payment.id,
            side_effects=side_effects,
        )

    if match and match.kind == ResolvedEntity.PRODUCT_ORDER:
        order = match.record
        order.status = OrderStatus.IN_PROGRESS.value

        payment = Payment(
            order_id=order.id,
            client_id=order.client_id,
            amount_in_cents=amount_cents,
            tip_in_cents=tip_cents,
            refunded_in_cents=0,
            method=method,
            status=PaymentStatus.PAID.value,
            paid_at=utcnow(),
            square_payment_id=square_payment_id,
            square_order_id=square_order_id,
            square_receipt_url=receipt_url,
            notes='Auto-linked via Square order (product order)',
        )
        session.add(payment)
        session.flush()

        side_effects = _queue_side_effects(
            session,
            client=order.client,
            invoice_id=order.books_invoice_id,
            local_id=order.id,
            square_payment_id=square_payment_id,
            amount_cents=amount_cents,
            method=method,
            receipt_url=receipt_url,
            subject=f"Payment received for your order — {business_name}",
            description='Order payment',
            books_description='Order payment via Square',
        )

        return HandlerResult.success(
            f"Auto-linked payment to product order #{order.id}",
            local_id=payment.id,
            side_effects=side_effects,
        )

    logger.warning(f"Square payment {square_payment_id} (order {square_order_id}) needs manual linking")
    return HandlerResult.skipped(
        MANUAL_LINKING_MESSAGE,
        payload={
            'square_payment_id': square_payment_id,
            'square_order_id': square_order_id,
            'amount': square_payment.get('amount_money'),
        },
    )


def handle_payment_updated(session, data: dict) -> HandlerResult:
    """Handle `payment.updated`: patch an existing payment, never create one."""
    square_payment = ((data or {}).get('object') or {}).get('payment') or {}
    square_payment_id = square_payment.get('id')
    if not square_payment_id:
        return HandlerResult.skipped('No payment ID in event')

    existing = _find_payment(session, square_payment_id)
    if not existing:
        return HandlerResult.skipped('No matching local payment found')

    if square_payment.get('receipt_url') is not None:
        existing.square_receipt_url = square_payment['receipt_url']
    if square_payment.get('order_id') is not None:
        existing.square_order_id = square_payment['order_id']

    method = tender_method(square_payment)
    if method:
        existing.method = method

    return HandlerResult.success(f"Updated payment #{existing.id}", local_id=existing.id)


def handle_refund(session, data: dict) -> HandlerResult:
    """Handle `refund.created` / `refund.updated`: accumulate the refunded amount."""
    refund = ((data or {}).get('object') or {}).get('refund') or {}
    square_payment_id = refund.get('payment_id')
    if not square_payment_id:
        return HandlerResult.skipped('No payment ID in refund event')

    existing = _find_payment(session, square_payment_id)
    if not existing:
        return HandlerResult.skipped('No matching local payment for refund')

    refund_cents = money_to_cents(refund.get('amount_money'))
    reported_total = apply_refund(existing, refund_cents)
    message = f"Refund of ${refund_cents / 100:.2f} applied to payment #{existing.id}"

    if reported_total is not None:
        logger.warning(
            f"Refund anomaly on payment #{existing.id}: reported total {reported_total} "
            f"exceeds amount {existing.amount_in_cents}; clamped"
        )
        return HandlerResult.success(
            f"{message} (refund anomaly: reported total {reported_total} exceeds amount, clamped)",
            local_id=existing.id,
            payload={
                'square_payment_id': square_payment_id,
                'square_refund_id': refund.get('id'),
                'reported_refunded_in_cents': reported_total,
                'amount_in_cents': existing.amount_in_cents,
            },
        )

    return HandlerResult.success(message, local_id=existing.id)
