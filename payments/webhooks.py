import json
import logging
from collections import namedtuple
from decimal import InvalidOperation

from django.db import DatabaseError, IntegrityError, transaction

from bookings.models import Booking, BookingItem, BookingStatus, PaymentStatus
from . import drafts
from .exceptions import DraftDecodeError, PersistenceError, SignatureError
from .models import Payment
from .paystack import from_minor_units
from .references import generate_order_number

logger = logging.getLogger(__name__)

CREATED = 'created'
DUPLICATE = 'duplicate'
SKIPPED = 'skipped'
IGNORED = 'ignored'

WebhookResult = namedtuple('WebhookResult', ['event', 'action', 'booking'])


def verify_and_parse(raw_body, signature, client):
    """Authenticate a webhook body and return the decoded event envelope.

    The signature is checked against the raw bytes before anything is parsed.
    """
    if not signature:
        raise SignatureError('Missing signature')
    if not client.verify_signature(raw_body, signature):
        raise SignatureError('Invalid signature')

    event = json.loads(raw_body)
    if not isinstance(event, dict):
        raise ValueError('Webhook body must be a JSON object')
    return event


def process_event(event):
    event_type = event.get('event') or ''
    data = event.get('data')
    if not isinstance(data, dict):
        data = {}

    if event_type == 'charge.success':
        booking, action = handle_charge_success(data)
        return WebhookResult(event_type, action, booking)

    if event_type == 'charge.failed':
        # no failed-payment record is kept; the customer simply retries the booking
        logger.warning("Payment failed for reference %s", data.get('reference'))
    elif event_type in ('transfer.success', 'transfer.failed'):
        logger.info("Transfer event %s for reference %s", event_type, data.get('reference'))
    else:
        logger.info("Unhandled webhook event: %s", event_type)
    return WebhookResult(event_type, IGNORED, None)


def _confirmed_amount(data):
    amount = data.get('amount')
    if isinstance(amount, bool) or not isinstance(amount, (int, float, str)):
        return None
    try:
        amount = from_minor_units(amount)
    except (InvalidOperation, ValueError):
        return None
    if not amount.is_finite() or amount <= 0:
        return None
    return amount


def _existing_booking(reference):
    payment = Payment.objects.select_related('booking').filter(transaction_reference=reference).first()
    if payment:
        return payment.booking
    return Booking.objects.filter(payment_reference=reference).first()


def handle_charge_success(data):
    """Materialise the booking, its items and the payment for a confirmed charge.

    Returns ``(booking, action)``. Redelivered events return the booking created
    the first time. All three writes share one transaction.
    """
    reference = data.get('reference')
    if not reference:
        logger.error("charge.success without a reference, skipping")
        return None, SKIPPED

    existing = _existing_booking(reference)
    if existing is not None:
        logger.info("Duplicate charge.success for %s (order %s)", reference, existing.order_number)
        return existing, DUPLICATE

    try:
        draft = drafts.decode_from_metadata(data.get('metadata'))
    except DraftDecodeError as e:
        logger.error("Could not decode booking draft for %s: %s", reference, e)
        return None, SKIPPED

    amount = _confirmed_amount(data)
    if amount is None:
        logger.error("charge.success for %s has no usable amount (%r), skipping", reference, data.get('amount'))
        return None, SKIPPED
    customer = data.get('customer') or {}

    try:
        with transaction.atomic():
            booking = Booking.objects.create(
                user_id=draft.user_id,
                order_number=generate_order_number(),
                payment_reference=reference,
                pickup_date=drafts.parse_schedule(draft.pickup_date),
                delivery_date=drafts.parse_schedule(draft.delivery_date),
                time_slot=draft.time_slot,
                address=draft.address,
                special_instructions=draft.special_instructions,
                total=amount,
                payment_method=draft.payment_method,
                payment_status=PaymentStatus.COMPLETED,
                booking_status=BookingStatus.CONFIRMED,
            )
            BookingItem.objects.bulk_create([
                BookingItem(booking=booking, name=item.name, quantity=item.quantity, price=item.price)
                for item in draft.items
            ])
            Payment.objects.create(
                booking=booking,
                user_id=draft.user_id,
                amount=amount,
                currency=data.get('currency') or 'KES',
                payment_method=draft.payment_method,
                payment_status=PaymentStatus.COMPLETED,
                transaction_reference=reference,
                channel=data.get('channel') or '',
                gateway_response={
                    'id': data.get('id'),
                    'gateway_response': data.get('gateway_response'),
                    'paid_at': data.get('paid_at'),
                    'customer_email': customer.get('email'),
                },
            )
    except IntegrityError:
        existing = _existing_booking(reference)
        if existing is None:
            logger.exception("Integrity error while creating booking for %s", reference)
            raise PersistenceError(f'Could not persist booking for {reference}')
        logger.info("Concurrent charge.success for %s already applied", reference)
        return existing, DUPLICATE
    except DatabaseError as e:
        logger.exception("Database error while creating booking for %s", reference)
        raise PersistenceError(f'Could not persist booking for {reference}') from e

    logger.info("Payment and booking successful for reference %s, order %s", reference, booking.order_number)
    return booking, CREATED
