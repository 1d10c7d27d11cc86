import logging
from collections import namedtuple
from decimal import Decimal

from django.conf import settings
from django.db import transaction

from payments import drafts
from payments.models import Payment
from payments.paystack import DEFAULT_CHANNELS, PaystackClient
from payments.references import generate_order_number, generate_payment_reference
from .models import Booking, BookingItem, BookingStatus, GATEWAY_METHODS, PaymentMethod, PaymentStatus
from .serializers import BookingRequestSerializer

logger = logging.getLogger(__name__)

GatewayRedirect = namedtuple('GatewayRedirect', ['redirect_url', 'reference', 'total'])
OfflineConfirmation = namedtuple('OfflineConfirmation', ['booking', 'reference'])


def compute_total(items):
    return sum((item['quantity'] * item['price'] for item in items), Decimal('0'))


def channels_for(payment_method):
    if payment_method == PaymentMethod.MOBILE_MONEY:
        return ['mobile_money']
    return list(DEFAULT_CHANNELS)


def build_draft(data, total):
    return drafts.BookingDraft(
        user_id=data['user_id'],
        pickup_date=data['pickup_date'].isoformat(),
        delivery_date=data['delivery_date'].isoformat(),
        address=data['address'],
        payment_method=data['payment_method'],
        items=[
            drafts.DraftItem(name=item['name'], quantity=item['quantity'], price=item['price'])
            for item in data['items']
        ],
        total=total,
        time_slot=data['time_slot'],
        special_instructions=data['special_instructions'],
        email=data['user_email'],
    )


def initiate_booking(payload, client=None):
    """Validate a booking request and start its payment.

    Card and mobile-money bookings are handed to the gateway and only persisted
    once the ``charge.success`` webhook arrives. Cash bookings are stored right
    away with a pending payment.

    Raises ``rest_framework.exceptions.ValidationError`` or ``GatewayError``.
    """
    serializer = BookingRequestSerializer(data=payload)
    serializer.is_valid(raise_exception=True)
    data = serializer.validated_data

    total = compute_total(data['items'])
    reference = generate_payment_reference()

    if data['payment_method'] in GATEWAY_METHODS:
        client = client or PaystackClient.from_settings()
        result = client.initialize(
            total,
            data['user_email'],
            reference,
            {'user_id': data['user_id'], 'reference': reference},
            booking_draft=build_draft(data, total),
            channels=channels_for(data['payment_method']),
        )
        return GatewayRedirect(result.redirect_url, result.reference, total)

    booking = create_offline_booking(data, total, reference)
    return OfflineConfirmation(booking, reference)


@transaction.atomic
def create_offline_booking(data, total, reference):
    booking = Booking.objects.create(
        user_id=data['user_id'],
        order_number=generate_order_number(),
        payment_reference=reference,
        pickup_date=data['pickup_date'],
        delivery_date=data['delivery_date'],
        time_slot=data['time_slot'],
        address=data['address'],
        special_instructions=data['special_instructions'],
        total=total,
        payment_method=data['payment_method'],
        payment_status=PaymentStatus.PENDING,
        booking_status=BookingStatus.PENDING,
    )
    BookingItem.objects.bulk_create([
        BookingItem(booking=booking, name=item['name'], quantity=item['quantity'], price=item['price'])
        for item in data['items']
    ])
    Payment.objects.create(
        booking=booking,
        user_id=data['user_id'],
        amount=total,
        currency=settings.PAYMENTS_CURRENCY,
        payment_method=data['payment_method'],
        payment_status=PaymentStatus.PENDING,
        transaction_reference=reference,
    )
    logger.info("Created %s booking %s awaiting payment", data['payment_method'], booking.order_number)
    return booking


@transaction.atomic
def update_statuses(booking_id, booking_status=None, payment_status=None):
    """Apply an admin status change, keeping the booking's payment rows in step."""
    booking = Booking.objects.select_for_update().get(pk=booking_id)
    fields = []
    if booking_status:
        booking.transition_to(booking_status)
        fields.append('booking_status')
    if payment_status:
        booking.transition_payment_to(payment_status)
        fields.append('payment_status')
        booking.payments.update(payment_status=booking.payment_status)
    booking.save(update_fields=fields + ['updated_at'])
    logger.info("Booking %s now %s / %s", booking.order_number, booking.booking_status, booking.payment_status)
    return booking
