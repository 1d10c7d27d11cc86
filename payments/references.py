import secrets

from django.utils import timezone

from bookings.models import Booking
from .models import Payment

PAYMENT_PREFIX = 'PAY'
ORDER_PREFIX = 'ORD'
MAX_ATTEMPTS = 10


def generate(prefix):
    """Return ``<PREFIX>-<YYYYMMDD>-<NNNN>`` using today's UTC date."""
    date = timezone.now().strftime('%Y%m%d')
    return f"{prefix.upper()}-{date}-{secrets.randbelow(10_000):04d}"


def _generate_unused(prefix, is_taken):
    candidate = generate(prefix)
    attempts = 1
    while is_taken(candidate) and attempts < MAX_ATTEMPTS:
        candidate = generate(prefix)
        attempts += 1
    return candidate


def generate_payment_reference():
    def is_taken(reference):
        return (
            Payment.objects.filter(transaction_reference=reference).exists()
            or Booking.objects.filter(payment_reference=reference).exists()
        )

    return _generate_unused(PAYMENT_PREFIX, is_taken)


def generate_order_number():
    return _generate_unused(
        ORDER_PREFIX,
        lambda number: Booking.objects.filter(order_number=number).exists(),
    )
