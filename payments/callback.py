"""State for the page the gateway redirects customers back to.

Purely informational: bookings are created by the webhook, so nothing here may
be taken as proof of payment.
"""
from collections import namedtuple

from django.conf import settings

SUCCESS = 'success'
PENDING = 'pending'
ERROR = 'error'

DASHBOARD_PATH = '/dashboard'

CallbackState = namedtuple('CallbackState', ['status', 'message', 'reference', 'redirect_to', 'redirect_after'])


def resolve_callback(params):
    reference = params.get('reference')
    trxref = params.get('trxref')
    status = params.get('status')

    if not reference or not trxref:
        return CallbackState(ERROR, 'Invalid payment reference', reference, DASHBOARD_PATH, None)

    if status == 'cancelled':
        return CallbackState(ERROR, 'Payment was cancelled', reference, DASHBOARD_PATH, None)

    if status == 'success':
        return CallbackState(
            SUCCESS,
            'Payment completed successfully! Your booking is being created...',
            reference,
            DASHBOARD_PATH,
            settings.PAYMENT_CALLBACK_SUCCESS_REDIRECT_SECONDS,
        )

    return CallbackState(
        PENDING,
        'Payment is being processed. You will receive a confirmation shortly.',
        reference,
        DASHBOARD_PATH,
        settings.PAYMENT_CALLBACK_PENDING_REDIRECT_SECONDS,
    )
