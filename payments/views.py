import json
import logging
from decimal import Decimal, InvalidOperation

from django.conf import settings
from django.contrib.admin.views.decorators import staff_member_required
from django.http import JsonResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_http_methods

from . import drafts
from .callback import resolve_callback
from .exceptions import DraftDecodeError, GatewayError, PersistenceError, SignatureError
from .paystack import SIGNATURE_HEADER, PaystackClient
from .webhooks import process_event, verify_and_parse

logger = logging.getLogger(__name__)


def _json_body(request):
    try:
        data = json.loads(request.body)
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None
    return data if isinstance(data, dict) else None


def _gateway_error_response(error):
    return JsonResponse({'error': str(error)}, status=502)


@csrf_exempt
@require_http_methods(["POST"])
def initialize_payment(request):
    data = _json_body(request)
    if data is None:
        return JsonResponse({'error': 'Invalid JSON'}, status=400)

    amount = data.get('amount')
    email = data.get('email')
    reference = data.get('reference')
    metadata = data.get('metadata')
    booking_data = data.get('bookingData')

    if not all([amount, email, reference, metadata, booking_data]):
        return JsonResponse({'error': 'Missing required fields'}, status=400)
    if not isinstance(metadata, dict):
        return JsonResponse({'error': 'metadata must be an object'}, status=400)
    try:
        amount = Decimal(str(amount))
    except InvalidOperation:
        return JsonResponse({'error': 'Invalid amount'}, status=400)
    if not amount.is_finite() or amount <= 0:
        return JsonResponse({'error': 'Amount must be > 0'}, status=400)

    try:
        draft = drafts.from_booking_data(booking_data)
    except DraftDecodeError as e:
        return JsonResponse({'error': f'Invalid bookingData: {e}'}, status=400)
    if not draft.email:
        draft.email = email

    try:
        result = PaystackClient.from_settings().initialize(amount, email, reference, metadata, booking_draft=draft)
    except GatewayError as e:
        logger.error("Payment initialization failed for %s: %s", reference, e)
        return _gateway_error_response(e)

    return JsonResponse({
        'status': True,
        'data': {
            'authorization_url': result.redirect_url,
            'access_code': result.access_code,
            'reference': result.reference,
        },
    })


@csrf_exempt
@require_http_methods(["POST"])
def verify_payment(request):
    data = _json_body(request)
    if data is None:
        return JsonResponse({'error': 'Invalid JSON'}, status=400)

    reference = data.get('reference')
    if not reference:
        return JsonResponse({'error': 'Missing reference'}, status=400)

    try:
        transaction = PaystackClient.from_settings().verify(reference)
    except GatewayError as e:
        logger.error("Payment verification failed for %s: %s", reference, e)
        return _gateway_error_response(e)

    return JsonResponse({'status': True, 'data': transaction})


@csrf_exempt
@require_http_methods(["POST"])
def paystack_webhook(request):
    if not settings.PAYSTACK_SECRET_KEY:
        logger.error("PAYSTACK_SECRET_KEY is not set, cannot verify webhooks")
        return JsonResponse({'error': 'Webhook secret not configured'}, status=500)

    client = PaystackClient.from_settings()
    signature = request.headers.get(SIGNATURE_HEADER)

    try:
        event = verify_and_parse(request.body, signature, client)
    except SignatureError as e:
        logger.warning("Rejected webhook: %s", e)
        return JsonResponse({'error': str(e)}, status=401)
    except (ValueError, UnicodeDecodeError):
        return JsonResponse({'error': 'Invalid payload'}, status=400)

    try:
        result = process_event(event)
    except PersistenceError as e:
        return JsonResponse({'error': str(e)}, status=500)

    response = {'status': 'success', 'event': result.event, 'action': result.action}
    if result.booking is not None:
        response['order_number'] = result.booking.order_number
    return JsonResponse(response)


@require_http_methods(["GET"])
def payment_callback(request):
    state = resolve_callback(request.GET)
    return JsonResponse(state._asdict())


@staff_member_required
@require_http_methods(["GET"])
def list_transactions(request):
    try:
        page = max(int(request.GET.get('page', '1')), 1)
        per_page = min(max(int(request.GET.get('perPage', '50')), 1), 100)
    except ValueError:
        return JsonResponse({'error': 'page and perPage must be integers'}, status=400)

    try:
        transactions, meta = PaystackClient.from_settings().list_transactions(
            page=page, per_page=per_page, status=request.GET.get('status')
        )
    except GatewayError as e:
        return _gateway_error_response(e)

    return JsonResponse({'transactions': transactions, 'meta': meta})


@staff_member_required
@require_http_methods(["GET"])
def get_transaction(request, transaction_id):
    try:
        transaction = PaystackClient.from_settings().get_transaction(transaction_id)
    except GatewayError as e:
        if e.status_code == 404:
            return JsonResponse({'error': 'Transaction not found'}, status=404)
        return _gateway_error_response(e)

    return JsonResponse({'transaction': transaction})
