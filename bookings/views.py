import json
import logging
from decimal import Decimal

from django.contrib.admin.views.decorators import staff_member_required
from django.db.models import Count, Q, Sum
from django.http import JsonResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_http_methods
from rest_framework.exceptions import ValidationError

from payments.exceptions import GatewayError
from payments.models import Payment
from .models import Booking, BookingStatus, InvalidTransition, PaymentStatus
from .serializers import StatusUpdateSerializer
from .services import GatewayRedirect, initiate_booking, update_statuses

logger = logging.getLogger(__name__)

ACTIVE_STATUSES = [BookingStatus.PENDING, BookingStatus.CONFIRMED, BookingStatus.IN_PROGRESS]
OPEN_STATUSES = [BookingStatus.PENDING, BookingStatus.CONFIRMED]
RECENT_LIMIT = 5


def _json_body(request):
    try:
        data = json.loads(request.body)
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None
    return data if isinstance(data, dict) else None


def _paginate(request, queryset, default_limit):
    try:
        page = max(int(request.GET.get('page', '1')), 1)
        limit = min(max(int(request.GET.get('limit', str(default_limit))), 1), 100)
    except ValueError:
        page, limit = 1, default_limit

    total = queryset.count()
    offset = (page - 1) * limit
    bookings = queryset.prefetch_related('items')[offset:offset + limit]
    return [b.to_dict() for b in bookings], {
        'page': page,
        'limit': limit,
        'total': total,
        'totalPages': (total + limit - 1) // limit,
    }


def _money(value):
    return str((value or Decimal('0')).quantize(Decimal('0.01')))


def _filter_by_status(request, queryset):
    status_filter = request.GET.get('filter', 'all')
    if status_filter != 'all':
        if status_filter not in BookingStatus.values:
            return None
        queryset = queryset.filter(booking_status=status_filter)
    return queryset


@csrf_exempt
@require_http_methods(["POST"])
def create_booking(request):
    data = _json_body(request)
    if data is None:
        return JsonResponse({'error': 'Invalid JSON'}, status=400)

    try:
        result = initiate_booking(data)
    except ValidationError as e:
        return JsonResponse({'error': 'Missing or invalid fields', 'details': e.detail}, status=400)
    except GatewayError as e:
        logger.error("Payment initialization error: %s", e)
        return JsonResponse({'error': 'Failed to initialize payment'}, status=502)

    if isinstance(result, GatewayRedirect):
        return JsonResponse({
            'success': True,
            'payment': {
                'authorization_url': result.redirect_url,
                'reference': result.reference,
            },
            'total': str(result.total),
            'message': 'Payment initialized successfully',
        })

    return JsonResponse({
        'success': True,
        'booking': result.booking.to_dict(),
        'message': 'Booking created successfully (cash payment)',
    }, status=201)


@require_http_methods(["GET"])
def get_booking(request, booking_id):
    try:
        booking = Booking.objects.prefetch_related('items', 'payments').get(id=booking_id)
    except Booking.DoesNotExist:
        return JsonResponse({'error': 'Booking not found'}, status=404)

    data = booking.to_dict()
    data['payments'] = [payment.to_dict() for payment in booking.payments.all()]
    return JsonResponse(data)


@require_http_methods(["GET"])
def list_bookings(request):
    user_id = request.GET.get('user_id')
    if not user_id:
        return JsonResponse({'error': 'User ID is required'}, status=400)

    queryset = _filter_by_status(request, Booking.objects.filter(user_id=user_id))
    if queryset is None:
        return JsonResponse({'error': 'Unknown status filter'}, status=400)

    bookings, pagination = _paginate(request, queryset, default_limit=10)
    return JsonResponse({'success': True, 'bookings': bookings, 'pagination': pagination})


@require_http_methods(["GET"])
def user_stats(request):
    user_id = request.GET.get('user_id')
    if not user_id:
        return JsonResponse({'error': 'User ID is required'}, status=400)

    bookings = Booking.objects.filter(user_id=user_id)
    stats = bookings.aggregate(
        activeBookings=Count('id', filter=Q(booking_status__in=ACTIVE_STATUSES)),
        completedOrders=Count('id', filter=Q(booking_status=BookingStatus.COMPLETED)),
        totalSpent=Sum('total'),
    )
    stats['totalSpent'] = _money(stats['totalSpent'])

    recent = bookings.order_by('-created_at')[:RECENT_LIMIT]
    return JsonResponse({
        'success': True,
        'stats': stats,
        'recentBookings': [b.to_dict(include_items=False) for b in recent],
    })


@staff_member_required
@require_http_methods(["GET"])
def admin_list_bookings(request):
    queryset = _filter_by_status(request, Booking.objects.all())
    if queryset is None:
        return JsonResponse({'error': 'Unknown status filter'}, status=400)

    search = request.GET.get('search', '').strip()
    if search:
        queryset = queryset.filter(
            Q(order_number__icontains=search) | Q(address__icontains=search) | Q(user_id__icontains=search)
        )

    bookings, pagination = _paginate(request, queryset, default_limit=20)
    return JsonResponse({'success': True, 'bookings': bookings, 'pagination': pagination})


@staff_member_required
@require_http_methods(["GET"])
def admin_stats(request):
    stats = Booking.objects.aggregate(
        totalBookings=Count('id'),
        pendingOrders=Count('id', filter=Q(booking_status__in=OPEN_STATUSES)),
    )
    revenue = Payment.objects.filter(payment_status=PaymentStatus.COMPLETED).aggregate(total=Sum('amount'))['total']
    stats['revenue'] = _money(revenue)

    recent_bookings = Booking.objects.order_by('-created_at')[:RECENT_LIMIT]
    recent_payments = Payment.objects.select_related('booking').order_by('-created_at')[:RECENT_LIMIT]
    payments = []
    for payment in recent_payments:
        data = payment.to_dict()
        data['order_number'] = payment.booking.order_number
        payments.append(data)

    return JsonResponse({
        'success': True,
        'stats': stats,
        'recentBookings': [b.to_dict(include_items=False) for b in recent_bookings],
        'recentPayments': payments,
    })


@csrf_exempt
@staff_member_required
@require_http_methods(["POST"])
def admin_update_status(request, booking_id):
    data = _json_body(request)
    if data is None:
        return JsonResponse({'error': 'Invalid JSON'}, status=400)

    serializer = StatusUpdateSerializer(data=data)
    if not serializer.is_valid():
        return JsonResponse({'error': 'Invalid status', 'details': serializer.errors}, status=400)

    try:
        booking = update_statuses(booking_id, **serializer.validated_data)
    except Booking.DoesNotExist:
        return JsonResponse({'error': 'Booking not found'}, status=404)
    except InvalidTransition as e:
        return JsonResponse({'error': str(e)}, status=400)

    data = booking.to_dict(include_items=False)
    data['allowed_booking_statuses'] = booking.allowed_booking_statuses()
    data['allowed_payment_statuses'] = booking.allowed_payment_statuses()
    return JsonResponse(data)
