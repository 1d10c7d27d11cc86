from django.test import TestCase, Client
from django.conf import settings
from django.contrib.auth import get_user_model
from django.utils.dateparse import parse_datetime
from unittest.mock import patch, MagicMock
from decimal import Decimal
import json

from payments.models import Payment
from payments.paystack import compute_signature
from .models import Booking, BookingItem, BookingStatus, InvalidTransition, PaymentMethod, PaymentStatus
from .services import channels_for, compute_total


def booking_payload(**overrides):
    payload = {
        'user_id': 'profile-1',
        'user_email': 'jane@example.com',
        'pickup_date': '2026-03-15T09:00:00Z',
        'delivery_date': '2026-03-17T09:00:00Z',
        'time_slot': '09:00 - 11:00',
        'address': '12 Ngong Road, Nairobi',
        'special_instructions': 'Fold, no hangers',
        'payment_method': 'card',
        'items': [
            {'name': 'Shirt', 'quantity': 2, 'price': 150},
            {'name': 'Dress', 'quantity': 1, 'price': 250},
            {'name': 'Duvet', 'quantity': 0, 'price': 800},
        ],
    }
    payload.update(overrides)
    return payload


def paystack_initialized(reference='PAY-20260315-0001'):
    response = MagicMock()
    response.status_code = 200
    response.json.return_value = {
        'status': True,
        'message': 'Authorization URL created',
        'data': {
            'authorization_url': 'https://checkout.paystack.com/test',
            'access_code': 'test',
            'reference': reference,
        },
    }
    return response


def make_booking(**overrides):
    values = {
        'user_id': 'profile-1',
        'order_number': 'ORD-20260315-0001',
        'payment_reference': 'PAY-20260315-0001',
        'pickup_date': parse_datetime('2026-03-15T09:00:00Z'),
        'delivery_date': parse_datetime('2026-03-17T09:00:00Z'),
        'address': '12 Ngong Road, Nairobi',
        'total': Decimal('550.00'),
        'payment_method': PaymentMethod.CARD,
    }
    values.update(overrides)
    return Booking.objects.create(**values)


class BookingCreationTest(TestCase):
    def setUp(self):
        self.client = Client()

    def _post(self, payload):
        return self.client.post(
            '/api/bookings/create/',
            data=json.dumps(payload),
            content_type='application/json'
        )

    @patch('payments.paystack.requests.Session.request')
    def test_card_booking_initializes_payment_without_persisting(self, mock_request):
        mock_request.return_value = paystack_initialized()

        response = self._post(booking_payload())

        self.assertEqual(response.status_code, 200)
        data = response.json()
        self.assertTrue(data['success'])
        self.assertEqual(data['payment']['authorization_url'], 'https://checkout.paystack.com/test')
        self.assertEqual(data['total'], '550.00')

        sent = mock_request.call_args[1]['json']
        self.assertEqual(sent['amount'], 55000)
        self.assertEqual(sent['email'], 'jane@example.com')
        self.assertEqual(sent['channels'], ['card', 'bank', 'mobile_money'])
        self.assertRegex(sent['reference'], r'^PAY-\d{8}-\d{4}$')
        self.assertEqual(sent['metadata']['user_id'], 'profile-1')
        self.assertIsInstance(sent['metadata']['booking_draft'], str)

        draft = json.loads(sent['metadata']['booking_draft'])
        self.assertEqual([item['name'] for item in draft['items']], ['Shirt', 'Dress'])

        self.assertEqual(Booking.objects.count(), 0)
        self.assertEqual(Payment.objects.count(), 0)

    @patch('payments.paystack.requests.Session.request')
    def test_mobile_money_restricts_channels(self, mock_request):
        mock_request.return_value = paystack_initialized()

        response = self._post(booking_payload(payment_method='mobile-money'))

        self.assertEqual(response.status_code, 200)
        self.assertEqual(mock_request.call_args[1]['json']['channels'], ['mobile_money'])

    @patch('payments.paystack.requests.Session.request')
    def test_missing_fields_rejected_before_gateway(self, mock_request):
        payload = booking_payload()
        del payload['address']
        del payload['user_email']

        response = self._post(payload)

        self.assertEqual(response.status_code, 400)
        details = response.json()['details']
        self.assertIn('address', details)
        self.assertIn('user_email', details)
        mock_request.assert_not_called()

    @patch('payments.paystack.requests.Session.request')
    def test_empty_items_rejected(self, mock_request):
        response = self._post(booking_payload(items=[]))
        self.assertEqual(response.status_code, 400)

        response = self._post(booking_payload(items=[{'name': 'Shirt', 'quantity': 0, 'price': 150}]))
        self.assertEqual(response.status_code, 400)
        self.assertIn('items', response.json()['details'])

        mock_request.assert_not_called()

    @patch('payments.paystack.requests.Session.request')
    def test_zero_total_rejected(self, mock_request):
        response = self._post(booking_payload(items=[{'name': 'Bag', 'quantity': 1, 'price': 0}]))
        self.assertEqual(response.status_code, 400)
        mock_request.assert_not_called()

    def test_delivery_before_pickup_rejected(self):
        response = self._post(booking_payload(
            payment_method='cash', pickup_date='2026-03-17T09:00:00Z', delivery_date='2026-03-15T09:00:00Z'
        ))
        self.assertEqual(response.status_code, 400)
        self.assertEqual(Booking.objects.count(), 0)

    def test_invalid_json(self):
        response = self.client.post('/api/bookings/create/', data='{', content_type='application/json')
        self.assertEqual(response.status_code, 400)

    @patch('payments.paystack.requests.Session.request')
    def test_gateway_failure_returns_502(self, mock_request):
        mock_response = MagicMock()
        mock_response.status_code = 401
        mock_response.json.return_value = {'status': False, 'message': 'Invalid key'}
        mock_request.return_value = mock_response

        response = self._post(booking_payload())

        self.assertEqual(response.status_code, 502)
        self.assertEqual(response.json()['error'], 'Failed to initialize payment')
        self.assertEqual(Booking.objects.count(), 0)

    @patch('payments.paystack.requests.Session.request')
    def test_cash_booking_is_stored_pending(self, mock_request):
        response = self._post(booking_payload(payment_method='cash'))

        self.assertEqual(response.status_code, 201)
        mock_request.assert_not_called()

        booking = Booking.objects.get(id=response.json()['booking']['id'])
        self.assertEqual(booking.booking_status, BookingStatus.PENDING)
        self.assertEqual(booking.payment_status, PaymentStatus.PENDING)
        self.assertEqual(booking.total, Decimal('550.00'))
        self.assertEqual(booking.items.count(), 2)

        payment = Payment.objects.get(booking=booking)
        self.assertEqual(payment.payment_status, PaymentStatus.PENDING)
        self.assertEqual(payment.transaction_reference, booking.payment_reference)
        self.assertEqual(payment.amount, Decimal('550.00'))


class BookingCheckoutFlowTest(TestCase):
    def setUp(self):
        self.client = Client()

    @patch('payments.paystack.requests.Session.request')
    def test_checkout_then_webhook_creates_booking(self, mock_request):
        mock_request.return_value = paystack_initialized()

        response = self.client.post(
            '/api/bookings/create/',
            data=json.dumps(booking_payload()),
            content_type='application/json'
        )
        self.assertEqual(response.status_code, 200)
        sent = mock_request.call_args[1]['json']

        event = {
            'event': 'charge.success',
            'data': {
                'reference': sent['reference'],
                'amount': sent['amount'],
                'currency': 'KES',
                'channel': 'mobile_money',
                'status': 'success',
                'metadata': sent['metadata'],
            },
        }
        body = json.dumps(event)
        response = self.client.post(
            '/api/payment/webhook/',
            data=body,
            content_type='application/json',
            HTTP_X_PAYSTACK_SIGNATURE=compute_signature(body, settings.PAYSTACK_SECRET_KEY)
        )

        self.assertEqual(response.status_code, 200)
        booking = Booking.objects.get()
        self.assertEqual(booking.total, Decimal('550.00'))
        self.assertEqual(booking.booking_status, BookingStatus.CONFIRMED)
        self.assertEqual(booking.payment_status, PaymentStatus.COMPLETED)
        self.assertEqual(booking.special_instructions, 'Fold, no hangers')
        self.assertEqual(
            sorted((i.name, i.quantity, i.price) for i in booking.items.all()),
            [('Dress', 1, Decimal('250.00')), ('Shirt', 2, Decimal('150.00'))]
        )
        self.assertEqual(Payment.objects.get().transaction_reference, sent['reference'])

        response = self.client.get('/api/bookings/', {'user_id': 'profile-1'})
        self.assertEqual(response.json()['bookings'][0]['order_number'], booking.order_number)


class BookingRulesTest(TestCase):
    def test_compute_total(self):
        items = [
            {'name': 'Shirt', 'quantity': 2, 'price': Decimal('150')},
            {'name': 'Dress', 'quantity': 1, 'price': Decimal('250')},
        ]
        self.assertEqual(compute_total(items), Decimal('550'))
        self.assertEqual(compute_total([]), Decimal('0'))

    def test_channels_for(self):
        self.assertEqual(channels_for(PaymentMethod.MOBILE_MONEY), ['mobile_money'])
        self.assertEqual(channels_for(PaymentMethod.CARD), ['card', 'bank', 'mobile_money'])

    def test_booking_status_transitions(self):
        booking = make_booking()
        booking.transition_to(BookingStatus.CONFIRMED)
        booking.transition_to(BookingStatus.IN_PROGRESS)
        booking.transition_to(BookingStatus.COMPLETED)
        self.assertEqual(booking.allowed_booking_statuses(), [])

        with self.assertRaises(InvalidTransition):
            booking.transition_to(BookingStatus.CANCELLED)

    def test_cannot_skip_confirmation(self):
        booking = make_booking()
        with self.assertRaises(InvalidTransition):
            booking.transition_to(BookingStatus.COMPLETED)
        self.assertEqual(booking.booking_status, BookingStatus.PENDING)

    def test_payment_status_transitions(self):
        booking = make_booking()
        booking.transition_payment_to(PaymentStatus.FAILED)
        booking.transition_payment_to(PaymentStatus.PENDING)
        booking.transition_payment_to(PaymentStatus.COMPLETED)
        booking.transition_payment_to(PaymentStatus.REFUNDED)

        with self.assertRaises(InvalidTransition):
            booking.transition_payment_to(PaymentStatus.COMPLETED)

    def test_item_subtotal(self):
        booking = make_booking()
        item = BookingItem.objects.create(booking=booking, name='Shirt', quantity=3, price=Decimal('150.00'))
        self.assertEqual(item.subtotal, Decimal('450.00'))
        self.assertEqual(booking.to_dict()['items'][0]['subtotal'], '450.00')


class BookingListingTest(TestCase):
    def setUp(self):
        self.client = Client()
        self.mine = make_booking()
        self.done = make_booking(order_number='ORD-20260315-0002', payment_reference='PAY-20260315-0002',
                                 booking_status=BookingStatus.COMPLETED)
        make_booking(user_id='profile-2', order_number='ORD-20260315-0003', payment_reference='PAY-20260315-0003')

    def test_list_requires_user(self):
        response = self.client.get('/api/bookings/')
        self.assertEqual(response.status_code, 400)

    def test_list_only_returns_own_bookings(self):
        response = self.client.get('/api/bookings/', {'user_id': 'profile-1'})

        self.assertEqual(response.status_code, 200)
        data = response.json()
        self.assertEqual(data['pagination']['total'], 2)
        self.assertEqual({b['user_id'] for b in data['bookings']}, {'profile-1'})

    def test_list_filters_by_status(self):
        response = self.client.get('/api/bookings/', {'user_id': 'profile-1', 'filter': 'completed'})
        self.assertEqual([b['order_number'] for b in response.json()['bookings']], ['ORD-20260315-0002'])

        response = self.client.get('/api/bookings/', {'user_id': 'profile-1', 'filter': 'bogus'})
        self.assertEqual(response.status_code, 400)

    def test_get_booking(self):
        response = self.client.get(f'/api/bookings/{self.mine.id}/')
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['order_number'], 'ORD-20260315-0001')

        response = self.client.get('/api/bookings/99999/')
        self.assertEqual(response.status_code, 404)


class AdminBookingStatusTest(TestCase):
    def setUp(self):
        self.client = Client()
        self.staff = get_user_model().objects.create_user('ops', 'ops@example.com', 'pw', is_staff=True)
        self.booking = make_booking(payment_method=PaymentMethod.CASH)
        Payment.objects.create(
            booking=self.booking,
            user_id='profile-1',
            amount=Decimal('550.00'),
            payment_method=PaymentMethod.CASH,
            transaction_reference='PAY-20260315-0001',
        )

    def _update(self, payload):
        return self.client.post(
            f'/api/admin/bookings/{self.booking.id}/status/',
            data=json.dumps(payload),
            content_type='application/json'
        )

    def test_requires_staff(self):
        response = self._update({'booking_status': 'confirmed'})
        self.assertEqual(response.status_code, 302)
        self.booking.refresh_from_db()
        self.assertEqual(self.booking.booking_status, BookingStatus.PENDING)

    def test_cash_payment_collected(self):
        self.client.force_login(self.staff)

        response = self._update({'booking_status': 'confirmed', 'payment_status': 'completed'})

        self.assertEqual(response.status_code, 200)
        self.booking.refresh_from_db()
        self.assertEqual(self.booking.booking_status, BookingStatus.CONFIRMED)
        self.assertEqual(self.booking.payment_status, PaymentStatus.COMPLETED)
        self.assertEqual(Payment.objects.get().payment_status, PaymentStatus.COMPLETED)

    def test_response_lists_next_allowed_statuses(self):
        self.client.force_login(self.staff)

        response = self._update({'booking_status': 'confirmed'})

        data = response.json()
        self.assertEqual(data['allowed_booking_statuses'], ['cancelled', 'in_progress'])
        self.assertEqual(data['allowed_payment_statuses'], ['completed', 'failed'])

    def test_booking_detail_includes_payments(self):
        response = self.client.get(f'/api/bookings/{self.booking.id}/')

        payments = response.json()['payments']
        self.assertEqual(len(payments), 1)
        self.assertEqual(payments[0]['transaction_reference'], 'PAY-20260315-0001')
        self.assertEqual(payments[0]['payment_status'], 'pending')

    def test_invalid_transition_rejected(self):
        self.client.force_login(self.staff)

        response = self._update({'booking_status': 'completed'})

        self.assertEqual(response.status_code, 400)
        self.booking.refresh_from_db()
        self.assertEqual(self.booking.booking_status, BookingStatus.PENDING)

    def test_empty_update_rejected(self):
        self.client.force_login(self.staff)
        self.assertEqual(self._update({}).status_code, 400)

    def test_admin_search(self):
        self.client.force_login(self.staff)

        response = self.client.get('/api/admin/bookings/', {'search': 'ngong'})

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['pagination']['total'], 1)


class DashboardStatsTest(TestCase):
    def setUp(self):
        self.client = Client()
        self.staff = get_user_model().objects.create_user('ops', 'ops@example.com', 'pw', is_staff=True)

        pending = make_booking(payment_method=PaymentMethod.CASH, total=Decimal('200.00'))
        confirmed = make_booking(order_number='ORD-20260315-0002', payment_reference='PAY-20260315-0002',
                                 booking_status=BookingStatus.CONFIRMED, total=Decimal('550.00'))
        make_booking(order_number='ORD-20260315-0003', payment_reference='PAY-20260315-0003',
                     booking_status=BookingStatus.COMPLETED, total=Decimal('300.00'))
        make_booking(user_id='profile-2', order_number='ORD-20260315-0004',
                     payment_reference='PAY-20260315-0004', booking_status=BookingStatus.IN_PROGRESS,
                     total=Decimal('1000.00'))

        Payment.objects.create(booking=pending, user_id='profile-1', amount=Decimal('200.00'),
                               payment_method=PaymentMethod.CASH, transaction_reference='PAY-20260315-0001')
        Payment.objects.create(booking=confirmed, user_id='profile-1', amount=Decimal('550.00'),
                               payment_method=PaymentMethod.CARD, payment_status=PaymentStatus.COMPLETED,
                               transaction_reference='PAY-20260315-0002')

    def test_user_stats(self):
        response = self.client.get('/api/bookings/stats/', {'user_id': 'profile-1'})

        self.assertEqual(response.status_code, 200)
        data = response.json()
        self.assertEqual(data['stats'], {
            'activeBookings': 2,
            'completedOrders': 1,
            'totalSpent': '1050.00',
        })
        self.assertEqual(len(data['recentBookings']), 3)
        self.assertEqual({b['user_id'] for b in data['recentBookings']}, {'profile-1'})

    def test_user_stats_without_bookings(self):
        response = self.client.get('/api/bookings/stats/', {'user_id': 'nobody'})

        self.assertEqual(response.json()['stats'], {'activeBookings': 0, 'completedOrders': 0, 'totalSpent': '0.00'})

    def test_user_stats_requires_user(self):
        self.assertEqual(self.client.get('/api/bookings/stats/').status_code, 400)

    def test_recent_bookings_are_capped(self):
        for n in range(5, 11):
            make_booking(order_number=f'ORD-20260315-00{n:02d}', payment_reference=f'PAY-20260315-00{n:02d}')

        response = self.client.get('/api/bookings/stats/', {'user_id': 'profile-1'})

        self.assertEqual(len(response.json()['recentBookings']), 5)

    def test_admin_stats_requires_staff(self):
        self.assertEqual(self.client.get('/api/admin/bookings/stats/').status_code, 302)

    def test_admin_stats(self):
        self.client.force_login(self.staff)

        response = self.client.get('/api/admin/bookings/stats/')

        self.assertEqual(response.status_code, 200)
        data = response.json()
        self.assertEqual(data['stats'], {'totalBookings': 4, 'pendingOrders': 2, 'revenue': '550.00'})
        self.assertEqual(len(data['recentBookings']), 4)
        self.assertEqual(
            sorted(p['order_number'] for p in data['recentPayments']),
            ['ORD-20260315-0001', 'ORD-20260315-0002']
        )
