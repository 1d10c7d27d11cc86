import json
import re
from decimal import Decimal
from io import StringIO
from unittest.mock import MagicMock, patch

import requests
from django.conf import settings
from django.contrib.auth import get_user_model
from django.core.management import call_command
from django.db import DatabaseError
from django.test import Client, SimpleTestCase, TestCase, override_settings

from bookings.models import Booking, BookingItem, BookingStatus, PaymentMethod, PaymentStatus
from . import drafts, references
from .callback import ERROR, PENDING, SUCCESS, resolve_callback
from .exceptions import DraftDecodeError, GatewayError, SignatureError
from .models import Payment
from .paystack import PaystackClient, compute_signature, from_minor_units, to_minor_units
from .webhooks import verify_and_parse

REFERENCE_PATTERN = re.compile(r'^[A-Z]+-\d{8}-\d{4}$')


def make_draft(**overrides):
    values = {
        'user_id': 'profile-1',
        'pickup_date': '2026-03-15T09:00:00+03:00',
        'delivery_date': '2026-03-17T09:00:00+03:00',
        'address': '12 Ngong Road, Nairobi',
        'payment_method': PaymentMethod.CARD.value,
        'items': [
            drafts.DraftItem(name='Shirt', quantity=2, price=Decimal('150.00')),
            drafts.DraftItem(name='Dress', quantity=1, price=Decimal('250.00')),
        ],
        'total': Decimal('550.00'),
        'time_slot': '09:00 - 11:00',
        'special_instructions': 'Fold, no hangers',
        'email': 'jane@example.com',
    }
    values.update(overrides)
    return drafts.BookingDraft(**values)


def charge_success_event(reference='PAY-20260315-0001', amount=55000, draft=None, metadata=None):
    if metadata is None:
        metadata = {
            'user_id': 'profile-1',
            'reference': reference,
            drafts.METADATA_KEY: drafts.encode(draft or make_draft()),
        }
    return {
        'event': 'charge.success',
        'data': {
            'id': 302961,
            'reference': reference,
            'amount': amount,
            'currency': 'KES',
            'channel': 'card',
            'status': 'success',
            'gateway_response': 'Approved',
            'paid_at': '2026-03-15T06:05:00.000Z',
            'metadata': metadata,
            'customer': {'email': 'jane@example.com'},
        },
    }


def gateway_response(body, status_code=200):
    response = MagicMock()
    response.status_code = status_code
    response.json.return_value = body
    response.text = json.dumps(body)
    return response


class ReferenceGeneratorTest(TestCase):
    def test_reference_format(self):
        for prefix in ['PAY', 'ORD', 'ref']:
            reference = references.generate(prefix)
            self.assertRegex(reference, REFERENCE_PATTERN)
            self.assertTrue(reference.startswith(prefix.upper() + '-'))

    def test_payment_reference_skips_used_values(self):
        booking = Booking.objects.create(
            user_id='profile-1',
            order_number='ORD-20260315-0001',
            payment_reference='PAY-20260315-1111',
            pickup_date='2026-03-15T09:00:00Z',
            delivery_date='2026-03-16T09:00:00Z',
            address='Somewhere',
            total=Decimal('100'),
            payment_method=PaymentMethod.CASH,
        )
        Payment.objects.create(
            booking=booking,
            user_id='profile-1',
            amount=Decimal('100'),
            payment_method=PaymentMethod.CASH,
            transaction_reference='PAY-20260315-2222',
        )

        with patch('payments.references.generate', side_effect=[
            'PAY-20260315-1111', 'PAY-20260315-2222', 'PAY-20260315-3333',
        ]):
            self.assertEqual(references.generate_payment_reference(), 'PAY-20260315-3333')

    def test_order_number_skips_used_values(self):
        Booking.objects.create(
            user_id='profile-1',
            order_number='ORD-20260315-0001',
            pickup_date='2026-03-15T09:00:00Z',
            delivery_date='2026-03-16T09:00:00Z',
            address='Somewhere',
            total=Decimal('100'),
            payment_method=PaymentMethod.CASH,
        )
        with patch('payments.references.generate', side_effect=['ORD-20260315-0001', 'ORD-20260315-0002']):
            self.assertEqual(references.generate_order_number(), 'ORD-20260315-0002')


class BookingDraftCodecTest(SimpleTestCase):
    def test_round_trip(self):
        draft = make_draft()
        self.assertEqual(drafts.decode(drafts.encode(draft)), draft)

    def test_round_trip_without_optional_fields(self):
        draft = make_draft(time_slot='', special_instructions='', email='',
                           items=[drafts.DraftItem(name='Duvet', quantity=1, price=Decimal('800'))],
                           total=Decimal('800'))
        self.assertEqual(drafts.decode(drafts.encode(draft)), draft)

    def test_round_trip_keeps_surrounding_whitespace(self):
        draft = make_draft(
            user_id='profile-1 ',
            address=' 12 Ngong Road ',
            time_slot=' 09:00 - 11:00',
            special_instructions='Fold, no hangers\n',
            items=[drafts.DraftItem(name=' Shirt ', quantity=2, price=Decimal('150.00'))],
            total=Decimal('300.00'),
        )
        self.assertEqual(drafts.decode(drafts.encode(draft)), draft)

    def test_from_plain_booking_data(self):
        draft = drafts.from_booking_data({
            'user_id': 'profile-1',
            'pickup_date': '2026-03-15',
            'delivery_date': '2026-03-17',
            'address': '12 Ngong Road, Nairobi',
            'items': [{'name': 'Shirt', 'quantity': 2, 'price': 150}],
        })
        self.assertEqual(draft.total, Decimal('300.00'))
        self.assertEqual(draft.payment_method, PaymentMethod.CARD)
        self.assertEqual(drafts.decode(drafts.encode(draft)), draft)

        with self.assertRaises(DraftDecodeError):
            drafts.from_booking_data({'user_id': 'profile-1'})
        with self.assertRaises(DraftDecodeError):
            drafts.from_booking_data('[1, 2]')

    def test_draft_is_a_json_string_inside_metadata(self):
        metadata = {'user_id': 'profile-1', drafts.METADATA_KEY: drafts.encode(make_draft())}
        wire = json.loads(json.dumps(metadata))

        self.assertIsInstance(wire[drafts.METADATA_KEY], str)
        inner = json.loads(wire[drafts.METADATA_KEY])
        self.assertEqual(inner['kind'], drafts.DRAFT_KIND)
        self.assertEqual(inner['version'], drafts.DRAFT_VERSION)
        self.assertEqual(inner['total'], '550.00')
        self.assertEqual(drafts.decode_from_metadata(wire), make_draft())

    def test_metadata_echoed_back_as_string(self):
        metadata = json.dumps({drafts.METADATA_KEY: drafts.encode(make_draft())})
        self.assertEqual(drafts.decode_from_metadata(metadata), make_draft())

    def test_malformed_json_raises(self):
        with self.assertRaises(DraftDecodeError):
            drafts.decode('{"version": 1, "kind": ')

    def test_missing_draft_raises(self):
        with self.assertRaises(DraftDecodeError):
            drafts.decode_from_metadata({'user_id': 'profile-1'})
        with self.assertRaises(DraftDecodeError):
            drafts.decode_from_metadata(None)

    def test_unknown_version_raises(self):
        payload = json.loads(drafts.encode(make_draft()))
        payload['version'] = 2
        with self.assertRaises(DraftDecodeError):
            drafts.decode(json.dumps(payload))

    def test_invalid_fields_raise(self):
        payload = json.loads(drafts.encode(make_draft()))
        payload['items'][0]['quantity'] = -1
        with self.assertRaises(DraftDecodeError):
            drafts.decode(json.dumps(payload))

        payload = json.loads(drafts.encode(make_draft()))
        payload['pickup_date'] = 'next tuesday'
        with self.assertRaises(DraftDecodeError):
            drafts.decode(json.dumps(payload))

    def test_parse_schedule_accepts_plain_dates(self):
        parsed = drafts.parse_schedule('2026-03-15')
        self.assertEqual((parsed.year, parsed.month, parsed.day), (2026, 3, 15))
        self.assertIsNotNone(parsed.tzinfo)


class PaystackClientTest(SimpleTestCase):
    def setUp(self):
        self.session = MagicMock()
        self.client = PaystackClient(
            secret_key='sk_test_123',
            base_url='https://api.paystack.test',
            callback_url='https://laundry.test/payment/callback',
            session=self.session,
        )

    def test_minor_unit_conversion(self):
        self.assertEqual(to_minor_units(550), 55000)
        self.assertEqual(to_minor_units(Decimal('99.99')), 9999)
        self.assertEqual(from_minor_units(55000), Decimal('550.00'))

    def test_initialize_sends_minor_units_and_defaults(self):
        self.session.request.return_value = gateway_response({
            'status': True,
            'message': 'Authorization URL created',
            'data': {
                'authorization_url': 'https://checkout.paystack.com/abc',
                'access_code': 'abc',
                'reference': 'PAY-20260315-0001',
            },
        })

        result = self.client.initialize(Decimal('550'), 'jane@example.com', 'PAY-20260315-0001',
                                        {'user_id': 'profile-1'}, booking_draft=make_draft())

        self.assertEqual(result.redirect_url, 'https://checkout.paystack.com/abc')
        self.assertEqual(result.reference, 'PAY-20260315-0001')

        args, kwargs = self.session.request.call_args
        self.assertEqual(args, ('POST', 'https://api.paystack.test/transaction/initialize'))
        self.assertEqual(kwargs['headers']['Authorization'], 'Bearer sk_test_123')
        payload = kwargs['json']
        self.assertEqual(payload['amount'], 55000)
        self.assertEqual(payload['currency'], 'KES')
        self.assertEqual(payload['channels'], ['card', 'bank', 'mobile_money'])
        self.assertEqual(payload['callback_url'], 'https://laundry.test/payment/callback')
        self.assertEqual(payload['metadata']['user_id'], 'profile-1')
        self.assertEqual(drafts.decode(payload['metadata'][drafts.METADATA_KEY]), make_draft())

    def test_initialize_without_draft_leaves_metadata_untouched(self):
        self.session.request.return_value = gateway_response({
            'status': True,
            'data': {'authorization_url': 'https://checkout.paystack.com/abc', 'reference': 'R-1'},
        })
        self.client.initialize(100, 'jane@example.com', 'R-1', {'user_id': 'profile-1'}, channels=['mobile_money'])

        payload = self.session.request.call_args[1]['json']
        self.assertEqual(payload['metadata'], {'user_id': 'profile-1'})
        self.assertEqual(payload['channels'], ['mobile_money'])

    def test_initialize_rejected_by_gateway(self):
        self.session.request.return_value = gateway_response(
            {'status': False, 'message': 'Duplicate Transaction Reference'}, status_code=400
        )
        with self.assertRaises(GatewayError) as ctx:
            self.client.initialize(100, 'jane@example.com', 'R-1', {})
        self.assertEqual(ctx.exception.status_code, 400)
        self.assertIn('Duplicate Transaction Reference', str(ctx.exception))

    def test_initialize_status_false_with_200(self):
        self.session.request.return_value = gateway_response({'status': False, 'message': 'Invalid key'})
        with self.assertRaises(GatewayError):
            self.client.initialize(100, 'jane@example.com', 'R-1', {})

    def test_network_failure_raises_gateway_error(self):
        self.session.request.side_effect = requests.ConnectionError('connection refused')
        with self.assertRaises(GatewayError):
            self.client.initialize(100, 'jane@example.com', 'R-1', {})

    def test_verify_returns_transaction(self):
        self.session.request.return_value = gateway_response({
            'status': True,
            'data': {'reference': 'R-1', 'status': 'success', 'amount': 10000},
        })
        transaction = self.client.verify('R-1')
        self.assertEqual(transaction['status'], 'success')
        self.assertEqual(self.session.request.call_args[0],
                         ('GET', 'https://api.paystack.test/transaction/verify/R-1'))

    def test_list_transactions_passes_paging(self):
        self.session.request.return_value = gateway_response({
            'status': True,
            'data': [{'reference': 'R-1'}],
            'meta': {'page': 2, 'pageCount': 3},
        })
        transactions, meta = self.client.list_transactions(page=2, per_page=10)
        self.assertEqual(transactions, [{'reference': 'R-1'}])
        self.assertEqual(meta['pageCount'], 3)
        self.assertEqual(self.session.request.call_args[1]['params'], {'page': 2, 'perPage': 10})

    def test_signature(self):
        body = b'{"event":"charge.success"}'
        signature = compute_signature(body, 'sk_test_123')
        self.assertEqual(len(signature), 128)
        self.assertTrue(self.client.verify_signature(body, signature))
        self.assertFalse(self.client.verify_signature(body + b' ', signature))
        self.assertFalse(self.client.verify_signature(body, 'not-a-signature'))
        self.assertFalse(self.client.verify_signature(body, None))

    def test_verify_and_parse_rejects_before_parsing(self):
        with self.assertRaises(SignatureError):
            verify_and_parse(b'not even json', 'bad', self.client)
        with self.assertRaises(SignatureError):
            verify_and_parse(b'{}', '', self.client)


class PaystackWebhookTest(TestCase):
    def setUp(self):
        self.client = Client()

    def _post(self, event, signature=None):
        body = event if isinstance(event, str) else json.dumps(event)
        if signature is None:
            signature = compute_signature(body, settings.PAYSTACK_SECRET_KEY)
        headers = {'HTTP_X_PAYSTACK_SIGNATURE': signature} if signature else {}
        return self.client.post('/api/payment/webhook/', data=body, content_type='application/json', **headers)

    def assertNothingPersisted(self):
        self.assertEqual(Booking.objects.count(), 0)
        self.assertEqual(BookingItem.objects.count(), 0)
        self.assertEqual(Payment.objects.count(), 0)

    def test_webhook_rejects_missing_signature(self):
        response = self._post(charge_success_event(), signature='')
        self.assertEqual(response.status_code, 401)
        self.assertNothingPersisted()

    def test_webhook_rejects_invalid_signature(self):
        response = self._post(charge_success_event(), signature='0' * 128)
        self.assertEqual(response.status_code, 401)
        self.assertNothingPersisted()

    def test_signature_over_different_body_is_rejected(self):
        original = json.dumps(charge_success_event())
        tampered = json.dumps(charge_success_event(amount=100))
        response = self._post(tampered, signature=compute_signature(original, settings.PAYSTACK_SECRET_KEY))
        self.assertEqual(response.status_code, 401)
        self.assertNothingPersisted()

    def test_signed_garbage_is_bad_request(self):
        response = self._post('not json')
        self.assertEqual(response.status_code, 400)

    def test_charge_success_creates_booking_items_and_payment(self):
        # the customer submitted 550 but the gateway confirmed 500; the gateway wins
        response = self._post(charge_success_event(amount=50000))

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['action'], 'created')

        self.assertEqual(Booking.objects.count(), 1)
        booking = Booking.objects.get()
        self.assertEqual(response.json()['order_number'], booking.order_number)
        self.assertRegex(booking.order_number, r'^ORD-\d{8}-\d{4}$')
        self.assertEqual(booking.total, Decimal('500.00'))
        self.assertEqual(booking.booking_status, BookingStatus.CONFIRMED)
        self.assertEqual(booking.payment_status, PaymentStatus.COMPLETED)
        self.assertEqual(booking.payment_reference, 'PAY-20260315-0001')
        self.assertEqual(booking.user_id, 'profile-1')
        self.assertEqual(booking.time_slot, '09:00 - 11:00')

        items = list(booking.items.order_by('name'))
        self.assertEqual([(i.name, i.quantity, i.price) for i in items],
                         [('Dress', 1, Decimal('250.00')), ('Shirt', 2, Decimal('150.00'))])

        payment = Payment.objects.get()
        self.assertEqual(payment.booking, booking)
        self.assertEqual(payment.amount, Decimal('500.00'))
        self.assertEqual(payment.payment_status, PaymentStatus.COMPLETED)
        self.assertEqual(payment.transaction_reference, 'PAY-20260315-0001')
        self.assertEqual(payment.channel, 'card')

    def test_redelivered_charge_success_is_idempotent(self):
        event = charge_success_event()
        first = self._post(event)
        second = self._post(event)

        self.assertEqual(first.status_code, 200)
        self.assertEqual(second.status_code, 200)
        self.assertEqual(second.json()['action'], 'duplicate')
        self.assertEqual(first.json()['order_number'], second.json()['order_number'])
        self.assertEqual(Booking.objects.count(), 1)
        self.assertEqual(BookingItem.objects.count(), 2)
        self.assertEqual(Payment.objects.count(), 1)

    def test_malformed_draft_is_acknowledged_without_writes(self):
        metadata = {'user_id': 'profile-1', drafts.METADATA_KEY: '{"broken": '}
        response = self._post(charge_success_event(metadata=metadata))

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['action'], 'skipped')
        self.assertNothingPersisted()

    def test_charge_failed_has_no_side_effects(self):
        event = charge_success_event()
        event['event'] = 'charge.failed'
        response = self._post(event)

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['action'], 'ignored')
        self.assertNothingPersisted()

    def test_transfer_and_unknown_events_are_ignored(self):
        for name in ['transfer.success', 'transfer.failed', 'subscription.create']:
            event = charge_success_event()
            event['event'] = name
            response = self._post(event)
            self.assertEqual(response.status_code, 200)
            self.assertEqual(response.json()['action'], 'ignored')
        self.assertNothingPersisted()

    @patch('payments.webhooks.Payment.objects.create', side_effect=DatabaseError('disk full'))
    def test_persistence_failure_rolls_back_and_asks_for_redelivery(self, mock_create):
        response = self._post(charge_success_event())

        self.assertEqual(response.status_code, 500)
        self.assertEqual(mock_create.call_count, 1)
        self.assertNothingPersisted()

    def test_charge_success_without_usable_amount_is_skipped(self):
        for amount in [None, 'lots', 0, -500, True]:
            event = charge_success_event()
            event['data']['amount'] = amount
            response = self._post(event)
            self.assertEqual(response.status_code, 200)
            self.assertEqual(response.json()['action'], 'skipped')

        event = charge_success_event()
        del event['data']['amount']
        response = self._post(event)
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['action'], 'skipped')
        self.assertNothingPersisted()

    def test_non_object_data_is_skipped(self):
        for data in [[], 'PAY-20260315-0001', None]:
            response = self._post({'event': 'charge.success', 'data': data})
            self.assertEqual(response.status_code, 200)
            self.assertEqual(response.json()['action'], 'skipped')
        self.assertNothingPersisted()

    def test_concurrent_delivery_reports_duplicate(self):
        self._post(charge_success_event())
        existing = Booking.objects.get()

        # the second delivery misses the lookup and hits the unique reference instead
        with patch('payments.webhooks._existing_booking', side_effect=[None, existing]) as mock_lookup:
            response = self._post(charge_success_event())

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['action'], 'duplicate')
        self.assertEqual(response.json()['order_number'], existing.order_number)
        self.assertEqual(mock_lookup.call_count, 2)
        self.assertEqual(Booking.objects.count(), 1)
        self.assertEqual(BookingItem.objects.count(), 2)
        self.assertEqual(Payment.objects.count(), 1)

    @override_settings(PAYSTACK_SECRET_KEY='')
    def test_unconfigured_secret_is_a_server_error(self):
        response = self._post(charge_success_event(), signature='0' * 128)

        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.json()['error'], 'Webhook secret not configured')
        self.assertNothingPersisted()

    def test_get_not_allowed(self):
        response = self.client.get('/api/payment/webhook/')
        self.assertEqual(response.status_code, 405)


class PaymentCallbackTest(TestCase):
    def test_resolve_states(self):
        self.assertEqual(resolve_callback({'reference': 'R', 'trxref': 'R', 'status': 'success'}).status, SUCCESS)
        self.assertEqual(resolve_callback({'reference': 'R', 'trxref': 'R', 'status': 'cancelled'}).status, ERROR)
        self.assertEqual(resolve_callback({'reference': 'R', 'trxref': 'R'}).status, PENDING)
        self.assertEqual(resolve_callback({'status': 'success'}).status, ERROR)

    def test_redirect_delays(self):
        success = resolve_callback({'reference': 'R', 'trxref': 'R', 'status': 'success'})
        pending = resolve_callback({'reference': 'R', 'trxref': 'R'})
        self.assertEqual(success.redirect_after, settings.PAYMENT_CALLBACK_SUCCESS_REDIRECT_SECONDS)
        self.assertEqual(pending.redirect_after, settings.PAYMENT_CALLBACK_PENDING_REDIRECT_SECONDS)
        self.assertLess(pending.redirect_after, success.redirect_after)

    @patch('payments.paystack.requests.Session.request')
    def test_callback_endpoint_is_read_only(self, mock_request):
        response = self.client.get('/api/payment/callback/', {
            'reference': 'PAY-20260315-0001', 'trxref': 'PAY-20260315-0001', 'status': 'success',
        })

        self.assertEqual(response.status_code, 200)
        data = response.json()
        self.assertEqual(data['status'], 'success')
        self.assertEqual(data['redirect_to'], '/dashboard')
        mock_request.assert_not_called()
        self.assertEqual(Booking.objects.count(), 0)


class PaymentPassthroughTest(TestCase):
    def setUp(self):
        self.client = Client()

    @patch('payments.paystack.requests.Session.request')
    def test_initialize_passthrough(self, mock_request):
        mock_request.return_value = gateway_response({
            'status': True,
            'data': {'authorization_url': 'https://checkout.paystack.com/xyz', 'access_code': 'xyz',
                     'reference': 'PAY-20260315-0042'},
        })
        payload = {
            'amount': 550,
            'email': 'jane@example.com',
            'reference': 'PAY-20260315-0042',
            'metadata': {'user_id': 'profile-1'},
            'bookingData': json.loads(drafts.encode(make_draft())),
        }

        response = self.client.post('/api/payment/initialize/', data=json.dumps(payload),
                                    content_type='application/json')

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['data']['authorization_url'], 'https://checkout.paystack.com/xyz')
        sent = mock_request.call_args[1]['json']
        self.assertEqual(sent['amount'], 55000)
        self.assertEqual(drafts.decode_from_metadata(sent['metadata']), make_draft())

    @patch('payments.paystack.requests.Session.request')
    def test_initialize_passthrough_accepts_plain_booking_data(self, mock_request):
        mock_request.return_value = gateway_response({
            'status': True,
            'data': {'authorization_url': 'https://checkout.paystack.com/xyz', 'reference': 'PAY-20260315-0043'},
        })
        payload = {
            'amount': 550,
            'email': 'jane@example.com',
            'reference': 'PAY-20260315-0043',
            'metadata': {'user_id': 'profile-1', 'reference': 'PAY-20260315-0043'},
            'bookingData': {
                'user_id': 'profile-1',
                'pickup_date': '2026-03-15T09:00:00+03:00',
                'delivery_date': '2026-03-17T09:00:00+03:00',
                'time_slot': '09:00 - 11:00',
                'address': '12 Ngong Road, Nairobi',
                'special_instructions': 'Fold, no hangers',
                'payment_method': 'card',
                'items': [
                    {'name': 'Shirt', 'quantity': 2, 'price': 150},
                    {'name': 'Dress', 'quantity': 1, 'price': 250},
                ],
                'total': 550,
            },
        }

        response = self.client.post('/api/payment/initialize/', data=json.dumps(payload),
                                    content_type='application/json')

        self.assertEqual(response.status_code, 200)
        sent = mock_request.call_args[1]['json']
        wire = json.loads(sent['metadata'][drafts.METADATA_KEY])
        self.assertEqual((wire['version'], wire['kind']), (drafts.DRAFT_VERSION, drafts.DRAFT_KIND))
        self.assertEqual(drafts.decode_from_metadata(sent['metadata']), make_draft())

    def test_initialize_passthrough_requires_fields(self):
        response = self.client.post('/api/payment/initialize/', data=json.dumps({'amount': 100}),
                                    content_type='application/json')
        self.assertEqual(response.status_code, 400)
        self.assertIn('Missing required fields', response.json()['error'])

    def test_initialize_passthrough_rejects_bad_booking_data(self):
        payload = {
            'amount': 550,
            'email': 'jane@example.com',
            'reference': 'PAY-20260315-0042',
            'metadata': {'user_id': 'profile-1'},
            'bookingData': {'items': []},
        }
        response = self.client.post('/api/payment/initialize/', data=json.dumps(payload),
                                    content_type='application/json')
        self.assertEqual(response.status_code, 400)

    @patch('payments.paystack.requests.Session.request')
    def test_verify(self, mock_request):
        mock_request.return_value = gateway_response({
            'status': True,
            'data': {'reference': 'PAY-20260315-0042', 'status': 'success'},
        })
        response = self.client.post('/api/payment/verify/', data=json.dumps({'reference': 'PAY-20260315-0042'}),
                                    content_type='application/json')
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['data']['status'], 'success')

    def test_verify_requires_reference(self):
        response = self.client.post('/api/payment/verify/', data=json.dumps({}), content_type='application/json')
        self.assertEqual(response.status_code, 400)

    @patch('payments.paystack.requests.Session.request')
    def test_verify_gateway_failure(self, mock_request):
        mock_request.side_effect = requests.Timeout('timed out')
        response = self.client.post('/api/payment/verify/', data=json.dumps({'reference': 'R-1'}),
                                    content_type='application/json')
        self.assertEqual(response.status_code, 502)


class TransactionListingTest(TestCase):
    def setUp(self):
        self.client = Client()
        self.staff = get_user_model().objects.create_user('ops', 'ops@example.com', 'pw', is_staff=True)

    def test_requires_staff(self):
        response = self.client.get('/api/payment/transactions/')
        self.assertEqual(response.status_code, 302)

    @patch('payments.paystack.requests.Session.request')
    def test_lists_transactions(self, mock_request):
        mock_request.return_value = gateway_response({
            'status': True,
            'data': [{'reference': 'PAY-20260315-0001', 'status': 'success'}],
            'meta': {'page': 1, 'pageCount': 1},
        })
        self.client.force_login(self.staff)

        response = self.client.get('/api/payment/transactions/', {'page': 1, 'perPage': 20})

        self.assertEqual(response.status_code, 200)
        self.assertEqual(len(response.json()['transactions']), 1)
        self.assertEqual(mock_request.call_args[1]['params'], {'page': 1, 'perPage': 20})

    @patch('payments.paystack.requests.Session.request')
    def test_transaction_detail_not_found(self, mock_request):
        mock_request.return_value = gateway_response({'status': False, 'message': 'Transaction not found'},
                                                     status_code=404)
        self.client.force_login(self.staff)

        response = self.client.get('/api/payment/transactions/12345/')

        self.assertEqual(response.status_code, 404)


class ReconcilePaymentsCommandTest(TestCase):
    @patch('payments.paystack.requests.Session.request')
    def test_reconciles_missing_booking_once(self, mock_request):
        transaction = charge_success_event(reference='PAY-20260315-0077')['data']
        mock_request.return_value = gateway_response({'status': True, 'data': transaction})

        out = StringIO()
        call_command('reconcile_payments', '--reference', 'PAY-20260315-0077', stdout=out)
        call_command('reconcile_payments', '--reference', 'PAY-20260315-0077', stdout=out)

        self.assertEqual(Booking.objects.count(), 1)
        self.assertEqual(Payment.objects.get().transaction_reference, 'PAY-20260315-0077')
        self.assertIn('already booked', out.getvalue())

    @patch('payments.paystack.requests.Session.request')
    def test_walks_listing_pages(self, mock_request):
        mock_request.return_value = gateway_response({
            'status': True,
            'data': [
                charge_success_event(reference='PAY-20260315-0101')['data'],
                dict(charge_success_event(reference='PAY-20260315-0102')['data'], status='abandoned'),
            ],
            'meta': {'page': 1, 'pageCount': 1},
        })

        out = StringIO()
        call_command('reconcile_payments', stdout=out)

        self.assertEqual(mock_request.call_count, 1)
        self.assertEqual(list(Payment.objects.values_list('transaction_reference', flat=True)),
                         ['PAY-20260315-0101'])
        self.assertIn('created 1 bookings', out.getvalue())
