"""Booking draft codec.

A draft is a booking that has not been paid for yet. It travels to the gateway
inside the transaction metadata and comes back with the ``charge.success``
webhook. The gateway metadata is itself JSON, so the draft is stored as a JSON
*string* under ``METADATA_KEY`` (JSON nested in JSON).
"""
import json
from dataclasses import asdict, dataclass, field
from datetime import datetime, time
from decimal import Decimal
from typing import List

from django.utils import timezone
from django.utils.dateparse import parse_date, parse_datetime
from rest_framework import serializers

from bookings.models import PaymentMethod
from .exceptions import DraftDecodeError

METADATA_KEY = 'booking_draft'
DRAFT_KIND = 'booking_draft'
DRAFT_VERSION = 1


@dataclass
class DraftItem:
    name: str
    quantity: int
    price: Decimal

    @property
    def subtotal(self) -> Decimal:
        return self.price * self.quantity


@dataclass
class BookingDraft:
    user_id: str
    pickup_date: str
    delivery_date: str
    address: str
    payment_method: str
    items: List[DraftItem] = field(default_factory=list)
    total: Decimal = Decimal('0')
    time_slot: str = ''
    special_instructions: str = ''
    email: str = ''


class DraftItemSerializer(serializers.Serializer):
    name = serializers.CharField(max_length=255, trim_whitespace=False)
    quantity = serializers.IntegerField(min_value=0)
    price = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=Decimal('0'))


class BookingDataSerializer(serializers.Serializer):
    """Booking details as a client hands them over, without the wire tags."""
    user_id = serializers.CharField(max_length=64, trim_whitespace=False)
    pickup_date = serializers.CharField()
    delivery_date = serializers.CharField()
    address = serializers.CharField(trim_whitespace=False)
    payment_method = serializers.ChoiceField(choices=PaymentMethod.choices, default=PaymentMethod.CARD)
    items = DraftItemSerializer(many=True)
    total = serializers.DecimalField(max_digits=12, decimal_places=2, required=False)
    time_slot = serializers.CharField(allow_blank=True, required=False, default='', trim_whitespace=False)
    special_instructions = serializers.CharField(allow_blank=True, required=False, default='',
                                                 trim_whitespace=False)
    email = serializers.CharField(allow_blank=True, required=False, default='', trim_whitespace=False)

    def _validate_schedule(self, value):
        try:
            parse_schedule(value)
        except DraftDecodeError as e:
            raise serializers.ValidationError(str(e))
        return value

    def validate_pickup_date(self, value):
        return self._validate_schedule(value)

    def validate_delivery_date(self, value):
        return self._validate_schedule(value)


class BookingDraftSerializer(BookingDataSerializer):
    version = serializers.IntegerField()
    kind = serializers.CharField()
    total = serializers.DecimalField(max_digits=12, decimal_places=2)

    def validate_kind(self, value):
        if value != DRAFT_KIND:
            raise serializers.ValidationError(f"unexpected kind '{value}'")
        return value

    def validate_version(self, value):
        if value != DRAFT_VERSION:
            raise serializers.ValidationError(f"unsupported version {value}")
        return value


def parse_schedule(value):
    """Turn an ISO date or datetime string into an aware datetime."""
    parsed = None
    if isinstance(value, str):
        try:
            parsed = parse_datetime(value)
            if parsed is None:
                day = parse_date(value)
                if day is not None:
                    parsed = datetime.combine(day, time.min)
        except ValueError:
            parsed = None
    if parsed is None:
        raise DraftDecodeError(f"Invalid date '{value}'")
    if timezone.is_naive(parsed):
        parsed = timezone.make_aware(parsed)
    return parsed


def _decimal_str(value):
    return format(Decimal(value).quantize(Decimal('0.01')), 'f')


def encode(draft: BookingDraft) -> str:
    payload = asdict(draft)
    payload['total'] = _decimal_str(draft.total)
    payload['items'] = [
        {'name': item.name, 'quantity': item.quantity, 'price': _decimal_str(item.price)}
        for item in draft.items
    ]
    return json.dumps({'version': DRAFT_VERSION, 'kind': DRAFT_KIND, **payload}, sort_keys=True)


def _to_draft(data):
    items = [
        DraftItem(name=item['name'], quantity=item['quantity'], price=item['price'])
        for item in data['items']
    ]
    total = data.get('total')
    if total is None:
        total = sum((item.subtotal for item in items), Decimal('0'))
    return BookingDraft(
        user_id=data['user_id'],
        pickup_date=data['pickup_date'],
        delivery_date=data['delivery_date'],
        address=data['address'],
        payment_method=data['payment_method'],
        items=items,
        total=total,
        time_slot=data['time_slot'],
        special_instructions=data['special_instructions'],
        email=data['email'],
    )


def from_booking_data(value) -> BookingDraft:
    """Build a draft from untagged client booking data (a dict or its JSON text)."""
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except json.JSONDecodeError as e:
            raise DraftDecodeError(f'Booking data is not valid JSON: {e}') from e
    if not isinstance(value, dict):
        raise DraftDecodeError('Booking data must be an object')

    serializer = BookingDataSerializer(data=value)
    if not serializer.is_valid():
        raise DraftDecodeError(f'Booking data failed validation: {serializer.errors}')
    return _to_draft(serializer.validated_data)


def decode(value) -> BookingDraft:
    if not isinstance(value, str) or not value:
        raise DraftDecodeError('Booking draft missing from metadata')
    try:
        payload = json.loads(value)
    except json.JSONDecodeError as e:
        raise DraftDecodeError(f'Booking draft is not valid JSON: {e}') from e
    if not isinstance(payload, dict):
        raise DraftDecodeError('Booking draft must be a JSON object')

    serializer = BookingDraftSerializer(data=payload)
    if not serializer.is_valid():
        raise DraftDecodeError(f'Booking draft failed validation: {serializer.errors}')

    return _to_draft(serializer.validated_data)


def decode_from_metadata(metadata) -> BookingDraft:
    # the gateway echoes metadata back as a string when it was sent as one
    if isinstance(metadata, str):
        try:
            metadata = json.loads(metadata)
        except json.JSONDecodeError as e:
            raise DraftDecodeError(f'Transaction metadata is not valid JSON: {e}') from e
    if not isinstance(metadata, dict):
        raise DraftDecodeError('Transaction metadata is not an object')
    return decode(metadata.get(METADATA_KEY))
