from decimal import Decimal

from rest_framework import serializers

from .models import BookingStatus, PaymentMethod, PaymentStatus


class BookingItemInputSerializer(serializers.Serializer):
    name = serializers.CharField(max_length=255)
    quantity = serializers.IntegerField(min_value=0)
    price = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=Decimal('0'))


class BookingRequestSerializer(serializers.Serializer):
    user_id = serializers.CharField(max_length=64)
    user_email = serializers.EmailField()
    pickup_date = serializers.DateTimeField()
    delivery_date = serializers.DateTimeField()
    time_slot = serializers.CharField(max_length=64, required=False, allow_blank=True, default='')
    address = serializers.CharField()
    special_instructions = serializers.CharField(required=False, allow_blank=True, default='')
    payment_method = serializers.ChoiceField(choices=PaymentMethod.choices, default=PaymentMethod.CARD)
    items = BookingItemInputSerializer(many=True, allow_empty=False)

    def validate_items(self, items):
        selected = [item for item in items if item['quantity'] > 0]
        if not selected:
            raise serializers.ValidationError('Select at least one item')
        if sum(item['quantity'] * item['price'] for item in selected) <= 0:
            raise serializers.ValidationError('Booking total must be greater than zero')
        return selected

    def validate(self, attrs):
        if attrs['delivery_date'] < attrs['pickup_date']:
            raise serializers.ValidationError({'delivery_date': 'Delivery cannot be before pickup'})
        return attrs


class StatusUpdateSerializer(serializers.Serializer):
    booking_status = serializers.ChoiceField(choices=BookingStatus.choices, required=False)
    payment_status = serializers.ChoiceField(choices=PaymentStatus.choices, required=False)

    def validate(self, attrs):
        if not attrs:
            raise serializers.ValidationError('Provide booking_status or payment_status')
        return attrs
