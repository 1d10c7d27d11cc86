from decimal import Decimal

from django.db import models


class BookingStatus(models.TextChoices):
    PENDING = 'pending', 'Pending'
    CONFIRMED = 'confirmed', 'Confirmed'
    IN_PROGRESS = 'in_progress', 'In Progress'
    COMPLETED = 'completed', 'Completed'
    CANCELLED = 'cancelled', 'Cancelled'


class PaymentStatus(models.TextChoices):
    PENDING = 'pending', 'Pending'
    COMPLETED = 'completed', 'Completed'
    FAILED = 'failed', 'Failed'
    REFUNDED = 'refunded', 'Refunded'


class PaymentMethod(models.TextChoices):
    CARD = 'card', 'Card'
    MOBILE_MONEY = 'mobile-money', 'Mobile Money'
    CASH = 'cash', 'Cash'


GATEWAY_METHODS = (PaymentMethod.CARD, PaymentMethod.MOBILE_MONEY)

BOOKING_TRANSITIONS = {
    BookingStatus.PENDING: {BookingStatus.CONFIRMED, BookingStatus.CANCELLED},
    BookingStatus.CONFIRMED: {BookingStatus.IN_PROGRESS, BookingStatus.CANCELLED},
    BookingStatus.IN_PROGRESS: {BookingStatus.COMPLETED, BookingStatus.CANCELLED},
    BookingStatus.COMPLETED: set(),
    BookingStatus.CANCELLED: set(),
}

PAYMENT_TRANSITIONS = {
    PaymentStatus.PENDING: {PaymentStatus.COMPLETED, PaymentStatus.FAILED},
    PaymentStatus.FAILED: {PaymentStatus.PENDING},
    PaymentStatus.COMPLETED: {PaymentStatus.REFUNDED},
    PaymentStatus.REFUNDED: set(),
}


class InvalidTransition(ValueError):
    def __init__(self, field, current, target):
        self.field = field
        self.current = current
        self.target = target
        super().__init__(f"Cannot move {field} from '{current}' to '{target}'")


def can_transition(table, current, target):
    return target in table.get(current, set())


class Booking(models.Model):
    user_id = models.CharField(max_length=64, db_index=True)
    order_number = models.CharField(max_length=32, unique=True)
    payment_reference = models.CharField(max_length=64, unique=True, null=True, blank=True)
    pickup_date = models.DateTimeField()
    delivery_date = models.DateTimeField()
    time_slot = models.CharField(max_length=64, blank=True)
    address = models.TextField()
    special_instructions = models.TextField(blank=True)
    total = models.DecimalField(max_digits=12, decimal_places=2)
    payment_method = models.CharField(max_length=20, choices=PaymentMethod.choices)
    payment_status = models.CharField(
        max_length=20, choices=PaymentStatus.choices, default=PaymentStatus.PENDING, db_index=True
    )
    booking_status = models.CharField(
        max_length=20, choices=BookingStatus.choices, default=BookingStatus.PENDING, db_index=True
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'bookings'
        ordering = ['-created_at']

    def __str__(self):
        return f"{self.order_number} - {self.booking_status}"

    def allowed_booking_statuses(self):
        return sorted(BOOKING_TRANSITIONS[BookingStatus(self.booking_status)])

    def allowed_payment_statuses(self):
        return sorted(PAYMENT_TRANSITIONS[PaymentStatus(self.payment_status)])

    def transition_to(self, status):
        status = BookingStatus(status)
        if not can_transition(BOOKING_TRANSITIONS, BookingStatus(self.booking_status), status):
            raise InvalidTransition('booking_status', self.booking_status, status)
        self.booking_status = status

    def transition_payment_to(self, status):
        status = PaymentStatus(status)
        if not can_transition(PAYMENT_TRANSITIONS, PaymentStatus(self.payment_status), status):
            raise InvalidTransition('payment_status', self.payment_status, status)
        self.payment_status = status

    def to_dict(self, include_items=True):
        data = {
            'id': self.id,
            'user_id': self.user_id,
            'order_number': self.order_number,
            'payment_reference': self.payment_reference,
            'pickup_date': self.pickup_date.isoformat(),
            'delivery_date': self.delivery_date.isoformat(),
            'time_slot': self.time_slot,
            'address': self.address,
            'special_instructions': self.special_instructions,
            'total': str(self.total),
            'payment_method': self.payment_method,
            'payment_status': self.payment_status,
            'booking_status': self.booking_status,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }
        if include_items:
            data['items'] = [item.to_dict() for item in self.items.all()]
        return data


class BookingItem(models.Model):
    booking = models.ForeignKey(Booking, on_delete=models.CASCADE, related_name='items')
    name = models.CharField(max_length=255)
    quantity = models.PositiveIntegerField()
    price = models.DecimalField(max_digits=12, decimal_places=2)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'booking_items'
        ordering = ['id']

    def __str__(self):
        return f"{self.quantity} x {self.name}"

    @property
    def subtotal(self):
        return self.price * self.quantity if self.price is not None else Decimal('0')

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'quantity': self.quantity,
            'price': str(self.price),
            'subtotal': str(self.subtotal),
        }
