from django.contrib import admin, messages

from .models import Booking, BookingItem, BookingStatus, InvalidTransition


class BookingItemInline(admin.TabularInline):
    model = BookingItem
    extra = 0
    readonly_fields = ['created_at']


@admin.register(Booking)
class BookingAdmin(admin.ModelAdmin):
    list_display = ['order_number', 'user_id', 'pickup_date', 'delivery_date', 'total_display',
                    'payment_method', 'payment_status', 'booking_status', 'created_at']
    list_filter = ['booking_status', 'payment_status', 'payment_method', 'pickup_date', 'created_at']
    search_fields = ['order_number', 'payment_reference', 'user_id', 'address']
    readonly_fields = ['order_number', 'payment_reference', 'total', 'payment_status',
                       'booking_status', 'created_at', 'updated_at']
    inlines = [BookingItemInline]
    actions = ['mark_confirmed', 'mark_in_progress', 'mark_completed', 'mark_cancelled']

    fieldsets = (
        ('Order', {
            'fields': ('order_number', 'payment_reference', 'user_id')
        }),
        ('Schedule', {
            'fields': ('pickup_date', 'delivery_date', 'time_slot', 'address', 'special_instructions')
        }),
        ('Payment', {
            'fields': ('total', 'payment_method', 'payment_status')
        }),
        ('Status', {
            'fields': ('booking_status',)
        }),
        ('Timestamps', {
            'fields': ('created_at', 'updated_at')
        }),
    )

    def has_add_permission(self, request):
        return False

    def total_display(self, obj):
        return f"KES {obj.total:,.2f}"
    total_display.short_description = 'Total'

    def _transition(self, request, queryset, status):
        moved = 0
        for booking in queryset:
            try:
                booking.transition_to(status)
            except InvalidTransition as e:
                self.message_user(request, f"{booking.order_number}: {e}", level=messages.WARNING)
                continue
            booking.save(update_fields=['booking_status', 'updated_at'])
            moved += 1
        if moved:
            self.message_user(request, f"{moved} booking(s) marked {status.label.lower()}.")

    @admin.action(description='Mark selected bookings as confirmed')
    def mark_confirmed(self, request, queryset):
        self._transition(request, queryset, BookingStatus.CONFIRMED)

    @admin.action(description='Mark selected bookings as in progress')
    def mark_in_progress(self, request, queryset):
        self._transition(request, queryset, BookingStatus.IN_PROGRESS)

    @admin.action(description='Mark selected bookings as completed')
    def mark_completed(self, request, queryset):
        self._transition(request, queryset, BookingStatus.COMPLETED)

    @admin.action(description='Mark selected bookings as cancelled')
    def mark_cancelled(self, request, queryset):
        self._transition(request, queryset, BookingStatus.CANCELLED)
