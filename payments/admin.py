from django.contrib import admin

from .models import Payment


@admin.register(Payment)
class PaymentAdmin(admin.ModelAdmin):
    list_display = ['transaction_reference', 'booking', 'user_id', 'amount_display',
                    'payment_method', 'channel', 'payment_status', 'created_at']
    list_filter = ['payment_status', 'payment_method', 'channel', 'currency', 'created_at']
    search_fields = ['transaction_reference', 'booking__order_number', 'user_id']
    readonly_fields = ['transaction_reference', 'amount', 'currency', 'payment_status', 'channel',
                       'gateway_response', 'created_at', 'updated_at']
    raw_id_fields = ['booking']

    fieldsets = (
        ('Booking', {
            'fields': ('booking', 'user_id')
        }),
        ('Payment Details', {
            'fields': ('amount', 'currency', 'payment_method', 'payment_status')
        }),
        ('Gateway', {
            'fields': ('transaction_reference', 'channel', 'gateway_response')
        }),
        ('Timestamps', {
            'fields': ('created_at', 'updated_at')
        }),
    )

    def has_add_permission(self, request):
        return False

    def amount_display(self, obj):
        return f"{obj.currency} {obj.amount:,.2f}"
    amount_display.short_description = 'Amount'
