from django.urls import path
from . import views

urlpatterns = [
    path('initialize/', views.initialize_payment, name='initialize_payment'),
    path('verify/', views.verify_payment, name='verify_payment'),
    path('webhook/', views.paystack_webhook, name='paystack_webhook'),
    path('callback/', views.payment_callback, name='payment_callback'),
    path('transactions/', views.list_transactions, name='list_transactions'),
    path('transactions/<str:transaction_id>/', views.get_transaction, name='get_transaction'),
]
