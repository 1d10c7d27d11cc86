from django.urls import path
from . import views

urlpatterns = [
    path('', views.admin_list_bookings, name='admin_list_bookings'),
    path('stats/', views.admin_stats, name='admin_stats'),
    path('<int:booking_id>/status/', views.admin_update_status, name='admin_update_status'),
]
