from django.urls import path
from . import views

urlpatterns = [
    path('', views.list_bookings, name='list_bookings'),
    path('create/', views.create_booking, name='create_booking'),
    path('stats/', views.user_stats, name='user_stats'),
    path('<int:booking_id>/', views.get_booking, name='get_booking'),
]
