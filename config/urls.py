from django.contrib import admin
from django.urls import include, path

urlpatterns = [
    path('admin/', admin.site.urls),
    path('api/bookings/', include('bookings.urls')),
    path('api/admin/bookings/', include('bookings.admin_urls')),
    path('api/payment/', include('payments.urls')),
]
