# fixifly_project/urls.py

from django.contrib import admin
from django.urls import path, include
from rest_framework.routers import DefaultRouter
from rest_framework_simplejwt.views import (
    TokenObtainPairView,
    TokenRefreshView,
)
from fixifly import views as fixifly_views
from fixifly.views import list_notifications, mark_as_read

router = DefaultRouter()
router.register(r'bookings', fixifly_views.BookingViewSet, basename='bookings')
router.register(r'support_tickets', fixifly_views.SupportTicketViewSet, basename='support_tickets')
router.register(r'wallet', fixifly_views.WalletViewSet, basename='wallet')
router.register(r'withdrawals', fixifly_views.WithdrawalRequestViewSet, basename='withdrawals')
router.register(r'admin/wallets', fixifly_views.AdminWalletViewSet, basename='admin_wallets')

urlpatterns = [
    path('admin/', admin.site.urls),

    path('api/', include(router.urls)),

    # Notification endpoints
    path('api/notifications/read/<int:pk>/', mark_as_read, name='mark_notification_read'),
    path('api/notifications/', list_notifications, name='list_notifications'),

    # JWT auth
    path('api/token/', TokenObtainPairView.as_view(), name='token_obtain_pair'),
    path('api/token/refresh/', TokenRefreshView.as_view(), name='token_refresh'),
]
