from django.urls import path, include
from rest_framework.routers import DefaultRouter
from notification_center.views import ClientNotificationViewSet

router = DefaultRouter()
router.register(r'notifications', ClientNotificationViewSet, basename='notification')

urlpatterns = [
    path('', include(router.urls)),
]
