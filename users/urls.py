from django.urls import path, include
from rest_framework.routers import DefaultRouter
from users.views import AppointmentViewSet, UserViewSet

router = DefaultRouter()
router.register(r'users', UserViewSet)
router.register(r'appointments', AppointmentViewSet, basename='appointment')

urlpatterns = [
    path('', include(router.urls)),
]
