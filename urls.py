from django.urls import path, include
from users import urls as user_urls
from routines import urls as routine_urls
from notification_center import urls as notification_urls

urlpatterns = [
    path('api/', include(user_urls)),
    path('api/', include(routine_urls)),
    path('api/', include(notification_urls)),
]
