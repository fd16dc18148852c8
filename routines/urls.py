from django.urls import path
from routines.views import RoutineCompletionView, RoutineStatsView

urlpatterns = [
    path('routines/completions/', RoutineCompletionView.as_view(), name='routine-completions'),
    path('routines/stats/<int:user_id>/', RoutineStatsView.as_view(), name='routine-stats'),
]
