from datetime import date

from django.shortcuts import get_object_or_404
from django.utils import timezone as django_timezone
from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import APIView
import logging

from services.decision_engine.reminder_decision_engine import local_date_for
from services.gamification.streak_service import StreakService
from users.models import NotificationPreference, User
from .models import RoutineCompletion
from .serializers import RoutineCompletionRequestSerializer, RoutineCompletionSerializer

logger = logging.getLogger(__name__)


def user_local_date(user_id: int) -> date:
    preference = NotificationPreference.objects.filter(user_id=user_id).first()
    if preference is None:
        return django_timezone.localdate()
    return local_date_for(preference.timezone, django_timezone.now())


class RoutineCompletionView(APIView):
    streak_service_class = StreakService

    def post(self, request):
        serializer = RoutineCompletionRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        user_id = data['user'].id

        result = self.streak_service_class().record_completion(
            user_id,
            data['routine_type'],
            data.get('completion_date') or user_local_date(user_id),
            data.get('products_used'),
        )

        if not result.created:
            return Response(
                {"error": "Already completed this routine today", "current_streak": result.current_streak},
                status=status.HTTP_409_CONFLICT
            )

        return Response({
            'points_earned': result.points_earned,
            'streak_bonus': result.streak_bonus,
            'current_streak': result.current_streak,
            'day_complete': result.day_complete,
            'level_up': result.level_up,
            'new_badges': result.new_badges,
        }, status=status.HTTP_201_CREATED)

    def delete(self, request):
        serializer = RoutineCompletionRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        user_id = data['user'].id
        today = user_local_date(user_id)

        state = self.streak_service_class().uncomplete_routine(
            user_id,
            data['routine_type'],
            data.get('completion_date') or today,
            today=today,
        )
        if state is None:
            return Response({"error": "Routine completion not found"}, status=status.HTTP_404_NOT_FOUND)

        return Response({
            'points': state.points,
            'level': state.level,
            'current_streak': state.current_streak,
            'total_routines_completed': state.total_routines_completed,
        })


class RoutineStatsView(APIView):
    recent_completions_limit = 10

    def get(self, request, user_id):
        user = get_object_or_404(User, pk=user_id)
        stats = StreakService().stats(user.id, user_local_date(user.id))
        recent = (RoutineCompletion.objects
                  .filter(user=user)
                  .order_by('-completion_date', '-completed_at')[:self.recent_completions_limit])
        stats['recent_completions'] = RoutineCompletionSerializer(recent, many=True).data
        return Response(stats)
