from rest_framework import serializers

from users.models import User
from .models import RoutineCompletion


class RoutineCompletionRequestSerializer(serializers.Serializer):
    user = serializers.PrimaryKeyRelatedField(queryset=User.objects.filter(is_active=True))
    routine_type = serializers.ChoiceField(choices=RoutineCompletion.RoutineType.choices)
    # defaults to the user's local date
    completion_date = serializers.DateField(required=False)
    products_used = serializers.ListField(child=serializers.CharField(), required=False, default=list)


class RoutineCompletionSerializer(serializers.ModelSerializer):
    class Meta:
        model = RoutineCompletion
        fields = ['id', 'user', 'routine_type', 'completion_date', 'products_used', 'completed_at']
