from django.db import models

from users.models import User


def default_enrolled_routines():
    return ['morning', 'evening']


class RoutineCompletion(models.Model):
    class RoutineType(models.TextChoices):
        MORNING = 'morning', 'Morning'
        EVENING = 'evening', 'Evening'

    user = models.ForeignKey(User, on_delete=models.CASCADE, related_name='routine_completions')
    completion_date = models.DateField()
    routine_type = models.CharField(max_length=10, choices=RoutineType.choices)
    products_used = models.JSONField(default=list, blank=True)
    completed_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(
                fields=['user', 'completion_date', 'routine_type'],
                name='unique_routine_completion_per_day'
            ),
        ]
        indexes = [
            models.Index(fields=['user', 'completion_date']),
        ]


class GamificationState(models.Model):
    user = models.OneToOneField(User, on_delete=models.CASCADE, related_name='gamification')
    points = models.PositiveIntegerField(default=0)
    current_streak = models.PositiveIntegerField(default=0)
    longest_streak = models.PositiveIntegerField(default=0)
    level = models.CharField(max_length=20, default='Bronze')
    total_routines_completed = models.PositiveIntegerField(default=0)
    last_completion_date = models.DateField(null=True, blank=True)
    # a day counts towards the streak once every enrolled routine is completed
    enrolled_routine_types = models.JSONField(default=default_enrolled_routines)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)


class UserBadge(models.Model):
    user = models.ForeignKey(User, on_delete=models.CASCADE, related_name='badges')
    badge_name = models.CharField(max_length=100)
    badge_description = models.CharField(max_length=255, blank=True, default='')
    badge_icon = models.CharField(max_length=100, blank=True, default='')
    earned_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=['user', 'badge_name'], name='unique_user_badge'),
        ]
