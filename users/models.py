# models.py
import datetime

from django.db import models


class User(models.Model):
    class Role(models.TextChoices):
        CLIENT = 'client', 'Client'
        PROFESSIONAL = 'professional', 'Professional'

    name = models.CharField(max_length=255)
    email = models.EmailField(unique=True)
    phone = models.CharField(max_length=20, null=True, blank=True)
    role = models.CharField(
        max_length=20,
        choices=Role.choices,
        default=Role.CLIENT
    )
    # accounts are deactivated, never deleted, so preferences and delivery history survive
    is_active = models.BooleanField(default=True)
    deactivated_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        indexes = [
            models.Index(fields=['email']),
        ]


class NotificationPreference(models.Model):
    user = models.OneToOneField(User, on_delete=models.CASCADE, related_name='notification_preferences')
    push_enabled = models.BooleanField(default=False)
    sms_enabled = models.BooleanField(default=False)
    email_enabled = models.BooleanField(default=True)
    # E.164, only set once the SMS opt-in has been validated
    phone_number = models.CharField(max_length=16, null=True, blank=True)
    timezone = models.CharField(max_length=50, default='America/New_York')
    am_reminder_time = models.TimeField(default=datetime.time(7, 0))
    pm_reminder_time = models.TimeField(default=datetime.time(19, 0))
    am_reminder_enabled = models.BooleanField(default=True)
    pm_reminder_enabled = models.BooleanField(default=True)
    streak_warning_enabled = models.BooleanField(default=True)
    streak_warning_hours = models.PositiveSmallIntegerField(default=2)
    feedback_notifications_enabled = models.BooleanField(default=True)
    product_recommendations_enabled = models.BooleanField(default=True)
    challenge_notifications_enabled = models.BooleanField(default=True)
    appointment_reminders_enabled = models.BooleanField(default=True)
    sms_opted_in_at = models.DateTimeField(null=True, blank=True)
    sms_opted_out_at = models.DateTimeField(null=True, blank=True)
    last_am_reminder_sent = models.DateTimeField(null=True, blank=True)
    last_pm_reminder_sent = models.DateTimeField(null=True, blank=True)
    last_streak_warning_sent = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        indexes = [
            models.Index(fields=['timezone']),
        ]


class PushSubscription(models.Model):
    class Permission(models.TextChoices):
        GRANTED = 'granted', 'Granted'
        DENIED = 'denied', 'Denied'
        DEFAULT = 'default', 'Default'

    user = models.ForeignKey(User, on_delete=models.CASCADE, related_name='push_subscriptions')
    endpoint = models.URLField(max_length=500)
    p256dh = models.CharField(max_length=255, blank=True, default='')
    auth = models.CharField(max_length=255, blank=True, default='')
    user_agent = models.CharField(max_length=500, blank=True, default='')
    permission = models.CharField(
        max_length=10,
        choices=Permission.choices,
        default=Permission.DEFAULT
    )
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=['user', 'endpoint'], name='unique_push_subscription_endpoint'),
        ]


class Appointment(models.Model):
    class Status(models.TextChoices):
        SCHEDULED = 'scheduled', 'Scheduled'
        CANCELLED = 'cancelled', 'Cancelled'
        COMPLETED = 'completed', 'Completed'

    client = models.ForeignKey(User, on_delete=models.CASCADE, related_name='appointments')
    professional_name = models.CharField(max_length=255, blank=True, default='')
    starts_at = models.DateTimeField()
    status = models.CharField(
        max_length=20,
        choices=Status.choices,
        default=Status.SCHEDULED
    )
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        indexes = [
            models.Index(fields=['client', 'starts_at']),
        ]
