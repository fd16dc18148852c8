from django.db import models

from users.models import User


class DeliveryRecord(models.Model):
    """One row per (user, category, channel, period_key).

    The unique constraint is the idempotency barrier shared by overlapping
    ticks: whoever inserts (or conditionally re-claims) the row owns the send.
    """

    class Outcome(models.TextChoices):
        PENDING = 'pending', 'Pending'
        SENT = 'sent', 'Sent'
        FAILED = 'failed', 'Failed'
        SKIPPED = 'skipped', 'Skipped'

    user = models.ForeignKey(User, on_delete=models.CASCADE, related_name='delivery_records')
    category = models.CharField(max_length=40)
    channel = models.CharField(max_length=10)
    period_key = models.CharField(max_length=100)
    outcome = models.CharField(max_length=10, choices=Outcome.choices, default=Outcome.PENDING)
    claimed_at = models.DateTimeField(null=True, blank=True)
    last_sent_at = models.DateTimeField(null=True, blank=True)
    attempt_count = models.PositiveIntegerField(default=0)
    error = models.TextField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(
                fields=['user', 'category', 'channel', 'period_key'],
                name='unique_delivery_per_period'
            ),
        ]
        indexes = [
            models.Index(fields=['user', 'period_key']),
        ]


class ClientNotification(models.Model):
    class Type(models.TextChoices):
        INFO = 'info', 'Info'
        SUCCESS = 'success', 'Success'
        WARNING = 'warning', 'Warning'
        ERROR = 'error', 'Error'
        REMINDER = 'reminder', 'Reminder'
        MESSAGE = 'message', 'Message'

    user = models.ForeignKey(User, on_delete=models.CASCADE, related_name='client_notifications')
    title = models.CharField(max_length=255)
    message = models.TextField()
    type = models.CharField(max_length=10, choices=Type.choices, default=Type.INFO)
    read = models.BooleanField(default=False)
    action_url = models.CharField(max_length=500, null=True, blank=True)
    metadata = models.JSONField(default=dict, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-created_at', '-id']
        indexes = [
            models.Index(fields=['user', 'read']),
        ]
