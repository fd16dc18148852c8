import logging
from datetime import datetime
from typing import Any, Dict, Optional

from asgiref.sync import async_to_sync
from django.conf import settings
from django.db import transaction
from django.utils import timezone as django_timezone
from rest_framework import serializers

from services.capability.capability_probe import ChannelCapabilityProbe, validate_phone_number
from services.decision_engine.NotificationCategory import NotificationCategory
from services.dispatch.payloads import build_opt_in_confirmation
from services.dispatch.transports import TwilioSmsClient, build_sms_client
from services.exceptions import CapabilityError, NotFoundError, TransportError, ValidationError
from users.models import NotificationPreference, PushSubscription
from users.serializers import NotificationPreferenceSerializer

logger = logging.getLogger(__name__)

# Preference fields holding the "last sent" marker for a category
LAST_SENT_FIELDS = {
    NotificationCategory.AM_REMINDER: 'last_am_reminder_sent',
    NotificationCategory.PM_REMINDER: 'last_pm_reminder_sent',
    NotificationCategory.STREAK_WARNING: 'last_streak_warning_sent',
}


def _first_error(detail) -> tuple:
    """Flatten a DRF error detail into (field, message)"""
    if isinstance(detail, dict):
        for field, errors in detail.items():
            _, message = _first_error(errors)
            return (None if field == 'non_field_errors' else field), message
    if isinstance(detail, list) and detail:
        return _first_error(detail[0])
    return None, str(detail)


class PreferenceStore:
    """Per-user notification preferences.

    Always reads from the database. Nothing is cached between ticks so a
    toggle flipped in settings is honoured on the very next tick.
    """

    def __init__(self, capability_probe: Optional[ChannelCapabilityProbe] = None,
                 sms_client: Optional[TwilioSmsClient] = None):
        self.capability_probe = capability_probe or ChannelCapabilityProbe()
        self.sms_client = sms_client or build_sms_client()

    def get(self, user_id: int) -> NotificationPreference:
        try:
            return NotificationPreference.objects.get(user_id=user_id)
        except NotificationPreference.DoesNotExist:
            raise NotFoundError(f"No notification preferences for user {user_id}")

    def create_default(self, user_id: int, timezone: Optional[str] = None) -> NotificationPreference:
        defaults = {'timezone': timezone} if timezone else {}
        preference, created = NotificationPreference.objects.get_or_create(user_id=user_id, defaults=defaults)
        if created:
            logger.info(f"Created default notification preferences for user {user_id}")
        return preference

    def update(self, user_id: int, partial_fields: Dict[str, Any]) -> NotificationPreference:
        preference = self.get(user_id)

        unknown = set(partial_fields) - set(NotificationPreferenceSerializer.Meta.fields)
        read_only = set(partial_fields) & set(NotificationPreferenceSerializer.Meta.read_only_fields)
        if unknown or read_only:
            field = sorted(unknown | read_only)[0]
            raise ValidationError(f"Field '{field}' cannot be updated", field=field)

        serializer = NotificationPreferenceSerializer(preference, data=partial_fields, partial=True)
        try:
            serializer.is_valid(raise_exception=True)
        except serializers.ValidationError as e:
            field, message = _first_error(e.detail)
            logger.warning(f"Rejected preference update for user {user_id}: {field}: {message}")
            raise ValidationError(message, field=field)

        if serializer.validated_data.get('push_enabled') and not preference.push_enabled:
            capability = self.capability_probe.probe_push(user_id)
            if not capability.usable:
                raise ValidationError(
                    "Push notifications require a granted browser subscription",
                    field='push_enabled'
                )

        preference = serializer.save()
        logger.info(f"Updated notification preferences for user {user_id}: {sorted(partial_fields)}")
        return preference

    def opt_in_sms(self, user_id: int, phone: str) -> NotificationPreference:
        result = validate_phone_number(phone)
        if not result.valid:
            raise ValidationError(result.error, field='phone_number')

        preference = self.get(user_id)
        preference.phone_number = result.formatted
        preference.sms_enabled = True
        preference.sms_opted_in_at = django_timezone.now()
        preference.save(update_fields=['phone_number', 'sms_enabled', 'sms_opted_in_at', 'updated_at'])
        logger.info(f"User {user_id} opted in to SMS")
        self._send_opt_in_confirmation(user_id, preference.phone_number)
        return preference

    def _send_opt_in_confirmation(self, user_id: int, phone_number: str) -> None:
        # best-effort, a failed confirmation does not undo the opt-in
        try:
            async_to_sync(self.sms_client.send)(phone_number, build_opt_in_confirmation(settings.APP_NAME))
            logger.info(f"Sent SMS opt-in confirmation to user {user_id}")
        except TransportError as e:
            logger.warning(f"Failed to send SMS opt-in confirmation to user {user_id}: {str(e)}")

    def opt_out_sms(self, user_id: int) -> NotificationPreference:
        preference = self.get(user_id)
        preference.sms_enabled = False
        preference.sms_opted_out_at = django_timezone.now()
        preference.save(update_fields=['sms_enabled', 'sms_opted_out_at', 'updated_at'])
        logger.info(f"User {user_id} opted out of SMS")
        return preference

    def register_push_subscription(self, user_id: int, subscription: Dict[str, Any]) -> PushSubscription:
        """Store what the browser reported and switch push on if it is usable.

        A denied or dismissed permission is still persisted so the probe sees
        it, but push stays off and CapabilityError is raised.
        """
        preference = self.get(user_id)

        push_subscription, _ = PushSubscription.objects.update_or_create(
            user_id=user_id,
            endpoint=subscription['endpoint'],
            defaults={
                'p256dh': subscription.get('p256dh', ''),
                'auth': subscription.get('auth', ''),
                'user_agent': subscription.get('user_agent', ''),
                'permission': subscription.get('permission', PushSubscription.Permission.GRANTED),
                'is_active': True,
            }
        )

        capability = self.capability_probe.probe_push(user_id)
        if not capability.usable:
            if preference.push_enabled:
                preference.push_enabled = False
                preference.save(update_fields=['push_enabled', 'updated_at'])
            raise CapabilityError(
                f"Push subscription is not usable (permission={capability.permission})"
            )

        preference.push_enabled = True
        preference.save(update_fields=['push_enabled', 'updated_at'])
        logger.info(f"Registered push subscription for user {user_id}")
        return push_subscription

    @transaction.atomic
    def disable_push(self, user_id: int, endpoint: Optional[str] = None) -> NotificationPreference:
        preference = self.get(user_id)

        subscriptions = PushSubscription.objects.filter(user_id=user_id)
        if endpoint:
            subscriptions = subscriptions.filter(endpoint=endpoint)
        subscriptions.update(is_active=False)

        if not self.capability_probe.probe_push(user_id).usable:
            preference.push_enabled = False
            preference.save(update_fields=['push_enabled', 'updated_at'])

        logger.info(f"Disabled push for user {user_id}")
        return preference

    def mark_last_sent(self, user_id: int, category: NotificationCategory, sent_at: datetime) -> None:
        field = LAST_SENT_FIELDS.get(category)
        if field is None:
            return
        NotificationPreference.objects.filter(user_id=user_id).update(**{field: sent_at})
