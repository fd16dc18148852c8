# serializers.py
import pytz
from rest_framework import serializers

from services.capability.capability_probe import validate_phone_number
from services.decision_engine.NotificationCategory import Channel
from .models import User, NotificationPreference, PushSubscription, Appointment

STREAK_WARNING_HOURS_RANGE = (1, 4)


class NotificationPreferenceSerializer(serializers.ModelSerializer):
    class Meta:
        model = NotificationPreference
        fields = [
            'push_enabled', 'sms_enabled', 'email_enabled', 'phone_number', 'timezone',
            'am_reminder_time', 'pm_reminder_time',
            'am_reminder_enabled', 'pm_reminder_enabled', 'streak_warning_enabled',
            'streak_warning_hours', 'feedback_notifications_enabled',
            'product_recommendations_enabled', 'challenge_notifications_enabled',
            'appointment_reminders_enabled',
            'sms_opted_in_at', 'sms_opted_out_at',
            'last_am_reminder_sent', 'last_pm_reminder_sent', 'last_streak_warning_sent',
            'updated_at',
        ]
        read_only_fields = [
            'sms_opted_in_at', 'sms_opted_out_at',
            'last_am_reminder_sent', 'last_pm_reminder_sent', 'last_streak_warning_sent',
            'updated_at',
        ]

    def validate_timezone(self, value):
        try:
            pytz.timezone(value)
        except pytz.exceptions.UnknownTimeZoneError:
            raise serializers.ValidationError("Invalid timezone provided")
        return value

    def validate_streak_warning_hours(self, value):
        low, high = STREAK_WARNING_HOURS_RANGE
        if value < low or value > high:
            raise serializers.ValidationError(f"Streak warning hours must be between {low} and {high}")
        return value

    def validate_phone_number(self, value):
        if value in (None, ''):
            return None
        result = validate_phone_number(value)
        if not result.valid:
            raise serializers.ValidationError(result.error)
        return result.formatted

    def validate(self, data):
        # SMS can only be switched on for a validated phone number
        sms_enabled = data.get('sms_enabled', getattr(self.instance, 'sms_enabled', False))
        if 'phone_number' in data:
            phone_number = data['phone_number']
        else:
            phone_number = getattr(self.instance, 'phone_number', None)

        if sms_enabled and not phone_number:
            raise serializers.ValidationError({
                'sms_enabled': "SMS notifications require a validated phone number"
            })
        return data


class PushSubscriptionSerializer(serializers.ModelSerializer):
    class Meta:
        model = PushSubscription
        fields = ['id', 'endpoint', 'p256dh', 'auth', 'user_agent', 'permission', 'is_active', 'updated_at']
        read_only_fields = ['id', 'is_active', 'updated_at']


class NotificationTestSendSerializer(serializers.Serializer):
    channel = serializers.ChoiceField(choices=[channel.value for channel in Channel], default=Channel.PUSH.value)
    title = serializers.CharField(max_length=100, required=False)
    body = serializers.CharField(max_length=255, required=False)


class AppointmentSerializer(serializers.ModelSerializer):
    class Meta:
        model = Appointment
        fields = ['id', 'client', 'professional_name', 'starts_at', 'status']


class UserSerializer(serializers.ModelSerializer):
    notification_preferences = NotificationPreferenceSerializer(required=False)

    class Meta:
        model = User
        fields = [
            'id', 'name', 'email', 'phone', 'role', 'is_active', 'notification_preferences'
        ]
        read_only_fields = ['created_at', 'updated_at', 'id', 'is_active']

    def create(self, validated_data):
        # Every account gets a preference row at signup, the tick relies on it
        notification_preferences_data = validated_data.pop('notification_preferences', {})
        # push is only switched on once a granted browser subscription is registered
        notification_preferences_data.pop('push_enabled', None)

        user = User.objects.create(**validated_data)
        NotificationPreference.objects.create(user=user, **notification_preferences_data)

        return user

    def update(self, instance, validated_data):
        # Preferences change through the preference endpoint only
        validated_data.pop('notification_preferences', None)
        return super().update(instance, validated_data)

    def validate_role(self, value):
        if value not in [choice[0] for choice in User.Role.choices]:
            raise serializers.ValidationError(
                f"Role must be one of: {', '.join([choice[0] for choice in User.Role.choices])}"
            )
        return value
