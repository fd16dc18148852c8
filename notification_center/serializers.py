from rest_framework import serializers

from services.decision_engine.NotificationCategory import EVENT_CATEGORIES
from users.models import User
from .models import ClientNotification, DeliveryRecord


class ClientNotificationSerializer(serializers.ModelSerializer):
    class Meta:
        model = ClientNotification
        fields = ['id', 'user', 'title', 'message', 'type', 'read', 'action_url', 'metadata', 'created_at']
        read_only_fields = ['id', 'user', 'title', 'message', 'type', 'action_url', 'metadata', 'created_at']


class DeliveryRecordSerializer(serializers.ModelSerializer):
    class Meta:
        model = DeliveryRecord
        fields = [
            'id', 'user', 'category', 'channel', 'period_key', 'outcome',
            'attempt_count', 'error', 'claimed_at', 'last_sent_at',
        ]


class NotificationActionSerializer(serializers.Serializer):
    """Click on a push notification, as reported by the service worker"""
    action = serializers.CharField(required=False, allow_blank=True, default='')
    category = serializers.CharField(required=False, allow_blank=True, default='')
    url = serializers.CharField(required=False, allow_blank=True, allow_null=True, default=None)


class DomainEventSerializer(serializers.Serializer):
    user = serializers.PrimaryKeyRelatedField(queryset=User.objects.filter(is_active=True))
    category = serializers.ChoiceField(choices=sorted(c.value for c in EVENT_CATEGORIES))
    entity_id = serializers.CharField(max_length=64)
    context = serializers.DictField(required=False, default=dict)
