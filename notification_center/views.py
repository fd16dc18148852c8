from asgiref.sync import async_to_sync
from rest_framework import mixins, status, viewsets
from rest_framework.decorators import action
from rest_framework.exceptions import ValidationError
from rest_framework.response import Response
import logging

from services.decision_engine.NotificationCategory import NotificationCategory
from services.decision_engine.reminder_decision_engine import DomainEvent
from services.dispatch.payloads import resolve_action_url
from services.tick.reminder_tick import ReminderTick
from users.views import StandardResultsSetPagination
from .models import ClientNotification, DeliveryRecord
from .serializers import (
    ClientNotificationSerializer,
    DeliveryRecordSerializer,
    DomainEventSerializer,
    NotificationActionSerializer,
)

logger = logging.getLogger(__name__)


def _required_user(request) -> str:
    user_id = request.query_params.get('user') or request.data.get('user')
    if not user_id:
        raise ValidationError({'user': 'This parameter is required.'})
    return user_id


class ClientNotificationViewSet(mixins.ListModelMixin,
                                mixins.RetrieveModelMixin,
                                mixins.DestroyModelMixin,
                                viewsets.GenericViewSet):
    """Notification center rows written by the in-app channel"""

    serializer_class = ClientNotificationSerializer
    pagination_class = StandardResultsSetPagination

    def get_queryset(self):
        queryset = ClientNotification.objects.all()
        if self.action == 'list':
            queryset = queryset.filter(user_id=_required_user(self.request))
            if self.request.query_params.get('unread') == 'true':
                queryset = queryset.filter(read=False)
        return queryset

    @action(detail=False, methods=['get'], url_path='unread-count')
    def unread_count(self, request):
        user_id = _required_user(request)
        count = ClientNotification.objects.filter(user_id=user_id, read=False).count()
        return Response({'user': int(user_id), 'unread': count})

    @action(detail=True, methods=['post'], url_path='mark-read')
    def mark_read(self, request, pk=None):
        notification = self.get_object()
        if not notification.read:
            notification.read = True
            notification.save(update_fields=['read', 'updated_at'])
        return Response(self.get_serializer(notification).data)

    @action(detail=False, methods=['post'], url_path='mark-all-read')
    def mark_all_read(self, request):
        user_id = _required_user(request)
        updated = ClientNotification.objects.filter(user_id=user_id, read=False).update(read=True)
        logger.info(f"Marked {updated} notifications read for user {user_id}")
        return Response({'user': int(user_id), 'updated': updated})

    @action(detail=False, methods=['post'], url_path='action')
    def notification_action(self, request):
        serializer = NotificationActionSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        url = resolve_action_url(data['action'] or None, data['category'] or None, data['url'])
        return Response({'action': data['action'], 'navigate': url is not None, 'url': url})

    @action(detail=False, methods=['get'], url_path='deliveries')
    def deliveries(self, request):
        user_id = _required_user(request)
        records = DeliveryRecord.objects.filter(user_id=user_id).order_by('-updated_at')
        period = request.query_params.get('period')
        if period:
            records = records.filter(period_key__startswith=period)

        page = self.paginate_queryset(records)
        serializer = DeliveryRecordSerializer(page, many=True)
        return self.get_paginated_response(serializer.data)

    @action(detail=False, methods=['post'], url_path='events')
    def events(self, request):
        """Feedback, product recommendations and challenge updates fire immediately"""
        serializer = DomainEventSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        event = DomainEvent(
            category=NotificationCategory(data['category']),
            entity_id=data['entity_id'],
            context=data['context'],
        )
        report = async_to_sync(ReminderTick().run_for_event)(data['user'].id, event)

        return Response({
            'user': data['user'].id,
            'category': event.category.value,
            'results': [
                {
                    'channel': r.channel.value,
                    'period_key': r.period_key,
                    'outcome': r.outcome.value,
                    'error': r.error,
                }
                for r in report.results
            ],
        }, status=status.HTTP_202_ACCEPTED)
