from django.http import Http404
from rest_framework import viewsets
from rest_framework.pagination import PageNumberPagination
from .models import User, Appointment
from .serializers import (
    AppointmentSerializer,
    NotificationPreferenceSerializer,
    NotificationTestSendSerializer,
    PushSubscriptionSerializer,
    UserSerializer,
)

from rest_framework import status
from rest_framework.decorators import action
from rest_framework.response import Response
from rest_framework.exceptions import ValidationError
from django.db import IntegrityError
from django.utils import timezone as django_timezone
import logging
from rest_framework.throttling import UserRateThrottle

from asgiref.sync import async_to_sync

from services.decision_engine.NotificationCategory import Channel
from services.delivery.DeliveryOutcome import DeliveryOutcome
from services.dispatch.verification import ChannelVerifier
from services.exceptions import CapabilityError, NotificationError
from services.preferences.preference_store import PreferenceStore


logger = logging.getLogger(__name__)

TEST_SEND_STATUS = {
    DeliveryOutcome.SENT: status.HTTP_200_OK,
    DeliveryOutcome.SKIPPED: status.HTTP_409_CONFLICT,
    DeliveryOutcome.FAILED: status.HTTP_502_BAD_GATEWAY,
}


class StandardResultsSetPagination(PageNumberPagination):
    page_size = 100
    page_size_query_param = 'page_size'
    max_page_size = 1000


class UserThrottle(UserRateThrottle):
    rate = '1000/day'


class UserViewSet(viewsets.ModelViewSet):
    queryset = User.objects.filter(is_active=True).select_related('notification_preferences').order_by('id')
    serializer_class = UserSerializer
    pagination_class = StandardResultsSetPagination
    throttle_classes = [UserThrottle]

    def get_preference_store(self) -> PreferenceStore:
        return PreferenceStore()

    def get_channel_verifier(self) -> ChannelVerifier:
        return ChannelVerifier()

    def create(self, request, *args, **kwargs):
        try:
            return super().create(request, *args, **kwargs)
        except IntegrityError as e:
            logger.error(f"Database integrity error creating user: {str(e)}")
            return Response(
                {"error": "User creation failed. Email may already exist."},
                status=status.HTTP_400_BAD_REQUEST
            )
        except ValidationError as e:
            logger.error(f"Validation error creating user: {str(e)}")
            return Response(
                {"error": e.detail},
                status=status.HTTP_400_BAD_REQUEST
            )
        except Exception as e:
            logger.error(f"Unexpected error creating user: {str(e)}")
            return Response(
                {"error": "An unexpected error occurred"},
                status=status.HTTP_500_INTERNAL_SERVER_ERROR
            )

    def update(self, request, *args, **kwargs):
        try:
            return super().update(request, *args, **kwargs)
        except Http404:
            return Response(
                {"error": "User not found"},
                status=status.HTTP_404_NOT_FOUND
            )
        except ValidationError as e:
            logger.error(f"Validation error updating user {kwargs.get('pk')}: {str(e)}")
            return Response(
                {"error": e.detail},
                status=status.HTTP_400_BAD_REQUEST
            )
        except Exception as e:
            logger.error(f"Unexpected error updating user {kwargs.get('pk')}: {str(e)}")
            return Response(
                {"error": "An unexpected error occurred"},
                status=status.HTTP_500_INTERNAL_SERVER_ERROR
            )

    def destroy(self, request, *args, **kwargs):
        """Deactivate the account; preferences and delivery history are kept."""
        try:
            user = self.get_object()
            user.is_active = False
            user.deactivated_at = django_timezone.now()
            user.save(update_fields=['is_active', 'deactivated_at', 'updated_at'])
            logger.info(f"Deactivated user {user.id}")
            return Response(status=status.HTTP_204_NO_CONTENT)

        except Http404:
            return Response(
                {"error": "User not found"},
                status=status.HTTP_404_NOT_FOUND,
            )
        except Exception as e:
            logger.error(f"Error deleting user {kwargs.get('pk')}: {str(e)}")
            return Response(
                {"error": "An unexpected error occurred"},
                status=status.HTTP_500_INTERNAL_SERVER_ERROR,
            )

    @action(detail=True, methods=['get', 'patch'], url_path='notification-preferences')
    def notification_preferences(self, request, pk=None):
        user = self.get_object()
        store = self.get_preference_store()

        if request.method == 'GET':
            preference = store.get(user.id)
        else:
            preference = store.update(user.id, request.data)

        return Response(NotificationPreferenceSerializer(preference).data)

    @action(detail=True, methods=['post'], url_path='sms-opt-in')
    def sms_opt_in(self, request, pk=None):
        user = self.get_object()
        phone = request.data.get('phone_number') or user.phone
        preference = self.get_preference_store().opt_in_sms(user.id, phone)
        return Response(NotificationPreferenceSerializer(preference).data)

    @action(detail=True, methods=['post'], url_path='sms-opt-out')
    def sms_opt_out(self, request, pk=None):
        user = self.get_object()
        preference = self.get_preference_store().opt_out_sms(user.id)
        return Response(NotificationPreferenceSerializer(preference).data)

    @action(detail=True, methods=['post', 'delete'], url_path='push-subscription')
    def push_subscription(self, request, pk=None):
        user = self.get_object()
        store = self.get_preference_store()

        if request.method == 'DELETE':
            preference = store.disable_push(user.id, request.data.get('endpoint'))
            return Response(NotificationPreferenceSerializer(preference).data)

        serializer = PushSubscriptionSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            subscription = store.register_push_subscription(user.id, serializer.validated_data)
        except CapabilityError as e:
            # stored, but push stays off until the browser grants permission
            return Response(
                {"error": str(e), "push_enabled": False},
                status=e.status_code
            )
        except NotificationError:
            raise
        except Exception as e:
            logger.error(f"Unexpected error registering push subscription for user {user.id}: {str(e)}")
            return Response(
                {"error": "An unexpected error occurred"},
                status=status.HTTP_500_INTERNAL_SERVER_ERROR
            )

        return Response(PushSubscriptionSerializer(subscription).data, status=status.HTTP_201_CREATED)

    @action(detail=True, methods=['post'], url_path='test-notification')
    def send_test_notification(self, request, pk=None):
        user = self.get_object()
        serializer = NotificationTestSendSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        channel = Channel(serializer.validated_data['channel'])
        result = async_to_sync(self.get_channel_verifier().send_test)(
            user.id,
            channel,
            serializer.validated_data.get('title'),
            serializer.validated_data.get('body'),
        )

        return Response(
            {
                'channel': channel.value,
                'outcome': result.outcome.value,
                'provider_id': result.provider_id,
                'error': result.error,
            },
            status=TEST_SEND_STATUS[result.outcome]
        )


class AppointmentViewSet(viewsets.ModelViewSet):
    serializer_class = AppointmentSerializer
    pagination_class = StandardResultsSetPagination

    def get_queryset(self):
        queryset = Appointment.objects.all().order_by('starts_at')
        client = self.request.query_params.get('client')
        if client:
            queryset = queryset.filter(client_id=client)
        return queryset
