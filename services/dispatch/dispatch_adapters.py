import asyncio
import logging
from dataclasses import dataclass
from typing import Dict, Optional

from asgiref.sync import sync_to_async
from django.conf import settings

from notification_center.models import ClientNotification
from services.capability.capability_probe import ChannelCapabilityProbe
from services.decision_engine.NotificationCategory import Channel
from services.decision_engine.reminder_decision_engine import DispatchIntent
from services.delivery.DeliveryOutcome import DeliveryOutcome
from services.dispatch.payloads import build_push_payload, build_sms_message, in_app_type
from services.dispatch.transports import (
    PushGatewayClient,
    TwilioSmsClient,
    build_push_client,
    build_sms_client,
)
from services.exceptions import CapabilityError, TransportError

logger = logging.getLogger(__name__)


@dataclass
class DispatchResult:
    outcome: DeliveryOutcome
    error: Optional[str] = None
    provider_id: Optional[str] = None


class DispatchAdapter:
    """Delivers one intent over one channel.

    `deliver` never raises: every failure becomes a DispatchResult so one
    channel going down cannot take the others with it.
    """

    channel: Channel = None

    def __init__(self, timeout: Optional[float] = None):
        self.timeout = timeout if timeout is not None else settings.DISPATCH_TIMEOUT_SECONDS

    async def _send(self, intent: DispatchIntent) -> DispatchResult:
        raise NotImplementedError

    async def deliver(self, intent: DispatchIntent) -> DispatchResult:
        try:
            return await asyncio.wait_for(self._send(intent), timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.error(
                f"{self.channel.value} dispatch timed out after {self.timeout}s "
                f"for user {intent.user_id} ({intent.category.value})"
            )
            return DispatchResult(DeliveryOutcome.FAILED, error=f"timed out after {self.timeout}s")
        except CapabilityError as e:
            logger.info(f"{self.channel.value} skipped for user {intent.user_id}: {str(e)}")
            return DispatchResult(DeliveryOutcome.SKIPPED, error=str(e))
        except Exception as e:
            logger.error(
                f"{self.channel.value} dispatch failed for user {intent.user_id} "
                f"({intent.category.value}): {str(e)}"
            )
            return DispatchResult(DeliveryOutcome.FAILED, error=str(e))


class PushAdapter(DispatchAdapter):
    channel = Channel.PUSH

    def __init__(self, push_client: PushGatewayClient,
                 capability_probe: Optional[ChannelCapabilityProbe] = None,
                 timeout: Optional[float] = None):
        super().__init__(timeout)
        self.push_client = push_client
        self.capability_probe = capability_probe or ChannelCapabilityProbe()

    async def _send(self, intent: DispatchIntent) -> DispatchResult:
        # Permission may have been revoked since the decision was made
        capability = await sync_to_async(self.capability_probe.probe_push)(intent.user_id)
        if not capability.usable:
            raise CapabilityError(f"push permission is {capability.permission}")

        subscriptions = await sync_to_async(self.capability_probe.active_push_subscriptions)(intent.user_id)
        payload = build_push_payload(intent.category, intent.content)

        delivered = []
        errors = []
        for subscription in subscriptions:
            try:
                result = await self.push_client.send(
                    {
                        'endpoint': subscription.endpoint,
                        'keys': {'p256dh': subscription.p256dh, 'auth': subscription.auth},
                    },
                    payload
                )
                delivered.append(result.get('message_id'))
            except TransportError as e:
                errors.append(str(e))
                if e.subscription_gone:
                    logger.info(f"Deactivating expired push subscription {subscription.id} for user {intent.user_id}")
                    subscription.is_active = False
                    await sync_to_async(subscription.save)(update_fields=['is_active', 'updated_at'])

        if not delivered:
            raise TransportError('; '.join(errors) or 'no active push subscriptions')

        if errors:
            logger.warning(f"Push partially delivered for user {intent.user_id}: {'; '.join(errors)}")
        return DispatchResult(DeliveryOutcome.SENT, provider_id=delivered[0])


class SmsAdapter(DispatchAdapter):
    channel = Channel.SMS

    def __init__(self, sms_client: TwilioSmsClient, app_name: Optional[str] = None,
                 max_length: Optional[int] = None, timeout: Optional[float] = None):
        super().__init__(timeout)
        self.sms_client = sms_client
        self.app_name = app_name or settings.APP_NAME
        self.max_length = max_length or settings.SMS_MAX_LENGTH

    async def _send(self, intent: DispatchIntent) -> DispatchResult:
        if not intent.address:
            raise CapabilityError('no phone number on file')

        message = build_sms_message(intent.content, self.app_name, self.max_length)
        result = await self.sms_client.send(intent.address, message)
        return DispatchResult(DeliveryOutcome.SENT, provider_id=result.get('message_id'))


class InAppAdapter(DispatchAdapter):
    """Writes the notification-center row the web client polls"""

    channel = Channel.IN_APP

    async def _send(self, intent: DispatchIntent) -> DispatchResult:
        notification = await sync_to_async(ClientNotification.objects.create)(
            user_id=intent.user_id,
            title=intent.content.title,
            message=intent.content.body,
            type=in_app_type(intent.category),
            action_url=intent.content.url,
            metadata={
                **intent.content.metadata,
                'category': intent.category.value,
                'period_key': intent.period_key,
            },
        )
        return DispatchResult(DeliveryOutcome.SENT, provider_id=str(notification.id))


def build_default_adapters() -> Dict[Channel, DispatchAdapter]:
    timeout = settings.DISPATCH_TIMEOUT_SECONDS
    return {
        Channel.PUSH: PushAdapter(build_push_client(timeout), timeout=timeout),
        Channel.SMS: SmsAdapter(build_sms_client(timeout), timeout=timeout),
        Channel.IN_APP: InAppAdapter(timeout=timeout),
    }
