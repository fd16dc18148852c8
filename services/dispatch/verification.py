import logging
from typing import Dict, Optional

from asgiref.sync import sync_to_async
from django.utils import timezone as django_timezone

from services.decision_engine.NotificationCategory import Channel, NotificationCategory
from services.decision_engine.reminder_decision_engine import DispatchIntent
from services.delivery.DeliveryOutcome import DeliveryOutcome
from services.dispatch.dispatch_adapters import DispatchAdapter, DispatchResult, build_default_adapters
from services.dispatch.payloads import build_test_content
from services.exceptions import CapabilityError
from services.preferences.preference_store import PreferenceStore

logger = logging.getLogger(__name__)

# Test sends render with the generic open/dismiss push style
TEST_SEND_CATEGORY = NotificationCategory.CHALLENGE


class ChannelVerifier:
    """Sends a one-off test notification so a client can check a channel works.

    Test sends go through the same adapters as reminders but are not part of
    any reminder period, so nothing is written to the delivery ledger.
    """

    def __init__(self, preference_store: Optional[PreferenceStore] = None,
                 adapters: Optional[Dict[Channel, DispatchAdapter]] = None):
        self.preference_store = preference_store or PreferenceStore()
        self.adapters = adapters or build_default_adapters()

    def _check_enabled(self, preference, channel: Channel) -> None:
        if channel == Channel.PUSH and not preference.push_enabled:
            raise CapabilityError("Push notifications are not enabled")
        if channel == Channel.SMS and not (preference.sms_enabled and preference.phone_number):
            raise CapabilityError("SMS notifications are not enabled")

    async def send_test(self, user_id: int, channel: Channel,
                        title: Optional[str] = None, body: Optional[str] = None) -> DispatchResult:
        preference = await sync_to_async(self.preference_store.get)(user_id)
        self._check_enabled(preference, channel)

        intent = DispatchIntent(
            user_id=user_id,
            category=TEST_SEND_CATEGORY,
            channel=channel,
            period_key=f"test:{django_timezone.now().isoformat()}",
            content=build_test_content(title, body),
            address=preference.phone_number if channel == Channel.SMS else None,
        )
        result = await self.adapters[channel].deliver(intent)

        if result.outcome == DeliveryOutcome.SENT:
            logger.info(f"Test {channel.value} notification sent to user {user_id}")
        else:
            logger.warning(f"Test {channel.value} notification to user {user_id} {result.outcome.value}: {result.error}")
        return result
