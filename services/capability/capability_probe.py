import logging
import re
from dataclasses import dataclass
from typing import Optional

from users.models import PushSubscription

logger = logging.getLogger(__name__)

E164_PATTERN = re.compile(r'^\+[1-9]\d{1,14}$')


@dataclass
class PushCapability:
    supported: bool
    permission: str
    registration_ready: bool

    @property
    def usable(self) -> bool:
        return self.supported and self.permission == PushSubscription.Permission.GRANTED and self.registration_ready


@dataclass
class SmsCapability:
    valid: bool
    formatted: str
    error: Optional[str] = None


def validate_phone_number(phone: str) -> SmsCapability:
    """Canonicalise a phone number to E.164.

    Bare 10 digit numbers, and 11 digit numbers starting with 1, are treated
    as US numbers. This is a format check only, deliverability is known after
    the first send.
    """
    if not phone:
        return SmsCapability(valid=False, formatted='', error='Phone number is required')

    cleaned = re.sub(r'[^\d+]', '', phone)

    if not cleaned.startswith('+'):
        if cleaned.startswith('1') and len(cleaned) == 11:
            cleaned = '+' + cleaned
        elif len(cleaned) == 10:
            cleaned = '+1' + cleaned
        else:
            cleaned = '+' + cleaned

    if len(cleaned) < 10:
        return SmsCapability(valid=False, formatted=cleaned, error='Phone number is too short')

    if len(cleaned) > 15:
        return SmsCapability(valid=False, formatted=cleaned, error='Phone number is too long')

    if not E164_PATTERN.match(cleaned):
        return SmsCapability(valid=False, formatted=cleaned, error='Invalid phone number format')

    return SmsCapability(valid=True, formatted=cleaned)


def format_phone_for_display(phone: str) -> str:
    digits = re.sub(r'\D', '', phone or '')

    if len(digits) == 10:
        return f"({digits[:3]}) {digits[3:6]}-{digits[6:]}"
    if len(digits) == 11 and digits.startswith('1'):
        return f"+1 ({digits[1:4]}) {digits[4:7]}-{digits[7:]}"

    return phone


class ChannelCapabilityProbe:
    """Decides at dispatch time whether push and SMS can be used for a user.

    Push state is whatever the user's browsers last reported through their
    subscriptions, so it is re-read on every call: permission can be revoked
    outside of this service at any moment.
    """

    def probe_push(self, user_id: int) -> PushCapability:
        subscriptions = list(
            PushSubscription.objects
            .filter(user_id=user_id)
            .order_by('-updated_at')
        )

        if not subscriptions:
            return PushCapability(
                supported=False,
                permission=PushSubscription.Permission.DEFAULT,
                registration_ready=False
            )

        active = [s for s in subscriptions if s.is_active]
        granted = [s for s in active if s.permission == PushSubscription.Permission.GRANTED]

        if granted:
            registration_ready = any(s.endpoint and s.p256dh and s.auth for s in granted)
            return PushCapability(
                supported=True,
                permission=PushSubscription.Permission.GRANTED,
                registration_ready=registration_ready
            )

        # Most recent report wins when nothing is granted
        latest = active[0] if active else subscriptions[0]
        logger.debug(f"Push not granted for user {user_id}: permission={latest.permission}")
        return PushCapability(
            supported=True,
            permission=latest.permission,
            registration_ready=False
        )

    def probe_sms(self, phone: Optional[str]) -> SmsCapability:
        return validate_phone_number(phone)

    def active_push_subscriptions(self, user_id: int):
        return list(
            PushSubscription.objects.filter(
                user_id=user_id,
                is_active=True,
                permission=PushSubscription.Permission.GRANTED
            )
        )
