import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

import pytz

from services.capability.capability_probe import PushCapability, SmsCapability
from services.decision_engine.NotificationCategory import (
    CATEGORY_PRIORITY,
    CATEGORY_TOGGLES,
    CHANNEL_ORDER,
    EVENT_CATEGORIES,
    Channel,
    NotificationCategory,
)
from services.dispatch.payloads import NotificationContent, build_content

logger = logging.getLogger(__name__)

# (category value, channel value, period key) of a delivery already marked sent
SentKey = Tuple[str, str, str]


@dataclass
class AppointmentSignal:
    appointment_id: int
    starts_at: datetime
    professional_name: str = ''


@dataclass
class DomainEvent:
    """Something that happened elsewhere in the app and may notify the user"""
    category: NotificationCategory
    entity_id: str
    context: Dict[str, Any] = field(default_factory=dict)


@dataclass
class DecisionContext:
    push_capability: Optional[PushCapability] = None
    sms_capability: Optional[SmsCapability] = None
    sent_keys: Set[SentKey] = field(default_factory=set)
    day_complete: bool = False
    current_streak: int = 0
    appointments: List[AppointmentSignal] = field(default_factory=list)


@dataclass
class CategoryDecision:
    category: NotificationCategory
    period_key: str
    content: NotificationContent
    channels: List[Channel]
    skipped: Dict[Channel, str] = field(default_factory=dict)


@dataclass
class DispatchIntent:
    user_id: int
    category: NotificationCategory
    channel: Channel
    period_key: str
    content: NotificationContent
    # Recipient address for channels that need one (E.164 phone for SMS)
    address: Optional[str] = None


def get_timezone(timezone_str: str) -> pytz.BaseTzInfo:
    """Validate and return a proper timezone object"""
    try:
        return pytz.timezone(timezone_str)
    except pytz.exceptions.UnknownTimeZoneError:
        logger.error(f"Invalid timezone: {timezone_str}")
        # Default to UTC if timezone is invalid
        return pytz.UTC


def local_date_for(timezone_str: str, now: datetime) -> date:
    return now.astimezone(get_timezone(timezone_str)).date()


def routine_period_key(day: date, period: str) -> str:
    return f"{day.isoformat()}:{period}"


def streak_period_key(day: date) -> str:
    return f"{day.isoformat()}:streak"


def appointment_period_key(appointment_id, window_hours: int) -> str:
    return f"appointment:{appointment_id}:{window_hours}h"


def event_period_key(category: NotificationCategory, entity_id) -> str:
    return f"{category.value}:{entity_id}"


def reminder_occurrence(tz, local_now: datetime, reminder_time: time, tolerance: timedelta) -> Optional[date]:
    """Day whose scheduled reminder is currently inside its firing window.

    A window that runs past local midnight still belongs to the day the
    reminder was scheduled on, so yesterday is checked as well.
    """
    today = local_now.date()
    for day in (today, today - timedelta(days=1)):
        scheduled = tz.localize(datetime.combine(day, reminder_time))
        if scheduled <= local_now < scheduled + tolerance:
            return day
    return None


def time_until_local_midnight(tz, local_now: datetime) -> timedelta:
    next_midnight = tz.localize(datetime.combine(local_now.date() + timedelta(days=1), time(0, 0)))
    return next_midnight - local_now


def select_channels(preference, context: DecisionContext) -> Tuple[List[Channel], Dict[Channel, str]]:
    """Channel set for one category: push and SMS when usable, in-app always"""
    channels = []
    skipped = {}

    if preference.push_enabled:
        capability = context.push_capability
        if capability is not None and capability.usable:
            channels.append(Channel.PUSH)
        elif capability is None:
            skipped[Channel.PUSH] = 'push capability unknown'
        else:
            skipped[Channel.PUSH] = (
                f"push unavailable (supported={capability.supported}, "
                f"permission={capability.permission}, ready={capability.registration_ready})"
            )

    if preference.sms_enabled:
        sms = context.sms_capability
        if not preference.phone_number:
            skipped[Channel.SMS] = 'sms enabled without a phone number'
        elif sms is None or not sms.valid:
            skipped[Channel.SMS] = f"sms unverified: {sms.error if sms else 'not probed'}"
        else:
            channels.append(Channel.SMS)

    channels.append(Channel.IN_APP)
    return channels, skipped


class ReminderDecisionEngine:
    """Decides which categories fire for one user on one tick.

    Pure: everything it needs (preferences, capability, delivery history,
    routine status, upcoming appointments) is handed in, so two overlapping
    ticks reach the same decision and the delivery claim settles the race.
    """

    def __init__(self, tolerance_minutes: int = 5, appointment_windows_hours: Iterable[int] = (24, 1)):
        self.tolerance = timedelta(minutes=tolerance_minutes)
        self.appointment_windows_hours = sorted(set(appointment_windows_hours))

    def _enabled(self, preference, category: NotificationCategory) -> bool:
        return bool(getattr(preference, CATEGORY_TOGGLES[category]))

    def candidate_period_keys(self, preference, now: datetime,
                              appointments: Iterable[AppointmentSignal] = ()) -> Set[str]:
        """Every period key this tick could touch, used to preload delivery history"""
        tz = get_timezone(preference.timezone)
        today = now.astimezone(tz).date()
        keys = set()
        for day in (today, today - timedelta(days=1)):
            keys.add(routine_period_key(day, 'am'))
            keys.add(routine_period_key(day, 'pm'))
        keys.add(streak_period_key(today))
        for appointment in appointments:
            for hours in self.appointment_windows_hours:
                keys.add(appointment_period_key(appointment.appointment_id, hours))
        return keys

    def _decide(self, preference, category: NotificationCategory, period_key: str,
                content_context: Dict[str, Any], context: DecisionContext) -> Optional[CategoryDecision]:
        channels, skipped = select_channels(preference, context)

        pending = [c for c in channels if (category.value, c.value, period_key) not in context.sent_keys]
        skipped = {
            c: reason for c, reason in skipped.items()
            if (category.value, c.value, period_key) not in context.sent_keys
        }

        if not pending:
            logger.debug(f"{category.value} already delivered on all channels for {period_key}")
            return None

        return CategoryDecision(
            category=category,
            period_key=period_key,
            content=build_content(category, content_context),
            channels=pending,
            skipped=skipped,
        )

    def _routine_reminders(self, preference, tz, local_now, context) -> List[CategoryDecision]:
        decisions = []
        reminders = [
            (NotificationCategory.AM_REMINDER, preference.am_reminder_time, 'am'),
            (NotificationCategory.PM_REMINDER, preference.pm_reminder_time, 'pm'),
        ]
        for category, reminder_time, period in reminders:
            if not self._enabled(preference, category) or reminder_time is None:
                continue
            day = reminder_occurrence(tz, local_now, reminder_time, self.tolerance)
            if day is None:
                continue
            decision = self._decide(preference, category, routine_period_key(day, period), {}, context)
            if decision:
                decisions.append(decision)
        return decisions

    def _streak_warning(self, preference, tz, local_now, context) -> Optional[CategoryDecision]:
        if not self._enabled(preference, NotificationCategory.STREAK_WARNING):
            return None
        if context.day_complete:
            return None

        remaining = time_until_local_midnight(tz, local_now)
        if not timedelta(0) < remaining <= timedelta(hours=preference.streak_warning_hours):
            return None

        return self._decide(
            preference,
            NotificationCategory.STREAK_WARNING,
            streak_period_key(local_now.date()),
            {'current_streak': context.current_streak},
            context,
        )

    def _appointment_reminders(self, preference, tz, now, context) -> List[CategoryDecision]:
        if not self._enabled(preference, NotificationCategory.APPOINTMENT_REMINDER):
            return []

        decisions = []
        for appointment in context.appointments:
            until_start = appointment.starts_at - now
            if until_start <= timedelta(0):
                continue

            matching = [h for h in self.appointment_windows_hours if until_start <= timedelta(hours=h)]
            if not matching:
                continue
            window_hours = matching[0]

            local_start = appointment.starts_at.astimezone(tz)
            if local_start.date() == now.astimezone(tz).date():
                display = f"today at {local_start.strftime('%I:%M %p').lstrip('0')}"
            else:
                display = f"on {local_start.strftime('%a, %b %d')} at {local_start.strftime('%I:%M %p').lstrip('0')}"

            decision = self._decide(
                preference,
                NotificationCategory.APPOINTMENT_REMINDER,
                appointment_period_key(appointment.appointment_id, window_hours),
                {
                    'appointment_id': appointment.appointment_id,
                    'professional_name': appointment.professional_name,
                    'starts_at_display': display,
                },
                context,
            )
            if decision:
                decisions.append(decision)
        return decisions

    def evaluate(self, preference, now: datetime, context: DecisionContext) -> List[CategoryDecision]:
        """Time-polled categories for one tick, in dispatch priority order"""
        tz = get_timezone(preference.timezone)
        local_now = now.astimezone(tz)

        decisions = []
        decisions.extend(self._appointment_reminders(preference, tz, now, context))
        streak = self._streak_warning(preference, tz, local_now, context)
        if streak:
            decisions.append(streak)
        decisions.extend(self._routine_reminders(preference, tz, local_now, context))

        decisions.sort(key=lambda d: CATEGORY_PRIORITY.index(d.category))
        logger.debug(
            f"Evaluated tick at {local_now.isoformat()} ({preference.timezone}): "
            f"{[d.category.value for d in decisions]}"
        )
        return decisions

    def evaluate_event(self, preference, event: DomainEvent, context: DecisionContext) -> Optional[CategoryDecision]:
        """Event-driven categories fire immediately, deduplicated by the triggering entity"""
        if event.category not in EVENT_CATEGORIES:
            raise ValueError(f"{event.category.value} is not an event-driven category")

        if not self._enabled(preference, event.category):
            logger.debug(f"{event.category.value} disabled, ignoring event {event.entity_id}")
            return None

        return self._decide(
            preference,
            event.category,
            event_period_key(event.category, event.entity_id),
            event.context,
            context,
        )


def to_intents(user_id: int, decisions: Iterable[CategoryDecision],
               phone_number: Optional[str] = None) -> List[DispatchIntent]:
    intents = []
    for decision in decisions:
        for channel in sorted(decision.channels, key=CHANNEL_ORDER.index):
            intents.append(DispatchIntent(
                user_id=user_id,
                category=decision.category,
                channel=channel,
                period_key=decision.period_key,
                content=decision.content,
                address=phone_number if channel == Channel.SMS else None,
            ))
    return intents
