import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional

from asgiref.sync import sync_to_async
from django.conf import settings
from django.utils import timezone as django_timezone

from services.capability.capability_probe import ChannelCapabilityProbe
from services.decision_engine.NotificationCategory import Channel, NotificationCategory
from services.decision_engine.reminder_decision_engine import (
    AppointmentSignal,
    CategoryDecision,
    DecisionContext,
    DomainEvent,
    ReminderDecisionEngine,
    event_period_key,
    get_timezone,
    to_intents,
)
from services.delivery.DeliveryOutcome import DeliveryOutcome
from services.delivery.DeliveryReconciler import DeliveryReconciler
from services.dispatch.dispatch_adapters import DispatchAdapter, build_default_adapters
from services.gamification.streak_service import StreakService
from services.preferences.preference_store import PreferenceStore
from users.models import Appointment

logger = logging.getLogger(__name__)


@dataclass
class IntentResult:
    category: NotificationCategory
    channel: Channel
    period_key: str
    outcome: DeliveryOutcome
    error: Optional[str] = None


@dataclass
class TickReport:
    user_id: int
    evaluated_at: datetime
    results: List[IntentResult] = field(default_factory=list)

    def count(self, outcome: DeliveryOutcome) -> int:
        return sum(1 for r in self.results if r.outcome == outcome)

    def outcome_for(self, category: NotificationCategory, channel: Channel) -> Optional[DeliveryOutcome]:
        for result in self.results:
            if result.category == category and result.channel == channel:
                return result.outcome
        return None


class ReminderTick:
    """One evaluation pass for one user.

    Preferences and capability are read fresh, the decision engine picks the
    categories, each (category, channel) is claimed in the delivery ledger
    and the claimed sends are dispatched in parallel. A channel failing or
    timing out only affects its own outcome.
    """

    def __init__(self,
                 preference_store: Optional[PreferenceStore] = None,
                 capability_probe: Optional[ChannelCapabilityProbe] = None,
                 decision_engine: Optional[ReminderDecisionEngine] = None,
                 reconciler: Optional[DeliveryReconciler] = None,
                 streak_service: Optional[StreakService] = None,
                 adapters: Optional[Dict[Channel, DispatchAdapter]] = None):
        self.capability_probe = capability_probe or ChannelCapabilityProbe()
        self.preference_store = preference_store or PreferenceStore(self.capability_probe)
        self.decision_engine = decision_engine or ReminderDecisionEngine(
            tolerance_minutes=settings.REMINDER_TOLERANCE_MINUTES,
            appointment_windows_hours=settings.APPOINTMENT_REMINDER_WINDOWS_HOURS,
        )
        self.reconciler = reconciler or DeliveryReconciler(
            self.preference_store,
            stale_after_seconds=settings.PENDING_CLAIM_STALE_SECONDS,
        )
        self.streak_service = streak_service or StreakService()
        self.adapters = adapters if adapters is not None else build_default_adapters()

    def _upcoming_appointments(self, user_id: int, now: datetime) -> List[AppointmentSignal]:
        horizon = max(self.decision_engine.appointment_windows_hours, default=0)
        appointments = Appointment.objects.filter(
            client_id=user_id,
            status=Appointment.Status.SCHEDULED,
            starts_at__gt=now,
            starts_at__lte=now + timedelta(hours=horizon),
        ).order_by('starts_at')
        return [
            AppointmentSignal(a.id, a.starts_at, a.professional_name)
            for a in appointments
        ]

    def _load_context(self, preference, now: datetime,
                      period_keys: Optional[Iterable[str]] = None) -> DecisionContext:
        user_id = preference.user_id
        context = DecisionContext()

        if preference.push_enabled:
            context.push_capability = self.capability_probe.probe_push(user_id)
        if preference.sms_enabled:
            context.sms_capability = self.capability_probe.probe_sms(preference.phone_number)

        if period_keys is None:
            today = now.astimezone(get_timezone(preference.timezone)).date()
            state = self.streak_service.evaluate_streak(user_id, today)
            context.current_streak = state.current_streak
            context.day_complete = self.streak_service.is_day_complete(user_id, today)
            context.appointments = self._upcoming_appointments(user_id, now)
            period_keys = self.decision_engine.candidate_period_keys(preference, now, context.appointments)

        context.sent_keys = self.reconciler.sent_keys(user_id, period_keys)
        return context

    async def _dispatch(self, preference, decisions: List[CategoryDecision], now: datetime) -> TickReport:
        user_id = preference.user_id
        report = TickReport(user_id=user_id, evaluated_at=now)

        for decision in decisions:
            for channel, reason in decision.skipped.items():
                await sync_to_async(self.reconciler.record)(
                    user_id, decision.category, channel, decision.period_key,
                    DeliveryOutcome.SKIPPED, reason, now
                )
                report.results.append(IntentResult(
                    decision.category, channel, decision.period_key, DeliveryOutcome.SKIPPED, reason
                ))

        claimed = []
        for intent in to_intents(user_id, decisions, preference.phone_number):
            won = await sync_to_async(self.reconciler.claim)(
                user_id, intent.category, intent.channel, intent.period_key, now
            )
            if won:
                claimed.append(intent)
            else:
                report.results.append(IntentResult(
                    intent.category, intent.channel, intent.period_key,
                    DeliveryOutcome.SKIPPED, 'already claimed by another tick'
                ))

        if claimed:
            dispatch_results = await asyncio.gather(
                *(self.adapters[intent.channel].deliver(intent) for intent in claimed)
            )
            for intent, result in zip(claimed, dispatch_results):
                await sync_to_async(self.reconciler.record)(
                    user_id, intent.category, intent.channel, intent.period_key,
                    result.outcome, result.error, now=now, claimed=True
                )
                report.results.append(IntentResult(
                    intent.category, intent.channel, intent.period_key, result.outcome, result.error
                ))

        if report.results:
            logger.info(
                f"Tick for user {user_id}: sent={report.count(DeliveryOutcome.SENT)} "
                f"failed={report.count(DeliveryOutcome.FAILED)} "
                f"skipped={report.count(DeliveryOutcome.SKIPPED)}"
            )
        return report

    async def run_for_user(self, user_id: int, now: Optional[datetime] = None) -> TickReport:
        now = now or django_timezone.now()
        preference = await sync_to_async(self.preference_store.get)(user_id)
        context = await sync_to_async(self._load_context)(preference, now)
        decisions = self.decision_engine.evaluate(preference, now, context)
        return await self._dispatch(preference, decisions, now)

    async def run_for_event(self, user_id: int, event: DomainEvent,
                            now: Optional[datetime] = None) -> TickReport:
        now = now or django_timezone.now()
        preference = await sync_to_async(self.preference_store.get)(user_id)
        context = await sync_to_async(self._load_context)(
            preference, now, [event_period_key(event.category, event.entity_id)]
        )
        decision = self.decision_engine.evaluate_event(preference, event, context)
        return await self._dispatch(preference, [decision] if decision else [], now)
