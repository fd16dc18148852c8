import pytest
from datetime import date, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock

import pytz
from asgiref.sync import async_to_sync

from notification_center.models import DeliveryRecord
from routines.models import GamificationState
from services.decision_engine.NotificationCategory import Channel, NotificationCategory
from services.decision_engine.reminder_decision_engine import DomainEvent
from services.delivery.DeliveryOutcome import DeliveryOutcome
from services.dispatch.dispatch_adapters import DispatchAdapter, DispatchResult
from services.exceptions import NotFoundError
from services.tick.reminder_tick import ReminderTick
from users.models import Appointment, NotificationPreference, PushSubscription, User

# 07:00 in New York
MORNING = datetime(2025, 1, 15, 12, 0, tzinfo=pytz.UTC)
# 22:30 in New York, 90 minutes before local midnight
LATE_EVENING = datetime(2025, 1, 16, 3, 30, tzinfo=pytz.UTC)


def fake_adapter(outcome=DeliveryOutcome.SENT, error=None):
    adapter = MagicMock(spec=DispatchAdapter)
    adapter.deliver = AsyncMock(return_value=DispatchResult(outcome, error=error))
    return adapter


@pytest.mark.django_db
class TestReminderTick:

    @pytest.fixture
    def adapters(self):
        return {
            Channel.PUSH: fake_adapter(),
            Channel.SMS: fake_adapter(),
            Channel.IN_APP: fake_adapter(),
        }

    @pytest.fixture
    def tick(self, adapters):
        return ReminderTick(adapters=adapters)

    @pytest.fixture
    def push_user(self, make_user, grant_push):
        user = make_user(push_enabled=True)
        grant_push(user)
        return user

    def run(self, tick, user_id, now):
        return async_to_sync(tick.run_for_user)(user_id, now)

    def test_morning_reminder_on_push_and_in_app(self, tick, adapters, push_user):
        report = self.run(tick, push_user.id, MORNING)

        assert report.outcome_for(NotificationCategory.AM_REMINDER, Channel.PUSH) == DeliveryOutcome.SENT
        assert report.outcome_for(NotificationCategory.AM_REMINDER, Channel.IN_APP) == DeliveryOutcome.SENT
        adapters[Channel.SMS].deliver.assert_not_called()

        records = DeliveryRecord.objects.filter(user=push_user, period_key="2025-01-15:am")
        assert {(r.channel, r.outcome) for r in records} == {("push", "sent"), ("in_app", "sent")}

        preference = NotificationPreference.objects.get(user=push_user)
        assert preference.last_am_reminder_sent == MORNING
        # sends are stamped with the tick time, not the wall clock
        assert {r.last_sent_at for r in records} == {MORNING}

    def test_second_tick_in_window_sends_nothing(self, tick, adapters, push_user):
        self.run(tick, push_user.id, MORNING)
        report = self.run(tick, push_user.id, MORNING + timedelta(minutes=2))

        assert report.results == []
        assert adapters[Channel.PUSH].deliver.call_count == 1
        assert adapters[Channel.IN_APP].deliver.call_count == 1

    def test_failed_push_is_retried_alone(self, tick, adapters, push_user):
        adapters[Channel.PUSH].deliver.return_value = DispatchResult(DeliveryOutcome.FAILED, error="gateway down")

        report = self.run(tick, push_user.id, MORNING)
        assert report.outcome_for(NotificationCategory.AM_REMINDER, Channel.PUSH) == DeliveryOutcome.FAILED
        assert report.outcome_for(NotificationCategory.AM_REMINDER, Channel.IN_APP) == DeliveryOutcome.SENT

        adapters[Channel.PUSH].deliver.return_value = DispatchResult(DeliveryOutcome.SENT)
        report = self.run(tick, push_user.id, MORNING + timedelta(minutes=1))

        assert [(r.channel, r.outcome) for r in report.results] == [(Channel.PUSH, DeliveryOutcome.SENT)]
        assert adapters[Channel.IN_APP].deliver.call_count == 1
        assert DeliveryRecord.objects.get(user=push_user, channel="push").attempt_count == 2

    @pytest.mark.parametrize("failing, working", [
        (Channel.PUSH, Channel.SMS),
        (Channel.SMS, Channel.PUSH),
    ])
    def test_push_and_sms_fail_independently(self, tick, adapters, make_user, grant_push, failing, working):
        user = make_user(push_enabled=True, sms_enabled=True, phone_number="+15551234567")
        grant_push(user)
        adapters[failing].deliver.return_value = DispatchResult(DeliveryOutcome.FAILED, error="provider down")

        report = self.run(tick, user.id, MORNING)

        assert report.outcome_for(NotificationCategory.AM_REMINDER, failing) == DeliveryOutcome.FAILED
        assert report.outcome_for(NotificationCategory.AM_REMINDER, working) == DeliveryOutcome.SENT
        assert report.outcome_for(NotificationCategory.AM_REMINDER, Channel.IN_APP) == DeliveryOutcome.SENT

        records = {r.channel: r for r in DeliveryRecord.objects.filter(user=user, period_key="2025-01-15:am")}
        assert records[failing.value].outcome == "failed"
        assert records[failing.value].error == "provider down"
        assert records[failing.value].last_sent_at is None
        assert records[working.value].outcome == "sent"
        assert records["in_app"].outcome == "sent"

    def test_toggle_is_honoured_on_next_tick(self, tick, adapters, push_user):
        NotificationPreference.objects.filter(user=push_user).update(am_reminder_enabled=False)

        report = self.run(tick, push_user.id, MORNING)

        assert report.results == []
        adapters[Channel.IN_APP].deliver.assert_not_called()

    def test_denied_push_is_recorded_as_skipped(self, tick, adapters, make_user, grant_push):
        user = make_user(push_enabled=True)
        grant_push(user, permission=PushSubscription.Permission.DENIED)

        report = self.run(tick, user.id, MORNING)

        assert report.outcome_for(NotificationCategory.AM_REMINDER, Channel.PUSH) == DeliveryOutcome.SKIPPED
        assert report.outcome_for(NotificationCategory.AM_REMINDER, Channel.IN_APP) == DeliveryOutcome.SENT
        adapters[Channel.PUSH].deliver.assert_not_called()
        assert DeliveryRecord.objects.get(user=user, channel="push").outcome == "skipped"

    def test_sms_gets_the_phone_number(self, tick, adapters, make_user):
        user = make_user(sms_enabled=True, phone_number="+15551234567")

        self.run(tick, user.id, MORNING)

        intent = adapters[Channel.SMS].deliver.call_args.args[0]
        assert intent.address == "+15551234567"
        assert intent.period_key == "2025-01-15:am"

    def test_claim_held_by_another_tick(self, tick, adapters, make_user):
        user = make_user()
        DeliveryRecord.objects.create(
            user=user,
            category="am_reminder",
            channel="in_app",
            period_key="2025-01-15:am",
            outcome=DeliveryRecord.Outcome.PENDING,
            claimed_at=MORNING,
            attempt_count=1,
        )

        report = self.run(tick, user.id, MORNING + timedelta(minutes=1))

        assert report.outcome_for(NotificationCategory.AM_REMINDER, Channel.IN_APP) == DeliveryOutcome.SKIPPED
        adapters[Channel.IN_APP].deliver.assert_not_called()

    def test_streak_warning_before_midnight(self, tick, adapters, make_user):
        user = make_user(streak_warning_hours=2)
        GamificationState.objects.create(user=user, current_streak=4, last_completion_date=date(2025, 1, 14))

        report = self.run(tick, user.id, LATE_EVENING)

        assert report.outcome_for(NotificationCategory.STREAK_WARNING, Channel.IN_APP) == DeliveryOutcome.SENT
        intent = adapters[Channel.IN_APP].deliver.call_args.args[0]
        assert intent.period_key == "2025-01-15:streak"
        assert "4 day streak" in intent.content.body

    def test_broken_streak_is_reset_before_deciding(self, tick, adapters, make_user):
        user = make_user(streak_warning_hours=2)
        GamificationState.objects.create(user=user, current_streak=9, last_completion_date=date(2025, 1, 10))

        self.run(tick, user.id, LATE_EVENING)

        intent = adapters[Channel.IN_APP].deliver.call_args.args[0]
        assert intent.content.title == "Routine Not Done Yet"
        assert GamificationState.objects.get(user=user).current_streak == 0

    def test_appointment_reminder(self, tick, adapters, make_user):
        user = make_user()
        appointment = Appointment.objects.create(
            client=user, professional_name="Dr. Rivera", starts_at=MORNING + timedelta(hours=3)
        )

        report = self.run(tick, user.id, MORNING + timedelta(hours=1))

        assert report.outcome_for(NotificationCategory.APPOINTMENT_REMINDER, Channel.IN_APP) == DeliveryOutcome.SENT
        intent = adapters[Channel.IN_APP].deliver.call_args.args[0]
        assert intent.period_key == f"appointment:{appointment.id}:24h"

    def test_missing_preferences_raise(self, tick):
        user = User.objects.create(name="No Prefs", email="noprefs@example.com")
        with pytest.raises(NotFoundError):
            self.run(tick, user.id, MORNING)

    def test_event_fires_once_per_entity(self, tick, adapters, make_user):
        user = make_user()
        event = DomainEvent(NotificationCategory.FEEDBACK, "photo-12", {"professional_name": "Dana"})

        first = async_to_sync(tick.run_for_event)(user.id, event, MORNING)
        second = async_to_sync(tick.run_for_event)(user.id, event, MORNING + timedelta(minutes=10))

        assert first.outcome_for(NotificationCategory.FEEDBACK, Channel.IN_APP) == DeliveryOutcome.SENT
        assert second.results == []
        assert DeliveryRecord.objects.get(user=user).period_key == "feedback:photo-12"
