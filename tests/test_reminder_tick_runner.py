import pytest
from unittest.mock import AsyncMock, MagicMock, patch
from datetime import datetime

import pytz
from asgiref.sync import async_to_sync
from users.models import NotificationPreference
from services.delivery.DeliveryOutcome import DeliveryOutcome
from services.exceptions import NotFoundError
from services.tick.reminder_tick import ReminderTick, TickReport
from users.management.reminder_tick_runner import ReminderTickRunner

NOW = datetime(2025, 1, 15, 12, 0, tzinfo=pytz.UTC)


def report_with(*outcomes):
    report = MagicMock(spec=TickReport)
    report.count.side_effect = lambda outcome: sum(1 for o in outcomes if o == outcome)
    return report


@pytest.mark.asyncio
class TestReminderTickRunner:

    @pytest.fixture
    def mock_tick(self):
        """Fixture for a mocked ReminderTick."""
        tick = MagicMock(spec=ReminderTick)
        tick.run_for_user = AsyncMock()
        return tick

    @pytest.fixture
    def runner(self, mock_tick):
        """Fixture for ReminderTickRunner instance."""
        return ReminderTickRunner(tick=mock_tick, batch_size=10)

    def test_initialization(self, mock_tick, runner):
        """Test that ReminderTickRunner initializes correctly."""
        assert runner.tick == mock_tick
        assert runner.batch_size == 10
        assert runner.metrics == {
            'users_processed': 0,
            'notifications_sent': 0,
            'notifications_failed': 0,
            'notifications_skipped': 0,
            'errors': 0,
            'start_time': None,
        }

    @patch("users.management.reminder_tick_runner.ReminderTickRunner._get_preferences_batch", new_callable=AsyncMock)
    async def test_process_all_users(self, mock_get_batch, mock_tick, runner):
        """Every user in every batch gets a tick and outcomes are counted."""
        preferences = [
            MagicMock(spec=NotificationPreference, user_id=1, timezone='America/New_York'),
            MagicMock(spec=NotificationPreference, user_id=2, timezone='America/Chicago'),
        ]
        mock_get_batch.side_effect = [preferences, []]
        mock_tick.run_for_user.side_effect = [
            report_with(DeliveryOutcome.SENT, DeliveryOutcome.SENT),
            report_with(DeliveryOutcome.FAILED, DeliveryOutcome.SKIPPED),
        ]

        metrics = await runner.process_all_users(NOW)

        assert mock_tick.run_for_user.await_count == 2
        mock_tick.run_for_user.assert_any_await(1, NOW)
        mock_tick.run_for_user.assert_any_await(2, NOW)
        assert metrics['users_processed'] == 2
        assert metrics['notifications_sent'] == 2
        assert metrics['notifications_failed'] == 1
        assert metrics['notifications_skipped'] == 1
        assert metrics['errors'] == 0

    @patch("users.management.reminder_tick_runner.ReminderTickRunner._get_preferences_batch", new_callable=AsyncMock)
    async def test_one_user_failing_does_not_stop_the_tick(self, mock_get_batch, mock_tick, runner):
        preferences = [
            MagicMock(spec=NotificationPreference, user_id=1, timezone='UTC'),
            MagicMock(spec=NotificationPreference, user_id=2, timezone='UTC'),
            MagicMock(spec=NotificationPreference, user_id=3, timezone='UTC'),
        ]
        mock_get_batch.side_effect = [preferences, []]
        mock_tick.run_for_user.side_effect = [
            RuntimeError("database hiccup"),
            NotFoundError("No notification preferences for user 2"),
            report_with(DeliveryOutcome.SENT),
        ]

        metrics = await runner.process_all_users(NOW)

        assert mock_tick.run_for_user.await_count == 3
        assert metrics['users_processed'] == 1
        assert metrics['notifications_sent'] == 1
        assert metrics['errors'] == 1

    @patch("users.management.reminder_tick_runner.ReminderTickRunner._get_preferences_batch", new_callable=AsyncMock)
    async def test_batches_until_empty(self, mock_get_batch, mock_tick, runner):
        mock_get_batch.side_effect = [
            [MagicMock(spec=NotificationPreference, user_id=1, timezone='UTC')],
            [MagicMock(spec=NotificationPreference, user_id=2, timezone='UTC')],
            [],
        ]
        mock_tick.run_for_user.return_value = report_with()

        await runner.process_all_users(NOW)

        offsets = [call.args[0] for call in mock_get_batch.call_args_list]
        assert offsets == [0, 10, 20]

    @patch("users.management.reminder_tick_runner.ReminderTickRunner._get_preferences_batch", new_callable=AsyncMock)
    async def test_batch_read_failure_propagates(self, mock_get_batch, runner):
        mock_get_batch.side_effect = RuntimeError("connection lost")

        with pytest.raises(RuntimeError):
            await runner.process_all_users(NOW)
        assert runner.metrics['errors'] == 1


@pytest.mark.django_db
class TestReminderTickRunnerDatabase:

    def test_users_are_read_in_timezone_order(self, make_user):
        la = make_user(timezone='America/Los_Angeles')
        ny = make_user(timezone='America/New_York')
        chicago = make_user(timezone='America/Chicago')

        tick = MagicMock(spec=ReminderTick)
        tick.run_for_user = AsyncMock(return_value=report_with(DeliveryOutcome.SENT))
        runner = ReminderTickRunner(tick=tick, batch_size=2)

        metrics = async_to_sync(runner.process_all_users)(NOW)

        processed = [call.args[0] for call in tick.run_for_user.await_args_list]
        assert processed == [chicago.id, la.id, ny.id]
        assert metrics['users_processed'] == 3

    def test_deactivated_users_are_not_ticked(self, make_user):
        active = make_user(name="Active Client")
        deactivated = make_user(name="Gone Client")
        deactivated.is_active = False
        deactivated.save()

        tick = MagicMock(spec=ReminderTick)
        tick.run_for_user = AsyncMock(return_value=report_with())
        runner = ReminderTickRunner(tick=tick, batch_size=10)

        metrics = async_to_sync(runner.process_all_users)(NOW)

        tick.run_for_user.assert_awaited_once_with(active.id, NOW)
        assert metrics["users_processed"] == 1
        # preferences of deactivated accounts are kept
        assert NotificationPreference.objects.filter(user=deactivated).exists()
