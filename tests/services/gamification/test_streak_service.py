import pytest
from datetime import date, timedelta

from routines.models import GamificationState, RoutineCompletion, UserBadge
from services.gamification.streak_service import (
    StreakService,
    calculate_level,
    calculate_streaks,
    next_streak,
)

D = date(2025, 1, 10)


def complete_day(service, user_id, day):
    service.record_completion(user_id, "morning", day)
    return service.record_completion(user_id, "evening", day)


class TestStreakMath:

    @pytest.mark.parametrize("points, level", [
        (0, "Bronze"), (499, "Bronze"), (500, "Silver"), (1500, "Gold"), (3000, "Platinum"), (5000, "Diamond"),
    ])
    def test_calculate_level(self, points, level):
        assert calculate_level(points) == level

    def test_next_streak(self):
        assert next_streak(None, D, 0) == 1
        assert next_streak(D, D, 4) == 4
        assert next_streak(D - timedelta(days=1), D, 4) == 5
        assert next_streak(D - timedelta(days=2), D, 4) == 1

    def test_calculate_streaks(self):
        days = [D, D + timedelta(days=1), D + timedelta(days=2), D + timedelta(days=5), D + timedelta(days=6)]
        assert calculate_streaks(days, D + timedelta(days=6)) == (2, 3)
        # yesterday still counts
        assert calculate_streaks(days, D + timedelta(days=7)) == (2, 3)
        # two days missed
        assert calculate_streaks(days, D + timedelta(days=8)) == (0, 3)
        assert calculate_streaks([], D) == (0, 0)


@pytest.mark.django_db
class TestStreakService:

    @pytest.fixture
    def service(self):
        return StreakService()

    @pytest.fixture
    def user(self, make_user):
        return make_user()

    def test_three_consecutive_days_then_a_gap(self, service, user):
        for offset in range(3):
            complete_day(service, user.id, D + timedelta(days=offset))

        state = GamificationState.objects.get(user=user)
        assert state.current_streak == 3
        assert state.longest_streak == 3

        state = service.evaluate_streak(user.id, D + timedelta(days=4))
        assert state.current_streak == 0
        assert state.longest_streak == 3

    def test_evaluate_keeps_streak_when_yesterday_complete(self, service, user):
        complete_day(service, user.id, D)
        assert service.evaluate_streak(user.id, D + timedelta(days=1)).current_streak == 1

    def test_half_a_day_does_not_count(self, service, user):
        result = service.record_completion(user.id, "morning", D)

        assert result.created
        assert result.day_complete is False
        assert GamificationState.objects.get(user=user).current_streak == 0
        assert service.is_day_complete(user.id, D) is False

    def test_enrolled_in_one_routine(self, service, user):
        GamificationState.objects.create(user=user, enrolled_routine_types=["evening"])
        result = service.record_completion(user.id, "evening", D)
        assert result.day_complete is True
        assert result.current_streak == 1

    def test_duplicate_completion_is_not_double_counted(self, service, user):
        first = service.record_completion(user.id, "morning", D)
        second = service.record_completion(user.id, "morning", D)

        assert first.created and not second.created
        state = GamificationState.objects.get(user=user)
        assert state.total_routines_completed == 1
        assert state.points == 50
        assert RoutineCompletion.objects.filter(user=user).count() == 1

    def test_points_include_streak_bonus(self, service, user):
        complete_day(service, user.id, D)
        service.record_completion(user.id, "morning", D + timedelta(days=1))
        result = service.record_completion(user.id, "evening", D + timedelta(days=1))

        # streak 2 after the day completes: 50 + floor(50 * 0.1 * 2)
        assert result.current_streak == 2
        assert result.streak_bonus == 10
        assert result.points_earned == 60

    def test_first_step_badge(self, service, user):
        result = service.record_completion(user.id, "morning", D)
        assert result.new_badges == ["First Step"]
        assert UserBadge.objects.get(user=user).badge_icon == "first-step"

        assert service.record_completion(user.id, "evening", D).new_badges == []

    def test_week_warrior_badge(self, service, user):
        earned = []
        for offset in range(7):
            earned.extend(complete_day(service, user.id, D + timedelta(days=offset)).new_badges)
        assert "Week Warrior" in earned

    def test_level_up(self, service, user):
        GamificationState.objects.create(user=user, points=480)
        result = service.record_completion(user.id, "morning", D)
        assert result.level_up == "Silver"

    def test_uncomplete_routine(self, service, user):
        complete_day(service, user.id, D)
        state = service.uncomplete_routine(user.id, "evening", D, today=D)

        assert state.current_streak == 0
        assert state.total_routines_completed == 1
        assert state.last_completion_date is None
        # 50 + 55 earned, one base award taken back
        assert state.points == 55

    def test_uncomplete_missing_routine(self, service, user):
        assert service.uncomplete_routine(user.id, "morning", D, today=D) is None

    def test_uncomplete_never_goes_negative(self, service, user):
        GamificationState.objects.create(user=user, points=10)
        RoutineCompletion.objects.create(user=user, routine_type="morning", completion_date=D)
        state = service.uncomplete_routine(user.id, "morning", D, today=D)
        assert state.points == 0
        assert state.total_routines_completed == 0

    def test_completion_history(self, service, user):
        complete_day(service, user.id, D)
        service.record_completion(user.id, "morning", D + timedelta(days=1))

        history = service.completion_history(user.id, D + timedelta(days=1), days=3)

        assert history == [
            {"date": "2025-01-09", "morning": False, "evening": False, "complete": False},
            {"date": "2025-01-10", "morning": True, "evening": True, "complete": True},
            {"date": "2025-01-11", "morning": True, "evening": False, "complete": False},
        ]
