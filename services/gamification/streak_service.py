import logging
import math
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Any, Dict, Iterable, List, Optional, Tuple

from django.db import IntegrityError, transaction
from django.utils import timezone as django_timezone

from routines.models import GamificationState, RoutineCompletion, UserBadge

logger = logging.getLogger(__name__)

POINTS_PER_ROUTINE = 50
STREAK_BONUS_MULTIPLIER = 0.1

LEVEL_THRESHOLDS = [
    ('Bronze', 0),
    ('Silver', 500),
    ('Gold', 1500),
    ('Platinum', 3000),
    ('Diamond', 5000),
]


@dataclass(frozen=True)
class BadgeDefinition:
    name: str
    description: str
    min_streak: int = 0
    min_routines: int = 0

    @property
    def icon(self) -> str:
        return self.name.lower().replace(' ', '-')

    def earned_by(self, state: GamificationState) -> bool:
        if self.min_streak:
            return max(state.current_streak, state.longest_streak) >= self.min_streak
        return state.total_routines_completed >= self.min_routines


BADGE_DEFINITIONS = [
    BadgeDefinition('First Step', 'Complete your first routine', min_routines=1),
    BadgeDefinition('Week Warrior', 'Maintain a 7-day streak', min_streak=7),
    BadgeDefinition('Consistency Queen', 'Maintain a 14-day streak', min_streak=14),
    BadgeDefinition('Skincare Devotee', 'Maintain a 30-day streak', min_streak=30),
    BadgeDefinition('Glow Getter', 'Complete 50 routines', min_routines=50),
    BadgeDefinition('Radiance Master', 'Complete 100 routines', min_routines=100),
]


@dataclass
class CompletionResult:
    created: bool
    points_earned: int = 0
    streak_bonus: int = 0
    current_streak: int = 0
    day_complete: bool = False
    level_up: Optional[str] = None
    new_badges: List[str] = field(default_factory=list)


def calculate_level(points: int) -> str:
    level = LEVEL_THRESHOLDS[0][0]
    for name, min_points in LEVEL_THRESHOLDS:
        if points >= min_points:
            level = name
    return level


def next_streak(last_completion_date: Optional[date], day: date, current_streak: int) -> int:
    """Streak after `day` becomes a complete day"""
    if last_completion_date == day:
        return current_streak
    if last_completion_date == day - timedelta(days=1):
        return current_streak + 1
    return 1


def calculate_streaks(complete_days: Iterable[date], today: date) -> Tuple[int, int]:
    """(current, longest) streak over a set of complete days.

    The current streak only survives if the most recent complete day is today
    or yesterday; today not being done yet does not break it.
    """
    days = sorted(set(complete_days), reverse=True)
    if not days:
        return 0, 0

    current = 0
    if days[0] in (today, today - timedelta(days=1)):
        for offset, day in enumerate(days):
            if day == days[0] - timedelta(days=offset):
                current += 1
            else:
                break

    longest = 1
    run = 1
    for previous, day in zip(days, days[1:]):
        if previous - day == timedelta(days=1):
            run += 1
            longest = max(longest, run)
        else:
            run = 1

    return current, longest


class StreakService:
    """Routine completions, streaks, points, levels and badges.

    Streak state is derived from RoutineCompletion rows only; a day counts
    once every routine type the user is enrolled in is completed.
    """

    def _state(self, user_id: int, for_update: bool = False) -> GamificationState:
        state, created = GamificationState.objects.get_or_create(user_id=user_id)
        if created:
            logger.info(f"Created gamification state for user {user_id}")
        if for_update:
            state = GamificationState.objects.select_for_update().get(pk=state.pk)
        return state

    def _completed_types(self, user_id: int, day: date) -> set:
        return set(
            RoutineCompletion.objects
            .filter(user_id=user_id, completion_date=day)
            .values_list('routine_type', flat=True)
        )

    def complete_days(self, user_id: int, enrolled: Optional[Iterable[str]] = None) -> List[date]:
        if enrolled is None:
            enrolled = self._state(user_id).enrolled_routine_types
        enrolled = set(enrolled)

        by_day: Dict[date, set] = {}
        rows = RoutineCompletion.objects.filter(user_id=user_id).values_list('completion_date', 'routine_type')
        for completion_date, routine_type in rows:
            by_day.setdefault(completion_date, set()).add(routine_type)

        return sorted(day for day, types in by_day.items() if enrolled <= types)

    def is_day_complete(self, user_id: int, day: date) -> bool:
        state = GamificationState.objects.filter(user_id=user_id).first()
        enrolled = set(state.enrolled_routine_types) if state else {
            RoutineCompletion.RoutineType.MORNING.value, RoutineCompletion.RoutineType.EVENING.value
        }
        return enrolled <= self._completed_types(user_id, day)

    def award_badges(self, state: GamificationState) -> List[str]:
        earned = set(UserBadge.objects.filter(user_id=state.user_id).values_list('badge_name', flat=True))
        new_badges = []
        for badge in BADGE_DEFINITIONS:
            if badge.name in earned or not badge.earned_by(state):
                continue
            _, created = UserBadge.objects.get_or_create(
                user_id=state.user_id,
                badge_name=badge.name,
                defaults={'badge_description': badge.description, 'badge_icon': badge.icon}
            )
            if created:
                new_badges.append(badge.name)
                logger.info(f"User {state.user_id} earned badge '{badge.name}'")
        return new_badges

    @transaction.atomic
    def record_completion(self, user_id: int, routine_type: str, completion_date: date,
                          products_used: Optional[List[str]] = None) -> CompletionResult:
        state = self._state(user_id, for_update=True)

        try:
            with transaction.atomic():
                RoutineCompletion.objects.create(
                    user_id=user_id,
                    routine_type=routine_type,
                    completion_date=completion_date,
                    products_used=products_used or [],
                )
        except IntegrityError:
            logger.info(f"User {user_id} already completed {routine_type} routine on {completion_date}")
            return CompletionResult(created=False, current_streak=state.current_streak)

        day_complete = set(state.enrolled_routine_types) <= self._completed_types(user_id, completion_date)
        if day_complete:
            last = state.last_completion_date
            if last is None or completion_date >= last:
                state.current_streak = next_streak(last, completion_date, state.current_streak)
                state.last_completion_date = completion_date
            else:
                # Backfilled day: rebuild from history
                current, longest = calculate_streaks(
                    self.complete_days(user_id, state.enrolled_routine_types), last
                )
                state.current_streak = current
                state.longest_streak = max(state.longest_streak, longest)
            state.longest_streak = max(state.longest_streak, state.current_streak)

        streak_bonus = math.floor(POINTS_PER_ROUTINE * STREAK_BONUS_MULTIPLIER * state.current_streak)
        points_earned = POINTS_PER_ROUTINE + streak_bonus

        previous_level = state.level
        state.points += points_earned
        state.level = calculate_level(state.points)
        state.total_routines_completed += 1
        state.save()

        new_badges = self.award_badges(state)
        logger.info(
            f"User {user_id} completed {routine_type} routine on {completion_date}: "
            f"+{points_earned} points, streak {state.current_streak}"
        )
        return CompletionResult(
            created=True,
            points_earned=points_earned,
            streak_bonus=streak_bonus,
            current_streak=state.current_streak,
            day_complete=day_complete,
            level_up=state.level if state.level != previous_level else None,
            new_badges=new_badges,
        )

    @transaction.atomic
    def uncomplete_routine(self, user_id: int, routine_type: str, completion_date: date,
                           today: Optional[date] = None) -> Optional[GamificationState]:
        """Undo a completion. Returns None when there was nothing to undo."""
        state = self._state(user_id, for_update=True)

        deleted, _ = RoutineCompletion.objects.filter(
            user_id=user_id,
            routine_type=routine_type,
            completion_date=completion_date,
        ).delete()
        if not deleted:
            return None

        days = self.complete_days(user_id, state.enrolled_routine_types)
        current, _ = calculate_streaks(days, today or django_timezone.localdate())

        state.points = max(0, state.points - POINTS_PER_ROUTINE)
        state.level = calculate_level(state.points)
        state.total_routines_completed = max(0, state.total_routines_completed - 1)
        state.current_streak = current
        state.last_completion_date = days[-1] if days else None
        state.save()

        logger.info(f"User {user_id} uncompleted {routine_type} routine on {completion_date}")
        return state

    def evaluate_streak(self, user_id: int, today: date) -> GamificationState:
        """Reset the current streak once a full day has been missed"""
        state = self._state(user_id)
        last = state.last_completion_date
        if state.current_streak and (last is None or last < today - timedelta(days=1)):
            logger.info(f"Streak of {state.current_streak} reset for user {user_id}, last complete day {last}")
            state.current_streak = 0
            state.save(update_fields=['current_streak', 'updated_at'])
        return state

    def completion_history(self, user_id: int, today: date, days: int = 30) -> List[Dict[str, Any]]:
        start = today - timedelta(days=days - 1)
        enrolled = set(self._state(user_id).enrolled_routine_types)

        by_day: Dict[date, set] = {}
        rows = RoutineCompletion.objects.filter(
            user_id=user_id,
            completion_date__range=(start, today),
        ).values_list('completion_date', 'routine_type')
        for completion_date, routine_type in rows:
            by_day.setdefault(completion_date, set()).add(routine_type)

        history = []
        for offset in range(days):
            day = start + timedelta(days=offset)
            types = by_day.get(day, set())
            history.append({
                'date': day.isoformat(),
                'morning': RoutineCompletion.RoutineType.MORNING.value in types,
                'evening': RoutineCompletion.RoutineType.EVENING.value in types,
                'complete': bool(types) and enrolled <= types,
            })
        return history

    def stats(self, user_id: int, today: date) -> Dict[str, Any]:
        state = self.evaluate_streak(user_id, today)
        badges = UserBadge.objects.filter(user_id=user_id).order_by('earned_at')
        return {
            'user_id': user_id,
            'points': state.points,
            'level': state.level,
            'current_streak': state.current_streak,
            'longest_streak': state.longest_streak,
            'total_routines_completed': state.total_routines_completed,
            'last_completion_date': state.last_completion_date.isoformat() if state.last_completion_date else None,
            'badges': [
                {'name': b.badge_name, 'description': b.badge_description, 'icon': b.badge_icon}
                for b in badges
            ],
            'history': self.completion_history(user_id, today),
        }
