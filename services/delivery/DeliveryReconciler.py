import logging
from datetime import datetime, timedelta
from typing import Iterable, Optional, Set

from django.db import IntegrityError, transaction
from django.db.models import F, Q
from django.utils import timezone as django_timezone

from notification_center.models import DeliveryRecord
from services.decision_engine.NotificationCategory import Channel, NotificationCategory
from services.delivery.DeliveryOutcome import DeliveryOutcome
from services.preferences.preference_store import PreferenceStore

logger = logging.getLogger(__name__)


class DeliveryReconciler:
    """Owns DeliveryRecord rows, the dedup barrier between ticks.

    A send is only attempted after `claim` wins the (user, category, channel,
    period_key) row. Claiming is an insert against the unique constraint, or
    a conditional update of a failed/skipped/stale row, so two overlapping
    ticks can never both own the same delivery. No lock is held while the
    provider call is in flight.
    """

    def __init__(self, preference_store: Optional[PreferenceStore] = None, stale_after_seconds: int = 300):
        self.preference_store = preference_store or PreferenceStore()
        self.stale_after = timedelta(seconds=stale_after_seconds)

    def _key_filter(self, user_id: int, category: NotificationCategory, channel: Channel, period_key: str):
        return DeliveryRecord.objects.filter(
            user_id=user_id,
            category=category.value,
            channel=channel.value,
            period_key=period_key,
        )

    def sent_keys(self, user_id: int, period_keys: Iterable[str]) -> Set[tuple]:
        rows = DeliveryRecord.objects.filter(
            user_id=user_id,
            period_key__in=list(period_keys),
            outcome=DeliveryRecord.Outcome.SENT,
        ).values_list('category', 'channel', 'period_key')
        return set(rows)

    def claim(self, user_id: int, category: NotificationCategory, channel: Channel,
              period_key: str, now: datetime) -> bool:
        try:
            with transaction.atomic():
                DeliveryRecord.objects.create(
                    user_id=user_id,
                    category=category.value,
                    channel=channel.value,
                    period_key=period_key,
                    outcome=DeliveryRecord.Outcome.PENDING,
                    claimed_at=now,
                    attempt_count=1,
                )
            return True
        except IntegrityError:
            pass

        # Row exists: retry after a failure/skip, or take over a claim whose worker died
        reclaimed = self._key_filter(user_id, category, channel, period_key).filter(
            Q(outcome__in=[DeliveryRecord.Outcome.FAILED, DeliveryRecord.Outcome.SKIPPED])
            | Q(outcome=DeliveryRecord.Outcome.PENDING, claimed_at__lt=now - self.stale_after)
        ).update(
            outcome=DeliveryRecord.Outcome.PENDING,
            claimed_at=now,
            attempt_count=F('attempt_count') + 1,
            error=None,
            updated_at=now,
        )

        if not reclaimed:
            logger.info(
                f"Delivery {category.value}/{channel.value}/{period_key} for user {user_id} "
                f"already claimed or sent, skipping"
            )
        return reclaimed == 1

    def record(self, user_id: int, category: NotificationCategory, channel: Channel,
               period_key: str, outcome: DeliveryOutcome, error: Optional[str] = None,
               now: Optional[datetime] = None, claimed: bool = False) -> None:
        """Settle a delivery. `claimed` is set when the caller owns the pending row."""
        now = now or django_timezone.now()
        records = self._key_filter(user_id, category, channel, period_key)

        if outcome == DeliveryOutcome.SKIPPED and not claimed:
            # A skip never overwrites a send or an in-flight claim
            try:
                with transaction.atomic():
                    DeliveryRecord.objects.create(
                        user_id=user_id,
                        category=category.value,
                        channel=channel.value,
                        period_key=period_key,
                        outcome=DeliveryRecord.Outcome.SKIPPED,
                        error=error,
                    )
            except IntegrityError:
                records.exclude(
                    outcome__in=[DeliveryRecord.Outcome.SENT, DeliveryRecord.Outcome.PENDING]
                ).update(outcome=DeliveryRecord.Outcome.SKIPPED, error=error, updated_at=now)
            return

        values = {'outcome': outcome.value, 'error': error, 'updated_at': now}
        if outcome == DeliveryOutcome.SENT:
            values['last_sent_at'] = now

        updated = records.update(**values)
        if not updated:
            logger.warning(
                f"No claim found for {category.value}/{channel.value}/{period_key} "
                f"user {user_id}, recording {outcome.value} anyway"
            )
            DeliveryRecord.objects.update_or_create(
                user_id=user_id,
                category=category.value,
                channel=channel.value,
                period_key=period_key,
                defaults={**values, 'attempt_count': 1},
            )

        if outcome == DeliveryOutcome.SENT:
            self.preference_store.mark_last_sent(user_id, category, now)
        elif outcome == DeliveryOutcome.FAILED:
            logger.warning(
                f"Delivery failed for user {user_id} {category.value}/{channel.value}/{period_key}: {error}"
            )
