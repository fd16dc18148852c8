from datetime import datetime
from typing import List, Optional
import logging
import time
from asgiref.sync import sync_to_async
from django.conf import settings
from django.utils import timezone as django_timezone

from services.decision_engine.reminder_decision_engine import local_date_for
from services.delivery.DeliveryOutcome import DeliveryOutcome
from services.exceptions import NotFoundError
from services.tick.reminder_tick import ReminderTick
from users.models import NotificationPreference

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


class ReminderTickRunner:
    def __init__(self, tick: Optional[ReminderTick] = None, batch_size: Optional[int] = None):
        self.tick = tick or ReminderTick()
        self.batch_size = batch_size or settings.TICK_BATCH_SIZE
        self.metrics = {
            'users_processed': 0,
            'notifications_sent': 0,
            'notifications_failed': 0,
            'notifications_skipped': 0,
            'errors': 0,
            'start_time': None
        }

    @sync_to_async
    def _get_preferences_batch(self, offset: int, batch_size: int) -> List[NotificationPreference]:
        """Get a batch of notification preferences, grouped by timezone"""
        return list(NotificationPreference.objects
                    .filter(user__is_active=True)
                    .order_by('timezone', 'user_id')[offset:offset + batch_size])

    async def _process_user(self, user_id: int, now: datetime):
        report = await self.tick.run_for_user(user_id, now)
        self.metrics['users_processed'] += 1
        self.metrics['notifications_sent'] += report.count(DeliveryOutcome.SENT)
        self.metrics['notifications_failed'] += report.count(DeliveryOutcome.FAILED)
        self.metrics['notifications_skipped'] += report.count(DeliveryOutcome.SKIPPED)
        return report

    async def process_all_users(self, now: Optional[datetime] = None):
        """Run one reminder tick for every user with preferences"""
        try:
            now = now or django_timezone.now()
            self.metrics['start_time'] = time.time()
            logger.info(f"Starting reminder tick at {now.isoformat()}")

            offset = 0

            while True:
                preferences = await self._get_preferences_batch(offset, self.batch_size)

                if not preferences:
                    break

                # Group users by timezone
                timezone_groups = {}
                for preference in preferences:
                    if preference.timezone not in timezone_groups:
                        timezone_groups[preference.timezone] = []
                    timezone_groups[preference.timezone].append(preference.user_id)

                for timezone, user_ids in timezone_groups.items():
                    logger.info(
                        f"Processing {len(user_ids)} users for timezone {timezone} "
                        f"(local date: {local_date_for(timezone, now)})")

                    for user_id in user_ids:
                        try:
                            await self._process_user(user_id, now)
                        except NotFoundError as e:
                            # preferences deleted between batch read and tick
                            logger.warning(str(e))
                            continue
                        except Exception as e:
                            logger.error(f"Error running reminder tick for user {user_id}: {str(e)}")
                            self.metrics['errors'] += 1
                            continue

                offset += self.batch_size
                self._log_metrics()

            logger.info("Completed reminder tick")
            self._log_metrics()
            return self.metrics

        except Exception as e:
            self.metrics['errors'] += 1
            logger.error(f"Error processing reminder tick: {str(e)}")
            raise

    def _log_metrics(self):
        """Log current metrics"""
        if self.metrics['start_time'] is None:
            return

        runtime = time.time() - self.metrics['start_time']
        logger.info(
            f"Tick Metrics - Users Processed: {self.metrics['users_processed']}, "
            f"Sent: {self.metrics['notifications_sent']}, "
            f"Failed: {self.metrics['notifications_failed']}, "
            f"Skipped: {self.metrics['notifications_skipped']}, "
            f"Errors: {self.metrics['errors']}, "
            f"Runtime: {runtime:.2f}s"
        )
