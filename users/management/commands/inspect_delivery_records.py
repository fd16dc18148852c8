# inspect_delivery_records.py
from django.core.management.base import BaseCommand
from django.db.models import Count
from notification_center.models import DeliveryRecord
import logging
from typing import Optional

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(message)s'
)
logger = logging.getLogger(__name__)


class Command(BaseCommand):
    help = 'Inspect and manage the delivery ledger'

    def add_arguments(self, parser):
        parser.add_argument(
            '--action',
            type=str,
            choices=['list', 'clear', 'stats'],
            default='stats',
            help='Action to perform on delivery records'
        )
        parser.add_argument(
            '--user',
            type=int,
            help='Specific user id to inspect'
        )
        parser.add_argument(
            '--period',
            type=str,
            help='Period key prefix to inspect (e.g., 2025-01-15 or appointment:42)'
        )

    def _get_records(self, user_id: Optional[int], period: Optional[str]):
        records = DeliveryRecord.objects.all()
        if user_id:
            records = records.filter(user_id=user_id)
        if period:
            records = records.filter(period_key__startswith=period)
        return records

    def handle(self, *args, **options):
        action = options['action']
        records = self._get_records(options['user'], options['period'])

        try:
            if action == 'clear':
                self._clear(records)
            elif action == 'list':
                self._list(records)
            else:  # stats
                self._show_stats(records)

        except Exception as e:
            self.stderr.write(self.style.ERROR(f'Error: {str(e)}'))
            raise

    def _clear(self, records):
        """Delete matching records so the deliveries can fire again"""
        deleted, _ = records.delete()
        self.stdout.write(self.style.SUCCESS(f'Cleared {deleted} delivery records'))

    def _list(self, records):
        for record in records.order_by('user_id', 'period_key', 'category', 'channel'):
            line = (
                f"user={record.user_id} {record.period_key} {record.category}/{record.channel}: "
                f"{record.outcome} (attempts={record.attempt_count})"
            )
            if record.error:
                line += f" error={record.error}"
            self.stdout.write(line)

    def _show_stats(self, records):
        """Show outcome distribution per channel"""
        total_stats = {outcome: 0 for outcome in DeliveryRecord.Outcome.values}

        rows = records.values('channel', 'outcome').annotate(count=Count('id')).order_by('channel', 'outcome')
        current_channel = None
        for row in rows:
            if row['channel'] != current_channel:
                current_channel = row['channel']
                self.stdout.write(self.style.SUCCESS(f'\nChannel: {current_channel}'))
            self.stdout.write(f"  {row['outcome']}: {row['count']}")
            total_stats[row['outcome']] += row['count']

        self.stdout.write(self.style.SUCCESS('\nTotal Statistics:'))
        for key, value in total_stats.items():
            self.stdout.write(f"  {key.capitalize()}: {value}")
