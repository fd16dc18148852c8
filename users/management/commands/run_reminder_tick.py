# run_reminder_tick.py
from django.core.management.base import BaseCommand
import asyncio
from users.management.reminder_tick_runner import ReminderTickRunner
from services.tick.reminder_tick import ReminderTick
import logging

logger = logging.getLogger(__name__)


class Command(BaseCommand):
    help = 'Runs one reminder tick: evaluates and dispatches due notifications for every user'

    def add_arguments(self, parser):
        parser.add_argument(
            '--user',
            type=int,
            help='Only run the tick for this user id'
        )
        parser.add_argument(
            '--batch-size',
            type=int,
            help='Users read per batch'
        )

    def handle(self, *args, **options):
        self.stdout.write(self.style.SUCCESS('Starting reminder tick...'))

        try:
            # Create a new event loop
            loop = asyncio.new_event_loop()
            asyncio.set_event_loop(loop)

            async def run():
                tick = ReminderTick()
                if options['user']:
                    report = await tick.run_for_user(options['user'])
                    for result in report.results:
                        self.stdout.write(
                            f"  {result.category.value}/{result.channel.value} "
                            f"[{result.period_key}]: {result.outcome.value}"
                            + (f" ({result.error})" if result.error else '')
                        )
                    return

                runner = ReminderTickRunner(tick, batch_size=options['batch_size'])
                metrics = await runner.process_all_users()
                self.stdout.write(
                    f"Users: {metrics['users_processed']}, Sent: {metrics['notifications_sent']}, "
                    f"Failed: {metrics['notifications_failed']}, Skipped: {metrics['notifications_skipped']}, "
                    f"Errors: {metrics['errors']}"
                )

            loop.run_until_complete(run())
            loop.close()

            self.stdout.write(self.style.SUCCESS('Reminder tick complete'))

        except Exception as e:
            self.stdout.write(
                self.style.ERROR(f'Reminder tick failed: {str(e)}')
            )
            raise
