# users/management/commands/generate_test_users.py
import random
from datetime import time, timedelta
from django.core.management.base import BaseCommand
from django.db import transaction
from django.db.models import Count
from django.utils import timezone
from faker import Faker
from routines.models import RoutineCompletion
from services.capability.capability_probe import validate_phone_number
from services.gamification.streak_service import StreakService
from users.models import Appointment, User, NotificationPreference
import logging

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(message)s'
)

logger = logging.getLogger(__name__)

TIMEZONES = [
    'America/New_York',
    'America/Chicago',
    'America/Denver',
    'America/Los_Angeles'
]
AM_TIMES = [time(6, 30), time(7, 0), time(7, 30), time(8, 0)]
PM_TIMES = [time(19, 0), time(20, 0), time(21, 0), time(22, 0)]
PRODUCTS = ['cleanser', 'toner', 'serum', 'moisturizer', 'spf', 'retinol', 'eye cream']


class Command(BaseCommand):
    help = 'Generates test clients with notification preferences, routine history and appointments'

    def add_arguments(self, parser):
        parser.add_argument('--count', type=int, default=150, help='Number of clients to generate')
        parser.add_argument('--sms-ratio', type=float, default=0.3, help='Share of clients opted in to SMS')
        parser.add_argument(
            '--history-days',
            type=int,
            default=0,
            help='Days of past routine completions to seed per client'
        )
        parser.add_argument(
            '--appointment-ratio',
            type=float,
            default=0.0,
            help='Share of clients with an appointment in the next two days'
        )

    def handle(self, *args, **options):
        self.fake = Faker()
        count = options['count']

        with transaction.atomic():
            clients = self.create_clients(count)
            sms_count = self.create_preferences(clients, options['sms_ratio'])
            if options['appointment_ratio'] > 0:
                self.create_appointments(clients, options['appointment_ratio'])

        # completions go through the streak service so points and badges line up
        if options['history_days'] > 0:
            self.seed_routine_history(clients, options['history_days'])

        self.stdout.write(
            self.style.SUCCESS(
                f'Successfully created {len(clients)} users with {sms_count} opted-in for SMS'
            )
        )
        self.log_distribution_stats()

    def create_clients(self, count):
        clients = []
        for batch_start in range(0, count, 20):
            batch_end = min(batch_start + 20, count)
            logger.info(f"Generating clients {batch_start + 1} to {batch_end}")
            batch = []
            for _ in range(batch_start, batch_end):
                phone = validate_phone_number(self.fake.numerify('##########'))
                batch.append(User(
                    name=self.fake.name(),
                    email=self.fake.unique.email(),
                    phone=phone.formatted if phone.valid else '',
                    role=User.Role.CLIENT
                ))
            clients.extend(User.objects.bulk_create(batch))
        return clients

    def create_preferences(self, clients, sms_ratio):
        preferences = []
        for client in clients:
            wants_sms = bool(client.phone) and random.random() < sms_ratio
            preferences.append(NotificationPreference(
                user=client,
                timezone=random.choice(TIMEZONES),
                am_reminder_time=random.choice(AM_TIMES),
                pm_reminder_time=random.choice(PM_TIMES),
                streak_warning_hours=random.randint(1, 4),
                sms_enabled=wants_sms,
                phone_number=client.phone if wants_sms else None,
                # push needs a browser subscription, which generated clients never have
                push_enabled=False
            ))
        NotificationPreference.objects.bulk_create(preferences)
        return sum(1 for preference in preferences if preference.sms_enabled)

    def create_appointments(self, clients, ratio):
        now = timezone.now()
        appointments = [
            Appointment(
                client=client,
                professional_name=self.fake.name(),
                starts_at=now + timedelta(hours=random.randint(2, 48)),
            )
            for client in clients if random.random() < ratio
        ]
        Appointment.objects.bulk_create(appointments)
        logger.info(f"Scheduled {len(appointments)} appointments")

    def seed_routine_history(self, clients, days):
        streak_service = StreakService()
        today = timezone.now().date()
        for client in clients:
            diligence = random.uniform(0.5, 1.0)
            for offset in range(days, 0, -1):
                completion_date = today - timedelta(days=offset)
                for routine_type in RoutineCompletion.RoutineType.values:
                    if random.random() < diligence:
                        streak_service.record_completion(
                            client.id,
                            routine_type,
                            completion_date,
                            random.sample(PRODUCTS, k=3),
                        )
        logger.info(f"Seeded {days} days of routine history for {len(clients)} clients")

    def log_distribution_stats(self):
        """Log how generated clients are spread over timezones and channels"""
        total_users = NotificationPreference.objects.count()
        if not total_users:
            return

        logger.info("\nTimezone Distribution:")
        for stat in NotificationPreference.objects.values('timezone').annotate(count=Count('id')):
            percentage = (stat['count'] / total_users) * 100
            logger.info(f"{stat['timezone']}: {stat['count']} users ({percentage:.1f}%)")

        sms_enabled = NotificationPreference.objects.filter(sms_enabled=True).count()
        logger.info("\nNotification Channels:")
        logger.info(f"SMS enabled: {sms_enabled}")
        logger.info(f"In-app only: {total_users - sms_enabled}")
