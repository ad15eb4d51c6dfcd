"""
Management command to run one lifecycle sweep over joining visitors.

Schedule it daily from cron (or the platform's cron service):

    python manage.py run_lifecycle_sweep
"""
from django.core.management.base import BaseCommand, CommandError
from django.utils import timezone
from django.utils.dateparse import parse_datetime

from outreach.exceptions import SweepInProgressError
from outreach.lifecycle import LifecycleSweeper


class Command(BaseCommand):
    help = 'Re-evaluate monitoring status for every joining visitor'

    def add_arguments(self, parser):
        parser.add_argument(
            '--now',
            help='Evaluate as of this ISO 8601 date-time instead of the current time'
        )
        parser.add_argument(
            '--workers',
            type=int,
            default=None,
            help='Number of worker threads (default: OUTREACH SWEEP_MAX_WORKERS)'
        )

    def handle(self, *args, **options):
        now = None
        if options['now']:
            now = parse_datetime(options['now'])
            if now is None:
                raise CommandError(f"Invalid --now value: {options['now']}")
            if timezone.is_naive(now):
                now = timezone.make_aware(now)

        if options['workers'] is not None and options['workers'] < 1:
            raise CommandError('--workers must be at least 1')

        try:
            result = LifecycleSweeper(now=now, max_workers=options['workers']).run()
        except SweepInProgressError as e:
            raise CommandError(str(e))

        self.stdout.write(
            self.style.SUCCESS(
                f'Evaluated {result.evaluated} visitors: {result.changed} changed, '
                f'{result.unchanged} unchanged, {len(result.failures)} skipped.'
            )
        )
        for status, count in sorted(result.transitions.items()):
            self.stdout.write(f'  -> {status}: {count}')
        for failure in result.failures:
            self.stdout.write(
                self.style.WARNING(f'  skipped visitor {failure.visitor_id}: {failure.reason}')
            )
