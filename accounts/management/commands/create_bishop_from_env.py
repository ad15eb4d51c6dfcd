"""
Management command to create the bishop account from environment variables.
Used for deployments where interactive commands aren't available.

The bishop is a Django superuser with the 'bishop' role: it uses the admin,
reads church-wide analytics and triggers lifecycle sweeps. An existing
account is only promoted when it is not a visitor login and does not serve
on a protocol team, since team staff and visitors are scoped to their own
records.
"""
import os

from django.contrib.auth import get_user_model
from django.core.management.base import BaseCommand, CommandError
from django.db import transaction

from outreach.models import ProtocolTeam


class Command(BaseCommand):
    help = 'Create or refresh the bishop superuser from DJANGO_SUPERUSER_* environment variables'

    def add_arguments(self, parser):
        parser.add_argument(
            '--display-name',
            default=os.environ.get('BISHOP_DISPLAY_NAME', ''),
            help='Name shown on reports and status changes (default: BISHOP_DISPLAY_NAME)',
        )

    def handle(self, *args, **options):
        User = get_user_model()

        username = os.environ.get('DJANGO_SUPERUSER_USERNAME')
        email = os.environ.get('DJANGO_SUPERUSER_EMAIL')
        password = os.environ.get('DJANGO_SUPERUSER_PASSWORD')
        display_name = options['display_name'].strip()

        if not all([username, email, password]):
            self.stdout.write(
                self.style.WARNING(
                    'Skipping bishop creation: DJANGO_SUPERUSER_USERNAME, '
                    'DJANGO_SUPERUSER_EMAIL, and DJANGO_SUPERUSER_PASSWORD '
                    'environment variables are required.'
                )
            )
            return

        with transaction.atomic():
            user = User.objects.filter(username=username).first()
            if user is None:
                user = User.objects.create_superuser(
                    username=username, email=email, password=password, role='bishop'
                )
                action = 'created'
            else:
                self._check_promotable(user)
                previous_role = user.role
                user.set_password(password)
                user.email = email
                user.is_staff = True
                user.is_superuser = True
                user.role = 'bishop'
                action = 'refreshed' if previous_role == 'bishop' else f'promoted from {previous_role}'

            if display_name:
                user.display_name = display_name
            user.save()

        team_count = ProtocolTeam.objects.filter(is_active=True).count()
        self.stdout.write(self.style.SUCCESS(f'Bishop "{user}" {action}.'))
        self.stdout.write(f'{team_count} active protocol teams are visible to the bishop.')

    def _check_promotable(self, user):
        if user.is_visitor:
            raise CommandError(
                f'"{user.username}" is a visitor login and cannot become the bishop.'
            )
        teams = list(user.get_protocol_teams().values_list('name', flat=True))
        if teams:
            raise CommandError(
                f'"{user.username}" serves on protocol teams ({", ".join(teams)}); '
                'reassign those teams before promoting them to bishop.'
            )
