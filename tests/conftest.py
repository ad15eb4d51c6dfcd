"""
Pytest fixtures for visitor monitoring tests.

Two protocol teams (Alpha and Beta) with their own staff, a bishop, and
factories for visitors in any point of the monitoring lifecycle. Every
test that depends on the clock uses the fixed ``now`` fixture.
"""
from datetime import datetime, timedelta, timezone as dt_timezone

import pytest
from django.core.cache import cache
from django.test import Client
from django.contrib.auth import get_user_model

User = get_user_model()

NOW = datetime(2025, 6, 15, 18, 0, tzinfo=dt_timezone.utc)


# Disable SSL redirect and other production security settings for tests
@pytest.fixture(autouse=True)
def disable_ssl_redirect(settings):
    """Disable SSL redirect for all tests."""
    settings.SECURE_SSL_REDIRECT = False
    settings.SECURE_PROXY_SSL_HEADER = None
    settings.SESSION_COOKIE_SECURE = False
    settings.CSRF_COOKIE_SECURE = False


@pytest.fixture(autouse=True)
def clear_cache():
    """The sweep lock lives in the default cache; start every test without it."""
    cache.clear()
    yield
    cache.clear()


@pytest.fixture
def now():
    """Fixed reference time (mid-month, midday in the project time zone)."""
    return NOW


def _make_user(username, role, **extra):
    user = User.objects.create_user(
        username=username,
        email=username,
        password='testpass123',
        role=role,
        **extra,
    )
    return user


@pytest.fixture
def bishop(db):
    """Create the bishop, who sees every team."""
    return _make_user('bishop@church.org', 'bishop', display_name='Bishop Grace')


@pytest.fixture
def leader_alpha(db):
    return _make_user('leader@alpha.org', 'protocol_leader', display_name='Alice Leader')


@pytest.fixture
def member_alpha(db):
    return _make_user('member@alpha.org', 'protocol_member', display_name='Andy Member')


@pytest.fixture
def leader_beta(db):
    return _make_user('leader@beta.org', 'protocol_leader', display_name='Bob Leader')


@pytest.fixture
def team_alpha(db, bishop, leader_alpha, member_alpha):
    """Create Protocol Team Alpha with a leader and one member."""
    from outreach.models import ProtocolTeam

    team = ProtocolTeam.objects.create(
        name='Alpha Team',
        description='Sunday welcome desk',
        leader=leader_alpha,
        responsibilities=['Greeting', 'Follow-up calls'],
        created_by=bishop,
    )
    team.members.add(member_alpha)
    return team


@pytest.fixture
def team_beta(db, bishop, leader_beta):
    """Create Protocol Team Beta with only its leader."""
    from outreach.models import ProtocolTeam

    return ProtocolTeam.objects.create(
        name='Beta Team',
        leader=leader_beta,
        created_by=bishop,
    )


@pytest.fixture
def make_visitor(db, team_alpha, now):
    """
    Factory for visitors.

    ``monitoring_start`` makes the visitor joining with an 84-day window,
    the 12 milestones and an empty checklist, as promotion would.
    """
    from outreach.models import IntegrationChecklist, Milestone, Visitor

    counter = {'n': 0}

    def _make(name=None, team=None, member=None, created_at=None, monitoring_start=None,
              monitoring_status='active', visitor_type='first-time', **extra):
        counter['n'] += 1
        team = team or team_alpha
        fields = {
            'name': name or f"Visitor {counter['n']}",
            'email': f"visitor{counter['n']}@example.com",
            'visitor_type': visitor_type,
            'protocol_team': team,
            'assigned_protocol_member': member or team.leader,
            'created_at': created_at or now - timedelta(days=10),
        }
        if monitoring_start is not None:
            fields.update(
                status='joining',
                monitoring_start_date=monitoring_start,
                monitoring_end_date=monitoring_start + timedelta(days=84),
                monitoring_status=monitoring_status,
            )
            if created_at is None:
                fields['created_at'] = monitoring_start
        fields.update(extra)

        visitor = Visitor.objects.create(**fields)
        if monitoring_start is not None:
            Milestone.objects.bulk_create([Milestone(visitor=visitor, week=w) for w in range(1, 13)])
            IntegrationChecklist.objects.create(visitor=visitor)
        return visitor

    return _make


@pytest.fixture
def add_visits():
    """Append visit records: ``add_visits(visitor, [date, ...], 'present')``."""
    from outreach.models import VisitRecord

    def _add(visitor, dates, attendance_status='present', event_type='Sunday Service'):
        return [
            VisitRecord.objects.create(
                visitor=visitor,
                date=date,
                event_type=event_type,
                attendance_status=attendance_status,
            )
            for date in dates
        ]

    return _add


@pytest.fixture
def complete_milestones():
    """Mark the first ``count`` milestones of a visitor completed."""
    from outreach.models import Milestone

    def _complete(visitor, count, when=None):
        weeks = range(1, count + 1)
        Milestone.objects.filter(visitor=visitor, week__in=weeks).update(
            completed=True, completed_date=when
        )

    return _complete


@pytest.fixture
def client_for():
    """Return a test client logged in as the given user."""
    def _client(user):
        client = Client()
        client.force_login(user)
        return client
    return _client
