"""
Tests for the record store: teams, visitors, log immutability and the report cache.
"""
from datetime import timedelta

import pytest
from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import IntegrityError, transaction
from django.utils import timezone

from outreach.exceptions import ValidationError
from outreach.models import Milestone, ReportCache, VisitorSuggestion


@pytest.mark.django_db
class TestProtocolTeam:

    def test_staff_is_leader_then_members(self, team_alpha, leader_alpha, member_alpha):
        team_alpha.members.add(leader_alpha)

        assert team_alpha.get_staff() == [leader_alpha, member_alpha]
        assert team_alpha.staff_count == 2

    def test_has_member(self, team_alpha, leader_alpha, member_alpha, leader_beta):
        assert team_alpha.has_member(leader_alpha)
        assert team_alpha.has_member(member_alpha)
        assert not team_alpha.has_member(leader_beta)

    def test_user_teams(self, team_alpha, team_beta, member_alpha):
        assert list(member_alpha.get_protocol_teams()) == [team_alpha]
        assert member_alpha.belongs_to_team(team_alpha)


@pytest.mark.django_db
class TestVisitor:

    def test_email_is_lower_cased(self, make_visitor):
        visitor = make_visitor(email='MiXeD@Example.COM')
        assert visitor.email == 'mixed@example.com'

    def test_can_login_follows_status(self, make_visitor, now):
        assert make_visitor().can_login is False
        assert make_visitor(monitoring_start=now).can_login is True

    def test_save_bumps_version(self, make_visitor):
        visitor = make_visitor()
        assert visitor.version == 0

        visitor.phone = '555-0199'
        visitor.save()

        assert visitor.version == 1

    def test_assigned_member_must_be_on_team(self, make_visitor, team_alpha, leader_beta):
        visitor = make_visitor()
        visitor.assigned_protocol_member = leader_beta

        with pytest.raises(DjangoValidationError):
            visitor.clean()

    def test_monitored_queryset(self, make_visitor, now):
        from outreach.models import Visitor

        joining = make_visitor(monitoring_start=now)
        make_visitor()

        assert list(Visitor.objects.monitored()) == [joining]

    def test_one_milestone_per_week(self, make_visitor, now):
        visitor = make_visitor(monitoring_start=now)

        with pytest.raises(IntegrityError), transaction.atomic():
            Milestone.objects.create(visitor=visitor, week=3)

    def test_feedback_is_append_only(self, make_visitor):
        suggestion = VisitorSuggestion.objects.create(visitor=make_visitor(), message='Hi', category='other')

        suggestion.message = 'Edited'
        with pytest.raises(ValidationError):
            suggestion.save()


@pytest.mark.django_db
class TestReportCache:

    def test_set_and_get(self):
        ReportCache.set_cached_report('team_analytics', {'value': 1}, {'team_id': 1})

        assert ReportCache.get_cached_report('team_analytics', {'team_id': 1}) == {'value': 1}
        assert ReportCache.get_cached_report('team_analytics', {'team_id': 2}) is None

    def test_set_replaces_previous_entry(self):
        ReportCache.set_cached_report('team_analytics', {'value': 1}, {'team_id': 1})
        ReportCache.set_cached_report('team_analytics', {'value': 2}, {'team_id': 1})

        assert ReportCache.objects.count() == 1
        assert ReportCache.get_cached_report('team_analytics', {'team_id': 1}) == {'value': 2}

    def test_expired_entries(self):
        entry = ReportCache.set_cached_report('church_analytics', {'value': 1})
        ReportCache.objects.filter(pk=entry.pk).update(expires_at=timezone.now() - timedelta(seconds=1))

        assert ReportCache.get_cached_report('church_analytics') is None
        assert ReportCache.get_latest_report('church_analytics').data == {'value': 1}
        assert ReportCache.clear_expired() == 1

    def test_clear_all_by_type(self):
        ReportCache.set_cached_report('church_analytics', {})
        ReportCache.set_cached_report('support_actions', {})

        assert ReportCache.clear_all('support_actions') == 1
        assert ReportCache.clear_all() == 1


@pytest.mark.django_db
class TestAdmin:

    def test_bishop_admin_pages(self, client_for, make_visitor, team_alpha, now):
        from accounts.models import User

        admin = User.objects.create_superuser(username='root@church.org', password='testpass123')
        visitor = make_visitor(monitoring_start=now)
        client = client_for(admin)

        assert client.get('/admin/outreach/visitor/').status_code == 200
        assert client.get(f'/admin/outreach/visitor/{visitor.pk}/change/').status_code == 200
        assert client.get(f'/admin/outreach/protocolteam/{team_alpha.pk}/change/').status_code == 200
        assert client.get('/admin/outreach/reportcache/').status_code == 200

    def test_monitoring_status_is_read_only(self, client_for, make_visitor, now):
        from accounts.models import User

        admin = User.objects.create_superuser(username='root@church.org', password='testpass123')
        visitor = make_visitor(monitoring_start=now)

        response = client_for(admin).get(f'/admin/outreach/visitor/{visitor.pk}/change/')

        assert 'monitoring_status' not in response.context['adminform'].form.fields

    def test_flag_action_records_override_kept_by_sweep(self, client_for, make_visitor, add_visits, now):
        from accounts.models import User
        from outreach.lifecycle import LifecycleSweeper

        admin = User.objects.create_superuser(username='root@church.org', password='testpass123')
        visitor = make_visitor(monitoring_start=now - timedelta(days=30))
        add_visits(visitor, [now - timedelta(days=2)])

        response = client_for(admin).post('/admin/outreach/visitor/', {
            'action': 'flag_needs_attention',
            '_selected_action': [visitor.pk],
        })
        LifecycleSweeper(now=now).run()

        assert response.status_code == 302
        visitor.refresh_from_db()
        assert visitor.monitoring_status == 'needs-attention'
        assert visitor.status_overridden_by == admin
        assert visitor.status_changes.filter(source='manual').count() == 1
