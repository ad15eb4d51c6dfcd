"""
Tests for the public interface: caching, timeouts and error signalling.
"""
from datetime import timedelta

import pytest
from django.utils import timezone

from outreach import api
from outreach.exceptions import AggregationTimeout, NotFoundError, StaleAggregateWarning, ValidationError
from outreach.models import ReportCache


@pytest.mark.django_db
class TestVisitorMetrics:

    def test_flat_metrics(self, make_visitor, add_visits, complete_milestones, now):
        visitor = make_visitor(monitoring_start=now - timedelta(days=14))
        add_visits(visitor, [now - timedelta(days=7)], 'present')
        add_visits(visitor, [now - timedelta(days=1)], 'absent')
        complete_milestones(visitor, 2)

        assert api.get_visitor_metrics(visitor.pk, now=now) == {
            'visitor_id': visitor.pk,
            'status': 'joining',
            'monitoring_status': 'active',
            'attendance_rate': 50,
            'monitoring_progress': 17,
            'integration_progress': 0,
            'days_remaining': 70,
        }

    def test_visiting_visitor_has_no_days_remaining(self, make_visitor, now):
        assert api.get_visitor_metrics(make_visitor().pk, now=now)['days_remaining'] is None

    def test_unknown_visitor(self, db):
        with pytest.raises(NotFoundError):
            api.get_visitor_metrics(424242)

    def test_profile_metrics_include_alerts(self, make_visitor, now):
        visitor = make_visitor(monitoring_start=now - timedelta(days=64), monitoring_status='needs-attention')

        profile = api.get_visitor_profile_metrics(visitor.pk, now=now)

        assert profile['engagement']['total_feedback'] == 0
        assert profile['alerts'][0]['message'] == 'Visitor flagged for attention'


@pytest.mark.django_db
class TestAggregateCaching:

    def test_team_analytics_is_cached(self, make_visitor, team_alpha, now):
        make_visitor()

        first = api.get_team_analytics(team_alpha.pk, now=now)
        make_visitor()
        second = api.get_team_analytics(team_alpha.pk, now=now)

        assert first['stale'] is False
        assert second['statistics']['total_visitors'] == 1
        assert ReportCache.objects.filter(report_type='team_analytics').count() == 1

    def test_bypass_cache(self, make_visitor, team_alpha, now):
        make_visitor()
        api.get_team_analytics(team_alpha.pk, now=now)
        make_visitor()

        fresh = api.get_team_analytics(team_alpha.pk, now=now, use_cache=False)

        assert fresh['statistics']['total_visitors'] == 2

    def test_sweep_invalidates_cache(self, make_visitor, complete_milestones, team_alpha, now):
        visitor = make_visitor(monitoring_start=now - timedelta(days=84))
        complete_milestones(visitor, 12)
        before = api.get_team_analytics(team_alpha.pk, now=now)

        result = api.run_lifecycle_sweep(now=now)
        after = api.get_team_analytics(team_alpha.pk, now=now)

        assert result['transitions'] == {'completed': 1}
        assert before['statistics']['completed_monitoring'] == 0
        assert after['statistics']['completed_monitoring'] == 1

    def test_results_are_json_ready(self, make_visitor, team_alpha, now):
        make_visitor()

        report = api.get_team_analytics(team_alpha.pk, now=now)

        assert report['generated_at'] == now.isoformat()
        assert isinstance(report['monthly_growth'][0]['month_start'], str)

    def test_months_window_out_of_range(self, team_alpha, now):
        with pytest.raises(ValidationError):
            api.get_team_analytics(team_alpha.pk, months_window=30000, now=now, use_cache=False)

    def test_unknown_team(self, db):
        with pytest.raises(NotFoundError):
            api.get_team_analytics(999)
        with pytest.raises(NotFoundError):
            api.get_support_actions(team_id=999)


@pytest.mark.django_db
class TestAggregateTimeouts:

    def test_timeout_without_cached_copy(self, make_visitor, team_alpha, now):
        make_visitor()

        with pytest.raises(AggregationTimeout):
            api.get_team_analytics(team_alpha.pk, now=now, timeout=0)
        assert not ReportCache.objects.exists()

    def test_timeout_serves_stale_copy(self, make_visitor, team_alpha, now):
        make_visitor()
        api.get_church_analytics(now=now)
        ReportCache.objects.update(expires_at=timezone.now() - timedelta(minutes=1))

        with pytest.warns(StaleAggregateWarning):
            report = api.get_church_analytics(now=now, timeout=0)

        assert report['stale'] is True
        assert report['church_stats']['total_visitors'] == 1

    def test_fresh_copy_is_served_before_any_timeout(self, make_visitor, team_alpha, now):
        make_visitor()
        api.get_church_analytics(now=now)

        report = api.get_church_analytics(now=now, timeout=0)

        assert report['stale'] is False

    def test_unexpired_copy_is_not_stale_when_bypassing_cache(self, make_visitor, team_alpha, now, recwarn):
        make_visitor()
        api.get_church_analytics(now=now)

        report = api.get_church_analytics(now=now, timeout=0, use_cache=False)

        assert report['stale'] is False
        assert not [w for w in recwarn if issubclass(w.category, StaleAggregateWarning)]


@pytest.mark.django_db
class TestSupportAndAlerts:

    def test_support_actions_for_one_team(self, make_visitor, team_alpha, team_beta, now):
        make_visitor(team=team_alpha)
        make_visitor(team=team_beta)

        report = api.get_support_actions(team_id=team_beta.pk, now=now)

        assert report['team_id'] == team_beta.pk
        assert {n['team_id'] for n in report['training_needs']} == {team_beta.pk}
        assert report['summary']['total_teams'] == 2

    def test_engagement_report_is_serialized(self, team_alpha, now):
        report = api.get_team_engagement_report(team_alpha.pk, 'monthly', now=now)

        assert report['date_to'] == now.isoformat()

    def test_deadline_alerts(self, make_visitor, now):
        make_visitor(monitoring_start=now - timedelta(days=80))

        report = api.get_deadline_alerts(now=now)

        assert report['summary']['critical_count'] == 1
        assert isinstance(report['visitors']['critical'][0]['monitoring_end_date'], str)

    def test_visitor_alerts(self, make_visitor, add_visits, now):
        visitor = make_visitor(monitoring_start=now - timedelta(days=30))
        add_visits(visitor, [now - timedelta(days=20)])

        alerts = api.get_visitor_alerts(visitor.pk, now=now)

        assert alerts['visitor_id'] == visitor.pk
        assert alerts['alerts'][0]['priority'] == 'high'

    def test_team_visitor_alerts(self, make_visitor, add_visits, team_alpha, team_beta, now):
        quiet = make_visitor(monitoring_start=now - timedelta(days=30))
        add_visits(quiet, [now - timedelta(days=20)])
        engaged = make_visitor(monitoring_start=now - timedelta(days=10))
        add_visits(engaged, [now - timedelta(days=3)])
        other_team = make_visitor(team=team_beta, monitoring_start=now - timedelta(days=30))
        add_visits(other_team, [now - timedelta(days=20)])

        report = api.get_team_visitor_alerts(team_alpha.pk, now=now)

        assert report['team_id'] == team_alpha.pk
        assert [entry['visitor_id'] for entry in report['alerts']] == [quiet.pk]
        assert report['summary']['high_priority_alerts'] == 1
        assert report['skipped_records'] == 0
        assert report['generated_at'] == now.isoformat()
