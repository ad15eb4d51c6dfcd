"""
Tests for support actions and visitor alerts.
"""
from datetime import datetime, timedelta, timezone as dt_timezone

import pytest

from outreach.conf import get_config
from outreach.metrics import MilestoneEntry, VisitEntry, VisitorSnapshot
from outreach.support import (
    RECOGNITION_TYPES,
    SupportActionGenerator,
    deadline_alerts,
    team_visitor_alerts,
    visitor_alerts,
)

NOW = datetime(2025, 6, 15, 18, 0, tzinfo=dt_timezone.utc)


def _team(team_id, conversion_rate=50, total_visitors=10, growth_trend=0.0, direction='stable',
          at_risk=None, score=50):
    return {
        'team': {'id': team_id, 'name': f'Team {team_id}', 'leader': f'Leader {team_id}'},
        'statistics': {
            'total_visitors': total_visitors,
            'joining_visitors': total_visitors // 2,
            'active_monitoring': 2,
            'conversion_rate': conversion_rate,
        },
        'growth_trend': growth_trend,
        'trend_direction': direction,
        'performance_score': score,
        'visitors_at_risk': at_risk or [],
        'engagement': {'average_attendance_rate': 75, 'average_monitoring_progress': 40},
    }


def _church(*teams):
    ordered = sorted(teams, key=lambda t: (-t['performance_score'], t['team']['id']))
    return {
        'church_stats': {'average_conversion_rate': 50},
        'team_analytics': list(teams),
        'team_rankings': [{'team_id': t['team']['id']} for t in ordered],
        'generated_at': NOW,
    }


def _snapshot(visits=(), monitoring_status='active', started_days_ago=40, completed=0):
    return VisitorSnapshot(
        visitor_id=7,
        name='Test Visitor',
        email='test@example.com',
        team_id=1,
        assigned_member_id=1,
        status='joining',
        monitoring_status=monitoring_status,
        monitoring_start_date=NOW - timedelta(days=started_days_ago),
        monitoring_end_date=NOW + timedelta(days=84 - started_days_ago),
        visits=tuple(visits),
        milestones=tuple(MilestoneEntry(w, w <= completed) for w in range(1, 13)),
    )


def _weekly(*statuses, last_days_ago=3):
    count = len(statuses)
    return [
        VisitEntry(NOW - timedelta(days=last_days_ago + 7 * (count - 1 - i)), 'Sunday Service', status)
        for i, status in enumerate(statuses)
    ]


class TestSupportActions:

    def test_declining_teams_need_support(self):
        church = _church(
            _team(1, growth_trend=-25.0, direction='declining'),
            _team(2, growth_trend=-10.0, direction='declining'),
            _team(3, growth_trend=2.0, direction='stable'),
        )

        actions = SupportActionGenerator(church).support_actions()

        assert [(a['team_id'], a['priority']) for a in actions] == [(1, 'High'), (2, 'Medium')]
        assert actions[0]['recommended_actions']

    def test_training_needs(self):
        church = _church(
            _team(1, conversion_rate=10),
            _team(2, conversion_rate=20),
            _team(3, conversion_rate=30),
            _team(4, conversion_rate=0, total_visitors=0),
        )

        needs = SupportActionGenerator(church).training_needs()

        assert [(n['team_id'], n['priority']) for n in needs] == [(1, 'High'), (2, 'Medium')]
        assert needs[1]['shortfall'] == 10

    def test_monitoring_alerts_for_teams_with_risky_visitors(self):
        at_risk = [{'visitor_id': 11, 'name': 'Quiet Visitor'}]
        church = _church(_team(1, at_risk=at_risk), _team(2))

        alerts = SupportActionGenerator(church).monitoring_alerts()

        assert len(alerts) == 1
        assert alerts[0]['visitors_at_risk'] == 1
        assert alerts[0]['risk_details'] == at_risk
        assert alerts[0]['priority'] == 'High'

    def test_best_practices_from_high_converters(self):
        church = _church(_team(1, conversion_rate=70, growth_trend=8.0), _team(2, conversion_rate=69))

        practices = SupportActionGenerator(church).best_practices()

        assert [p['team_id'] for p in practices] == [1]
        assert 'Achieved 70% conversion rate' in practices[0]['success_factors']
        assert 'Growing visitor base' in practices[0]['success_factors']

    def test_recognition_top_three_in_ranking_order(self):
        church = _church(*[_team(i, score=100 - i) for i in range(1, 6)])

        recognition = SupportActionGenerator(church).recognition()

        assert [r['team_id'] for r in recognition] == [1, 2, 3]
        assert [r['recognition_type'] for r in recognition] == RECOGNITION_TYPES

    def test_generate_filters_by_team(self):
        church = _church(
            _team(1, conversion_rate=10, direction='declining', growth_trend=-8.0),
            _team(2, conversion_rate=10, direction='declining', growth_trend=-8.0),
        )

        report = SupportActionGenerator(church).generate(team_id=2)

        assert [a['team_id'] for a in report['support_actions']] == [2]
        assert [a['team_id'] for a in report['training_needs']] == [2]
        assert report['team_id'] == 2
        assert report['summary']['total_teams'] == 2
        assert report['summary']['teams_declining'] == 2

    def test_same_input_same_report(self):
        church = _church(_team(1, conversion_rate=90), _team(2, conversion_rate=5, direction='declining'))

        assert SupportActionGenerator(church).generate() == SupportActionGenerator(church).generate()

    def test_does_not_modify_its_input(self):
        church = _church(_team(1, conversion_rate=90))
        before = repr(church)

        SupportActionGenerator(church).generate()

        assert repr(church) == before


class TestVisitorAlerts:

    def test_engaged_visitor_has_no_alerts(self):
        snapshot = _snapshot(visits=_weekly('present', 'present', 'present', 'present'), completed=6)
        assert visitor_alerts(snapshot, NOW) == []

    def test_long_absence(self):
        snapshot = _snapshot(visits=_weekly('present', last_days_ago=20), completed=6)

        alerts = visitor_alerts(snapshot, NOW)

        assert [a['message'] for a in alerts] == ['No visits in 20 days']

    def test_declining_attendance_is_most_urgent(self):
        snapshot = _snapshot(visits=_weekly('present', 'present', 'absent', 'absent', 'absent', 'present'),
                             completed=6)

        alerts = visitor_alerts(snapshot, NOW)

        assert alerts[0]['priority'] == 'urgent'
        assert alerts[0]['type'] == 'critical'

    def test_low_attendance_rate(self):
        snapshot = _snapshot(visits=_weekly('absent', 'absent', 'present'), completed=6)

        alerts = visitor_alerts(snapshot, NOW)

        assert [a['message'] for a in alerts] == ['Low attendance rate: 33%']

    def test_slow_milestone_progress(self):
        snapshot = _snapshot(visits=_weekly('present'), started_days_ago=40, completed=1)

        alerts = visitor_alerts(snapshot, NOW)

        assert alerts[0]['message'] == 'Slow milestone progress: 8% after 40 days'

    def test_flagged_visitor(self):
        snapshot = _snapshot(visits=_weekly('present'), monitoring_status='needs-attention', completed=6)

        alerts = visitor_alerts(snapshot, NOW)

        assert alerts[0]['message'] == 'Visitor flagged for attention'

    def test_team_summary(self):
        quiet = _snapshot(visits=_weekly('present', last_days_ago=20), completed=6)
        fine = _snapshot(visits=_weekly('present'), completed=6)

        summary = team_visitor_alerts([quiet, fine], NOW)

        assert summary['summary']['total_alerts'] == 1
        assert summary['summary']['high_priority_alerts'] == 1

    def test_thresholds_come_from_config(self):
        quiet = _snapshot(visits=_weekly('present', last_days_ago=20), completed=6)

        assert visitor_alerts(quiet, NOW)
        assert visitor_alerts(quiet, NOW, get_config(alert_no_visit_days=21)) == []


@pytest.mark.django_db
class TestDeadlineAlerts:

    def _visitor_with_days_left(self, make_visitor, now, days_left, **extra):
        return make_visitor(monitoring_start=now - timedelta(days=84 - days_left), **extra)

    def test_buckets(self, make_visitor, now):
        critical = self._visitor_with_days_left(make_visitor, now, 5)
        urgent = self._visitor_with_days_left(make_visitor, now, 10)
        warning = self._visitor_with_days_left(make_visitor, now, 20)
        normal = self._visitor_with_days_left(make_visitor, now, 50)

        report = deadline_alerts(now=now)

        assert [v['visitor_id'] for v in report['visitors']['critical']] == [critical.pk]
        assert [v['visitor_id'] for v in report['visitors']['urgent']] == [urgent.pk]
        assert [v['visitor_id'] for v in report['visitors']['warning']] == [warning.pk]
        assert [v['visitor_id'] for v in report['visitors']['normal']] == [normal.pk]
        assert report['summary']['total_active_visitors'] == 4
        assert report['team_alerts'][0]['critical'] == 1

    def test_bucket_thresholds_come_from_config(self, make_visitor, now):
        visitor = self._visitor_with_days_left(make_visitor, now, 5)

        report = deadline_alerts(now=now, config=get_config(deadline_critical_days=3))

        assert [v['visitor_id'] for v in report['visitors']['urgent']] == [visitor.pk]
        assert report['visitors']['critical'] == []

    def test_only_active_monitoring_counts(self, make_visitor, now):
        self._visitor_with_days_left(make_visitor, now, 5, monitoring_status='needs-attention')
        make_visitor()

        report = deadline_alerts(now=now)

        assert report['summary']['total_active_visitors'] == 0

    def test_restricted_to_teams(self, make_visitor, team_alpha, team_beta, now):
        self._visitor_with_days_left(make_visitor, now, 5, team=team_alpha)
        beta_visitor = self._visitor_with_days_left(make_visitor, now, 5, team=team_beta)

        report = deadline_alerts(now=now, teams=[team_beta])

        assert [v['visitor_id'] for v in report['visitors']['critical']] == [beta_visitor.pk]
