"""
Support actions and alerts for Protocol Teams.

``SupportActionGenerator`` classifies church analytics into the actions the
bishop should take (support, training, monitoring, best practices and
recognition). It only reads its input and returns a report; the same input
always gives the same report.

``deadline_alerts`` and ``visitor_alerts`` flag individual visitors whose
monitoring window is closing or whose engagement is slipping.
"""
import logging
from datetime import datetime
from typing import Optional

from django.utils import timezone

from .conf import OutreachConfig, get_config
from .metrics import (
    VisitorSnapshot,
    attendance_rate,
    days_in_monitoring,
    days_since_last_visit,
    days_until,
    monitoring_progress,
    recent_present_count,
)
from .models import Visitor

logger = logging.getLogger(__name__)

SUPPORT_RECOMMENDED_ACTIONS = [
    'Schedule one-on-one meeting with team leader',
    'Review current visitor outreach strategies',
    'Provide additional resources and training',
    'Consider pairing with high-performing team for mentorship',
]

TRAINING_TOPICS = [
    'Visitor conversion techniques',
    'Follow-up communication skills',
    'Relationship building strategies',
    'Spiritual mentoring approaches',
]

MONITORING_RECOMMENDED_ACTIONS = [
    'Contact visitors approaching the end of their monitoring window',
    'Schedule conversion decision meetings',
    'Provide additional spiritual support',
    'Review visit history with the assigned protocol member',
]

RECOGNITION_TYPES = ['Top Performer', 'Excellence Award', 'Outstanding Achievement']

SUGGESTED_REWARDS = [
    'Public recognition in church announcements',
    'Certificate of excellence',
    'Team appreciation event',
    'Leadership development opportunities',
]

ALERT_PRIORITY_ORDER = {'urgent': 3, 'high': 2, 'medium': 1, 'low': 0}


class SupportActionGenerator:
    """
    Builds the support-action report from ``ProtocolReportGenerator.church_analytics()`` output.
    """

    def __init__(self, church_analytics: dict, config: Optional[OutreachConfig] = None):
        self.analytics = church_analytics
        self.config = config or get_config()
        self.teams = {t['team']['id']: t for t in church_analytics['team_analytics']}
        # Ranking order is the canonical team order for every list below
        self.ranked = [self.teams[entry['team_id']] for entry in church_analytics['team_rankings']]

    def generate(self, team_id: Optional[int] = None) -> dict:
        """
        Generate all action lists, optionally restricted to one team.

        Returns:
            Dict containing support_actions, training_needs,
            monitoring_alerts, best_practices, recognition and summary.
        """
        support_actions = self.support_actions()
        training_needs = self.training_needs()
        monitoring_alerts = self.monitoring_alerts()
        best_practices = self.best_practices()
        recognition = self.recognition()

        if team_id is not None:
            support_actions = [a for a in support_actions if a['team_id'] == team_id]
            training_needs = [a for a in training_needs if a['team_id'] == team_id]
            monitoring_alerts = [a for a in monitoring_alerts if a['team_id'] == team_id]
            best_practices = [a for a in best_practices if a['team_id'] == team_id]
            recognition = [a for a in recognition if a['team_id'] == team_id]

        logger.info(
            f"Generated support actions: {len(support_actions)} support, {len(training_needs)} training, "
            f"{len(monitoring_alerts)} monitoring, {len(best_practices)} best practices"
        )

        return {
            'support_actions': support_actions,
            'training_needs': training_needs,
            'monitoring_alerts': monitoring_alerts,
            'best_practices': best_practices,
            'recognition': recognition,
            'summary': {
                'total_teams': len(self.ranked),
                'teams_needing_support': len(support_actions),
                'teams_needing_training': len(training_needs),
                'teams_with_risky_visitors': len(monitoring_alerts),
                'total_visitors_at_risk': sum(a['visitors_at_risk'] for a in monitoring_alerts),
                'high_performing_teams': len(best_practices),
                'average_conversion_rate': self.analytics['church_stats']['average_conversion_rate'],
                'teams_growing': sum(1 for t in self.ranked if t['trend_direction'] == 'growing'),
                'teams_stable': sum(1 for t in self.ranked if t['trend_direction'] == 'stable'),
                'teams_declining': sum(1 for t in self.ranked if t['trend_direction'] == 'declining'),
            },
            'team_id': team_id,
            'generated_at': self.analytics.get('generated_at'),
        }

    def _team_ref(self, team: dict) -> dict:
        return {
            'team_id': team['team']['id'],
            'team_name': team['team']['name'],
            'leader': team['team']['leader'],
        }

    def support_actions(self) -> list:
        """Teams whose registrations are declining."""
        actions = []
        for team in self.ranked:
            if team['trend_direction'] != 'declining':
                continue
            actions.append({
                **self._team_ref(team),
                'issue': 'Declining growth trend',
                'growth_trend': team['growth_trend'],
                'recommended_actions': list(SUPPORT_RECOMMENDED_ACTIONS),
                'priority': 'High' if team['growth_trend'] < self.config.severe_decline_threshold else 'Medium',
            })
        return actions

    def training_needs(self) -> list:
        """Teams with visitors whose conversion rate is below the low threshold."""
        threshold = self.config.low_conversion_threshold
        needs = []
        for team in self.ranked:
            stats = team['statistics']
            if stats['total_visitors'] == 0 or stats['conversion_rate'] >= threshold:
                continue
            needs.append({
                **self._team_ref(team),
                'conversion_rate': stats['conversion_rate'],
                'joining_visitors': stats['joining_visitors'],
                'shortfall': threshold - stats['conversion_rate'],
                'recommended_actions': list(TRAINING_TOPICS),
                'priority': 'High' if stats['conversion_rate'] < threshold / 2 else 'Medium',
            })
        return needs

    def monitoring_alerts(self) -> list:
        """Teams with at least one visitor in needs-attention."""
        alerts = []
        for team in self.ranked:
            at_risk = team['visitors_at_risk']
            if not at_risk:
                continue
            alerts.append({
                **self._team_ref(team),
                'visitors_at_risk': len(at_risk),
                'risk_details': at_risk,
                'recommended_actions': list(MONITORING_RECOMMENDED_ACTIONS),
                'priority': 'High',
            })
        return alerts

    def best_practices(self) -> list:
        """High-converting teams with the measurements others can learn from."""
        practices = []
        for team in self.ranked:
            stats = team['statistics']
            if stats['conversion_rate'] < self.config.high_conversion_threshold:
                continue
            engagement = team['engagement']
            practices.append({
                **self._team_ref(team),
                'conversion_rate': stats['conversion_rate'],
                'growth_trend': team['growth_trend'],
                'success_factors': [
                    f"Achieved {stats['conversion_rate']}% conversion rate",
                    f"{'Growing' if team['growth_trend'] > 0 else 'Maintaining'} visitor base",
                    f"Managing {stats['active_monitoring']} active visitors",
                    f"Average attendance rate of {engagement['average_attendance_rate']}%",
                    f"Average milestone progress of {engagement['average_monitoring_progress']}%",
                ],
            })
        return practices

    def recognition(self) -> list:
        entries = []
        for index, team in enumerate(self.ranked[:self.config.recognition_cohort_size]):
            stats = team['statistics']
            entries.append({
                'rank': index + 1,
                **self._team_ref(team),
                'performance_score': team['performance_score'],
                'achievements': {
                    'conversion_rate': stats['conversion_rate'],
                    'growth_trend': team['growth_trend'],
                    'total_visitors': stats['total_visitors'],
                    'active_visitors': stats['active_monitoring'],
                },
                'recognition_type': RECOGNITION_TYPES[min(index, len(RECOGNITION_TYPES) - 1)],
                'suggested_rewards': list(SUGGESTED_REWARDS),
            })
        return entries


# =============================================================================
# Visitor Alerts
# =============================================================================

def deadline_alerts(now: Optional[datetime] = None, teams=None,
                    config: Optional[OutreachConfig] = None) -> dict:
    """
    Bucket actively monitored visitors by how soon their window closes.

    critical, urgent and warning use the ``deadline_*_days`` thresholds;
    normal is everything else. ``teams`` optionally restricts the visitors.
    """
    now = now or timezone.now()
    config = config or get_config()
    visitors = Visitor.objects.active().monitored().filter(
        monitoring_status='active'
    ).select_related('protocol_team', 'assigned_protocol_member').order_by('monitoring_end_date', 'pk')
    if teams is not None:
        visitors = visitors.filter(protocol_team__in=teams)

    buckets = {'critical': [], 'urgent': [], 'warning': [], 'normal': []}
    team_alerts = {}

    for visitor in visitors:
        remaining = days_until(visitor.monitoring_end_date, now)
        entry = {
            'visitor_id': visitor.pk,
            'name': visitor.name,
            'email': visitor.email,
            'phone': visitor.phone,
            'days_remaining': remaining,
            'team_id': visitor.protocol_team_id,
            'team_name': visitor.protocol_team.name,
            'assigned_member': str(visitor.assigned_protocol_member),
            'monitoring_end_date': visitor.monitoring_end_date,
        }
        if remaining <= config.deadline_critical_days:
            level = 'critical'
        elif remaining <= config.deadline_urgent_days:
            level = 'urgent'
        elif remaining <= config.deadline_warning_days:
            level = 'warning'
        else:
            level = 'normal'
        buckets[level].append(entry)

        if level != 'normal':
            team = team_alerts.setdefault(visitor.protocol_team_id, {
                'team_id': visitor.protocol_team_id,
                'team_name': visitor.protocol_team.name,
                'critical': 0,
                'urgent': 0,
                'warning': 0,
            })
            team[level] += 1

    return {
        'summary': {
            'total_active_visitors': sum(len(b) for b in buckets.values()),
            'critical_count': len(buckets['critical']),
            'urgent_count': len(buckets['urgent']),
            'warning_count': len(buckets['warning']),
            'normal_count': len(buckets['normal']),
        },
        'team_alerts': list(team_alerts.values()),
        'visitors': buckets,
        'generated_at': now,
    }


def visitor_alerts(snapshot: VisitorSnapshot, now: datetime, config: Optional[OutreachConfig] = None) -> list:
    """Engagement alerts for one visitor, most urgent first."""
    config = config or get_config()
    alerts = []
    rate = attendance_rate(snapshot)

    since_last = days_since_last_visit(snapshot, now)
    if since_last is not None and since_last > config.alert_no_visit_days:
        alerts.append({
            'type': 'warning',
            'message': f"No visits in {since_last} days",
            'priority': 'high',
            'action': 'Follow up with visitor',
        })

    recent = config.alert_recent_services
    if len(snapshot.visits) >= recent and recent_present_count(snapshot, recent) <= 1:
        alerts.append({
            'type': 'critical',
            'message': f"Declining attendance pattern: attended at most 1 of the last {recent} services",
            'priority': 'urgent',
            'action': 'Schedule immediate follow-up',
        })

    if len(snapshot.visits) >= config.alert_low_attendance_min_visits and rate < config.alert_low_attendance_rate:
        alerts.append({
            'type': 'warning',
            'message': f"Low attendance rate: {rate}%",
            'priority': 'medium',
            'action': 'Review visitor engagement strategy',
        })

    progress = monitoring_progress(snapshot)
    in_monitoring = days_in_monitoring(snapshot, now)
    if (snapshot.monitoring_status == 'active' and progress < config.alert_slow_progress_percent
            and in_monitoring is not None and in_monitoring > config.alert_slow_progress_after_days):
        alerts.append({
            'type': 'warning',
            'message': f"Slow milestone progress: {progress}% after {in_monitoring} days",
            'priority': 'medium',
            'action': 'Increase milestone support',
        })

    if snapshot.monitoring_status == 'needs-attention':
        alerts.append({
            'type': 'critical',
            'message': 'Visitor flagged for attention',
            'priority': 'urgent',
            'action': 'Immediate intervention required',
        })

    alerts.sort(key=lambda a: -ALERT_PRIORITY_ORDER[a['priority']])
    return alerts


def team_visitor_alerts(snapshots: list, now: datetime, config: Optional[OutreachConfig] = None) -> dict:
    """``visitor_alerts`` for many visitors, grouped and summarized."""
    config = config or get_config()
    entries = []
    for snapshot in snapshots:
        alerts = visitor_alerts(snapshot, now, config)
        if alerts:
            entries.append({
                'visitor_id': snapshot.visitor_id,
                'name': snapshot.name,
                'email': snapshot.email,
                'monitoring_status': snapshot.monitoring_status,
                'attendance_rate': attendance_rate(snapshot),
                'alerts': alerts,
            })

    entries.sort(key=lambda e: (-ALERT_PRIORITY_ORDER[e['alerts'][0]['priority']], e['visitor_id']))
    return {
        'alerts': entries,
        'summary': {
            'total_alerts': len(entries),
            'urgent_alerts': sum(1 for e in entries if any(a['priority'] == 'urgent' for a in e['alerts'])),
            'high_priority_alerts': sum(1 for e in entries if any(a['priority'] == 'high' for a in e['alerts'])),
            'medium_priority_alerts': sum(1 for e in entries if any(a['priority'] == 'medium' for a in e['alerts'])),
        },
    }
