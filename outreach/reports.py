"""
Analytics for Protocol Teams.

This module rolls visitor metrics up into reports:
- Team analytics (statistics, monthly growth, trend, performance score)
- Church-wide analytics (team rankings, church growth, insights)
- Periodic team engagement reports for the bishop

Every report is built from one point-in-time read of the visitors involved
(see ``outreach.metrics.snapshot_visitor``). Visitors whose logs cannot be
read are left out and counted in ``skipped_records``.
"""
import calendar
import logging
import time
from collections import Counter
from datetime import date, datetime, timedelta
from typing import Any, Optional

from django.utils import timezone

from .conf import OutreachConfig, get_config
from .exceptions import AggregationTimeout, CorruptLogError, ValidationError
from .metrics import (
    attendance_rate,
    days_in_monitoring,
    days_remaining,
    days_since_last_visit,
    integration_progress,
    monitoring_progress,
    percent,
    snapshot_visitor,
)
from .models import ProtocolTeam, Visitor

logger = logging.getLogger(__name__)

ENGAGEMENT_PERIODS = ('weekly', 'monthly', 'quarterly')


def serialize_for_json(obj: Any) -> Any:
    """
    Recursively convert datetime objects to ISO format strings for JSON serialization.

    Args:
        obj: Any object (dict, list, datetime, etc.)

    Returns:
        JSON-serializable version of the object
    """
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    elif isinstance(obj, dict):
        return {key: serialize_for_json(value) for key, value in obj.items()}
    elif isinstance(obj, (list, tuple)):
        return [serialize_for_json(item) for item in obj]
    return obj


def month_start(value: datetime) -> date:
    """First day of the (local) month containing ``value``."""
    if timezone.is_aware(value):
        value = timezone.localtime(value)
    return value.date().replace(day=1)


def shift_month(first_of_month: date, offset: int) -> date:
    index = first_of_month.year * 12 + first_of_month.month - 1 + offset
    return date(index // 12, index % 12 + 1, 1)


def months_before(value: datetime, months: int) -> datetime:
    """Same day and time ``months`` calendar months earlier, clamped to month end."""
    index = value.year * 12 + value.month - 1 - months
    year, month = index // 12, index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def trend_direction(trend: float, config: OutreachConfig) -> str:
    if trend > config.trend_growth_threshold:
        return 'growing'
    if trend < config.trend_decline_threshold:
        return 'declining'
    return 'stable'


def growth_trend(buckets: list) -> float:
    """
    Percent change in registrations between the two most recent non-empty months.

    Fewer than two months with data gives 0.
    """
    non_empty = [b for b in buckets if b['total_visitors'] > 0]
    if len(non_empty) < 2:
        return 0.0
    previous, latest = non_empty[-2]['total_visitors'], non_empty[-1]['total_visitors']
    return round((latest - previous) / previous * 100, 2)


def performance_score(conversion_rate: int, total_visitors: int, trend: float,
                      staff_count: int, config: OutreachConfig) -> int:
    """
    Composite 0..100 score used for rankings.

    conversion (up to 40) + visitor volume (up to 30) + positive growth
    (up to 20) + staffing (10 when the team has more than its leader).
    """
    volume = min(total_visitors / config.score_volume_target, 1) if config.score_volume_target else 0
    growth = min(max(trend / config.score_growth_target, 0), 1) if config.score_growth_target else 0
    score = (
        config.score_conversion_weight * conversion_rate
        + config.score_volume_points * volume
        + config.score_growth_points * growth
        + (config.score_staffing_points if staff_count > 1 else 0)
    )
    return max(0, min(100, percent(score, 100)))


class ProtocolReportGenerator:
    """
    Generates analytics reports for Protocol Teams.

    All methods return dictionaries that can be serialized to JSON for API
    responses (see ``serialize_for_json``).
    """

    def __init__(self, now: Optional[datetime] = None, months_window: Optional[int] = None,
                 config: Optional[OutreachConfig] = None, deadline: Optional[float] = None):
        """
        Initialize the report generator.

        Args:
            now: Reference time for windows and day counts (default: now)
            months_window: Number of monthly buckets (default from config)
            config: Thresholds and weights (default: ``get_config()``)
            deadline: ``time.monotonic()`` value after which generation aborts
        """
        self.now = now or timezone.now()
        self.config = config or get_config()
        self.months_window = self.config.default_months_window if months_window is None else months_window
        if not 1 <= self.months_window <= self.config.max_months_window:
            raise ValidationError(
                f"months_window must be between 1 and {self.config.max_months_window}"
            )
        self.deadline = deadline

    def check_deadline(self):
        if self.deadline is not None and time.monotonic() >= self.deadline:
            raise AggregationTimeout("Analytics computation exceeded its time limit")

    def load_snapshots(self, queryset) -> tuple:
        """
        Snapshot every visitor in ``queryset``.

        Returns (snapshots, skipped_count). Corrupt visitors are logged and skipped.
        """
        snapshots = []
        skipped = 0
        for visitor in queryset.with_logs():
            self.check_deadline()
            try:
                snapshots.append(snapshot_visitor(visitor))
            except CorruptLogError as e:
                skipped += 1
                logger.warning(f"Excluding visitor {visitor.pk} from analytics: {e}")
        return snapshots, skipped

    # =========================================================================
    # TEAM ANALYTICS
    # =========================================================================

    def team_analytics(self, team: ProtocolTeam) -> dict:
        """
        Generate analytics for one Protocol Team.

        Returns:
            Dict containing:
            - team: Basic team details
            - statistics: Visitor counts and conversion rate
            - monthly_growth: Registration buckets, oldest first
            - growth_trend / trend_direction: Month-over-month change
            - performance_score: 0..100 composite used for rankings
            - member_performance: Per-member assignments and conversions
            - engagement: Average visitor metrics and feedback
            - recent_activity: Newest registrations
            - visitors_at_risk: Visitors flagged needs-attention
            - skipped_records: Visitors excluded because of corrupt logs
        """
        snapshots, skipped = self.load_snapshots(Visitor.objects.active().filter(protocol_team=team))
        staff = team.get_staff()

        statistics = self.team_statistics(snapshots)
        monthly = self.monthly_growth(snapshots)
        trend = growth_trend(monthly)

        return {
            'team': {
                'id': team.pk,
                'name': team.name,
                'leader': str(team.leader),
                'leader_id': team.leader_id,
                'staff_count': len(staff),
                'is_active': team.is_active,
            },
            'statistics': statistics,
            'monthly_growth': monthly,
            'growth_trend': trend,
            'trend_direction': trend_direction(trend, self.config),
            'performance_score': performance_score(
                statistics['conversion_rate'],
                statistics['total_visitors'],
                trend,
                len(staff),
                self.config,
            ),
            'member_performance': self.member_performance(team, staff, snapshots),
            'engagement': self.engagement_averages(snapshots),
            'recent_activity': self.recent_activity(snapshots),
            'visitors_at_risk': self.visitors_at_risk(snapshots),
            'skipped_records': skipped,
            'generated_at': self.now,
        }

    def team_statistics(self, snapshots: list) -> dict:
        total = len(snapshots)
        joining = sum(1 for s in snapshots if s.is_joining)
        converted = sum(1 for s in snapshots if s.is_converted or s.monitoring_status == 'converted-to-member')
        return {
            'total_visitors': total,
            'joining_visitors': joining,
            'visiting_only': total - joining,
            'active_monitoring': sum(1 for s in snapshots if s.is_joining and s.monitoring_status == 'active'),
            'completed_monitoring': sum(1 for s in snapshots if s.monitoring_status == 'completed'),
            'needs_attention': sum(1 for s in snapshots if s.monitoring_status == 'needs-attention'),
            'converted_members': converted,
            'conversion_rate': percent(converted, total),
        }

    def month_starts(self) -> list:
        current = month_start(self.now)
        return [shift_month(current, -offset) for offset in range(self.months_window - 1, -1, -1)]

    def monthly_growth(self, snapshots: list) -> list:
        """Registrations bucketed by month, oldest first, with a running total."""
        starts = self.month_starts()
        registered = Counter()
        joining = Counter()
        conversions = Counter()

        for snapshot in snapshots:
            if snapshot.created_at is not None:
                key = month_start(snapshot.created_at)
                registered[key] += 1
                if snapshot.is_joining:
                    joining[key] += 1
            if snapshot.converted_at is not None:
                conversions[month_start(snapshot.converted_at)] += 1

        buckets = []
        cumulative = 0
        for start in starts:
            cumulative += registered[start]
            buckets.append({
                'month': start.strftime('%b %Y'),
                'month_start': start,
                'total_visitors': registered[start],
                'joining': joining[start],
                'visiting': registered[start] - joining[start],
                'conversions': conversions[start],
                'cumulative_total': cumulative,
            })
        return buckets

    def member_performance(self, team: ProtocolTeam, staff: list, snapshots: list) -> list:
        performance = []
        for member in staff:
            assigned = [s for s in snapshots if s.assigned_member_id == member.pk]
            conversions = sum(1 for s in assigned if s.is_converted or s.monitoring_status == 'converted-to-member')
            performance.append({
                'member_id': member.pk,
                'name': str(member),
                'is_leader': member.pk == team.leader_id,
                'assigned_visitors': len(assigned),
                'conversions': conversions,
                'conversion_rate': percent(conversions, len(assigned)),
                'needs_attention': sum(1 for s in assigned if s.monitoring_status == 'needs-attention'),
            })
        return performance

    def engagement_averages(self, snapshots: list) -> dict:
        monitored = [s for s in snapshots if s.is_joining]
        ratings = [r for s in snapshots for r in s.experience_ratings]

        def _mean(values):
            return round(sum(values) / len(values), 1) if values else 0

        return {
            'average_attendance_rate': _mean([attendance_rate(s) for s in snapshots if s.visits]),
            'average_monitoring_progress': _mean([monitoring_progress(s) for s in monitored]),
            'average_integration_progress': _mean([integration_progress(s) for s in monitored]),
            'average_experience_rating': _mean(ratings),
            'total_feedback': sum(
                len(s.suggestions) + len(s.experiences) + s.event_response_count for s in snapshots
            ),
        }

    def recent_activity(self, snapshots: list, limit: int = 10) -> list:
        dated = [s for s in snapshots if s.created_at is not None]
        dated.sort(key=lambda s: (s.created_at, s.visitor_id), reverse=True)
        return [
            {
                'visitor_id': s.visitor_id,
                'name': s.name,
                'visitor_type': s.visitor_type,
                'status': s.status,
                'monitoring_status': s.monitoring_status,
                'registered_at': s.created_at,
            }
            for s in dated[:limit]
        ]

    def visitors_at_risk(self, snapshots: list) -> list:
        return [
            {
                'visitor_id': s.visitor_id,
                'name': s.name,
                'assigned_member_id': s.assigned_member_id,
                'days_remaining': days_remaining(s, self.now),
                'days_since_last_visit': days_since_last_visit(s, self.now),
                'attendance_rate': attendance_rate(s),
                'monitoring_progress': monitoring_progress(s),
            }
            for s in snapshots
            if s.monitoring_status == 'needs-attention'
        ]

    # =========================================================================
    # CHURCH ANALYTICS
    # =========================================================================

    def church_analytics(self) -> dict:
        """
        Generate church-wide analytics across all active Protocol Teams.

        Returns:
            Dict containing church_stats, team_rankings, church_growth,
            insights, the per-team analytics and the skipped record total.
        """
        teams = ProtocolTeam.objects.filter(is_active=True).select_related('leader').order_by('pk')

        team_results = []
        for team in teams:
            self.check_deadline()
            team_results.append(self.team_analytics(team))

        rankings = self.team_rankings(team_results)
        by_id = {t['team']['id']: t for t in team_results}

        total_visitors = sum(t['statistics']['total_visitors'] for t in team_results)
        average_rate = (
            percent(sum(t['statistics']['conversion_rate'] for t in team_results), 100 * len(team_results))
            if team_results else 0
        )

        return {
            'church_stats': {
                'total_teams': len(team_results),
                'total_visitors': total_visitors,
                'total_joining': sum(t['statistics']['joining_visitors'] for t in team_results),
                'total_conversions': sum(t['statistics']['converted_members'] for t in team_results),
                'average_conversion_rate': average_rate,
                'top_performing_team': rankings[0] if rankings else None,
            },
            'team_rankings': rankings,
            'church_growth': self.church_growth(team_results),
            'insights': self.insights(rankings, by_id),
            'team_analytics': team_results,
            'skipped_records': sum(t['skipped_records'] for t in team_results),
            'generated_at': self.now,
        }

    def team_rankings(self, team_results: list) -> list:
        """Sorted by score, then conversion rate, then visitors, then team id; ranks 1..n without gaps."""
        ordered = sorted(
            team_results,
            key=lambda t: (
                -t['performance_score'],
                -t['statistics']['conversion_rate'],
                -t['statistics']['total_visitors'],
                t['team']['id'],
            )
        )
        return [
            {
                'rank': position,
                'team_id': t['team']['id'],
                'team_name': t['team']['name'],
                'performance_score': t['performance_score'],
                'conversion_rate': t['statistics']['conversion_rate'],
                'total_visitors': t['statistics']['total_visitors'],
                'growth_trend': t['growth_trend'],
                'trend_direction': t['trend_direction'],
            }
            for position, t in enumerate(ordered, start=1)
        ]

    def church_growth(self, team_results: list) -> list:
        buckets = []
        cumulative = 0
        for index, start in enumerate(self.month_starts()):
            registered = sum(t['monthly_growth'][index]['total_visitors'] for t in team_results)
            joining = sum(t['monthly_growth'][index]['joining'] for t in team_results)
            cumulative += registered
            buckets.append({
                'month': start.strftime('%b %Y'),
                'month_start': start,
                'total_visitors': registered,
                'joining': joining,
                'visiting': registered - joining,
                'conversions': sum(t['monthly_growth'][index]['conversions'] for t in team_results),
                'cumulative_total': cumulative,
            })
        return buckets

    def insights(self, rankings: list, by_id: dict) -> dict:
        fastest = None
        for entry in rankings:
            if entry['growth_trend'] > 0 and (fastest is None or entry['growth_trend'] > fastest['growth_trend']):
                fastest = entry

        highest = None
        for entry in rankings:
            if highest is None or entry['conversion_rate'] > highest['conversion_rate']:
                highest = entry

        needing_attention = sum(
            1 for entry in rankings
            if entry['conversion_rate'] < self.config.attention_conversion_threshold
            or entry['trend_direction'] == 'declining'
        )

        return {
            'fastest_growing_team': fastest,
            'highest_conversion_team': highest,
            'teams_needing_attention': needing_attention,
            'total_active_visitors': sum(
                by_id[entry['team_id']]['statistics']['active_monitoring'] for entry in rankings
            ),
        }

    # =========================================================================
    # TEAM ENGAGEMENT REPORT
    # =========================================================================

    def team_engagement_report(self, team: ProtocolTeam, period: str = 'monthly') -> dict:
        """
        Summarize visitor engagement for one team over a reporting period.

        Covers visitors registered within the period. The result is handed to
        a notification collaborator for delivery to the bishop.
        """
        if period not in ENGAGEMENT_PERIODS:
            raise ValidationError(f"Unknown period '{period}'; expected one of {', '.join(ENGAGEMENT_PERIODS)}")

        if period == 'weekly':
            start = self.now - timedelta(days=7)
        elif period == 'quarterly':
            start = months_before(self.now, 3)
        else:
            start = months_before(self.now, 1)

        snapshots, skipped = self.load_snapshots(
            Visitor.objects.active().filter(protocol_team=team, created_at__gte=start)
        )

        new_joining = sum(1 for s in snapshots if s.is_joining)
        conversions = sum(1 for s in snapshots if s.monitoring_status == 'converted-to-member')
        period_suggestions = [e for s in snapshots for e in s.suggestions if e.date >= start]
        period_ratings = [e.rating for s in snapshots for e in s.experiences if e.date >= start]
        total_feedback = len(period_suggestions) + len(period_ratings)
        rating = round(sum(period_ratings) / len(period_ratings), 1) if period_ratings else 0

        themes = Counter(e.category for e in period_suggestions)
        concerns = []
        for s in snapshots:
            in_monitoring = days_in_monitoring(s, self.now)
            if (s.monitoring_status == 'active' and in_monitoring is not None
                    and in_monitoring > self.config.engagement_concern_days):
                concerns.append({
                    'visitor_id': s.visitor_id,
                    'name': s.name,
                    'days_in_monitoring': in_monitoring,
                    'progress': monitoring_progress(s),
                })

        recommendations = []
        if not snapshots:
            recommendations.append('Focus on visitor outreach and recruitment')
        if conversions == 0 and new_joining > 0:
            recommendations.append('Review conversion strategies and follow-up processes')
        if concerns:
            recommendations.append(f"{len(concerns)} visitors need immediate attention")
        if period_ratings and rating < 4:
            recommendations.append('Address visitor satisfaction concerns')

        return {
            'period': period,
            'date_from': start,
            'date_to': self.now,
            'team': {'id': team.pk, 'name': team.name},
            'metrics': {
                'total_visitors': len(snapshots),
                'new_joining': new_joining,
                'conversions': conversions,
                'active_monitoring': sum(1 for s in snapshots if s.monitoring_status == 'active'),
                'total_feedback': total_feedback,
                'average_rating': rating,
                'conversion_rate': percent(conversions, new_joining),
            },
            'highlights': [
                f"Registered {len(snapshots)} new visitors",
                f"{new_joining} visitors expressed interest in joining",
                f"Achieved {conversions} conversions to membership",
                f"Collected {total_feedback} pieces of feedback",
            ],
            'concerns': concerns,
            'feedback_themes': [
                {'category': category, 'count': count}
                for category, count in sorted(themes.items(), key=lambda item: (-item[1], item[0]))[:3]
            ],
            'recommendations': recommendations,
            'skipped_records': skipped,
        }
