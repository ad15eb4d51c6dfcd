"""
Public interface of the visitor monitoring engine.

Dashboards and report generators call these functions; they never compute
metrics themselves. Aggregates are cached in ``ReportCache`` for a few
minutes and the cache is cleared by every lifecycle sweep.
"""
import logging
import time
import warnings
from datetime import datetime
from typing import Optional

from django.utils import timezone

from .conf import get_config
from .exceptions import AggregationTimeout, NotFoundError, StaleAggregateWarning
from .lifecycle import LifecycleSweeper
from .metrics import engagement_summary, snapshot_visitor, visitor_metrics
from .models import ReportCache, Visitor
from .reports import ProtocolReportGenerator, serialize_for_json
from .services import get_team
from .support import SupportActionGenerator, deadline_alerts, team_visitor_alerts, visitor_alerts

logger = logging.getLogger(__name__)


def _get_snapshot(visitor_id):
    try:
        visitor = Visitor.objects.with_logs().get(pk=visitor_id)
    except (Visitor.DoesNotExist, ValueError, TypeError):
        raise NotFoundError(f"Visitor {visitor_id} not found")
    return snapshot_visitor(visitor)


def _cached_aggregate(report_type: str, parameters: dict, build, timeout: Optional[float], use_cache: bool) -> dict:
    """
    Serve ``report_type`` from the cache or build it before the deadline.

    On timeout the latest cached copy is returned; an expired one is marked
    ``stale`` and comes with a ``StaleAggregateWarning``. Without any copy
    the timeout propagates.
    """
    config = get_config()
    if use_cache:
        cached = ReportCache.get_cached_report(report_type, parameters)
        if cached is not None:
            return cached

    seconds = config.analytics_timeout_seconds if timeout is None else timeout
    deadline = time.monotonic() + seconds

    try:
        data = serialize_for_json(build(deadline))
    except AggregationTimeout:
        latest = ReportCache.get_latest_report(report_type, parameters)
        if latest is None:
            logger.error(f"{report_type} timed out after {seconds}s with no cached copy")
            raise
        logger.warning(f"{report_type} timed out after {seconds}s; serving cached copy from {latest.created_at}")
        if not latest.is_expired:
            return {**latest.data, 'stale': False}
        warnings.warn(
            f"{report_type} is stale (generated {latest.created_at.isoformat()}); retry for a fresh read",
            StaleAggregateWarning,
            stacklevel=3,
        )
        return {**latest.data, 'stale': True}

    data['stale'] = False
    ReportCache.set_cached_report(
        report_type, data, parameters, ttl_minutes=config.analytics_cache_ttl_minutes
    )
    return data


def _parameters(now: Optional[datetime], **params) -> dict:
    if now is not None:
        params['now'] = now.isoformat()
    return params


# =============================================================================
# Visitor
# =============================================================================

def get_visitor_metrics(visitor_id, now: datetime = None) -> dict:
    """Attendance rate, monitoring progress, integration progress and days remaining."""
    snapshot = _get_snapshot(visitor_id)
    return {
        'visitor_id': snapshot.visitor_id,
        'status': snapshot.status,
        'monitoring_status': snapshot.monitoring_status,
        **visitor_metrics(snapshot, now or timezone.now()),
    }


def get_visitor_profile_metrics(visitor_id, now: datetime = None) -> dict:
    """``get_visitor_metrics`` plus engagement counts and alerts."""
    now = now or timezone.now()
    snapshot = _get_snapshot(visitor_id)
    return serialize_for_json({
        'visitor_id': snapshot.visitor_id,
        'status': snapshot.status,
        'monitoring_status': snapshot.monitoring_status,
        **visitor_metrics(snapshot, now),
        'engagement': engagement_summary(snapshot),
        'alerts': visitor_alerts(snapshot, now),
    })


def get_visitor_alerts(visitor_id, now: datetime = None) -> dict:
    now = now or timezone.now()
    snapshot = _get_snapshot(visitor_id)
    return {
        'visitor_id': snapshot.visitor_id,
        'name': snapshot.name,
        'monitoring_status': snapshot.monitoring_status,
        'alerts': visitor_alerts(snapshot, now),
    }


def get_deadline_alerts(now: datetime = None, teams=None) -> dict:
    return serialize_for_json(deadline_alerts(now=now, teams=teams))


def get_team_visitor_alerts(team_id, now: datetime = None) -> dict:
    """Engagement alerts for every monitored visitor of one team, most urgent first."""
    team = get_team(team_id)
    generator = ProtocolReportGenerator(now=now)
    snapshots, skipped = generator.load_snapshots(
        Visitor.objects.active().monitored().filter(protocol_team=team).order_by('pk')
    )
    return serialize_for_json({
        'team_id': team.pk,
        'team_name': team.name,
        **team_visitor_alerts(snapshots, generator.now, generator.config),
        'skipped_records': skipped,
        'generated_at': generator.now,
    })


# =============================================================================
# Aggregates
# =============================================================================

def get_team_analytics(team_id, months_window: int = None, now: datetime = None,
                       timeout: float = None, use_cache: bool = True) -> dict:
    team = get_team(team_id)
    if months_window is None:
        months_window = get_config().default_months_window

    def build(deadline):
        generator = ProtocolReportGenerator(now=now, months_window=months_window, deadline=deadline)
        return generator.team_analytics(team)

    return _cached_aggregate(
        'team_analytics',
        _parameters(now, team_id=team.pk, months_window=months_window),
        build, timeout, use_cache,
    )


def get_church_analytics(months_window: int = None, now: datetime = None,
                         timeout: float = None, use_cache: bool = True) -> dict:
    if months_window is None:
        months_window = get_config().default_months_window

    def build(deadline):
        generator = ProtocolReportGenerator(now=now, months_window=months_window, deadline=deadline)
        return generator.church_analytics()

    return _cached_aggregate(
        'church_analytics',
        _parameters(now, months_window=months_window),
        build, timeout, use_cache,
    )


def get_support_actions(team_id=None, now: datetime = None, timeout: float = None,
                        use_cache: bool = True) -> dict:
    if team_id is not None:
        team_id = get_team(team_id).pk

    def build(deadline):
        generator = ProtocolReportGenerator(now=now, deadline=deadline)
        return SupportActionGenerator(generator.church_analytics()).generate(team_id=team_id)

    return _cached_aggregate(
        'support_actions',
        _parameters(now, team_id=team_id),
        build, timeout, use_cache,
    )


def get_team_engagement_report(team_id, period: str = 'monthly', now: datetime = None) -> dict:
    team = get_team(team_id)
    report = ProtocolReportGenerator(now=now).team_engagement_report(team, period)
    return serialize_for_json(report)


# =============================================================================
# Sweep
# =============================================================================

def run_lifecycle_sweep(now: datetime = None, max_workers: int = None) -> dict:
    """One evaluation pass; transitions per target state and per-visitor failures."""
    return LifecycleSweeper(now=now, max_workers=max_workers).run().as_dict()
