"""
Lifecycle sweeper for visitors under monitoring.

The sweeper is the only automatic writer of ``Visitor.monitoring_status``.
It runs periodically (see the ``run_lifecycle_sweep`` management command),
re-derives each joining visitor's state from its logs and applies the
transition rules below in priority order:

1. conversion recorded            -> converted-to-member
2. window over, all milestones    -> completed
3. window over, milestones missing -> inactive
4. near the end, no recent visit  -> needs-attention
5. otherwise                      -> active

completed, inactive and converted-to-member are terminal. A manual override
stays in place until one of rules 1-4 fires.
"""
import logging
from collections import Counter
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from django.core.cache import cache
from django.db import connection, transaction
from django.db.models import F
from django.utils import timezone

from .conf import OutreachConfig, get_config
from .exceptions import ComputationSkipped, CorruptLogError, SweepInProgressError
from .metrics import (
    VisitorSnapshot, days_remaining, has_visit_within, monitoring_progress, snapshot_visitor,
)
from .models import MonitoringStatusChange, ReportCache, Visitor

logger = logging.getLogger(__name__)

ACTIVE = 'active'
COMPLETED = 'completed'
CONVERTED = 'converted-to-member'
INACTIVE = 'inactive'
NEEDS_ATTENTION = 'needs-attention'

TERMINAL_STATUSES = frozenset(Visitor.TERMINAL_STATUSES)

SWEEP_LOCK_KEY = 'outreach:lifecycle-sweep-lock'


@dataclass(frozen=True)
class Transition:
    """Outcome of evaluating one visitor: the status it should hold and the rule that decided it."""
    status: str
    rule: str


def evaluate_transition(snapshot: VisitorSnapshot, now: datetime,
                        config: Optional[OutreachConfig] = None) -> Transition:
    """
    Decide the monitoring status a visitor should hold at ``now``.

    Pure: reads only the snapshot, the clock value and the thresholds.
    """
    config = config or get_config()
    current = snapshot.monitoring_status

    if snapshot.is_converted:
        return Transition(CONVERTED, 'conversion_recorded')

    if current in TERMINAL_STATUSES:
        return Transition(current, 'terminal')

    remaining = days_remaining(snapshot, now)
    if remaining is None:
        return Transition(current, 'no_monitoring_window')

    if remaining == 0:
        if monitoring_progress(snapshot) >= 100:
            return Transition(COMPLETED, 'window_completed')
        return Transition(INACTIVE, 'window_incomplete')

    if remaining <= config.risk_lookback_days and not has_visit_within(snapshot, now, config.risk_lookback_days):
        return Transition(NEEDS_ATTENTION, 'no_recent_visits')

    if snapshot.status_overridden:
        return Transition(current, 'manual_override')

    return Transition(ACTIVE, 'on_track')


@dataclass
class SweepResult:
    """Summary of one sweep pass."""
    now: datetime
    evaluated: int = 0
    unchanged: int = 0
    transitions: Counter = field(default_factory=Counter)
    failures: list = field(default_factory=list)

    @property
    def changed(self) -> int:
        return sum(self.transitions.values())

    def as_dict(self) -> dict:
        return {
            'now': self.now.isoformat(),
            'evaluated': self.evaluated,
            'changed': self.changed,
            'unchanged': self.unchanged,
            'transitions': dict(self.transitions),
            'failures': [failure.as_dict() for failure in self.failures],
        }


class LifecycleSweeper:
    """
    Evaluates every active joining visitor and persists status changes.

    Writes are compare-and-swap on ``Visitor.version``; a visitor modified
    between the read and the write is reported as skipped and picked up by
    the next pass. A cache lock rejects a second sweep while one is running.
    """

    def __init__(self, now: datetime = None, config: OutreachConfig = None, max_workers: int = None):
        self.now = now or timezone.now()
        self.config = config or get_config()
        self.max_workers = max_workers or self.config.sweep_max_workers

    def get_queryset(self):
        return Visitor.objects.active().monitored().with_logs().order_by('pk')

    def run(self) -> SweepResult:
        if not cache.add(SWEEP_LOCK_KEY, self.now.isoformat(), self.config.sweep_lock_timeout_seconds):
            raise SweepInProgressError("A lifecycle sweep is already running")

        try:
            result = self._sweep()
        finally:
            cache.delete(SWEEP_LOCK_KEY)

        cleared = ReportCache.clear_all()
        logger.info(
            f"Lifecycle sweep at {self.now.isoformat()}: evaluated={result.evaluated} "
            f"changed={result.changed} unchanged={result.unchanged} "
            f"failures={len(result.failures)} cache_cleared={cleared}"
        )
        return result

    def _sweep(self) -> SweepResult:
        result = SweepResult(now=self.now)
        snapshots = []

        # One point-in-time read; snapshot errors are isolated per visitor
        for visitor in self.get_queryset():
            try:
                snapshots.append(snapshot_visitor(visitor))
            except CorruptLogError as e:
                logger.warning(f"Skipping visitor {visitor.pk} in sweep: {e}")
                result.evaluated += 1
                result.failures.append(ComputationSkipped(visitor.pk, str(e)))

        if self.max_workers > 1 and len(snapshots) > 1:
            with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
                outcomes = list(executor.map(self._process_in_thread, snapshots))
        else:
            outcomes = [self._process(snapshot) for snapshot in snapshots]

        for outcome in outcomes:
            result.evaluated += 1
            if isinstance(outcome, ComputationSkipped):
                result.failures.append(outcome)
            elif outcome is None:
                result.unchanged += 1
            else:
                result.transitions[outcome] += 1

        return result

    def _process_in_thread(self, snapshot: VisitorSnapshot):
        try:
            return self._process(snapshot)
        finally:
            connection.close()

    def _process(self, snapshot: VisitorSnapshot):
        """Returns the new status, None when unchanged, or a ComputationSkipped."""
        try:
            transition = evaluate_transition(snapshot, self.now, self.config)
            if transition.status == snapshot.monitoring_status:
                return None
            self._apply(snapshot, transition)
            return transition.status
        except ComputationSkipped as e:
            logger.warning(str(e))
            return e
        except Exception as e:
            logger.exception(f"Error evaluating visitor {snapshot.visitor_id}")
            return ComputationSkipped(snapshot.visitor_id, f"{type(e).__name__}: {e}")

    def _apply(self, snapshot: VisitorSnapshot, transition: Transition):
        with transaction.atomic():
            updated = Visitor.objects.filter(
                pk=snapshot.visitor_id,
                version=snapshot.version,
            ).update(
                monitoring_status=transition.status,
                status_overridden_at=None,
                status_overridden_by=None,
                version=F('version') + 1,
                updated_at=timezone.now(),
            )
            if not updated:
                raise ComputationSkipped(
                    snapshot.visitor_id,
                    "visitor was modified during the sweep; it will be retried on the next pass"
                )
            MonitoringStatusChange.objects.create(
                visitor_id=snapshot.visitor_id,
                from_status=snapshot.monitoring_status,
                to_status=transition.status,
                source='sweep',
                reason=transition.rule,
                created_at=self.now,
            )
        logger.info(
            f"Visitor {snapshot.visitor_id}: {snapshot.monitoring_status} -> {transition.status} ({transition.rule})"
        )
