"""
Metric derivation for visitors under monitoring.

Everything here works on a ``VisitorSnapshot``: an immutable, point-in-time
copy of a visitor and its logs built once by ``snapshot_visitor()``. The
metric functions are pure (no ORM access, no clock) so the sweeper and the
aggregators can evaluate them against a single consistent read.
"""
import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional

from django.core.exceptions import ObjectDoesNotExist

from .exceptions import CorruptLogError

MILESTONE_WEEKS = 12
CHECKLIST_SIZE = 6
ATTENDANCE_STATUSES = ('present', 'absent')


@dataclass(frozen=True)
class VisitEntry:
    date: datetime
    event_type: str
    attendance_status: str

    @property
    def is_present(self) -> bool:
        return self.attendance_status == 'present'


@dataclass(frozen=True)
class MilestoneEntry:
    week: int
    completed: bool
    completed_date: Optional[datetime] = None


@dataclass(frozen=True)
class SuggestionEntry:
    date: datetime
    category: str


@dataclass(frozen=True)
class ExperienceEntry:
    date: datetime
    rating: int


@dataclass(frozen=True)
class VisitorSnapshot:
    """Read-only view of one visitor and its logs."""
    visitor_id: int
    name: str
    email: str
    team_id: Optional[int]
    assigned_member_id: Optional[int]
    status: str
    monitoring_status: str
    visitor_type: str = ''
    created_at: Optional[datetime] = None
    monitoring_start_date: Optional[datetime] = None
    monitoring_end_date: Optional[datetime] = None
    converted_at: Optional[datetime] = None
    status_overridden: bool = False
    version: int = 0
    visits: tuple = ()
    milestones: tuple = ()
    checklist: dict = field(default_factory=dict)
    suggestions: tuple = ()
    experiences: tuple = ()
    event_response_count: int = 0
    will_attend_count: int = 0

    @property
    def is_joining(self) -> bool:
        return self.status == 'joining'

    @property
    def has_monitoring_window(self) -> bool:
        return self.monitoring_end_date is not None

    @property
    def is_converted(self) -> bool:
        return self.converted_at is not None

    @property
    def experience_ratings(self) -> tuple:
        return tuple(e.rating for e in self.experiences)


def snapshot_visitor(visitor) -> VisitorSnapshot:
    """
    Copy a ``Visitor`` and its logs into a ``VisitorSnapshot``.

    Uses prefetched relations when the queryset supplied them. Raises
    ``CorruptLogError`` when the stored logs break their shape invariants
    (unknown attendance value, missing visit date, milestone week outside
    1..12 or repeated).
    """
    visits = []
    for record in visitor.visit_history.all():
        if record.date is None:
            raise CorruptLogError(visitor.pk, f"visit record {record.pk} has no date")
        if record.attendance_status not in ATTENDANCE_STATUSES:
            raise CorruptLogError(
                visitor.pk,
                f"visit record {record.pk} has unknown attendance status '{record.attendance_status}'"
            )
        visits.append(VisitEntry(record.date, record.event_type, record.attendance_status))
    visits.sort(key=lambda v: v.date)

    milestones = []
    seen_weeks = set()
    for milestone in visitor.milestones.all():
        if not 1 <= milestone.week <= MILESTONE_WEEKS:
            raise CorruptLogError(visitor.pk, f"milestone week {milestone.week} is outside 1..{MILESTONE_WEEKS}")
        if milestone.week in seen_weeks:
            raise CorruptLogError(visitor.pk, f"milestone week {milestone.week} appears more than once")
        seen_weeks.add(milestone.week)
        milestones.append(MilestoneEntry(milestone.week, milestone.completed, milestone.completed_date))
    milestones.sort(key=lambda m: m.week)

    try:
        checklist = visitor.integration_checklist.as_dict()
    except ObjectDoesNotExist:
        checklist = {}

    experiences = list(visitor.experiences.all())
    for experience in experiences:
        if not 1 <= experience.rating <= 5:
            raise CorruptLogError(visitor.pk, f"experience {experience.pk} has rating {experience.rating}")
    responses = list(visitor.event_responses.all())

    return VisitorSnapshot(
        visitor_id=visitor.pk,
        name=visitor.name,
        email=visitor.email,
        team_id=visitor.protocol_team_id,
        assigned_member_id=visitor.assigned_protocol_member_id,
        status=visitor.status,
        monitoring_status=visitor.monitoring_status,
        visitor_type=visitor.visitor_type,
        created_at=visitor.created_at,
        monitoring_start_date=visitor.monitoring_start_date,
        monitoring_end_date=visitor.monitoring_end_date,
        converted_at=visitor.converted_at,
        status_overridden=visitor.is_status_overridden,
        version=visitor.version,
        visits=tuple(visits),
        milestones=tuple(milestones),
        checklist=checklist,
        suggestions=tuple(
            SuggestionEntry(s.date, s.category) for s in sorted(visitor.suggestions.all(), key=lambda s: s.date)
        ),
        experiences=tuple(ExperienceEntry(e.date, e.rating) for e in sorted(experiences, key=lambda e: e.date)),
        event_response_count=len(responses),
        will_attend_count=sum(1 for r in responses if r.will_attend),
    )


def percent(numerator, denominator) -> int:
    """Integer percentage, rounding halves up; 0 when the denominator is 0."""
    if not denominator:
        return 0
    return int(math.floor(100 * numerator / denominator + 0.5))


# =============================================================================
# Core Metrics
# =============================================================================

def attendance_rate(snapshot: VisitorSnapshot) -> int:
    present = sum(1 for visit in snapshot.visits if visit.is_present)
    return percent(present, len(snapshot.visits))


def completed_milestone_count(snapshot: VisitorSnapshot) -> int:
    return sum(1 for m in snapshot.milestones if m.completed)


def monitoring_progress(snapshot: VisitorSnapshot) -> int:
    """Completed milestones out of 12, in any week order."""
    return percent(completed_milestone_count(snapshot), MILESTONE_WEEKS)


def integration_progress(snapshot: VisitorSnapshot) -> int:
    done = sum(1 for value in snapshot.checklist.values() if value)
    return percent(done, CHECKLIST_SIZE)


def days_until(end: datetime, now: datetime) -> int:
    seconds = (end - now).total_seconds()
    return max(0, math.ceil(seconds / 86400))


def days_remaining(snapshot: VisitorSnapshot, now: datetime) -> Optional[int]:
    """
    Whole days left in the monitoring window, never negative.

    Partial days count as a full day, so a window ending later today still
    has 1 day remaining. Returns None for visitors without a window.
    """
    if snapshot.monitoring_end_date is None:
        return None
    return days_until(snapshot.monitoring_end_date, now)


def visitor_metrics(snapshot: VisitorSnapshot, now: datetime) -> dict:
    return {
        'attendance_rate': attendance_rate(snapshot),
        'monitoring_progress': monitoring_progress(snapshot),
        'integration_progress': integration_progress(snapshot),
        'days_remaining': days_remaining(snapshot, now),
    }


# =============================================================================
# Supporting Metrics
# =============================================================================

def last_visit_date(snapshot: VisitorSnapshot) -> Optional[datetime]:
    if not snapshot.visits:
        return None
    return snapshot.visits[-1].date


def days_since_last_visit(snapshot: VisitorSnapshot, now: datetime) -> Optional[int]:
    last = last_visit_date(snapshot)
    if last is None:
        return None
    return max(0, (now - last).days)


def has_visit_within(snapshot: VisitorSnapshot, now: datetime, days: int) -> bool:
    """True if any visit-history entry (present or absent) falls in the last ``days`` days."""
    cutoff = now - timedelta(days=days)
    return any(visit.date >= cutoff for visit in snapshot.visits)


def recent_present_count(snapshot: VisitorSnapshot, last_n: int = 4) -> int:
    return sum(1 for visit in snapshot.visits[-last_n:] if visit.is_present)


def days_in_monitoring(snapshot: VisitorSnapshot, now: datetime) -> Optional[int]:
    if snapshot.monitoring_start_date is None:
        return None
    return max(0, (now - snapshot.monitoring_start_date).days)


def average_rating(snapshot: VisitorSnapshot) -> Optional[float]:
    if not snapshot.experience_ratings:
        return None
    return round(sum(snapshot.experience_ratings) / len(snapshot.experience_ratings), 1)


def engagement_summary(snapshot: VisitorSnapshot) -> dict:
    """Feedback counts; inputs to engagement reports only, never to lifecycle rules."""
    return {
        'suggestions': len(snapshot.suggestions),
        'experiences': len(snapshot.experience_ratings),
        'event_responses': snapshot.event_response_count,
        'events_attending': snapshot.will_attend_count,
        'average_rating': average_rating(snapshot),
        'total_feedback': (
            len(snapshot.suggestions)
            + len(snapshot.experience_ratings)
            + snapshot.event_response_count
        ),
    }
