"""
Write operations on visitors.

These are the explicit user actions that feed the monitoring engine:
registration, promotion to ``joining``, visit logging, milestone and
checklist updates, feedback capture, conversion and manual status
overrides. Each validates its input and raises ``ValidationError`` or
``NotFoundError`` before touching the database.
"""
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from django.contrib.auth import get_user_model
from django.db import transaction
from django.db.models import F
from django.utils import timezone

from .conf import get_config
from .exceptions import NotFoundError, ValidationError
from .models import (
    EventResponse,
    IntegrationChecklist,
    Milestone,
    MonitoringStatusChange,
    ProtocolTeam,
    VisitRecord,
    Visitor,
    VisitorExperience,
    VisitorSuggestion,
)

logger = logging.getLogger(__name__)

# Present 'Sunday Service' visits that complete a milestone automatically
ATTENDANCE_MILESTONES = ((2, 5), (4, 7), (6, 9))
AUTO_MILESTONE_EVENT = 'Sunday Service'

OVERRIDABLE_STATUSES = ('active', 'needs-attention', 'completed', 'inactive')


@dataclass(frozen=True)
class VisitorCredentials:
    """Login created for a joining visitor; delivered by a notification collaborator."""
    username: str
    temporary_password: str


@dataclass(frozen=True)
class RegistrationResult:
    visitor: Visitor
    credentials: Optional[VisitorCredentials] = None


# =============================================================================
# Lookups
# =============================================================================

def get_visitor(visitor_id) -> Visitor:
    try:
        return Visitor.objects.select_related('protocol_team', 'assigned_protocol_member').get(pk=visitor_id)
    except (Visitor.DoesNotExist, ValueError, TypeError):
        raise NotFoundError(f"Visitor {visitor_id} not found")


def get_team(team_id) -> ProtocolTeam:
    try:
        return ProtocolTeam.objects.select_related('leader').get(pk=team_id)
    except (ProtocolTeam.DoesNotExist, ValueError, TypeError):
        raise NotFoundError(f"Protocol team {team_id} not found")


def get_member(user_id):
    User = get_user_model()
    try:
        return User.objects.get(pk=user_id)
    except (User.DoesNotExist, ValueError, TypeError):
        raise NotFoundError(f"Protocol member {user_id} not found")


def _touch(visitor: Visitor):
    """Bump the optimistic-lock version after a log write."""
    Visitor.objects.filter(pk=visitor.pk).update(version=F('version') + 1, updated_at=timezone.now())


def _require_joining(visitor: Visitor):
    if visitor.status != 'joining':
        raise ValidationError(f"Visitor {visitor.pk} is not in the monitoring program")


# =============================================================================
# Registration
# =============================================================================

def register_visitor(data: dict, registered_by=None, now: datetime = None) -> RegistrationResult:
    """
    Register a visitor with a protocol team.

    ``data`` needs name, email, visitor_type, protocol_team and
    assigned_protocol_member (instances or primary keys). When status is
    ``joining`` the visitor is promoted straight away.
    """
    now = now or timezone.now()

    name = (data.get('name') or '').strip()
    email = (data.get('email') or '').strip().lower()
    visitor_type = data.get('visitor_type')
    status = data.get('status', 'visiting')

    if not name:
        raise ValidationError("Visitor name is required")
    if not email or '@' not in email:
        raise ValidationError("A valid email address is required")
    if visitor_type not in dict(Visitor.TYPE_CHOICES):
        raise ValidationError(f"Unknown visitor type '{visitor_type}'")
    if status not in dict(Visitor.STATUS_CHOICES):
        raise ValidationError(f"Unknown visitor status '{status}'")

    age = data.get('age')
    if age == '':
        age = None
    if age is not None:
        try:
            age = int(age)
        except (TypeError, ValueError):
            raise ValidationError("Age must be a whole number")
        if not 1 <= age <= 120:
            raise ValidationError("Age must be between 1 and 120")

    marital_status = data.get('marital_status', '')
    if marital_status and marital_status not in dict(Visitor.MARITAL_STATUS_CHOICES):
        raise ValidationError(f"Unknown marital status '{marital_status}'")

    team = data.get('protocol_team')
    if not isinstance(team, ProtocolTeam):
        team = get_team(team)
    member = data.get('assigned_protocol_member')
    if member is None:
        raise ValidationError("An assigned protocol member is required")
    if not hasattr(member, 'pk'):
        member = get_member(member)
    if not team.has_member(member):
        raise ValidationError(f"{member} is not a member of {team.name}")

    if Visitor.objects.filter(email__iexact=email).exists():
        raise ValidationError(f"A visitor with email {email} is already registered")

    optional = {
        key: data.get(key, '')
        for key in (
            'phone', 'address', 'occupation', 'referred_by', 'how_did_you_hear', 'previous_church',
            'emergency_contact_name', 'emergency_contact_phone', 'emergency_contact_relationship',
        )
    }

    with transaction.atomic():
        visitor = Visitor.objects.create(
            name=name,
            email=email,
            age=age,
            marital_status=marital_status,
            visitor_type=visitor_type,
            status='visiting',
            protocol_team=team,
            assigned_protocol_member=member,
            registered_by=registered_by,
            created_at=now,
            **optional,
        )
        credentials = None
        if status == 'joining':
            credentials = promote_to_joining(visitor, actor=registered_by, now=now)

    logger.info(f"Registered visitor {visitor.pk} ({visitor.email}) with team {team.pk}")
    return RegistrationResult(visitor=visitor, credentials=credentials)


def promote_to_joining(visitor: Visitor, actor=None, now: datetime = None) -> VisitorCredentials:
    """
    Start a visitor's monitoring window.

    Sets the 84-day window, creates the 12 weekly milestones and the
    integration checklist, and creates a visitor login whose temporary
    password is returned for delivery.
    """
    now = now or timezone.now()
    config = get_config()

    if visitor.status == 'joining':
        raise ValidationError(f"Visitor {visitor.pk} is already joining")

    User = get_user_model()
    if User.objects.filter(username__iexact=visitor.email).exists():
        raise ValidationError(f"A login for {visitor.email} already exists")

    temporary_password = secrets.token_urlsafe(9)

    with transaction.atomic():
        user = User(
            username=visitor.email,
            email=visitor.email,
            display_name=visitor.name,
            role='visitor',
        )
        user.set_password(temporary_password)
        user.save()

        visitor.status = 'joining'
        visitor.monitoring_start_date = now
        visitor.monitoring_end_date = now + timedelta(days=config.monitoring_window_days)
        visitor.monitoring_status = 'active'
        visitor.user = user
        visitor.save()

        Milestone.objects.bulk_create([
            Milestone(visitor=visitor, week=week)
            for week in range(1, config.milestone_weeks + 1)
        ])
        IntegrationChecklist.objects.get_or_create(visitor=visitor)

        MonitoringStatusChange.objects.create(
            visitor=visitor,
            from_status='',
            to_status='active',
            source='promotion',
            actor=actor,
            reason='Started monitoring program',
            created_at=now,
        )

    logger.info(f"Visitor {visitor.pk} promoted to joining; monitoring ends {visitor.monitoring_end_date:%Y-%m-%d}")
    return VisitorCredentials(username=user.username, temporary_password=temporary_password)


# =============================================================================
# Visit Logging
# =============================================================================

def record_visit(visitor: Visitor, date: datetime, attendance_status: str,
                 event_type: str = AUTO_MILESTONE_EVENT, notes: str = '', recorded_by=None) -> VisitRecord:
    """
    Append a visit to the visitor's history.

    Present Sunday Service visits complete weeks 5, 7 and 9 automatically
    once the visitor has 2, 4 and 6 of them.
    """
    if attendance_status not in dict(VisitRecord.ATTENDANCE_CHOICES):
        raise ValidationError(f"Unknown attendance status '{attendance_status}'")
    if date is None:
        raise ValidationError("Visit date is required")
    if not event_type:
        raise ValidationError("Event type is required")

    with transaction.atomic():
        record = VisitRecord.objects.create(
            visitor=visitor,
            date=date,
            event_type=event_type,
            attendance_status=attendance_status,
            notes=notes,
            recorded_by=recorded_by,
        )
        if visitor.status == 'joining' and attendance_status == 'present' and event_type == AUTO_MILESTONE_EVENT:
            _complete_attendance_milestones(visitor, date)
        _touch(visitor)

    return record


def _complete_attendance_milestones(visitor: Visitor, date: datetime):
    present = VisitRecord.objects.filter(
        visitor=visitor,
        event_type=AUTO_MILESTONE_EVENT,
        attendance_status='present',
    ).count()
    for threshold, week in ATTENDANCE_MILESTONES:
        if present < threshold:
            continue
        completed = Milestone.objects.filter(visitor=visitor, week=week, completed=False).update(
            completed=True,
            completed_date=date,
            notes=f"Completed automatically after {threshold} Sunday Service visits",
        )
        if completed:
            logger.info(f"Visitor {visitor.pk}: week {week} milestone completed by attendance")


# =============================================================================
# Milestones & Checklist
# =============================================================================

def update_milestone(visitor: Visitor, week, completed: Optional[bool] = None, notes: Optional[str] = None,
                     protocol_member_notes: Optional[str] = None, now: datetime = None) -> Milestone:
    now = now or timezone.now()
    if isinstance(week, bool) or not isinstance(week, int):
        raise ValidationError("Milestone week must be a whole number")
    if not 1 <= week <= get_config().milestone_weeks:
        raise ValidationError(f"Milestone week {week} is outside 1..{get_config().milestone_weeks}")
    if completed is not None and not isinstance(completed, bool):
        raise ValidationError("Milestone 'completed' must be true or false")
    _require_joining(visitor)

    try:
        milestone = Milestone.objects.get(visitor=visitor, week=week)
    except Milestone.DoesNotExist:
        raise NotFoundError(f"Visitor {visitor.pk} has no milestone for week {week}")

    with transaction.atomic():
        if completed is not None:
            milestone.completed = completed
            milestone.completed_date = now if completed else None
        if notes is not None:
            milestone.notes = notes
        if protocol_member_notes is not None:
            milestone.protocol_member_notes = protocol_member_notes
        milestone.save()
        _touch(visitor)

    return milestone


def update_checklist(visitor: Visitor, items: dict) -> IntegrationChecklist:
    if not items:
        raise ValidationError("No checklist items given")
    unknown = sorted(set(items) - set(IntegrationChecklist.ITEMS))
    if unknown:
        raise ValidationError(f"Unknown checklist items: {', '.join(unknown)}")
    for key, value in items.items():
        if not isinstance(value, bool):
            raise ValidationError(f"Checklist item '{key}' must be true or false")
    _require_joining(visitor)

    with transaction.atomic():
        checklist, _ = IntegrationChecklist.objects.get_or_create(visitor=visitor)
        for key, value in items.items():
            setattr(checklist, key, value)
        checklist.save()
        _touch(visitor)

    return checklist


# =============================================================================
# Feedback
# =============================================================================

def add_suggestion(visitor: Visitor, message: str, category: str, now: datetime = None) -> VisitorSuggestion:
    if not (message or '').strip():
        raise ValidationError("Suggestion message is required")
    if category not in dict(VisitorSuggestion.CATEGORY_CHOICES):
        raise ValidationError(f"Unknown suggestion category '{category}'")
    return VisitorSuggestion.objects.create(
        visitor=visitor, message=message.strip(), category=category, date=now or timezone.now()
    )


def add_experience(visitor: Visitor, rating, message: str, event_type: str = '',
                   now: datetime = None) -> VisitorExperience:
    if isinstance(rating, bool) or not isinstance(rating, int) or not 1 <= rating <= 5:
        raise ValidationError("Rating must be a whole number from 1 to 5")
    if not (message or '').strip():
        raise ValidationError("Experience message is required")
    return VisitorExperience.objects.create(
        visitor=visitor, rating=rating, message=message.strip(), event_type=event_type, date=now or timezone.now()
    )


def add_event_response(visitor: Visitor, event_name: str, will_attend: bool, reason: str = '',
                       now: datetime = None) -> EventResponse:
    if not (event_name or '').strip():
        raise ValidationError("Event name is required")
    if not isinstance(will_attend, bool):
        raise ValidationError("'will_attend' must be true or false")
    return EventResponse.objects.create(
        visitor=visitor,
        event_name=event_name.strip(),
        will_attend=will_attend,
        reason=reason,
        response_date=now or timezone.now(),
    )


# =============================================================================
# Status Changes
# =============================================================================

def record_conversion(visitor: Visitor, actor, now: datetime = None) -> Visitor:
    """Record that a joining visitor has become a member."""
    now = now or timezone.now()
    _require_joining(visitor)
    if visitor.converted_at is not None:
        raise ValidationError(f"Visitor {visitor.pk} has already been converted")

    with transaction.atomic():
        previous = visitor.monitoring_status
        visitor.converted_at = now
        visitor.converted_by = actor
        visitor.monitoring_status = 'converted-to-member'
        visitor.status_overridden_at = None
        visitor.status_overridden_by = None
        visitor.save()
        MonitoringStatusChange.objects.create(
            visitor=visitor,
            from_status=previous,
            to_status='converted-to-member',
            source='conversion',
            actor=actor,
            created_at=now,
        )

    logger.info(f"Visitor {visitor.pk} converted to member by {actor}")
    return visitor


def override_monitoring_status(visitor: Visitor, status: str, actor, reason: str = '',
                               now: datetime = None) -> Visitor:
    """
    Set a visitor's monitoring status by hand.

    The sweeper keeps the override until a conversion, the end of the window
    or missing visits near the end of the window take precedence.
    """
    now = now or timezone.now()
    if status not in OVERRIDABLE_STATUSES:
        raise ValidationError(
            f"Cannot set monitoring status to '{status}'; expected one of {', '.join(OVERRIDABLE_STATUSES)}"
        )
    _require_joining(visitor)
    if visitor.monitoring_status == 'converted-to-member':
        raise ValidationError(f"Visitor {visitor.pk} has already been converted")

    with transaction.atomic():
        previous = visitor.monitoring_status
        visitor.monitoring_status = status
        visitor.status_overridden_at = now
        visitor.status_overridden_by = actor
        visitor.save()
        MonitoringStatusChange.objects.create(
            visitor=visitor,
            from_status=previous,
            to_status=status,
            source='manual',
            actor=actor,
            reason=reason[:255],
            created_at=now,
        )

    logger.info(f"Visitor {visitor.pk} monitoring status overridden: {previous} -> {status} by {actor}")
    return visitor
