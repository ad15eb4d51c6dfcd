"""
JSON endpoints for the visitor monitoring engine.

Every view requires a login. Reads are scoped by role (see
``outreach.permissions``); engine errors are turned into JSON error
responses with the status code carried by the exception.
"""
import json
import logging
from functools import wraps

from django.contrib.auth.decorators import login_required
from django.http import JsonResponse
from django.utils import timezone
from django.utils.dateparse import parse_datetime
from django.views.decorators.http import require_GET, require_POST

from . import api, services
from .exceptions import OutreachError, ValidationError
from .permissions import check_team_access, check_visitor_access, require_role
from .reports import serialize_for_json

logger = logging.getLogger(__name__)

STAFF_ROLES = ('bishop', 'protocol_leader', 'protocol_member')


def _error_response(error: OutreachError) -> JsonResponse:
    return JsonResponse({'error': str(error)}, status=error.status_code)


def handle_outreach_errors(view_func):
    """Translate ``OutreachError`` into a JSON error response."""
    @wraps(view_func)
    def wrapper(request, *args, **kwargs):
        try:
            return view_func(request, *args, **kwargs)
        except OutreachError as e:
            if e.status_code >= 500:
                logger.exception(f"Error in {view_func.__name__}")
            else:
                logger.info(f"{view_func.__name__} rejected request: {e}")
            return _error_response(e)
    return wrapper


def _read_payload(request) -> dict:
    """JSON body if one was sent, otherwise form data."""
    if request.content_type == 'application/json':
        try:
            payload = json.loads(request.body or b'{}')
        except json.JSONDecodeError:
            raise ValidationError("Request body is not valid JSON")
        if not isinstance(payload, dict):
            raise ValidationError("Request body must be a JSON object")
        return payload
    return request.POST.dict()


def _parse_datetime(value, field):
    if value in (None, ''):
        return None
    parsed = parse_datetime(value) if isinstance(value, str) else None
    if parsed is None:
        raise ValidationError(f"'{field}' must be an ISO 8601 date-time")
    if timezone.is_naive(parsed):
        parsed = timezone.make_aware(parsed)
    return parsed


def _parse_int(value, field, default=None):
    if value in (None, ''):
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"'{field}' must be a whole number")


def _parse_bool(value, field):
    if isinstance(value, bool) or value is None:
        return value
    if isinstance(value, str) and value.lower() in ('true', 'false', '1', '0'):
        return value.lower() in ('true', '1')
    raise ValidationError(f"'{field}' must be true or false")


def _managed_visitor(request, visitor_id):
    visitor = services.get_visitor(visitor_id)
    check_visitor_access(request.user, visitor, write=True)
    return visitor


# =============================================================================
# Visitor Reads
# =============================================================================

@login_required
@require_GET
@handle_outreach_errors
def visitor_metrics(request, visitor_id):
    visitor = services.get_visitor(visitor_id)
    check_visitor_access(request.user, visitor)
    return JsonResponse(api.get_visitor_profile_metrics(visitor.pk))


@login_required
@require_GET
@require_role(*STAFF_ROLES)
@handle_outreach_errors
def visitor_alerts(request, visitor_id):
    visitor = services.get_visitor(visitor_id)
    check_visitor_access(request.user, visitor)
    return JsonResponse(api.get_visitor_alerts(visitor.pk))


# =============================================================================
# Analytics
# =============================================================================

@login_required
@require_GET
@require_role(*STAFF_ROLES)
@handle_outreach_errors
def team_analytics(request, team_id):
    team = services.get_team(team_id)
    check_team_access(request.user, team)
    months = _parse_int(request.GET.get('months'), 'months')
    return JsonResponse(api.get_team_analytics(team.pk, months_window=months))


@login_required
@require_GET
@require_role(*STAFF_ROLES)
@handle_outreach_errors
def team_visitor_alerts(request, team_id):
    team = services.get_team(team_id)
    check_team_access(request.user, team)
    return JsonResponse(api.get_team_visitor_alerts(team.pk))


@login_required
@require_GET
@require_role(*STAFF_ROLES)
@handle_outreach_errors
def team_engagement_report(request, team_id):
    team = services.get_team(team_id)
    check_team_access(request.user, team)
    period = request.GET.get('period', 'monthly')
    return JsonResponse(api.get_team_engagement_report(team.pk, period=period))


@login_required
@require_GET
@require_role('bishop')
@handle_outreach_errors
def church_analytics(request):
    months = _parse_int(request.GET.get('months'), 'months')
    return JsonResponse(api.get_church_analytics(months_window=months))


@login_required
@require_GET
@require_role('bishop')
@handle_outreach_errors
def support_actions(request):
    team_id = _parse_int(request.GET.get('team'), 'team')
    return JsonResponse(api.get_support_actions(team_id=team_id))


@login_required
@require_GET
@require_role(*STAFF_ROLES)
@handle_outreach_errors
def deadline_alerts(request):
    teams = None if request.user.is_bishop else request.user.get_protocol_teams()
    return JsonResponse(api.get_deadline_alerts(teams=teams))


@login_required
@require_POST
@require_role('bishop')
@handle_outreach_errors
def run_sweep(request):
    result = api.run_lifecycle_sweep()
    logger.info(f"Lifecycle sweep triggered by {request.user}")
    return JsonResponse(result)


# =============================================================================
# Visitor Writes
# =============================================================================

@login_required
@require_POST
@require_role(*STAFF_ROLES)
@handle_outreach_errors
def register_visitor(request):
    data = _read_payload(request)
    team = services.get_team(data.get('protocol_team'))
    check_team_access(request.user, team)
    data['protocol_team'] = team
    if data.get('assigned_protocol_member') in (None, ''):
        data['assigned_protocol_member'] = request.user

    result = services.register_visitor(data, registered_by=request.user)
    response = {'visitor_id': result.visitor.pk, 'status': result.visitor.status}
    if result.credentials:
        response['credentials'] = {
            'username': result.credentials.username,
            'temporary_password': result.credentials.temporary_password,
        }
    return JsonResponse(response, status=201)


@login_required
@require_POST
@require_role(*STAFF_ROLES)
@handle_outreach_errors
def promote_visitor(request, visitor_id):
    visitor = _managed_visitor(request, visitor_id)
    credentials = services.promote_to_joining(visitor, actor=request.user)
    return JsonResponse({
        'visitor_id': visitor.pk,
        'monitoring_start_date': visitor.monitoring_start_date.isoformat(),
        'monitoring_end_date': visitor.monitoring_end_date.isoformat(),
        'credentials': {
            'username': credentials.username,
            'temporary_password': credentials.temporary_password,
        },
    })


@login_required
@require_POST
@require_role(*STAFF_ROLES)
@handle_outreach_errors
def record_visit(request, visitor_id):
    visitor = _managed_visitor(request, visitor_id)
    data = _read_payload(request)
    record = services.record_visit(
        visitor,
        date=_parse_datetime(data.get('date'), 'date') or timezone.now(),
        attendance_status=data.get('attendance_status'),
        event_type=data.get('event_type') or services.AUTO_MILESTONE_EVENT,
        notes=data.get('notes', ''),
        recorded_by=request.user,
    )
    return JsonResponse({'visit_id': record.pk, 'visitor_id': visitor.pk}, status=201)


@login_required
@require_POST
@require_role(*STAFF_ROLES)
@handle_outreach_errors
def update_milestone(request, visitor_id):
    visitor = _managed_visitor(request, visitor_id)
    data = _read_payload(request)
    milestone = services.update_milestone(
        visitor,
        week=_parse_int(data.get('week'), 'week'),
        completed=_parse_bool(data.get('completed'), 'completed'),
        notes=data.get('notes'),
        protocol_member_notes=data.get('protocol_member_notes'),
    )
    return JsonResponse(serialize_for_json({
        'visitor_id': visitor.pk,
        'week': milestone.week,
        'completed': milestone.completed,
        'completed_date': milestone.completed_date,
    }))


@login_required
@require_POST
@require_role(*STAFF_ROLES)
@handle_outreach_errors
def update_checklist(request, visitor_id):
    visitor = _managed_visitor(request, visitor_id)
    data = _read_payload(request)
    items = {key: _parse_bool(value, key) for key, value in data.items()}
    checklist = services.update_checklist(visitor, items)
    return JsonResponse({'visitor_id': visitor.pk, 'checklist': checklist.as_dict()})


@login_required
@require_POST
@require_role(*STAFF_ROLES)
@handle_outreach_errors
def record_conversion(request, visitor_id):
    visitor = _managed_visitor(request, visitor_id)
    services.record_conversion(visitor, actor=request.user)
    return JsonResponse({
        'visitor_id': visitor.pk,
        'monitoring_status': visitor.monitoring_status,
        'converted_at': visitor.converted_at.isoformat(),
    })


@login_required
@require_POST
@require_role(*STAFF_ROLES)
@handle_outreach_errors
def override_status(request, visitor_id):
    visitor = _managed_visitor(request, visitor_id)
    data = _read_payload(request)
    services.override_monitoring_status(
        visitor, data.get('monitoring_status'), actor=request.user, reason=data.get('reason', '')
    )
    return JsonResponse({'visitor_id': visitor.pk, 'monitoring_status': visitor.monitoring_status})


# =============================================================================
# Visitor Feedback
# =============================================================================

@login_required
@require_POST
@handle_outreach_errors
def submit_feedback(request, visitor_id, kind):
    """Suggestions, experiences and event responses; visitors may submit their own."""
    visitor = services.get_visitor(visitor_id)
    check_visitor_access(request.user, visitor)
    data = _read_payload(request)

    if kind == 'suggestion':
        entry = services.add_suggestion(visitor, data.get('message', ''), data.get('category'))
    elif kind == 'experience':
        entry = services.add_experience(
            visitor,
            _parse_int(data.get('rating'), 'rating'),
            data.get('message', ''),
            event_type=data.get('event_type', ''),
        )
    else:
        entry = services.add_event_response(
            visitor,
            data.get('event_name', ''),
            _parse_bool(data.get('will_attend'), 'will_attend'),
            reason=data.get('reason', ''),
        )
    return JsonResponse({'id': entry.pk, 'visitor_id': visitor.pk}, status=201)
