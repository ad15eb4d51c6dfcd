"""
Role scoping for the visitor monitoring endpoints.

Bishops see everything. Protocol leaders and members see the teams they
serve on and those teams' visitors. A visitor sees only their own record.
"""
from functools import wraps

from django.http import JsonResponse

from .exceptions import PermissionDeniedError


def require_role(*roles):
    """
    Decorator to require specific role(s) for a view.

    Superusers pass as bishops.

    Usage:
        @login_required
        @require_role('bishop', 'protocol_leader')
        def team_analytics(request, team_id):
            ...
    """
    def decorator(view_func):
        @wraps(view_func)
        def wrapper(request, *args, **kwargs):
            user = request.user
            role = 'bishop' if user.is_bishop else user.role
            if role not in roles:
                return JsonResponse({'error': f"Role required: {', '.join(roles)}"}, status=403)
            return view_func(request, *args, **kwargs)
        return wrapper
    return decorator


def can_view_team(user, team) -> bool:
    if user.is_bishop:
        return True
    if user.is_protocol_staff:
        return team.has_member(user)
    return False


def can_view_visitor(user, visitor) -> bool:
    if user.is_bishop:
        return True
    if user.is_visitor:
        return visitor.user_id is not None and visitor.user_id == user.pk
    if user.is_protocol_staff:
        return visitor.protocol_team.has_member(user)
    return False


def can_manage_visitor(user, visitor) -> bool:
    """Write access: bishops and staff on the visitor's team, never the visitor."""
    if user.is_bishop:
        return True
    return user.is_protocol_staff and visitor.protocol_team.has_member(user)


def check_team_access(user, team):
    if not can_view_team(user, team):
        raise PermissionDeniedError(f"You do not have access to team {team.pk}")


def check_visitor_access(user, visitor, write=False):
    allowed = can_manage_visitor(user, visitor) if write else can_view_visitor(user, visitor)
    if not allowed:
        raise PermissionDeniedError(f"You do not have access to visitor {visitor.pk}")
