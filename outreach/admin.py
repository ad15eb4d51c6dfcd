from django.contrib import admin, messages
from django.utils.html import format_html
from django.utils.safestring import mark_safe

from .models import (
    ProtocolTeam, Visitor, VisitRecord, Milestone, IntegrationChecklist,
    VisitorSuggestion, VisitorExperience, EventResponse, MonitoringStatusChange, ReportCache
)
from .exceptions import ValidationError
from .services import override_monitoring_status


class AppendOnlyAdminMixin:
    """Log entries can be added but never edited."""

    def has_change_permission(self, request, obj=None):
        return False


@admin.register(ProtocolTeam)
class ProtocolTeamAdmin(admin.ModelAdmin):
    """Admin configuration for ProtocolTeam model."""
    list_display = ('name', 'leader', 'member_count', 'is_active', 'created_at')
    list_filter = ('is_active', 'created_at')
    search_fields = ('name', 'leader__username', 'leader__display_name')
    ordering = ('name',)
    readonly_fields = ('created_at', 'updated_at')
    filter_horizontal = ('members',)

    def member_count(self, obj):
        """Display staff count including the leader."""
        return obj.staff_count
    member_count.short_description = 'Staff'


class VisitRecordInline(AppendOnlyAdminMixin, admin.TabularInline):
    model = VisitRecord
    extra = 0
    fields = ('date', 'event_type', 'attendance_status', 'notes', 'recorded_by')
    ordering = ('-date',)


class MilestoneInline(admin.TabularInline):
    model = Milestone
    extra = 0
    max_num = 12
    can_delete = False
    fields = ('week', 'completed', 'completed_date', 'notes', 'protocol_member_notes')


class IntegrationChecklistInline(admin.StackedInline):
    model = IntegrationChecklist
    can_delete = False


class MonitoringStatusChangeInline(admin.TabularInline):
    model = MonitoringStatusChange
    extra = 0
    can_delete = False
    readonly_fields = ('from_status', 'to_status', 'source', 'actor', 'reason', 'created_at')

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(Visitor)
class VisitorAdmin(admin.ModelAdmin):
    """Admin configuration for Visitor model."""
    list_display = (
        'name', 'email', 'visitor_type', 'status', 'monitoring_status_badge',
        'protocol_team', 'assigned_protocol_member', 'created_at',
    )
    list_filter = ('status', 'monitoring_status', 'visitor_type', 'protocol_team', 'is_active')
    search_fields = ('name', 'email', 'phone', 'referred_by')
    ordering = ('-created_at',)
    # Status changes go through override_monitoring_status so the sweeper keeps them
    readonly_fields = (
        'monitoring_status', 'monitoring_start_date', 'monitoring_end_date', 'converted_at', 'converted_by',
        'status_overridden_at', 'status_overridden_by', 'version', 'can_login', 'user', 'updated_at',
    )
    inlines = [IntegrationChecklistInline, MilestoneInline, VisitRecordInline, MonitoringStatusChangeInline]
    actions = ['flag_needs_attention']

    STATUS_COLORS = {
        'active': '#22c55e',
        'completed': '#3b82f6',
        'converted-to-member': '#8b5cf6',
        'inactive': '#6b7280',
        'needs-attention': '#ef4444',
    }

    def monitoring_status_badge(self, obj):
        """Display monitoring status with color."""
        if not obj.is_monitored:
            return '-'
        return format_html(
            '<span style="color: {};">{}</span>',
            self.STATUS_COLORS.get(obj.monitoring_status, '#6b7280'),
            obj.get_monitoring_status_display(),
        )
    monitoring_status_badge.short_description = 'Monitoring'

    @admin.action(description='Flag selected visitors for attention')
    def flag_needs_attention(self, request, queryset):
        flagged = 0
        for visitor in queryset.filter(status='joining'):
            try:
                override_monitoring_status(visitor, 'needs-attention', request.user, reason='Flagged in admin')
            except ValidationError as e:
                self.message_user(request, str(e), level=messages.WARNING)
                continue
            flagged += 1
        self.message_user(request, f"Flagged {flagged} visitors for attention.")


@admin.register(VisitorSuggestion)
class VisitorSuggestionAdmin(AppendOnlyAdminMixin, admin.ModelAdmin):
    list_display = ('visitor', 'category', 'date')
    list_filter = ('category', 'date')
    search_fields = ('message', 'visitor__name')
    ordering = ('-date',)


@admin.register(VisitorExperience)
class VisitorExperienceAdmin(AppendOnlyAdminMixin, admin.ModelAdmin):
    list_display = ('visitor', 'rating', 'event_type', 'date')
    list_filter = ('rating', 'date')
    search_fields = ('message', 'visitor__name')
    ordering = ('-date',)


@admin.register(EventResponse)
class EventResponseAdmin(AppendOnlyAdminMixin, admin.ModelAdmin):
    list_display = ('visitor', 'event_name', 'will_attend', 'response_date')
    list_filter = ('will_attend', 'response_date')
    search_fields = ('event_name', 'visitor__name')
    ordering = ('-response_date',)


@admin.register(ReportCache)
class ReportCacheAdmin(admin.ModelAdmin):
    """Admin configuration for ReportCache model."""
    list_display = ('report_type', 'created_at', 'expires_at', 'is_expired_status', 'parameters_preview')
    list_filter = ('report_type', 'created_at', 'expires_at')
    ordering = ('-created_at',)
    readonly_fields = ('report_type', 'parameters', 'data', 'created_at', 'expires_at')
    actions = ['clear_expired_caches', 'clear_all_caches']

    def is_expired_status(self, obj):
        """Display expiration status."""
        if obj.is_expired:
            return mark_safe('<span style="color: #ef4444;">Expired</span>')
        return mark_safe('<span style="color: #22c55e;">Valid</span>')
    is_expired_status.short_description = 'Status'

    def parameters_preview(self, obj):
        params = str(obj.parameters)
        return params[:50] + '...' if len(params) > 50 else params
    parameters_preview.short_description = 'Parameters'

    @admin.action(description='Clear expired caches')
    def clear_expired_caches(self, request, queryset):
        count = ReportCache.clear_expired()
        self.message_user(request, f"Cleared {count} expired cache entries.")

    @admin.action(description='Clear all caches')
    def clear_all_caches(self, request, queryset):
        count = ReportCache.clear_all()
        self.message_user(request, f"Cleared {count} cache entries.")
