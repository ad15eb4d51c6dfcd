from django.conf import settings
from django.core.exceptions import ValidationError as DjangoValidationError
from django.core.validators import MinValueValidator, MaxValueValidator
from django.db import models
from django.utils import timezone

from .exceptions import ValidationError


# =============================================================================
# Protocol Teams
# =============================================================================

class ProtocolTeam(models.Model):
    """
    A leader plus a set of members responsible for visitor outreach.

    Visitors reference their team; the team never embeds them.
    """
    name = models.CharField(max_length=200)
    description = models.TextField(blank=True)
    leader = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name='led_protocol_teams'
    )
    members = models.ManyToManyField(
        settings.AUTH_USER_MODEL,
        blank=True,
        related_name='protocol_teams'
    )
    responsibilities = models.JSONField(
        default=list,
        blank=True,
        help_text="List of responsibilities assigned to this team"
    )
    is_active = models.BooleanField(default=True)
    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='created_protocol_teams',
        help_text="Bishop who created the team"
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['name']
        indexes = [
            models.Index(fields=['is_active', 'name'], name='protocol_team_active_idx'),
        ]

    def __str__(self):
        return self.name

    def has_member(self, user) -> bool:
        """True for the team leader and for every member."""
        if user is None or user.pk is None:
            return False
        if user.pk == self.leader_id:
            return True
        return self.members.filter(pk=user.pk).exists()

    def get_staff(self) -> list:
        """Leader first, then members (deduplicated, by name)."""
        staff = [self.leader]
        for member in self.members.all().order_by('username'):
            if member.pk != self.leader_id:
                staff.append(member)
        return staff

    @property
    def staff_count(self) -> int:
        return len(self.get_staff())


# =============================================================================
# Visitors
# =============================================================================

class VisitorQuerySet(models.QuerySet):

    def active(self):
        return self.filter(is_active=True)

    def monitored(self):
        """Joining visitors that have a monitoring window."""
        return self.filter(status='joining', monitoring_end_date__isnull=False)

    def with_logs(self):
        """Prefetch everything ``snapshot_visitor`` reads, in a fixed number of queries."""
        return self.select_related(
            'integration_checklist', 'assigned_protocol_member'
        ).prefetch_related(
            'visit_history', 'milestones', 'suggestions', 'experiences', 'event_responses'
        )


class Visitor(models.Model):
    """
    A prospective member under observation.

    Only ``joining`` visitors have a monitoring window and a login. Derived
    metrics (attendance rate, progress, days remaining) are never stored;
    see ``outreach.metrics``.
    """
    TYPE_CHOICES = [
        ('first-time', 'First Time'),
        ('from-other-altar', 'From Other Altar'),
        ('returning', 'Returning'),
    ]

    STATUS_CHOICES = [
        ('visiting', 'Visiting'),
        ('joining', 'Joining'),
    ]

    MONITORING_STATUS_CHOICES = [
        ('active', 'Active'),
        ('completed', 'Completed'),
        ('converted-to-member', 'Converted to Member'),
        ('inactive', 'Inactive'),
        ('needs-attention', 'Needs Attention'),
    ]

    TERMINAL_STATUSES = ('completed', 'converted-to-member', 'inactive')

    MARITAL_STATUS_CHOICES = [
        ('single', 'Single'),
        ('married', 'Married'),
        ('divorced', 'Divorced'),
        ('widowed', 'Widowed'),
    ]

    # Identity
    name = models.CharField(max_length=200)
    email = models.EmailField(unique=True)
    phone = models.CharField(max_length=30, blank=True)
    address = models.TextField(blank=True)
    age = models.PositiveSmallIntegerField(
        null=True,
        blank=True,
        validators=[MinValueValidator(1), MaxValueValidator(120)]
    )
    occupation = models.CharField(max_length=200, blank=True)
    marital_status = models.CharField(max_length=20, choices=MARITAL_STATUS_CHOICES, blank=True)

    # Source tracking
    referred_by = models.CharField(max_length=200, blank=True)
    how_did_you_hear = models.CharField(max_length=200, blank=True)
    previous_church = models.CharField(max_length=200, blank=True)
    emergency_contact_name = models.CharField(max_length=200, blank=True)
    emergency_contact_phone = models.CharField(max_length=30, blank=True)
    emergency_contact_relationship = models.CharField(max_length=100, blank=True)

    # Classification
    visitor_type = models.CharField(max_length=20, choices=TYPE_CHOICES)
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default='visiting', db_index=True)

    # Monitoring window (joining visitors only)
    monitoring_start_date = models.DateTimeField(null=True, blank=True)
    monitoring_end_date = models.DateTimeField(null=True, blank=True, db_index=True)
    monitoring_status = models.CharField(
        max_length=20,
        choices=MONITORING_STATUS_CHOICES,
        default='active',
        db_index=True
    )

    # Conversion is an explicit bishop/protocol action
    converted_at = models.DateTimeField(null=True, blank=True)
    converted_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='converted_visitors'
    )

    # Manual status override marker; cleared when the sweeper applies a rule
    status_overridden_at = models.DateTimeField(null=True, blank=True)
    status_overridden_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='overridden_visitors'
    )

    # Optimistic lock for sweeper writes
    version = models.PositiveIntegerField(default=0)

    # Ownership
    protocol_team = models.ForeignKey(
        ProtocolTeam,
        on_delete=models.PROTECT,
        related_name='visitors'
    )
    assigned_protocol_member = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name='assigned_visitors'
    )
    registered_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='registered_visitors'
    )

    # Login account, created when the visitor starts joining
    user = models.OneToOneField(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='visitor_profile'
    )
    can_login = models.BooleanField(default=False)

    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(default=timezone.now, db_index=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = VisitorQuerySet.as_manager()

    class Meta:
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['protocol_team', 'status'], name='visitor_team_status_idx'),
            models.Index(fields=['status', 'monitoring_status'], name='visitor_monitoring_idx'),
        ]

    def __str__(self):
        return f"{self.name} ({self.get_status_display()})"

    def save(self, *args, **kwargs):
        if self.email:
            self.email = self.email.strip().lower()
        self.can_login = self.status == 'joining'
        if not self._state.adding:
            # Any user-driven write invalidates an in-flight sweep read
            self.version = (self.version or 0) + 1
        super().save(*args, **kwargs)

    def clean(self):
        super().clean()
        if self.protocol_team_id and self.assigned_protocol_member_id:
            if not self.protocol_team.has_member(self.assigned_protocol_member):
                raise DjangoValidationError({
                    'assigned_protocol_member': "Assigned member must belong to the visitor's protocol team."
                })

    @property
    def is_monitored(self) -> bool:
        return self.status == 'joining' and self.monitoring_end_date is not None

    @property
    def is_status_overridden(self) -> bool:
        return self.status_overridden_at is not None

    def get_metrics(self, now=None) -> dict:
        """Derived metrics for this visitor (see ``outreach.metrics``)."""
        from .metrics import snapshot_visitor, visitor_metrics
        return visitor_metrics(snapshot_visitor(self), now or timezone.now())


# =============================================================================
# Visitor Logs
# =============================================================================

class AppendOnlyLog(models.Model):
    """Abstract base for visitor log entries that cannot change once written."""
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        abstract = True

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise ValidationError(f"{self.__class__.__name__} entries are immutable once written")
        super().save(*args, **kwargs)


class VisitRecord(AppendOnlyLog):
    """One attendance entry in a visitor's visit history."""
    ATTENDANCE_CHOICES = [
        ('present', 'Present'),
        ('absent', 'Absent'),
    ]

    visitor = models.ForeignKey(Visitor, on_delete=models.CASCADE, related_name='visit_history')
    date = models.DateTimeField()
    event_type = models.CharField(max_length=100, default='Sunday Service')
    attendance_status = models.CharField(max_length=10, choices=ATTENDANCE_CHOICES)
    notes = models.TextField(blank=True)
    recorded_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='recorded_visits'
    )

    class Meta:
        ordering = ['date', 'id']
        indexes = [
            models.Index(fields=['visitor', 'date'], name='visit_visitor_date_idx'),
        ]

    def __str__(self):
        return f"{self.visitor.name} - {self.event_type} on {self.date:%Y-%m-%d} ({self.attendance_status})"


class Milestone(models.Model):
    """Weekly checkpoint; every joining visitor has exactly weeks 1..12."""
    visitor = models.ForeignKey(Visitor, on_delete=models.CASCADE, related_name='milestones')
    week = models.PositiveSmallIntegerField(
        validators=[MinValueValidator(1), MaxValueValidator(12)]
    )
    completed = models.BooleanField(default=False)
    notes = models.TextField(blank=True)
    protocol_member_notes = models.TextField(blank=True)
    completed_date = models.DateTimeField(null=True, blank=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['week']
        constraints = [
            models.UniqueConstraint(fields=['visitor', 'week'], name='unique_visitor_milestone_week'),
        ]

    def __str__(self):
        return f"{self.visitor.name} - week {self.week} ({'done' if self.completed else 'open'})"


class IntegrationChecklist(models.Model):
    """Fixed set of six onboarding tasks for a visitor."""
    ITEMS = (
        'welcome_package',
        'home_visit',
        'small_group_intro',
        'ministry_opportunities',
        'mentor_assigned',
        'regular_check_ins',
    )

    visitor = models.OneToOneField(Visitor, on_delete=models.CASCADE, related_name='integration_checklist')
    welcome_package = models.BooleanField(default=False)
    home_visit = models.BooleanField(default=False)
    small_group_intro = models.BooleanField(default=False)
    ministry_opportunities = models.BooleanField(default=False)
    mentor_assigned = models.BooleanField(default=False)
    regular_check_ins = models.BooleanField(default=False)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f"Integration checklist for {self.visitor.name}"

    def as_dict(self) -> dict:
        return {item: getattr(self, item) for item in self.ITEMS}

    @property
    def completed_count(self) -> int:
        return sum(1 for item in self.ITEMS if getattr(self, item))


class VisitorSuggestion(AppendOnlyLog):
    CATEGORY_CHOICES = [
        ('service', 'Service'),
        ('facility', 'Facility'),
        ('community', 'Community'),
        ('spiritual', 'Spiritual'),
        ('other', 'Other'),
    ]

    visitor = models.ForeignKey(Visitor, on_delete=models.CASCADE, related_name='suggestions')
    date = models.DateTimeField(default=timezone.now)
    message = models.TextField()
    category = models.CharField(max_length=20, choices=CATEGORY_CHOICES)

    class Meta:
        ordering = ['date', 'id']

    def __str__(self):
        return f"Suggestion from {self.visitor.name} ({self.category})"


class VisitorExperience(AppendOnlyLog):
    visitor = models.ForeignKey(Visitor, on_delete=models.CASCADE, related_name='experiences')
    date = models.DateTimeField(default=timezone.now)
    rating = models.PositiveSmallIntegerField(
        validators=[MinValueValidator(1), MaxValueValidator(5)]
    )
    message = models.TextField()
    event_type = models.CharField(max_length=100, blank=True)

    class Meta:
        ordering = ['date', 'id']

    def __str__(self):
        return f"{self.visitor.name} rated {self.rating}/5"


class EventResponse(AppendOnlyLog):
    visitor = models.ForeignKey(Visitor, on_delete=models.CASCADE, related_name='event_responses')
    event_name = models.CharField(max_length=200)
    will_attend = models.BooleanField()
    reason = models.TextField(blank=True)
    response_date = models.DateTimeField(default=timezone.now)

    class Meta:
        ordering = ['response_date', 'id']

    def __str__(self):
        return f"{self.visitor.name} -> {self.event_name} ({'yes' if self.will_attend else 'no'})"


class MonitoringStatusChange(models.Model):
    """Audit trail of every monitoring_status change."""
    SOURCE_CHOICES = [
        ('sweep', 'Lifecycle Sweep'),
        ('manual', 'Manual Override'),
        ('conversion', 'Conversion Recorded'),
        ('promotion', 'Promoted to Joining'),
    ]

    visitor = models.ForeignKey(Visitor, on_delete=models.CASCADE, related_name='status_changes')
    from_status = models.CharField(max_length=20, blank=True)
    to_status = models.CharField(max_length=20)
    source = models.CharField(max_length=20, choices=SOURCE_CHOICES)
    actor = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='monitoring_status_changes'
    )
    reason = models.CharField(max_length=255, blank=True)
    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        ordering = ['-created_at', '-id']
        indexes = [
            models.Index(fields=['visitor', 'created_at'], name='status_change_visitor_idx'),
        ]

    def __str__(self):
        return f"{self.visitor.name}: {self.from_status or '-'} -> {self.to_status} ({self.source})"


# =============================================================================
# Analytics Cache
# =============================================================================

class ReportCache(models.Model):
    """
    Caches generated analytics to avoid expensive recomputation.

    Reports are cached with a TTL and regenerated on-demand when expired.
    The lifecycle sweeper clears all entries after it writes, so cached
    monitoring counts never outlive one sweep cycle.
    """
    REPORT_TYPE_CHOICES = [
        ('team_analytics', 'Team Analytics'),
        ('church_analytics', 'Church Analytics'),
        ('support_actions', 'Support Actions'),
        ('engagement_report', 'Engagement Report'),
    ]

    report_type = models.CharField(
        max_length=50,
        choices=REPORT_TYPE_CHOICES,
        db_index=True
    )

    # Parameters used to generate this report (for cache key)
    parameters = models.JSONField(
        default=dict,
        blank=True,
        help_text="Parameters used to generate this report (window, team, etc.)"
    )

    data = models.JSONField(
        help_text="The generated report data"
    )

    created_at = models.DateTimeField(auto_now_add=True)
    expires_at = models.DateTimeField(
        help_text="When this cache entry expires"
    )

    class Meta:
        ordering = ['-created_at']
        verbose_name = 'Report Cache'
        verbose_name_plural = 'Report Caches'
        indexes = [
            models.Index(fields=['report_type', 'expires_at'], name='report_cache_type_exp_idx'),
        ]

    def __str__(self):
        return f"{self.get_report_type_display()} - {self.created_at.strftime('%Y-%m-%d %H:%M')}"

    @property
    def is_expired(self) -> bool:
        """Check if this cache entry has expired."""
        return timezone.now() > self.expires_at

    @classmethod
    def get_cached_report(cls, report_type: str, parameters: dict = None) -> dict:
        """
        Get a cached report if available and not expired.

        Args:
            report_type: Type of report to retrieve
            parameters: Parameters to match

        Returns:
            Cached report data or None
        """
        params = parameters or {}
        cache_entry = cls.objects.filter(
            report_type=report_type,
            parameters=params,
            expires_at__gt=timezone.now()
        ).order_by('-created_at').first()

        if cache_entry:
            return cache_entry.data
        return None

    @classmethod
    def get_latest_report(cls, report_type: str, parameters: dict = None):
        """Most recent entry for these parameters, expired or not."""
        return cls.objects.filter(
            report_type=report_type,
            parameters=parameters or {}
        ).order_by('-created_at').first()

    @classmethod
    def set_cached_report(cls, report_type: str, data: dict,
                          parameters: dict = None, ttl_minutes: int = 5) -> 'ReportCache':
        """
        Cache a generated report.

        Args:
            report_type: Type of report
            data: Report data to cache
            parameters: Parameters used to generate
            ttl_minutes: Time to live in minutes

        Returns:
            The created cache entry
        """
        from datetime import timedelta

        params = parameters or {}

        # Delete old cache entries for this report type + params
        cls.objects.filter(
            report_type=report_type,
            parameters=params
        ).delete()

        return cls.objects.create(
            report_type=report_type,
            parameters=params,
            data=data,
            expires_at=timezone.now() + timedelta(minutes=ttl_minutes)
        )

    @classmethod
    def clear_expired(cls) -> int:
        """Delete all expired cache entries. Returns count deleted."""
        count, _ = cls.objects.filter(expires_at__lt=timezone.now()).delete()
        return count

    @classmethod
    def clear_all(cls, report_type: str = None) -> int:
        """
        Clear all cached reports, optionally filtered by type.

        Args:
            report_type: Optional type to filter by

        Returns:
            Count of deleted entries
        """
        qs = cls.objects.all()
        if report_type:
            qs = qs.filter(report_type=report_type)
        count, _ = qs.delete()
        return count
