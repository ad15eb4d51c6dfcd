"""
Tunable thresholds for visitor monitoring and protocol-team analytics.

Values come from ``settings.OUTREACH`` (see config/settings.py) and fall
back to the defaults below. Business logic reads them through
``get_config()`` rather than hard-coding numbers.
"""
from dataclasses import dataclass, fields, replace

from django.conf import settings


@dataclass(frozen=True)
class OutreachConfig:
    # Monitoring lifecycle
    monitoring_window_days: int = 84
    milestone_weeks: int = 12
    risk_lookback_days: int = 30

    # Growth trend classification (percent change)
    trend_growth_threshold: float = 5.0
    trend_decline_threshold: float = -5.0
    severe_decline_threshold: float = -20.0

    # Conversion thresholds (percent)
    low_conversion_threshold: int = 30
    high_conversion_threshold: int = 70
    attention_conversion_threshold: int = 50

    # Alerts (days, percent)
    deadline_critical_days: int = 7
    deadline_urgent_days: int = 14
    deadline_warning_days: int = 28
    alert_no_visit_days: int = 14
    alert_recent_services: int = 4
    alert_low_attendance_rate: int = 50
    alert_low_attendance_min_visits: int = 3
    alert_slow_progress_percent: int = 25
    alert_slow_progress_after_days: int = 30
    engagement_concern_days: int = 75

    # Recognition
    recognition_cohort_size: int = 3

    # Performance score weights
    score_conversion_weight: float = 0.4
    score_volume_points: float = 30.0
    score_volume_target: int = 10
    score_growth_points: float = 20.0
    score_growth_target: float = 20.0
    score_staffing_points: float = 10.0

    # Aggregation
    default_months_window: int = 6
    max_months_window: int = 120
    analytics_cache_ttl_minutes: int = 5
    analytics_timeout_seconds: float = 30.0

    # Sweeper
    sweep_lock_timeout_seconds: int = 3600
    sweep_max_workers: int = 1


def get_config(**overrides) -> OutreachConfig:
    """
    Build the active configuration.

    Keys in ``settings.OUTREACH`` may be given upper-case (as in settings.py)
    or lower-case. Keyword overrides win over settings, which is handy in tests.
    """
    known = {f.name for f in fields(OutreachConfig)}
    values = {}
    for key, value in getattr(settings, 'OUTREACH', {}).items():
        name = key.lower()
        if name in known:
            values[name] = value
    config = OutreachConfig(**values)
    if overrides:
        config = replace(config, **overrides)
    return config
