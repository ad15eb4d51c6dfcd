"""
Error taxonomy for the visitor monitoring engine.

Views translate these into HTTP status codes (see ``views._error_response``).
"""


class OutreachError(Exception):
    """Base class for all visitor-monitoring errors."""
    status_code = 500


class ValidationError(OutreachError):
    """Malformed input to registration, logging or milestone/checklist updates."""
    status_code = 400


class NotFoundError(OutreachError):
    """A referenced visitor, team or member does not exist."""
    status_code = 404


class PermissionDeniedError(OutreachError):
    """The acting user's role does not grant access to the record."""
    status_code = 403


class CorruptLogError(OutreachError):
    """A visitor's stored logs violate their shape invariants."""
    status_code = 500

    def __init__(self, visitor_id, message):
        self.visitor_id = visitor_id
        super().__init__(f"Visitor {visitor_id}: {message}")


class ComputationSkipped(OutreachError):
    """
    A single visitor could not be evaluated during a sweep.

    Carried in ``SweepResult.failures`` rather than raised out of the sweep.
    """

    def __init__(self, visitor_id, reason):
        self.visitor_id = visitor_id
        self.reason = reason
        super().__init__(f"Skipped visitor {visitor_id}: {reason}")

    def as_dict(self) -> dict:
        return {'visitor_id': self.visitor_id, 'reason': self.reason}


class AggregationTimeout(OutreachError):
    """An aggregate could not be completed before its deadline."""
    status_code = 504


class StaleAggregateWarning(UserWarning):
    """A cached aggregate past its TTL was served; a fresh read is recommended."""


class SweepInProgressError(OutreachError):
    """Another lifecycle sweep holds the sweep lock."""
    status_code = 409
