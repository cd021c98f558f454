"""Custom exceptions for FlowTrack."""


class FlowTrackError(Exception):
    """Base exception for all FlowTrack errors."""


class ConfigError(FlowTrackError):
    """Configuration-related errors."""


class DatabaseError(FlowTrackError):
    """Database operation errors."""


class ValidationError(FlowTrackError):
    """Malformed or negative input rejected at the call boundary."""


class NotFoundError(FlowTrackError):
    """Unknown order, stage or transfer id."""


class InvalidStateError(FlowTrackError):
    """Attempted to mutate a transfer that is already terminal."""


class ConcurrencyConflict(FlowTrackError):
    """Lost a compare-and-set race; re-read current state before retrying."""
