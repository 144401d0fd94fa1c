# medication/exceptions.py


class DosageEngineError(Exception):
    """Base class for caller contract violations in the dosage engine."""
    pass


class InvalidPattern(DosageEngineError):
    """Raised when a dosage pattern cannot be evaluated (e.g. empty sequence)."""
    pass


class InvalidArgument(DosageEngineError, ValueError):
    """Raised for out-of-range arguments: day numbers, projection windows, overlapping patterns."""
    pass
