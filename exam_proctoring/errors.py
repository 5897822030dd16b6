"""
Error taxonomy for the proctoring service.

Every error carries the HTTP status it maps to, so route handlers can
raise domain errors directly and let the application handler render them.
"""


class ProctoringError(Exception):
    """Base class for all proctoring service errors."""

    status_code = 500
    code = "internal_error"

    def __init__(self, message: str = "Internal server error"):
        super().__init__(message)
        self.message = message


class AuthenticationRequired(ProctoringError):
    status_code = 401
    code = "authentication_required"

    def __init__(self, message: str = "Authentication required"):
        super().__init__(message)


class AccessDenied(ProctoringError):
    status_code = 403
    code = "access_denied"

    def __init__(self, message: str = "Access denied"):
        super().__init__(message)


class NotFound(ProctoringError):
    status_code = 404
    code = "not_found"

    def __init__(self, message: str = "Not found"):
        super().__init__(message)


class NotAvailable(ProctoringError):
    """The exam exists but is outside its availability window."""

    status_code = 403
    code = "not_available"

    def __init__(self, message: str = "Exam is not currently available"):
        super().__init__(message)


class InvalidTransition(ProctoringError):
    """A state machine operation is not legal from the session's current state."""

    status_code = 409
    code = "invalid_transition"


class InvalidState(ProctoringError):
    """A write was attempted against a session that no longer accepts it."""

    status_code = 409
    code = "invalid_state"


class ValidationError(ProctoringError):
    status_code = 400
    code = "validation_error"


class CorruptLog(ProctoringError):
    """A single persisted log record failed decryption or parsing."""

    code = "corrupt_log"

    def __init__(self, seq: int, reason: str):
        super().__init__(f"Log record {seq} is unreadable: {reason}")
        self.seq = seq
        self.reason = reason


class SensorUnavailable(ProctoringError):
    """A signal source cannot deliver observations (permission denied, init failure)."""

    code = "sensor_unavailable"

    def __init__(self, sensor: str, reason: str = "unavailable"):
        super().__init__(f"{sensor} unavailable: {reason}")
        self.sensor = sensor
        self.reason = reason
