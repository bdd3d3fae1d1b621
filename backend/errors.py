"""Error taxonomy shared by the scheduling core and the REST layer."""


class ScheduleError(Exception):
    status_code = 500
    retryable = False

    def __init__(self, message, status_code=None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self):
        payload = {'success': False, 'message': self.message}
        if self.retryable:
            payload['retryable'] = True
        return payload


class ValidationError(ScheduleError):
    """Malformed input: bad time format, end <= start, missing recurrence fields."""
    status_code = 400


class AuthorizationError(ScheduleError):
    status_code = 403


class NotFoundError(ScheduleError):
    status_code = 404


class ConflictError(ScheduleError):
    """A lecture would overlap a committed occurrence of the same group."""
    status_code = 409

    def __init__(self, message, conflict=None):
        super().__init__(message)
        self.conflict = conflict


class TransientWriteConflict(ScheduleError):
    """Write conflict that survived every retry; safe for the caller to retry."""
    status_code = 503
    retryable = True
