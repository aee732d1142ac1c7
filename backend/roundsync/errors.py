"""Domain exceptions shared by the server and the screen clients.

Every error carries a stable ``code`` so the HTTP client can raise the
same class the server raised.
"""


class RoundSyncError(Exception):
    """Base class for all round/queue errors."""
    code = 'error'
    http_status = 400

    def __init__(self, message=None):
        self.message = message or self.__class__.__doc__
        super().__init__(self.message)

    def to_response(self):
        return {'error': self.message, 'code': self.code}


class NotFoundError(RoundSyncError):
    """Record not found"""
    code = 'not_found'
    http_status = 404


class ValidationError(RoundSyncError):
    """Invalid request payload"""
    code = 'invalid_request'
    http_status = 400


# ============ Round ============

class ConflictError(RoundSyncError):
    """Operation conflicts with existing state"""
    code = 'conflict'
    http_status = 409


class InvalidTransitionError(RoundSyncError):
    """Round status does not allow this transition"""
    code = 'invalid_transition'
    http_status = 409

    def __init__(self, action=None, status=None, message=None):
        self.action = action
        self.status = status
        if message is None and action:
            message = f"Cannot {action} a round that is {status}"
        super().__init__(message)


# ============ Production queue ============

class QuotaExceededError(RoundSyncError):
    """Team reached its item quota for this round"""
    code = 'quota_exceeded'
    http_status = 409


class RoundNotAcceptingError(RoundSyncError):
    """Round is not accepting items"""
    code = 'round_not_accepting'
    http_status = 409


class AlreadyEvaluatedError(RoundSyncError):
    """Item was already evaluated"""
    code = 'already_evaluated'
    http_status = 409

    def __init__(self, item_id=None, message=None):
        self.item_id = item_id
        if message is None and item_id is not None:
            message = f"Item {item_id} was already evaluated"
        super().__init__(message)


# ============ Change feed (client only) ============

class SyncError(RoundSyncError):
    """Change feed subscription failed or was closed"""
    code = 'sync_error'
    http_status = 503


_BY_CODE = {
    cls.code: cls for cls in (
        NotFoundError, ValidationError, ConflictError, InvalidTransitionError,
        QuotaExceededError, RoundNotAcceptingError, AlreadyEvaluatedError, SyncError,
    )
}


def error_from_response(payload, status_code):
    """Rebuild a domain error from an ``{'error', 'code'}`` response body."""
    payload = payload or {}
    message = payload.get('error') or f"Request failed with status {status_code}"
    cls = _BY_CODE.get(payload.get('code'), RoundSyncError)
    return cls(message=message)
