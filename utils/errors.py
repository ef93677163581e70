# utils/errors.py
"""
Error taxonomy for the wallet ledger service.

Every error carries the HTTP status the API layer renders it with; the
application factory registers one handler for the whole hierarchy.
"""


class LedgerServiceError(Exception):
    """Base class for all expected service errors"""
    status_code = 500
    default_message = 'Internal server error'

    def __init__(self, message=None, **context):
        self.message = message or self.default_message
        self.context = context
        super().__init__(self.message)

    def to_dict(self):
        return {'success': False, 'error': self.message}


class ValidationError(LedgerServiceError):
    """Missing or invalid request fields, unsupported type"""
    status_code = 400
    default_message = 'Invalid request'


class UnauthorizedError(LedgerServiceError):
    status_code = 401
    default_message = 'Unauthorized: Admin access required'


class NotFoundError(LedgerServiceError):
    status_code = 404
    default_message = 'Resource not found'


class ConflictError(LedgerServiceError):
    """Already reversed or a variant precondition failed"""
    status_code = 400
    default_message = 'Transaction already reversed'


class SchemeResolutionError(LedgerServiceError):
    """No scheme or slab matches; pricing must not proceed"""
    status_code = 422
    default_message = 'No matching scheme slab found'


class LedgerPostingError(LedgerServiceError):
    """A ledger primitive call failed; the owning step is marked failed"""
    status_code = 500
    default_message = 'Failed to post ledger entry'

    def __init__(self, message=None, partial=None, **context):
        super().__init__(message, **context)
        self.partial = partial


class LedgerTimeoutError(LedgerPostingError):
    default_message = 'Ledger call exceeded its deadline'


class AuditLogError(LedgerServiceError):
    """Raised inside the audit writer only; never reaches a caller"""
    default_message = 'Failed to write admin audit log'
