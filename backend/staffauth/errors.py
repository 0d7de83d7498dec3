"""Authorization error taxonomy.

Every error is a werkzeug HTTPException so the unified handler in
``create_app`` renders it with the standard JSON envelope. ``error_code`` is
the stable machine-readable identifier clients switch on.
"""
from __future__ import annotations
from werkzeug.exceptions import HTTPException


class AuthError(HTTPException):
    code = 500
    error_code = 'AUTH_ERROR'
    description = 'Authorization error'


class Unauthenticated(AuthError):
    code = 401
    error_code = 'UNAUTHENTICATED'
    description = 'Authentication required'

    def get_headers(self, environ=None, scope=None):
        headers = super().get_headers(environ, scope)
        headers.append(('WWW-Authenticate', 'Bearer'))
        return headers


class InvalidCredentials(Unauthenticated):
    error_code = 'INVALID_CREDENTIALS'
    description = 'Invalid credentials'


class Forbidden(AuthError):
    code = 403
    error_code = 'FORBIDDEN'
    description = 'Forbidden'


class AccountInactive(Forbidden):
    error_code = 'ACCOUNT_INACTIVE'
    description = 'Account is inactive'


class InvalidImpersonationTarget(AuthError):
    code = 400
    error_code = 'INVALID_IMPERSONATION_TARGET'
    description = 'Invalid impersonation target'


class AlreadyImpersonating(AuthError):
    code = 409
    error_code = 'ALREADY_IMPERSONATING'
    description = 'Already impersonating; stop the current impersonation first'


class SessionConflict(AuthError):
    code = 409
    error_code = 'SESSION_CONFLICT'
    description = 'Session was modified concurrently; retry'


class AuditWriteFailure(AuthError):
    code = 500
    error_code = 'AUDIT_WRITE_FAILURE'
    description = 'Audit log write failed'


__all__ = [
    'AuthError', 'Unauthenticated', 'InvalidCredentials', 'Forbidden', 'AccountInactive',
    'InvalidImpersonationTarget', 'AlreadyImpersonating', 'SessionConflict', 'AuditWriteFailure',
]
