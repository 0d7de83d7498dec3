from __future__ import annotations
"""Request authorization: authenticate, check permission, check facility scope.

Handlers never look up identity themselves; they read the frozen context the
decorator attaches to ``flask.g.auth`` through ``current_context()``.
"""
import logging
from dataclasses import dataclass
from functools import wraps
from typing import Any, Optional, Tuple

from flask import abort, g, request
from flask_jwt_extended import get_jwt_identity, verify_jwt_in_request

from staffauth import get_db
from staffauth.errors import AccountInactive, Forbidden, Unauthenticated
from staffauth.models.identity import User
from staffauth.models.session import AuthSession
from staffauth.services import audit, scope as scope_service, sessions
from staffauth.services.identity import get_user
from staffauth.services.permissions import PermissionSet, permissions_for

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RequestContext:
    effective_user: User
    original_user: User
    permissions: PermissionSet
    scope: scope_service.Scope
    session: AuthSession

    @property
    def is_impersonating(self) -> bool:
        return self.session.is_impersonating


@dataclass(frozen=True)
class AuthDecision:
    allowed: bool
    reason: Optional[str] = None
    status: int = 200


ALLOW = AuthDecision(True)


def authenticate_request(allow_inactive_target: bool = False) -> RequestContext:
    verify_jwt_in_request()
    auth_session = sessions.load_session(get_jwt_identity())
    original = get_user(auth_session.original_user_id)
    if original is None or not original.is_active:
        raise Unauthenticated(description='Account is no longer active')
    user = sessions.effective_user(auth_session)
    # a deactivated target only lets the session leave impersonation
    if not user.is_active and not allow_inactive_target:
        raise AccountInactive(description='Impersonated account is inactive; stop impersonation')
    return RequestContext(
        effective_user=user,
        original_user=original,
        permissions=permissions_for(user),
        scope=scope_service.scope(user),
        session=auth_session,
    )


def authorize(ctx: RequestContext, required_permission: Optional[str] = None,
              facility_id: Optional[int] = None) -> AuthDecision:
    if required_permission and required_permission not in ctx.permissions:
        return AuthDecision(False, f'missing permission {required_permission}', 403)
    if facility_id is not None and not scope_service.validate(ctx.scope, facility_id):
        return AuthDecision(False, f'facility {facility_id} outside scope', 403)
    return ALLOW


def current_context() -> RequestContext:
    ctx = getattr(g, 'auth', None)
    if ctx is None:
        raise Unauthenticated()
    return ctx


def _int_or_400(raw, name: str) -> Optional[int]:
    if raw is None or raw == '':
        return None
    try:
        return int(raw)
    except (TypeError, ValueError):
        abort(400, description=f'{name} must be an integer')


def _facility_from_request(facility_arg: Optional[str], kwargs: dict) -> Optional[int]:
    if not facility_arg:
        return None
    if facility_arg in kwargs:
        return _int_or_400(kwargs[facility_arg], facility_arg)
    return _int_or_400(request.args.get(facility_arg), facility_arg)


def _deny(ctx: RequestContext, decision: AuthDecision, permission: Optional[str],
          facility_id: Optional[int], resource: Tuple[Optional[str], Any]):
    resource_type, resource_id = resource
    logger.info('denied %s %s user=%s original=%s: %s', request.method, request.path,
                ctx.effective_user.id, ctx.original_user.id, decision.reason)
    audit.record(ctx.session, 'AUTHZ.DENIED', resource_type, resource_id, meta={
        'path': request.path,
        'method': request.method,
        'permission': permission,
        'facilityId': facility_id,
        'reason': decision.reason,
    }, strict=False)
    raise Forbidden(description=decision.reason)


def require_auth(permission: Optional[str] = None, *, facility_arg: Optional[str] = None,
                 resource: Optional[Tuple[type, str]] = None, allow_inactive_target: bool = False):
    """Authenticate the caller and enforce ``permission`` plus facility scope.

    ``facility_arg`` names a view argument or query parameter holding a
    facility id to pre-check. ``resource=(Model, id_arg)`` loads a
    facility-owned row (404 when absent) and checks its ``facility_id``; the
    row is handed to the view as ``g.resource``. ``allow_inactive_target``
    admits sessions impersonating a since-deactivated account, for the
    routes that end impersonation.
    """
    def outer(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            ctx = authenticate_request(allow_inactive_target)
            g.auth = ctx
            facility_id = _facility_from_request(facility_arg, kwargs)
            resource_ref: Tuple[Optional[str], Any] = (None, None)
            if resource is not None:
                model, id_arg = resource
                row_id = _int_or_400(kwargs.get(id_arg), id_arg)
                row = get_db().get(model, row_id) if row_id is not None else None
                if row is None:
                    abort(404, description=f'{model.__name__} not found')
                g.resource = row
                facility_id = row.facility_id
                resource_ref = (model.__name__, row.id)
            elif facility_id is not None:
                resource_ref = ('Facility', facility_id)
            decision = authorize(ctx, permission, facility_id)
            if not decision.allowed:
                _deny(ctx, decision, permission, facility_id, resource_ref)
            return fn(*args, **kwargs)
        return wrapper
    return outer


__all__ = ['RequestContext', 'AuthDecision', 'authenticate_request', 'authorize', 'require_auth', 'current_context']
