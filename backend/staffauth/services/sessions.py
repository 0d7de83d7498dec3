from __future__ import annotations
"""Session manager: login, impersonation state machine and session restore.

States: ANONYMOUS (no record), AUTHENTICATED, IMPERSONATING.

Every transition is validated before the record is touched; a rejected
transition leaves the stored record unchanged. Concurrent transitions on the
same session id are serialized by the record's version column and surface as
SessionConflict.
"""
import hashlib
import logging
import secrets
from datetime import datetime, timedelta
from typing import Optional, Tuple

from flask import current_app
from sqlalchemy import delete, func, select, update
from sqlalchemy.orm.exc import StaleDataError

from staffauth import get_db
from staffauth.constants.permissions import IMPERSONATE, SUPER_ADMIN
from staffauth.errors import (
    AccountInactive, AlreadyImpersonating, Forbidden, InvalidImpersonationTarget, SessionConflict, Unauthenticated,
)
from staffauth.models.identity import User
from staffauth.models.session import AuthSession, RestoreToken, ensure_utc, utcnow
from staffauth.services import audit
from staffauth.services.identity import authenticate, get_user, user_json
from staffauth.services.permissions import permissions_for
from staffauth.services.scope import scope
from staffauth.utils.fsm import TransitionValidator

logger = logging.getLogger(__name__)

STATE_ANONYMOUS = 'ANONYMOUS'
STATE_AUTHENTICATED = 'AUTHENTICATED'
STATE_IMPERSONATING = 'IMPERSONATING'

SESSION_FSM = TransitionValidator(
    {
        STATE_ANONYMOUS: {STATE_AUTHENTICATED},
        STATE_AUTHENTICATED: {STATE_IMPERSONATING, STATE_ANONYMOUS},
        STATE_IMPERSONATING: {STATE_AUTHENTICATED, STATE_ANONYMOUS},
    },
    field_name='session state',
    # no nested impersonation chains
    errors={(STATE_IMPERSONATING, STATE_IMPERSONATING): lambda d: AlreadyImpersonating()},
)

DEFAULT_SESSION_TTL_SECONDS = 8 * 60 * 60
DEFAULT_RESTORE_TOKEN_TTL_SECONDS = 15 * 60


def state_of(auth_session: Optional[AuthSession]) -> str:
    if auth_session is None:
        return STATE_ANONYMOUS
    return STATE_IMPERSONATING if auth_session.is_impersonating else STATE_AUTHENTICATED


def _session_ttl() -> timedelta:
    return timedelta(seconds=int(current_app.config.get('SESSION_TTL_SECONDS', DEFAULT_SESSION_TTL_SECONDS)))


def _restore_ttl() -> timedelta:
    return timedelta(seconds=int(current_app.config.get('RESTORE_TOKEN_TTL_SECONDS', DEFAULT_RESTORE_TOKEN_TTL_SECONDS)))


def _hash_token(token: str) -> str:
    return hashlib.sha256(token.encode()).hexdigest()


def _commit_transition(auth_session: AuthSession, action: str, resource_type: str = 'Session',
                       resource_id=None, meta: Optional[dict] = None):
    try:
        audit.commit_with_audit(auth_session, action, resource_type, resource_id, meta=meta)
    except StaleDataError as exc:
        get_db().rollback()
        logger.warning('session %s modified concurrently during %s', _short(auth_session.session_id), action)
        raise SessionConflict() from exc


def _short(session_id: str) -> str:
    return session_id[:8]


def _open_session(user: User) -> AuthSession:
    now = utcnow()
    auth_session = AuthSession(
        session_id=secrets.token_urlsafe(32),
        original_user_id=user.id,
        impersonated_user_id=None,
        created_at=now,
        expires_at=now + _session_ttl(),
    )
    get_db().add(auth_session)
    return auth_session


def _check_target(original: User, target_user_id) -> User:
    """Validate an impersonation target without touching the session."""
    try:
        target_id = int(target_user_id)
    except (TypeError, ValueError):
        raise InvalidImpersonationTarget(description='targetUserId must be an integer')
    target = get_user(target_id)
    if target is None:
        raise InvalidImpersonationTarget(description='Target user not found')
    if not target.is_active:
        raise InvalidImpersonationTarget(description='Target account is inactive')
    if target.role == SUPER_ADMIN:
        raise InvalidImpersonationTarget(description='A super_admin cannot be impersonated')
    if target.id == original.id:
        raise InvalidImpersonationTarget(description='Cannot impersonate yourself')
    return target


def require_impersonator(original: Optional[User]) -> User:
    if original is None or not original.is_active:
        raise Unauthenticated()
    if IMPERSONATE not in permissions_for(original):
        raise Forbidden(description='impersonate permission required')
    return original


# --- Operations ---

def login(username: str, password: str) -> AuthSession:
    user = authenticate(username, password)
    SESSION_FSM.assert_can_transition(STATE_ANONYMOUS, STATE_AUTHENTICATED)
    auth_session = _open_session(user)
    _commit_transition(auth_session, 'SESSION.LOGIN', 'User', user.id)
    logger.info('login user=%s session=%s', user.id, _short(auth_session.session_id))
    return auth_session


def load_session(session_id: Optional[str], now: Optional[datetime] = None) -> AuthSession:
    if not session_id:
        raise Unauthenticated()
    auth_session = get_db().get(AuthSession, session_id)
    if auth_session is None or auth_session.is_expired(now):
        raise Unauthenticated(description='Session expired or unknown')
    return auth_session


def effective_user(auth_session: AuthSession) -> User:
    user = get_user(auth_session.effective_user_id)
    if user is None:
        raise Unauthenticated()
    return user


def start_impersonation(auth_session: AuthSession, target_user_id) -> AuthSession:
    # permission is checked on the original identity, never the impersonated one
    original = require_impersonator(get_user(auth_session.original_user_id))
    SESSION_FSM.assert_can_transition(state_of(auth_session), STATE_IMPERSONATING)
    target = _check_target(original, target_user_id)
    auth_session.impersonated_user_id = target.id
    _commit_transition(auth_session, 'IMPERSONATION.START', 'User', target.id,
                       meta={'targetUserType': target.user_type, 'targetRole': target.role})
    logger.info('impersonation start original=%s target=%s session=%s',
                original.id, target.id, _short(auth_session.session_id))
    return auth_session


def stop_impersonation(auth_session: AuthSession) -> AuthSession:
    if not auth_session.is_impersonating:
        return auth_session
    SESSION_FSM.assert_can_transition(STATE_IMPERSONATING, STATE_AUTHENTICATED)
    previous = auth_session.impersonated_user_id
    auth_session.impersonated_user_id = None
    _commit_transition(auth_session, 'IMPERSONATION.STOP', 'User', previous,
                       meta={'previousImpersonatedUserId': previous})
    logger.info('impersonation stop original=%s target=%s', auth_session.original_user_id, previous)
    return auth_session


def _reapply_impersonation(auth_session: AuthSession, original: User, target_user_id) -> bool:
    """Best-effort impersonation on restore; falls back to a plain session."""
    if target_user_id is None:
        return False
    try:
        require_impersonator(original)
        _check_target(original, target_user_id)
    except (Forbidden, InvalidImpersonationTarget, Unauthenticated) as exc:
        logger.warning('restore: impersonation of %s not re-applied for user %s (%s)',
                       target_user_id, original.id, getattr(exc, 'description', exc))
        return False
    auth_session.impersonated_user_id = int(target_user_id)
    return True


def restore_session(username: str, password: str, impersonated_user_id=None) -> AuthSession:
    user = authenticate(username, password)
    auth_session = _open_session(user)
    restored = _reapply_impersonation(auth_session, user, impersonated_user_id)
    _commit_transition(auth_session, 'SESSION.RESTORE', 'User', user.id, meta={
        'via': 'credentials',
        'requestedImpersonatedUserId': impersonated_user_id,
        'impersonationRestored': restored,
    })
    return auth_session


def restore_with_token(token: Optional[str]) -> AuthSession:
    if not token or not isinstance(token, str):
        raise Unauthenticated(description='restore token required')
    db = get_db()
    token_hash = _hash_token(token)
    now = utcnow()
    row = db.get(RestoreToken, token_hash)
    if row is None or not row.is_usable(now):
        raise Unauthenticated(description='Restore token expired or unknown')
    user = get_user(row.original_user_id)
    if user is None:
        raise Unauthenticated()
    if not user.is_active:
        raise AccountInactive()
    # conditional consume: of two concurrent redemptions only one matches
    consumed = db.execute(
        update(RestoreToken)
        .where(RestoreToken.token_hash == token_hash, RestoreToken.consumed_at.is_(None),
               RestoreToken.expires_at > now)
        .values(consumed_at=now)
        .execution_options(synchronize_session=False)
    ).rowcount
    if consumed != 1:
        db.rollback()
        logger.warning('restore token for user %s already redeemed', user.id)
        raise Unauthenticated(description='Restore token expired or unknown')
    auth_session = _open_session(user)
    restored = _reapply_impersonation(auth_session, user, row.impersonated_user_id)
    _commit_transition(auth_session, 'SESSION.RESTORE', 'User', user.id, meta={
        'via': 'restore_token',
        'requestedImpersonatedUserId': row.impersonated_user_id,
        'impersonationRestored': restored,
    })
    return auth_session


def issue_restore_token(auth_session: AuthSession) -> str:
    """Issue a single-use token bound to this session; earlier ones for it are retired."""
    db = get_db()
    now = utcnow()
    db.execute(
        update(RestoreToken)
        .where(RestoreToken.session_id == auth_session.session_id, RestoreToken.consumed_at.is_(None))
        .values(consumed_at=now)
    )
    token = secrets.token_urlsafe(32)
    db.add(RestoreToken(
        token_hash=_hash_token(token),
        session_id=auth_session.session_id,
        original_user_id=auth_session.original_user_id,
        impersonated_user_id=auth_session.impersonated_user_id,
        created_at=now,
        expires_at=now + _restore_ttl(),
    ))
    db.commit()
    return token


def logout(auth_session: AuthSession):
    db = get_db()
    SESSION_FSM.assert_can_transition(state_of(auth_session), STATE_ANONYMOUS)
    db.execute(
        update(RestoreToken)
        .where(RestoreToken.session_id == auth_session.session_id, RestoreToken.consumed_at.is_(None))
        .values(consumed_at=utcnow())
    )
    db.delete(auth_session)
    _commit_transition(auth_session, 'SESSION.LOGOUT', 'User', auth_session.original_user_id)


def end_sessions_for_user(user_id: int) -> Tuple[int, int]:
    """Drop sessions owned by ``user_id`` and clear impersonations targeting it.

    Used when an account is deactivated. Returns (deleted, cleared).
    """
    db = get_db()
    deleted = db.execute(delete(AuthSession).where(AuthSession.original_user_id == user_id)).rowcount or 0
    cleared = 0
    for auth_session in db.execute(select(AuthSession).where(AuthSession.impersonated_user_id == user_id)).scalars():
        auth_session.impersonated_user_id = None
        cleared += 1
    db.flush()
    return deleted, cleared


def sweep_expired(now: Optional[datetime] = None) -> int:
    """Storage hygiene only; expired sessions are already rejected on load."""
    db = get_db()
    now = now or utcnow()
    deleted = db.execute(delete(AuthSession).where(AuthSession.expires_at <= now)).rowcount or 0
    db.execute(delete(RestoreToken).where(RestoreToken.expires_at <= now))
    db.commit()
    if deleted:
        logger.info('session sweeper removed %s expired sessions', deleted)
    else:
        logger.debug('session sweeper found no expired sessions')
    return deleted


def session_stats(now: Optional[datetime] = None) -> dict:
    db = get_db()
    now = now or utcnow()
    total = db.execute(select(func.count()).select_from(AuthSession)).scalar() or 0
    expired = db.execute(select(func.count()).select_from(AuthSession).where(AuthSession.expires_at <= now)).scalar() or 0
    impersonating = db.execute(
        select(func.count()).select_from(AuthSession)
        .where(AuthSession.expires_at > now, AuthSession.impersonated_user_id.is_not(None))
    ).scalar() or 0
    return {
        'total_sessions': total,
        'active_sessions': total - expired,
        'expired_sessions': expired,
        'impersonating_sessions': impersonating,
    }


def session_status(auth_session: AuthSession) -> dict:
    user = effective_user(auth_session)
    original = get_user(auth_session.original_user_id)
    return {
        'user': user_json(user),
        'isImpersonating': auth_session.is_impersonating,
        'originalUser': user_json(original),
        'originalUserId': auth_session.original_user_id,
        'impersonatedUserId': auth_session.impersonated_user_id,
        'permissions': sorted(permissions_for(user)),
        'scope': scope(user).to_json(),
        'expiresAt': ensure_utc(auth_session.expires_at).isoformat(),
    }
