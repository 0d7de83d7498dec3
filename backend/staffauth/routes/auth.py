from flask import Blueprint, request, abort
from flask_jwt_extended import create_access_token

from staffauth.decorators.auth import require_auth, current_context
from staffauth.models.session import ensure_utc, utcnow
from staffauth.services import sessions
from staffauth.services.identity import list_impersonation_targets, user_json

auth_bp = Blueprint('auth', __name__)


def _body() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def _credentials(data: dict, message: str):
    username = data.get('username')
    password = data.get('password')
    if not isinstance(username, str) or not isinstance(password, str) or not username or not password:
        abort(400, description=message)
    return username, password


def _access_token(auth_session) -> str:
    # token lifetime tracks the server-side session; the record stays authoritative
    remaining = ensure_utc(auth_session.expires_at) - utcnow()
    return create_access_token(identity=auth_session.session_id, expires_delta=remaining)


def _status_payload(auth_session, with_access_token=False):
    payload = sessions.session_status(auth_session)
    if with_access_token:
        payload['access_token'] = _access_token(auth_session)
    payload['restore_token'] = sessions.issue_restore_token(auth_session)
    return payload


@auth_bp.post('/login')
def login():
    username, password = _credentials(_body(), 'username and password required')
    auth_session = sessions.login(username, password)
    return _status_payload(auth_session, with_access_token=True)


@auth_bp.post('/logout')
@require_auth(allow_inactive_target=True)
def logout():
    sessions.logout(current_context().session)
    return {'status': 'logged_out'}


@auth_bp.post('/impersonate/start')
@require_auth()
def start_impersonation():
    # no permission argument: the check runs against the original identity inside the session manager
    data = _body()
    if data.get('targetUserId') is None:
        abort(400, description='targetUserId required')
    auth_session = sessions.start_impersonation(current_context().session, data.get('targetUserId'))
    return _status_payload(auth_session)


@auth_bp.post('/impersonate/stop')
@require_auth(allow_inactive_target=True)
def stop_impersonation():
    auth_session = sessions.stop_impersonation(current_context().session)
    return _status_payload(auth_session)


@auth_bp.get('/impersonate/targets')
@require_auth()
def impersonation_targets():
    ctx = current_context()
    sessions.require_impersonator(ctx.original_user)
    rows = [u for u in list_impersonation_targets() if u.id != ctx.original_user.id]
    return {'data': [user_json(u) for u in rows], 'total': len(rows)}


@auth_bp.post('/restore-session')
def restore_session():
    data = _body()
    token = data.get('restoreToken')
    if token is not None:
        if not isinstance(token, str) or not token:
            abort(400, description='restoreToken must be a non-empty string')
        auth_session = sessions.restore_with_token(token)
    else:
        username, password = _credentials(data, 'restoreToken or username and password required')
        auth_session = sessions.restore_session(username, password, data.get('impersonatedUserId'))
    return _status_payload(auth_session, with_access_token=True)


@auth_bp.get('/session-status')
@require_auth()
def session_status():
    return sessions.session_status(current_context().session)
