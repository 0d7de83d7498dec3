import pytest

from staffauth.errors import (
    AccountInactive, AlreadyImpersonating, AuditWriteFailure, Forbidden, InvalidCredentials,
    InvalidImpersonationTarget, SessionConflict, Unauthenticated,
)
from tests.test_lifecycle_helpers import login_headers
from tests.test_utils_seed import ensure_super_admin


def test_unknown_path_returns_error_json(client):
    resp = client.get('/non-existent-path')
    # Flask default 404 should be wrapped by error handler
    assert resp.status_code == 404
    body = resp.get_json()
    assert 'error' in body
    assert body['error']['status'] == 404
    assert 'detail' in body['error']
    assert 'code' not in body['error']


@pytest.mark.parametrize('exc, status, code', [
    (Unauthenticated, 401, 'UNAUTHENTICATED'),
    (InvalidCredentials, 401, 'INVALID_CREDENTIALS'),
    (Forbidden, 403, 'FORBIDDEN'),
    (AccountInactive, 403, 'ACCOUNT_INACTIVE'),
    (InvalidImpersonationTarget, 400, 'INVALID_IMPERSONATION_TARGET'),
    (AlreadyImpersonating, 409, 'ALREADY_IMPERSONATING'),
    (SessionConflict, 409, 'SESSION_CONFLICT'),
    (AuditWriteFailure, 500, 'AUDIT_WRITE_FAILURE'),
])
def test_error_taxonomy_codes(exc, status, code):
    err = exc()
    assert err.code == status
    assert err.error_code == code


def test_internal_error_shape(client, monkeypatch):
    ensure_super_admin()
    headers = login_headers(client, 'root')
    # Monkeypatch AFTER login so auth works; only break the status view
    import staffauth.routes.auth as auth_mod

    def boom(auth_session):
        raise RuntimeError('explode')
    monkeypatch.setattr(auth_mod.sessions, 'session_status', boom)
    resp = client.get('/session-status', headers=headers)
    assert resp.status_code == 500
    body = resp.get_json()
    assert body['error']['status'] == 500
    assert body['error']['title'] == 'Internal Server Error'


def test_healthz(client):
    assert client.get('/healthz').get_json() == {'status': 'ok'}
