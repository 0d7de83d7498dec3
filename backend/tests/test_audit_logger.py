import logging
import threading
from types import SimpleNamespace

import pytest
from flask import abort, g
from werkzeug.exceptions import HTTPException
from sqlalchemy import select

from staffauth import get_db
from staffauth.decorators.audit import audit_log
from staffauth.errors import AuditWriteFailure
from staffauth.models.audit import AuditLog, AuditLogImmutable
from staffauth.models.session import AuthSession
from staffauth.services import audit, sessions
from tests.test_lifecycle_helpers import audit_entries
from tests.test_utils_seed import ensure_super_admin, ensure_user


def _impersonating_session():
    admin = ensure_super_admin()
    target = ensure_user('fu', 'supervisor', user_type='facility_user', facility_ids=[1])
    s = sessions.login('root', 'pw')
    sessions.start_impersonation(s, target.id)
    return admin, target, s


def test_entries_written_while_impersonating_carry_original_identity():
    admin, target, s = _impersonating_session()
    entry = audit.record(s, 'SHIFT.VIEW', 'Shift', 5)
    assert entry.is_impersonated is True
    assert entry.original_user_id == admin.id
    assert entry.actor_effective_id == target.id
    ctx = entry.impersonation_context
    assert ctx['targetUserId'] == target.id
    assert ctx['targetRole'] == 'supervisor'
    assert ctx['targetUserType'] == 'facility_user'
    assert ctx['originalRole'] == 'super_admin'
    assert len(ctx['sessionRef']) == 16
    assert entry.resource_id == '5'


def test_start_and_stop_are_audited_with_session_fields():
    admin, target, s = _impersonating_session()
    sessions.stop_impersonation(s)
    start = audit_entries('IMPERSONATION.START')[-1]
    stop = audit_entries('IMPERSONATION.STOP')[-1]
    assert start.is_impersonated and start.original_user_id == admin.id
    assert start.resource_id == str(target.id)
    # stop is recorded after the session left impersonation
    assert stop.is_impersonated is False
    assert stop.meta['previousImpersonatedUserId'] == target.id


def test_caller_context_cannot_overwrite_server_fields():
    admin, target, s = _impersonating_session()
    entry = audit.record(s, 'X', context={'targetUserId': 1, 'originalRole': 'viewer', 'note': 'n'})
    ctx = entry.impersonation_context
    assert ctx['targetUserId'] == target.id
    assert ctx['originalRole'] == 'super_admin'
    assert ctx['extra'] == {'targetUserId': 1, 'originalRole': 'viewer', 'note': 'n'}


def test_plain_session_entries_have_no_impersonation_context():
    admin = ensure_super_admin()
    s = sessions.login('root', 'pw')
    entry = audit.record(s, 'X')
    assert entry.is_impersonated is False
    assert entry.original_user_id == admin.id
    assert entry.impersonation_context is None


def test_sequence_is_strictly_increasing():
    ensure_super_admin()
    s = sessions.login('root', 'pw')
    for i in range(5):
        audit.record(s, 'TICK', meta={'i': i})
    seqs = [e.seq for e in audit_entries()]
    assert seqs == sorted(seqs)
    assert len(set(seqs)) == len(seqs)


def test_entries_are_append_only():
    ensure_super_admin()
    s = sessions.login('root', 'pw')
    entry = audit.record(s, 'X')
    db = get_db()
    entry.action = 'Y'
    with pytest.raises(AuditLogImmutable):
        db.flush()
    db.rollback()
    with pytest.raises(AuditLogImmutable):
        db.delete(db.get(AuditLog, entry.id))
        db.flush()
    db.rollback()
    assert db.execute(select(AuditLog.action).where(AuditLog.id == entry.id)).scalar_one() == 'X'


def _break_appends(monkeypatch):
    def boom(db, entry):
        raise RuntimeError('audit store down')
    monkeypatch.setattr(audit, '_append', boom)


def test_fail_open_keeps_primary_action_and_logs(monkeypatch, caplog):
    ensure_super_admin()
    target = ensure_user('t', 'staff', facility_ids=[1])
    s = sessions.login('root', 'pw')
    _break_appends(monkeypatch)
    with caplog.at_level(logging.ERROR, logger='staffauth.audit'):
        sessions.start_impersonation(s, target.id)
    get_db().expire_all()
    assert get_db().get(AuthSession, s.session_id).impersonated_user_id == target.id
    assert 'audit write failed' in caplog.text


def test_fail_closed_rolls_back_primary_action(app_instance, monkeypatch):
    app_instance.config['AUDIT_FAIL_CLOSED'] = True
    ensure_super_admin()
    target = ensure_user('t', 'staff', facility_ids=[1])
    s = sessions.login('root', 'pw')
    _break_appends(monkeypatch)
    with pytest.raises(AuditWriteFailure):
        sessions.start_impersonation(s, target.id)
    get_db().expire_all()
    assert get_db().get(AuthSession, s.session_id).impersonated_user_id is None


def test_record_strict_flag_overrides_policy(monkeypatch):
    ensure_super_admin()
    s = sessions.login('root', 'pw')
    _break_appends(monkeypatch)
    assert audit.record(s, 'X', strict=False) is None
    with pytest.raises(AuditWriteFailure):
        audit.record(s, 'X', strict=True)


def test_concurrent_writers_get_distinct_sequence_numbers(app_instance, file_db):
    ensure_super_admin()
    session_id = sessions.login('root', 'pw').session_id
    errors = []

    def writer(worker):
        with app_instance.app_context():
            try:
                own = get_db().get(AuthSession, session_id)
                for i in range(25):
                    audit.record(own, 'TICK', meta={'worker': worker, 'i': i}, strict=True)
            except Exception as exc:  # surfaced through the assertion below
                errors.append(exc)
            finally:
                file_db.remove()

    threads = [threading.Thread(target=writer, args=(n,)) for n in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert errors == []
    ticks = audit_entries('TICK')
    assert len(ticks) == 100
    seqs = [e.seq for e in audit_entries()]
    assert seqs == list(range(1, len(seqs) + 1))


@pytest.fixture()
def request_ctx(app_instance):
    ensure_super_admin()
    s = sessions.login('root', 'pw')
    with app_instance.test_request_context('/reports/1'):
        g.auth = SimpleNamespace(session=s)
        yield s


def test_audit_decorator_records_successful_handler(request_ctx):
    @audit_log('REPORT.VIEW', resource_type='Report', resource_id_arg='report_id',
               meta_builder=lambda data, rv, args, kwargs: {'rows': len(data['data'])})
    def view(report_id):
        return {'data': [1, 2]}

    view(report_id=7)
    entry = audit_entries('REPORT.VIEW')[-1]
    assert (entry.resource_type, entry.resource_id) == ('Report', '7')
    assert entry.meta == {'rows': 2}


def test_audit_decorator_skips_aborted_handler(request_ctx):
    @audit_log('REPORT.VIEW', resource_type='Report')
    def view():
        abort(403)

    with pytest.raises(HTTPException):
        view()
    assert audit_entries('REPORT.VIEW') == []


def test_audit_decorator_skips_error_status(request_ctx):
    @audit_log('REPORT.VIEW', resource_type='Report')
    def view():
        return {'error': 'nope'}, 409

    assert view()[1] == 409
    assert audit_entries('REPORT.VIEW') == []
