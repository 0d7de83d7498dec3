from __future__ import annotations
import hashlib
import logging
import threading
from typing import Any, Dict, Optional

from flask import current_app
from sqlalchemy import func, select

from staffauth import get_db
from staffauth.errors import AuditWriteFailure
from staffauth.models.audit import AuditLog
from staffauth.models.session import AuthSession
from staffauth.services.identity import get_user

# Operational error channel for audit failures
audit_logger = logging.getLogger('staffauth.audit')

_seq_lock = threading.Lock()


def _fail_closed() -> bool:
    try:
        return bool(current_app.config.get('AUDIT_FAIL_CLOSED', False))
    except RuntimeError:  # outside app context
        return False


def _next_seq(db) -> int:
    current = db.execute(select(func.max(AuditLog.seq))).scalar()
    return (current or 0) + 1


def impersonation_context(auth_session: AuthSession, extra: Optional[Dict[str, Any]] = None) -> Optional[Dict[str, Any]]:
    """Server-derived impersonation metadata; caller data is nested under ``extra``."""

    if not auth_session.is_impersonating and not extra:
        return None
    ctx: Dict[str, Any] = {}
    if auth_session.is_impersonating:
        target = get_user(auth_session.impersonated_user_id)
        original = get_user(auth_session.original_user_id)
        ctx.update({
            'targetUserId': auth_session.impersonated_user_id,
            'targetUserType': target.user_type if target else None,
            'targetRole': target.role if target else None,
            'originalRole': original.role if original else None,
            'sessionRef': hashlib.sha256(auth_session.session_id.encode()).hexdigest()[:16],
        })
    if extra:
        ctx['extra'] = dict(extra)
    return ctx


def build_entry(
    auth_session: AuthSession,
    action: str,
    resource_type: Optional[str] = None,
    resource_id: Any = None,
    context: Optional[Dict[str, Any]] = None,
    meta: Optional[Dict[str, Any]] = None,
) -> AuditLog:
    # impersonation fields always come from the session record, never from callers
    return AuditLog(
        actor_effective_id=auth_session.effective_user_id,
        original_user_id=auth_session.original_user_id,
        is_impersonated=auth_session.is_impersonating,
        impersonation_context=impersonation_context(auth_session, context),
        action=action,
        resource_type=resource_type,
        resource_id=str(resource_id) if resource_id is not None else None,
        meta=dict(meta or {}),
    )


def _append(db, entry: AuditLog):
    """Allocate ``seq`` and commit; the lock spans the commit so the next
    writer reads a max that already includes this entry."""
    with _seq_lock:
        entry.seq = _next_seq(db)
        db.add(entry)
        db.commit()


def record(
    auth_session: AuthSession,
    action: str,
    resource_type: Optional[str] = None,
    resource_id: Any = None,
    context: Optional[Dict[str, Any]] = None,
    meta: Optional[Dict[str, Any]] = None,
    strict: Optional[bool] = None,
) -> Optional[AuditLog]:
    """Append an audit entry and commit it.

    The primary action must already be committed: on failure only the audit
    write is rolled back. Failures go to the ``staffauth.audit`` logger; with
    ``strict`` (default: AUDIT_FAIL_CLOSED) they raise AuditWriteFailure.
    """
    if strict is None:
        strict = _fail_closed()
    db = get_db()
    try:
        entry = build_entry(auth_session, action, resource_type, resource_id, context, meta)
        _append(db, entry)
        return entry
    except Exception as exc:
        db.rollback()
        audit_logger.error('audit write failed action=%s resource=%s/%s: %s', action, resource_type, resource_id, exc)
        if strict:
            raise AuditWriteFailure() from exc
        return None


def commit_with_audit(
    auth_session: AuthSession,
    action: str,
    resource_type: Optional[str] = None,
    resource_id: Any = None,
    context: Optional[Dict[str, Any]] = None,
    meta: Optional[Dict[str, Any]] = None,
) -> Optional[AuditLog]:
    """Commit pending primary changes together with their audit entry.

    Fail-open: primary commits first, audit is best effort.
    Fail-closed: both land in one transaction or neither does.
    """
    db = get_db()
    # conflicts on the primary change surface as themselves, not as audit failures
    db.flush()
    if not _fail_closed():
        db.commit()
        return record(auth_session, action, resource_type, resource_id, context, meta, strict=False)
    try:
        entry = build_entry(auth_session, action, resource_type, resource_id, context, meta)
        _append(db, entry)
        return entry
    except Exception as exc:
        db.rollback()
        audit_logger.error('audit write failed, primary action rolled back action=%s: %s', action, exc)
        raise AuditWriteFailure() from exc


__all__ = ['record', 'commit_with_audit', 'build_entry', 'impersonation_context', 'audit_logger']
