from __future__ import annotations
"""Audit logging decorator for read handlers that change no state.

Usage:

@audit_log('BILLING.INVOICES.VIEW', resource_type='Invoice',
           meta_builder=lambda data, rv, args, kwargs: {'count': len(data.get('data', []))})
def list_invoices(): ...

Parameters:
  action: required audit action code (e.g. BILLING.INVOICES.VIEW)
  resource_type: optional resource label (User, Facility, Invoice)
  resource_id_arg: name of the path parameter whose value becomes resource_id.
  meta_builder: callable returning a meta dict; receives (data, original_return_value, args, kwargs).

State-changing handlers call ``audit.commit_with_audit`` directly.

The entry is written through the session of the current request, so
impersonation fields always reflect the server-side session record. Nothing is
recorded when the handler raises or returns an error status.
"""

from functools import wraps
from typing import Any, Callable, Optional

from staffauth.decorators.auth import current_context
from staffauth.services import audit


def _extract_payload(rv: Any):
    """Return (data, status) from a view return value."""
    if isinstance(rv, tuple) and rv:
        status = rv[1] if len(rv) > 1 and isinstance(rv[1], int) else 200
        return rv[0], status
    return rv, getattr(rv, 'status_code', 200)


def audit_log(
    action: str,
    *,
    resource_type: Optional[str] = None,
    resource_id_arg: Optional[str] = None,
    meta_builder: Optional[Callable[[dict, Any, tuple, dict], dict]] = None,
):
    def outer(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            rv = fn(*args, **kwargs)
            data, status = _extract_payload(rv)
            if status >= 400:
                return rv
            if not isinstance(data, dict):
                data = {}
            resource_id = kwargs.get(resource_id_arg) if resource_id_arg else None
            meta = (meta_builder(data, rv, args, kwargs) or {}) if meta_builder else {}
            audit.record(current_context().session, action, resource_type, resource_id, meta=meta)
            return rv
        return wrapper
    return outer


__all__ = ['audit_log']
