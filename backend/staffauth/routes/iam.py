from flask import Blueprint, request, abort
from staffauth import get_db
from staffauth.constants.permissions import IMPERSONATE, PERMISSION_CATALOG, ROLE_PERMISSIONS, SUPER_ADMIN
from staffauth.decorators.auth import require_auth, current_context
from staffauth.errors import Forbidden
from staffauth.models.audit import AuditLog
from staffauth.models.identity import User
from staffauth.services import audit, identity, scope as scope_service, sessions
from staffauth.utils.listing import apply_pagination, build_list_payload, parse_bool_arg, parse_int_arg

iam_bp = Blueprint('iam', __name__)


def _target_user(user_id: int) -> User:
    user = identity.get_user(user_id)
    if user is None:
        abort(404, description='User not found')
    if not scope_service.user_visible(current_context().scope, user):
        raise Forbidden(description='User outside your facility scope')
    return user


def _string_list(data: dict, key: str):
    value = data.get(key, [])
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        abort(400, description=f'{key} must be a list of strings')
    return value


@iam_bp.get('/permissions')
@require_auth('system.manage_permissions')
def list_permissions():
    rows = [{'name': p.name, 'category': p.category} for p in sorted(PERMISSION_CATALOG.values(), key=lambda p: p.name)]
    roles = {name: sorted(perms) for name, perms in ROLE_PERMISSIONS.items() if name != SUPER_ADMIN}
    return {'data': rows, 'roles': roles, 'total': len(rows)}


@iam_bp.get('/users')
@require_auth('users.view')
def list_users():
    ctx = current_context()
    q = get_db().query(User)
    q = scope_service.apply_to_user_query(q, ctx.scope)
    if not isinstance(ctx.scope, scope_service.Unrestricted):
        q = q.filter(User.role != SUPER_ADMIN)
    active = parse_bool_arg('is_active')
    if active is not None:
        q = q.filter(User.is_active.is_(active))
    if request.args.get('user_type'):
        q = q.filter(User.user_type == request.args['user_type'])
    q, total, limit, offset = apply_pagination(q.order_by(User.id.asc()))
    return build_list_payload([identity.user_json(u) for u in q.all()], total, limit, offset)


def _set_active(user_id: int, active: bool, action: str):
    ctx = current_context()
    user = _target_user(user_id)
    if not active and user.id in (ctx.effective_user.id, ctx.original_user.id):
        abort(400, description='Cannot deactivate your own account')
    identity.set_active(user, active)
    meta = {'isActive': active}
    if not active:
        deleted, cleared = sessions.end_sessions_for_user(user.id)
        meta.update({'sessionsEnded': deleted, 'impersonationsCleared': cleared})
    audit.commit_with_audit(ctx.session, action, 'User', user.id, meta=meta)
    return identity.user_json(user)


@iam_bp.post('/users/<int:user_id>/deactivate')
@require_auth('users.edit')
def deactivate_user(user_id):
    return _set_active(user_id, False, 'USER.DEACTIVATE')


@iam_bp.post('/users/<int:user_id>/activate')
@require_auth('users.edit')
def activate_user(user_id):
    return _set_active(user_id, True, 'USER.ACTIVATE')


@iam_bp.put('/users/<int:user_id>/permissions')
@require_auth('system.manage_permissions')
def replace_user_permissions(user_id):
    ctx = current_context()
    user = _target_user(user_id)
    data = request.get_json(silent=True) or {}
    grants = _string_list(data, 'grants')
    revocations = _string_list(data, 'revocations')
    if IMPERSONATE in grants and ctx.original_user.role != SUPER_ADMIN:
        raise Forbidden(description='Only super_admin may grant impersonate')
    before = {'grants': sorted(user.grants), 'revocations': sorted(user.revocations)}
    try:
        identity.set_permission_overrides(user, grants, revocations)
    except ValueError as e:
        get_db().rollback()
        abort(400, description=str(e))
    after = {'grants': sorted(user.grants), 'revocations': sorted(user.revocations)}
    changes = {k: {'before': before[k], 'after': after[k]} for k in before if before[k] != after[k]}
    audit.commit_with_audit(ctx.session, 'USER.PERMISSIONS.REPLACE', 'User', user.id, meta={'changes': changes})
    return {'id': user.id, **after}


@iam_bp.put('/users/<int:user_id>/facilities')
@require_auth('users.edit')
def replace_user_facilities(user_id):
    ctx = current_context()
    user = _target_user(user_id)
    data = request.get_json(silent=True) or {}
    raw = data.get('facility_ids')
    if not isinstance(raw, list) or not all(isinstance(v, int) and not isinstance(v, bool) for v in raw):
        abort(400, description='facility_ids must be a list of integers')
    outside = sorted(fid for fid in set(raw) if not scope_service.validate(ctx.scope, fid))
    if outside:
        raise Forbidden(description=f'Facilities outside your scope: {outside}')
    before = sorted(user.associated_facility_ids)
    try:
        identity.set_facilities(user, raw)
    except ValueError as e:
        get_db().rollback()
        abort(400, description=str(e))
    after = sorted(user.associated_facility_ids)
    audit.commit_with_audit(ctx.session, 'USER.FACILITIES.REPLACE', 'User', user.id,
                            meta={'changes': {'facility_ids': {'before': before, 'after': after}}})
    return {'id': user.id, 'primaryFacilityId': user.primary_facility_id, 'associatedFacilityIds': after}


def _audit_json(row: AuditLog):
    return {
        'id': row.id,
        'seq': row.seq,
        'actor_effective_id': row.actor_effective_id,
        'original_user_id': row.original_user_id,
        'is_impersonated': row.is_impersonated,
        'impersonation_context': row.impersonation_context,
        'action': row.action,
        'resource_type': row.resource_type,
        'resource_id': row.resource_id,
        'meta': row.meta,
        'created_at': row.created_at.isoformat() if row.created_at else None,
    }


@iam_bp.get('/audit/logs')
@require_auth('system.view_audit_logs')
def list_audit_logs():
    q = get_db().query(AuditLog)
    for col in ('actor_effective_id', 'original_user_id'):
        value = parse_int_arg(col)
        if value is not None:
            q = q.filter(getattr(AuditLog, col) == value)
    impersonated = parse_bool_arg('is_impersonated')
    if impersonated is not None:
        q = q.filter(AuditLog.is_impersonated.is_(impersonated))
    for col in ('action', 'resource_type'):
        if request.args.get(col):
            q = q.filter(getattr(AuditLog, col) == request.args[col])
    q, total, limit, offset = apply_pagination(q.order_by(AuditLog.seq.desc()))
    return build_list_payload([_audit_json(r) for r in q.all()], total, limit, offset)
