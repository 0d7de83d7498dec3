from flask import Blueprint, abort, g
from staffauth import get_db
from staffauth.decorators.audit import audit_log
from staffauth.decorators.auth import require_auth, current_context
from staffauth.models.identity import Facility
from staffauth.models.resources import Invoice, Shift
from staffauth.services import scope as scope_service
from staffauth.utils.listing import apply_pagination, build_list_payload, parse_int_arg

# Business handlers that consume the request context. They never look up identity
# themselves and never re-derive facility scope.
api_bp = Blueprint('api', __name__)


def _facility_json(f: Facility):
    return {'id': f.id, 'name': f.name, 'is_active': f.is_active}


def _shift_json(s: Shift):
    return {'id': s.id, 'facility_id': s.facility_id, 'title': s.title, 'status': s.status}


def _invoice_json(i: Invoice):
    return {'id': i.id, 'facility_id': i.facility_id, 'amount_cents': i.amount_cents, 'status': i.status}


@api_bp.get('/facilities')
@require_auth('facilities.view')
def list_facilities():
    q = scope_service.apply_to_query(get_db().query(Facility), Facility.id, current_context().scope)
    q, total, limit, offset = apply_pagination(q.order_by(Facility.id.asc()))
    return build_list_payload([_facility_json(f) for f in q.all()], total, limit, offset)


@api_bp.get('/facilities/<int:facility_id>')
@require_auth('facilities.view', facility_arg='facility_id')
def get_facility(facility_id):
    facility = get_db().get(Facility, facility_id)
    if facility is None:
        abort(404, description='Facility not found')
    return _facility_json(facility)


@api_bp.get('/shifts')
@require_auth('shifts.view', facility_arg='facilityId')
def list_shifts():
    q = get_db().query(Shift)
    facility_id = parse_int_arg('facilityId')
    if facility_id is not None:
        q = q.filter(Shift.facility_id == facility_id)
    q = scope_service.apply_to_query(q, Shift.facility_id, current_context().scope)
    q, total, limit, offset = apply_pagination(q.order_by(Shift.id.asc()))
    return build_list_payload([_shift_json(s) for s in q.all()], total, limit, offset)


@api_bp.get('/shifts/<int:shift_id>')
@require_auth('shifts.view', resource=(Shift, 'shift_id'))
def get_shift(shift_id):
    return _shift_json(g.resource)


@api_bp.get('/billing/invoices')
@require_auth('billing.view', facility_arg='facilityId')
@audit_log('BILLING.INVOICES.VIEW', resource_type='Invoice',
           meta_builder=lambda data, rv, args, kwargs: {
               'returned': data.get('pagination', {}).get('returned'),
               'facilityId': parse_int_arg('facilityId'),
           })
def list_invoices():
    q = get_db().query(Invoice)
    facility_id = parse_int_arg('facilityId')
    if facility_id is not None:
        q = q.filter(Invoice.facility_id == facility_id)
    q = scope_service.apply_to_query(q, Invoice.facility_id, current_context().scope)
    q, total, limit, offset = apply_pagination(q.order_by(Invoice.id.asc()))
    return build_list_payload([_invoice_json(i) for i in q.all()], total, limit, offset)
