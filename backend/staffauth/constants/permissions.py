"""Central enum-like definitions for roles and permission names.
Extend cautiously; never rename names silently. Overrides stored on users refer to these strings.
"""
from __future__ import annotations
from dataclasses import dataclass
from typing import Dict, FrozenSet, List

SUPER_ADMIN = 'super_admin'
IMPERSONATE = 'impersonate'

# Identity variants sharing one users table
USER_TYPE_SYSTEM = 'system_user'
USER_TYPE_FACILITY = 'facility_user'
USER_TYPE_STAFF = 'staff'
USER_TYPES = (USER_TYPE_SYSTEM, USER_TYPE_FACILITY, USER_TYPE_STAFF)

CATEGORY_ACTIONS: Dict[str, List[str]] = {
    'users': ['view', 'create', 'edit', 'delete'],
    'facilities': ['view', 'create', 'edit', 'delete', 'manage_settings', 'view_profile', 'edit_profile'],
    'shifts': ['view', 'create', 'edit', 'delete', 'assign', 'request', 'approve_requests', 'manage_templates'],
    'staff': ['view', 'create', 'edit', 'deactivate', 'view_credentials', 'edit_credentials', 'manage_credentials'],
    'billing': ['view', 'create', 'edit', 'approve', 'view_rates', 'edit_rates', 'export'],
    'compliance': ['view', 'manage', 'upload_documents', 'verify_credentials'],
    'analytics': ['view', 'export', 'view_attendance', 'view_overtime', 'view_float_pool', 'view_agency_usage'],
    'jobs': ['view', 'create', 'edit', 'delete', 'manage_applications'],
    'system': ['view_audit_logs', 'manage_permissions', 'workflow_automation', 'referral_management', 'manage_integrations'],
}

# Names outside the category.action pattern
STANDALONE_PERMISSIONS: Dict[str, str] = {
    IMPERSONATE: 'system',
}


@dataclass(frozen=True)
class PermissionDef:
    name: str
    category: str


def build_permission_catalog() -> Dict[str, PermissionDef]:
    catalog: Dict[str, PermissionDef] = {}
    for category, actions in CATEGORY_ACTIONS.items():
        for act in actions:
            name = f"{category}.{act}"
            catalog[name] = PermissionDef(name=name, category=category)
    for name, category in STANDALONE_PERMISSIONS.items():
        catalog[name] = PermissionDef(name=name, category=category)
    return catalog

PERMISSION_CATALOG = build_permission_catalog()
ALL_PERMISSION_NAMES: FrozenSet[str] = frozenset(PERMISSION_CATALOG)

ROLE_PERMISSIONS: Dict[str, List[str]] = {
    # super_admin resolves to the universal set in the resolver; listed for completeness only
    SUPER_ADMIN: ['*'],
    'facility_admin': [
        'users.view', 'users.create', 'users.edit',
        'facilities.view', 'facilities.manage_settings', 'facilities.view_profile', 'facilities.edit_profile',
        'shifts.view', 'shifts.create', 'shifts.edit', 'shifts.delete', 'shifts.assign', 'shifts.approve_requests', 'shifts.manage_templates',
        'staff.view', 'staff.create', 'staff.edit', 'staff.deactivate', 'staff.view_credentials', 'staff.edit_credentials', 'staff.manage_credentials',
        'billing.view', 'billing.create', 'billing.edit', 'billing.approve', 'billing.view_rates', 'billing.edit_rates', 'billing.export',
        'compliance.view', 'compliance.manage', 'compliance.upload_documents', 'compliance.verify_credentials',
        'analytics.view', 'analytics.export', 'analytics.view_attendance', 'analytics.view_overtime', 'analytics.view_float_pool', 'analytics.view_agency_usage',
        'jobs.view', 'jobs.create', 'jobs.edit', 'jobs.delete', 'jobs.manage_applications',
        'system.view_audit_logs', 'system.manage_permissions',
    ],
    'scheduling_coordinator': [
        'facilities.view', 'facilities.view_profile',
        'shifts.view', 'shifts.create', 'shifts.edit', 'shifts.delete', 'shifts.assign', 'shifts.approve_requests', 'shifts.manage_templates',
        'staff.view', 'staff.view_credentials',
        'analytics.view', 'analytics.view_attendance', 'analytics.view_overtime',
    ],
    'hr_manager': [
        'facilities.view', 'facilities.view_profile',
        'shifts.view',
        'staff.view', 'staff.create', 'staff.edit', 'staff.deactivate', 'staff.view_credentials', 'staff.edit_credentials', 'staff.manage_credentials',
        'compliance.view', 'compliance.manage', 'compliance.upload_documents', 'compliance.verify_credentials',
        'analytics.view', 'analytics.view_attendance', 'analytics.view_overtime',
        'jobs.view', 'jobs.create', 'jobs.edit', 'jobs.delete', 'jobs.manage_applications',
        'system.referral_management',
    ],
    'billing_manager': [
        'facilities.view', 'facilities.view_profile',
        'shifts.view',
        'staff.view',
        'billing.view', 'billing.create', 'billing.edit', 'billing.approve', 'billing.view_rates', 'billing.edit_rates', 'billing.export',
        'analytics.view', 'analytics.export',
    ],
    'supervisor': [
        'facilities.view', 'facilities.view_profile',
        'shifts.view', 'shifts.approve_requests',
        'staff.view', 'staff.view_credentials',
        'analytics.view',
    ],
    'director_of_nursing': [
        'facilities.view', 'facilities.view_profile',
        'shifts.view', 'shifts.create', 'shifts.edit', 'shifts.assign', 'shifts.approve_requests',
        'staff.view', 'staff.edit', 'staff.view_credentials', 'staff.edit_credentials',
        'compliance.view', 'compliance.manage', 'compliance.verify_credentials',
        'analytics.view', 'analytics.view_attendance', 'analytics.view_overtime',
    ],
    'corporate': [
        'facilities.view', 'facilities.view_profile',
        'shifts.view',
        'staff.view',
        'billing.view', 'billing.view_rates',
        'compliance.view',
        'analytics.view', 'analytics.export', 'analytics.view_attendance', 'analytics.view_overtime', 'analytics.view_float_pool', 'analytics.view_agency_usage',
    ],
    'regional_director': [
        'facilities.view', 'facilities.view_profile', 'facilities.edit_profile',
        'shifts.view',
        'staff.view',
        'billing.view', 'billing.view_rates',
        'compliance.view',
        'analytics.view', 'analytics.export', 'analytics.view_attendance', 'analytics.view_overtime', 'analytics.view_float_pool', 'analytics.view_agency_usage',
        'system.view_audit_logs',
    ],
    # Basic access for healthcare workers
    'staff': [
        'facilities.view_profile',
        'shifts.view', 'shifts.request',
        'staff.view',
        'staff.view_credentials',
        'analytics.view',
    ],
    'viewer': [
        'facilities.view', 'facilities.view_profile',
        'shifts.view',
        'staff.view',
    ],
}

ALL_ROLES = tuple(ROLE_PERMISSIONS)
