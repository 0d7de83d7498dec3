"""Minimal deterministic OpenAPI spec for the authorization surface.

Scope (purposefully narrow):
- Session endpoints: login, logout, impersonation, restore, session status
- Admin endpoints under /iam
- Facility-scoped read endpoints under /api
"""
from typing import Any, Dict, List, Optional

from .errors import (
    AccountInactive, AlreadyImpersonating, AuditWriteFailure, Forbidden, InvalidCredentials,
    InvalidImpersonationTarget, SessionConflict, Unauthenticated,
)

__all__ = ["build_openapi_spec"]

ERROR_CODES = [
    cls.error_code for cls in (
        Unauthenticated, InvalidCredentials, Forbidden, AccountInactive, InvalidImpersonationTarget,
        AlreadyImpersonating, SessionConflict, AuditWriteFailure,
    )
]


def _ref(name: str) -> Dict[str, str]:
    return {"$ref": f"#/components/schemas/{name}"}


def _json(schema: Dict[str, Any]) -> Dict[str, Any]:
    return {"application/json": {"schema": schema}}


def _op(summary: str, *, ok: str = "SessionStatus", body: Optional[str] = None, auth: bool = True,
        errors: List[int] = (), params: List[Dict[str, Any]] = (), permission: Optional[str] = None) -> Dict[str, Any]:
    responses: Dict[str, Any] = {"200": {"description": "OK", "content": _json(_ref(ok))}}
    codes = set(errors) | ({401} if auth else set())
    for code in sorted(codes):
        responses[str(code)] = {"description": "Error", "content": _json(_ref("Error"))}
    op: Dict[str, Any] = {"summary": summary, "responses": responses}
    if auth:
        op["security"] = [{"BearerAuth": []}]
    if body:
        op["requestBody"] = {"required": True, "content": _json(_ref(body))}
    if params:
        op["parameters"] = list(params)
    if permission:
        op["x-required-permission"] = permission
    return op


def _obj(props: Dict[str, Any], required: List[str] = ()) -> Dict[str, Any]:
    schema: Dict[str, Any] = {"type": "object", "properties": props}
    if required:
        schema["required"] = list(required)
    return schema


def _page_params() -> List[Dict[str, Any]]:
    return [{"$ref": "#/components/parameters/LimitParam"}, {"$ref": "#/components/parameters/OffsetParam"}]


def _path_id(name: str) -> Dict[str, Any]:
    return {"name": name, "in": "path", "required": True, "schema": {"type": "integer"}}


def _query(name: str, typ: str = "integer") -> Dict[str, Any]:
    return {"name": name, "in": "query", "required": False, "schema": {"type": typ}}


def _schemas() -> Dict[str, Any]:
    user = _obj({
        "id": {"type": "integer"},
        "username": {"type": "string"},
        "name": {"type": "string"},
        "email": {"type": "string", "nullable": True},
        "userType": {"type": "string", "enum": ["system_user", "facility_user", "staff"]},
        "role": {"type": "string"},
        "primaryFacilityId": {"type": "integer", "nullable": True},
        "associatedFacilityIds": {"type": "array", "items": {"type": "integer"}},
        "isActive": {"type": "boolean"},
    }, ["id", "username", "role", "userType"])
    scope = _obj({
        "type": {"type": "string", "enum": ["unrestricted", "facilities"]},
        "facility_ids": {"type": "array", "items": {"type": "integer"}},
    }, ["type"])
    status = _obj({
        "user": _ref("User"),
        "isImpersonating": {"type": "boolean"},
        "originalUser": _ref("User"),
        "originalUserId": {"type": "integer"},
        "impersonatedUserId": {"type": "integer", "nullable": True},
        "permissions": {"type": "array", "items": {"type": "string"}},
        "scope": _ref("Scope"),
        "expiresAt": {"type": "string", "format": "date-time"},
        "access_token": {"type": "string"},
        "restore_token": {"type": "string"},
    }, ["user", "isImpersonating", "originalUserId", "permissions", "scope"])
    pagination = _obj({
        "total": {"type": "integer"},
        "limit": {"type": "integer"},
        "offset": {"type": "integer"},
        "returned": {"type": "integer"},
    }, ["total", "limit", "offset", "returned"])
    error = _obj({
        "error": _obj({
            "status": {"type": "integer"},
            "title": {"type": "string"},
            "detail": {"type": "string"},
            "code": {"type": "string", "enum": ERROR_CODES},
        }, ["status", "title", "detail"]),
    }, ["error"])
    return {
        "User": user,
        "Scope": scope,
        "SessionStatus": status,
        "Pagination": pagination,
        "Error": error,
        "ListResponse": _obj({"data": {"type": "array", "items": {"type": "object"}}, "pagination": _ref("Pagination")},
                             ["data", "pagination"]),
        "LoginRequest": _obj({"username": {"type": "string"}, "password": {"type": "string"}}, ["username", "password"]),
        "ImpersonateRequest": _obj({"targetUserId": {"type": "integer"}}, ["targetUserId"]),
        "RestoreRequest": _obj({
            "username": {"type": "string"},
            "password": {"type": "string"},
            "impersonatedUserId": {"type": "integer", "nullable": True},
            "restoreToken": {"type": "string"},
        }),
        "PermissionOverrides": _obj({
            "grants": {"type": "array", "items": {"type": "string"}},
            "revocations": {"type": "array", "items": {"type": "string"}},
        }),
        "FacilityAssignment": _obj({"facility_ids": {"type": "array", "items": {"type": "integer"}}}, ["facility_ids"]),
        "Object": {"type": "object"},
    }


def build_openapi_spec() -> Dict[str, Any]:
    paths: Dict[str, Any] = {
        "/login": {"post": _op("Authenticate and open a session", body="LoginRequest", auth=False,
                               errors=[400, 401, 403])},
        "/logout": {"post": _op("End the current session", ok="Object")},
        "/impersonate/start": {"post": _op("Act as another user", body="ImpersonateRequest",
                                           errors=[400, 403, 409], permission="impersonate")},
        "/impersonate/stop": {"post": _op("Return to the original identity", errors=[409])},
        "/impersonate/targets": {"get": _op("Users that may be impersonated", ok="Object", errors=[403],
                                            permission="impersonate")},
        "/restore-session": {"post": _op("Rebuild a session from credentials or a restore token",
                                         body="RestoreRequest", auth=False, errors=[400, 401, 403])},
        "/session-status": {"get": _op("Current effective identity")},
        "/iam/permissions": {"get": _op("Permission catalog and role defaults", ok="Object", errors=[403],
                                        permission="system.manage_permissions")},
        "/iam/users": {"get": _op("Users within the caller's facility scope", ok="ListResponse", errors=[400, 403],
                                  params=_page_params() + [_query("is_active", "boolean"), _query("user_type", "string")],
                                  permission="users.view")},
        "/iam/users/{user_id}/deactivate": {"post": _op("Deactivate a user and end their sessions", ok="User",
                                                        errors=[400, 403, 404], params=[_path_id("user_id")],
                                                        permission="users.edit")},
        "/iam/users/{user_id}/activate": {"post": _op("Reactivate a user", ok="User", errors=[403, 404],
                                                      params=[_path_id("user_id")], permission="users.edit")},
        "/iam/users/{user_id}/permissions": {"put": _op("Replace permission overrides", ok="Object",
                                                        body="PermissionOverrides", errors=[400, 403, 404],
                                                        params=[_path_id("user_id")],
                                                        permission="system.manage_permissions")},
        "/iam/users/{user_id}/facilities": {"put": _op("Replace facility associations", ok="Object",
                                                       body="FacilityAssignment", errors=[400, 403, 404],
                                                       params=[_path_id("user_id")], permission="users.edit")},
        "/iam/audit/logs": {"get": _op("Audit log entries, newest first", ok="ListResponse", errors=[400, 403],
                                       params=_page_params() + [
                                           _query("actor_effective_id"), _query("original_user_id"),
                                           _query("is_impersonated", "boolean"), _query("action", "string"),
                                           _query("resource_type", "string"),
                                       ], permission="system.view_audit_logs")},
        "/api/facilities": {"get": _op("Facilities in scope", ok="ListResponse", errors=[403],
                                       params=_page_params(), permission="facilities.view")},
        "/api/facilities/{facility_id}": {"get": _op("Single facility", ok="Object", errors=[403, 404],
                                                     params=[_path_id("facility_id")], permission="facilities.view")},
        "/api/shifts": {"get": _op("Shifts in scope", ok="ListResponse", errors=[400, 403],
                                   params=_page_params() + [_query("facilityId")], permission="shifts.view")},
        "/api/shifts/{shift_id}": {"get": _op("Single shift", ok="Object", errors=[403, 404],
                                              params=[_path_id("shift_id")], permission="shifts.view")},
        "/api/billing/invoices": {"get": _op("Invoices in scope (audited read)", ok="ListResponse", errors=[400, 403],
                                             params=_page_params() + [_query("facilityId")], permission="billing.view")},
    }
    return {
        "openapi": "3.0.3",
        "info": {"title": "Staffing Authorization API", "version": "1.0.0"},
        "paths": paths,
        "components": {
            "schemas": _schemas(),
            "parameters": {
                "LimitParam": {"name": "limit", "in": "query", "schema": {"type": "integer", "default": 50}},
                "OffsetParam": {"name": "offset", "in": "query", "schema": {"type": "integer", "default": 0}},
            },
            "securitySchemes": {"BearerAuth": {"type": "http", "scheme": "bearer", "bearerFormat": "JWT"}},
        },
    }
