from __future__ import annotations
"""Identity store: the one lookup path for users of every variant.

Every write goes through this module so the permission cache is invalidated
for the affected user.
"""
import logging
from typing import Iterable, List, Optional

from sqlalchemy import select, delete

from staffauth import get_db
from staffauth.constants.permissions import ALL_ROLES, SUPER_ADMIN, USER_TYPES, USER_TYPE_SYSTEM
from staffauth.errors import AccountInactive, InvalidCredentials
from staffauth.models.identity import (
    Facility, User, UserFacility, UserPermissionOverride, OVERRIDE_GRANT, OVERRIDE_REVOKE,
)
from staffauth.services.permissions import permission_cache, unknown_permissions

logger = logging.getLogger(__name__)


def get_user(user_id: Optional[int]) -> Optional[User]:
    if user_id is None:
        return None
    return get_db().execute(select(User).where(User.id == user_id)).scalar_one_or_none()


def get_user_by_username(username: str) -> Optional[User]:
    return get_db().execute(select(User).where(User.username == username)).scalar_one_or_none()


def authenticate(username: str, password: str) -> User:
    if not isinstance(username, str) or not isinstance(password, str):
        raise InvalidCredentials()
    user = get_user_by_username(username) if username else None
    # same error for unknown user and bad password
    if not user or not password or not user.verify_password(password):
        raise InvalidCredentials()
    if not user.is_active:
        raise AccountInactive()
    return user


def create_user(
    username: str,
    password: str,
    role: str,
    *,
    name: Optional[str] = None,
    email: Optional[str] = None,
    user_type: str = USER_TYPE_SYSTEM,
    primary_facility_id: Optional[int] = None,
    facility_ids: Iterable[int] = (),
    is_active: bool = True,
) -> User:
    if role not in ALL_ROLES:
        raise ValueError(f'Unknown role: {role}')
    if user_type not in USER_TYPES:
        raise ValueError(f'Unknown user_type: {user_type}')
    session = get_db()
    user = User(
        username=username,
        email=email,
        name=name or username,
        password_hash='',
        role=role,
        user_type=user_type,
        primary_facility_id=primary_facility_id,
        is_active=is_active,
    )
    user.set_password(password)
    session.add(user)
    session.flush()
    for fid in set(facility_ids):
        session.add(UserFacility(user_id=user.id, facility_id=fid))
    session.commit()
    session.refresh(user)
    return user


def set_active(user: User, active: bool) -> User:
    session = get_db()
    user.is_active = active
    session.flush()
    permission_cache.invalidate_user(user.id)
    logger.info('user %s is_active=%s', user.id, active)
    return user


def set_permission_overrides(user: User, grants: Iterable[str], revocations: Iterable[str]) -> User:
    grants = set(grants)
    revocations = set(revocations)
    missing = unknown_permissions(grants | revocations)
    if missing:
        raise ValueError(f'Unknown permission names: {sorted(missing)}')
    both = grants & revocations
    if both:
        raise ValueError(f'Permissions both granted and revoked: {sorted(both)}')
    session = get_db()
    session.execute(delete(UserPermissionOverride).where(UserPermissionOverride.user_id == user.id))
    for name in sorted(grants):
        session.add(UserPermissionOverride(user_id=user.id, permission=name, effect=OVERRIDE_GRANT))
    for name in sorted(revocations):
        session.add(UserPermissionOverride(user_id=user.id, permission=name, effect=OVERRIDE_REVOKE))
    session.flush()
    session.expire(user, ['overrides'])
    permission_cache.invalidate_user(user.id)
    return user


def set_facilities(user: User, facility_ids: Iterable[int]) -> User:
    ids = set(facility_ids)
    session = get_db()
    found = set(session.execute(select(Facility.id).where(Facility.id.in_(list(ids)))).scalars()) if ids else set()
    missing = ids - found
    if missing:
        raise ValueError(f'Unknown facility ids: {sorted(missing)}')
    session.execute(delete(UserFacility).where(UserFacility.user_id == user.id))
    for fid in sorted(ids):
        session.add(UserFacility(user_id=user.id, facility_id=fid))
    session.flush()
    session.expire(user, ['facility_links'])
    permission_cache.invalidate_user(user.id)
    return user


def list_impersonation_targets() -> List[User]:
    q = select(User).where(User.is_active.is_(True), User.role != SUPER_ADMIN).order_by(User.id.asc())
    return list(get_db().execute(q).scalars())


def user_json(user: Optional[User]):
    if user is None:
        return None
    return {
        'id': user.id,
        'username': user.username,
        'name': user.name,
        'email': user.email,
        'userType': user.user_type,
        'role': user.role,
        'primaryFacilityId': user.primary_facility_id,
        'associatedFacilityIds': sorted(user.associated_facility_ids),
        'isActive': user.is_active,
    }
