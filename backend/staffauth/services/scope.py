from __future__ import annotations
"""Facility scope: which facilities an effective identity may touch.

Both request pre-checks and query filtering go through ``validate`` /
``apply_to_query`` so enforcement and filtering cannot drift apart.
"""
from dataclasses import dataclass
from typing import FrozenSet, Iterable, Optional, Union

from sqlalchemy import false, or_, select

from staffauth.constants.permissions import SUPER_ADMIN
from staffauth.models.identity import User, UserFacility


@dataclass(frozen=True)
class Unrestricted:
    def to_json(self):
        return {'type': 'unrestricted'}


@dataclass(frozen=True)
class FacilitySet:
    ids: FrozenSet[int]

    def to_json(self):
        return {'type': 'facilities', 'facility_ids': sorted(self.ids)}


UNRESTRICTED = Unrestricted()
Scope = Union[Unrestricted, FacilitySet]


def scope(user) -> Scope:
    if user.role == SUPER_ADMIN:
        return UNRESTRICTED
    return FacilitySet(frozenset(user.associated_facility_ids))


def validate(s: Scope, facility_id: Optional[int]) -> bool:
    if isinstance(s, Unrestricted):
        return True
    if facility_id is None:
        return False
    return facility_id in s.ids


def apply_to_query(query, facility_column, s: Scope):
    """Constrain a query to ``facility_column IN scope``."""
    if isinstance(s, Unrestricted):
        return query
    if not s.ids:
        return query.filter(false())
    return query.filter(facility_column.in_(sorted(s.ids)))


def filter_items(items: Iterable, s: Scope, attr: str = 'facility_id'):
    return [item for item in items if validate(s, getattr(item, attr, None))]


def apply_to_user_query(query, s: Scope):
    """Users sharing at least one facility with the scope."""
    if isinstance(s, Unrestricted):
        return query
    if not s.ids:
        return query.filter(false())
    ids = sorted(s.ids)
    linked = select(UserFacility.user_id).where(UserFacility.facility_id.in_(ids))
    return query.filter(or_(User.primary_facility_id.in_(ids), User.id.in_(linked)))


def user_visible(s: Scope, user) -> bool:
    if isinstance(s, Unrestricted):
        return True
    # super_admin accounts are outside every facility scope
    if user.role == SUPER_ADMIN:
        return False
    return any(validate(s, fid) for fid in user.associated_facility_ids)


__all__ = [
    'Unrestricted', 'FacilitySet', 'UNRESTRICTED', 'Scope', 'scope', 'validate', 'apply_to_query',
    'filter_items', 'apply_to_user_query', 'user_visible',
]
