from __future__ import annotations
"""Permission resolution: role defaults plus per-user overrides.

``resolve`` is the single place that turns a role and override sets into an
effective permission set. super_admin is a fixed bypass that resolves to the
whole catalog; it is not an override mechanism other roles can reach.
"""
import threading
import time
from typing import Dict, FrozenSet, Iterable, Optional, Set, Tuple

from staffauth.constants.permissions import ALL_PERMISSION_NAMES, ROLE_PERMISSIONS, SUPER_ADMIN

PermissionSet = FrozenSet[str]
CacheKey = Tuple[str, PermissionSet, PermissionSet]

DEFAULT_CACHE_TTL_SECONDS = 30.0


def resolve(role: str, grants: Iterable[str] = (), revocations: Iterable[str] = ()) -> PermissionSet:
    if role == SUPER_ADMIN:
        return ALL_PERMISSION_NAMES
    base = set(ROLE_PERMISSIONS.get(role, ()))
    base |= set(grants)
    base -= set(revocations)
    # unknown names never survive
    return frozenset(base & ALL_PERMISSION_NAMES)


def unknown_permissions(names: Iterable[str]) -> Set[str]:
    return set(names) - ALL_PERMISSION_NAMES


class PermissionCache:
    """Short-TTL memo in front of ``resolve``.

    Entries are also indexed by user id so an identity write can drop them
    immediately instead of waiting for expiry.
    """

    def __init__(self, ttl_seconds: float = DEFAULT_CACHE_TTL_SECONDS, clock=time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: Dict[CacheKey, Tuple[float, PermissionSet]] = {}
        self._keys_by_user: Dict[int, Set[CacheKey]] = {}

    def get(self, role: str, grants: Iterable[str], revocations: Iterable[str], user_id: Optional[int] = None) -> PermissionSet:
        key: CacheKey = (role, frozenset(grants), frozenset(revocations))
        now = self._clock()
        with self._lock:
            hit = self._entries.get(key)
            if hit and hit[0] > now:
                if user_id is not None:
                    self._keys_by_user.setdefault(user_id, set()).add(key)
                return hit[1]
        perms = resolve(*key)
        with self._lock:
            self._entries[key] = (now + self.ttl_seconds, perms)
            if user_id is not None:
                self._keys_by_user.setdefault(user_id, set()).add(key)
        return perms

    def invalidate_user(self, user_id: int):
        with self._lock:
            for key in self._keys_by_user.pop(user_id, set()):
                self._entries.pop(key, None)

    def clear(self):
        with self._lock:
            self._entries.clear()
            self._keys_by_user.clear()

    def __len__(self):
        return len(self._entries)


permission_cache = PermissionCache()


def permissions_for(user) -> PermissionSet:
    return permission_cache.get(user.role, user.grants, user.revocations, user_id=user.id)


__all__ = ['resolve', 'unknown_permissions', 'PermissionCache', 'permission_cache', 'permissions_for', 'PermissionSet']
