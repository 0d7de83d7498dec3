from hypothesis import HealthCheck, given, settings, strategies as st

from staffauth.constants.permissions import ALL_PERMISSION_NAMES, ALL_ROLES, IMPERSONATE, ROLE_PERMISSIONS, SUPER_ADMIN
from staffauth.services.permissions import PermissionCache, resolve, unknown_permissions

CATALOG = sorted(ALL_PERMISSION_NAMES)
names = st.sets(st.sampled_from(CATALOG + ['bogus.permission', 'shifts.teleport']), max_size=12)
roles = st.sampled_from(sorted(ALL_ROLES) + ['not_a_role'])
fixture_ok = settings(suppress_health_check=[HealthCheck.function_scoped_fixture], max_examples=75)


def test_super_admin_resolves_to_full_catalog_regardless_of_overrides():
    assert resolve(SUPER_ADMIN) == ALL_PERMISSION_NAMES
    assert resolve(SUPER_ADMIN, revocations=CATALOG) == ALL_PERMISSION_NAMES


def test_role_defaults_plus_grants_minus_revocations():
    perms = resolve('supervisor', grants=['billing.view'], revocations=['shifts.approve_requests'])
    assert 'billing.view' in perms
    assert 'shifts.approve_requests' not in perms
    assert 'shifts.view' in perms


def test_revocation_wins_over_grant_of_same_name():
    assert 'billing.view' not in resolve('viewer', grants=['billing.view'], revocations=['billing.view'])


def test_unknown_names_and_roles_fail_closed():
    assert resolve('viewer', grants=['bogus.permission']) == resolve('viewer')
    assert resolve('not_a_role') == frozenset()
    assert unknown_permissions(['bogus.permission', 'shifts.view']) == {'bogus.permission'}


def test_only_super_admin_carries_impersonate_by_default():
    holders = [r for r in ALL_ROLES if IMPERSONATE in resolve(r)]
    assert holders == [SUPER_ADMIN]


def test_role_defaults_reference_catalog_permissions():
    for role, perms in ROLE_PERMISSIONS.items():
        if role == SUPER_ADMIN:
            continue
        assert not unknown_permissions(perms), role


@fixture_ok
@given(role=roles, grants=names, revocations=names)
def test_resolution_is_a_subset_of_the_catalog(role, grants, revocations):
    assert resolve(role, grants, revocations) <= ALL_PERMISSION_NAMES


@fixture_ok
@given(role=roles.filter(lambda r: r != SUPER_ADMIN), grants=names, revocations=names)
def test_revoked_names_never_survive(role, grants, revocations):
    assert not (resolve(role, grants, revocations) & revocations)


@fixture_ok
@given(role=roles, grants=names, revocations=names)
def test_resolution_is_deterministic(role, grants, revocations):
    assert resolve(role, grants, revocations) == resolve(role, list(grants), tuple(revocations))


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


def test_cache_serves_until_ttl_then_recomputes(monkeypatch):
    clock = FakeClock()
    cache = PermissionCache(ttl_seconds=30, clock=clock)
    calls = []
    import staffauth.services.permissions as perm_mod
    real = perm_mod.resolve
    monkeypatch.setattr(perm_mod, 'resolve', lambda *a: calls.append(a) or real(*a))
    first = cache.get('viewer', [], [], user_id=1)
    cache.get('viewer', [], [], user_id=1)
    assert len(calls) == 1
    clock.now = 31
    assert cache.get('viewer', [], [], user_id=1) == first
    assert len(calls) == 2


def test_cache_invalidate_user_drops_entries():
    cache = PermissionCache(ttl_seconds=300, clock=FakeClock())
    cache.get('viewer', ['billing.view'], [], user_id=7)
    cache.get('supervisor', [], [], user_id=8)
    assert len(cache) == 2
    cache.invalidate_user(7)
    assert len(cache) == 1
    cache.clear()
    assert len(cache) == 0
