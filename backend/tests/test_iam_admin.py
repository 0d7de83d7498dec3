from staffauth import get_db
from staffauth.models.session import AuthSession
from staffauth.services import identity
from tests.test_lifecycle_helpers import audit_entries, login_headers, start_impersonation
from tests.test_utils_seed import ensure_super_admin, ensure_user


def test_permission_catalog_requires_manage_permissions(client):
    ensure_super_admin()
    ensure_user('viewer', 'viewer', facility_ids=[1])
    body = client.get('/iam/permissions', headers=login_headers(client, 'root')).get_json()
    names = [p['name'] for p in body['data']]
    assert 'impersonate' in names and 'billing.view' in names
    assert names == sorted(names)
    assert 'super_admin' not in body['roles']
    assert client.get('/iam/permissions', headers=login_headers(client, 'viewer')).status_code == 403


def test_user_listing_is_scope_filtered(client):
    ensure_super_admin()
    admin = ensure_user('fa', 'facility_admin', facility_ids=[1])
    same = ensure_user('n1', 'staff', primary_facility_id=1)
    ensure_user('n2', 'staff', facility_ids=[2])
    body = client.get('/iam/users', headers=login_headers(client, 'fa')).get_json()
    assert sorted(u['id'] for u in body['data']) == sorted([admin.id, same.id])
    assert body['pagination']['total'] == 2
    everyone = client.get('/iam/users?limit=2', headers=login_headers(client, 'root')).get_json()
    assert everyone['pagination'] == {'total': 4, 'limit': 2, 'offset': 0, 'returned': 2}


def test_user_listing_filters_and_bad_pagination(client):
    ensure_super_admin()
    ensure_user('n1', 'staff', facility_ids=[1], is_active=False)
    headers = login_headers(client, 'root')
    body = client.get('/iam/users?is_active=false', headers=headers).get_json()
    assert [u['username'] for u in body['data']] == ['n1']
    assert client.get('/iam/users?limit=abc', headers=headers).status_code == 400
    assert client.get('/iam/users?is_active=maybe', headers=headers).status_code == 400


def test_deactivate_ends_sessions_and_impersonations(client):
    ensure_super_admin()
    ensure_user('other', 'super_admin')
    nurse = ensure_user('nurse', 'staff', facility_ids=[1])
    nurse_headers = login_headers(client, 'nurse')
    imp_headers = login_headers(client, 'other')
    start_impersonation(client, imp_headers, nurse.id)
    headers = login_headers(client, 'root')
    resp = client.post(f'/iam/users/{nurse.id}/deactivate', headers=headers)
    assert resp.status_code == 200, resp.get_json()
    assert resp.get_json()['isActive'] is False
    assert client.get('/session-status', headers=nurse_headers).status_code == 401
    status = client.get('/session-status', headers=imp_headers).get_json()
    assert status['isImpersonating'] is False
    entry = audit_entries('USER.DEACTIVATE')[-1]
    assert entry.meta == {'isActive': False, 'sessionsEnded': 1, 'impersonationsCleared': 1}
    assert client.post('/login', json={'username': 'nurse', 'password': 'pw'}).status_code == 403
    assert client.post(f'/iam/users/{nurse.id}/activate', headers=headers).status_code == 200
    assert client.post('/login', json={'username': 'nurse', 'password': 'pw'}).status_code == 200


def test_cannot_deactivate_self_or_out_of_scope_user(client):
    fa = ensure_user('fa', 'facility_admin', facility_ids=[1])
    far = ensure_user('far', 'staff', facility_ids=[2])
    headers = login_headers(client, 'fa')
    assert client.post(f'/iam/users/{fa.id}/deactivate', headers=headers).status_code == 400
    assert client.post(f'/iam/users/{far.id}/deactivate', headers=headers).status_code == 403
    assert client.post('/iam/users/9999/deactivate', headers=headers).status_code == 404


def test_replace_permission_overrides(client):
    ensure_super_admin()
    nurse = ensure_user('nurse', 'staff', facility_ids=[1])
    headers = login_headers(client, 'root')
    resp = client.put(f'/iam/users/{nurse.id}/permissions', headers=headers,
                      json={'grants': ['billing.view'], 'revocations': ['analytics.view']})
    assert resp.status_code == 200, resp.get_json()
    assert resp.get_json() == {'id': nurse.id, 'grants': ['billing.view'], 'revocations': ['analytics.view']}
    status = client.get('/session-status', headers=login_headers(client, 'nurse')).get_json()
    assert 'billing.view' in status['permissions']
    assert 'analytics.view' not in status['permissions']
    entry = audit_entries('USER.PERMISSIONS.REPLACE')[-1]
    assert entry.meta['changes']['grants'] == {'before': [], 'after': ['billing.view']}


def test_override_change_takes_effect_for_live_sessions(client):
    ensure_super_admin()
    nurse = ensure_user('nurse', 'staff', facility_ids=[1])
    nurse_headers = login_headers(client, 'nurse')
    assert client.get('/api/billing/invoices', headers=nurse_headers).status_code == 403
    client.put(f'/iam/users/{nurse.id}/permissions', headers=login_headers(client, 'root'),
               json={'grants': ['billing.view']})
    assert client.get('/api/billing/invoices', headers=nurse_headers).status_code == 200


def test_permission_override_validation(client):
    ensure_user('fa', 'facility_admin', facility_ids=[1])
    nurse = ensure_user('nurse', 'staff', facility_ids=[1])
    headers = login_headers(client, 'fa')
    url = f'/iam/users/{nurse.id}/permissions'
    assert client.put(url, headers=headers, json={'grants': ['bogus.permission']}).status_code == 400
    assert client.put(url, headers=headers, json={'grants': ['x'], 'revocations': 'x'}).status_code == 400
    both = client.put(url, headers=headers, json={'grants': ['billing.view'], 'revocations': ['billing.view']})
    assert both.status_code == 400
    assert client.put(url, headers=headers, json={'grants': ['impersonate']}).status_code == 403
    assert identity.get_user(nurse.id).grants == frozenset()


def test_replace_facilities_within_scope(client):
    ensure_user('fa', 'facility_admin', facility_ids=[1, 2])
    ensure_user('elsewhere', 'staff', facility_ids=[3])
    nurse = ensure_user('nurse', 'staff', facility_ids=[1])
    headers = login_headers(client, 'fa')
    url = f'/iam/users/{nurse.id}/facilities'
    resp = client.put(url, headers=headers, json={'facility_ids': [1, 2]})
    assert resp.status_code == 200, resp.get_json()
    assert resp.get_json()['associatedFacilityIds'] == [1, 2]
    assert client.put(url, headers=headers, json={'facility_ids': [3]}).status_code == 403
    assert client.put(url, headers=headers, json={'facility_ids': 'one'}).status_code == 400
    entry = audit_entries('USER.FACILITIES.REPLACE')[-1]
    assert entry.meta['changes']['facility_ids'] == {'before': [1], 'after': [1, 2]}


def test_replace_facilities_unknown_id(client):
    ensure_super_admin()
    nurse = ensure_user('nurse', 'staff', facility_ids=[1])
    resp = client.put(f'/iam/users/{nurse.id}/facilities', headers=login_headers(client, 'root'),
                      json={'facility_ids': [1, 77]})
    assert resp.status_code == 400
    assert sorted(identity.get_user(nurse.id).associated_facility_ids) == [1]


def test_audit_log_listing_filters(client):
    admin = ensure_super_admin()
    nurse = ensure_user('nurse', 'staff', facility_ids=[1])
    headers = login_headers(client, 'root')
    start_impersonation(client, headers, nurse.id)
    client.get('/api/billing/invoices', headers=headers)
    client.post('/impersonate/stop', headers=headers)
    body = client.get('/iam/audit/logs?is_impersonated=true', headers=headers).get_json()
    assert body['data']
    assert all(e['is_impersonated'] and e['original_user_id'] == admin.id for e in body['data'])
    newest_first = client.get('/iam/audit/logs', headers=headers).get_json()['data']
    assert [e['seq'] for e in newest_first] == sorted((e['seq'] for e in newest_first), reverse=True)
    denied = client.get('/iam/audit/logs?action=AUTHZ.DENIED', headers=headers).get_json()
    assert [e['actor_effective_id'] for e in denied['data']] == [nurse.id]
    by_actor = client.get(f'/iam/audit/logs?actor_effective_id={nurse.id}', headers=headers).get_json()
    assert {e['action'] for e in by_actor['data']} >= {'IMPERSONATION.START', 'AUTHZ.DENIED'}


def test_audit_log_listing_requires_permission(client):
    ensure_user('nurse', 'staff', facility_ids=[1])
    assert client.get('/iam/audit/logs', headers=login_headers(client, 'nurse')).status_code == 403
    assert get_db().query(AuthSession).count() == 1
