def test_openapi_spec_available(client):
    resp = client.get('/openapi.json')
    assert resp.status_code == 200
    body = resp.get_json()
    assert body['openapi'].startswith('3.')
    for path in ('/login', '/impersonate/start', '/impersonate/stop', '/restore-session', '/session-status'):
        assert path in body['paths'], path


def test_docs_page(client):
    resp = client.get('/docs')
    assert resp.status_code == 200
    assert b'Redoc' in resp.data or b'redoc' in resp.data


def test_documented_paths_are_routed(client, app_instance):
    spec = client.get('/openapi.json').get_json()
    rules = {r.rule.replace('<int:', '{').replace('>', '}') for r in app_instance.url_map.iter_rules()}
    for path in spec['paths']:
        assert path in rules, f"{path} documented but not routed"


def test_error_envelope_lists_every_error_code(client):
    spec = client.get('/openapi.json').get_json()
    codes = spec['components']['schemas']['Error']['properties']['error']['properties']['code']['enum']
    assert 'ALREADY_IMPERSONATING' in codes
    assert 'INVALID_IMPERSONATION_TARGET' in codes


def test_protected_operations_declare_permission(client):
    spec = client.get('/openapi.json').get_json()
    assert spec['paths']['/api/billing/invoices']['get']['x-required-permission'] == 'billing.view'
    assert 'security' not in spec['paths']['/login']['post']
