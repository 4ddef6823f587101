from bson import ObjectId

from ctidash import db


def test_create_organization_makes_creator_admin(client, auth, seed):
    resp = client.post('/api/organizations', json={'name': '<b>Newco</b>', 'description': 'Startup'},
                       headers=auth(seed['unassigned']))
    assert resp.status_code == 201
    org = resp.get_json()['organization']
    assert org['name'] == 'Newco'
    assert org['status'] == 'active'

    user = db.users_coll.find_one({'_id': ObjectId(seed['unassigned'])})
    assert user['role'] == 'admin'
    assert user['organizationId'] == org['organizationId']


def test_create_organization_validation(client, auth, seed):
    resp = client.post('/api/organizations', json={}, headers=auth(seed['unassigned']))
    assert resp.status_code == 400
    resp = client.post('/api/organizations', json={'name': 'Second'}, headers=auth(seed['admin']))
    assert resp.status_code == 409


def test_get_and_list_own_organization(client, auth, seed):
    headers = auth(seed['viewer'])
    resp = client.get('/api/organizations', headers=headers)
    assert [o['name'] for o in resp.get_json()['organizations']] == ['Acme Security']

    assert client.get(f"/api/organizations/{seed['org1']}", headers=headers).status_code == 200
    assert client.get(f"/api/organizations/{seed['org2']}", headers=headers).status_code == 403
    assert client.get(f"/api/organizations/{ObjectId()}", headers=headers).status_code == 404


def test_update_organization_admin_only(client, auth, seed):
    url = f"/api/organizations/{seed['org1']}"
    assert client.put(url, json={'name': 'X'}, headers=auth(seed['editor'])).status_code == 403

    resp = client.put(url, json={'status': 'bogus'}, headers=auth(seed['admin']))
    assert resp.status_code == 400

    resp = client.put(url, json={'name': 'Acme Renamed', 'status': 'inactive'}, headers=auth(seed['admin']))
    assert resp.status_code == 200
    assert resp.get_json()['organization']['name'] == 'Acme Renamed'
    assert resp.get_json()['organization']['status'] == 'inactive'


def test_add_and_remove_member(client, auth, seed):
    headers = auth(seed['admin'])
    url = f"/api/organizations/{seed['org1']}/members"

    resp = client.post(url, json={'email': 'new@acme.test', 'role': 'editor'}, headers=headers)
    assert resp.status_code == 201
    assert resp.get_json()['user']['role'] == 'editor'
    note = db.notifications_coll.find_one({'userId': seed['unassigned']})
    assert note['title'] == 'Added to organization'

    assert client.post(url, json={'email': 'admin@other.test'}, headers=headers).status_code == 409
    assert client.post(url, json={'email': 'ghost@acme.test'}, headers=headers).status_code == 404

    resp = client.delete(f"{url}/{seed['unassigned']}", headers=headers)
    assert resp.status_code == 200
    user = db.users_coll.find_one({'_id': ObjectId(seed['unassigned'])})
    assert user['organizationId'] is None
    assert user['role'] == 'unassigned'


def test_cannot_remove_only_admin(client, auth, seed):
    db.users_coll.update_one({'_id': ObjectId(seed['admin2'])}, {'$set': {'role': 'editor'}})
    resp = client.delete(f"/api/organizations/{seed['org1']}/members/{seed['admin']}", headers=auth(seed['admin']))
    assert resp.status_code == 400


def test_delete_organization_cascades(client, auth, seed, make_incident):
    make_incident()
    headers = auth(seed['admin'])
    resp = client.delete(f"/api/organizations/{seed['org1']}", headers=headers)
    assert resp.status_code == 204

    assert db.orgs_coll.find_one({'_id': ObjectId(seed['org1'])}) is None
    assert db.incidents_coll.count_documents({'organizationId': seed['org1']}) == 0
    assert db.users_coll.count_documents({'organizationId': seed['org1']}) == 0
    assert db.users_coll.find_one({'_id': ObjectId(seed['editor'])})['role'] == 'unassigned'
    # other tenants untouched
    assert db.orgs_coll.find_one({'_id': ObjectId(seed['org2'])}) is not None
