import sys
from pathlib import Path

import mongomock
import pytest
from werkzeug.security import generate_password_hash

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from ctidash import create_app, db  # noqa: E402
from ctidash.utils import issue_token, utcnow  # noqa: E402

PASSWORD = 'ValidPass123!'
# hashing is slow; every seeded user shares one hash
_PASSWORD_HASH = generate_password_hash(PASSWORD)


@pytest.fixture()
def app():
    app = create_app(
        {
            'TESTING': True,
            'SECRET_KEY': 'test-secret',
            'GEMINI_API_KEY': 'test-gemini-key',
            'GENERAL_RATE_LIMIT': None,
        },
        mongo_client=mongomock.MongoClient(),
    )
    yield app


@pytest.fixture()
def client(app):
    return app.test_client()


def _insert_org(name):
    now = utcnow()
    result = db.orgs_coll.insert_one(
        {'name': name, 'description': '', 'status': 'active', 'createdAt': now, 'updatedAt': now}
    )
    return str(result.inserted_id)


def _insert_user(email, first, last, role, org_id):
    now = utcnow()
    result = db.users_coll.insert_one(
        {
            'email': email,
            'password': _PASSWORD_HASH,
            'firstName': first,
            'lastName': last,
            'role': role,
            'organizationId': org_id,
            'status': 'active',
            'createdAt': now,
            'updatedAt': now,
        }
    )
    return str(result.inserted_id)


@pytest.fixture()
def seed(app):
    org1 = _insert_org('Acme Security')
    org2 = _insert_org('Other Corp')
    users = {
        'admin': _insert_user('admin@acme.test', 'Ada', 'Admin', 'admin', org1),
        'admin2': _insert_user('admin2@acme.test', 'Alan', 'Second', 'admin', org1),
        'editor': _insert_user('editor@acme.test', 'Eve', 'Editor', 'editor', org1),
        'viewer': _insert_user('viewer@acme.test', 'Vic', 'Viewer', 'viewer', org1),
        'other_admin': _insert_user('admin@other.test', 'Otto', 'Other', 'admin', org2),
        'unassigned': _insert_user('new@acme.test', 'Nia', 'Newcomer', 'unassigned', None),
    }
    return {'org1': org1, 'org2': org2, **users}


@pytest.fixture()
def auth(app):
    def _headers(user_id):
        with app.app_context():
            return {'Authorization': f'Bearer {issue_token({"_id": user_id})}'}
    return _headers


@pytest.fixture()
def make_incident(client, auth, seed):
    def _create(user='admin', **overrides):
        body = {
            'title': 'Phishing campaign',
            'description': 'Credential phishing against finance staff',
            'priority': 'High',
            'status': 'Open',
        }
        body.update(overrides)
        resp = client.post('/api/incidents', json=body, headers=auth(seed[user]))
        assert resp.status_code == 201, resp.get_json()
        return resp.get_json()['incident']
    return _create


@pytest.fixture()
def cve_cache(app):
    rows = [
        {'cve': 'CVE-2024-1001', 'summary': 'Microsoft Exchange remote code execution', 'cvss': 9.8,
         'cvss3': {'score': 9.8, 'vector': ''}, 'kev': True, 'published': '2024-05-03T00:00:00',
         'references': [], 'extractedVendors': ['Microsoft']},
        {'cve': 'CVE-2024-1002', 'summary': 'Microsoft Windows privilege escalation', 'cvss': 7.2,
         'cvss3': None, 'kev': False, 'published': '2024-05-02T00:00:00',
         'references': [], 'extractedVendors': ['Microsoft']},
        {'cve': 'CVE-2024-1003', 'summary': 'Apache HTTP Server request smuggling', 'cvss': 5.3,
         'cvss3': None, 'kev': False, 'published': '2024-05-01T00:00:00',
         'references': [], 'extractedVendors': ['Apache']},
        {'cve': 'CVE-2024-1004', 'summary': 'Fortinet FortiOS heap overflow in sslvpnd', 'cvss': None,
         'cvss3': {'score': 8.6, 'vector': ''}, 'kev': True, 'published': '2024-04-30T00:00:00',
         'references': [], 'extractedVendors': ['Fortinet']},
    ]
    from ctidash.cve_feed import store_cves
    store_cves(rows)
    return rows
