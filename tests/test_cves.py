import pytest
import requests

from ctidash import cve_feed, db
from ctidash.cve_feed import effective_score, extract_vendors, map_feed_item


class FakeResponse:
    def __init__(self, status_code, payload=None):
        self.status_code = status_code
        self._payload = payload

    def json(self):
        return self._payload

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f'{self.status_code} error')


@pytest.fixture()
def fake_lookup(monkeypatch):
    calls = []
    records = {
        'CVE-2021-44228': {
            'cve_id': 'CVE-2021-44228', 'summary': 'Apache Log4j2 JNDI features', 'cvss': 10.0,
            'cvss_version': 3.1, 'cvss_v3': 10.0, 'kev': True, 'published_time': '2021-12-10T10:15:09',
            'references': ['https://logging.apache.org/log4j/2.x/security.html'],
            'ransomware_campaign': 'Known',
        },
    }

    def _get(url, timeout=None):
        calls.append(url)
        cve_id = url.rsplit('/', 1)[-1]
        if cve_id in records:
            return FakeResponse(200, records[cve_id])
        return FakeResponse(404)

    cve_feed.get_cve_raw.cache_clear()
    monkeypatch.setattr(cve_feed.SESSION, 'get', _get)
    yield calls
    cve_feed.get_cve_raw.cache_clear()


def test_extract_vendors_matches_whole_words():
    assert extract_vendors('Microsoft Exchange and Cisco IOS') == ['Microsoft', 'Cisco']
    assert extract_vendors('A php library flaw') == []
    assert extract_vendors('HP printers and Red Hat Enterprise Linux') == ['Linux', 'Red Hat', 'HP']
    assert extract_vendors('') == []


def test_map_feed_item():
    item = {
        'cve_id': 'CVE-2024-2000', 'summary': 'Palo Alto PAN-OS command injection', 'cvss': 10.0,
        'cvss_v3': 10.0, 'kev': True, 'epss': 0.95, 'published_time': '2024-04-12T08:15:06',
    }
    mapped = map_feed_item(item)
    assert mapped['cve'] == 'CVE-2024-2000'
    assert mapped['cvss3'] == {'score': 10.0, 'vector': ''}
    assert mapped['modified'] == '2024-04-12T08:15:06'
    assert mapped['references'] == []
    assert mapped['extractedVendors'] == ['Palo Alto']

    bare = map_feed_item({'cve_id': 'CVE-2024-2001'})
    assert bare['cvss'] is None and bare['cvss3'] is None and bare['kev'] is False


def test_effective_score_prefers_cvss3():
    assert effective_score({'cvss': 5.0, 'cvss3': {'score': 7.5}}) == 7.5
    assert effective_score({'cvss': 5.0, 'cvss3': None}) == 5.0
    assert effective_score({}) == 0


def test_store_cves_counts_new_entries(app, cve_cache):
    assert cve_feed.store_cves(cve_cache) == 0
    assert cve_feed.store_cves([dict(cve_cache[0], cve='CVE-2024-9999')]) == 1
    assert db.cves_coll.count_documents({}) == 5


def test_latest_newest_first(client, auth, seed, cve_cache):
    resp = client.get('/api/cves/latest', headers=auth(seed['viewer']))
    assert resp.status_code == 200
    assert [c['cve'] for c in resp.get_json()['cves']] == [
        'CVE-2024-1001', 'CVE-2024-1002', 'CVE-2024-1003', 'CVE-2024-1004',
    ]


def test_latest_min_score_and_limit(client, auth, seed, cve_cache):
    headers = auth(seed['viewer'])
    resp = client.get('/api/cves/latest?minCvssScore=8&limit=1', headers=headers)
    assert [c['cve'] for c in resp.get_json()['cves']] == ['CVE-2024-1001']

    assert client.get('/api/cves/latest?minCvssScore=11', headers=headers).status_code == 400
    assert client.get('/api/cves/latest?limit=0', headers=headers).status_code == 400


def test_latest_filtered_defaults_to_high_severity(client, auth, seed, cve_cache):
    resp = client.get('/api/cves/latest/filtered', headers=auth(seed['viewer']))
    assert [c['cve'] for c in resp.get_json()['cves']] == ['CVE-2024-1001', 'CVE-2024-1004']


def test_unassigned_user_cannot_view_cves(client, auth, seed, cve_cache):
    assert client.get('/api/cves/latest', headers=auth(seed['unassigned'])).status_code == 403


def test_feed_failure_on_empty_cache(client, auth, seed, monkeypatch):
    def _down(limit=None):
        raise requests.ConnectionError('feed down')
    monkeypatch.setattr(cve_feed, 'fetch_latest', _down)
    resp = client.get('/api/cves/latest', headers=auth(seed['viewer']))
    assert resp.status_code == 500
    assert resp.get_json() == {'error': 'Failed to fetch latest CVEs', 'details': 'feed down'}


def test_empty_cache_pulls_feed_once(client, auth, seed, monkeypatch):
    calls = []

    def _fetch(limit=None):
        calls.append(limit)
        return [map_feed_item({'cve_id': 'CVE-2024-3000', 'summary': 'Cisco ASA flaw', 'cvss': 9.1,
                               'published_time': '2024-06-01T00:00:00'})]
    monkeypatch.setattr(cve_feed, 'fetch_latest', _fetch)
    headers = auth(seed['viewer'])
    assert [c['cve'] for c in client.get('/api/cves/latest', headers=headers).get_json()['cves']] == ['CVE-2024-3000']
    client.get('/api/cves/latest', headers=headers)
    assert len(calls) == 1


def test_search_requires_software_param(client, auth, seed, cve_cache):
    headers = auth(seed['viewer'])
    resp = client.get('/api/cves/search', headers=headers)
    assert resp.status_code == 400
    assert resp.get_json() == {'error': 'Software parameter is required'}

    resp = client.get('/api/cves/search?software=%20%20', headers=headers)
    assert resp.get_json() == {'cves': [], 'total': 0, 'searchTerm': ''}


def test_search_matches_summary_case_insensitively(client, auth, seed, cve_cache):
    resp = client.get('/api/cves/search?software=MICROSOFT', headers=auth(seed['viewer']))
    body = resp.get_json()
    assert body['total'] == 2
    assert body['searchTerm'] == 'MICROSOFT'
    assert [c['cve'] for c in body['cves']] == ['CVE-2024-1001', 'CVE-2024-1002']
    assert body['filters'] == {'minSeverity': None, 'maxSeverity': None, 'sortBy': 'cvss', 'sortOrder': 'desc'}


def test_search_severity_window_and_sorting(client, auth, seed, cve_cache):
    headers = auth(seed['viewer'])
    resp = client.get('/api/cves/search?software=microsoft&minSeverity=8', headers=headers)
    assert [c['cve'] for c in resp.get_json()['cves']] == ['CVE-2024-1001']

    resp = client.get('/api/cves/search?software=microsoft&maxSeverity=8', headers=headers)
    assert [c['cve'] for c in resp.get_json()['cves']] == ['CVE-2024-1002']

    resp = client.get('/api/cves/search?software=e&sortBy=published&sortOrder=asc&limit=2', headers=headers)
    body = resp.get_json()
    assert body['total'] == 4
    assert [c['cve'] for c in body['cves']] == ['CVE-2024-1004', 'CVE-2024-1003']

    resp = client.get('/api/cves/search?software=e&sortBy=bogus', headers=headers)
    assert resp.get_json()['filters']['sortBy'] == 'cvss'


@pytest.mark.parametrize('value', ['nan', 'inf', '-Infinity', 'high'])
def test_search_ignores_non_finite_severity(client, auth, seed, cve_cache, value):
    resp = client.get(f'/api/cves/search?software=microsoft&minSeverity={value}&maxSeverity={value}',
                      headers=auth(seed['viewer']))
    assert resp.status_code == 200
    body = resp.get_json()
    assert body['total'] == 2
    assert body['filters']['minSeverity'] is None
    assert body['filters']['maxSeverity'] is None
    assert b'NaN' not in resp.data and b'Infinity' not in resp.data


def test_latest_rejects_nan_min_score(client, auth, seed, cve_cache):
    resp = client.get('/api/cves/latest?minCvssScore=nan', headers=auth(seed['viewer']))
    assert resp.status_code == 400


def test_cve_lookup_misses_are_not_cached(client, auth, seed, fake_lookup):
    headers = auth(seed['viewer'])
    assert client.get('/api/cves/CVE-2030-0001', headers=headers).status_code == 404
    assert client.get('/api/cves/CVE-2030-0001', headers=headers).status_code == 404
    assert len(fake_lookup) == 2


def test_cve_detail(client, auth, seed, fake_lookup):
    headers = auth(seed['viewer'])
    resp = client.get('/api/cves/cve-2021-44228', headers=headers)
    assert resp.status_code == 200
    cve = resp.get_json()['cve']
    assert cve['cveId'] == 'CVE-2021-44228'
    assert cve['kev'] is True
    assert cve['ransomwareCampaign'] == 'Known'

    client.get('/api/cves/CVE-2021-44228', headers=headers)
    assert len(fake_lookup) == 1

    resp = client.get('/api/cves/CVE-2024-0000', headers=headers)
    assert resp.status_code == 404
    assert resp.get_json()['error'] == 'CVE not found'

    resp = client.get('/api/cves/not-a-cve', headers=headers)
    assert resp.status_code == 400
    assert resp.get_json()['error'] == 'Invalid CVE ID'


def test_dismiss_and_restore(client, auth, seed, cve_cache):
    editor = auth(seed['editor'])
    viewer = auth(seed['viewer'])

    assert client.post('/api/cves/CVE-2024-1001/dismiss', headers=viewer).status_code == 403

    resp = client.post('/api/cves/cve-2024-1001/dismiss', json={'reason': 'No <b>Exchange</b> here'}, headers=editor)
    assert resp.status_code == 201
    assert resp.get_json() == {'message': 'CVE dismissed successfully', 'cve': 'CVE-2024-1001'}
    assert client.post('/api/cves/CVE-2024-1001/dismiss', headers=editor).status_code == 409

    latest = client.get('/api/cves/latest', headers=viewer).get_json()['cves']
    assert 'CVE-2024-1001' not in [c['cve'] for c in latest]

    # other organizations still see it
    other = client.get('/api/cves/latest', headers=auth(seed['other_admin'])).get_json()['cves']
    assert 'CVE-2024-1001' in [c['cve'] for c in other]

    dismissed = client.get('/api/cves/dismissed', headers=viewer).get_json()
    assert dismissed['total'] == 1
    entry = dismissed['dismissedCves'][0]
    assert entry['reason'] == 'No Exchange here'
    assert entry['snapshot']['cvss'] == 9.8
    assert entry['dismissedBy'] == seed['editor']

    resp = client.delete('/api/cves/CVE-2024-1001/dismiss', headers=editor)
    assert resp.status_code == 200
    assert client.delete('/api/cves/CVE-2024-1001/dismiss', headers=editor).status_code == 404
    assert client.get('/api/cves/dismissed', headers=viewer).get_json()['total'] == 0
