from ctidash.software import parse_software_list, relevant_cves


def test_parse_software_list():
    assert parse_software_list('Microsoft Exchange, Fortinet ,, <b>Apache</b>') == [
        'Microsoft Exchange', 'Fortinet', 'Apache',
    ]
    assert parse_software_list(['Fortinet', 'fortinet', 3, '']) == ['Fortinet']
    assert parse_software_list(None) == []


def test_relevant_cves_threshold_and_order():
    cves = [
        {'cve': 'A', 'summary': 'Apache flaw', 'cvss': 9.0},
        {'cve': 'B', 'summary': 'Fortinet overflow', 'cvss': None, 'cvss3': {'score': 9.6}},
        {'cve': 'C', 'summary': 'Fortinet info leak', 'cvss': 4.0},
        {'cve': 'D', 'summary': 'Cisco bug', 'cvss': 9.9},
    ]
    hits = relevant_cves(['Fortinet', 'apache'], cves)
    assert [h['cve'] for h in hits] == ['B', 'A']
    assert hits[0]['matchedSoftware'] == ['Fortinet']
    assert hits[1]['matchedSoftware'] == ['apache']


def test_inventory_crud(client, auth, seed):
    editor = auth(seed['editor'])
    assert client.get('/api/software', headers=editor).get_json()['items'] == []

    resp = client.post('/api/software', json={'items': 'Fortinet, Microsoft Exchange'}, headers=editor)
    assert resp.status_code == 200
    resp = client.post('/api/software', json={'items': ['fortinet', 'Apache']}, headers=editor)
    assert resp.get_json()['items'] == ['Fortinet', 'Microsoft Exchange', 'Apache']

    resp = client.get('/api/software', headers=auth(seed['viewer']))
    assert resp.get_json() == {'items': ['Fortinet', 'Microsoft Exchange', 'Apache'], 'organizationId': seed['org1']}

    resp = client.delete('/api/software/APACHE', headers=editor)
    assert resp.get_json()['items'] == ['Fortinet', 'Microsoft Exchange']
    assert client.delete('/api/software/Apache', headers=editor).status_code == 404

    # inventories are per organization
    assert client.get('/api/software', headers=auth(seed['other_admin'])).get_json()['items'] == []


def test_inventory_permissions(client, auth, seed):
    assert client.post('/api/software', json={'items': 'x'}, headers=auth(seed['viewer'])).status_code == 403
    assert client.get('/api/software', headers=auth(seed['unassigned'])).status_code == 403
    resp = client.post('/api/software', json={'items': ' , '}, headers=auth(seed['editor']))
    assert resp.status_code == 400


def test_relevant_cves_route(client, auth, seed, cve_cache):
    editor = auth(seed['editor'])
    assert client.get('/api/software/relevant-cves', headers=editor).get_json()['cves'] == []

    client.post('/api/software', json={'items': 'Exchange, Fortinet, Apache'}, headers=editor)
    body = client.get('/api/software/relevant-cves', headers=editor).get_json()
    assert [c['cve'] for c in body['cves']] == ['CVE-2024-1001', 'CVE-2024-1004']
    assert body['total'] == 2
    assert body['software'] == ['Exchange', 'Fortinet', 'Apache']
