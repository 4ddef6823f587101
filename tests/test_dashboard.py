from ctidash.config import STATUS_COLORS


def test_metrics(client, auth, seed, make_incident, cve_cache):
    make_incident(priority='Critical', status='Open')
    make_incident(priority='High', status='Resolved')
    make_incident(priority='Low', status='In Progress')
    make_incident(user='other_admin', priority='Critical')
    headers = auth(seed['editor'])
    client.post('/api/threat-actors', json={'name': 'APT29', 'sophistication': 'Expert'}, headers=headers)
    client.post('/api/threat-actors', json={'name': 'Script kiddie', 'sophistication': 'Minimal'}, headers=headers)

    resp = client.get('/api/dashboard/metrics', headers=auth(seed['viewer']))
    assert resp.status_code == 200
    body = resp.get_json()
    assert list(body) == [
        'statusCounts', 'priorityCounts', 'highPriorityIncidents', 'kevCount',
        'highRiskThreatActors', 'totalIncidents', 'totalCVEs', 'totalThreatActors',
    ]
    assert body['statusCounts'] == {'Open': 1, 'Triaged': 0, 'In Progress': 1, 'Resolved': 1, 'Closed': 0}
    assert list(body['priorityCounts']) == ['Critical', 'High', 'Medium', 'Low']
    assert body['priorityCounts'] == {'Critical': 1, 'High': 1, 'Medium': 0, 'Low': 1}
    assert body['highPriorityIncidents'] == 1
    assert body['kevCount'] == 2
    assert body['highRiskThreatActors'] == 1
    assert body['totalIncidents'] == 3
    assert body['totalCVEs'] == 4
    assert body['totalThreatActors'] == 2


def test_chart_data(client, auth, seed, make_incident):
    make_incident(priority='Medium', status='Triaged')
    make_incident(priority='Medium', status='Closed')

    body = client.get('/api/dashboard/chart-data', headers=auth(seed['viewer'])).get_json()
    pie = body['pieData']
    assert pie['labels'] == ['Open', 'Triaged', 'In Progress', 'Resolved', 'Closed']
    assert pie['datasets'][0]['data'] == [0, 1, 0, 0, 1]
    assert pie['datasets'][0]['backgroundColor'] == [STATUS_COLORS[s] for s in pie['labels']]

    bar = body['barData']
    assert bar['labels'] == ['Critical', 'High', 'Medium', 'Low']
    assert bar['datasets'][0]['data'] == [0, 0, 2, 0]


def test_dashboard_needs_organization(client, auth, seed):
    assert client.get('/api/dashboard/metrics', headers=auth(seed['unassigned'])).status_code == 403
