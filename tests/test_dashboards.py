from datetime import date, timedelta

import pytest

from dashboards import format_currency, kpi, pct
from models import utcnow


def post(client, headers, table, data):
    resp = client.post(f'/api/{table}', json=data, headers=headers)
    assert resp.status_code == 201, resp.get_json()
    return resp.get_json()


@pytest.mark.parametrize('value, expected', [
    (1_500_000, '₪1.5M'),
    (350_000, '₪350K'),
    (2_000_000_000, '₪2.0B'),
    (999, '₪999'),
    (None, '₪0'),
])
def test_format_currency(value, expected):
    assert format_currency(value) == expected


def test_pct_and_kpi():
    assert pct(1, 4) == 25.0
    assert pct(3, 0) == 0
    assert kpi('Students', 1450) == {'label': 'Students', 'value': 1450, 'display': '1,450'}
    assert kpi('Spent', 350_000, money=True)['display'] == '₪350K'


def test_unknown_dashboard(client, headers):
    assert client.get('/api/dashboards/space', headers=headers['mayor']).status_code == 404


def test_department_dashboard_requires_access(client, headers):
    assert client.get('/api/dashboards/education', headers=headers['finance']).status_code == 403
    assert client.get('/api/dashboards/finance', headers=headers['finance']).status_code == 200


def test_education_over_capacity(client, headers):
    post(client, headers['education'], 'institutions',
         {'name': 'Herzl', 'level': 'elementary', 'students': 540, 'classes': 20,
          'occupancy': 96.4})
    post(client, headers['education'], 'institutions',
         {'name': 'Rabin', 'level': 'high', 'students': 900, 'classes': 30, 'occupancy': 90})
    post(client, headers['education'], 'institutions',
         {'name': 'Ben Gurion', 'level': 'high', 'students': 300, 'occupancy': 60})

    data = client.get('/api/dashboards/education', headers=headers['education']).get_json()
    assert data['dashboard'] == 'education'
    assert [i['name'] for i in data['over_capacity']] == ['Herzl', 'Rabin']
    assert {k['label']: k['value'] for k in data['kpis']} == {
        'Institutions': 3, 'Students': 1740, 'Classes': 50}
    assert data['by_level'] == [
        {'level': 'elementary', 'institutions': 1, 'students': 540},
        {'level': 'high', 'institutions': 2, 'students': 1200},
    ]


def test_finance_groups_budgets(client, headers):
    for dept, allocated, spent in (('Finance', 1000, 400), ('Finance', 500, 100),
                                   ('Welfare', 2000, 2000)):
        post(client, headers['finance'], 'budgets', {
            'budget_year': 2025, 'department': dept, 'allocated_amount': allocated,
            'spent_amount': spent})

    data = client.get('/api/dashboards/finance', headers=headers['finance']).get_json()
    assert data['budgets'] == [
        {'budget_year': 2025, 'department': 'Finance', 'allocated': 1500.0, 'spent': 500.0,
         'remaining': 1000.0, 'execution_pct': 33.3},
        {'budget_year': 2025, 'department': 'Welfare', 'allocated': 2000.0, 'spent': 2000.0,
         'remaining': 0.0, 'execution_pct': 100.0},
    ]


def test_cross_department_dashboards_only_count_visible_rows(client, headers):
    post(client, headers['mayor'], 'grants',
         {'name': 'Budget system', 'status': 'approved', 'amount': 100,
          'department_slug': 'finance'})
    post(client, headers['mayor'], 'grants',
         {'name': 'Green schools', 'status': 'rejected', 'amount': 300,
          'department_slug': 'education'})
    post(client, headers['mayor'], 'grants', {'name': 'City wide', 'status': 'submitted'})

    mine = client.get('/api/dashboards/grants', headers=headers['finance']).get_json()
    assert mine['departments'] == ['finance']
    assert sum(s['count'] for s in mine['by_status']) == 2
    assert mine['approval_rate'] == 100.0

    everything = client.get('/api/dashboards/grants', headers=headers['mayor']).get_json()
    assert sum(s['count'] for s in everything['by_status']) == 3
    assert everything['approval_rate'] == 50.0


def test_tasks_overdue(client, headers):
    past = (utcnow() - timedelta(days=3)).isoformat()
    post(client, headers['mayor'], 'tasks',
         {'title': 'Late', 'department_slug': 'finance', 'due_at': past})
    post(client, headers['mayor'], 'tasks',
         {'title': 'Late but done', 'department_slug': 'finance', 'due_at': past,
          'status': 'done'})
    post(client, headers['mayor'], 'tasks', {'title': 'Someday', 'department_slug': 'finance'})

    data = client.get('/api/dashboards/tasks', headers=headers['mayor']).get_json()
    assert [t['title'] for t in data['overdue']] == ['Late']
    assert {'key': 'todo', 'count': 2} in data['by_status']


def test_business_expiring_licenses(client, headers):
    today = date.today()
    post(client, headers['business'], 'licenses',
         {'business_name': 'Soon', 'status': 'active',
          'expires_at': (today + timedelta(days=10)).isoformat()})
    post(client, headers['business'], 'licenses',
         {'business_name': 'Later', 'status': 'active',
          'expires_at': (today + timedelta(days=90)).isoformat()})
    post(client, headers['business'], 'licenses',
         {'business_name': 'Gone', 'status': 'expired',
          'expires_at': (today - timedelta(days=5)).isoformat()})

    data = client.get('/api/dashboards/business', headers=headers['business']).get_json()
    assert [l['business_name'] for l in data['expiring']] == ['Soon']
    assert data['by_status'] == [{'key': 'active', 'count': 2}, {'key': 'expired', 'count': 1}]


def test_overview_counts(client, headers):
    post(client, headers['mayor'], 'projects', {'name': 'Park', 'department_slug': 'engineering'})
    post(client, headers['mayor'], 'plans', {'name': 'North Quarter'})
    data = client.get('/api/dashboards/overview', headers=headers['mayor']).get_json()
    assert data['counts']['projects'] == 1
    assert data['counts']['plans'] == 1
    assert data['counts']['tasks'] == 0

    data = client.get('/api/dashboards/overview', headers=headers['finance']).get_json()
    assert data['counts']['plans'] == 0
