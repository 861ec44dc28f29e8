def make_task(client, headers, **data):
    data.setdefault('department_slug', 'finance')
    resp = client.post('/api/tasks', json=data, headers=headers)
    assert resp.status_code == 201, resp.get_json()
    return resp.get_json()


def pending(client, headers, department='finance'):
    resp = client.get(f'/api/tasks/executive?department={department}', headers=headers)
    assert resp.status_code == 200
    return [t['title'] for t in resp.get_json()]


def test_manager_sees_open_executive_tasks(client, headers):
    make_task(client, headers['mayor'], title='Budget review')
    make_task(client, headers['ceo'], title='Already done', status='done')
    make_task(client, headers['mayor'], title='Other department', department_slug='education')

    assert pending(client, headers['finance']) == ['Budget review']


def test_acknowledged_tasks_disappear(client, headers):
    task = make_task(client, headers['mayor'], title='Budget review')
    url = f'/api/tasks/{task["id"]}/acknowledge'

    resp = client.post(url, headers=headers['finance'])
    assert resp.status_code == 200
    assert resp.get_json() == {'task_id': task['id'], 'acknowledged': True}
    assert pending(client, headers['finance']) == []

    # acknowledging twice is harmless
    assert client.post(url, headers=headers['finance']).status_code == 200


def test_department_is_required_and_checked(client, headers):
    assert client.get('/api/tasks/executive', headers=headers['finance']).status_code == 400
    resp = client.get('/api/tasks/executive?department=education', headers=headers['finance'])
    assert resp.status_code == 403


def test_executives_have_nothing_pending(client, headers):
    make_task(client, headers['mayor'], title='Budget review')
    assert pending(client, headers['ceo']) == []


def test_cannot_acknowledge_invisible_task(client, headers):
    task = make_task(client, headers['mayor'], title='School audit', department_slug='education')
    resp = client.post(f'/api/tasks/{task["id"]}/acknowledge', headers=headers['finance'])
    assert resp.status_code == 404
