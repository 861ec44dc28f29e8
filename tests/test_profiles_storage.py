import io

import pytest
from PIL import Image

from access import ApiError
from app import app
from avatars import initials, render_avatar
from storage import object_path


def upload(client, url, headers, data, filename, **form):
    form['file'] = (io.BytesIO(data), filename)
    return client.post(url, data=form, headers=headers, content_type='multipart/form-data')


def test_me_is_provisioned_from_directory(client, headers):
    resp = client.get('/api/me', headers=headers['finance'])
    assert resp.status_code == 200
    data = resp.get_json()
    assert data['email'] == 'finance@city.gov.il'
    assert data['role'] == 'manager'
    assert data['departments'] == ['finance']
    assert data['visible_departments'] == ['finance']

    data = client.get('/api/me', headers=headers['mayor']).get_json()
    assert len(data['visible_departments']) == 6


def test_update_display_name(client, headers):
    resp = client.put('/api/me', json={'display_name': '  Dana Levi '}, headers=headers['finance'])
    assert resp.get_json()['display_name'] == 'Dana Levi'
    resp = client.put('/api/me', json={'display_name': 'x' * 200}, headers=headers['finance'])
    assert resp.status_code == 400


def test_avatar_upload_and_download(client, headers, png_bytes):
    resp = upload(client, '/api/me/avatar', headers['education'], png_bytes, 'me.png')
    assert resp.status_code == 201
    url = resp.get_json()['avatar_url']
    assert url.startswith('/storage/avatars/')
    assert url.endswith('-me.png')

    resp = client.get(url)
    assert resp.status_code == 200
    assert resp.data == png_bytes


def test_avatar_must_be_an_image(client, headers):
    resp = upload(client, '/api/me/avatar', headers['education'], b'not an image', 'me.png')
    assert resp.status_code == 400
    assert client.get('/api/me', headers=headers['education']).get_json()['avatar_url'] is None


def test_avatar_upload_needs_a_file(client, headers):
    resp = client.post('/api/me/avatar', data={}, headers=headers['education'],
                       content_type='multipart/form-data')
    assert resp.status_code == 400


def test_placeholder_avatar(client, headers):
    resp = client.get('/api/me/avatar.png', headers=headers['mayor'])
    assert resp.status_code == 200
    assert resp.mimetype == 'image/png'
    with Image.open(io.BytesIO(resp.data)) as img:
        assert img.size == (256, 256)


@pytest.mark.parametrize('name, expected', [
    ('Dana Levi', 'DL'),
    ('noa', 'N'),
    ('john.smith@city.gov.il', 'JS'),
    ('Mayor Of The City', 'MO'),
    ('', 'U'),
    (None, 'U'),
])
def test_initials(name, expected):
    assert initials(name) == expected


def test_render_avatar_size():
    with Image.open(io.BytesIO(render_avatar('Dana Levi', size=64))) as img:
        assert img.size == (64, 64)


def test_object_path_stays_inside_bucket(tmp_path):
    app.config['STORAGE_ROOT'] = str(tmp_path)
    with app.app_context():
        assert object_path('uploads', 'a/b.txt') == str(tmp_path.resolve() / 'uploads' / 'a' / 'b.txt')
        with pytest.raises(ApiError) as exc:
            object_path('uploads', '../avatars/x.png')
        assert exc.value.status == 400
        with pytest.raises(ApiError) as exc:
            object_path('secrets', 'x')
        assert exc.value.status == 404


def test_missing_object_is_404(client):
    assert client.get('/storage/uploads/nothing/here.txt').status_code == 404
    assert client.get('/storage/secrets/x.txt').status_code == 404


def test_plan_attachments(client, headers, png_bytes):
    plan = client.post('/api/plans', json={'name': 'North Quarter'},
                       headers=headers['engineering']).get_json()
    url = f'/api/plans/{plan["id"]}/attachments'

    resp = upload(client, url, headers['engineering'], b'%PDF-1.4', 'permit.pdf', kind='file')
    assert resp.status_code == 201
    resp = upload(client, url, headers['engineering'], png_bytes, 'site.png', kind='image')
    data = resp.get_json()
    assert len(data['file_urls']) == 1
    assert data['file_urls'][0].startswith(f'/storage/uploads/plans-{plan["id"]}/')
    assert len(data['image_urls']) == 1

    resp = upload(client, url, headers['finance'], png_bytes, 'x.png', kind='image')
    assert resp.status_code == 404


def test_attachments_only_on_tables_that_hold_them(client, headers, png_bytes):
    budget = client.post('/api/budgets', headers=headers['finance'], json={
        'budget_year': 2025, 'department': 'Finance', 'allocated_amount': 1}).get_json()
    resp = upload(client, f'/api/budgets/{budget["id"]}/attachments', headers['finance'],
                  png_bytes, 'x.png', kind='image')
    assert resp.status_code == 400


def test_storage_listing_is_executive_only(client, headers, png_bytes):
    upload(client, '/api/me/avatar', headers['education'], png_bytes, 'me.png')
    assert client.get('/api/storage/avatars', headers=headers['education']).status_code == 403

    objects = client.get('/api/storage/avatars', headers=headers['mayor']).get_json()
    assert len(objects) == 1
    assert objects[0]['size'] == len(png_bytes)

    resp = client.delete(objects[0]['url'].replace('/storage/', '/api/storage/', 1),
                         headers=headers['mayor'])
    assert resp.status_code == 204
    assert client.get(objects[0]['url']).status_code == 404
    assert client.get('/api/storage/avatars', headers=headers['mayor']).get_json() == []
