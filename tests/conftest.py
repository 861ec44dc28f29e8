import io
import os
import tempfile

import pytest
from PIL import Image

_tmp = tempfile.mkdtemp(prefix='city-dashboard-tests-')
os.environ['DATABASE_URL'] = 'sqlite:///' + os.path.join(_tmp, 'test.db')
os.environ['STORAGE_ROOT'] = os.path.join(_tmp, 'storage')
os.environ['CITY_NAME'] = 'Test City'

from app import app  # noqa: E402
from models import db  # noqa: E402

USERS = {
    'mayor': 'mayor@city.gov.il',
    'ceo': 'ceo@city.gov.il',
    'finance': 'finance@city.gov.il',
    'education': 'education@city.gov.il',
    'business': 'business@city.gov.il',
    'engineering': 'engineering@city.gov.il',
    'stranger': 'stranger@elsewhere.org',
}


@pytest.fixture
def client(tmp_path):
    app.config['TESTING'] = True
    app.config['STORAGE_ROOT'] = str(tmp_path / 'storage')
    with app.app_context():
        db.create_all()
    yield app.test_client()
    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def headers():
    """Request headers per user, e.g. ``headers['mayor']``."""
    return {name: {'X-Profile-Email': email} for name, email in USERS.items()}


@pytest.fixture
def png_bytes():
    buf = io.BytesIO()
    Image.new('RGB', (8, 8), (200, 30, 30)).save(buf, 'PNG')
    return buf.getvalue()
