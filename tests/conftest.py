import os

# config refuses to import without these
os.environ.setdefault('MONGO_URI', 'mongodb://localhost:27017/clinic_dashboard_test')
os.environ.setdefault('SECRET_KEY', 'test-secret-key')

from datetime import datetime

import mongomock
import pytest

import config
import database


class FakeResponse:
    def __init__(self, status_code=200, json_data=None, text=''):
        self.status_code = status_code
        self._json = json_data
        self.text = text

    @property
    def ok(self):
        return 200 <= self.status_code < 300

    def json(self):
        if self._json is None:
            raise ValueError('No JSON')
        return self._json


class FakeSession:
    """Stands in for requests / requests.Session; replays queued responses."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = []

    def _next(self, method, url, kwargs):
        self.calls.append({'method': method, 'url': url, **kwargs})
        response = self.responses.pop(0) if self.responses else FakeResponse(200, {})
        if isinstance(response, Exception):
            raise response
        return response

    def post(self, url, **kwargs):
        return self._next('POST', url, kwargs)

    def get(self, url, **kwargs):
        return self._next('GET', url, kwargs)


@pytest.fixture(autouse=True)
def db():
    test_db = mongomock.MongoClient()['clinic_dashboard_test']
    database.use_database(test_db)
    yield test_db
    database.use_database(None)


@pytest.fixture
def clinic(db):
    now = datetime(2026, 10, 1, 8, 0)
    clinic = {
        'name': 'Klinik Sehat Cabang 1',
        'location': 'Bandung',
        'login_url': 'https://csf.eclinic.id/login',
        'username': 'klinik1',
        'portal_password': 'secret',
        'id_kantor_zains': 'KTR-01',
        'id_rekening': 'REK-QRIS-01',
        'is_active': True,
        'last_scraped_at': None,
        'created_at': now,
        'updated_at': now,
    }
    clinic['_id'] = db.clinics.insert_one(clinic).inserted_id
    return clinic


@pytest.fixture
def inactive_clinic(db):
    clinic = {'name': 'Klinik Tutup', 'username': 'tutup', 'is_active': False,
              'id_kantor_zains': 'KTR-99', 'created_at': datetime(2026, 1, 1)}
    clinic['_id'] = db.clinics.insert_one(clinic).inserted_id
    return clinic


@pytest.fixture
def categories(db):
    db.master_target_categories.insert_many([
        {'name': 'Karcis', 'id_program_zains': 'PRG-KARCIS'},
        {'name': 'Tindakan', 'id_program_zains': 'PRG-TINDAKAN'},
        {'name': 'Obat-obatan', 'id_program_zains': 'PRG-OBAT'},
        {'name': 'Laboratorium', 'id_program_zains': None},
        {'name': 'Pembulatan', 'id_program_zains': 'PRG-BULAT'},
    ])


@pytest.fixture
def zains_api(monkeypatch):
    monkeypatch.setattr(config, 'URL_API_ZAINS', 'https://zains.example.org/api/')
    monkeypatch.setattr(config, 'API_KEY_ZAINS', 'zains-key')
