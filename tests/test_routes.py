import pytest

import app as dashboard
import config
import worker_trigger
import zains_sync


@pytest.fixture
def anon_client():
    dashboard.app.config['TESTING'] = True
    return dashboard.app.test_client()


@pytest.fixture
def client(anon_client):
    with anon_client.session_transaction() as sess:
        sess['user_id'] = 'user-1'
        sess['username'] = 'admin'
    return anon_client


def test_health_and_ping_are_open(anon_client):
    assert anon_client.get('/health').get_json()['status'] == 'ok'
    assert anon_client.get('/ping').status_code == 200


def test_api_requires_session(anon_client):
    assert anon_client.get('/api/clinics').status_code == 401
    assert anon_client.post('/api/scrap/queue', json={}).status_code == 401


def test_clinic_crud_hides_portal_password(client, db):
    response = client.post('/api/clinics', json={
        'name': ' Klinik Baru ', 'username': 'baru', 'portal_password': 'rahasia', 'id_kantor_zains': 'KTR-5'})
    assert response.status_code == 201
    clinic_id = response.get_json()['id']
    assert db.clinics.find_one()['name'] == 'Klinik Baru'

    listing = client.get('/api/clinics').get_json()
    assert listing[0]['name'] == 'Klinik Baru'
    assert 'portal_password' not in listing[0]

    detail = client.get(f'/api/clinics/{clinic_id}').get_json()
    assert 'portal_password' not in detail
    assert detail['stats']['total_transactions'] == 0

    assert client.put(f'/api/clinics/{clinic_id}', json={'is_active': False, 'portal_password': ''}).status_code == 200
    stored = db.clinics.find_one()
    assert stored['is_active'] is False
    assert stored['portal_password'] == 'rahasia'

    assert client.delete(f'/api/clinics/{clinic_id}').status_code == 200
    assert client.get(f'/api/clinics/{clinic_id}').status_code == 404


def test_clinic_validation(client):
    assert client.post('/api/clinics', json={'name': 'No user'}).status_code == 400
    assert client.get('/api/clinics/not-an-id').status_code == 400


def test_scrap_queue_enqueue_and_list(client, clinic):
    body = {'clinic_id': str(clinic['_id']), 'tgl_awal': '2026-10-01', 'tgl_akhir': '2026-10-02'}

    first = client.post('/api/scrap/queue', json=body).get_json()
    second = client.post('/api/scrap/queue', json=body).get_json()

    assert first['created'] is True
    assert first['status'] == 'pending'
    assert second['created'] is False
    assert second['queue_id'] == first['queue_id']

    listing = client.get('/api/scrap/queue?status=pending').get_json()
    assert listing['count'] == 1
    assert listing['requests'][0]['requested_by'] == 'admin'

    assert client.post('/api/scrap/queue', json={'clinic_id': str(clinic['_id'])}).status_code == 400
    assert client.get('/api/scrap/queue?status=weird').status_code == 400


def test_process_queue_requires_worker_token(anon_client, clinic, monkeypatch):
    monkeypatch.setattr(config, 'GITHUB_ACTIONS_TOKEN', 'gh-token')
    assert anon_client.post('/api/scrap/process-queue').status_code == 401

    headers = {'X-GitHub-Token': 'gh-token'}
    empty = anon_client.post('/api/scrap/process-queue', headers=headers).get_json()
    assert empty['processed'] == 0


def test_process_queue_claim_and_update(client, clinic, monkeypatch):
    monkeypatch.setattr(config, 'GITHUB_ACTIONS_TOKEN', 'gh-token')
    headers = {'X-GitHub-Token': 'gh-token'}
    client.post('/api/scrap/queue', json={
        'clinic_id': str(clinic['_id']), 'tgl_awal': '2026-10-01', 'tgl_akhir': '2026-10-01'})

    claimed = client.post('/api/scrap/process-queue', headers=headers, json={'github_run_id': 777}).get_json()
    assert claimed['clinic_id'] == str(clinic['_id'])
    assert claimed['tgl_awal'] == '2026-10-01'

    done = client.patch('/api/scrap/process-queue', headers=headers,
                        json={'queue_id': claimed['queue_id'], 'status': 'completed'})
    assert done.status_code == 200

    again = client.patch('/api/scrap/process-queue', headers=headers,
                         json={'queue_id': claimed['queue_id'], 'status': 'processing'})
    assert again.status_code == 409

    invalid = client.patch('/api/scrap/process-queue', headers=headers,
                           json={'queue_id': claimed['queue_id'], 'status': 'done'})
    assert invalid.status_code == 400


def test_cron_routes_check_secret(anon_client, clinic, monkeypatch):
    monkeypatch.setattr(config, 'CRON_SECRET', 'cron-secret')

    assert anon_client.get('/api/cron/enqueue-today').status_code == 401
    response = anon_client.get('/api/cron/enqueue-today', headers={'Authorization': 'Bearer cron-secret'})
    assert response.status_code == 200
    assert response.get_json()['created'] == 1

    cleanup = anon_client.post('/api/cron/cleanup-scrap-queue', headers={'Authorization': 'Bearer cron-secret'})
    assert cleanup.get_json()['total_deleted'] == 0


def test_cron_trigger_reports_worker_failure(anon_client, monkeypatch):
    monkeypatch.setattr(config, 'CRON_SECRET', '')
    monkeypatch.setattr(worker_trigger, 'trigger_worker', lambda is_cron=False: {
        'success': False, 'message': 'Failed to trigger worker', 'error': 'Worker returned 503: down'})

    response = anon_client.get('/api/cron/trigger-scrap-queue')
    assert response.status_code == 500
    assert response.get_json()['error'] == 'Worker returned 503: down'


def test_insert_transactions_route(client, clinic, categories, monkeypatch):
    monkeypatch.setattr(zains_sync, 'start_background', lambda *args, **kwargs: None)
    payload = {
        'clinic_id': str(clinic['_id']),
        'input_type': 'manual',
        'transaction_data': [{'trx_date': '2026-10-01', 'trx_no': 'M-1', 'erm_no': 'RM77',
                              'patient_name': 'Rina', 'paid_regist': 20000, 'bill_total': 20000}],
    }

    response = client.post('/api/transactions/insert', json=payload)

    assert response.status_code == 200
    assert response.get_json()['data']['zains_inserted'] == 1
    assert client.post('/api/transactions/insert', json={'transaction_data': []}).status_code == 400

    trx = client.get('/api/transactions').get_json()['transactions'][0]
    rows = client.get(f"/api/transactions/{trx['_id']}/zains").get_json()['rows']
    assert rows[0]['id_program'] == 'PRG-KARCIS'


def test_export_route_sends_workbook(client, clinic):
    response = client.get('/api/transactions/export')
    assert response.status_code == 200
    assert response.data[:2] == b'PK'


def test_workflow_route_requires_patient_id(client):
    response = client.post('/api/workflow/sync-patient-to-zains', json={})
    assert response.status_code == 400


def test_background_sync_routes_return_immediately(client, monkeypatch):
    started = []
    monkeypatch.setattr(zains_sync, 'start_background', lambda fn, *args: started.append(fn))

    assert client.post('/api/sync-patients-to-zains').status_code == 200
    assert client.get('/api/sync-transactions-to-zains').status_code == 200
    assert started == [zains_sync.sync_patients_batch_to_zains, zains_sync.sync_transactions_batch_to_zains]

    client.patch('/api/settings/zains-transaction-sync', json={'enabled': False})
    disabled = client.post('/api/sync-transactions-to-zains').get_json()
    assert disabled['disabled'] is True
    assert len(started) == 2


def test_settings_routes(client, zains_api):
    assert client.patch('/api/settings/zains-transaction-sync', json={'enabled': 'yes'}).status_code == 400
    response = client.patch('/api/settings/zains-transaction-sync', json={'enabled': True, 'activateAllPending': True})
    assert response.get_json() == {'success': True, 'enabled': True, 'activatedCount': 0}
    assert client.get('/api/settings/zains-transaction-sync').get_json() == {'enabled': True}

    env = client.get('/api/settings/zains-api-env').get_json()
    assert env == {'mode': 'production', 'isProduction': True, 'urlHost': 'zains.example.org'}

    assert client.patch('/api/settings/app', json={'nope': 1}).status_code == 400
    assert client.patch('/api/settings/app', json={'app_title': 'Klinik'}).status_code == 200
    assert client.get('/api/settings/app').get_json()['app_title'] == 'Klinik'


def test_summary_and_logs_routes(client, clinic):
    summary = client.get('/api/summary?date_from=2026-10-01&date_to=2026-10-31')
    assert summary.status_code == 200
    assert summary.get_json()['totals']['revenue'] == 0

    assert client.get('/api/summary?date_from=2026-10-31&date_to=2026-10-01').status_code == 400
    assert client.get('/api/system-logs?limit=5').get_json()['limit'] == 5


def test_poly_and_insurance_mapping_routes(client, clinic, db):
    base = f"/api/clinics/{clinic['_id']}"

    created = client.post(f'{base}/poly-mappings', json={'raw_poly_name': ' Poli Umum ', 'master_poly_id': 'MP-UMUM'})
    assert created.status_code == 201
    mapping = created.get_json()['mapping']
    assert mapping['raw_poly_name'] == 'Poli Umum'
    assert mapping['is_revenue_center'] is True

    # Saving the same raw name replaces the master id
    client.post(f'{base}/poly-mappings', json={'raw_poly_name': 'Poli Umum', 'master_poly_id': 'MP-GP'})
    listing = client.get(f'{base}/poly-mappings').get_json()
    assert [(m['raw_poly_name'], m['master_poly_id']) for m in listing] == [('Poli Umum', 'MP-GP')]

    assert client.post(f'{base}/insurance-mappings', json={
        'raw_insurance_name': 'BPJS', 'master_insurance_id': 'INS-BPJS'}).status_code == 201
    insurance = client.get(f'{base}/insurance-mappings').get_json()
    assert insurance[0]['master_insurance_id'] == 'INS-BPJS'

    assert client.post(f'{base}/poly-mappings', json={'master_poly_id': 'MP-X'}).status_code == 400
    assert client.get('/api/clinics/64b7f0c2a1b2c3d4e5f60718/poly-mappings').status_code == 404

    assert client.delete(f"{base}/poly-mappings/{listing[0]['_id']}").status_code == 200
    assert client.delete(f"{base}/poly-mappings/{listing[0]['_id']}").status_code == 404
    assert client.delete(f"{base}/insurance-mappings/{insurance[0]['_id']}").status_code == 200
    assert db.clinic_poly_mappings.count_documents({}) == 0
    assert db.clinic_insurance_mappings.count_documents({}) == 0


def test_mapping_routes_require_session(anon_client, clinic):
    assert anon_client.get(f"/api/clinics/{clinic['_id']}/poly-mappings").status_code == 401
    assert anon_client.post(f"/api/clinics/{clinic['_id']}/insurance-mappings", json={}).status_code == 401


def test_workflow_transaction_sync_validates_limit(client, monkeypatch):
    calls = []
    monkeypatch.setattr(zains_sync, 'sync_transactions_batch_to_zains',
                        lambda limit=None: calls.append(limit) or {'total': 0, 'success': 0, 'failed': 0})

    assert client.post('/api/workflow/sync-transactions-to-zains', json={'limit': 'abc'}).status_code == 400
    assert client.post('/api/workflow/sync-transactions-to-zains', json={'limit': 0}).status_code == 400
    assert client.post('/api/workflow/sync-transactions-to-zains', json={'limit': '50'}).status_code == 200
    assert client.post('/api/workflow/sync-transactions-to-zains', json={}).status_code == 200
    assert calls == [50, None]


def test_cron_trigger_without_worker_url_is_an_error(anon_client, monkeypatch):
    monkeypatch.setattr(config, 'CRON_SECRET', '')
    monkeypatch.setattr(config, 'RAILWAY_SERVICE_URL', '')

    trigger = anon_client.get('/api/cron/trigger-scrap-queue')
    wake = anon_client.get('/api/cron/wake-worker')

    assert trigger.status_code == 500
    assert trigger.get_json()['success'] is False
    assert wake.status_code == 500


def test_cron_trigger_success(anon_client, monkeypatch):
    monkeypatch.setattr(config, 'CRON_SECRET', '')
    monkeypatch.setattr(worker_trigger, 'trigger_worker', lambda is_cron=False: {
        'success': True, 'message': 'Worker triggered'})

    assert anon_client.get('/api/cron/trigger-scrap-queue').status_code == 200
