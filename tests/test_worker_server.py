import threading
from datetime import datetime, timedelta

import pytest

import config
import scrap_queue
import worker_server


@pytest.fixture(autouse=True)
def reset_flag():
    worker_server._release()
    yield
    worker_server._release()


@pytest.fixture
def worker_client():
    worker_server.app.config['TESTING'] = True
    return worker_server.app.test_client()


def _queue(clinic, day, minutes=0):
    job, _ = scrap_queue.enqueue(clinic['_id'], day, day, now=datetime(2026, 10, 19, 8, 0) + timedelta(minutes=minutes))
    return job


def test_run_processes_jobs_in_order(db, clinic):
    first = _queue(clinic, '2026-10-01')
    second = _queue(clinic, '2026-10-02', minutes=1)
    seen = []

    def runner(job, clinic_doc):
        seen.append(job['_id'])
        return True, None

    result = worker_server.run_scrap_queue(runner=runner)

    assert result['success'] is True
    assert (result['processed'], result['completed'], result['failed']) == (2, 2, 0)
    assert seen == [first['_id'], second['_id']]
    assert db.scrap_queue.count_documents({'status': 'completed'}) == 2
    assert worker_server.is_processing is False


def test_run_respects_process_limit(db, clinic, monkeypatch):
    monkeypatch.setattr(config, 'PROCESS_LIMIT', 2)
    for i in range(3):
        _queue(clinic, f'2026-10-0{i + 1}', minutes=i)

    result = worker_server.run_scrap_queue(runner=lambda job, c: (True, None))

    assert result['processed'] == 2
    assert db.scrap_queue.count_documents({'status': 'pending'}) == 1


def test_scraper_failure_marks_job_failed(db, clinic):
    job = _queue(clinic, '2026-10-01')

    result = worker_server.run_scrap_queue(runner=lambda j, c: (False, 'Scraper exited with code 1'))

    stored = db.scrap_queue.find_one({'_id': job['_id']})
    assert result['failed'] == 1
    assert stored['status'] == 'failed'
    assert stored['error_message'] == 'Scraper exited with code 1'
    assert db.system_logs.count_documents({'process_type': 'scrap_queue', 'status': 'error'}) == 1


def test_runner_exception_marks_job_failed(db, clinic):
    job = _queue(clinic, '2026-10-01')

    def runner(j, c):
        raise RuntimeError('browser crashed')

    worker_server.run_scrap_queue(runner=runner)

    stored = db.scrap_queue.find_one({'_id': job['_id']})
    assert stored['status'] == 'failed'
    assert 'browser crashed' in stored['error_message']


def test_inactive_clinic_job_fails_without_scraping(db, clinic):
    job = _queue(clinic, '2026-10-01')
    db.clinics.update_one({'_id': clinic['_id']}, {'$set': {'is_active': False}})
    calls = []

    worker_server.run_scrap_queue(runner=lambda j, c: calls.append(j) or (True, None))

    assert calls == []
    assert db.scrap_queue.find_one({'_id': job['_id']})['status'] == 'failed'


def test_cron_run_enqueues_today_first(db, clinic, monkeypatch):
    monkeypatch.setattr(scrap_queue, 'today_local', lambda: '2026-10-19')

    result = worker_server.run_scrap_queue(is_cron=True, runner=lambda j, c: (True, None))

    assert result['processed'] == 1
    job = db.scrap_queue.find_one()
    assert job['tgl_awal'] == '2026-10-19'
    assert job['status'] == 'completed'


def test_second_run_is_rejected_while_processing(db, clinic):
    _queue(clinic, '2026-10-01')
    worker_server._acquire()

    result = worker_server.run_scrap_queue(runner=lambda j, c: (True, None))

    assert result == {'success': False, 'message': 'Job already running'}
    assert db.scrap_queue.count_documents({'status': 'pending'}) == 1


def test_missing_scraper_command(monkeypatch, clinic):
    monkeypatch.setattr(config, 'SCRAPER_COMMAND', '')
    ok, error = worker_server.run_scraper({'_id': 'q1', 'clinic_id': clinic['_id'],
                                           'tgl_awal': '2026-10-01', 'tgl_akhir': '2026-10-01'}, clinic)
    assert ok is False
    assert error == 'SCRAPER_COMMAND is not configured'


def test_build_scraper_command(monkeypatch):
    monkeypatch.setattr(config, 'SCRAPER_COMMAND', 'node scraper.js --clinic {clinic_id} --from {tgl_awal} --to {tgl_akhir}')
    command = worker_server.build_scraper_command(
        {'_id': 'q1', 'clinic_id': 'c1', 'tgl_awal': '2026-10-01', 'tgl_akhir': '2026-10-02'})
    assert command == ['node', 'scraper.js', '--clinic', 'c1', '--from', '2026-10-01', '--to', '2026-10-02']


def test_health_and_wake(worker_client):
    health = worker_client.get('/health').get_json()
    assert health['status'] == 'ok'
    assert health['processing'] is False
    assert health['idleTimeout'] == config.IDLE_TIMEOUT

    assert worker_client.get('/wake').get_json()['success'] is True


def test_trigger_rejects_invalid_json(worker_client):
    response = worker_client.post('/trigger', data='{not json', content_type='application/json')
    assert response.status_code == 400
    assert response.get_json() == {'success': False, 'error': 'Invalid JSON'}


def test_trigger_starts_background_run(worker_client, monkeypatch):
    calls = []
    monkeypatch.setattr(worker_server, 'run_scrap_queue', lambda is_cron=False: calls.append(is_cron))

    response = worker_client.post('/trigger', json={'isCron': True})

    assert response.get_json() == {'success': True, 'message': 'Scrap queue worker triggered', 'isCron': True}
    for thread in threading.enumerate():
        if thread.name == 'scrap-queue-run':
            thread.join(timeout=1)
    assert calls == [True]
