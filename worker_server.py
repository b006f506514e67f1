"""
Worker host service.

Runs next to the headless-browser scraper (which the serverless dashboard
cannot run). The dashboard or a cron pings /wake and /trigger; a trigger
drains the scrape queue in a background thread, one claimed job at a time.
Only one drain runs per process.

    gunicorn -c gunicorn_config.py worker_server:app
"""
import json
import os
import shlex
import subprocess
import threading
import time
from datetime import datetime

from flask import Flask, request, jsonify

import config
import database
import scrap_queue
from system_logs import log_system_event, PROCESS_SCRAP_QUEUE

app = Flask(__name__)

_state_lock = threading.Lock()
is_processing = False
last_request_time = time.time()
_idle_thread = None


def _touch():
    global last_request_time
    last_request_time = time.time()


def _acquire():
    global is_processing
    with _state_lock:
        if is_processing:
            return False
        is_processing = True
        return True


def _release():
    global is_processing
    with _state_lock:
        is_processing = False


def build_scraper_command(job):
    """SCRAPER_COMMAND with {queue_id} {clinic_id} {tgl_awal} {tgl_akhir} filled in."""
    return shlex.split(config.SCRAPER_COMMAND.format(
        queue_id=job['_id'],
        clinic_id=job['clinic_id'],
        tgl_awal=job['tgl_awal'],
        tgl_akhir=job['tgl_akhir'],
    ))


def run_scraper(job, clinic):
    """Run the external scraper for one job. Returns (ok, error_message)."""
    if not config.SCRAPER_COMMAND:
        return False, 'SCRAPER_COMMAND is not configured'

    env = dict(os.environ)
    env.update({
        'SCRAP_QUEUE_ID': str(job['_id']),
        'SCRAP_CLINIC_ID': str(clinic['_id']),
        'SCRAP_TGL_AWAL': job['tgl_awal'],
        'SCRAP_TGL_AKHIR': job['tgl_akhir'],
    })
    try:
        completed = subprocess.run(build_scraper_command(job), env=env, timeout=config.SCRAPER_TIMEOUT)
    except subprocess.TimeoutExpired:
        return False, f"Scraper timed out after {config.SCRAPER_TIMEOUT}s"
    except OSError as e:
        return False, f"Scraper could not be started: {e}"

    if completed.returncode != 0:
        return False, f"Scraper exited with code {completed.returncode}"
    return True, None


def process_job(job, runner=run_scraper):
    """Run one claimed job to a terminal status. Returns True when it completed."""
    clinic = database.get_db().clinics.find_one({'_id': job['clinic_id']})
    if not clinic or not clinic.get('is_active'):
        ok, error = False, 'Clinic not found or inactive'
    else:
        print(f"[Worker] Scraping {clinic.get('name')} {job['tgl_awal']} to {job['tgl_akhir']} (job #{job['_id']})")
        try:
            ok, error = runner(job, clinic)
        except Exception as e:
            ok, error = False, f"{type(e).__name__}: {e}"

    try:
        if ok:
            scrap_queue.update_status(job['_id'], scrap_queue.STATUS_COMPLETED)
        else:
            scrap_queue.update_status(job['_id'], scrap_queue.STATUS_FAILED, error_message=error)
    except (scrap_queue.QueueStateError, LookupError) as e:
        # Job was failed as stale or removed while the scraper was running
        print(f"[Worker] Could not finish job #{job['_id']}: {e}")
        return False

    if not ok:
        print(f"[Worker] Job #{job['_id']} failed: {error}")
        log_system_event(job['clinic_id'], PROCESS_SCRAP_QUEUE, 'error', error,
                         {'queue_id': str(job['_id']), 'tgl_awal': job['tgl_awal'], 'tgl_akhir': job['tgl_akhir']})
    return ok


def run_scrap_queue(is_cron=False, runner=run_scraper):
    """Drain up to PROCESS_LIMIT jobs. A second call while one is running is rejected."""
    if not _acquire():
        print("[Worker] A run is already in progress, skipping")
        return {'success': False, 'message': 'Job already running'}

    print(f"[Worker] Starting scrap queue run (cron: {is_cron})")
    try:
        if is_cron:
            scrap_queue.enqueue_today(requested_by='cron')

        processed = completed = failed = 0
        while processed < config.PROCESS_LIMIT:
            job = scrap_queue.claim_next()
            if not job:
                break
            processed += 1
            if process_job(job, runner):
                completed += 1
            else:
                failed += 1

        print(f"[Worker] Run finished: {processed} processed, {completed} completed, {failed} failed")
        return {'success': True, 'message': 'Scrap queue worker completed',
                'processed': processed, 'completed': completed, 'failed': failed}
    except Exception as e:
        print(f"[Worker] Run error: {type(e).__name__}: {e}")
        return {'success': False, 'message': str(e)}
    finally:
        _release()


def _idle_check():
    while True:
        time.sleep(60)
        idle_time = time.time() - last_request_time
        if idle_time > config.IDLE_TIMEOUT and not is_processing:
            print(f"[Worker] Idle for {round(idle_time)}s, service may be put to sleep; "
                  f"wake it via /wake or /trigger")


def start_idle_check():
    global _idle_thread
    if _idle_thread is None:
        _idle_thread = threading.Thread(target=_idle_check, daemon=True)
        _idle_thread.start()
        print(f"[Worker] Idle check started (timeout: {config.IDLE_TIMEOUT}s)")


@app.before_request
def track_request():
    start_idle_check()
    if request.path != '/health':
        _touch()


@app.route('/health', methods=['GET'])
def health():
    return jsonify({
        'status': 'ok',
        'processing': is_processing,
        'idleTime': round(time.time() - last_request_time),
        'idleTimeout': config.IDLE_TIMEOUT,
    })


@app.route('/wake', methods=['GET'])
def wake():
    print("[Worker] Service woken up via /wake")
    return jsonify({'success': True, 'message': 'Service woken up', 'timestamp': datetime.now().isoformat()})


@app.route('/trigger', methods=['POST'])
def trigger():
    body = request.get_data(as_text=True)
    try:
        data = json.loads(body) if body else {}
    except ValueError:
        return jsonify({'success': False, 'error': 'Invalid JSON'}), 400
    is_cron = isinstance(data, dict) and data.get('isCron') is True

    threading.Thread(target=run_scrap_queue, args=(is_cron,), name='scrap-queue-run', daemon=True).start()
    return jsonify({'success': True, 'message': 'Scrap queue worker triggered', 'isCron': is_cron})


if __name__ == '__main__':
    start_idle_check()
    app.run(host='0.0.0.0', port=config.WORKER_PORT)
