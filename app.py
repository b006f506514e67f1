from flask import Flask, request, jsonify, send_file, session
from datetime import datetime, timedelta
from functools import wraps
import sys

import config
from database import get_db, check_db, clean_input_data, to_object_id, serialize_doc, parse_iso_date
import app_settings
import clinic_mappings
import reports
import scrap_queue
import system_logs
import transactions
import worker_trigger
import zains_sync

# Enable stdout flushing for Vercel logs
sys.stdout.flush()

app = Flask(__name__)

print("=== Application Starting ===")
app.config["SECRET_KEY"] = config.SECRET_KEY

# Session configuration for production/serverless
app.config["SESSION_COOKIE_SECURE"] = config.FLASK_ENV == "production"
app.config["SESSION_COOKIE_HTTPONLY"] = True
app.config["SESSION_COOKIE_SAMESITE"] = "Lax"
app.config["PERMANENT_SESSION_LIFETIME"] = timedelta(days=7)

CLINIC_FIELDS = ('name', 'location', 'login_url', 'username', 'portal_password', 'kode_coa',
                 'id_kantor_zains', 'coa_qris', 'id_rekening', 'is_active')
DEFAULT_LOGIN_URL = 'https://csf.eclinic.id/login'


# --- AUTHENTICATION HELPERS ---
# Sign-in itself happens at the external identity provider; the dashboard only
# sees the resulting session.

def login_required(f):
    def wrapper(*args, **kwargs):
        if 'user_id' not in session:
            return jsonify({"error": "Unauthorized"}), 401
        return f(*args, **kwargs)
    wrapper.__name__ = f.__name__
    return wrapper


def _has_cron_secret():
    if not config.CRON_SECRET:
        return False
    return request.headers.get('Authorization') == f"Bearer {config.CRON_SECRET}"


def _has_worker_token():
    if not config.GITHUB_ACTIONS_TOKEN:
        return False
    return request.headers.get('X-GitHub-Token') == config.GITHUB_ACTIONS_TOKEN


def cron_required(f):
    """Vercel cron calls carry 'Authorization: Bearer <CRON_SECRET>' when a secret is set."""
    @wraps(f)
    def wrapper(*args, **kwargs):
        if config.CRON_SECRET and not _has_cron_secret():
            return jsonify({"error": "Unauthorized"}), 401
        return f(*args, **kwargs)
    return wrapper


def worker_token_required(f):
    @wraps(f)
    def wrapper(*args, **kwargs):
        if not _has_worker_token():
            return jsonify({"error": "Unauthorized"}), 401
        return f(*args, **kwargs)
    return wrapper


def login_or_service_required(f):
    """Dashboard session, cron secret or worker token."""
    @wraps(f)
    def wrapper(*args, **kwargs):
        if 'user_id' in session or _has_cron_secret() or _has_worker_token():
            return f(*args, **kwargs)
        return jsonify({"error": "Unauthorized"}), 401
    return wrapper


def error_response(label, e):
    if isinstance(e, ValueError):
        return jsonify({"error": str(e)}), 400
    if isinstance(e, LookupError):
        return jsonify({"error": str(e)}), 404
    if isinstance(e, scrap_queue.QueueStateError):
        return jsonify({"error": str(e)}), 409
    print(f"{label} Error: {type(e).__name__}: {e}")
    return jsonify({"error": str(e)}), 500


def _query_int(name, default):
    try:
        return int(request.args.get(name, default))
    except (TypeError, ValueError):
        raise ValueError(f"{name} must be a number")


def _body_limit(data):
    limit = data.get('limit')
    if limit is None or limit == '':
        return None
    try:
        limit = int(limit)
    except (TypeError, ValueError):
        raise ValueError("limit must be a number")
    if limit < 1:
        raise ValueError("limit must be at least 1")
    return limit


@app.route('/api/auth/session', methods=['GET'])
def check_session():
    if 'user_id' in session:
        return jsonify({
            "is_logged_in": True,
            "username": session.get('username'),
            "role": session.get('role'),
            "user_id": session.get('user_id')
        })
    return jsonify({"is_logged_in": False}), 401


@app.route('/api/auth/logout', methods=['POST'])
def logout():
    session.clear()
    return jsonify({"message": "Logged out"})


# --- CLINICS ---

def _clinic_from_body(data, partial=False):
    clinic = {k: data[k] for k in CLINIC_FIELDS if k in data}
    if not partial:
        if not clinic.get('name') or not clinic.get('username'):
            raise ValueError("name and username are required")
        clinic.setdefault('login_url', DEFAULT_LOGIN_URL)
        clinic.setdefault('is_active', True)
    if 'is_active' in clinic:
        clinic['is_active'] = bool(clinic['is_active'])
    return clinic


@app.route('/api/clinics', methods=['GET'])
@login_required
def get_clinics():
    if not check_db(): return jsonify({"error": "Database error"}), 500
    try:
        return jsonify(reports.list_clinics_with_stats())
    except Exception as e:
        return error_response("Clinic Fetch", e)


@app.route('/api/clinics', methods=['POST'])
@login_required
def add_clinic():
    if not check_db(): return jsonify({"error": "Database error"}), 500
    try:
        clinic = _clinic_from_body(clean_input_data(request.json or {}))
        clinic['last_scraped_at'] = None
        clinic['created_at'] = datetime.now()
        clinic['updated_at'] = clinic['created_at']
        result = get_db().clinics.insert_one(clinic)
        return jsonify({"message": "Clinic created", "id": str(result.inserted_id)}), 201
    except Exception as e:
        return error_response("Clinic Insert", e)


@app.route('/api/clinics/<id>', methods=['GET'])
@login_required
def get_clinic(id):
    if not check_db(): return jsonify({"error": "Database error"}), 500
    try:
        clinic = get_db().clinics.find_one({'_id': to_object_id(id)}, {'portal_password': 0})
        if not clinic:
            return jsonify({"error": "Clinic not found"}), 404
        data = serialize_doc(clinic)
        data['stats'] = reports.clinic_stats(id)
        return jsonify(data)
    except Exception as e:
        return error_response("Clinic Fetch", e)


@app.route('/api/clinics/<id>', methods=['PUT'])
@login_required
def update_clinic(id):
    if not check_db(): return jsonify({"error": "Database error"}), 500
    try:
        data = _clinic_from_body(clean_input_data(request.json or {}), partial=True)
        # An empty password field in the form means "keep the current one"
        if not data.get('portal_password'):
            data.pop('portal_password', None)
        data['updated_at'] = datetime.now()
        result = get_db().clinics.update_one({'_id': to_object_id(id)}, {'$set': data})
        if result.matched_count == 0:
            return jsonify({"error": "Clinic not found"}), 404
        return jsonify({"message": "Updated"})
    except Exception as e:
        return error_response("Clinic Update", e)


@app.route('/api/clinics/<id>', methods=['DELETE'])
@login_required
def delete_clinic(id):
    if not check_db(): return jsonify({"error": "Database error"}), 500
    try:
        clinic_oid = to_object_id(id)
        if get_db().transactions.count_documents({'clinic_id': clinic_oid}, limit=1):
            return jsonify({"error": "Clinic has transactions; deactivate it instead"}), 409
        result = get_db().clinics.delete_one({'_id': clinic_oid})
        if result.deleted_count == 0:
            return jsonify({"error": "Clinic not found"}), 404
        get_db().scrap_queue.delete_many({'clinic_id': clinic_oid, 'status': scrap_queue.STATUS_PENDING})
        for collection, _, _ in clinic_mappings.MAPPING_KINDS.values():
            get_db()[collection].delete_many({'clinic_id': clinic_oid})
        return jsonify({"message": "Clinic deleted successfully"})
    except Exception as e:
        return error_response("Clinic Delete", e)


# --- CLINIC MAPPINGS ---

def _get_mappings(kind, id):
    if not check_db(): return jsonify({"error": "Database error"}), 500
    try:
        return jsonify(clinic_mappings.list_mappings(kind, id))
    except Exception as e:
        return error_response("Mapping Fetch", e)


def _save_mapping(kind, id):
    if not check_db(): return jsonify({"error": "Database error"}), 500
    try:
        mapping = clinic_mappings.save_mapping(kind, id, clean_input_data(request.json or {}))
        return jsonify({"message": "Mapping saved", "mapping": serialize_doc(mapping)}), 201
    except Exception as e:
        return error_response("Mapping Save", e)


def _delete_mapping(kind, id, mapping_id):
    if not check_db(): return jsonify({"error": "Database error"}), 500
    try:
        clinic_mappings.delete_mapping(kind, id, mapping_id)
        return jsonify({"message": "Mapping deleted"})
    except Exception as e:
        return error_response("Mapping Delete", e)


@app.route('/api/clinics/<id>/poly-mappings', methods=['GET'])
@login_required
def get_poly_mappings(id):
    return _get_mappings(clinic_mappings.POLY, id)


@app.route('/api/clinics/<id>/poly-mappings', methods=['POST'])
@login_required
def save_poly_mapping(id):
    return _save_mapping(clinic_mappings.POLY, id)


@app.route('/api/clinics/<id>/poly-mappings/<mapping_id>', methods=['DELETE'])
@login_required
def delete_poly_mapping(id, mapping_id):
    return _delete_mapping(clinic_mappings.POLY, id, mapping_id)


@app.route('/api/clinics/<id>/insurance-mappings', methods=['GET'])
@login_required
def get_insurance_mappings(id):
    return _get_mappings(clinic_mappings.INSURANCE, id)


@app.route('/api/clinics/<id>/insurance-mappings', methods=['POST'])
@login_required
def save_insurance_mapping(id):
    return _save_mapping(clinic_mappings.INSURANCE, id)


@app.route('/api/clinics/<id>/insurance-mappings/<mapping_id>', methods=['DELETE'])
@login_required
def delete_insurance_mapping(id, mapping_id):
    return _delete_mapping(clinic_mappings.INSURANCE, id, mapping_id)


# --- MASTER DATA ---

@app.route('/api/master/target-categories', methods=['GET'])
@login_required
def get_target_categories():
    if not check_db(): return jsonify({"error": "Database error"}), 500
    try:
        categories = get_db().master_target_categories.find().sort('name', 1)
        return jsonify([serialize_doc(c) for c in categories])
    except Exception as e:
        return error_response("Target Category Fetch", e)


@app.route('/api/master/target-categories', methods=['POST'])
@login_required
def add_target_category():
    if not check_db(): return jsonify({"error": "Database error"}), 500
    try:
        data = clean_input_data(request.json or {})
        if not data.get('name'):
            return jsonify({"error": "name is required"}), 400
        now = datetime.now()
        get_db().master_target_categories.update_one(
            {'name': data['name']},
            {'$set': {'id_program_zains': data.get('id_program_zains') or None,
                      'description': data.get('description', ''), 'updated_at': now},
             '$setOnInsert': {'created_at': now}},
            upsert=True
        )
        return jsonify({"message": "Category saved"}), 201
    except Exception as e:
        return error_response("Target Category Insert", e)


@app.route('/api/master/target-categories/<id>', methods=['DELETE'])
@login_required
def delete_target_category(id):
    if not check_db(): return jsonify({"error": "Database error"}), 500
    try:
        result = get_db().master_target_categories.delete_one({'_id': to_object_id(id)})
        if result.deleted_count == 0:
            return jsonify({"error": "Category not found"}), 404
        return jsonify({"message": "Category deleted"})
    except Exception as e:
        return error_response("Target Category Delete", e)


@app.route('/api/master/public-holidays', methods=['GET'])
@login_required
def get_public_holidays():
    if not check_db(): return jsonify({"error": "Database error"}), 500
    try:
        query = {}
        year = request.args.get('year')
        if year:
            query['holiday_date'] = {'$regex': f"^{int(year)}-"}
        holidays = get_db().public_holidays.find(query).sort('holiday_date', 1)
        return jsonify([serialize_doc(h) for h in holidays])
    except Exception as e:
        return error_response("Holiday Fetch", e)


@app.route('/api/master/public-holidays', methods=['POST'])
@login_required
def add_public_holiday():
    if not check_db(): return jsonify({"error": "Database error"}), 500
    try:
        data = clean_input_data(request.json or {})
        holiday_date = parse_iso_date(data.get('holiday_date'))
        if not holiday_date:
            return jsonify({"error": "holiday_date must be a valid date (YYYY-MM-DD)"}), 400
        get_db().public_holidays.update_one(
            {'holiday_date': holiday_date},
            {'$set': {'description': data.get('description', ''), 'updated_at': datetime.now()},
             '$setOnInsert': {'created_at': datetime.now()}},
            upsert=True
        )
        return jsonify({"message": "Holiday saved", "holiday_date": holiday_date}), 201
    except Exception as e:
        return error_response("Holiday Insert", e)


@app.route('/api/master/public-holidays/<id>', methods=['DELETE'])
@login_required
def delete_public_holiday(id):
    if not check_db(): return jsonify({"error": "Database error"}), 500
    try:
        result = get_db().public_holidays.delete_one({'_id': to_object_id(id)})
        if result.deleted_count == 0:
            return jsonify({"error": "Holiday not found"}), 404
        return jsonify({"message": "Holiday deleted"})
    except Exception as e:
        return error_response("Holiday Delete", e)


# --- PATIENTS ---

@app.route('/api/patients', methods=['GET'])
@login_required
def get_patients():
    if not check_db(): return jsonify({"error": "Database error"}), 500
    try:
        return jsonify(reports.list_patients(
            search=request.args.get('search'),
            clinic_id=request.args.get('clinic_id'),
            page=_query_int('page', 1),
            limit=_query_int('limit', 20)
        ))
    except Exception as e:
        return error_response("Patient Fetch", e)


@app.route('/api/patients/<id>', methods=['DELETE'])
@login_required
def delete_patient(id):
    if not check_db(): return jsonify({"error": "Database error"}), 500
    try:
        result = reports.delete_patient(id)
        return jsonify({"message": "Patient deleted successfully", **result})
    except Exception as e:
        return error_response("Patient Delete", e)


# --- TRANSACTIONS ---

@app.route('/api/transactions', methods=['GET'])
@login_required
def get_transactions():
    if not check_db(): return jsonify({"error": "Database error"}), 500
    try:
        return jsonify(transactions.list_transactions(
            request.args, page=_query_int('page', 1), limit=_query_int('limit', 20)))
    except Exception as e:
        return error_response("Transaction Fetch", e)


@app.route('/api/transactions/stats', methods=['GET'])
@login_required
def get_transaction_stats():
    if not check_db(): return jsonify({"error": "Database error"}), 500
    try:
        return jsonify(transactions.transaction_stats())
    except Exception as e:
        return error_response("Transaction Stats", e)


@app.route('/api/transactions/<id>/zains', methods=['GET'])
@login_required
def get_transaction_zains(id):
    if not check_db(): return jsonify({"error": "Database error"}), 500
    try:
        return jsonify(transactions.get_transaction_zains_rows(id))
    except Exception as e:
        return error_response("Transaction Zains Fetch", e)


@app.route('/api/transactions/insert', methods=['POST'])
@login_or_service_required
def insert_transactions():
    if not check_db(): return jsonify({"error": "Database error"}), 500
    data = request.get_json(silent=True) or {}
    clinic_id = data.get('clinic_id')
    try:
        if not clinic_id:
            return jsonify({"error": "clinic_id is required"}), 400
        result = transactions.ingest_transactions(
            clinic_id, data.get('transaction_data'), data.get('input_type', 'manual'))
        return jsonify(result)
    except Exception as e:
        if not isinstance(e, (ValueError, LookupError)):
            system_logs.log_system_event(clinic_id, system_logs.PROCESS_TRANSACTIONS_INSERT, 'error',
                                         str(e), {'input_type': data.get('input_type')})
        return error_response("Transaction Insert", e)


@app.route('/api/transactions/export', methods=['GET'])
@login_required
def export_transactions():
    if not check_db(): return jsonify({"error": "Database error"}), 500
    try:
        output = transactions.build_transactions_export(request.args)
        filename = f"transactions_{datetime.now().strftime('%Y%m%d_%H%M%S')}.xlsx"
        return send_file(output, as_attachment=True, download_name=filename,
                         mimetype='application/vnd.openxmlformats-officedocument.spreadsheetml.sheet')
    except Exception as e:
        return error_response("Transaction Export", e)


@app.route('/api/summary', methods=['GET'])
@login_required
def get_summary():
    if not check_db(): return jsonify({"error": "Database error"}), 500
    try:
        return jsonify(reports.revenue_summary(
            date_from=request.args.get('date_from'),
            date_to=request.args.get('date_to'),
            clinic_id=request.args.get('clinic_id')
        ))
    except Exception as e:
        return error_response("Summary", e)


# --- SCRAPE QUEUE ---

@app.route('/api/scrap/queue', methods=['POST'])
@login_required
def queue_scrap_request():
    if not check_db(): return jsonify({"error": "Database error"}), 500
    try:
        data = clean_input_data(request.get_json(silent=True) or {})
        if not data.get('clinic_id') or not data.get('tgl_awal') or not data.get('tgl_akhir'):
            return jsonify({"error": "Missing required fields: clinic_id, tgl_awal, tgl_akhir"}), 400
        job, created = scrap_queue.enqueue(
            data['clinic_id'], data['tgl_awal'], data['tgl_akhir'],
            requested_by=data.get('requested_by') or session.get('username'))
        return jsonify({
            "success": True,
            "message": "Scrape request queued successfully" if created else "Scrape request already queued",
            "queue_id": str(job['_id']),
            "status": job['status'],
            "created": created
        })
    except Exception as e:
        return error_response("Scrap Queue Insert", e)


@app.route('/api/scrap/queue', methods=['GET'])
@login_required
def get_scrap_queue():
    if not check_db(): return jsonify({"error": "Database error"}), 500
    try:
        status = request.args.get('status', scrap_queue.STATUS_PENDING)
        if status not in scrap_queue.VALID_STATUSES and status != 'all':
            return jsonify({"error": "Invalid status value"}), 400
        requests_list = scrap_queue.list_jobs(None if status == 'all' else status, _query_int('limit', 10))
        return jsonify({"success": True, "count": len(requests_list), "requests": requests_list})
    except Exception as e:
        return error_response("Scrap Queue Fetch", e)


@app.route('/api/scrap/queue/stats', methods=['GET'])
@login_required
def get_scrap_queue_stats():
    if not check_db(): return jsonify({"error": "Database error"}), 500
    try:
        return jsonify({"success": True, "stats": scrap_queue.queue_stats()})
    except Exception as e:
        return error_response("Scrap Queue Stats", e)


@app.route('/api/scrap/process-queue', methods=['POST'])
@worker_token_required
def claim_scrap_request():
    if not check_db(): return jsonify({"error": "Database error"}), 500
    try:
        data = request.get_json(silent=True) or {}
        job = scrap_queue.claim_next(run_id=data.get('github_run_id'))
        if not job:
            return jsonify({"success": True, "message": "No pending requests", "processed": 0})
        return jsonify({
            "success": True,
            "message": "Request marked for processing",
            "queue_id": str(job['_id']),
            "clinic_id": str(job['clinic_id']),
            "tgl_awal": job['tgl_awal'],
            "tgl_akhir": job['tgl_akhir']
        })
    except Exception as e:
        return error_response("Scrap Queue Claim", e)


@app.route('/api/scrap/process-queue', methods=['PATCH'])
@worker_token_required
def update_scrap_request():
    if not check_db(): return jsonify({"error": "Database error"}), 500
    try:
        data = request.get_json(silent=True) or {}
        if not data.get('queue_id') or not data.get('status'):
            return jsonify({"error": "Missing required fields: queue_id, status"}), 400
        scrap_queue.update_status(data['queue_id'], data['status'],
                                  error_message=data.get('error_message'),
                                  github_run_id=data.get('github_run_id'))
        return jsonify({"success": True, "message": f"Queue request updated to {data['status']}"})
    except Exception as e:
        return error_response("Scrap Queue Update", e)


@app.route('/api/scrap/run-queue', methods=['POST'])
@login_required
def run_scrap_queue():
    try:
        result = worker_trigger.trigger_github_workflow()
        return jsonify(result), 200 if result['success'] else 500
    except Exception as e:
        return error_response("Run Queue", e)


# --- CRON ---

def _worker_result(result):
    return jsonify(result), 200 if result.get('success') else 500


@app.route('/api/cron/trigger-scrap-queue', methods=['GET', 'POST'])
@cron_required
def cron_trigger_scrap_queue():
    try:
        return _worker_result(worker_trigger.trigger_worker(is_cron=True))
    except Exception as e:
        return error_response("Cron Trigger", e)


@app.route('/api/cron/wake-worker', methods=['GET', 'POST'])
@cron_required
def cron_wake_worker():
    try:
        return _worker_result(worker_trigger.wake_worker())
    except Exception as e:
        return error_response("Cron Wake", e)


@app.route('/api/cron/enqueue-today', methods=['GET', 'POST'])
@cron_required
def cron_enqueue_today():
    if not check_db(): return jsonify({"error": "Database error"}), 500
    try:
        return jsonify({"success": True, **scrap_queue.enqueue_today()})
    except Exception as e:
        return error_response("Cron Enqueue", e)


@app.route('/api/cron/cleanup-scrap-queue', methods=['GET', 'POST'])
@cron_required
def cron_cleanup_scrap_queue():
    if not check_db(): return jsonify({"error": "Database error"}), 500
    try:
        stale_failed = scrap_queue.fail_stale()
        result = scrap_queue.cleanup()
        return jsonify({"success": True, "stale_failed": stale_failed, **result})
    except Exception as e:
        return error_response("Cron Cleanup", e)


# --- ZAINS SYNC ---

@app.route('/api/sync-patients-to-zains', methods=['GET', 'POST'])
@login_or_service_required
def sync_patients_to_zains():
    if not check_db(): return jsonify({"error": "Database error"}), 500
    zains_sync.start_background(zains_sync.sync_patients_batch_to_zains)
    return jsonify({"success": True, "message": "Patient sync to Zains started in background"})


@app.route('/api/sync-transactions-to-zains', methods=['GET', 'POST'])
@login_or_service_required
def sync_transactions_to_zains():
    if not check_db(): return jsonify({"error": "Database error"}), 500
    if not app_settings.get_zains_transaction_sync_enabled():
        return jsonify({"success": True, "disabled": True,
                        "message": "Transaction sync to Zains is disabled"})
    zains_sync.start_background(zains_sync.sync_transactions_batch_to_zains)
    return jsonify({"success": True, "message": "Transaction sync to Zains started in background"})


@app.route('/api/workflow/sync-patient-to-zains', methods=['POST'])
@login_or_service_required
def workflow_sync_patient():
    if not check_db(): return jsonify({"error": "Database error"}), 500
    data = request.get_json(silent=True) or {}
    patient_id = data.get('patientId')
    if not patient_id:
        return jsonify({"error": "patientId is required"}), 400
    try:
        result = zains_sync.sync_patient_workflow(patient_id, data.get('transactionId'))
        return jsonify(result), 200 if result.get('success') else 500
    except Exception as e:
        return error_response("Workflow Patient Sync", e)


@app.route('/api/workflow/sync-transactions-to-zains', methods=['POST'])
@login_or_service_required
def workflow_sync_transactions():
    if not check_db(): return jsonify({"error": "Database error"}), 500
    data = request.get_json(silent=True) or {}
    try:
        if data.get('transactionId'):
            result = zains_sync.sync_transactions_by_transaction_id(data['transactionId'])
        else:
            result = zains_sync.sync_transactions_batch_to_zains(_body_limit(data))
        return jsonify({"success": True, **result})
    except Exception as e:
        return error_response("Workflow Transaction Sync", e)


# --- SETTINGS ---

@app.route('/api/settings/app', methods=['GET'])
def get_app_settings():
    # Branding is shown on the sign-in page too, so this one is public
    if not check_db(): return jsonify({"error": "Database error"}), 500
    return jsonify(app_settings.get_all_app_settings())


@app.route('/api/settings/app', methods=['PATCH'])
@login_required
def update_app_settings():
    if not check_db(): return jsonify({"error": "Database error"}), 500
    try:
        updated = app_settings.update_app_settings(clean_input_data(request.get_json(silent=True) or {}))
        if not updated:
            return jsonify({"error": "No valid settings provided"}), 400
        return jsonify({"success": True, "updated": updated})
    except Exception as e:
        return error_response("App Settings", e)


@app.route('/api/settings/zains-transaction-sync', methods=['GET'])
@login_required
def get_zains_transaction_sync():
    if not check_db(): return jsonify({"error": "Database error"}), 500
    return jsonify({"enabled": app_settings.get_zains_transaction_sync_enabled()})


@app.route('/api/settings/zains-transaction-sync', methods=['PATCH'])
@login_required
def update_zains_transaction_sync():
    if not check_db(): return jsonify({"error": "Database error"}), 500
    data = request.get_json(silent=True) or {}
    if not isinstance(data.get('enabled'), bool):
        return jsonify({"error": "enabled must be true or false"}), 400
    try:
        activated = app_settings.set_zains_transaction_sync_enabled(
            data['enabled'], activate_all_pending=bool(data.get('activateAllPending')))
        return jsonify({"success": True, "enabled": data['enabled'], "activatedCount": activated})
    except Exception as e:
        return error_response("Zains Sync Setting", e)


@app.route('/api/settings/zains-api-env', methods=['GET'])
@login_required
def get_zains_api_env():
    api_config = zains_sync.get_zains_api_config()
    return jsonify({
        "mode": api_config['mode'],
        "isProduction": api_config['is_production'],
        "urlHost": api_config['url_host']
    })


# --- SYSTEM LOGS ---

@app.route('/api/system-logs', methods=['GET'])
@login_required
def get_system_logs():
    if not check_db(): return jsonify({"error": "Database error"}), 500
    try:
        return jsonify(system_logs.list_system_logs(
            process_type=request.args.get('process_type'),
            status=request.args.get('status'),
            clinic_id=request.args.get('clinic_id'),
            page=_query_int('page', 1),
            limit=_query_int('limit', 20)
        ))
    except Exception as e:
        return error_response("System Logs", e)


# --- HEALTH CHECK ENDPOINT (for cron-job.org) ---

@app.route('/health', methods=['GET'])
def health_check():
    """Lightweight health check endpoint for uptime monitoring"""
    return jsonify({"status": "ok", "timestamp": datetime.now().isoformat()}), 200


@app.route('/ping', methods=['GET', 'HEAD'])
def ping():
    return '', 200


# Vercel WSGI handler
app.wsgi_app = app.wsgi_app

if __name__ == '__main__':
    app.run(debug=True, port=5000)
