"""
Zains sync pipeline.

Patients are registered as donors (POST /corez/mitra/save); the returned
id_donatur is stored on the patient exactly once. Transaction rows
(transactions_to_zains) are pushed per revenue category
(POST /corez/transaksi/save) once their patient has an id_donatur.

Remote failures never raise: every call returns a result dict and the
failure reason is recorded on the local document for the next run.
"""
import threading
import traceback
from datetime import datetime
from urllib.parse import urlparse

import requests
from pymongo.errors import DuplicateKeyError

import config
import app_settings
from database import get_db, to_object_id
from system_logs import log_system_event, PROCESS_PATIENT_SYNC, PROCESS_TRANSACTION_SYNC

PATIENT_ENDPOINT = '/corez/mitra/save'
TRANSACTION_ENDPOINT = '/corez/transaksi/save'

UNSYNCED_DONOR = {'$or': [{'id_donatur_zains': None}, {'id_donatur_zains': ''}]}


def get_zains_api_config():
    """Active Zains URL and mode. URL_API_ZAINS, when set, wins and counts as production."""
    explicit_url = config.URL_API_ZAINS
    if explicit_url:
        return {
            'url': explicit_url.rstrip('/'),
            'mode': 'production',
            'is_production': True,
            'url_host': urlparse(explicit_url).hostname or '(invalid url)',
        }

    is_production = config.is_production_env()
    url = config.URL_API_ZAINS_PRODUCTION if is_production else config.URL_API_ZAINS_STAGING
    url_host = (urlparse(url).hostname or '(invalid url)') if url else '(empty)'
    return {
        'url': url.rstrip('/'),
        'mode': 'production' if is_production else 'staging',
        'is_production': is_production,
        'url_host': url_host,
    }


def _check_api_configured():
    api_url = get_zains_api_config()['url']
    if not api_url:
        return None, 'URL_API_ZAINS is not configured'
    if not config.API_KEY_ZAINS:
        return None, 'API_KEY_ZAINS is not configured'
    return api_url, None


def _post(session, url, payload):
    """POST to Zains. Returns (data, error)."""
    try:
        response = session.post(
            url,
            json=payload,
            headers={'Content-Type': 'application/json', 'Authorization': config.API_KEY_ZAINS},
            timeout=config.ZAINS_TIMEOUT
        )
    except requests.RequestException as e:
        return None, str(e) or 'Error while calling Zains'

    if not response.ok:
        return None, f"HTTP {response.status_code}: {response.text}"
    try:
        return response.json() or {}, None
    except ValueError:
        return None, f"Invalid JSON from Zains: {response.text[:200]}"


# --- PATIENTS ---

def build_patient_payload(patient):
    phone = patient.get('erm_no_for_zains') or patient.get('erm_no') or ''
    return {
        'nama': patient.get('full_name') or '',
        'id_jenis': 1,
        'hp': phone,
        'telpon': phone,
        'email': '',
        'alamat': '',
        'id_crm': '',
    }


def _record_patient_failure(patient_id, error):
    try:
        get_db().patients.update_one(
            {'_id': patient_id},
            {'$set': {'zains_sync_error': error, 'zains_last_sync_at': datetime.now()},
             '$inc': {'zains_sync_attempts': 1}}
        )
    except Exception as e:
        print(f"[ZainsSync] Could not record failure for patient {patient_id}: {e}")


def assign_donor_id(patient_id, id_donatur):
    """
    Store id_donatur on the patient only if it has none yet.
    Returns the id that is stored after the call.
    """
    now = datetime.now()
    result = get_db().patients.update_one(
        {'_id': patient_id, **UNSYNCED_DONOR},
        {'$set': {'id_donatur_zains': id_donatur, 'zains_sync_error': None,
                  'zains_last_sync_at': now, 'updated_at': now},
         '$inc': {'zains_sync_attempts': 1}}
    )
    if result.modified_count:
        stored = id_donatur
    else:
        current = get_db().patients.find_one({'_id': patient_id}, {'id_donatur_zains': 1}) or {}
        stored = current.get('id_donatur_zains') or None
        if stored and stored != id_donatur:
            print(f"[ZainsSync] Patient {patient_id} already has id_donatur {stored}, ignoring {id_donatur}")

    if stored:
        # Rows queued before the patient had a donor id can go out now
        get_db().transactions_to_zains.update_many(
            {'patient_id': patient_id, 'synced': False,
             '$or': [{'id_donatur': None}, {'id_donatur': ''}]},
            {'$set': {'id_donatur': stored, 'updated_at': now}}
        )
    return stored


def sync_patient_to_zains(patient, session=None):
    patient_id = patient['_id']
    if patient.get('id_donatur_zains'):
        return {'success': True, 'id_donatur': patient['id_donatur_zains'],
                'patientId': str(patient_id), 'skipped': True}

    api_url, config_error = _check_api_configured()
    if config_error:
        return {'success': False, 'error': config_error, 'patientId': str(patient_id)}

    data, error = _post(session or requests, f"{api_url}{PATIENT_ENDPOINT}", build_patient_payload(patient))
    if error is None and not data.get('id_donatur'):
        error = data.get('message') or data.get('error') or 'id_donatur not found in response'

    if error:
        _record_patient_failure(patient_id, error)
        return {'success': False, 'error': error, 'patientId': str(patient_id)}

    try:
        stored = assign_donor_id(patient_id, str(data['id_donatur']))
    except DuplicateKeyError:
        error = f"id_donatur {data['id_donatur']} is already assigned to another patient"
        _record_patient_failure(patient_id, error)
        return {'success': False, 'error': error, 'patientId': str(patient_id)}

    if not stored:
        return {'success': False, 'error': 'Patient no longer exists', 'patientId': str(patient_id)}
    return {'success': True, 'id_donatur': stored, 'patientId': str(patient_id)}


def get_unsynced_patients(limit=20):
    try:
        cursor = (get_db().patients.find(UNSYNCED_DONOR,
                                         {'clinic_id': 1, 'erm_no': 1, 'full_name': 1,
                                          'erm_no_for_zains': 1, 'id_donatur_zains': 1})
                  .sort('created_at', 1)
                  .limit(limit))
        return list(cursor)
    except Exception as e:
        print(f"[ZainsSync] Error fetching unsynced patients: {e}")
        return []


def sync_patients_batch_to_zains(limit=None, session=None):
    limit = limit or config.ZAINS_PATIENT_BATCH_SIZE
    patients = get_unsynced_patients(limit)
    if not patients:
        return {'total': 0, 'success': 0, 'failed': 0, 'results': []}

    http = session or requests.Session()
    results = [sync_patient_to_zains(p, session=http) for p in patients]
    success_count = sum(1 for r in results if r['success'])
    failed_count = len(results) - success_count

    log_system_event(
        None,
        PROCESS_PATIENT_SYNC,
        'success' if success_count > 0 or failed_count == 0 else 'error',
        f"Sync batch: {success_count} succeeded, {failed_count} failed of {len(patients)} patients",
        {'total': len(patients), 'success': success_count, 'failed': failed_count, 'results': results}
    )

    by_id = {str(p['_id']): p for p in patients}
    for result in results:
        if result['success']:
            continue
        patient = by_id.get(result['patientId'], {})
        log_system_event(
            patient.get('clinic_id'),
            PROCESS_PATIENT_SYNC,
            'error',
            f"Failed to sync patient {result['patientId']}: {result['error']}",
            {'patientId': result['patientId'], 'ermNo': patient.get('erm_no'),
             'fullName': patient.get('full_name'), 'error': result['error']}
        )

    print(f"[ZainsSync] Patient batch: {success_count} succeeded, {failed_count} failed of {len(patients)}")
    return {'total': len(patients), 'success': success_count, 'failed': failed_count, 'results': results}


# --- TRANSACTIONS ---

def build_transaction_payload(row):
    payload = {
        'id_donatur': row.get('id_donatur'),
        'id_program': row.get('id_program'),
        'id_kantor': row.get('id_kantor'),
        'tgl_transaksi': row.get('tgl_transaksi'),
        'nominal_transaksi': int(row.get('nominal_transaksi') or 0),
    }
    if row.get('id_rekening'):
        payload['id_rekening'] = row['id_rekening']
    return payload


def _resolve_donor_id(row):
    if row.get('id_donatur'):
        return row['id_donatur']
    query = None
    if row.get('patient_id'):
        query = {'_id': row['patient_id']}
    elif row.get('clinic_id') and row.get('no_erm'):
        query = {'clinic_id': row['clinic_id'], 'erm_no': row['no_erm']}
    if query is None:
        return None
    patient = get_db().patients.find_one(query, {'id_donatur_zains': 1})
    return (patient or {}).get('id_donatur_zains') or None


def _record_row_failure(row_id, error):
    get_db().transactions_to_zains.update_one(
        {'_id': row_id},
        {'$set': {'sync_error': error, 'last_sync_at': datetime.now()},
         '$inc': {'sync_attempts': 1}}
    )


def sync_transaction_row_to_zains(row, session=None):
    row_id = row['_id']
    api_url, config_error = _check_api_configured()
    if config_error:
        return {'success': False, 'error': config_error, 'rowId': str(row_id)}

    id_donatur = _resolve_donor_id(row)
    if not id_donatur:
        error = 'Patient has not been synced to Zains yet (no id_donatur)'
        _record_row_failure(row_id, error)
        return {'success': False, 'error': error, 'rowId': str(row_id)}

    row = dict(row, id_donatur=id_donatur)
    data, error = _post(session or requests, f"{api_url}{TRANSACTION_ENDPOINT}", build_transaction_payload(row))
    if error is None and not data.get('id_transaksi'):
        error = data.get('message') or data.get('error') or 'id_transaksi not found in response'

    if error:
        _record_row_failure(row_id, error)
        return {'success': False, 'error': error, 'rowId': str(row_id)}

    now = datetime.now()
    get_db().transactions_to_zains.update_one(
        {'_id': row_id, 'synced': False},
        {'$set': {'synced': True, 'id_transaksi': str(data['id_transaksi']), 'id_donatur': id_donatur,
                  'sync_error': None, 'synced_at': now, 'last_sync_at': now, 'updated_at': now},
         '$inc': {'sync_attempts': 1}}
    )
    if row.get('transaction_id'):
        _mark_transaction_synced(row['transaction_id'], now)
    return {'success': True, 'id_transaksi': str(data['id_transaksi']), 'rowId': str(row_id)}


def _mark_transaction_synced(transaction_id, now):
    """A transaction counts as synced once none of its category rows is left."""
    remaining = get_db().transactions_to_zains.count_documents(
        {'transaction_id': transaction_id, 'synced': False})
    if remaining == 0:
        get_db().transactions.update_one(
            {'_id': transaction_id},
            {'$set': {'zains_synced': True, 'zains_sync_at': now, 'updated_at': now}}
        )


def get_pending_transaction_rows(limit=50, transaction_id=None):
    query = {'synced': False, 'todo_zains': True}
    if transaction_id is not None:
        query['transaction_id'] = transaction_id
    return list(get_db().transactions_to_zains.find(query).sort('created_at', 1).limit(limit))


def _sync_rows(rows, session, label):
    http = session or requests.Session()
    results = [sync_transaction_row_to_zains(r, session=http) for r in rows]
    success_count = sum(1 for r in results if r['success'])
    failed_count = len(results) - success_count

    if rows:
        log_system_event(
            None,
            PROCESS_TRANSACTION_SYNC,
            'success' if success_count > 0 or failed_count == 0 else 'error',
            f"{label}: {success_count} succeeded, {failed_count} failed of {len(rows)} records",
            {'total': len(rows), 'success': success_count, 'failed': failed_count, 'results': results}
        )
    print(f"[ZainsSync] {label}: {success_count} succeeded, {failed_count} failed of {len(rows)} records")
    return {'total': len(rows), 'success': success_count, 'failed': failed_count, 'results': results}


def _disabled_result():
    print("[ZainsSync] Transaction sync is disabled, nothing sent")
    return {'total': 0, 'success': 0, 'failed': 0, 'results': [], 'disabled': True}


def sync_transactions_batch_to_zains(limit=None, session=None):
    if not app_settings.get_zains_transaction_sync_enabled():
        return _disabled_result()
    rows = get_pending_transaction_rows(limit or config.ZAINS_TRANSACTION_BATCH_SIZE)
    return _sync_rows(rows, session, 'Transaction batch')


def sync_transactions_by_transaction_id(transaction_id, session=None):
    if not app_settings.get_zains_transaction_sync_enabled():
        return _disabled_result()
    transaction_oid = to_object_id(transaction_id)
    rows = get_pending_transaction_rows(limit=100, transaction_id=transaction_oid)
    return _sync_rows(rows, session, f"Transaction {transaction_oid}")


# --- WORKFLOW ---

def sync_patient_workflow(patient_id, transaction_id=None, session=None):
    """
    Register one patient as donor, then push the given transaction's rows.
    transaction_id may also be a list, when one ingest produced several
    transactions for the same new patient.
    Patients already synced, or without erm_no_for_zains, are skipped.
    """
    patient_oid = to_object_id(patient_id)
    patient = get_db().patients.find_one({
        '_id': patient_oid,
        **UNSYNCED_DONOR,
        'erm_no_for_zains': {'$nin': [None, '']},
    })
    if not patient:
        return {
            'success': True,
            'skipped': True,
            'message': f"Patient {patient_oid} is already synced or has no erm_no_for_zains",
            'patientId': str(patient_oid),
        }

    http = session or requests.Session()
    result = sync_patient_to_zains(patient, session=http)
    if not result['success']:
        print(f"[ZainsSync] Workflow: patient {patient_oid} failed: {result['error']}")
        log_system_event(patient.get('clinic_id'), PROCESS_PATIENT_SYNC, 'error',
                         f"Failed to sync patient {patient_oid}: {result['error']}",
                         {'patientId': str(patient_oid), 'error': result['error']})
        return {'success': False, 'error': result['error'], 'patientId': str(patient_oid)}

    response = {
        'success': True,
        'message': f"Patient {patient_oid} synced to Zains",
        'id_donatur': result['id_donatur'],
        'patientId': str(patient_oid),
    }
    if transaction_id is not None:
        transaction_ids = list(transaction_id) if isinstance(transaction_id, (list, tuple)) else [transaction_id]
        totals = {'total': 0, 'success': 0, 'failed': 0}
        for tid in transaction_ids:
            trx = sync_transactions_by_transaction_id(tid, session=http)
            for key in totals:
                totals[key] += trx[key]
        if len(transaction_ids) == 1:
            response['transactionId'] = str(transaction_ids[0])
        else:
            response['transactionIds'] = [str(tid) for tid in transaction_ids]
        response['transactionSync'] = totals
    return response


def start_background(fn, *args, **kwargs):
    """Run fn in a daemon thread. Errors are printed, never raised to the caller."""
    def runner():
        try:
            result = fn(*args, **kwargs)
            if isinstance(result, dict) and 'total' in result:
                print(f"[ZainsSync] Background {fn.__name__} done: {result['success']} succeeded, "
                      f"{result['failed']} failed of {result['total']}")
        except Exception as e:
            print(f"[ZainsSync] Background {fn.__name__} error: {e}")
            traceback.print_exc()

    thread = threading.Thread(target=runner, name=f"bg-{fn.__name__}", daemon=True)
    thread.start()
    return thread
