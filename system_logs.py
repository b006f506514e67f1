from datetime import datetime

from database import get_db, to_object_id, serialize_doc

PROCESS_PATIENT_SYNC = 'patient_zains_sync'
PROCESS_TRANSACTION_SYNC = 'transaction_zains_sync'
PROCESS_TRANSACTIONS_INSERT = 'transactions_insert'
PROCESS_SCRAP_QUEUE = 'scrap_queue'


def log_system_event(clinic_id, process_type, status, message, payload=None):
    """Persist an outcome to system_logs. Never raises."""
    try:
        get_db().system_logs.insert_one({
            'clinic_id': clinic_id,
            'process_type': process_type,
            'status': status,
            'message': message,
            'payload': payload,
            'created_at': datetime.now(),
        })
    except Exception as e:
        print(f"[SystemLog] Error logging {process_type}: {e}")


def list_system_logs(process_type=None, status=None, clinic_id=None, page=1, limit=20):
    query = {}
    if process_type:
        query['process_type'] = process_type
    if status:
        query['status'] = status
    if clinic_id:
        query['clinic_id'] = to_object_id(clinic_id)

    page = max(1, int(page))
    limit = max(1, min(int(limit), 100))
    total = get_db().system_logs.count_documents(query)
    cursor = (get_db().system_logs.find(query)
              .sort('created_at', -1)
              .skip((page - 1) * limit)
              .limit(limit))
    return {
        'logs': [serialize_doc(log) for log in cursor],
        'total': total,
        'page': page,
        'limit': limit,
    }
