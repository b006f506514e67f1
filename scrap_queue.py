"""
Scrape request queue.

Each job asks the worker host to scrape one clinic's portal for a date range.
Jobs move pending -> processing -> completed|failed and are never re-run once
claimed: a job that dies mid-scrape is failed (by the worker or by
fail_stale), and a fresh job has to be enqueued to try again.
"""
from datetime import datetime, timedelta
from zoneinfo import ZoneInfo

from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

import config
from database import get_db, to_object_id, serialize_doc

STATUS_PENDING = 'pending'
STATUS_PROCESSING = 'processing'
STATUS_COMPLETED = 'completed'
STATUS_FAILED = 'failed'

VALID_STATUSES = (STATUS_PENDING, STATUS_PROCESSING, STATUS_COMPLETED, STATUS_FAILED)
ACTIVE_STATUSES = (STATUS_PENDING, STATUS_PROCESSING)

# target status -> statuses it may be reached from
ALLOWED_TRANSITIONS = {
    STATUS_PROCESSING: (STATUS_PENDING,),
    STATUS_COMPLETED: (STATUS_PROCESSING,),
    STATUS_FAILED: (STATUS_PENDING, STATUS_PROCESSING),
}


class QueueStateError(Exception):
    """Raised when a status change is not allowed from the job's current status."""


def today_local():
    return datetime.now(ZoneInfo(config.LOCAL_TIMEZONE)).strftime('%Y-%m-%d')


def _parse_day(value):
    try:
        return datetime.strptime(str(value).strip(), '%Y-%m-%d').strftime('%Y-%m-%d')
    except ValueError:
        return None


def _validate_range(tgl_awal, tgl_akhir):
    start = _parse_day(tgl_awal)
    end = _parse_day(tgl_akhir)
    if not start or not end:
        raise ValueError("tgl_awal and tgl_akhir must be valid dates (YYYY-MM-DD)")
    if start > end:
        raise ValueError("tgl_awal must not be after tgl_akhir")
    return start, end


def find_active_job(clinic_id, tgl_awal, tgl_akhir):
    return get_db().scrap_queue.find_one({
        'clinic_id': clinic_id,
        'tgl_awal': tgl_awal,
        'tgl_akhir': tgl_akhir,
        'status': {'$in': list(ACTIVE_STATUSES)},
    })


def _insert_job(clinic_id, tgl_awal, tgl_akhir, requested_by, now):
    existing = find_active_job(clinic_id, tgl_awal, tgl_akhir)
    if existing:
        return existing, False

    job = {
        'clinic_id': clinic_id,
        'tgl_awal': tgl_awal,
        'tgl_akhir': tgl_akhir,
        'status': STATUS_PENDING,
        'requested_by': requested_by,
        'error_message': None,
        'github_run_id': None,
        'created_at': now,
        'updated_at': now,
        'started_at': None,
        'completed_at': None,
    }
    try:
        result = get_db().scrap_queue.insert_one(job)
    except DuplicateKeyError:
        # Lost the race against another enqueue for the same clinic/range
        return find_active_job(clinic_id, tgl_awal, tgl_akhir), False
    job['_id'] = result.inserted_id
    return job, True


def enqueue(clinic_id, tgl_awal, tgl_akhir, requested_by=None, now=None):
    """
    Queue a scrape for one clinic. If the same clinic/range already has a
    pending or processing job, that job is returned instead (created=False).
    """
    clinic_oid = to_object_id(clinic_id)
    start, end = _validate_range(tgl_awal, tgl_akhir)
    if not get_db().clinics.find_one({'_id': clinic_oid}, {'_id': 1}):
        raise LookupError("Clinic not found")

    job, created = _insert_job(clinic_oid, start, end, requested_by, now or datetime.now())
    if created:
        print(f"[ScrapQueue] Queued clinic_id={clinic_oid}, period={start} to {end}")
    else:
        print(f"[ScrapQueue] Already queued as #{job['_id']} ({job['status']})")
    return job, created


def is_public_holiday(day):
    return get_db().public_holidays.count_documents({'holiday_date': day}, limit=1) > 0


def enqueue_today(requested_by='cron', today=None, now=None):
    """One job per active clinic for today (local time), unless today is a holiday."""
    today = today or today_local()
    now = now or datetime.now()

    if is_public_holiday(today):
        print(f"[ScrapQueue] {today} is a public holiday, enqueue skipped")
        return {'date': today, 'skipped_holiday': True, 'created': 0, 'existing': 0}

    created_count = 0
    existing_count = 0
    for clinic in get_db().clinics.find({'is_active': True}, {'_id': 1}):
        _, created = _insert_job(clinic['_id'], today, today, requested_by, now)
        if created:
            created_count += 1
        else:
            existing_count += 1

    print(f"[ScrapQueue] Enqueue for {today}: {created_count} new, {existing_count} already queued")
    return {'date': today, 'skipped_holiday': False, 'created': created_count, 'existing': existing_count}


def claim_next(run_id=None, now=None):
    """
    Atomically take the oldest pending job and mark it processing.
    Two callers can never receive the same job.
    """
    now = now or datetime.now()
    update = {'status': STATUS_PROCESSING, 'started_at': now, 'updated_at': now}
    if run_id:
        update['github_run_id'] = str(run_id)
    job = get_db().scrap_queue.find_one_and_update(
        {'status': STATUS_PENDING},
        {'$set': update},
        sort=[('created_at', 1), ('_id', 1)],
        return_document=ReturnDocument.AFTER
    )
    if job:
        print(f"[ScrapQueue] Claimed job #{job['_id']}")
    return job


def update_status(queue_id, status, error_message=None, github_run_id=None, now=None):
    if status not in VALID_STATUSES:
        raise ValueError("Invalid status value")
    if status not in ALLOWED_TRANSITIONS:
        raise QueueStateError(f"Jobs cannot be moved back to {status}")

    queue_oid = to_object_id(queue_id)
    now = now or datetime.now()
    update = {'status': status, 'updated_at': now}
    if status == STATUS_PROCESSING:
        update['started_at'] = now
    if status == STATUS_COMPLETED:
        update['completed_at'] = now
    if error_message:
        update['error_message'] = str(error_message)
    if github_run_id:
        update['github_run_id'] = str(github_run_id)

    job = get_db().scrap_queue.find_one_and_update(
        {'_id': queue_oid, 'status': {'$in': list(ALLOWED_TRANSITIONS[status])}},
        {'$set': update},
        return_document=ReturnDocument.AFTER
    )
    if job is None:
        current = get_db().scrap_queue.find_one({'_id': queue_oid}, {'status': 1})
        if current is None:
            raise LookupError("Queue request not found")
        raise QueueStateError(f"Cannot change status from {current['status']} to {status}")

    if status == STATUS_COMPLETED:
        get_db().clinics.update_one(
            {'_id': job['clinic_id']},
            {'$set': {'last_scraped_at': now, 'updated_at': now}}
        )
    print(f"[ScrapQueue] Job #{queue_oid} updated to status: {status}")
    return job


def get_job(queue_id):
    return get_db().scrap_queue.find_one({'_id': to_object_id(queue_id)})


def list_jobs(status=STATUS_PENDING, limit=10):
    query = {'status': status} if status else {}
    limit = max(1, min(int(limit), 200))
    cursor = get_db().scrap_queue.find(query).sort('created_at', -1).limit(limit)
    return [serialize_doc(job) for job in cursor]


def queue_stats():
    stats = {}
    for status in VALID_STATUSES:
        query = {'status': status}
        count = get_db().scrap_queue.count_documents(query)
        oldest = newest = None
        if count:
            oldest = next(get_db().scrap_queue.find(query).sort('created_at', 1).limit(1))['created_at']
            newest = next(get_db().scrap_queue.find(query).sort('created_at', -1).limit(1))['created_at']
        stats[status] = {
            'count': count,
            'oldest': oldest.isoformat() if oldest else None,
            'newest': newest.isoformat() if newest else None,
        }
    return stats


def cleanup(now=None):
    """Drop completed jobs after 7 days and failed jobs after 30. Active jobs are kept."""
    now = now or datetime.now()
    completed = get_db().scrap_queue.delete_many({
        'status': STATUS_COMPLETED,
        'completed_at': {'$lt': now - timedelta(days=config.COMPLETED_RETENTION_DAYS)},
    })
    failed = get_db().scrap_queue.delete_many({
        'status': STATUS_FAILED,
        'updated_at': {'$lt': now - timedelta(days=config.FAILED_RETENTION_DAYS)},
    })
    print(f"[ScrapQueue] Cleanup: {completed.deleted_count} completed, {failed.deleted_count} failed deleted")
    return {
        'completed_deleted': completed.deleted_count,
        'failed_deleted': failed.deleted_count,
        'total_deleted': completed.deleted_count + failed.deleted_count,
    }


def fail_stale(max_age_hours=None, now=None):
    """Fail processing jobs whose worker never reported back."""
    now = now or datetime.now()
    max_age_hours = config.STALE_PROCESSING_HOURS if max_age_hours is None else max_age_hours
    result = get_db().scrap_queue.update_many(
        {'status': STATUS_PROCESSING, 'started_at': {'$lt': now - timedelta(hours=max_age_hours)}},
        {'$set': {
            'status': STATUS_FAILED,
            'updated_at': now,
            'error_message': f"Stale: no result after {max_age_hours} hours",
        }}
    )
    if result.modified_count:
        print(f"[ScrapQueue] Marked {result.modified_count} stale processing jobs as failed")
    return result.modified_count
