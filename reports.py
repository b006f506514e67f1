from datetime import datetime, timedelta
import re

from database import get_db, to_object_id, parse_iso_date, serialize_doc
from scrap_queue import today_local


def patient_status(visit_count):
    visit_count = visit_count or 0
    if visit_count >= 10:
        return 'Loyal'
    if visit_count >= 3:
        return 'Active'
    if visit_count == 1:
        return 'New'
    return 'At Risk'


def list_patients(search=None, clinic_id=None, page=1, limit=20):
    query = {}
    search = (search or '').strip()
    if search:
        pattern = {'$regex': re.escape(search), '$options': 'i'}
        query['$or'] = [{'full_name': pattern}, {'erm_no': pattern}]
    if clinic_id:
        query['clinic_id'] = to_object_id(clinic_id)

    page = max(1, int(page))
    limit = max(1, min(int(limit), 200))
    names = {c['_id']: c.get('name') for c in get_db().clinics.find({}, {'name': 1})}

    total = get_db().patients.count_documents(query)
    cursor = (get_db().patients.find(query)
              .sort([('last_visit_at', -1), ('_id', -1)])
              .skip((page - 1) * limit)
              .limit(limit))
    patients = []
    for patient in cursor:
        patient['clinic_name'] = names.get(patient.get('clinic_id'))
        patient['status'] = patient_status(patient.get('visit_count'))
        patients.append(serialize_doc(patient))
    return {'patients': patients, 'total': total, 'page': page, 'limit': limit}


def delete_patient(patient_id):
    """Delete a patient and the Zains rows of theirs that were never sent."""
    patient_oid = to_object_id(patient_id)
    result = get_db().patients.delete_one({'_id': patient_oid})
    if result.deleted_count == 0:
        raise LookupError('Patient not found')
    rows = get_db().transactions_to_zains.delete_many({'patient_id': patient_oid, 'synced': False})
    get_db().transactions.update_many({'patient_id': patient_oid}, {'$set': {'patient_id': None}})
    print(f"[Reports] Patient {patient_oid} deleted with {rows.deleted_count} pending Zains rows")
    return {'deleted': True, 'pending_rows_deleted': rows.deleted_count}


def _clinic_counts(clinic_oid, today):
    return {
        'total_patients': get_db().patients.count_documents({'clinic_id': clinic_oid}),
        'total_transactions': get_db().transactions.count_documents({'clinic_id': clinic_oid}),
        'today_transactions': get_db().transactions.count_documents({'clinic_id': clinic_oid, 'trx_date': today}),
        'pending_zains': get_db().transactions_to_zains.count_documents(
            {'clinic_id': clinic_oid, 'synced': False, 'todo_zains': True}),
    }


def list_clinics_with_stats(today=None):
    today = today or today_local()
    clinics = []
    for clinic in get_db().clinics.find({}, {'portal_password': 0}).sort('name', 1):
        clinic.update(_clinic_counts(clinic['_id'], today))
        clinics.append(serialize_doc(clinic))
    return clinics


def clinic_stats(clinic_id, today=None):
    clinic_oid = to_object_id(clinic_id)
    clinic = get_db().clinics.find_one({'_id': clinic_oid}, {'portal_password': 0})
    if not clinic:
        raise LookupError('Clinic not found')
    stats = _clinic_counts(clinic_oid, today or today_local())
    revenue = list(get_db().transactions.aggregate([
        {'$match': {'clinic_id': clinic_oid}},
        {'$group': {'_id': None, 'bill': {'$sum': '$bill_total'}, 'paid': {'$sum': '$paid_total'}}}
    ]))
    stats['total_revenue'] = revenue[0]['bill'] if revenue else 0
    stats['total_paid'] = revenue[0]['paid'] if revenue else 0
    stats['last_scraped_at'] = clinic.get('last_scraped_at').isoformat() if clinic.get('last_scraped_at') else None
    return stats


def _change_percent(current, previous):
    if not previous:
        return 100.0 if current else 0.0
    return round((current - previous) / previous * 100, 2)


def _period_totals(match):
    rows = list(get_db().transactions.aggregate([
        {'$match': match},
        {'$group': {'_id': None, 'revenue': {'$sum': '$bill_total'}, 'cash': {'$sum': '$paid_total'},
                    'count': {'$sum': 1}}}
    ]))
    patients = get_db().transactions.distinct('erm_no', match)
    totals = rows[0] if rows else {'revenue': 0, 'cash': 0, 'count': 0}
    return {
        'revenue': totals['revenue'],
        'cash': totals['cash'],
        'transactions': totals['count'],
        'unique_patients': len(patients),
    }


def revenue_summary(date_from=None, date_to=None, clinic_id=None):
    """
    Executive summary for a date range (defaults to the current month).
    The previous period has the same length and ends the day before date_from.
    """
    today = today_local()
    date_to = parse_iso_date(date_to) or today
    date_from = parse_iso_date(date_from) or date_to[:8] + '01'
    if date_from > date_to:
        raise ValueError('date_from must not be after date_to')

    start = datetime.strptime(date_from, '%Y-%m-%d')
    end = datetime.strptime(date_to, '%Y-%m-%d')
    days = (end - start).days + 1
    prev_end = start - timedelta(days=1)
    prev_start = prev_end - timedelta(days=days - 1)

    match = {'trx_date': {'$gte': date_from, '$lte': date_to}}
    prev_match = {'trx_date': {'$gte': prev_start.strftime('%Y-%m-%d'), '$lte': prev_end.strftime('%Y-%m-%d')}}
    if clinic_id:
        clinic_oid = to_object_id(clinic_id)
        match['clinic_id'] = clinic_oid
        prev_match['clinic_id'] = clinic_oid

    current = _period_totals(match)
    previous = _period_totals(prev_match)

    names = {c['_id']: c.get('name') for c in get_db().clinics.find({}, {'name': 1})}
    by_clinic = [
        {'clinic_id': str(r['_id']), 'clinic_name': names.get(r['_id']), 'revenue': r['revenue'],
         'transactions': r['count']}
        for r in get_db().transactions.aggregate([
            {'$match': match},
            {'$group': {'_id': '$clinic_id', 'revenue': {'$sum': '$bill_total'}, 'count': {'$sum': 1}}},
            {'$sort': {'revenue': -1}}
        ])
    ]
    by_day = [
        {'date': r['_id'], 'revenue': r['revenue'], 'cash': r['cash']}
        for r in get_db().transactions.aggregate([
            {'$match': match},
            {'$group': {'_id': '$trx_date', 'revenue': {'$sum': '$bill_total'}, 'cash': {'$sum': '$paid_total'}}},
            {'$sort': {'_id': 1}}
        ])
    ]
    poly_rows = list(get_db().transactions.aggregate([
        {'$match': match},
        {'$group': {'_id': '$polyclinic', 'revenue': {'$sum': '$bill_total'}, 'count': {'$sum': 1}}},
        {'$sort': {'revenue': -1}}
    ]))
    poly_composition = [
        {'polyclinic': r['_id'] or '-', 'revenue': r['revenue'], 'transactions': r['count'],
         'percentage': round(r['revenue'] / current['revenue'] * 100, 2) if current['revenue'] else 0.0}
        for r in poly_rows
    ]

    return {
        'period': {'date_from': date_from, 'date_to': date_to, 'days': days},
        'previous_period': {'date_from': prev_start.strftime('%Y-%m-%d'), 'date_to': prev_end.strftime('%Y-%m-%d')},
        'totals': current,
        'previous_totals': previous,
        'changes': {
            'revenue': _change_percent(current['revenue'], previous['revenue']),
            'cash': _change_percent(current['cash'], previous['cash']),
            'unique_patients': _change_percent(current['unique_patients'], previous['unique_patients']),
        },
        'revenue_by_clinic': by_clinic,
        'revenue_by_day': by_day,
        'poly_composition': poly_composition,
    }
