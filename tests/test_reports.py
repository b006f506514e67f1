from datetime import datetime

import pytest

import reports


@pytest.mark.parametrize('visits, status', [
    (12, 'Loyal'), (10, 'Loyal'), (3, 'Active'), (1, 'New'), (2, 'At Risk'), (0, 'At Risk'), (None, 'At Risk'),
])
def test_patient_status(visits, status):
    assert reports.patient_status(visits) == status


def _trx(db, clinic, trx_date, bill, paid, erm_no='RM1', poly='Poli Umum'):
    db.transactions.insert_one({
        'clinic_id': clinic['_id'], 'trx_date': trx_date, 'erm_no': erm_no, 'polyclinic': poly,
        'bill_total': bill, 'paid_total': paid, 'zains_synced': False,
    })


def test_revenue_summary_compares_previous_period(db, clinic):
    # current: 2026-10-11..2026-10-20, previous: 2026-10-01..2026-10-10
    _trx(db, clinic, '2026-10-05', 100000, 90000, 'RM1')
    _trx(db, clinic, '2026-10-12', 150000, 150000, 'RM1', 'Poli Gigi')
    _trx(db, clinic, '2026-10-15', 50000, 40000, 'RM2')
    _trx(db, clinic, '2026-10-15', 0, 0, 'RM2')

    summary = reports.revenue_summary('2026-10-11', '2026-10-20')

    assert summary['period']['days'] == 10
    assert summary['previous_period'] == {'date_from': '2026-10-01', 'date_to': '2026-10-10'}
    assert summary['totals']['revenue'] == 200000
    assert summary['totals']['cash'] == 190000
    assert summary['totals']['unique_patients'] == 2
    assert summary['previous_totals']['revenue'] == 100000
    assert summary['changes']['revenue'] == 100.0
    assert summary['revenue_by_clinic'][0]['clinic_name'] == clinic['name']
    assert [d['date'] for d in summary['revenue_by_day']] == ['2026-10-12', '2026-10-15']
    gigi = next(p for p in summary['poly_composition'] if p['polyclinic'] == 'Poli Gigi')
    assert gigi['percentage'] == 75.0


def test_revenue_summary_rejects_reversed_range():
    with pytest.raises(ValueError):
        reports.revenue_summary('2026-10-20', '2026-10-01')


def test_list_patients_adds_status_and_clinic(db, clinic):
    db.patients.insert_many([
        {'clinic_id': clinic['_id'], 'erm_no': 'RM1', 'full_name': 'Siti', 'visit_count': 4,
         'last_visit_at': '2026-10-10'},
        {'clinic_id': clinic['_id'], 'erm_no': 'RM2', 'full_name': 'Joko', 'visit_count': 1,
         'last_visit_at': '2026-10-12'},
    ])

    result = reports.list_patients(search='siti', clinic_id=str(clinic['_id']))

    assert result['total'] == 1
    assert result['patients'][0]['status'] == 'Active'
    assert result['patients'][0]['clinic_name'] == clinic['name']


def test_delete_patient_removes_pending_rows(db, clinic):
    patient_id = db.patients.insert_one({'clinic_id': clinic['_id'], 'erm_no': 'RM1'}).inserted_id
    db.transactions_to_zains.insert_many([
        {'patient_id': patient_id, 'synced': False},
        {'patient_id': patient_id, 'synced': True},
    ])

    result = reports.delete_patient(str(patient_id))

    assert result['pending_rows_deleted'] == 1
    assert db.patients.count_documents({}) == 0
    assert db.transactions_to_zains.count_documents({}) == 1
    with pytest.raises(LookupError):
        reports.delete_patient(str(patient_id))


def test_clinic_stats(db, clinic):
    _trx(db, clinic, '2026-10-19', 100000, 80000)
    db.clinics.update_one({'_id': clinic['_id']}, {'$set': {'last_scraped_at': datetime(2026, 10, 19, 9)}})

    stats = reports.clinic_stats(str(clinic['_id']), today='2026-10-19')

    assert stats['total_transactions'] == 1
    assert stats['today_transactions'] == 1
    assert stats['total_revenue'] == 100000
    assert stats['last_scraped_at'] == '2026-10-19T09:00:00'

    listing = reports.list_clinics_with_stats(today='2026-10-19')
    assert 'portal_password' not in listing[0]
