import io
import json
import re
from datetime import datetime

import pandas as pd
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from database import get_db, to_object_id, parse_amount, parse_iso_date, serialize_doc
from system_logs import log_system_event, PROCESS_TRANSACTIONS_INSERT
import zains_sync

INPUT_TYPES = ('manual', 'scrap')

# (field suffix, label used in the clinic portal export, target category for Zains)
CATEGORIES = [
    ('regist', 'Karcis', 'Karcis'),
    ('action', 'Tindakan', 'Tindakan'),
    ('lab', 'Laboratorium', 'Laboratorium'),
    ('drug', 'Obat', 'Obat-obatan'),
    ('alkes', 'Alkes', 'Alat Kesehatan'),
    ('mcu', 'MCU', 'MCU'),
    ('radio', 'Radiologi', 'Radiologi'),
]
ROUNDING_CATEGORY = 'Pembulatan'

TEXT_FIELDS = {
    'trx_no': ('trx_no', 'No Transaksi', 'no_transaksi'),
    'erm_no': ('erm_no', 'No. eRM', 'no_erm'),
    'patient_name': ('patient_name', 'Nama Pasien'),
    'insurance_type': ('insurance_type', 'Asuransi'),
    'polyclinic': ('polyclinic', 'Ruangan / Poli'),
    'payment_method': ('payment_method', 'Metode Pembayaran'),
    'voucher_code': ('voucher_code', 'Voucher'),
    'trx_time': ('trx_time', 'Jam'),
}
DATE_KEYS = ('trx_date', 'Tanggal', 'tanggal')


def _amount_keys():
    keys = {}
    for suffix, label, _ in CATEGORIES:
        keys[f'bill_{suffix}'] = (f'bill_{suffix}', f'Jumlah Tagihan ( Rp. ) - {label}')
        keys[f'bill_{suffix}_discount'] = (f'bill_{suffix}_discount', f'Diskon Tagihan ( Rp. ) - {label}')
        keys[f'covered_{suffix}'] = (f'covered_{suffix}', f'Jumlah Jaminan ( Rp. ) - {label}')
        keys[f'paid_{suffix}'] = (f'paid_{suffix}', f'Jumlah Pembayaran ( Rp. ) - {label}')
        keys[f'receivable_{suffix}'] = (f'receivable_{suffix}', f'Jumlah Piutang ( Rp. ) - {label}')
    keys['bill_total'] = ('bill_total', 'Jumlah Tagihan ( Rp. ) - Total')
    keys['covered_total'] = ('covered_total', 'Jumlah Jaminan ( Rp. ) - Total')
    keys['paid_rounding'] = ('paid_rounding', 'Jumlah Pembayaran ( Rp. ) - Pembulatan')
    keys['paid_discount'] = ('paid_discount', 'Jumlah Pembayaran ( Rp. ) - Diskon')
    keys['paid_tax'] = ('paid_tax', 'Jumlah Pembayaran ( Rp. ) - PPN')
    keys['paid_voucher_amt'] = ('paid_voucher_amt', 'Jumlah Pembayaran ( Rp. ) - Voucher')
    keys['paid_total'] = ('paid_total', 'Jumlah Pembayaran ( Rp. ) - Total')
    keys['receivable_total'] = ('receivable_total', 'Jumlah Piutang ( Rp. ) - Total')
    return keys


AMOUNT_FIELDS = _amount_keys()


def _pick(row, keys):
    """First non-empty value among keys (snake_case first, then portal headers)."""
    for key in keys:
        value = row.get(key)
        if value not in (None, ''):
            return value
    return None


def parse_transaction_row(row):
    """
    Normalise one row from the portal (scraped) or the dashboard (manual).
    Returns (fields, error). trx_date is 'YYYY-MM-DD'.
    """
    raw_date = _pick(row, DATE_KEYS)
    if raw_date is None:
        return None, 'Transaction date not found'
    trx_date = parse_iso_date(raw_date)
    if trx_date is None:
        return None, 'Invalid transaction date'

    fields = {'trx_date': trx_date}
    for name, keys in TEXT_FIELDS.items():
        value = _pick(row, keys)
        fields[name] = str(value).strip() if value is not None else ''
    if fields['voucher_code'] in ('', '-'):
        fields['voucher_code'] = None

    for name, keys in AMOUNT_FIELDS.items():
        fields[name] = parse_amount(_pick(row, keys))
    return fields, None


def paid_breakdown(fields):
    """
    Paid amount per Zains category. A category's bill discount is taken off
    its paid amount, never below zero. Rounding is passed through.
    """
    out = []
    for suffix, _, category in CATEGORIES:
        paid = fields.get(f'paid_{suffix}', 0) or 0
        discount = fields.get(f'bill_{suffix}_discount', 0) or 0
        value = max(0, paid - discount) if discount > 0 else paid
        out.append((category, value))
    out.append((ROUNDING_CATEGORY, fields.get('paid_rounding', 0) or 0))
    return out


def _category_program_map():
    return {c['name']: c.get('id_program_zains')
            for c in get_db().master_target_categories.find({}, {'name': 1, 'id_program_zains': 1})}


def _mapped_ids(clinic_oid, fields):
    """Master poly/insurance ids for the clinic's own naming, when a mapping exists."""
    poly = get_db().clinic_poly_mappings.find_one(
        {'clinic_id': clinic_oid, 'raw_poly_name': fields['polyclinic']}, {'master_poly_id': 1})
    insurance = get_db().clinic_insurance_mappings.find_one(
        {'clinic_id': clinic_oid, 'raw_insurance_name': fields['insurance_type']}, {'master_insurance_id': 1})
    return {
        'poly_id': poly.get('master_poly_id') if poly else None,
        'insurance_type_id': insurance.get('master_insurance_id') if insurance else None,
    }


def _upsert_transaction(clinic_oid, fields, row, input_type, now):
    key = {
        'clinic_id': clinic_oid,
        'erm_no': fields['erm_no'],
        'trx_date': fields['trx_date'],
        'polyclinic': fields['polyclinic'],
        'bill_total': fields['bill_total'],
    }
    updatable = {name: fields[name] for name in
                 ('trx_no', 'patient_name', 'insurance_type', 'payment_method', 'voucher_code')}
    updatable.update({f'bill_{s}_discount': fields[f'bill_{s}_discount'] for s, _, _ in CATEGORIES})
    updatable.update(_mapped_ids(clinic_oid, fields))
    updatable.update({'raw_json_data': json.dumps(row, default=str), 'input_type': input_type, 'updated_at': now})

    on_insert = {k: v for k, v in fields.items() if k not in updatable and k not in key}
    on_insert.update({'patient_id': None, 'zains_synced': False, 'zains_sync_at': None, 'created_at': now})

    return get_db().transactions.find_one_and_update(
        key,
        {'$set': updatable, '$setOnInsert': on_insert},
        upsert=True,
        return_document=ReturnDocument.AFTER
    )


def _queue_zains_rows(transaction, clinic, fields, category_map, id_donatur, now):
    """Create the per-category rows for Zains. Returns how many were new."""
    id_kantor = clinic.get('id_kantor_zains')
    is_qris = 'QRIS' in (fields.get('payment_method') or '').upper()
    inserted = 0
    for category, value in paid_breakdown(fields):
        if value <= 0:
            continue
        id_program = category_map.get(category)
        if not id_program or not id_kantor:
            print(f"[Transactions] Category '{category}' has no id_program_zains or clinic has no id_kantor_zains")
            continue

        nominal = int(round(value))
        exists = get_db().transactions_to_zains.find_one({
            'transaction_id': transaction['_id'],
            'id_program': id_program,
            'nominal_transaksi': nominal,
            'tgl_transaksi': fields['trx_date'],
        }, {'_id': 1})
        if exists:
            continue

        get_db().transactions_to_zains.insert_one({
            'transaction_id': transaction['_id'],
            'clinic_id': clinic['_id'],
            'patient_id': None,
            'id_transaksi': None,
            'id_program': id_program,
            'id_kantor': id_kantor,
            'tgl_transaksi': fields['trx_date'],
            'id_donatur': id_donatur,
            'nominal_transaksi': nominal,
            # Only QRIS payments land in the clinic's bank account
            'id_rekening': clinic.get('id_rekening') if is_qris else None,
            'synced': False,
            'todo_zains': True,
            'nama_pasien': fields['patient_name'],
            'no_erm': fields['erm_no'],
            'sync_error': None,
            'sync_attempts': 0,
            'created_at': now,
            'updated_at': now,
        })
        inserted += 1
    return inserted


def upsert_patient(clinic_oid, fields, is_new_transaction, now):
    """Create or refresh the patient behind a transaction. Returns the patient document."""
    erm_no_for_zains = f"{clinic_oid}{fields['erm_no']}"
    query = {'clinic_id': clinic_oid, 'erm_no': fields['erm_no']}
    existing = get_db().patients.find_one(query)

    if existing is None:
        doc = {
            'clinic_id': clinic_oid,
            'erm_no': fields['erm_no'],
            'full_name': fields['patient_name'],
            'first_visit_at': fields['trx_date'],
            'last_visit_at': fields['trx_date'],
            'visit_count': 1,
            'id_donatur_zains': None,
            'erm_no_for_zains': erm_no_for_zains,
            'created_at': now,
            'updated_at': now,
        }
        try:
            doc['_id'] = get_db().patients.insert_one(doc).inserted_id
            return doc
        except DuplicateKeyError:
            existing = get_db().patients.find_one(query)

    update = {
        '$min': {'first_visit_at': fields['trx_date']},
        '$max': {'last_visit_at': fields['trx_date']},
        '$set': {'erm_no_for_zains': erm_no_for_zains, 'updated_at': now},
    }
    if fields['patient_name']:
        update['$set']['full_name'] = fields['patient_name']
    if is_new_transaction:
        update['$inc'] = {'visit_count': 1}
    return get_db().patients.find_one_and_update(
        {'_id': existing['_id']}, update, return_document=ReturnDocument.AFTER)


def ingest_transactions(clinic_id, rows, input_type='manual', start_workflow=True):
    """
    Store transactions for one clinic and queue their Zains rows.
    Raises ValueError for bad input and LookupError for an unknown/inactive clinic;
    per-row problems are reported in the result instead.
    """
    if input_type not in INPUT_TYPES:
        raise ValueError(f"input_type must be one of {', '.join(INPUT_TYPES)}")
    if not isinstance(rows, list) or len(rows) == 0:
        raise ValueError('transaction_data must be a non-empty list')

    clinic_oid = to_object_id(clinic_id)
    clinic = get_db().clinics.find_one({'_id': clinic_oid, 'is_active': True})
    if not clinic:
        raise LookupError('Clinic not found or inactive')

    category_map = _category_program_map()
    inserted = skipped = zains_inserted = 0
    errors = []
    workflows = {}

    for index, row in enumerate(rows):
        try:
            fields, error = parse_transaction_row(row if isinstance(row, dict) else {})
            if error:
                errors.append({'index': index, 'error': error})
                skipped += 1
                continue

            if fields['trx_no'] and fields['erm_no']:
                duplicate = get_db().transactions.find_one({
                    'clinic_id': clinic_oid, 'trx_no': fields['trx_no'], 'erm_no': fields['erm_no']
                }, {'_id': 1})
                if duplicate:
                    skipped += 1
                    errors.append({'index': index, 'error': 'Transaction already recorded (duplicate trx_no & erm_no)',
                                   'trx_no': fields['trx_no'], 'erm_no': fields['erm_no']})
                    continue

            now = datetime.now()
            is_new = get_db().transactions.count_documents({
                'clinic_id': clinic_oid, 'erm_no': fields['erm_no'], 'trx_date': fields['trx_date'],
                'polyclinic': fields['polyclinic'], 'bill_total': fields['bill_total'],
            }, limit=1) == 0
            transaction = _upsert_transaction(clinic_oid, fields, row, input_type, now)
            inserted += 1

            known = get_db().patients.find_one({'clinic_id': clinic_oid, 'erm_no': fields['erm_no']},
                                               {'id_donatur_zains': 1}) or {}
            new_rows = _queue_zains_rows(transaction, clinic, fields, category_map,
                                         known.get('id_donatur_zains') or None, now)
            zains_inserted += new_rows
            if new_rows == 0:
                continue

            # Only transactions that produced Zains rows get a patient record
            patient = upsert_patient(clinic_oid, fields, is_new, now)
            get_db().transactions.update_one({'_id': transaction['_id']},
                                             {'$set': {'patient_id': patient['_id'], 'updated_at': now}})
            get_db().transactions_to_zains.update_many(
                {'transaction_id': transaction['_id'], 'patient_id': None},
                {'$set': {'patient_id': patient['_id']}})
            if not patient.get('id_donatur_zains'):
                workflows.setdefault(str(patient['_id']), []).append(str(transaction['_id']))
        except Exception as e:
            print(f"[Transactions] Error processing row {index}: {e}")
            errors.append({'index': index, 'error': str(e)})
            skipped += 1

    all_duplicates = (inserted == 0 and skipped > 0 and errors and
                      all('already recorded' in e['error'] for e in errors))
    result = {
        'success': True,
        'message': ('All transactions were already recorded, nothing new inserted'
                    if all_duplicates else 'Transactions inserted'),
        'data': {
            'total_processed': len(rows),
            'inserted': inserted,
            'zains_inserted': zains_inserted,
            'skipped': skipped,
            'errors': errors or None,
            'patient_ids_to_sync': list(workflows),
        },
    }
    log_system_event(clinic_oid, PROCESS_TRANSACTIONS_INSERT, 'success', result['message'],
                     {'input_type': input_type, 'rows': len(rows), 'response': result['data']})

    if start_workflow:
        for patient_id, transaction_ids in workflows.items():
            zains_sync.start_background(zains_sync.sync_patient_workflow, patient_id, transaction_ids)
    return result


# --- QUERIES ---

def build_transaction_query(filters):
    query = {}
    search = (filters.get('search') or '').strip()
    if search:
        pattern = {'$regex': re.escape(search), '$options': 'i'}
        query['$or'] = [{'trx_no': pattern}, {'patient_name': pattern}, {'erm_no': pattern}]
    if filters.get('clinic_id'):
        query['clinic_id'] = to_object_id(filters['clinic_id'])

    date_from = parse_iso_date(filters.get('date_from'))
    date_to = parse_iso_date(filters.get('date_to'))
    if date_from or date_to:
        query['trx_date'] = {}
        if date_from:
            query['trx_date']['$gte'] = date_from
        if date_to:
            query['trx_date']['$lte'] = date_to

    for name in ('polyclinic', 'insurance_type', 'input_type'):
        if filters.get(name):
            query[name] = filters[name]
    if filters.get('zains_synced') in ('true', 'false'):
        query['zains_synced'] = filters['zains_synced'] == 'true'
    return query


def _clinic_names():
    return {c['_id']: c.get('name') for c in get_db().clinics.find({}, {'name': 1})}


def list_transactions(filters, page=1, limit=20):
    query = build_transaction_query(filters)
    page = max(1, int(page))
    limit = max(1, min(int(limit), 200))
    names = _clinic_names()

    total = get_db().transactions.count_documents(query)
    cursor = (get_db().transactions.find(query, {'raw_json_data': 0})
              .sort([('trx_date', -1), ('_id', -1)])
              .skip((page - 1) * limit)
              .limit(limit))
    items = []
    for trx in cursor:
        trx['clinic_name'] = names.get(trx.get('clinic_id'))
        items.append(serialize_doc(trx))
    return {'transactions': items, 'total': total, 'page': page, 'limit': limit}


def transaction_stats():
    total = get_db().transactions.count_documents({})
    synced = get_db().transactions.count_documents({'zains_synced': True})
    revenue = list(get_db().transactions.aggregate([
        {'$group': {'_id': None, 'total': {'$sum': '$bill_total'}}}
    ]))
    return {
        'totalTransactions': total,
        'syncedCount': synced,
        'pendingCount': total - synced,
        'totalRevenue': revenue[0]['total'] if revenue else 0,
    }


def get_transaction_zains_rows(transaction_id):
    transaction_oid = to_object_id(transaction_id)
    transaction = get_db().transactions.find_one({'_id': transaction_oid}, {'raw_json_data': 0})
    if not transaction:
        raise LookupError('Transaction not found')
    rows = get_db().transactions_to_zains.find({'transaction_id': transaction_oid}).sort('created_at', 1)
    return {'transaction': serialize_doc(transaction), 'rows': [serialize_doc(r) for r in rows]}


EXPORT_COLUMNS = [
    ('trx_date', 'Date'), ('trx_no', 'Transaction No'), ('clinic_name', 'Clinic'),
    ('erm_no', 'eRM No'), ('patient_name', 'Patient'), ('polyclinic', 'Polyclinic'),
    ('insurance_type', 'Insurance'), ('payment_method', 'Payment Method'),
    ('bill_total', 'Bill Total'), ('covered_total', 'Covered Total'),
    ('paid_total', 'Paid Total'), ('receivable_total', 'Receivable Total'),
    ('input_type', 'Input'), ('zains_synced', 'Synced to Zains'),
]


def build_transactions_export(filters):
    """Excel workbook (BytesIO) of the filtered transactions."""
    query = build_transaction_query(filters)
    names = _clinic_names()
    export_data = []
    for trx in get_db().transactions.find(query, {'raw_json_data': 0}).sort('trx_date', -1):
        trx['clinic_name'] = names.get(trx.get('clinic_id'), '')
        export_data.append({label: trx.get(field, '') for field, label in EXPORT_COLUMNS})

    df = pd.DataFrame(export_data, columns=[label for _, label in EXPORT_COLUMNS])
    print(f"[Transactions] Export: {len(df)} rows")

    output = io.BytesIO()
    with pd.ExcelWriter(output, engine='openpyxl') as writer:
        df.to_excel(writer, index=False, sheet_name='Transactions')

        worksheet = writer.sheets['Transactions']
        worksheet.page_setup.paperSize = 9  # A4
        worksheet.page_setup.orientation = 'landscape'
        worksheet.page_setup.fitToWidth = 1
        worksheet.page_setup.fitToHeight = 0
    output.seek(0)
    return output
