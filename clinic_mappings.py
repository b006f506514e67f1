"""
Per-clinic name mappings.

Each clinic's portal names polyclinics and insurance types its own way. A
mapping ties one raw name to a master id; ingest copies the master id onto
the transaction (poly_id / insurance_type_id).
"""
from datetime import datetime

from pymongo import ReturnDocument

from database import get_db, to_object_id, serialize_doc

POLY = 'poly'
INSURANCE = 'insurance'

# kind -> (collection, raw name field, master id field)
MAPPING_KINDS = {
    POLY: ('clinic_poly_mappings', 'raw_poly_name', 'master_poly_id'),
    INSURANCE: ('clinic_insurance_mappings', 'raw_insurance_name', 'master_insurance_id'),
}


def _kind(kind):
    if kind not in MAPPING_KINDS:
        raise ValueError(f"Unknown mapping kind: {kind}")
    return MAPPING_KINDS[kind]


def _clinic_oid(clinic_id):
    clinic_oid = to_object_id(clinic_id)
    if not get_db().clinics.find_one({'_id': clinic_oid}, {'_id': 1}):
        raise LookupError("Clinic not found")
    return clinic_oid


def list_mappings(kind, clinic_id):
    collection, raw_field, _ = _kind(kind)
    clinic_oid = _clinic_oid(clinic_id)
    rows = get_db()[collection].find({'clinic_id': clinic_oid}).sort(raw_field, 1)
    return [serialize_doc(r) for r in rows]


def save_mapping(kind, clinic_id, data):
    """Create the mapping for a raw name, or replace its master id if it exists."""
    collection, raw_field, master_field = _kind(kind)
    clinic_oid = _clinic_oid(clinic_id)
    raw_name = data.get(raw_field)
    if not isinstance(raw_name, str) or not raw_name.strip():
        raise ValueError(f"{raw_field} is required")
    raw_name = raw_name.strip()

    master_id = data.get(master_field)
    fields = {master_field: str(master_id) if master_id not in (None, '') else None}
    if kind == POLY:
        fields['is_revenue_center'] = bool(data.get('is_revenue_center', True))

    now = datetime.now()
    fields['updated_at'] = now
    mapping = get_db()[collection].find_one_and_update(
        {'clinic_id': clinic_oid, raw_field: raw_name},
        {'$set': fields, '$setOnInsert': {'created_at': now}},
        upsert=True,
        return_document=ReturnDocument.AFTER
    )
    print(f"[Mappings] {kind} '{raw_name}' -> {fields[master_field]} for clinic {clinic_oid}")
    return mapping


def delete_mapping(kind, clinic_id, mapping_id):
    collection, _, _ = _kind(kind)
    result = get_db()[collection].delete_one({'_id': to_object_id(mapping_id),
                                              'clinic_id': to_object_id(clinic_id)})
    if result.deleted_count == 0:
        raise LookupError("Mapping not found")
