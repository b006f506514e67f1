from datetime import datetime, date
from pymongo import MongoClient, ASCENDING, DESCENDING
from bson.objectid import ObjectId
from bson.errors import InvalidId
import certifi

import config

# MongoDB client setup for serverless - lazy connection
mongo_client = None
db = None


def get_db():
    """Get database connection - creates it lazily for serverless"""
    global mongo_client, db

    if db is not None:
        if mongo_client is None:
            # Injected database (scripts, tests)
            return db
        try:
            mongo_client.admin.command('ping', maxTimeMS=3000)
            return db
        except Exception as e:
            print(f"[DB] Connection ping failed, resetting: {e}")
            mongo_client = None
            db = None

    try:
        print("[DB] Creating new MongoDB connection...")
        client_kwargs = dict(
            serverSelectionTimeoutMS=10000,
            connectTimeoutMS=10000,
            socketTimeoutMS=45000,
            maxPoolSize=10,
            minPoolSize=1,
            retryWrites=True,
            retryReads=True,
            w='majority',
        )
        if config.MONGO_URI.startswith('mongodb+srv://'):
            client_kwargs['tlsCAFile'] = certifi.where()
        mongo_client = MongoClient(config.MONGO_URI, **client_kwargs)
        mongo_client.admin.command('ping', maxTimeMS=5000)
        db_name = config.MONGO_URI.split('/')[-1].split('?')[0] or 'clinic_dashboard'
        db = mongo_client[db_name]
        print(f"[DB] MongoDB connected to database: {db_name}")
    except Exception as e:
        print(f"[DB] MongoDB connection error: {type(e).__name__}: {e}")
        mongo_client = None
        db = None
        return None

    # Index errors leave the connection usable
    try:
        ensure_indexes(db)
    except Exception as e:
        print(f"[DB] Index setup error: {type(e).__name__}: {e}")
    return db


def use_database(database):
    """Point the module at an already-open database (no ping, no indexes)."""
    global mongo_client, db
    mongo_client = None
    db = database


def check_db():
    """Check and test database connection"""
    try:
        database = get_db()
        if database is None:
            print("[DB] Failed to get database connection")
            return False
        return True
    except Exception as e:
        print(f"[DB] Database check failed: {e}")
        return False


def ensure_indexes(database):
    database.patients.create_index(
        [('clinic_id', ASCENDING), ('erm_no', ASCENDING)],
        unique=True, name='unique_patient_per_clinic')
    database.patients.create_index(
        'id_donatur_zains', unique=True, name='unique_id_donatur_zains',
        partialFilterExpression={'id_donatur_zains': {'$type': 'string', '$gt': ''}})
    database.patients.create_index('erm_no_for_zains')
    database.transactions.create_index(
        [('clinic_id', ASCENDING), ('erm_no', ASCENDING), ('trx_date', ASCENDING),
         ('polyclinic', ASCENDING), ('bill_total', ASCENDING)],
        unique=True, name='unique_transaction_entry')
    database.transactions.create_index([('clinic_id', ASCENDING), ('trx_date', DESCENDING)])
    database.transactions_to_zains.create_index('transaction_id')
    database.transactions_to_zains.create_index([('synced', ASCENDING), ('todo_zains', ASCENDING)])
    database.scrap_queue.create_index(
        [('clinic_id', ASCENDING), ('tgl_awal', ASCENDING), ('tgl_akhir', ASCENDING)],
        unique=True, name='one_active_job_per_range',
        partialFilterExpression={'status': {'$in': ['pending', 'processing']}})
    database.scrap_queue.create_index('status')
    database.scrap_queue.create_index('clinic_id')
    database.scrap_queue.create_index([('created_at', DESCENDING)])
    database.clinic_poly_mappings.create_index(
        [('clinic_id', ASCENDING), ('raw_poly_name', ASCENDING)],
        unique=True, name='unique_mapping_per_poly')
    database.clinic_insurance_mappings.create_index(
        [('clinic_id', ASCENDING), ('raw_insurance_name', ASCENDING)],
        unique=True, name='unique_mapping_per_insurance')
    database.app_settings.create_index('key', unique=True)
    database.public_holidays.create_index('holiday_date', unique=True)
    database.system_logs.create_index([('created_at', DESCENDING)])


def to_object_id(value):
    """Parse an id coming from a URL or JSON body. Raises ValueError when malformed."""
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(str(value))
    except (InvalidId, TypeError):
        raise ValueError(f"Invalid id: {value}")


def serialize_doc(doc):
    """Make a Mongo document JSON friendly (ObjectId -> str, datetime -> ISO)."""
    if doc is None:
        return None
    if isinstance(doc, list):
        return [serialize_doc(d) for d in doc]
    out = {}
    for key, value in doc.items():
        if isinstance(value, ObjectId):
            out[key] = str(value)
        elif isinstance(value, (datetime, date)):
            out[key] = value.isoformat()
        elif isinstance(value, dict):
            out[key] = serialize_doc(value)
        elif isinstance(value, list):
            out[key] = [serialize_doc(v) if isinstance(v, dict) else
                        str(v) if isinstance(v, ObjectId) else v for v in value]
        else:
            out[key] = value
    return out


def clean_input_data(data):
    """Strip trailing and leading spaces from string values in a dictionary."""
    if not isinstance(data, dict):
        return data

    cleaned = {}
    for key, value in data.items():
        if isinstance(value, str):
            cleaned[key] = value.strip()
        elif isinstance(value, dict):
            cleaned[key] = clean_input_data(value)
        elif isinstance(value, list):
            cleaned[key] = [clean_input_data(item) if isinstance(item, dict) else item.strip() if isinstance(item, str) else item for item in value]
        else:
            cleaned[key] = value
    return cleaned


def parse_amount(value):
    """
    Parse an amount as exported by the clinic portal.
    Thousands are separated with commas ("1,250,000"); "-" and blanks mean zero.
    """
    if value is None or value == '' or value == '-':
        return 0.0
    if isinstance(value, (int, float)):
        return float(value)
    cleaned = str(value).replace(',', '').strip()
    try:
        return float(cleaned)
    except ValueError:
        return 0.0


def parse_iso_date(value):
    """Return 'YYYY-MM-DD' for a date-like value, or None when it cannot be parsed."""
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        return value.strftime('%Y-%m-%d')
    if isinstance(value, date):
        return value.isoformat()
    text = str(value).strip()
    for fmt in ('%Y-%m-%d', '%d/%m/%Y', '%d-%m-%Y'):
        try:
            return datetime.strptime(text, fmt).strftime('%Y-%m-%d')
        except ValueError:
            continue
    try:
        return datetime.fromisoformat(text.replace('Z', '+00:00')).strftime('%Y-%m-%d')
    except ValueError:
        return None
