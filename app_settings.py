from datetime import datetime

from database import get_db

KEY_ZAINS_TRANSACTION_SYNC_ENABLED = 'zains_transaction_sync_enabled'

# Branding keys editable from the settings form
APP_SETTINGS_KEYS = {
    'APP_TITLE': 'app_title',
    'APP_FAVICON_URL': 'app_favicon_url',
    'LOGO_URL': 'app_logo_url',
    'SIDEBAR_BG_COLOR': 'app_sidebar_bg_color',
    'COMPANY_NAME': 'app_company_name',
    # Single HTML block for the right-hand side of the login page
    'LOGIN_CONTENT': 'app_login_content',
    'LOGIN_TONE_BG': 'app_login_tone_bg',
    'LOGIN_BG_IMAGE': 'app_login_bg_image',
}

ALLOWED_KEYS = set(APP_SETTINGS_KEYS.values())


def get_app_setting(key):
    """Return one setting value, or None if it does not exist."""
    try:
        row = get_db().app_settings.find_one({'key': key})
        if not row or row.get('value') is None:
            return None
        return str(row['value'])
    except Exception as e:
        print(f"[Settings] Error reading '{key}': {e}")
        return None


def get_all_app_settings():
    try:
        out = {}
        for row in get_db().app_settings.find():
            if row.get('key') is not None:
                value = row.get('value')
                out[row['key']] = str(value) if value is not None else ''
        return out
    except Exception as e:
        print(f"[Settings] Error reading settings: {e}")
        return {}


def set_app_setting(key, value):
    get_db().app_settings.update_one(
        {'key': key},
        {'$set': {'value': value, 'updated_at': datetime.now()}},
        upsert=True
    )


def update_app_settings(data):
    """Write the allowed keys from data; anything else is ignored. Returns the keys written."""
    written = []
    for key, value in data.items():
        if key not in ALLOWED_KEYS:
            continue
        set_app_setting(key, '' if value is None else str(value))
        written.append(key)
    return written


def get_zains_transaction_sync_enabled():
    """
    Global toggle for pushing transactions to Zains.
    Missing row (or an unreadable store) counts as enabled.
    """
    try:
        row = get_db().app_settings.find_one({'key': KEY_ZAINS_TRANSACTION_SYNC_ENABLED})
        if not row or row.get('value') is None:
            return True
        return str(row['value']).strip().lower() in ('true', '1')
    except Exception as e:
        print(f"[Settings] Error reading sync toggle, defaulting to enabled: {e}")
        return True


def set_zains_transaction_sync_enabled(enabled, activate_all_pending=False):
    """
    Set the toggle. When enabling with activate_all_pending, every unsynced
    transactions_to_zains row is flagged todo so the next batch picks it up.
    Returns the number of rows activated.
    """
    set_app_setting(KEY_ZAINS_TRANSACTION_SYNC_ENABLED, 'true' if enabled else 'false')
    if enabled and activate_all_pending:
        result = get_db().transactions_to_zains.update_many(
            {'synced': False},
            {'$set': {'todo_zains': True, 'updated_at': datetime.now()}}
        )
        return result.modified_count
    return 0
