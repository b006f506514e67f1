import app_settings


def test_sync_toggle_defaults_to_enabled(db):
    assert app_settings.get_zains_transaction_sync_enabled() is True


def test_sync_toggle_round_trip(db):
    app_settings.set_zains_transaction_sync_enabled(False)
    assert app_settings.get_zains_transaction_sync_enabled() is False
    assert app_settings.get_app_setting('zains_transaction_sync_enabled') == 'false'


def test_enable_with_activate_all_pending(db):
    db.transactions_to_zains.insert_many([
        {'synced': False, 'todo_zains': False},
        {'synced': False, 'todo_zains': False},
        {'synced': True, 'todo_zains': False},
    ])

    activated = app_settings.set_zains_transaction_sync_enabled(True, activate_all_pending=True)

    assert activated == 2
    assert db.transactions_to_zains.count_documents({'todo_zains': True}) == 2


def test_update_only_writes_known_keys(db):
    written = app_settings.update_app_settings({'app_title': 'Dashboard Klinik', 'is_admin': 'yes'})

    assert written == ['app_title']
    assert app_settings.get_all_app_settings() == {'app_title': 'Dashboard Klinik'}
    assert app_settings.get_app_setting('is_admin') is None
