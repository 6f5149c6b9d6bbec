"""Tests for settings helpers."""
from pushdispatch.config import Settings, is_push_configured, normalize_database_url


class TestDatabaseUrl:

    def test_heroku_url(self):
        assert normalize_database_url("postgres://u:p@db:5432/push") == "postgresql+asyncpg://u:p@db:5432/push"

    def test_plain_postgresql_url(self):
        assert normalize_database_url("postgresql://db/push") == "postgresql+asyncpg://db/push"

    def test_driver_urls_untouched(self):
        assert normalize_database_url("postgresql+asyncpg://db/push") == "postgresql+asyncpg://db/push"
        assert normalize_database_url("sqlite+aiosqlite:///tmp/x.db") == "sqlite+aiosqlite:///tmp/x.db"


class TestPushConfigured:

    def test_disabled(self):
        assert not is_push_configured(Settings(push_enabled=False, fcm_project_id="p", fcm_service_account_json="{}"))

    def test_missing_credentials(self):
        assert not is_push_configured(Settings(push_enabled=True, fcm_project_id="p"))

    def test_credentials_file_or_json(self):
        assert is_push_configured(Settings(push_enabled=True, fcm_project_id="p", fcm_credentials_file="/sa.json"))
        assert is_push_configured(Settings(push_enabled=True, fcm_project_id="p", fcm_service_account_json="{}"))

    def test_list_settings_from_env(self, monkeypatch):
        monkeypatch.setenv("PUSH_PERMANENT_ERROR_CODES", '["DEVICE_GONE", "APNS_EXPIRED"]')
        assert Settings().push_permanent_error_codes == ["DEVICE_GONE", "APNS_EXPIRED"]
