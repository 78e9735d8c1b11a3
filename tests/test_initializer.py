"""Tests for first-run initialization."""

import json
from unittest.mock import MagicMock

import pytest

from rekey.secrets.initializer import InitializationController
from rekey.secrets.model import is_placeholder
from rekey.secrets.tokens import TokenMinter
from rekey.stores.adapter import fingerprint
from rekey.validation.consistency import ConsistencyChecker, InvariantStatus

PLACEHOLDER_ENV = {
    "INSTANCE_NAME": "supabase",
    "POSTGRES_PASSWORD": "your-super-secret-and-long-postgres-password",
    "JWT_SECRET": "your-super-secret-jwt-token-with-at-least-32-characters-long",
    "ANON_KEY": "auto-generated",
    "SERVICE_ROLE_KEY": "auto-generated",
    "VAULT_ENC_KEY": "your-encryption-key-32-chars-min",
    "PG_META_CRYPTO_KEY": "your-encryption-key-32-chars-min",
    "SECRET_KEY_BASE": "UpNVntn3cDxHJpq99YMc1T1AQgQpc8kfYTuRgBiYa15BLrx8etQoXz3gZv1/u2oq",
    "DASHBOARD_USERNAME": "supabase",
    "DASHBOARD_PASSWORD": "this_password_is_insecure_and_should_be_updated",
    "POOLER_TENANT_ID": "your-tenant-id",
    "LOGFLARE_PUBLIC_ACCESS_TOKEN": "your-super-secret-and-long-logflare-key-public",
    "LOGFLARE_PRIVATE_ACCESS_TOKEN": "your-super-secret-and-long-logflare-key-private",
}


def make_controller(instance, echoed=None):
    messages = echoed if echoed is not None else []
    return InitializationController(instance.adapter, echo=messages.append)


class TestInitializationController:
    """Test the Uninitialized to Initialized transition."""

    def test_generates_every_placeholder(self, empty_instance):
        """Managed and auxiliary placeholders are replaced in one write."""
        empty_instance.config.values = dict(PLACEHOLDER_ENV)

        result = make_controller(empty_instance).initialize()

        values = empty_instance.config.values
        assert len(empty_instance.config.writes) == 1
        assert len(values["POSTGRES_PASSWORD"]) == 32
        assert len(values["JWT_SECRET"]) == 48
        assert len(values["VAULT_ENC_KEY"]) == 32
        assert len(values["SECRET_KEY_BASE"]) == 48
        assert values["POOLER_TENANT_ID"].startswith("tenant-")
        assert values["DASHBOARD_USERNAME"] == "supabase"
        assert not any(is_placeholder(v) for v in values.values())
        assert result.tokens_minted
        assert "DASHBOARD_PASSWORD" in result.generated

    def test_tokens_verify_under_new_secret(self, empty_instance):
        """Minted tokens verify under the generated signing secret."""
        empty_instance.config.values = dict(PLACEHOLDER_ENV)
        make_controller(empty_instance).initialize()

        values = empty_instance.config.values
        minter = TokenMinter()
        assert minter.verify(values["ANON_KEY"], values["JWT_SECRET"])
        assert minter.decode_claims(values["SERVICE_ROLE_KEY"])["role"] == "service_role"

    def test_keeps_real_values(self, empty_instance):
        """Non-placeholder values are never regenerated."""
        env = dict(PLACEHOLDER_ENV, POSTGRES_PASSWORD="Zq8XbWm0R2s9fKp1Lt7Vd3Gh6Jc4Na5Y")
        empty_instance.config.values = env

        result = make_controller(empty_instance).initialize()

        assert empty_instance.config.values["POSTGRES_PASSWORD"] == "Zq8XbWm0R2s9fKp1Lt7Vd3Gh6Jc4Na5Y"
        assert "POSTGRES_PASSWORD" not in result.generated

    def test_second_run_is_noop(self, empty_instance):
        """Re-running after success changes nothing."""
        empty_instance.config.values = dict(PLACEHOLDER_ENV)
        controller = make_controller(empty_instance)
        controller.initialize()
        after_first = dict(empty_instance.config.values)

        result = controller.initialize()

        assert result.already_initialized
        assert empty_instance.config.values == after_first
        assert len(empty_instance.config.writes) == 1

    def test_force_rescans_without_regenerating(self, empty_instance):
        """--force fills new placeholders but keeps existing secrets."""
        empty_instance.config.values = dict(PLACEHOLDER_ENV)
        controller = make_controller(empty_instance)
        controller.initialize()
        secret = empty_instance.config.values["JWT_SECRET"]
        empty_instance.config.values["DASHBOARD_PASSWORD"] = "change-me"

        result = controller.initialize(force=True)

        assert result.generated == ["DASHBOARD_PASSWORD"]
        assert empty_instance.config.values["JWT_SECRET"] == secret
        assert not result.tokens_minted

    def test_creates_record_from_example(self, empty_instance, tmp_path):
        """A missing record is created from .env.example."""
        (tmp_path / ".env.example").write_text("INSTANCE_NAME=demo\nJWT_SECRET=your-jwt-secret\n")

        result = make_controller(empty_instance).initialize()

        assert result.config_created
        assert empty_instance.config.values["INSTANCE_NAME"] == "demo"
        assert len(empty_instance.config.values["JWT_SECRET"]) == 48

    def test_creates_record_from_template(self, empty_instance):
        """Without an example file the bundled template is rendered."""
        result = make_controller(empty_instance).initialize()

        values = empty_instance.config.values
        assert result.config_created
        assert values["INSTANCE_NAME"] == "supabase"
        assert len(values["POSTGRES_PASSWORD"]) == 32
        assert values["SITE_URL"] == "http://localhost:3000"

    def test_clears_stale_database_data(self, empty_instance, tmp_path):
        """A non-empty data directory is cleared when a new password is generated."""
        data_dir = tmp_path / "volumes" / "db" / "data"
        data_dir.mkdir(parents=True)
        (data_dir / "PG_VERSION").write_text("15")
        empty_instance.config.values = dict(PLACEHOLDER_ENV)

        result = make_controller(empty_instance).initialize()

        assert result.database_data_cleared
        assert data_dir.is_dir()
        assert list(data_dir.iterdir()) == []

    def test_keeps_database_data_when_password_kept(self, empty_instance, tmp_path):
        """Existing data is left alone if the password was not regenerated."""
        data_dir = tmp_path / "volumes" / "db" / "data"
        data_dir.mkdir(parents=True)
        (data_dir / "PG_VERSION").write_text("15")
        empty_instance.config.values = dict(PLACEHOLDER_ENV, POSTGRES_PASSWORD="Zq8XbWm0R2s9fKp1Lt7Vd3Gh6Jc4Na5Y")

        result = make_controller(empty_instance).initialize()

        assert not result.database_data_cleared
        assert (data_dir / "PG_VERSION").exists()

    def test_never_writes_database(self, empty_instance):
        """Initialization leaves the database stores to initialize themselves."""
        empty_instance.config.values = dict(PLACEHOLDER_ENV)
        make_controller(empty_instance).initialize()

        assert empty_instance.database.calls == []

    def test_marker_records_key_fingerprint(self, empty_instance, tmp_path):
        """The marker file records the encryption key fingerprint."""
        empty_instance.config.values = dict(PLACEHOLDER_ENV)
        make_controller(empty_instance).initialize()

        marker = json.loads((tmp_path / ".initialized").read_text())
        assert len(marker["encryption_key_fingerprint"]) == 16
        assert "initialized_at" in marker

    def test_failed_clear_is_retried(self, empty_instance, tmp_path):
        """If stale data cannot be cleared the password stays a placeholder for the next run."""
        data_dir = tmp_path / "volumes" / "db" / "data"
        data_dir.mkdir(parents=True)
        (data_dir / "PG_VERSION").write_text("15")
        empty_instance.config.values = dict(PLACEHOLDER_ENV)
        controller = make_controller(empty_instance)
        real_clear = empty_instance.adapter.clear_database_data

        empty_instance.adapter.clear_database_data = MagicMock(side_effect=PermissionError("volumes/db/data"))
        with pytest.raises(PermissionError):
            controller.initialize()

        assert is_placeholder(empty_instance.config.values["POSTGRES_PASSWORD"])
        assert not (tmp_path / ".initialized").exists()

        empty_instance.adapter.clear_database_data = real_clear
        result = controller.initialize()

        assert result.database_data_cleared
        assert list(data_dir.iterdir()) == []
        assert not is_placeholder(empty_instance.config.values["POSTGRES_PASSWORD"])

    def test_force_keeps_recorded_fingerprint(self, instance):
        """--force does not hide an encryption key changed by hand."""
        instance.config.values["VAULT_ENC_KEY"] = "Hq2WcX9sLm4Tn7Vb1Zp8Rd3Kf6Jy0Ga5"

        make_controller(instance).initialize(force=True)

        report = ConsistencyChecker(instance.adapter).verify()
        assert report.get(4).status is InvariantStatus.MISMATCH

    def test_force_records_missing_fingerprint(self, instance, tmp_path):
        """A marker without a fingerprint gets one on --force."""
        (tmp_path / ".initialized").write_text("")

        make_controller(instance).initialize(force=True)

        marker = json.loads((tmp_path / ".initialized").read_text())
        assert marker["encryption_key_fingerprint"] == fingerprint(instance.config.values["VAULT_ENC_KEY"])
