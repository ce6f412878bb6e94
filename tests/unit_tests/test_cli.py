import pytest
from click.testing import CliRunner

from documents_api.cli import cli
from documents_api.config.settings import get_settings


@pytest.fixture
def local_env(tmp_path, monkeypatch):
    monkeypatch.delenv("S3_BUCKET_NAME", raising=False)
    monkeypatch.setenv("STORAGE_DIR", str(tmp_path / "storage"))
    monkeypatch.setenv("DATABASE_PATH", str(tmp_path / "documents.db"))
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


def test_show_config_masks_bucket(local_env, monkeypatch):
    monkeypatch.setenv("S3_BUCKET_NAME", "hr-documents-prod")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "super-secret")
    get_settings.cache_clear()

    result = CliRunner().invoke(cli, ["show-config"])

    assert result.exit_code == 0
    assert "hr-do..." in result.output
    assert "hr-documents-prod" not in result.output
    assert "super-secret" not in result.output


def test_status_without_remote(local_env):
    result = CliRunner().invoke(cli, ["status"])

    assert result.exit_code == 0
    assert '"configured": false' in result.output


def test_migrate_without_remote_fails(local_env):
    result = CliRunner().invoke(cli, ["migrate", "--dry-run"])

    assert result.exit_code == 1
    assert "Migration not started" in result.output


def test_reconcile_clean_store(local_env):
    result = CliRunner().invoke(cli, ["reconcile", "--verify-objects"])

    assert result.exit_code == 0
    assert "consistent" in result.output


def test_rollback_unknown_document_fails(local_env):
    result = CliRunner().invoke(cli, ["rollback", "9999"])

    assert result.exit_code == 1
    assert "Rollback of document 9999 failed" in result.output


def test_migrate_accepts_keep_local(local_env):
    result = CliRunner().invoke(cli, ["migrate", "--keep-local", "--dry-run"])

    # still rejected: no remote is configured
    assert result.exit_code == 1
    assert "Migration not started" in result.output
