import pytest
from pydantic import ValidationError

from documents_api.config.settings import DEFAULT_ALLOWED_MIME_TYPES, Settings


def test_defaults(monkeypatch):
    monkeypatch.delenv("S3_BUCKET_NAME", raising=False)
    monkeypatch.delenv("ALLOWED_MIME_TYPES", raising=False)

    settings = Settings(_env_file=None)

    assert settings.presign_default_ttl_seconds == 300
    assert settings.max_upload_size_bytes == 10 * 1024 * 1024
    assert settings.allowed_mime_types == DEFAULT_ALLOWED_MIME_TYPES
    assert settings.allow_local_fallback is True
    assert not settings.remote_enabled


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("S3_BUCKET_NAME", "hr-documents-prod")
    monkeypatch.setenv("AWS_DEFAULT_REGION", "eu-west-1")
    monkeypatch.setenv("ALLOWED_MIME_TYPES", "application/pdf, image/png")
    monkeypatch.setenv("ALLOW_LOCAL_FALLBACK", "false")

    settings = Settings(_env_file=None)

    assert settings.remote_enabled
    assert settings.aws_region == "eu-west-1"
    assert settings.allowed_mime_types == ["application/pdf", "image/png"]
    assert settings.allow_local_fallback is False
    assert settings.masked_bucket_name == "hr-do..."


def test_environment_dict_never_contains_credentials():
    settings = Settings(
        _env_file=None,
        s3_bucket_name="hr-documents-prod",
        aws_access_key_id="AKIAEXAMPLE",
        aws_secret_access_key="super-secret",
    )

    rendered = str(settings.get_environment_dict())

    assert "AKIAEXAMPLE" not in rendered
    assert "super-secret" not in rendered
    assert "hr-documents-prod" not in rendered


def test_deployment_mode_aliases_and_validation():
    assert Settings(_env_file=None, deployment_mode="local-mock").deployment_mode == "local-dev"
    with pytest.raises(ValidationError):
        Settings(_env_file=None, deployment_mode="staging")


def test_presign_default_cannot_exceed_max():
    with pytest.raises(ValidationError):
        Settings(_env_file=None, presign_default_ttl_seconds=600, presign_max_ttl_seconds=300)
