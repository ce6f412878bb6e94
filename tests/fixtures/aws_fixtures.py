"""AWS fixtures for tests."""
import boto3
import pytest
from moto import mock_aws

from documents_api.utils import decorators
from tests.consts import TEST_BUCKET_NAME, TEST_REGION


@pytest.fixture
def aws_credentials(monkeypatch):
    """Point boto3 at fake credentials so nothing can reach a real account."""
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "testing")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "testing")
    monkeypatch.setenv("AWS_SECURITY_TOKEN", "testing")
    monkeypatch.setenv("AWS_SESSION_TOKEN", "testing")
    monkeypatch.setenv("AWS_DEFAULT_REGION", TEST_REGION)
    monkeypatch.delenv("AWS_PROFILE", raising=False)
    monkeypatch.delenv("AWS_ENDPOINT_URL", raising=False)


@pytest.fixture
def mocked_aws(aws_credentials):
    """Mocked AWS with the documents bucket created."""
    with mock_aws():
        s3_client = boto3.client("s3", region_name=TEST_REGION)
        s3_client.create_bucket(Bucket=TEST_BUCKET_NAME)
        yield s3_client


@pytest.fixture
def recorded_sleeps(monkeypatch):
    """Replace retry backoff sleeps with a recorder."""
    sleeps = []
    monkeypatch.setattr(decorators.time, "sleep", sleeps.append)
    return sleeps
