"""Backends with scripted behaviour and stubbed S3 clients."""
from typing import Dict, List

import boto3
from botocore.stub import Stubber

from documents_api.errors import StorageError
from documents_api.schemas import StorageType
from documents_api.storage.base import HealthStatus, StorageBackend


class FailingBackend(StorageBackend):
    """Remote stand-in whose every call raises the configured error."""

    storage_type = StorageType.REMOTE

    def __init__(self, error: StorageError):
        self.error = error
        self.put_calls = 0

    def put(self, key, stream, size, mime_type, metadata=None):
        self.put_calls += 1
        raise self.error

    def get(self, key):
        raise self.error

    def delete(self, key):
        raise self.error

    def stat(self, key):
        raise self.error

    def presign(self, key, ttl_seconds):
        raise self.error

    def health_check(self):
        return HealthStatus.degraded(str(self.error))


class StubbedClientFactory:
    """Client factory handing out Stubber-backed S3 clients, one per region.

    `script` maps a region to callables that queue responses on that region's stubber.
    """

    def __init__(self, script: Dict[str, List]):
        self.script = script
        self.regions: List[str] = []
        self.stubbers: Dict[str, Stubber] = {}

    def __call__(self, region: str):
        self.regions.append(region)
        client = boto3.client(
            "s3",
            region_name=region,
            aws_access_key_id="testing",
            aws_secret_access_key="testing",
        )
        stubber = Stubber(client)
        for queue_response in self.script.get(region, []):
            queue_response(stubber)
        stubber.activate()
        self.stubbers[region] = stubber
        return client


def region_redirect(method: str, region: str = None):
    response_meta = {"HTTPHeaders": {"x-amz-bucket-region": region}} if region else None
    return lambda stubber: stubber.add_client_error(
        method,
        service_error_code="PermanentRedirect",
        service_message="The bucket you are attempting to access must be addressed using the specified endpoint.",
        http_status_code=301,
        response_meta=response_meta,
    )


def client_error(method: str, code: str, http_status: int):
    return lambda stubber: stubber.add_client_error(
        method,
        service_error_code=code,
        service_message=code,
        http_status_code=http_status,
    )


def put_ok(etag: str = '"9b2cf535f27731c974343645a3985328"', version_id: str = "v1"):
    return lambda stubber: stubber.add_response("put_object", {"ETag": etag, "VersionId": version_id})


def head_ok(size: int, etag: str = '"9b2cf535f27731c974343645a3985328"'):
    return lambda stubber: stubber.add_response(
        "head_object",
        {"ContentLength": size, "ETag": etag, "ContentType": "application/pdf"},
    )


def delete_ok():
    return lambda stubber: stubber.add_response("delete_object", {})
