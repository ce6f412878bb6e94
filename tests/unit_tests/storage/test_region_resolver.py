import io
from datetime import datetime, timezone

import pytest

from documents_api.errors import BackendUnavailable, RegionMismatch
from documents_api.storage.region import RegionResolver
from documents_api.storage.s3 import S3Backend
from tests.fixtures.backends import StubbedClientFactory, head_ok, put_ok, region_redirect

FIXED_NOW = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)
CONTENT = b"%PDF-1.4 region test"


def make_backend(factory):
    return S3Backend(
        "compliance-documents-test",
        "us-east-1",
        client_factory=factory,
        clock=lambda: FIXED_NOW,
        retry_base_delay=0.0,
        retry_jitter=0.0,
    )


def test_region_mismatch_is_corrected_and_replayed_once():
    factory = StubbedClientFactory({
        "us-east-1": [region_redirect("put_object", "eu-west-1")],
        "eu-west-1": [put_ok(), head_ok(len(CONTENT)), head_ok(len(CONTENT))],
    })
    backend = make_backend(factory)

    result = backend.put("documents/a.pdf", io.BytesIO(CONTENT), len(CONTENT), "application/pdf")

    assert result.etag == '"9b2cf535f27731c974343645a3985328"'
    assert factory.regions == ["us-east-1", "eu-west-1"]
    assert backend.region == "eu-west-1"
    assert backend.corrected_region == "eu-west-1"
    assert backend.resolver.corrected.detected_at == FIXED_NOW
    factory.stubbers["us-east-1"].assert_no_pending_responses()

    # later calls go straight to the corrected region without detecting again
    assert backend.stat("documents/a.pdf").size == len(CONTENT)
    assert factory.regions == ["us-east-1", "eu-west-1"]
    factory.stubbers["eu-west-1"].assert_no_pending_responses()


def test_second_mismatch_after_correction_is_hard_failure():
    factory = StubbedClientFactory({
        "us-east-1": [region_redirect("head_object", "eu-west-1")],
        "eu-west-1": [region_redirect("head_object", "eu-central-1")],
    })
    backend = make_backend(factory)

    with pytest.raises(BackendUnavailable):
        backend.stat("documents/a.pdf")

    assert factory.regions == ["us-east-1", "eu-west-1"]


def test_mismatch_without_region_is_hard_failure():
    factory = StubbedClientFactory({"us-east-1": [region_redirect("head_object")]})
    backend = make_backend(factory)

    with pytest.raises(BackendUnavailable):
        backend.stat("documents/a.pdf")

    assert factory.regions == ["us-east-1"]
    assert backend.corrected_region is None


def test_resolver_replays_plain_callables():
    clients = []

    def factory(region):
        clients.append(region)
        return region

    calls = []

    def operation(client):
        calls.append(client)
        if client == "us-east-1":
            raise RegionMismatch("wrong region", region="us-west-2")
        return f"ok from {client}"

    resolver = RegionResolver("us-east-1", factory)

    assert resolver.call(operation) == "ok from us-west-2"
    assert resolver.call(operation) == "ok from us-west-2"
    assert calls == ["us-east-1", "us-west-2", "us-west-2"]
    assert clients == ["us-east-1", "us-west-2"]


def test_resolver_rejects_mismatch_naming_configured_region():
    resolver = RegionResolver("us-east-1", lambda region: region)

    def operation(client):
        raise RegionMismatch("wrong region", region="us-east-1")

    with pytest.raises(BackendUnavailable):
        resolver.call(operation)
