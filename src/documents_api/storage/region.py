"""Transparent correction of a wrong bucket region for the remote backend."""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Optional, TypeVar

from documents_api.errors import BackendUnavailable, RegionMismatch

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class CorrectedRegion:
    region: str
    detected_at: datetime


class RegionResolver:
    """Owns the object-store client and swaps it when the bucket reports another region.

    Every remote call goes through `call`. On a region mismatch the client is rebuilt
    for the region named in the error metadata and the call is replayed exactly once.
    The corrected region is kept for the lifetime of the resolver, so later calls go
    straight to the right region. A second mismatch after correcting is a hard failure.

    Two requests detecting the same mismatch concurrently may both rebuild the client;
    both write the same region, so the race is harmless.
    """

    def __init__(self, configured_region: str, client_factory: Callable[[str], Any],
                 clock: Optional[Callable[[], datetime]] = None):
        self.configured_region = configured_region
        self._client_factory = client_factory
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._corrected: Optional[CorrectedRegion] = None
        self._client = client_factory(configured_region)

    @property
    def region(self) -> str:
        corrected = self._corrected
        return corrected.region if corrected else self.configured_region

    @property
    def corrected(self) -> Optional[CorrectedRegion]:
        return self._corrected

    @property
    def client(self) -> Any:
        return self._client

    def call(self, fn: Callable[[Any], T]) -> T:
        """Run `fn(client)`, correcting the region once if the store asks for it."""
        region_used = self.region
        try:
            return fn(self._client)
        except RegionMismatch as mismatch:
            target = mismatch.region
            if not target:
                raise BackendUnavailable(
                    f"Bucket is not in region {region_used} and the store did not report its region",
                    code=mismatch.code,
                    backend=mismatch.backend,
                ) from mismatch
            if target == region_used:
                raise BackendUnavailable(
                    f"Store reported a region mismatch but names the configured region {target}",
                    code=mismatch.code,
                    backend=mismatch.backend,
                ) from mismatch
            if self.region != target:
                self._reconfigure(region_used, target)

        try:
            return fn(self._client)
        except RegionMismatch as second:
            raise BackendUnavailable(
                f"Bucket still reports a region mismatch after switching to {target}",
                code=second.code,
                backend=second.backend,
            ) from second

    def _reconfigure(self, old_region: str, new_region: str) -> None:
        logger.warning(
            f"Region mismatch detected: client configured for {old_region}, bucket lives in {new_region}. "
            f"Reconfiguring client; set AWS_DEFAULT_REGION={new_region} to skip detection"
        )
        self._client = self._client_factory(new_region)
        self._corrected = CorrectedRegion(region=new_region, detected_at=self._clock())
