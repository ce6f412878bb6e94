"""Remote object backend on S3 (or any S3-compatible store)."""

import logging
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any, BinaryIO, Callable, Optional

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    ConnectionClosedError,
    ConnectTimeoutError,
    EndpointConnectionError,
    NoCredentialsError,
    ParamValidationError,
    PartialCredentialsError,
    ReadTimeoutError,
)

from documents_api.config.settings import Settings
from documents_api.errors import (
    AccessDenied,
    BackendUnavailable,
    IntegrityMismatch,
    InvalidInput,
    NotFound,
    ReconciliationRequired,
    RegionMismatch,
    StorageError,
    Transient,
)
from documents_api.schemas import StorageType
from documents_api.storage.base import (
    HealthStatus,
    ObjectInfo,
    PresignedURL,
    PutResult,
    StorageBackend,
)
from documents_api.storage.region import RegionResolver
from documents_api.utils.decorators import retry

if TYPE_CHECKING:
    from mypy_boto3_s3 import S3Client

logger = logging.getLogger(__name__)

# SigV4 presigned URLs cannot outlive seven days.
MAX_PRESIGN_TTL_SECONDS = 7 * 24 * 3600

REGION_MISMATCH_CODES = {
    "PermanentRedirect",
    "TemporaryRedirect",
    "AuthorizationHeaderMalformed",
    "IllegalLocationConstraintException",
    "301",
    "307",
}
ACCESS_DENIED_CODES = {
    "AccessDenied",
    "Forbidden",
    "403",
    "InvalidAccessKeyId",
    "SignatureDoesNotMatch",
    "ExpiredToken",
    "InvalidToken",
    "AccountProblem",
    "AllAccessDisabled",
}
NOT_FOUND_CODES = {"NoSuchKey", "NotFound", "404"}
TRANSIENT_CODES = {
    "InternalError",
    "ServiceUnavailable",
    "SlowDown",
    "RequestTimeout",
    "Throttling",
    "ThrottlingException",
    "500",
    "502",
    "503",
    "504",
}
TRANSIENT_BOTOCORE_ERRORS = (
    EndpointConnectionError,
    ConnectTimeoutError,
    ReadTimeoutError,
    ConnectionClosedError,
)


def classify_error(error: Exception, operation: str, bucket: str, key: Optional[str] = None) -> StorageError:
    """Translate a botocore exception into the engine's error taxonomy.

    Classification reads the structured error code, HTTP status and response headers
    only. The region of a mismatch comes from the `x-amz-bucket-region` header or the
    `Region` field of the error body; it is never inferred.
    """
    target = f"s3://{bucket}/{key}" if key else f"s3://{bucket}"
    backend = StorageType.REMOTE.value

    if isinstance(error, ClientError):
        response = error.response or {}
        details = response.get("Error", {})
        metadata = response.get("ResponseMetadata", {})
        code = str(details.get("Code") or metadata.get("HTTPStatusCode") or "")
        http_status = metadata.get("HTTPStatusCode")
        message = details.get("Message") or str(error)
        description = f"{operation} on {target} failed ({code}): {message}"

        if code in REGION_MISMATCH_CODES or http_status in (301, 307):
            headers = metadata.get("HTTPHeaders", {}) or {}
            region = headers.get("x-amz-bucket-region") or details.get("Region")
            return RegionMismatch(description, region=region, code=code, backend=backend)
        if code in ACCESS_DENIED_CODES or http_status == 403:
            return AccessDenied(description, code=code, backend=backend)
        # a 404 on a bucket level call (no key) means the bucket itself is missing
        if code == "NoSuchBucket" or (key is None and (code in NOT_FOUND_CODES or http_status == 404)):
            return BackendUnavailable(description, code=code, backend=backend)
        if code in NOT_FOUND_CODES or http_status == 404:
            return NotFound(f"Object not found: {target}", code=code, backend=backend)
        if code in TRANSIENT_CODES or (http_status is not None and http_status >= 500):
            return Transient(description, code=code, backend=backend)
        return BackendUnavailable(description, code=code, backend=backend)

    if isinstance(error, TRANSIENT_BOTOCORE_ERRORS):
        return Transient(f"{operation} on {target} failed: {error}", code=type(error).__name__, backend=backend)
    if isinstance(error, (NoCredentialsError, PartialCredentialsError)):
        return AccessDenied(f"{operation} on {target} failed: {error}", code=type(error).__name__, backend=backend)
    if isinstance(error, ParamValidationError):
        return InvalidInput(f"{operation} on {target} rejected: {error}", code=type(error).__name__, backend=backend)
    return BackendUnavailable(f"{operation} on {target} failed: {error}", code=type(error).__name__, backend=backend)


class S3Backend(StorageBackend):
    """Stores documents in an S3 bucket.

    Every call goes through the region resolver and, for transient failures only, a
    bounded retry with exponential backoff. Region mismatches, access denials and
    transient errors are told apart by `classify_error` at this boundary.
    """

    storage_type = StorageType.REMOTE

    def __init__(
        self,
        bucket_name: str,
        region: str,
        *,
        endpoint_url: Optional[str] = None,
        aws_access_key_id: Optional[str] = None,
        aws_secret_access_key: Optional[str] = None,
        force_path_style: bool = False,
        server_side_encryption: Optional[str] = "AES256",
        connect_timeout: float = 5.0,
        read_timeout: float = 30.0,
        retry_max_attempts: int = 3,
        retry_base_delay: float = 0.2,
        retry_backoff: float = 2.0,
        retry_jitter: float = 0.1,
        client_factory: Optional[Callable[[str], Any]] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.bucket_name = bucket_name
        self.endpoint_url = endpoint_url
        self.server_side_encryption = server_side_encryption
        self._aws_access_key_id = aws_access_key_id
        self._aws_secret_access_key = aws_secret_access_key
        self._boto_config = BotoConfig(
            signature_version="s3v4",
            connect_timeout=connect_timeout,
            read_timeout=read_timeout,
            retries={"total_max_attempts": 1, "mode": "standard"},
            s3={"addressing_style": "path"} if force_path_style else None,
        )
        self.retry_max_attempts = retry_max_attempts
        self.retry_base_delay = retry_base_delay
        self.retry_backoff = retry_backoff
        self.retry_jitter = retry_jitter
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self.resolver = RegionResolver(region, client_factory or self._make_client, clock=self._clock)
        self.health: Optional[HealthStatus] = None

        logger.info("S3Backend initialized")
        logger.info(f"  Bucket: {bucket_name}")
        logger.info(f"  Region: {region}")
        logger.info(f"  Endpoint: {endpoint_url}")

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs) -> "S3Backend":
        return cls(
            bucket_name=settings.s3_bucket_name,
            region=settings.aws_region,
            endpoint_url=settings.aws_endpoint_url,
            aws_access_key_id=settings.aws_access_key_id,
            aws_secret_access_key=settings.aws_secret_access_key,
            force_path_style=settings.s3_force_path_style,
            server_side_encryption=settings.s3_server_side_encryption,
            connect_timeout=settings.connect_timeout_seconds,
            read_timeout=settings.read_timeout_seconds,
            retry_max_attempts=settings.retry_max_attempts,
            retry_base_delay=settings.retry_base_delay_seconds,
            retry_backoff=settings.retry_backoff_factor,
            retry_jitter=settings.retry_jitter_seconds,
            **kwargs,
        )

    def _make_client(self, region: str) -> "S3Client":
        return boto3.client(
            "s3",
            region_name=region,
            endpoint_url=self.endpoint_url,
            aws_access_key_id=self._aws_access_key_id,
            aws_secret_access_key=self._aws_secret_access_key,
            config=self._boto_config,
        )

    @property
    def region(self) -> str:
        return self.resolver.region

    @property
    def corrected_region(self) -> Optional[str]:
        corrected = self.resolver.corrected
        return corrected.region if corrected else None

    def _call(self, operation: str, fn: Callable[["S3Client"], Any], key: Optional[str] = None) -> Any:
        """Invoke `fn(client)` with classification, region correction and transient retries."""
        def invoke(client):
            try:
                return fn(client)
            except (ClientError, BotoCoreError) as e:
                raise classify_error(e, operation, self.bucket_name, key) from e

        def attempt():
            return self.resolver.call(invoke)

        attempt.__name__ = operation
        return retry(
            max_attempts=self.retry_max_attempts,
            delay=self.retry_base_delay,
            backoff=self.retry_backoff,
            jitter=self.retry_jitter,
            exceptions=(Transient,),
            logger_name=__name__,
        )(attempt)()

    def put(self, key: str, stream: BinaryIO, size: int, mime_type: str,
            metadata: Optional[dict] = None) -> PutResult:
        start = stream.tell()

        def put_object(client):
            # each retry must resend the body from its first byte
            stream.seek(start)
            params = {
                "Bucket": self.bucket_name,
                "Key": key,
                "Body": stream,
                "ContentLength": size,
                "ContentType": mime_type or "application/octet-stream",
            }
            if self.server_side_encryption:
                params["ServerSideEncryption"] = self.server_side_encryption
            if metadata:
                params["Metadata"] = {k: str(v) for k, v in metadata.items()}
            return client.put_object(**params)

        response = self._call("put_object", put_object, key)
        try:
            info = self.stat(key)
        except StorageError as e:
            logger.error(f"Could not verify s3://{self.bucket_name}/{key} after upload, removing it: "
                         f"{type(e).__name__}: {e}")
            self._discard(key, e)
            raise
        if info.size != size:
            logger.error(f"Size mismatch for s3://{self.bucket_name}/{key}: declared {size}, stored {info.size}")
            mismatch = IntegrityMismatch(
                f"S3 stored {info.size} bytes for {key} but {size} were declared",
                backend=self.name,
            )
            self._discard(key, mismatch)
            raise mismatch

        logger.info(f"Uploaded {size} bytes to S3 as {key}")
        return PutResult(
            storage_key=key,
            size=info.size,
            etag=response.get("ETag") or info.etag,
            version_id=response.get("VersionId") or info.version_id,
        )

    def _discard(self, key: str, cause: StorageError) -> None:
        """Remove an object written by `put` that could not be verified.

        Skips the existence check `delete` does, since HeadObject may be the very call
        that is failing.
        """
        try:
            self._call(
                "delete_object",
                lambda client: client.delete_object(Bucket=self.bucket_name, Key=key),
                key,
            )
        except StorageError as cleanup_error:
            logger.critical(f"Unverified object s3://{self.bucket_name}/{key} is orphaned: {cleanup_error}")
            raise ReconciliationRequired(
                f"Upload of {key} could not be verified ({type(cause).__name__}: {cause}) "
                f"and the object could not be removed: {cleanup_error}",
                storage_key=key,
                code=cleanup_error.code,
                backend=self.name,
            ) from cleanup_error
        logger.info(f"Removed unverified S3 object: {key}")

    def get(self, key: str) -> BinaryIO:
        response = self._call(
            "get_object",
            lambda client: client.get_object(Bucket=self.bucket_name, Key=key),
            key,
        )
        return response["Body"]

    def stat(self, key: str) -> ObjectInfo:
        response = self._call(
            "head_object",
            lambda client: client.head_object(Bucket=self.bucket_name, Key=key),
            key,
        )
        return ObjectInfo(
            size=response["ContentLength"],
            etag=response.get("ETag"),
            version_id=response.get("VersionId"),
            content_type=response.get("ContentType"),
        )

    def delete(self, key: str) -> None:
        # S3 reports success for missing keys, so existence is checked first
        self.stat(key)
        self._call(
            "delete_object",
            lambda client: client.delete_object(Bucket=self.bucket_name, Key=key),
            key,
        )
        logger.info(f"Deleted S3 object: {key}")

    def presign(self, key: str, ttl_seconds: int) -> PresignedURL:
        if ttl_seconds <= 0 or ttl_seconds > MAX_PRESIGN_TTL_SECONDS:
            raise InvalidInput(
                f"Presigned URL lifetime must be between 1 and {MAX_PRESIGN_TTL_SECONDS} seconds",
                backend=self.name,
            )
        # confirms the object exists and settles the bucket region before signing
        self.stat(key)
        issued_at = self._clock()
        url = self._call(
            "generate_presigned_url",
            lambda client: client.generate_presigned_url(
                "get_object",
                Params={"Bucket": self.bucket_name, "Key": key},
                ExpiresIn=ttl_seconds,
            ),
            key,
        )
        logger.info(f"Generated signed URL for {key}, expires in {ttl_seconds}s")
        return PresignedURL(
            url=url,
            storage_key=key,
            expires_at=issued_at + timedelta(seconds=ttl_seconds),
            ttl_seconds=ttl_seconds,
        )

    def health_check(self) -> HealthStatus:
        try:
            self._call("head_bucket", lambda client: client.head_bucket(Bucket=self.bucket_name))
            status = HealthStatus.ok()
        except StorageError as e:
            logger.error(f"S3 bucket {self.bucket_name} is not accessible: {type(e).__name__}: {e}")
            status = HealthStatus.degraded(f"{type(e).__name__}: {e}")
        self.health = status
        return status

    @property
    def is_degraded(self) -> bool:
        """True once a health check has reported the bucket unusable."""
        health = self.health
        return health is not None and not health.healthy

    def describe(self) -> str:
        return f"bucket={self.bucket_name} region={self.region}"
