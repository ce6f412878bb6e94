"""Local filesystem backend, used as the durable fallback for the remote store."""

import logging
import os
import shutil
import tempfile
from pathlib import Path
from typing import BinaryIO, Optional, Union

from documents_api.errors import (
    BackendUnavailable,
    IntegrityMismatch,
    InvalidInput,
    NotFound,
    Unsupported,
)
from documents_api.schemas import StorageType
from documents_api.storage.base import (
    CHUNK_SIZE,
    HealthStatus,
    ObjectInfo,
    PresignedURL,
    PutResult,
    StorageBackend,
)

logger = logging.getLogger(__name__)


class LocalBackend(StorageBackend):
    """Stores objects as files under a root directory.

    Writes go to a temporary file in the destination directory and are renamed into
    place once complete, so a partially written file is never visible at its key.
    """

    storage_type = StorageType.LOCAL

    def __init__(self, root: Union[str, Path]):
        self.root = Path(root).resolve()
        self.root.mkdir(parents=True, exist_ok=True)
        logger.info(f"LocalBackend initialized at: {self.root}")

    def _resolve(self, key: str) -> Path:
        if not key or key.startswith("/") or "\\" in key:
            raise InvalidInput(f"Invalid storage key: {key!r}", backend=self.name)
        path = (self.root / key).resolve()
        if self.root not in path.parents:
            raise InvalidInput(f"Storage key escapes the storage root: {key!r}", backend=self.name)
        return path

    def put(self, key: str, stream: BinaryIO, size: int, mime_type: str,
            metadata: Optional[dict] = None) -> PutResult:
        dest_path = self._resolve(key)
        tmp_name = None
        try:
            dest_path.parent.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                dir=dest_path.parent, prefix=".upload-", suffix=".tmp", delete=False
            ) as tmp:
                tmp_name = tmp.name
                written = 0
                while True:
                    chunk = stream.read(CHUNK_SIZE)
                    if not chunk:
                        break
                    tmp.write(chunk)
                    written += len(chunk)
                tmp.flush()
                os.fsync(tmp.fileno())

            if written != size:
                raise IntegrityMismatch(
                    f"Wrote {written} bytes for {key} but {size} were declared",
                    backend=self.name,
                )

            os.replace(tmp_name, dest_path)
            tmp_name = None
        except OSError as e:
            raise BackendUnavailable(f"Local storage write failed for {key}: {e}", backend=self.name) from e
        finally:
            if tmp_name is not None:
                Path(tmp_name).unlink(missing_ok=True)

        logger.info(f"Stored {written} bytes in local storage as {key}")
        return PutResult(storage_key=key, size=written)

    def get(self, key: str) -> BinaryIO:
        path = self._resolve(key)
        try:
            return open(path, "rb")
        except FileNotFoundError as e:
            raise NotFound(f"File not found in local storage: {key}", backend=self.name) from e
        except OSError as e:
            raise BackendUnavailable(f"Local storage read failed for {key}: {e}", backend=self.name) from e

    def delete(self, key: str) -> None:
        path = self._resolve(key)
        try:
            path.unlink()
        except FileNotFoundError as e:
            raise NotFound(f"File not found in local storage: {key}", backend=self.name) from e
        except OSError as e:
            raise BackendUnavailable(f"Local storage delete failed for {key}: {e}", backend=self.name) from e
        logger.info(f"Deleted local file: {key}")

    def stat(self, key: str) -> ObjectInfo:
        path = self._resolve(key)
        try:
            return ObjectInfo(size=path.stat().st_size)
        except FileNotFoundError as e:
            raise NotFound(f"File not found in local storage: {key}", backend=self.name) from e

    def presign(self, key: str, ttl_seconds: int) -> PresignedURL:
        raise Unsupported("Local storage cannot issue presigned URLs", backend=self.name)

    def describe(self) -> str:
        return f"root={self.root}"

    def health_check(self) -> HealthStatus:
        if not self.root.is_dir():
            return HealthStatus.degraded(f"storage root {self.root} does not exist")
        if not os.access(self.root, os.W_OK):
            return HealthStatus.degraded(f"storage root {self.root} is not writable")
        usage = shutil.disk_usage(self.root)
        if usage.free == 0:
            return HealthStatus.degraded(f"no free space left under {self.root}")
        return HealthStatus.ok()
