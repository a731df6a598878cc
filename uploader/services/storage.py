import heapq
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional, Protocol
from urllib.parse import quote

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError, NoCredentialsError

from ..core.config import Settings
from ..core.errors import ObjectNotFound, StorageConfigError, StorageError

log = logging.getLogger(__name__)

NOT_FOUND_CODES = {"404", "NoSuchKey", "NotFound"}
CONFIG_ERROR_CODES = {
    "NoSuchBucket",
    "InvalidAccessKeyId",
    "SignatureDoesNotMatch",
    "AccessDenied",
    "InvalidToken",
    "ExpiredToken",
}

def now_utc(): return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ObjectInfo:
    key: str
    size: int
    content_type: Optional[str]
    last_modified: datetime
    metadata: Dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class ObjectSummary:
    key: str
    size: int
    last_modified: datetime


class ObjectStore(Protocol):
    def put(
        self,
        key: str,
        data: bytes,
        content_type: str,
        metadata: Dict[str, str],
        cache_control: Optional[str] = None,
        content_disposition: Optional[str] = None,
    ) -> str: ...

    def head(self, key: str) -> ObjectInfo: ...

    def list(self, prefix: str, max_keys: int) -> List[ObjectSummary]: ...

    def url_for(self, key: str) -> str: ...


def _client_error_code(e: ClientError) -> str:
    return str(e.response.get("Error", {}).get("Code", ""))


def _translate(e: Exception, key: Optional[str] = None) -> StorageError:
    if isinstance(e, NoCredentialsError):
        return StorageConfigError(f"no_credentials: {e}")
    if isinstance(e, ClientError):
        code = _client_error_code(e)
        if code in NOT_FOUND_CODES:
            return ObjectNotFound(key or code)
        if code in CONFIG_ERROR_CODES:
            return StorageConfigError(f"{code}: {e}")
    return StorageError(f"storage_failed: {e}")


class S3ObjectStore:
    def __init__(self, client, bucket: Optional[str], region: str, public_base_url: Optional[str] = None):
        self.client = client
        self.bucket = bucket
        self.region = region
        self.public_base_url = public_base_url

    def _require_bucket(self) -> str:
        if not self.bucket:
            raise StorageConfigError("AWS_S3_BUCKET is not configured")
        return self.bucket

    def url_for(self, key: str) -> str:
        if self.public_base_url:
            return f"{self.public_base_url.rstrip('/')}/{quote(key)}"
        return f"https://{self.bucket}.s3.{self.region}.amazonaws.com/{quote(key)}"

    def put(
        self,
        key: str,
        data: bytes,
        content_type: str,
        metadata: Dict[str, str],
        cache_control: Optional[str] = None,
        content_disposition: Optional[str] = None,
    ) -> str:
        params = {
            "Bucket": self._require_bucket(),
            "Key": key,
            "Body": data,
            "ContentType": content_type,
            "Metadata": metadata,
        }
        if cache_control:
            params["CacheControl"] = cache_control
        if content_disposition:
            params["ContentDisposition"] = content_disposition
        try:
            self.client.put_object(**params)
        except (BotoCoreError, ClientError) as e:
            raise _translate(e, key) from e
        return self.url_for(key)

    def head(self, key: str) -> ObjectInfo:
        try:
            res = self.client.head_object(Bucket=self._require_bucket(), Key=key)
        except (BotoCoreError, ClientError) as e:
            raise _translate(e, key) from e
        return ObjectInfo(
            key=key,
            size=res.get("ContentLength", 0),
            content_type=res.get("ContentType"),
            last_modified=res["LastModified"],
            metadata=res.get("Metadata") or {},
        )

    def list(self, prefix: str, max_keys: int) -> List[ObjectSummary]:
        """
        Return the `max_keys` most recently modified objects under `prefix`,
        newest first. S3 lists in key order, so every page is scanned.
        """
        bucket = self._require_bucket()
        paginator = self.client.get_paginator("list_objects_v2")
        try:
            objects = (
                ObjectSummary(key=o["Key"], size=o["Size"], last_modified=o["LastModified"])
                for page in paginator.paginate(Bucket=bucket, Prefix=prefix)
                for o in page.get("Contents", [])
            )
            return heapq.nlargest(max_keys, objects, key=lambda o: (o.last_modified, o.key))
        except (BotoCoreError, ClientError) as e:
            raise _translate(e) from e


class InMemoryObjectStore:
    """Process-local store for development and tests."""

    def __init__(self, public_base_url: str = "http://localhost:5000/files"):
        self.public_base_url = public_base_url
        self._objects: Dict[str, tuple] = {}
        self._lock = threading.Lock()

    def url_for(self, key: str) -> str:
        return f"{self.public_base_url.rstrip('/')}/{quote(key)}"

    def put(
        self,
        key: str,
        data: bytes,
        content_type: str,
        metadata: Dict[str, str],
        cache_control: Optional[str] = None,
        content_disposition: Optional[str] = None,
    ) -> str:
        info = ObjectInfo(
            key=key,
            size=len(data),
            content_type=content_type,
            last_modified=now_utc(),
            metadata={k.lower(): v for k, v in metadata.items()},
        )
        with self._lock:
            self._objects[key] = (info, bytes(data))
        return self.url_for(key)

    def head(self, key: str) -> ObjectInfo:
        with self._lock:
            entry = self._objects.get(key)
        if entry is None:
            raise ObjectNotFound(key)
        return entry[0]

    def get_bytes(self, key: str) -> bytes:
        """Stored body of `key`, for inspection in development and tests."""
        with self._lock:
            entry = self._objects.get(key)
        if entry is None:
            raise ObjectNotFound(key)
        return entry[1]

    def list(self, prefix: str, max_keys: int) -> List[ObjectSummary]:
        with self._lock:
            infos = [info for info, _ in self._objects.values() if info.key.startswith(prefix)]
        newest = heapq.nlargest(max_keys, infos, key=lambda o: (o.last_modified, o.key))
        return [ObjectSummary(key=o.key, size=o.size, last_modified=o.last_modified) for o in newest]


def build_s3_client(settings: Settings):
    region = settings.AWS_REGION
    return boto3.client(
        "s3",
        region_name=region,
        aws_access_key_id=settings.AWS_ACCESS_KEY_ID,
        aws_secret_access_key=settings.AWS_SECRET_ACCESS_KEY,
        endpoint_url=settings.AWS_ENDPOINT_URL or f"https://s3.{region}.amazonaws.com",  # force regional endpoint
        config=Config(
            signature_version="s3v4",
            s3={"addressing_style": "virtual"}  # <bucket>.s3.<region>.amazonaws.com
        ),
    )


def build_object_store(settings: Settings) -> ObjectStore:
    if settings.STORAGE_BACKEND == "memory":
        log.info("Using in-memory object store")
        return InMemoryObjectStore(settings.PUBLIC_BASE_URL or f"http://localhost:{settings.PORT}/files")

    if not settings.AWS_S3_BUCKET:
        log.warning("AWS_S3_BUCKET is not set; storage calls will fail")
    return S3ObjectStore(
        client=build_s3_client(settings),
        bucket=settings.AWS_S3_BUCKET,
        region=settings.AWS_REGION,
        public_base_url=settings.PUBLIC_BASE_URL,
    )
