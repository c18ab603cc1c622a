"""
Object store gateway over one S3-compatible bucket.

Two namespaces share the bucket: temp/ holds uploads that are still under review,
uploads/ holds committed objects. Callers only ever see the bare key
(<epoch-millis>-<uuid>[.<ext>]); the prefix is added here.
"""
import logging
import time
import uuid
from dataclasses import dataclass
from typing import Any

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from app.core.config import Settings
from app.core.errors import NotFoundError, StorageError

logger = logging.getLogger(__name__)

TEMP_PREFIX = "temp/"
PERMANENT_PREFIX = "uploads/"
NAMESPACE_TEMP = "temp"
NAMESPACE_PERMANENT = "permanent"

_NOT_FOUND_CODES = {"404", "NoSuchKey", "NotFound"}


@dataclass(frozen=True)
class UploadResult:
    file_key: str
    temp_key: str
    url: str


@dataclass(frozen=True)
class RetrieveResult:
    stream: Any  # botocore StreamingBody (read / iter_chunks)
    content_type: str
    content_length: int
    namespace: str


def _is_not_found(exc: ClientError) -> bool:
    code = str(exc.response.get("Error", {}).get("Code", ""))
    return code in _NOT_FOUND_CODES


def generate_file_key(original_filename: str | None) -> str:
    """<epoch-millis>-<uuid4>[.<ext>]; collisions are left to UUID entropy."""
    timestamp = int(time.time() * 1000)
    name = (original_filename or "").strip()
    extension = name.rsplit(".", 1)[-1].lower() if "." in name else ""
    return f"{timestamp}-{uuid.uuid4()}{'.' + extension if extension else ''}"


class ObjectStore:
    def __init__(self, client, bucket_name: str, public_base_url: str = "") -> None:
        self._client = client
        self._bucket = bucket_name
        self._public_base_url = public_base_url.rstrip("/")

    @classmethod
    def from_settings(cls, cfg: Settings) -> "ObjectStore":
        """Build a boto3 client from S3_* settings. Missing credentials fall back to the default chain."""
        kwargs: dict[str, Any] = {
            "service_name": "s3",
            "region_name": cfg.s3_region or "us-east-1",
        }
        if cfg.s3_endpoint:
            kwargs["endpoint_url"] = cfg.s3_endpoint
        if cfg.s3_access_key_id and cfg.s3_secret_access_key:
            kwargs.update(
                aws_access_key_id=cfg.s3_access_key_id,
                aws_secret_access_key=cfg.s3_secret_access_key,
            )
        else:
            logger.warning("S3 credentials not set; using the default AWS credential chain")
        if cfg.s3_force_path_style:
            kwargs["config"] = BotoConfig(s3={"addressing_style": "path"})
        client = boto3.client(**kwargs)
        base = cfg.s3_endpoint or f"https://s3.{cfg.s3_region or 'us-east-1'}.amazonaws.com"
        return cls(client, cfg.s3_bucket_name, f"{base.rstrip('/')}/{cfg.s3_bucket_name}")

    def _url(self, object_key: str) -> str:
        return f"{self._public_base_url}/{object_key}" if self._public_base_url else object_key

    def upload_temp(self, buffer: bytes, mimetype: str, original_filename: str | None) -> UploadResult:
        file_key = generate_file_key(original_filename)
        temp_key = f"{TEMP_PREFIX}{file_key}"
        try:
            self._client.put_object(
                Bucket=self._bucket,
                Key=temp_key,
                Body=buffer,
                ContentType=mimetype,
                Metadata={"originalFilename": (original_filename or "")[:256]},
            )
        except (BotoCoreError, ClientError) as e:
            logger.exception("S3 put failed for %s: %s", temp_key, e)
            raise StorageError(f"Upload to temporary storage failed: {e}") from e
        logger.info("Stored %s (%d bytes, %s)", temp_key, len(buffer), mimetype)
        return UploadResult(file_key=file_key, temp_key=temp_key, url=self._url(temp_key))

    def _get(self, object_key: str) -> dict | None:
        try:
            return self._client.get_object(Bucket=self._bucket, Key=object_key)
        except ClientError as e:
            if _is_not_found(e):
                return None
            raise StorageError(f"Retrieve failed: {e}") from e
        except BotoCoreError as e:
            raise StorageError(f"Retrieve failed: {e}") from e

    def retrieve(self, file_key: str) -> RetrieveResult | None:
        """Permanent copy first, then temp. None when the key exists in neither namespace."""
        for prefix, namespace in ((PERMANENT_PREFIX, NAMESPACE_PERMANENT), (TEMP_PREFIX, NAMESPACE_TEMP)):
            response = self._get(f"{prefix}{file_key}")
            if response is None or response.get("Body") is None:
                continue
            return RetrieveResult(
                stream=response["Body"],
                content_type=response.get("ContentType") or "application/octet-stream",
                content_length=response.get("ContentLength") or 0,
                namespace=namespace,
            )
        return None

    def _head(self, object_key: str) -> bool:
        try:
            self._client.head_object(Bucket=self._bucket, Key=object_key)
            return True
        except ClientError as e:
            if _is_not_found(e):
                return False
            raise StorageError(f"Existence check failed: {e}") from e
        except BotoCoreError as e:
            raise StorageError(f"Existence check failed: {e}") from e

    def exists(self, file_key: str) -> tuple[bool, str | None]:
        if self._head(f"{PERMANENT_PREFIX}{file_key}"):
            return True, NAMESPACE_PERMANENT
        if self._head(f"{TEMP_PREFIX}{file_key}"):
            return True, NAMESPACE_TEMP
        return False, None

    def commit(self, file_key: str) -> str:
        """
        Move temp/<key> to uploads/<key> by copy-then-delete.
        The permanent copy is authoritative: a failed temp delete is logged and the move still succeeds.
        """
        temp_key = f"{TEMP_PREFIX}{file_key}"
        permanent_key = f"{PERMANENT_PREFIX}{file_key}"
        if not self._head(temp_key):
            raise NotFoundError(f"Temp file not found: {temp_key}")
        try:
            self._client.copy_object(
                Bucket=self._bucket,
                CopySource={"Bucket": self._bucket, "Key": temp_key},
                Key=permanent_key,
            )
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"Copy to permanent storage failed: {e}") from e
        self.delete_temp(file_key)
        return permanent_key

    def delete_temp(self, file_key: str) -> bool:
        """Best-effort. Returns False instead of raising so business transitions never depend on cleanup."""
        temp_key = f"{TEMP_PREFIX}{file_key}"
        try:
            self._client.delete_object(Bucket=self._bucket, Key=temp_key)
            return True
        except (BotoCoreError, ClientError) as e:
            logger.warning("Temp delete failed for %s, left for reclamation: %s", temp_key, e)
            return False
