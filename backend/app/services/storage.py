from __future__ import annotations

import mimetypes
import pathlib
import threading
import uuid
from dataclasses import dataclass

import boto3
from botocore.client import Config
from botocore.exceptions import ClientError

from app.core.config import settings


@dataclass(frozen=True)
class UploadedFile:
    filename: str
    content: bytes
    content_type: str | None = None


def get_s3_client(*, endpoint_url: str | None = None):
    ep = (endpoint_url or "").strip() or None
    # For AWS S3, endpoint_url must be None.
    # For S3-compatible providers (MinIO/R2/YC), endpoint_url is required.
    return boto3.client(
        "s3",
        endpoint_url=ep or (str(getattr(settings, "s3_endpoint_url", "") or "").strip() or None),
        aws_access_key_id=settings.s3_access_key_id,
        aws_secret_access_key=settings.s3_secret_access_key,
        region_name=settings.s3_region_name,
        config=Config(
            signature_version="s3v4",
            connect_timeout=float(settings.s3_connect_timeout_seconds),
            read_timeout=float(settings.s3_read_timeout_seconds),
            retries={
                "max_attempts": int(settings.s3_max_attempts),
                "mode": "standard",
            },
            max_pool_connections=int(settings.s3_max_pool_connections),
            s3={
                "addressing_style": str(settings.s3_addressing_style),
            },
        ),
    )


def ensure_bucket_exists(s3=None, *, bucket: str | None = None) -> None:
    s3 = s3 or get_s3_client()
    bucket = bucket or settings.s3_bucket
    try:
        s3.head_bucket(Bucket=bucket)
        return
    except ClientError:
        env = (settings.app_env or "").strip().lower()
        # In production we should NOT auto-create buckets.
        if env in {"prod", "production"}:
            raise

    # AWS requires LocationConstraint for non-us-east-1.
    region = str(settings.s3_region_name or "").strip() or "us-east-1"
    is_aws = not str(settings.s3_endpoint_url or "").strip()
    if is_aws and region != "us-east-1":
        s3.create_bucket(
            Bucket=bucket,
            CreateBucketConfiguration={"LocationConstraint": region},
        )
    else:
        s3.create_bucket(Bucket=bucket)


def build_object_key(*, prefix: str, filename: str) -> str:
    ext = pathlib.Path(filename or "").suffix.lower()
    if ext and not ext[1:].isalnum():
        ext = ""
    return f"{prefix.strip('/')}/{uuid.uuid4().hex}{ext}"


class AssetStore:
    """S3-backed asset store.

    `upload` returns the object key, which is the stable asset reference kept
    in quiz records. `remove` is idempotent: deleting a missing key succeeds.
    """

    def __init__(self, s3=None, *, bucket: str | None = None):
        self._s3 = s3
        self.bucket = bucket or settings.s3_bucket
        self._bucket_checked = False
        self._client_lock = threading.Lock()

    @property
    def s3(self):
        # Removals run on pool threads; boto3's default session must build one client only once.
        if self._s3 is None:
            with self._client_lock:
                if self._s3 is None:
                    self._s3 = get_s3_client()
        return self._s3

    def _ensure_bucket(self) -> None:
        if self._bucket_checked:
            return
        ensure_bucket_exists(self.s3, bucket=self.bucket)
        self._bucket_checked = True

    def upload(self, prefix: str, file: UploadedFile) -> str:
        self._ensure_bucket()
        object_key = build_object_key(prefix=prefix, filename=file.filename)
        content_type = file.content_type or mimetypes.guess_type(file.filename or "")[0] or "application/octet-stream"
        self.s3.put_object(Bucket=self.bucket, Key=object_key, Body=file.content, ContentType=content_type)
        return object_key

    def remove(self, reference: str) -> None:
        key = str(reference or "").strip()
        if not key:
            return
        self.s3.delete_object(Bucket=self.bucket, Key=key)

    def ping(self) -> None:
        self.s3.head_bucket(Bucket=self.bucket)


def get_asset_store() -> AssetStore:
    return AssetStore()
