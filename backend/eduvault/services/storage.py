from __future__ import annotations

import logging
import os
import uuid
from dataclasses import dataclass
from pathlib import Path

import boto3
from botocore.client import Config
from botocore.exceptions import BotoCoreError, ClientError

from eduvault.core import errors
from eduvault.core.config import settings


log = logging.getLogger(__name__)


@dataclass(frozen=True)
class BlobRef:
    """A binary addressed either by blob-store key or by media-root path."""

    blob_id: str | None = None
    file_path: str | None = None

    @classmethod
    def of(cls, *, blob_id=None, file_path=None) -> "BlobRef | None":
        blob_id = str(blob_id or "").strip() or None
        file_path = str(file_path or "").strip() or None
        if not blob_id and not file_path:
            return None
        return cls(blob_id=blob_id, file_path=file_path)


def get_s3_client(*, endpoint_url: str | None = None):
    ep = (endpoint_url or "").strip() or None
    # AWS S3 needs endpoint_url=None; MinIO and other S3-compatible stores need it set.
    return boto3.client(
        "s3",
        endpoint_url=ep or (str(settings.s3_endpoint_url or "").strip() or None),
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
            s3={
                "addressing_style": str(settings.s3_addressing_style),
            },
        ),
    )


def ensure_bucket_exists() -> None:
    s3 = get_s3_client()
    try:
        s3.head_bucket(Bucket=settings.s3_bucket)
    except ClientError:
        # Production buckets are provisioned out of band.
        if (settings.app_env or "").strip().lower() in {"prod", "production"}:
            raise
        s3.create_bucket(Bucket=settings.s3_bucket)


def _blob_key(*, prefix: str, filename: str | None) -> str:
    ext = os.path.splitext(str(filename or ""))[1].lower()[:10]
    return f"{prefix.strip('/')}/{uuid.uuid4().hex}{ext}"


def put_blob(stream, *, prefix: str, filename: str | None, content_type: str | None) -> str:
    """Store one binary under a fresh unique key and return that key."""
    key = _blob_key(prefix=prefix, filename=filename)
    extra: dict[str, object] = {}
    if content_type:
        extra["ContentType"] = content_type
    try:
        ensure_bucket_exists()
        s3 = get_s3_client()
        s3.upload_fileobj(stream, settings.s3_bucket, key, ExtraArgs=extra or None)
    except (BotoCoreError, ClientError) as e:
        log.error("put_blob failed: key=%s error=%s", key, e)
        raise errors.BackendError("blob upload failed", operation="put_blob", blob_id=key) from e
    return key


def open_blob(blob_id: str):
    """Return (chunk iterator, content type, content length) for a stored blob."""
    s3 = get_s3_client()
    try:
        obj = s3.get_object(Bucket=settings.s3_bucket, Key=blob_id)
    except ClientError as e:
        code = str((e.response or {}).get("Error", {}).get("Code") or "")
        if code in {"NoSuchKey", "404", "NotFound"}:
            raise errors.NotFoundError("file not found", blob_id=blob_id) from e
        raise errors.BackendError("blob download failed", operation="open_blob", blob_id=blob_id) from e
    except BotoCoreError as e:
        raise errors.BackendError("blob download failed", operation="open_blob", blob_id=blob_id) from e

    body = obj["Body"]
    length = obj.get("ContentLength")
    return body.iter_chunks(), obj.get("ContentType"), int(length) if length is not None else None


def delete_blob(blob_id: str) -> None:
    s3 = get_s3_client()
    s3.delete_object(Bucket=settings.s3_bucket, Key=blob_id)


def resolve_media_path(file_path: str) -> Path:
    """Map a stored filesystem-style reference onto the media root."""
    root = Path(settings.media_root).resolve()
    rel = str(file_path or "").strip().lstrip("/\\")
    if rel.startswith("uploads/"):
        rel = rel[len("uploads/"):]
    candidate = (root / rel).resolve()
    if candidate != root and root not in candidate.parents:
        raise errors.ValidationError("invalid file path", file_path=file_path)
    return candidate
