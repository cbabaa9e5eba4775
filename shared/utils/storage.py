"""
shared/utils/storage.py
S3/R2 object storage: uploads, deletes and time-limited signed download URLs.
Report and chat rows keep storage keys and URLs are minted at read time;
avatars live in a public bucket and profiles store their public URL.
"""

import logging
import mimetypes
import uuid
from typing import Optional

import boto3
from botocore.client import Config
from botocore.exceptions import ClientError

from config.settings import settings

logger = logging.getLogger(__name__)

_client = None


def get_s3_client():
    """Lazily build a boto3 client for S3-compatible storage."""
    global _client
    if _client is None:
        _client = boto3.client(
            "s3",
            endpoint_url=settings.S3_ENDPOINT_URL or None,
            aws_access_key_id=settings.S3_ACCESS_KEY_ID or None,
            aws_secret_access_key=settings.S3_SECRET_ACCESS_KEY or None,
            config=Config(signature_version="s3v4"),
            region_name=settings.S3_REGION,
        )
    return _client


def media_kind(content_type: Optional[str]) -> Optional[str]:
    """'image' / 'video' for accepted media, None for anything else."""
    if not content_type:
        return None
    major = content_type.split("/", 1)[0]
    return major if major in ("image", "video") else None


def file_extension(filename: Optional[str], content_type: Optional[str]) -> str:
    if filename and "." in filename:
        return filename.rsplit(".", 1)[-1].lower()
    guessed = mimetypes.guess_extension(content_type or "") or ""
    return guessed.lstrip(".") or "bin"


def build_report_key(order_id, draft_id: str, ext: str) -> str:
    return f"{order_id}/{draft_id}/{uuid.uuid4()}.{ext}"


def build_chat_key(dialog_id, ext: str) -> str:
    return f"{dialog_id}/{uuid.uuid4()}.{ext}"


def upload_object(bucket: str, key: str, body: bytes, content_type: Optional[str]) -> None:
    """Upload bytes. Raises ClientError on failure."""
    get_s3_client().put_object(
        Bucket=bucket,
        Key=key,
        Body=body,
        ContentType=content_type or "application/octet-stream",
    )


def generate_signed_url(bucket: str, key: str, expires_in: Optional[int] = None) -> Optional[str]:
    """Presigned GET URL, or None when signing fails."""
    try:
        return get_s3_client().generate_presigned_url(
            "get_object",
            Params={"Bucket": bucket, "Key": key},
            ExpiresIn=expires_in or settings.SIGNED_URL_TTL_SECONDS,
        )
    except ClientError as e:
        logger.warning(f"Signed URL generation failed for {bucket}/{key}: {e}")
        return None


def delete_object(bucket: str, key: str) -> bool:
    """Delete a stored file. Returns False (and logs) when storage refuses."""
    try:
        get_s3_client().delete_object(Bucket=bucket, Key=key)
        return True
    except ClientError as e:
        logger.warning(f"Delete failed for {bucket}/{key}: {e}")
        return False


# ── Avatars (public bucket) ───────────────────────────────────

def build_avatar_key(user_id, ext: str) -> str:
    return f"{user_id}/{uuid.uuid4().hex}.{ext}"


def public_url(bucket: str, key: str) -> str:
    base = (settings.S3_PUBLIC_URL or settings.S3_ENDPOINT_URL).rstrip("/")
    return f"{base}/{bucket}/{key}"


def key_from_public_url(bucket: str, url: Optional[str]) -> Optional[str]:
    """Storage key of a URL built by public_url(), None for foreign URLs."""
    if not url:
        return None
    marker = f"/{bucket}/"
    if marker not in url:
        return None
    return url.split(marker, 1)[1].split("?", 1)[0] or None
