"""
S3 service for chat media uploads.

Clients upload directly to S3 using a presigned PUT URL; the resulting media
URL is then attached to a chat message. Provides a lazy-initialized boto3
client, presigned URL generation and media URL validation.
"""

import logging
import os
import time
import uuid
from typing import Dict, Optional

from friendsleague.utils.exceptions import BadRequestError, ServiceUnavailableError

logger = logging.getLogger(__name__)

# Lazy-initialized S3 client
_s3_client = None

MAX_FILE_SIZE_BYTES = 100 * 1024 * 1024  # 100MB
PRESIGNED_URL_EXPIRY_SECONDS = 15 * 60

# MIME type -> (storage category, file extension)
SUPPORTED_MIME_TYPES: Dict[str, tuple] = {
    # Images
    "image/jpeg": ("images", "jpg"),
    "image/jpg": ("images", "jpg"),
    "image/png": ("images", "png"),
    "image/gif": ("images", "gif"),
    "image/webp": ("images", "webp"),
    # Videos
    "video/mp4": ("videos", "mp4"),
    "video/quicktime": ("videos", "mov"),
    "video/x-msvideo": ("videos", "avi"),
    "video/webm": ("videos", "webm"),
    # Documents
    "application/pdf": ("documents", "pdf"),
    "application/msword": ("documents", "doc"),
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document": ("documents", "docx"),
    "application/vnd.ms-excel": ("documents", "xls"),
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet": ("documents", "xlsx"),
    "text/plain": ("documents", "txt"),
    # Voice notes
    "audio/m4a": ("audio", "m4a"),
    "audio/x-m4a": ("audio", "m4a"),
    "audio/mp4": ("audio", "m4a"),
    "audio/aac": ("audio", "aac"),
    "audio/mpeg": ("audio", "mp3"),
    "audio/wav": ("audio", "wav"),
    "audio/webm": ("audio", "webm"),
}


def _get_config():
    """Read S3 configuration from environment at call time (not import time)."""
    return {
        "access_key_id": os.getenv("AWS_ACCESS_KEY_ID"),
        "secret_access_key": os.getenv("AWS_SECRET_ACCESS_KEY"),
        "bucket": os.getenv("AWS_S3_BUCKET"),
        "region": os.getenv("AWS_S3_REGION", "us-west-2"),
        "cloudfront_url": (os.getenv("AWS_S3_CLOUDFRONT_URL") or "").rstrip("/") or None,
    }


def is_configured() -> bool:
    cfg = _get_config()
    return all([cfg["access_key_id"], cfg["secret_access_key"], cfg["bucket"]])


def _get_s3_client():
    """Get or create the boto3 S3 client. Lazy-imports boto3 to avoid import-time dependency."""
    global _s3_client
    if _s3_client is None:
        if not is_configured():
            raise ServiceUnavailableError(
                "Media uploads are not configured. "
                "Set AWS_ACCESS_KEY_ID, AWS_SECRET_ACCESS_KEY, and AWS_S3_BUCKET."
            )
        cfg = _get_config()
        import boto3

        _s3_client = boto3.client(
            "s3",
            aws_access_key_id=cfg["access_key_id"],
            aws_secret_access_key=cfg["secret_access_key"],
            region_name=cfg["region"],
        )
    return _s3_client


def _bucket_url(cfg: Dict) -> str:
    return f"https://{cfg['bucket']}.s3.{cfg['region']}.amazonaws.com"


def get_public_url(key: str) -> str:
    """Public URL for an object key, served through CloudFront when configured."""
    cfg = _get_config()
    base = cfg["cloudfront_url"] or _bucket_url(cfg)
    return f"{base}/{key}"


def build_media_key(file_type: str) -> str:
    """
    Object key for a new upload: media/{category}/{timestamp_ms}-{uuid}.{ext}

    Raises:
        BadRequestError: If the MIME type is not supported
    """
    if file_type not in SUPPORTED_MIME_TYPES:
        raise BadRequestError(f"Unsupported file type: {file_type}")
    category, extension = SUPPORTED_MIME_TYPES[file_type]
    timestamp = int(time.time() * 1000)
    return f"media/{category}/{timestamp}-{uuid.uuid4()}.{extension}"


def generate_presigned_upload_url(file_name: str, file_type: str, file_size: int) -> Dict:
    """
    Create a presigned PUT URL for uploading one media file.

    Args:
        file_name: Original file name (logged only)
        file_type: MIME type of the file
        file_size: Size in bytes

    Returns:
        Dict with upload_url, media_url and key

    Raises:
        BadRequestError: Unsupported type or file too large
        ServiceUnavailableError: S3 is not configured
    """
    key = build_media_key(file_type)
    if file_size > MAX_FILE_SIZE_BYTES:
        raise BadRequestError(
            f"File size exceeds maximum allowed size of {MAX_FILE_SIZE_BYTES // (1024 * 1024)}MB"
        )

    client = _get_s3_client()
    cfg = _get_config()
    upload_url = client.generate_presigned_url(
        "put_object",
        Params={
            "Bucket": cfg["bucket"],
            "Key": key,
            "ContentType": file_type,
            "ContentLength": file_size,
        },
        ExpiresIn=PRESIGNED_URL_EXPIRY_SECONDS,
    )
    logger.info(f"Issued presigned upload URL for '{file_name}' ({file_type}, {file_size} bytes): {key}")
    return {"upload_url": upload_url, "media_url": get_public_url(key), "key": key}


def validate_media_url(url: Optional[str]) -> bool:
    """True if the URL points into our bucket or CloudFront distribution."""
    if not url:
        return False
    cfg = _get_config()
    if cfg["bucket"] and url.startswith(_bucket_url(cfg) + "/"):
        return True
    return bool(cfg["cloudfront_url"]) and url.startswith(cfg["cloudfront_url"] + "/")
