"""
S3 storage utilities for organization files.
Handles encrypted uploads, presigned download URLs, listing and deletion.
"""

import logging
import re
from datetime import datetime
from typing import Optional

import boto3
from botocore.client import Config
from botocore.exceptions import BotoCoreError, ClientError

from ..config import (
    AWS_ACCESS_KEY_ID,
    AWS_REGION,
    AWS_S3_BUCKET_NAME,
    AWS_S3_KMS_KEY_ID,
    AWS_SECRET_ACCESS_KEY,
)

logger = logging.getLogger(__name__)

MAX_UPLOAD_SIZE_BYTES = 25 * 1024 * 1024  # 25MB
PRESIGNED_URL_EXPIRY_SECONDS = 3600


class StorageNotConfiguredError(Exception):
    """AWS credentials or bucket are missing"""


class StorageError(Exception):
    """An S3 call failed"""


def is_configured() -> bool:
    return bool(AWS_ACCESS_KEY_ID and AWS_SECRET_ACCESS_KEY and AWS_S3_BUCKET_NAME)


def get_s3_client():
    """Get configured boto3 client for S3"""
    if not is_configured():
        raise StorageNotConfiguredError(
            "AWS S3 is not configured. Set AWS_ACCESS_KEY_ID, AWS_SECRET_ACCESS_KEY and AWS_S3_BUCKET_NAME."
        )
    return boto3.client(
        "s3",
        aws_access_key_id=AWS_ACCESS_KEY_ID,
        aws_secret_access_key=AWS_SECRET_ACCESS_KEY,
        config=Config(signature_version="s3v4"),
        region_name=AWS_REGION,
    )


def encryption_params(kms_key_id: Optional[str] = None) -> dict:
    """SSE-KMS when a key id is configured, otherwise SSE-S3"""
    kms_key_id = kms_key_id if kms_key_id is not None else AWS_S3_KMS_KEY_ID
    if kms_key_id:
        return {"ServerSideEncryption": "aws:kms", "SSEKMSKeyId": kms_key_id}
    return {"ServerSideEncryption": "AES256"}


def sanitize_key_part(value: str) -> str:
    """Make a user supplied name safe as one segment of an S3 key"""
    value = re.sub(r"[/\\]", "_", value)
    value = re.sub(r"[\x00-\x1f\x7f]", "", value)
    return value.strip()[:200]


def generate_file_key(organization_id: int, user_id: int, filename: str, folder: Optional[str] = None) -> str:
    """
    Generate a unique key for an uploaded file.

    Format: org/{organization_id}/users/{user_id}/[{folder}/]{timestamp}-{filename}
    """
    timestamp = datetime.utcnow().strftime("%Y%m%d%H%M%S%f")
    folder_segment = f"{sanitize_key_part(folder)}/" if folder and sanitize_key_part(folder) else ""
    safe_name = sanitize_key_part(filename) or "file"
    return f"org/{organization_id}/users/{user_id}/{folder_segment}{timestamp}-{safe_name}"


def upload_object(
    file_content: bytes,
    key: str,
    content_type: Optional[str] = None,
    metadata: Optional[dict] = None,
    s3_client=None,
) -> str:
    """
    Upload bytes to the private bucket with server-side encryption.

    Returns:
        The S3 key
    """
    s3_client = s3_client or get_s3_client()
    extra_args = {**encryption_params()}
    if content_type:
        extra_args["ContentType"] = content_type
    if metadata:
        extra_args["Metadata"] = metadata

    try:
        s3_client.put_object(Bucket=AWS_S3_BUCKET_NAME, Key=key, Body=file_content, **extra_args)
    except (ClientError, BotoCoreError) as e:
        logger.error(f"❌ Error uploading {key} to S3: {e}")
        raise StorageError(f"Failed to upload file: {e}") from e

    logger.info(f"✅ Uploaded {key} to S3 ({len(file_content)} bytes)")
    return key


def generate_presigned_url(key: str, expires_in: int = PRESIGNED_URL_EXPIRY_SECONDS, s3_client=None) -> str:
    """Temporary GET URL for a private object"""
    s3_client = s3_client or get_s3_client()
    try:
        return s3_client.generate_presigned_url(
            "get_object",
            Params={"Bucket": AWS_S3_BUCKET_NAME, "Key": key},
            ExpiresIn=expires_in,
        )
    except (ClientError, BotoCoreError) as e:
        logger.error(f"❌ Error generating presigned URL for {key}: {e}")
        raise StorageError(f"Failed to generate download URL: {e}") from e


def list_objects(prefix: str, max_keys: int = 100, continuation_token: Optional[str] = None, s3_client=None) -> dict:
    s3_client = s3_client or get_s3_client()
    params = {"Bucket": AWS_S3_BUCKET_NAME, "Prefix": prefix, "MaxKeys": max_keys}
    if continuation_token:
        params["ContinuationToken"] = continuation_token

    try:
        response = s3_client.list_objects_v2(**params)
    except (ClientError, BotoCoreError) as e:
        logger.error(f"❌ Error listing S3 prefix {prefix}: {e}")
        raise StorageError(f"Failed to list files: {e}") from e

    return {
        "objects": [
            {"key": obj.get("Key", ""), "size": obj.get("Size", 0), "last_modified": obj.get("LastModified")}
            for obj in response.get("Contents", [])
        ],
        "next_token": response.get("NextContinuationToken"),
        "is_truncated": response.get("IsTruncated", False),
    }


def delete_object(key: str, s3_client=None) -> None:
    s3_client = s3_client or get_s3_client()
    try:
        s3_client.delete_object(Bucket=AWS_S3_BUCKET_NAME, Key=key)
    except (ClientError, BotoCoreError) as e:
        logger.error(f"❌ Error deleting {key} from S3: {e}")
        raise StorageError(f"Failed to delete file: {e}") from e
    logger.info(f"🗑️ Deleted {key} from S3")


def get_connection_status(s3_client=None) -> dict:
    """Check the bucket is reachable with the current credentials"""
    try:
        s3_client = s3_client or get_s3_client()
        s3_client.head_bucket(Bucket=AWS_S3_BUCKET_NAME)
    except StorageNotConfiguredError:
        return {"configured": False, "connected": False, "message": "AWS S3 is not configured yet."}
    except (ClientError, BotoCoreError) as e:
        logger.warning(f"⚠️ S3 connection check failed: {e}")
        return {
            "configured": True,
            "connected": False,
            "message": "Unable to connect to AWS S3. Check bucket access and credentials.",
        }
    return {"configured": True, "connected": True, "message": None}
