"""Signed download URLs for generated assets.

Outputs live in Cloudflare R2 (S3 API). Clients never see raw object keys
alone: before a payload is returned, every storage reference in it is
materialized into a short-lived presigned URL.
"""

import asyncio
from typing import Any, Protocol

import boto3
import structlog
from botocore.config import Config

logger = structlog.get_logger()

# Fields that identify an object in storage
STORAGE_KEY_FIELDS = ("key", "cf_r2_key", "asset_key")
STORAGE_BUCKET_FIELDS = ("bucket", "asset_bucket")
EPHEMERAL_MARKER = "ephemeral"


class StorageSigner(Protocol):
    """Signed-URL capability."""

    async def generate_presigned_download_url(self, key: str, expires_in: int) -> str: ...

    async def generate_ephemeral_presigned_download_url(self, key: str, expires_in: int) -> str: ...


class R2StorageSigner:
    """StorageSigner against Cloudflare R2 using boto3."""

    def __init__(
        self,
        endpoint_url: str,
        access_key_id: str,
        secret_access_key: str,
        bucket: str,
        ephemeral_bucket: str,
        client: Any = None,
    ):
        """Initialize signer.

        Args:
            endpoint_url: R2 S3 endpoint (https://<account>.r2.cloudflarestorage.com)
            access_key_id: R2 access key
            secret_access_key: R2 secret key
            bucket: Bucket holding durable outputs
            ephemeral_bucket: Bucket holding short-lived intermediate outputs
            client: Optional preconfigured S3 client (tests inject a stub)
        """
        self.bucket = bucket
        self.ephemeral_bucket = ephemeral_bucket
        self.client = client or boto3.client(
            "s3",
            endpoint_url=endpoint_url or None,
            aws_access_key_id=access_key_id or None,
            aws_secret_access_key=secret_access_key or None,
            region_name="auto",
            config=Config(signature_version="s3v4"),
        )

    @classmethod
    def from_settings(cls, settings) -> "R2StorageSigner":
        return cls(
            endpoint_url=settings.r2_endpoint_url,
            access_key_id=settings.r2_access_key_id,
            secret_access_key=settings.r2_secret_access_key,
            bucket=settings.r2_bucket,
            ephemeral_bucket=settings.r2_ephemeral_bucket,
        )

    async def _sign(self, bucket: str, key: str, expires_in: int) -> str:
        return await asyncio.to_thread(
            self.client.generate_presigned_url,
            "get_object",
            Params={"Bucket": bucket, "Key": key},
            ExpiresIn=expires_in,
        )

    async def generate_presigned_download_url(self, key: str, expires_in: int) -> str:
        return await self._sign(self.bucket, key, expires_in)

    async def generate_ephemeral_presigned_download_url(self, key: str, expires_in: int) -> str:
        return await self._sign(self.ephemeral_bucket, key, expires_in)


def _storage_key(node: dict[str, Any]) -> str | None:
    for field in STORAGE_KEY_FIELDS:
        value = node.get(field)
        if isinstance(value, str) and value:
            return value
    return None


def _is_ephemeral(node: dict[str, Any]) -> bool:
    for field in STORAGE_BUCKET_FIELDS:
        value = node.get(field)
        if isinstance(value, str) and EPHEMERAL_MARKER in value:
            return True
    return False


async def materialize_output_refs(value: Any, signer: StorageSigner, expires_in: int) -> Any:
    """Return a copy of value with a signed "url" added to every storage reference.

    A storage reference is any object carrying key, cf_r2_key or asset_key.
    References whose bucket/asset_bucket names an ephemeral bucket are signed
    on the ephemeral path. Nested objects and lists are walked recursively;
    the input is not modified.

    Args:
        value: Public payload (any JSON value)
        signer: Signed-URL capability
        expires_in: URL lifetime in seconds

    Returns:
        Materialized copy of value
    """
    if isinstance(value, list):
        return [await materialize_output_refs(item, signer, expires_in) for item in value]

    if not isinstance(value, dict):
        return value

    result = {k: await materialize_output_refs(v, signer, expires_in) for k, v in value.items()}

    key = _storage_key(value)
    if key is not None:
        if _is_ephemeral(value):
            result["url"] = await signer.generate_ephemeral_presigned_download_url(key, expires_in)
        else:
            result["url"] = await signer.generate_presigned_download_url(key, expires_in)
        logger.debug("storage.url_signed", key=key, ephemeral=_is_ephemeral(value))

    return result
