from __future__ import annotations

import logging
from functools import lru_cache

import oss2

from storyprint.api.errors import AppError
from storyprint.core.config import settings

logger = logging.getLogger(__name__)


def _build_host(bucket: str, endpoint: str) -> str:
    endpoint = endpoint.strip()
    if endpoint.startswith("http://") or endpoint.startswith("https://"):
        base = endpoint
    else:
        base = f"https://{endpoint}"
    scheme, rest = base.split("://", 1)
    # Virtual-hosted-style: https://bucket.endpoint
    return f"{scheme}://{bucket}.{rest}"


def build_object_url(*, key: str) -> str:
    if settings.OSS_PUBLIC_BASE_URL:
        return f"{settings.OSS_PUBLIC_BASE_URL.rstrip('/')}/{key}"
    if not (settings.OSS_ENDPOINT and settings.OSS_BUCKET):
        raise AppError(code=500001, message="OSS not configured", status_code=500)
    host = _build_host(settings.OSS_BUCKET, settings.OSS_ENDPOINT)
    return f"{host}/{key}"


def _endpoint_for_sdk(endpoint: str) -> str:
    endpoint = endpoint.strip()
    if endpoint.startswith("http://") or endpoint.startswith("https://"):
        return endpoint
    return f"https://{endpoint}"


def _get_bucket() -> oss2.Bucket:
    if not (
        settings.OSS_ENDPOINT
        and settings.OSS_BUCKET
        and settings.OSS_ACCESS_KEY_ID
        and settings.OSS_ACCESS_KEY_SECRET
    ):
        raise AppError(code=500001, message="OSS not configured", status_code=500)
    auth = oss2.Auth(settings.OSS_ACCESS_KEY_ID, settings.OSS_ACCESS_KEY_SECRET)
    return oss2.Bucket(auth, _endpoint_for_sdk(settings.OSS_ENDPOINT), settings.OSS_BUCKET)


class OssStorage:
    """
    Object storage for print files.

    Lulu downloads interior and cover PDFs from the returned URLs, so objects
    are written with the configured ACL (public-read by default).
    """

    def __init__(self, *, prefix: str, object_acl: str | None = None) -> None:
        self._prefix = prefix.strip("/")
        self._object_acl = object_acl

    def key_for(self, name: str) -> str:
        return f"{self._prefix}/{name}" if self._prefix else name

    def upload_bytes(self, *, name: str, data: bytes, content_type: str = "application/pdf") -> str:
        """Upload raw bytes under the storage prefix and return the public object URL."""
        key = self.key_for(name)
        headers = {"Content-Type": content_type}
        if self._object_acl:
            headers["x-oss-object-acl"] = self._object_acl
        try:
            _get_bucket().put_object(key, data, headers=headers)
        except oss2.exceptions.OssError as e:
            logger.error("OSS upload failed for %s: %s", key, e)
            raise AppError(code=502401, message="Failed to upload print file", status_code=502)
        logger.info("Uploaded %s (%d bytes)", key, len(data))
        return build_object_url(key=key)


@lru_cache(maxsize=1)
def get_oss_storage() -> OssStorage:
    return OssStorage(prefix=settings.OSS_PDF_PREFIX, object_acl=settings.OSS_OBJECT_ACL)
