"""
Media blob stores.

The service only needs three things from a media host: put bytes at a key,
produce a fetchable URL for a key, and read the bytes back.
"""

from __future__ import annotations

import io
import logging
from threading import Lock
from typing import Any, Dict, Optional, Protocol

import cloudinary
import cloudinary.uploader
import cloudinary.utils
import requests
from cloudinary.exceptions import Error as CloudinaryError

from sentimentai.config import Settings, get_settings

logger = logging.getLogger("sentimentai.blob_store")


class BlobStoreError(Exception):
    """Raised when the media host rejects or fails an operation."""
    pass


class BlobNotFoundError(BlobStoreError):
    """The blob is not (yet) readable at its URL."""
    pass


class BlobStore(Protocol):
    def put(self, key: str, data: bytes, filename: Optional[str] = None) -> Dict[str, Any]:
        ...

    def url(self, key: str) -> str:
        ...

    def fetch(self, key: str) -> bytes:
        ...


class InMemoryBlobStore:
    """Blob store kept in process memory."""

    def __init__(self):
        self._blobs: Dict[str, bytes] = {}
        self._lock = Lock()

    def put(self, key: str, data: bytes, filename: Optional[str] = None) -> Dict[str, Any]:
        with self._lock:
            self._blobs[key] = bytes(data)
        return {"public_id": key, "bytes": len(data), "original_filename": filename}

    def url(self, key: str) -> str:
        return f"memory://{key}"

    def fetch(self, key: str) -> bytes:
        with self._lock:
            if key not in self._blobs:
                raise BlobNotFoundError(f"No blob at key '{key}'")
            return self._blobs[key]

    def __contains__(self, key: str) -> bool:
        return key in self._blobs

    def __len__(self) -> int:
        return len(self._blobs)


class CloudinaryBlobStore:
    """
    Cloudinary video storage through the Cloudinary SDK.

    Credentials are passed per call rather than through the SDK's global
    config, so several stores can coexist in one process.
    """

    def __init__(
        self,
        cloud_name: str,
        api_key: str,
        api_secret: str,
        timeout: float = 120.0,
        session: Optional[requests.Session] = None,
    ):
        if not (cloud_name and api_key and api_secret):
            raise ValueError("cloud_name, api_key and api_secret are required")
        self.cloud_name = cloud_name
        self.api_key = api_key
        self._api_secret = api_secret
        self.timeout = timeout
        self._session = session or requests.Session()

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "CloudinaryBlobStore":
        settings = settings or get_settings()
        return cls(
            cloud_name=settings.cloudinary_cloud_name or "",
            api_key=settings.cloudinary_api_key or "",
            api_secret=settings.cloudinary_api_secret or "",
            timeout=settings.request_timeout_seconds,
        )

    def _credentials(self) -> Dict[str, str]:
        return {
            "cloud_name": self.cloud_name,
            "api_key": self.api_key,
            "api_secret": self._api_secret,
        }

    def put(self, key: str, data: bytes, filename: Optional[str] = None) -> Dict[str, Any]:
        logger.info("Uploading %d bytes to Cloudinary as %s", len(data), key)
        try:
            return cloudinary.uploader.upload(
                io.BytesIO(data),
                filename=filename or key.rsplit("/", 1)[-1],
                public_id=key,
                resource_type="video",
                overwrite=True,
                timeout=self.timeout,
                **self._credentials(),
            )
        except CloudinaryError as exc:
            raise BlobStoreError(f"Cloudinary upload failed: {exc}") from exc

    def url(self, key: str) -> str:
        url, _ = cloudinary.utils.cloudinary_url(
            key,
            resource_type="video",
            secure=True,
            cloud_name=self.cloud_name,
        )
        return url

    def fetch(self, key: str) -> bytes:
        url = self.url(key)
        try:
            resp = self._session.get(url, timeout=self.timeout)
        except requests.RequestException as exc:
            raise BlobStoreError(f"Failed to fetch video: {exc}") from exc
        if resp.status_code == 404:
            raise BlobNotFoundError(f"Video not available yet at {url}")
        if not resp.ok:
            raise BlobStoreError(f"Failed to fetch video: {resp.status_code} - {resp.reason}")
        return resp.content


def build_blob_store(settings: Optional[Settings] = None) -> BlobStore:
    """Cloudinary when credentials are configured, otherwise in-memory."""
    settings = settings or get_settings()
    if settings.cloudinary_configured:
        return CloudinaryBlobStore.from_settings(settings)
    logger.warning("Cloudinary is not configured; storing uploads in memory")
    return InMemoryBlobStore()
