"""
Object storage (Supabase Storage REST API).

Buckets and their conventions:
    avatars           - character avatars, public, jpeg/png/webp
    reference_images  - user reference images, private per user, 10MB
    system_assets     - placeholders and system art, public, 5MB
    user-library      - saved content, private per user, 50MB
    videos            - public video content
    workspace-temp    - generated assets awaiting user action, private, 50MB

Limits are enforced by the bucket configuration, not by this client.
"""

import logging
from typing import List, Optional

import httpx

from genqueue.core.config import (
    HTTP_TIMEOUT,
    SIGNED_URL_TTL,
    SUPABASE_SERVICE_ROLE_KEY,
    SUPABASE_URL,
)
from genqueue.core.errors import UpstreamError

logger = logging.getLogger(__name__)

WORKSPACE_BUCKET = "workspace-temp"
LIBRARY_BUCKET = "user-library"

BUCKETS = {
    "avatars": {"mime_types": ["image/jpeg", "image/png", "image/webp"], "max_bytes": None, "public": True},
    "reference_images": {
        "mime_types": ["image/jpeg", "image/png", "image/webp", "image/gif"],
        "max_bytes": 10 * 1024 * 1024,
        "public": False,
    },
    "system_assets": {
        "mime_types": ["image/png", "image/jpeg", "image/webp", "image/svg+xml"],
        "max_bytes": 5 * 1024 * 1024,
        "public": True,
    },
    LIBRARY_BUCKET: {
        "mime_types": ["image/jpeg", "image/png", "image/webp", "video/mp4"],
        "max_bytes": 50 * 1024 * 1024,
        "public": False,
    },
    "videos": {
        "mime_types": ["video/mp4", "video/mpeg", "video/webm", "video/quicktime"],
        "max_bytes": None,
        "public": True,
    },
    WORKSPACE_BUCKET: {
        "mime_types": ["image/jpeg", "image/png", "image/webp", "video/mp4"],
        "max_bytes": 50 * 1024 * 1024,
        "public": False,
    },
}


class SupabaseStorage:
    """Upload objects and sign download URLs with the service role key."""

    def __init__(
        self,
        url: str = None,
        service_key: str = None,
        client: Optional[httpx.Client] = None,
    ):
        self.url = (url or SUPABASE_URL).rstrip("/")
        self.service_key = service_key or SUPABASE_SERVICE_ROLE_KEY
        self._client = client or httpx.Client(timeout=HTTP_TIMEOUT)

    @property
    def _headers(self) -> dict:
        return {
            "Authorization": f"Bearer {self.service_key}",
            "apikey": self.service_key,
        }

    def upload(self, bucket: str, path: str, data: bytes, content_type: str, upsert: bool = False) -> str:
        """Upload bytes to ``bucket/path``. Returns the object path inside the bucket."""
        if bucket not in BUCKETS:
            raise ValueError(f"Unknown bucket: {bucket}")

        headers = {
            **self._headers,
            "Content-Type": content_type,
            "x-upsert": "true" if upsert else "false",
        }
        try:
            resp = self._client.post(
                f"{self.url}/storage/v1/object/{bucket}/{path}",
                headers=headers,
                content=data,
            )
        except httpx.HTTPError as e:
            raise UpstreamError(f"Storage upload failed: {e}") from e

        if resp.status_code >= 400:
            raise UpstreamError(f"Storage upload failed: HTTP {resp.status_code}: {resp.text[:500]}")

        logger.info(f"Uploaded {len(data)} bytes to {bucket}/{path}")
        return path

    def create_signed_url(self, bucket: str, path: str, expires_in: int = SIGNED_URL_TTL) -> str:
        try:
            resp = self._client.post(
                f"{self.url}/storage/v1/object/sign/{bucket}/{path}",
                headers=self._headers,
                json={"expiresIn": expires_in},
            )
        except httpx.HTTPError as e:
            raise UpstreamError(f"Signing URL failed: {e}") from e

        if resp.status_code >= 400:
            raise UpstreamError(f"Signing URL failed: HTTP {resp.status_code}: {resp.text[:500]}")

        signed = resp.json().get("signedURL") or resp.json().get("signedUrl")
        if not signed:
            raise UpstreamError("Signing URL failed: empty response")
        if signed.startswith("http"):
            return signed
        return f"{self.url}/storage/v1{signed}"

    def download(self, bucket: str, path: str) -> bytes:
        try:
            resp = self._client.get(
                f"{self.url}/storage/v1/object/{bucket}/{path}",
                headers=self._headers,
            )
        except httpx.HTTPError as e:
            raise UpstreamError(f"Storage download failed: {e}") from e

        if resp.status_code >= 400:
            raise UpstreamError(f"Storage download failed: HTTP {resp.status_code}: {resp.text[:500]}")
        return resp.content

    def remove(self, bucket: str, paths: List[str]) -> None:
        """Delete objects from a bucket (``DELETE /storage/v1/object/{bucket}``)."""
        if not paths:
            return
        try:
            resp = self._client.request(
                "DELETE",
                f"{self.url}/storage/v1/object/{bucket}",
                headers=self._headers,
                json={"prefixes": list(paths)},
            )
        except httpx.HTTPError as e:
            raise UpstreamError(f"Storage delete failed: {e}") from e

        if resp.status_code >= 400:
            raise UpstreamError(f"Storage delete failed: HTTP {resp.status_code}: {resp.text[:500]}")
        logger.info(f"Removed {len(paths)} objects from {bucket}")

    def close(self):
        self._client.close()
