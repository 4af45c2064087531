"""
Redis job queue over the Upstash REST protocol.

Commands are sent as ``POST {url}/{command}/{key}`` with the value as the raw
request body and a bearer token; Upstash answers ``{"result": ...}`` or
``{"error": "..."}``. Workers consume the list with RPOP, so LPUSH gives FIFO
ordering.
"""

import json
import logging
from typing import Optional

import httpx

from genqueue.core.config import (
    HTTP_TIMEOUT,
    UPSTASH_REDIS_REST_TOKEN,
    UPSTASH_REDIS_REST_URL,
)
from genqueue.core.errors import UpstreamError

logger = logging.getLogger(__name__)


class UpstashQueue:
    """Minimal Upstash REST client: LPUSH and LLEN on named lists."""

    def __init__(
        self,
        url: str = None,
        token: str = None,
        client: Optional[httpx.Client] = None,
    ):
        self.url = (url or UPSTASH_REDIS_REST_URL).rstrip("/")
        self.token = token or UPSTASH_REDIS_REST_TOKEN
        self._client = client or httpx.Client(timeout=HTTP_TIMEOUT)

    def _command(self, method: str, path: str, content: bytes = None) -> int:
        if not self.url or not self.token:
            raise UpstreamError("Redis configuration missing")

        headers = {"Authorization": f"Bearer {self.token}"}
        try:
            resp = self._client.request(
                method, f"{self.url}/{path}", headers=headers, content=content
            )
        except httpx.HTTPError as e:
            raise UpstreamError(f"Redis unreachable: {e}") from e

        if resp.status_code >= 400:
            raise UpstreamError(f"Redis command failed: HTTP {resp.status_code}: {resp.text[:500]}")

        try:
            data = resp.json()
        except ValueError as e:
            raise UpstreamError(f"Redis command failed: malformed reply: {resp.text[:500]}") from e
        if not isinstance(data, dict):
            raise UpstreamError(f"Redis command failed: malformed reply: {resp.text[:500]}")
        if "error" in data:
            raise UpstreamError(f"Redis command failed: {data['error']}")
        try:
            return int(data.get("result") or 0)
        except (TypeError, ValueError) as e:
            raise UpstreamError(f"Redis command failed: unexpected result {data.get('result')!r}") from e

    def lpush(self, key: str, payload: dict) -> int:
        """Push a JSON payload onto the head of a list. Returns the new length."""
        body = json.dumps(payload, separators=(",", ":"), default=str).encode("utf-8")
        length = self._command("POST", f"lpush/{key}", content=body)
        logger.info(f"LPUSH {key} -> length {length}")
        return length

    def llen(self, key: str) -> int:
        return self._command("GET", f"llen/{key}")

    def close(self):
        self._client.close()
