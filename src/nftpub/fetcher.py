# src/nftpub/fetcher.py
from __future__ import annotations

import asyncio
import http.client
import json
import urllib.error
import urllib.request
from typing import Any, Protocol

from nftpub.errors import TransientFetchError
from nftpub.ipfs_cid import resolve_ipfs_uri


class RemoteFetcher(Protocol):
    """Read-only retrieval of published artifacts.

    Implementations raise TransientFetchError for network errors, non-2xx
    responses and undecodable JSON. Nothing else is expected to escape.
    """

    async def fetch_json(self, uri: str) -> Any: ...

    async def fetch_bytes(self, uri: str) -> bytes: ...


class UrllibFetcher:
    """HTTP GET fetcher on urllib.

    The blocking request runs in a worker thread so concurrent verification
    runs on the same event loop are not stalled by a slow gateway.
    """

    def __init__(
        self,
        *,
        timeout_s: float = 30.0,
        gateway_base: str = "",
        user_agent: str = "nftpub/0.1",
        max_bytes: int = 64 * 1024 * 1024,
    ) -> None:
        self.timeout_s = float(timeout_s)
        self.gateway_base = (gateway_base or "").strip().rstrip("/")
        self.user_agent = user_agent
        self.max_bytes = int(max_bytes)

    def _resolve(self, uri: str) -> str:
        u = (uri or "").strip()
        if not u:
            raise TransientFetchError("fetch_failed", "empty_uri")
        via_gateway = resolve_ipfs_uri(u, self.gateway_base)
        if via_gateway is not None:
            if not via_gateway:
                raise TransientFetchError("fetch_failed", "no_gateway_for_ipfs_uri", u)
            return via_gateway
        return u

    def _get(self, uri: str, accept: str) -> bytes:
        url = self._resolve(uri)
        req = urllib.request.Request(url=url, method="GET")
        req.add_header("Accept", accept)
        req.add_header("User-Agent", self.user_agent)
        # Avoid a cached copy from an earlier attempt.
        req.add_header("Cache-Control", "no-cache")

        try:
            with urllib.request.urlopen(req, timeout=self.timeout_s) as resp:
                status = int(getattr(resp, "status", 200))
                body = resp.read(self.max_bytes + 1)
        except urllib.error.HTTPError as e:
            raise TransientFetchError("fetch_failed", f"http_{int(e.code or 0)}", url) from e
        except (urllib.error.URLError, OSError, ValueError, http.client.HTTPException) as e:
            # HTTPException covers truncated bodies (IncompleteRead) and garbled status lines.
            raise TransientFetchError("fetch_failed", type(e).__name__, f"{url}: {e}") from e

        if status < 200 or status >= 300:
            raise TransientFetchError("fetch_failed", f"http_{status}", url)
        if len(body) > self.max_bytes:
            raise TransientFetchError("fetch_failed", "body_too_large", url)
        return body

    async def fetch_bytes(self, uri: str) -> bytes:
        return await asyncio.to_thread(self._get, uri, "*/*")

    async def fetch_json(self, uri: str) -> Any:
        body = await asyncio.to_thread(self._get, uri, "application/json")
        try:
            return json.loads(body.decode("utf-8"))
        except (UnicodeDecodeError, ValueError) as e:
            raise TransientFetchError("fetch_failed", "bad_json", f"{uri}: {e}") from e
