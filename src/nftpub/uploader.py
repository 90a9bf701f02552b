# src/nftpub/uploader.py
from __future__ import annotations

import copy
import http.client
import json
import logging
import urllib.parse
import uuid
from typing import Any, Dict, Mapping, Optional, Protocol, Tuple

from nftpub.errors import UploadFailure
from nftpub.hashing import AssetBundle
from nftpub.ipfs_cid import gateway_url, validate_ipfs_cid
from nftpub.models import PublishLocators
from nftpub.structured_logging import log_event

Json = Dict[str, Any]


class Uploader(Protocol):
    """Publishes an asset and its metadata document; returns their locators.

    Any failure raises UploadFailure and is never retried by the caller.
    `asset` is None for metadata-only uploads (no image locator is returned).
    """

    def upload(
        self,
        wallet_context: Any,
        asset: Optional[AssetBundle],
        metadata: Mapping[str, Any],
    ) -> PublishLocators: ...


def parse_ipfs_add_response(raw: bytes) -> Tuple[str, int]:
    """
    Kubo /api/v0/add returns NDJSON (one JSON per line).
    The last valid JSON object carries Hash + Size of the added root.
    """
    txt = raw.decode("utf-8", errors="replace").strip()
    if not txt:
        raise UploadFailure("ipfs_add_failed", "empty_response")

    last_obj: Optional[dict] = None
    for line in txt.splitlines():
        line = line.strip()
        if not line:
            continue
        try:
            obj = json.loads(line)
        except ValueError:
            continue
        if isinstance(obj, dict):
            last_obj = obj

    if not isinstance(last_obj, dict):
        raise UploadFailure("ipfs_add_failed", "bad_response", txt[:200])

    cid = str(last_obj.get("Hash") or "").strip()
    try:
        size = int(str(last_obj.get("Size") or "0").strip())
    except ValueError:
        size = 0

    check = validate_ipfs_cid(cid)
    if not check.ok:
        raise UploadFailure("ipfs_add_failed", check.reason, repr(last_obj))

    return check.cid, size


def with_image_locator(metadata: Mapping[str, Any], image_uri: str) -> Json:
    """Copy of `metadata` pointing `image` (and image entries in properties.files) at `image_uri`."""
    out: Json = copy.deepcopy(dict(metadata))
    out["image"] = image_uri
    props = out.get("properties")
    if isinstance(props, dict) and isinstance(props.get("files"), list):
        for f in props["files"]:
            if isinstance(f, dict) and str(f.get("type") or "").startswith("image/"):
                f["uri"] = image_uri
    return out


class IpfsUploader:
    """Adds artifacts through the Kubo HTTP API and returns gateway locators.

    The image (if any) is added first so the metadata document can reference
    its gateway URL. The wallet context is unused: IPFS adds are unsigned.
    """

    def __init__(
        self,
        *,
        api_base: str,
        gateway_base: str,
        pin: bool = True,
        timeout_s: float = 30.0,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.api_base = (api_base or "").strip().rstrip("/")
        self.gateway_base = (gateway_base or "").strip().rstrip("/")
        self.pin = bool(pin)
        self.timeout_s = float(timeout_s)
        self.logger = logger or logging.getLogger("nftpub.upload")

    def _connect(self) -> http.client.HTTPConnection:
        if not self.api_base:
            raise UploadFailure("ipfs_disabled", "ipfs api base is empty")
        u = urllib.parse.urlparse(self.api_base)
        scheme = (u.scheme or "http").lower()
        host = u.hostname or "127.0.0.1"
        port = int(u.port or (443 if scheme == "https" else 80))
        if scheme == "https":
            return http.client.HTTPSConnection(host, port, timeout=self.timeout_s)
        return http.client.HTTPConnection(host, port, timeout=self.timeout_s)

    def _add_path(self) -> str:
        qs = urllib.parse.urlencode(
            {
                "pin": "true" if self.pin else "false",
                "wrap-with-directory": "false",
                "progress": "false",
                "cid-version": "1",
            }
        )
        return f"/api/v0/add?{qs}"

    def add_bytes(self, *, name: str, data: bytes) -> Tuple[str, int]:
        """POST one in-memory artifact to /api/v0/add as a single-part form. Returns (cid, size)."""
        filename = (name or "upload").strip() or "upload"
        boundary = f"nftpub-{uuid.uuid4().hex}"
        body = b"".join(
            [
                f"--{boundary}\r\n".encode("ascii"),
                f'Content-Disposition: form-data; name="file"; filename="{filename}"\r\n'.encode("utf-8"),
                b"Content-Type: application/octet-stream\r\n\r\n",
                bytes(data),
                f"\r\n--{boundary}--\r\n".encode("ascii"),
            ]
        )
        headers = {
            "Content-Type": f"multipart/form-data; boundary={boundary}",
            "Content-Length": str(len(body)),
        }

        conn = self._connect()
        try:
            conn.request("POST", self._add_path(), body=body, headers=headers)
            resp = conn.getresponse()
            status, raw = int(resp.status), resp.read()
        except (OSError, http.client.HTTPException) as e:
            raise UploadFailure("ipfs_add_failed", type(e).__name__, str(e)) from e
        finally:
            conn.close()

        if not 200 <= status < 300:
            raise UploadFailure("ipfs_add_failed", f"http_{status}", raw.decode("utf-8", errors="replace").strip()[:300])
        return parse_ipfs_add_response(raw)

    def upload(
        self,
        wallet_context: Any,
        asset: Optional[AssetBundle],
        metadata: Mapping[str, Any],
    ) -> PublishLocators:
        if not self.gateway_base:
            raise UploadFailure("ipfs_add_failed", "no_gateway_configured")

        image_uri: Optional[str] = None
        doc: Json = dict(metadata)

        if asset is not None:
            cid, size = self.add_bytes(name="image", data=asset.raw_bytes)
            image_uri = gateway_url(self.gateway_base, cid)
            log_event(self.logger, "ipfs_add", artifact="image", cid=cid, size=size, uri=image_uri, digest=asset.content_digest)
            doc = with_image_locator(doc, image_uri)

        body = json.dumps(doc, ensure_ascii=False).encode("utf-8")
        cid, size = self.add_bytes(name="metadata.json", data=body)
        metadata_uri = gateway_url(self.gateway_base, cid)
        log_event(self.logger, "ipfs_add", artifact="metadata", cid=cid, size=size, uri=metadata_uri)
        return PublishLocators(metadata_uri=metadata_uri, image_uri=image_uri)
