# src/nftpub/publish.py
from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Union

from nftpub.errors import PublishError, PublishInputError, UploadFailure
from nftpub.hashing import AssetBundle
from nftpub.models import PublishLocators, VerificationOutcome, VerifyMode
from nftpub.structured_logging import log_event
from nftpub.uploader import Uploader
from nftpub.verifier import PublishVerifier

Json = Dict[str, Any]
PathLike = Union[str, Path]

log = logging.getLogger("nftpub.publish")


@dataclass(frozen=True)
class PublishResult:
    locators: PublishLocators
    outcome: VerificationOutcome

    @property
    def verified(self) -> bool:
        return bool(self.outcome.verified)

    def to_json(self) -> Json:
        return self.outcome.to_json()


def read_asset(path: PathLike) -> AssetBundle:
    try:
        return AssetBundle.from_path(path)
    except OSError as e:
        raise PublishInputError("bad_asset", f"cannot read image {str(path)!r}", str(e)) from e


def read_metadata(path: PathLike) -> Json:
    try:
        raw = json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        raise PublishInputError("bad_metadata", f"cannot read metadata {str(path)!r}", str(e)) from e
    if not isinstance(raw, dict):
        raise PublishInputError("bad_metadata", "metadata must be a JSON object")
    return raw


async def upload(
    uploader: Uploader,
    asset: Optional[AssetBundle],
    metadata: Json,
    *,
    wallet_context: Any = None,
) -> PublishLocators:
    """Run the (blocking) upload in a worker thread. Failures are surfaced, never retried."""
    try:
        return await asyncio.to_thread(uploader.upload, wallet_context, asset, metadata)
    except UploadFailure as e:
        log_event(log, "publish_upload_failed", level=logging.ERROR, code=e.code, reason=e.reason, details=e.details)
        raise
    except (PublishError, OSError, ValueError) as e:
        log_event(log, "publish_upload_failed", level=logging.ERROR, code="upload_failed", reason=str(e))
        raise UploadFailure("upload_failed", type(e).__name__, str(e)) from e


async def publish_and_verify(
    *,
    metadata_path: PathLike,
    uploader: Uploader,
    verifier: PublishVerifier,
    image_path: Optional[PathLike] = None,
    wallet_context: Any = None,
) -> PublishResult:
    """Upload image + metadata, then poll until both are live.

    Without an image only the metadata document is uploaded and confirmed.
    """
    asset = read_asset(image_path) if image_path else None
    metadata = read_metadata(metadata_path)

    if asset is not None:
        log_event(log, "publish_start", image=str(image_path), metadata=str(metadata_path), digest=asset.content_digest)
    else:
        log_event(log, "publish_start", metadata=str(metadata_path))

    locators = await upload(uploader, asset, metadata, wallet_context=wallet_context)

    if asset is not None and locators.has_image:
        outcome = await verifier.verify(locators, asset.content_digest, VerifyMode.METADATA_AND_IMAGE)
    else:
        outcome = await verifier.verify(locators, None, VerifyMode.METADATA_ONLY)

    log_event(log, "publish_done", **outcome.to_json())
    return PublishResult(locators=locators, outcome=outcome)


async def verify_existing(
    *,
    metadata_uri: str,
    verifier: PublishVerifier,
    image_uri: Optional[str] = None,
    image_path: Optional[PathLike] = None,
) -> PublishResult:
    """Re-check locators from an earlier upload.

    Image bytes are only compared when both the image locator and the local
    image file are given; otherwise only the metadata document is confirmed.
    """
    if not (metadata_uri or "").strip():
        raise PublishInputError("bad_locator", "metadata_uri is required")
    locators = PublishLocators(metadata_uri=metadata_uri.strip(), image_uri=(image_uri or "").strip() or None)

    if image_path and locators.has_image:
        asset = read_asset(image_path)
        outcome = await verifier.verify(locators, asset.content_digest, VerifyMode.METADATA_AND_IMAGE)
    else:
        outcome = await verifier.verify(locators, None, VerifyMode.METADATA_ONLY)
    return PublishResult(locators=locators, outcome=outcome)
