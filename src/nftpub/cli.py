# src/nftpub/cli.py
from __future__ import annotations

import argparse
import asyncio
import json
import os
import sys
from typing import List, Optional

from nftpub.config import PublishConfig, load_publish_config
from nftpub.env import load_dotenv_if_present
from nftpub.errors import PublishError
from nftpub.fetcher import UrllibFetcher
from nftpub.publish import PublishResult, publish_and_verify, verify_existing
from nftpub.structured_logging import configure_structured_logging
from nftpub.uploader import IpfsUploader
from nftpub.verifier import PublishVerifier

EXIT_VERIFIED = 0
EXIT_NOT_VERIFIED = 1
EXIT_ERROR = 2


def _parse_args(argv: List[str]) -> argparse.Namespace:
    ap = argparse.ArgumentParser(prog="nftpub", description="Publish NFT assets to IPFS and confirm they are live")
    ap.add_argument("--config", dest="config_path", default=os.environ.get("NFTPUB_CONFIG_PATH", ""))
    ap.add_argument("-l", "--log-level", dest="log_level", default="")

    sub = ap.add_subparsers(dest="command", required=True)

    pub = sub.add_parser("publish", help="upload image + metadata, then verify")
    pub.add_argument("-j", "--metadata", dest="metadata_path", required=True)
    pub.add_argument("-p", "--image", dest="image_path", default="")

    ver = sub.add_parser("verify", help="verify locators from an earlier upload")
    ver.add_argument("-u", "--metadata-uri", dest="metadata_uri", required=True)
    ver.add_argument("--image-uri", dest="image_uri", default="")
    ver.add_argument("-p", "--image", dest="image_path", default="")

    return ap.parse_args(argv)


def _build_verifier(cfg: PublishConfig) -> PublishVerifier:
    fetcher = UrllibFetcher(timeout_s=cfg.fetch_timeout_s, gateway_base=cfg.ipfs_gateway_url)
    return PublishVerifier.from_config(cfg, fetcher)


async def _run(args: argparse.Namespace, cfg: PublishConfig) -> PublishResult:
    verifier = _build_verifier(cfg)
    if args.command == "publish":
        uploader = IpfsUploader(
            api_base=cfg.ipfs_api_url,
            gateway_base=cfg.ipfs_gateway_url,
            pin=cfg.ipfs_pin,
            timeout_s=cfg.upload_timeout_s,
        )
        return await publish_and_verify(
            metadata_path=args.metadata_path,
            image_path=args.image_path or None,
            uploader=uploader,
            verifier=verifier,
        )
    return await verify_existing(
        metadata_uri=args.metadata_uri,
        image_uri=args.image_uri or None,
        image_path=args.image_path or None,
        verifier=verifier,
    )


def main(argv: Optional[List[str]] = None) -> int:
    load_dotenv_if_present()
    args = _parse_args(sys.argv[1:] if argv is None else argv)

    try:
        cfg = load_publish_config(config_path=args.config_path or None)
    except PublishError as e:
        print(f"ERROR: {e.reason}", file=sys.stderr)
        return EXIT_ERROR

    configure_structured_logging(args.log_level or cfg.log_level)

    try:
        res = asyncio.run(_run(args, cfg))
    except PublishError as e:
        print(json.dumps({"status": "error", "code": e.code, "reason": e.reason, "details": e.details}, indent=2, default=str))
        return EXIT_ERROR

    print(json.dumps(res.to_json(), indent=2))
    return EXIT_VERIFIED if res.verified else EXIT_NOT_VERIFIED
