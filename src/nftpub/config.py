# src/nftpub/config.py
from __future__ import annotations

import json
import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, Mapping, Optional
from urllib.parse import urlparse

from nftpub.errors import ConfigError
from nftpub.metadata import UriMatchRule
from nftpub.models import VerifyMode

Json = Dict[str, Any]

_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


def _as_int(v: Any, default: int) -> int:
    try:
        return int(v)
    except (TypeError, ValueError):
        return int(default)


def _as_float(v: Any, default: float) -> float:
    try:
        return float(v)
    except (TypeError, ValueError):
        return float(default)


def _as_str(v: Any, default: str) -> str:
    if v is None:
        return str(default)
    s = str(v)
    return s if s.strip() else str(default)


def _as_bool(v: Any, default: bool) -> bool:
    if v is None:
        return bool(default)
    if isinstance(v, bool):
        return v
    s = str(v).strip().lower()
    if s in {"1", "true", "yes", "y", "on"}:
        return True
    if s in {"0", "false", "no", "n", "off"}:
        return False
    return bool(default)


@dataclass(frozen=True)
class PublishConfig:
    # IPFS/Kubo API (upload) and gateway (retrieval)
    ipfs_api_url: str
    ipfs_gateway_url: str
    ipfs_pin: bool
    upload_timeout_s: float
    fetch_timeout_s: float

    # Verification loop
    backoff_base_ms: int
    full_max_attempts: int
    metadata_only_max_attempts: int
    max_total_wait_ms: int  # 0 = no budget beyond the attempt ceiling

    # Prefix lengths stripped before comparing metadata `image` to the image locator
    image_uri_doc_prefix: int
    image_uri_locator_prefix: int

    log_level: str

    def max_attempts_for(self, mode: VerifyMode) -> int:
        if VerifyMode(mode) == VerifyMode.METADATA_ONLY:
            return int(self.metadata_only_max_attempts)
        return int(self.full_max_attempts)

    def uri_rule(self) -> UriMatchRule:
        return UriMatchRule(
            doc_prefix_len=int(self.image_uri_doc_prefix),
            locator_prefix_len=int(self.image_uri_locator_prefix),
        )


def default_publish_config() -> PublishConfig:
    return PublishConfig(
        ipfs_api_url="http://127.0.0.1:5001",
        ipfs_gateway_url="http://127.0.0.1:8080",
        ipfs_pin=True,
        upload_timeout_s=30.0,
        fetch_timeout_s=30.0,
        backoff_base_ms=1000,
        full_max_attempts=8,
        metadata_only_max_attempts=14,
        max_total_wait_ms=0,
        image_uri_doc_prefix=12,
        image_uri_locator_prefix=8,
        log_level="INFO",
    )


def _check_http_url(name: str, url: str) -> None:
    parsed = urlparse(url)
    if (parsed.scheme or "").lower() not in {"http", "https"} or not parsed.hostname:
        raise ConfigError("bad_config", f"{name} must be an http(s) URL; got: {url!r}")


def validate_publish_config(cfg: PublishConfig) -> None:
    """Fail-fast validation so a misconfigured run never reaches the network."""
    _check_http_url("ipfs_api_url", cfg.ipfs_api_url)
    _check_http_url("ipfs_gateway_url", cfg.ipfs_gateway_url)

    if float(cfg.upload_timeout_s) <= 0 or float(cfg.fetch_timeout_s) <= 0:
        raise ConfigError("bad_config", "timeouts must be > 0")

    if int(cfg.backoff_base_ms) <= 0:
        raise ConfigError("bad_config", f"backoff_base_ms must be > 0; got: {cfg.backoff_base_ms}")

    for name, n in (
        ("full_max_attempts", cfg.full_max_attempts),
        ("metadata_only_max_attempts", cfg.metadata_only_max_attempts),
    ):
        if int(n) <= 0:
            raise ConfigError("bad_config", f"{name} must be > 0; got: {n}")

    if int(cfg.max_total_wait_ms) < 0:
        raise ConfigError("bad_config", f"max_total_wait_ms must be >= 0; got: {cfg.max_total_wait_ms}")

    if int(cfg.image_uri_doc_prefix) < 0 or int(cfg.image_uri_locator_prefix) < 0:
        raise ConfigError("bad_config", "image URI prefix lengths must be >= 0")

    if str(cfg.log_level).strip().upper() not in _LOG_LEVELS:
        raise ConfigError("bad_config", f"log_level must be one of {sorted(_LOG_LEVELS)}; got: {cfg.log_level!r}")


def _merge(base: PublishConfig, raw: Mapping[str, Any]) -> PublishConfig:
    return replace(
        base,
        ipfs_api_url=_as_str(raw.get("ipfs_api_url"), base.ipfs_api_url).strip().rstrip("/"),
        ipfs_gateway_url=_as_str(raw.get("ipfs_gateway_url"), base.ipfs_gateway_url).strip().rstrip("/"),
        ipfs_pin=_as_bool(raw.get("ipfs_pin"), base.ipfs_pin),
        upload_timeout_s=_as_float(raw.get("upload_timeout_s"), base.upload_timeout_s),
        fetch_timeout_s=_as_float(raw.get("fetch_timeout_s"), base.fetch_timeout_s),
        backoff_base_ms=_as_int(raw.get("backoff_base_ms"), base.backoff_base_ms),
        full_max_attempts=_as_int(raw.get("full_max_attempts"), base.full_max_attempts),
        metadata_only_max_attempts=_as_int(raw.get("metadata_only_max_attempts"), base.metadata_only_max_attempts),
        max_total_wait_ms=_as_int(raw.get("max_total_wait_ms"), base.max_total_wait_ms),
        image_uri_doc_prefix=_as_int(raw.get("image_uri_doc_prefix"), base.image_uri_doc_prefix),
        image_uri_locator_prefix=_as_int(raw.get("image_uri_locator_prefix"), base.image_uri_locator_prefix),
        log_level=_as_str(raw.get("log_level"), base.log_level).strip().upper(),
    )


def read_publish_config_file(path: str, *, base: Optional[PublishConfig] = None) -> PublishConfig:
    p = Path(path)
    try:
        raw = json.loads(p.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        raise ConfigError("bad_config_file", f"cannot read config {path!r}", str(e)) from e
    if not isinstance(raw, dict):
        raise ConfigError("bad_config_file", "publish config must be a JSON object")
    return _merge(base or default_publish_config(), raw)


def _env_overrides(environ: Mapping[str, str]) -> Json:
    out: Json = {}
    for f in fields(PublishConfig):
        v = environ.get(f"NFTPUB_{f.name.upper()}")
        if v is not None and v.strip():
            out[f.name] = v.strip()
    return out


def load_publish_config(
    *,
    config_path: Optional[str] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> PublishConfig:
    """Defaults, then the JSON config file (if any), then NFTPUB_* env vars."""
    env = os.environ if environ is None else environ
    cfg = default_publish_config()

    p = config_path or env.get("NFTPUB_CONFIG_PATH")
    if p:
        cfg = read_publish_config_file(p, base=cfg)

    cfg = _merge(cfg, _env_overrides(env))
    validate_publish_config(cfg)
    return cfg
