# src/nftpub/ipfs_cid.py
from __future__ import annotations

"""IPFS CID and locator helpers.

CID checks are syntactic only:
  - CIDv0 (base58btc) starts with "Qm" and is 46 chars long.
  - CIDv1 (base32 lowercase) starts with "b" and uses a-z2-7.

This is NOT a multiformats parser. It rejects what an `add` response should
never contain before that value ends up in a metadata document.
"""

import re
from dataclasses import dataclass
from typing import Optional

_CIDV0_RE = re.compile(r"^Qm[1-9A-HJ-NP-Za-km-z]{44}$")  # base58btc (no 0,O,I,l)
_CIDV1_BASE32_RE = re.compile(r"^b[a-z2-7]{10,}$")  # bafy..., bagy...


@dataclass(frozen=True)
class CidValidation:
    ok: bool
    reason: str
    cid: str


def normalize_cid(cid: str) -> str:
    return (cid or "").strip()


def validate_ipfs_cid(cid: str, *, max_len: int = 128) -> CidValidation:
    c = normalize_cid(cid)
    if not c:
        return CidValidation(False, "missing_cid", "")
    if len(c) > int(max_len):
        return CidValidation(False, "cid_too_long", c)

    if _CIDV0_RE.match(c) or _CIDV1_BASE32_RE.match(c):
        return CidValidation(True, "ok", c)
    return CidValidation(False, "invalid_cid_format", c)


def gateway_url(gateway_base: str, cid: str) -> str:
    base = (gateway_base or "").strip().rstrip("/")
    c = normalize_cid(cid)
    if not base or not c:
        return ""
    return f"{base}/ipfs/{c}"


def resolve_ipfs_uri(uri: str, gateway_base: str) -> Optional[str]:
    """Map ipfs://<cid>[/path] onto the gateway. Returns None for other schemes."""
    u = (uri or "").strip()
    if not u.lower().startswith("ipfs://"):
        return None
    rest = u[len("ipfs://"):]
    if rest.startswith("ipfs/"):
        rest = rest[len("ipfs/"):]
    return gateway_url(gateway_base, rest)
