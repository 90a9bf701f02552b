# src/nftpub/hashing.py
from __future__ import annotations

"""Content digests for transport-integrity checks.

MD5 (128-bit) is enough here: the digest only detects corruption or a stale
object served by a gateway. It is not a security boundary.
"""

import hashlib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Union


def digest(data: bytes) -> str:
    """Lowercase hex MD5 of `data`. Deterministic; b"" is valid input."""
    return hashlib.md5(bytes(data), usedforsecurity=False).hexdigest()


class ContentHasher:
    """Stateless wrapper so the digest can be injected into the verifier."""

    algorithm = "md5"

    def digest(self, data: bytes) -> str:
        return digest(data)


@dataclass(frozen=True)
class AssetBundle:
    raw_bytes: bytes
    content_digest: str = field(init=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "content_digest", digest(self.raw_bytes))

    @classmethod
    def from_path(cls, path: Union[str, Path]) -> "AssetBundle":
        return cls(raw_bytes=Path(path).read_bytes())
