# src/nftpub/models.py
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union


class VerifyMode(str, Enum):
    METADATA_ONLY = "metadata_only"
    METADATA_AND_IMAGE = "metadata_and_image"


class VerificationState(str, Enum):
    IDLE = "idle"
    POLLING = "polling"
    VERIFIED = "verified"
    FAILED = "failed"


@dataclass(frozen=True)
class PublishLocators:
    metadata_uri: str
    image_uri: Optional[str] = None

    @property
    def has_image(self) -> bool:
        return bool((self.image_uri or "").strip())


@dataclass(frozen=True)
class VerificationAttempt:
    index: int
    elapsed_wait_ms: int
    metadata_ok: bool = False
    image_ok: bool = False

    @property
    def ok(self) -> bool:
        return self.metadata_ok and self.image_ok


@dataclass(frozen=True)
class Verified:
    metadata_uri: str
    image_uri: Optional[str]
    attempts: int
    total_wait_ms: int

    verified = True

    def to_json(self) -> dict:
        return {
            "status": "verified",
            "metadata_uri": self.metadata_uri,
            "image_uri": self.image_uri,
            "attempts": self.attempts,
            "total_wait_ms": self.total_wait_ms,
        }


@dataclass(frozen=True)
class Failed:
    metadata_uri: str
    image_uri: Optional[str]
    attempts_exhausted: int
    total_wait_ms: int

    verified = False

    def to_json(self) -> dict:
        return {
            "status": "failed",
            "metadata_uri": self.metadata_uri,
            "image_uri": self.image_uri,
            "attempts_exhausted": self.attempts_exhausted,
            "total_wait_ms": self.total_wait_ms,
        }


VerificationOutcome = Union[Verified, Failed]
