# src/nftpub/errors.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass
class PublishError(Exception):
    """Base error for the publish-and-verify pipeline."""

    code: str
    reason: str
    details: Any | None = None

    def __str__(self) -> str:  # pragma: no cover
        if self.details is None:
            return f"{self.code}:{self.reason}"
        return f"{self.code}:{self.reason}:{self.details}"


class TransientFetchError(PublishError):
    """Network, HTTP status or parse failure during one verification attempt."""


class ValidationFailure(PublishError):
    """Fetched content is present but fails the schema or integrity check."""


class UploadFailure(PublishError):
    """The upload step failed. Never retried."""


class PublishInputError(PublishError):
    """Local asset or metadata input cannot be used."""


class ConfigError(PublishError):
    """Invalid operator configuration."""
