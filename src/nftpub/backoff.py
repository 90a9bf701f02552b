# src/nftpub/backoff.py
from __future__ import annotations

from dataclasses import dataclass

from nftpub.models import VerifyMode

DEFAULT_BASE_MS = 1000

# Full verification gives up sooner than metadata-only confirmation.
DEFAULT_MAX_ATTEMPTS = {
    VerifyMode.METADATA_AND_IMAGE: 8,
    VerifyMode.METADATA_ONLY: 14,
}


class BackoffExhausted(RuntimeError):
    pass


@dataclass
class BackoffScheduler:
    """Geometric wait sequence for one verification run.

    The k-th call to next() returns base_ms * 2^(k-1). No jitter and no cap;
    the attempt ceiling bounds the total wait at base_ms * (2^max_attempts - 1).
    """

    base_ms: int = DEFAULT_BASE_MS
    max_attempts: int = DEFAULT_MAX_ATTEMPTS[VerifyMode.METADATA_AND_IMAGE]
    calls: int = 0

    def __post_init__(self) -> None:
        if int(self.base_ms) < 0:
            raise ValueError(f"base_ms must be >= 0; got: {self.base_ms}")
        if int(self.max_attempts) <= 0:
            raise ValueError(f"max_attempts must be > 0; got: {self.max_attempts}")

    @property
    def exhausted(self) -> bool:
        return self.calls >= int(self.max_attempts)

    def next(self) -> int:
        if self.exhausted:
            raise BackoffExhausted(f"backoff_exhausted:{self.max_attempts}")
        delay = int(self.base_ms) * (2 ** self.calls)
        self.calls += 1
        return delay

    def reset(self) -> None:
        self.calls = 0

    def worst_case_wait_ms(self) -> int:
        return int(self.base_ms) * (2 ** int(self.max_attempts) - 1)
