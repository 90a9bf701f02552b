# src/nftpub/verifier.py
from __future__ import annotations

"""Post-upload verification loop.

Storage gateways are eventually consistent: a just-added object may 404 or
serve stale bytes for a while. `PublishVerifier.verify` polls the published
locators until the metadata document validates AND (in full mode) the image
bytes hash to the local digest within the same attempt, or until the attempt
ceiling is reached.

  IDLE -> POLLING -> VERIFIED
                  -> FAILED     (ceiling reached, or wait budget exceeded)

Every fetch is repeated on every attempt; nothing is cached between attempts.
A failed attempt is followed by a backoff wait, including the last one, so a
run that exhausts its ceiling has consumed exactly `ceiling` backoff delays.
"""

import asyncio
import http.client
import logging
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional

from nftpub.backoff import DEFAULT_BASE_MS, DEFAULT_MAX_ATTEMPTS, BackoffScheduler
from nftpub.config import PublishConfig
from nftpub.errors import TransientFetchError, ValidationFailure
from nftpub.fetcher import RemoteFetcher
from nftpub.hashing import ContentHasher
from nftpub.metadata import MetadataValidator
from nftpub.models import (
    Failed,
    PublishLocators,
    VerificationAttempt,
    VerificationOutcome,
    VerificationState,
    Verified,
    VerifyMode,
)
from nftpub.structured_logging import log_event

SleepFn = Callable[[float], Awaitable[Any]]
SchedulerFactory = Callable[[VerifyMode], BackoffScheduler]

# What a fetcher may raise for a single bad response. Anything else is a bug.
_FETCH_ERRORS = (TransientFetchError, OSError, ValueError, http.client.HTTPException)


class PublishVerifier:
    def __init__(
        self,
        fetcher: RemoteFetcher,
        *,
        validator: Optional[MetadataValidator] = None,
        hasher: Optional[ContentHasher] = None,
        logger: Optional[logging.Logger] = None,
        sleep: SleepFn = asyncio.sleep,
        base_ms: int = DEFAULT_BASE_MS,
        max_attempts: Optional[Mapping[VerifyMode, int]] = None,
        scheduler_factory: Optional[SchedulerFactory] = None,
        max_total_wait_ms: int = 0,
    ) -> None:
        self.fetcher = fetcher
        self.validator = validator or MetadataValidator()
        self.hasher = hasher or ContentHasher()
        self.logger = logger or logging.getLogger("nftpub.verify")
        self.sleep = sleep
        self.base_ms = int(base_ms)
        self.max_attempts: Dict[VerifyMode, int] = dict(DEFAULT_MAX_ATTEMPTS)
        if max_attempts:
            self.max_attempts.update({VerifyMode(k): int(v) for k, v in max_attempts.items()})
        self.scheduler_factory = scheduler_factory
        self.max_total_wait_ms = int(max_total_wait_ms)

    @classmethod
    def from_config(
        cls,
        cfg: PublishConfig,
        fetcher: RemoteFetcher,
        *,
        logger: Optional[logging.Logger] = None,
        sleep: SleepFn = asyncio.sleep,
    ) -> "PublishVerifier":
        return cls(
            fetcher,
            validator=MetadataValidator(cfg.uri_rule()),
            logger=logger,
            sleep=sleep,
            base_ms=cfg.backoff_base_ms,
            max_attempts={mode: cfg.max_attempts_for(mode) for mode in VerifyMode},
            max_total_wait_ms=cfg.max_total_wait_ms,
        )

    def scheduler_for(self, mode: VerifyMode) -> BackoffScheduler:
        """A fresh scheduler per run; runs never share backoff state."""
        if self.scheduler_factory is not None:
            return self.scheduler_factory(mode)
        return BackoffScheduler(base_ms=self.base_ms, max_attempts=self.max_attempts[mode])

    def _transition(self, state: VerificationState, locators: PublishLocators, **fields: Any) -> None:
        log_event(
            self.logger,
            "verify_state",
            state=state.value,
            metadata_uri=locators.metadata_uri,
            image_uri=locators.image_uri,
            **fields,
        )

    async def _check_metadata(self, locators: PublishLocators, attempt: int) -> bool:
        try:
            doc = await self.fetcher.fetch_json(locators.metadata_uri)
        except _FETCH_ERRORS as e:
            log_event(
                self.logger,
                "verify_fetch_failed",
                level=logging.ERROR,
                attempt=attempt,
                artifact="metadata",
                uri=locators.metadata_uri,
                error=str(e),
            )
            raise

        try:
            self.validator.validate(doc, expected_image_uri=locators.image_uri).raise_if_invalid()
        except ValidationFailure as e:
            log_event(
                self.logger,
                "verify_metadata_invalid",
                level=logging.ERROR,
                attempt=attempt,
                uri=locators.metadata_uri,
                reasons=e.details,
                expected_image=locators.image_uri,
                actual_image=doc.get("image") if isinstance(doc, dict) else None,
            )
            return False

        log_event(self.logger, "verify_metadata_ok", attempt=attempt, uri=locators.metadata_uri)
        return True

    async def _check_image(self, locators: PublishLocators, expected_digest: str, attempt: int) -> bool:
        image_uri = str(locators.image_uri or "")
        try:
            data = await self.fetcher.fetch_bytes(image_uri)
        except _FETCH_ERRORS as e:
            log_event(
                self.logger,
                "verify_fetch_failed",
                level=logging.ERROR,
                attempt=attempt,
                artifact="image",
                uri=image_uri,
                error=str(e),
            )
            return False

        actual = self.hasher.digest(data)
        if actual == expected_digest:
            log_event(self.logger, "verify_image_ok", attempt=attempt, uri=image_uri, digest=actual)
            return True

        log_event(
            self.logger,
            "verify_image_mismatch",
            level=logging.ERROR,
            attempt=attempt,
            uri=image_uri,
            algorithm=self.hasher.algorithm,
            expected_digest=expected_digest,
            actual_digest=actual,
            size=len(data),
        )
        return False

    async def _attempt(
        self,
        locators: PublishLocators,
        expected_digest: str,
        mode: VerifyMode,
        index: int,
        elapsed_wait_ms: int,
        ceiling: int,
    ) -> VerificationAttempt:
        """One poll iteration. `image_ok` is True when no image check is required."""
        attempt = index + 1
        log_event(
            self.logger,
            "verify_attempt",
            attempt=attempt,
            max_attempts=ceiling,
            mode=mode.value,
            metadata_uri=locators.metadata_uri,
            waited_ms=elapsed_wait_ms,
        )

        try:
            metadata_ok = await self._check_metadata(locators, attempt)
        except _FETCH_ERRORS:
            return VerificationAttempt(index=index, elapsed_wait_ms=elapsed_wait_ms)

        if mode == VerifyMode.METADATA_ONLY:
            return VerificationAttempt(index=index, elapsed_wait_ms=elapsed_wait_ms, metadata_ok=metadata_ok, image_ok=True)

        image_ok = await self._check_image(locators, expected_digest, attempt)
        if metadata_ok != image_ok:
            log_event(
                self.logger,
                "verify_partial",
                level=logging.WARNING,
                attempt=attempt,
                metadata_ok=metadata_ok,
                image_ok=image_ok,
            )
        return VerificationAttempt(index=index, elapsed_wait_ms=elapsed_wait_ms, metadata_ok=metadata_ok, image_ok=image_ok)

    async def verify(
        self,
        locators: PublishLocators,
        expected_digest: Optional[str] = None,
        mode: VerifyMode = VerifyMode.METADATA_AND_IMAGE,
    ) -> VerificationOutcome:
        """Poll `locators` until they are live or the attempt ceiling is reached.

        Never raises for fetch or validation problems; the result is Verified
        or Failed. Raises ValueError only for unusable arguments (full mode
        without an expected digest).
        """
        mode = VerifyMode(mode)
        if mode == VerifyMode.METADATA_AND_IMAGE and not locators.has_image:
            log_event(self.logger, "verify_mode_downgraded", metadata_uri=locators.metadata_uri, mode=VerifyMode.METADATA_ONLY.value)
            mode = VerifyMode.METADATA_ONLY
        if mode == VerifyMode.METADATA_AND_IMAGE and not (expected_digest or "").strip():
            raise ValueError("expected_digest is required for metadata_and_image verification")
        digest_s = (expected_digest or "").strip()

        scheduler = self.scheduler_for(mode)
        ceiling = int(scheduler.max_attempts)
        total_wait_ms = 0

        self._transition(VerificationState.IDLE, locators, mode=mode.value)
        self._transition(
            VerificationState.POLLING,
            locators,
            max_attempts=ceiling,
            worst_case_wait_ms=scheduler.worst_case_wait_ms(),
        )

        for index in range(ceiling):
            attempt = await self._attempt(locators, digest_s, mode, index, total_wait_ms, ceiling)
            if attempt.ok:
                self._transition(VerificationState.VERIFIED, locators, attempts=index + 1, total_wait_ms=total_wait_ms)
                return Verified(
                    metadata_uri=locators.metadata_uri,
                    image_uri=locators.image_uri,
                    attempts=index + 1,
                    total_wait_ms=total_wait_ms,
                )

            delay_ms = scheduler.next()
            if self.max_total_wait_ms and total_wait_ms + delay_ms > self.max_total_wait_ms:
                log_event(
                    self.logger,
                    "verify_wait_budget_exceeded",
                    level=logging.ERROR,
                    attempt=index + 1,
                    waited_ms=total_wait_ms,
                    next_delay_ms=delay_ms,
                    budget_ms=self.max_total_wait_ms,
                )
                return self._failed(locators, index + 1, total_wait_ms)

            log_event(self.logger, "verify_backoff", attempt=index + 1, delay_ms=delay_ms, waited_ms=total_wait_ms)
            await self.sleep(delay_ms / 1000.0)
            total_wait_ms += delay_ms

        return self._failed(locators, ceiling, total_wait_ms)

    def _failed(self, locators: PublishLocators, attempts: int, total_wait_ms: int) -> Failed:
        self._transition(
            VerificationState.FAILED,
            locators,
            attempts_exhausted=attempts,
            total_wait_ms=total_wait_ms,
        )
        return Failed(
            metadata_uri=locators.metadata_uri,
            image_uri=locators.image_uri,
            attempts_exhausted=attempts,
            total_wait_ms=total_wait_ms,
        )
