# src/nftpub/metadata.py
from __future__ import annotations

"""Minimal schema check for fetched NFT metadata documents.

Only the fields a mint step depends on are checked:

  name                      non-empty string
  image                     non-empty string, same resource as the image locator
  seller_fee_basis_points   number (NaN / infinity rejected)
  properties.creators       list (may be empty)

Everything else is carried through untouched (extra="allow").

A failed check is an expected, retryable outcome while storage propagates, so
`MetadataValidator.validate` returns reasons instead of raising.
"""

from dataclasses import dataclass
from typing import Any, List, Optional, Tuple

from pydantic import BaseModel, Field, ValidationError

from nftpub.errors import ValidationFailure


class MetadataProperties(BaseModel):
    creators: List[Any]

    model_config = {"extra": "allow"}


class MetadataDocument(BaseModel):
    name: str = Field(..., min_length=1, description="Display name")
    image: str = Field(..., min_length=1, description="Image locator")
    seller_fee_basis_points: float = Field(..., allow_inf_nan=False, description="Royalty in basis points")
    properties: MetadataProperties

    # Unknown fields are kept as-is.
    model_config = {"extra": "allow"}


@dataclass(frozen=True)
class UriMatchRule:
    """Prefix-tolerant comparison between the document's `image` and the image locator.

    Gateways can serve the same object under different scheme/host prefixes,
    e.g. "https://www.arweave.net/<id>" vs "https://arweave.net/<id>".

    Two URIs match when they are equal, or when
    `doc_image[doc_prefix_len:] == locator[locator_prefix_len:]` and that
    suffix is non-empty. Both lengths at 0 means exact equality only.
    """

    doc_prefix_len: int = 12
    locator_prefix_len: int = 8

    def matches(self, doc_image: str, locator: str) -> bool:
        if doc_image == locator:
            return True
        a = max(0, int(self.doc_prefix_len))
        b = max(0, int(self.locator_prefix_len))
        if a == 0 and b == 0:
            return False
        suffix = doc_image[a:]
        return bool(suffix) and suffix == locator[b:]


EXACT_URI_MATCH = UriMatchRule(doc_prefix_len=0, locator_prefix_len=0)


@dataclass(frozen=True)
class ValidationResult:
    ok: bool
    reasons: Tuple[str, ...] = ()
    document: Optional[MetadataDocument] = None

    def raise_if_invalid(self) -> MetadataDocument:
        """Return the parsed document, or raise ValidationFailure with the reasons as details."""
        if not self.ok or self.document is None:
            raise ValidationFailure("metadata_invalid", "; ".join(self.reasons) or "invalid", list(self.reasons))
        return self.document


def _format_error(err: Any) -> str:
    loc = ".".join(str(p) for p in (err.get("loc") or ()))
    msg = str(err.get("msg") or "invalid")
    return f"{loc or 'document'}: {msg}"


class MetadataValidator:
    def __init__(self, uri_rule: Optional[UriMatchRule] = None) -> None:
        self.uri_rule = uri_rule or UriMatchRule()

    def validate(self, doc: Any, expected_image_uri: Optional[str] = None) -> ValidationResult:
        try:
            parsed = MetadataDocument.model_validate(doc)
        except ValidationError as e:
            reasons = tuple(_format_error(err) for err in e.errors(include_url=False))
            return ValidationResult(ok=False, reasons=reasons or ("document: invalid",))

        if expected_image_uri and not self.uri_rule.matches(parsed.image, expected_image_uri):
            return ValidationResult(
                ok=False,
                reasons=(f"image: {parsed.image!r} does not match locator {expected_image_uri!r}",),
                document=parsed,
            )

        return ValidationResult(ok=True, document=parsed)
