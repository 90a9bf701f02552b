# src/nftpub/__init__.py
"""
Publish NFT off-chain assets to IPFS and confirm they are retrievable and
well-formed before a mint step references them.
"""

from nftpub.backoff import BackoffScheduler
from nftpub.hashing import AssetBundle, ContentHasher, digest
from nftpub.metadata import MetadataValidator, UriMatchRule, ValidationResult
from nftpub.models import Failed, PublishLocators, VerificationOutcome, Verified, VerifyMode
from nftpub.verifier import PublishVerifier

__all__ = [
    "AssetBundle",
    "BackoffScheduler",
    "ContentHasher",
    "Failed",
    "MetadataValidator",
    "PublishLocators",
    "PublishVerifier",
    "UriMatchRule",
    "ValidationResult",
    "VerificationOutcome",
    "Verified",
    "VerifyMode",
    "digest",
]
