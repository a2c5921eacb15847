"""Wallet classifier - reputation and liveness checks for swap recipients."""

from smart_wallet_detector.classifier.chain import (
    ChainClient,
    ChainClientError,
    ChainLookupFailed,
)
from smart_wallet_detector.classifier.classifier import (
    WalletClassifier,
)
from smart_wallet_detector.classifier.explorer import (
    ExplorerClient,
    ExplorerError,
    LookupFailed,
    RateLimitError,
)
from smart_wallet_detector.classifier.models import (
    UNKNOWN_TX_COUNT,
    AcceptancePolicy,
    CheckPolicy,
    FailurePolicy,
    WalletVerdict,
)

__all__ = [
    # Classifier
    "WalletClassifier",
    # Chain Client
    "ChainClient",
    "ChainClientError",
    "ChainLookupFailed",
    # Explorer Client
    "ExplorerClient",
    "ExplorerError",
    "LookupFailed",
    "RateLimitError",
    # Models
    "UNKNOWN_TX_COUNT",
    "AcceptancePolicy",
    "CheckPolicy",
    "FailurePolicy",
    "WalletVerdict",
]
