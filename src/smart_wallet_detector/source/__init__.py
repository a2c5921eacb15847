"""Event source - paginated swap history from the indexer."""

from smart_wallet_detector.source.models import (
    Event,
    EventFilter,
    SwapSide,
)
from smart_wallet_detector.source.subgraph import (
    EventSource,
    SourceUnavailable,
    SubgraphClient,
    SubgraphError,
)

__all__ = [
    # Models
    "Event",
    "EventFilter",
    "SwapSide",
    # Subgraph
    "EventSource",
    "SourceUnavailable",
    "SubgraphClient",
    "SubgraphError",
]
