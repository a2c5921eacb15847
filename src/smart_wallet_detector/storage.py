"""JSON persistence for wallet datasets and profit reports.

Datasets are address-keyed JSON objects. Decimal amounts are stored as
strings so totals reload without float rounding.
"""

from __future__ import annotations

import json
import logging
import os
from collections.abc import Iterable
from pathlib import Path
from typing import Any

from smart_wallet_detector.aggregator import WalletAggregator
from smart_wallet_detector.report import ProfitRecord, report_to_mapping

logger = logging.getLogger(__name__)


class StorageError(Exception):
    """Base exception for dataset persistence errors."""


class PersistenceFailed(StorageError):
    """Raised when a dataset cannot be written.

    Attributes:
        path: Destination that failed.
        result: The in-memory result that was not persisted, if any.
    """

    def __init__(self, message: str, *, path: str | Path, result: Any = None) -> None:
        super().__init__(message)
        self.path = Path(path)
        self.result = result


class DatasetNotFound(StorageError):
    """Raised when a dataset to load does not exist."""


class DatasetCorrupt(StorageError):
    """Raised when a dataset exists but cannot be parsed."""


def write_json(path: str | Path, data: dict[str, Any]) -> Path:
    """Write JSON atomically (temporary file, then rename).

    Raises:
        PersistenceFailed: If the file cannot be written.
    """
    target = Path(path)
    tmp = target.with_name(f".{target.name}.tmp")
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        tmp.write_text(json.dumps(data, indent=2), encoding="utf-8")
        os.replace(tmp, target)
    except (OSError, TypeError, ValueError) as e:
        raise PersistenceFailed(f"Failed to write {target}: {e}", path=target) from e
    logger.info("Saved %d records to %s", len(data), target)
    return target


def read_json(path: str | Path) -> dict[str, Any]:
    """Read an address-keyed JSON dataset.

    Raises:
        DatasetNotFound: If the file does not exist.
        DatasetCorrupt: If the file is not a JSON object.
    """
    source = Path(path)
    logger.info("Reading data from %s...", source)
    try:
        data = json.loads(source.read_text(encoding="utf-8"))
    except FileNotFoundError as e:
        raise DatasetNotFound(f"Dataset not found: {source}") from e
    except (OSError, ValueError) as e:
        raise DatasetCorrupt(f"Failed to read {source}: {e}") from e
    if not isinstance(data, dict):
        raise DatasetCorrupt(f"Dataset {source} is not an address-keyed object")
    return data


def save_aggregates(path: str | Path, aggregator: WalletAggregator) -> Path:
    """Persist a wallet dataset."""
    try:
        return write_json(path, aggregator.to_mapping())
    except PersistenceFailed as e:
        e.result = aggregator
        raise


def load_aggregates(path: str | Path) -> WalletAggregator:
    """Load a wallet dataset written by ``save_aggregates``.

    Raises:
        DatasetNotFound: If the file does not exist.
        DatasetCorrupt: If the file or a record is malformed.
    """
    data = read_json(path)
    try:
        return WalletAggregator.from_mapping(data)
    except (ValueError, AttributeError) as e:
        raise DatasetCorrupt(f"Malformed wallet dataset {path}: {e}") from e


def save_report(path: str | Path, records: Iterable[ProfitRecord]) -> Path:
    """Persist a ranked profit report, preserving rank order."""
    ranked = list(records)
    try:
        return write_json(path, report_to_mapping(ranked))
    except PersistenceFailed as e:
        e.result = ranked
        raise
