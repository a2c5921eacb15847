"""Test that the project setup is working correctly."""

import smart_wallet_detector


def test_version() -> None:
    """Test that version is defined."""
    assert smart_wallet_detector.__version__ == "0.1.0"


def test_import_modules() -> None:
    """Test that all submodules can be imported."""
    from smart_wallet_detector import (
        aggregator,
        batcher,
        classifier,
        pipeline,
        report,
        source,
        storage,
    )

    # Just verify imports work
    assert source is not None
    assert classifier is not None
    assert batcher is not None
    assert aggregator is not None
    assert report is not None
    assert storage is not None
    assert pipeline is not None
