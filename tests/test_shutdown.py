"""Tests for the graceful shutdown handler."""

from __future__ import annotations

import asyncio
import signal
import sys
from unittest.mock import MagicMock, patch

import pytest

from smart_wallet_detector.shutdown import SHUTDOWN_SIGNALS, GracefulShutdown


class TestGracefulShutdownInit:
    """Tests for GracefulShutdown initialization."""

    def test_initial_state(self) -> None:
        """Should start in non-shutdown state."""
        shutdown = GracefulShutdown()
        assert shutdown.is_shutdown_requested is False
        assert shutdown.event.is_set() is False

    def test_signals(self) -> None:
        """Should trap SIGTERM and SIGINT."""
        assert signal.SIGTERM in SHUTDOWN_SIGNALS
        assert signal.SIGINT in SHUTDOWN_SIGNALS


class TestRequestShutdown:
    """Tests for programmatic shutdown requests."""

    async def test_request_shutdown_sets_event(self) -> None:
        """Should set the flag and the cancellation event."""
        shutdown = GracefulShutdown()

        shutdown.request_shutdown()

        assert shutdown.is_shutdown_requested is True
        assert shutdown.event.is_set()

    async def test_request_shutdown_idempotent(self) -> None:
        """Multiple requests should be idempotent."""
        shutdown = GracefulShutdown()

        shutdown.request_shutdown()
        shutdown.request_shutdown()

        assert shutdown.is_shutdown_requested is True


class TestSignalHandling:
    """Tests for signal handler behaviour."""

    async def test_first_signal_sets_event(self) -> None:
        """First signal should request a graceful stop."""
        shutdown = GracefulShutdown()

        shutdown._handle_signal(signal.SIGTERM)

        assert shutdown.is_shutdown_requested is True
        assert shutdown.event.is_set()

    async def test_second_signal_forces_exit(self) -> None:
        """Second signal should exit immediately."""
        shutdown = GracefulShutdown()
        shutdown._handle_signal(signal.SIGINT)

        with pytest.raises(SystemExit) as exc_info:
            shutdown._handle_signal(signal.SIGINT)

        assert exc_info.value.code == 128 + signal.SIGINT.value

    @pytest.mark.skipif(sys.platform == "win32", reason="Unix signal handlers only")
    async def test_install_and_remove_handlers(self) -> None:
        """Handlers should be installed on and removed from the running loop."""
        loop = asyncio.get_running_loop()
        shutdown = GracefulShutdown()

        with (
            patch.object(loop, "add_signal_handler") as mock_add,
            patch.object(loop, "remove_signal_handler") as mock_remove,
        ):
            shutdown.install_signal_handlers()
            shutdown.remove_signal_handlers()

        assert mock_add.call_count == len(SHUTDOWN_SIGNALS)
        assert mock_remove.call_count == len(SHUTDOWN_SIGNALS)

    @pytest.mark.skipif(sys.platform == "win32", reason="Unix signal handlers only")
    async def test_install_failure_is_logged(self) -> None:
        """Failing to install a handler should not raise."""
        loop = asyncio.get_running_loop()
        shutdown = GracefulShutdown()

        with patch.object(loop, "add_signal_handler", MagicMock(side_effect=RuntimeError("no"))):
            shutdown.install_signal_handlers()

        assert shutdown.is_shutdown_requested is False

    @pytest.mark.skipif(sys.platform == "win32", reason="Unix signal handlers only")
    async def test_real_signal_sets_event(self) -> None:
        """A delivered SIGTERM should set the event inside the context."""
        async with GracefulShutdown() as shutdown:
            signal.raise_signal(signal.SIGTERM)
            await asyncio.wait_for(shutdown.event.wait(), timeout=1.0)

        assert shutdown.is_shutdown_requested is True


class TestContextManager:
    """Tests for async context manager usage."""

    async def test_enter_and_exit(self) -> None:
        """Context manager should install and remove handlers."""
        shutdown = GracefulShutdown()

        with (
            patch.object(shutdown, "install_signal_handlers") as mock_install,
            patch.object(shutdown, "remove_signal_handlers") as mock_remove,
        ):
            async with shutdown as entered:
                assert entered is shutdown
                mock_install.assert_called_once()

            mock_remove.assert_called_once()
