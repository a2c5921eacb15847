"""Signal handling that turns SIGINT/SIGTERM into a cancellation event.

The event is handed to the batcher: once set, no further groups are
scheduled and the partial aggregate is returned. A second signal exits
immediately.

Usage:
    ```python
    async with GracefulShutdown() as shutdown:
        result = await pipeline.run(event_filter, cancel_event=shutdown.event)
    ```
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys
from contextlib import suppress
from types import FrameType
from typing import Any

logger = logging.getLogger(__name__)

# Signals to trap for graceful shutdown
SHUTDOWN_SIGNALS = (signal.SIGTERM, signal.SIGINT)


class GracefulShutdown:
    """Async context manager that traps shutdown signals.

    On Unix the handlers are installed on the running event loop; on Windows
    only SIGINT is available and ``signal.signal`` is used instead.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._shutdown_requested = False
        self._loop: asyncio.AbstractEventLoop | None = None
        self._original_handlers: dict[signal.Signals, Any] = {}

    @property
    def event(self) -> asyncio.Event:
        """Event set once shutdown is requested."""
        return self._event

    @property
    def is_shutdown_requested(self) -> bool:
        """Check if shutdown has been requested."""
        return self._shutdown_requested

    def request_shutdown(self) -> None:
        """Programmatically request shutdown."""
        if not self._shutdown_requested:
            self._shutdown_requested = True
            logger.info("Shutdown requested programmatically")
            self._event.set()

    def install_signal_handlers(self) -> None:
        """Install signal handlers for graceful shutdown."""
        self._loop = asyncio.get_running_loop()
        for sig in SHUTDOWN_SIGNALS:
            try:
                if sys.platform == "win32":
                    self._original_handlers[sig] = signal.signal(sig, self._handle_signal_sync)
                else:
                    self._loop.add_signal_handler(sig, self._handle_signal, sig)
                logger.debug("Installed handler for %s", sig.name)
            except (ValueError, OSError, RuntimeError) as e:
                logger.warning("Could not install handler for %s: %s", sig.name, e)

    def remove_signal_handlers(self) -> None:
        """Remove installed signal handlers and restore originals."""
        if sys.platform == "win32":
            for sig, original in self._original_handlers.items():
                with suppress(ValueError, OSError):
                    signal.signal(sig, original)
            self._original_handlers.clear()
        elif self._loop is not None:
            for sig in SHUTDOWN_SIGNALS:
                with suppress(ValueError, OSError, RuntimeError):
                    self._loop.remove_signal_handler(sig)

    def _handle_signal(self, sig: signal.Signals) -> None:
        if self._shutdown_requested:
            logger.warning("Received %s again - forcing exit!", sig.name)
            sys.exit(128 + sig.value)
        self._shutdown_requested = True
        logger.info("Received %s - finishing the current group and stopping...", sig.name)
        self._event.set()

    def _handle_signal_sync(self, sig: int, _frame: FrameType | None) -> None:
        self._handle_signal(signal.Signals(sig))

    async def __aenter__(self) -> GracefulShutdown:
        self.install_signal_handlers()
        return self

    async def __aexit__(self, *_args: Any) -> None:
        self.remove_signal_handlers()
