"""Process-wide shutdown signalling."""

from __future__ import annotations

import logging
import signal
import threading
from types import FrameType, TracebackType
from typing import Any, Dict, Optional, Sequence, Type

logger = logging.getLogger(__name__)

DEFAULT_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class ShutdownFlag:
    """Run flag shared by the signal handler and the accept loop.

    ``running`` starts true and turns false at most once; it is never reset.
    """

    def __init__(self) -> None:
        self._stopped = threading.Event()
        self._lock = threading.Lock()

    @property
    def running(self) -> bool:
        return not self._stopped.is_set()

    def trigger(self) -> bool:
        """Flip the flag to stopped. Returns True only for the first call."""
        with self._lock:
            if self._stopped.is_set():
                return False
            self._stopped.set()
            return True

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Sleep up to ``timeout`` seconds, waking early once triggered."""
        return self._stopped.wait(timeout)


class ShutdownCoordinator:
    """Installs termination signal handlers that trigger a :class:`ShutdownFlag`.

    Must be installed from the main thread, as required by :mod:`signal`.
    """

    def __init__(self, flag: ShutdownFlag, signals: Sequence[signal.Signals] = DEFAULT_SIGNALS) -> None:
        self.flag = flag
        self.signals = tuple(signals)
        self._original_handlers: Dict[signal.Signals, Any] = {}

    def install(self) -> None:
        for signum in self.signals:
            self._original_handlers[signum] = signal.signal(signum, self._handle_signal)

    def restore(self) -> None:
        while self._original_handlers:
            signum, handler = self._original_handlers.popitem()
            signal.signal(signum, handler)

    def _handle_signal(self, signum: int, _frame: Optional[FrameType]) -> None:
        if self.flag.trigger():
            logger.info(
                "Received %s, closing server gracefully", signal.Signals(signum).name
            )

    def __enter__(self) -> "ShutdownCoordinator":
        self.install()
        return self

    def __exit__(
        self,
        exc_type: Optional[Type[BaseException]],
        exc: Optional[BaseException],
        tb: Optional[TracebackType],
    ) -> None:
        self.restore()
