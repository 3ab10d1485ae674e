"""Connection acceptance loop and shutdown drain."""

from __future__ import annotations

import logging
import socket
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from datastore.sqlite_store import SQLiteSink, StoreError
from services.connection import (
    DEFAULT_IDLE_TIMEOUT,
    DEFAULT_MAX_LINE_BYTES,
    ConnectionHandler,
    format_peer,
)
from services.decoder import WireFormat
from services.shutdown import ShutdownFlag

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 0.1
# Grace period for force-closed handlers to unwind after the drain deadline.
_ABORT_GRACE_SECONDS = 1.0

SinkFactory = Callable[[], SQLiteSink]


@dataclass
class _ActiveConnection:
    handler: ConnectionHandler
    thread: threading.Thread


class Acceptor:
    """Accepts clients while the shutdown flag is up, one handler thread each."""

    def __init__(
        self,
        listener: socket.socket,
        sink_factory: SinkFactory,
        flag: ShutdownFlag,
        wire_format: WireFormat = WireFormat.delimited,
        idle_timeout: float = DEFAULT_IDLE_TIMEOUT,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        drain_timeout: Optional[float] = None,
        max_line_bytes: int = DEFAULT_MAX_LINE_BYTES,
    ) -> None:
        self.listener = listener
        self.sink_factory = sink_factory
        self.flag = flag
        self.wire_format = wire_format
        self.idle_timeout = idle_timeout
        self.poll_interval = poll_interval
        self.drain_timeout = drain_timeout
        self.max_line_bytes = max_line_bytes
        self.accepting = threading.Event()
        self._active: Dict[int, _ActiveConnection] = {}
        self._active_lock = threading.Lock()
        self._next_id = 0

    @property
    def active_connections(self) -> int:
        with self._active_lock:
            return len(self._active)

    def serve_forever(self) -> int:
        """Run the accept loop until shutdown, then drain open connections.

        Returns the number of handlers still running after the drain.
        """
        self.listener.settimeout(self.poll_interval)
        self.accepting.set()
        try:
            while self.flag.running:
                self._accept_once()
        finally:
            self.accepting.clear()
            self._close_listener()

        logger.info(
            "Server shutting down, waiting for client connections to finish",
            extra={"active_connections": self.active_connections},
        )
        stalled = self.drain(self.drain_timeout)
        logger.info("Server shutdown complete", extra={"stalled": stalled or None})
        return stalled

    def drain(self, timeout: Optional[float] = None) -> int:
        """Wait for every spawned handler to finish.

        Without a timeout this waits indefinitely. With one, handlers still
        running at the deadline have their sockets shut down and are given a
        short grace period to exit.
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        for active in self._snapshot():
            remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
            active.thread.join(remaining)

        stalled = [active for active in self._snapshot() if active.thread.is_alive()]
        if not stalled:
            return 0

        logger.warning(
            "Drain deadline reached, force-closing stalled connections",
            extra={"stalled": len(stalled)},
        )
        for active in stalled:
            active.handler.abort()
        for active in stalled:
            active.thread.join(_ABORT_GRACE_SECONDS)
        return sum(1 for active in stalled if active.thread.is_alive())

    def _accept_once(self) -> None:
        try:
            client, address = self.listener.accept()
        except (socket.timeout, BlockingIOError):
            return
        except OSError as exc:
            logger.error("Connection error: %s", exc)
            self.flag.wait(self.poll_interval)
            return

        self._spawn(client, address)

    def _spawn(self, client: socket.socket, address: object) -> None:
        peer = format_peer(address)
        try:
            sink = self.sink_factory()
        except StoreError as exc:
            logger.error(
                "Failed to open store for client, closing connection",
                extra={"peer": peer, "reason": str(exc)},
            )
            client.close()
            return

        handler = ConnectionHandler(
            client,
            address,  # type: ignore[arg-type]
            sink,
            wire_format=self.wire_format,
            idle_timeout=self.idle_timeout,
            max_line_bytes=self.max_line_bytes,
        )
        with self._active_lock:
            connection_id = self._next_id
            self._next_id += 1
            thread = threading.Thread(
                target=self._run_handler,
                args=(connection_id, handler),
                name=f"conn-{connection_id}",
                daemon=True,
            )
            self._active[connection_id] = _ActiveConnection(handler=handler, thread=thread)
        thread.start()

    def _run_handler(self, connection_id: int, handler: ConnectionHandler) -> None:
        try:
            handler.run()
        except Exception:  # noqa: BLE001 - one client must not take down the server
            logger.exception("Unexpected error handling client", extra={"peer": handler.peer})
            handler.close()
        finally:
            self._clear_connection(connection_id)

    def _clear_connection(self, connection_id: int) -> None:
        with self._active_lock:
            self._active.pop(connection_id, None)

    def _snapshot(self) -> list[_ActiveConnection]:
        with self._active_lock:
            return list(self._active.values())

    def _close_listener(self) -> None:
        try:
            self.listener.close()
        except OSError:
            pass
