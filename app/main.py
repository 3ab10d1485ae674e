from __future__ import annotations

import logging
import socket
from dataclasses import dataclass
from functools import partial
from pathlib import Path
from typing import Optional

from datastore.sqlite_store import initialize_store, open_sink
from services.acceptor import Acceptor
from services.decoder import WireFormat
from services.shutdown import ShutdownCoordinator, ShutdownFlag
from settings import Settings, get_settings

logger = logging.getLogger(__name__)

LISTEN_BACKLOG = 128


@dataclass
class TelemetryServer:
    """A bound listener and an initialized store, ready to accept clients."""

    settings: Settings
    listener: socket.socket
    db_path: Path
    flag: ShutdownFlag
    acceptor: Acceptor

    @property
    def address(self) -> tuple[str, int]:
        host, port = self.listener.getsockname()[:2]
        return host, port

    def serve(self) -> int:
        """Accept clients until SIGINT/SIGTERM, then drain. Returns stalled count."""
        with ShutdownCoordinator(self.flag):
            return self.acceptor.serve_forever()

    def shutdown(self) -> None:
        self.flag.trigger()


def bind_listener(host: str, port: int, backlog: int = LISTEN_BACKLOG) -> socket.socket:
    listener = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    try:
        listener.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        listener.bind((host, port))
        listener.listen(backlog)
    except OSError:
        listener.close()
        raise
    return listener


def create_server(settings: Optional[Settings] = None) -> TelemetryServer:
    """Bind the socket and prepare the store.

    Raises ``OSError`` when the port cannot be bound and ``StoreError`` when
    the store cannot be initialized; nothing is left open in either case.
    """
    settings = settings or get_settings()
    db_path = initialize_store(settings.db_path)
    listener = bind_listener(settings.host, settings.port)

    flag = ShutdownFlag()
    acceptor = Acceptor(
        listener=listener,
        sink_factory=partial(open_sink, db_path),
        flag=flag,
        wire_format=WireFormat(settings.wire_format),
        idle_timeout=settings.idle_timeout,
        poll_interval=settings.accept_poll_interval,
        drain_timeout=settings.drain_timeout,
        max_line_bytes=settings.max_line_bytes,
    )
    server = TelemetryServer(
        settings=settings,
        listener=listener,
        db_path=db_path,
        flag=flag,
        acceptor=acceptor,
    )
    host, port = server.address
    logger.info(
        "Server listening on port %s",
        port,
        extra={"address": f"{host}:{port}", "wire_format": settings.wire_format, "db_path": db_path},
    )
    return server

