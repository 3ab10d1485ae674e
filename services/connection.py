"""Per-client line stream handling."""

from __future__ import annotations

import logging
import socket
from dataclasses import dataclass
from typing import Tuple

from datastore.sqlite_store import SQLiteSink, StoreError
from services.decoder import Decoded, Keepalive, Malformed, WireFormat, decode_line

logger = logging.getLogger(__name__)

DEFAULT_IDLE_TIMEOUT = 300.0
DEFAULT_BUFFER_SIZE = 8192
DEFAULT_MAX_LINE_BYTES = 65536


@dataclass
class ConnectionStats:
    """Counters collected over the lifetime of one client connection."""

    line_count: int = 0
    record_count: int = 0
    keepalive_count: int = 0
    malformed_count: int = 0
    store_error_count: int = 0


def format_peer(address: object) -> str:
    if isinstance(address, tuple) and len(address) >= 2:
        return f"{address[0]}:{address[1]}"
    return str(address) or "unknown"


class ConnectionHandler:
    """Drives one client's line stream through the decoder and its sink.

    The handler keeps reading until the peer closes the stream or a
    non-timeout socket error occurs. Idle timeouts, malformed lines and store
    failures never end the connection.
    """

    def __init__(
        self,
        sock: socket.socket,
        address: Tuple[str, int] | str,
        sink: SQLiteSink,
        wire_format: WireFormat = WireFormat.delimited,
        idle_timeout: float = DEFAULT_IDLE_TIMEOUT,
        max_line_bytes: int = DEFAULT_MAX_LINE_BYTES,
        buffer_size: int = DEFAULT_BUFFER_SIZE,
    ) -> None:
        self.sock = sock
        self.address = address
        self.peer = format_peer(address)
        self.sink = sink
        self.wire_format = wire_format
        self.idle_timeout = idle_timeout
        self.max_line_bytes = max_line_bytes
        self.buffer_size = buffer_size
        self.stats = ConnectionStats()
        self._buffer = bytearray()
        self._discarding = False

    def run(self) -> ConnectionStats:
        logger.info("Client connected", extra={"peer": self.peer})
        try:
            self.sock.settimeout(self.idle_timeout)
            self._read_loop()
        except OSError as exc:
            logger.warning(
                "Connection error, closing", extra={"peer": self.peer, "reason": str(exc)}
            )
        finally:
            self.close()
        logger.info(
            "Connection closed",
            extra={
                "peer": self.peer,
                "line_count": self.stats.line_count,
                "record_count": self.stats.record_count,
                "keepalive_count": self.stats.keepalive_count,
                "malformed_count": self.stats.malformed_count,
                "store_error_count": self.stats.store_error_count,
            },
        )
        return self.stats

    def close(self) -> None:
        try:
            self.sock.close()
        except OSError:
            pass
        self.sink.close()

    def abort(self) -> None:
        """Interrupt a blocking read so the handler observes end-of-stream."""
        try:
            self.sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass

    def _read_loop(self) -> None:
        while True:
            try:
                chunk = self.sock.recv(self.buffer_size)
            except socket.timeout:
                logger.debug("Idle timeout elapsed, still waiting", extra={"peer": self.peer})
                continue

            if not chunk:
                self._flush_remainder()
                return

            self._feed(chunk)

    def _feed(self, chunk: bytes) -> None:
        self._buffer.extend(chunk)
        while True:
            newline = self._buffer.find(b"\n")
            if newline < 0:
                break
            raw = bytes(self._buffer[:newline])
            del self._buffer[: newline + 1]
            if self._discarding:
                # Tail of an oversized line already reported as malformed.
                self._discarding = False
                continue
            self._handle_raw_line(raw)

        if len(self._buffer) > self.max_line_bytes:
            if not self._discarding:
                self.stats.line_count += 1
                self._report_malformed(
                    bytes(self._buffer[:80]).decode("utf-8", errors="replace"),
                    f"line exceeds {self.max_line_bytes} bytes",
                )
            self._buffer.clear()
            self._discarding = True

    def _flush_remainder(self) -> None:
        if self._buffer and not self._discarding:
            self._handle_raw_line(bytes(self._buffer))
        self._buffer.clear()
        self._discarding = False

    def _handle_raw_line(self, raw: bytes) -> None:
        if len(raw) > self.max_line_bytes:
            self.stats.line_count += 1
            self._report_malformed(
                raw[:80].decode("utf-8", errors="replace"),
                f"line exceeds {self.max_line_bytes} bytes",
            )
            return
        try:
            text = raw.decode("utf-8")
        except UnicodeDecodeError:
            self.stats.line_count += 1
            self._report_malformed(raw.decode("utf-8", errors="replace"), "invalid utf-8")
            return
        line = text.strip()
        if not line:
            return
        self.stats.line_count += 1
        self.process_line(line)

    def process_line(self, line: str) -> None:
        logger.debug("Received line %r", line, extra={"peer": self.peer})
        outcome = decode_line(line, self.wire_format)

        if isinstance(outcome, Keepalive):
            self.stats.keepalive_count += 1
            return

        if isinstance(outcome, Malformed):
            self._report_malformed(outcome.raw_line, outcome.reason)
            return

        assert isinstance(outcome, Decoded)
        self._store(outcome)

    def _store(self, outcome: Decoded) -> None:
        try:
            self.sink.append(outcome.record)
        except StoreError as exc:
            self.stats.store_error_count += 1
            logger.error(
                "Dropping record after store failure",
                extra={
                    "peer": self.peer,
                    "session_id": outcome.record.session_id,
                    "reason": str(exc),
                },
            )
            return
        self.stats.record_count += 1

    def _report_malformed(self, raw_line: str, reason: str) -> None:
        self.stats.malformed_count += 1
        logger.warning(
            "Skipping malformed line %r",
            raw_line,
            extra={"peer": self.peer, "reason": reason},
        )

