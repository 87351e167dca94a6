"""Chunked log writer that forwards buffered log bytes to a streaming sender."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, Union

DEFAULT_BUFFER_SIZE = 64 * 1024
"""Default chunk size, sized for streamed gRPC messages."""


@dataclass(frozen=True)
class Log:
    """A chunk of log data for a named result."""

    name: str
    data: bytes


@dataclass(frozen=True)
class HttpBody:
    """A chunk of log data sent as an HTTP body."""

    content_type: str
    data: bytes


class LogSender(Protocol):
    def send(self, message: Log) -> None: ...


class HttpSender(Protocol):
    def send(self, message: HttpBody) -> None: ...


class BufferedLog:
    """In-memory buffer that sends log data to a sender in fixed-size chunks."""

    def __init__(
        self,
        sender: Union[LogSender, HttpSender],
        name: str,
        size: int = DEFAULT_BUFFER_SIZE,
        *,
        http: bool = False,
    ) -> None:
        self._sender = sender
        self._name = name
        self._size = size if size >= 1 else DEFAULT_BUFFER_SIZE
        self._http = http
        self._buffer = bytearray()

    @property
    def size(self) -> int:
        return self._size

    def write(self, data: bytes) -> int:
        """Buffer ``data`` and send every complete chunk; return ``len(data)``.

        A failing send raises and leaves the buffer as it was before the call.
        """
        pending = bytes(self._buffer) + bytes(data)
        whole = len(pending) - len(pending) % self._size
        for offset in range(0, whole, self._size):
            self._send(pending[offset : offset + self._size])
        self._buffer = bytearray(pending[whole:])
        return len(data)

    def flush(self) -> int:
        """Send whatever remains in the buffer and return the number of bytes sent."""
        if self._buffer:
            return self._send(bytes(self._buffer))
        return 0

    def _send(self, chunk: bytes) -> int:
        if self._http:
            message: Union[Log, HttpBody] = HttpBody(content_type="text/plain", data=chunk)
        else:
            message = Log(name=self._name, data=chunk)
        self._sender.send(message)
        return len(chunk)


def new_buffered_writer(sender: LogSender, name: str, size: int) -> BufferedLog:
    """Return a writer sending :class:`Log` chunks; ``size`` below 1 means the default."""
    return BufferedLog(sender, name, size)


def new_buffered_http_writer(sender: HttpSender, name: str, size: int) -> BufferedLog:
    """Return a writer sending :class:`HttpBody` chunks; ``size`` below 1 means the default."""
    return BufferedLog(sender, name, size, http=True)