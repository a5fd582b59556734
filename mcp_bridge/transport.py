"""
MCP Transport layer implementations.

A transport moves raw JSON-RPC text between the process and one peer:
- StdioTransport: newline-delimited messages on stdin/stdout
- WebSocketTransport: one message per text frame on a single accepted connection
"""

import asyncio
import concurrent.futures
import io
import logging
import sys
import threading
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Optional, Tuple

from websockets.asyncio.server import ServerConnection, serve
from websockets.exceptions import ConnectionClosed, ConnectionClosedError

from .errors import TransportError

if TYPE_CHECKING:
    from .server import ServerConfig


logger = logging.getLogger(__name__)


class Transport(ABC):
    """Abstract base class for MCP transports."""

    @abstractmethod
    async def start(self, sink: asyncio.Queue) -> None:
        """
        Read messages until the channel closes, pushing each onto ``sink``.

        Frames that cannot be decoded are skipped. Raises TransportError on a
        fatal read failure.
        """
        pass

    @abstractmethod
    async def send_response(self, response: str) -> None:
        """Write one message using the channel's framing."""
        pass


class StdioTransport(Transport):
    """
    Transport using stdin/stdout for communication.

    Each message is one line of UTF-8 text. Blocking reads run on a daemon
    thread so the event loop keeps serving the dispatch task, and a read still
    pending on stdin never holds up interpreter exit.
    """

    def __init__(self, input_stream=None, output_stream=None):
        self.input = input_stream or sys.stdin.buffer
        self.output = output_stream or sys.stdout.buffer
        self._write_lock = asyncio.Lock()
        self._stopped = threading.Event()

    async def start(self, sink: asyncio.Queue) -> None:
        loop = asyncio.get_running_loop()
        finished = loop.create_future()
        self._stopped.clear()

        reader = threading.Thread(
            target=self._read_lines,
            args=(loop, sink, finished),
            name="stdio-reader",
            daemon=True,
        )
        reader.start()
        try:
            await finished
        finally:
            self._stopped.set()

    def _read_lines(self, loop: asyncio.AbstractEventLoop, sink: asyncio.Queue, finished: asyncio.Future) -> None:
        error = None
        try:
            while not self._stopped.is_set():
                line = self.input.readline()
                if not line:
                    logger.info("stdin closed")
                    break

                message = _decode_line(line)
                if message is None:
                    continue

                logger.debug(f"Received [stdio]: {message}")
                # Blocks this thread while the queue is full.
                asyncio.run_coroutine_threadsafe(sink.put(message), loop).result()
        except (OSError, ValueError) as e:
            error = TransportError(f"Failed to read from stdin: {e}")
        except (RuntimeError, concurrent.futures.CancelledError):
            logger.debug("Event loop went away, stdin reader exiting")
            return

        try:
            loop.call_soon_threadsafe(_settle, finished, error)
        except RuntimeError:
            logger.debug("Event loop closed before stdin reader finished")

    async def send_response(self, response: str) -> None:
        if not response:
            return

        logger.debug(f"Sending [stdio]: {response}")
        data = response + "\n"
        async with self._write_lock:
            try:
                if isinstance(self.output, io.TextIOBase):
                    self.output.write(data)
                else:
                    self.output.write(data.encode("utf-8"))
                self.output.flush()
            except (OSError, ValueError) as e:
                raise TransportError(f"Failed to write response: {e}") from e


def _decode_line(line) -> Optional[str]:
    """Strip one raw line; None for blank or undecodable lines."""
    if isinstance(line, bytes):
        try:
            line = line.decode("utf-8")
        except UnicodeDecodeError as e:
            logger.debug(f"Skipping undecodable line: {e}")
            return None
    return line.strip() or None


def _settle(future: asyncio.Future, error: Optional[Exception]) -> None:
    if future.done():
        return
    if error is not None:
        future.set_exception(error)
    else:
        future.set_result(None)


class WebSocketTransport(Transport):
    """
    Transport accepting WebSocket connections on one address.

    Connections are served one at a time: the current connection is the one
    responses go to, and a later connection waits until it closes.
    """

    def __init__(self, host: str = "127.0.0.1", port: int = 8080):
        self.host = host
        self.port = port
        self.bound_address: Optional[Tuple[str, int]] = None
        self.listening = asyncio.Event()
        self._writer: Optional[ServerConnection] = None
        self._writer_lock = asyncio.Lock()
        self._read_lock = asyncio.Lock()
        self._sink: Optional[asyncio.Queue] = None

    @property
    def connected(self) -> bool:
        return self._writer is not None

    async def start(self, sink: asyncio.Queue) -> None:
        self._sink = sink
        try:
            server = await serve(self._handle_connection, self.host, self.port)
        except OSError as e:
            raise TransportError(f"Failed to bind to {self.host}:{self.port}: {e}") from e

        async with server:
            self.bound_address = tuple(next(iter(server.sockets)).getsockname()[:2])
            logger.info(f"WebSocket server listening on: {self.bound_address[0]}:{self.bound_address[1]}")
            self.listening.set()
            await server.serve_forever()

    async def _handle_connection(self, connection: ServerConnection) -> None:
        async with self._read_lock:
            async with self._writer_lock:
                self._writer = connection
            logger.debug(f"New WebSocket connection from {connection.remote_address}")

            try:
                async for message in connection:
                    if not isinstance(message, str):
                        logger.debug("Skipping binary WebSocket frame")
                        continue
                    logger.debug(f"Received [websocket]: {message}")
                    await self._sink.put(message)
            except ConnectionClosedError as e:
                logger.error(f"WebSocket error: {e}")
            finally:
                async with self._writer_lock:
                    if self._writer is connection:
                        self._writer = None
                logger.debug("WebSocket connection closed")

    async def send_response(self, response: str) -> None:
        if not response:
            return

        async with self._writer_lock:
            if self._writer is None:
                logger.debug("No WebSocket peer connected, response dropped")
                return

            logger.debug(f"Sending [websocket]: {response}")
            try:
                await self._writer.send(response)
            except ConnectionClosed as e:
                logger.warning(f"Peer went away before the response was sent: {e}")
                self._writer = None


def parse_address(address: str) -> Tuple[str, int]:
    """Split ``host:port`` (IPv6 hosts may be bracketed)."""
    host, sep, port = address.rpartition(":")
    if not sep or not host or not port.isdigit():
        raise ValueError(f"Invalid address, expected host:port: {address!r}")
    return host.strip("[]"), int(port)


def create_transport(config: "ServerConfig") -> Transport:
    """Build the transport named by the configuration."""
    if config.transport == "stdio":
        return StdioTransport()
    if config.transport == "websocket":
        host, port = parse_address(config.ws_addr)
        return WebSocketTransport(host, port)
    raise ValueError(f"Invalid transport type: {config.transport!r}")
