"""UDP transport for the SIP user agent."""

from __future__ import annotations

import logging
import socket
import threading
from typing import Protocol, runtime_checkable

from minisip.constants import (
    DEFAULT_LOCAL_HOST,
    DEFAULT_SEND_RETRIES,
    DEFAULT_SERVER_HOST,
    DEFAULT_SIP_PORT,
    DEFAULT_TIMEOUT,
    RECV_BUFFER_SIZE,
)
from minisip.exceptions import SIPTimeout, SIPTransportError


__all__ = [
    "SIPTransport",
    "UDPTransport",
]


_logger = logging.getLogger(__name__)


@runtime_checkable
class SIPTransport(Protocol):
    """
    Moves raw SIP datagrams between the user agent and the server.

    All the methods block; failures are raised as :class:`SIPTimeout`
    or :class:`SIPTransportError`.
    """

    def send_request(self, data: bytes) -> bytes:
        """Send a request to the server, and return the raw reply."""

    def receive_request(self) -> tuple[bytes, tuple[str, int]]:
        """Wait for an inbound datagram, and return it with the peer address."""

    def send_response(self, data: bytes) -> None:
        """Send a response to the peer of the last received request."""

    def close(self) -> None:
        """Release the sockets."""


class UDPTransport:
    """
    Blocking UDP implementation of :class:`SIPTransport`.

    Requests go out on a fresh client socket for each attempt, and the reply is
    read back from the same socket. Inbound requests are received on a listening
    socket bound to ``(local_host, client_port)``, created lazily on first use,
    and responses are sent from it to the peer of the last received request.

    :param server_host: the address of the SIP server.
    :param server_port: the SIP port of the server.
    :param local_host: the local address to bind the listening socket to.
    :param client_port: the local port to bind the listening socket to.
    :param timeout: how long to wait for a datagram, in seconds.
    :param send_retries: how many times a request is sent before giving up.
    """

    def __init__(
        self,
        server_host: str = DEFAULT_SERVER_HOST,
        server_port: int = DEFAULT_SIP_PORT,
        *,
        local_host: str = DEFAULT_LOCAL_HOST,
        client_port: int = DEFAULT_SIP_PORT,
        timeout: float = DEFAULT_TIMEOUT,
        send_retries: int = DEFAULT_SEND_RETRIES,
    ):
        if send_retries < 1:
            raise ValueError("send_retries must be at least 1")
        self.server_host: str = server_host
        self.server_port: int = server_port
        self.local_host: str = local_host
        self.client_port: int = client_port
        self.timeout: float = timeout
        self.send_retries: int = send_retries

        self._server_socket: socket.socket | None = None
        self._socket_lock: threading.Lock = threading.Lock()
        self._last_message: bytes | None = None
        self._peer: tuple[str, int] | None = None

    @property
    def server_addr(self) -> tuple[str, int]:
        """The address of the SIP server."""
        return self.server_host, self.server_port

    @property
    def local_addr(self) -> tuple[str, int]:
        """The address the listening socket is bound to, once it has been created."""
        if self._server_socket is not None:
            host, port = self._server_socket.getsockname()[:2]
            return host, port
        return self.local_host, self.client_port

    @property
    def peer(self) -> tuple[str, int] | None:
        """The address of the last received request, where responses are sent."""
        return self._peer

    def send_request(self, data: bytes) -> bytes:  # noqa: D102
        last_error: SIPTransportError | None = None
        for attempt in range(1, self.send_retries + 1):
            try:
                with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as client_socket:
                    client_socket.settimeout(self.timeout)
                    client_socket.connect(self.server_addr)
                    client_socket.send(data)
                    _logger.debug(
                        f"Request sent to {self.server_host}:{self.server_port}:\n"
                        f"{data.decode('utf-8', errors='replace')}"
                    )
                    reply = client_socket.recv(RECV_BUFFER_SIZE)
            except socket.timeout:
                _logger.debug(
                    f"No response from the server within {self.timeout} seconds "
                    f"(attempt {attempt}/{self.send_retries})"
                )
                last_error = SIPTimeout(
                    f"No response from {self.server_host}:{self.server_port} "
                    f"within {self.timeout} seconds"
                )
                continue
            except OSError as e:
                _logger.warning(f"Error sending request to {self.server_host}: {e}")
                last_error = SIPTransportError(f"Error sending request: {e}")
                continue
            _logger.debug(
                f"Received response from server:\n{reply.decode('utf-8', errors='replace')}"
            )
            return reply

        _logger.warning(
            f"Server {self.server_host} not reachable, aborted after {self.send_retries} attempts"
        )
        assert last_error is not None
        raise last_error

    def _get_server_socket(self) -> socket.socket:
        if self._server_socket is None:
            server_socket = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
            try:
                server_socket.bind((self.local_host, self.client_port))
            except OSError as e:
                server_socket.close()
                raise SIPTransportError(
                    f"Cannot listen on {self.local_host}:{self.client_port}: {e}"
                ) from e
            self._server_socket = server_socket
            self._last_message = None
            _logger.info(f"Listening for SIP requests on {self.local_host}:{self.client_port}")
        return self._server_socket

    def receive_request(self) -> tuple[bytes, tuple[str, int]]:  # noqa: D102
        with self._socket_lock:
            server_socket = self._get_server_socket()
            server_socket.settimeout(self.timeout)
            try:
                data, addr = server_socket.recvfrom(RECV_BUFFER_SIZE)
            except socket.timeout as e:
                raise SIPTimeout(f"No request received within {self.timeout} seconds") from e
            except OSError as e:
                raise SIPTransportError(f"Error receiving request: {e}") from e

        peer: tuple[str, int] = (addr[0], addr[1])
        # retransmissions are handled, but only logged once
        if data != self._last_message:
            self._last_message = data
            _logger.debug(
                f"Request received from {peer[0]}:{peer[1]}:\n"
                f"{data.decode('utf-8', errors='replace')}"
            )
        self._peer = peer
        return data, peer

    def send_response(self, data: bytes) -> None:  # noqa: D102
        if self._peer is None:
            raise SIPTransportError("No peer to respond to, no request was received yet")
        with self._socket_lock:
            server_socket = self._get_server_socket()
            try:
                server_socket.sendto(data, self._peer)
            except OSError as e:
                raise SIPTransportError(f"Error sending response to {self._peer}: {e}") from e
        _logger.debug(
            f"Response sent to {self._peer[0]}:{self._peer[1]}:\n"
            f"{data.decode('utf-8', errors='replace')}"
        )

    def close(self) -> None:  # noqa: D102
        with self._socket_lock:
            if self._server_socket is not None:
                self._server_socket.close()
                _logger.debug("Listening socket closed")
            self._server_socket = None
            self._peer = None

    def __repr__(self) -> str:
        return (
            f"<{self.__class__.__name__}> {self.server_host}:{self.server_port} "
            f"listening on {self.local_host}:{self.client_port}"
        )
