"""
Tunnel Negotiator - opens the proxy connection and performs CONNECT.

The negotiator:
1. Connects to the proxy (bounded by the connect timeout only)
2. Sends one CONNECT request, with Proxy-Authorization if a credential is given
3. Reads the response header block up to its blank terminator line
4. Hands back an EstablishedTunnel on 200, raises NegotiationError otherwise

Nothing is retried. A single proxy endpoint is authoritative per invocation.
"""

import logging
import threading

from utils.errors import (
    ConnectFailed,
    MalformedResponse,
    NegotiationCancelled,
    ProxyRejected,
    ResponseTruncated,
    WriteFailed,
)
from utils.models import EstablishedTunnel, TunnelRequest, TunnelResponse
from utils.protocol import (
    MAX_RESPONSE_HEADER_SIZE,
    RESPONSE_READ_SIZE,
    close_connection,
    create_tcp_connection,
    extract_status_line,
    find_header_end,
    format_http_message,
    parse_status_line,
    shutdown_both,
)

DEFAULT_CONNECT_TIMEOUT = 30

logger = logging.getLogger(__name__)


class TunnelNegotiator:
    """
    Performs a single CONNECT handshake against one proxy.

    Setting cancel_event is observed between socket operations; cancel()
    also shuts the socket down so a blocked connect or read returns at once.
    """

    def __init__(self, target, credential=None, connect_timeout=DEFAULT_CONNECT_TIMEOUT, cancel_event=None):
        self.target = target
        self.credential = credential
        self.connect_timeout = connect_timeout
        self.cancel_event = cancel_event or threading.Event()
        self.sock = None
        self.socket_lock = threading.Lock()

    def negotiate(self):
        """
        Run the handshake.

        Returns:
            EstablishedTunnel: Open tunnel, owned by the caller from here on

        Raises:
            NegotiationError: ConnectFailed, WriteFailed, ResponseTruncated,
                MalformedResponse, ProxyRejected or NegotiationCancelled
        """
        self._check_cancelled()

        request = TunnelRequest.build(self.target, self.credential)
        # The credential is only needed for the header value
        self.credential = None

        sock = self._connect()
        try:
            self._check_cancelled()
            self._send_request(sock, request)
            response, pending = self._read_response(sock)
        except BaseException:
            self._release_socket()
            raise

        # Ownership moves to the tunnel
        with self.socket_lock:
            self.sock = None

        logger.info(f"Tunnel to {self.target.authority} established")
        if pending:
            logger.debug(f"{len(pending)} payload bytes arrived with the response")
        return EstablishedTunnel(sock, self.target, response, pending)

    def cancel(self):
        """Abort the handshake from another thread (e.g. a signal handler)."""
        self.cancel_event.set()
        with self.socket_lock:
            if self.sock is not None:
                shutdown_both(self.sock)

    def _connect(self):
        host, port = self.target.proxy_address
        logger.info(f"Connecting to proxy {host}:{port}")
        try:
            sock = create_tcp_connection(
                host, port, timeout=self.connect_timeout, on_socket=self._publish_socket
            )
        except OSError as e:
            self._release_socket()
            self._check_cancelled(e)
            raise ConnectFailed(
                f"Cannot connect to proxy {host}:{port}: {e}", target=self.target
            ) from e

        with self.socket_lock:
            self.sock = sock
        return sock

    def _publish_socket(self, sock):
        # cancel() can only wake a connect on a socket it can see
        with self.socket_lock:
            self.sock = None
            self._check_cancelled()
            self.sock = sock

    def _send_request(self, sock, request):
        auth_note = " (with proxy authorization)" if request.authenticated else ""
        logger.debug(f"Sending {request.request_line}{auth_note}")
        try:
            sock.sendall(request.data)
        except OSError as e:
            self._check_cancelled(e)
            raise WriteFailed(f"Cannot send CONNECT request: {e}", target=self.target) from e

    def _read_response(self, sock):
        buffer = bytearray()
        while True:
            end = find_header_end(buffer)
            if end > MAX_RESPONSE_HEADER_SIZE or (end == -1 and len(buffer) >= MAX_RESPONSE_HEADER_SIZE):
                raise MalformedResponse(
                    f"Proxy response header exceeds {MAX_RESPONSE_HEADER_SIZE} bytes",
                    target=self.target,
                    status_line=extract_status_line(bytes(buffer)),
                )
            if end != -1:
                break

            try:
                chunk = sock.recv(RESPONSE_READ_SIZE)
            except OSError as e:
                self._check_cancelled(e)
                raise ResponseTruncated(
                    f"Cannot read CONNECT response: {e}", target=self.target
                ) from e

            if not chunk:
                self._check_cancelled()
                raise ResponseTruncated(
                    f"Proxy closed the connection after {len(buffer)} bytes of response",
                    target=self.target,
                )
            buffer.extend(chunk)

        header_block = bytes(buffer[:end])
        pending = bytes(buffer[end:])
        logger.debug(f"Proxy response: {format_http_message(header_block)}")
        return self._parse_response(header_block), pending

    def _parse_response(self, header_block):
        status_line = extract_status_line(header_block)
        try:
            http_version, status_code, _reason = parse_status_line(status_line)
        except ValueError as e:
            raise MalformedResponse(
                f"Malformed response from proxy: {status_line!r}",
                target=self.target,
                status_line=status_line,
            ) from e

        response = TunnelResponse(
            status_code=status_code,
            status_line=status_line,
            header_bytes_consumed=len(header_block),
            http_version=http_version,
        )
        if not response.ok:
            raise ProxyRejected(
                f"Proxy could not open connection to {self.target.authority}: {status_line}",
                code=status_code,
                status_line=status_line,
                target=self.target,
            )
        return response

    def _check_cancelled(self, cause=None):
        if not self.cancel_event.is_set():
            return
        error = NegotiationCancelled("Negotiation cancelled", target=self.target)
        if cause is not None:
            raise error from cause
        raise error

    def _release_socket(self):
        with self.socket_lock:
            sock, self.sock = self.sock, None
        close_connection(sock)


def negotiate(target, credential=None, connect_timeout=DEFAULT_CONNECT_TIMEOUT, cancel_event=None):
    """Open a CONNECT tunnel to target; see TunnelNegotiator.negotiate()."""
    negotiator = TunnelNegotiator(
        target,
        credential=credential,
        connect_timeout=connect_timeout,
        cancel_event=cancel_event,
    )
    return negotiator.negotiate()
