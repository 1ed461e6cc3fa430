"""
Data model shared by the negotiator and the relay.

ProxyTarget and Credential are the inputs, TunnelRequest/TunnelResponse the
two halves of the handshake, EstablishedTunnel the live socket handed from
the negotiator to the relay, and RelayOutcome what the relay reports back.
"""

import enum
from dataclasses import dataclass, field
from typing import Optional

from .protocol import (
    build_connect_request,
    close_connection,
    encode_basic_auth,
    format_authority,
    shutdown_both,
    shutdown_write,
)


def _check_port(name, value):
    if isinstance(value, bool) or not isinstance(value, int) or not 1 <= value <= 65535:
        raise ValueError(f"{name} must be an integer in 1-65535, got {value!r}")


def _check_host(name, value):
    if not isinstance(value, str) or not value:
        raise ValueError(f"{name} must be a non-empty string")
    # Whitespace would corrupt the request line
    if any(ch.isspace() for ch in value):
        raise ValueError(f"{name} must not contain whitespace, got {value!r}")


@dataclass(frozen=True)
class ProxyTarget:
    """Proxy endpoint plus the destination the proxy should connect to."""

    proxy_host: str
    proxy_port: int
    dest_host: str
    dest_port: int

    def __post_init__(self):
        _check_host("proxy_host", self.proxy_host)
        _check_port("proxy_port", self.proxy_port)
        _check_host("dest_host", self.dest_host)
        _check_port("dest_port", self.dest_port)

    @property
    def proxy_address(self):
        return (self.proxy_host, self.proxy_port)

    @property
    def authority(self):
        """Destination as it appears in the CONNECT request line."""
        return format_authority(self.dest_host, self.dest_port)

    def __str__(self):
        return f"{self.authority} via {format_authority(self.proxy_host, self.proxy_port)}"


@dataclass(frozen=True)
class Credential:
    """Username and secret for Basic proxy authentication. The secret never appears in repr."""

    username: str
    secret: str = field(repr=False)

    def __post_init__(self):
        # RFC 7617: the user-id cannot contain a colon, the password can
        if ":" in self.username:
            raise ValueError("Username must not contain ':'")

    def basic_token(self):
        return encode_basic_auth(self.username, self.secret)


@dataclass(frozen=True)
class TunnelRequest:
    """Wire-ready CONNECT request. Only the request line is ever shown."""

    request_line: str
    data: bytes = field(repr=False)
    authenticated: bool = False

    @classmethod
    def build(cls, target, credential=None):
        token = credential.basic_token() if credential is not None else None
        data = build_connect_request(target.authority, token)
        request_line = data.split(b"\r\n", 1)[0].decode("utf-8")
        return cls(request_line=request_line, data=data, authenticated=token is not None)


@dataclass(frozen=True)
class TunnelResponse:
    status_code: int
    status_line: str
    header_bytes_consumed: int
    http_version: str = "HTTP/1.1"

    @property
    def ok(self):
        return self.status_code == 200


class EstablishedTunnel:
    """
    Live byte stream to the destination, valid only after a 200 response.

    The relay owns it once negotiation succeeds. close() may be called any
    number of times; the socket is closed on the first call only.
    """

    def __init__(self, sock, target, response, pending=b""):
        self.sock = sock
        self.target = target
        self.response = response
        # Payload bytes read together with the response header block
        self.pending = pending
        self._closed = False

    def recv(self, bufsize):
        return self.sock.recv(bufsize)

    def sendall(self, data):
        self.sock.sendall(data)

    def shutdown_write(self):
        return shutdown_write(self.sock)

    def shutdown(self):
        shutdown_both(self.sock)

    def close(self):
        if self._closed:
            return
        self._closed = True
        close_connection(self.sock)

    @property
    def closed(self):
        return self._closed

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.close()

    def __repr__(self):
        state = "closed" if self._closed else "open"
        return f"<EstablishedTunnel {self.target} {state}>"


class RelaySide(enum.Enum):
    STDIN_TO_TUNNEL = "stdin->tunnel"
    TUNNEL_TO_STDOUT = "tunnel->stdout"


class RelayStatus(enum.Enum):
    CLOSED = "closed"
    ERRORED = "errored"
    CANCELLED = "cancelled"


@dataclass
class RelayOutcome:
    """
    Terminal result of a relay run.

    CLOSED also covers a relay that stopped waiting for stdin once the
    tunnel had ended and the linger period ran out; stdin never reached
    EOF in that case, but nothing it could still deliver had anywhere to go.
    """

    status: RelayStatus
    side: Optional[RelaySide] = None
    cause: Optional[BaseException] = None
    bytes_sent: int = 0
    bytes_received: int = 0

    @classmethod
    def closed(cls):
        return cls(RelayStatus.CLOSED)

    @classmethod
    def errored(cls, side, cause):
        return cls(RelayStatus.ERRORED, side=side, cause=cause)

    @classmethod
    def cancelled(cls):
        return cls(RelayStatus.CANCELLED)

    @property
    def ok(self):
        return self.status is RelayStatus.CLOSED

    def describe(self):
        if self.status is RelayStatus.ERRORED:
            return f"{self.status.value} on {self.side.value}: {self.cause}"
        return self.status.value
