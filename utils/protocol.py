"""
HTTP CONNECT framing for opening a tunnel through a proxy.

Request Format (always CRLF line endings):
    CONNECT <desthost>:<destport> HTTP/1.0
    Host: <desthost>:<destport>
    Proxy-Authorization: Basic <base64(username:secret)>    (optional)
    <blank line>

Response Format (CRLF or bare LF accepted):
    HTTP/<major>.<minor> <code> <reason>
    <zero or more header lines, ignored>
    <blank line>

Everything the proxy sends after the blank line belongs to the tunnel.
"""

import base64
import logging
import re
import socket

# The request version is fixed, never negotiated
CONNECT_HTTP_VERSION = "HTTP/1.0"
CRLF = "\r\n"

# Guard against a proxy that never terminates its header block
MAX_RESPONSE_HEADER_SIZE = 64 * 1024
RESPONSE_READ_SIZE = 4096

STATUS_LINE_RE = re.compile(r"^HTTP/(\d+)\.(\d+)[ \t]+(\d{3})(?:[ \t]+(.*))?$")

logger = logging.getLogger(__name__)


def format_authority(host, port):
    """
    Format host and port as a request-target authority.

    IPv6 literals are wrapped in brackets unless already bracketed.
    """
    if ":" in host and not host.startswith("["):
        host = f"[{host}]"
    return f"{host}:{port}"


def encode_basic_auth(username, secret):
    """Return the base64 token for a Basic authorization header."""
    token = f"{username}:{secret}".encode("utf-8")
    return base64.b64encode(token).decode("ascii")


def build_connect_request(authority, auth_token=None):
    """
    Build the wire bytes of a CONNECT request.

    Args:
        authority: Destination as "host:port"
        auth_token: Base64 Basic token, or None for no Proxy-Authorization

    Returns:
        bytes: Request line, headers and blank-line terminator
    """
    lines = [
        f"CONNECT {authority} {CONNECT_HTTP_VERSION}",
        f"Host: {authority}",
    ]
    if auth_token:
        lines.append(f"Proxy-Authorization: Basic {auth_token}")

    # Two empty entries give the trailing CRLF of the last header plus the blank line
    lines.extend(["", ""])
    return CRLF.join(lines).encode("utf-8")


def find_header_end(buffer):
    """
    Locate the end of the response header block.

    Args:
        buffer: Bytes received from the proxy so far

    Returns:
        int: Offset just past the blank terminator line, or -1 if not yet seen
    """
    pos = 0
    while True:
        newline = buffer.find(b"\n", pos)
        if newline == -1:
            return -1

        line = buffer[pos:newline]
        # A blank line before the status line is not a terminator
        if pos > 0 and line in (b"", b"\r"):
            return newline + 1

        pos = newline + 1


def extract_status_line(header_block):
    """Return the first line of a header block as text, without its line ending."""
    first_line = header_block.split(b"\n", 1)[0].rstrip(b"\r")
    return first_line.decode("iso-8859-1")


def parse_status_line(status_line):
    """
    Parse an HTTP status line.

    Returns:
        tuple: (http_version, status_code, reason)

    Raises:
        ValueError: If the line is not an HTTP status line
    """
    match = STATUS_LINE_RE.match(status_line.strip())
    if not match:
        raise ValueError(f"Invalid status line: {status_line!r}")

    major, minor, code, reason = match.groups()
    return f"HTTP/{major}.{minor}", int(code), (reason or "").strip()


def create_tcp_connection(host, port, timeout=30, on_socket=None):
    """
    Create a TCP connection, bounded by timeout only while connecting.

    Each resolved address is tried in turn, as socket.create_connection does.

    Args:
        host: Target hostname/IP
        port: Target port
        timeout: Connection timeout in seconds
        on_socket: Called with each socket before it connects, so another
            thread can shut it down to abandon the attempt

    Returns:
        socket: Connected socket in blocking mode

    Raises:
        OSError: If the host cannot be resolved or reached in time
    """
    last_error = None
    for family, socktype, proto, _canonname, address in socket.getaddrinfo(host, port, 0, socket.SOCK_STREAM):
        sock = socket.socket(family, socktype, proto)
        try:
            if on_socket:
                on_socket(sock)
            sock.settimeout(timeout)
            sock.connect(address)
        except OSError as e:
            close_connection(sock)
            last_error = e
            continue
        except BaseException:
            close_connection(sock)
            raise

        sock.settimeout(None)
        logger.info(f"Connected to {host}:{port}")
        return sock

    if last_error is None:
        last_error = OSError(f"No addresses found for {host}:{port}")
    raise last_error


def shutdown_write(sock):
    """
    Half-close a socket so the peer sees EOF while reads stay open.

    Returns:
        bool: True if the write half was shut down by this call
    """
    try:
        sock.shutdown(socket.SHUT_WR)
        logger.debug("Write half shut down")
        return True
    except OSError as e:
        # Peer already gone or socket already closed
        logger.debug(f"Write half shutdown skipped: {e}")
        return False


def shutdown_both(sock):
    """Shut down both directions, waking any thread blocked on the socket."""
    try:
        sock.shutdown(socket.SHUT_RDWR)
    except OSError as e:
        logger.debug(f"Shutdown skipped: {e}")


def close_connection(sock):
    """
    Close a socket connection, tolerating sockets that are already closed.

    Args:
        sock: Socket to close
    """
    try:
        if sock:
            sock.close()
            logger.debug("Connection closed")
    except OSError as e:
        logger.error(f"Error closing connection: {e}")


# Helper function for debugging
def format_http_message(data, max_length=200):
    """
    Format HTTP message for logging (truncate if too long).

    Args:
        data: HTTP message bytes
        max_length: Maximum length to display

    Returns:
        str: Formatted message for logging
    """
    decoded = data.decode("iso-8859-1").replace("\r", "")
    if len(decoded) > max_length:
        return decoded[:max_length] + "..."
    return decoded
