"""
Utils package for the rockscrew proxy tunnel helper.

This package provides the CONNECT wire framing, the data model handed
between the negotiator and the relay, and the error taxonomy.
"""

# Import main protocol functions and constants for easy access
from .protocol import (
    build_connect_request,
    find_header_end,
    parse_status_line,
    create_tcp_connection,
    close_connection,
    format_http_message,
    CONNECT_HTTP_VERSION,
    MAX_RESPONSE_HEADER_SIZE,
)
from .models import (
    ProxyTarget,
    Credential,
    TunnelRequest,
    TunnelResponse,
    EstablishedTunnel,
    RelaySide,
    RelayStatus,
    RelayOutcome,
)
from .errors import (
    TunnelError,
    NegotiationError,
    ConnectFailed,
    WriteFailed,
    ResponseTruncated,
    MalformedResponse,
    ProxyRejected,
    NegotiationCancelled,
    CredentialError,
)

# Package metadata
__version__ = "0.2.0"
__author__ = "rockscrew developers"
__description__ = "Shared protocol, model and error definitions for rockscrew"

__all__ = [
    'build_connect_request',
    'find_header_end',
    'parse_status_line',
    'create_tcp_connection',
    'close_connection',
    'format_http_message',
    'CONNECT_HTTP_VERSION',
    'MAX_RESPONSE_HEADER_SIZE',
    'ProxyTarget',
    'Credential',
    'TunnelRequest',
    'TunnelResponse',
    'EstablishedTunnel',
    'RelaySide',
    'RelayStatus',
    'RelayOutcome',
    'TunnelError',
    'NegotiationError',
    'ConnectFailed',
    'WriteFailed',
    'ResponseTruncated',
    'MalformedResponse',
    'ProxyRejected',
    'NegotiationCancelled',
    'CredentialError',
]
