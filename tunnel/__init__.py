"""
rockscrew Tunnel Package

This package contains the proxy tunnel helper that:
- Connects to an HTTP proxy and sends a single CONNECT request
- Authenticates with Basic credentials read from an auth file, if one is given
- Relays stdin/stdout through the tunnel once the proxy answers 200
- Half-closes the tunnel when either side reaches EOF

Main Components:
- negotiator.py: CONNECT handshake (TunnelNegotiator, negotiate)
- relay.py: bidirectional stdio relay (TunnelRelay, relay)
- credentials.py: auth file loader
- client.py: command line entry point and signal handling

Usage:
    rockscrew <proxyhost> <proxyport> <desthost> <destport> [authfile]

    ssh_config: ProxyCommand rockscrew proxy.example.com 8080 %h %p ~/.ssh/proxyauth
"""

from .negotiator import TunnelNegotiator, negotiate
from .relay import TunnelRelay, relay
from .credentials import load_credential
from .client import TunnelClient, main

__version__ = "0.2.0"
__author__ = "rockscrew developers"
__description__ = "HTTP CONNECT tunnel helper for SSH ProxyCommand"

# Export main classes for external use
__all__ = [
    'TunnelNegotiator',
    'negotiate',
    'TunnelRelay',
    'relay',
    'load_credential',
    'TunnelClient',
    'main',
]
