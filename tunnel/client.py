#!/usr/bin/env python3
"""
rockscrew - SSH ProxyCommand helper that tunnels through an HTTP proxy.

This client:
1. Connects to the HTTP proxy given on the command line
2. Sends a CONNECT request for the destination (Basic auth if an auth file is given)
3. Relays stdin/stdout through the tunnel once the proxy answers 200
4. Exits 0 on a clean close, 1 on any failure, 130 when stopped by a signal

ssh_config:
    Host *.internal
        ProxyCommand rockscrew proxy.example.com 8080 %h %p ~/.ssh/proxyauth
"""

import argparse
import logging
import os
import signal
import sys
import threading

from utils import __version__
from utils.errors import CredentialError, NegotiationCancelled, NegotiationError, ProxyRejected
from utils.models import ProxyTarget, RelayStatus

from .credentials import load_credential
from .negotiator import DEFAULT_CONNECT_TIMEOUT, TunnelNegotiator
from .relay import TunnelRelay

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_CANCELLED = 130

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

logger = logging.getLogger(__name__)


class TunnelClient:
    """
    rockscrew client - negotiates one tunnel and relays stdio through it.
    """

    def __init__(self, target, credential=None, connect_timeout=DEFAULT_CONNECT_TIMEOUT,
                 linger=1.0, stdin=None, stdout=None):
        self.target = target
        self.credential = credential
        self.connect_timeout = connect_timeout
        self.linger = linger
        self.stdin = stdin
        self.stdout = stdout
        self.negotiator = None
        self.relay = None
        self.stopped = threading.Event()
        # Re-entrant: stop() runs from a signal handler on the main thread
        self.state_lock = threading.RLock()

    def start(self):
        """
        Negotiate the tunnel, then relay until it closes.

        Returns:
            RelayOutcome: How the relay ended

        Raises:
            NegotiationError: If no tunnel could be established
        """
        logger.info(f"Opening tunnel to {self.target}")

        with self.state_lock:
            self.negotiator = TunnelNegotiator(
                self.target,
                credential=self.credential,
                connect_timeout=self.connect_timeout,
                cancel_event=self.stopped,
            )
        self.credential = None

        try:
            tunnel = self.negotiator.negotiate()
        finally:
            with self.state_lock:
                self.negotiator = None

        # Raw stdin: a read still blocked when the relay returns must not
        # hold the BufferedReader lock while the interpreter shuts down
        stdin = self.stdin if self.stdin is not None else sys.stdin.buffer.raw
        stdout = self.stdout if self.stdout is not None else sys.stdout.buffer

        with self.state_lock:
            self.relay = TunnelRelay(tunnel, stdin, stdout, linger=self.linger)
            if self.stopped.is_set():
                # stop() arrived between the handshake and the relay
                self.relay.cancel()

        return self.relay.run()

    def stop(self):
        """Stop the client, whichever phase it is in."""
        logger.info("Stopping rockscrew...")
        self.stopped.set()

        with self.state_lock:
            if self.negotiator:
                self.negotiator.cancel()
            if self.relay:
                self.relay.cancel()


def exit_code_for(outcome):
    """Map a RelayOutcome to the process exit status."""
    if outcome.status is RelayStatus.CLOSED:
        return EXIT_OK
    if outcome.status is RelayStatus.CANCELLED:
        return EXIT_CANCELLED
    logger.error(f"Relay failed on {outcome.side.value}: {outcome.cause}")
    return EXIT_FAILURE


def signal_handler(signum, frame):
    """Handle shutdown signals."""
    logger.info(f"Received signal {signum}")
    if client_instance:
        client_instance.stop()
    else:
        sys.exit(EXIT_CANCELLED)

# Global client instance for signal handling
client_instance = None


def configure_logging(level):
    """Log to stderr; stdout carries the tunnel."""
    logging.basicConfig(
        level=getattr(logging, level),
        format=LOG_FORMAT,
        stream=sys.stderr,
    )
    logging.getLogger().setLevel(getattr(logging, level))


def build_parser():
    """Build the argument parser for the rockscrew CLI."""
    parser = argparse.ArgumentParser(
        prog='rockscrew',
        description='Tunnel a connection through an HTTP proxy with CONNECT, for use as an SSH ProxyCommand',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s proxy.example.com 8080 ssh.example.org 22
  %(prog)s proxy.example.com 8080 ssh.example.org 22 ~/.ssh/proxyauth

ssh_config:
  ProxyCommand rockscrew proxy.example.com 8080 %%h %%p ~/.ssh/proxyauth

The auth file holds a single line: username:secret
        """
    )

    parser.add_argument('proxy_host', help='HTTP proxy hostname/IP')
    parser.add_argument('proxy_port', type=int, help='HTTP proxy port')
    parser.add_argument('dest_host', help='Destination hostname/IP (ssh: %%h)')
    parser.add_argument('dest_port', type=int, help='Destination port (ssh: %%p)')

    parser.add_argument(
        'auth_file',
        nargs='?',
        default=os.getenv('ROCKSCREW_AUTH_FILE'),
        help='File containing username:secret for proxy authentication (env: ROCKSCREW_AUTH_FILE)'
    )

    parser.add_argument(
        '--connect-timeout',
        type=float,
        default=float(os.getenv('ROCKSCREW_CONNECT_TIMEOUT', str(DEFAULT_CONNECT_TIMEOUT))),
        help='Seconds allowed for the TCP connect to the proxy (default: 30, env: ROCKSCREW_CONNECT_TIMEOUT)'
    )

    parser.add_argument(
        '--linger',
        type=float,
        default=float(os.getenv('ROCKSCREW_LINGER', '1.0')),
        help='Seconds to wait for stdin to close after the tunnel closes (default: 1.0, env: ROCKSCREW_LINGER)'
    )

    parser.add_argument(
        '--log-level',
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
        default=os.getenv('ROCKSCREW_LOG_LEVEL', 'WARNING'),
        help='Set logging level (default: WARNING, env: ROCKSCREW_LOG_LEVEL)'
    )

    parser.add_argument('--version', action='version', version=f'%(prog)s {__version__}')

    return parser


def main(argv=None):
    """Main function with command line argument parsing."""
    global client_instance

    parser = build_parser()
    args = parser.parse_args(argv)

    configure_logging(args.log_level)

    try:
        target = ProxyTarget(
            proxy_host=args.proxy_host,
            proxy_port=args.proxy_port,
            dest_host=args.dest_host,
            dest_port=args.dest_port,
        )
    except ValueError as e:
        parser.error(str(e))

    credential = None
    if args.auth_file:
        try:
            credential = load_credential(os.path.expanduser(args.auth_file))
        except CredentialError as e:
            logger.error(str(e))
            return EXIT_FAILURE

    # Set up signal handlers for graceful shutdown
    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    client_instance = TunnelClient(
        target,
        credential=credential,
        connect_timeout=args.connect_timeout,
        linger=args.linger,
    )

    try:
        outcome = client_instance.start()
    except NegotiationCancelled:
        logger.warning("Stopped before the tunnel was established")
        return EXIT_CANCELLED
    except ProxyRejected as e:
        logger.error(str(e))
        if e.code == 407:
            logger.error("Proxy requires authentication; check the auth file")
        return EXIT_FAILURE
    except NegotiationError as e:
        logger.error(str(e))
        return EXIT_FAILURE
    finally:
        client_instance = None

    return exit_code_for(outcome)


if __name__ == "__main__":
    sys.exit(main())
