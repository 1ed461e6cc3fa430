"""
Test Suite for rockscrew

This package contains tests for the proxy tunnel helper:

Test Modules:
- test_protocol.py: CONNECT request building, response framing, data model
- test_negotiator.py: CONNECT handshake against a local fake proxy
- test_relay.py: bidirectional relay over socket pairs
- test_client.py: auth file loading, command line, end-to-end subprocess runs
- proxy_server.py: threaded fake CONNECT proxy used as a fixture

Usage:
    # Run all tests
    pytest tests/

    # Run specific test module
    pytest tests/test_relay.py -v

    # Run specific test class
    pytest tests/test_negotiator.py::TestProxyRejection -v

Test Requirements:
- pytest >= 7.0.0
- No network access: every proxy is a local fake bound to 127.0.0.1
"""

import sys
import os

# Add project root to Python path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

# Test configuration constants
TEST_CONFIG = {
    'PROXY_HOST': '127.0.0.1',
    'DEST_HOST': 'ssh.example.org',
    'DEST_PORT': 22,
    'DEFAULT_TIMEOUT': 10,
}

__all__ = ['TEST_CONFIG']
