"""
Error taxonomy for the proxy tunnel helper.

Exception tree:
    TunnelError
    +-- NegotiationError        (CONNECT handshake failed, fatal, never retried)
    |   +-- ConnectFailed       (proxy unreachable: refused, DNS, timeout)
    |   +-- WriteFailed         (request could not be sent)
    |   +-- ResponseTruncated   (proxy closed or failed before the blank line)
    |   +-- MalformedResponse   (status line unparseable, header block too large)
    |   +-- ProxyRejected       (any status other than 200)
    |   +-- NegotiationCancelled
    +-- CredentialError         (credentials file missing or unusable)

Relay failures are not raised; they come back as a RelayOutcome.
"""


class TunnelError(Exception):
    """Base exception for all tunnel helper errors."""


class NegotiationError(TunnelError):
    """The CONNECT handshake with the proxy did not produce a tunnel."""

    def __init__(self, message, *, target=None):
        self.target = target
        super().__init__(message)

    @property
    def cause(self):
        """Underlying exception, if the failure was caused by one."""
        return self.__cause__


class ConnectFailed(NegotiationError):
    pass


class WriteFailed(NegotiationError):
    pass


class ResponseTruncated(NegotiationError):
    pass


class MalformedResponse(NegotiationError):
    def __init__(self, message, *, target=None, status_line=None):
        self.status_line = status_line
        super().__init__(message, target=target)


class ProxyRejected(NegotiationError):
    """
    The proxy answered with a status other than 200.

    The code is kept so callers can tell 407 (bad or missing credentials)
    apart from 403/502 and friends.
    """

    def __init__(self, message, *, code, status_line, target=None):
        self.code = code
        self.status_line = status_line
        super().__init__(message, target=target)


class NegotiationCancelled(NegotiationError):
    pass


class CredentialError(TunnelError):
    def __init__(self, message, *, path=None):
        self.path = path
        super().__init__(message)
