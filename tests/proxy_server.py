"""
Fake CONNECT proxy for tests.

The proxy:
1. Listens on an ephemeral port on 127.0.0.1
2. Reads each client's request header block and records it
3. Sends a scripted response (any bytes, well-formed or not)
4. Hands the connection to a tunnel handler, or closes it
"""

import base64
import socket
import threading

OK_RESPONSE = b"HTTP/1.1 200 Connection established\r\n\r\n"
AUTH_REQUIRED_RESPONSE = (
    b"HTTP/1.1 407 Proxy Authentication Required\r\n"
    b"Proxy-Authenticate: Basic realm=\"proxy\"\r\n"
    b"\r\n"
)


def echo_until_eof(conn):
    """Echo tunneled bytes back until the client half-closes."""
    while True:
        chunk = conn.recv(4096)
        if not chunk:
            break
        conn.sendall(chunk)


def send_then_close(data):
    """Tunnel handler that sends data and closes without reading."""
    def handler(conn):
        conn.sendall(data)
    return handler


def proxy_authorization(request):
    """Decode the Proxy-Authorization header of a recorded request, or None."""
    for line in request.split(b"\r\n"):
        name, _, value = line.partition(b":")
        if name.strip().lower() == b"proxy-authorization":
            scheme, _, token = value.strip().partition(b" ")
            assert scheme == b"Basic"
            return base64.b64decode(token)
    return None


class FakeConnectProxy:
    """
    Local CONNECT proxy answering every request with a scripted response.
    """

    def __init__(self, response=OK_RESPONSE, tunnel_handler=None, host='127.0.0.1'):
        self.host = host
        self.port = None
        self.response = response
        self.tunnel_handler = tunnel_handler
        self.requests = []
        self.request_received = threading.Event()
        self.server_socket = None
        self.running = False
        self.client_connections = []

    def start(self):
        """Bind, listen and start accepting in a background thread."""
        self.server_socket = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self.server_socket.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        self.server_socket.bind((self.host, 0))
        self.server_socket.listen(5)
        self.port = self.server_socket.getsockname()[1]
        self.running = True

        accept_thread = threading.Thread(target=self.accept_loop, daemon=True)
        accept_thread.start()
        return self

    def accept_loop(self):
        while self.running:
            try:
                client_socket, address = self.server_socket.accept()
            except OSError:
                break

            client_thread = threading.Thread(
                target=self.handle_connection,
                args=(client_socket,),
                daemon=True
            )
            client_thread.start()
            self.client_connections.append((client_socket, client_thread))

    def handle_connection(self, client_socket):
        try:
            request = self.read_request(client_socket)
            if request is None:
                return
            self.requests.append(request)
            self.request_received.set()

            if self.response:
                client_socket.sendall(self.response)
            if self.tunnel_handler:
                self.tunnel_handler(client_socket)
        except OSError:
            pass
        finally:
            client_socket.close()

    def read_request(self, client_socket):
        data = b""
        while b"\r\n\r\n" not in data:
            chunk = client_socket.recv(4096)
            if not chunk:
                return None
            data += chunk
        return data

    def stop(self):
        """Stop accepting and close every connection."""
        self.running = False
        if self.server_socket:
            self.server_socket.close()
        for client_socket, _thread in self.client_connections:
            try:
                client_socket.shutdown(socket.SHUT_RDWR)
            except OSError:
                pass
            client_socket.close()

    def __enter__(self):
        return self.start()

    def __exit__(self, exc_type, exc_value, traceback):
        self.stop()


def unused_port():
    """Return a local port with nothing listening on it."""
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.bind(('127.0.0.1', 0))
    port = sock.getsockname()[1]
    sock.close()
    return port
