"""
Bidirectional Relay - copies bytes between stdin/stdout and an open tunnel.

Two daemon threads do the copying:
- stdin -> tunnel
- tunnel -> stdout

Each thread reports on a queue when its source reaches EOF or an I/O call
fails. The first report half-closes the tunnel so the remote side sees EOF,
then the relay waits for the other thread and closes the tunnel. The socket
is never shared behind a lock: one thread only reads it, the other only
writes it.
"""

import logging
import queue
import threading

from utils.models import RelayOutcome, RelaySide

DEFAULT_BUFFER_SIZE = 64 * 1024

logger = logging.getLogger(__name__)


class TunnelRelay:
    """
    Relays one EstablishedTunnel until both directions are done.

    stdin must offer read() (read1() is preferred when present so bytes are
    forwarded as soon as they arrive), stdout must offer write() and flush().

    linger bounds how long to keep waiting for stdin once the tunnel side
    has finished; None waits until stdin reaches EOF.
    """

    def __init__(self, tunnel, stdin, stdout, buffer_size=DEFAULT_BUFFER_SIZE, linger=None):
        self.tunnel = tunnel
        self.stdin = stdin
        self.stdout = stdout
        self.buffer_size = buffer_size
        self.linger = linger
        self.done_queue = queue.Queue()
        self.write_closed = threading.Event()
        self.cancelled = threading.Event()
        self.bytes_sent = 0
        self.bytes_received = 0

    def run(self):
        """
        Relay until both directions finish, then close the tunnel.

        Returns:
            RelayOutcome: CLOSED, ERRORED (with the failing side) or CANCELLED
        """
        try:
            self._start_thread(self._pump_stdin, "stdin-to-tunnel")
            self._start_thread(self._pump_tunnel, "tunnel-to-stdout")

            first_side, first_error = self.done_queue.get()
            results = {first_side: first_error}
            logger.debug(f"{first_side.value} finished first")

            self._half_close()

            # Once the tunnel is done, stdin bytes have nowhere to go
            timeout = self.linger if first_side is RelaySide.TUNNEL_TO_STDOUT else None
            try:
                side, error = self.done_queue.get(timeout=timeout)
                results[side] = error
            except queue.Empty:
                logger.info(f"stdin still open {self.linger}s after the tunnel closed, not waiting further")

            return self._outcome(first_side, results)
        finally:
            self.tunnel.close()

    def cancel(self):
        """Stop relaying; safe to call from a signal handler or another thread."""
        logger.info("Relay cancelled")
        self.cancelled.set()
        self.write_closed.set()
        self.tunnel.shutdown()

    def _start_thread(self, target, name):
        thread = threading.Thread(target=target, name=name, daemon=True)
        thread.start()
        return thread

    def _half_close(self):
        self.write_closed.set()
        self.tunnel.shutdown_write()

    def _pump_stdin(self):
        error = None
        read = getattr(self.stdin, "read1", None) or self.stdin.read
        try:
            while True:
                chunk = read(self.buffer_size)
                if not chunk:
                    logger.debug("EOF on stdin")
                    break
                self.tunnel.sendall(chunk)
                self.bytes_sent += len(chunk)
        except Exception as e:
            if self.write_closed.is_set():
                logger.debug(f"stdin->tunnel stopped after the tunnel was shut down: {e}")
            else:
                error = e
        finally:
            self.done_queue.put((RelaySide.STDIN_TO_TUNNEL, error))

    def _pump_tunnel(self):
        error = None
        try:
            if self.tunnel.pending:
                self._write_stdout(self.tunnel.pending)
            while True:
                chunk = self.tunnel.recv(self.buffer_size)
                if not chunk:
                    logger.debug("EOF on tunnel")
                    break
                self._write_stdout(chunk)
        except Exception as e:
            if self.cancelled.is_set():
                logger.debug(f"tunnel->stdout stopped after cancel: {e}")
            else:
                error = e
        finally:
            self.done_queue.put((RelaySide.TUNNEL_TO_STDOUT, error))

    def _write_stdout(self, data):
        self.stdout.write(data)
        self.stdout.flush()
        self.bytes_received += len(data)

    def _outcome(self, first_side, results):
        if self.cancelled.is_set():
            outcome = RelayOutcome.cancelled()
        else:
            outcome = RelayOutcome.closed()
            # The direction that failed first is the one reported
            for side in [first_side] + [s for s in results if s is not first_side]:
                if results[side] is not None:
                    outcome = RelayOutcome.errored(side, results[side])
                    break

        outcome.bytes_sent = self.bytes_sent
        outcome.bytes_received = self.bytes_received
        logger.info(
            f"Relay {outcome.describe()} "
            f"({outcome.bytes_sent} bytes sent, {outcome.bytes_received} bytes received)"
        )
        return outcome


def relay(tunnel, stdin, stdout, buffer_size=DEFAULT_BUFFER_SIZE, linger=None):
    """Relay tunnel <-> stdin/stdout; see TunnelRelay.run()."""
    return TunnelRelay(tunnel, stdin, stdout, buffer_size=buffer_size, linger=linger).run()
