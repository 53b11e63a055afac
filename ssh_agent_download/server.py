"""
Unix socket server answering agent requests
"""

import logging
import pathlib as pl
import socketserver
import sys
import threading
from typing import Optional

from ssh_agent_download.exceptions import ListenerError
from ssh_agent_download.protocol import Agent, serve_agent

log = logging.getLogger(__name__)

# Ordinary ways for a peer to go away
DISCONNECT_ERRORS = (ConnectionResetError, BrokenPipeError, EOFError)


class AgentRequestHandler(socketserver.BaseRequestHandler):
    """Serve one agent connection until the peer disconnects"""

    def handle(self) -> None:
        log.debug("Agent connection opened")
        serve_agent(self.server.agent, self.request)
        log.debug("Agent connection closed")


class AgentServer(socketserver.ThreadingUnixStreamServer):
    """Accept agent connections on `path`, each served in its own thread.

    Errors cannot be raised from the serving threads, so the first fatal one
    is kept and surfaced through `raise_for_error`.
    """

    daemon_threads = True
    block_on_close = False

    def __init__(self, path: pl.Path | str, agent: Agent) -> None:
        self.path = pl.Path(path)
        self.agent = agent
        self._error: Optional[BaseException] = None
        self._error_lock = threading.Lock()
        self._thread: Optional[threading.Thread] = None

        try:
            self.path.unlink(missing_ok=True)
            super().__init__(str(self.path), AgentRequestHandler)
        except OSError as err:
            msg = f"Could not listen on {self.path}: {err}"
            raise ListenerError(msg) from err

    @property
    def error(self) -> Optional[BaseException]:
        """Return the first fatal error, if any"""
        return self._error

    def raise_for_error(self) -> None:
        """Raise the first fatal error, if any"""
        if self._error is not None:
            raise self._error

    def fail(self, error: BaseException) -> None:
        """Record a fatal error"""
        with self._error_lock:
            if self._error is None:
                self._error = error
                log.debug("Agent request failed: %r", error)

    def start(self) -> threading.Thread:
        """Start accepting connections in the background"""
        self._thread = threading.Thread(target=self.serve_forever, name="agent-server", daemon=True)
        self._thread.start()
        return self._thread

    def stop(self) -> None:
        """Stop accepting connections and close the socket"""
        if self._thread is not None:
            self.shutdown()
            self._thread.join()
            self._thread = None
        self.server_close()
        self.path.unlink(missing_ok=True)

    def get_request(self):
        try:
            return super().get_request()
        except OSError as err:
            self.fail(ListenerError(f"Could not accept agent connection: {err}"))
            raise

    def handle_error(self, request, client_address) -> None:
        error = sys.exc_info()[1]
        if isinstance(error, DISCONNECT_ERRORS):
            log.debug("Agent peer disconnected: %r", error)
            return
        self.fail(error)

    def __exit__(self, *args) -> None:
        self.stop()
