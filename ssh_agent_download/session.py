"""
Capture session: fake agent, interactive ssh, then registration with the real agent
"""

import logging
import os
import pathlib as pl
import shutil
import subprocess as sp
import tempfile
from contextlib import contextmanager
from typing import Iterator

from ssh_agent_download.agent import add_key_to_agent
from ssh_agent_download.capture import CaptureAgent
from ssh_agent_download.config import AUTH_SOCK_ENV, CaptureSettings
from ssh_agent_download.exceptions import CaptureError
from ssh_agent_download.logger import logger
from ssh_agent_download.models import KeyFile, SessionResult
from ssh_agent_download.server import AgentServer
from ssh_agent_download.utils import format_command

log = logging.getLogger(__name__)

POLL_INTERVAL = 0.1
TERMINATE_TIMEOUT = 5.0


@contextmanager
def rendezvous_socket() -> Iterator[pl.Path]:
    """Yield a fresh agent socket path, removed with its directory afterwards"""
    sock_dir = pl.Path(tempfile.mkdtemp(prefix="ssh-agent-download."))
    try:
        yield sock_dir / "agent.sock"
    finally:
        shutil.rmtree(sock_dir, ignore_errors=True)


def _terminate(process: sp.Popen) -> None:
    if process.poll() is not None:
        return

    process.terminate()
    try:
        process.wait(timeout=TERMINATE_TIMEOUT)
    except sp.TimeoutExpired:
        process.kill()
        process.wait()


def _wait(process: sp.Popen, server: AgentServer) -> int:
    """Wait for ssh to exit, aborting it as soon as the agent hits a fatal error"""
    try:
        while True:
            server.raise_for_error()
            try:
                returncode = process.wait(timeout=POLL_INTERVAL)
            except sp.TimeoutExpired:
                continue
            server.raise_for_error()
            return returncode
    except BaseException:
        _terminate(process)
        raise


def run_ssh(settings: CaptureSettings, sock_path: pl.Path, server: AgentServer) -> int:
    """Run the interactive ssh session against the agent listening on `sock_path`"""
    env = dict(os.environ)
    env[AUTH_SOCK_ENV] = str(sock_path)

    cmd = settings.ssh_args()
    log.debug("Spawning %s with %s=%s", cmd, AUTH_SOCK_ENV, sock_path)

    # stdin, stdout and stderr are inherited: to the operator this is plain ssh
    try:
        process = sp.Popen(cmd, env=env)
    except OSError as err:
        msg = f"Could not start {cmd[0]}: {err}"
        raise CaptureError(msg) from err

    return _wait(process, server)


def run_capture_session(settings: CaptureSettings) -> SessionResult:
    """Capture a key pushed during an ssh session and register it with the real agent.

    Raises a `CaptureError` when the capture itself fails; ssh is terminated
    and no registration is attempted in that case.
    """
    key_file = KeyFile(settings.target_key_location)

    with rendezvous_socket() as sock_path:
        with AgentServer(sock_path, CaptureAgent(key_file)) as server:
            server.start()
            logger.info(f"Agent socket listening on {sock_path}")
            logger.info(f"Connecting to {settings.target_server}:{settings.target_server_port}")
            logger.debug(format_command(settings.ssh_args()))

            exit_code = run_ssh(settings, sock_path, server)

    logger.info(f"SSH session ended with exit code {exit_code}")

    registered = add_key_to_agent(key_file, settings.key_lifetime, settings.ssh_add_command)
    return SessionResult(exit_code=exit_code, registered=registered)
