#!/usr/bin/env python3
"""
Capture a private key pushed into the SSH agent during an interactive session.

A fake agent is exposed to `ssh` through SSH_AUTH_SOCK. When the remote side
adds an RSA key to it (agent forwarding, remote key generation), the key is
written to disk and, once the session ends, added to the real agent with
`ssh-add`.

Pre-requisites:
    - Python 3 installation and the package dependencies
    - OpenSSH client tools: `ssh` and `ssh-add`
"""

import pathlib as pl
import signal
import sys
from typing import NoReturn

import typer
from pydantic import ValidationError
from typing_extensions import Annotated

from ssh_agent_download.agent import add_key_command, add_key_to_agent, is_agent_running
from ssh_agent_download.config import (
    DEFAULT_KEY_LIFETIME,
    DEFAULT_KEY_LOCATION,
    DEFAULT_PORT,
    DEFAULT_SERVER,
    CaptureSettings,
)
from ssh_agent_download.exceptions import CaptureError
from ssh_agent_download.logger import LogLevel, logger
from ssh_agent_download.models import KeyFile, State
from ssh_agent_download.session import run_capture_session
from ssh_agent_download.utils import format_command, setup_logging

app = typer.Typer()
state = State()

KeyLocationOption = Annotated[
    pl.Path,
    typer.Option(
        "--target-key-location",
        "--targetKeyLocation",
        envvar="SSH_AGENT_DOWNLOAD_KEY",
        help="Location to write the captured SSH key to",
    ),
]
KeyLifetimeOption = Annotated[
    int,
    typer.Option(
        "--key-lifetime",
        "--keyLifetime",
        envvar="SSH_AGENT_DOWNLOAD_LIFETIME",
        help="Seconds the key should exist in the SSH agent for",
    ),
]
SshAddOption = Annotated[str, typer.Option("--ssh-add", help="ssh-add executable")]


def _exit_on_signal(signum, _frame) -> NoReturn:
    """Turn termination signals into SystemExit so cleanup handlers run"""
    raise SystemExit(128 + signum)


def _load_settings(**kwargs) -> CaptureSettings:
    try:
        return CaptureSettings(**kwargs)
    except ValidationError as err:
        for error in err.errors():
            location = ".".join(str(part) for part in error["loc"])
            logger.error(f"Invalid {location}: {error['msg']}")
        sys.exit(1)


@app.command()
def connect(
    *,
    target_key_location: KeyLocationOption = DEFAULT_KEY_LOCATION,
    target_server: Annotated[
        str,
        typer.Option(
            "--target-server",
            "--targetServer",
            envvar="SSH_AGENT_DOWNLOAD_SERVER",
            help="Target SSH server name",
        ),
    ] = DEFAULT_SERVER,
    target_server_port: Annotated[
        int,
        typer.Option(
            "--target-server-port",
            "--targetServerPort",
            envvar="SSH_AGENT_DOWNLOAD_PORT",
            help="Target SSH server port",
        ),
    ] = DEFAULT_PORT,
    key_lifetime: KeyLifetimeOption = DEFAULT_KEY_LIFETIME,
    ssh: Annotated[str, typer.Option("--ssh", help="ssh executable")] = "ssh",
    ssh_add: SshAddOption = "ssh-add",
):
    """
    Open an SSH session and capture the key it pushes into the agent.
    """
    settings = _load_settings(
        target_key_location=target_key_location,
        target_server=target_server,
        target_server_port=target_server_port,
        key_lifetime=key_lifetime,
        ssh_command=ssh,
        ssh_add_command=ssh_add,
    )
    key_file = KeyFile(settings.target_key_location)

    if state.dry_run:
        logger.info(f"Dry run: Would run {format_command(settings.ssh_args())}")
        logger.info(f"Dry run: Would save a pushed key to {key_file.path}")
        logger.info(
            "Dry run: Would run "
            f"{format_command(add_key_command(key_file, settings.key_lifetime, settings.ssh_add_command))}"
        )
        return

    signal.signal(signal.SIGTERM, _exit_on_signal)
    signal.signal(signal.SIGHUP, _exit_on_signal)

    try:
        result = run_capture_session(settings)
    except CaptureError as err:
        logger.error("Key capture failed.", exc=err)
        sys.exit(1)

    if result.registered:
        logger.success(f"Key {key_file.path} added to the SSH agent.")
    else:
        logger.warning("No key was added to the SSH agent.")

    logger.info("Done.")


@app.command()
def add(
    *,
    target_key_location: KeyLocationOption = DEFAULT_KEY_LOCATION,
    key_lifetime: KeyLifetimeOption = DEFAULT_KEY_LIFETIME,
    ssh_add: SshAddOption = "ssh-add",
):
    """
    Add a previously captured key to the SSH agent.
    """
    settings = _load_settings(
        target_key_location=target_key_location,
        key_lifetime=key_lifetime,
        ssh_add_command=ssh_add,
    )
    key_file = KeyFile(settings.target_key_location)

    if not key_file.exists():
        logger.error(f"No captured key found at {key_file.path}.")
        sys.exit(1)

    if state.dry_run:
        logger.info(
            "Dry run: Would run "
            f"{format_command(add_key_command(key_file, settings.key_lifetime, settings.ssh_add_command))}"
        )
        sys.exit(0)

    if not is_agent_running(settings.ssh_add_command):
        logger.error("SSH agent is not running.")
        sys.exit(1)

    if not add_key_to_agent(key_file, settings.key_lifetime, settings.ssh_add_command):
        sys.exit(1)

    logger.success("Key successfully added to the agent.")


@app.callback()
def main(
    *,
    verbose: Annotated[
        int,
        typer.Option(
            "--verbose",
            "-v",
            count=True,
            help="Increase verbosity (can be repeated: -v, -vv)",
        ),
    ] = 0,
    quiet: Annotated[
        bool,
        typer.Option("--quiet", "-q", help="Only report errors."),
    ] = False,
    dry_run: Annotated[
        bool,
        typer.Option("--dry-run", "-n", help="Log the actions without executing them."),
    ] = False,
):
    """
    Capture an SSH private key pushed into a fake agent by a remote session.
    """
    logger.set_verbosity(LogLevel.ERROR if quiet else LogLevel.INFO + verbose)
    setup_logging(0 if quiet else verbose + 1)

    state.verbose = verbose
    state.quiet = quiet
    state.dry_run = dry_run

    if verbose:
        logger.debug("Debug mode enabled.")

    if dry_run:
        logger.info("Dry run mode enabled, no action will be executed.")


def entry_point() -> None:
    app()


if __name__ == "__main__":
    app()
