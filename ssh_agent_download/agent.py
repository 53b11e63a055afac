"""
Real SSH agent utilities
"""
import sys

from ssh_agent_download.logger import logger
from ssh_agent_download.models import KeyFile
from ssh_agent_download.utils import format_command, run_command

# `ssh-add -l` exits with 0 (keys listed) or 1 (no keys) when an agent answers
AGENT_REACHABLE = (0, 1)


def _ssh_add(ssh_add: str) -> str:
    if sys.platform == "darwin" and ssh_add == "ssh-add":
        return "/usr/bin/ssh-add"
    return ssh_add


def is_agent_running(ssh_add: str = "ssh-add") -> bool:
    """Check if the SSH agent is running"""
    if sys.platform == "win32":
        # TODO: add support for Windows
        return False

    return run_command([_ssh_add(ssh_add), "-l"], capture=False, check=False) in AGENT_REACHABLE


def add_key_command(key_file: KeyFile, lifetime: int, ssh_add: str = "ssh-add") -> list[str]:
    """Return the command registering `key_file` with the SSH agent"""
    return [_ssh_add(ssh_add), "-t", str(lifetime), str(key_file.path)]


def add_key_to_agent(key_file: KeyFile, lifetime: int, ssh_add: str = "ssh-add") -> bool:
    """Add a private key to SSH agent, returning whether it succeeded"""
    cmd = add_key_command(key_file, lifetime, ssh_add)
    logger.info(f"Adding {key_file.path} to the SSH agent")
    logger.debug(format_command(cmd))

    returncode = run_command(cmd, capture=False, check=False)
    if returncode != 0:
        logger.warning(f"Could not add {key_file.path} to the SSH agent (exit code {returncode})")
        return False

    return True
