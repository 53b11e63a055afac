"""
Utils module
"""

import logging
import os
import shlex
import subprocess as sp
import sys

logger = logging.getLogger(__name__)


def setup_logging(verbosity: int) -> None:
    """Setup logging"""
    # default: logging.WARNING
    default_log_level = getattr(logging, (os.getenv("LOG_LEVEL", "WARNING").upper()), logging.WARNING)
    verbosity = min(2, max(0, verbosity))

    log_level = default_log_level - verbosity * 10

    logging.basicConfig(format="%(asctime)s - %(name)s - %(levelname)s - %(message)s", level=log_level)


def format_command(cmd: list[str]) -> str:
    """Return a shell-quoted representation of `cmd`"""
    return " ".join(shlex.quote(part) for part in cmd)


def run_command(cmd: str | list[str], *, capture: bool = True, check: bool = True, **kwargs) -> str | int:
    """Run a `cmd` and return the output or the return code, or raise an exception"""
    text = bool(kwargs.get("text"))

    if isinstance(cmd, str) and sys.platform != "win32":
        cmd = shlex.split(cmd)

    logger.debug("Running command: %s", cmd)

    try:
        output = sp.run(cmd, check=check, capture_output=capture, stdout=sp.DEVNULL if not capture else None, **kwargs)
    except sp.CalledProcessError as err:
        stderr = err.stderr or ""
        logger.error(
            "Error while running the command '%s': %s",
            " ".join(cmd),
            stderr if text or isinstance(stderr, str) else stderr.decode().strip(),
        )
        raise SystemExit(err.returncode) from err
    except FileNotFoundError as err:
        logger.error("Command not found: %s", cmd[0])
        if check:
            raise SystemExit(127) from err
        return 127

    if capture:
        if text:
            return str(output.stdout)
        return output.stdout.decode()

    return output.returncode
