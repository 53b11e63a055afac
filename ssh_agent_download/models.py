"""Models for the ssh-agent-download package"""

import logging
import os
import pathlib as pl
import stat
from typing import Any, Optional

from attr import define, field
from cryptography.hazmat.primitives.asymmetric import ec, ed25519, rsa

from ssh_agent_download.exceptions import KeyPersistError
from ssh_agent_download.logger import logger

log = logging.getLogger(__name__)

PRIVATE_KEY_MODE = 0o600


@define
class KeyFile:
    """The file a captured private key is written to"""

    path: pl.Path = field(converter=lambda value: pl.Path(value).expanduser().absolute())

    @property
    def mode(self) -> Optional[int]:
        """Return the permission bits of the key file, if it exists"""
        try:
            return stat.S_IMODE(self.path.stat().st_mode)
        except FileNotFoundError:
            return None

    def exists(self) -> bool:
        """Check if the key file exists"""
        return self.path.exists()

    def read(self) -> bytes:
        """Return the key file content"""
        return self.path.read_bytes()

    def delete(self) -> None:
        """Delete the key file"""
        self.path.unlink(missing_ok=True)

    def save(self, content: bytes) -> None:
        """Replace the key file with `content`, readable by the owner only.

        The file is created exclusively with mode 0600 and the mode is forced
        again on the open descriptor (the umask can only narrow it) before any
        byte is written, so the key is never readable by group or others.
        """
        if not content:
            raise KeyPersistError(self.path, "key content is empty")

        if self.exists():
            logger.warning(f"Overwriting existing key file {self.path}")

        try:
            self.path.parent.mkdir(mode=0o700, parents=True, exist_ok=True)
            self.delete()
            fd = os.open(self.path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, PRIVATE_KEY_MODE)
        except OSError as err:
            raise KeyPersistError(self.path, err.strerror or str(err)) from err

        try:
            with os.fdopen(fd, "wb") as handle:
                os.fchmod(handle.fileno(), PRIVATE_KEY_MODE)
                handle.write(content)
                handle.flush()
                os.fsync(handle.fileno())
        except OSError as err:
            self.delete()
            raise KeyPersistError(self.path, err.strerror or str(err)) from err

        log.debug("Wrote %d bytes to %s", len(content), self.path)
        logger.success(f"Saved key to {self.path}")


@define(frozen=True)
class UnknownPrivateKey:
    """Private key material of a type the wire codec does not decode"""

    key_type: str


@define(frozen=True)
class AddedKey:
    """A private key pushed into the agent by the remote peer"""

    private_key: Any
    comment: str = ""
    lifetime: Optional[int] = None
    confirm: bool = False

    @property
    def key_type(self) -> str:
        """Return a human readable name of the key algorithm"""
        key = self.private_key
        if isinstance(key, UnknownPrivateKey):
            return key.key_type
        if isinstance(key, rsa.RSAPrivateKey):
            return "ssh-rsa"
        if isinstance(key, ed25519.Ed25519PrivateKey):
            return "ssh-ed25519"
        if isinstance(key, ec.EllipticCurvePrivateKey):
            return f"ecdsa-sha2-{key.curve.name}"
        return type(key).__name__


@define(frozen=True)
class SessionResult:
    """Outcome of a capture session"""

    exit_code: int
    registered: bool


@define
class State:
    """Helper class to store the state of the application"""

    verbose: int = 0
    quiet: bool = False
    dry_run: bool = False
