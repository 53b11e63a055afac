"""
Run configuration
"""

import pathlib as pl

from pydantic import BaseModel, ConfigDict, Field, field_validator

AUTH_SOCK_ENV = "SSH_AUTH_SOCK"

DEFAULT_KEY_LOCATION = pl.Path("~/.ssh/id_rsa_temporary")
DEFAULT_SERVER = "localhost"
DEFAULT_PORT = 22
DEFAULT_KEY_LIFETIME = 86400


class CaptureSettings(BaseModel):
    """Settings for a single capture session, read once at startup"""

    model_config = ConfigDict(frozen=True, extra="ignore")

    target_key_location: pl.Path = Field(
        default=DEFAULT_KEY_LOCATION,
        validate_default=True,
        description="Where the captured private key is written",
    )
    target_server: str = Field(default=DEFAULT_SERVER, min_length=1, description="SSH server to connect to")
    target_server_port: int = Field(default=DEFAULT_PORT, ge=1, le=65535, description="SSH server port")
    key_lifetime: int = Field(
        default=DEFAULT_KEY_LIFETIME, gt=0, description="Seconds the key stays in the real agent"
    )
    ssh_command: str = Field(default="ssh", min_length=1, description="SSH client executable")
    ssh_add_command: str = Field(default="ssh-add", min_length=1, description="ssh-add executable")

    @field_validator("target_key_location")
    @classmethod
    def _absolute_key_location(cls, value: pl.Path) -> pl.Path:
        return value.expanduser().absolute()

    def ssh_args(self) -> list[str]:
        """Command line of the interactive ssh session"""
        return [self.ssh_command, "-p", str(self.target_server_port), self.target_server]
