"""
Exceptions raised while capturing a key
"""
import pathlib as pl


class CaptureError(Exception):
    """Base exception for a failed capture"""


class UnsupportedKeyError(CaptureError):
    """The remote peer tried to add a key type we cannot capture"""

    def __init__(self, key_type: str) -> None:
        self.key_type = key_type
        super().__init__(f"Unsupported key type: {key_type}")


class KeyPersistError(CaptureError):
    """The captured key could not be written to disk"""

    def __init__(self, path: pl.Path, reason: str) -> None:
        self.path = path
        super().__init__(f"Could not save key to {path}: {reason}")


class ListenerError(CaptureError):
    """The agent socket could not be bound or stopped accepting connections"""


class AgentProtocolError(CaptureError):
    """A malformed agent protocol message was received"""
