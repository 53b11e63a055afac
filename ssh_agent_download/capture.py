"""
The agent handed to ssh: it writes added RSA keys to disk and ignores the rest
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from ssh_agent_download.exceptions import UnsupportedKeyError
from ssh_agent_download.models import AddedKey, KeyFile
from ssh_agent_download.protocol import Agent

logger = logging.getLogger(__name__)


def encode_private_key(private_key: rsa.RSAPrivateKey) -> bytes:
    """Encode an RSA key as an unencrypted PKCS#1 PEM block"""
    return private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=serialization.NoEncryption(),
    )


class CaptureAgent(Agent):
    """An agent whose only real operation is saving the key it is given.

    Every other request is answered as a successful no-op so ssh and the
    remote peer never see an agent failure before the key arrives.
    """

    def __init__(self, key_file: KeyFile) -> None:
        self.key_file = key_file

    def add(self, key: AddedKey) -> None:
        if not isinstance(key.private_key, rsa.RSAPrivateKey):
            raise UnsupportedKeyError(key.key_type)

        logger.debug("Capturing %s key %r (lifetime=%s)", key.key_type, key.comment, key.lifetime)
        self.key_file.save(encode_private_key(key.private_key))

    def remove(self, key_blob: bytes) -> None:
        return None

    def remove_all(self) -> None:
        return None

    def lock(self, passphrase: bytes) -> None:
        return None

    def unlock(self, passphrase: bytes) -> None:
        return None

    def list(self) -> list[tuple[bytes, str]]:
        return []

    def sign(self, key_blob: bytes, data: bytes, flags: int = 0) -> Optional[bytes]:
        return None

    def signers(self) -> list[Any]:
        return []
