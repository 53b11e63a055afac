"""Client side of the agent protocol, as ssh would speak it"""

import socket
import struct
import time

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec, ed25519, rsa
from paramiko.message import Message

from ssh_agent_download.protocol import (
    SSH_AGENT_CONSTRAIN_CONFIRM,
    SSH_AGENT_CONSTRAIN_LIFETIME,
    SSH_AGENTC_ADD_ID_CONSTRAINED,
    SSH_AGENTC_ADD_IDENTITY,
    SSH_RSA_CERT,
)

SSH_CURVE_NAMES = {
    "secp256r1": "nistp256",
    "secp384r1": "nistp384",
    "secp521r1": "nistp521",
}


def request(msg_type: int, *strings: bytes) -> bytes:
    """Build a request payload made of a message number and SSH strings"""
    msg = Message()
    msg.add_byte(bytes([msg_type]))
    for value in strings:
        msg.add_string(value)
    return msg.asbytes()


def build_rsa_certificate(public_numbers: rsa.RSAPublicNumbers) -> bytes:
    """Build an OpenSSH RSA certificate blob; only its key fields are meaningful"""
    cert = Message()
    cert.add_string(SSH_RSA_CERT)
    cert.add_string(b"\x01" * 32)  # nonce
    cert.add_mpint(public_numbers.e)
    cert.add_mpint(public_numbers.n)
    cert.add_int64(1)  # serial
    cert.add_int(1)  # user certificate
    cert.add_string("key-id")
    cert.add_string(b"")  # valid principals
    cert.add_int64(0)
    cert.add_int64(0xFFFFFFFFFFFFFFFF)
    cert.add_string(b"")  # critical options
    cert.add_string(b"")  # extensions
    cert.add_string(b"")  # reserved
    cert.add_string(b"ca key")
    cert.add_string(b"signature")
    return cert.asbytes()


def build_add_request(
    private_key, comment: str = "pushed key", *, lifetime=None, confirm=False, certificate=False
) -> bytes:
    """Build an add-identity request carrying `private_key`"""
    constrained = lifetime is not None or confirm
    msg = Message()
    msg.add_byte(bytes([SSH_AGENTC_ADD_ID_CONSTRAINED if constrained else SSH_AGENTC_ADD_IDENTITY]))

    if certificate:
        numbers = private_key.private_numbers()
        msg.add_string(SSH_RSA_CERT)
        msg.add_string(build_rsa_certificate(numbers.public_numbers))
        msg.add_mpint(numbers.d)
        msg.add_mpint(numbers.iqmp)
        msg.add_mpint(numbers.p)
        msg.add_mpint(numbers.q)
    elif isinstance(private_key, rsa.RSAPrivateKey):
        numbers = private_key.private_numbers()
        msg.add_string("ssh-rsa")
        msg.add_mpint(numbers.public_numbers.n)
        msg.add_mpint(numbers.public_numbers.e)
        msg.add_mpint(numbers.d)
        msg.add_mpint(numbers.iqmp)
        msg.add_mpint(numbers.p)
        msg.add_mpint(numbers.q)
    elif isinstance(private_key, ed25519.Ed25519PrivateKey):
        private_bytes = private_key.private_bytes(
            serialization.Encoding.Raw, serialization.PrivateFormat.Raw, serialization.NoEncryption()
        )
        public_bytes = private_key.public_key().public_bytes(
            serialization.Encoding.Raw, serialization.PublicFormat.Raw
        )
        msg.add_string("ssh-ed25519")
        msg.add_string(public_bytes)
        msg.add_string(private_bytes + public_bytes)
    elif isinstance(private_key, ec.EllipticCurvePrivateKey):
        curve_name = SSH_CURVE_NAMES[private_key.curve.name]
        msg.add_string(f"ecdsa-sha2-{curve_name}")
        msg.add_string(curve_name)
        msg.add_string(
            private_key.public_key().public_bytes(
                serialization.Encoding.X962, serialization.PublicFormat.UncompressedPoint
            )
        )
        msg.add_mpint(private_key.private_numbers().private_value)
    else:
        raise TypeError(f"Cannot encode {type(private_key).__name__}")

    msg.add_string(comment)

    if lifetime is not None:
        msg.add_byte(bytes([SSH_AGENT_CONSTRAIN_LIFETIME]))
        msg.add_int(lifetime)
    if confirm:
        msg.add_byte(bytes([SSH_AGENT_CONSTRAIN_CONFIRM]))

    return msg.asbytes()


def frame(payload: bytes) -> bytes:
    return struct.pack(">I", len(payload)) + payload


def recv_exactly(sock: socket.socket, size: int) -> bytes:
    data = b""
    while len(data) < size:
        chunk = sock.recv(size - len(data))
        if not chunk:
            break
        data += chunk
    return data


class AgentClient:
    """A minimal agent client over a unix socket"""

    def __init__(self, path) -> None:
        self.sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        self.sock.settimeout(10)
        self.sock.connect(str(path))

    def send_raw(self, data: bytes) -> None:
        self.sock.sendall(data)

    def read_reply(self) -> bytes:
        """Return the next reply payload, or b"" if the agent hung up"""
        header = recv_exactly(self.sock, 4)
        if len(header) < 4:
            return b""
        return recv_exactly(self.sock, struct.unpack(">I", header)[0])

    def request(self, payload: bytes) -> bytes:
        self.send_raw(frame(payload))
        return self.read_reply()

    def close(self) -> None:
        self.sock.close()

    def __enter__(self) -> "AgentClient":
        return self

    def __exit__(self, *args) -> None:
        self.close()


def wait_for(predicate, timeout: float = 5.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return bool(predicate())
