"""
SSH agent wire protocol

Frames are a 4-byte big-endian length followed by the payload, whose first
byte is the message number. Requests are decoded with paramiko's `Message`
and dispatched onto an `Agent` implementation.
"""

from __future__ import annotations

import logging
import socket
import struct
from abc import ABC, abstractmethod
from typing import Any, Callable, Optional

from cryptography.hazmat.primitives.asymmetric import ec, ed25519, rsa
from paramiko.message import Message

from ssh_agent_download.exceptions import AgentProtocolError
from ssh_agent_download.models import AddedKey, UnknownPrivateKey

logger = logging.getLogger(__name__)

# Requests
SSH_AGENTC_REQUEST_RSA_IDENTITIES = 1
SSH_AGENTC_REMOVE_ALL_RSA_IDENTITIES = 9
SSH_AGENTC_REQUEST_IDENTITIES = 11
SSH_AGENTC_SIGN_REQUEST = 13
SSH_AGENTC_ADD_IDENTITY = 17
SSH_AGENTC_REMOVE_IDENTITY = 18
SSH_AGENTC_REMOVE_ALL_IDENTITIES = 19
SSH_AGENTC_LOCK = 22
SSH_AGENTC_UNLOCK = 23
SSH_AGENTC_ADD_ID_CONSTRAINED = 25
SSH_AGENTC_EXTENSION = 27

# Replies
SSH_AGENT_RSA_IDENTITIES_ANSWER = 2
SSH_AGENT_FAILURE = 5
SSH_AGENT_SUCCESS = 6
SSH_AGENT_IDENTITIES_ANSWER = 12
SSH_AGENT_SIGN_RESPONSE = 14

# Key constraints
SSH_AGENT_CONSTRAIN_LIFETIME = 1
SSH_AGENT_CONSTRAIN_CONFIRM = 2
SSH_AGENT_CONSTRAIN_EXTENSION = 255

MAX_MESSAGE_LENGTH = 256 * 1024

SSH_RSA_CERT = b"ssh-rsa-cert-v01@openssh.com"

EC_CURVES = {
    b"nistp256": ec.SECP256R1,
    b"nistp384": ec.SECP384R1,
    b"nistp521": ec.SECP521R1,
}


class Agent(ABC):
    """The operations an SSH agent must answer"""

    @abstractmethod
    def list(self) -> list[tuple[bytes, str]]:
        """Return the (public key blob, comment) pairs held by the agent"""

    @abstractmethod
    def sign(self, key_blob: bytes, data: bytes, flags: int = 0) -> Optional[bytes]:
        """Return a signature blob of `data`, or None if the key is unknown"""

    @abstractmethod
    def add(self, key: AddedKey) -> None:
        """Add a private key to the agent"""

    @abstractmethod
    def remove(self, key_blob: bytes) -> None:
        """Remove the key matching `key_blob`"""

    @abstractmethod
    def remove_all(self) -> None:
        """Remove every key"""

    @abstractmethod
    def lock(self, passphrase: bytes) -> None:
        """Lock the agent"""

    @abstractmethod
    def unlock(self, passphrase: bytes) -> None:
        """Unlock the agent"""

    @abstractmethod
    def signers(self) -> list[Any]:
        """Return the signers for the held keys"""


def _reply(msg_type: int) -> Message:
    msg = Message()
    msg.add_byte(bytes([msg_type]))
    return msg


def _remaining(msg: Message) -> int:
    return len(msg.asbytes()) - msg.packet.tell()


def _rsa_private_key(n: int, e: int, d: int, iqmp: int, p: int, q: int) -> rsa.RSAPrivateKey:
    numbers = rsa.RSAPrivateNumbers(
        p=p,
        q=q,
        d=d,
        dmp1=rsa.rsa_crt_dmp1(d, p),
        dmq1=rsa.rsa_crt_dmq1(d, q),
        iqmp=iqmp,
        public_numbers=rsa.RSAPublicNumbers(e, n),
    )
    return numbers.private_key()


def _decode_rsa(msg: Message) -> rsa.RSAPrivateKey:
    n = msg.get_mpint()
    e = msg.get_mpint()
    d = msg.get_mpint()
    iqmp = msg.get_mpint()
    p = msg.get_mpint()
    q = msg.get_mpint()
    return _rsa_private_key(n, e, d, iqmp, p, q)


def _decode_rsa_cert(msg: Message) -> rsa.RSAPrivateKey:
    """Decode an RSA key added together with its certificate.

    The public exponent and modulus live in the certificate blob (after the
    key type and nonce); the private values follow the blob.
    """
    cert = Message(msg.get_string())
    cert_type = cert.get_string()
    if cert_type != SSH_RSA_CERT:
        reason = f"certificate of type {cert_type.decode(errors='replace')}"
        raise ValueError(reason)
    cert.get_string()  # nonce
    e = cert.get_mpint()
    n = cert.get_mpint()

    d = msg.get_mpint()
    iqmp = msg.get_mpint()
    p = msg.get_mpint()
    q = msg.get_mpint()
    return _rsa_private_key(n, e, d, iqmp, p, q)


def _decode_ecdsa(msg: Message) -> Any:
    curve_name = msg.get_string()
    msg.get_string()  # public point, derived again from the private scalar
    private_value = msg.get_mpint()

    curve = EC_CURVES.get(curve_name)
    if curve is None:
        return UnknownPrivateKey(f"ecdsa-sha2-{curve_name.decode(errors='replace')}")

    return ec.derive_private_key(private_value, curve())


def _decode_ed25519(msg: Message) -> ed25519.Ed25519PrivateKey:
    msg.get_string()  # public key
    private_bytes = msg.get_string()
    return ed25519.Ed25519PrivateKey.from_private_bytes(private_bytes[:32])


KEY_DECODERS: dict[bytes, Callable[[Message], Any]] = {
    b"ssh-rsa": _decode_rsa,
    SSH_RSA_CERT: _decode_rsa_cert,
    b"ecdsa-sha2-nistp256": _decode_ecdsa,
    b"ecdsa-sha2-nistp384": _decode_ecdsa,
    b"ecdsa-sha2-nistp521": _decode_ecdsa,
    b"ssh-ed25519": _decode_ed25519,
}


def decode_added_key(msg: Message, constrained: bool = False) -> AddedKey:
    """Decode the body of an add-identity request"""
    key_type = msg.get_string()
    decoder = KEY_DECODERS.get(key_type)

    if decoder is None:
        # The layout of unknown keys is unknown too, so comment and
        # constraints cannot be located.
        return AddedKey(UnknownPrivateKey(key_type.decode(errors="replace")))

    try:
        private_key = decoder(msg)
    except (ValueError, struct.error) as err:
        reason = f"Invalid {key_type.decode(errors='replace')} key: {err}"
        raise AgentProtocolError(reason) from err

    comment = msg.get_string().decode(errors="replace")
    lifetime = None
    confirm = False

    while constrained and _remaining(msg) > 0:
        constraint = msg.get_byte()[0]
        if constraint == SSH_AGENT_CONSTRAIN_LIFETIME:
            lifetime = msg.get_int()
        elif constraint == SSH_AGENT_CONSTRAIN_CONFIRM:
            confirm = True
        elif constraint == SSH_AGENT_CONSTRAIN_EXTENSION:
            logger.debug("Ignoring key constraint extension %r", msg.get_string())
            break
        else:
            reason = f"Unknown key constraint: {constraint}"
            raise AgentProtocolError(reason)

    return AddedKey(private_key, comment=comment, lifetime=lifetime, confirm=confirm)


def _request_rsa_identities(agent: Agent, msg: Message) -> Message:
    return _reply(SSH_AGENT_RSA_IDENTITIES_ANSWER).add_int(0)


def _request_identities(agent: Agent, msg: Message) -> Message:
    identities = agent.list()
    reply = _reply(SSH_AGENT_IDENTITIES_ANSWER).add_int(len(identities))
    for key_blob, comment in identities:
        reply.add_string(key_blob)
        reply.add_string(comment)
    return reply


def _sign_request(agent: Agent, msg: Message) -> Message:
    key_blob = msg.get_string()
    data = msg.get_string()
    flags = msg.get_int() if _remaining(msg) >= 4 else 0

    signature = agent.sign(key_blob, data, flags)
    if signature is None:
        return _reply(SSH_AGENT_FAILURE)
    return _reply(SSH_AGENT_SIGN_RESPONSE).add_string(signature)


def _add_identity(agent: Agent, msg: Message) -> Message:
    agent.add(decode_added_key(msg))
    return _reply(SSH_AGENT_SUCCESS)


def _add_id_constrained(agent: Agent, msg: Message) -> Message:
    agent.add(decode_added_key(msg, constrained=True))
    return _reply(SSH_AGENT_SUCCESS)


def _remove_identity(agent: Agent, msg: Message) -> Message:
    agent.remove(msg.get_string())
    return _reply(SSH_AGENT_SUCCESS)


def _remove_all_identities(agent: Agent, msg: Message) -> Message:
    agent.remove_all()
    return _reply(SSH_AGENT_SUCCESS)


def _lock(agent: Agent, msg: Message) -> Message:
    agent.lock(msg.get_string())
    return _reply(SSH_AGENT_SUCCESS)


def _unlock(agent: Agent, msg: Message) -> Message:
    agent.unlock(msg.get_string())
    return _reply(SSH_AGENT_SUCCESS)


HANDLERS: dict[int, Callable[[Agent, Message], Message]] = {
    SSH_AGENTC_REQUEST_RSA_IDENTITIES: _request_rsa_identities,
    SSH_AGENTC_REMOVE_ALL_RSA_IDENTITIES: _remove_all_identities,
    SSH_AGENTC_REQUEST_IDENTITIES: _request_identities,
    SSH_AGENTC_SIGN_REQUEST: _sign_request,
    SSH_AGENTC_ADD_IDENTITY: _add_identity,
    SSH_AGENTC_REMOVE_IDENTITY: _remove_identity,
    SSH_AGENTC_REMOVE_ALL_IDENTITIES: _remove_all_identities,
    SSH_AGENTC_LOCK: _lock,
    SSH_AGENTC_UNLOCK: _unlock,
    SSH_AGENTC_ADD_ID_CONSTRAINED: _add_id_constrained,
}


def handle_request(agent: Agent, request: bytes) -> bytes:
    """Answer a single request payload (without its length prefix)"""
    if not request:
        msg = "Empty agent request"
        raise AgentProtocolError(msg)

    msg = Message(request)
    msg_type = msg.get_byte()[0]
    handler = HANDLERS.get(msg_type)

    if handler is None:
        logger.debug("Refusing unsupported agent request %d", msg_type)
        return _reply(SSH_AGENT_FAILURE).asbytes()

    logger.debug("Handling agent request %d", msg_type)
    return handler(agent, msg).asbytes()


def _recv_exactly(conn: socket.socket, size: int) -> bytes:
    """Read `size` bytes, or fewer if the peer closes the connection"""
    data = b""
    while len(data) < size:
        chunk = conn.recv(size - len(data))
        if not chunk:
            break
        data += chunk
    return data


def read_request(conn: socket.socket) -> Optional[bytes]:
    """Return the next request payload, or None once the peer is done"""
    header = _recv_exactly(conn, 4)
    if not header:
        return None

    if len(header) < 4:
        msg = "Connection closed in the middle of a message header"
        raise AgentProtocolError(msg)

    length = struct.unpack(">I", header)[0]
    if not 0 < length <= MAX_MESSAGE_LENGTH:
        msg = f"Invalid agent message length: {length}"
        raise AgentProtocolError(msg)

    request = _recv_exactly(conn, length)
    if len(request) < length:
        msg = "Connection closed in the middle of a message"
        raise AgentProtocolError(msg)

    return request


def serve_agent(agent: Agent, conn: socket.socket) -> None:
    """Answer requests on `conn` with `agent` until the peer disconnects"""
    while (request := read_request(conn)) is not None:
        response = handle_request(agent, request)
        # A frame is laid out exactly like an SSH string
        conn.sendall(Message().add_string(response).asbytes())
