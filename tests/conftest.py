import pytest
from cryptography.hazmat.primitives.asymmetric import ec, ed25519, rsa

from ssh_agent_download.capture import CaptureAgent
from ssh_agent_download.models import KeyFile
from ssh_agent_download.server import AgentServer
from ssh_agent_download.session import rendezvous_socket


@pytest.fixture(scope="session")
def rsa_key() -> rsa.RSAPrivateKey:
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def ed25519_key() -> ed25519.Ed25519PrivateKey:
    return ed25519.Ed25519PrivateKey.generate()


@pytest.fixture(scope="session")
def ec_key() -> ec.EllipticCurvePrivateKey:
    return ec.generate_private_key(ec.SECP256R1())


@pytest.fixture
def key_file(tmp_path) -> KeyFile:
    return KeyFile(tmp_path / ".ssh" / "id_rsa_temporary")


@pytest.fixture
def capture_agent(key_file) -> CaptureAgent:
    return CaptureAgent(key_file)


@pytest.fixture
def agent_server(capture_agent):
    """A started agent server on a fresh socket"""
    with rendezvous_socket() as sock_path:
        with AgentServer(sock_path, capture_agent) as server:
            server.start()
            yield server
