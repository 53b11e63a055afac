import errno

import pytest

from helpers import AgentClient, build_add_request, frame, request, wait_for
from ssh_agent_download.capture import encode_private_key
from ssh_agent_download.exceptions import AgentProtocolError, ListenerError, UnsupportedKeyError
from ssh_agent_download.protocol import (
    SSH_AGENT_IDENTITIES_ANSWER,
    SSH_AGENT_SUCCESS,
    SSH_AGENTC_REQUEST_IDENTITIES,
)
from ssh_agent_download.server import AgentServer
from ssh_agent_download.session import rendezvous_socket

SUCCESS = bytes([SSH_AGENT_SUCCESS])
NO_IDENTITIES = bytes([SSH_AGENT_IDENTITIES_ANSWER, 0, 0, 0, 0])


def test_add_key_over_socket(agent_server, key_file, rsa_key):
    with AgentClient(agent_server.path) as client:
        assert client.request(request(SSH_AGENTC_REQUEST_IDENTITIES)) == NO_IDENTITIES
        assert client.request(build_add_request(rsa_key)) == SUCCESS

    assert key_file.read() == encode_private_key(rsa_key)
    assert agent_server.error is None


def test_stalled_connection_does_not_block_others(agent_server, key_file, rsa_key):
    list_frame = frame(request(SSH_AGENTC_REQUEST_IDENTITIES))

    with AgentClient(agent_server.path) as stalled, AgentClient(agent_server.path) as other:
        stalled.send_raw(list_frame[:2])

        assert other.request(build_add_request(rsa_key)) == SUCCESS
        assert key_file.read() == encode_private_key(rsa_key)

        stalled.send_raw(list_frame[2:])
        assert stalled.read_reply() == NO_IDENTITIES

    agent_server.raise_for_error()


def test_disconnect_is_not_an_error(agent_server):
    AgentClient(agent_server.path).close()

    with AgentClient(agent_server.path) as client:
        assert client.request(request(SSH_AGENTC_REQUEST_IDENTITIES)) == NO_IDENTITIES

    assert agent_server.error is None


def test_unsupported_key_is_fatal(agent_server, key_file, ed25519_key):
    with AgentClient(agent_server.path) as client:
        assert client.request(build_add_request(ed25519_key)) == b""

    assert wait_for(lambda: agent_server.error is not None)
    with pytest.raises(UnsupportedKeyError):
        agent_server.raise_for_error()
    assert not key_file.exists()


def test_protocol_error_is_fatal(agent_server):
    with AgentClient(agent_server.path) as client:
        client.send_raw(b"\x00\x00\x00\x00")
        assert client.read_reply() == b""

    assert wait_for(lambda: agent_server.error is not None)
    assert isinstance(agent_server.error, AgentProtocolError)


def test_first_fatal_error_wins(agent_server):
    first = RuntimeError("first")
    agent_server.fail(first)
    agent_server.fail(RuntimeError("second"))

    assert agent_server.error is first


def test_stop_removes_socket(capture_agent):
    with rendezvous_socket() as path:
        server = AgentServer(path, capture_agent)
        server.start()
        assert path.exists()

        server.stop()

        assert not path.exists()


def test_bind_failure_is_a_listener_error(capture_agent, tmp_path):
    with pytest.raises(ListenerError):
        AgentServer(tmp_path / "missing" / "agent.sock", capture_agent)


class FailingAccept:
    """Listening socket whose accept always fails"""

    def __init__(self, sock):
        self._sock = sock

    def accept(self):
        raise OSError(errno.EMFILE, "Too many open files")

    def __getattr__(self, name):
        return getattr(self._sock, name)


def test_accept_failure_is_a_listener_error(monkeypatch, agent_server):
    monkeypatch.setattr(agent_server, "socket", FailingAccept(agent_server.socket))

    with AgentClient(agent_server.path):
        assert wait_for(lambda: agent_server.error is not None)

    with pytest.raises(ListenerError, match="Could not accept agent connection"):
        agent_server.raise_for_error()
