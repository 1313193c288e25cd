"""Tests for auth resolution, single-hop connect and jump chains (mocked)."""
from unittest.mock import MagicMock

import paramiko
import pytest

from sshm.engines import hop_connector
from sshm.engines.hop_connector import AuthAttempt, HopConnector, JumpChain, resolve_auth
from sshm.shared.errors import (
    AuthenticationError,
    ChainCloseError,
    HopFailedError,
    NetworkError,
    SessionError,
)
from sshm.shared.models import HostConfig


def _host(name="target", **overrides) -> HostConfig:
    defaults = dict(name=name, host=f"{name}.example.com", user="alice", port=22)
    defaults.update(overrides)
    return HostConfig(**defaults)


@pytest.fixture
def fake_keys(monkeypatch):
    """Make every key path 'load' to a marker string."""
    monkeypatch.setattr(hop_connector, "load_private_key", lambda path: f"key:{path}")


class TestResolveAuth:
    def test_order_is_key_then_password_then_agent(self, fake_keys, monkeypatch):
        monkeypatch.setenv("SSH_AUTH_SOCK", "/tmp/agent.sock")
        agent = MagicMock()
        agent.get_keys.return_value = ["agent-1", "agent-2"]

        attempts = resolve_auth(
            _host(key_path="/keys/id_test", password="pw"),
            agent_factory=lambda: agent,
        )

        assert [a.kind for a in attempts] == ["publickey", "password", "agent", "agent"]
        assert attempts[0].key == "key:/keys/id_test"
        assert attempts[1].password == "pw"
        assert [a.key for a in attempts[2:]] == ["agent-1", "agent-2"]

    def test_no_agent_without_socket(self, fake_keys, monkeypatch):
        monkeypatch.delenv("SSH_AUTH_SOCK", raising=False)
        agent_factory = MagicMock()

        attempts = resolve_auth(_host(password="pw"), default_key_paths=[], agent_factory=agent_factory)

        assert [a.kind for a in attempts] == ["password"]
        agent_factory.assert_not_called()

    def test_first_existing_default_key_wins(self, fake_keys, tmp_path, monkeypatch):
        monkeypatch.delenv("SSH_AUTH_SOCK", raising=False)
        rsa = tmp_path / "id_rsa"
        ecdsa = tmp_path / "id_ecdsa"
        rsa.write_text("rsa")
        ecdsa.write_text("ecdsa")

        attempts = resolve_auth(
            _host(),
            default_key_paths=[str(tmp_path / "id_ed25519"), str(rsa), str(ecdsa)],
        )

        assert len(attempts) == 1
        assert attempts[0].label == str(rsa)

    def test_unloadable_default_key_falls_through(self, tmp_path, monkeypatch):
        monkeypatch.delenv("SSH_AUTH_SOCK", raising=False)
        broken = tmp_path / "id_ed25519"
        good = tmp_path / "id_rsa"
        broken.write_text("garbage")
        good.write_text("rsa")

        def _load(path):
            if path == str(broken):
                raise paramiko.SSHException("not a key")
            return "rsa-key"

        monkeypatch.setattr(hop_connector, "load_private_key", _load)
        attempts = resolve_auth(_host(), default_key_paths=[str(broken), str(good)])

        assert [a.key for a in attempts] == ["rsa-key"]

    def test_unloadable_explicit_key_is_skipped(self, monkeypatch):
        monkeypatch.delenv("SSH_AUTH_SOCK", raising=False)

        def _load(path):
            raise FileNotFoundError(path)

        monkeypatch.setattr(hop_connector, "load_private_key", _load)
        attempts = resolve_auth(_host(key_path="/missing", password="pw"))

        assert [a.kind for a in attempts] == ["password"]

    def test_repr_hides_password(self):
        attempt = AuthAttempt("password", "password", password="hunter2")
        assert "hunter2" not in repr(attempt)


class TestHopConnector:
    def _connector(self, transport, attempts, sock=None):
        return HopConnector(
            timeout=5,
            transport_factory=MagicMock(return_value=transport),
            socket_factory=MagicMock(return_value=sock or MagicMock()),
            auth_resolver=lambda host: attempts,
        )

    def test_falls_through_rejected_methods(self):
        transport = MagicMock()
        transport.auth_publickey.side_effect = paramiko.AuthenticationException("denied")
        transport.is_authenticated.return_value = True
        attempts = [
            AuthAttempt("publickey", "id_rsa", key="k"),
            AuthAttempt("password", "password", password="pw"),
        ]
        connector = self._connector(transport, attempts)

        result = connector.connect(_host())

        assert result is transport
        transport.start_client.assert_called_once_with(timeout=5)
        transport.auth_publickey.assert_called_once_with("alice", "k")
        transport.auth_password.assert_called_once_with("alice", "pw")
        connector.socket_factory.assert_called_once_with(("target.example.com", 22), 5)

    def test_all_methods_rejected(self):
        transport = MagicMock()
        transport.auth_password.side_effect = paramiko.AuthenticationException("denied")
        connector = self._connector(transport, [AuthAttempt("password", "password", password="pw")])

        with pytest.raises(AuthenticationError):
            connector.connect(_host())
        transport.close.assert_called_once()

    def test_no_methods_available(self):
        transport = MagicMock()
        connector = self._connector(transport, [])

        with pytest.raises(AuthenticationError, match="no authentication methods"):
            connector.connect(_host())

    def test_tunnels_through_previous_transport(self):
        transport = MagicMock()
        transport.is_authenticated.return_value = True
        via = MagicMock()
        connector = self._connector(transport, [AuthAttempt("password", "password", password="pw")])

        connector.connect(_host("inner", host="10.0.0.5", port=2222), via=via)

        via.open_channel.assert_called_once_with(
            "direct-tcpip",
            dest_addr=("10.0.0.5", 2222),
            src_addr=("127.0.0.1", 0),
            timeout=5,
        )
        connector.socket_factory.assert_not_called()
        connector.transport_factory.assert_called_once_with(via.open_channel.return_value)

    def test_dial_failure_is_network_error(self):
        connector = HopConnector(socket_factory=MagicMock(side_effect=ConnectionRefusedError("refused")))

        with pytest.raises(NetworkError, match="dial"):
            connector.connect(_host())

    def test_transport_creation_failure_closes_socket(self):
        sock = MagicMock()
        connector = HopConnector(
            timeout=5,
            transport_factory=MagicMock(side_effect=paramiko.SSHException("bad socket")),
            socket_factory=MagicMock(return_value=sock),
            auth_resolver=lambda host: [],
        )

        with pytest.raises(NetworkError, match="bad socket"):
            connector.connect(_host())
        sock.close.assert_called_once()

    def test_handshake_failure_closes_transport(self):
        transport = MagicMock()
        transport.start_client.side_effect = paramiko.SSHException("kex failed")
        connector = self._connector(transport, [])

        with pytest.raises(NetworkError, match="kex failed"):
            connector.connect(_host())
        transport.close.assert_called_once()


class FakeConnector:
    """Records connect calls; fails at a chosen hop index."""

    def __init__(self, fail_at=None, closed=None):
        self.fail_at = fail_at
        self.calls = []
        self.closed = closed if closed is not None else []
        self.transports = []

    def connect(self, host, via=None):
        index = len(self.calls)
        self.calls.append((host.name, via))
        if index == self.fail_at:
            raise AuthenticationError("denied")
        transport = MagicMock(name=host.name)
        transport.close.side_effect = lambda name=host.name: self.closed.append(name)
        transport.is_active.return_value = True
        self.transports.append(transport)
        return transport


class TestJumpChain:
    def test_hops_tunnel_through_previous(self):
        connector = FakeConnector()
        chain = JumpChain([_host("bastion"), _host("inner"), _host("target")], connector=connector)

        target = chain.connect()

        assert [name for name, _ in connector.calls] == ["bastion", "inner", "target"]
        assert connector.calls[0][1] is None
        assert connector.calls[1][1] is connector.transports[0]
        assert connector.calls[2][1] is connector.transports[1]
        assert target is connector.transports[2]
        assert chain.target is target
        assert chain.is_connected()

    def test_failure_at_third_hop_closes_first_two(self):
        connector = FakeConnector(fail_at=2)
        chain = JumpChain([_host("bastion"), _host("inner"), _host("target")], connector=connector)

        with pytest.raises(HopFailedError) as exc_info:
            chain.connect()

        err = exc_info.value
        assert err.index == 2
        assert err.name == "target"
        assert "hop 3 (target)" in str(err)
        assert isinstance(err.cause, AuthenticationError)
        assert connector.closed == ["inner", "bastion"]
        assert chain.transports == []
        assert not chain.is_connected()

    def test_close_is_target_first(self):
        connector = FakeConnector()
        chain = JumpChain([_host("bastion"), _host("target")], connector=connector)
        chain.connect()

        chain.close()

        assert connector.closed == ["target", "bastion"]
        assert chain.target is None

    def test_close_aggregates_errors(self):
        connector = FakeConnector()
        chain = JumpChain([_host("bastion"), _host("target")], connector=connector)
        chain.connect()
        connector.transports[1].close.side_effect = OSError("socket gone")

        with pytest.raises(ChainCloseError) as exc_info:
            chain.close()

        assert len(exc_info.value.errors) == 1
        assert connector.closed == ["bastion"]

    def test_single_host_chain(self):
        connector = FakeConnector()
        host = _host("solo")
        chain = JumpChain.for_host(host, connector=connector)

        chain.connect()

        assert connector.calls == [("solo", None)]

    def test_for_host_puts_jump_hops_first(self):
        target = _host("target", jump=[_host("j1"), _host("j2")])
        chain = JumpChain.for_host(target, connector=FakeConnector())
        assert [h.name for h in chain.hosts] == ["j1", "j2", "target"]

    def test_open_session_requires_connection(self):
        chain = JumpChain([_host()], connector=FakeConnector())
        with pytest.raises(SessionError):
            chain.open_session()

    def test_open_session_uses_target(self):
        connector = FakeConnector()
        chain = JumpChain([_host("bastion"), _host("target")], connector=connector)
        chain.connect()

        channel = chain.open_session()

        assert channel is connector.transports[1].open_session.return_value

    def test_context_manager_closes(self):
        connector = FakeConnector()
        with JumpChain([_host("bastion"), _host("target")], connector=connector):
            pass
        assert connector.closed == ["target", "bastion"]

    def test_empty_chain_rejected(self):
        with pytest.raises(ValueError):
            JumpChain([])
