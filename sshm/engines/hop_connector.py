"""SSH connections, optionally tunneled through a chain of jump hosts."""
import logging
import os
import socket
from dataclasses import dataclass
from threading import Lock
from typing import Callable, List, Optional

import paramiko
from paramiko import PKey, SFTPClient, Transport

from sshm.shared.errors import (
    AuthenticationError,
    ChainCloseError,
    ErrorCode,
    HopFailedError,
    NetworkError,
    SessionError,
    SSHMError,
)
from sshm.shared.models import HostConfig
from sshm.shared.settings import CONNECT_TIMEOUT, DEFAULT_KEY_PATHS

logger = logging.getLogger(__name__)


@dataclass
class AuthAttempt:
    """One authentication method to offer the server, in priority order."""

    kind: str  # "publickey", "password" or "agent"
    label: str
    key: Optional[PKey] = None
    password: Optional[str] = None

    def __repr__(self) -> str:
        # Never expose the password
        return f"AuthAttempt({self.kind}, {self.label})"


def load_private_key(path: str) -> PKey:
    """Load an unencrypted private key of any supported type."""
    return PKey.from_path(os.path.expanduser(path))


def _agent_keys(agent_factory: Callable[[], paramiko.Agent]) -> list:
    if not os.getenv("SSH_AUTH_SOCK"):
        return []
    try:
        agent = agent_factory()
        return list(agent.get_keys())
    except (paramiko.SSHException, OSError) as e:
        logger.debug(f"SSH agent unavailable: {e}")
        return []


def resolve_auth(
    host: HostConfig,
    default_key_paths: Optional[List[str]] = None,
    agent_factory: Callable[[], paramiko.Agent] = paramiko.Agent,
) -> List[AuthAttempt]:
    """
    Build the ordered authentication attempts for *host*.

    Priority: explicit key, else the first loadable default key; then the
    password; then every key the SSH agent offers. A key that cannot be
    loaded is logged and skipped.
    """
    attempts: List[AuthAttempt] = []

    if host.key_path:
        try:
            attempts.append(AuthAttempt("publickey", host.key_path, key=load_private_key(host.key_path)))
        except Exception as e:
            logger.warning(f"Key auth unavailable ({host.key_path}): {e}")
    else:
        for candidate in default_key_paths if default_key_paths is not None else DEFAULT_KEY_PATHS:
            expanded = os.path.expanduser(candidate)
            if not os.path.isfile(expanded):
                continue
            try:
                attempts.append(AuthAttempt("publickey", expanded, key=load_private_key(expanded)))
                break
            except Exception as e:
                logger.debug(f"Skipping default key {expanded}: {e}")

    if host.password:
        attempts.append(AuthAttempt("password", "password", password=host.password))

    for index, key in enumerate(_agent_keys(agent_factory)):
        attempts.append(AuthAttempt("agent", f"agent key #{index + 1}", key=key))

    return attempts


class HopConnector:
    """
    Opens one authenticated transport, directly or through a previous one.

    Host keys are accepted without verification.
    """

    def __init__(
        self,
        timeout: float = CONNECT_TIMEOUT,
        logger: Optional[logging.Logger] = None,
        transport_factory: Callable[..., Transport] = Transport,
        socket_factory: Callable[..., socket.socket] = socket.create_connection,
        auth_resolver: Callable[[HostConfig], List[AuthAttempt]] = resolve_auth,
    ):
        self.timeout = timeout
        self.logger = logger or logging.getLogger(__name__)
        self.transport_factory = transport_factory
        self.socket_factory = socket_factory
        self.auth_resolver = auth_resolver

    def open_socket(self, host: HostConfig, via: Optional[Transport] = None):
        """Direct TCP connection, or a direct-tcpip channel through *via*."""
        if via is None:
            return self.socket_factory((host.host, host.port), self.timeout)
        return via.open_channel(
            "direct-tcpip",
            dest_addr=(host.host, host.port),
            src_addr=("127.0.0.1", 0),
            timeout=self.timeout,
        )

    def connect(self, host: HostConfig, via: Optional[Transport] = None) -> Transport:
        """
        Connect and authenticate to *host*.

        Raises:
            NetworkError: If the connection or handshake fails
            AuthenticationError: If every authentication method was rejected
        """
        route = "through proxy" if via is not None else "direct"
        try:
            sock = self.open_socket(host, via)
        except (OSError, paramiko.SSHException) as e:
            raise NetworkError(ErrorCode.NETWORK_ERROR, f"dial {route} {host.address}: {e}")

        try:
            transport = self.transport_factory(sock)
        except (paramiko.SSHException, OSError) as e:
            sock.close()
            raise NetworkError(ErrorCode.NETWORK_ERROR, f"ssh transport to {host.name}: {e}")

        try:
            transport.start_client(timeout=self.timeout)
            self.authenticate(transport, host)
        except SSHMError:
            transport.close()
            raise
        except (paramiko.SSHException, OSError, EOFError) as e:
            transport.close()
            raise NetworkError(ErrorCode.REMOTE_DISCONNECT, f"ssh connection to {host.name}: {e}")

        self.logger.info(f"Connected to {host.name} ({host.user}@{host.address}, {route})")
        return transport

    def authenticate(self, transport: Transport, host: HostConfig) -> None:
        attempts = self.auth_resolver(host)
        if not attempts:
            raise AuthenticationError(f"no authentication methods available for {host.user}@{host.address}")

        for attempt in attempts:
            try:
                if attempt.kind == "password":
                    transport.auth_password(host.user, attempt.password)
                else:
                    transport.auth_publickey(host.user, attempt.key)
            except paramiko.AuthenticationException as e:
                self.logger.debug(f"{attempt.label} rejected by {host.name}: {e}")
                continue
            if transport.is_authenticated():
                self.logger.debug(f"Authenticated to {host.name} with {attempt.label}")
                return

        tried = ", ".join(a.label for a in attempts)
        raise AuthenticationError(f"authentication failed for {host.user}@{host.address} (tried: {tried})")


class JumpChain:
    """
    An ordered chain of live transports: index 0 is the first hop, the last
    one is the target. Transport *i+1* is tunneled through transport *i*,
    so teardown always runs target first.
    """

    def __init__(
        self,
        hosts: List[HostConfig],
        connector: Optional[HopConnector] = None,
        logger: Optional[logging.Logger] = None,
    ):
        if not hosts:
            raise ValueError("a chain needs at least one host")
        self.hosts = list(hosts)
        self.logger = logger or logging.getLogger(__name__)
        self.connector = connector or HopConnector(logger=self.logger)
        self._transports: List[Transport] = []
        self._lock = Lock()
        self._closed = False

    @classmethod
    def for_host(cls, host: HostConfig, **kwargs) -> "JumpChain":
        """Chain of the host's jump hops followed by the host itself."""
        return cls(host.chain(), **kwargs)

    def connect(self) -> Transport:
        """
        Open every hop in order.

        Returns:
            The target transport

        Raises:
            HopFailedError: With the failing hop's index and name; every
                transport opened so far is closed before raising
        """
        with self._lock:
            if self._transports:
                return self._transports[-1]
            self._closed = False

        opened: List[Transport] = []
        previous: Optional[Transport] = None
        for index, host in enumerate(self.hosts):
            try:
                transport = self.connector.connect(host, via=previous)
            except Exception as e:
                errors = self._close_transports(opened)
                for err in errors:
                    self.logger.warning(f"Error closing hop during cleanup: {err}")
                raise HopFailedError(index, host.name, e) from e
            opened.append(transport)
            previous = transport

        with self._lock:
            if not self._closed:
                self._transports = opened
                return opened[-1]

        # close() ran while we were connecting
        self._close_transports(opened)
        raise SessionError("connection closed while connecting")

    @staticmethod
    def _close_transports(transports: List[Transport]) -> list:
        errors = []
        for transport in reversed(transports):
            try:
                transport.close()
            except Exception as e:
                errors.append(e)
        return errors

    def close(self) -> None:
        """
        Close all hops, target first.

        Raises:
            ChainCloseError: If any transport failed to close; the rest are
                still closed
        """
        with self._lock:
            transports, self._transports = self._transports, []
            self._closed = True
        errors = self._close_transports(transports)
        if transports:
            self.logger.info(f"Closed {len(transports)} transport(s)")
        if errors:
            raise ChainCloseError(errors)

    @property
    def target(self) -> Optional[Transport]:
        with self._lock:
            return self._transports[-1] if self._transports else None

    @property
    def transports(self) -> List[Transport]:
        with self._lock:
            return list(self._transports)

    def is_connected(self) -> bool:
        target = self.target
        return target is not None and target.is_active()

    def open_session(self):
        """Open a session channel on the target."""
        target = self.target
        if target is None:
            raise SessionError("not connected")
        try:
            return target.open_session()
        except paramiko.SSHException as e:
            raise SessionError(f"open session on {self.hosts[-1].name}: {e}")

    def open_sftp(self) -> SFTPClient:
        """Open an SFTP client on the target."""
        target = self.target
        if target is None:
            raise SessionError("not connected")
        try:
            return SFTPClient.from_transport(target)
        except paramiko.SSHException as e:
            raise SessionError(f"open sftp on {self.hosts[-1].name}: {e}")

    def __enter__(self):
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        try:
            self.close()
        except ChainCloseError as e:
            self.logger.warning(e.message)
