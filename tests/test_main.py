"""Tests for the command-line entry point with connection layers mocked."""
from unittest.mock import MagicMock

import pytest

from sshm.app import main as main_mod
from sshm.shared.errors import AuthenticationError, HopFailedError, NoConfigFoundError
from sshm.shared.models import HostConfig
from sshm.ui import host_picker

HOSTS = [
    HostConfig(name="web", host="web.example.com", user="deploy"),
    HostConfig(name="prod", children=[HostConfig(name="db", host="10.0.0.5", user="pg")]),
]


class FakeStore:
    hosts = HOSTS
    error = None

    def __init__(self, path=None):
        self.path = path

    def load(self):
        if self.error is not None:
            raise self.error
        return list(self.hosts)


@pytest.fixture
def store(monkeypatch):
    monkeypatch.setattr(FakeStore, "hosts", HOSTS)
    monkeypatch.setattr(FakeStore, "error", None)
    monkeypatch.setattr(main_mod, "HostStore", FakeStore)
    return FakeStore


@pytest.fixture
def connect(monkeypatch):
    mock = MagicMock()
    monkeypatch.setattr(main_mod, "connect_and_run", mock)
    return mock


def test_config_error_exits_1(store, connect, capsys):
    store.error = NoConfigFoundError("no config files found (tried: ~/.sshm.yaml)")

    assert main_mod.main([]) == 1

    err = capsys.readouterr().err
    assert "Error loading config: no config files found" in err
    assert "Create ~/.sshm.yaml with your host configurations." in err
    connect.assert_not_called()


def test_no_hosts_exits_1(store, connect, capsys):
    store.hosts = []

    assert main_mod.main([]) == 1
    assert "No hosts found in config" in capsys.readouterr().err


def test_quitting_picker_exits_0_and_shows_cursor(store, connect, monkeypatch, capsys):
    monkeypatch.setattr(host_picker, "pick_host", lambda hosts: None)

    assert main_mod.main([]) == 0

    assert "\x1b[?25h\x1b[0m" in capsys.readouterr().out
    connect.assert_not_called()


def test_picker_failure_is_tui_error(store, connect, monkeypatch, capsys):
    def _broken(hosts):
        raise RuntimeError("no tty")

    monkeypatch.setattr(host_picker, "pick_host", _broken)

    assert main_mod.main([]) == 1
    assert "TUI error: no tty" in capsys.readouterr().err


def test_selection_is_connected(store, connect, monkeypatch):
    selection = main_mod.Selection(HOSTS[0], "sftp")
    monkeypatch.setattr(host_picker, "pick_host", lambda hosts: selection)

    assert main_mod.main([]) == 0

    assert connect.call_args[0][0] is selection


def test_host_flag_skips_picker(store, connect, monkeypatch):
    monkeypatch.setattr(host_picker, "pick_host", MagicMock(side_effect=AssertionError("picker used")))

    assert main_mod.main(["--host", "prod/db", "--mode", "sftp"]) == 0

    selection = connect.call_args[0][0]
    assert selection.host.name == "db"
    assert selection.mode == "sftp"


@pytest.mark.parametrize("name", ["nope", "prod"])
def test_unknown_or_group_host(store, connect, capsys, name):
    assert main_mod.main(["--host", name]) == 1
    assert f"Error: no host named '{name}'" in capsys.readouterr().err
    connect.assert_not_called()


def test_connection_error_exits_1(store, connect, capsys):
    connect.side_effect = HopFailedError(0, "web", AuthenticationError("denied"))

    assert main_mod.main(["--host", "web"]) == 1
    assert "Connection error: hop 1 (web):" in capsys.readouterr().err


def test_unexpected_error_exits_1(store, connect, capsys):
    connect.side_effect = RuntimeError("boom")

    assert main_mod.main(["--host", "web"]) == 1
    assert "Unexpected error: boom" in capsys.readouterr().err


def test_connect_and_run_dispatches_on_mode(monkeypatch):
    chain = MagicMock()
    chain.__enter__.return_value = chain
    monkeypatch.setattr(main_mod.JumpChain, "for_host", MagicMock(return_value=chain))
    run_ssh = MagicMock()
    run_sftp = MagicMock()
    monkeypatch.setattr(main_mod, "run_ssh", run_ssh)
    monkeypatch.setattr(main_mod, "run_sftp", run_sftp)
    terminal = MagicMock()
    logger = MagicMock()

    main_mod.connect_and_run(main_mod.Selection(HOSTS[0], "ssh"), terminal, logger)
    main_mod.connect_and_run(main_mod.Selection(HOSTS[0], "sftp"), terminal, logger)

    run_ssh.assert_called_once_with(chain, terminal, logger)
    run_sftp.assert_called_once_with(chain, HOSTS[0], logger)
    assert chain.__exit__.call_count == 2
