"""Tests for YAML host configuration loading and saving."""
import os
import stat

import pytest

from sshm.services.host_store import HostStore, find_host, hosts_at_path, load_file
from sshm.shared.errors import ConfigParseError, ConfigValidationError, NoConfigFoundError
from sshm.shared.models import HostConfig

HOSTS_YAML = """\
- name: web
  host: web.example.com
  user: deploy
  keypath: ~/.ssh/id_web
- name: prod
  children:
    - name: db
      host: 10.0.0.5
      user: postgres
      port: 2222
      jump:
        - name: bastion
          host: bastion.example.com
          user: jump
"""


def _write(path, text):
    path.write_text(text, encoding="utf-8")
    return path


def test_load_explicit_file(tmp_path, monkeypatch):
    monkeypatch.setenv("HOME", str(tmp_path))
    path = _write(tmp_path / "hosts.yaml", HOSTS_YAML)

    hosts = HostStore(path=path).load()

    assert [h.name for h in hosts] == ["web", "prod"]
    web, prod = hosts
    assert web.port == 22
    assert web.key_path == str(tmp_path / ".ssh" / "id_web")
    assert prod.is_group
    db = prod.children[0]
    assert db.port == 2222
    assert [h.name for h in db.chain()] == ["bastion", "db"]
    assert db.jump[0].port == 22


def test_defaults_are_merged_and_bad_files_skipped(tmp_path):
    first = _write(tmp_path / "a.yaml", "- {name: one, host: h1, user: u}\n")
    broken = _write(tmp_path / "b.yaml", "- name: [unclosed\n")
    third = _write(tmp_path / "c.yaml", "- {name: two, host: h2, user: u}\n")
    missing = tmp_path / "missing.yaml"

    store = HostStore(defaults=[str(first), str(missing), str(broken), str(third)])
    hosts = store.load()

    assert [h.name for h in hosts] == ["one", "two"]


def test_no_default_file_exists(tmp_path):
    store = HostStore(defaults=[str(tmp_path / "x.yaml"), str(tmp_path / "y.yaml")])

    with pytest.raises(NoConfigFoundError, match="no config files found"):
        store.load()


def test_invalid_yaml_is_parse_error(tmp_path):
    path = _write(tmp_path / "bad.yaml", "- name: [unclosed\n")

    with pytest.raises(ConfigParseError, match="parse yaml"):
        load_file(path)


def test_top_level_must_be_a_list(tmp_path):
    path = _write(tmp_path / "bad.yaml", "name: web\n")

    with pytest.raises(ConfigParseError, match="expected a list"):
        load_file(path)


def test_empty_file_has_no_hosts(tmp_path):
    assert load_file(_write(tmp_path / "empty.yaml", "")) == []


def test_missing_fields_are_reported_with_index(tmp_path):
    path = _write(tmp_path / "hosts.yaml", "- {name: ok, host: h, user: u}\n- {name: nohost, user: u}\n")

    with pytest.raises(ConfigValidationError) as exc_info:
        load_file(path)

    err = exc_info.value
    assert err.index == 1
    assert err.name == "nohost"
    assert "validate host #1 (nohost)" in err.message
    assert "host is required" in err.message


def test_numeric_scalars_are_strings(tmp_path):
    path = _write(tmp_path / "hosts.yaml", "- {name: web, host: h, user: u, password: 123456, keypath: 42}\n")

    host = load_file(path)[0]

    assert host.password == "123456"
    assert host.key_path == "42"


def test_env_var_selects_config(tmp_path, monkeypatch):
    path = _write(tmp_path / "env.yaml", "- {name: envhost, host: h, user: u}\n")
    monkeypatch.setenv("SSHM_CONFIG", str(path))

    hosts = HostStore().load()

    assert [h.name for h in hosts] == ["envhost"]


def test_save_round_trip_with_owner_only_mode(tmp_path):
    hosts = [
        HostConfig(name="web", host="web.example.com", user="deploy", password="pw"),
        HostConfig(name="grp", children=[HostConfig(name="db", host="db", user="u", port=2200)]),
    ]
    path = tmp_path / "out" / "hosts.yaml"

    HostStore(path=path).save(hosts)

    assert stat.S_IMODE(os.stat(path).st_mode) == 0o600
    loaded = load_file(path)
    assert loaded[0].password == "pw"
    assert loaded[0].port == 22
    assert loaded[1].children[0].port == 2200
    assert "port: 22\n" not in path.read_text(encoding="utf-8")


@pytest.fixture
def tree():
    return [
        HostConfig(name="web", host="w", user="u"),
        HostConfig(name="prod", children=[
            HostConfig(name="db", host="d", user="u"),
            HostConfig(name="inner", children=[HostConfig(name="cache", host="c", user="u")]),
        ]),
    ]


def test_hosts_at_path(tree):
    assert [h.name for h in hosts_at_path(tree, [])] == ["web", "prod"]
    assert [h.name for h in hosts_at_path(tree, ["prod", "inner"])] == ["cache"]
    with pytest.raises(KeyError):
        hosts_at_path(tree, ["web"])


def test_find_host(tree):
    assert find_host(tree, "web").host == "w"
    assert find_host(tree, "prod/db").host == "d"
    assert find_host(tree, "cache").host == "c"
    assert find_host(tree, "prod/cache") is None
    assert find_host(tree, "nope") is None
