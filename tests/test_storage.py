"""Tests for storage module."""

from __future__ import annotations

from pathlib import Path

import pytest

from sshman.errors import RegistryIOError, ServerExistsError, ServerNotFoundError
from sshman.models import AuthMethod
from sshman.storage import Registry


def test_list_names_sorted_lowercase(registry: Registry):
    assert registry.list_names() == ["db", "web"]


def test_list_names_ignores_file_order_and_duplicates(tmp_path: Path):
    path = tmp_path / ".env"
    path.write_text(
        "SSH_SERVER_ZETA_HOST=z\nSSH_SERVER_ALPHA_HOST=a\nSSH_SERVER_ALPHA_HOST=dup\nSSH_SERVER_MID_USER=only-user\n",
        encoding="utf-8",
    )
    assert Registry(path).list_names() == ["alpha", "zeta"]


def test_list_names_missing_file(empty_registry: Registry):
    assert empty_registry.list_names() == []
    assert empty_registry.get_field("web", "HOST") is None


def test_get_field(registry: Registry):
    assert registry.get_field("web", "HOST") == "192.168.1.10"
    assert registry.get_field("WEB", "host") == "192.168.1.10"
    assert registry.get_field("web", "DESCRIPTION") == "Production web server"
    assert registry.get_field("web", "KEYPATH") is None
    assert registry.get_field("nope", "HOST") is None


def test_get_server(registry: Registry):
    db = registry.get_server("db")
    assert db is not None
    assert db.name == "db"
    assert db.port == 2222
    assert db.auth_method is AuthMethod.KEY
    assert db.default_dir == "/var/lib/postgresql"
    assert db.description is None

    web = registry.get_server("web")
    assert web.password == "secret123"
    assert web.auth_method is AuthMethod.PASSWORD

    assert registry.get_server("missing") is None


def test_get_server_bad_port_defaults_to_22(tmp_path: Path):
    path = tmp_path / ".env"
    path.write_text("SSH_SERVER_X_HOST=h\nSSH_SERVER_X_USER=u\nSSH_SERVER_X_PORT=abc\n", encoding="utf-8")
    assert Registry(path).get_server("x").port == 22


def test_tolerates_hand_edited_lines(tmp_path: Path):
    path = tmp_path / ".env"
    path.write_text(
        "this line is junk\n# random comment\n  indented=ignored\nSSH_SERVER_OK_HOST=h\nSSH_SERVER_OK_USER=u\n",
        encoding="utf-8",
    )
    reg = Registry(path)
    assert reg.list_names() == ["ok"]
    reg.remove("ok")
    assert path.read_text(encoding="utf-8") == "this line is junk\n# random comment\n  indented=ignored\n"


def test_add_then_list(registry: Registry):
    registry.add("New-Box", "10.0.0.1", "deploy", "key", "/keys/id", port=2200, description="")
    assert registry.list_names().count("new-box") == 1

    text = registry.path.read_text(encoding="utf-8")
    assert text.endswith(
        "\n\n# Server: New-Box\n"
        "SSH_SERVER_NEW-BOX_HOST=10.0.0.1\n"
        "SSH_SERVER_NEW-BOX_USER=deploy\n"
        "SSH_SERVER_NEW-BOX_PORT=2200\n"
        "SSH_SERVER_NEW-BOX_KEYPATH=/keys/id\n"
    )


def test_add_writes_backup_of_previous_contents(registry: Registry, sample_env: str):
    registry.add("extra", "h", "u", AuthMethod.PASSWORD, "pw")
    assert registry.backup_path.read_text(encoding="utf-8") == sample_env


def test_add_round_trip(registry: Registry):
    desc = 'Has "quotes" and = signs'
    registry.add("round", "example.com", "me", AuthMethod.KEY, "/path/key", 2222, desc)

    assert registry.get_field("round", "HOST") == "example.com"
    assert registry.get_field("round", "PORT") == "2222"
    assert registry.get_field("round", "DESCRIPTION") == desc
    assert registry.get_field("round", "PASSWORD") is None


def test_add_password_auth(registry: Registry):
    registry.add("pw", "h", "u", "password", "p@ss=word")
    assert registry.get_field("pw", "PASSWORD") == "p@ss=word"
    assert registry.get_field("pw", "KEYPATH") is None


def test_add_duplicate_rejected_without_changes(registry: Registry):
    before = registry.path.read_bytes()
    with pytest.raises(ServerExistsError):
        registry.add("WEB", "other", "u", "key", "/k")
    assert registry.path.read_bytes() == before
    assert not registry.backup_path.exists()


def test_add_creates_missing_file(empty_registry: Registry):
    empty_registry.add("first", "h", "u", "key", "/k")
    assert empty_registry.list_names() == ["first"]
    assert empty_registry.path.read_text(encoding="utf-8").startswith("# Server: first\n")
    assert not empty_registry.backup_path.exists()


def test_update_missing_rejected(registry: Registry):
    before = registry.path.read_bytes()
    with pytest.raises(ServerNotFoundError):
        registry.update("ghost", "h", "u", "key", "/k")
    assert registry.path.read_bytes() == before


def test_update_replaces_record(registry: Registry, sample_env: str):
    registry.update("web", "10.9.9.9", "ops", AuthMethod.KEY, "/keys/ops", port=2022, default_dir="/srv")

    web = registry.get_server("web")
    assert web.host == "10.9.9.9"
    assert web.user == "ops"
    assert web.port == 2022
    assert web.key_path == "/keys/ops"
    assert web.default_dir == "/srv"
    # omitted fields are dropped
    assert web.password is None
    assert web.description is None

    text = registry.path.read_text(encoding="utf-8")
    assert text.count("# Server: web") == 1
    assert text.count("SSH_SERVER_WEB_HOST=") == 1
    assert registry.backup_path.read_text(encoding="utf-8") == sample_env
    # other records untouched
    assert registry.get_field("db", "PORT") == "2222"


def test_update_moves_block_to_end(registry: Registry):
    registry.update("web", "h", "u", "password", "pw")
    lines = registry.path.read_text(encoding="utf-8").splitlines()
    assert lines[-1] == "SSH_SERVER_WEB_PASSWORD=pw"
    assert lines[-5] == "# Server: web"


def test_remove_strips_record_and_comment(registry: Registry, sample_env: str):
    registry.remove("web")

    assert registry.list_names() == ["db"]
    text = registry.path.read_text(encoding="utf-8")
    assert "# Server: web" not in text
    assert "SSH_SERVER_WEB_" not in text
    assert text.startswith("# Unrelated settings stay untouched\nEDITOR_THEME=dark\n\n# Server: db\n")
    assert registry.backup_path.read_text(encoding="utf-8") == sample_env


def test_remove_twice(registry: Registry):
    registry.remove("db")
    after_first = registry.path.read_bytes()

    with pytest.raises(ServerNotFoundError):
        registry.remove("db")
    assert registry.path.read_bytes() == after_first


def test_remove_keeps_servers_sharing_a_prefix(registry: Registry):
    registry.add("web_prod", "10.0.0.2", "u", "key", "/k")
    registry.remove("web")

    assert registry.list_names() == ["db", "web_prod"]
    assert registry.get_field("web_prod", "HOST") == "10.0.0.2"
    assert "# Server: web_prod" in registry.path.read_text(encoding="utf-8")


def test_update_with_server_named_like_a_field(empty_registry: Registry):
    empty_registry.add("web_default", "10.0.0.9", "u", "key", "/k9")
    empty_registry.add("web", "10.0.0.1", "u", "key", "/k1")

    empty_registry.update("web", "10.0.0.1", "u", "key", "/k1", default_dir="/old")
    empty_registry.update("web", "10.0.0.1", "u", "key", "/k1", default_dir="/new")
    assert empty_registry.get_field("web", "DEFAULT_DIR") == "/new"
    assert empty_registry.path.read_text(encoding="utf-8").count("SSH_SERVER_WEB_DEFAULT_DIR=") == 1

    empty_registry.update("web", "10.0.0.1", "u", "key", "/k1")
    assert empty_registry.get_field("web", "DEFAULT_DIR") is None

    web_default = empty_registry.get_server("web_default")
    assert web_default.host == "10.0.0.9"
    assert web_default.key_path == "/k9"
    assert empty_registry.list_names() == ["web", "web_default"]


def test_remove_server_named_like_a_field_keeps_other_record(empty_registry: Registry):
    empty_registry.add("web", "10.0.0.1", "u", "key", "/k1")
    empty_registry.update("web", "10.0.0.1", "u", "key", "/k1", default_dir="/srv")
    empty_registry.add("web_default", "10.0.0.9", "u", "key", "/k9")

    empty_registry.remove("web_default")

    assert empty_registry.list_names() == ["web"]
    assert empty_registry.get_field("web", "DEFAULT_DIR") == "/srv"


@pytest.mark.parametrize(
    "overrides",
    [
        {"host": "h\nSSH_SERVER_X_PASSWORD=pw"},
        {"user": "u\r"},
        {"auth_value": "/k\nSSH_SERVER_WEB_HOST=evil"},
        {"description": "x\nSSH_SERVER_WEB_PASSWORD=pw"},
    ],
)
def test_line_breaks_in_values_rejected_before_write(registry: Registry, overrides: dict):
    before = registry.path.read_bytes()
    args = {"host": "h", "user": "u", "auth_type": "key", "auth_value": "/k", "description": ""} | overrides

    with pytest.raises(ValueError, match="line breaks"):
        registry.add("x", **args)
    with pytest.raises(ValueError, match="line breaks"):
        registry.update("web", **args)
    with pytest.raises(ValueError, match="line breaks"):
        registry.update("web", "h", "u", "key", "/k", default_dir="/srv\nSSH_SERVER_WEB_PORT=1")

    assert registry.path.read_bytes() == before
    assert not registry.backup_path.exists()


def test_backup_failure_aborts_mutation(registry: Registry, monkeypatch: pytest.MonkeyPatch):
    def broken_copy(*args, **kwargs):
        raise PermissionError("read-only")

    monkeypatch.setattr("sshman.storage.shutil.copy2", broken_copy)
    before = registry.path.read_bytes()

    with pytest.raises(RegistryIOError):
        registry.remove("web")
    with pytest.raises(RegistryIOError):
        registry.add("another", "h", "u", "key", "/k")
    assert registry.path.read_bytes() == before


def test_invalid_auth_type_rejected_before_write(registry: Registry):
    before = registry.path.read_bytes()
    with pytest.raises(ValueError):
        registry.add("x", "h", "u", "token", "abc")
    assert registry.path.read_bytes() == before
    assert not registry.backup_path.exists()


def test_servers_and_find(registry: Registry):
    assert [s.name for s in registry.servers()] == ["db", "web"]

    assert registry.find("WEB").name == "web"
    assert registry.find("d").name == "db"
    assert registry.find("zzz") is None


def test_find_ambiguous_partial(registry: Registry):
    registry.add("web2", "h", "u", "key", "/k")
    # exact match wins
    assert registry.find("web").name == "web"
    assert registry.find("we") is None
