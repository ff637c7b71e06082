"""Pytest configuration and shared fixtures."""

from __future__ import annotations

from pathlib import Path

import pytest
from typer.testing import CliRunner

from sshman.storage import Registry

SAMPLE_ENV = """\
# Unrelated settings stay untouched
EDITOR_THEME=dark

# Server: web
SSH_SERVER_WEB_HOST=192.168.1.10
SSH_SERVER_WEB_USER=admin
SSH_SERVER_WEB_PORT=22
SSH_SERVER_WEB_PASSWORD=secret123
SSH_SERVER_WEB_DESCRIPTION="Production web server"

# Server: db
SSH_SERVER_DB_HOST=192.168.1.20
SSH_SERVER_DB_USER=root
SSH_SERVER_DB_PORT=2222
SSH_SERVER_DB_KEYPATH=/home/user/.ssh/id_rsa
SSH_SERVER_DB_DEFAULT_DIR=/var/lib/postgresql
"""


@pytest.fixture
def runner() -> CliRunner:
    """Provide Typer CLI test runner."""
    return CliRunner()


@pytest.fixture
def temp_home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point SSH_MANAGER_HOME at a temporary directory."""
    home = tmp_path / "sshman"
    home.mkdir()
    monkeypatch.setenv("SSH_MANAGER_HOME", str(home))
    monkeypatch.delenv("SSH_MANAGER_ENV", raising=False)
    monkeypatch.delenv("SSH_MANAGER_DEBUG", raising=False)
    return home


@pytest.fixture
def env_file(temp_home: Path) -> Path:
    """Servers file with two sample servers."""
    path = temp_home / ".env"
    path.write_text(SAMPLE_ENV, encoding="utf-8")
    return path


@pytest.fixture
def registry(env_file: Path) -> Registry:
    return Registry(env_file)


@pytest.fixture
def empty_registry(temp_home: Path) -> Registry:
    return Registry(temp_home / ".env")


@pytest.fixture
def temp_ssh_dir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Create temporary SSH directory for key-based tests."""
    ssh_dir = tmp_path / ".ssh"
    ssh_dir.mkdir(parents=True, exist_ok=True)

    # Patch Path.home() to use temp directory
    def mock_home() -> Path:
        return tmp_path

    monkeypatch.setattr(Path, "home", mock_home)
    return ssh_dir


@pytest.fixture
def sample_env() -> str:
    return SAMPLE_ENV
