"""Shared fixtures for backup tests."""
import tarfile
from pathlib import Path

import pytest

from megastack_backup.archiver import expand_sources
from megastack_backup.conf import BackupConfig


class FakeArchiver:
    """In-process archiver standing in for the tar binary."""

    def __init__(self):
        self.calls: list[tuple[Path, list[str], Path, float]] = []

    async def archive(self, root, sources, destination, timeout):
        self.calls.append((root, sources, destination, timeout))
        members = expand_sources(root, sources)
        if not members:
            return
        with tarfile.open(destination, "w:gz") as tar:
            for member in members:
                tar.add(root / member, arcname=member)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Make sure no backup secret leaks in from the host environment."""
    monkeypatch.delenv("MS_BACKUP_KEY", raising=False)
    monkeypatch.delenv("MS_SESSION_SECRET", raising=False)
    monkeypatch.delenv("MS_BACKUP_TIMEOUT", raising=False)
    monkeypatch.delenv("MS_BACKUP_CLEANUP_DELAY", raising=False)


@pytest.fixture
def server_root(tmp_path: Path) -> Path:
    """Create a fake server root with state, .env and module configs."""
    root = tmp_path / "megastack"
    (root / "state").mkdir(parents=True)
    (root / "state" / "containers.json").write_text('{"web": "running"}')
    (root / ".env").write_text("MS_DOMAIN=example.org\n")
    for module in ("mail", "vpn"):
        cfg = root / "modules" / module / "config"
        cfg.mkdir(parents=True)
        (cfg / "settings.yaml").write_text(f"name: {module}\n")
    (root / "modules" / "vpn" / "data").mkdir()
    (root / "modules" / "vpn" / "data" / "cache.bin").write_bytes(b"\x00" * 32)
    return root


@pytest.fixture
def fake_archiver() -> FakeArchiver:
    """In-process archiver used instead of tar."""
    return FakeArchiver()


@pytest.fixture
def secret_config() -> BackupConfig:
    """Config with a secret and a short cleanup delay."""
    return BackupConfig(secret="s3cr3t", cleanup_delay=0.05)


@pytest.fixture
def plain_config() -> BackupConfig:
    """Config without a secret and a short cleanup delay."""
    return BackupConfig(secret=None, cleanup_delay=0.05)
