"""
Tests for the archive producer.

Tests cover:
- Source expansion (module config globs, missing inputs)
- ArchiveProducer naming and tolerant archiving
- TarArchiver command line, timeout and the system tar binary
"""
import asyncio
import os
import re
import shutil
import tarfile

import pytest

from megastack_backup.archiver import (
    ArchiveProducer,
    TarArchiver,
    expand_sources,
)
from megastack_backup.conf import DEFAULT_SOURCES
from megastack_backup.exceptions import ExternalToolError

_ARCHIVE_NAME = re.compile(
    r"^megastack-backup-\d{4}-\d{2}-\d{2}T\d{2}-\d{2}-\d{2}\.tar\.gz$"
)

requires_tar = pytest.mark.skipif(
    shutil.which("tar") is None, reason="tar binary not available"
)


class FakeProcess:
    """Stand-in for an asyncio subprocess."""

    def __init__(self, hang: bool = False, exited: bool = False):
        self.returncode = None if hang else 0
        self._hang = hang
        self._exited = exited
        self.killed = False

    async def communicate(self):
        if self._hang:
            await asyncio.sleep(10)
        return b"", b""

    def kill(self):
        if self._exited:
            raise ProcessLookupError()
        self.killed = True

    async def wait(self):
        return self.returncode


def _patch_subprocess(monkeypatch, process):
    calls = []

    async def fake_exec(*cmd, **kwargs):
        calls.append(list(cmd))
        return process

    monkeypatch.setattr(asyncio, "create_subprocess_exec", fake_exec)
    return calls


class TestExpandSources:
    """Tests for expand_sources."""

    def test_expands_module_configs(self, server_root):
        """Test that module config globs expand to each module."""
        members = expand_sources(server_root, DEFAULT_SOURCES)
        assert members == [
            "state",
            ".env",
            "modules/mail/config",
            "modules/vpn/config",
        ]

    def test_missing_inputs_dropped(self, server_root):
        """Test that a missing .env is skipped without error."""
        (server_root / ".env").unlink()
        members = expand_sources(server_root, DEFAULT_SOURCES)
        assert ".env" not in members
        assert "state" in members

    def test_nothing_matches(self, tmp_path):
        """Test that an empty root expands to no members."""
        assert expand_sources(tmp_path, DEFAULT_SOURCES) == []


class TestArchiveProducer:
    """Tests for ArchiveProducer with a fake archiver."""

    @pytest.mark.asyncio
    async def test_produce_creates_archive(self, server_root, fake_archiver):
        """Test that produce writes a timestamp-named archive."""
        producer = ArchiveProducer(archiver=fake_archiver)
        path, filename = await producer.produce(server_root)
        assert _ARCHIVE_NAME.match(filename)
        assert path.name == filename
        assert path.parent == (server_root / "backups").resolve()
        assert path.is_file()

    @pytest.mark.asyncio
    async def test_creates_backups_directory(self, server_root, fake_archiver):
        """Test that the backups directory is created when absent."""
        assert not (server_root / "backups").exists()
        await ArchiveProducer(archiver=fake_archiver).produce(server_root)
        assert (server_root / "backups").is_dir()

    @pytest.mark.asyncio
    async def test_passes_sources_and_timeout(self, server_root, fake_archiver):
        """Test that the archiver receives root, sources and timeout."""
        producer = ArchiveProducer(archiver=fake_archiver, timeout=12)
        await producer.produce(server_root)
        root, sources, _, timeout = fake_archiver.calls[0]
        assert root == server_root.resolve()
        assert sources == DEFAULT_SOURCES
        assert timeout == 12

    @pytest.mark.asyncio
    async def test_archive_contents(self, server_root, fake_archiver):
        """Test that state, .env and module configs are archived."""
        path, _ = await ArchiveProducer(archiver=fake_archiver).produce(server_root)
        with tarfile.open(path, "r:gz") as tar:
            names = tar.getnames()
        assert "state/containers.json" in names
        assert ".env" in names
        assert "modules/mail/config/settings.yaml" in names
        assert not any("modules/vpn/data" in n for n in names)

    @pytest.mark.asyncio
    async def test_empty_root_yields_empty_archive(self, tmp_path, fake_archiver):
        """Test that a root with no inputs still yields a valid archive."""
        path, _ = await ArchiveProducer(archiver=fake_archiver).produce(tmp_path)
        assert path.is_file()
        with tarfile.open(path, "r:gz") as tar:
            assert tar.getnames() == []

    @pytest.mark.asyncio
    async def test_archiver_error_propagates(self, server_root):
        """Test that archiver failures reach the caller."""
        class BrokenArchiver:
            async def archive(self, root, sources, destination, timeout):
                raise ExternalToolError("boom")

        with pytest.raises(ExternalToolError):
            await ArchiveProducer(archiver=BrokenArchiver()).produce(server_root)


class TestTarCommand:
    """Tests for TarArchiver with a substituted subprocess."""

    @pytest.mark.asyncio
    async def test_members_follow_option_terminator(
        self, monkeypatch, server_root, tmp_path
    ):
        """Test that members are passed after "--" so they cannot be options."""
        calls = _patch_subprocess(monkeypatch, FakeProcess())
        destination = tmp_path / "out.tar.gz"
        await TarArchiver().archive(server_root, DEFAULT_SOURCES, destination, 5)
        cmd = calls[0]
        assert cmd[:6] == [
            "tar", "-czf", str(destination), "-C", str(server_root), "--",
        ]
        assert cmd[6:] == expand_sources(server_root, DEFAULT_SOURCES)

    @pytest.mark.asyncio
    async def test_timeout_kills_process(self, monkeypatch, server_root, tmp_path):
        """Test that a hung archiver is killed and reported."""
        process = FakeProcess(hang=True)
        _patch_subprocess(monkeypatch, process)
        with pytest.raises(ExternalToolError, match="timed out"):
            await TarArchiver().archive(
                server_root, DEFAULT_SOURCES, tmp_path / "out.tar.gz", 0.05,
            )
        assert process.killed

    @pytest.mark.asyncio
    async def test_timeout_after_process_exited(
        self, monkeypatch, server_root, tmp_path
    ):
        """Test that a process gone before the kill still reports a timeout."""
        _patch_subprocess(monkeypatch, FakeProcess(hang=True, exited=True))
        with pytest.raises(ExternalToolError, match="timed out"):
            await TarArchiver().archive(
                server_root, DEFAULT_SOURCES, tmp_path / "out.tar.gz", 0.05,
            )

    @pytest.mark.asyncio
    async def test_no_members_skips_tar(self, monkeypatch, tmp_path):
        """Test that tar is not run when nothing matches."""
        calls = _patch_subprocess(monkeypatch, FakeProcess())
        await TarArchiver().archive(
            tmp_path, DEFAULT_SOURCES, tmp_path / "out.tar.gz", 5,
        )
        assert calls == []


@requires_tar
class TestTarArchiver:
    """Tests for TarArchiver using the real tar binary."""

    @pytest.mark.asyncio
    async def test_real_tar(self, server_root):
        """Test archiving a root with the system tar."""
        path, _ = await ArchiveProducer(archiver=TarArchiver()).produce(server_root)
        with tarfile.open(path, "r:gz") as tar:
            names = tar.getnames()
        assert any(n.startswith("state") for n in names)
        assert any("modules/vpn/config" in n for n in names)

    @pytest.mark.asyncio
    async def test_missing_env_tolerated(self, server_root):
        """Test that a missing .env does not abort archiving."""
        (server_root / ".env").unlink()
        path, _ = await ArchiveProducer(archiver=TarArchiver()).produce(server_root)
        assert path.is_file()

    @pytest.mark.asyncio
    async def test_missing_binary(self, server_root, tmp_path):
        """Test that a missing tar binary is an external tool error."""
        archiver = TarArchiver(tar_bin=str(tmp_path / "no-such-tar"))
        with pytest.raises(ExternalToolError):
            await archiver.archive(
                server_root, DEFAULT_SOURCES, tmp_path / "out.tar.gz", 5,
            )

    @pytest.mark.asyncio
    @pytest.mark.skipif(os.name != "posix", reason="needs a POSIX shell")
    async def test_timeout(self, server_root, tmp_path):
        """Test that a slow archiver is stopped and its output removed."""
        slow = tmp_path / "slow-tar"
        slow.write_text("#!/bin/sh\nexec sleep 5\n")
        slow.chmod(0o755)
        destination = tmp_path / "out.tar.gz"
        archiver = TarArchiver(tar_bin=str(slow))
        with pytest.raises(ExternalToolError, match="timed out"):
            await archiver.archive(server_root, DEFAULT_SOURCES, destination, 0.2)
        assert not destination.exists()
