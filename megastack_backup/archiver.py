"""
Archive Producer — Bundles a root's state into a compressed archive.

The bulk archiving is delegated to an ``Archiver`` collaborator. The default
``TarArchiver`` runs the system ``tar`` binary under a hard timeout.

Archiving is tolerant: missing inputs and non-zero tar exits are logged and
ignored, so a backup may legitimately contain only part of the sources.
Only a missing tool or a timeout aborts the call.
"""
import asyncio
import logging
import tarfile
from pathlib import Path
from typing import Optional, Protocol, Union

from .conf import DEFAULT_ARCHIVE_TIMEOUT, DEFAULT_SOURCES
from .catalog import archive_filename, backup_dir, make_timestamp
from .exceptions import BackupIOError, ExternalToolError

logger = logging.getLogger("megastack.backup")


class Archiver(Protocol):
    """Produces a compressed archive of source paths under a timeout."""

    async def archive(
        self,
        root: Path,
        sources: list[str],
        destination: Path,
        timeout: float,
    ) -> None:
        ...


def expand_sources(root: Path, sources: list[str]) -> list[str]:
    """Resolve source patterns to existing paths relative to root.

    Glob patterns (e.g. ``modules/*/config``) are expanded against the
    root; missing entries are dropped.
    """
    members: list[str] = []
    for src in sources:
        if any(ch in src for ch in "*?["):
            matches = sorted(p for p in root.glob(src) if p.exists())
            members.extend(p.relative_to(root).as_posix() for p in matches)
        elif (root / src).exists():
            members.append(src)
        else:
            logger.debug("Archive source missing, skipped: %s", src)
    return members


def write_empty_archive(destination: Path) -> None:
    """Write a valid gzip tar with no members."""
    with tarfile.open(destination, "w:gz"):
        pass


class TarArchiver:
    """Archiver backed by the system ``tar`` binary."""

    def __init__(self, tar_bin: str = "tar"):
        self._tar_bin = tar_bin

    async def archive(
        self,
        root: Path,
        sources: list[str],
        destination: Path,
        timeout: float,
    ) -> None:
        members = expand_sources(root, sources)
        if not members:
            logger.warning("No archive sources found under %s", root)
            return
        cmd = [
            self._tar_bin, "-czf", str(destination), "-C", str(root),
            "--", *members,
        ]
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as err:
            raise ExternalToolError(
                f"Cannot run archiver {self._tar_bin!r}: {err}"
            ) from err

        try:
            _, stderr = await asyncio.wait_for(
                process.communicate(), timeout=timeout,
            )
        except asyncio.TimeoutError as err:
            try:
                process.kill()
            except ProcessLookupError:
                # exited between the timeout and the kill
                pass
            await process.wait()
            destination.unlink(missing_ok=True)
            raise ExternalToolError(
                f"Archiving timed out after {timeout} seconds"
            ) from err

        if process.returncode != 0:
            logger.warning(
                "tar exited with code %s (tolerated): %s",
                process.returncode,
                stderr.decode("utf-8", errors="replace").strip(),
            )


class ArchiveProducer:
    """Creates the plaintext archive of a root in its backups directory."""

    def __init__(
        self,
        archiver: Optional[Archiver] = None,
        sources: Optional[list[str]] = None,
        timeout: float = DEFAULT_ARCHIVE_TIMEOUT,
    ):
        self._archiver = archiver or TarArchiver()
        self._sources = list(sources or DEFAULT_SOURCES)
        self._timeout = timeout

    async def produce(self, root: Union[str, Path]) -> tuple[Path, str]:
        """Archive ``state``, ``.env`` and module configs of a root.

        Args:
            root: Server root directory.

        Returns:
            Tuple of (absolute archive path, archive filename).

        Raises:
            ExternalToolError: If the archiver cannot run or times out.
            BackupIOError: If the backups directory cannot be created.
        """
        root_path = Path(root).resolve()
        out_dir = backup_dir(root_path)
        try:
            out_dir.mkdir(parents=True, exist_ok=True)
        except OSError as err:
            raise BackupIOError(
                f"Cannot create backup directory {out_dir}: {err}"
            ) from err

        filename = archive_filename(make_timestamp())
        archive_path = out_dir / filename

        await self._archiver.archive(
            root_path, self._sources, archive_path, self._timeout,
        )

        if not archive_path.exists():
            # nothing matched: callers still get an (empty) archive
            write_empty_archive(archive_path)

        logger.info(
            "Archive created: %s (%d bytes)",
            filename, archive_path.stat().st_size,
        )
        return archive_path, filename
