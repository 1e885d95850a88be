"""
Backup Catalog — Naming convention, listing and safe path resolution.

Every backup lives in ``<root>/backups`` and is named
``megastack-backup-<YYYY-MM-DDTHH-mm-ss>.tar.gz[.enc]``. Files that do not
follow the convention are invisible to the listing and unreachable through
``resolve_path``.
"""
import logging
import ntpath
import posixpath
from pathlib import Path
from datetime import datetime, timezone
from typing import Optional, Union

import orjson
from pydantic import BaseModel

from .conf import (
    BACKUP_DIRNAME,
    BACKUP_PREFIX,
    ARCHIVE_SUFFIX,
    ENCRYPTED_SUFFIX,
)
from .exceptions import NotFoundError, ValidationError

logger = logging.getLogger("megastack.backup")

_INVALID_FILENAME = "Invalid backup filename"


class BackupListingEntry(BaseModel):
    """A backup file found on disk."""

    filename: str
    size: int
    created: datetime
    encrypted: bool


# ---------------------------------------------------------------------------
# Naming
# ---------------------------------------------------------------------------

def backup_dir(root: Union[str, Path]) -> Path:
    """Return the backups directory of a root."""
    return Path(root) / BACKUP_DIRNAME


def make_timestamp(now: Optional[datetime] = None) -> str:
    """Render a filesystem-safe UTC timestamp with second precision."""
    now = now or datetime.now(timezone.utc)
    return now.astimezone(timezone.utc).strftime("%Y-%m-%dT%H-%M-%S")


def archive_filename(timestamp: str) -> str:
    return f"{BACKUP_PREFIX}{timestamp}{ARCHIVE_SUFFIX}"


def is_backup_name(name: str) -> bool:
    """Check a base name against the backup naming convention."""
    return name.startswith(BACKUP_PREFIX) and (
        name.endswith(ARCHIVE_SUFFIX) or name.endswith(ENCRYPTED_SUFFIX)
    )


def is_encrypted_name(name: str) -> bool:
    return name.endswith(".enc")


def sanitize_filename(filename: str) -> str:
    """Reduce an untrusted filename to its base name.

    Both POSIX and Windows separators are stripped.

    Raises:
        ValidationError: If nothing matching the naming convention remains.
    """
    if not isinstance(filename, str):
        raise ValidationError(_INVALID_FILENAME)
    name = ntpath.basename(posixpath.basename(filename))
    if not is_backup_name(name):
        raise ValidationError(_INVALID_FILENAME)
    return name


# ---------------------------------------------------------------------------
# Listing
# ---------------------------------------------------------------------------

def list_backups(root: Union[str, Path]) -> list[BackupListingEntry]:
    """List backup files of a root, newest first.

    Never raises: a missing or unreadable backups directory yields an
    empty list.

    Args:
        root: Server root directory.

    Returns:
        Listing entries sorted by modification time, descending.
    """
    directory = backup_dir(root)
    try:
        names = [p.name for p in directory.iterdir()]
    except OSError as err:
        logger.debug("Cannot list backups in %s: %s", directory, err)
        return []

    entries: list[BackupListingEntry] = []
    for name in names:
        if not is_backup_name(name) or (directory / name).is_symlink():
            continue
        try:
            stat = (directory / name).stat()
        except OSError:
            # removed between listing and stat
            continue
        entries.append(
            BackupListingEntry(
                filename=name,
                size=stat.st_size,
                created=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
                encrypted=is_encrypted_name(name),
            )
        )
    entries.sort(key=lambda e: e.created, reverse=True)
    return entries


def dump_listing(entries: list[BackupListingEntry]) -> bytes:
    """Encode listing entries as JSON for the orchestration layer."""
    return orjson.dumps([entry.model_dump() for entry in entries])


# ---------------------------------------------------------------------------
# Safe path resolution
# ---------------------------------------------------------------------------

def resolve_path(root: Union[str, Path], filename: str) -> Path:
    """Turn an untrusted backup filename into a validated on-disk path.

    Every naming failure raises the same generic error so the caller
    learns nothing about the filesystem layout.

    Args:
        root: Server root directory.
        filename: Caller-supplied backup filename.

    Returns:
        Absolute path of the existing backup file.

    Raises:
        ValidationError: If the filename does not follow the convention.
        NotFoundError: If the backup does not exist.
    """
    return backup_file(root, sanitize_filename(filename))


def backup_file(root: Union[str, Path], name: str) -> Path:
    """Return the path of an existing backup given its sanitized name.

    Symlinks are treated as missing so a link planted in the backups
    directory cannot expose files outside it.

    Raises:
        NotFoundError: If no regular backup file has that name.
    """
    path = backup_dir(root).resolve() / name
    if path.is_symlink() or not path.is_file():
        raise NotFoundError(f"Backup not found: {name}")
    return path
