"""
BackupManager — Entry point used by the orchestration layer.

Provides the public API of the backup core:
- ``create(root, encrypt)`` — archive a root and encrypt it when a secret exists
- ``list(root)`` — catalog backups, newest first
- ``resolve_path(root, filename)`` — validate an untrusted filename
- ``decrypt(root, filename)`` — rehydrate an encrypted backup temporarily
- ``prepare_download(root, filename)`` — path to serve for a download

Security Note:
    Never log secrets or archive contents. Only log filenames, sizes and
    whether a backup was encrypted.
"""
import os
import logging
from pathlib import Path
from datetime import datetime, timezone
from typing import Optional, Union

import orjson
from pydantic import BaseModel

from .archiver import ArchiveProducer, Archiver
from .catalog import (
    BackupListingEntry,
    is_encrypted_name,
    list_backups,
    resolve_path,
)
from .conf import BackupConfig, resolve_backup_secret
from .crypto import derive_key, seal
from .decryptor import Decryptor
from .exceptions import BackupIOError

logger = logging.getLogger("megastack.backup")


class BackupResult(BaseModel):
    """Outcome of a backup creation."""

    filename: str
    path: str
    size: int
    created: datetime
    encrypted: bool

    def to_json(self) -> bytes:
        return orjson.dumps(self.model_dump())


def _write_durably(path: Path, data: bytes) -> None:
    """Write data and fsync it before returning."""
    with open(path, "wb") as fp:
        fp.write(data)
        fp.flush()
        os.fsync(fp.fileno())


class BackupManager:
    """Creates, catalogs and decrypts backups of a server root.

    When ``config`` is given its secret is used as-is; otherwise the secret
    is resolved from the environment once per operation.
    """

    def __init__(
        self,
        config: Optional[BackupConfig] = None,
        archiver: Optional[Archiver] = None,
    ):
        self._config_injected = config is not None
        self.config = config or BackupConfig.from_env()
        self._producer = ArchiveProducer(
            archiver=archiver,
            sources=self.config.sources,
            timeout=self.config.archive_timeout,
        )
        self.decryptor = Decryptor(cleanup_delay=self.config.cleanup_delay)

    def _resolve_secret(self) -> Optional[str]:
        if self._config_injected:
            return self.config.secret
        return resolve_backup_secret()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def create(
        self, root: Union[str, Path], encrypt: bool = True
    ) -> BackupResult:
        """Archive a root, encrypting the archive when possible.

        Encryption is skipped when ``encrypt`` is False or no secret is
        configured; the plaintext archive is then the final artifact.

        Args:
            root: Server root directory.
            encrypt: Whether to encrypt the archive.

        Returns:
            BackupResult describing the file left on disk.

        Raises:
            ExternalToolError: If archiving fails or times out.
            BackupIOError: If the archive cannot be read or written.
        """
        archive_path, filename = await self._producer.produce(root)

        secret = self._resolve_secret()
        if not encrypt or not secret:
            if encrypt:
                logger.warning(
                    "No backup key configured, storing %s unencrypted", filename,
                )
            return self._result(archive_path, encrypted=False)

        enc_path = archive_path.with_name(f"{filename}.enc")
        try:
            plaintext = archive_path.read_bytes()
        except OSError as err:
            raise BackupIOError(f"Cannot read archive {filename}: {err}") from err

        envelope = seal(plaintext, derive_key(secret))
        try:
            _write_durably(enc_path, envelope)
        except OSError as err:
            enc_path.unlink(missing_ok=True)
            raise BackupIOError(
                f"Cannot write encrypted backup {enc_path.name}: {err}"
            ) from err

        try:
            archive_path.unlink()
        except OSError as err:
            raise BackupIOError(
                f"Cannot remove plaintext archive {filename}: {err}"
            ) from err

        return self._result(enc_path, encrypted=True)

    def list(self, root: Union[str, Path]) -> list[BackupListingEntry]:
        """List backups of a root, newest first. Never raises."""
        return list_backups(root)

    def resolve_path(self, root: Union[str, Path], filename: str) -> Path:
        """Validate an untrusted filename and return its on-disk path."""
        return resolve_path(root, filename)

    async def decrypt(self, root: Union[str, Path], filename: str) -> Path:
        """Decrypt a backup into a temporary plaintext file."""
        return await self.decryptor.decrypt(
            root, filename, self._resolve_secret(),
        )

    async def prepare_download(
        self, root: Union[str, Path], filename: str
    ) -> Path:
        """Return the path to serve when a backup is downloaded.

        Encrypted backups are decrypted into a temporary plaintext file;
        plaintext backups are served directly.
        """
        path = resolve_path(root, filename)
        if is_encrypted_name(path.name):
            return await self.decrypt(root, path.name)
        return path

    def shutdown(self, flush: bool = True) -> None:
        """Flush (or just cancel) pending plaintext cleanups."""
        if flush:
            self.decryptor.flush()
        else:
            self.decryptor.cancel_pending()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _result(path: Path, encrypted: bool) -> BackupResult:
        stat = path.stat()
        result = BackupResult(
            filename=path.name,
            path=str(path),
            size=stat.st_size,
            created=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
            encrypted=encrypted,
        )
        logger.info(
            "Backup created: %s (%d bytes, encrypted=%s)",
            result.filename, result.size, result.encrypted,
        )
        return result
