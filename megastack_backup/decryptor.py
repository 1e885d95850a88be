"""
Backup Decryptor — Rehydrates an encrypted backup for download.

The plaintext is written next to the encrypted file with the ``.enc``
suffix stripped and removed again after a grace period. Cleanup timers are
owned by the ``Decryptor`` so they can be flushed or cancelled on shutdown.

Security Note:
    Decrypted archives exist on disk for ``cleanup_delay`` seconds. If the
    process exits first the plaintext is left behind.
"""
import asyncio
import logging
from pathlib import Path
from typing import Optional, Union

from .conf import DEFAULT_CLEANUP_DELAY, ENCRYPTED_SUFFIX
from .catalog import backup_file, sanitize_filename
from .crypto import derive_key, open_envelope
from .exceptions import (
    BackupIOError,
    ConfigurationError,
    NotEncryptedError,
)

logger = logging.getLogger("megastack.backup")


class Decryptor:
    """Decrypts backups into self-destructing plaintext siblings."""

    def __init__(self, cleanup_delay: float = DEFAULT_CLEANUP_DELAY):
        self.cleanup_delay = cleanup_delay
        self._pending: dict[Path, asyncio.TimerHandle] = {}

    @property
    def pending(self) -> list[Path]:
        """Plaintext files awaiting cleanup."""
        return list(self._pending)

    async def decrypt(
        self,
        root: Union[str, Path],
        filename: str,
        secret: Optional[str],
    ) -> Path:
        """Decrypt a backup and return the temporary plaintext path.

        Args:
            root: Server root directory.
            filename: Caller-supplied name of an encrypted backup.
            secret: Backup secret the file was encrypted with.

        Returns:
            Path of the plaintext archive, deleted after ``cleanup_delay``.

        Raises:
            ValidationError: If the filename is not a backup name.
            NotEncryptedError: If the backup is not encrypted.
            ConfigurationError: If no secret is available.
            NotFoundError: If the backup does not exist.
            BackupIOError: If the backup cannot be read or written.
            IntegrityError: If authentication fails.
        """
        name = sanitize_filename(filename)
        if not name.endswith(ENCRYPTED_SUFFIX):
            raise NotEncryptedError("File is not encrypted")
        if not secret:
            raise ConfigurationError("No decryption key available")

        enc_path = backup_file(root, name)
        try:
            envelope = enc_path.read_bytes()
        except OSError as err:
            raise BackupIOError(f"Cannot read backup {name}: {err}") from err

        plaintext = open_envelope(envelope, derive_key(secret))

        tmp_path = enc_path.with_name(name[: -len(".enc")])
        try:
            if tmp_path.is_symlink():
                tmp_path.unlink()
            tmp_path.write_bytes(plaintext)
        except OSError as err:
            tmp_path.unlink(missing_ok=True)
            raise BackupIOError(
                f"Cannot write decrypted backup {tmp_path.name}: {err}"
            ) from err

        self._schedule_cleanup(tmp_path)
        logger.info(
            "Backup decrypted: %s -> %s (%d bytes, removed in %ss)",
            name, tmp_path.name, len(plaintext), self.cleanup_delay,
        )
        return tmp_path

    # ------------------------------------------------------------------
    # Cleanup timers
    # ------------------------------------------------------------------

    def _schedule_cleanup(self, path: Path) -> None:
        previous = self._pending.pop(path, None)
        if previous is not None:
            previous.cancel()
        loop = asyncio.get_running_loop()
        self._pending[path] = loop.call_later(
            self.cleanup_delay, self._cleanup, path,
        )

    def _cleanup(self, path: Path) -> None:
        self._pending.pop(path, None)
        try:
            path.unlink()
        except OSError as err:
            logger.debug("Temporary backup cleanup skipped for %s: %s", path, err)

    def cancel_pending(self) -> None:
        """Cancel all scheduled deletions, leaving the files in place."""
        for handle in self._pending.values():
            handle.cancel()
        self._pending.clear()

    def flush(self) -> None:
        """Delete all pending plaintext files now."""
        paths = list(self._pending)
        self.cancel_pending()
        for path in paths:
            self._cleanup(path)
