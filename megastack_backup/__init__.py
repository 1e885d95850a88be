"""MegaStack Backup — Encrypted backups of a server's persistent state.

Security Note (Threat Model):
    All backups are encrypted with a key derived from one operator secret
    and a fixed salt, so anyone holding the secret can decrypt every backup.
    Decrypted downloads stay on disk for a short grace period and are
    orphaned if the process exits before cleanup.
"""

from .version import __version__
from .manager import BackupManager, BackupResult
from .catalog import BackupListingEntry, list_backups, resolve_path, dump_listing
from .conf import BackupConfig, resolve_backup_secret
from .crypto import derive_key
from .decryptor import Decryptor
from .archiver import Archiver, ArchiveProducer, TarArchiver
from .exceptions import (
    BackupError,
    ConfigurationError,
    ValidationError,
    NotEncryptedError,
    NotFoundError,
    IntegrityError,
    ExternalToolError,
    BackupIOError,
)

__all__ = [
    "__version__",
    "BackupManager",
    "BackupResult",
    "BackupListingEntry",
    "list_backups",
    "resolve_path",
    "dump_listing",
    "BackupConfig",
    "resolve_backup_secret",
    "derive_key",
    "Decryptor",
    "Archiver",
    "ArchiveProducer",
    "TarArchiver",
    "BackupError",
    "ConfigurationError",
    "ValidationError",
    "NotEncryptedError",
    "NotFoundError",
    "IntegrityError",
    "ExternalToolError",
    "BackupIOError",
]
