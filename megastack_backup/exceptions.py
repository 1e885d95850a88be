"""
Backup error taxonomy.

Every failure raised by the backup core derives from ``BackupError`` and from
the builtin exception closest in meaning, so callers may catch either.
"""


class BackupError(Exception):
    """Base class for all backup subsystem failures."""


class ConfigurationError(BackupError, RuntimeError):
    """No backup secret is available for encryption or decryption."""


class ValidationError(BackupError, ValueError):
    """A caller-supplied backup filename failed the naming checks."""


class NotEncryptedError(ValidationError):
    """Decryption was requested for a backup that is not encrypted."""


class NotFoundError(BackupError, FileNotFoundError):
    """A validated backup filename does not exist on disk."""


class IntegrityError(BackupError, ValueError):
    """Authentication tag verification failed (tampering or wrong key)."""


class ExternalToolError(BackupError, RuntimeError):
    """The archiving tool could not be run or exceeded its timeout."""


class BackupIOError(BackupError, OSError):
    """Read, write or delete failure not otherwise classified."""
