"""
Backup Configuration — Secret resolution and validated settings.

Reads the backup secret from environment variables:
    MS_BACKUP_KEY = <dedicated backup secret>
    MS_SESSION_SECRET = <general session secret, used as fallback>

Security Note:
    Never log secret values. Only log whether a secret is configured.
"""
import os
import logging
from typing import Optional
from collections.abc import Mapping

from pydantic import BaseModel, Field, field_validator

from .exceptions import ConfigurationError

logger = logging.getLogger("megastack.backup")

BACKUP_KEY_ENV = "MS_BACKUP_KEY"
SESSION_SECRET_ENV = "MS_SESSION_SECRET"

BACKUP_DIRNAME = "backups"
BACKUP_PREFIX = "megastack-backup-"
ARCHIVE_SUFFIX = ".tar.gz"
ENCRYPTED_SUFFIX = ".tar.gz.enc"

DEFAULT_SOURCES = ["state", ".env", "modules/*/config"]
DEFAULT_ARCHIVE_TIMEOUT = 300  # 5 minutes
DEFAULT_CLEANUP_DELAY = 60.0


def resolve_backup_secret(
    environ: Optional[Mapping[str, str]] = None
) -> Optional[str]:
    """Return the backup secret, preferring the dedicated backup key.

    Args:
        environ: Mapping to read from. Defaults to ``os.environ``.

    Returns:
        The secret string, or None when neither variable is set.
    """
    env = os.environ if environ is None else environ
    return env.get(BACKUP_KEY_ENV) or env.get(SESSION_SECRET_ENV) or None


def _env_number(env: Mapping[str, str], name: str, cast: type, default):
    """Read a numeric setting from the environment.

    Raises:
        ConfigurationError: If the value cannot be parsed.
    """
    raw = env.get(name)
    if raw is None:
        return default
    try:
        return cast(raw)
    except ValueError as err:
        raise ConfigurationError(
            f"{name} must be a valid {cast.__name__}, got {raw!r}"
        ) from err


class BackupConfig(BaseModel):
    """Validated backup configuration."""

    secret: Optional[str] = Field(default=None, repr=False)
    archive_timeout: int = Field(default=DEFAULT_ARCHIVE_TIMEOUT, ge=1)
    cleanup_delay: float = Field(default=DEFAULT_CLEANUP_DELAY, ge=0)
    sources: list[str] = Field(default_factory=lambda: list(DEFAULT_SOURCES))

    @field_validator("secret")
    @classmethod
    def empty_secret_is_none(cls, v: Optional[str]) -> Optional[str]:
        """An empty secret disables encryption like a missing one."""
        return v or None

    @field_validator("sources")
    @classmethod
    def validate_sources(cls, v: list[str]) -> list[str]:
        """Archive sources must stay relative to the root and not look like options."""
        for src in v:
            if (
                not src
                or src.startswith("-")
                or os.path.isabs(src)
                or ".." in src.split("/")
            ):
                raise ValueError(f"Invalid archive source: {src!r}")
        return v

    @property
    def has_secret(self) -> bool:
        return self.secret is not None

    @classmethod
    def from_env(
        cls, environ: Optional[Mapping[str, str]] = None
    ) -> "BackupConfig":
        """Create BackupConfig by loading values from environment.

        Returns:
            Populated BackupConfig instance.
        """
        env = os.environ if environ is None else environ
        config = cls(
            secret=resolve_backup_secret(env),
            archive_timeout=_env_number(
                env, "MS_BACKUP_TIMEOUT", int, DEFAULT_ARCHIVE_TIMEOUT
            ),
            cleanup_delay=_env_number(
                env, "MS_BACKUP_CLEANUP_DELAY", float, DEFAULT_CLEANUP_DELAY
            ),
        )
        logger.debug(
            "Backup config loaded (secret configured: %s)", config.has_secret
        )
        return config
