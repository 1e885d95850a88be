"""
Backup Crypto Core — Key derivation and the encryption envelope.

- Key derivation: scrypt(secret, "megastack-backup-salt") → 32-byte key
- Envelope: AES-256-GCM → [nonce 16B][tag 16B][ciphertext]

The salt is fixed so that any process holding the same secret can decrypt
backups written by another one; no key material is stored on disk.

Security Note:
    Never log secrets, keys, plaintext or ciphertext values.
"""
import os
import logging

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from .exceptions import ConfigurationError, IntegrityError

logger = logging.getLogger("megastack.backup")

KEY_LENGTH = 32  # AES-256
NONCE_SIZE = 16
TAG_SIZE = 16
HEADER_SIZE = NONCE_SIZE + TAG_SIZE

KDF_SALT = b"megastack-backup-salt"
# scrypt cost parameters (N=2**14, r=8, p=1)
KDF_N = 16384
KDF_R = 8
KDF_P = 1


# ---------------------------------------------------------------------------
# Key derivation
# ---------------------------------------------------------------------------

def derive_key(secret: str) -> bytes:
    """Derive the 32-byte backup key from an operator secret.

    Args:
        secret: Backup secret (dedicated key or session secret).

    Returns:
        32-byte derived key.

    Raises:
        ConfigurationError: If the secret is empty or missing.
    """
    if not secret:
        raise ConfigurationError("No backup encryption key is configured")
    kdf = Scrypt(
        salt=KDF_SALT,
        length=KEY_LENGTH,
        n=KDF_N,
        r=KDF_R,
        p=KDF_P,
    )
    return kdf.derive(secret.encode("utf-8"))


# ---------------------------------------------------------------------------
# Envelope
# ---------------------------------------------------------------------------

def seal(plaintext: bytes, key: bytes) -> bytes:
    """Encrypt an archive into the on-disk envelope.

    Format: [nonce 16B][GCM tag 16B][ciphertext]

    Args:
        plaintext: Archive bytes.
        key: 32-byte derived key.

    Returns:
        Envelope bytes, exactly ``HEADER_SIZE`` longer than plaintext.
    """
    nonce = os.urandom(NONCE_SIZE)
    # AESGCM appends the tag to the ciphertext
    sealed = AESGCM(key).encrypt(nonce, plaintext, None)
    ciphertext, tag = sealed[:-TAG_SIZE], sealed[-TAG_SIZE:]
    return nonce + tag + ciphertext


def open_envelope(envelope: bytes, key: bytes) -> bytes:
    """Verify and decrypt an envelope produced by ``seal``.

    Args:
        envelope: Bytes in format [nonce 16B][tag 16B][ciphertext].
        key: 32-byte derived key.

    Returns:
        Decrypted archive bytes.

    Raises:
        IntegrityError: If the envelope is truncated, tampered with, or was
            sealed under a different key.
    """
    if len(envelope) < HEADER_SIZE:
        raise IntegrityError(
            f"Encrypted backup too short: {len(envelope)} bytes "
            f"(minimum {HEADER_SIZE})"
        )
    nonce = envelope[:NONCE_SIZE]
    tag = envelope[NONCE_SIZE:HEADER_SIZE]
    ciphertext = envelope[HEADER_SIZE:]
    try:
        return AESGCM(key).decrypt(nonce, ciphertext + tag, None)
    except InvalidTag as err:
        raise IntegrityError(
            "Backup authentication failed: file is corrupted or the key is wrong"
        ) from err
