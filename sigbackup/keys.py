from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass
from typing import Optional

from Cryptodome.Hash import SHA256
from Cryptodome.Protocol.KDF import HKDF

from .constants import (
    BACKUP_KEY_SIZE,
    HKDF_INFO,
    KEY_SIZE,
    KEY_STRETCH_ROUNDS,
    PASSPHRASE_DIGITS,
)
from .errors import ConfigError


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DerivedKeys:
    cipher_key: bytes
    mac_key: bytes

    def __repr__(self) -> str:
        # Never leak key material into logs or tracebacks
        return "DerivedKeys(cipher_key=<32 bytes>, mac_key=<32 bytes>)"


def normalize_passphrase(passphrase: str) -> bytes:
    """Strip whitespace and validate a backup passphrase.

    The passphrase is shown to the user as six groups of five digits; any
    whitespace between groups is ignored.

    Args:
        passphrase: Passphrase as typed by the user.

    Returns:
        The 30 ASCII digits as bytes.

    Raises:
        ConfigError: If anything other than 30 digits remains.
    """
    if not isinstance(passphrase, str):
        raise ConfigError("Passphrase must be a string")
    compact = "".join(passphrase.split())
    if not compact:
        raise ConfigError("No passphrase provided")
    if not (compact.isascii() and compact.isdigit()):
        raise ConfigError("Passphrase may only contain digits")
    if len(compact) != PASSPHRASE_DIGITS:
        raise ConfigError(
            f"Wrong passphrase length ({PASSPHRASE_DIGITS} digits expected, got {len(compact)})"
        )
    return compact.encode("ascii")


def derive_backup_key(passphrase: bytes, salt: bytes, rounds: int = KEY_STRETCH_ROUNDS) -> bytes:
    """Stretch a normalized passphrase into the 32-byte backup key.

    The salt is fed into the first round only; every round then hashes the
    previous digest followed by the passphrase.
    """
    digest = hashlib.sha512()
    digest.update(salt)
    h = passphrase
    for _ in range(rounds):
        digest.update(h)
        digest.update(passphrase)
        h = digest.digest()
        digest = hashlib.sha512()
    return h[:BACKUP_KEY_SIZE]


def expand_backup_key(backup_key: bytes) -> DerivedKeys:
    if len(backup_key) != BACKUP_KEY_SIZE:
        raise ConfigError(f"Backup key must be {BACKUP_KEY_SIZE} bytes")
    # No salt: HKDF extracts with an all-zero key of digest size
    cipher_key, mac_key = HKDF(backup_key, KEY_SIZE, None, SHA256, num_keys=2, context=HKDF_INFO)
    return DerivedKeys(cipher_key=cipher_key, mac_key=mac_key)


def derive_keys(passphrase: Optional[str], salt: bytes, *, backup_key: Optional[bytes] = None) -> DerivedKeys:
    """Derive the cipher and MAC keys for one backup stream.

    Args:
        passphrase: The user's passphrase (ignored when backup_key is given).
        salt: Salt from the archive header.
        backup_key: Optional pre-shared 32-byte backup key that skips stretching.
    """
    if backup_key is not None:
        return expand_backup_key(bytes(backup_key))
    if passphrase is None:
        raise ConfigError("No passphrase provided")
    secret = normalize_passphrase(passphrase)
    logger.debug("Stretching passphrase (%d rounds, salt %d bytes)", KEY_STRETCH_ROUNDS, len(salt))
    return expand_backup_key(derive_backup_key(secret, salt))
