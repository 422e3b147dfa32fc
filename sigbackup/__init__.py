"""
sigbackup — decoder for encrypted Signal for Android backup files.

Features:

- Passphrase key stretching (SHA-512) and HKDF key expansion.
- Per-frame AES-256-CTR decryption with a chained IV and truncated HMAC-SHA256
  authentication; both header versions (plain and encrypted length prefixes).
- Strict single-pass frame decoding into a tagged frame model.
- Reconstruction of the SQLite database, shared preferences, key-value store
  and attachments/avatars/stickers, continuing past statements that fail.

The programmatic API lives in sigbackup.reader (BackupReader, decode_backup)
and sigbackup.reconstruct (ReconstructionEngine); sigbackup.cli wraps both.
"""

__version__ = "0.1"

__all__ = [
    "constants",
    "errors",
    "keys",
    "cipher",
    "frames",
    "reader",
    "reconstruct",
    "store",
    "output",
]
