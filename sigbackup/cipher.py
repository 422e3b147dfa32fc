from __future__ import annotations

import hashlib
import hmac
import logging
from dataclasses import dataclass
from typing import BinaryIO, Iterator, Optional

from Cryptodome.Cipher import AES

from .constants import COUNTER_SIZE, DEFAULT_CHUNK_SIZE, IV_SIZE, MAC_SIZE, MAX_FRAME_SIZE
from .errors import AuthenticationError, BackupIOError, MalformedFrameError
from .keys import DerivedKeys


logger = logging.getLogger(__name__)

_COUNTER_MASK = 0xFFFFFFFF


@dataclass
class CipherState:
    """Chained IV of a backup stream.

    The first four bytes of the IV hold a big-endian counter, the remaining
    twelve stay as they were in the header.
    """

    iv: bytes
    counter: int

    @classmethod
    def from_iv(cls, iv: bytes) -> "CipherState":
        if len(iv) != IV_SIZE:
            raise MalformedFrameError(f"IV must be {IV_SIZE} bytes, got {len(iv)}")
        return cls(iv=bytes(iv), counter=int.from_bytes(iv[:COUNTER_SIZE], "big"))

    def advance(self) -> None:
        self.counter = (self.counter + 1) & _COUNTER_MASK
        self.iv = self.counter.to_bytes(COUNTER_SIZE, "big") + self.iv[COUNTER_SIZE:]


def _read_exact(fh: BinaryIO, n: int, what: str) -> bytes:
    data = fh.read(n)
    if len(data) != n:
        raise BackupIOError(f"Unexpected end of file while reading {what} ({len(data)} of {n} bytes)")
    return data


class FrameCipher:
    """Authenticated decryption of frames and attachment payloads.

    Each call consumes one IV; the state advances only after a unit has been
    fully read and (unless disabled) its truncated HMAC checked.
    """

    def __init__(
        self,
        keys: DerivedKeys,
        iv: bytes,
        *,
        verify_mac: bool = True,
        max_frame_size: int = MAX_FRAME_SIZE,
    ):
        self.keys = keys
        self.verify_mac = verify_mac
        self.max_frame_size = max_frame_size
        self._state = CipherState.from_iv(iv)
        self.units = 0

    @property
    def state(self) -> CipherState:
        return self._state

    def _ctr(self):
        return AES.new(self.keys.cipher_key, AES.MODE_CTR, nonce=b"", initial_value=self._state.iv)

    def _mac(self):
        return hmac.new(self.keys.mac_key, digestmod=hashlib.sha256)

    def _check(self, mac, received: bytes, what: str) -> None:
        if not self.verify_mac:
            return
        expected = mac.digest()[:MAC_SIZE]
        if not hmac.compare_digest(expected, received):
            raise AuthenticationError(
                f"Bad MAC on {what}; passphrase may be incorrect or the backup is corrupted"
            )

    def _advance(self) -> None:
        self._state.advance()
        self.units += 1

    def decrypt_frame(self, unit: bytes, *, length_prefix: bytes = b"") -> bytes:
        """Authenticate and decrypt one frame unit (ciphertext || tag).

        Args:
            unit: Ciphertext followed by the 10-byte truncated tag.
            length_prefix: The encrypted length prefix for header version 1
                archives; it starts the keystream and is covered by the tag.
        """
        if len(unit) < MAC_SIZE:
            raise MalformedFrameError(f"Frame unit too short to hold a MAC ({len(unit)} bytes)")
        ciphertext = unit[:-MAC_SIZE]
        tag = unit[-MAC_SIZE:]
        mac = self._mac()
        mac.update(length_prefix)
        mac.update(ciphertext)
        self._check(mac, tag, "frame")
        cipher = self._ctr()
        if length_prefix:
            cipher.decrypt(length_prefix)
        plaintext = cipher.decrypt(ciphertext)
        self._advance()
        return plaintext

    def peek_length(self, raw: bytes) -> int:
        # Decrypting with a throwaway cipher leaves the state untouched
        return int.from_bytes(self._ctr().decrypt(raw), "big")

    def read_frame(self, fh: BinaryIO, *, encrypted_length: bool = False) -> Optional[bytes]:
        """Read and decrypt one length-prefixed frame unit.

        Returns None on a clean end of file before the length prefix.
        """
        raw = fh.read(4)
        if not raw:
            return None
        if len(raw) != 4:
            raise BackupIOError(f"Unexpected end of file while reading frame length ({len(raw)} of 4 bytes)")
        if encrypted_length:
            length = self.peek_length(raw)
        else:
            length = int.from_bytes(raw, "big")
        if length < MAC_SIZE:
            raise MalformedFrameError(f"Frame length {length} is too small to contain a MAC")
        if length > self.max_frame_size:
            raise MalformedFrameError(
                f"Frame length {length} exceeds {self.max_frame_size} bytes; "
                "the backup is corrupted or the passphrase is incorrect"
            )
        unit = _read_exact(fh, length, "frame")
        return self.decrypt_frame(unit, length_prefix=raw if encrypted_length else b"")

    def decrypt_attachment_chunk(self, unit: bytes, declared_length: int) -> bytes:
        """Authenticate and decrypt an in-memory attachment payload unit."""
        if len(unit) != declared_length + MAC_SIZE:
            raise MalformedFrameError(
                f"Attachment payload is {len(unit)} bytes, expected {declared_length} + {MAC_SIZE}"
            )
        ciphertext = unit[:-MAC_SIZE]
        mac = self._mac()
        mac.update(self._state.iv)
        mac.update(ciphertext)
        self._check(mac, unit[-MAC_SIZE:], "attachment payload")
        plaintext = self._ctr().decrypt(ciphertext)
        self._advance()
        return plaintext

    def open_payload(
        self,
        fh: BinaryIO,
        declared_length: int,
        *,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        remaining: Optional[int] = None,
    ) -> "PayloadStream":
        """Start streaming an attachment payload of ``declared_length`` bytes.

        ``remaining`` is the number of unread bytes in the source, when known.
        A payload that runs past the end of the file is a short read and is
        reported before anything is decrypted.
        """
        if declared_length < 0:
            raise MalformedFrameError(f"Negative attachment length {declared_length}")
        if remaining is not None and declared_length + MAC_SIZE > remaining:
            raise BackupIOError(
                f"Unexpected end of file in attachment payload "
                f"({remaining} of {declared_length + MAC_SIZE} bytes)"
            )
        return PayloadStream(self, fh, declared_length, chunk_size)


class PayloadStream:
    """Iterator over the decrypted chunks of one attachment payload.

    The tag is read and checked after the last chunk; AuthenticationError is
    raised from the final ``next()``. Consumers must not commit the data before
    the iterator is exhausted.
    """

    def __init__(self, cipher: FrameCipher, fh: BinaryIO, length: int, chunk_size: int):
        self.length = length
        self.bytes_read = 0
        self.complete = False
        self._cipher = cipher
        self._fh = fh
        self._chunk_size = max(1, chunk_size)
        self._gen = self._run()

    def __iter__(self) -> Iterator[bytes]:
        return self

    def __next__(self) -> bytes:
        return next(self._gen)

    def _run(self) -> Iterator[bytes]:
        cipher = self._cipher
        mac = cipher._mac()
        mac.update(cipher.state.iv)
        ctr = cipher._ctr()
        left = self.length
        while left > 0:
            n = min(self._chunk_size, left)
            ciphertext = _read_exact(self._fh, n, "attachment payload")
            self.bytes_read += n
            left -= n
            mac.update(ciphertext)
            yield ctr.decrypt(ciphertext)
        tag = _read_exact(self._fh, MAC_SIZE, "attachment MAC")
        self.bytes_read += MAC_SIZE
        cipher._check(mac, tag, "attachment payload")
        cipher._advance()
        self.complete = True

    def drain(self) -> None:
        """Consume and verify whatever is left without keeping the data."""
        for _chunk in self:
            pass

    def read_all(self) -> bytes:
        return b"".join(self)
