from __future__ import annotations

import logging
import os
import threading
from typing import BinaryIO, Iterator, Optional

from .cipher import FrameCipher, PayloadStream
from .constants import (
    DEFAULT_CHUNK_SIZE,
    HEADER_LENGTH_SIZE,
    HEADER_VERSION_ENCRYPTED_LENGTH,
    MAX_FRAME_SIZE,
)
from .errors import BackupIOError, DecodeCancelled, MalformedFrameError, OrderingError, SignalBackupError
from .frames import DecodedFrame, End, Header, artifact_key, decode_frame, decode_header, is_payload_frame
from .keys import DerivedKeys, derive_keys, normalize_passphrase
from .reconstruct import DecodeSummary, ReconstructionEngine


logger = logging.getLogger(__name__)


class BackupReader:
    """Single-pass reader over an encrypted backup file.

    Usage::

        with BackupReader(path, passphrase) as reader:
            for frame in reader:
                ...

    Frames come out strictly in file order, Header first. For attachment,
    avatar and sticker frames the decrypted payload is available as
    ``reader.pending_payload`` until the next frame is read; anything the
    caller leaves unread is verified and discarded at that point.
    """

    def __init__(
        self,
        path: str,
        passphrase: Optional[str] = None,
        *,
        backup_key: Optional[bytes] = None,
        verify_mac: bool = True,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        max_frame_size: int = MAX_FRAME_SIZE,
    ):
        # Reject a bad passphrase before touching the file
        if backup_key is None:
            normalize_passphrase(passphrase if passphrase is not None else "")
        self.path = path
        self.passphrase = passphrase
        self.backup_key = backup_key
        self.verify_mac = verify_mac
        self.chunk_size = chunk_size
        self.max_frame_size = max_frame_size
        self.f: Optional[BinaryIO] = None
        self.file_size: int = 0
        self.header: Optional[Header] = None
        self.keys: Optional[DerivedKeys] = None
        self.cipher: Optional[FrameCipher] = None
        self.pending_payload: Optional[PayloadStream] = None
        # Index of the last frame returned (header is frame 0) and the offset
        # where the next unit starts
        self.frame_index: int = -1
        self.offset: int = 0
        self.ended = False
        self._header_returned = False

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def open(self):
        if self.f is not None:
            return
        try:
            self.f = open(self.path, "rb")
            self.file_size = os.fstat(self.f.fileno()).st_size
        except OSError as exc:
            self.close()
            raise BackupIOError(f"Could not open backup file {self.path}: {exc}") from exc
        try:
            self._read_header()
        except SignalBackupError:
            self.close()
            raise

    def close(self):
        if self.f is not None:
            self.f.close()
            self.f = None

    @property
    def encrypted_length(self) -> bool:
        return self.header is not None and self.header.version == HEADER_VERSION_ENCRYPTED_LENGTH

    def _read_header(self) -> None:
        assert self.f is not None
        try:
            raw = self.f.read(HEADER_LENGTH_SIZE)
            if len(raw) != HEADER_LENGTH_SIZE:
                raise BackupIOError("Backup file is too short to contain a header", frame_index=0, offset=0)
            length = int.from_bytes(raw, "big")
            if length > self.max_frame_size:
                raise MalformedFrameError(f"Header length {length} is not plausible", frame_index=0, offset=0)
            data = self.f.read(length)
        except OSError as exc:
            raise BackupIOError(f"Failed to read header: {exc}", frame_index=0, offset=0) from exc
        if len(data) != length:
            raise BackupIOError(
                f"Unexpected end of file while reading header ({len(data)} of {length} bytes)",
                frame_index=0,
                offset=0,
            )
        try:
            self.header = decode_header(data)
        except SignalBackupError as exc:
            raise exc.with_position(0, 0)
        logger.debug("%s", self.header)
        self.keys = derive_keys(self.passphrase, self.header.salt, backup_key=self.backup_key)
        self.cipher = FrameCipher(
            self.keys,
            self.header.iv,
            verify_mac=self.verify_mac,
            max_frame_size=self.max_frame_size,
        )
        self.frame_index = 0
        self.offset = HEADER_LENGTH_SIZE + length

    def finish_payload(self) -> None:
        payload = self.pending_payload
        if payload is None:
            return
        start = self.offset
        try:
            payload.drain()
        except SignalBackupError as exc:
            raise exc.with_position(self.frame_index, start + payload.bytes_read)
        except OSError as exc:
            raise BackupIOError(
                f"Failed to read attachment payload: {exc}",
                frame_index=self.frame_index,
                offset=start + payload.bytes_read,
            ) from exc
        self.offset += payload.bytes_read
        self.pending_payload = None

    def read_frame(self) -> Optional[DecodedFrame]:
        """Return the next frame, or None once the stream is exhausted.

        Bytes after an End frame are never read.
        """
        if self.f is None or self.cipher is None or self.header is None:
            raise RuntimeError("Backup not open")
        if not self._header_returned:
            self._header_returned = True
            return self.header
        self.finish_payload()
        if self.ended:
            return None
        index = self.frame_index + 1
        start = self.offset
        try:
            plaintext = self.cipher.read_frame(self.f, encrypted_length=self.encrypted_length)
            if plaintext is None:
                logger.warning("Backup ended after frame %d without an end frame", self.frame_index)
                self.ended = True
                return None
            frame = decode_frame(plaintext)
        except SignalBackupError as exc:
            raise exc.with_position(index, start)
        except OSError as exc:
            raise BackupIOError(f"Failed to read frame: {exc}", frame_index=index, offset=start) from exc
        self.frame_index = index
        self.offset = self.f.tell()
        logger.debug("Frame %d at offset %d: %s", index, start, frame)

        if isinstance(frame, Header):
            raise OrderingError("Unexpected header found", frame_index=index, offset=start)
        if isinstance(frame, End):
            self.ended = True
        elif is_payload_frame(frame):
            try:
                self.pending_payload = self.cipher.open_payload(
                    self.f,
                    frame.length,
                    chunk_size=self.chunk_size,
                    remaining=self.file_size - self.offset,
                )
            except SignalBackupError as exc:
                raise exc.with_position(index, self.offset)
        return frame

    def __iter__(self) -> Iterator[DecodedFrame]:
        while True:
            frame = self.read_frame()
            if frame is None:
                return
            yield frame

    @property
    def bytes_processed(self) -> int:
        return self.offset


def decode_backup(
    reader: BackupReader,
    engine: ReconstructionEngine,
    *,
    cancel: Optional[threading.Event] = None,
) -> DecodeSummary:
    """Drive ``reader`` to the end of the stream, applying every frame to ``engine``.

    A frame and its payload are applied as one unit; ``cancel`` is only
    checked between units.

    Raises:
        DecodeCancelled: If ``cancel`` was set.
        SignalBackupError: On any fatal decode error, with frame index and offset.
    """
    while True:
        if cancel is not None and cancel.is_set():
            raise DecodeCancelled(
                "Decode cancelled", frame_index=reader.frame_index, offset=reader.offset
            )
        frame = reader.read_frame()
        if frame is None:
            break
        payload = reader.pending_payload
        try:
            engine.apply(frame, payload, frame_index=reader.frame_index)
        except SignalBackupError as exc:
            raise exc.with_position(reader.frame_index, reader.offset)
        except OSError as exc:
            what = artifact_key(frame) if is_payload_frame(frame) else str(frame)
            raise BackupIOError(
                f"Failed to store {what}: {exc}", frame_index=reader.frame_index, offset=reader.offset
            ) from exc
        if payload is not None:
            # Account for the payload the engine consumed
            reader.finish_payload()
        if isinstance(frame, End):
            break
    summary = engine.finish(reader.bytes_processed)
    logger.info("Decoded backup: %s", summary.describe())
    return summary
