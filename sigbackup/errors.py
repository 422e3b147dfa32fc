from __future__ import annotations

from typing import Optional


class SignalBackupError(Exception):
    """Base class for backup decoding errors.

    Fatal errors carry the position at which decoding stopped so callers can
    report it precisely.
    """

    def __init__(self, message: str, *, frame_index: Optional[int] = None, offset: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.frame_index = frame_index
        self.offset = offset

    def with_position(self, frame_index: Optional[int], offset: Optional[int]) -> "SignalBackupError":
        # Inner components may not know where they are in the stream
        if self.frame_index is None:
            self.frame_index = frame_index
        if self.offset is None:
            self.offset = offset
        return self

    def __str__(self) -> str:
        where = []
        if self.frame_index is not None:
            where.append(f"frame {self.frame_index}")
        if self.offset is not None:
            where.append(f"offset {self.offset}")
        if where:
            return f"{self.message} ({', '.join(where)})"
        return self.message


class ConfigError(SignalBackupError):
    pass


class AuthenticationError(SignalBackupError):
    pass


class MalformedFrameError(SignalBackupError):
    pass


class OrderingError(SignalBackupError):
    pass


class BackupIOError(SignalBackupError):
    pass


class ReconstructionError(SignalBackupError):
    pass


class DecodeCancelled(SignalBackupError):
    pass


class ReconstructionWarning(UserWarning):
    """A statement that could not be applied to the output database."""

    def __init__(self, message: str, *, frame_index: Optional[int] = None, sql: str = "", error: Optional[BaseException] = None):
        super().__init__(message)
        self.message = message
        self.frame_index = frame_index
        self.sql = sql
        self.error = error

    def __str__(self) -> str:
        if self.frame_index is not None:
            return f"{self.message} (frame {self.frame_index})"
        return self.message
