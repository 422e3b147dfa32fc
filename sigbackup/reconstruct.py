from __future__ import annotations

import logging
import re
import sqlite3
from dataclasses import dataclass, field
from typing import Iterable, List, Optional

from .errors import MalformedFrameError, OrderingError, ReconstructionError, ReconstructionWarning
from .frames import (
    Attachment,
    Avatar,
    DatabaseVersion,
    DecodedFrame,
    End,
    Header,
    KeyValue,
    Preference,
    Statement,
    Sticker,
    artifact_key,
)
from .store import ArtifactStore, KeyValueStore, safe_name


logger = logging.getLogger(__name__)

KEY_VALUE_NAMESPACE = "key_value"

# sqlite refuses to create its own internal tables, and the FTS shadow tables
# are rebuilt by the virtual table declarations that precede them.
_SKIP_SQL = re.compile(
    r"^\s*create\s+table\s+(?:if\s+not\s+exists\s+)?[\"'`\[]?(?:sqlite_|\w*_fts_(?:data|idx|content|docsize|config)\b)",
    re.IGNORECASE,
)


@dataclass
class DecodeSummary:
    frames: int = 0
    statements_applied: int = 0
    statements_skipped: int = 0
    statements_warned: int = 0
    artifacts_extracted: int = 0
    artifact_bytes: int = 0
    preferences: int = 0
    key_values: int = 0
    database_version: Optional[int] = None
    bytes_processed: int = 0
    ended: bool = False
    warnings: List[ReconstructionWarning] = field(default_factory=list)

    def describe(self) -> str:
        return (
            f"{self.frames} frames, {self.statements_applied} statements applied "
            f"({self.statements_warned} failed, {self.statements_skipped} skipped), "
            f"{self.artifacts_extracted} artifacts, {self.preferences} preferences, "
            f"{self.key_values} key-values, {self.bytes_processed} bytes"
        )


class ReconstructionEngine:
    """Apply decoded frames to the output database and stores.

    The engine owns ``connection`` for the duration of a decode and is the only
    writer to it. Statement failures are recorded as warnings (or raised in
    strict mode); ordering violations are always fatal.
    """

    def __init__(
        self,
        connection: sqlite3.Connection,
        artifacts: Optional[ArtifactStore] = None,
        preferences: Optional[KeyValueStore] = None,
        key_values: Optional[KeyValueStore] = None,
        *,
        strict: bool = False,
    ):
        self.connection = connection
        self.artifacts = artifacts
        self.preferences = preferences if preferences is not None else KeyValueStore()
        self.key_values = key_values if key_values is not None else KeyValueStore()
        self.strict = strict
        self.header: Optional[Header] = None
        self.summary = DecodeSummary()
        self._ended = False
        self._cursor = connection.cursor()

    @property
    def warnings(self) -> List[ReconstructionWarning]:
        return self.summary.warnings

    def apply(self, frame: DecodedFrame, payload: Optional[Iterable[bytes]] = None, *, frame_index: Optional[int] = None) -> None:
        if self._ended:
            raise OrderingError(f"{frame} after end of backup", frame_index=frame_index)
        if isinstance(frame, Header):
            if self.header is not None:
                raise OrderingError("Unexpected second header", frame_index=frame_index)
            self.header = frame
        elif self.header is None:
            raise OrderingError(f"{frame} before header", frame_index=frame_index)
        elif isinstance(frame, Statement):
            self._apply_statement(frame, frame_index)
        elif isinstance(frame, DatabaseVersion):
            self._apply_version(frame)
        elif isinstance(frame, Preference):
            self.preferences.set(frame.file, frame.key, frame.resolved_value())
        elif isinstance(frame, KeyValue):
            self.key_values.set(KEY_VALUE_NAMESPACE, frame.key, frame.value)
        elif isinstance(frame, (Attachment, Avatar, Sticker)):
            self._apply_artifact(frame, payload, frame_index)
        elif isinstance(frame, End):
            self._ended = True
            self.summary.ended = True
        else:
            raise TypeError(f"Unsupported frame type {type(frame).__name__}")
        self.summary.frames += 1

    def _apply_statement(self, frame: Statement, frame_index: Optional[int]) -> None:
        if _SKIP_SQL.match(frame.sql):
            logger.debug("Skipping internal table statement: %s", frame.sql)
            self.summary.statements_skipped += 1
            return
        try:
            self._cursor.execute(frame.sql, frame.bind_values())
        except sqlite3.Error as exc:
            warning = ReconstructionWarning(
                f"Statement failed: {exc}", frame_index=frame_index, sql=frame.sql, error=exc
            )
            if self.strict:
                raise ReconstructionError(warning.message, frame_index=frame_index) from exc
            logger.warning("%s; statement: %s", warning, _shorten(frame.sql))
            self.summary.warnings.append(warning)
            self.summary.statements_warned += 1
            return
        self.summary.statements_applied += 1

    def _apply_version(self, frame: DatabaseVersion) -> None:
        # PRAGMA does not accept bound parameters
        self._cursor.execute(f"PRAGMA user_version = {int(frame.version):d}")
        self.summary.database_version = frame.version

    def _apply_artifact(self, frame, payload: Optional[Iterable[bytes]], frame_index: Optional[int]) -> None:
        kind, key = artifact_key(frame)
        try:
            safe_name(key)
        except ValueError as exc:
            raise MalformedFrameError(f"{frame} has no usable key: {exc}", frame_index=frame_index) from exc
        if payload is None:
            raise ValueError(f"{frame} requires its payload")
        if self.artifacts is None:
            for _chunk in payload:
                pass
            return
        size = self.artifacts.put(kind, key, payload)
        logger.debug("Extracted %s %s (%d bytes)", kind, key, size)
        self.summary.artifacts_extracted += 1
        self.summary.artifact_bytes += size

    def finish(self, bytes_processed: int = 0) -> DecodeSummary:
        """Commit the database, wait for artifact writes and return the summary."""
        self.connection.commit()
        if self.artifacts is not None:
            self.artifacts.flush()
        self.summary.preferences = len(self.preferences)
        self.summary.key_values = len(self.key_values)
        self.summary.bytes_processed = bytes_processed
        return self.summary


def _shorten(sql: str, limit: int = 120) -> str:
    sql = " ".join(sql.split())
    return sql if len(sql) <= limit else sql[: limit - 3] + "..."
