from __future__ import annotations

import base64
import csv
import logging
import os
import sqlite3
from pathlib import Path
from typing import List, Optional

from .constants import OUTPUT_CSV, OUTPUT_NONE, OUTPUT_RAW, OUTPUT_TYPES
from .errors import BackupIOError, ConfigError
from .reconstruct import KEY_VALUE_NAMESPACE, ReconstructionEngine
from .store import ArtifactStore, DirectoryArtifactStore, KeyValueStore, MemoryArtifactStore


logger = logging.getLogger(__name__)

DATABASE_NAME = "database.sqlite"
PREFERENCES_NAME = "preferences.json"
KEY_VALUE_NAME = "key_value.json"
CSV_DIR = "csv"


class OutputDirectory:
    """Output layout for one decode.

    RAW writes ``database.sqlite``, ``preferences.json``, ``key_value.json``
    and the ``attachments``/``avatars``/``stickers`` directories. CSV does the
    same and additionally exports each table to ``csv/<table>.csv``. NONE keeps
    everything in memory and discards it, which verifies a backup end to end.
    """

    def __init__(
        self,
        path: Path,
        *,
        output_type: str = OUTPUT_RAW,
        in_memory_db: bool = True,
        force_overwrite: bool = False,
        workers: int = 0,
    ):
        if output_type not in OUTPUT_TYPES:
            raise ConfigError(f"Unknown output type: {output_type}")
        self.path = Path(path)
        self.output_type = output_type
        self.in_memory_db = in_memory_db or output_type == OUTPUT_NONE
        self.force_overwrite = force_overwrite
        self.workers = workers
        self.connection: Optional[sqlite3.Connection] = None
        self.artifacts: Optional[ArtifactStore] = None
        self.preferences = KeyValueStore()
        self.key_values = KeyValueStore()

    @property
    def database_path(self) -> Path:
        return self.path / DATABASE_NAME

    @property
    def preferences_path(self) -> Path:
        return self.path / PREFERENCES_NAME

    @property
    def key_value_path(self) -> Path:
        return self.path / KEY_VALUE_NAME

    @property
    def csv_path(self) -> Path:
        return self.path / CSV_DIR

    def __enter__(self):
        self.prepare()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def prepare(self) -> None:
        if self.output_type == OUTPUT_NONE:
            self.connection = sqlite3.connect(":memory:")
            self.artifacts = MemoryArtifactStore(keep_data=False)
            return
        if self.path.exists():
            if not self.path.is_dir():
                raise ConfigError(f"Output path exists and is not a directory: {self.path}")
            if any(self.path.iterdir()) and not self.force_overwrite:
                raise ConfigError(f"Output directory {self.path} is not empty; use --force to overwrite")
        try:
            self.path.mkdir(parents=True, exist_ok=True)
            if self.database_path.exists():
                self.database_path.unlink()
            if self.in_memory_db:
                self.connection = sqlite3.connect(":memory:")
            else:
                self.connection = sqlite3.connect(str(self.database_path))
            self.artifacts = DirectoryArtifactStore(str(self.path), workers=self.workers)
        except (OSError, sqlite3.Error) as exc:
            self.close()
            raise BackupIOError(f"Could not prepare output directory {self.path}: {exc}") from exc
        logger.info("Output directory: %s", self.path)

    def engine(self, *, strict: bool = False) -> ReconstructionEngine:
        if self.connection is None:
            raise RuntimeError("Output not prepared")
        return ReconstructionEngine(
            self.connection,
            self.artifacts,
            self.preferences,
            self.key_values,
            strict=strict,
        )

    def finalize(self) -> None:
        """Persist the database and stores after a successful decode."""
        if self.output_type == OUTPUT_NONE or self.connection is None:
            return
        try:
            self.connection.commit()
            if self.in_memory_db:
                disk = sqlite3.connect(str(self.database_path))
                try:
                    self.connection.backup(disk)
                finally:
                    disk.close()
            self.preferences.dump_json(str(self.preferences_path))
            self.key_values.dump_json(str(self.key_value_path), namespace=KEY_VALUE_NAMESPACE)
            if self.output_type == OUTPUT_CSV:
                export_csv(self.connection, self.csv_path)
        except (OSError, sqlite3.Error) as exc:
            raise BackupIOError(f"Failed to write output: {exc}") from exc
        logger.info("Wrote database to %s", self.database_path)

    def close(self) -> None:
        try:
            if self.artifacts is not None:
                self.artifacts.close()
                self.artifacts = None
        finally:
            if self.connection is not None:
                self.connection.close()
                self.connection = None


def user_tables(connection: sqlite3.Connection) -> List[str]:
    rows = connection.execute(
        "SELECT name FROM sqlite_master WHERE type = 'table' AND name NOT LIKE 'sqlite_%' ORDER BY name"
    ).fetchall()
    return [r[0] for r in rows]


def _csv_value(value):
    if isinstance(value, bytes):
        return base64.b64encode(value).decode("ascii")
    return value


def export_csv(connection: sqlite3.Connection, directory: Path) -> List[Path]:
    """Write one CSV file per user table; BLOB cells are base64 encoded."""
    os.makedirs(directory, exist_ok=True)
    written: List[Path] = []
    for table in user_tables(connection):
        quoted = '"' + table.replace('"', '""') + '"'
        try:
            cursor = connection.execute(f"SELECT * FROM {quoted}")
        except sqlite3.Error as exc:
            # Virtual tables whose module is unavailable cannot be read
            logger.warning("Skipping table %s in CSV export: %s", table, exc)
            continue
        target = directory / f"{table}.csv"
        with open(target, "w", newline="", encoding="utf-8") as fh:
            writer = csv.writer(fh)
            writer.writerow([d[0] for d in cursor.description])
            for row in cursor:
                writer.writerow([_csv_value(v) for v in row])
        written.append(target)
    logger.debug("Exported %d tables to %s", len(written), directory)
    return written
