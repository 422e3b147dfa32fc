from __future__ import annotations

import base64
import concurrent.futures as _fut
import json
import logging
import os
import shutil
import tempfile
import threading
from typing import Any, Dict, Iterable, Iterator, Optional, Tuple

from .constants import ARTIFACT_DIRS, DEFAULT_CHUNK_SIZE, DEFAULT_SPOOL_SIZE
from .errors import BackupIOError


logger = logging.getLogger(__name__)


def safe_name(key: str) -> str:
    """Turn an artifact key into a single safe file name component.

    Rules:
    - Convert slashes and backslashes to underscores
    - Reject empty names and '.'/'..'
    """
    name = str(key).replace("\\", "_").replace("/", "_").replace("\x00", "_").strip()
    if name in ("", ".", ".."):
        raise ValueError(f"Unusable artifact key: {key!r}")
    return name


class ArtifactStore:
    """Keyed store for extracted attachments, avatars and stickers.

    ``put`` consumes an iterable of decrypted chunks. Nothing becomes visible
    under the key unless the iterable is exhausted without raising, so a payload
    whose tag fails never replaces an earlier artifact.
    """

    def put(self, kind: str, key: str, chunks: Iterable[bytes]) -> int:
        raise NotImplementedError

    def flush(self) -> None:
        """Wait for outstanding writes; raise the first failure."""

    def close(self) -> None:
        self.flush()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()


class MemoryArtifactStore(ArtifactStore):
    def __init__(self, *, keep_data: bool = True):
        self.keep_data = keep_data
        self.items: Dict[Tuple[str, str], bytes] = {}
        self.sizes: Dict[Tuple[str, str], int] = {}

    def put(self, kind: str, key: str, chunks: Iterable[bytes]) -> int:
        if self.keep_data:
            data = b"".join(chunks)
            size = len(data)
        else:
            data = b""
            size = sum(len(c) for c in chunks)
        if self.keep_data:
            self.items[(kind, key)] = data
        self.sizes[(kind, key)] = size
        return size

    def get(self, kind: str, key: str) -> bytes:
        return self.items[(kind, key)]

    def __contains__(self, item: Tuple[str, str]) -> bool:
        return item in self.sizes

    def __len__(self) -> int:
        return len(self.sizes)


class DirectoryArtifactStore(ArtifactStore):
    """Writes artifacts to ``<root>/<kind dir>/<key><suffix>``.

    Payloads are spooled (in memory up to ``spool_size``, then on disk) while
    they are decrypted and verified. With ``workers > 0`` the final copy into
    place runs on a thread pool; writes to the same path are chained so the
    latest payload always wins.
    """

    def __init__(
        self,
        root: str,
        *,
        workers: int = 0,
        suffix: str = ".bin",
        spool_size: int = DEFAULT_SPOOL_SIZE,
    ):
        self.root = root
        self.suffix = suffix
        self.spool_size = spool_size
        self.written: Dict[Tuple[str, str], str] = {}
        self._executor: Optional[_fut.ThreadPoolExecutor] = None
        if workers > 0:
            self._executor = _fut.ThreadPoolExecutor(max_workers=workers, thread_name_prefix="artifact")
        self._pending: Dict[str, _fut.Future] = {}
        self._lock = threading.Lock()
        for sub in ARTIFACT_DIRS.values():
            os.makedirs(os.path.join(root, sub), exist_ok=True)

    def path_for(self, kind: str, key: str) -> str:
        try:
            sub = ARTIFACT_DIRS[kind]
        except KeyError:
            raise ValueError(f"Unknown artifact kind: {kind}") from None
        return os.path.join(self.root, sub, safe_name(key) + self.suffix)

    def put(self, kind: str, key: str, chunks: Iterable[bytes]) -> int:
        path = self.path_for(kind, key)
        spool = tempfile.SpooledTemporaryFile(max_size=self.spool_size)
        size = 0
        try:
            for chunk in chunks:
                spool.write(chunk)
                size += len(chunk)
        except BaseException:
            spool.close()
            raise
        spool.seek(0)
        if (kind, key) in self.written:
            logger.debug("Replacing %s %s", kind, key)
        self.written[(kind, key)] = path
        if self._executor is None:
            _commit(spool, path)
        else:
            with self._lock:
                previous = self._pending.get(path)
                self._pending[path] = self._executor.submit(_commit, spool, path, previous)
        return size

    def flush(self) -> None:
        with self._lock:
            pending = list(self._pending.values())
            self._pending.clear()
        first_error: Optional[BaseException] = None
        for f in pending:
            try:
                f.result()
            except OSError as exc:
                if first_error is None:
                    first_error = exc
        if first_error is not None:
            raise BackupIOError(f"Failed to write artifact: {first_error}") from first_error

    def close(self) -> None:
        try:
            self.flush()
        finally:
            if self._executor is not None:
                self._executor.shutdown(wait=True)
                self._executor = None


def _commit(spool, path: str, previous: Optional[_fut.Future] = None) -> None:
    if previous is not None:
        # Keep arrival order for repeated keys; the earlier result is irrelevant
        _fut.wait([previous])
    tmp_path = path + ".part"
    try:
        with open(tmp_path, "wb") as out:
            shutil.copyfileobj(spool, out, DEFAULT_CHUNK_SIZE)
        os.replace(tmp_path, path)
    finally:
        spool.close()
        if os.path.exists(tmp_path):
            os.unlink(tmp_path)


class KeyValueStore:
    """Namespaced key-value store; the latest write for a key wins."""

    def __init__(self) -> None:
        self._data: Dict[str, Dict[str, Any]] = {}
        self.writes = 0

    def set(self, namespace: str, key: str, value: Any) -> None:
        self._data.setdefault(namespace, {})[key] = value
        self.writes += 1

    def get(self, namespace: str, key: str, default: Any = None) -> Any:
        return self._data.get(namespace, {}).get(key, default)

    def namespaces(self) -> Iterator[str]:
        return iter(self._data)

    def items(self, namespace: str) -> Iterator[Tuple[str, Any]]:
        return iter(self._data.get(namespace, {}).items())

    def __len__(self) -> int:
        return sum(len(v) for v in self._data.values())

    def to_dict(self) -> Dict[str, Dict[str, Any]]:
        return {ns: dict(values) for ns, values in self._data.items()}

    def dump_json(self, path: str, namespace: Optional[str] = None) -> None:
        data = self.to_dict() if namespace is None else dict(self._data.get(namespace, {}))
        with open(path, "w", encoding="utf-8") as fh:
            json.dump(data, fh, indent=2, sort_keys=True, default=_json_default)


def _json_default(value: Any) -> Any:
    if isinstance(value, (bytes, bytearray)):
        return {"base64": base64.b64encode(bytes(value)).decode("ascii")}
    raise TypeError(f"Cannot serialize {type(value).__name__}")
