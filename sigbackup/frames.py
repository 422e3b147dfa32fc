from __future__ import annotations

from dataclasses import dataclass
from typing import Any, List, Optional, Tuple, Union

from google.protobuf.message import DecodeError

from . import schema
from .constants import (
    ARTIFACT_ATTACHMENT,
    ARTIFACT_AVATAR,
    ARTIFACT_STICKER,
    IV_SIZE,
    SUPPORTED_HEADER_VERSIONS,
)
from .errors import MalformedFrameError, OrderingError


# SqlParameter kinds
PARAM_NULL = "null"
PARAM_INT = "int"
PARAM_REAL = "real"
PARAM_TEXT = "text"
PARAM_BLOB = "blob"


@dataclass(frozen=True)
class SqlParam:
    kind: str
    value: Any = None


@dataclass(frozen=True)
class Header:
    iv: bytes
    salt: bytes
    version: Optional[int] = None

    def __str__(self) -> str:
        return f"Header (salt: {len(self.salt)} bytes, iv: {self.iv.hex()}, version: {self.version})"


@dataclass(frozen=True)
class Statement:
    sql: str
    params: Tuple[SqlParam, ...] = ()

    def bind_values(self) -> Tuple[Any, ...]:
        return tuple(p.value for p in self.params)

    def __str__(self) -> str:
        return f"Statement ({len(self.params)} parameters)"


@dataclass(frozen=True)
class Preference:
    file: str
    key: str
    value: Optional[str] = None
    boolean_value: Optional[bool] = None
    string_set: Tuple[str, ...] = ()
    is_string_set: bool = False

    def resolved_value(self) -> Any:
        if self.is_string_set:
            return list(self.string_set)
        if self.value is not None:
            return self.value
        return self.boolean_value

    def __str__(self) -> str:
        return f"Preference ({self.file}/{self.key})"


SharedPreference = Preference


@dataclass(frozen=True)
class Attachment:
    row_id: int
    attachment_id: int
    length: int

    def __str__(self) -> str:
        return f"Attachment (row: {self.row_id}, size: {self.length})"


@dataclass(frozen=True)
class Avatar:
    name: str
    length: int
    recipient_id: Optional[str] = None

    def __str__(self) -> str:
        return f"Avatar (size: {self.length})"


@dataclass(frozen=True)
class Sticker:
    row_id: int
    length: int

    def __str__(self) -> str:
        return f"Sticker (row: {self.row_id}, size: {self.length})"


@dataclass(frozen=True)
class DatabaseVersion:
    version: int

    def __str__(self) -> str:
        return f"Version ({self.version})"


@dataclass(frozen=True)
class KeyValue:
    key: str
    value: Any = None
    value_type: Optional[str] = None

    def __str__(self) -> str:
        return f"KeyValue ({self.key})"


@dataclass(frozen=True)
class End:
    def __str__(self) -> str:
        return "End"


DecodedFrame = Union[Header, Statement, Preference, Attachment, Avatar, Sticker, DatabaseVersion, KeyValue, End]

PayloadFrame = Union[Attachment, Avatar, Sticker]


_INT64_SIGN = 1 << 63


def _to_signed64(value: int) -> int:
    # integerParameter is uint64 on the wire; sqlite wants signed 64-bit
    return value - (1 << 64) if value >= _INT64_SIGN else value


def _set_fields(message) -> List[str]:
    return [fd.name for fd, _value in message.ListFields()]


def _opt(message, name: str):
    return getattr(message, name) if message.HasField(name) else None


def _convert_header(m) -> Header:
    return Header(iv=m.iv, salt=m.salt, version=_opt(m, "version"))


_PARAM_KINDS = {
    "stringParamter": PARAM_TEXT,
    "integerParameter": PARAM_INT,
    "doubleParameter": PARAM_REAL,
    "blobParameter": PARAM_BLOB,
    "nullparameter": PARAM_NULL,
}


def _convert_param(m) -> SqlParam:
    present = _set_fields(m)
    if len(present) != 1:
        raise MalformedFrameError(f"SQL parameter with {len(present)} values set")
    name = present[0]
    kind = _PARAM_KINDS[name]
    if kind == PARAM_NULL:
        return SqlParam(PARAM_NULL, None)
    if kind == PARAM_INT:
        return SqlParam(PARAM_INT, _to_signed64(m.integerParameter))
    return SqlParam(kind, getattr(m, name))


def _convert_statement(m) -> Statement:
    return Statement(sql=m.statement, params=tuple(_convert_param(p) for p in m.parameters))


def _convert_preference(m) -> Preference:
    return Preference(
        file=m.file,
        key=m.key,
        value=_opt(m, "value"),
        boolean_value=_opt(m, "booleanValue"),
        string_set=tuple(m.stringSetValue),
        is_string_set=m.isStringSetValue,
    )


def _convert_attachment(m) -> Attachment:
    return Attachment(row_id=m.rowId, attachment_id=m.attachmentId, length=m.length)


def _convert_avatar(m) -> Avatar:
    return Avatar(name=m.name, length=m.length, recipient_id=_opt(m, "recipientId"))


def _convert_sticker(m) -> Sticker:
    return Sticker(row_id=m.rowId, length=m.length)


def _convert_version(m) -> DatabaseVersion:
    return DatabaseVersion(version=m.version)


_KV_VALUE_FIELDS = {
    "blobValue": "blob",
    "booleanValue": "boolean",
    "floatValue": "float",
    "integerValue": "integer",
    "longValue": "long",
    "stringValue": "string",
}


def _convert_key_value(m) -> KeyValue:
    present = [n for n in _set_fields(m) if n in _KV_VALUE_FIELDS]
    if len(present) > 1:
        raise MalformedFrameError(f"Key-value entry {m.key!r} has {len(present)} values set")
    if not present:
        return KeyValue(key=m.key)
    name = present[0]
    return KeyValue(key=m.key, value=getattr(m, name), value_type=_KV_VALUE_FIELDS[name])


_FRAME_CONVERTERS = {
    "header": _convert_header,
    "statement": _convert_statement,
    "preference": _convert_preference,
    "attachment": _convert_attachment,
    "version": _convert_version,
    "avatar": _convert_avatar,
    "sticker": _convert_sticker,
    "keyValue": _convert_key_value,
}


def decode_frame(plaintext: bytes) -> DecodedFrame:
    """Parse a decrypted BackupFrame message.

    Exactly one payload field must be set; anything else is rejected rather
    than guessed at. Unknown fields are ignored.

    Raises:
        MalformedFrameError: If the bytes are not a valid frame.
    """
    try:
        message = schema.BackupFrame.FromString(plaintext)
        present = _set_fields(message)
        if len(present) != 1:
            raise MalformedFrameError(f"Frame with {len(present)} payload fields set")
        name = present[0]
        if name == "end":
            return End()
        return _FRAME_CONVERTERS[name](getattr(message, name))
    except DecodeError as exc:
        raise MalformedFrameError(f"Could not parse frame: {exc}") from exc
    except UnicodeDecodeError as exc:
        raise MalformedFrameError(f"Frame carries invalid text: {exc}") from exc


def decode_header(plaintext: bytes) -> Header:
    """Parse the plaintext first frame and check it is a usable Header."""
    frame = decode_frame(plaintext)
    if not isinstance(frame, Header):
        raise OrderingError(f"First frame is not a header: {frame}")
    if len(frame.iv) != IV_SIZE:
        raise MalformedFrameError(f"Header IV must be {IV_SIZE} bytes, got {len(frame.iv)}")
    if not frame.salt:
        raise MalformedFrameError("Header carries no salt")
    if frame.version is not None and frame.version not in SUPPORTED_HEADER_VERSIONS:
        raise MalformedFrameError(f"Unsupported header version {frame.version}")
    return frame


def is_payload_frame(frame: DecodedFrame) -> bool:
    return isinstance(frame, (Attachment, Avatar, Sticker))


def artifact_key(frame: PayloadFrame) -> Tuple[str, str]:
    """Return the (kind, key) under which a payload frame's bytes are stored."""
    if isinstance(frame, Attachment):
        return ARTIFACT_ATTACHMENT, str(frame.row_id)
    if isinstance(frame, Sticker):
        return ARTIFACT_STICKER, str(frame.row_id)
    if isinstance(frame, Avatar):
        return ARTIFACT_AVATAR, frame.recipient_id or frame.name
    raise TypeError(f"{type(frame).__name__} frames carry no payload")
