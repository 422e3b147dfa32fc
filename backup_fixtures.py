from __future__ import annotations

"""Build encrypted backup files for tests.

Frames are serialized with the protobuf message classes and encrypted here
with PyCryptodomex directly (AES-CTR, HMAC-SHA256 truncated to 10 bytes), so
the decoder under test is checked against an independent writer.
"""

from pathlib import Path
from typing import List, Optional, Sequence, Tuple

from Cryptodome.Cipher import AES
from Cryptodome.Hash import HMAC, SHA256

from sigbackup import schema
from sigbackup.keys import DerivedKeys, expand_backup_key


TEST_PASSPHRASE = "12345 67890 12345 67890 12345 67890"
TEST_BACKUP_KEY = bytes(range(32))
TEST_SALT = bytes(range(100, 132))
TEST_IV = bytes.fromhex("0000000a") + bytes(range(0x40, 0x4C))

_UINT64_MASK = (1 << 64) - 1


def fixture_keys() -> DerivedKeys:
    return expand_backup_key(TEST_BACKUP_KEY)


def _frame(**fields) -> bytes:
    return schema.BackupFrame(**fields).SerializeToString()


def header_frame(iv: bytes = TEST_IV, salt: bytes = TEST_SALT, version: Optional[int] = None) -> bytes:
    header = schema.Header(iv=iv, salt=salt)
    if version is not None:
        header.version = version
    return _frame(header=header)


def sql_param(value):
    if value is None:
        return schema.SqlParameter(nullparameter=True)
    if isinstance(value, bool):
        return schema.SqlParameter(integerParameter=int(value))
    if isinstance(value, int):
        # Signed values travel as their two's complement uint64
        return schema.SqlParameter(integerParameter=value & _UINT64_MASK)
    if isinstance(value, float):
        return schema.SqlParameter(doubleParameter=value)
    if isinstance(value, str):
        return schema.SqlParameter(stringParamter=value)
    if isinstance(value, bytes):
        return schema.SqlParameter(blobParameter=value)
    raise TypeError(f"unsupported parameter {value!r}")


def statement_frame(sql: str, params: Sequence = ()) -> bytes:
    return _frame(statement=schema.SqlStatement(statement=sql, parameters=[sql_param(p) for p in params]))


def preference_frame(
    file: str,
    key: str,
    value: Optional[str] = None,
    *,
    boolean: Optional[bool] = None,
    string_set: Optional[Sequence[str]] = None,
) -> bytes:
    pref = schema.SharedPreference(file=file, key=key)
    if value is not None:
        pref.value = value
    if boolean is not None:
        pref.booleanValue = boolean
    if string_set is not None:
        pref.stringSetValue.extend(string_set)
        pref.isStringSetValue = True
    return _frame(preference=pref)


def attachment_frame(row_id: int, length: int, attachment_id: int = 0) -> bytes:
    return _frame(attachment=schema.Attachment(rowId=row_id, attachmentId=attachment_id, length=length))


def version_frame(version: int) -> bytes:
    return _frame(version=schema.DatabaseVersion(version=version))


def end_frame() -> bytes:
    return _frame(end=True)


def avatar_frame(name: str, length: int, recipient_id: Optional[str] = None) -> bytes:
    avatar = schema.Avatar(name=name, length=length)
    if recipient_id is not None:
        avatar.recipientId = recipient_id
    return _frame(avatar=avatar)


def sticker_frame(row_id: int, length: int) -> bytes:
    return _frame(sticker=schema.Sticker(rowId=row_id, length=length))


def key_value_frame(key: str, value) -> bytes:
    kv = schema.KeyValue(key=key)
    if isinstance(value, bool):
        kv.booleanValue = value
    elif isinstance(value, int):
        kv.longValue = value
    elif isinstance(value, float):
        kv.floatValue = value
    elif isinstance(value, str):
        kv.stringValue = value
    elif isinstance(value, bytes):
        kv.blobValue = value
    elif value is not None:
        raise TypeError(f"unsupported value {value!r}")
    return _frame(keyValue=kv)


class BackupBuilder:
    """Assemble an encrypted backup unit by unit.

    ``units`` records (start, end) byte ranges of every unit after the header
    so tests can corrupt or reorder them.
    """

    def __init__(
        self,
        keys: Optional[DerivedKeys] = None,
        *,
        iv: bytes = TEST_IV,
        salt: bytes = TEST_SALT,
        version: Optional[int] = None,
    ):
        self.keys = keys or fixture_keys()
        self.version = version
        self.counter = int.from_bytes(iv[:4], "big")
        self.iv = iv
        header = header_frame(iv, salt, version)
        self.buf = bytearray(len(header).to_bytes(4, "big") + header)
        self.units: List[Tuple[int, int]] = []

    def _ctr(self):
        return AES.new(self.keys.cipher_key, AES.MODE_CTR, nonce=b"", initial_value=self.iv)

    def _tag(self, *parts: bytes) -> bytes:
        h = HMAC.new(self.keys.mac_key, digestmod=SHA256)
        for p in parts:
            h.update(p)
        return h.digest()[:10]

    def _advance(self) -> None:
        self.counter = (self.counter + 1) & 0xFFFFFFFF
        self.iv = self.counter.to_bytes(4, "big") + self.iv[4:]

    def add_frame(self, plaintext: bytes) -> "BackupBuilder":
        start = len(self.buf)
        length = (len(plaintext) + 10).to_bytes(4, "big")
        if self.version == 1:
            stream = self._ctr().encrypt(length + plaintext)
            enc_len, ciphertext = stream[:4], stream[4:]
            self.buf += enc_len + ciphertext + self._tag(enc_len, ciphertext)
        else:
            ciphertext = self._ctr().encrypt(plaintext)
            self.buf += length + ciphertext + self._tag(ciphertext)
        self.units.append((start, len(self.buf)))
        self._advance()
        return self

    def add_payload(self, data: bytes) -> "BackupBuilder":
        start = len(self.buf)
        ciphertext = self._ctr().encrypt(data)
        self.buf += ciphertext + self._tag(self.iv, ciphertext)
        self.units.append((start, len(self.buf)))
        self._advance()
        return self

    def add_attachment(self, row_id: int, data: bytes, attachment_id: int = 0) -> "BackupBuilder":
        return self.add_frame(attachment_frame(row_id, len(data), attachment_id)).add_payload(data)

    def add_end(self) -> "BackupBuilder":
        return self.add_frame(end_frame())

    def add_raw(self, data: bytes) -> "BackupBuilder":
        self.buf += data
        return self

    def to_bytes(self) -> bytes:
        return bytes(self.buf)

    def write(self, path: Path) -> Path:
        Path(path).write_bytes(self.buf)
        return Path(path)
