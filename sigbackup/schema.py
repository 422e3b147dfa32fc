from __future__ import annotations

"""
Protobuf message classes for backup frames.

The descriptors mirror ``Backups.proto`` in this package and are registered in
a private descriptor pool at import time, so no protoc step is needed. Every
field is proto2 ``optional`` or ``repeated``; presence is checked with
``HasField``/``ListFields``.
"""

from typing import Sequence, Tuple

from google.protobuf import descriptor_pb2, descriptor_pool, message_factory


_F = descriptor_pb2.FieldDescriptorProto

_SCALARS = {
    "string": _F.TYPE_STRING,
    "bytes": _F.TYPE_BYTES,
    "bool": _F.TYPE_BOOL,
    "float": _F.TYPE_FLOAT,
    "double": _F.TYPE_DOUBLE,
    "int32": _F.TYPE_INT32,
    "int64": _F.TYPE_INT64,
    "uint32": _F.TYPE_UINT32,
    "uint64": _F.TYPE_UINT64,
}

PACKAGE = "signal"


def _message(
    name: str,
    fields: Sequence[Tuple[str, int, str]],
    *,
    repeated: Sequence[str] = (),
    nested: Sequence[descriptor_pb2.DescriptorProto] = (),
) -> descriptor_pb2.DescriptorProto:
    msg = descriptor_pb2.DescriptorProto(name=name)
    for field_name, number, type_name in fields:
        f = msg.field.add(name=field_name, number=number)
        f.label = _F.LABEL_REPEATED if field_name in repeated else _F.LABEL_OPTIONAL
        if type_name in _SCALARS:
            f.type = _SCALARS[type_name]
        else:
            f.type = _F.TYPE_MESSAGE
            f.type_name = type_name
    msg.nested_type.extend(nested)
    return msg


def _file() -> descriptor_pb2.FileDescriptorProto:
    fdp = descriptor_pb2.FileDescriptorProto(name="Backups.proto", package=PACKAGE, syntax="proto2")
    sql_parameter = _message(
        "SqlParameter",
        [
            ("stringParamter", 1, "string"),
            ("integerParameter", 2, "uint64"),
            ("doubleParameter", 3, "double"),
            ("blobParameter", 4, "bytes"),
            ("nullparameter", 5, "bool"),
        ],
    )
    fdp.message_type.extend(
        [
            _message(
                "SqlStatement",
                [("statement", 1, "string"), ("parameters", 2, ".signal.SqlStatement.SqlParameter")],
                repeated=("parameters",),
                nested=(sql_parameter,),
            ),
            _message(
                "SharedPreference",
                [
                    ("file", 1, "string"),
                    ("key", 2, "string"),
                    ("value", 3, "string"),
                    ("booleanValue", 4, "bool"),
                    ("stringSetValue", 5, "string"),
                    ("isStringSetValue", 6, "bool"),
                ],
                repeated=("stringSetValue",),
            ),
            _message("Attachment", [("rowId", 1, "uint64"), ("attachmentId", 2, "uint64"), ("length", 3, "uint32")]),
            _message("Sticker", [("rowId", 1, "uint64"), ("length", 2, "uint32")]),
            _message("Avatar", [("name", 1, "string"), ("recipientId", 3, "string"), ("length", 2, "uint32")]),
            _message("DatabaseVersion", [("version", 1, "uint32")]),
            _message("Header", [("iv", 1, "bytes"), ("salt", 2, "bytes"), ("version", 3, "uint32")]),
            _message(
                "KeyValue",
                [
                    ("key", 1, "string"),
                    ("blobValue", 2, "bytes"),
                    ("booleanValue", 3, "bool"),
                    ("floatValue", 4, "float"),
                    ("integerValue", 5, "int32"),
                    ("longValue", 6, "int64"),
                    ("stringValue", 7, "string"),
                ],
            ),
            _message(
                "BackupFrame",
                [
                    ("header", 1, ".signal.Header"),
                    ("statement", 2, ".signal.SqlStatement"),
                    ("preference", 3, ".signal.SharedPreference"),
                    ("attachment", 4, ".signal.Attachment"),
                    ("version", 5, ".signal.DatabaseVersion"),
                    ("end", 6, "bool"),
                    ("avatar", 7, ".signal.Avatar"),
                    ("sticker", 8, ".signal.Sticker"),
                    ("keyValue", 9, ".signal.KeyValue"),
                ],
            ),
        ]
    )
    return fdp


_pool = descriptor_pool.DescriptorPool()
_pool.AddSerializedFile(_file().SerializeToString())


def _cls(name: str):
    return message_factory.GetMessageClass(_pool.FindMessageTypeByName(f"{PACKAGE}.{name}"))


BackupFrame = _cls("BackupFrame")
Header = _cls("Header")
SqlStatement = _cls("SqlStatement")
SqlParameter = _cls("SqlStatement.SqlParameter")
SharedPreference = _cls("SharedPreference")
Attachment = _cls("Attachment")
Avatar = _cls("Avatar")
Sticker = _cls("Sticker")
DatabaseVersion = _cls("DatabaseVersion")
KeyValue = _cls("KeyValue")
