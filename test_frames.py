from __future__ import annotations

import unittest

from sigbackup import schema
from sigbackup.errors import MalformedFrameError, OrderingError
from sigbackup.frames import (
    PARAM_BLOB,
    PARAM_INT,
    PARAM_NULL,
    PARAM_REAL,
    PARAM_TEXT,
    Attachment,
    Avatar,
    DatabaseVersion,
    End,
    Header,
    KeyValue,
    Preference,
    Statement,
    Sticker,
    artifact_key,
    decode_frame,
    decode_header,
    is_payload_frame,
)

import backup_fixtures as fx


class SchemaTests(unittest.TestCase):
    def test_field_numbers(self):
        # The wire layout is fixed by existing backups
        fields = {f.name: f.number for f in schema.BackupFrame.DESCRIPTOR.fields}
        self.assertEqual(
            fields,
            {
                "header": 1,
                "statement": 2,
                "preference": 3,
                "attachment": 4,
                "version": 5,
                "end": 6,
                "avatar": 7,
                "sticker": 8,
                "keyValue": 9,
            },
        )
        self.assertEqual(fx.end_frame(), b"\x30\x01")
        self.assertEqual(fx.version_frame(3), b"\x2a\x02\x08\x03")


class DecodeFrameTests(unittest.TestCase):
    def test_header(self):
        frame = decode_frame(fx.header_frame(version=1))
        self.assertEqual(frame, Header(iv=fx.TEST_IV, salt=fx.TEST_SALT, version=1))
        self.assertIsNone(decode_frame(fx.header_frame()).version)

    def test_statement_parameters(self):
        frame = decode_frame(
            fx.statement_frame("INSERT INTO t VALUES (?, ?, ?, ?, ?, ?)", [None, 7, -3, 1.5, "txt", b"\x00\x01"])
        )
        self.assertIsInstance(frame, Statement)
        self.assertEqual([p.kind for p in frame.params], [PARAM_NULL, PARAM_INT, PARAM_INT, PARAM_REAL, PARAM_TEXT, PARAM_BLOB])
        self.assertEqual(frame.bind_values(), (None, 7, -3, 1.5, "txt", b"\x00\x01"))

    def test_parameter_without_value_is_rejected(self):
        stmt = schema.SqlStatement(statement="SELECT ?", parameters=[schema.SqlParameter()])
        with self.assertRaises(MalformedFrameError):
            decode_frame(schema.BackupFrame(statement=stmt).SerializeToString())
        both = schema.SqlParameter(stringParamter="a", blobParameter=b"b")
        stmt = schema.SqlStatement(statement="SELECT ?", parameters=[both])
        with self.assertRaises(MalformedFrameError):
            decode_frame(schema.BackupFrame(statement=stmt).SerializeToString())

    def test_preferences(self):
        plain = decode_frame(fx.preference_frame("prefs", "theme", "dark"))
        self.assertEqual(plain, Preference(file="prefs", key="theme", value="dark"))
        self.assertEqual(plain.resolved_value(), "dark")
        flag = decode_frame(fx.preference_frame("prefs", "enabled", boolean=False))
        self.assertIs(flag.resolved_value(), False)
        sset = decode_frame(fx.preference_frame("prefs", "set", string_set=["a", "b"]))
        self.assertEqual(sset.resolved_value(), ["a", "b"])

    def test_payload_frames(self):
        att = decode_frame(fx.attachment_frame(7, 1024, attachment_id=99))
        self.assertEqual(att, Attachment(row_id=7, attachment_id=99, length=1024))
        self.assertEqual(artifact_key(att), ("attachment", "7"))

        av = decode_frame(fx.avatar_frame("+15550000", 12))
        self.assertEqual(av, Avatar(name="+15550000", length=12))
        self.assertEqual(artifact_key(av), ("avatar", "+15550000"))
        av2 = decode_frame(fx.avatar_frame("+15550000", 12, recipient_id="42"))
        self.assertEqual(artifact_key(av2), ("avatar", "42"))

        st = decode_frame(fx.sticker_frame(3, 5))
        self.assertEqual(st, Sticker(row_id=3, length=5))
        for f in (att, av, st):
            self.assertTrue(is_payload_frame(f))
        self.assertFalse(is_payload_frame(End()))

    def test_key_values(self):
        cases = [("s", "v", "string"), ("b", True, "boolean"), ("l", -5, "long"), ("blob", b"\x01", "blob")]
        for key, value, kind in cases:
            with self.subTest(key=key):
                frame = decode_frame(fx.key_value_frame(key, value))
                self.assertEqual(frame, KeyValue(key=key, value=value, value_type=kind))
        negative_int = decode_frame(
            schema.BackupFrame(keyValue=schema.KeyValue(key="i", integerValue=-2)).SerializeToString()
        )
        self.assertEqual(negative_int, KeyValue(key="i", value=-2, value_type="integer"))
        fl = decode_frame(fx.key_value_frame("f", 0.5))
        self.assertAlmostEqual(fl.value, 0.5)

    def test_version_and_end(self):
        self.assertEqual(decode_frame(fx.version_frame(42)), DatabaseVersion(42))
        self.assertEqual(decode_frame(fx.end_frame()), End())

    def test_unknown_fields_are_ignored(self):
        # field 15, varint 1
        data = fx.version_frame(3) + b"\x78\x01"
        self.assertEqual(decode_frame(data), DatabaseVersion(3))

    def test_zero_or_multiple_payloads_rejected(self):
        with self.assertRaises(MalformedFrameError):
            decode_frame(b"")
        with self.assertRaises(MalformedFrameError):
            decode_frame(fx.version_frame(1) + fx.end_frame())
        with self.assertRaises(MalformedFrameError):
            decode_frame(fx.statement_frame("x") + fx.key_value_frame("k", "v"))

    def test_garbage_is_malformed(self):
        for bad in [b"\xff\xff\xff", b"\x12\x10abc", b"\x2a\x05\x08"]:
            with self.subTest(data=bad):
                with self.assertRaises(MalformedFrameError):
                    decode_frame(bad)

    def test_decode_header_checks(self):
        self.assertEqual(decode_header(fx.header_frame()).salt, fx.TEST_SALT)
        with self.assertRaises(OrderingError):
            decode_header(fx.end_frame())
        with self.assertRaises(MalformedFrameError):
            decode_header(fx.header_frame(iv=b"short"))
        with self.assertRaises(MalformedFrameError):
            decode_header(fx.header_frame(salt=b""))
        with self.assertRaises(MalformedFrameError):
            decode_header(fx.header_frame(version=7))


if __name__ == "__main__":
    unittest.main()
