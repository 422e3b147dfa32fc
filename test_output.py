from __future__ import annotations

import csv
import json
import sqlite3
import tempfile
import unittest
from pathlib import Path

from sigbackup.errors import ConfigError
from sigbackup.output import OutputDirectory, export_csv, user_tables
from sigbackup.reader import BackupReader, decode_backup

import backup_fixtures as fx


def _archive(path: Path) -> Path:
    b = fx.BackupBuilder()
    b.add_frame(fx.statement_frame("CREATE TABLE sms(_id INTEGER PRIMARY KEY, body TEXT)"))
    b.add_frame(fx.statement_frame("INSERT INTO sms VALUES(?, ?)", [1, "hi, there"]))
    b.add_frame(fx.statement_frame("CREATE TABLE sqlite_sequence(name,seq)"))
    b.add_attachment(3, b"\x89PNG")
    b.add_frame(fx.sticker_frame(4, 2)).add_payload(b"st")
    b.add_frame(fx.preference_frame("prefs", "tags", string_set=["a", "b"]))
    b.add_frame(fx.key_value_frame("blob", b"\x01\x02"))
    b.add_end()
    return b.write(path)


class OutputDirectoryTests(unittest.TestCase):
    def setUp(self):
        tmp = tempfile.TemporaryDirectory()
        self.addCleanup(tmp.cleanup)
        self.tmp = Path(tmp.name)
        self.backup = _archive(self.tmp / "test.backup")

    def decode_into(self, out: OutputDirectory):
        with out:
            with BackupReader(str(self.backup), backup_key=fx.TEST_BACKUP_KEY) as reader:
                summary = decode_backup(reader, out.engine())
            out.finalize()
        return summary

    def test_raw_layout(self):
        for in_memory in (True, False):
            with self.subTest(in_memory=in_memory):
                path = self.tmp / f"raw-{in_memory}"
                summary = self.decode_into(OutputDirectory(path, in_memory_db=in_memory))
                self.assertEqual(summary.statements_skipped, 1)
                conn = sqlite3.connect(str(path / "database.sqlite"))
                try:
                    self.assertEqual(conn.execute("SELECT body FROM sms").fetchall(), [("hi, there",)])
                finally:
                    conn.close()
                self.assertEqual((path / "attachments" / "3.bin").read_bytes(), b"\x89PNG")
                self.assertEqual((path / "stickers" / "4.bin").read_bytes(), b"st")
                self.assertTrue((path / "avatars").is_dir())
                self.assertFalse((path / "csv").exists())
                prefs = json.loads((path / "preferences.json").read_text(encoding="utf-8"))
                self.assertEqual(prefs["prefs"]["tags"], ["a", "b"])
                kv = json.loads((path / "key_value.json").read_text(encoding="utf-8"))
                self.assertEqual(kv["blob"], {"base64": "AQI="})

    def test_csv_layout(self):
        path = self.tmp / "csv"
        self.decode_into(OutputDirectory(path, output_type="csv", workers=2))
        with open(path / "csv" / "sms.csv", newline="", encoding="utf-8") as fh:
            self.assertEqual(list(csv.reader(fh)), [["_id", "body"], ["1", "hi, there"]])

    def test_none_writes_nothing(self):
        path = self.tmp / "none"
        out = OutputDirectory(path, output_type="none")
        summary = self.decode_into(out)
        self.assertFalse(path.exists())
        self.assertIsNone(out.connection)
        self.assertEqual(summary.artifacts_extracted, 2)

    def test_existing_output(self):
        path = self.tmp / "busy"
        path.mkdir()
        (path / "database.sqlite").write_bytes(b"stale")
        with self.assertRaises(ConfigError):
            OutputDirectory(path).prepare()
        self.decode_into(OutputDirectory(path, force_overwrite=True))
        conn = sqlite3.connect(str(path / "database.sqlite"))
        try:
            self.assertEqual(user_tables(conn), ["sms"])
        finally:
            conn.close()

        not_a_dir = self.tmp / "file"
        not_a_dir.write_text("x", encoding="utf-8")
        with self.assertRaises(ConfigError):
            OutputDirectory(not_a_dir, force_overwrite=True).prepare()
        with self.assertRaises(ConfigError):
            OutputDirectory(self.tmp / "x", output_type="xml")

    def test_engine_requires_prepare(self):
        with self.assertRaises(RuntimeError):
            OutputDirectory(self.tmp / "later").engine()


class ExportCsvTests(unittest.TestCase):
    def test_blobs_and_quoted_names(self):
        conn = sqlite3.connect(":memory:")
        self.addCleanup(conn.close)
        conn.execute('CREATE TABLE "odd name"(a BLOB, b REAL)')
        conn.execute('INSERT INTO "odd name" VALUES(?, ?)', (b"\xff", 1.5))
        conn.execute('INSERT INTO "odd name" VALUES(NULL, NULL)')
        with tempfile.TemporaryDirectory() as tmp:
            written = export_csv(conn, Path(tmp))
            self.assertEqual([p.name for p in written], ["odd name.csv"])
            with open(written[0], newline="", encoding="utf-8") as fh:
                rows = list(csv.reader(fh))
        self.assertEqual(rows, [["a", "b"], ["/w==", "1.5"], ["", ""]])


if __name__ == "__main__":
    unittest.main()
