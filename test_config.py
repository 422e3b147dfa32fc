from __future__ import annotations

import logging
import os
import tempfile
import unittest
from pathlib import Path
from unittest import mock

from sigbackup.cli import _build_parser
from sigbackup.config import (
    build_config,
    default_output_path,
    parse_log_level,
    read_password_file,
    resolve_passphrase,
    run_password_command,
)
from sigbackup.errors import ConfigError
from sigbackup.logutil import setup_logger

from backup_fixtures import TEST_PASSPHRASE


class PasswordSourceTests(unittest.TestCase):
    def setUp(self):
        tmp = tempfile.TemporaryDirectory()
        self.addCleanup(tmp.cleanup)
        self.tmp = Path(tmp.name)

    def test_exactly_one_source(self):
        self.assertEqual(resolve_passphrase(TEST_PASSPHRASE), TEST_PASSPHRASE)
        with self.assertRaises(ConfigError):
            resolve_passphrase()
        with self.assertRaises(ConfigError):
            resolve_passphrase(TEST_PASSPHRASE, password_file="pw.txt")

    def test_password_file_first_line(self):
        pw = self.tmp / "pw.txt"
        pw.write_text(TEST_PASSPHRASE + "\r\nignored\n", encoding="utf-8")
        self.assertEqual(read_password_file(str(pw)), TEST_PASSPHRASE)
        self.assertEqual(resolve_passphrase(password_file=str(pw)), TEST_PASSPHRASE)

        empty = self.tmp / "empty.txt"
        empty.write_text("", encoding="utf-8")
        with self.assertRaises(ConfigError):
            read_password_file(str(empty))
        with self.assertRaises(ConfigError):
            read_password_file(str(self.tmp / "missing.txt"))

    def test_password_file_contents_are_validated(self):
        pw = self.tmp / "pw.txt"
        pw.write_text("not digits\n", encoding="utf-8")
        with self.assertRaises(ConfigError):
            resolve_passphrase(password_file=str(pw))

    def test_password_command(self):
        with mock.patch.dict(os.environ, {"SHELL": "/bin/sh"}):
            self.assertEqual(run_password_command(f"echo '{TEST_PASSPHRASE}'"), TEST_PASSPHRASE)
            with self.assertRaises(ConfigError):
                run_password_command("exit 3")
            with self.assertRaises(ConfigError):
                run_password_command("printf ''")
        with mock.patch.dict(os.environ, {"SHELL": ""}):
            with self.assertRaises(ConfigError):
                run_password_command("echo 1")


class ConfigTests(unittest.TestCase):
    def test_log_levels(self):
        self.assertEqual(parse_log_level(None), logging.INFO)
        self.assertEqual(parse_log_level("warn"), logging.WARNING)
        self.assertEqual(parse_log_level("DEBUG"), logging.DEBUG)
        with self.assertRaises(ConfigError):
            parse_log_level("loud")

    def test_default_output_path(self):
        self.assertEqual(default_output_path(Path("/data/signal-2024.backup")), Path("/data/signal-2024"))

    def test_build_config_from_arguments(self):
        with tempfile.NamedTemporaryFile(suffix=".backup") as fh:
            args = _build_parser().parse_args([fh.name, "-p", TEST_PASSPHRASE, "-t", "csv", "--no-verify-mac", "-j", "3"])
            config = build_config(args)
            self.assertEqual(config.output_type, "csv")
            self.assertFalse(config.verify_mac)
            self.assertTrue(config.in_memory_db)
            self.assertEqual(config.workers, 3)
            self.assertEqual(config.output_path, Path(fh.name).with_suffix(""))
            self.assertNotIn(TEST_PASSPHRASE, repr(config))

            args = _build_parser().parse_args([fh.name, "-p", TEST_PASSPHRASE, "-j", "-1"])
            with self.assertRaises(ConfigError):
                build_config(args)

    def test_setup_logger_replaces_handlers(self):
        with tempfile.TemporaryDirectory() as tmp:
            log_file = os.path.join(tmp, "logs", "decode.log")
            logger = setup_logger("sigbackup.test", log_file, logging.DEBUG)
            setup_logger("sigbackup.test", log_file, logging.DEBUG)
            self.assertEqual(len(logger.handlers), 2)
            logger.debug("hello")
            for h in logger.handlers:
                h.flush()
            with open(log_file, encoding="utf-8") as fh:
                self.assertIn("DEBUG - hello", fh.read())
            setup_logger("sigbackup.test", console=False)
            self.assertEqual(logger.handlers, [])


if __name__ == "__main__":
    unittest.main()
