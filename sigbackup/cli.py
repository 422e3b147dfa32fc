from __future__ import annotations

import argparse
import logging
import signal
import sys
import threading
from typing import List, Optional

from sigbackup import __version__
from sigbackup.config import DecodeConfig, build_config
from sigbackup.constants import OUTPUT_TYPES
from sigbackup.errors import (
    AuthenticationError,
    BackupIOError,
    ConfigError,
    DecodeCancelled,
    MalformedFrameError,
    OrderingError,
    ReconstructionError,
    SignalBackupError,
)
from sigbackup.logutil import setup_logger
from sigbackup.output import OutputDirectory
from sigbackup.reader import BackupReader, decode_backup
from sigbackup.reconstruct import DecodeSummary


logger = logging.getLogger("sigbackup.cli")

EXIT_OK = 0
EXIT_DECODE = 1
EXIT_CONFIG = 2
EXIT_IO = 3
EXIT_CANCELLED = 130


def cmd_decode(config: DecodeConfig, *, cancel: Optional[threading.Event] = None) -> DecodeSummary:
    """Decode one backup file into ``config.output_path``.

    Args:
        config: Validated decode configuration.
        cancel: Optional event; setting it stops the decode at the next frame boundary.

    Returns:
        The decode summary, including any statement warnings.
    """
    logger.info("Input file: %s", config.input_path)
    reader = BackupReader(str(config.input_path), config.passphrase, verify_mac=config.verify_mac)
    if not config.verify_mac:
        logger.warning("MAC verification disabled; corrupted frames will not be detected")
    with OutputDirectory(
        config.output_path,
        output_type=config.output_type,
        in_memory_db=config.in_memory_db,
        force_overwrite=config.force_overwrite,
        workers=config.workers,
    ) as out:
        with reader:
            summary = decode_backup(reader, out.engine(strict=config.strict), cancel=cancel)
        out.finalize()
    if not summary.ended:
        logger.warning("Backup had no end frame; it may be truncated")
    return summary


def _print_summary(summary: DecodeSummary) -> None:
    print(f"Frames:      {summary.frames}")
    print(f"Statements:  {summary.statements_applied} applied, {summary.statements_warned} failed, {summary.statements_skipped} skipped")
    print(f"Artifacts:   {summary.artifacts_extracted} ({summary.artifact_bytes} bytes)")
    print(f"Preferences: {summary.preferences}")
    print(f"Key-values:  {summary.key_values}")
    if summary.database_version is not None:
        print(f"DB version:  {summary.database_version}")
    print(f"Processed:   {summary.bytes_processed} bytes")


def _build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="sigbackup",
        description="Decrypt a Signal for Android backup into a database and attachment files",
    )
    ap.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    ap.add_argument("input", help="Backup file to decode")
    ap.add_argument("-o", "--output-path", help="Directory to save output to (default: input file name without extension)")
    ap.add_argument(
        "-t",
        "--output-type",
        type=str.lower,
        choices=list(OUTPUT_TYPES),
        default="raw",
        help="Output type: raw (database, json, files), csv (raw plus one CSV per table) or none (verify only)",
    )
    ap.add_argument("-v", "--verbosity", help="Log level: DEBUG, INFO, WARN or ERROR (default INFO)")
    ap.add_argument("--log-file", help="Also write log output to this file")
    ap.add_argument("-f", "--force", action="store_true", help="Overwrite existing output files")
    ap.add_argument("--no-verify-mac", action="store_true", help="Do not verify the HMAC of each frame")
    ap.add_argument(
        "--no-in-memory-db",
        action="store_true",
        help="Write the database directly to disk instead of building it in memory first",
    )
    ap.add_argument("--strict", action="store_true", help="Abort on the first SQL statement that fails to apply")
    ap.add_argument("-j", "--workers", type=int, default=0, help="Background threads for writing attachments (default 0)")
    pw = ap.add_mutually_exclusive_group()
    pw.add_argument("-p", "--password", help="Backup passphrase (30 digits, with or without spaces)")
    pw.add_argument("--password-file", help="File to read the backup passphrase from (first line)")
    pw.add_argument("--password-command", help="Read the backup passphrase from the output of COMMAND")
    return ap


def main(argv: List[str] | None = None):
    ap = _build_parser()
    args = ap.parse_args(argv)

    try:
        config = build_config(args)
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(EXIT_CONFIG)

    setup_logger("sigbackup", config.log_file, config.log_level)

    cancel = threading.Event()
    previous_handler = None
    if threading.current_thread() is threading.main_thread():
        def _on_interrupt(signum, frame):
            logger.warning("Interrupt received; stopping after the current frame")
            cancel.set()

        previous_handler = signal.signal(signal.SIGINT, _on_interrupt)

    try:
        summary = cmd_decode(config, cancel=cancel)
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(EXIT_CONFIG)
    except DecodeCancelled as e:
        print(f"Cancelled: {e}", file=sys.stderr)
        sys.exit(EXIT_CANCELLED)
    except (AuthenticationError, MalformedFrameError, OrderingError, ReconstructionError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(EXIT_DECODE)
    except BackupIOError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(EXIT_IO)
    except SignalBackupError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(EXIT_DECODE)
    except OSError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(EXIT_IO)
    finally:
        if previous_handler is not None:
            signal.signal(signal.SIGINT, previous_handler)

    _print_summary(summary)
    sys.exit(EXIT_OK)


if __name__ == "__main__":
    main()
