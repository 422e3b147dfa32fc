from __future__ import annotations

import logging
import os
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .constants import OUTPUT_RAW, OUTPUT_TYPES
from .errors import ConfigError
from .keys import normalize_passphrase
from .logutil import LOG_LEVELS


@dataclass
class DecodeConfig:
    input_path: Path
    output_path: Path
    passphrase: str
    output_type: str = OUTPUT_RAW
    verify_mac: bool = True
    in_memory_db: bool = True
    force_overwrite: bool = False
    strict: bool = False
    log_level: int = logging.INFO
    log_file: Optional[str] = None
    workers: int = 0

    def __repr__(self) -> str:
        # Keep the passphrase out of logs
        return (
            f"DecodeConfig(input_path={str(self.input_path)!r}, output_path={str(self.output_path)!r}, "
            f"output_type={self.output_type!r}, verify_mac={self.verify_mac}, in_memory_db={self.in_memory_db}, "
            f"force_overwrite={self.force_overwrite}, strict={self.strict}, workers={self.workers})"
        )


def read_password_file(path: str) -> str:
    try:
        with open(path, "r", encoding="utf-8") as fh:
            line = fh.readline()
    except OSError as exc:
        raise ConfigError(f"Unable to read password file {path}: {exc}") from exc
    line = line.rstrip("\r\n")
    if not line:
        raise ConfigError("Password file is empty")
    return line


def run_password_command(command: str) -> str:
    shell = os.environ.get("SHELL")
    if not shell:
        raise ConfigError("Could not determine current shell to run the password command")
    try:
        proc = subprocess.run([shell, "-c", command], stdout=subprocess.PIPE, stderr=subprocess.PIPE, check=False)
    except OSError as exc:
        raise ConfigError(f"Failed to execute password command: {exc}") from exc
    if proc.returncode != 0:
        raise ConfigError(f"Password command returned error code {proc.returncode}")
    try:
        out = proc.stdout.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise ConfigError("Password command returned invalid characters") from exc
    lines = out.splitlines()
    if not lines or not lines[0]:
        raise ConfigError("Password command returned an empty line")
    return lines[0]


def resolve_passphrase(
    password: Optional[str] = None,
    password_file: Optional[str] = None,
    password_command: Optional[str] = None,
) -> str:
    """Pick the passphrase from exactly one source and validate it."""
    given = [s for s in (password, password_file, password_command) if s is not None]
    if not given:
        raise ConfigError("No password provided")
    if len(given) > 1:
        raise ConfigError("Only one of --password, --password-file and --password-command may be given")
    if password is not None:
        value = password
    elif password_file is not None:
        value = read_password_file(password_file)
    else:
        value = run_password_command(password_command or "")
    normalize_passphrase(value)
    return value


def parse_log_level(name: Optional[str]) -> int:
    if name is None:
        return logging.INFO
    key = name.upper()
    if key == "WARN":
        key = "WARNING"
    try:
        return LOG_LEVELS[key]
    except KeyError:
        raise ConfigError(f"Unknown log level given: {name}") from None


def default_output_path(input_path: Path) -> Path:
    stem = input_path.stem
    if not stem:
        raise ConfigError("Could not determine output path from input file")
    return input_path.parent / stem


def build_config(args) -> DecodeConfig:
    """Turn parsed command-line arguments into a validated DecodeConfig."""
    input_path = Path(args.input)
    if not input_path.is_file():
        raise ConfigError(f"Input file not found: {input_path}")
    output_type = (args.output_type or OUTPUT_RAW).lower()
    if output_type not in OUTPUT_TYPES:
        raise ConfigError(f"Unknown output type given: {args.output_type}")
    if args.workers < 0:
        raise ConfigError("--workers must not be negative")
    passphrase = resolve_passphrase(args.password, args.password_file, args.password_command)
    output_path = Path(args.output_path) if args.output_path else default_output_path(input_path)
    return DecodeConfig(
        input_path=input_path,
        output_path=output_path,
        passphrase=passphrase,
        output_type=output_type,
        verify_mac=not args.no_verify_mac,
        in_memory_db=not args.no_in_memory_db,
        force_overwrite=args.force,
        strict=args.strict,
        log_level=parse_log_level(args.verbosity),
        log_file=args.log_file,
        workers=args.workers,
    )
