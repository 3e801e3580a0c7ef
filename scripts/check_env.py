"""Verify that a deployment's environment file can drive the scheduler.

Checks performed:

1. ``AppSettings`` loads from the given ``.env`` (Slack client credentials,
   redirect URI, scheduler knobs).
2. Warnings for settings that fall back to the Slack client secret
   (token encryption, session signing), since rotating that secret would
   make stored tokens unreadable.
3. Optionally, a SHA256 baseline of the file so unexpected edits are caught::

    python -m scripts.check_env record --env-file /opt/slackconnect/.env \
        --hash-file /opt/slackconnect/.env.sha256
    python -m scripts.check_env verify --env-file /opt/slackconnect/.env \
        --hash-file /opt/slackconnect/.env.sha256
"""

from __future__ import annotations

import argparse
import hashlib
import sys
from pathlib import Path

from pydantic import ValidationError

from slackconnect.core.config import AppSettings, _load_env_file

EXIT_OK = 0
EXIT_VALIDATION_ERROR = 2
EXIT_CHECKSUM_ERROR = 3
EXIT_RUNTIME_ERROR = 5


def _checksum(env_file: Path) -> str:
    return hashlib.sha256(env_file.read_bytes()).hexdigest()


def load_settings(env_file: Path) -> AppSettings:
    """Load settings with ``env_file`` taking effect for unset variables."""
    _load_env_file(str(env_file))
    return AppSettings(_env_file=str(env_file))  # type: ignore[call-arg]


def settings_warnings(settings: AppSettings) -> list[str]:
    warnings: list[str] = []
    if not settings.security.token_encryption_secret:
        warnings.append(
            "TOKEN_ENCRYPTION_SECRET is unset; stored tokens are keyed on SLACK_CLIENT_SECRET."
        )
    if not settings.security.session_secret:
        warnings.append("SESSION_SECRET is unset; session tokens are signed with SLACK_CLIENT_SECRET.")
    if settings.scheduler.delivery_mode == "remote":
        warnings.append(
            "SCHEDULE_DELIVERY_MODE=remote: Slack delivers scheduled messages and "
            "delivery failures will not be visible locally."
        )
    return warnings


def _compare_checksum(env_file: Path, hash_file: Path) -> int:
    if not hash_file.exists():
        print(
            f"Checksum baseline {hash_file} is missing; run 'record' first.",
            file=sys.stderr,
        )
        return EXIT_RUNTIME_ERROR
    expected = hash_file.read_text(encoding="utf-8").strip()
    actual = _checksum(env_file)
    if expected != actual:
        print(
            f"Environment checksum mismatch!\n  expected: {expected}\n  actual:   {actual}",
            file=sys.stderr,
        )
        return EXIT_CHECKSUM_ERROR
    print("Environment checksum OK.")
    return EXIT_OK


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Validate scheduler settings and detect .env drift."
    )
    parser.add_argument(
        "command",
        choices=("check", "record", "verify"),
        help="check: validate only; record: validate and store checksum; "
        "verify: validate and compare against the stored checksum.",
    )
    parser.add_argument("--env-file", default=".env", type=Path)
    parser.add_argument("--hash-file", type=Path)
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    env_file: Path = args.env_file

    if args.command != "check" and args.hash_file is None:
        parser.error(f"--hash-file is required for '{args.command}'")

    if not env_file.exists():
        print(f"Environment file {env_file} does not exist.", file=sys.stderr)
        return EXIT_RUNTIME_ERROR

    try:
        settings = load_settings(env_file)
    except ValidationError as exc:
        print(
            "Settings validation failed. Missing or invalid values detected:\n"
            f"{exc.json(indent=2)}",
            file=sys.stderr,
        )
        return EXIT_VALIDATION_ERROR

    for warning in settings_warnings(settings):
        print(f"warning: {warning}", file=sys.stderr)

    if args.command == "record":
        checksum = _checksum(env_file)
        args.hash_file.write_text(f"{checksum}\n", encoding="utf-8")
        print(f"Recorded checksum to {args.hash_file} ({checksum})")
        return EXIT_OK
    if args.command == "verify":
        return _compare_checksum(env_file, args.hash_file)
    print("Settings OK.")
    return EXIT_OK


if __name__ == "__main__":  # pragma: no cover - script entry point
    sys.exit(main())
