"""Conduit maintenance CLI.

Usage:
    python -m conduit encrypt < plaintext
    python -m conduit decrypt < ciphertext
    python -m conduit cache-clear --db PATH
    python -m conduit check --url URL [--endpoint PATH] [--timeout SECONDS]

encrypt/decrypt read one value from stdin (trailing newline stripped) and use
CONDUIT_ENCRYPTION_KEY.

Exit codes:
    0: Success / connection OK
    1: Failure (decryption failed, connection failed, internal error)
    2: Usage or configuration error
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from typing import Any

from conduit.cache.persistence import SqliteCacheMirror
from conduit.datasources.connectors.registry import ConnectorOptions
from conduit.datasources.manager import ConnectorManager
from conduit.datasources.models import ConnectionCandidate
from conduit.errors import CacheIOError, ConfigurationError, DecryptionError
from conduit.security.vault import CredentialVault

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_USAGE = 2


def _output_json(data: dict[str, Any]) -> None:
    """Output JSON to stdout with deterministic ordering."""
    print(json.dumps(data, sort_keys=True, indent=2))


def _error(message: str) -> None:
    print(f"error: {message}", file=sys.stderr)


def _read_stdin_value() -> str | None:
    value = sys.stdin.read().rstrip("\r\n")
    return value or None


def cmd_encrypt(args: argparse.Namespace) -> int:
    value = _read_stdin_value()
    if value is None:
        _error("Empty input")
        return EXIT_USAGE
    print(CredentialVault.from_env().encrypt(value))
    return EXIT_OK


def cmd_decrypt(args: argparse.Namespace) -> int:
    value = _read_stdin_value()
    if value is None:
        _error("Empty input")
        return EXIT_USAGE
    try:
        print(CredentialVault.from_env().decrypt(value.strip()))
    except DecryptionError as e:
        _error(e.message)
        return EXIT_FAILURE
    return EXIT_OK


def cmd_cache_clear(args: argparse.Namespace) -> int:
    mirror = SqliteCacheMirror(args.db)
    try:
        mirror.clear()
    except CacheIOError as e:
        _error(e.message)
        return EXIT_FAILURE
    finally:
        mirror.close()
    print(f"Cleared cache mirror {args.db}")
    return EXIT_OK


async def _run_check(args: argparse.Namespace) -> dict[str, Any]:
    manager = ConnectorManager(options=ConnectorOptions(health_timeout=args.timeout))
    try:
        result = await manager.test_connection(
            ConnectionCandidate(base_url=args.url, health_check_endpoint=args.endpoint)
        )
    finally:
        await manager.aclose()
    return result.model_dump(mode="json")


def cmd_check(args: argparse.Namespace) -> int:
    result = asyncio.run(_run_check(args))
    _output_json(result)
    return EXIT_OK if result["success"] else EXIT_FAILURE


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="conduit",
        description="Conduit maintenance commands",
    )
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    subparsers.add_parser("encrypt", help="Encrypt a value read from stdin")
    subparsers.add_parser("decrypt", help="Decrypt a value read from stdin")

    cache_parser = subparsers.add_parser("cache-clear", help="Wipe the cache persistence mirror")
    cache_parser.add_argument("--db", required=True, metavar="PATH", help="SQLite mirror path")

    check_parser = subparsers.add_parser("check", help="Test connectivity to a REST endpoint")
    check_parser.add_argument("--url", required=True, help="Base URL")
    check_parser.add_argument("--endpoint", default=None, help="Health-check endpoint path")
    check_parser.add_argument(
        "--timeout", type=float, default=10.0, metavar="SECONDS", help="Health check timeout"
    )

    return parser


COMMANDS = {
    "encrypt": cmd_encrypt,
    "decrypt": cmd_decrypt,
    "cache-clear": cmd_cache_clear,
    "check": cmd_check,
}


def main(argv: list[str] | None = None) -> int:
    """Main entry point.

    Exit codes:
        0: Success
        1: Failure / internal error
        2: Usage or configuration error
    """
    parser = create_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return EXIT_USAGE

    try:
        return COMMANDS[args.command](args)
    except ConfigurationError as e:
        _error(e.message)
        return EXIT_USAGE
    except Exception as e:
        # Fail-closed: unexpected errors return exit code 1
        logger.debug("Command %s failed", args.command, exc_info=True)
        _error(str(e))
        return EXIT_FAILURE


if __name__ == "__main__":
    sys.exit(main())
