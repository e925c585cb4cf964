#!/usr/bin/env python3
"""Command line interface for the EnergiaPro API.

Examples:
    energiapro installations 123456
    energiapro measurements 123456 5806.000 --from 2024-01-01 --to 2024-03-31 --format csv
"""
from __future__ import annotations
import argparse
import datetime as dt
import logging
import sys
from typing import BinaryIO, Iterable, List, Optional

from pydantic import ValidationError

from energiapro.client import (
    AuthError,
    EnergiaProClient,
    EnergiaProError,
    Installation,
    InvalidArgumentError,
    MalformedRecordError,
    Measurement,
    MeasurementScope,
    RecordPolicy,
    TransportError,
    WindowFailureError,
)
from energiapro.client.parsers import parse_date
from energiapro.client.transport import HTTPClient
from energiapro.config import get_settings
from energiapro.export import OutputFormat, create_encoder
from energiapro.utils.logging_config import configure_logging

LOGGER = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_USAGE = 2
EXIT_AUTH = 3
EXIT_TRANSPORT = 4
EXIT_PARTIAL = 5
EXIT_MALFORMED_RECORD = 6
EXIT_INTERRUPTED = 130


def _parse_date(value: str) -> dt.date:
    """Parse date string in YYYY-MM-DD format."""
    try:
        return parse_date("date", value)
    except InvalidArgumentError as exc:
        raise argparse.ArgumentTypeError(
            f"Invalid date '{value}'. Expected format: YYYY-MM-DD"
        ) from exc


def _positive_int(value: str) -> int:
    try:
        number = int(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"Invalid integer '{value}'") from exc
    if number < 1:
        raise argparse.ArgumentTypeError(f"Expected a positive integer, got {number}")
    return number


def _add_common_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--format",
        dest="output_format",
        choices=[fmt.value for fmt in OutputFormat],
        default=OutputFormat.TABLE.value,
        help="Output format written to stdout (default: table)",
    )
    parser.add_argument(
        "--on-malformed",
        choices=[policy.value for policy in RecordPolicy],
        default=RecordPolicy.ABORT.value,
        help="Abort on a malformed record, or skip it with a warning (default: abort)",
    )
    parser.add_argument("-u", "--username", help="Override ENERGIAPRO_USERNAME")
    parser.add_argument("-k", "--secret-key", help="Override ENERGIAPRO_SECRET_KEY")
    parser.add_argument("--base-url", help="Override ENERGIAPRO_BASE_URL")
    parser.add_argument(
        "--timeout",
        type=float,
        help="Per-request timeout in seconds (default: ENERGIAPRO_TIMEOUT or 30)",
    )
    parser.add_argument(
        "--log-level",
        default="info",
        choices=["debug", "info", "warning", "error"],
        help="Log level for messages on stderr (default: info)",
    )


def build_parser() -> argparse.ArgumentParser:
    """Build argument parser for the EnergiaPro CLI."""
    parser = argparse.ArgumentParser(
        prog="energiapro",
        description="Fetch installations and metering data from the EnergiaPro API.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    installations = subparsers.add_parser(
        "installations", help="List the installations of a client"
    )
    installations.add_argument("client_id", help="EnergiaPro client identifier")
    _add_common_arguments(installations)

    measurements = subparsers.add_parser(
        "measurements", help="Fetch measurements of one or more installations"
    )
    measurements.add_argument("client_id", help="EnergiaPro client identifier")
    measurements.add_argument(
        "installation_ids",
        nargs="+",
        metavar="installation_id",
        help="Installation identifier(s), e.g. 5806.000",
    )
    measurements.add_argument(
        "--from",
        dest="start",
        type=_parse_date,
        help="First day YYYY-MM-DD (inclusive)",
    )
    measurements.add_argument(
        "--to",
        dest="end",
        type=_parse_date,
        help="Last day YYYY-MM-DD (inclusive)",
    )
    measurements.add_argument(
        "--scope",
        choices=[scope.value for scope in MeasurementScope],
        default=MeasurementScope.LPN_JSON.value,
        help="Measurement representation (default: lpn-json)",
    )
    measurements.add_argument(
        "--max-workers",
        type=_positive_int,
        default=1,
        help="Installations fetched concurrently when a full range is given (default: 1)",
    )
    _add_common_arguments(measurements)
    return parser


def exit_code_for(exc: BaseException) -> int:
    """Map an exception raised while running a command to a process exit code."""
    if isinstance(exc, KeyboardInterrupt):
        return EXIT_INTERRUPTED
    if isinstance(exc, MalformedRecordError):
        return EXIT_MALFORMED_RECORD
    if isinstance(exc, WindowFailureError):
        return EXIT_PARTIAL
    if isinstance(exc, AuthError):
        return EXIT_AUTH
    if isinstance(exc, (InvalidArgumentError, ValidationError)):
        return EXIT_USAGE
    if isinstance(exc, TransportError):
        return EXIT_TRANSPORT
    return EXIT_FAILURE


def _build_client(args: argparse.Namespace, http_client: Optional[HTTPClient]) -> EnergiaProClient:
    settings = get_settings()
    username, secret_key = settings.require_credentials(args.username, args.secret_key)
    config = settings.to_client_config(base_url=args.base_url, timeout=args.timeout)
    return EnergiaProClient(username, secret_key, config=config, http_client=http_client)


def _measurement_stream(
    client: EnergiaProClient, args: argparse.Namespace, policy: RecordPolicy
) -> Iterable[Measurement]:
    measurements = client.measurements
    ids: List[str] = list(dict.fromkeys(args.installation_ids))
    has_range = args.start is not None and args.end is not None

    if has_range and len(ids) > 1 and args.max_workers > 1:
        results = measurements.for_installations(
            args.client_id, ids, args.start, args.end, args.scope,
            policy=policy, max_workers=args.max_workers,
        )
        for installation_id in ids:
            yield from results[installation_id]
        return

    for installation_id in ids:
        if has_range:
            yield from measurements.iter_range(
                args.client_id, installation_id, args.start, args.end, args.scope, policy=policy
            )
        else:
            yield from measurements.get(
                args.client_id, installation_id, args.scope, args.start, args.end, policy=policy
            )


def _run_command(
    args: argparse.Namespace, stdout: BinaryIO, http_client: Optional[HTTPClient]
) -> int:
    policy = RecordPolicy(args.on_malformed)
    with _build_client(args, http_client) as client:
        if args.command == "installations":
            with create_encoder(args.output_format, stdout, Installation) as encoder:
                encoder.write_all(client.installations.list(args.client_id, policy=policy))
        else:
            with create_encoder(args.output_format, stdout, Measurement) as encoder:
                encoder.write_all(_measurement_stream(client, args, policy))
        LOGGER.info("Wrote %d record(s) as %s", encoder.count, args.output_format)
    return EXIT_OK


def run_cli(
    argv: Optional[List[str]] = None,
    *,
    stdout: Optional[BinaryIO] = None,
    http_client: Optional[HTTPClient] = None,
) -> int:
    """Execute CLI with given arguments.

    Args:
        argv: Command-line arguments (uses sys.argv if None).
        stdout: Binary stream receiving the export (default: sys.stdout.buffer).
        http_client: HTTP client override, used by tests.

    Returns:
        Process exit code.
    """
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.log_level)
    stdout = stdout or sys.stdout.buffer

    try:
        return _run_command(args, stdout, http_client)
    except KeyboardInterrupt as e:
        LOGGER.error("Interrupted")
        return exit_code_for(e)
    except WindowFailureError as e:
        LOGGER.error(
            "Partial fetch: %d of %d window(s) completed; failed window %s: %s",
            e.completed_windows, e.total_windows, e.window, e,
        )
        return exit_code_for(e)
    except (EnergiaProError, ValidationError) as e:
        LOGGER.error("%s failed: %s", args.command, e)
        return exit_code_for(e)


def main() -> None:  # pragma: no cover - CLI entrypoint
    """CLI entry point."""
    sys.exit(run_cli())


if __name__ == "__main__":  # pragma: no cover - CLI execution path
    main()
