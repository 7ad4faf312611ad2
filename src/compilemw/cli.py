"""Command-line interface for compilemw."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
from pathlib import Path
from typing import Any

from compilemw import __version__
from compilemw.backends.registry import BackendRegistry, default_registry
from compilemw.dispatcher import DispatchResult, RequestDispatcher
from compilemw.doctor import run_doctor
from compilemw.errors import ConfigurationError
from compilemw.logging_utils import LogOptions, configure_logging
from compilemw.settings import (
    CompilerSettings,
    load_settings,
    normalize_settings,
    settings_path_from_env,
)

LOGGER = logging.getLogger("compilemw.cli")


def _parse_root(value: str) -> list[str]:
    """Parse a ``SRC:DEST`` (or ``SRC``) root argument."""
    if ":" in value:
        src, dest = value.split(":", 1)
        return [src, dest or src]
    return [value, value]


def _add_settings_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--config", help="Path to a JSON settings file.")
    parser.add_argument(
        "--enabled",
        action="append",
        help="Backend id to enable (repeatable, in order).",
    )
    parser.add_argument(
        "--root",
        action="append",
        help="Source/destination root as SRC:DEST (repeatable, in order).",
    )
    parser.add_argument("--mount", help="Path prefix to strip before matching.")
    parser.add_argument("--delta", type=float, help="Staleness tolerance in seconds.")
    parser.add_argument(
        "--expires",
        type=float,
        help="Force rebuilds of artifacts older than this many milliseconds.",
    )
    parser.add_argument(
        "--cascade",
        action="store_true",
        default=None,
        help="Run every matching backend instead of stopping at the first success.",
    )
    parser.add_argument(
        "--no-create-dirs",
        dest="create_dirs",
        action="store_false",
        default=None,
        help="Do not create missing destination directories.",
    )
    parser.add_argument(
        "--external-timeout",
        type=float,
        help="Timeout for external compilers in milliseconds.",
    )


def _add_compile_parser(subparsers: argparse._SubParsersAction) -> None:
    """Register the compile subcommand."""
    compile_parser = subparsers.add_parser(
        "compile",
        help="Compile stale artifacts for request paths, as the middleware would.",
    )
    compile_parser.add_argument("paths", nargs="+", help="Request paths (e.g. /app.js).")
    compile_parser.add_argument("--method", default="GET", help="Request method to simulate.")
    compile_parser.add_argument(
        "--json",
        action="store_true",
        help="Print a JSON summary of each dispatch.",
    )
    _add_settings_arguments(compile_parser)


def _add_backends_parser(subparsers: argparse._SubParsersAction) -> None:
    """Register the backends subcommand."""
    backends = subparsers.add_parser("backends", help="List registered backends.")
    backends.add_argument("--config", help="Path to a JSON settings file.")


def _add_doctor_parser(subparsers: argparse._SubParsersAction) -> None:
    """Register the doctor subcommand."""
    doctor = subparsers.add_parser("doctor", help="Check dependencies and compiler executables.")
    _add_settings_arguments(doctor)


def _add_version_parser(subparsers: argparse._SubParsersAction) -> None:
    """Register the version subcommand."""
    subparsers.add_parser("version", help="Print the current version.")


def _settings_payload(args: argparse.Namespace) -> dict[str, Any]:
    """Collect settings overrides given on the command line."""
    payload: dict[str, Any] = {}
    if getattr(args, "enabled", None):
        payload["enabled"] = args.enabled
    if getattr(args, "root", None):
        payload["roots"] = [_parse_root(value) for value in args.root]
    for key in ("mount", "delta", "expires", "cascade", "create_dirs", "external_timeout"):
        value = getattr(args, key, None)
        if value is not None:
            payload[key] = value
    return payload


def _load_settings(args: argparse.Namespace) -> CompilerSettings:
    """Load the settings file (if any) and apply command-line overrides."""
    config_value = getattr(args, "config", None)
    config_path = Path(config_value) if config_value else settings_path_from_env()
    overrides = _settings_payload(args)
    if config_path is not None:
        settings = load_settings(config_path)
        if not overrides:
            return settings
        payload = settings.as_dict()
        payload.update(overrides)
        return normalize_settings(payload)
    return normalize_settings(overrides)


def _summary(result: DispatchResult) -> dict[str, Any]:
    return {
        "path": result.path,
        "passthrough": result.passthrough,
        "matches": result.matches,
        "results": [
            {
                "backend": item.backend_id,
                "outcome": item.outcome.value,
                "state": item.state.value,
                "source": str(item.artifact.source_path) if item.artifact.source_path else None,
                "destination": str(item.artifact.destination_path)
                if item.artifact.destination_path
                else None,
                "error": str(item.error) if item.error and not item.error.soft else None,
            }
            for item in result.results
        ],
    }


async def _compile_paths(
    dispatcher: RequestDispatcher,
    method: str,
    paths: list[str],
) -> list[DispatchResult]:
    results = []
    for path in paths:
        results.append(await dispatcher.handle(method, path))
    return results


def _run_compile(args: argparse.Namespace) -> int:
    settings = _load_settings(args)
    registry = default_registry(settings)
    dispatcher = RequestDispatcher(settings, registry)
    results = asyncio.run(_compile_paths(dispatcher, args.method, args.paths))
    if args.json:
        print(json.dumps([_summary(result) for result in results], indent=2))
    exit_code = 0
    for path, result in zip(args.paths, results):
        if result.passthrough:
            LOGGER.info("%s: passed through", path)
            continue
        for item in result.results:
            LOGGER.info("%s: %s -> %s", result.path, item.backend_id, item.outcome.value)
        if result.errors:
            exit_code = 1
            for item in result.errors:
                LOGGER.error("Compile error: %s", item.error)
    return exit_code


def _run_backends(args: argparse.Namespace) -> int:
    config_value = getattr(args, "config", None)
    config_path = Path(config_value) if config_value else settings_path_from_env()
    registry: BackendRegistry
    if config_path is not None:
        registry = default_registry(load_settings(config_path))
    else:
        registry = default_registry()
    for backend in registry:
        spec = backend.spec()
        wraps = f" (wraps {spec.wraps})" if spec.wraps else ""
        dest = f" -> {spec.dest_ext}" if spec.dest_ext else ""
        print(f"{spec.id}\t{spec.match.pattern}\t{spec.ext}{dest}{wraps}")
    return 0


def _run_doctor(args: argparse.Namespace) -> int:
    enabled: tuple[str, ...] | None = None
    if args.config or args.enabled or settings_path_from_env():
        settings = _load_settings(args)
        registry = default_registry(settings)
        enabled = settings.enabled
    else:
        registry = default_registry()
    results = run_doctor(registry, enabled)
    for result in results:
        LOGGER.info("%s: %s - %s", result.name, result.status, result.detail)
    if any(result.status == "error" for result in results):
        return 1
    return 0


def main(argv: list[str] | None = None) -> int:
    """Run the CLI entrypoint and return an exit code."""
    parser = argparse.ArgumentParser(
        prog="compilemw",
        description="compilemw on-demand, cache-aware compiler",
    )
    parser.add_argument("--version", action="version", version=__version__)
    parser.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Increase log verbosity (repeatable).",
    )
    parser.add_argument(
        "--quiet",
        action="store_true",
        help="Reduce log output to warnings and errors.",
    )
    parser.add_argument(
        "--log-json",
        action="store_true",
        help="Emit logs as JSON on stderr.",
    )
    parser.add_argument(
        "--log-file",
        help="Optional path for JSON log output.",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)
    _add_compile_parser(subparsers)
    _add_backends_parser(subparsers)
    _add_doctor_parser(subparsers)
    _add_version_parser(subparsers)

    args = parser.parse_args(argv)
    log_file_value = getattr(args, "log_file", None)
    log_options = LogOptions(
        verbose=getattr(args, "verbose", 0) or 0,
        quiet=bool(getattr(args, "quiet", False)),
        log_file=Path(log_file_value) if log_file_value else None,
        json_console=bool(getattr(args, "log_json", False)),
    )
    configure_logging(log_options)

    if args.command == "version":
        print(__version__)
        return 0
    try:
        if args.command == "compile":
            return _run_compile(args)
        if args.command == "backends":
            return _run_backends(args)
        if args.command == "doctor":
            return _run_doctor(args)
    except ConfigurationError as exc:
        LOGGER.error("Configuration error: %s", exc)
        return 2
    parser.error(f"Unknown command: {args.command}")
    return 2

