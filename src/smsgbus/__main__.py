"""CLI entrypoint for smsgbus tooling."""

from __future__ import annotations

import argparse
import asyncio
from collections.abc import Sequence
from importlib import metadata
import json
from pathlib import Path

from pydantic import ValidationError

from .bus import get_bus
from .config import LoadTestOptions, load_config
from .exceptions import InvalidArgumentError, ModuleLoadError
from .loadtest import LoadTester, render_results
from .logging_utils import configure_logging
from .modules import ModuleHost


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="smsgbus",
        description="smsgbus - in-process broadcast and call message bus",
    )
    parser.add_argument(
        "--version",
        action="store_true",
        help="Print version and exit",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to a TOML config file",
    )
    subparsers = parser.add_subparsers(dest="command")

    loadtest = subparsers.add_parser("loadtest", help="Ramp traffic through the bus")
    loadtest.add_argument("--mode", choices=["broadcast", "call", "mixed"])
    loadtest.add_argument("--initial-rps", type=int)
    loadtest.add_argument("--max-rps", type=int)
    loadtest.add_argument("--duration", type=float, help="Seconds per ramp step")

    check = subparsers.add_parser("check", help="Show how a topic is bound")
    check.add_argument("topic")
    check.add_argument(
        "--module",
        dest="modules",
        action="append",
        default=[],
        metavar="PACKAGE.MODULE:CLASS",
        help="Load a bus module before checking (repeatable)",
    )
    return parser


def _loadtest_options(config: dict, args: argparse.Namespace) -> LoadTestOptions:
    data = dict(config["loadtest"])
    overrides = {
        "mode": args.mode,
        "initial_rps": args.initial_rps,
        "max_rps": args.max_rps,
        "step_duration_seconds": args.duration,
    }
    data.update({key: value for key, value in overrides.items() if value is not None})
    return LoadTestOptions.model_validate(data)


async def _run_loadtest(options: LoadTestOptions) -> None:
    tester = LoadTester(options)
    try:
        results = await tester.run()
    finally:
        tester.close()
    render_results(results)


def main(argv: Sequence[str] | None = None) -> None:
    """Load configuration, set up logging and run the requested command."""

    parser = _build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)

    if args.version:
        try:
            version = metadata.version("smsgbus")
        except metadata.PackageNotFoundError:
            version = "0.0.0"
        print(f"smsgbus {version}")
        return

    config = load_config(config_path=args.config)
    configure_logging(config["logging"])

    if args.command == "loadtest":
        try:
            options = _loadtest_options(config, args)
        except ValidationError as exc:
            parser.error(str(exc))
        asyncio.run(_run_loadtest(options))
    elif args.command == "check":
        host = ModuleHost()
        try:
            for target in args.modules:
                host.load_from_path(target)
            status = get_bus().check(args.topic)
        except (InvalidArgumentError, ModuleLoadError) as exc:
            parser.error(str(exc))
        finally:
            host.unload_all()
        print(json.dumps(status.as_dict()))
    else:
        parser.print_help()


if __name__ == "__main__":
    main()
