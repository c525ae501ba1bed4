"""CLI entry point for autohdr.

Provides the ``autohdr`` console script with subcommands:

- ``analyze`` - Compute an HDR bracket and print it
- ``capture`` - Compute a bracket, capture it, optionally merge it

Both run against the digital twin camera; real tethering drivers plug
into ``autohdr.session.AutoHdrSession`` directly.

Usage::

    # Print the bracket for the simulated scene
    autohdr analyze --lower 2 --upper 2 --max-shots 8

    # Capture into ./shots and merge with luminance-hdr-cli
    autohdr capture --capture-folder shots --compose

Exit codes:
    0 success, 1 analysis failed, 2 capture failed, 3 composition failed.
"""

from __future__ import annotations

import argparse
import json
import sys
from collections.abc import Sequence
from pathlib import Path

from autohdr.capture.runner import CaptureOutcome
from autohdr.config import DEFAULT_EV_GAP, DEFAULT_SHOTS_PER_EV, AutoHdrConfig
from autohdr.drivers.cameras import DigitalTwinCamera, DigitalTwinConfig
from autohdr.errors import AutoHdrError, SequenceError
from autohdr.observability import configure_logging, get_logger
from autohdr.sequence.model import ShotParameters
from autohdr.session import AutoHdrSession

logger = get_logger(__name__)

# Constants
PROG_NAME = "autohdr"
DEFAULT_TIMEOUT_SECONDS = 60.0

EXIT_OK = 0
EXIT_ANALYSIS_FAILED = 1
EXIT_CAPTURE_FAILED = 2
EXIT_COMPOSITION_FAILED = 3


def _add_common_arguments(parser: argparse.ArgumentParser) -> None:
    """Options shared by every subcommand."""
    analysis = parser.add_argument_group("analysis")
    analysis.add_argument(
        "--lower",
        type=int,
        default=1,
        help="Over-exposed %% ending the lower search (1-100)",
    )
    analysis.add_argument(
        "--upper",
        type=int,
        default=1,
        help="Under-exposed %% ending the upper search (1-100)",
    )
    analysis.add_argument(
        "--max-shots",
        type=int,
        default=10,
        help="Maximum bracket size, boundaries included",
    )
    analysis.add_argument(
        "--white-threshold",
        type=int,
        default=254,
        help="Byte value from which a channel is over-exposed",
    )
    analysis.add_argument(
        "--black-threshold",
        type=int,
        default=5,
        help="Byte value up to which a channel is under-exposed",
    )
    analysis.add_argument(
        "--ev-gap",
        type=int,
        default=DEFAULT_EV_GAP,
        help="EV between consecutive shots",
    )
    analysis.add_argument(
        "--shots-per-ev",
        type=int,
        default=DEFAULT_SHOTS_PER_EV,
        help="Exposure-scale steps per EV",
    )
    analysis.add_argument(
        "--max-exposure",
        default=None,
        help="Longest exposure the upper search may use",
    )
    analysis.add_argument(
        "--timeout",
        type=float,
        default=DEFAULT_TIMEOUT_SECONDS,
        help="Seconds before the analysis is aborted",
    )

    twin = parser.add_argument_group("simulated camera")
    twin.add_argument(
        "--exposure",
        default="1/60",
        help="Start exposure of the simulated camera",
    )
    twin.add_argument(
        "--scene-stops",
        type=float,
        default=12.0,
        help="Dynamic range of the simulated scene in stops",
    )
    twin.add_argument(
        "--settle-frames",
        type=int,
        default=0,
        help="Stale previews after each exposure change",
    )

    output = parser.add_argument_group("output")
    output.add_argument(
        "--capture-folder",
        type=Path,
        default=None,
        help="Folder for captured shots (default: cwd)",
    )
    output.add_argument(
        "--composition-folder",
        type=Path,
        default=None,
        help="Folder for merge results (default: cwd)",
    )
    output.add_argument(
        "--json",
        dest="json_output",
        action="store_true",
        help="Print the bracket as a saved-sequence record",
    )

    logs = parser.add_argument_group("logging")
    logs.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Log level (default: WARNING)",
    )
    logs.add_argument(
        "--json-logs",
        action="store_true",
        help="Emit logs as JSON lines",
    )


def build_parser() -> argparse.ArgumentParser:
    """Create the argument parser with all subcommands."""
    parser = argparse.ArgumentParser(
        prog=PROG_NAME,
        description="AutoHDR - automatic exposure bracketing for tethered cameras",
    )
    subparsers = parser.add_subparsers(
        dest="command",
        required=True,
        help="Available commands",
    )

    analyze_parser = subparsers.add_parser(
        "analyze",
        help="Compute and print a bracket",
    )
    _add_common_arguments(analyze_parser)

    capture_parser = subparsers.add_parser(
        "capture",
        help="Compute and capture a bracket",
    )
    _add_common_arguments(capture_parser)
    capture_parser.add_argument(
        "--compose",
        action="store_true",
        help="Merge the captured shots afterwards",
    )
    capture_parser.add_argument(
        "--composer",
        default=None,
        help="HDR merge program (default: luminance-hdr-cli)",
    )
    return parser


def config_from_args(args: argparse.Namespace) -> AutoHdrConfig:
    """Build the configuration, command-line flags overriding defaults.

    Raises:
        ValueError: If a threshold or the gap is out of range.
    """
    config = AutoHdrConfig(
        white_threshold=args.white_threshold,
        black_threshold=args.black_threshold,
        ev_gap=args.ev_gap,
        shots_per_ev=args.shots_per_ev,
        lower=args.lower,
        upper=args.upper,
        max_shots=args.max_shots,
        max_exposure=args.max_exposure,
    )
    if args.capture_folder is not None:
        config.capture_folder = args.capture_folder
    if args.composition_folder is not None:
        config.composition_folder = args.composition_folder
    if getattr(args, "composer", None):
        config.composer_program = args.composer
    return config


def _format_shot(index: int, shot: ShotParameters) -> str:
    aperture = f"f/{shot.aperture}" if shot.aperture else "manual"
    line = f"{index:3d}  ISO {shot.iso:<6} {aperture:<8} {shot.exposure}"
    if shot.path is not None:
        line += f"  {shot.path}"
    return line


def _print_bracket(session: AutoHdrSession, json_output: bool) -> None:
    if json_output:
        print(json.dumps(session.to_record().to_dict(), indent=2))
        return
    for index, shot in enumerate(session.shots):
        print(_format_shot(index, shot))


def _run(args: argparse.Namespace) -> int:
    config = config_from_args(args)
    driver = DigitalTwinCamera(
        DigitalTwinConfig(
            exposure=args.exposure,
            scene_stops=args.scene_stops,
            settle_frames=args.settle_frames,
        )
    )

    with AutoHdrSession(driver, config) as session:
        try:
            session.analyze(timeout=args.timeout)
        except SequenceError as e:
            print(f"Analysis failed: {e}", file=sys.stderr)
            return EXIT_ANALYSIS_FAILED

        if args.command == "analyze":
            _print_bracket(session, args.json_output)
            return EXIT_OK

        report = session.capture()
        _print_bracket(session, args.json_output)
        if report.outcome is not CaptureOutcome.COMPLETED:
            print(f"Capture {report.outcome.value}: {report.error}", file=sys.stderr)
            return EXIT_CAPTURE_FAILED

        if args.compose:
            result = session.compose()
            if not result.succeeded:
                print(
                    f"Composition {result.outcome.value}: {result.message}",
                    file=sys.stderr,
                )
                return EXIT_COMPOSITION_FAILED
            print(f"HDR: {config.hdr_path}")
            print(f"LDR: {config.ldr_path}")
    return EXIT_OK


def main(argv: Sequence[str] | None = None) -> int:
    """Main CLI entry point for autohdr.

    Args:
        argv: Arguments without the program name (default: sys.argv[1:]).

    Returns:
        Exit code (see module docstring).

    Raises:
        SystemExit: On --help or argument parsing errors.
    """
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(level=args.log_level, json_format=args.json_logs, force=True)

    try:
        return _run(args)
    except ValueError as e:
        parser.error(str(e))
    except AutoHdrError as e:
        logger.error("Command failed", command=args.command, error=str(e))
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_ANALYSIS_FAILED


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
