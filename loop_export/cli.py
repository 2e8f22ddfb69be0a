"""
Command line interface for rendering looping background clips.
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

import cv2
from dotenv import load_dotenv

from .config import ExportSettings, load_config, parse_byte_size, parse_frame_size
from .errors import BudgetUnmet, EncodeError, ExportCancelled, LoopExportError, ParameterError
from .exporter import LoopExporter
from .logging_setup import LOGGER_NAME, configure_logging
from .models import ExportJob, ExportResult
from .presets import PRESETS

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_USAGE = 2
EXIT_OVER_BUDGET = 3
EXIT_CANCELLED = 130


def _job_from_args(
    parser: argparse.ArgumentParser,
    settings: ExportSettings,
    args: argparse.Namespace,
) -> ExportJob:
    output_size = None
    if args.size:
        output_size = parse_frame_size(args.size, (0, 0))
        if output_size == (0, 0):
            parser.error(f"Invalid --size '{args.size}', expected WIDTHxHEIGHT.")

    budget = None
    if getattr(args, "budget", None):
        budget = parse_byte_size(args.budget, 0)
        if budget == 0:
            parser.error(f"Invalid --budget '{args.budget}', expected bytes such as 8MiB.")

    return settings.make_job(
        args.image,
        duration_seconds=args.duration,
        frame_rate=args.fps,
        output_size=output_size,
        size_budget_bytes=budget,
        preset=args.preset,
        seed=args.seed,
    )


def _log_report(result: ExportResult, output: Path) -> None:
    logger = logging.getLogger(LOGGER_NAME)
    for attempt in result.attempts:
        logger.info(
            "- %s (crf %s, %s): %.2f MiB%s",
            attempt.profile.name,
            attempt.profile.compression_level,
            attempt.profile.encoding_preset,
            attempt.size_bytes / (1024**2),
            "" if attempt.within_budget else " over budget",
        )
    logger.info(
        "Wrote %s (%.2f MiB, profile '%s', budget %.2f MiB)",
        output,
        result.size_bytes / (1024**2),
        result.profile.name,
        result.budget_bytes / (1024**2),
    )


def run_export(
    parser: argparse.ArgumentParser,
    settings: ExportSettings,
    args: argparse.Namespace,
) -> int:
    job = _job_from_args(parser, settings, args)
    exporter = LoopExporter(settings, logger=logging.getLogger(LOGGER_NAME))
    result = exporter.export(job)

    output = Path(args.output)
    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_bytes(result.artifact)
    _log_report(result, output)

    if args.strict_budget:
        result.raise_for_budget()
    return EXIT_OK


def run_preview(
    parser: argparse.ArgumentParser,
    settings: ExportSettings,
    args: argparse.Namespace,
) -> int:
    job = _job_from_args(parser, settings, args)
    exporter = LoopExporter(settings, logger=logging.getLogger(LOGGER_NAME))
    frame = exporter.preview_frame(job, args.timestamp)

    output = Path(args.output)
    output.parent.mkdir(parents=True, exist_ok=True)
    ok, encoded = cv2.imencode(".png", frame.pixels)
    if not ok:
        raise EncodeError(f"Failed to encode preview frame at {args.timestamp}s as PNG")
    output.write_bytes(encoded.tobytes())
    logging.getLogger(LOGGER_NAME).info(
        "Wrote preview of t=%.3fs (%sx%s) to %s",
        args.timestamp,
        frame.width,
        frame.height,
        output,
    )
    return EXIT_OK


def list_presets() -> int:
    width = max(len(name) for name in PRESETS)
    for name in sorted(PRESETS):
        print(f"{name.ljust(width)}  {PRESETS[name].description}")
    return EXIT_OK


def _add_job_arguments(subparser: argparse.ArgumentParser) -> None:
    subparser.add_argument("image", type=Path, help="Background image to animate.")
    subparser.add_argument("output", type=Path, help="Destination file.")
    subparser.add_argument(
        "--duration",
        type=float,
        help="Clip duration in seconds (default from config, 7.5).",
    )
    subparser.add_argument("--fps", type=float, help="Frame rate (default from config, 30).")
    subparser.add_argument("--size", help="Output size as WIDTHxHEIGHT (default 1080x1920).")
    subparser.add_argument(
        "--preset",
        choices=sorted(PRESETS),
        help="Effect preset to render (default from config).",
    )
    subparser.add_argument("--seed", type=int, help="Seed for noise and particle layout.")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Render a short looping clip from a still image and fit it to a size budget.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        help="JSON settings file (default: LOOP_EXPORT_* environment variables).",
    )
    parser.add_argument(
        "--log-file",
        type=Path,
        help="Also write logs to this file.",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable verbose logging.",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    export_parser = subparsers.add_parser(
        "export",
        help="Render, encode and budget-fit an MP4 clip.",
    )
    _add_job_arguments(export_parser)
    export_parser.add_argument(
        "--budget",
        help="Size budget, e.g. 8MiB or 8000000 (default from config, 8MiB).",
    )
    export_parser.add_argument(
        "--strict-budget",
        action="store_true",
        help="Exit with status 3 when no quality profile fits the budget.",
    )

    preview_parser = subparsers.add_parser(
        "preview",
        help="Render a single frame to a PNG file.",
    )
    _add_job_arguments(preview_parser)
    preview_parser.add_argument(
        "--timestamp",
        type=float,
        default=0.0,
        help="Time in seconds of the frame to render (default: 0).",
    )

    subparsers.add_parser("presets", help="List the built-in effect presets.")

    return parser


def main(argv: list[str] | None = None) -> int:
    load_dotenv()
    parser = build_parser()
    args = parser.parse_args(argv)

    settings = load_config(args.config)
    log_file = args.log_file or settings.log_file
    logger = configure_logging(verbose=args.verbose, log_file=log_file)
    logger.debug("Resolved settings: %s", settings)

    try:
        if args.command == "presets":
            return list_presets()
        if args.command == "export":
            return run_export(parser, settings, args)
        if args.command == "preview":
            return run_preview(parser, settings, args)
    except ParameterError as exc:
        logger.error("Invalid parameters: %s", exc)
        return EXIT_USAGE
    except BudgetUnmet as exc:
        logger.error("%s", exc)
        return EXIT_OVER_BUDGET
    except ExportCancelled as exc:
        logger.warning("Export cancelled: %s", exc)
        return EXIT_CANCELLED
    except LoopExportError as exc:
        logger.error("Export failed: %s", exc)
        return EXIT_FAILURE

    parser.error(f"Unhandled command: {args.command}")
    return EXIT_USAGE


if __name__ == "__main__":
    sys.exit(main())
