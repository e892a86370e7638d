"""Command-line entry point.

Usage::

    python -m mboxpdf convert mail.mbox -o mail.pdf
    python -m mboxpdf convert a.mbox b.mbx -o out.zip --separate --name-components subject,date
    python -m mboxpdf inspect mail.mbox

Options not given on the command line fall back to ``MBOXPDF_*``
environment variables.  Logs go to stderr; the JSON summary goes to stdout.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from collections.abc import Sequence
from typing import Any

import structlog

from .config import ComponentKind, ConversionSettings, NamingComponent
from .errors import ConversionCancelled, MboxPdfError
from .logging import setup_logging
from .models import ConversionStatus, ConversionSummary
from .pipeline import ConversionJob
from .shutdown import CancellationToken, install_signal_handlers

logger = structlog.get_logger()

EXIT_CODES = {
    ConversionStatus.SUCCESS: 0,
    ConversionStatus.FAILED: 1,
    ConversionStatus.PARTIAL: 2,
    ConversionStatus.CANCELLED: 130,
}


def parse_selection(text: str) -> set[int]:
    """``"1,3-5"`` → ``{1, 3, 4, 5}``."""
    selected: set[int] = set()
    for item in text.split(","):
        item = item.strip()
        if not item:
            continue
        try:
            if "-" in item:
                low, high = (int(part) for part in item.split("-", 1))
                if low > high:
                    raise ValueError(item)
                selected.update(range(low, high + 1))
            else:
                selected.add(int(item))
        except ValueError:
            raise argparse.ArgumentTypeError(f"invalid selection: {item!r}") from None
    if not selected or min(selected) < 1:
        raise argparse.ArgumentTypeError("selection must name emails numbered from 1")
    return selected


def parse_components(text: str) -> list[NamingComponent]:
    """Enabled components in the given order; the rest follow, disabled."""
    by_name = {kind.value.lower(): kind for kind in ComponentKind}
    chosen: list[ComponentKind] = []
    for item in text.split(","):
        name = item.strip().lower()
        if not name:
            continue
        if name not in by_name:
            raise argparse.ArgumentTypeError(
                f"unknown filename component {item!r} (choose from {', '.join(by_name)})"
            )
        if by_name[name] not in chosen:
            chosen.append(by_name[name])
    components = [NamingComponent(kind=kind, enabled=True) for kind in chosen]
    components.extend(
        NamingComponent(kind=kind, enabled=False) for kind in ComponentKind if kind not in chosen
    )
    return components


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="mboxpdf", description="Convert MBOX archives to PDF.")
    parser.add_argument("--console-log", action="store_true", help="human-readable logs")
    parser.add_argument("--log-level", default="INFO", help="log level (default: INFO)")
    commands = parser.add_subparsers(dest="command", required=True)

    convert = commands.add_parser("convert", help="render emails to PDF")
    convert.add_argument("files", nargs="+", help=".mbox or .mbx files")
    convert.add_argument("-o", "--output", required=True,
                         help="PDF path, or zip archive path with --separate")
    convert.add_argument("--separate", action="store_true", default=None,
                         help="one PDF per email, archived into OUTPUT")
    convert.add_argument("--merge-attachments", action="store_true", default=None,
                         help="append text and image attachments to each email")
    convert.add_argument("--bundle-attachments", action="store_true", default=None,
                         help="zip attachments that cannot be merged")
    convert.add_argument("--max-concurrency", type=int, help="parse/render tasks in flight (1-16)")
    convert.add_argument("--max-body-mb", type=int, help="truncate bodies beyond this size (1-60)")
    convert.add_argument("--name-components", type=parse_components,
                         help="filename components for --separate, e.g. subject,date,sender")
    convert.add_argument("--select", type=parse_selection,
                         help="convert only these email numbers, e.g. 1,3-5")

    inspect = commands.add_parser("inspect", help="parse only and report what was found")
    inspect.add_argument("files", nargs="+", help=".mbox or .mbx files")
    return parser


def settings_from_args(args: argparse.Namespace) -> ConversionSettings:
    """Command-line overrides on top of environment configuration."""
    overrides: dict[str, Any] = {}
    options = {
        "separate": "separate_outputs",
        "merge_attachments": "merge_attachments_into_output",
        "bundle_attachments": "bundle_non_mergeable_attachments",
        "max_concurrency": "max_concurrency",
        "max_body_mb": "max_email_body_size_mb",
        "name_components": "filename_components",
    }
    for option, field_name in options.items():
        value = getattr(args, option, None)
        if value is not None:
            overrides[field_name] = value
    return ConversionSettings(**overrides)


def _log_progress(fraction: float, message: str) -> None:
    logger.info("progress", fraction=round(fraction, 3), message=message)


async def _convert(args: argparse.Namespace, settings: ConversionSettings) -> ConversionSummary:
    token = CancellationToken()
    install_signal_handlers(token)
    job = ConversionJob(settings, cancel=token)
    return await job.convert(
        args.files,
        args.output,
        selection=args.select,
        progress=_log_progress,
    )


async def _inspect(args: argparse.Namespace, settings: ConversionSettings) -> dict[str, Any]:
    token = CancellationToken()
    install_signal_handlers(token)
    job = ConversionJob(settings, cancel=token)
    outcome = await job.parse_files(args.files)
    return {
        "summary": outcome.summary,
        "parsed": len(outcome.emails),
        "skipped": len(outcome.skipped),
        "total": outcome.total_processed,
        "file_errors": [str(e) for e in job.file_errors],
        "emails": [
            {"index": e.index, "subject": e.subject, "from": e.sender, "date": e.formatted_date,
             "attachments": e.attachment_names}
            for e in outcome.emails
        ],
        "skipped_records": [{"index": s.index, "reason": s.reason} for s in outcome.skipped],
    }


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(json=not args.console_log, level=args.log_level)

    try:
        settings = settings_from_args(args)
    except ValueError as exc:
        # pydantic.ValidationError is a ValueError
        parser.error(str(exc))

    if args.command == "inspect":
        try:
            report = asyncio.run(_inspect(args, settings))
        except ConversionCancelled as exc:
            print(json.dumps({"status": "cancelled", "error": str(exc)}))
            return EXIT_CODES[ConversionStatus.CANCELLED]
        except MboxPdfError as exc:
            logger.error("inspect_failed", error=str(exc))
            print(json.dumps({"status": "failed", "error": str(exc)}))
            return EXIT_CODES[ConversionStatus.FAILED]
        print(json.dumps(report, indent=2, ensure_ascii=False))
        return 0

    summary = asyncio.run(_convert(args, settings))
    print(summary.model_dump_json(indent=2))
    return EXIT_CODES[summary.status]


if __name__ == "__main__":
    sys.exit(main())
