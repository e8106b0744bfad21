from __future__ import annotations

import argparse
import logging
from pathlib import Path
from typing import List, Optional

from .alignment import AlignmentStrategy
from .config import Settings, find_config
from .errors import ReconcileError, SelectionError
from .organizer import AlbumRelocator
from .prompt_io import ConsolePromptIO
from .prompting import TerminalPrompter, UnattendedDriver
from .providers import build_providers
from .reconcile import Reconciler
from .report import RunReport
from .scanner import AlbumScanner
from .selection import format_selection, parse_selection
from .tagging import MutagenTagContainer, TagCommitter
from .transforms import apply_transform, load_transform

LOG_FORMAT = "%(levelname).1s | %(name)s | %(message)s"

C_RESET = "\033[0m"
LEVEL_COLORS = {
    logging.DEBUG: "\033[36m",
    logging.INFO: "\033[37m",
    logging.WARNING: "\033[33m",
    logging.ERROR: "\033[31m",
    logging.CRITICAL: "\033[35m",
}

logger = logging.getLogger(__name__)


class ShortPathFormatter(logging.Formatter):
    """Drops library-root prefixes from log messages."""

    def __init__(self, fmt: str, roots: List[Path]) -> None:
        super().__init__(fmt)
        self.roots = sorted((str(root) for root in roots if root), key=len, reverse=True)

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        for root in self.roots:
            message = message.replace(f"{root}/", "").replace(root, "")
        return message


class ColorFormatter(ShortPathFormatter):
    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        color = LEVEL_COLORS.get(record.levelno)
        return f"{color}{message}{C_RESET}" if color else message


class WarningBufferHandler(logging.Handler):
    def __init__(self) -> None:
        super().__init__(level=logging.WARNING)
        self.records: List[str] = []

    def emit(self, record: logging.LogRecord) -> None:
        try:
            msg = self.format(record)
        except Exception:  # pragma: no cover
            msg = record.getMessage()
        self.records.append(msg)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Reconcile album folders against online music catalogs")
    parser.add_argument("--config", type=Path, help="Path to config.yaml")
    parser.add_argument("--log-level", default="INFO", help="Python logging level")
    subparsers = parser.add_subparsers(dest="command", required=True)

    reconcile_parser = subparsers.add_parser("reconcile", help="Match album folders and fix their tags")
    reconcile_parser.add_argument(
        "directories", nargs="*", type=Path, help="Album folders (default: every album under the library roots)"
    )
    reconcile_parser.add_argument(
        "--unattended",
        action="store_true",
        help="Never prompt: take the first candidates and only report what would be aligned",
    )
    reconcile_parser.add_argument("--preview", action="store_true", help="Show tag changes without writing")
    reconcile_parser.add_argument("--provider", help="Metadata provider to start with")
    reconcile_parser.add_argument("--strategy", help="Initial alignment strategy")
    reconcile_parser.add_argument("--reverse", action="store_true", help="Reverse the file order for order/name")

    relocate_parser = subparsers.add_parser("relocate", help="Move an album folder to its canonical location")
    relocate_parser.add_argument("directory", type=Path)
    relocate_parser.add_argument("--dry-run", action="store_true", help="Only print the destination")

    transform_parser = subparsers.add_parser("transform", help="Apply a tag transform to every file in a folder")
    transform_parser.add_argument("directory", type=Path)
    transform_parser.add_argument(
        "--function", required=True, help="module:callable taking and returning a TagSnapshot, or a builtin name"
    )
    transform_parser.add_argument("--preview", action="store_true", help="Show tag changes without writing")

    select_parser = subparsers.add_parser("select", help="Expand a selection expression such as 1..3,5")
    select_parser.add_argument("text")
    select_parser.add_argument("--max", type=int, required=True, dest="max_index")
    return parser


def configure_logging(level_name: str, roots: List[Path]) -> WarningBufferHandler:
    log_level = getattr(logging, level_name.upper(), logging.INFO)
    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(log_level)

    display_roots = [root.resolve() for root in roots]
    color_handler = logging.StreamHandler()
    color_handler.setFormatter(ColorFormatter(LOG_FORMAT, display_roots))
    root_logger.addHandler(color_handler)

    warn_buffer = WarningBufferHandler()
    warn_buffer.setFormatter(ShortPathFormatter(LOG_FORMAT, display_roots))
    root_logger.addHandler(warn_buffer)

    logging.getLogger("musicbrainzngs").setLevel(logging.WARNING)
    logging.getLogger("urllib3.connectionpool").setLevel(logging.WARNING)
    return warn_buffer


def main(argv: Optional[List[str]] = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command == "select":
        try:
            indices = parse_selection(args.text, args.max_index)
        except SelectionError as exc:
            raise SystemExit(f"Invalid selection: {exc}") from exc
        print(" ".join(str(i) for i in indices))
        print(f"({format_selection(indices)})")
        return

    config_path = find_config(args.config)
    settings = Settings.load(config_path) if config_path else Settings()
    warn_buffer = configure_logging(args.log_level, settings.library.roots)
    if config_path is None:
        logger.info("No config.yaml found; using defaults")

    report: Optional[RunReport] = None
    try:
        match args.command:
            case "reconcile":
                report = _run_reconcile(settings, args)
            case "relocate":
                _run_relocate(settings, args.directory, dry_run=args.dry_run)
            case "transform":
                _run_transform(settings, args.directory, args.function, preview=args.preview)
            case _:
                parser.error("Unknown command")
    except ReconcileError as exc:
        logger.error("%s", exc)
        raise SystemExit(1) from exc
    finally:
        if report is not None:
            report.genres.finalize()
            print("\nRun report:")
            for line in report.summary_lines():
                print(f"  {line}")
        if warn_buffer.records:
            print("\n\033[33mWarnings/Errors summary:\033[0m")
            for line in warn_buffer.records:
                print(f" - {line}")


def _run_reconcile(settings: Settings, args: argparse.Namespace) -> RunReport:
    if args.provider:
        settings.providers.default = args.provider.strip().lower()
    if args.strategy:
        try:
            settings.reconcile.default_strategy = AlignmentStrategy.parse(args.strategy).value
        except ValueError as exc:
            raise SystemExit(str(exc)) from exc
    if args.reverse:
        settings.reconcile.reverse = True
    if args.preview:
        settings.reconcile.preview = True

    container = MutagenTagContainer()
    reconciler = Reconciler(settings, build_providers(settings.providers), container)
    directories = [d.expanduser().resolve() for d in args.directories]
    if not directories:
        directories = list(reconciler.scanner.iter_album_directories())
        logger.info("Found %d album folders under the library roots", len(directories))
    if args.unattended:
        events = UnattendedDriver()
    else:
        events = TerminalPrompter(ConsolePromptIO(), preview_tracks=settings.reconcile.preview_tracks)
    return reconciler.run(directories, events, unattended=args.unattended)


def _run_relocate(settings: Settings, directory: Path, *, dry_run: bool) -> None:
    scanner = AlbumScanner(settings.library, MutagenTagContainer())
    scan = scanner.scan(directory.expanduser().resolve())
    relocator = AlbumRelocator(
        settings.target_root(),
        lock_retries=settings.organizer.lock_retries,
        lock_backoff_seconds=settings.organizer.lock_backoff_seconds,
        cleanup_empty_dirs=settings.organizer.cleanup_empty_dirs,
        library_roots=settings.library.roots,
    )
    result = relocator.relocate(scan.directory, scan.placement, dry_run=dry_run)
    if result.moved:
        print(f"Moved {result.source} -> {result.destination}")
    elif result.destination == result.source:
        print(f"{result.source} is already in place")
    else:
        print(f"Would move {result.source} -> {result.destination}")


def _run_transform(settings: Settings, directory: Path, function: str, *, preview: bool) -> None:
    try:
        transform = load_transform(function)
    except (ImportError, AttributeError, ValueError) as exc:
        raise SystemExit(f"Cannot load transform {function!r}: {exc}") from exc
    container = MutagenTagContainer()
    committer = TagCommitter(container)
    scanner = AlbumScanner(settings.library, container)
    results = apply_transform(directory.expanduser().resolve(), transform, scanner, committer, preview=preview)
    for result in results:
        print(result.describe())
    counts = committer.changelog.counts()
    print(", ".join(f"{count} {name}" for name, count in counts.items()))


if __name__ == "__main__":
    main()
