"""Command-line interface (CLI) entrypoint.

Objective:
    Provide a human-friendly CLI wrapper around
    :class:`msgclass_cleaner.orchestrator.MessageClassCleaner`.

Responsibilities:
    - Parse arguments (identities, message class, delete/relabel mode,
      folder filters, scope, confirmation and dry-run flags).
    - Configure logging (including suppressing noisy library logs).
    - Ask for confirmation before each destructive step unless ``--force``.
    - Invoke the cleaner and print a readable summary of results.

High-level call tree:
    - :func:`main`
        - :func:`build_parser`
        - :func:`setup_logging`
            - installs :class:`_LibraryChatterFilter`
        - instantiate :class:`MessageClassCleaner` with :class:`ConsolePrompt`
        - :meth:`MessageClassCleaner.run`
        - :func:`print_results`
"""

import argparse
import logging
import sys
from datetime import datetime
from typing import Callable, Optional

from pydantic import ValidationError

from .config import DeleteMode, FolderType, get_settings
from .models import CleanupOptions, MailboxResult
from .orchestrator import MessageClassCleaner

QUIET_LOGGERS = ("msal", "urllib3")


class _LibraryChatterFilter(logging.Filter):
    """Filter to suppress msal/urllib3 records below WARNING.

    Token acquisition and connection pooling log on every request. This
    filter hides those messages unless the root logger is in DEBUG mode.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        """Determine whether a log record should be emitted.

        Args:
            record: Log record emitted by the logging framework.

        Returns:
            bool: True to allow emission, False to suppress.
        """
        if record.levelno < logging.WARNING and record.name.startswith(QUIET_LOGGERS):
            return logging.getLogger().isEnabledFor(logging.DEBUG)
        return True


def setup_logging(level: str = "INFO") -> None:
    """
    Configure logging for the application.

    This sets the root logger level and installs the
    :class:`_LibraryChatterFilter` on all root handlers.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR).
    """
    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[
            logging.StreamHandler(sys.stdout),
        ],
    )

    root_logger = logging.getLogger()
    chatter_filter = _LibraryChatterFilter()
    for handler in root_logger.handlers:
        handler.addFilter(chatter_filter)


class ConsolePrompt:
    """Interactive yes/no/all confirmation on the console.

    Answering ``a`` confirms this and every later step.
    """

    def __init__(self, ask: Callable[[str], str] = input) -> None:
        self._ask = ask
        self._yes_to_all = False

    def __call__(self, description: str) -> bool:
        if self._yes_to_all:
            return True

        answer = self._ask(f"{description}? [y]es/[n]o/[a]ll: ").strip().lower()
        if answer in ("a", "all"):
            self._yes_to_all = True
            return True
        return answer in ("y", "yes")


def _parse_before(value: str) -> datetime:
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid date: {value!r} (use YYYY-MM-DD)")


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser."""
    parser = argparse.ArgumentParser(
        prog="msgclass-cleaner",
        description="Remove or relabel mailbox items by message class",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s user@contoso.com -m 'IPM.Note.EnterpriseVault*' --dry-run
  %(prog)s user@contoso.com -m '*Vault*' --delete-mode HardDelete --force
  %(prog)s user@contoso.com -m IPM.Note.Old -r IPM.Note --include-folders '#Inbox#\\*'
  %(prog)s user@contoso.com -m 'IPM.Note*' --include-folders 'Archive\\*' --exclude-folders 2020
        """,
    )

    parser.add_argument("identities", nargs="+", help="Mailbox SMTP address(es)")

    parser.add_argument(
        "--message-class",
        "-m",
        required=True,
        help="Message class to match; '*' at the start and/or end is a wildcard",
    )
    parser.add_argument(
        "--replace-class",
        "-r",
        default=None,
        help="Relabel matching items with this class instead of deleting them",
    )
    parser.add_argument(
        "--delete-mode",
        choices=[m.value for m in DeleteMode],
        default=DeleteMode.SOFT_DELETE.value,
        help="How matching items are removed",
    )
    parser.add_argument(
        "--type",
        dest="folder_type",
        choices=[t.value for t in FolderType],
        default=FolderType.ALL.value,
        help="Only process folders of this type",
    )
    parser.add_argument(
        "--before",
        type=_parse_before,
        default=None,
        help="Only process items received before this date (YYYY-MM-DD)",
    )
    parser.add_argument(
        "--include-folders",
        nargs="+",
        default=[],
        help="Folders to include, e.g. '#Inbox#\\*' or '\\Projects'",
    )
    parser.add_argument(
        "--exclude-folders",
        nargs="+",
        default=[],
        help="Folders to exclude",
    )

    scope = parser.add_mutually_exclusive_group()
    scope.add_argument("--mailbox-only", action="store_true", help="Skip the archive")
    scope.add_argument("--archive-only", action="store_true", help="Only process the archive")

    parser.add_argument(
        "--force",
        "-f",
        action="store_true",
        help="Do not ask for confirmation",
    )
    parser.add_argument(
        "--dry-run",
        "-d",
        action="store_true",
        help="Report what would be changed without changing anything",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable verbose output",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level",
    )
    return parser


def print_results(results: list[MailboxResult]) -> None:
    """
    Print per-root results to console.

    Args:
        results: Results returned by :meth:`MessageClassCleaner.run`.
    """
    if not results:
        print("\nNo mailboxes processed.")
        return

    print(f"\n{'='*60}")
    print(f"RESULTS: {len(results)} mailbox root(s)")
    print(f"{'='*60}")

    for result in results:
        stats = result.statistics
        status = "degraded" if result.degraded else "ok"
        print(f"\n{result.identity} ({result.scope}) [{status}]")
        print("-" * 40)
        print(f"  Folders: {stats.folders_processed} processed / {stats.folders_found} found")
        print(f"  Items:   {stats.items_removed} processed / {stats.items_matched} matched")
        if stats.items_failed:
            print(f"  Failed:  {stats.items_failed}")
        print(f"  Time:    {stats.elapsed_seconds:.1f}s ({stats.items_per_minute:.1f} items/min)")

    degraded = sum(1 for r in results if r.degraded)
    print(f"\n{'='*60}")
    print(f"SUMMARY: {len(results) - degraded} clean, {degraded} degraded")
    print(f"{'='*60}\n")


def main(args: Optional[list[str]] = None) -> int:
    """
    Main CLI entry point.

    This function is structured to be testable: pass an explicit ``args`` list
    instead of relying on ``sys.argv``.

    Args:
        args: Command line arguments (uses sys.argv if None).

    Returns:
        int: Exit code (0 for clean completion, 1 for degraded or error).
    """
    parsed_args = build_parser().parse_args(args)

    log_level = "DEBUG" if parsed_args.verbose else parsed_args.log_level
    setup_logging(log_level)

    logger = logging.getLogger(__name__)

    try:
        options = CleanupOptions(
            message_class=parsed_args.message_class,
            replace_class=parsed_args.replace_class,
            delete_mode=DeleteMode(parsed_args.delete_mode),
            folder_type=FolderType(parsed_args.folder_type),
            received_before=parsed_args.before,
            include_folders=parsed_args.include_folders,
            exclude_folders=parsed_args.exclude_folders,
            mailbox_only=parsed_args.mailbox_only,
            archive_only=parsed_args.archive_only,
            force=parsed_args.force,
            dry_run=parsed_args.dry_run,
        )
    except ValidationError as e:
        print(f"\nInvalid options: {e}\n")
        return 1

    try:
        if parsed_args.dry_run:
            print("\nDRY RUN MODE - Mailboxes will not be changed\n")

        cleaner = MessageClassCleaner(
            options=options,
            settings=get_settings(),
            confirm=ConsolePrompt(),
        )
        results = cleaner.run(parsed_args.identities)

        print_results(results)

        return 1 if any(r.degraded for r in results) else 0

    except Exception as e:
        logger.exception("Fatal error")
        print(f"\nError: {e}\n")
        return 1


if __name__ == "__main__":
    sys.exit(main())
