"""Workflow orchestrator.

Objective:
    Coordinate the end-to-end workflow for one or more mailboxes:
    1) Compile include/exclude folder filters for the mailbox
    2) Bind the mailbox root (and the archive root when present)
    3) Select folders with the folder filters
    4) Collect item ids matching the message class filter per folder
    5) Delete or relabel them (after confirmation, unless dry-run)
    6) Return per-root results with statistics

Responsibilities:
    - Compose the core components (auth, Graph session, retry executor,
      folder matcher).
    - Provide an imperative API (:meth:`MessageClassCleaner.run`) that can be
      called from the CLI or other scripts.

High-level call tree:
    - :class:`MessageClassCleaner`
        - :meth:`MessageClassCleaner.run`
            - :meth:`MessageClassCleaner.process_identity`
                - :func:`compile_folder_filters`
                - :meth:`MailboxSession.bind_well_known_folder` (root, archive)
                - :meth:`MailboxProcessor.process_root`
                    - :meth:`FolderMatcher.match`
                    - :meth:`MailboxProcessor._collect_item_ids`
                    - :meth:`MailboxProcessor._delete_items` OR
                      :meth:`MailboxProcessor._relabel_items`

Operational notes:
    - Every remote call goes through one
      :class:`msgclass_cleaner.retry.RemoteOperationExecutor`, so throttling
      in one mailbox slows down the whole run.
    - Failing to bind a primary mailbox, or a well-known folder named in a
      folder filter, aborts the run (:class:`MailboxAccessError`); a missing
      archive is skipped.
"""

import logging
from typing import Callable, Iterable, Optional, Sequence

from .auth import GraphAuthenticator
from .config import ARCHIVE_ROOT, MAILBOX_ROOT, WELL_KNOWN_FOLDERS, DeleteMode, Settings, get_settings
from .folder_filter import FolderFilterError, FolderFilterRule, FolderMatcher, compile_folder_filters
from .mail_session import MailboxSession
from .models import (
    CleanupOptions,
    CompletionStatus,
    Folder,
    ItemFilter,
    MailboxResult,
    ProcessingStatistics,
)
from .retry import RemoteOperationError, RemoteOperationExecutor, RetryPolicy

logger = logging.getLogger(__name__)

ConfirmCallback = Callable[[str], bool]


class MailboxAccessError(RuntimeError):
    """Raised when a primary mailbox root cannot be bound.

    Args:
        identity: Mailbox SMTP address.
        reason: Underlying error description.
    """

    def __init__(self, identity: str, reason: str) -> None:
        super().__init__(f"Cannot access mailbox {identity}: {reason}")
        self.identity = identity


class MailboxProcessor:
    """
    Processes the folders below one mailbox or archive root.

    Attributes:
        session: Mail session.
        executor: Executor wrapping every remote call.
        options: Run options.
        matcher: Folder filter matcher.
        item_page_size: Items requested per page.
        delete_batch_size: Maximum item ids per delete call.
    """

    def __init__(
        self,
        session,
        executor: RemoteOperationExecutor,
        settings: Settings,
        options: CleanupOptions,
        confirm: Optional[ConfirmCallback] = None,
    ) -> None:
        """
        Initialize the processor.

        Args:
            session: Mail session.
            executor: Remote operation executor.
            settings: Application settings (page and batch sizes).
            options: Run options.
            confirm: Called with a description before each destructive step;
                returns True to proceed. Ignored with ``force`` or ``dry_run``.
        """
        self.session = session
        self.executor = executor
        self.options = options
        self.confirm = confirm
        self.item_page_size = settings.item_page_size
        self.delete_batch_size = settings.delete_batch_size
        self.matcher = FolderMatcher(
            session,
            executor,
            page_size=settings.folder_page_size,
            folder_class=options.folder_type.folder_class,
        )

    def _action(self) -> str:
        if self.options.relabel:
            return f"Change class to {self.options.replace_class} of"
        return f"{self.options.delete_mode.value}"

    def _should_process(self, folder: Folder, count: int) -> bool:
        description = (
            f"{self._action()} {count} item(s) of class {self.options.message_class} "
            f"in {folder.mailbox} {folder.path}"
        )
        if self.options.dry_run:
            logger.info(f"What if: {description}")
            return False
        if self.options.force or self.confirm is None:
            return True
        if self.confirm(description):
            return True
        logger.info(f"Skipped by operator: {description}")
        return False

    def _collect_item_ids(self, folder: Folder, item_filter: ItemFilter) -> list[str]:
        """Page through all matching items before anything is changed."""
        item_ids: list[str] = []
        offset = 0
        while True:
            page = self.executor.call(
                f"Find items in '{folder.path}'",
                self.session.find_items,
                folder,
                item_filter,
                offset,
                self.item_page_size,
            )
            item_ids.extend(item.id for item in page.items)
            if not page.more_available or page.next_offset <= offset:
                return item_ids
            offset = page.next_offset

    def _flush(self, folder: Folder, batch: list[str]) -> int:
        self.executor.call(
            f"Delete {len(batch)} item(s) from '{folder.path}'",
            self.session.delete_items,
            folder.mailbox,
            list(batch),
            self.options.delete_mode,
        )
        logger.debug(f"Removed batch of {len(batch)} item(s) from {folder.path}")
        return len(batch)

    def _delete_items(self, folder: Folder, item_ids: Sequence[str]) -> int:
        """Delete ``item_ids`` in batches of at most ``delete_batch_size``.

        Returns:
            int: Number of items removed.
        """
        removed = 0
        batch: list[str] = []
        for item_id in item_ids:
            batch.append(item_id)
            if len(batch) >= self.delete_batch_size:
                removed += self._flush(folder, batch)
                batch = []
        if batch:
            removed += self._flush(folder, batch)
        return removed

    def _relabel_items(self, folder: Folder, item_ids: Sequence[str]) -> tuple[int, int]:
        """Rewrite the message class of each item, continuing past failures.

        Returns:
            tuple[int, int]: ``(updated, failed)``.
        """
        updated = 0
        failed = 0
        for item_id in item_ids:
            try:
                self.executor.call(
                    f"Update class of item in '{folder.path}'",
                    self.session.update_item_class,
                    folder.mailbox,
                    item_id,
                    self.options.replace_class,
                )
                updated += 1
            except RemoteOperationError as e:
                failed += 1
                logger.error(f"Failed to change class of item {item_id} in {folder.path}: {e}")
        return updated, failed

    def _skips(self, folder: Folder, deleted_items: Optional[Folder]) -> bool:
        return (
            deleted_items is not None
            and not self.options.relabel
            and self.options.delete_mode is DeleteMode.MOVE_TO_DELETED_ITEMS
            and folder.id == deleted_items.id
        )

    def process_root(
        self,
        identity: str,
        scope: str,
        root: Folder,
        include_rules: Sequence[FolderFilterRule] = (),
        exclude_rules: Sequence[FolderFilterRule] = (),
        deleted_items: Optional[Folder] = None,
    ) -> MailboxResult:
        """Process every selected folder below ``root``.

        Args:
            identity: Mailbox SMTP address.
            scope: ``Mailbox`` or ``Archive``.
            root: Bound root folder.
            include_rules: Compiled include rules.
            exclude_rules: Compiled exclude rules.
            deleted_items: Deleted Items folder, skipped when moving there.

        Returns:
            MailboxResult: Status and statistics.

        Raises:
            RemoteOperationError: On a non-throttling failure while searching
                or deleting.
        """
        statistics = ProcessingStatistics()
        status = CompletionStatus.CLEAN
        item_filter = self.options.item_filter()

        logger.info(f"Processing {scope.lower()} of {identity}")
        folders = self.matcher.match(root, include_rules, exclude_rules)
        statistics.folders_found = len(folders)
        logger.info(f"Found {len(folders)} folder(s) to process in {identity} ({scope})")

        for index, folder in enumerate(folders, 1):
            if self._skips(folder, deleted_items):
                logger.info(f"Skipping {folder.path} (items are moved there)")
                continue

            logger.info(f"Processing folder {index}/{len(folders)}: {folder.path}")
            item_ids = self._collect_item_ids(folder, item_filter)
            statistics.folders_processed += 1
            statistics.items_matched += len(item_ids)

            if not item_ids:
                continue

            logger.info(f"Found {len(item_ids)} matching item(s) in {folder.path}")
            if not self._should_process(folder, len(item_ids)):
                continue

            if self.options.relabel:
                updated, failed = self._relabel_items(folder, item_ids)
                statistics.items_removed += updated
                statistics.items_failed += failed
                if failed:
                    status = CompletionStatus.DEGRADED
            else:
                statistics.items_removed += self._delete_items(folder, item_ids)

        statistics.finish()
        logger.info(
            "Finished %s of %s: %d matched, %d processed in %.1fs (%.1f items/min)",
            scope.lower(),
            identity,
            statistics.items_matched,
            statistics.items_removed,
            statistics.elapsed_seconds,
            statistics.items_per_minute,
        )
        return MailboxResult(identity=identity, scope=scope, status=status, statistics=statistics)


class MessageClassCleaner:
    """
    Orchestrates the cleanup workflow over one or more mailboxes.

    This class is intentionally "glue" code: it connects the Graph session,
    executor, folder filters and processor without embedding business rules.

    Attributes:
        settings: Application settings.
        options: Run options.
        session: Mail session.
        executor: Remote operation executor shared by every call.
        processor: Per-root processor.
    """

    def __init__(
        self,
        options: CleanupOptions,
        settings: Optional[Settings] = None,
        session=None,
        executor: Optional[RemoteOperationExecutor] = None,
        confirm: Optional[ConfirmCallback] = None,
    ) -> None:
        """
        Initialize the cleaner with all components.

        Args:
            options: Run options.
            settings: Application settings (loads from env if None).
            session: Mail session (a Graph session is built if None).
            executor: Executor (built from settings if None).
            confirm: Confirmation callback passed to the processor.
        """
        self.settings = settings or get_settings()
        self.options = options

        if session is None:
            session = MailboxSession(self.settings, GraphAuthenticator(self.settings))
        self.session = session
        self.executor = executor or RemoteOperationExecutor(
            RetryPolicy(**self.settings.retry_policy_kwargs())
        )
        self.processor = MailboxProcessor(
            self.session, self.executor, self.settings, options, confirm
        )

    def _bind(self, identity: str, name: str) -> Folder:
        return self.executor.call(
            f"Bind {name} of {identity}",
            self.session.bind_well_known_folder,
            identity,
            name,
        )

    def process_identity(self, identity: str) -> list[MailboxResult]:
        """Process the primary mailbox and/or archive of one identity.

        Args:
            identity: Mailbox SMTP address.

        Returns:
            list[MailboxResult]: One result per processed root.

        Raises:
            MailboxAccessError: If the primary mailbox or a well-known folder
                named in a folder filter cannot be bound.
            FolderFilterError: If include folders were given but none of
                them could be parsed.
            RemoteOperationError: On a non-throttling failure while processing.
        """
        logger.info(f"Processing identity {identity}")
        results: list[MailboxResult] = []

        root: Optional[Folder] = None
        deleted_items: Optional[Folder] = None
        try:
            if not self.options.archive_only:
                root = self._bind(identity, MAILBOX_ROOT)
            if not self.options.relabel and self.options.delete_mode is DeleteMode.MOVE_TO_DELETED_ITEMS:
                deleted_items = self._bind(identity, WELL_KNOWN_FOLDERS["DeletedItems"])
        except RemoteOperationError as e:
            raise MailboxAccessError(identity, str(e)) from e

        try:
            include_rules = compile_folder_filters(
                self.options.include_folders, identity, self.session, self.executor
            )
            exclude_rules = compile_folder_filters(
                self.options.exclude_folders, identity, self.session, self.executor
            )
        except RemoteOperationError as e:
            raise MailboxAccessError(identity, f"cannot resolve folder filter token: {e}") from e

        # An empty include list selects every folder
        if self.options.include_folders and not include_rules:
            raise FolderFilterError(
                f"No usable include folder filter in {self.options.include_folders}"
            )

        if root is not None:
            results.append(
                self.processor.process_root(
                    identity, "Mailbox", root, include_rules, exclude_rules, deleted_items
                )
            )

        if not self.options.mailbox_only:
            try:
                archive = self._bind(identity, ARCHIVE_ROOT)
            except RemoteOperationError:
                logger.info(f"No archive available for {identity}")
            else:
                results.append(
                    self.processor.process_root(
                        identity, "Archive", archive, include_rules, exclude_rules, deleted_items
                    )
                )

        return results

    def run(self, identities: Iterable[str]) -> list[MailboxResult]:
        """Run the cleanup for each identity in turn.

        Args:
            identities: Mailbox SMTP addresses.

        Returns:
            list[MailboxResult]: Results for all processed roots.

        Raises:
            MailboxAccessError: If a primary mailbox or a folder filter token
                cannot be bound; later identities are not processed.
            FolderFilterError: If no include folder filter could be parsed.
        """
        results: list[MailboxResult] = []
        for identity in identities:
            results.extend(self.process_identity(identity))

        degraded = sum(1 for r in results if r.degraded)
        logger.info(f"Completed: {len(results)} root(s) processed, {degraded} degraded")
        return results
