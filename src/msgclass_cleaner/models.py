"""Pydantic data models used across the application.

Objective:
    Centralize all strongly-typed data structures representing:
    - Mail folders and items returned by Microsoft Graph
    - Outcomes of remote calls (:class:`RemoteResult`)
    - Item-level message class filters
    - Run options and per-mailbox processing results

Design notes:
    - Folder and item models use Pydantic aliases to match Microsoft Graph
      field names (e.g. ``displayName`` -> :attr:`Folder.display_name`).
    - ``model_config = ConfigDict(populate_by_name=True)`` is used to allow
      constructing models with either alias names or pythonic field names.
    - Remote calls never raise for backend errors; they return a
      :class:`RemoteResult` tagged as retryable (throttled) or not.

High-level structure:
    - Graph primitives:
        - :class:`Folder`
        - :class:`Item`
        - :class:`FolderPage` / :class:`ItemPage`
    - Remote call outcome:
        - :class:`RemoteResult`
    - Filtering:
        - :class:`MatchMode`
        - :class:`ItemFilter`
    - Run primitives:
        - :class:`CleanupOptions`
        - :class:`ProcessingStatistics`
        - :class:`MailboxResult`

Call tree usage:
    - :class:`msgclass_cleaner.mail_session.MailboxSession`:
        - validates Graph responses into :class:`Folder` and :class:`Item`
    - :class:`msgclass_cleaner.retry.RemoteOperationExecutor`:
        - unwraps :class:`RemoteResult`
    - :class:`msgclass_cleaner.orchestrator.MailboxProcessor`:
        - returns :class:`MailboxResult`
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .config import DeleteMode, FolderType


class Folder(BaseModel):
    """
    Mailbox folder.

    This model represents roots, well-known folders and nested subfolders.

    Attributes:
        id: Unique folder ID.
        display_name: Folder display name.
        mailbox: SMTP address of the mailbox owning the folder.
        path: Root-relative path (``\\Inbox\\Sub``); empty for a root.
        folder_class: Container class (e.g. ``IPF.Note``) when known.
        child_folder_count: Number of child folders.
    """

    id: str
    display_name: str = Field(default="", alias="displayName")
    mailbox: str = ""
    path: str = ""
    folder_class: Optional[str] = None
    child_folder_count: int = Field(default=0, alias="childFolderCount")

    model_config = ConfigDict(populate_by_name=True)


class Item(BaseModel):
    """Mailbox item reduced to the fields needed for matching."""

    id: str
    subject: str = ""
    message_class: Optional[str] = None
    received_date_time: Optional[datetime] = Field(default=None, alias="receivedDateTime")

    model_config = ConfigDict(populate_by_name=True)


class FolderPage(BaseModel):
    """One page of a shallow child folder search."""

    folders: list[Folder] = Field(default_factory=list)
    more_available: bool = False


class ItemPage(BaseModel):
    """One page of an item search.

    ``next_offset`` counts the items scanned server-side, which can be more
    than ``len(items)`` when part of the filter is applied client-side.
    """

    items: list[Item] = Field(default_factory=list)
    more_available: bool = False
    next_offset: int = 0


class RemoteResult(BaseModel):
    """Outcome of a single remote call.

    Attributes:
        value: Call result on success.
        error: Error description on failure, None on success.
        retryable: True when the failure is server busy / throttling.
        status_code: HTTP status of the failure, when there was one.
    """

    value: Any = None
    error: Optional[str] = None
    retryable: bool = False
    status_code: Optional[int] = None

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: Any = None) -> "RemoteResult":
        return cls(value=value)

    @classmethod
    def failure(
        cls,
        error: str,
        retryable: bool = False,
        status_code: Optional[int] = None,
    ) -> "RemoteResult":
        return cls(error=error, retryable=retryable, status_code=status_code)


class MatchMode(str, Enum):
    """How a message class pattern is compared."""

    EQUALS = "equals"
    PREFIX = "prefix"
    SUBSTRING = "substring"
    SUFFIX = "suffix"


class ItemFilter(BaseModel):
    """
    Item-level filter: message class match, optionally AND'd with a cutoff.

    Attributes:
        text: Pattern with its wildcards stripped.
        mode: Comparison mode derived from the wildcard position.
        received_before: Only items received before this moment match.
    """

    text: str
    mode: MatchMode = MatchMode.EQUALS
    received_before: Optional[datetime] = None

    model_config = ConfigDict(frozen=True)

    @classmethod
    def from_pattern(
        cls, pattern: str, received_before: Optional[datetime] = None
    ) -> "ItemFilter":
        """Build a filter from a message class pattern.

        ``*text*`` is a substring match, ``text*`` a prefix match, ``*text``
        a suffix match and anything else an exact (case-insensitive) match.

        Args:
            pattern: Message class pattern, e.g. ``IPM.Note.EnterpriseVault*``.
            received_before: Optional received-before cutoff.

        Returns:
            ItemFilter: Filter instance.

        Raises:
            ValueError: If the pattern is empty.
        """
        pattern = (pattern or "").strip()
        if not pattern:
            raise ValueError("Message class pattern must not be empty")

        if len(pattern) > 1 and pattern.startswith("*") and pattern.endswith("*"):
            return cls(text=pattern[1:-1], mode=MatchMode.SUBSTRING, received_before=received_before)
        if pattern.endswith("*"):
            return cls(text=pattern[:-1], mode=MatchMode.PREFIX, received_before=received_before)
        if pattern.startswith("*"):
            return cls(text=pattern[1:], mode=MatchMode.SUFFIX, received_before=received_before)
        return cls(text=pattern, mode=MatchMode.EQUALS, received_before=received_before)

    def matches_class(self, message_class: Optional[str]) -> bool:
        """Compare a message class against this filter (case-insensitive)."""
        if message_class is None:
            return False

        value = message_class.lower()
        text = self.text.lower()
        if self.mode is MatchMode.SUBSTRING:
            return text in value
        if self.mode is MatchMode.PREFIX:
            return value.startswith(text)
        if self.mode is MatchMode.SUFFIX:
            return value.endswith(text)
        return value == text

    def matches(self, item: Item) -> bool:
        """Apply both the class match and the received-before cutoff."""
        if not self.matches_class(item.message_class):
            return False
        if self.received_before is not None:
            received = item.received_date_time
            if received is None:
                return False
            return _as_utc(received) < _as_utc(self.received_before)
        return True


def _as_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC so they compare with Graph timestamps."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class CleanupOptions(BaseModel):
    """
    Options for one cleanup run.

    Attributes:
        message_class: Message class pattern to look for.
        replace_class: When set, matching items are relabeled instead of deleted.
        delete_mode: Delete semantics when not relabeling.
        folder_type: Folder type pre-filter.
        received_before: Only process items received before this moment.
        include_folders: Folder specs to include (empty means all).
        exclude_folders: Folder specs to exclude.
        mailbox_only: Skip the archive.
        archive_only: Skip the primary mailbox.
        force: Skip the interactive confirmation.
        dry_run: Report what would happen, change nothing.
    """

    message_class: str
    replace_class: Optional[str] = None
    delete_mode: DeleteMode = DeleteMode.SOFT_DELETE
    folder_type: FolderType = FolderType.ALL
    received_before: Optional[datetime] = None
    include_folders: list[str] = Field(default_factory=list)
    exclude_folders: list[str] = Field(default_factory=list)
    mailbox_only: bool = False
    archive_only: bool = False
    force: bool = False
    dry_run: bool = False

    @field_validator("message_class")
    @classmethod
    def _check_message_class(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("message_class must not be empty")
        return value

    @field_validator("replace_class")
    @classmethod
    def _check_replace_class(cls, value: Optional[str]) -> Optional[str]:
        # Relabel mode is keyed on a non-empty replacement
        if value is not None:
            value = value.strip()
            if not value or "*" in value:
                raise ValueError("replace_class must be a literal message class")
        return value

    @model_validator(mode="after")
    def _check_scope(self) -> "CleanupOptions":
        if self.mailbox_only and self.archive_only:
            raise ValueError("mailbox_only and archive_only are mutually exclusive")
        return self

    @property
    def relabel(self) -> bool:
        return bool(self.replace_class)

    def item_filter(self) -> ItemFilter:
        """Item filter built from ``message_class`` and ``received_before``."""
        return ItemFilter.from_pattern(self.message_class, self.received_before)


class CompletionStatus(str, Enum):
    """Outcome of processing one mailbox or archive root."""

    CLEAN = "clean"
    DEGRADED = "degraded"


class ProcessingStatistics(BaseModel):
    """
    Counters for one mailbox-or-archive processing run.

    Attributes:
        folders_found: Folders selected by the folder filters.
        folders_processed: Folders searched for items.
        items_matched: Items matching the item filter.
        items_removed: Items deleted or relabeled.
        items_failed: Items whose relabel failed.
        started_at: Start timestamp (UTC).
        finished_at: End timestamp (UTC), set by :meth:`finish`.
    """

    folders_found: int = 0
    folders_processed: int = 0
    items_matched: int = 0
    items_removed: int = 0
    items_failed: int = 0
    started_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: Optional[datetime] = None

    def finish(self, now: Optional[datetime] = None) -> None:
        self.finished_at = now or datetime.now(timezone.utc)

    @property
    def elapsed_seconds(self) -> float:
        end = self.finished_at or datetime.now(timezone.utc)
        return max((end - self.started_at).total_seconds(), 0.0)

    @property
    def items_per_minute(self) -> float:
        """Matched items per minute over the elapsed time (0 when instant)."""
        elapsed = self.elapsed_seconds
        if elapsed <= 0:
            return 0.0
        return self.items_matched / (elapsed / 60.0)


class MailboxResult(BaseModel):
    """
    Result of processing one mailbox or archive root.

    This is the primary output type returned to the CLI.

    Attributes:
        identity: Mailbox SMTP address.
        scope: ``Mailbox`` or ``Archive``.
        status: Clean or degraded completion.
        statistics: Counters and timing.
    """

    identity: str
    scope: str
    status: CompletionStatus = CompletionStatus.CLEAN
    statistics: ProcessingStatistics = Field(default_factory=ProcessingStatistics)

    @property
    def degraded(self) -> bool:
        return self.status is CompletionStatus.DEGRADED
