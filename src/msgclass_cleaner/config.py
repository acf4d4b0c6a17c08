"""Application configuration and settings.

Objective:
    Provide a single source of truth for runtime configuration used across the
    application (Graph auth, paging, batching and throttling behavior).

Responsibilities:
    - Define the supported delete semantics (:class:`DeleteMode`).
    - Define the folder type selector and its folder classes
      (:class:`FolderType`).
    - Define the well-known folder tokens usable in folder filters.
    - Load environment-driven settings via :class:`Settings` (Pydantic
      BaseSettings).

High-level call tree:
    - :func:`get_settings` -> returns :class:`Settings`
    - :class:`Settings`
        - :meth:`Settings.retry_policy_kwargs`

Operational notes:
    - ``Settings`` loads from ``.env`` by default via ``pydantic-settings``.
    - Most modules accept a ``Settings`` object explicitly to enable testing;
      the orchestrator falls back to :func:`get_settings` when not provided.
"""

from enum import Enum
from typing import Optional
import logging

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

# Extended MAPI property tags as addressed by Microsoft Graph
MESSAGE_CLASS_PROPERTY = "String 0x001A"
CONTAINER_CLASS_PROPERTY = "String 0x3613"

# Well-known folder names used to bind mailbox and archive roots
MAILBOX_ROOT = "msgfolderroot"
ARCHIVE_ROOT = "archivemsgfolderroot"

# Folder filter tokens (#Name#) mapped to Graph well-known folder names
WELL_KNOWN_FOLDERS = {
    "Inbox": "inbox",
    "Calendar": "calendar",
    "Contacts": "contacts",
    "Notes": "notes",
    "SentItems": "sentitems",
    "Tasks": "tasks",
    "JunkEmail": "junkemail",
    "DeletedItems": "deleteditems",
}

# Well-known names Graph does not serve under /mailFolders; these folders are
# located below the mailbox root by their container class instead
CLASS_LOCATED_FOLDERS = {
    "calendar": "IPF.Appointment",
    "contacts": "IPF.Contact",
    "notes": "IPF.StickyNote",
    "tasks": "IPF.Task",
}


class DeleteMode(str, Enum):
    """How matching items are removed.

    - ``HardDelete``: permanent removal.
    - ``SoftDelete``: move to the Recoverable Items store.
    - ``MoveToDeletedItems``: move to the Deleted Items folder.
    """

    HARD_DELETE = "HardDelete"
    SOFT_DELETE = "SoftDelete"
    MOVE_TO_DELETED_ITEMS = "MoveToDeletedItems"


class FolderType(str, Enum):
    """Folder type selector used to pre-filter folders server-side.

    Graph's ``/messages`` endpoint only returns mail items, so calendar,
    contact, task and note folders cannot be cleaned and are not offered.
    """

    MAIL = "Mail"
    ALL = "All"

    @property
    def folder_class(self) -> Optional[str]:
        """Folder class (``PR_CONTAINER_CLASS``) for this type, None for All."""
        if self is FolderType.MAIL:
            return "IPF.Note"
        return None


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    The settings model is intentionally flat and human-editable via `.env`.
    Most fields map directly to environment variables.

    Attributes:
        azure_client_id: Azure AD application client ID.
        azure_client_secret: Azure AD application client secret.
        azure_tenant_id: Azure AD tenant ID (organizational tenant).
        folder_page_size: Child folders requested per page.
        item_page_size: Items requested per page.
        delete_batch_size: Maximum item ids dispatched per delete batch.
        retry_min_delay: Lower bound of the adaptive delay, in seconds.
        retry_max_delay: Upper bound of the adaptive delay, in seconds.
        retry_factor: Multiplicative adjustment applied on every outcome.
        retry_increment: Extra seconds added after a throttled attempt.
        log_level: Logging level.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Azure AD Configuration
    azure_client_id: str = Field(..., description="Azure AD application client ID")
    azure_client_secret: Optional[str] = Field(
        default=None, description="Azure AD application client secret"
    )
    azure_tenant_id: str = Field(..., description="Azure AD tenant ID")

    # Paging and batching
    folder_page_size: int = Field(
        default=100, ge=1, le=1000, description="Child folders per page"
    )
    item_page_size: int = Field(
        default=1000, ge=1, le=1000, description="Items per page"
    )
    delete_batch_size: int = Field(
        default=100, ge=1, le=1000, description="Item ids per delete batch"
    )

    # Throttling backoff
    retry_min_delay: float = Field(
        default=0.1, gt=0, description="Minimum adaptive delay in seconds"
    )
    retry_max_delay: float = Field(
        default=300.0, gt=0, description="Maximum adaptive delay in seconds"
    )
    retry_factor: float = Field(
        default=2.0, gt=1, description="Adaptive delay adjustment factor"
    )
    retry_increment: float = Field(
        default=0.1, ge=0, description="Seconds added after a throttled attempt"
    )

    log_level: str = Field(default="INFO", description="Logging level")

    def retry_policy_kwargs(self) -> dict[str, float]:
        """Keyword arguments for :class:`msgclass_cleaner.retry.RetryPolicy`.

        Returns:
            dict[str, float]: Delay bounds and adjustment parameters.
        """
        return {
            "min_delay": self.retry_min_delay,
            "max_delay": self.retry_max_delay,
            "factor": self.retry_factor,
            "increment": self.retry_increment,
        }


def get_settings() -> Settings:
    """
    Load and return application settings.

    This helper is a convenience for production code. For tests, you typically
    construct a :class:`Settings` instance directly or pass a mocked settings
    object.

    Returns:
        Settings: Application settings instance.

    Raises:
        ValidationError: If required environment variables are missing.
    """
    return Settings()
