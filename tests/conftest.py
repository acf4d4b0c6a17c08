"""Shared fixtures: an in-memory mail session and a sleep-free executor."""

from typing import Optional

import pytest

from msgclass_cleaner.config import Settings
from msgclass_cleaner.models import Folder, FolderPage, Item, ItemPage, RemoteResult
from msgclass_cleaner.retry import RemoteOperationExecutor, RetryPolicy

MAILBOX = "user@contoso.com"


class FakeSession:
    """In-memory stand-in for :class:`msgclass_cleaner.mail_session.MailboxSession`.

    Folder ids are their paths (``\\Archive\\2020``); roots are bound by
    well-known name. Failures queued in ``failures[method]`` are returned
    before the regular behavior.
    """

    def __init__(self, mailbox: str = MAILBOX) -> None:
        self.mailbox = mailbox
        self.well_known: dict[str, Folder] = {}
        self.children: dict[str, list[Folder]] = {}
        self.items: dict[str, list[Item]] = {}
        self.failures: dict[str, list[RemoteResult]] = {}
        self.fail_updates: set[str] = set()
        self.calls: list[tuple] = []
        self.deleted_batches: list[list[str]] = []
        self.delete_modes: list = []
        self.updated: list[tuple[str, str]] = []

    def add_root(self, name: str, folder_id: Optional[str] = None, display_name: str = "Top of Information Store") -> Folder:
        root = Folder(id=folder_id or name, display_name=display_name, mailbox=self.mailbox)
        self.well_known[name] = root
        self.children.setdefault(root.id, [])
        return root

    def add_folder(self, parent_id: str, name: str, folder_class: str = "IPF.Note") -> Folder:
        folder_id = f"{parent_id}\\{name}" if parent_id.startswith("\\") else f"\\{name}"
        folder = Folder(id=folder_id, display_name=name, mailbox=self.mailbox, folder_class=folder_class)
        self.children.setdefault(parent_id, []).append(folder)
        self.children.setdefault(folder_id, [])
        return folder

    def add_tree(self, parent_id: str, tree: dict) -> None:
        for name, subtree in tree.items():
            folder = self.add_folder(parent_id, name)
            self.add_tree(folder.id, subtree)

    def _queued(self, method: str) -> Optional[RemoteResult]:
        queue = self.failures.get(method)
        if queue:
            return queue.pop(0)
        return None

    def bind_well_known_folder(self, mailbox: str, name: str) -> RemoteResult:
        self.calls.append(("bind_well_known_folder", mailbox, name))
        failure = self._queued("bind_well_known_folder")
        if failure is not None:
            return failure
        if name not in self.well_known:
            return RemoteResult.failure(f"404 ErrorItemNotFound: {name}", status_code=404)
        return RemoteResult.success(self.well_known[name])

    def find_folders(self, folder, offset=0, page_size=100, folder_class=None) -> RemoteResult:
        self.calls.append(("find_folders", folder.id, offset, page_size, folder_class))
        failure = self._queued("find_folders")
        if failure is not None:
            return failure
        children = [
            f for f in self.children.get(folder.id, [])
            if folder_class is None or f.folder_class == folder_class
        ]
        page = children[offset:offset + page_size]
        return RemoteResult.success(
            FolderPage(folders=page, more_available=offset + page_size < len(children))
        )

    def find_items(self, folder, item_filter, offset=0, page_size=1000) -> RemoteResult:
        self.calls.append(("find_items", folder.id, offset, page_size))
        failure = self._queued("find_items")
        if failure is not None:
            return failure
        items = self.items.get(folder.id, [])
        scanned = items[offset:offset + page_size]
        return RemoteResult.success(
            ItemPage(
                items=[item for item in scanned if item_filter.matches(item)],
                more_available=offset + page_size < len(items),
                next_offset=offset + len(scanned),
            )
        )

    def delete_items(self, mailbox, item_ids, delete_mode) -> RemoteResult:
        self.calls.append(("delete_items", mailbox, len(item_ids)))
        failure = self._queued("delete_items")
        if failure is not None:
            return failure
        self.deleted_batches.append(list(item_ids))
        self.delete_modes.append(delete_mode)
        return RemoteResult.success(len(item_ids))

    def update_item_class(self, mailbox, item_id, message_class) -> RemoteResult:
        self.calls.append(("update_item_class", mailbox, item_id))
        if item_id in self.fail_updates:
            return RemoteResult.failure("403 ErrorAccessDenied: denied", status_code=403)
        self.updated.append((item_id, message_class))
        return RemoteResult.success(None)


def make_items(count: int, message_class: str = "IPM.Note.EnterpriseVault.Shortcut", prefix: str = "item") -> list[Item]:
    return [Item(id=f"{prefix}-{i}", message_class=message_class) for i in range(count)]


@pytest.fixture
def session() -> FakeSession:
    return FakeSession()


@pytest.fixture
def sleeps() -> list[float]:
    return []


@pytest.fixture
def executor(sleeps) -> RemoteOperationExecutor:
    return RemoteOperationExecutor(RetryPolicy(sleep=sleeps.append))


@pytest.fixture
def settings() -> Settings:
    return Settings(
        azure_client_id="test-client-id",
        azure_client_secret="test-secret",
        azure_tenant_id="test-tenant-id",
        folder_page_size=100,
        item_page_size=1000,
        delete_batch_size=100,
    )
