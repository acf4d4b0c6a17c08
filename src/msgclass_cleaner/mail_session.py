"""Microsoft Graph session for folder and item operations.

Objective:
    Provide a thin wrapper around the Microsoft Graph mail endpoints used by
    this project. This module centralizes HTTP request construction,
    authentication headers, classification of failures (throttled or not)
    and Pydantic validation of responses.

Responsibilities:
    - Issue authenticated HTTP requests to Graph (via :mod:`requests`).
    - Bind well-known folders (mailbox root, archive root, Inbox...).
    - Shallow-enumerate child folders, optionally filtered by folder class.
    - Page through items, filtered by message class and received date.
    - Delete items in bulk (Graph JSON batching) and rewrite message classes.

High-level call tree:
    - Public API (every method returns :class:`RemoteResult`):
        - :meth:`MailboxSession.bind_well_known_folder` -> :class:`Folder`
        - :meth:`MailboxSession.find_folders` -> :class:`FolderPage`
        - :meth:`MailboxSession.find_items` -> :class:`ItemPage`
        - :meth:`MailboxSession.delete_items`
        - :meth:`MailboxSession.update_item_class`
    - Internal helpers:
        - :meth:`MailboxSession._make_request` (auth + failure classification)
        - :meth:`MailboxSession._batch_failure`

Graph endpoints used:
    - ``GET /users/{mailbox}/mailFolders/{well-known-name}``
    - ``GET /users/{mailbox}/mailFolders/msgfolderroot/childFolders`` filtered
      by container class (Calendar, Contacts, Tasks, Notes)
    - ``GET /users/{mailbox}/mailFolders/{id}/childFolders``
    - ``GET /users/{mailbox}/mailFolders/{id}/messages``
    - ``POST /$batch`` wrapping ``permanentDelete``, ``DELETE`` or ``move``
    - ``PATCH /users/{mailbox}/messages/{id}``

Error handling:
    - Nothing here raises for backend errors. HTTP 429/503 and Graph
      throttling error codes produce a retryable :class:`RemoteResult`;
      everything else produces a non-retryable one.
    - Graph only filters extended properties by equality, so prefix,
      substring and suffix message class matches are applied client-side on
      the expanded ``PR_MESSAGE_CLASS`` value.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Optional
from urllib.parse import quote

import requests
from pydantic import ValidationError

from .auth import GraphAuthenticator
from .config import (
    CLASS_LOCATED_FOLDERS,
    CONTAINER_CLASS_PROPERTY,
    MAILBOX_ROOT,
    MESSAGE_CLASS_PROPERTY,
    DeleteMode,
    Settings,
)
from .models import Folder, FolderPage, Item, ItemFilter, ItemPage, MatchMode, RemoteResult

logger = logging.getLogger(__name__)

THROTTLE_STATUSES = frozenset({429, 503})
THROTTLE_CODES = frozenset(
    {"ErrorServerBusy", "ApplicationThrottled", "MailboxConcurrency", "TooManyRequests"}
)

# Graph accepts at most 20 requests per JSON batch
GRAPH_BATCH_LIMIT = 20


def _user(mailbox: str) -> str:
    return f"/users/{quote(mailbox, safe='@')}"


def _odata_quote(value: str) -> str:
    return value.replace("'", "''")


def _odata_datetime(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _extended_expand(property_id: str) -> str:
    return f"singleValueExtendedProperties($filter=id eq '{property_id}')"


def _extended_equals(property_id: str, value: str) -> str:
    return (
        "singleValueExtendedProperties/any(ep: "
        f"ep/id eq '{property_id}' and ep/value eq '{_odata_quote(value)}')"
    )


def _property_key(property_id: str) -> tuple[str, int]:
    """Normalize ``String 0x001A`` and ``String 0x1a`` to the same key."""
    kind, _, tag = property_id.strip().partition(" ")
    try:
        return kind.lower(), int(tag, 16)
    except ValueError:
        return property_id.strip().lower(), -1


def _extended_value(data: dict, property_id: str) -> Optional[str]:
    # Graph echoes the tag without zero padding
    wanted = _property_key(property_id)
    for prop in data.get("singleValueExtendedProperties") or []:
        if _property_key(str(prop.get("id", ""))) == wanted:
            return prop.get("value")
    return None


def _graph_error(payload: Any, fallback: str = "") -> tuple[str, str]:
    """Extract ``(code, message)`` from a Graph error body."""
    if isinstance(payload, dict):
        error = payload.get("error") or {}
        if isinstance(error, dict):
            return str(error.get("code", "")), str(error.get("message", fallback))
    return "", fallback


class MailboxSession:
    """
    Session for folder and item operations against Microsoft Graph.

    The session is state-light: it depends on
    :class:`msgclass_cleaner.auth.GraphAuthenticator` for tokens and builds
    URLs relative to :attr:`GRAPH_BASE_URL`. Every method names the mailbox
    it acts on, so one session serves every identity of a run.

    Attributes:
        settings: Application settings.
        auth: Graph API authenticator.
    """

    GRAPH_BASE_URL = "https://graph.microsoft.com/v1.0"

    def __init__(self, settings: Settings, auth: GraphAuthenticator) -> None:
        """
        Initialize the session.

        Args:
            settings: Application settings.
            auth: Graph API authenticator.
        """
        self.settings = settings
        self.auth = auth

    def _make_request(
        self,
        method: str,
        endpoint: str,
        params: Optional[dict] = None,
        json_data: Optional[dict] = None,
    ) -> RemoteResult:
        """Make an authenticated request to Microsoft Graph.

        This helper:
        - Adds auth headers (Bearer token).
        - Applies a default timeout.
        - Classifies non-2xx responses as throttled or failed.
        - Returns decoded JSON or ``{}`` for 204 responses.

        Args:
            method: HTTP method (GET, POST, PATCH, DELETE).
            endpoint: API endpoint path.
            params: Query parameters.
            json_data: JSON body data.

        Returns:
            RemoteResult: Decoded JSON on success, classified failure otherwise.
        """
        url = f"{self.GRAPH_BASE_URL}{endpoint}"
        headers = self.auth.get_auth_headers()

        try:
            response = requests.request(
                method=method,
                url=url,
                headers=headers,
                params=params,
                json=json_data,
                timeout=30,
            )
        except requests.RequestException as e:
            return RemoteResult.failure(f"{method} {endpoint}: {e}")

        if not response.ok:
            try:
                payload = response.json()
            except ValueError:
                payload = None
            code, message = _graph_error(payload, response.text)
            retryable = response.status_code in THROTTLE_STATUSES or code in THROTTLE_CODES
            logger.debug(
                "Graph API error: %s %s -> %s %s (retryable=%s)",
                method,
                endpoint,
                response.status_code,
                code,
                retryable,
            )
            return RemoteResult.failure(
                f"{response.status_code} {code}: {message}".strip(),
                retryable=retryable,
                status_code=response.status_code,
            )

        if response.status_code == 204 or not response.content:
            return RemoteResult.success({})

        return RemoteResult.success(response.json())

    def _to_folder(self, data: dict, mailbox: str) -> Folder:
        folder = Folder.model_validate(data)
        folder.mailbox = mailbox
        folder.folder_class = _extended_value(data, CONTAINER_CLASS_PROPERTY)
        return folder

    def bind_well_known_folder(self, mailbox: str, name: str) -> RemoteResult:
        """Bind a folder by its well-known name (``inbox``, ``msgfolderroot``...).

        Args:
            mailbox: SMTP address of the mailbox.
            name: Graph well-known folder name.

        Calendar, Contacts, Tasks and Notes are not addressable by name under
        ``/mailFolders``; they are located among the children of the mailbox
        root by container class (see :data:`CLASS_LOCATED_FOLDERS`).

        Returns:
            RemoteResult: :class:`Folder` on success.
        """
        folder_class = CLASS_LOCATED_FOLDERS.get(name.lower())
        if folder_class is not None:
            return self._bind_by_class(mailbox, name, folder_class)

        endpoint = f"{_user(mailbox)}/mailFolders/{quote(name, safe='')}"
        params = {
            "$select": "id,displayName,childFolderCount",
            "$expand": _extended_expand(CONTAINER_CLASS_PROPERTY),
        }

        result = self._make_request("GET", endpoint, params=params)
        if not result.ok:
            return result

        return RemoteResult.success(self._to_folder(result.value, mailbox))

    def _bind_by_class(self, mailbox: str, name: str, folder_class: str) -> RemoteResult:
        endpoint = f"{_user(mailbox)}/mailFolders/{MAILBOX_ROOT}/childFolders"
        params = {
            "$top": 1,
            "$select": "id,displayName,childFolderCount",
            "$expand": _extended_expand(CONTAINER_CLASS_PROPERTY),
            "$filter": _extended_equals(CONTAINER_CLASS_PROPERTY, folder_class),
        }

        result = self._make_request("GET", endpoint, params=params)
        if not result.ok:
            return result

        entries = result.value.get("value", [])
        if not entries:
            return RemoteResult.failure(
                f"404 ErrorItemNotFound: no {folder_class} folder for '{name}' in {mailbox}",
                status_code=404,
            )
        return RemoteResult.success(self._to_folder(entries[0], mailbox))

    def find_folders(
        self,
        folder: Folder,
        offset: int = 0,
        page_size: int = 100,
        folder_class: Optional[str] = None,
    ) -> RemoteResult:
        """List one page of the immediate child folders of ``folder``.

        Args:
            folder: Parent folder.
            offset: Number of child folders to skip.
            page_size: Maximum child folders to return.
            folder_class: Only return folders of this class (server-side).

        Returns:
            RemoteResult: :class:`FolderPage` on success.
        """
        endpoint = f"{_user(folder.mailbox)}/mailFolders/{quote(folder.id, safe='')}/childFolders"
        params: dict[str, Any] = {
            "$top": page_size,
            "$skip": offset,
            "$select": "id,displayName,childFolderCount",
            "$expand": _extended_expand(CONTAINER_CLASS_PROPERTY),
        }
        if folder_class:
            params["$filter"] = _extended_equals(CONTAINER_CLASS_PROPERTY, folder_class)

        result = self._make_request("GET", endpoint, params=params)
        if not result.ok:
            return result

        folders = []
        for entry in result.value.get("value", []):
            try:
                folders.append(self._to_folder(entry, folder.mailbox))
            except ValidationError as e:
                logger.warning(f"Failed to parse folder: {e}")
                continue

        return RemoteResult.success(
            FolderPage(folders=folders, more_available="@odata.nextLink" in result.value)
        )

    def find_items(
        self,
        folder: Folder,
        item_filter: ItemFilter,
        offset: int = 0,
        page_size: int = 1000,
    ) -> RemoteResult:
        """List one page of items in ``folder`` matching ``item_filter``.

        Equality and the received-before cutoff are sent as ``$filter``;
        other match modes are checked on the returned page.

        Args:
            folder: Folder to search.
            item_filter: Message class filter.
            offset: Number of server-side results to skip.
            page_size: Maximum server-side results to scan.

        Returns:
            RemoteResult: :class:`ItemPage` on success.
        """
        endpoint = f"{_user(folder.mailbox)}/mailFolders/{quote(folder.id, safe='')}/messages"
        params: dict[str, Any] = {
            "$top": page_size,
            "$skip": offset,
            "$select": "id,subject,receivedDateTime",
            "$expand": _extended_expand(MESSAGE_CLASS_PROPERTY),
        }

        filters = []
        if item_filter.mode is MatchMode.EQUALS:
            filters.append(_extended_equals(MESSAGE_CLASS_PROPERTY, item_filter.text))
        if item_filter.received_before is not None:
            filters.append(f"receivedDateTime lt {_odata_datetime(item_filter.received_before)}")
        if filters:
            params["$filter"] = " and ".join(filters)

        result = self._make_request("GET", endpoint, params=params)
        if not result.ok:
            return result

        scanned = result.value.get("value", [])
        items = []
        for entry in scanned:
            try:
                item = Item.model_validate(entry)
            except ValidationError as e:
                logger.warning(f"Failed to parse item: {e}")
                continue
            item.message_class = _extended_value(entry, MESSAGE_CLASS_PROPERTY)
            if item_filter.matches(item):
                items.append(item)

        return RemoteResult.success(
            ItemPage(
                items=items,
                more_available="@odata.nextLink" in result.value,
                next_offset=offset + len(scanned),
            )
        )

    def _delete_request(self, request_id: str, mailbox: str, item_id: str, delete_mode: DeleteMode) -> dict:
        url = f"{_user(mailbox)}/messages/{quote(item_id, safe='')}"
        if delete_mode is DeleteMode.SOFT_DELETE:
            return {"id": request_id, "method": "DELETE", "url": url}

        if delete_mode is DeleteMode.MOVE_TO_DELETED_ITEMS:
            url = f"{url}/move"
            body = {"destinationId": "deleteditems"}
        else:
            url = f"{url}/permanentDelete"
            body = {}
        return {
            "id": request_id,
            "method": "POST",
            "url": url,
            "body": body,
            "headers": {"Content-Type": "application/json"},
        }

    def _batch_failure(self, payload: dict) -> Optional[RemoteResult]:
        """Inspect ``$batch`` sub-responses.

        A 404 counts as done (the item is already gone, e.g. when a batch is
        retried after throttling). A hard failure wins over throttling.

        Returns:
            Optional[RemoteResult]: Failure to report, None when all succeeded.
        """
        throttled: Optional[RemoteResult] = None
        for response in payload.get("responses", []):
            status = int(response.get("status", 0))
            if status < 300 or status == 404:
                continue

            code, message = _graph_error(response.get("body"))
            if status in THROTTLE_STATUSES or code in THROTTLE_CODES:
                throttled = RemoteResult.failure(
                    f"{status} {code}: {message}".strip(), retryable=True, status_code=status
                )
                continue

            return RemoteResult.failure(
                f"item request {response.get('id')}: {status} {code}: {message}".strip(),
                status_code=status,
            )
        return throttled

    def delete_items(self, mailbox: str, item_ids: list[str], delete_mode: DeleteMode) -> RemoteResult:
        """Delete items using Graph JSON batching.

        Args:
            mailbox: SMTP address of the mailbox.
            item_ids: Item ids to remove.
            delete_mode: Delete semantics.

        Returns:
            RemoteResult: Number of items dispatched on success.
        """
        for start in range(0, len(item_ids), GRAPH_BATCH_LIMIT):
            chunk = item_ids[start:start + GRAPH_BATCH_LIMIT]
            body = {
                "requests": [
                    self._delete_request(str(index), mailbox, item_id, delete_mode)
                    for index, item_id in enumerate(chunk, 1)
                ]
            }

            result = self._make_request("POST", "/$batch", json_data=body)
            if not result.ok:
                return result

            failure = self._batch_failure(result.value)
            if failure is not None:
                return failure

        logger.debug(f"Deleted {len(item_ids)} items ({delete_mode.value}) in {mailbox}")
        return RemoteResult.success(len(item_ids))

    def update_item_class(self, mailbox: str, item_id: str, message_class: str) -> RemoteResult:
        """Rewrite the ``PR_MESSAGE_CLASS`` of one item.

        Args:
            mailbox: SMTP address of the mailbox.
            item_id: Item id.
            message_class: New message class.

        Returns:
            RemoteResult: Empty value on success.
        """
        endpoint = f"{_user(mailbox)}/messages/{quote(item_id, safe='')}"
        json_data = {
            "singleValueExtendedProperties": [
                {"id": MESSAGE_CLASS_PROPERTY, "value": message_class}
            ]
        }

        result = self._make_request("PATCH", endpoint, json_data=json_data)
        if not result.ok:
            return result

        logger.debug(f"Set message class of {item_id} to {message_class}")
        return RemoteResult.success(None)
