"""Folder filter compilation and folder tree matching.

Objective:
    Turn user-supplied include/exclude folder specs into path-matching rules
    and walk a mailbox folder tree applying them.

Folder spec syntax:
    - ``Name`` matches a folder called ``Name`` at any depth.
    - ``\\Name`` matches ``Name`` directly under the root only.
    - ``Name\\*`` also matches everything below ``Name``.
    - ``*`` is a wildcard within a segment or path (``Arch*``).
    - ``#Inbox#`` (and the other :data:`msgclass_cleaner.config.WELL_KNOWN_FOLDERS`
      tokens) stands for the display name of that folder in the mailbox,
      which differs per mailbox language.

    Paths are root-relative and backslash-joined, e.g. ``\\Inbox\\Projects``.
    Matching is case-insensitive.

High-level call tree:
    - :func:`compile_folder_filters`
        - :class:`WellKnownFolderResolver` (one bind per distinct token)
        - :func:`compile_folder_filter` -> :class:`FolderFilterRule`
    - :class:`FolderMatcher`
        - :meth:`FolderMatcher.match`
            - :meth:`FolderMatcher._child_folders` (paged folder search)
            - :func:`evaluate_folder_path` (include/exclude decision)

Operational notes:
    - An unparsable spec is logged and skipped; the other specs still apply.
    - A well-known token that cannot be bound raises
      :class:`msgclass_cleaner.retry.RemoteOperationError`; such a spec is
      never skipped.
    - When several rules of a kind match a path, the last one decides
      whether subfolders are visited.
"""

import logging
import re
from dataclasses import dataclass
from typing import Callable, Iterable, Optional, Sequence

from .config import WELL_KNOWN_FOLDERS
from .models import Folder
from .retry import RemoteOperationExecutor

logger = logging.getLogger(__name__)

SPEC_PATTERN = re.compile(r"^(?P<root>\\)?(?P<keywords>.+?)(?P<sub>\\\*)?$")
TOKEN_PATTERN = re.compile(r"#(?P<name>\w+)#")

ROOT_PREFIX = r"^\\"
ANYWHERE_PREFIX = r"^\\(.*\\)*"
SUBTREE_SUFFIX = r"(\\.*)?$"
EXACT_SUFFIX = "$"

_WELL_KNOWN_BY_LOWER = {name.lower(): name for name in WELL_KNOWN_FOLDERS}


class FolderFilterError(ValueError):
    """Raised for a folder spec that cannot be decomposed."""


@dataclass(frozen=True)
class FolderFilterRule:
    """Compiled folder spec.

    Args:
        pattern: Case-insensitive regex over a root-relative folder path.
        include_subtree: Whether folders below a match are visited.
        spec: Original spec string, for diagnostics.
    """

    pattern: re.Pattern
    include_subtree: bool
    spec: str

    def matches(self, path: str) -> bool:
        return self.pattern.match(path) is not None


class WellKnownFolderResolver:
    """Resolve ``#Name#`` tokens to display names in one mailbox.

    Each distinct token costs one bind call; resolved names are cached for
    the lifetime of the resolver.
    """

    def __init__(self, session, executor: RemoteOperationExecutor, mailbox: str) -> None:
        self.session = session
        self.executor = executor
        self.mailbox = mailbox
        self._names: dict[str, str] = {}

    def display_name(self, token: str) -> Optional[str]:
        """Display name for a token such as ``Inbox``; None when not well-known.

        Raises:
            RemoteOperationError: If the well-known folder cannot be bound.
        """
        canonical = _WELL_KNOWN_BY_LOWER.get(token.lower())
        if canonical is None:
            return None

        if canonical not in self._names:
            folder = self.executor.call(
                f"Bind well-known folder {canonical} in {self.mailbox}",
                self.session.bind_well_known_folder,
                self.mailbox,
                WELL_KNOWN_FOLDERS[canonical],
            )
            self._names[canonical] = folder.display_name
            logger.debug(f"Resolved #{canonical}# to '{folder.display_name}'")

        return self._names[canonical]


def _wildcard(text: str) -> str:
    return re.escape(text).replace(r"\*", ".*")


def _keyword_pattern(keywords: str, resolve: Callable[[str], Optional[str]]) -> str:
    parts = []
    position = 0
    for match in TOKEN_PATTERN.finditer(keywords):
        parts.append(_wildcard(keywords[position:match.start()]))
        display_name = resolve(match.group("name"))
        if display_name is None:
            logger.warning(f"Unknown well-known folder token {match.group(0)}; matching it literally")
            parts.append(_wildcard(match.group(0)))
        else:
            parts.append(re.escape(display_name))
        position = match.end()
    parts.append(_wildcard(keywords[position:]))
    return "".join(parts)


def compile_folder_filter(
    spec: str, resolve: Callable[[str], Optional[str]] = lambda token: None
) -> FolderFilterRule:
    """Compile one folder spec.

    Args:
        spec: Folder spec, e.g. ``\\#Inbox#\\Projects\\*``.
        resolve: Maps a token name (``Inbox``) to a display name, or None.

    Returns:
        FolderFilterRule: Compiled rule.

    Raises:
        FolderFilterError: If the folder spec cannot be decomposed.
    """
    match = SPEC_PATTERN.match(spec or "")
    if not match or not match.group("keywords").strip("\\"):
        raise FolderFilterError(f"Cannot parse folder filter {spec!r}")

    prefix = ROOT_PREFIX if match.group("root") else ANYWHERE_PREFIX
    include_subtree = match.group("sub") is not None
    suffix = SUBTREE_SUFFIX if include_subtree else EXACT_SUFFIX

    regex = prefix + _keyword_pattern(match.group("keywords"), resolve) + suffix
    return FolderFilterRule(
        pattern=re.compile(regex, re.IGNORECASE),
        include_subtree=include_subtree,
        spec=spec,
    )


def compile_folder_filters(
    specs: Iterable[str],
    mailbox: str,
    session,
    executor: RemoteOperationExecutor,
) -> list[FolderFilterRule]:
    """Compile folder specs for one mailbox, skipping unparsable ones.

    Args:
        specs: Raw folder specs.
        mailbox: Mailbox whose well-known folder names are substituted.
        session: Mail session used to bind well-known folders.
        executor: Executor wrapping the bind calls.

    Returns:
        list[FolderFilterRule]: Rules in input order.

    Raises:
        RemoteOperationError: If a well-known token cannot be bound.
    """
    resolver = WellKnownFolderResolver(session, executor, mailbox)
    rules = []
    for spec in specs:
        try:
            rule = compile_folder_filter(spec, resolver.display_name)
        except FolderFilterError as e:
            logger.error(str(e))
            continue
        logger.debug(f"Folder filter {spec!r} -> {rule.pattern.pattern}")
        rules.append(rule)
    return rules


def evaluate_folder_path(
    path: str,
    include_rules: Sequence[FolderFilterRule],
    exclude_rules: Sequence[FolderFilterRule],
) -> tuple[bool, bool]:
    """Decide whether a folder is selected and whether to visit its subfolders.

    Args:
        path: Root-relative folder path.
        include_rules: Include rules (empty selects everything).
        exclude_rules: Exclude rules.

    Returns:
        tuple[bool, bool]: ``(add, descend)``.
    """
    add = True
    descend = True

    if include_rules:
        add = False
        for rule in include_rules:
            if rule.matches(path):
                add = True
                descend = rule.include_subtree

    for rule in exclude_rules:
        if rule.matches(path):
            add = False
            descend = rule.include_subtree

    return add, descend


class FolderMatcher:
    """
    Walks a folder tree and returns the folders selected by the rules.

    Attributes:
        session: Mail session used for folder searches.
        executor: Executor wrapping every folder search.
        page_size: Child folders requested per page.
        folder_class: Server-side folder class filter, None for all folders.
    """

    def __init__(
        self,
        session,
        executor: RemoteOperationExecutor,
        page_size: int = 100,
        folder_class: Optional[str] = None,
    ) -> None:
        self.session = session
        self.executor = executor
        self.page_size = page_size
        self.folder_class = folder_class

    def _child_folders(self, folder: Folder) -> list[Folder]:
        children: list[Folder] = []
        offset = 0
        while True:
            page = self.executor.call(
                f"Find folders under '{folder.path or folder.display_name}'",
                self.session.find_folders,
                folder,
                offset,
                self.page_size,
                self.folder_class,
            )
            children.extend(page.folders)
            offset += len(page.folders)
            if not page.more_available or not page.folders:
                return children

    def match(
        self,
        folder: Folder,
        include_rules: Sequence[FolderFilterRule] = (),
        exclude_rules: Sequence[FolderFilterRule] = (),
    ) -> list[Folder]:
        """Return the selected folders below ``folder``, depth-first.

        ``folder`` itself is never part of the result. Returned folders carry
        their root-relative :attr:`Folder.path`.

        Args:
            folder: Folder to start from (usually a mailbox or archive root).
            include_rules: Include rules.
            exclude_rules: Exclude rules.

        Returns:
            list[Folder]: Selected folders, parents before children.
        """
        matched: list[Folder] = []
        for child in self._child_folders(folder):
            path = f"{folder.path}\\{child.display_name}"
            node = child.model_copy(update={"path": path})

            add, descend = evaluate_folder_path(path, include_rules, exclude_rules)
            if add:
                matched.append(node)
            if descend:
                matched = matched + self.match(node, include_rules, exclude_rules)
        return matched
