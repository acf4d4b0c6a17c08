import logging
from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest

from msgclass_cleaner import cli
from msgclass_cleaner.config import DeleteMode, FolderType
from msgclass_cleaner.models import CompletionStatus, MailboxResult, ProcessingStatistics
from msgclass_cleaner.orchestrator import MailboxAccessError


@pytest.fixture
def cleaner(monkeypatch):
    """Replace MessageClassCleaner with a mock and record its kwargs."""

    instance = MagicMock()
    instance.run.return_value = []
    captured = {}

    def factory(*args, **kwargs):
        captured.update(kwargs)
        return instance

    monkeypatch.setattr(cli, "MessageClassCleaner", factory)
    monkeypatch.setattr(cli, "get_settings", MagicMock())
    monkeypatch.setattr(cli, "setup_logging", MagicMock())
    instance.captured = captured
    return instance


def _result(status: CompletionStatus = CompletionStatus.CLEAN) -> MailboxResult:
    start = datetime(2024, 1, 1, tzinfo=timezone.utc)
    stats = ProcessingStatistics(
        folders_found=3,
        folders_processed=3,
        items_matched=120,
        items_removed=118,
        items_failed=2,
        started_at=start,
        finished_at=start.replace(minute=1),
    )
    return MailboxResult(identity="user@contoso.com", scope="Mailbox", status=status, statistics=stats)


def test_cli_forwards_options_to_cleaner(cleaner) -> None:
    """Ensure parsed arguments end up in CleanupOptions."""

    exit_code = cli.main(
        [
            "a@contoso.com",
            "b@contoso.com",
            "-m",
            "*Vault*",
            "--delete-mode",
            "MoveToDeletedItems",
            "--type",
            "Mail",
            "--before",
            "2020-01-01",
            "--include-folders",
            "#Inbox#\\*",
            "Archive",
            "--exclude-folders",
            "2020",
            "--mailbox-only",
            "--force",
        ]
    )

    assert exit_code == 0
    cleaner.run.assert_called_once_with(["a@contoso.com", "b@contoso.com"])
    options = cleaner.captured["options"]
    assert options.message_class == "*Vault*"
    assert options.delete_mode is DeleteMode.MOVE_TO_DELETED_ITEMS
    assert options.folder_type is FolderType.MAIL
    assert options.received_before == datetime(2020, 1, 1)
    assert options.include_folders == ["#Inbox#\\*", "Archive"]
    assert options.exclude_folders == ["2020"]
    assert options.mailbox_only is True
    assert options.force is True
    assert options.dry_run is False


def test_cli_passes_console_prompt(cleaner) -> None:
    """Ensure the cleaner gets an interactive confirmation callback."""

    cli.main(["user@contoso.com", "-m", "IPM.Note.Old", "-r", "IPM.Note"])

    assert isinstance(cleaner.captured["confirm"], cli.ConsolePrompt)
    assert cleaner.captured["options"].replace_class == "IPM.Note"


def test_cli_returns_one_when_a_root_is_degraded(cleaner) -> None:
    """Ensure degraded completion maps to a non-zero exit code."""

    cleaner.run.return_value = [_result(), _result(CompletionStatus.DEGRADED)]

    assert cli.main(["user@contoso.com", "-m", "IPM.Note.Old", "-r", "IPM.Note", "-f"]) == 1


def test_cli_returns_one_on_mailbox_access_error(cleaner) -> None:
    """Ensure an aborted run maps to a non-zero exit code."""

    cleaner.run.side_effect = MailboxAccessError("user@contoso.com", "404")

    assert cli.main(["user@contoso.com", "-m", "IPM.Note", "-f"]) == 1


def test_cli_rejects_both_scope_flags(cleaner) -> None:
    """Ensure --mailbox-only and --archive-only cannot be combined."""

    with pytest.raises(SystemExit):
        cli.main(["user@contoso.com", "-m", "IPM.Note", "--mailbox-only", "--archive-only"])


def test_cli_rejects_empty_classes_before_connecting(cleaner) -> None:
    """Ensure empty -m or -r values fail validation without running the cleaner."""

    assert cli.main(["user@contoso.com", "-m", ""]) == 1
    assert cli.main(["user@contoso.com", "-m", "IPM.Old", "-r", ""]) == 1

    cleaner.run.assert_not_called()


def test_cli_offers_only_mail_and_all_types(cleaner) -> None:
    """Ensure folder types whose items Graph cannot list are refused."""

    with pytest.raises(SystemExit):
        cli.main(["user@contoso.com", "-m", "IPM.Note", "--type", "Calendar"])


def test_cli_rejects_invalid_date(cleaner) -> None:
    """Ensure --before must be an ISO date."""

    with pytest.raises(SystemExit):
        cli.main(["user@contoso.com", "-m", "IPM.Note", "--before", "yesterday"])


def test_console_prompt_answers() -> None:
    """Ensure y/n answers map to True/False."""

    answers = iter(["y", "N", "yes", ""])
    prompt = cli.ConsolePrompt(ask=lambda text: next(answers))

    assert [prompt("step") for _ in range(4)] == [True, False, True, False]


def test_console_prompt_yes_to_all() -> None:
    """Ensure 'a' confirms the current and every later step without asking."""

    ask = MagicMock(return_value="a")
    prompt = cli.ConsolePrompt(ask=ask)

    assert prompt("first") is True
    assert prompt("second") is True
    ask.assert_called_once()


def test_print_results_summary(capsys) -> None:
    """Ensure per-root counters and the summary line are printed."""

    cli.print_results([_result(), _result(CompletionStatus.DEGRADED)])

    captured = capsys.readouterr().out
    assert "user@contoso.com (Mailbox)" in captured
    assert "118 processed / 120 matched" in captured
    assert "120.0 items/min" in captured
    assert "SUMMARY: 1 clean, 1 degraded" in captured


def test_print_results_empty(capsys) -> None:
    """Ensure an empty run is reported."""

    cli.print_results([])

    assert "No mailboxes processed." in capsys.readouterr().out


def test_library_chatter_is_suppressed_unless_debug() -> None:
    """Ensure msal/urllib3 info logs are hidden unless running at DEBUG."""

    record = logging.LogRecord(
        name="urllib3.connectionpool",
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg="Starting new HTTPS connection (1): graph.microsoft.com:443",
        args=(),
        exc_info=None,
    )
    own = logging.LogRecord(
        name="msgclass_cleaner.orchestrator",
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg="Processing identity",
        args=(),
        exc_info=None,
    )

    root_logger = logging.getLogger()
    previous_level = root_logger.level

    try:
        root_logger.setLevel(logging.INFO)
        f = cli._LibraryChatterFilter()
        assert f.filter(record) is False
        assert f.filter(own) is True

        root_logger.setLevel(logging.DEBUG)
        assert f.filter(record) is True
    finally:
        root_logger.setLevel(previous_level)
