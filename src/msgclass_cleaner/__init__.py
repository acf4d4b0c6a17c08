"""Message class cleaner package.

Objective:
    Provide a Python implementation of a mailbox cleanup workflow:
    - Connect to Exchange Online mailboxes using Microsoft Graph.
    - Select folders with include/exclude folder filters.
    - Find items by message class (e.g. leftover archiving stubs).
    - Delete them or relabel them with another message class.

Key modules:
    - :mod:`msgclass_cleaner.auth`:
        Microsoft Graph app-only authentication (client credentials).
    - :mod:`msgclass_cleaner.mail_session`:
        Graph API wrapper for folders and items.
    - :mod:`msgclass_cleaner.retry`:
        Throttling-aware execution of remote calls.
    - :mod:`msgclass_cleaner.folder_filter`:
        Folder filter compilation and folder tree matching.
    - :mod:`msgclass_cleaner.orchestrator`:
        End-to-end workflow coordination.
    - :mod:`msgclass_cleaner.cli`:
        User-facing entrypoint.
"""

__version__ = "0.1.0"
