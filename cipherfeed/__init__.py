"""Confidential record feed.

Create records carrying an FHE-encrypted score and reveal the score later
through a verified decryption proof. ``ConfidentialFeed`` is the entry
point; ``build_local_feed`` wires it to the in-process ledger.
"""

from .config import FeedSettings, load_settings
from .models import (
    ConfidentialRecord,
    HistoryEntry,
    Notification,
    OperationResult,
    SessionState,
    SubmissionDraft,
    derive_category,
)
from .service import ConfidentialFeed, build_local_feed

__version__ = "0.1.0"

__all__ = [
    "ConfidentialFeed",
    "ConfidentialRecord",
    "FeedSettings",
    "HistoryEntry",
    "Notification",
    "OperationResult",
    "SessionState",
    "SubmissionDraft",
    "build_local_feed",
    "derive_category",
    "load_settings",
]
