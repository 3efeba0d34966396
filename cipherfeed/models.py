"""Pydantic models for confidential records and controller state.

Public record view, notification/history entries, submission drafts and
the discriminated OperationResult returned by every controller call.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator


# ---------------------------------------------------------------------------
# Categories - order is part of the derivation contract, do not reorder
# ---------------------------------------------------------------------------

CATEGORIES: tuple[str, ...] = (
    "technology",
    "politics",
    "entertainment",
    "sports",
    "science",
)

DEFAULT_READ_TIME_MINUTES = 3
MIN_SCORE = 1
MAX_SCORE = 10


def derive_category(record_id: str) -> str:
    """Category for a record id: sum of code points modulo len(CATEGORIES)."""
    return CATEGORIES[sum(ord(ch) for ch in record_id) % len(CATEGORIES)]


# ---------------------------------------------------------------------------
# State enums
# ---------------------------------------------------------------------------


class SessionState(str, Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"
    FAILED = "failed"


class SubmissionState(str, Enum):
    VALIDATING = "validating"
    ENCRYPTING = "encrypting"
    WRITING = "writing"
    CONFIRMING = "confirming"
    DONE = "done"
    FAILED = "failed"


class DecryptionState(str, Enum):
    CHECKING_CACHE = "checking_cache"
    REQUESTING_PROOF = "requesting_proof"
    VERIFYING = "verifying"
    DONE = "done"
    FAILED = "failed"


class NoticeStatus(str, Enum):
    PENDING = "pending"
    SUCCESS = "success"
    ERROR = "error"


class HistoryAction(str, Enum):
    CREATED = "created"
    DECRYPTED = "decrypted"


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------


class ConfidentialRecord(BaseModel):
    """Public view of a record. The score itself stays encrypted until revealed."""

    id: str = Field(min_length=1)
    title: str
    category: str
    read_time_minutes: int = DEFAULT_READ_TIME_MINUTES
    public_view_count: int = 0
    created_at: datetime
    creator_address: str
    verified: bool = False
    revealed_score: int | None = None

    @model_validator(mode="after")
    def _score_only_when_verified(self) -> ConfidentialRecord:
        if not self.verified:
            self.revealed_score = None
        elif self.revealed_score is None:
            self.revealed_score = 0
        return self


class Notification(BaseModel):
    status: NoticeStatus
    message: str
    expires_at: float


class HistoryEntry(BaseModel):
    record_id: str
    title: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    action: HistoryAction


# ---------------------------------------------------------------------------
# Submission draft
# ---------------------------------------------------------------------------


class SubmissionDraft(BaseModel):
    """User-entered values for a new record.

    Accepts form strings ("7", "5"). Validation never touches the network.
    """

    model_config = ConfigDict(populate_by_name=True)

    title: str = Field(min_length=1)
    category: str = CATEGORIES[0]
    read_time_minutes: int = Field(
        default=DEFAULT_READ_TIME_MINUTES,
        validation_alias=AliasChoices("read_time_minutes", "read_time", "readTime"),
    )
    score: int = Field(ge=MIN_SCORE, le=MAX_SCORE)

    @field_validator("title", mode="before")
    @classmethod
    def _strip_title(cls, v: Any) -> Any:
        return v.strip() if isinstance(v, str) else v

    @field_validator("category", mode="before")
    @classmethod
    def _known_category(cls, v: Any) -> Any:
        if v is None or v == "":
            return CATEGORIES[0]
        if v not in CATEGORIES:
            raise ValueError(f"unknown category: {v}")
        return v

    @field_validator("read_time_minutes", mode="before")
    @classmethod
    def _read_time_or_default(cls, v: Any) -> int:
        try:
            minutes = int(str(v).strip())
        except (TypeError, ValueError):
            return DEFAULT_READ_TIME_MINUTES
        return minutes if minutes > 0 else DEFAULT_READ_TIME_MINUTES

    @field_validator("score", mode="before")
    @classmethod
    def _integer_score(cls, v: Any) -> Any:
        if isinstance(v, bool):
            raise ValueError("score must be an integer")
        if isinstance(v, str):
            v = v.strip()
        return v


# ---------------------------------------------------------------------------
# Operation outcome
# ---------------------------------------------------------------------------


@dataclass
class OperationResult:
    """Outcome of a controller operation.

    ``ok`` with ``value=None`` is a valid success (e.g. a reveal that lost
    the verification race). On failure ``error_kind`` names the taxonomy
    entry and ``message`` is what the notifier showed.
    """

    ok: bool
    value: Any = None
    error_kind: str = ""
    message: str = ""
    field: str | None = None

    def __bool__(self) -> bool:
        return self.ok

    @classmethod
    def success(cls, value: Any = None, message: str = "") -> OperationResult:
        return cls(ok=True, value=value, message=message)

    @classmethod
    def failure(cls, error: Any, message: str = "") -> OperationResult:
        return cls(
            ok=False,
            error_kind=getattr(error, "kind", "error"),
            message=message or str(error),
            field=getattr(error, "field", None),
        )


__all__ = [
    "CATEGORIES",
    "DEFAULT_READ_TIME_MINUTES",
    "MAX_SCORE",
    "MIN_SCORE",
    "ConfidentialRecord",
    "DecryptionState",
    "HistoryAction",
    "HistoryEntry",
    "NoticeStatus",
    "Notification",
    "OperationResult",
    "SessionState",
    "SubmissionDraft",
    "SubmissionState",
    "derive_category",
]
