"""Create-and-encrypt workflow for new confidential records.

validate -> encrypt -> write -> confirm, strictly in order. Validation is
local; a bad draft never reaches the crypto session or the store. Nothing
is retried: a failed submit must be re-invoked by the caller.
"""

from __future__ import annotations

import asyncio
import secrets
import time
from typing import Any, Callable

import bittensor as bt
import pydantic

from cipherfeed.errors import (
    CipherFeedError,
    NotConnectedError,
    OperationInProgressError,
    TransactionFailedError,
    UserRejectedError,
    ValidationError,
    classify_failure,
)
from cipherfeed.history import HistoryLog
from cipherfeed.identity import IdentityProvider
from cipherfeed.models import HistoryAction, OperationResult, SubmissionDraft, SubmissionState
from cipherfeed.notifier import StatusNotifier
from cipherfeed.store.interface import CryptoSession, RecordStore

from .base import InFlightGuard, StateMachine, await_receipt
from .reader import RecordReader
from .session import SessionGate


RECORD_ID_PREFIX = "news-"
SEED_RANGE = 1000


def validate_draft(draft: SubmissionDraft | dict[str, Any]) -> SubmissionDraft:
    """Parse a draft, raising ValidationError naming the first bad field."""
    if isinstance(draft, SubmissionDraft):
        return draft
    try:
        return SubmissionDraft.model_validate(draft)
    except pydantic.ValidationError as e:
        first = e.errors()[0]
        loc = first.get("loc") or ("draft",)
        field = str(loc[0])
        if field in ("read_time", "readTime"):
            field = "read_time_minutes"
        raise ValidationError(field, f"Invalid {field}: {first.get('msg', '')}") from None


class ValueSubmissionController(StateMachine[SubmissionState]):
    """Drives one submit call per key ``submit-<n>`` through SubmissionState."""

    name = "submission"
    terminal_states = frozenset({SubmissionState.DONE, SubmissionState.FAILED})

    def __init__(
        self,
        gate: SessionGate,
        identity: IdentityProvider,
        crypto: CryptoSession,
        store: RecordStore,
        reader: RecordReader,
        notifier: StatusNotifier,
        history: HistoryLog,
        target_address: str,
        confirmation_timeout: float | None = 120.0,
        clock: Callable[[], float] = time.time,
    ):
        super().__init__()
        self.gate = gate
        self.identity = identity
        self.crypto = crypto
        self.store = store
        self.reader = reader
        self.notifier = notifier
        self.history = history
        self.target_address = target_address
        self.confirmation_timeout = confirmation_timeout
        self._clock = clock
        self._guard = InFlightGuard()
        self._call_seq = 0
        self._last_ms = 0

    def generate_record_id(self) -> str:
        """Time-derived id, bumped past any id already in the view."""
        known = self.reader.known_ids()
        ms = max(int(self._clock() * 1000), self._last_ms + 1)
        while f"{RECORD_ID_PREFIX}{ms}" in known:
            ms += 1
        self._last_ms = ms
        return f"{RECORD_ID_PREFIX}{ms}"

    async def submit(self, draft: SubmissionDraft | dict[str, Any]) -> OperationResult:
        self._call_seq += 1
        call_id = f"submit-{self._call_seq}"
        self.update(call_id, SubmissionState.VALIDATING)

        try:
            caller = self.identity.current_address()
            if not self.identity.is_connected() or not caller:
                raise NotConnectedError("Please connect wallet first")
            parsed = validate_draft(draft)
            self.gate.require_ready()
        except CipherFeedError as e:
            return self._fail(call_id, e, e.message)

        key = f"{caller}:{parsed.title}"
        if self._guard.busy(key):
            return self._fail(
                call_id,
                OperationInProgressError("Submission already in progress"),
                "Submission already in progress",
            )

        async with self._guard.hold(key):
            return await self._run(call_id, caller, parsed)

    async def _run(self, call_id: str, caller: str, draft: SubmissionDraft) -> OperationResult:
        self.notifier.pending("Creating record with FHE encryption...")

        # -- Encrypt --
        self.update(call_id, SubmissionState.ENCRYPTING)
        try:
            encrypted = await self.crypto.encrypt(self.target_address, caller, draft.score)
        except Exception as e:
            return self._fail_from(call_id, e)

        # -- Write --
        self.update(call_id, SubmissionState.WRITING)
        record_id = self.generate_record_id()
        try:
            tx = await self.store.create(
                record_id,
                draft.title,
                encrypted.ciphertext,
                encrypted.proof,
                draft.read_time_minutes,
                secrets.randbelow(SEED_RANGE),
                f"News: {draft.category}",
            )
        except Exception as e:
            return self._fail_from(call_id, e, record_id)

        # -- Confirm --
        self.update(call_id, SubmissionState.CONFIRMING)
        self.notifier.pending("Waiting for transaction...")
        try:
            receipt = await await_receipt(tx, self.confirmation_timeout)
        except asyncio.TimeoutError:
            return self._fail_from(
                call_id,
                TransactionFailedError("confirmation wait timed out", reason=f"tx {tx.tx_id} still pending"),
                record_id,
            )
        except Exception as e:
            return self._fail_from(call_id, e, record_id)
        if not receipt.ok:
            return self._fail_from(
                call_id, TransactionFailedError("write reverted", reason=receipt.reason), record_id,
            )

        self.history.record(record_id, draft.title, HistoryAction.CREATED)
        try:
            await self.reader.list_records()
        except Exception as e:
            bt.logging.warning({"submit_refresh_error": {"record_id": record_id, "error": str(e)}})

        self.update(call_id, SubmissionState.DONE)
        self.notifier.success("Record created successfully")
        bt.logging.info({
            "submit": {
                "status": "done",
                "record_id": record_id,
                "caller": caller[:16],
                "tx": receipt.tx_id or tx.tx_id,
            }
        })
        return OperationResult.success(record_id, "Record created successfully")

    def _fail_from(self, call_id: str, exc: BaseException, record_id: str = "") -> OperationResult:
        error = classify_failure(exc, TransactionFailedError, "Creation failed")
        if isinstance(error, UserRejectedError):
            message = "Transaction rejected"
        else:
            if not isinstance(error, TransactionFailedError):
                error = TransactionFailedError("Creation failed", reason=str(exc))
            message = "Creation failed"
        if record_id:
            bt.logging.error({"submit_failed": {"record_id": record_id, "kind": error.kind, "reason": error.reason}})
        return self._fail(call_id, error, message)

    def _fail(self, call_id: str, error: CipherFeedError, message: str) -> OperationResult:
        self.update(call_id, SubmissionState.FAILED)
        bt.logging.warning({"submit": {"status": "failed", "call": call_id, "kind": error.kind, "message": message}})
        self.notifier.error(message)
        return OperationResult.failure(error, message)


__all__ = ["ValueSubmissionController", "validate_draft"]
