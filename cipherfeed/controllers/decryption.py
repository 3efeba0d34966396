"""Reveal workflow: turn a record's ciphertext into a verified cleartext.

A reveal is a two-phase protocol with the crypto session:

  phase A  the session computes a decryption proof for ``{handle}``
  phase B  a VerificationCommit (passed into phase A) writes the proof
           on-chain and resolves only once that write is confirmed

The reveal completes only after both phases. Records that are already
verified short-circuit to the cached value with no proof and no write.
"""

from __future__ import annotations

import asyncio
from typing import Callable

import bittensor as bt

from cipherfeed.errors import (
    CipherFeedError,
    NotConnectedError,
    ProofVerificationError,
    TransactionFailedError,
    UserRejectedError,
    classify_failure,
    is_already_verified,
)
from cipherfeed.history import HistoryLog
from cipherfeed.identity import IdentityProvider
from cipherfeed.models import DecryptionState, HistoryAction, OperationResult
from cipherfeed.notifier import StatusNotifier
from cipherfeed.store.interface import CryptoSession, RecordStore, TxReceipt

from .base import InFlightGuard, StateMachine, await_receipt
from .reader import RecordReader
from .session import SessionGate


class VerificationCommit:
    """Phase B continuation handed to ``request_decryption_proof``.

    Submits the verification write and waits for it to settle. The outcome
    is kept on the object so the controller can tell a commit failure apart
    from a proof failure after phase A returns or raises.
    """

    def __init__(
        self,
        store: RecordStore,
        record_id: str,
        timeout: float | None = None,
        on_broadcast: Callable[[str], None] | None = None,
    ):
        self.store = store
        self.record_id = record_id
        self.timeout = timeout
        self.on_broadcast = on_broadcast
        self.calls = 0
        self.tx_id = ""
        self.receipt: TxReceipt | None = None
        self.error: BaseException | None = None

    @property
    def settled(self) -> bool:
        return self.receipt is not None and self.receipt.ok

    async def __call__(self, clear_encoding: str, proof: str) -> None:
        self.calls += 1
        try:
            tx = await self.store.submit_verification(self.record_id, clear_encoding, proof)
            self.tx_id = tx.tx_id
            if self.on_broadcast is not None:
                self.on_broadcast(tx.tx_id)
            receipt = await await_receipt(tx, self.timeout)
        except asyncio.TimeoutError:
            self.error = TransactionFailedError(
                "verification wait timed out", reason=f"tx {self.tx_id} still pending",
            )
            raise self.error from None
        except Exception as e:
            self.error = e
            raise

        self.receipt = receipt
        if not receipt.ok:
            self.error = TransactionFailedError("verification reverted", reason=receipt.reason)
            raise self.error


class DecryptionController(StateMachine[DecryptionState]):
    """Drives reveal(record_id) through DecryptionState, keyed by record id."""

    name = "decryption"

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
        proof_timeout: float | None = 300.0,
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
        self.proof_timeout = proof_timeout
        self._guard = InFlightGuard()

    async def reveal(self, record_id: str) -> OperationResult:
        """Reveal a record's score.

        Returns the cleartext on success, ``value=None`` when another caller
        verified the record first. Concurrent reveals of the same record
        queue; the later ones take the cached path.
        """
        try:
            if not self.identity.is_connected() or not self.identity.current_address():
                raise NotConnectedError("Please connect wallet first")
            self.gate.require_ready()
        except CipherFeedError as e:
            bt.logging.warning({"reveal": {"record_id": record_id, "status": "rejected", "kind": e.kind}})
            self.notifier.error(e.message)
            return OperationResult.failure(e, e.message)

        async with self._guard.hold(record_id):
            return await self._reveal(record_id)

    async def _reveal(self, record_id: str) -> OperationResult:
        # -- Cache --
        self.update(record_id, DecryptionState.CHECKING_CACHE)
        try:
            record = await self.reader.get_record(record_id)
        except Exception as e:
            return self._fail_from(record_id, e, TransactionFailedError)

        if record.verified:
            self.history.record(record_id, record.title, HistoryAction.DECRYPTED)
            self.update(record_id, DecryptionState.DONE)
            bt.logging.info({"reveal": {"record_id": record_id, "status": "cached"}})
            return OperationResult.success(record.revealed_score)

        # -- Proof (phase A, which runs phase B before returning) --
        self.update(record_id, DecryptionState.REQUESTING_PROOF)
        try:
            handle = await self.store.get_ciphertext_handle(record_id)
        except Exception as e:
            return self._fail_from(record_id, e, ProofVerificationError)

        commit = VerificationCommit(
            self.store,
            record_id,
            timeout=self.confirmation_timeout,
            on_broadcast=lambda _tx_id: self._verifying(record_id),
        )
        try:
            proof_call = self.crypto.request_decryption_proof([handle], self.target_address, commit)
            if self.proof_timeout is None:
                result = await proof_call
            else:
                result = await asyncio.wait_for(proof_call, self.proof_timeout)
        except asyncio.TimeoutError:
            error = commit.error or ProofVerificationError("proof request timed out")
            return self._fail_from(record_id, error, ProofVerificationError)
        except Exception as e:
            error = commit.error or e
            if is_already_verified(error):
                return await self._resolve_race(record_id)
            default = TransactionFailedError if commit.error is not None else ProofVerificationError
            return self._fail_from(record_id, error, default)

        if commit.error is not None and is_already_verified(commit.error):
            return await self._resolve_race(record_id)
        if not commit.settled:
            return self._fail_from(
                record_id,
                ProofVerificationError("proof was never committed", reason=f"commit calls: {commit.calls}"),
                ProofVerificationError,
            )

        # -- Verify --
        if self.state_of(record_id) != DecryptionState.VERIFYING:
            self._verifying(record_id)
        clear_value = result.clear_values.get(handle)
        if clear_value is None:
            return self._fail_from(
                record_id,
                ProofVerificationError("no cleartext for handle", reason=handle),
                ProofVerificationError,
            )

        # -- Finalize --
        try:
            record = await self.reader.get_record(record_id)
        except Exception as e:
            bt.logging.warning({"reveal_refresh_error": {"record_id": record_id, "error": str(e)}})

        self.history.record(record_id, record.title, HistoryAction.DECRYPTED)
        self.update(record_id, DecryptionState.DONE)
        self.notifier.success("Score decrypted successfully")
        bt.logging.info({"reveal": {"record_id": record_id, "status": "verified", "tx": commit.tx_id}})
        return OperationResult.success(int(clear_value))

    def _verifying(self, record_id: str) -> None:
        self.update(record_id, DecryptionState.VERIFYING)
        self.notifier.pending("Verifying decryption...")

    async def _resolve_race(self, record_id: str) -> OperationResult:
        """Someone else verified first: refresh and report success with no new value."""
        try:
            await self.reader.get_record(record_id)
        except Exception as e:
            bt.logging.warning({"reveal_refresh_error": {"record_id": record_id, "error": str(e)}})
        self.update(record_id, DecryptionState.DONE)
        bt.logging.info({"reveal": {"record_id": record_id, "status": "already_verified"}})
        return OperationResult.success(None, "already verified")

    def _fail_from(
        self,
        record_id: str,
        exc: BaseException,
        default: type[CipherFeedError],
    ) -> OperationResult:
        error = classify_failure(exc, default, "Decryption failed")
        message = "Transaction rejected" if isinstance(error, UserRejectedError) else "Decryption failed"
        self.update(record_id, DecryptionState.FAILED)
        bt.logging.error({
            "reveal": {
                "record_id": record_id,
                "status": "failed",
                "kind": error.kind,
                "reason": error.reason or str(exc),
            }
        })
        self.notifier.error(message)
        return OperationResult.failure(error, message)


__all__ = ["DecryptionController", "VerificationCommit"]
