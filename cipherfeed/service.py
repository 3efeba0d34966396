"""ConfidentialFeed: the operations a presentation layer calls.

Wires one identity, crypto session and record store to the session gate,
the two workflow controllers, the record reader, and the notifier/history
pair they report through. Connecting the identity starts the session
setup; disconnecting resets it.
"""

from __future__ import annotations

import asyncio
from typing import Any

import bittensor as bt

from cipherfeed.config import FeedSettings
from cipherfeed.controllers import (
    DecryptionController,
    RecordReader,
    SessionGate,
    ValueSubmissionController,
)
from cipherfeed.errors import NotConnectedError, SessionInitError
from cipherfeed.history import HistoryLog
from cipherfeed.identity import IdentityProvider, WalletIdentity
from cipherfeed.models import OperationResult, SessionState, SubmissionDraft
from cipherfeed.notifier import StatusNotifier
from cipherfeed.store.http_client import HTTPRecordStore
from cipherfeed.store.interface import CryptoSession, RecordStore
from cipherfeed.store.local import LocalCoprocessor, LocalCryptoSession, LocalLedger


class ConfidentialFeed:
    """Facade over the confidential-value lifecycle controllers."""

    def __init__(
        self,
        identity: IdentityProvider,
        crypto: CryptoSession,
        store: RecordStore,
        settings: FeedSettings | None = None,
    ):
        self.settings = settings or FeedSettings()
        self.identity = identity
        self.notifier = StatusNotifier(
            success_seconds=self.settings.success_notice_seconds,
            other_seconds=self.settings.notice_seconds,
        )
        self.history = HistoryLog(limit=self.settings.history_limit)
        self.gate = SessionGate(crypto, self.notifier)
        self.reader = RecordReader(store)
        self.store = store

        shared: dict[str, Any] = dict(
            gate=self.gate,
            identity=identity,
            crypto=crypto,
            store=store,
            reader=self.reader,
            notifier=self.notifier,
            history=self.history,
            target_address=self.settings.target_address,
            confirmation_timeout=self.settings.confirmation_timeout,
        )
        self.submission = ValueSubmissionController(**shared)
        self.decryption = DecryptionController(**shared, proof_timeout=self.settings.proof_timeout)

        self._unsubscribe = None
        self._auto_init: asyncio.Task | None = None

    # -- Identity wiring --

    def attach(self) -> None:
        """Follow identity connection changes. Starts setup if already connected."""
        if self._unsubscribe is None:
            self._unsubscribe = self.identity.subscribe(self._on_connection_change)
        if self.identity.is_connected():
            self._schedule_initialize()

    def detach(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def _on_connection_change(self, connected: bool) -> None:
        if connected:
            self._schedule_initialize()
        else:
            self.gate.reset()

    def _schedule_initialize(self) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            bt.logging.debug({"feed": "no running loop, session setup deferred"})
            return
        self._auto_init = loop.create_task(self.initialize_session())

    # -- Operations --

    async def initialize_session(self) -> OperationResult:
        if not self.identity.is_connected():
            error = NotConnectedError("Please connect wallet first")
            return OperationResult.failure(error, error.message)

        state = await self.gate.initialize()
        if state == SessionState.READY:
            return OperationResult.success(state)
        error = self.gate.last_error or SessionInitError(f"FHE session {state.value}")
        return OperationResult.failure(error, error.message)

    async def submit(self, draft: SubmissionDraft | dict[str, Any]) -> OperationResult:
        return await self.submission.submit(draft)

    async def reveal(self, record_id: str) -> OperationResult:
        return await self.decryption.reveal(record_id)

    async def list_records(self) -> OperationResult:
        """Public view of every record. Needs a connection, not a session."""
        if not self.identity.is_connected():
            error = NotConnectedError("Please connect wallet first")
            return OperationResult.failure(error, error.message)
        try:
            records = await self.reader.list_records()
        except Exception as e:
            bt.logging.error({"list_records_error": str(e)})
            self.notifier.error("Failed to load records")
            return OperationResult(ok=False, error_kind="load_failed", message="Failed to load records")
        return OperationResult.success(records)

    async def check_availability(self) -> OperationResult:
        try:
            available = await self.store.is_available()
        except Exception as e:
            bt.logging.warning({"availability_check_error": str(e)})
            self.notifier.error("Availability check failed")
            return OperationResult(ok=False, error_kind="unavailable", message="Availability check failed")
        if available:
            self.notifier.success("FHE system is available!")
        return OperationResult.success(bool(available))

    async def close(self) -> None:
        self.detach()
        if self._auto_init is not None and not self._auto_init.done():
            self._auto_init.cancel()
            try:
                await self._auto_init
            except asyncio.CancelledError:
                pass
        self.notifier.close()


def build_local_feed(
    identity: IdentityProvider,
    settings: FeedSettings | None = None,
    block_time: float = 0.0,
) -> tuple[ConfidentialFeed, LocalLedger]:
    """A feed over an in-process ledger and co-processor (dev and tests)."""
    settings = settings or FeedSettings()
    coprocessor = LocalCoprocessor()
    ledger = LocalLedger(
        coprocessor,
        address=settings.target_address or None,
        signer=identity.current_address,
        block_time=block_time,
    )
    settings = settings.model_copy(update={"target_address": ledger.address})
    feed = ConfidentialFeed(identity, LocalCryptoSession(coprocessor), ledger, settings)
    return feed, ledger


def build_gateway_feed(
    identity: WalletIdentity,
    settings: FeedSettings,
) -> tuple[ConfidentialFeed, HTTPRecordStore]:
    """A feed over a remote record gateway.

    ``settings.target_address`` must be the gateway contract and
    ``settings.attestation_key`` the key the gateway was started with.
    """
    if not settings.target_address:
        raise ValueError("target_address is required for a gateway feed")
    store = HTTPRecordStore(settings.gateway_url, identity.wallet)
    crypto = LocalCryptoSession(LocalCoprocessor(key=settings.attestation_key_bytes()))
    return ConfidentialFeed(identity, crypto, store, settings), store


__all__ = ["ConfidentialFeed", "build_gateway_feed", "build_local_feed"]
