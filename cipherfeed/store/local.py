"""In-process record ledger and FHE co-processor stand-ins.

Used for development and tests. The "ciphertext" is an opaque handle and
the plaintext lives in a co-processor vault; proofs are HMAC-SHA256
attestations under a key shared by the session and the ledger. Writes are
mined asynchronously so callers exercise the same broadcast / await
confirmation split as against a real chain.
"""

from __future__ import annotations

import asyncio
import hashlib
import hmac
import secrets
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Awaitable, Callable

import bittensor as bt

from .interface import DecryptionResult, EncryptedInput, ProofCommit, StoredRecord, TxReceipt


WORD_HEX = 64  # 32-byte ABI word


def encode_clear_values(values: list[int]) -> str:
    """ABI-style encoding: one 32-byte big-endian word per value."""
    return "0x" + "".join(format(v, f"0{WORD_HEX}x") for v in values)


def decode_clear_values(encoding: str) -> list[int]:
    raw = encoding[2:] if encoding.startswith("0x") else encoding
    if len(raw) % WORD_HEX:
        raise ValueError("clear encoding is not word aligned")
    return [int(raw[i:i + WORD_HEX], 16) for i in range(0, len(raw), WORD_HEX)]


class LocalCoprocessor:
    """Holds the attestation key and the plaintext behind each handle."""

    def __init__(self, key: bytes | None = None):
        self._key = key or secrets.token_bytes(32)
        self._vault: dict[str, int] = {}

    def _mac(self, *parts: str) -> str:
        msg = "|".join(parts).encode()
        return hmac.new(self._key, msg, hashlib.sha256).hexdigest()

    def seal(self, target_address: str, caller_address: str, value: int) -> EncryptedInput:
        nonce = secrets.token_hex(16)
        digest = hashlib.sha256(
            f"{target_address}|{caller_address}|{nonce}".encode()
        ).hexdigest()
        handle = "0x" + digest
        self._vault[handle] = value
        proof = self._mac("input", handle, target_address.lower(), caller_address.lower())
        return EncryptedInput(ciphertext=bytes.fromhex(digest), proof=bytes.fromhex(proof))

    def verify_input(self, ciphertext: bytes, proof: bytes, target_address: str, caller_address: str) -> bool:
        handle = "0x" + ciphertext.hex()
        expected = self._mac("input", handle, target_address.lower(), caller_address.lower())
        return hmac.compare_digest(expected, proof.hex())

    def reveal(self, handle: str) -> int:
        try:
            return self._vault[handle]
        except KeyError:
            raise LookupError(f"unknown ciphertext handle: {handle}") from None

    def attest(self, handles: list[str], clear_encoding: str) -> str:
        return self._mac("decrypt", ",".join(handles), clear_encoding)

    def verify_attestation(self, handles: list[str], clear_encoding: str, proof: str) -> bool:
        return hmac.compare_digest(self.attest(handles, clear_encoding), proof)


class LocalCryptoSession:
    """CryptoSession backed by a LocalCoprocessor."""

    def __init__(
        self,
        coprocessor: LocalCoprocessor,
        init_delay: float = 0.0,
        fail_init: bool = False,
    ):
        self.coprocessor = coprocessor
        self.init_delay = init_delay
        self.fail_init = fail_init
        self.initialized = False

    async def initialize(self) -> None:
        if self.init_delay:
            await asyncio.sleep(self.init_delay)
        if self.fail_init:
            raise RuntimeError("public key fetch failed")
        self.initialized = True

    def _require_init(self) -> None:
        if not self.initialized:
            raise RuntimeError("crypto session not initialized")

    async def encrypt(self, target_address: str, caller_address: str, value: int) -> EncryptedInput:
        self._require_init()
        return self.coprocessor.seal(target_address, caller_address, value)

    async def request_decryption_proof(
        self,
        handles: list[str],
        target_address: str,
        on_proof_ready: ProofCommit,
    ) -> DecryptionResult:
        self._require_init()
        values = [self.coprocessor.reveal(h) for h in handles]
        clear_encoding = encode_clear_values(values)
        proof = self.coprocessor.attest(handles, clear_encoding)

        # Phase B: the caller's commit must settle before we report a result
        await on_proof_ready(clear_encoding, proof)

        return DecryptionResult(
            clear_values=dict(zip(handles, values)),
            clear_encoding=clear_encoding,
            proof=proof,
        )


@dataclass
class _LedgerRow:
    title: str
    handle: str
    read_time: int
    public_views: int
    metadata: str
    creator: str
    created_at: datetime
    verified: bool = False
    decrypted_value: int = 0


class RevertError(RuntimeError):
    """A write the ledger refused to accept."""


class LocalTx:
    """TxHandle whose effect is applied by a background mining task."""

    def __init__(
        self,
        tx_id: str,
        apply: Callable[[], Awaitable[TxReceipt]],
        on_reported: Callable[[str], None] | None = None,
    ):
        self.tx_id = tx_id
        self._task = asyncio.ensure_future(apply())
        self._on_reported = on_reported

    async def await_confirmation(self) -> TxReceipt:
        # shield: abandoning the wait must not cancel the write
        receipt = await asyncio.shield(self._task)
        if self._on_reported is not None:
            self._on_reported(self.tx_id)
        return receipt

    def receipt(self) -> TxReceipt | None:
        """The receipt if mined, else None."""
        return self._task.result() if self._task.done() else None


@dataclass
class _Faults:
    send: dict[str, BaseException] = field(default_factory=dict)
    revert: dict[str, str] = field(default_factory=dict)


class LocalLedger:
    """RecordStore kept in process memory.

    ``sender`` on write methods identifies the signer; the gateway passes
    the authenticated hotkey, local callers fall back to ``signer()``.
    """

    def __init__(
        self,
        coprocessor: LocalCoprocessor,
        address: str | None = None,
        signer: Callable[[], str | None] | None = None,
        block_time: float = 0.0,
    ):
        self.coprocessor = coprocessor
        self.address = address or "0x" + secrets.token_hex(20)
        self.signer = signer
        self.block_time = block_time
        self.available = True
        self._rows: dict[str, _LedgerRow] = {}
        self._tx_seq = 0
        self._txs: dict[str, LocalTx] = {}
        self._faults = _Faults()

    # -- Fault injection (tests / demos) --

    def fail_next_send(self, op: str, exc: BaseException) -> None:
        """Make the next ``op`` write raise ``exc`` before broadcast."""
        self._faults.send[op] = exc

    def revert_next(self, op: str, reason: str) -> None:
        """Make the next ``op`` write broadcast but fail to confirm."""
        self._faults.revert[op] = reason

    # -- Reads --

    async def list_ids(self) -> list[str]:
        return list(self._rows.keys())

    async def get(self, record_id: str) -> StoredRecord:
        row = self._row(record_id)
        return StoredRecord(
            title=row.title,
            read_time=row.read_time,
            public_views=row.public_views,
            created_at=row.created_at,
            creator=row.creator,
            verified=row.verified,
            decrypted_value=row.decrypted_value,
        )

    async def get_ciphertext_handle(self, record_id: str) -> str:
        return self._row(record_id).handle

    async def is_available(self) -> bool:
        return self.available

    def _signer_address(self) -> str:
        if self.signer is None:
            return ""
        return self.signer() or ""

    def _row(self, record_id: str) -> _LedgerRow:
        row = self._rows.get(record_id)
        if row is None:
            raise LookupError(f"Record does not exist: {record_id}")
        return row

    # -- Writes --

    def _next_tx_id(self) -> str:
        self._tx_seq += 1
        return f"0x{self._tx_seq:064x}"

    def _broadcast(self, op: str, apply: Callable[[], TxReceipt]) -> LocalTx:
        exc = self._faults.send.pop(op, None)
        if exc is not None:
            raise exc

        tx_id = self._next_tx_id()
        revert_reason = self._faults.revert.pop(op, None)

        async def _mine() -> TxReceipt:
            if self.block_time:
                await asyncio.sleep(self.block_time)
            if revert_reason is not None:
                return TxReceipt(ok=False, tx_id=tx_id, reason=revert_reason)
            try:
                receipt = apply()
            except Exception as e:
                return TxReceipt(ok=False, tx_id=tx_id, reason=str(e))
            receipt.tx_id = tx_id
            return receipt

        tx = LocalTx(tx_id, _mine, on_reported=self.forget_tx)
        self._txs[tx_id] = tx
        bt.logging.debug({"local_ledger": {"op": op, "tx": tx_id[-8:]}})
        return tx

    def get_tx(self, tx_id: str) -> LocalTx | None:
        return self._txs.get(tx_id)

    def forget_tx(self, tx_id: str) -> None:
        """Drop a transaction whose outcome has been reported."""
        self._txs.pop(tx_id, None)

    async def create(
        self,
        record_id: str,
        title: str,
        ciphertext: bytes,
        proof: bytes,
        read_time: int,
        seed: int,
        metadata: str,
        sender: str | None = None,
    ) -> LocalTx:
        creator = sender or self._signer_address()
        if record_id in self._rows:
            raise RevertError("execution reverted: Record already exists")
        if not self.coprocessor.verify_input(ciphertext, proof, self.address, creator):
            raise RevertError("execution reverted: Invalid input proof")

        def _apply() -> TxReceipt:
            if record_id in self._rows:
                return TxReceipt(ok=False, reason="Record already exists")
            self._rows[record_id] = _LedgerRow(
                title=title,
                handle="0x" + ciphertext.hex(),
                read_time=read_time,
                public_views=seed,
                metadata=metadata,
                creator=creator,
                created_at=datetime.now(timezone.utc),
            )
            return TxReceipt(ok=True)

        return self._broadcast("create", _apply)

    async def submit_verification(
        self,
        record_id: str,
        clear_encoding: str,
        proof: str,
        sender: str | None = None,
    ) -> LocalTx:
        row = self._row(record_id)
        # Gas estimation catches the race when it is already visible
        if row.verified:
            raise RevertError("execution reverted: Data already verified")
        if not self.coprocessor.verify_attestation([row.handle], clear_encoding, proof):
            raise RevertError("execution reverted: Invalid decryption proof")

        def _apply() -> TxReceipt:
            if row.verified:
                return TxReceipt(ok=False, reason="Data already verified")
            row.verified = True
            row.decrypted_value = decode_clear_values(clear_encoding)[0]
            return TxReceipt(ok=True)

        return self._broadcast("verify", _apply)


__all__ = [
    "LocalCoprocessor",
    "LocalCryptoSession",
    "LocalLedger",
    "LocalTx",
    "RevertError",
    "decode_clear_values",
    "encode_clear_values",
]
