"""Contracts for the external record store and FHE crypto session.

Implementations: LocalLedger / LocalCryptoSession (in-process),
HTTPRecordStore (gateway client).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Awaitable, Callable, Protocol, runtime_checkable


@dataclass
class StoredRecord:
    """Public fields of a record as the store returns them."""

    title: str
    read_time: int
    public_views: int
    created_at: datetime
    creator: str
    verified: bool
    decrypted_value: int = 0


@dataclass
class TxReceipt:
    """Terminal outcome of a write."""

    ok: bool
    tx_id: str = ""
    reason: str = ""

    def __bool__(self) -> bool:
        return self.ok


@runtime_checkable
class TxHandle(Protocol):
    """A broadcast write. Waiting can be abandoned; the write cannot."""

    tx_id: str

    async def await_confirmation(self) -> TxReceipt:
        ...


@dataclass
class EncryptedInput:
    ciphertext: bytes
    proof: bytes


@dataclass
class DecryptionResult:
    """Cleartexts keyed by ciphertext handle."""

    clear_values: dict[str, int] = field(default_factory=dict)
    clear_encoding: str = ""
    proof: str = ""


# Phase B of a decryption: receives (clear_encoding, proof) and resolves
# only once the on-chain verification write has settled.
ProofCommit = Callable[[str, str], Awaitable[None]]


@runtime_checkable
class CryptoSession(Protocol):
    """FHE co-processor session."""

    async def initialize(self) -> None:
        """Set up keys/session. Raises on failure."""
        ...

    async def encrypt(self, target_address: str, caller_address: str, value: int) -> EncryptedInput:
        ...

    async def request_decryption_proof(
        self,
        handles: list[str],
        target_address: str,
        on_proof_ready: ProofCommit,
    ) -> DecryptionResult:
        """Compute a decryption proof, then await ``on_proof_ready`` before returning."""
        ...


@runtime_checkable
class RecordStore(Protocol):
    """Read and write access to confidential records on the ledger."""

    async def list_ids(self) -> list[str]:
        ...

    async def get(self, record_id: str) -> StoredRecord:
        ...

    async def get_ciphertext_handle(self, record_id: str) -> str:
        ...

    async def create(
        self,
        record_id: str,
        title: str,
        ciphertext: bytes,
        proof: bytes,
        read_time: int,
        seed: int,
        metadata: str,
    ) -> TxHandle:
        ...

    async def submit_verification(self, record_id: str, clear_encoding: str, proof: str) -> TxHandle:
        ...

    async def is_available(self) -> bool:
        ...


__all__ = [
    "CryptoSession",
    "DecryptionResult",
    "EncryptedInput",
    "ProofCommit",
    "RecordStore",
    "StoredRecord",
    "TxHandle",
    "TxReceipt",
]
