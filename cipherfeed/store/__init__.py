"""Record store and crypto session backends.

The HTTP gateway client/server live in ``http_client``/``http_server`` and
are imported explicitly; they pull in httpx and aiohttp.
"""

from .interface import (
    CryptoSession,
    DecryptionResult,
    EncryptedInput,
    ProofCommit,
    RecordStore,
    StoredRecord,
    TxHandle,
    TxReceipt,
)
from .local import LocalCoprocessor, LocalCryptoSession, LocalLedger

__all__ = [
    "CryptoSession",
    "DecryptionResult",
    "EncryptedInput",
    "LocalCoprocessor",
    "LocalCryptoSession",
    "LocalLedger",
    "ProofCommit",
    "RecordStore",
    "StoredRecord",
    "TxHandle",
    "TxReceipt",
]
