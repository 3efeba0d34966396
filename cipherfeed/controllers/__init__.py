"""Controllers for the confidential-value lifecycle.

SessionGate gates everything; ValueSubmissionController and
DecryptionController drive the create and reveal workflows; RecordReader
keeps the public view current. Each is an explicit state machine with a
``subscribe`` hook for transitions.
"""

from .base import InFlightGuard, StateMachine, await_receipt
from .session import SessionGate
from .reader import RecordReader, to_record
from .submission import ValueSubmissionController, validate_draft
from .decryption import DecryptionController, VerificationCommit

__all__ = [
    "DecryptionController",
    "InFlightGuard",
    "RecordReader",
    "SessionGate",
    "StateMachine",
    "ValueSubmissionController",
    "VerificationCommit",
    "await_receipt",
    "to_record",
    "validate_draft",
]
