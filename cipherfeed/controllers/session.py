"""At-most-once FHE session setup.

Concurrent ``initialize`` calls collapse onto one in-flight attempt and all
observe its terminal state. A failed session stays FAILED until someone
calls ``initialize`` again; nothing retries automatically.
"""

from __future__ import annotations

import asyncio

import bittensor as bt

from cipherfeed.errors import SessionInitError
from cipherfeed.models import SessionState
from cipherfeed.notifier import StatusNotifier
from cipherfeed.store.interface import CryptoSession

from .base import StateMachine


class SessionGate(StateMachine[SessionState]):
    """Guards every confidential operation behind one session setup."""

    name = "session_gate"
    KEY = "session"

    def __init__(self, crypto: CryptoSession, notifier: StatusNotifier):
        super().__init__()
        self.crypto = crypto
        self.notifier = notifier
        self.last_error: SessionInitError | None = None
        self.setup_attempts = 0
        self._inflight: asyncio.Future | None = None
        # Bumped by reset() so a superseded attempt cannot publish its outcome
        self._generation = 0
        self._states[self.KEY] = SessionState.UNINITIALIZED

    @property
    def state(self) -> SessionState:
        return self._states[self.KEY]

    @property
    def ready(self) -> bool:
        return self.state == SessionState.READY

    def require_ready(self) -> None:
        if not self.ready:
            raise SessionInitError(f"FHE session not ready ({self.state.value})")

    async def initialize(self) -> SessionState:
        """Run (or join) the session setup and return the terminal state."""
        if self.state == SessionState.READY:
            return SessionState.READY
        if self._inflight is None:
            self.update(self.KEY, SessionState.INITIALIZING)
            self.setup_attempts += 1
            self._inflight = asyncio.ensure_future(self._setup(self._generation))
        # shield: one impatient caller must not cancel the shared attempt
        return await asyncio.shield(self._inflight)

    def reset(self) -> None:
        """Back to UNINITIALIZED (identity disconnected)."""
        self._generation += 1
        self._inflight = None
        self.last_error = None
        if self.state != SessionState.UNINITIALIZED:
            self.update(self.KEY, SessionState.UNINITIALIZED)

    async def _setup(self, generation: int) -> SessionState:
        try:
            await self.crypto.initialize()
        except Exception as e:
            if generation != self._generation:
                return self.state
            self.last_error = SessionInitError("FHE initialization failed", reason=str(e))
            self.update(self.KEY, SessionState.FAILED)
            bt.logging.error({"session_gate": {"status": "failed", "error": str(e)}})
            self.notifier.error(self.last_error.message)
            return SessionState.FAILED
        finally:
            if generation == self._generation:
                self._inflight = None

        if generation != self._generation:
            return self.state
        self.last_error = None
        self.update(self.KEY, SessionState.READY)
        bt.logging.info({"session_gate": {"status": "ready", "attempt": self.setup_attempts}})
        return SessionState.READY


__all__ = ["SessionGate"]
