"""Explicit state machine plumbing shared by the controllers.

Each controller keeps its states keyed by call or record id, exposes them
for inspection, and notifies subscribers on every transition.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import AsyncIterator, Callable, Generic, TypeVar

import bittensor as bt

from cipherfeed.store.interface import TxHandle, TxReceipt


S = TypeVar("S", bound=Enum)

StateListener = Callable[[str, Enum], None]


class StateMachine(Generic[S]):
    """Keyed state holder with a subscription mechanism."""

    name = "state_machine"
    # Keys reaching one of these are forgotten once subscribers have seen them
    terminal_states: frozenset = frozenset()

    def __init__(self) -> None:
        self._states: dict[str, S] = {}
        self._listeners: list[StateListener] = []

    def state_of(self, key: str) -> S | None:
        return self._states.get(key)

    @property
    def states(self) -> dict[str, S]:
        return dict(self._states)

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        """Register ``listener(key, state)``. Returns an unsubscribe function."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def update(self, key: str, state: S) -> None:
        """Move ``key`` to ``state`` and notify subscribers."""
        previous = self._states.get(key)
        self._states[key] = state
        bt.logging.debug({
            self.name: {
                "key": key,
                "from": previous.value if previous is not None else None,
                "to": state.value,
            }
        })
        for listener in list(self._listeners):
            try:
                listener(key, state)
            except Exception as e:
                bt.logging.warning({f"{self.name}_listener_error": str(e)})
        if state in self.terminal_states:
            self._states.pop(key, None)


async def await_receipt(tx: TxHandle, timeout: float | None) -> TxReceipt:
    """Wait for a write to settle, giving up locally after ``timeout`` seconds.

    Raises asyncio.TimeoutError on expiry. The write itself is not cancelled.
    """
    if timeout is None:
        return await tx.await_confirmation()
    return await asyncio.wait_for(tx.await_confirmation(), timeout)


@dataclass
class _Slot:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    users: int = 0


class InFlightGuard:
    """At most one in-flight operation per key.

    ``hold`` queues behind the current holder; ``busy`` lets callers fail
    fast instead of queueing.
    """

    def __init__(self) -> None:
        self._slots: dict[str, _Slot] = {}

    def busy(self, key: str) -> bool:
        slot = self._slots.get(key)
        return slot is not None and slot.users > 0

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        slot = self._slots.get(key)
        if slot is None:
            slot = self._slots[key] = _Slot()
        slot.users += 1
        try:
            async with slot.lock:
                yield
        finally:
            slot.users -= 1
            if slot.users == 0:
                self._slots.pop(key, None)


__all__ = ["InFlightGuard", "StateListener", "StateMachine", "await_receipt"]
