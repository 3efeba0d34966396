"""Caller identity backed by a bittensor wallet hotkey."""

from __future__ import annotations

from typing import Any, Callable, Protocol, runtime_checkable

import bittensor as bt


ConnectionListener = Callable[[bool], None]


@runtime_checkable
class IdentityProvider(Protocol):
    def current_address(self) -> str | None:
        ...

    def is_connected(self) -> bool:
        ...

    def subscribe(self, listener: ConnectionListener) -> Callable[[], None]:
        ...


class WalletIdentity:
    """IdentityProvider over a wallet with explicit connect/disconnect.

    The caller address is the hotkey ss58 address. Listeners are told
    about every connection change so session state can be reset.
    """

    def __init__(self, wallet: Any):
        self.wallet = wallet
        self._connected = False
        self._listeners: list[ConnectionListener] = []

    @classmethod
    def from_settings(cls, name: str, hotkey: str) -> WalletIdentity:
        return cls(bt.Wallet(name=name, hotkey=hotkey))

    def current_address(self) -> str | None:
        if not self._connected:
            return None
        return self.wallet.hotkey.ss58_address

    def is_connected(self) -> bool:
        return self._connected

    def subscribe(self, listener: ConnectionListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def connect(self) -> None:
        if self._connected:
            return
        self._connected = True
        bt.logging.info({"identity": {"event": "connected", "address": self.wallet.hotkey.ss58_address[:16]}})
        self._emit()

    def disconnect(self) -> None:
        if not self._connected:
            return
        self._connected = False
        bt.logging.info({"identity": {"event": "disconnected"}})
        self._emit()

    def _emit(self) -> None:
        for listener in list(self._listeners):
            listener(self._connected)


__all__ = ["ConnectionListener", "IdentityProvider", "WalletIdentity"]
