"""Single-slot status notification with auto-hide.

Exactly one notification is visible at a time; a later ``show`` replaces
the current one and re-arms the hide timer. Timers live on the running
asyncio loop and are cancelled explicitly by ``hide``/``close``.
"""

from __future__ import annotations

import asyncio
import time
from typing import Callable

import bittensor as bt

from cipherfeed.models import NoticeStatus, Notification


NoticeListener = Callable[[Notification | None], None]


class StatusNotifier:
    """Owns the active Notification for one feed instance."""

    def __init__(
        self,
        success_seconds: float = 2.0,
        other_seconds: float = 3.0,
        clock: Callable[[], float] = time.time,
    ):
        self.success_seconds = success_seconds
        self.other_seconds = other_seconds
        self._clock = clock
        self._current: Notification | None = None
        self._timer: asyncio.TimerHandle | None = None
        self._listeners: list[NoticeListener] = []

    @property
    def current(self) -> Notification | None:
        return self._current

    def subscribe(self, listener: NoticeListener) -> Callable[[], None]:
        """Register a change listener. Returns an unsubscribe function."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _ttl(self, status: NoticeStatus) -> float:
        if status == NoticeStatus.SUCCESS:
            return self.success_seconds
        return self.other_seconds

    def show(self, status: NoticeStatus, message: str) -> Notification:
        """Replace the current notification and (re)arm its hide timer."""
        self._cancel_timer()
        ttl = self._ttl(status)
        notice = Notification(
            status=status,
            message=message,
            expires_at=self._clock() + ttl,
        )
        self._current = notice

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop (sync caller): expiry is still observable via expires_at
            loop = None
        if loop is not None:
            self._timer = loop.call_later(ttl, self._expire, notice)

        bt.logging.debug({"notice": {"status": status.value, "message": message}})
        self._emit()
        return notice

    def pending(self, message: str) -> Notification:
        return self.show(NoticeStatus.PENDING, message)

    def success(self, message: str) -> Notification:
        return self.show(NoticeStatus.SUCCESS, message)

    def error(self, message: str) -> Notification:
        return self.show(NoticeStatus.ERROR, message)

    def hide(self) -> None:
        """Clear the notification and cancel any pending timer."""
        self._cancel_timer()
        if self._current is not None:
            self._current = None
            self._emit()

    def close(self) -> None:
        self._cancel_timer()
        self._listeners.clear()

    def active(self) -> Notification | None:
        """The current notification, or None if it has expired."""
        if self._current is not None and self._clock() >= self._current.expires_at:
            return None
        return self._current

    def _expire(self, notice: Notification) -> None:
        # A stale timer must not hide a newer notification
        if self._current is notice:
            self._timer = None
            self._current = None
            self._emit()

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _emit(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self._current)
            except Exception as e:
                bt.logging.warning({"notice_listener_error": str(e)})


__all__ = ["StatusNotifier"]
