from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Generic, List, TypeVar

T = TypeVar("T")

Listener = Callable[[T], Awaitable[Any]]

logger = logging.getLogger("common.events")


class Subscription:
    """
    Handle returned by `Signal.subscribe`.

    Releasing it detaches the listener. Releasing twice is a no-op, so owners
    can release unconditionally on teardown.
    """

    def __init__(self, signal: "Signal[Any]", listener: Listener[Any]) -> None:
        self._signal = signal
        self._listener = listener
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def release(self) -> None:
        if not self._active:
            return
        self._active = False
        self._signal._detach(self._listener)

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()


class Signal(Generic[T]):
    """
    In-process event with async listeners.

    `emit` awaits every listener in subscription order before returning, so a
    sequence of awaited emits reaches each listener in the same order.
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self._listeners: List[Listener[T]] = []

    def __len__(self) -> int:
        return len(self._listeners)

    def subscribe(self, listener: Listener[T]) -> Subscription:
        self._listeners.append(listener)
        return Subscription(self, listener)

    def _detach(self, listener: Listener[T]) -> None:
        try:
            self._listeners.remove(listener)
        except ValueError:
            logger.debug("Listener already detached from %s", self.name)

    async def emit(self, payload: T) -> int:
        """Deliver `payload` to current listeners; returns how many received it."""
        # Snapshot: a listener may release its own subscription while running.
        listeners = list(self._listeners)
        for listener in listeners:
            await listener(payload)
        return len(listeners)


__all__ = ["Signal", "Subscription", "Listener"]
