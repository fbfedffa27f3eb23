from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Optional

from common.events import Signal, Subscription
from common.identity import IdentityError, IdentityProvider

logger = logging.getLogger("sync.session_gate")


class SessionGate:
    """
    Relays identity-provider session changes to a single subscriber.

    - `start()` initializes the provider once. A failure is logged and the
      gate stays closed for the life of the process: no activation is ever
      delivered and `start()` is not retried.
    - `subscribe()` accepts exactly one subscriber and, once the provider is
      up, reports the current state right away so a late subscriber still
      sees an already-active session.
    """

    def __init__(self, provider: IdentityProvider) -> None:
        self._provider = provider
        self._downstream: Signal[bool] = Signal("session-gate")
        self._upstream: Optional[Subscription] = None
        self._started = False
        self._failed = False

    @property
    def ready(self) -> bool:
        return self._started and not self._failed

    @property
    def failed(self) -> bool:
        return self._failed

    async def start(self) -> bool:
        """Initialize the provider; returns False when initialization failed."""
        if self._started:
            return not self._failed
        self._started = True
        try:
            await self._provider.initialize()
        except IdentityError as exc:
            self._failed = True
            logger.error("Identity provider failed to initialize; cloud sync disabled: %s", exc)
            return False
        self._upstream = self._provider.listen(self._forward)
        if len(self._downstream):
            await self._downstream.emit(self._provider.is_signed_in())
        return True

    async def subscribe(self, callback: Callable[[bool], Awaitable[Any]]) -> Subscription:
        if len(self._downstream):
            raise RuntimeError("SessionGate already has a subscriber")
        subscription = self._downstream.subscribe(callback)
        if self.ready:
            await callback(self._provider.is_signed_in())
        return subscription

    async def toggle(self) -> None:
        """Sign out when signed in, otherwise sign in."""
        if not self.ready:
            logger.warning("Sign-in toggle ignored; identity provider is not available")
            return
        if self._provider.is_signed_in():
            await self._provider.sign_out()
            return
        try:
            await self._provider.sign_in()
        except IdentityError as exc:
            logger.error("Sign-in failed: %s", exc)

    def close(self) -> None:
        if self._upstream is not None:
            self._upstream.release()
            self._upstream = None

    async def _forward(self, active: bool) -> None:
        logger.info("Session %s", "active" if active else "inactive")
        await self._downstream.emit(active)
