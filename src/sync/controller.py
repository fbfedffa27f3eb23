"""
Session-scoped synchronization of the save blob with one remote file.

State machine (one session = one sign-in span):

    Idle/Unbound --active--> Resolving --found--> Ready(h) (fetch, publish)
                             Resolving --absent--> Provisioning --created--> Ready(h)
    any --inactive--> Unbound

A failed lookup or create parks the machine in its current state; only a
fresh activation starts over. Results of calls issued by an older session are
dropped on arrival.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Union

from common.events import Signal, Subscription
from common.gdrive import DriveError

from .locator import RemoteFileLocator, RemoteTransport
from .provisioner import RemoteFileProvisioner

SAVE_FILENAME = "config.json"

logger = logging.getLogger("sync.controller")


@dataclass(frozen=True)
class Idle:
    pass


@dataclass(frozen=True)
class Resolving:
    session: int
    parked: bool = False


@dataclass(frozen=True)
class Provisioning:
    session: int
    parked: bool = False


@dataclass(frozen=True)
class Ready:
    session: int
    handle: str


@dataclass(frozen=True)
class Unbound:
    session: int


SyncState = Union[Idle, Resolving, Provisioning, Ready, Unbound]


class SyncController:
    """
    Keeps the remote save file in step with local save events for one session at a time.

    Usage
    - Feed session changes into `on_session_changed` (typically by subscribing
      it to a `SessionGate`).
    - The program emits blobs on `save_requested`; while `Ready`, each one
      overwrites the remote file, in order. Outside `Ready` nothing listens,
      so those saves never reach the remote.
    - Content fetched at session start is emitted, trimmed, on `remote_available`.
    """

    def __init__(
        self,
        transport: RemoteTransport,
        *,
        save_requested: Signal[str],
        remote_available: Signal[str],
        filename: str = SAVE_FILENAME,
        locator: Optional[RemoteFileLocator] = None,
        provisioner: Optional[RemoteFileProvisioner] = None,
    ) -> None:
        self._transport = transport
        self._locator = locator or RemoteFileLocator(transport)
        self._provisioner = provisioner or RemoteFileProvisioner(transport)
        self._filename = filename
        self._save_requested = save_requested
        self._remote_available = remote_available
        self._state: SyncState = Idle()
        self._sessions = 0
        self._save_subscription: Optional[Subscription] = None

    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def handle(self) -> Optional[str]:
        return self._state.handle if isinstance(self._state, Ready) else None

    async def on_session_changed(self, active: bool) -> None:
        if active:
            await self._activate()
        else:
            self._deactivate()

    # --------------- Transitions ---------------
    async def _activate(self) -> None:
        state = self._state
        if isinstance(state, Ready) or (isinstance(state, (Resolving, Provisioning)) and not state.parked):
            logger.debug("Session already active (%s); ignoring activation", type(state).__name__)
            return

        self._sessions += 1
        session = self._sessions
        self._state = Resolving(session)
        try:
            handle = await self._locator.locate(self._filename)
        except DriveError as exc:
            if self._is_current(session):
                logger.error("Remote file lookup failed: %s", exc)
                self._state = Resolving(session, parked=True)
            return
        if not self._is_current(session):
            logger.debug("Dropping lookup result from ended session %d", session)
            return

        if handle is None:
            await self._provision(session)
            return

        self._enter_ready(session, handle)
        await self._fetch(session, handle)

    async def _provision(self, session: int) -> None:
        self._state = Provisioning(session)
        try:
            handle = await self._provisioner.create(self._filename)
        except DriveError as exc:
            if self._is_current(session):
                logger.error("Remote file creation failed: %s", exc)
                self._state = Provisioning(session, parked=True)
            return
        if not self._is_current(session):
            logger.debug("Dropping created handle %s from ended session %d", handle, session)
            return
        # A brand-new file has nothing to fetch.
        self._enter_ready(session, handle)

    async def _fetch(self, session: int, handle: str) -> None:
        try:
            content = await self._transport.get_content(handle)
        except DriveError as exc:
            logger.error("Fetching remote save %s failed: %s", handle, exc)
            return
        if not self._is_current(session):
            logger.debug("Dropping fetched content from ended session %d", session)
            return
        await self._remote_available.emit(content.strip())

    def _enter_ready(self, session: int, handle: str) -> None:
        self._state = Ready(session, handle)
        self._save_subscription = self._save_requested.subscribe(self._writer(session, handle))
        logger.info("Remote save file ready: %s", handle)

    def _deactivate(self) -> None:
        if self._save_subscription is not None:
            self._save_subscription.release()
            self._save_subscription = None
        state = self._state
        if isinstance(state, (Idle, Unbound)):
            return
        self._state = Unbound(state.session)
        logger.info("Session ended; remote handle discarded")

    # --------------- Write path ---------------
    def _writer(self, session: int, handle: str) -> Callable[[str], Awaitable[None]]:
        async def write(blob: str) -> None:
            try:
                await self._transport.update_content(handle, blob)
            except DriveError as exc:
                logger.error("Writing save to remote file %s failed: %s", handle, exc)
                return
            logger.debug("Save pushed to %s (session %d, %d chars)", handle, session, len(blob))

        return write

    def _is_current(self, session: int) -> bool:
        state = self._state
        if isinstance(state, (Idle, Unbound)):
            return False
        return state.session == session
