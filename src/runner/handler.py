from __future__ import annotations

import asyncio
import json
import logging
import os
from typing import Any, Awaitable, Callable, Dict, Optional

from common.events import Signal, Subscription
from common.gdrive import DriveClient
from common.identity import IdentityProvider, RefreshTokenIdentity
from state.local_store import SAVE_KEY, JsonFileStore, LocalStore
from sync.conflict import DEFAULT_MONOTONIC_FIELD, ConflictPolicy
from sync.controller import SyncController
from sync.locator import RemoteTransport
from sync.session_gate import SessionGate


# Environment variable names
ENV_LOG_LEVEL = "SAVESYNC_LOG_LEVEL"
ENV_MONOTONIC_FIELD = "SAVESYNC_MONOTONIC_FIELD"
ENV_STATE_PATH = "SAVESYNC_STATE_PATH"

logger = logging.getLogger("runner.handler")


def _getenv(name: str, default: Optional[str] = None) -> Optional[str]:
    val = os.environ.get(name)
    return val if val not in (None, "") else default


def _configure_logging() -> None:
    level_name = (_getenv(ENV_LOG_LEVEL, "INFO") or "INFO").upper()
    level = getattr(logging, level_name, None)
    if not isinstance(level, int):
        raise RuntimeError(f"Invalid {ENV_LOG_LEVEL}: {level_name}")
    logging.basicConfig(level=level, format="%(name)s: %(message)s")


class SaveSync:
    """
    Wires the save sync into a program.

    - Local storage is the source of truth: `save()` writes it first, then
      raises the save event the controller pushes to the remote file.
    - Fetched remote content goes through `ConflictPolicy`; when remote wins,
      local storage is replaced and `on_reload` receives the new blob.
    """

    def __init__(
        self,
        *,
        identity: IdentityProvider,
        transport: RemoteTransport,
        store: LocalStore,
        policy: Optional[ConflictPolicy] = None,
        key: str = SAVE_KEY,
        on_reload: Optional[Callable[[str], Awaitable[Any]]] = None,
    ) -> None:
        self.store = store
        self.key = key
        self.policy = policy or ConflictPolicy()
        self.save_requested: Signal[str] = Signal("save-requested")
        self.remote_available: Signal[str] = Signal("remote-available")
        self.gate = SessionGate(identity)
        self.controller = SyncController(
            transport,
            save_requested=self.save_requested,
            remote_available=self.remote_available,
        )
        self._on_reload = on_reload
        self._remote_subscription = self.remote_available.subscribe(self._apply_remote)
        self._gate_subscription: Optional[Subscription] = None
        self.reloads = 0

    async def start(self) -> bool:
        """Bring up the identity provider and start following the session."""
        self._gate_subscription = await self.gate.subscribe(self.controller.on_session_changed)
        return await self.gate.start()

    async def save(self, blob: str) -> None:
        self.store.set(self.key, blob)
        await self.save_requested.emit(blob)

    async def push_local(self) -> bool:
        """Raise a save event for whatever local storage currently holds."""
        blob = self.store.get(self.key)
        if blob is None:
            return False
        await self.save_requested.emit(blob)
        return True

    async def toggle_sign_in(self) -> None:
        await self.gate.toggle()

    async def stop(self) -> None:
        if self._gate_subscription is not None:
            self._gate_subscription.release()
            self._gate_subscription = None
        self.gate.close()
        await self.controller.on_session_changed(False)
        self._remote_subscription.release()

    async def _apply_remote(self, blob: str) -> None:
        try:
            replaced = self.policy.apply(self.store, blob, key=self.key)
        except OSError as exc:
            logger.error("Applying remote save to local storage failed; keeping local as is: %s", exc)
            return
        if not replaced:
            return
        self.reloads += 1
        if self._on_reload is not None:
            await self._on_reload(blob.strip())


async def run_once(*, push: bool = True) -> Dict[str, Any]:
    """Run one sync session: pull and reconcile, then optionally push local."""
    monotonic_field = _getenv(ENV_MONOTONIC_FIELD, DEFAULT_MONOTONIC_FIELD) or DEFAULT_MONOTONIC_FIELD
    store = JsonFileStore(_getenv(ENV_STATE_PATH))
    identity = RefreshTokenIdentity.from_env()

    try:
        async with DriveClient(identity.access_token) as drive:
            sync = SaveSync(
                identity=identity,
                transport=drive,
                store=store,
                policy=ConflictPolicy(monotonic_field),
            )
            started = await sync.start()
            if not started:
                return {"ok": False, "note": "identity provider failed to initialize"}
            if not identity.is_signed_in():
                await sync.stop()
                return {"ok": True, "signed_in": False, "note": "not signed in; nothing synced"}

            handle = sync.controller.handle
            pushed = False
            if push and handle is not None:
                pushed = await sync.push_local()
            state_name = type(sync.controller.state).__name__
            logger.info("Sync session finished in %s (handle=%s, pushed=%s)", state_name, handle, pushed)
            await sync.stop()
    finally:
        await identity.aclose()

    return {
        "ok": handle is not None,
        "signed_in": True,
        "state": state_name,
        "handle": handle,
        "reloaded": sync.reloads > 0,
        "pushed": pushed,
    }


def main() -> None:
    _configure_logging()
    result = asyncio.run(run_once())
    print(json.dumps(result, indent=2, sort_keys=True))


if __name__ == "__main__":
    main()
