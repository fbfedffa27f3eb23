from __future__ import annotations

from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

import pytest

from common.events import Signal, Subscription
from common.identity import IdentityError
from state.local_store import SAVE_KEY, JsonFileStore, MemoryStore
from state.models import RemoteFile
from sync.conflict import ConflictPolicy
from sync.controller import Ready, Unbound


class _FakeIdentity:
    def __init__(self, *, signed_in: bool = True, fail_init: bool = False) -> None:
        self._signed_in = signed_in
        self._fail_init = fail_init
        self._changed: Signal[bool] = Signal("fake-session")
        self.closed = False

    @classmethod
    def from_env(cls) -> "_FakeIdentity":
        return cls()

    async def initialize(self) -> None:
        if self._fail_init:
            raise IdentityError("client init failed")

    def is_signed_in(self) -> bool:
        return self._signed_in

    def listen(self, callback: Callable[[bool], Awaitable[Any]]) -> Subscription:
        return self._changed.subscribe(callback)

    async def sign_in(self) -> None:
        self._signed_in = True
        await self._changed.emit(True)

    async def sign_out(self) -> None:
        self._signed_in = False
        await self._changed.emit(False)

    async def access_token(self) -> Optional[str]:
        return "tok" if self._signed_in else None

    async def aclose(self) -> None:
        self.closed = True


class _FakeDrive:
    def __init__(self, *_args, **_kwargs) -> None:
        self.contents: Dict[str, str] = {}
        self.calls: List[Tuple[str, ...]] = []

    async def __aenter__(self) -> "_FakeDrive":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:  # noqa: ARG002
        return None

    async def list_files(self, name: str, *, space: str = "appDataFolder") -> List[RemoteFile]:
        self.calls.append(("list", name))
        return [RemoteFile(id=i, name=name) for i in self.contents]

    async def create_file(self, name: str, *, space: str = "appDataFolder") -> str:
        self.calls.append(("create", name))
        self.contents["new-file"] = ""
        return "new-file"

    async def get_content(self, file_id: str) -> str:
        self.calls.append(("get", file_id))
        return self.contents[file_id]

    async def update_content(self, file_id: str, content: str) -> None:
        self.calls.append(("patch", file_id, content))
        self.contents[file_id] = content


def _save_sync(identity: _FakeIdentity, drive: _FakeDrive, store, **kwargs):
    from runner.handler import SaveSync

    return SaveSync(identity=identity, transport=drive, store=store, **kwargs)


@pytest.mark.asyncio
async def test_remote_ahead_replaces_local_and_requests_reload():
    drive = _FakeDrive()
    drive.contents["abc123"] = ' {"seed":9,"rotations":[1]} '
    store = MemoryStore({SAVE_KEY: '{"seed":3,"rotations":[0]}'})
    reloaded: List[str] = []

    async def on_reload(blob: str) -> None:
        reloaded.append(blob)

    sync = _save_sync(_FakeIdentity(), drive, store, on_reload=on_reload)
    assert await sync.start() is True

    assert store.get(SAVE_KEY) == '{"seed":9,"rotations":[1]}'
    assert reloaded == ['{"seed":9,"rotations":[1]}']
    assert sync.reloads == 1
    # Reading never writes back to the remote
    assert [c for c in drive.calls if c[0] == "patch"] == []


@pytest.mark.asyncio
async def test_local_ahead_is_kept_on_pull():
    drive = _FakeDrive()
    drive.contents["abc123"] = '{"seed":2}'
    local = '{"seed":5}'
    store = MemoryStore({SAVE_KEY: local})

    sync = _save_sync(_FakeIdentity(), drive, store)
    await sync.start()

    assert store.get(SAVE_KEY) == local
    assert sync.reloads == 0


@pytest.mark.asyncio
async def test_save_writes_local_then_remote():
    drive = _FakeDrive()
    drive.contents["abc123"] = "{}"
    store = MemoryStore()
    sync = _save_sync(_FakeIdentity(), drive, store, policy=ConflictPolicy("counter"))
    await sync.start()

    await sync.save('{"counter":5}')

    assert store.get(SAVE_KEY) == '{"counter":5}'
    assert drive.calls[-1] == ("patch", "abc123", '{"counter":5}')


@pytest.mark.asyncio
async def test_save_while_signed_out_stays_local():
    drive = _FakeDrive()
    store = MemoryStore()
    sync = _save_sync(_FakeIdentity(signed_in=False), drive, store)
    await sync.start()

    await sync.save('{"seed":1}')

    assert store.get(SAVE_KEY) == '{"seed":1}'
    assert drive.calls == []


@pytest.mark.asyncio
async def test_toggle_sign_in_drives_the_controller():
    drive = _FakeDrive()
    store = MemoryStore({SAVE_KEY: '{"seed":1}'})
    identity = _FakeIdentity(signed_in=False)
    sync = _save_sync(identity, drive, store)
    await sync.start()

    await sync.toggle_sign_in()
    assert sync.controller.state == Ready(1, "new-file")
    assert await sync.push_local() is True
    assert drive.contents["new-file"] == '{"seed":1}'

    await sync.toggle_sign_in()
    assert sync.controller.state == Unbound(1)


@pytest.mark.asyncio
async def test_identity_failure_leaves_sync_idle():
    drive = _FakeDrive()
    sync = _save_sync(_FakeIdentity(fail_init=True), drive, MemoryStore())

    assert await sync.start() is False
    await sync.save('{"seed":1}')

    assert drive.calls == []
    assert sync.controller.handle is None


@pytest.mark.asyncio
async def test_stop_unbinds_session():
    drive = _FakeDrive()
    drive.contents["abc123"] = "{}"
    sync = _save_sync(_FakeIdentity(), drive, MemoryStore())
    await sync.start()

    await sync.stop()
    await sync.save('{"seed":1}')

    assert sync.controller.state == Unbound(1)
    assert [c for c in drive.calls if c[0] == "patch"] == []


@pytest.mark.asyncio
async def test_run_once_pulls_and_pushes(monkeypatch, tmp_path):
    from runner import handler

    drive = _FakeDrive()
    drive.contents["abc123"] = '{"seed":1}'
    state_path = tmp_path / "state.json"
    JsonFileStore(state_path).set(SAVE_KEY, '{"seed":4}')

    monkeypatch.setenv("SAVESYNC_STATE_PATH", str(state_path))
    monkeypatch.setattr(handler, "RefreshTokenIdentity", _FakeIdentity)
    monkeypatch.setattr(handler, "DriveClient", lambda *_a, **_k: drive)

    result = await handler.run_once()

    assert result == {
        "ok": True,
        "signed_in": True,
        "state": "Ready",
        "handle": "abc123",
        "reloaded": False,
        "pushed": True,
    }
    assert drive.contents["abc123"] == '{"seed":4}'


@pytest.mark.asyncio
async def test_run_once_reports_signed_out(monkeypatch, tmp_path):
    from runner import handler

    class _SignedOut(_FakeIdentity):
        @classmethod
        def from_env(cls) -> "_SignedOut":
            return cls(signed_in=False)

    drive = _FakeDrive()
    monkeypatch.setenv("SAVESYNC_STATE_PATH", str(tmp_path / "state.json"))
    monkeypatch.setattr(handler, "RefreshTokenIdentity", _SignedOut)
    monkeypatch.setattr(handler, "DriveClient", lambda *_a, **_k: drive)

    result = await handler.run_once()

    assert result["ok"] is True
    assert result["signed_in"] is False
    assert drive.calls == []


def test_invalid_log_level_rejected(monkeypatch):
    from runner import handler

    monkeypatch.setenv("SAVESYNC_LOG_LEVEL", "chatty")
    with pytest.raises(RuntimeError):
        handler._configure_logging()


class _ReadOnlyStore(MemoryStore):
    def set(self, key: str, value: str) -> None:
        raise OSError(30, "Read-only file system")


@pytest.mark.asyncio
async def test_local_write_failure_on_pull_is_logged(caplog):
    drive = _FakeDrive()
    drive.contents["abc123"] = '{"seed":9}'
    store = _ReadOnlyStore({SAVE_KEY: '{"seed":3}'})
    reloaded: List[str] = []

    async def on_reload(blob: str) -> None:
        reloaded.append(blob)

    sync = _save_sync(_FakeIdentity(), drive, store, on_reload=on_reload)
    with caplog.at_level("ERROR", logger="runner.handler"):
        assert await sync.start() is True

    assert "Applying remote save" in caplog.text
    assert store.get(SAVE_KEY) == '{"seed":3}'
    assert reloaded == []
    assert sync.reloads == 0
    assert sync.controller.state == Ready(1, "abc123")
