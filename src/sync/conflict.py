from __future__ import annotations

import json
import logging
from enum import Enum
from typing import Optional

from pydantic import ValidationError

from state.local_store import SAVE_KEY, LocalStore
from state.models import SaveRecord

DEFAULT_MONOTONIC_FIELD = "seed"

logger = logging.getLogger("sync.conflict")


class Resolution(str, Enum):
    """Outcome of comparing a fetched remote save with the local one."""

    REMOTE_WINS = "remote_wins"
    LOCAL_WINS = "local_wins"
    REMOTE_INVALID = "remote_invalid"


def parse_save(blob: Optional[str]) -> Optional[SaveRecord]:
    """Parse a save blob; None when empty, not JSON, not an object, or not a valid save."""
    if not blob or not blob.strip():
        return None
    try:
        raw = json.loads(blob)
    except ValueError:
        return None
    if not isinstance(raw, dict):
        return None
    try:
        return SaveRecord.model_validate(raw)
    except ValidationError:
        return None


class ConflictPolicy:
    """
    Decides whether fetched remote content may replace the local save.

    Remote wins only when its monotonic field is strictly greater than the
    local one (or the local save is missing or unreadable). Everything else
    keeps local as is. This is the only place remote content is allowed to
    overwrite local storage; the write path never consults it.
    """

    def __init__(self, field: str = DEFAULT_MONOTONIC_FIELD) -> None:
        self.field = field

    def resolve(self, local_blob: Optional[str], remote_blob: str) -> Resolution:
        remote = parse_save(remote_blob)
        remote_value = remote.monotonic_value(self.field) if remote is not None else None
        if remote_value is None:
            return Resolution.REMOTE_INVALID

        local = parse_save(local_blob)
        local_value = local.monotonic_value(self.field) if local is not None else None
        if local_value is None or remote_value > local_value:
            return Resolution.REMOTE_WINS
        return Resolution.LOCAL_WINS

    def apply(self, store: LocalStore, remote_blob: str, *, key: str = SAVE_KEY) -> bool:
        """
        Resolve against `store[key]` and overwrite it when remote wins.

        Returns True when local storage changed and the caller must reload
        its in-memory state from it.
        """
        decision = self.resolve(store.get(key), remote_blob)
        if decision is Resolution.REMOTE_WINS:
            store.set(key, remote_blob.strip())
            logger.info("Remote save is ahead on %r; local save replaced", self.field)
            return True
        if decision is Resolution.REMOTE_INVALID:
            logger.warning("Discarding remote save without a readable %r field", self.field)
        else:
            logger.debug("Local save is up to date on %r; remote ignored", self.field)
        return False
