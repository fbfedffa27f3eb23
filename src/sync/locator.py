from __future__ import annotations

import logging
from typing import List, Optional, Protocol

from common.gdrive import APP_DATA_SPACE
from state.models import RemoteFile

logger = logging.getLogger("sync.locator")


class RemoteTransport(Protocol):
    """The four remote storage calls the sync needs (see `common.gdrive.DriveClient`)."""

    async def list_files(self, name: str, *, space: str = ...) -> List[RemoteFile]:
        ...

    async def create_file(self, name: str, *, space: str = ...) -> str:
        ...

    async def get_content(self, file_id: str) -> str:
        ...

    async def update_content(self, file_id: str, content: str) -> None:
        ...


class RemoteFileLocator:
    """Finds the id of the save file in the private app space."""

    def __init__(self, transport: RemoteTransport, *, space: str = APP_DATA_SPACE) -> None:
        self._transport = transport
        self._space = space

    async def locate(self, name: str) -> Optional[str]:
        """
        Return the id of the first file named `name`, or None when there is none.

        Transport errors propagate to the caller. Extra matches are left alone;
        only the first one returned by the listing is used.
        """
        files = await self._transport.list_files(name, space=self._space)
        if not files:
            logger.info("No remote file named %s in %s", name, self._space)
            return None
        if len(files) > 1:
            logger.warning(
                "Found %d remote files named %s in %s; using %s",
                len(files),
                name,
                self._space,
                files[0].id,
            )
        return files[0].id
