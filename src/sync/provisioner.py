from __future__ import annotations

import logging

from common.gdrive import APP_DATA_SPACE

from .locator import RemoteTransport

logger = logging.getLogger("sync.provisioner")


class RemoteFileProvisioner:
    """
    Creates the save file in the private app space.

    Performs no existence check: callers must only create after a lookup
    came back empty.
    """

    def __init__(self, transport: RemoteTransport, *, space: str = APP_DATA_SPACE) -> None:
        self._transport = transport
        self._space = space

    async def create(self, name: str) -> str:
        file_id = await self._transport.create_file(name, space=self._space)
        logger.info("Created remote file %s in %s: %s", name, self._space, file_id)
        return file_id
