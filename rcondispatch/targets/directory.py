"""Target directories resolve a target id to its connection details.

The dispatch core never stores targets itself; it asks a directory each
time a queue activates, so edits made between two jobs are picked up.
Managing the stored targets belongs to the application layer.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Protocol

from rcondispatch.rconclient import TargetConfig

if TYPE_CHECKING:
    from aiosqlite import Connection

LOGGER = logging.getLogger(__name__)
LOGGER.setLevel(logging.DEBUG)


class TargetDirectory(Protocol):
    """Anything that can look up a target by id."""

    async def get_target_config(self, target_id: str) -> TargetConfig | None:
        """Return the target configuration, or None if the id is unknown."""
        ...


class InMemoryTargetDirectory:
    """Directory backed by a dictionary, for tests and embedding."""

    def __init__(self, targets: list[TargetConfig] | None = None) -> None:
        self._targets: dict[str, TargetConfig] = {
            target.target_id: target for target in targets or []
        }

    def add(self, target: TargetConfig) -> None:
        self._targets[target.target_id] = target

    def remove(self, target_id: str) -> None:
        self._targets.pop(target_id, None)

    async def get_target_config(self, target_id: str) -> TargetConfig | None:
        return self._targets.get(target_id)


class SqliteTargetDirectory:
    """Read-only lookup of targets stored in an SQLite ``servers`` table."""

    DEFAULT_RCON_PORT = 27015

    CREATE_SERVERS_TABLE = """
        CREATE TABLE IF NOT EXISTS servers (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL DEFAULT 'Unnamed Server',
            host TEXT NOT NULL,
            port INTEGER NOT NULL DEFAULT 27015,
            password TEXT NOT NULL DEFAULT ''
        );
        """

    GET_SERVER = """
        SELECT id, host, port, password FROM servers WHERE id = ?;
        """

    def __init__(self, connection: Connection) -> None:
        self.connection = connection

    async def initialize_tables(self) -> None:
        """Create the servers table if it does not exist.

        This method should be called during application startup.
        """
        await self.connection.execute(SqliteTargetDirectory.CREATE_SERVERS_TABLE)
        await self.connection.commit()

    async def get_target_config(self, target_id: str) -> TargetConfig | None:
        """Look up a server row by id.

        :param target_id: The server id
        :return: The target configuration, or None if no such row exists
        """
        async with self.connection.execute(
            SqliteTargetDirectory.GET_SERVER,
            (target_id,),
        ) as cursor:
            row = await cursor.fetchone()

        if row is None:
            LOGGER.debug("Server %s not found", target_id)
            return None

        server_id, host, port, password = row
        return TargetConfig(
            target_id=str(server_id),
            host=host,
            port=int(port) if port else SqliteTargetDirectory.DEFAULT_RCON_PORT,
            password=password or "",
        )
