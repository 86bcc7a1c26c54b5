"""aiosqlite connection holder for the wallet record store.

The schema is versioned with ``PRAGMA user_version`` so later columns can
be added in place without dropping custodial keys.
"""

from __future__ import annotations

import logging
import sqlite3
from pathlib import Path
from typing import Optional

import aiosqlite

logger = logging.getLogger("agent_chain.storage.database")

MEMORY = ":memory:"

# Index i holds the statements that bring a database from version i to i+1.
_MIGRATIONS: list[str] = [
    """\
    CREATE TABLE IF NOT EXISTS agent_wallets (
        handle TEXT PRIMARY KEY,
        address TEXT UNIQUE NOT NULL,
        private_key TEXT NOT NULL,
        permit_signature TEXT,
        permit_signature_reason TEXT,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    );
    """,
]

SCHEMA_VERSION = len(_MIGRATIONS)


class Database:
    """One shared aiosqlite connection.

    ``db_path`` may be a file path (parent directories are created on
    :meth:`connect`) or ``":memory:"``.
    """

    def __init__(self, db_path: Path | str, busy_timeout_ms: int = 5000) -> None:
        self.db_path = db_path if db_path == MEMORY else Path(db_path)
        self.busy_timeout_ms = busy_timeout_ms
        self._conn: Optional[aiosqlite.Connection] = None

    async def connect(self) -> None:
        if isinstance(self.db_path, Path):
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = await aiosqlite.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row
        await conn.execute("PRAGMA journal_mode=WAL;")
        await conn.execute(f"PRAGMA busy_timeout={int(self.busy_timeout_ms)};")
        self._conn = conn
        await self._migrate()

    async def close(self) -> None:
        if self._conn is not None:
            await self._conn.close()
            self._conn = None

    @property
    def is_connected(self) -> bool:
        return self._conn is not None

    def _require(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise sqlite3.ProgrammingError("Database not connected; call connect() first.")
        return self._conn

    async def execute(self, sql: str, params: tuple = ()) -> aiosqlite.Cursor:
        """Run a write statement and commit; the cursor exposes ``rowcount``."""
        conn = self._require()
        cursor = await conn.execute(sql, params)
        await conn.commit()
        return cursor

    async def fetch_one(self, sql: str, params: tuple = ()) -> Optional[dict]:
        async with self._require().execute(sql, params) as cursor:
            row = await cursor.fetchone()
        return dict(row) if row is not None else None

    async def fetch_all(self, sql: str, params: tuple = ()) -> list[dict]:
        async with self._require().execute(sql, params) as cursor:
            rows = await cursor.fetchall()
        return [dict(r) for r in rows]

    async def schema_version(self) -> int:
        async with self._require().execute("PRAGMA user_version;") as cursor:
            row = await cursor.fetchone()
        return int(row[0])

    async def _migrate(self) -> None:
        conn = self._require()
        current = await self.schema_version()
        for version in range(current, SCHEMA_VERSION):
            await conn.executescript(_MIGRATIONS[version])
            await conn.execute(f"PRAGMA user_version={version + 1};")
            logger.debug(f"Migrated {self.db_path} to schema version {version + 1}")
        await conn.commit()


def get_database(db_path: Path | str) -> Database:
    """Return an unconnected :class:`Database` for *db_path*."""
    return Database(db_path)
