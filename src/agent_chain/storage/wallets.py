"""Agent wallet record store, keyed by handle."""

from __future__ import annotations

import logging
import sqlite3
from datetime import datetime, timezone

from agent_chain.errors import StorageError, WalletExistsError
from agent_chain.storage.database import Database
from agent_chain.storage.models import AgentWalletRecord, PermitSignature
from agent_chain.utils import clean_handle

logger = logging.getLogger("agent_chain.storage.wallets")


class WalletStore:
    """CRUD over the ``agent_wallets`` table.

    ``handle`` is the primary key, so a second wallet for the same handle
    is rejected with :class:`WalletExistsError` rather than left orphaned.
    """

    def __init__(self, db: Database) -> None:
        self.db = db

    async def get_wallet(self, handle: str) -> AgentWalletRecord | None:
        """Fetch the wallet for *handle*, or ``None`` if there is none."""
        try:
            row = await self.db.fetch_one(
                "SELECT * FROM agent_wallets WHERE handle = ?", (clean_handle(handle),)
            )
        except sqlite3.Error as exc:
            raise StorageError(f"Failed to read wallet for '{handle}': {exc}") from exc
        if row is None:
            return None
        return AgentWalletRecord.from_row(row)

    async def create_wallet(self, record: AgentWalletRecord) -> None:
        """Insert a new wallet row.

        Raises
        ------
        WalletExistsError
            If a wallet already exists for the handle (or address).
        StorageError
            On any other database failure.
        """
        try:
            await self.db.execute(
                "INSERT INTO agent_wallets "
                "(handle, address, private_key, permit_signature, "
                "permit_signature_reason, created_at) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                record.to_row(),
            )
        except sqlite3.IntegrityError as exc:
            raise WalletExistsError(record.handle) from exc
        except sqlite3.Error as exc:
            raise StorageError(
                f"Failed to create wallet for '{record.handle}': {exc}"
            ) from exc
        logger.info(f"Wallet stored for {record.handle}: {record.address}")

    async def update_permit_signature(self, handle: str, signature: PermitSignature) -> None:
        """Overwrite the cached permit signature for *handle*."""
        try:
            await self.db.execute(
                "UPDATE agent_wallets SET permit_signature = ?, "
                "permit_signature_reason = ?, updated_at = ? WHERE handle = ?",
                (
                    signature.value,
                    signature.reason.value if signature.reason else None,
                    datetime.now(timezone.utc).isoformat(),
                    clean_handle(handle),
                ),
            )
        except sqlite3.Error as exc:
            raise StorageError(
                f"Failed to update permit signature for '{handle}': {exc}"
            ) from exc

    async def delete_wallet(self, handle: str) -> bool:
        """Remove the wallet for *handle* (whole-agent deletion only).

        Returns ``True`` if a row was deleted.
        """
        try:
            cursor = await self.db.execute(
                "DELETE FROM agent_wallets WHERE handle = ?", (clean_handle(handle),)
            )
        except sqlite3.Error as exc:
            raise StorageError(f"Failed to delete wallet for '{handle}': {exc}") from exc
        deleted = cursor.rowcount > 0
        if deleted:
            logger.info(f"Wallet deleted for {handle}")
        return deleted

    async def list_wallets(self) -> list[AgentWalletRecord]:
        """Return every stored wallet, oldest first."""
        try:
            rows = await self.db.fetch_all(
                "SELECT * FROM agent_wallets ORDER BY created_at ASC"
            )
        except sqlite3.Error as exc:
            raise StorageError(f"Failed to list wallets: {exc}") from exc
        return [AgentWalletRecord.from_row(r) for r in rows]
