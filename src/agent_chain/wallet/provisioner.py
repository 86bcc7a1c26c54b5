"""Custodial wallet creation for agents."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from eth_account import Account
from web3 import Web3

from agent_chain.errors import AgentChainError, StorageError
from agent_chain.notifications import Notifier
from agent_chain.storage.models import (
    AgentWalletRecord,
    PermitSignature,
    SignatureUnavailable,
)
from agent_chain.storage.wallets import WalletStore
from agent_chain.utils import clean_handle
from agent_chain.wallet.signature import sign_permit

if TYPE_CHECKING:
    from agent_chain.wallet.provider import ChainClient

logger = logging.getLogger("agent_chain.wallet.provisioner")


class WalletProvisioner:
    """Creates and persists one custodial keypair per agent handle.

    Chain connectivity is optional: without it (or when the permit
    signature cannot be produced) the wallet is still stored, with the
    signature marked unavailable.
    """

    def __init__(
        self,
        store: WalletStore,
        chain: ChainClient | None = None,
        notifier: Notifier | None = None,
    ) -> None:
        self.store = store
        self.chain = chain
        self.notifier = notifier or Notifier()

    async def _initial_signature(self, account) -> PermitSignature:
        if self.chain is None:
            logger.warning(
                "RPC_URL not configured. Skipping permit signature generation."
            )
            return PermitSignature.unavailable(SignatureUnavailable.NO_CHAIN)
        try:
            signature = await sign_permit(
                self.chain, account, self.chain.treasury_address
            )
        except AgentChainError as e:
            logger.warning(f"Could not generate permit signature for {account.address}: {e}")
            return PermitSignature.unavailable(SignatureUnavailable.SIGNING_FAILED)
        return PermitSignature.present(signature)

    async def provision(self, handle: str) -> AgentWalletRecord:
        """Generate, pre-authorize (best-effort), and store a wallet.

        Raises
        ------
        WalletExistsError
            If *handle* already has a wallet. The new keypair is discarded.
        StorageError
            If the wallet could not be persisted.
        """
        handle = clean_handle(handle)
        account = Account.create()
        logger.info(f"Created random wallet for {handle}: {account.address}")

        record = AgentWalletRecord(
            handle=handle,
            address=account.address,
            private_key=Web3.to_hex(account.key),
            permit_signature=await self._initial_signature(account),
        )
        try:
            await self.store.create_wallet(record)
        except StorageError as e:
            logger.error(f"Error saving wallet for {handle}: {e}")
            await self.notifier.failed("create_wallet", e, handle=handle)
            raise

        await self.notifier.created(handle, record.address)
        return record

    async def create_wallet(self, handle: str) -> bool:
        """Boolean form of :meth:`provision`: ``False`` if persistence failed."""
        try:
            await self.provision(handle)
        except StorageError:
            return False
        return True
