"""Commemorative NFT minting to agent wallets."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from agent_chain.errors import ChainUnavailableError, WalletNotFoundError
from agent_chain.notifications import Notifier
from agent_chain.storage.wallets import WalletStore
from agent_chain.utils import clean_handle

if TYPE_CHECKING:
    from agent_chain.wallet.provider import ChainClient

logger = logging.getLogger("agent_chain.wallet.nft")


class NFTMinter:
    def __init__(
        self,
        store: WalletStore,
        chain: ChainClient | None,
        notifier: Notifier | None = None,
    ) -> None:
        self.store = store
        self.chain = chain
        self.notifier = notifier or Notifier()

    async def mint(self, handle: str, artwork_url: str, title: str) -> str:
        """Mint one NFT to the agent's wallet and return the transaction hash.

        Raises :class:`WalletNotFoundError` if the agent has no wallet;
        minting never creates one.
        """
        handle = clean_handle(handle)
        wallet = await self.store.get_wallet(handle)
        if wallet is None:
            raise WalletNotFoundError(handle)
        if self.chain is None:
            raise ChainUnavailableError()

        logger.info(f"Minting NFT '{title}' ({artwork_url}) to {wallet.address}")
        try:
            tx_hash = await self.chain.mint_nft(wallet.address, artwork_url, title)
        except Exception as e:
            logger.error(f"Error minting NFT for {handle}: {e}")
            await self.notifier.failed("minting NFT", e, handle=handle)
            raise

        await self.notifier.minted(handle, tx_hash)
        return tx_hash

    async def owned_nfts(self, address: str) -> int:
        """Number of agent NFTs held by *address*; ``0`` if the lookup fails."""
        if self.chain is None:
            return 0
        try:
            return int(await self.chain.nft_balance(address))
        except Exception as e:
            logger.warning(f"Error getting NFT balance for {address}: {e}")
            return 0
