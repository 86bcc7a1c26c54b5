"""Seed funding for newly created agent wallets."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from agent_chain.notifications import Notifier
from agent_chain.utils import format_units
from agent_chain.wallet.balance import BalanceCache

if TYPE_CHECKING:
    from agent_chain.wallet.provider import ChainClient

logger = logging.getLogger("agent_chain.wallet.funding")


class FundingService:
    """Sends a fixed starting amount from the treasury to a new wallet."""

    def __init__(
        self,
        chain: ChainClient | None,
        seed_amount: int,
        cache: BalanceCache | None = None,
        notifier: Notifier | None = None,
        token_decimals: int = 18,
    ) -> None:
        self.chain = chain
        self.seed_amount = seed_amount
        self.cache = cache
        self.notifier = notifier or Notifier()
        self.token_decimals = token_decimals

    async def send_initial_funds(self, address: str, handle: str | None = None) -> bool:
        """Transfer the seed amount to *address* and wait for confirmation.

        Returns ``True`` without submitting anything when no RPC endpoint
        is configured. Returns ``False`` if the transfer was attempted and
        failed.
        """
        if self.chain is None:
            logger.warning("RPC_URL not configured. Skipping sending initial funds.")
            return True

        try:
            tx_hash = await self.chain.transfer(address, self.seed_amount)
        except Exception as e:
            logger.error(f"Error sending initial funds to {address}: {e}")
            await self.notifier.failed(f"sending initial funds to {address}", e, handle=handle)
            return False

        if handle and self.cache is not None:
            self.cache.invalidate(handle)
        amount = format_units(self.seed_amount, self.token_decimals)
        logger.info(f"Initial funds ({amount}) sent to {address}: tx={tx_hash}")
        await self.notifier.funded(address, amount, handle=handle)
        return True
