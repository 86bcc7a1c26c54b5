"""Per-handle token balance cache with expiry and tag invalidation."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Callable

from agent_chain.storage.wallets import WalletStore
from agent_chain.utils import balance_tag, clean_handle

if TYPE_CHECKING:
    from agent_chain.wallet.provider import ChainClient

logger = logging.getLogger("agent_chain.wallet.balance")


@dataclass
class CachedBalance:
    """A balance observed on-chain, valid until ``expires_at``."""

    value: int
    expires_at: float
    tags: set[str] = field(default_factory=set)

    def is_fresh(self, now: float) -> bool:
        return now < self.expires_at


class BalanceCache:
    """Caches ``balanceOf`` results per handle.

    Entries expire after ``ttl_seconds``; :meth:`invalidate` drops an entry
    immediately so the next :meth:`read` goes to the chain. Every
    invalidation bumps a per-tag generation, and a live read only stores
    its result if no generation it depends on moved while it was in
    flight.
    """

    def __init__(
        self,
        store: WalletStore,
        chain: ChainClient | None = None,
        ttl_seconds: float = 600.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.store = store
        self.chain = chain
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[str, CachedBalance] = {}
        self._generations: dict[str, int] = {}
        self._epoch = 0

    async def read(self, handle: str) -> int:
        """Return the token balance (base units) for *handle*.

        A handle without a wallet, or running without an RPC endpoint,
        reads as ``0``.
        """
        handle = clean_handle(handle)
        entry = self._entries.get(handle)
        if entry is not None and entry.is_fresh(self._clock()):
            return entry.value

        tags = {balance_tag(handle)}
        before = self._snapshot(tags)
        value = await self.read_uncached(handle)
        if value is not None and self._snapshot(tags) == before:
            self._entries[handle] = CachedBalance(
                value=value,
                expires_at=self._clock() + self.ttl_seconds,
                tags=tags,
            )
        return value or 0

    async def read_uncached(self, handle: str) -> int | None:
        """Query the chain directly.

        Returns ``None`` when there is nothing to cache (no wallet or no
        chain); the caller treats that as a zero balance.
        """
        wallet = await self.store.get_wallet(handle)
        if wallet is None:
            return None
        if self.chain is None:
            logger.warning("RPC_URL not configured. Reporting zero balance.")
            return None
        return await self.chain.token_balance(wallet.address)

    def invalidate(self, handle: str) -> None:
        self.invalidate_tag(balance_tag(handle))

    def _snapshot(self, tags: set[str]) -> tuple:
        return self._epoch, tuple(sorted((t, self._generations.get(t, 0)) for t in tags))

    def invalidate_tag(self, tag: str) -> None:
        """Drop every entry carrying *tag*, including reads still in flight."""
        self._generations[tag] = self._generations.get(tag, 0) + 1
        stale = [h for h, entry in self._entries.items() if tag in entry.tags]
        for h in stale:
            del self._entries[h]
        if stale:
            logger.debug(f"Invalidated {tag} ({len(stale)} entries)")

    def clear(self) -> None:
        self._epoch += 1
        self._entries.clear()
