"""Permit-then-transferFrom token transfers between custodial wallets.

The treasury acts as relayer: it submits the agent's signed permit and
then pulls the tokens with ``transferFrom``, paying gas for both. The two
transactions run strictly in order, each confirmed before the next is
sent, and every permit+spend sequence for a given source wallet holds a
per-address lock so concurrent transfers cannot race on the permit nonce.
A failed ``transferFrom`` does not roll back an already-confirmed permit.
"""

from __future__ import annotations

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import TYPE_CHECKING, AsyncIterator

from eth_account import Account

from agent_chain.errors import (
    ChainUnavailableError,
    StorageError,
    WalletNotFoundError,
)
from agent_chain.notifications import Notifier
from agent_chain.storage.models import AgentWalletRecord, PermitSignature
from agent_chain.storage.wallets import WalletStore
from agent_chain.utils import format_units
from agent_chain.wallet.balance import BalanceCache
from agent_chain.wallet.signature import MAX_UINT256, sign_permit, split_signature

if TYPE_CHECKING:
    from agent_chain.wallet.provider import ChainClient

logger = logging.getLogger("agent_chain.wallet.transfers")


class KeyedLock:
    """A registry of ``asyncio.Lock`` objects keyed by string.

    Locks are created on first use and discarded once nobody holds or
    waits on them.
    """

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        key = key.lower()
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                del self._locks[key]

    def locked(self, key: str) -> bool:
        lock = self._locks.get(key.lower())
        return lock is not None and lock.locked()


@dataclass
class TransferIntent:
    """A request to move ``amount`` base units to ``destination_address``.

    ``source`` is ``None`` when the treasury itself pays out.
    """

    source: AgentWalletRecord | None
    destination_address: str
    amount: int
    source_handle: str | None = None
    destination_handle: str | None = None
    deadline: int | None = None


@dataclass
class TransferReceipt:
    source_address: str
    destination_address: str
    amount: int
    transfer_tx_hash: str
    permit_tx_hash: str | None = None


class TransferOrchestrator:
    """Moves tokens between agent wallets and the treasury."""

    def __init__(
        self,
        store: WalletStore,
        chain: ChainClient | None,
        cache: BalanceCache | None = None,
        notifier: Notifier | None = None,
        token_decimals: int = 18,
        permit_deadline_seconds: int = 0,
        lock: KeyedLock | None = None,
    ) -> None:
        self.store = store
        self.chain = chain
        self.cache = cache
        self.notifier = notifier or Notifier()
        self.token_decimals = token_decimals
        self.permit_deadline_seconds = permit_deadline_seconds
        self.lock = lock or KeyedLock()

    def _require_chain(self) -> ChainClient:
        if self.chain is None:
            raise ChainUnavailableError()
        return self.chain

    def _deadline(self, requested: int | None) -> int:
        if requested is not None:
            return requested
        if self.permit_deadline_seconds > 0:
            return int(time.time()) + self.permit_deadline_seconds
        return MAX_UINT256

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    async def transfer(self, intent: TransferIntent) -> TransferReceipt:
        """Execute *intent* and wait for every transaction to confirm.

        Raises whatever the signing or either transaction raised; the
        balance cache is only invalidated after a confirmed transfer.
        """
        if intent.amount <= 0:
            raise ValueError(f"Transfer amount must be positive, got {intent.amount}.")
        chain = self._require_chain()
        treasury_address = chain.treasury_address
        from_treasury = (
            intent.source is None
            or intent.source.address.lower() == treasury_address.lower()
        )
        source_address = treasury_address if from_treasury else intent.source.address
        amount_text = format_units(intent.amount, self.token_decimals)

        try:
            async with self.lock.hold(source_address):
                if from_treasury:
                    receipt = TransferReceipt(
                        source_address=source_address,
                        destination_address=intent.destination_address,
                        amount=intent.amount,
                        transfer_tx_hash=await chain.transfer(
                            intent.destination_address, intent.amount
                        ),
                    )
                else:
                    receipt = await self._permit_and_transfer(chain, intent, treasury_address)
        except Exception as e:
            logger.error(
                f"Transfer of {amount_text} from {source_address} to "
                f"{intent.destination_address} failed: {e}"
            )
            await self.notifier.failed("transfer", e, handle=intent.source_handle)
            raise

        for handle in (intent.source_handle, intent.destination_handle):
            if handle and self.cache is not None:
                self.cache.invalidate(handle)

        logger.info(
            f"Sent {amount_text} from {source_address} to {intent.destination_address}: "
            f"tx={receipt.transfer_tx_hash}"
        )
        await self.notifier.transferred(
            source_address,
            intent.destination_address,
            amount_text,
            receipt.transfer_tx_hash,
            handle=intent.source_handle,
        )
        return receipt

    async def _permit_and_transfer(
        self, chain: ChainClient, intent: TransferIntent, operator: str
    ) -> TransferReceipt:
        assert intent.source is not None
        owner = Account.from_key(intent.source.private_key)
        deadline = self._deadline(intent.deadline)

        # Always sign fresh: a cached signature may carry a consumed nonce.
        signature = await sign_permit(
            chain, owner, operator, value=MAX_UINT256, deadline=deadline
        )
        v, r, s = split_signature(signature)

        permit_tx = await chain.permit(owner.address, operator, MAX_UINT256, deadline, v, r, s)
        transfer_tx = await chain.transfer_from(
            owner.address, intent.destination_address, intent.amount
        )
        await self._remember_signature(intent.source.handle, signature)
        return TransferReceipt(
            source_address=owner.address,
            destination_address=intent.destination_address,
            amount=intent.amount,
            transfer_tx_hash=transfer_tx,
            permit_tx_hash=permit_tx,
        )

    async def _remember_signature(self, handle: str, signature: str) -> None:
        """Record the permit just relayed.

        The permit consumed its nonce on-chain, so the stored signature is
        spent and can never be replayed; it is kept only as an audit record
        of the last authorisation. Transfers always sign afresh.
        """
        try:
            await self.store.update_permit_signature(handle, PermitSignature.present(signature))
        except StorageError as e:
            logger.warning(f"Could not record spent permit signature for {handle}: {e}")

    # ------------------------------------------------------------------
    # Handle-based helpers
    # ------------------------------------------------------------------

    async def _wallet(self, handle: str) -> AgentWalletRecord:
        wallet = await self.store.get_wallet(handle)
        if wallet is None:
            raise WalletNotFoundError(handle)
        return wallet

    async def transfer_between_agents(
        self, source_handle: str, destination_handle: str, amount: int
    ) -> TransferReceipt:
        source = await self._wallet(source_handle)
        destination = await self._wallet(destination_handle)
        return await self.transfer(TransferIntent(
            source=source,
            destination_address=destination.address,
            amount=amount,
            source_handle=source.handle,
            destination_handle=destination.handle,
        ))

    async def send_from_treasury(self, handle: str, amount: int) -> TransferReceipt:
        """Pay *amount* from the treasury to the agent's wallet."""
        wallet = await self._wallet(handle)
        return await self.transfer(TransferIntent(
            source=None,
            destination_address=wallet.address,
            amount=amount,
            destination_handle=wallet.handle,
        ))

    async def charge_to_treasury(self, handle: str, amount: int) -> TransferReceipt:
        """Pull *amount* from the agent's wallet back to the treasury."""
        wallet = await self._wallet(handle)
        return await self.transfer(TransferIntent(
            source=wallet,
            destination_address=self._require_chain().treasury_address,
            amount=amount,
            source_handle=wallet.handle,
        ))
