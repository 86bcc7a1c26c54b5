"""High-level wallet manager used by the CLI and host applications."""

from __future__ import annotations

import logging

from agent_chain.config import AgentChainConfig
from agent_chain.errors import WalletExistsError
from agent_chain.notifications import DiscordWebhookSink, Notifier
from agent_chain.storage.database import Database
from agent_chain.storage.models import AgentWalletRecord
from agent_chain.storage.wallets import WalletStore
from agent_chain.utils import clean_handle, to_base_units
from agent_chain.wallet.balance import BalanceCache
from agent_chain.wallet.funding import FundingService
from agent_chain.wallet.nft import NFTMinter
from agent_chain.wallet.provider import ChainClient, create_chain_client
from agent_chain.wallet.provisioner import WalletProvisioner
from agent_chain.wallet.transfers import TransferOrchestrator, TransferReceipt

logger = logging.getLogger("agent_chain.wallet.manager")


class WalletManager:
    """Wires the record store, chain client, and wallet services together.

    The chain client is ``None`` when no RPC endpoint is configured; the
    services then run in degraded mode.
    """

    def __init__(
        self,
        db: Database,
        chain: ChainClient | None,
        notifier: Notifier,
        *,
        seed_amount: int,
        balance_ttl_seconds: float = 600.0,
        token_decimals: int = 18,
        permit_deadline_seconds: int = 0,
    ) -> None:
        self.db = db
        self.chain = chain
        self.notifier = notifier
        self.token_decimals = token_decimals
        self.store = WalletStore(db)
        self.balances = BalanceCache(self.store, chain, ttl_seconds=balance_ttl_seconds)
        self.provisioner = WalletProvisioner(self.store, chain, notifier)
        self.funding = FundingService(
            chain, seed_amount, self.balances, notifier, token_decimals=token_decimals
        )
        self.transfers = TransferOrchestrator(
            self.store,
            chain,
            self.balances,
            notifier,
            token_decimals=token_decimals,
            permit_deadline_seconds=permit_deadline_seconds,
        )
        self.nfts = NFTMinter(self.store, chain, notifier)

    @classmethod
    def from_config(cls, config: AgentChainConfig) -> WalletManager:
        notifier = Notifier(background=True)
        if config.notifications.enabled and config.notifications.discord_webhook_url:
            notifier.add_sink(DiscordWebhookSink(
                config.notifications.discord_webhook_url,
                timeout=config.notifications.timeout,
            ))
        return cls(
            Database(config.storage.db_path),
            create_chain_client(config.chain),
            notifier,
            seed_amount=to_base_units(config.chain.seed_amount, config.chain.token_decimals),
            balance_ttl_seconds=config.cache.balance_ttl_seconds,
            token_decimals=config.chain.token_decimals,
            permit_deadline_seconds=config.chain.permit_deadline_seconds,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def connect(self) -> None:
        if not self.db.is_connected:
            await self.db.connect()

    async def close(self) -> None:
        await self.notifier.drain()
        self.balances.clear()
        await self.db.close()
        if self.chain is not None:
            await self.chain.close()

    async def __aenter__(self) -> WalletManager:
        await self.connect()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Agents
    # ------------------------------------------------------------------

    @property
    def is_online(self) -> bool:
        return self.chain is not None

    async def get_wallet(self, handle: str) -> AgentWalletRecord | None:
        return await self.store.get_wallet(handle)

    async def onboard_agent(self, handle: str) -> AgentWalletRecord:
        """Give a new agent a funded wallet, or return the one it already has.

        Funding failures are logged and reported but do not undo the
        wallet; the agent simply starts with a zero balance.
        """
        handle = clean_handle(handle)
        existing = await self.store.get_wallet(handle)
        if existing is not None:
            logger.info(f"Wallet already exists for {handle}: {existing.address}")
            return existing

        try:
            wallet = await self.provisioner.provision(handle)
        except WalletExistsError:
            # Another request created it between the lookup and the insert.
            wallet = await self.store.get_wallet(handle)
            assert wallet is not None
            return wallet

        if not await self.funding.send_initial_funds(wallet.address, handle=handle):
            logger.warning(f"Agent {handle} onboarded without initial funds.")
        return wallet

    async def delete_agent_wallet(self, handle: str) -> bool:
        self.balances.invalidate(handle)
        return await self.store.delete_wallet(handle)

    # ------------------------------------------------------------------
    # Balances and transfers (amounts in token units, e.g. "1.5")
    # ------------------------------------------------------------------

    async def balance(self, handle: str, *, use_cache: bool = True) -> int:
        if use_cache:
            return await self.balances.read(handle)
        return await self.balances.read_uncached(handle) or 0

    def to_base_units(self, amount: str) -> int:
        return to_base_units(amount, self.token_decimals)

    async def transfer(self, source_handle: str, destination_handle: str, amount: str) -> TransferReceipt:
        return await self.transfers.transfer_between_agents(
            source_handle, destination_handle, self.to_base_units(amount)
        )

    async def grant(self, handle: str, amount: str) -> TransferReceipt:
        return await self.transfers.send_from_treasury(handle, self.to_base_units(amount))

    async def charge(self, handle: str, amount: str) -> TransferReceipt:
        return await self.transfers.charge_to_treasury(handle, self.to_base_units(amount))

    async def mint(self, handle: str, artwork_url: str, title: str) -> str:
        return await self.nfts.mint(handle, artwork_url, title)

    async def owned_nfts(self, handle: str) -> int:
        wallet = await self.store.get_wallet(handle)
        if wallet is None:
            return 0
        return await self.nfts.owned_nfts(wallet.address)
