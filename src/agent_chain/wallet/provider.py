"""Async Web3 chain client for the agent token and NFT contracts.

One :class:`ChainClient` is created per process from :class:`ChainConfig`
and handed to every component that talks to the chain. Writes are
signed by the treasury key, which pays gas for every mint, permit relay,
and treasury-originated transfer.
"""

from __future__ import annotations

import logging
from typing import Any

from eth_account import Account
from eth_account.signers.local import LocalAccount
from web3 import AsyncWeb3, Web3
from web3.exceptions import TimeExhausted, Web3Exception
from web3.middleware import ExtraDataToPOAMiddleware

from agent_chain.config import ChainConfig
from agent_chain.errors import ConfigError, TransactionFailedError
from agent_chain.wallet.abi import AGENT_COIN_ABI, AGENT_NFT_ABI
from agent_chain.wallet.chains import Chain, list_chain_names, resolve_chain

logger = logging.getLogger("agent_chain.wallet.provider")


class ChainClient:
    """Token/NFT reads and treasury-signed writes over one RPC endpoint."""

    def __init__(
        self,
        w3: AsyncWeb3,
        token_address: str,
        nft_address: str = "",
        treasury: LocalAccount | None = None,
        treasury_address: str | None = None,
        chain_id: int | None = None,
        receipt_timeout: float = 120.0,
        chain: Chain | None = None,
    ) -> None:
        self.w3 = w3
        self.token_address = Web3.to_checksum_address(token_address) if token_address else ""
        self.nft_address = Web3.to_checksum_address(nft_address) if nft_address else ""
        self._treasury = treasury
        self._treasury_address = treasury_address
        self._chain_id = chain_id
        self.receipt_timeout = receipt_timeout
        self.chain = chain

    @classmethod
    def from_config(cls, config: ChainConfig) -> ChainClient:
        """Build a client for ``config.rpc_url``.

        Injects POA middleware for non-mainnet chains.
        """
        if not config.rpc_url:
            raise ConfigError("rpc_url is required to build a chain client.")
        chain = resolve_chain(config.network, config.chain_id)
        if chain is None and config.chain_id is None:
            raise ConfigError(
                f"Unknown network '{config.network}'. Set chain_id or use one of: "
                f"{', '.join(list_chain_names())}"
            )
        chain_id = config.chain_id or chain.chain_id

        w3 = AsyncWeb3(AsyncWeb3.AsyncHTTPProvider(config.rpc_url))
        if chain_id != 1:
            w3.middleware_onion.inject(ExtraDataToPOAMiddleware, layer=0)

        treasury = (
            Account.from_key(config.treasury_private_key)
            if config.treasury_private_key
            else None
        )
        return cls(
            w3,
            token_address=config.token_address,
            nft_address=config.nft_address,
            treasury=treasury,
            treasury_address=config.treasury_address,
            chain_id=chain_id,
            receipt_timeout=config.receipt_timeout,
            chain=chain,
        )

    async def close(self) -> None:
        await self.w3.provider.disconnect()

    def explorer_tx_url(self, tx_hash: str) -> str | None:
        return self.chain.tx_url(tx_hash) if self.chain else None

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    @property
    def treasury(self) -> LocalAccount:
        """The gas-paying treasury signer."""
        if self._treasury is None:
            raise ConfigError(
                "Treasury key not configured (DEPLOYER_WALLET_PRIVATE_KEY is unset)."
            )
        return self._treasury

    @property
    def treasury_address(self) -> str:
        if self._treasury is not None:
            return self._treasury.address
        if self._treasury_address:
            return Web3.to_checksum_address(self._treasury_address)
        raise ConfigError("Neither a treasury key nor a treasury address is configured.")

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def _token(self) -> Any:
        if not self.token_address:
            raise ConfigError("Token contract address not configured.")
        return self.w3.eth.contract(address=self.token_address, abi=AGENT_COIN_ABI)

    def _nft(self) -> Any:
        if not self.nft_address:
            raise ConfigError("NFT contract address not configured.")
        return self.w3.eth.contract(address=self.nft_address, abi=AGENT_NFT_ABI)

    async def get_chain_id(self) -> int:
        if self._chain_id is None:
            self._chain_id = await self.w3.eth.chain_id
        return self._chain_id

    async def token_name(self) -> str:
        return await self._token().functions.name().call()

    async def token_nonce(self, owner: str) -> int:
        return await self._token().functions.nonces(Web3.to_checksum_address(owner)).call()

    async def token_balance(self, address: str) -> int:
        return await self._token().functions.balanceOf(Web3.to_checksum_address(address)).call()

    async def nft_balance(self, address: str) -> int:
        return await self._nft().functions.balanceOf(Web3.to_checksum_address(address)).call()

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def transfer(self, to_address: str, amount: int) -> str:
        fn = self._token().functions.transfer(Web3.to_checksum_address(to_address), amount)
        return await self._send(fn, "transfer")

    async def permit(
        self,
        owner: str,
        spender: str,
        value: int,
        deadline: int,
        v: int,
        r: bytes,
        s: bytes,
    ) -> str:
        fn = self._token().functions.permit(
            Web3.to_checksum_address(owner),
            Web3.to_checksum_address(spender),
            value,
            deadline,
            v,
            r,
            s,
        )
        return await self._send(fn, "permit")

    async def transfer_from(self, source: str, destination: str, amount: int) -> str:
        fn = self._token().functions.transferFrom(
            Web3.to_checksum_address(source),
            Web3.to_checksum_address(destination),
            amount,
        )
        return await self._send(fn, "transferFrom")

    async def mint_nft(self, recipient: str, artwork_url: str, title: str) -> str:
        fn = self._nft().functions.mintAgentNFTsCollection(
            Web3.to_checksum_address(recipient), artwork_url, title
        )
        return await self._send(fn, "mint")

    async def _fee_params(self) -> dict:
        """EIP-1559 fee fields, falling back to a legacy gas price."""
        latest = await self.w3.eth.get_block("latest")
        base_fee = latest.get("baseFeePerGas")
        if base_fee is not None:
            max_priority = Web3.to_wei(1.5, "gwei")
            return {
                "maxFeePerGas": base_fee * 2 + max_priority,
                "maxPriorityFeePerGas": max_priority,
            }
        return {"gasPrice": await self.w3.eth.gas_price}

    async def _send(self, fn: Any, step: str) -> str:
        """Build, sign with the treasury key, broadcast, and wait for the receipt.

        Returns the transaction hash as a ``0x`` hex string. A revert, a
        rejected submission, or a receipt timeout raises
        :class:`TransactionFailedError`.
        """
        signer = self.treasury
        tx_hash_hex: str | None = None
        try:
            params = {
                "from": signer.address,
                "nonce": await self.w3.eth.get_transaction_count(signer.address, "pending"),
                "chainId": await self.get_chain_id(),
            }
            params.update(await self._fee_params())
            tx = await fn.build_transaction(params)
            signed = signer.sign_transaction(tx)
            tx_hash = await self.w3.eth.send_raw_transaction(signed.raw_transaction)
            tx_hash_hex = Web3.to_hex(tx_hash)
            logger.info(f"{step} submitted: tx={tx_hash_hex}")
            receipt = await self.w3.eth.wait_for_transaction_receipt(
                tx_hash, timeout=self.receipt_timeout
            )
        except TimeExhausted as exc:
            raise TransactionFailedError(step, "receipt timed out", tx_hash_hex) from exc
        except (Web3Exception, ValueError) as exc:
            raise TransactionFailedError(step, str(exc), tx_hash_hex) from exc

        if receipt["status"] != 1:
            raise TransactionFailedError(step, "transaction reverted", tx_hash_hex)
        logger.info(f"{step} confirmed in block {receipt['blockNumber']}: tx={tx_hash_hex}")
        return tx_hash_hex


def create_chain_client(config: ChainConfig) -> ChainClient | None:
    """Return a :class:`ChainClient`, or ``None`` when no RPC endpoint is set."""
    if not config.is_online:
        logger.warning("RPC_URL not configured. Running in degraded (offline) mode.")
        return None
    return ChainClient.from_config(config)
