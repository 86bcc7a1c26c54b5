"""Custodial agent wallets on an EVM chain.

Provides per-agent keypairs, gasless EIP-2612 permit transfers relayed by
a treasury signer, seed funding, a balance cache, and NFT minting.
"""

from agent_chain.wallet.balance import BalanceCache
from agent_chain.wallet.funding import FundingService
from agent_chain.wallet.manager import WalletManager
from agent_chain.wallet.nft import NFTMinter
from agent_chain.wallet.provider import ChainClient, create_chain_client
from agent_chain.wallet.provisioner import WalletProvisioner
from agent_chain.wallet.signature import MAX_UINT256, sign_permit, split_signature
from agent_chain.wallet.transfers import (
    KeyedLock,
    TransferIntent,
    TransferOrchestrator,
    TransferReceipt,
)

__all__ = [
    "BalanceCache",
    "ChainClient",
    "create_chain_client",
    "FundingService",
    "KeyedLock",
    "MAX_UINT256",
    "NFTMinter",
    "sign_permit",
    "split_signature",
    "TransferIntent",
    "TransferOrchestrator",
    "TransferReceipt",
    "WalletManager",
    "WalletProvisioner",
]
