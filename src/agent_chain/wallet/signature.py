"""EIP-2612 permit signatures for agent wallets.

A permit lets the treasury operator move tokens out of an agent wallet
without the agent wallet ever paying gas. The signature is bound to the
owner's on-chain nonce at signing time, so every spend needs a fresh one.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from eth_account import Account
from eth_account.messages import encode_typed_data
from eth_account.signers.local import LocalAccount
from hexbytes import HexBytes
from web3 import Web3

from agent_chain.errors import ChainUnavailableError, ConfigError, SignatureError

if TYPE_CHECKING:
    from agent_chain.wallet.provider import ChainClient

logger = logging.getLogger("agent_chain.wallet.signature")

MAX_UINT256 = 2**256 - 1

PERMIT_TYPES = {
    "Permit": [
        {"name": "owner", "type": "address"},
        {"name": "spender", "type": "address"},
        {"name": "value", "type": "uint256"},
        {"name": "nonce", "type": "uint256"},
        {"name": "deadline", "type": "uint256"},
    ],
}


def build_permit_typed_data(
    *,
    token_name: str,
    chain_id: int,
    token_address: str,
    owner: str,
    spender: str,
    value: int,
    nonce: int,
    deadline: int,
) -> tuple[dict, dict, dict]:
    """Return ``(domain, types, message)`` for a Permit."""
    domain = {
        "name": token_name,
        "version": "1",
        "chainId": chain_id,
        "verifyingContract": Web3.to_checksum_address(token_address),
    }
    message = {
        "owner": Web3.to_checksum_address(owner),
        "spender": Web3.to_checksum_address(spender),
        "value": value,
        "nonce": nonce,
        "deadline": deadline,
    }
    return domain, PERMIT_TYPES, message


async def sign_permit(
    chain: ChainClient | None,
    owner: LocalAccount,
    spender: str,
    *,
    value: int = MAX_UINT256,
    deadline: int = MAX_UINT256,
) -> str:
    """Sign a Permit granting *spender* an allowance over *owner*'s tokens.

    Reads the owner's current nonce, the token name and the chain id to
    build the domain, then signs the typed data with the owner's key.

    Returns
    -------
    str
        The ``0x``-prefixed 65-byte signature.

    Raises
    ------
    ChainUnavailableError
        If *chain* is ``None`` (no provider bound).
    SignatureError
        If any lookup or the signing itself fails.
    """
    if chain is None:
        raise ChainUnavailableError("Wallet provider not found; cannot sign permit.")

    try:
        nonce = await chain.token_nonce(owner.address)
        token_name = await chain.token_name()
        chain_id = await chain.get_chain_id()
        domain, types, message = build_permit_typed_data(
            token_name=token_name,
            chain_id=chain_id,
            token_address=chain.token_address,
            owner=owner.address,
            spender=spender,
            value=value,
            nonce=nonce,
            deadline=deadline,
        )
        signed = owner.sign_typed_data(
            domain_data=domain, message_types=types, message_data=message
        )
    except ConfigError:
        raise
    except Exception as exc:
        raise SignatureError(
            f"Failed to sign permit for {owner.address}: {exc}"
        ) from exc

    logger.debug(f"Permit signed for {owner.address} (nonce={nonce})")
    return Web3.to_hex(signed.signature)


def split_signature(signature: str | bytes) -> tuple[int, bytes, bytes]:
    """Split a 65-byte signature into ``(v, r, s)`` with ``v`` in {27, 28}."""
    raw = HexBytes(signature)
    if len(raw) != 65:
        raise SignatureError(f"Expected a 65-byte signature, got {len(raw)} bytes.")
    r = bytes(raw[0:32])
    s = bytes(raw[32:64])
    v = raw[64]
    if v < 27:
        v += 27
    if v not in (27, 28):
        raise SignatureError(f"Invalid signature recovery id v={v}.")
    return v, r, s


def recover_permit_signer(signature: str | bytes, domain: dict, message: dict) -> str:
    """Recover the address that signed a Permit with the given domain/message."""
    full_message: dict[str, Any] = {
        "types": {
            "EIP712Domain": [
                {"name": "name", "type": "string"},
                {"name": "version", "type": "string"},
                {"name": "chainId", "type": "uint256"},
                {"name": "verifyingContract", "type": "address"},
            ],
            **PERMIT_TYPES,
        },
        "primaryType": "Permit",
        "domain": domain,
        "message": message,
    }
    encoded = encode_typed_data(full_message=full_message)
    return Account.recover_message(encoded, signature=HexBytes(signature))
