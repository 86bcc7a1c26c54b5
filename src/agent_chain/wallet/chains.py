"""Network presets for the chains the agent token is deployed on."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Chain:
    """An EVM network and its block explorer."""

    name: str
    chain_id: int
    explorer_url: str

    def tx_url(self, tx_hash: str) -> str:
        return f"{self.explorer_url}/tx/{tx_hash}"


CHAINS: dict[str, Chain] = {
    c.name: c
    for c in (
        Chain("ethereum", 1, "https://etherscan.io"),
        Chain("sepolia", 11155111, "https://sepolia.etherscan.io"),
        Chain("base", 8453, "https://basescan.org"),
        Chain("base-sepolia", 84532, "https://sepolia.basescan.org"),
        Chain("polygon", 137, "https://polygonscan.com"),
    )
}


def resolve_chain(network: str | None = None, chain_id: int | None = None) -> Chain | None:
    """Find a preset by name, falling back to its chain id.

    Returns ``None`` for networks without a preset (local devnets and
    the like); callers then need an explicit chain id.
    """
    if network and network in CHAINS:
        return CHAINS[network]
    if chain_id is not None:
        for chain in CHAINS.values():
            if chain.chain_id == chain_id:
                return chain
    return None


def list_chain_names() -> list[str]:
    return list(CHAINS)
