"""Minimal ABIs for the AgentCoin (ERC-20 + EIP-2612) and agent NFT contracts."""

from __future__ import annotations


def _fn(name: str, inputs: list[tuple[str, str]], outputs: list[str], mutability: str) -> dict:
    return {
        "type": "function",
        "name": name,
        "inputs": [{"name": n, "type": t} for n, t in inputs],
        "outputs": [{"name": "", "type": t} for t in outputs],
        "stateMutability": mutability,
    }


AGENT_COIN_ABI: list[dict] = [
    _fn("name", [], ["string"], "view"),
    _fn("decimals", [], ["uint8"], "view"),
    _fn("nonces", [("owner", "address")], ["uint256"], "view"),
    _fn("balanceOf", [("account", "address")], ["uint256"], "view"),
    _fn("allowance", [("owner", "address"), ("spender", "address")], ["uint256"], "view"),
    _fn("transfer", [("to", "address"), ("value", "uint256")], ["bool"], "nonpayable"),
    _fn(
        "transferFrom",
        [("from", "address"), ("to", "address"), ("value", "uint256")],
        ["bool"],
        "nonpayable",
    ),
    _fn(
        "permit",
        [
            ("owner", "address"),
            ("spender", "address"),
            ("value", "uint256"),
            ("deadline", "uint256"),
            ("v", "uint8"),
            ("r", "bytes32"),
            ("s", "bytes32"),
        ],
        [],
        "nonpayable",
    ),
]

AGENT_NFT_ABI: list[dict] = [
    _fn("balanceOf", [("owner", "address")], ["uint256"], "view"),
    _fn(
        "mintAgentNFTsCollection",
        [("to", "address"), ("imageURL", "string"), ("title", "string")],
        [],
        "nonpayable",
    ),
]
