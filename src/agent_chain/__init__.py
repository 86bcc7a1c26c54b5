"""Agent Chain - custodial wallets and token transfers for AI agent personas."""

__version__ = "0.1.0"
