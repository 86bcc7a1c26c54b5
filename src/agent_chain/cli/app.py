"""CLI for Agent Chain - operate agent wallets from the terminal."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Awaitable, Callable, TypeVar

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from agent_chain.config import AgentChainConfig, config_from_env, load_config
from agent_chain.errors import AgentChainError
from agent_chain.utils import format_units

app = typer.Typer(
    name="agent-chain",
    help="Custodial wallets, token transfers and NFTs for AI agents.",
    no_args_is_help=True,
)
console = Console()

T = TypeVar("T")

_config_path: Path | None = None


def _version_callback(value: bool):
    if value:
        from importlib.metadata import version
        console.print(f"agent-chain {version('agent-chain')}")
        raise typer.Exit()


@app.callback()
def main(
    config: Path = typer.Option(
        None,
        "--config",
        "-c",
        help="YAML config file (defaults to environment variables)",
        envvar="AGENT_CHAIN_CONFIG",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logs"),
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Show version and exit",
        callback=_version_callback,
        is_eager=True,
    ),
):
    """Custodial wallets, token transfers and NFTs for AI agents."""
    global _config_path
    _config_path = config
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
    )


def _load() -> AgentChainConfig:
    if _config_path is not None:
        return load_config(_config_path)
    return config_from_env()


def _with_manager(fn: Callable[..., Awaitable[T]]) -> T:
    """Run *fn(manager)* against a connected WalletManager."""
    from agent_chain.wallet.manager import WalletManager

    async def _inner() -> T:
        async with WalletManager.from_config(_load()) as manager:
            return await fn(manager)

    try:
        return asyncio.run(_inner())
    except (AgentChainError, ValueError) as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)


# ------------------------------------------------------------------
# wallet sub-commands
# ------------------------------------------------------------------

wallet_app = typer.Typer(
    name="wallet",
    help="Manage agent wallets.",
    no_args_is_help=True,
)
app.add_typer(wallet_app, name="wallet")


@wallet_app.command("create")
def wallet_create(
    handle: str = typer.Argument(help="Agent handle"),
    fund: bool = typer.Option(True, "--fund/--no-fund", help="Send the seed amount after creating"),
):
    """Create (and by default fund) a custodial wallet for an agent."""

    async def _create(manager):
        if fund:
            return await manager.onboard_agent(handle)
        existing = await manager.get_wallet(handle)
        return existing or await manager.provisioner.provision(handle)

    wallet = _with_manager(_create)
    status = (
        "[green]permit pre-signed[/green]"
        if wallet.permit_signature.is_present
        else f"[yellow]{wallet.permit_signature.as_legacy_string()}[/yellow]"
    )
    console.print(Panel(
        f"[bold green]Wallet ready![/bold green]\n\n"
        f"Handle: [bold]{wallet.handle}[/bold]\n"
        f"Address: [cyan]{wallet.address}[/cyan]\n"
        f"Permit: {status}",
        title="Agent Wallet",
    ))


@wallet_app.command("show")
def wallet_show(handle: str = typer.Argument(help="Agent handle")):
    """Show an agent's wallet address."""

    wallet = _with_manager(lambda m: m.get_wallet(handle))
    if wallet is None:
        console.print(f"[yellow]No wallet found for {handle}.[/yellow]")
        raise typer.Exit(1)
    console.print(Panel(
        f"[cyan]{wallet.address}[/cyan]\n\n"
        f"[dim]Created {wallet.created_at:%Y-%m-%d %H:%M} UTC[/dim]",
        title=f"Wallet: {wallet.handle}",
    ))


@wallet_app.command("list")
def wallet_list():
    """List every agent wallet."""

    wallets = _with_manager(lambda m: m.store.list_wallets())
    if not wallets:
        console.print("[dim]No wallets yet.[/dim]")
        return
    table = Table(title=f"Agent Wallets ({len(wallets)})")
    table.add_column("Handle", style="bold")
    table.add_column("Address", style="cyan")
    table.add_column("Permit")
    for w in wallets:
        table.add_row(
            w.handle,
            w.address,
            "signed" if w.permit_signature.is_present else w.permit_signature.as_legacy_string(),
        )
    console.print(table)


@wallet_app.command("balance")
def wallet_balance(
    handle: str = typer.Argument(help="Agent handle"),
    no_cache: bool = typer.Option(False, "--no-cache", help="Always query the chain"),
):
    """Show an agent's token balance."""

    async def _balance(manager):
        return await manager.balance(handle, use_cache=not no_cache), manager.token_decimals

    raw, decimals = _with_manager(_balance)
    console.print(f"[bold]{handle}:[/bold] {format_units(raw, decimals)} $AGENT")


@wallet_app.command("fund")
def wallet_fund(handle: str = typer.Argument(help="Agent handle")):
    """Send the seed amount from the treasury to an agent's wallet."""

    async def _fund(manager):
        wallet = await manager.get_wallet(handle)
        if wallet is None:
            return None
        return await manager.funding.send_initial_funds(wallet.address, handle=wallet.handle)

    ok = _with_manager(_fund)
    if ok is None:
        console.print(f"[yellow]No wallet found for {handle}.[/yellow]")
        raise typer.Exit(1)
    if not ok:
        console.print("[red]Funding failed.[/red]")
        raise typer.Exit(1)
    console.print("[green]Funding complete.[/green]")


async def _with_link(manager, pending):
    """Await *pending* and pair its result with an explorer URL, if known."""
    result = await pending
    tx_hash = getattr(result, "transfer_tx_hash", result)
    url = manager.chain.explorer_tx_url(tx_hash) if manager.chain is not None else None
    return result, url


def _print_receipt(linked) -> None:
    receipt, url = linked
    lines = [f"Tx: [cyan]{receipt.transfer_tx_hash}[/cyan]"]
    if url:
        lines.append(f"[dim]{url}[/dim]")
    if receipt.permit_tx_hash:
        lines.insert(0, f"Permit: [cyan]{receipt.permit_tx_hash}[/cyan]")
    console.print(Panel(
        "[bold green]Transfer confirmed![/bold green]\n\n"
        f"From: {receipt.source_address}\n"
        f"To: {receipt.destination_address}\n" + "\n".join(lines),
        title="Transfer",
    ))


@wallet_app.command("transfer")
def wallet_transfer(
    source: str = typer.Argument(help="Sending agent handle"),
    destination: str = typer.Argument(help="Receiving agent handle"),
    amount: str = typer.Argument(help="Amount in tokens (e.g. 2.5)"),
):
    """Move tokens between two agents (treasury relays the permit)."""
    _print_receipt(_with_manager(lambda m: _with_link(m, m.transfer(source, destination, amount))))


@wallet_app.command("grant")
def wallet_grant(
    handle: str = typer.Argument(help="Agent handle"),
    amount: str = typer.Argument(help="Amount in tokens"),
):
    """Pay tokens from the treasury to an agent."""
    _print_receipt(_with_manager(lambda m: _with_link(m, m.grant(handle, amount))))


@wallet_app.command("charge")
def wallet_charge(
    handle: str = typer.Argument(help="Agent handle"),
    amount: str = typer.Argument(help="Amount in tokens"),
):
    """Pull tokens from an agent back to the treasury."""
    typer.confirm(f"Charge {amount} $AGENT from {handle}?", abort=True)
    _print_receipt(_with_manager(lambda m: _with_link(m, m.charge(handle, amount))))


@wallet_app.command("mint")
def wallet_mint(
    handle: str = typer.Argument(help="Agent handle"),
    artwork_url: str = typer.Argument(help="Artwork image URL"),
    title: str = typer.Argument(help="NFT title"),
):
    """Mint a commemorative NFT to an agent's wallet."""
    tx_hash, url = _with_manager(lambda m: _with_link(m, m.mint(handle, artwork_url, title)))
    console.print(Panel(
        f"[bold green]NFT minted![/bold green]\n\nTx: [cyan]{tx_hash}[/cyan]"
        + (f"\n[dim]{url}[/dim]" if url else ""),
        title="Agent NFT",
    ))


@wallet_app.command("nfts")
def wallet_nfts(handle: str = typer.Argument(help="Agent handle")):
    """Count the agent NFTs an agent owns."""
    count = _with_manager(lambda m: m.owned_nfts(handle))
    console.print(f"[bold]{handle}:[/bold] {count} NFT(s)")


if __name__ == "__main__":
    app()
