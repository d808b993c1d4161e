"""CLI for GeniePay - sign in with your wallet and send payments from the terminal."""

from __future__ import annotations

import asyncio
import logging

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

app = typer.Typer(
    name="geniepay",
    help="Wallet sign-in and native-token payments for EVM wallets.",
    no_args_is_help=True,
)
console = Console()

_selected_profile: str = "default"


def _version_callback(value: bool):
    if value:
        from importlib.metadata import version
        console.print(f"geniepay {version('geniepay')}")
        raise typer.Exit()


@app.callback()
def main(
    profile: str = typer.Option(
        "default",
        "--profile",
        "-P",
        help="Profile slug to operate on",
        envvar="GENIEPAY_PROFILE",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logging"),
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Show version and exit",
        callback=_version_callback,
        is_eager=True,
    ),
):
    """Wallet sign-in and native-token payments for EVM wallets."""
    global _selected_profile
    _selected_profile = profile
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _run(coro):
    """Run an async function synchronously."""
    return asyncio.run(coro)


async def _confirm_prompt(text: str) -> bool:
    """Stand-in for a wallet popup: show the request and ask y/n."""
    console.print(Panel(text, title="Wallet request"))
    return await asyncio.to_thread(typer.confirm, "Approve?", default=False)


def _load_error(e: Exception):
    console.print(f"[red]{e}[/red]")
    raise typer.Exit(1)


@app.command()
def init(
    name: str = typer.Option("GeniePay", "--name", "-n", help="Display name for this profile"),
    chain: str = typer.Option("sepolia", "--chain", "-c", help="Network to use"),
):
    """Initialize a GeniePay profile in the current directory."""
    from geniepay.core.client import GeniePayClient
    from geniepay.wallet.chains import list_chain_names

    if chain not in list_chain_names():
        console.print(f"[red]Unknown chain '{chain}'.[/red] Available: {', '.join(list_chain_names())}")
        raise typer.Exit(1)

    async def _init():
        client = await GeniePayClient.init(name=name, profile=_selected_profile, chain=chain)
        profile_dir = client.profile_dir
        await client.shutdown()
        return profile_dir

    profile_dir = _run(_init())
    console.print(Panel(
        f"[bold green]Profile initialized![/bold green]\n\n"
        f"Directory: [cyan]{profile_dir}[/cyan]\n"
        f"Network:   {chain}\n\n"
        f"[dim]Next: 'geniepay wallet create', then 'geniepay login'.[/dim]",
        title=name,
    ))


# ------------------------------------------------------------------
# wallet sub-commands
# ------------------------------------------------------------------

wallet_app = typer.Typer(
    name="wallet",
    help="Manage the local wallet keystore.",
    no_args_is_help=True,
)
app.add_typer(wallet_app, name="wallet")


@wallet_app.command("create")
def wallet_create():
    """Generate a new Ethereum wallet with encrypted keystore."""
    from geniepay.core.client import GeniePayClient

    password = console.input("[bold]Set wallet password: [/bold]", password=True)
    confirm = console.input("[bold]Confirm password: [/bold]", password=True)
    if password != confirm:
        console.print("[red]Passwords do not match.[/red]")
        raise typer.Exit(1)

    async def _create():
        client = await GeniePayClient.load(profile=_selected_profile)
        try:
            if client.keystore.exists():
                return client.keystore.address(), False
            return client.keystore.create(password), True
        finally:
            await client.shutdown()

    try:
        addr, created = _run(_create())
    except FileNotFoundError as e:
        _load_error(e)

    if created:
        console.print(Panel(
            f"[bold green]Wallet created![/bold green]\n\n"
            f"Address: [cyan]{addr}[/cyan]\n\n"
            f"[dim]Your keystore is encrypted with your password.\n"
            f"Fund it to start transacting.[/dim]",
            title="Wallet",
        ))
    else:
        console.print("[yellow]Wallet already exists.[/yellow]")
        console.print(f"Wallet address: [cyan]{addr}[/cyan]")


@wallet_app.command("address")
def wallet_address():
    """Show the wallet address."""
    from geniepay.core.client import GeniePayClient

    async def _address():
        client = await GeniePayClient.load(profile=_selected_profile)
        addr = client.keystore.address()
        network = client.chain.display_name
        await client.shutdown()
        return addr, network

    try:
        addr, network = _run(_address())
    except FileNotFoundError as e:
        _load_error(e)

    if addr is None:
        console.print("[yellow]No wallet found.[/yellow] Run 'geniepay wallet create' first.")
        raise typer.Exit(1)

    console.print(Panel(f"[cyan]{addr}[/cyan]\n\n[dim]Network: {network}[/dim]", title="Wallet Address"))


@wallet_app.command("balance")
def wallet_balance():
    """Show the wallet's native token balance on the configured network."""
    from geniepay.auth.messages import utcnow
    from geniepay.core.client import GeniePayClient
    from geniepay.payments.balance import BalanceSnapshot
    from geniepay.wallet.address import display_address

    async def _balance():
        client = await GeniePayClient.load(profile=_selected_profile)
        try:
            addr = client.keystore.address()
            if addr is None:
                return None, None, None
            value = await client.signer.get_balance(addr)
            snapshot = BalanceSnapshot(
                address=addr, value=value, symbol=client.chain.native_symbol, as_of=utcnow()
            )
            return addr, snapshot, client.chain.display_name
        finally:
            await client.shutdown()

    try:
        addr, snapshot, network = _run(_balance())
    except FileNotFoundError as e:
        _load_error(e)
    except Exception as e:
        console.print(f"[red]Could not fetch balance: {e}[/red]")
        raise typer.Exit(1)

    if addr is None:
        console.print("[yellow]No wallet found.[/yellow] Run 'geniepay wallet create' first.")
        raise typer.Exit(1)
    console.print(f"[bold]{network}[/bold] {display_address(addr)}: {snapshot.formatted}")


# ------------------------------------------------------------------
# sign-in and payments
# ------------------------------------------------------------------


async def _sign_in(client) -> bool:
    """Run the sign-in flow for an already connected wallet.

    Prompts for terms acceptance on first use. Returns True once
    authenticated.
    """
    from geniepay.auth.models import AuthState

    session = client.session
    await session.request_signature()

    if session.state is AuthState.PENDING_TERMS:
        console.print(Panel(
            f"This wallet has not used {client.config.auth.app_name} before.\n\n"
            f"Terms of Service v{client.config.auth.terms_version}",
            title="Terms of Service",
        ))
        if typer.confirm("Do you accept the Terms of Service?", default=False):
            await session.accept_terms()
        else:
            await session.decline_terms()

    if session.is_authenticated:
        return True
    console.print(f"[red]{session.error or 'Sign-in failed.'}[/red]")
    return False


async def _connect_and_sign_in(client, password: str) -> bool:
    try:
        await client.connect(password)
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[red]{e}[/red]")
        return False
    await client.start()
    return await _sign_in(client)


@app.command()
def login():
    """Sign in with the local wallet (signs a challenge, no gas)."""
    from geniepay.core.client import GeniePayClient

    password = console.input("[bold]Wallet password: [/bold]", password=True)

    async def _login():
        client = await GeniePayClient.load(profile=_selected_profile, confirm=_confirm_prompt)
        try:
            ok = await _connect_and_sign_in(client, password)
            if not ok:
                return None
            s = client.session.require_session()
            return s.user_id, s.wallet_address, s.expires_at, s.is_new_user
        finally:
            await client.shutdown()

    try:
        result = _run(_login())
    except FileNotFoundError as e:
        _load_error(e)

    if result is None:
        raise typer.Exit(1)
    user_id, address, expires_at, is_new = result
    console.print(Panel(
        f"[bold green]Signed in{' (new account)' if is_new else ''}![/bold green]\n\n"
        f"Account: [dim]{user_id}[/dim]\n"
        f"Wallet:  [cyan]{address}[/cyan]\n"
        f"Expires: {expires_at:%Y-%m-%d %H:%M} UTC",
        title="Session",
    ))


@app.command()
def pay(
    amount: str = typer.Argument(help="Amount to send (e.g. 0.01)"),
    to: str = typer.Option(..., "--to", "-t", help="Recipient address (0x...)"),
    wait: bool = typer.Option(True, "--wait/--no-wait", help="Wait for confirmation"),
):
    """Sign in and send native tokens to a recipient."""
    from geniepay.core.client import GeniePayClient

    password = console.input("[bold]Wallet password: [/bold]", password=True)

    async def _pay():
        client = await GeniePayClient.load(profile=_selected_profile, confirm=_confirm_prompt)
        try:
            if not await _connect_and_sign_in(client, password):
                return None

            def _on_success(tx_hash: str):
                console.print(f"Broadcast: [cyan]{client.chain.tx_url(tx_hash)}[/cyan]")

            def _on_error(error):
                console.print(f"[red]{error}[/red]")

            tracker = client.payments
            tx_hash = await tracker.send_payment(to, amount, _on_success, _on_error)
            if tx_hash is None:
                return None
            if wait:
                with console.status("Waiting for confirmation..."):
                    await tracker.wait_until_settled(tx_hash)
            snapshot = client.balance.snapshot
            return tx_hash, tracker.is_confirmed, snapshot.formatted if snapshot else None
        finally:
            await client.shutdown()

    try:
        result = _run(_pay())
    except FileNotFoundError as e:
        _load_error(e)

    if result is None:
        raise typer.Exit(1)
    tx_hash, confirmed, balance = result
    if wait and not confirmed:
        raise typer.Exit(1)
    status = "[bold green]Confirmed[/bold green]" if confirmed else "[yellow]Broadcast[/yellow]"
    lines = [status, "", f"Tx: [cyan]{tx_hash}[/cyan]"]
    if balance:
        lines.append(f"Balance: {balance}")
    console.print(Panel("\n".join(lines), title="Payment"))


@app.command()
def history(
    status: str = typer.Option(None, "--status", "-s", help="Filter by status (broadcast, confirmed, failed)"),
    limit: int = typer.Option(20, "--limit", "-n", help="Number of transfers to show"),
):
    """Show recent outgoing transfers."""
    from geniepay.core.client import GeniePayClient
    from geniepay.storage.models import TransactionStatus

    try:
        status_filter = TransactionStatus(status) if status else None
    except ValueError:
        console.print(f"[red]Unknown status '{status}'.[/red]")
        raise typer.Exit(1)

    async def _history():
        client = await GeniePayClient.load(profile=_selected_profile)
        try:
            sender = client.keystore.address()
            return await client.ledger.history(sender=sender, status=status_filter, limit=limit)
        finally:
            await client.shutdown()

    try:
        records = _run(_history())
    except FileNotFoundError as e:
        _load_error(e)

    if not records:
        console.print("[dim]No transfers yet.[/dim]")
        return

    table = Table(title="Transfers")
    table.add_column("Hash", style="dim")
    table.add_column("Amount", justify="right")
    table.add_column("Token")
    table.add_column("Chain", style="cyan")
    table.add_column("To", style="dim")
    table.add_column("Status")
    table.add_column("Block", justify="right")

    status_colors = {"broadcast": "yellow", "confirmed": "green", "failed": "red"}

    for tx in records:
        color = status_colors.get(tx.status.value, "white")
        table.add_row(
            tx.hash[:12] + "...",
            tx.amount,
            tx.token,
            tx.chain,
            tx.recipient[:12] + "...",
            f"[{color}]{tx.status.value}[/{color}]",
            str(tx.block_number) if tx.block_number is not None else "-",
        )

    console.print(table)
