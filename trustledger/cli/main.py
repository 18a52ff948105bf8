# trustledger/cli/main.py
"""
CLI for inspecting, exporting and pinning locally stored trust anchors.
"""

import json
import logging
import sqlite3
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from trustledger.config import default_state_uri
from trustledger.core.canon import canonical_json, canonical_json_str
from trustledger.core.encoding import b64url_decode
from trustledger.core.errors import StaleAnchorError
from trustledger.core.types import TrustAnchor
from trustledger.storage import TrustStateStore, create_storage, storage_location

app = typer.Typer(
    name="trustledger",
    help="Inspect, export and pin the trust anchors of verified ledger clients",
    add_completion=False,
    no_args_is_help=True,
)

console = Console()


def get_state_uri(db_flag: Optional[str] = None) -> str:
    """Resolve the state store in this order:
    1. --db flag (SQLite path, or a sqlite://, file://, memory: URI)
    2. TRUSTLEDGER_STATE_URI environment variable
    3. TRUSTLEDGER_STATE_PATH environment variable
    4. Default: ~/.trustledger/state.db
    """
    if db_flag:
        return db_flag
    return default_state_uri()


def open_store(db: Optional[str], must_exist: bool = True) -> TrustStateStore:
    uri = get_state_uri(db)
    try:
        _, location = storage_location(uri)
    except ValueError as e:
        console.print(f"[red]{str(e)}[/]")
        raise typer.Exit(1)

    if must_exist and location is not None and not location.exists():
        console.print(f"[red]State store not found: {location}[/]")
        console.print("[yellow]To get started:[/]")
        console.print("  • Run a verified operation first (creates the anchor)")
        console.print("  • Or pin a known-good anchor: trustledger pin <identity> --tx-id N --tx-hash HEX")
        console.print("  • Set env var: export TRUSTLEDGER_STATE_URI=sqlite:///path/to/state.db")
        raise typer.Exit(1)

    try:
        return create_storage(uri)
    except (sqlite3.Error, OSError) as e:
        console.print(f"[red]Failed to open state store: {str(e)}[/]")
        console.print("[yellow]The file may be corrupted or not a valid SQLite DB.[/]")
        raise typer.Exit(1)


def load_anchor_or_exit(store: TrustStateStore, identity: str) -> TrustAnchor:
    anchor = store.get(identity)
    if anchor is None:
        console.print(f"[yellow]No trust anchor stored for '{identity}'[/]")
        raise typer.Exit(1)
    return anchor


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log debug output"),
):
    """Manage trust anchors of verified ledger clients."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@app.command()
def anchors(
    db: Optional[str] = typer.Option(None, "--db", help="State store path or URI (overrides TRUSTLEDGER_STATE_URI)"),
):
    """List every server identity with its trusted transaction."""
    with open_store(db) as store:
        identities = store.list_identities()

        if not identities:
            console.print("[yellow]No trust anchors stored yet.[/]")
            console.print("  (the first verified operation against a server creates one)")
            return

        table = Table(title="Trust Anchors")
        table.add_column("Server Identity")
        table.add_column("Tx")
        table.add_column("ALH")
        table.add_column("Signed")
        table.add_column("Updated")

        for identity in identities:
            anchor = store.get(identity)
            if anchor is None:
                continue
            table.add_row(
                identity,
                str(anchor.tx_id),
                anchor.tx_hash.hex()[:16] + "…",
                "yes" if anchor.signature else "no",
                store.get_updated_at(identity) or "—",
            )

    console.print(table)


@app.command()
def show(
    identity: str = typer.Argument(..., help="Server identity (e.g. host:port)"),
    db: Optional[str] = typer.Option(None, "--db", help="State store path or URI (overrides TRUSTLEDGER_STATE_URI)"),
):
    """Show the full anchor stored for a server identity."""
    with open_store(db) as store:
        anchor = load_anchor_or_exit(store, identity)

    console.print(f"[bold cyan]{anchor.server_identity}[/]")
    console.print(f"  tx_id     : {anchor.tx_id}")
    console.print(f"  tx_hash   : {anchor.tx_hash.hex()}")
    console.print(f"  signature : {anchor.signature.hex() or '—'}")


@app.command()
def export(
    identity: str = typer.Argument(..., help="Server identity to export"),
    db: Optional[str] = typer.Option(None, "--db", help="State store path or URI (overrides TRUSTLEDGER_STATE_URI)"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Output file (default: stdout)"),
):
    """Export an anchor as canonical JSON, ready to pin on another machine."""
    with open_store(db) as store:
        anchor = load_anchor_or_exit(store, identity)

    if output is None:
        typer.echo(canonical_json_str(anchor.to_record()))
        return

    output.write_bytes(canonical_json(anchor.to_record()) + b"\n")
    console.print(f"[green]Exported anchor for '{identity}' (tx {anchor.tx_id}) to {output}[/]")


@app.command()
def pin(
    identity: Optional[str] = typer.Argument(None, help="Server identity to pin"),
    tx_id: Optional[int] = typer.Option(None, "--tx-id", help="Trusted transaction id"),
    tx_hash: Optional[str] = typer.Option(None, "--tx-hash", help="ALH of that transaction, hex"),
    signature: str = typer.Option("", "--signature", help="Server state signature, base64url"),
    from_file: Optional[Path] = typer.Option(None, "--from-file", "-f", help="Anchor record exported earlier"),
    db: Optional[str] = typer.Option(None, "--db", help="State store path or URI (overrides TRUSTLEDGER_STATE_URI)"),
):
    """Pin a known-good anchor obtained out of band, instead of trusting on first use."""
    try:
        if from_file is not None:
            anchor = TrustAnchor.from_record(json.loads(from_file.read_text(encoding="utf-8")))
            if identity and identity != anchor.server_identity:
                console.print(f"[red]File is for '{anchor.server_identity}', not '{identity}'[/]")
                raise typer.Exit(1)
        else:
            if not identity or tx_id is None or not tx_hash:
                console.print("[red]Need IDENTITY, --tx-id and --tx-hash (or --from-file)[/]")
                raise typer.Exit(1)
            anchor = TrustAnchor(identity, tx_id, bytes.fromhex(tx_hash), b64url_decode(signature))
    except (OSError, ValueError, KeyError) as e:
        console.print(f"[red]Invalid anchor: {str(e)}[/]")
        raise typer.Exit(1)

    with open_store(db, must_exist=False) as store:
        try:
            store.set(anchor)
        except StaleAnchorError as e:
            console.print(f"[red]{str(e)}[/]")
            console.print("  Run 'trustledger forget' first if you really mean to trust an older state.")
            raise typer.Exit(1)

    console.print(f"[green]Pinned '{anchor.server_identity}' at tx {anchor.tx_id}[/]")


@app.command()
def forget(
    identity: str = typer.Argument(..., help="Server identity to forget"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
    db: Optional[str] = typer.Option(None, "--db", help="State store path or URI (overrides TRUSTLEDGER_STATE_URI)"),
):
    """Delete a stored anchor. The next operation bootstraps again."""
    if not yes:
        typer.confirm(f"Forget the trust anchor for '{identity}'?", abort=True)

    with open_store(db) as store:
        removed = store.delete(identity)

    if not removed:
        console.print(f"[yellow]No trust anchor stored for '{identity}'[/]")
        raise typer.Exit(1)
    console.print(f"[green]Forgot trust anchor for '{identity}'[/]")


if __name__ == "__main__":
    app()
