"""
Audit Journal Verification — hash chain integrity checks and report.

Every coordinator transition appends a hash-chained ``AuditEntry``. This
module recomputes each hash and checks the linkage so that any edited,
reordered or dropped line is detected.

Retention cleanup deletes whole days from the front of the journal, so the
first retained entry may point at a hash that is no longer stored; the
chain is verified from there on.
"""

from __future__ import annotations

import time
from typing import Sequence

from rich.console import Console
from rich.table import Table

from guild_multisig.core.schema import AuditEntry
from guild_multisig.ledger.storage import Storage


def verify_audit_chain(entries: Sequence[AuditEntry]) -> tuple[bool, int, str]:
    """
    Verify an ordered run of audit entries.

    Returns:
        Tuple of (is_valid, entries_verified, message). On failure the
        second element is the index of the offending entry.
    """
    if not entries:
        return True, 0, "Audit journal is empty"

    for i, entry in enumerate(entries):
        expected_hash = entry.compute_hash()
        if entry.entry_hash != expected_hash:
            return (
                False, i,
                f"Hash mismatch at sequence {entry.sequence}: "
                f"stored={entry.entry_hash[:16]}... "
                f"computed={expected_hash[:16]}..."
            )
        if i == 0:
            continue
        previous = entries[i - 1]
        if entry.sequence != previous.sequence + 1:
            return (
                False, i,
                f"Sequence gap at {entry.sequence}: previous entry is {previous.sequence}"
            )
        if entry.previous_hash != previous.entry_hash:
            return (
                False, i,
                f"Chain break at sequence {entry.sequence}: "
                f"previous_hash does not match prior entry's hash"
            )

    return (
        True, len(entries),
        f"Chain verified: {len(entries)} entries, integrity intact"
    )


def run_audit(storage: Storage, verbose: bool = False, console: Console | None = None) -> bool:
    """
    Print an integrity report for the storage's audit journal.

    Args:
        storage: Backend whose journal is checked.
        verbose: Also print every entry in a table.
        console: Rich console to print to (a fresh one by default).

    Returns:
        True if the chain is valid.
    """
    console = console or Console()
    console.print("\n[bold blue]═══ Multisig Audit Journal ═══[/bold blue]")

    entries = storage.read_audit()
    console.print(f"  Entries in journal: [bold]{len(entries)}[/bold]")
    if not entries:
        console.print("[yellow]⚠ Journal is empty — nothing to verify[/yellow]")
        return True

    console.print("  Verifying hash chain...", end=" ")
    start_time = time.time()
    is_valid, verified, message = verify_audit_chain(entries)
    elapsed = time.time() - start_time

    if is_valid:
        console.print("[bold green]✓ VALID[/bold green]")
        console.print(f"  Entries verified: [bold]{verified}[/bold]")
        console.print(f"  Verification time: {elapsed:.3f}s")
    else:
        console.print("[bold red]✗ INVALID[/bold red]")
        console.print(f"  Failure at entry: {verified}")
        console.print(f"  Reason: {message}")

    if verbose:
        table = Table(show_lines=True)
        table.add_column("Seq", style="cyan", width=6)
        table.add_column("Action", style="green", width=20)
        table.add_column("Group", width=28)
        table.add_column("Proposal", width=28)
        table.add_column("Actor", style="yellow", width=16)
        table.add_column("Hash (first 16)", style="dim", width=18)
        table.add_column("Timestamp", width=20)
        for entry in entries:
            table.add_row(
                str(entry.sequence),
                entry.action.value,
                entry.group_id or "—",
                entry.proposal_id or "—",
                entry.actor or "—",
                entry.entry_hash[:16] + "...",
                entry.timestamp.isoformat()[:19],
            )
        console.print(table)

    console.print("[bold blue]═══ Audit Complete ═══[/bold blue]\n")
    return is_valid
