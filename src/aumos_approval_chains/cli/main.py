"""CLI entry point for aumos-approval-chains.

Invoked as::

    approval-chains [OPTIONS] COMMAND [ARGS]...

or during development::

    python -m aumos_approval_chains.cli.main

Commands
--------
- version            Show version information
- init               Write a default approval_chains.yaml
- chains list        List registered chains
- chains show        Show the levels of one chain
- requests list      List approval requests
- requests show      Show one request with its progress
- requests create    Open a request against a chain
- requests approve   Approve a request at its current level
- requests reject    Reject a request
- requests escalate  Escalate a pending request
- requests cancel    Cancel an open request
- check-timeouts     Escalate every overdue request once
"""
from __future__ import annotations

import logging
import sys
from pathlib import Path

import click
import yaml
from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from aumos_approval_chains.config import DEFAULT_CONFIG_PATH, ConfigLoader
from aumos_approval_chains.engine import ApprovalChainEngine
from aumos_approval_chains.errors import ApprovalChainError
from aumos_approval_chains.requests.models import ApprovalRequest, RequestStatus, ResourceType

console = Console()
err_console = Console(stderr=True)

_STATUS_STYLES: dict[str, str] = {
    "pending": "yellow",
    "escalated": "magenta",
    "approved": "green",
    "rejected": "red",
    "cancelled": "dim",
}

_config_option = click.option(
    "--config",
    "-c",
    "config_path",
    default=str(DEFAULT_CONFIG_PATH),
    show_default=True,
    type=click.Path(),
    help="Path to approval_chains.yaml.",
)


def _open_engine(config_path: str) -> ApprovalChainEngine:
    """Build an engine for one CLI invocation.

    Writes are forced to ``sync`` so the process never exits before its
    state lands, and the background scheduler is never started.  Without
    a config file the JSON backend at its default path is used, matching
    what ``init`` writes, so state survives between invocations.
    """
    loader = ConfigLoader()
    path = Path(config_path)
    try:
        config = loader.load_or_defaults(path)
    except ValueError as exc:
        err_console.print(f"[red]Invalid config:[/red] {exc}")
        sys.exit(1)
    if not path.exists():
        config.persistence.backend = "json"
    elif config.persistence.backend == "memory":
        err_console.print(
            "[yellow]Warning:[/yellow] the memory backend does not keep state "
            "between CLI invocations."
        )
    config.persistence.mode = "sync"
    config.scheduler.enabled = False
    try:
        return ApprovalChainEngine.from_config(config)
    except ApprovalChainError as exc:
        err_console.print(f"[red]Cannot load approval state:[/red] {exc}")
        sys.exit(1)


def _status_markup(status: RequestStatus) -> str:
    colour = _STATUS_STYLES.get(status.value, "white")
    return f"[{colour}]{status.value.upper()}[/{colour}]"


def _format_ts(value: object) -> str:
    if value is None:
        return "-"
    return str(value)[:19].replace("T", " ")


def _fail(exc: ApprovalChainError) -> None:
    err_console.print(f"[red]Error:[/red] {exc}")
    sys.exit(1)


# ---------------------------------------------------------------------------
# Root command group
# ---------------------------------------------------------------------------


@click.group()
@click.version_option(package_name="aumos-approval-chains")
@click.option("--verbose", "-v", is_flag=True, default=False, help="Enable debug logging.")
def cli(verbose: bool) -> None:
    """Approval Chains CLI: multi-level sign-off for tickets, PRDs and releases."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


# ---------------------------------------------------------------------------
# version
# ---------------------------------------------------------------------------


@cli.command(name="version")
def version_command() -> None:
    """Show detailed version information."""
    from aumos_approval_chains import __version__

    console.print(
        Panel(
            f"[bold]aumos-approval-chains[/bold]  v[cyan]{__version__}[/cyan]\n"
            "Multi-level approval workflow engine.",
            title="Version",
            border_style="blue",
        )
    )


# ---------------------------------------------------------------------------
# init
# ---------------------------------------------------------------------------


@cli.command(name="init")
@click.option(
    "--output",
    "-o",
    type=click.Path(),
    default=str(DEFAULT_CONFIG_PATH),
    show_default=True,
    help="Output config file path.",
)
@click.option(
    "--state",
    default="./approval_state.json",
    show_default=True,
    help="Where the JSON backend stores chains and requests.",
)
def init_command(output: str, state: str) -> None:
    """Write a default config using the JSON persistence backend."""
    output_path = Path(output)
    if output_path.exists():
        err_console.print(f"[red]Refusing to overwrite existing config:[/red] {output_path}")
        sys.exit(1)

    config: dict[str, object] = {
        "version": "1",
        "install_default_chains": True,
        "scheduler": {"enabled": False, "interval_seconds": 60},
        "persistence": {"backend": "json", "path": state, "mode": "async"},
        "audit": {"enabled": True, "log_path": "./approval_audit.jsonl"},
        "chains": [],
    }

    output_path.parent.mkdir(parents=True, exist_ok=True)
    with output_path.open("w", encoding="utf-8") as fh:
        yaml.dump(config, fh, default_flow_style=False, sort_keys=False, allow_unicode=True)

    console.print(f"[green]Initialised[/green] approval chain config: [bold]{output_path}[/bold]")
    console.print(f"  State file: [cyan]{state}[/cyan]")


# ---------------------------------------------------------------------------
# chains group
# ---------------------------------------------------------------------------


@cli.group(name="chains")
def chains_group() -> None:
    """Approval chain commands."""


@chains_group.command(name="list")
@_config_option
def chains_list_command(config_path: str) -> None:
    """List registered approval chains."""
    engine = _open_engine(config_path)
    chains = engine.get_all_chains()
    if not chains:
        console.print("[yellow]No approval chains registered.[/yellow]")
        return

    table = Table(title="Approval Chains", box=box.SIMPLE)
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Name", style="bold")
    table.add_column("Levels", justify="right")
    table.add_column("Description")
    for chain in chains:
        table.add_row(chain.id, chain.name, str(chain.total_levels), chain.description)
    console.print(table)


@chains_group.command(name="show")
@click.argument("chain_id")
@_config_option
def chains_show_command(chain_id: str, config_path: str) -> None:
    """Show the levels of one chain."""
    engine = _open_engine(config_path)
    chain = engine.get_chain(chain_id)
    if chain is None:
        err_console.print(f"[red]Chain not found:[/red] {chain_id}")
        sys.exit(1)

    console.print(Panel(chain.description or chain.name, title=chain.name, border_style="blue"))
    table = Table(box=box.SIMPLE)
    table.add_column("#", justify="right")
    table.add_column("Level", style="cyan")
    table.add_column("Roles")
    table.add_column("Users")
    table.add_column("Quorum", justify="right")
    table.add_column("Timeout")
    table.add_column("On timeout")
    for level in chain.levels:
        table.add_row(
            str(level.order),
            level.name,
            ", ".join(sorted(level.approver_roles)) or "-",
            ", ".join(sorted(level.approver_user_ids)) or "-",
            str(level.required_approvals),
            f"{level.timeout_hours:g}h" if level.timeout_hours is not None else "-",
            level.escalate_to.describe(),
        )
    console.print(table)


# ---------------------------------------------------------------------------
# requests group
# ---------------------------------------------------------------------------


@cli.group(name="requests")
def requests_group() -> None:
    """Approval request commands."""


def _print_request(request: ApprovalRequest, engine: ApprovalChainEngine) -> None:
    chain = engine.get_chain(request.chain_id)
    table = Table(box=box.SIMPLE, show_header=False)
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    table.add_row("ID", request.id)
    table.add_row("Chain", f"{request.chain_id} ({chain.name})" if chain else request.chain_id)
    table.add_row("Resource", f"{request.resource_type}/{request.resource_id}")
    if request.resource_name:
        table.add_row("Resource name", request.resource_name)
    table.add_row("Status", _status_markup(request.status))
    table.add_row("Requested by", request.requested_by)
    table.add_row("Created", _format_ts(request.created_at.isoformat()))
    table.add_row("Deadline", _format_ts(request.deadline.isoformat() if request.deadline else None))
    progress = engine.get_approval_progress(request.id)
    if progress is not None:
        table.add_row(
            "Progress",
            f"level {progress.current_level}/{progress.total_levels} "
            f"({progress.current_level_name}), "
            f"{progress.approvals_at_current_level}/{progress.required_approvals} approvals, "
            f"{progress.percent_complete}%",
        )
    console.print(table)

    if request.approvals:
        votes = Table(title="Votes", box=box.SIMPLE)
        votes.add_column("Level", justify="right")
        votes.add_column("User", style="cyan")
        votes.add_column("Decision")
        votes.add_column("When", style="dim")
        votes.add_column("Comment")
        for entry in request.approvals:
            colour = "green" if entry.decision.value == "approved" else "red"
            votes.add_row(
                str(entry.level_order),
                entry.user_id,
                f"[{colour}]{entry.decision.value}[/{colour}]",
                _format_ts(entry.timestamp.isoformat()),
                entry.comment or "",
            )
        console.print(votes)

    if request.escalation_history:
        escalations = Table(title="Escalations", box=box.SIMPLE)
        escalations.add_column("From", justify="right")
        escalations.add_column("To", justify="right")
        escalations.add_column("Target", style="magenta")
        escalations.add_column("When", style="dim")
        escalations.add_column("Reason")
        for record in request.escalation_history:
            escalations.add_row(
                str(record.from_level),
                str(record.to_level),
                record.target,
                _format_ts(record.timestamp.isoformat()),
                record.reason,
            )
        console.print(escalations)


@requests_group.command(name="list")
@click.option(
    "--status",
    type=click.Choice([s.value for s in RequestStatus]),
    default=None,
    help="Only show requests in this status.",
)
@click.option("--resource-type", default=None, help="Filter by resource type.")
@click.option("--resource-id", default=None, help="Filter by resource id (requires --resource-type).")
@_config_option
def requests_list_command(
    status: str | None,
    resource_type: str | None,
    resource_id: str | None,
    config_path: str,
) -> None:
    """List approval requests."""
    if resource_id is not None and resource_type is None:
        err_console.print("[red]--resource-id requires --resource-type.[/red]")
        sys.exit(2)

    engine = _open_engine(config_path)
    if resource_type is not None and resource_id is not None:
        requests = engine.get_requests_by_resource(resource_type, resource_id)
    else:
        requests = engine.get_all_requests()
        if resource_type is not None:
            requests = [r for r in requests if r.resource_type == resource_type]
    if status is not None:
        requests = [r for r in requests if r.status.value == status]

    if not requests:
        console.print("[yellow]No approval requests found.[/yellow]")
        return

    table = Table(title="Approval Requests", box=box.SIMPLE)
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Chain")
    table.add_column("Resource")
    table.add_column("Level", justify="right")
    table.add_column("Status")
    table.add_column("Deadline", style="dim")
    for request in requests:
        table.add_row(
            request.id,
            request.chain_id,
            f"{request.resource_type}/{request.resource_id}",
            str(request.current_level),
            _status_markup(request.status),
            _format_ts(request.deadline.isoformat() if request.deadline else None),
        )
    console.print(table)
    console.print(f"  Total requests: [cyan]{len(requests)}[/cyan]")


@requests_group.command(name="show")
@click.argument("request_id")
@_config_option
def requests_show_command(request_id: str, config_path: str) -> None:
    """Show one request with its votes, escalations and progress."""
    engine = _open_engine(config_path)
    request = engine.get_request(request_id)
    if request is None:
        err_console.print(f"[red]Request not found:[/red] {request_id}")
        sys.exit(1)
    _print_request(request, engine)


@requests_group.command(name="create")
@click.argument("chain_id")
@click.argument("resource_type")
@click.argument("resource_id")
@click.option("--requested-by", required=True, help="User opening the request.")
@click.option("--resource-name", default=None, help="Human-readable resource name.")
@click.option(
    "--allow-duplicate",
    is_flag=True,
    default=False,
    help="Open a request even when the resource already has an open one.",
)
@_config_option
def requests_create_command(
    chain_id: str,
    resource_type: str,
    resource_id: str,
    requested_by: str,
    resource_name: str | None,
    allow_duplicate: bool,
    config_path: str,
) -> None:
    """Open an approval request for RESOURCE_TYPE/RESOURCE_ID against CHAIN_ID."""
    known_types = {t.value for t in ResourceType}
    if resource_type not in known_types:
        err_console.print(
            f"[yellow]Warning:[/yellow] '{resource_type}' is not a built-in resource type "
            f"({', '.join(sorted(known_types))})."
        )

    engine = _open_engine(config_path)
    if not allow_duplicate:
        existing = engine.find_open_request(resource_type, resource_id)
        if existing is not None:
            err_console.print(
                f"[red]Resource already has an open approval request:[/red] {existing.id}"
            )
            sys.exit(1)
    try:
        request = engine.create_request(
            chain_id,
            resource_type,
            resource_id,
            requested_by,
            resource_name=resource_name,
        )
    except ApprovalChainError as exc:
        _fail(exc)
        return
    console.print(f"[green]Created[/green] approval request [bold]{request.id}[/bold]")
    _print_request(request, engine)


def _vote(
    decision: str,
    request_id: str,
    user: str,
    role: str | None,
    comment: str | None,
    config_path: str,
) -> None:
    engine = _open_engine(config_path)
    if engine.get_request(request_id) is None:
        err_console.print(f"[red]Request not found:[/red] {request_id}")
        sys.exit(1)
    if not engine.can_user_approve(request_id, user, role):
        err_console.print(
            f"[red]User '{user}' may not {decision} request {request_id} at its current level.[/red]"
        )
        sys.exit(1)
    try:
        if decision == "approve":
            request = engine.approve(request_id, user, comment=comment)
        else:
            request = engine.reject(request_id, user, comment=comment)
    except ApprovalChainError as exc:
        _fail(exc)
        return
    console.print(
        f"Request [bold]{request.id}[/bold] is now {_status_markup(request.status)} "
        f"(level {request.current_level})."
    )


@requests_group.command(name="approve")
@click.argument("request_id")
@click.option("--user", "-u", required=True, help="Approving user id.")
@click.option("--role", "-r", default=None, help="Role of the approving user.")
@click.option("--comment", "-m", default=None, help="Optional comment.")
@_config_option
def requests_approve_command(
    request_id: str, user: str, role: str | None, comment: str | None, config_path: str
) -> None:
    """Approve REQUEST_ID at its current level."""
    _vote("approve", request_id, user, role, comment, config_path)


@requests_group.command(name="reject")
@click.argument("request_id")
@click.option("--user", "-u", required=True, help="Rejecting user id.")
@click.option("--role", "-r", default=None, help="Role of the rejecting user.")
@click.option("--comment", "-m", default=None, help="Optional comment.")
@_config_option
def requests_reject_command(
    request_id: str, user: str, role: str | None, comment: str | None, config_path: str
) -> None:
    """Reject REQUEST_ID."""
    _vote("reject", request_id, user, role, comment, config_path)


@requests_group.command(name="escalate")
@click.argument("request_id")
@click.option("--reason", default="Manual escalation", show_default=True, help="Why the request is escalated.")
@_config_option
def requests_escalate_command(request_id: str, reason: str, config_path: str) -> None:
    """Escalate a pending request."""
    engine = _open_engine(config_path)
    try:
        request = engine.escalate(request_id, reason)
    except ApprovalChainError as exc:
        _fail(exc)
        return
    record = request.escalation_history[-1]
    console.print(
        f"Request [bold]{request.id}[/bold] escalated to [magenta]{record.target}[/magenta] "
        f"(level {record.from_level} -> {record.to_level})."
    )


@requests_group.command(name="cancel")
@click.argument("request_id")
@_config_option
def requests_cancel_command(request_id: str, config_path: str) -> None:
    """Cancel an open request."""
    engine = _open_engine(config_path)
    try:
        request = engine.cancel(request_id)
    except ApprovalChainError as exc:
        _fail(exc)
        return
    console.print(f"Request [bold]{request.id}[/bold] is now {_status_markup(request.status)}.")


# ---------------------------------------------------------------------------
# check-timeouts
# ---------------------------------------------------------------------------


@cli.command(name="check-timeouts")
@_config_option
def check_timeouts_command(config_path: str) -> None:
    """Escalate every pending request whose deadline has passed."""
    engine = _open_engine(config_path)
    escalated = engine.check_timeouts()
    if not escalated:
        console.print("[green]No overdue approval requests.[/green]")
        return

    table = Table(title="Escalated Requests", box=box.SIMPLE)
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Resource")
    table.add_column("From", justify="right")
    table.add_column("To", justify="right")
    table.add_column("Target", style="magenta")
    for request in escalated:
        record = request.escalation_history[-1]
        table.add_row(
            request.id,
            f"{request.resource_type}/{request.resource_id}",
            str(record.from_level),
            str(record.to_level),
            record.target,
        )
    console.print(table)


if __name__ == "__main__":
    cli()
