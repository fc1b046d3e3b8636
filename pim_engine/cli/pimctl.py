#!/usr/bin/env python3
"""
PIM Control CLI - Command Line Interface for the PIM Engine.

Provides commands for listing privileged assignments, activating,
extending and deactivating them, reviewing approvals and managing the
preferences used by unattended runs.
"""

import logging
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

import click
import yaml
from rich.console import Console
from rich.prompt import Confirm, Prompt
from rich.table import Table

from ..connectors import MockDirectoryClient, NameResolver, get_directory_client
from ..engine import AssignmentRepository, LockGuard, PreferencesStore
from ..errors import ConnectionAuthorizationError
from ..models import ActionResult, ActionStatus, Assignment, AssignmentKind, AssignmentState, ReviewResult
from ..workflows import (
    ACTIVATE,
    DEACTIVATE,
    EXTEND,
    ApprovalWorkflow,
    ConsoleInputSource,
    LifecycleWorkflow,
    ScriptedInputSource,
    create_result_summary,
)

logger = logging.getLogger(__name__)

# Rich console for pretty output
console = Console()

DEFAULT_CONFIG: Dict[str, Any] = {
    "mock_mode": False,
    "auth_mode": "default",
    "tenant_id": None,
    "client_id": None,
    "attempts_limit": 3,
    "lock_minutes": 5,
    "poll_timeout_seconds": 30,
    "poll_interval_seconds": 5,
    "filter_active_from_eligible": True,
    "recheck_before_write": True,
    "preferences_file": None,
    "request_timeout": 30,
}

STATUS_STYLES = {
    ActionStatus.SUCCEEDED: "green",
    ActionStatus.FAILED: "red",
    ActionStatus.LOCKED: "yellow",
    ActionStatus.VALIDATION_FAILED: "red",
    ActionStatus.TIMED_OUT: "yellow",
}


class PIMController:
    """Main controller for PIM Engine operations."""

    def __init__(self, config_path: Optional[str] = None, mock_mode: bool = False):
        """Initialize the PIM controller."""
        self.config_path = Path(config_path) if config_path else None
        self.config = self._load_config()
        if mock_mode:
            self.config["mock_mode"] = True

        self.client = get_directory_client(self.config)
        if isinstance(self.client, MockDirectoryClient):
            seed_demo_directory(self.client)

        self.preferences = PreferencesStore(self.config.get("preferences_file"))
        self.lock_guard = LockGuard(self.config["lock_minutes"])
        self._principal_id: Optional[str] = None

    def _load_config(self) -> Dict[str, Any]:
        """Load configuration from a YAML or JSON file over the defaults."""
        config = dict(DEFAULT_CONFIG)

        if self.config_path and self.config_path.exists():
            try:
                with open(self.config_path, encoding="utf-8") as f:
                    file_config = yaml.safe_load(f) or {}
                config.update(file_config)
                logger.info(f"Loaded configuration from {self.config_path}")
            except (OSError, yaml.YAMLError) as e:
                console.print(f"[red]Error loading config: {e}[/red]")

        return config

    @property
    def principal_id(self) -> str:
        if self._principal_id is None:
            self._principal_id = self.client.get_current_principal_id()
        return self._principal_id

    def repository(self) -> AssignmentRepository:
        return AssignmentRepository(self.client, self.principal_id, NameResolver(self.client))

    def lifecycle(self, interactive: bool = True) -> LifecycleWorkflow:
        return LifecycleWorkflow(
            self.client,
            self.principal_id,
            self.config,
            input_source=self._input_source(interactive),
            repository=self.repository(),
            lock_guard=self.lock_guard,
        )

    def approvals(self, interactive: bool = True) -> ApprovalWorkflow:
        return ApprovalWorkflow(self.client, self.principal_id, self.config,
                                input_source=self._input_source(interactive),
                                resolver=NameResolver(self.client))

    def _input_source(self, interactive: bool):
        if interactive:
            return ConsoleInputSource(console)
        prefs = self.preferences.load()
        return ScriptedInputSource(prefs.default_justification, prefs.default_ticket_number)


def seed_demo_directory(client: MockDirectoryClient):
    """Populate the simulated directory used by --mock."""
    now = datetime.now(timezone.utc)
    client.add_assignment(AssignmentKind.ROLE, AssignmentState.ELIGIBLE,
                          "62e90394-69f5-4237-9190-012177145e10", "Global Administrator")
    client.add_assignment(AssignmentKind.ROLE, AssignmentState.ELIGIBLE,
                          "194ae4cb-b126-40b2-bd5b-6091b380977d", "Security Administrator")
    client.add_assignment(AssignmentKind.ROLE, AssignmentState.ACTIVE,
                          "f2ef992c-3afb-46b9-b7cf-a126ee74c451", "Global Reader",
                          start=now - timedelta(hours=1), end=now + timedelta(hours=7))
    client.add_assignment(AssignmentKind.GROUP, AssignmentState.ELIGIBLE,
                          "0c6a5d1e-1f7a-4b8e-9d55-4c0f7e0d2a11", "Prod Break Glass")
    client.add_schedule_request(AssignmentKind.ROLE, "approver",
                                "194ae4cb-b126-40b2-bd5b-6091b380977d", "user-2",
                                justification="Incident 4711")
    client.users["user-2"] = "Dana Operator"


@click.group()
@click.option('--config', '-c', help='Path to configuration file (YAML or JSON)')
@click.option('--mock/--real', default=False, help='Use the simulated directory instead of Microsoft Graph')
@click.option('--verbose', '-v', is_flag=True, help='Enable debug logging')
@click.pass_context
def cli(ctx, config, mock, verbose):
    """PIM Engine Control CLI - Privileged Identity Management lifecycle"""
    logging.basicConfig(level=logging.DEBUG if verbose else logging.WARNING,
                        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
    ctx.ensure_object(dict)
    ctx.obj['controller'] = PIMController(config, mock)


def _connect(controller: PIMController) -> bool:
    """Establish the session before any lifecycle work; report once on failure."""
    try:
        controller.principal_id
        return True
    except ConnectionAuthorizationError as e:
        console.print(f"[red]✗ {e.message}[/red]")
        for line in e.details:
            console.print(f"  {line}")
        return False


def _kinds(roles: bool, groups: bool) -> Dict[str, bool]:
    return {"include_roles": roles, "include_groups": groups}


@cli.command()
@click.option('--roles/--no-roles', default=True, help='Include directory roles')
@click.option('--groups/--no-groups', default=True, help='Include group memberships')
@click.option('--show-all', is_flag=True, help='Also list eligible assignments that are already active')
@click.pass_context
def status(ctx, roles, groups, show_all):
    """Show eligible and active assignments."""
    controller = ctx.obj['controller']
    if not _connect(controller):
        ctx.exit(1)

    assignments = controller.repository().list_assignments(
        filter_active_from_eligible=not show_all and controller.config["filter_active_from_eligible"],
        **_kinds(roles, groups),
    )
    controller.lock_guard.annotate(assignments)

    if not assignments:
        console.print("[yellow]No assignments found[/yellow]")
        return

    display_assignments(assignments, controller.lock_guard, title=f"Assignments ({len(assignments)})")


def _select(assignments: List[Assignment], indexes: List[int], verb: str) -> List[Assignment]:
    """Pick assignments by their menu index, prompting when none were given."""
    if not indexes:
        answer = Prompt.ask(f"Select assignments to {verb} (comma-separated numbers)", console=console)
        try:
            indexes = [int(part) for part in answer.replace(" ", "").split(",") if part]
        except ValueError:
            console.print("[red]Invalid selection[/red]")
            return []

    by_index = {a.index: a for a in assignments}
    selected = []
    for index in indexes:
        if index not in by_index:
            console.print(f"[red]No selectable assignment #{index}[/red]")
            continue
        selected.append(by_index[index])
    return selected


def _candidates(controller: PIMController, state: AssignmentState, roles: bool,
                groups: bool) -> List[Assignment]:
    assignments = controller.repository().list_assignments(
        include_active=state == AssignmentState.ACTIVE,
        include_eligible=state == AssignmentState.ELIGIBLE,
        filter_active_from_eligible=controller.config["filter_active_from_eligible"],
        **_kinds(roles, groups),
    )
    locked = [a for a in controller.lock_guard.annotate(assignments) if a.locked]
    for assignment in locked:
        console.print(f"[yellow]{assignment.name}: {controller.lock_guard.status_line(assignment)}[/yellow]")
    return controller.lock_guard.actionable(assignments)


def _resolve_defaults(controller: PIMController, duration, justification, ticket, yes):
    prefs = controller.preferences.load()
    duration = duration or prefs.default_duration
    justification = justification or prefs.default_justification
    ticket = ticket or prefs.default_ticket_number

    if not yes:
        if duration is None:
            duration = float(Prompt.ask("Duration in hours", default="8", console=console))
        if justification is None:
            justification = Prompt.ask("Justification", console=console) or None
    return duration, justification, ticket


def _run(ctx, verb: str, state: AssignmentState, indexes, roles, groups, yes, **action_kwargs):
    controller = ctx.obj['controller']
    if not _connect(controller):
        ctx.exit(1)

    candidates = _candidates(controller, state, roles, groups)
    if not candidates:
        console.print(f"[yellow]Nothing to {verb}[/yellow]")
        return

    if not indexes:
        display_assignments(candidates, controller.lock_guard, title=f"Select assignments to {verb}")
    selected = _select(candidates, list(indexes), verb)
    if not selected:
        return

    if not yes and not Confirm.ask(f"{verb.capitalize()} {len(selected)} assignment(s)?", console=console):
        return

    workflow = controller.lifecycle(interactive=not yes)
    results = workflow.run_batch([(a, verb, dict(action_kwargs)) for a in selected])
    display_action_results(results)


@cli.command()
@click.option('--index', '-i', 'indexes', multiple=True, type=int, help='Menu number (repeatable)')
@click.option('--duration', '-d', type=float, help='Duration in hours')
@click.option('--justification', '-j', help='Justification text')
@click.option('--ticket', '-t', help='Ticket number')
@click.option('--start', type=click.DateTime(), help='Scheduled start (UTC)')
@click.option('--roles/--no-roles', default=True)
@click.option('--groups/--no-groups', default=True)
@click.option('--yes', '-y', is_flag=True, help='Non-interactive: use preferences for missing values')
@click.pass_context
def activate(ctx, indexes, duration, justification, ticket, start, roles, groups, yes):
    """Activate eligible assignments."""
    controller = ctx.obj['controller']
    if not _connect(controller):
        ctx.exit(1)
    duration, justification, ticket = _resolve_defaults(controller, duration, justification, ticket, yes)
    if duration is None:
        console.print("[red]A duration is required (option or preferences)[/red]")
        ctx.exit(1)
    if start is not None:
        start = start.replace(tzinfo=timezone.utc)
    _run(ctx, ACTIVATE, AssignmentState.ELIGIBLE, indexes, roles, groups, yes,
         duration_hours=duration, justification=justification, ticket_number=ticket, start_time=start)


@cli.command()
@click.option('--index', '-i', 'indexes', multiple=True, type=int, help='Menu number (repeatable)')
@click.option('--justification', '-j', help='Justification text')
@click.option('--roles/--no-roles', default=True)
@click.option('--groups/--no-groups', default=True)
@click.option('--yes', '-y', is_flag=True, help='Do not ask for confirmation')
@click.pass_context
def deactivate(ctx, indexes, justification, roles, groups, yes):
    """Deactivate active assignments."""
    _run(ctx, DEACTIVATE, AssignmentState.ACTIVE, indexes, roles, groups, yes,
         justification=justification)


@cli.command()
@click.option('--index', '-i', 'indexes', multiple=True, type=int, help='Menu number (repeatable)')
@click.option('--duration', '-d', type=float, help='New duration in hours')
@click.option('--justification', '-j', help='Justification text')
@click.option('--ticket', '-t', help='Ticket number')
@click.option('--roles/--no-roles', default=True)
@click.option('--groups/--no-groups', default=True)
@click.option('--yes', '-y', is_flag=True, help='Non-interactive: use preferences for missing values')
@click.pass_context
def extend(ctx, indexes, duration, justification, ticket, roles, groups, yes):
    """Extend active assignments (deactivate, then reactivate)."""
    controller = ctx.obj['controller']
    if not _connect(controller):
        ctx.exit(1)
    duration, justification, ticket = _resolve_defaults(controller, duration, justification, ticket, yes)
    if duration is None:
        console.print("[red]A duration is required (option or preferences)[/red]")
        ctx.exit(1)
    _run(ctx, EXTEND, AssignmentState.ACTIVE, indexes, roles, groups, yes,
         duration_hours=duration, justification=justification, ticket_number=ticket)


@cli.group()
def approvals():
    """Review requests awaiting your approval."""


def _kind_option():
    return click.option('--kind', type=click.Choice(['role', 'group']), default='role',
                        help='Role or group requests')


@approvals.command('list')
@_kind_option()
@click.pass_context
def approvals_list(ctx, kind):
    """List pending approval requests."""
    controller = ctx.obj['controller']
    if not _connect(controller):
        ctx.exit(1)
    pending = controller.approvals().list_pending_approvals(AssignmentKind(kind.upper()))
    display_approval_requests(pending, title="Pending approvals")


@approvals.command('review')
@_kind_option()
@click.pass_context
def approvals_review(ctx, kind):
    """Approve, deny or skip each pending request."""
    controller = ctx.obj['controller']
    if not _connect(controller):
        ctx.exit(1)

    kind = AssignmentKind(kind.upper())
    workflow = controller.approvals()
    pending = workflow.list_pending_approvals(kind)
    if not pending:
        console.print("[yellow]No pending approvals[/yellow]")
        return

    decisions = []
    for request in pending:
        console.print(f"\n[bold]{request.requestor_name}[/bold] requests [cyan]{request.resource_name}[/cyan]")
        console.print(f"Justification: {request.justification or '-'}")
        choice = Prompt.ask("Decision", choices=["approve", "deny", "skip"], default="skip", console=console)
        if choice == "skip":
            decisions.append((request, None, None))
            continue
        reason = Prompt.ask("Reason for your decision", console=console)
        outcome = ReviewResult.APPROVE if choice == "approve" else ReviewResult.DENY
        decisions.append((request, outcome, reason))

    display_action_results(workflow.review(kind, decisions))


@cli.group()
def requests():
    """Your own pending requests."""


@requests.command('list')
@_kind_option()
@click.pass_context
def requests_list(ctx, kind):
    """List your pending requests."""
    controller = ctx.obj['controller']
    if not _connect(controller):
        ctx.exit(1)
    mine = controller.approvals().list_my_requests(AssignmentKind(kind.upper()))
    display_approval_requests(mine, title="My pending requests")


@requests.command('cancel')
@click.argument('request_id')
@_kind_option()
@click.pass_context
def requests_cancel(ctx, request_id, kind):
    """Cancel one of your pending requests."""
    controller = ctx.obj['controller']
    if not _connect(controller):
        ctx.exit(1)
    result = controller.approvals().cancel_request(AssignmentKind(kind.upper()), request_id)
    display_action_results([result])


@cli.group()
def prefs():
    """Defaults for unattended runs."""


@prefs.command('show')
@click.pass_context
def prefs_show(ctx):
    """Show stored preferences."""
    controller = ctx.obj['controller']
    current = controller.preferences.load()

    table = Table(title=f"Preferences ({controller.preferences.storage_path})")
    table.add_column("Key", style="cyan")
    table.add_column("Value", style="magenta")
    for key, value in current.model_dump().items():
        table.add_row(key, "" if value is None else str(value))
    console.print(table)


@prefs.command('set')
@click.option('--justification', '-j', help='Default justification')
@click.option('--ticket', '-t', help='Default ticket number')
@click.option('--duration', '-d', type=float, help='Default duration in hours')
@click.pass_context
def prefs_set(ctx, justification, ticket, duration):
    """Store default values."""
    controller = ctx.obj['controller']
    controller.preferences.update(default_justification=justification,
                                  default_ticket_number=ticket,
                                  default_duration=duration)
    console.print("[green]✓ Preferences saved[/green]")


def _fmt(value: Optional[datetime]) -> str:
    return value.strftime("%Y-%m-%d %H:%M") if value else "-"


def display_assignments(assignments: List[Assignment], lock_guard: LockGuard, title: str):
    """Render assignments as a table, with a countdown for locked ones."""
    table = Table(title=title)
    table.add_column("#", style="cyan")
    table.add_column("Type", style="green")
    table.add_column("State", style="yellow")
    table.add_column("Name", style="bold")
    table.add_column("Start")
    table.add_column("End")
    table.add_column("Status", style="magenta")

    for assignment in assignments:
        table.add_row(
            str(assignment.index) if assignment.index else "",
            assignment.kind.value.title(),
            assignment.state.value.title(),
            assignment.name,
            _fmt(assignment.start_time),
            "permanent" if assignment.is_permanent else _fmt(assignment.end_time),
            lock_guard.status_line(assignment) if assignment.state == AssignmentState.ACTIVE else "",
        )

    console.print(table)


def display_approval_requests(requests_: list, title: str):
    if not requests_:
        console.print("[yellow]No pending requests[/yellow]")
        return

    table = Table(title=f"{title} ({len(requests_)})")
    table.add_column("Request", style="cyan")
    table.add_column("Requestor", style="green")
    table.add_column("Resource", style="bold")
    table.add_column("Justification")
    table.add_column("Ticket")
    table.add_column("Created")

    for request in requests_:
        table.add_row(request.id, request.requestor_name, request.resource_name,
                      request.justification or "-", request.ticket_number or "-",
                      _fmt(request.created_time))
    console.print(table)


def display_action_results(results: List[ActionResult]):
    """Display the outcome of each action and a short summary."""
    for result in results:
        style = STATUS_STYLES[result.status]
        icon = "✓" if result.success else "✗"
        console.print(f"[{style}]{icon} {result.action}: {result.message}[/{style}]")
        for line in result.details:
            console.print(f"    {line}")

    summary = create_result_summary(results)
    if summary['total_actions'] > 1:
        console.print(f"{summary['successful_actions']}/{summary['total_actions']} succeeded")


def main():
    cli(obj={})


if __name__ == "__main__":
    main()
