"""servicegraph CLI - typer application entry point."""

from __future__ import annotations

import atexit
from pathlib import Path
from typing import TYPE_CHECKING, Annotated, Any

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.markup import escape
from rich.table import Table
from ruamel.yaml import YAML

from servicegraph.editor import Editor
from servicegraph.graph.store import InMemoryDocumentStore
from servicegraph.graph.validation import check_invariants
from servicegraph.models.document import ServiceDocument
from servicegraph.observability import close_file_logging, configure_logging, get_logger
from servicegraph.policy.compiler import compile_policies
from servicegraph.policy.models import FallbackSettings, RatePolicy, VisibleGroupContext

if TYPE_CHECKING:
    from servicegraph.policy.models import PolicyDiagnostic

app = typer.Typer(
    name="servicegraph",
    help="servicegraph: audit service documents and evaluate service policies.",
    no_args_is_help=True,
)
console = Console()

log = get_logger(__name__)


@app.callback()
def main(
    verbose: Annotated[
        int,
        typer.Option(
            "-v",
            "--verbose",
            count=True,
            help="Increase verbosity: -v for INFO, -vv for DEBUG.",
        ),
    ] = 0,
    log_dir: Annotated[
        Path | None,
        typer.Option(
            "--log-dir",
            help="Write every log event to {dir}/servicegraph.jsonl.",
            envvar="SERVICEGRAPH_LOG_DIR",
        ),
    ] = None,
) -> None:
    """servicegraph: audit service documents and evaluate service policies."""
    configure_logging(verbosity=verbose, log_dir=log_dir)
    if log_dir is not None:
        atexit.register(close_file_logging)


def _load_data(path: Path) -> Any:
    """Read a JSON or YAML file."""
    if not path.exists():
        console.print(f"[red]Error:[/red] File not found: {path}")
        raise typer.Exit(1)
    yaml = YAML(typ="safe")
    try:
        with path.open("r", encoding="utf-8") as f:
            return yaml.load(f)
    except Exception as e:
        console.print(f"[red]Error:[/red] Cannot parse {path}: {escape(str(e))}")
        raise typer.Exit(1) from e


def _load_document(path: Path) -> ServiceDocument:
    data = _load_data(path)
    try:
        return ServiceDocument.model_validate(data or {})
    except ValidationError as e:
        console.print(f"[red]Error:[/red] Invalid document {path}:\n{escape(str(e))}")
        raise typer.Exit(1) from e


def _print_diagnostics(diagnostics: list[PolicyDiagnostic]) -> None:
    table = Table(title="Diagnostics")
    table.add_column("Rule", style="cyan")
    table.add_column("Severity")
    table.add_column("Path", style="dim")
    table.add_column("Message")
    for d in diagnostics:
        colour = "red" if d.severity == "error" else "yellow"
        rule = d.rule_id or ("<root>" if d.rule_index < 0 else str(d.rule_index))
        table.add_row(rule, f"[{colour}]{d.severity}[/{colour}]", d.path or "", d.message)
    console.print(table)


@app.command()
def check(
    document: Annotated[Path, typer.Argument(help="Service document (JSON or YAML).")],
) -> None:
    """Audit a service document's structural invariants.

    Exits with status 1 when any invariant fails.
    """
    doc = _load_document(document)
    report = check_invariants(doc)
    log.info("document_checked", path=str(document), summary=report.summary)

    if not report.has_failures:
        console.print(
            f"[green]OK[/green] {len(doc.tags)} tags, {len(doc.fields)} fields ({report.summary})"
        )
        return

    table = Table(title=f"Invariant failures in {document}")
    table.add_column("Check", style="cyan")
    table.add_column("Problem")
    for failure in report.failures:
        table.add_row(failure.name, failure.message)
    console.print(table)
    console.print(f"[red]{report.summary}[/red]")
    raise typer.Exit(1)


@app.command("compile-policies")
def compile_policies_command(
    policies: Annotated[Path, typer.Argument(help="Raw policy list (JSON or YAML).")],
) -> None:
    """Compile raw policies and report the rules and diagnostics.

    Exits with status 1 when any diagnostic is an error.
    """
    compiled = compile_policies(_load_data(policies))

    table = Table(title="Compiled rules")
    table.add_column("Id", style="cyan")
    table.add_column("Op")
    table.add_column("Projection")
    table.add_column("Scope")
    table.add_column("Severity")
    for rule in compiled.policies:
        value = "" if rule.value is None else f" {rule.value}"
        table.add_row(rule.id, f"{rule.op}{value}", rule.projection, rule.scope, rule.severity)
    console.print(table)

    if compiled.diagnostics:
        _print_diagnostics(compiled.diagnostics)
    if compiled.errors:
        raise typer.Exit(1)


@app.command("filter-services")
def filter_services(
    services: Annotated[
        Path,
        typer.Argument(help="Service capability map keyed by service id (JSON or YAML)."),
    ],
    tag: Annotated[str, typer.Option("--tag", "-t", help="Visible-group tag id.")],
    candidates: Annotated[
        list[str],
        typer.Option("--candidate", "-c", help="Candidate service id (repeatable)."),
    ],
    used: Annotated[
        list[str] | None,
        typer.Option("--used", "-u", help="Service already in the group; first is primary."),
    ] = None,
    document: Annotated[
        Path | None,
        typer.Option("--document", "-d", help="Document used to resolve tag constraints."),
    ] = None,
    policies: Annotated[
        Path | None,
        typer.Option("--policies", "-p", help="Raw policy list (JSON or YAML)."),
    ] = None,
    rate_policy: Annotated[
        str,
        typer.Option(
            "--rate-policy", help="lte_primary, within_pct or at_least_pct_lower."
        ),
    ] = "lte_primary",
    pct: Annotated[float, typer.Option("--pct", help="Percentage for the rate policy.")] = 0,
) -> None:
    """Evaluate candidate services for a visible group."""
    capabilities = _load_data(services) or {}
    doc = _load_document(document) if document is not None else ServiceDocument()
    try:
        fallback = FallbackSettings(rate_policy=RatePolicy(kind=rate_policy, pct=pct))  # type: ignore[arg-type]
        store = InMemoryDocumentStore(doc, capabilities=capabilities)
    except ValidationError as e:
        console.print(f"[red]Error:[/red] {escape(str(e))}")
        raise typer.Exit(1) from e

    editor = Editor(store)
    ctx = VisibleGroupContext(
        tag_id=tag,
        used_service_ids=list(used or []),
        policies=_load_data(policies) if policies is not None else None,
        fallback=fallback,
    )
    checks = editor.filter_services_for_visible_group(list(candidates), ctx)

    table = Table(title=f"Candidates for {tag}")
    table.add_column("Service", style="cyan")
    table.add_column("OK")
    table.add_column("Rate", justify="right")
    table.add_column("Reasons")
    table.add_column("Policy errors", style="red")
    table.add_column("Policy warnings", style="yellow")
    for c in checks:
        table.add_row(
            str(c.id),
            "[green]yes[/green]" if c.ok else "[red]no[/red]",
            "" if c.rate is None else f"{c.rate:g}",
            ", ".join(c.reasons),
            ", ".join(c.policy_errors or []),
            ", ".join(c.policy_warnings or []),
        )
    console.print(table)

    if editor.last_policy_diagnostics:
        _print_diagnostics(editor.last_policy_diagnostics)


if __name__ == "__main__":
    app()
