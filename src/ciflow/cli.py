# cli.py
from __future__ import annotations

import signal
import subprocess
import sys
import threading
from pathlib import Path

import click

from ciflow.context import EVENT_KINDS, TriggerEvent, build_run_context, should_trigger
from ciflow.dag import build_graph
from ciflow.errors import ConfigError
from ciflow.fingerprint import content_fingerprint
from ciflow.git_facts.git import current_branch
from ciflow.history import HistoryStore
from ciflow.runner import load_workflow, run_dag
from ciflow.settings import Settings
from ciflow.ui.console import Console, get_console, set_console


def find_workflow_files() -> list[Path]:
    """
    Find all workflow files in the current directory.

    Returns:
        List of Path objects for workflow files
    """
    workflow_files = []
    current_dir = Path(".")

    # Look for ciflow_workflow.py
    default_workflow = current_dir / "ciflow_workflow.py"
    if default_workflow.exists():
        workflow_files.append(default_workflow)

    # Look for other *_workflow.py files
    for path in current_dir.glob("*_workflow.py"):
        if path != default_workflow:
            workflow_files.append(path)

    return sorted(workflow_files)


def discover_workflow(workflow_arg: str | None) -> Path:
    """
    Discover workflow file from argument or default.

    Raises:
        SystemExit: If workflow cannot be found or multiple workflows exist
    """
    console = get_console()

    # If workflow is explicitly provided, use it
    if workflow_arg:
        workflow_path = Path(workflow_arg)
        if not workflow_path.exists() and workflow_path.suffix != ".py":
            workflow_path = Path(str(workflow_path) + ".py")
        if not workflow_path.exists():
            console.print_error(
                "Workflow file not found",
                f"Could not find workflow file: {workflow_arg}",
                suggestion="Create a workflow file or specify a different path:\n  ciflow run --workflow my_workflow.py",
            )
            sys.exit(1)
        return workflow_path

    workflow_files = find_workflow_files()

    if len(workflow_files) == 0:
        console.print_error(
            "No workflow file found",
            "Could not find any workflow files.",
            details=[
                "Looked for:",
                "  ciflow_workflow.py",
                "  *_workflow.py",
            ],
            suggestion="Create a workflow file:\n  ciflow_workflow.py\n\nOr specify a workflow explicitly:\n  ciflow run --workflow my_workflow.py",
        )
        sys.exit(1)

    if len(workflow_files) > 1:
        file_list = "\n".join(f"  {f}" for f in workflow_files)
        console.print_error(
            "Multiple workflow files found",
            "Found multiple workflow files. Please specify which one to use:",
            details=[file_list],
            suggestion="Specify a workflow explicitly:\n  ciflow run --workflow ciflow_workflow.py",
        )
        sys.exit(1)

    return workflow_files[0]


def _detect_branch() -> str | None:
    try:
        return current_branch()
    except (subprocess.CalledProcessError, FileNotFoundError):
        return None


@click.group()
@click.option(
    "--debug",
    is_flag=True,
    default=False,
    help="Enable debug mode (show stack traces and detailed output)",
)
@click.option("--quiet", is_flag=True, default=False, help="Only print errors and the final results")
@click.pass_context
def cli(ctx, debug, quiet):
    """ciflow - DAG runner for gated, sharded CI jobs."""
    console = Console(debug=debug, quiet=quiet)
    set_console(console)
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug
    ctx.obj["settings"] = Settings.from_env()


@cli.command()
@click.option(
    "--workflow",
    default=None,
    help="Workflow file path (defaults to ciflow_workflow.py if present)",
)
@click.option("--event", type=click.Choice(EVENT_KINDS), default="push", show_default=True, help="Trigger kind")
@click.option("--branch", default=None, help="Branch (PR target branch for pull_request); defaults to the git branch")
@click.option("--fingerprint", default=None, help="Content fingerprint (defaults to workflow inputs hash or git tree)")
@click.option("--workers", default=None, type=int, help="Maximum number of instances running at once")
@click.option("--history-url", default=None, help="SQLAlchemy URL of the fingerprint history")
@click.option("--history/--no-history", default=True, show_default=True, help="Use duplicate-run detection")
@click.option("--artifact-dir", default=None, type=click.Path(), help="Spill artifacts to this directory and keep them")
@click.option("--report", "report_path", default=None, type=click.Path(), help="Write the JSON run report here")
@click.pass_context
def run(ctx, workflow, event, branch, fingerprint, workers, history_url, history, artifact_dir, report_path):
    """Run a ciflow workflow."""
    console = get_console()
    settings: Settings = ctx.obj["settings"]

    workflow_path = discover_workflow(workflow)

    store = None
    previous = {}
    try:
        wf = load_workflow(workflow_path)

        if branch is None:
            branch = _detect_branch()
        if fingerprint is None:
            fingerprint = content_fingerprint(".", wf.inputs)
        trigger = TriggerEvent(kind=event, branch=branch, fingerprint=fingerprint)

        if not should_trigger(wf.triggers, trigger):
            console.print_info(f"No trigger of {wf.name} matches {event} on {branch or '(no branch)'}; nothing to do.")
            return

        # ConfigError surfaces here, before anything runs
        graph = build_graph(wf.jobs)

        if history:
            store = HistoryStore(history_url or settings.history_url)
        context = build_run_context(
            trigger,
            history=store,
            do_not_skip=wf.do_not_skip,
            workflow=wf.name,
            repo_root=".",
            work_dir=settings.work_dir,
        )

        console.print_run_started(
            workflow=wf.name or workflow_path.name,
            event=event,
            branch=branch,
            instance_count=len(graph.instances),
            duplicate=context.duplicate,
        )

        # First SIGINT/SIGTERM cancels everything not yet running
        cancel = threading.Event()

        def _cancel(signum, frame):
            console.print_info(f"\nReceived signal {signum}, cancelling run...")
            cancel.set()

        for sig in (signal.SIGINT, signal.SIGTERM):
            previous[sig] = signal.signal(sig, _cancel)

        report = run_dag(
            graph,
            context=context,
            max_workers=workers or settings.max_workers,
            concurrency_limits=wf.concurrency_limits,
            artifact_root=artifact_dir,
            keep_artifacts=artifact_dir is not None,
            cancel_event=cancel,
            poll_interval=settings.poll_interval,
        )

        if store is not None and fingerprint:
            store.record(fingerprint, report.outcome, event=event, branch=branch, workflow=wf.name)

        console.print_results(report)
        if report_path:
            Path(report_path).write_text(report.model_dump_json(indent=2), encoding="utf-8")
            console.print_debug(f"report written to {report_path}")

        if report.exit_code != 0:
            sys.exit(report.exit_code)

    except ConfigError as e:
        console.print_error("Invalid workflow", str(e))
        sys.exit(2)
    except Exception as e:
        console.print_exception(e)
        sys.exit(1)
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)
        if store is not None:
            store.close()


@cli.command()
@click.option("--workflow", default=None, help="Workflow file path")
@click.pass_context
def plan(ctx, workflow):
    """Print the expanded instances in execution stages without running them."""
    console = get_console()
    workflow_path = discover_workflow(workflow)
    try:
        wf = load_workflow(workflow_path)
        graph = build_graph(wf.jobs)
    except ConfigError as e:
        console.print_error("Invalid workflow", str(e))
        sys.exit(2)

    console.print_header(f"PLAN {wf.name} ({len(graph.instances)} instances)")
    for idx, level in enumerate(graph.instance_levels()):
        console.print_plan_level(idx, level)
    if graph.gate:
        console.print_info(f"Gate: {graph.gate}")


@cli.command("history")
@click.option("--history-url", default=None, help="SQLAlchemy URL of the fingerprint history")
@click.option("--fingerprint", default=None, help="Only show runs with this fingerprint")
@click.option("--limit", default=20, show_default=True, type=int)
@click.pass_context
def history_cmd(ctx, history_url, fingerprint, limit):
    """Show recorded runs (newest first)."""
    console = get_console()
    settings: Settings = ctx.obj["settings"]
    store = HistoryStore(history_url or settings.history_url)
    try:
        records = store.records(fingerprint=fingerprint, limit=limit)
    finally:
        store.close()

    if not records:
        console.print_info("No runs recorded.")
        return
    for rec in records:
        console.print_info(
            f"{rec.created_at:%Y-%m-%d %H:%M:%S}  {rec.outcome:<10} {rec.event:<13} "
            f"{rec.branch or '-':<20} {rec.fingerprint[:12]}  {rec.workflow or ''}"
        )


if __name__ == "__main__":
    cli()
