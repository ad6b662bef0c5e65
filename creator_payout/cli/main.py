"""
CLI interface for Creator Payout.

Lets operators and the scheduler run the jobs and inspect their state.
"""

import sys
from datetime import date, datetime, timezone
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from creator_payout.config.loader import load_config
from creator_payout.core.attribution import update_creator_resource_compensation
from creator_payout.core.jobs import JOBS, JobContext, get_job
from creator_payout.core.payout import (
    PayoutPlan,
    PayoutResult,
    preview_payout,
    run_daily_compensation_payout,
)
from creator_payout.observability.logging import setup_logging

app = typer.Typer()
console = Console()

EXIT_CODE_PASS = 0
EXIT_CODE_FAIL = 1

CONFIG_ENV_VAR = "CREATOR_PAYOUT_CONFIG"


def _context(ctx: typer.Context) -> JobContext:
    """Job context built by the callback from the loaded config."""
    return ctx.obj


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    config_path: Optional[str] = typer.Option(
        None,
        "--config",
        "-c",
        envvar=CONFIG_ENV_VAR,
        help="Path to YAML configuration file"
    )
):
    """Creator Payout CLI."""
    try:
        config = load_config(config_path)
    except Exception as e:
        console.print(f"[red]Error loading configuration:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    setup_logging(config.logging.level, config.logging.json)
    ctx.obj = JobContext.from_config(config)

    if ctx.invoked_subcommand is None:
        console.print("Creator Payout - Use --help to see available commands")


@app.command()
def init(ctx: typer.Context):
    """Create every table the payout jobs use."""
    try:
        _context(ctx).initialize_schema()
        console.print("[green]✓[/] Database initialized successfully")
        sys.exit(EXIT_CODE_PASS)
    except Exception as e:
        console.print(f"[red]Error initializing database:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


@app.command()
def aggregate(
    ctx: typer.Context,
    now: Optional[str] = typer.Option(
        None,
        "--now",
        help="Pretend the job runs at this ISO timestamp (UTC)"
    )
):
    """Recompute yesterday's resource compensation rows."""
    context = _context(ctx)
    try:
        run_at = _parse_timestamp(now) if now else None
        written = update_creator_resource_compensation(
            context.analytics,
            context.resources,
            context.config,
            now=run_at,
        )
        console.print(f"[green]✓[/] Wrote {written:,} compensation rows")
        sys.exit(EXIT_CODE_PASS)
    except Exception as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


@app.command()
def payout(ctx: typer.Context):
    """Pay creators for the day before the last successful payout."""
    context = _context(ctx)
    try:
        result = run_daily_compensation_payout(
            context.analytics,
            context.resources,
            context.ledger,
            context.watermarks,
            context.config,
        )
        _display_payout_result(result)
        sys.exit(EXIT_CODE_PASS)
    except Exception as e:
        console.print(f"[red]Payout failed:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


@app.command()
def preview(
    ctx: typer.Context,
    day: Optional[str] = typer.Option(
        None,
        "--date",
        "-d",
        help="Payout date (YYYY-MM-DD); defaults to the next date the payout would run for"
    )
):
    """Show what a payout would send, without writing to the ledger."""
    context = _context(ctx)
    try:
        plan = preview_payout(
            context.analytics,
            context.resources,
            context.watermarks,
            context.config,
            day=date.fromisoformat(day) if day else None,
        )
        _display_payout_plan(plan)
        sys.exit(EXIT_CODE_PASS)
    except Exception as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


@app.command()
def status(ctx: typer.Context):
    """Show the last successful run of each job."""
    context = _context(ctx)
    try:
        watermarks = context.watermarks.list_watermarks()
    except Exception as e:
        console.print(f"[red]Error reading job status:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    table = Table(title="Job status")
    table.add_column("Job")
    table.add_column("Last successful run")
    for job in JOBS:
        last_run = watermarks.get(job.name)
        table.add_row(job.name, last_run.isoformat() if last_run else "[dim]never[/]")
    console.print(table)


@app.command()
def jobs():
    """List registered jobs and their schedules."""
    table = Table(title="Registered jobs")
    table.add_column("Job")
    table.add_column("Cron")
    for job in JOBS:
        table.add_row(job.name, job.cron)
    console.print(table)


@app.command()
def run(ctx: typer.Context, name: str = typer.Argument(..., help="Registered job name")):
    """Run a registered job once, as the scheduler would."""
    try:
        job = get_job(name)
    except KeyError as e:
        console.print(f"[red]Error:[/] {e.args[0]}")
        sys.exit(EXIT_CODE_FAIL)

    try:
        result = job.run(_context(ctx))
    except Exception as e:
        console.print(f"[red]Job {name} failed:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    if isinstance(result, PayoutResult):
        _display_payout_result(result)
    else:
        console.print(f"[green]✓[/] {name} finished: {result}")
    sys.exit(EXIT_CODE_PASS)


def _parse_timestamp(value: str) -> datetime:
    """Parse an ISO timestamp, treating naive values as UTC."""
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _format_amount(amount: int) -> str:
    """Format a whole-unit amount with thousands separators."""
    return f"{amount:,}"


def _display_payout_result(result: PayoutResult):
    """Summarize a completed payout run."""
    if result.count == 0:
        console.print(f"\n[bold yellow]No creators to pay for {result.date.isoformat()}[/]")
        return

    console.print(f"\n[bold]Creator payout for {result.date.isoformat()}[/bold]")
    console.print("-" * 40)
    console.print(f"Creators paid: {result.count:,}")
    console.print(f"Compensation transactions: {result.compensation_transactions:,}")
    console.print(f"Tip transactions: {result.tip_transactions:,}")


def _display_payout_plan(plan: PayoutPlan):
    """Render per-creator totals for a planned payout."""
    if not plan.totals:
        console.print(f"\n[bold yellow]No compensation found for {plan.date.isoformat()}[/]")
        return

    table = Table(title=f"Planned payout for {plan.date.isoformat()}")
    table.add_column("Creator", justify="right")
    table.add_column("Compensation", justify="right")
    table.add_column("Tip", justify="right")
    for creator_id in sorted(plan.totals):
        totals = plan.totals[creator_id]
        table.add_row(str(creator_id), _format_amount(totals.comp), _format_amount(totals.tip))
    console.print(table)

    comp_total = sum(tx.amount for tx in plan.compensation)
    tip_total = sum(tx.amount for tx in plan.tips)
    console.print(f"Compensation: {_format_amount(comp_total)} across {len(plan.compensation):,} transactions")
    console.print(f"Tips: {_format_amount(tip_total)} across {len(plan.tips):,} transactions")


if __name__ == "__main__":
    app()
