from __future__ import annotations

import asyncio
from typing import NoReturn, Optional

import typer
from rich import print
from rich.table import Table

from qaflow.core.config import settings

app = typer.Typer(add_completion=False, help="QAFlow CLI")


# ============================================================
# Output helpers
# ============================================================
def _info(msg: str) -> None:
    print(f"[cyan][QA][/cyan] {msg}")


def _ok(msg: str) -> None:
    print(f"[green][QA][OK][/green] {msg}")


def _fail(msg: str, code: int = 1) -> NoReturn:
    print(f"[red][QA][FAIL][/red] {msg}")
    raise typer.Exit(code)


# ============================================================
# Commands
# ============================================================
@app.command()
def serve(
    host: str = "127.0.0.1",
    port: int = 8000,
    reload: bool = typer.Option(False, "--reload", help="Auto-reload on code changes"),
):
    """Run FastAPI server."""
    import uvicorn

    uvicorn.run("qaflow.main:app", host=host, port=port, reload=reload)


@app.command("init-db")
def init_db_command():
    """Create the activity log tables."""
    from qaflow.database.config import DATABASE_URL, init_db

    init_db()
    _ok(f"Tables created ({DATABASE_URL})")


@app.command()
def activities(
    activity_type: Optional[str] = typer.Option(None, "--type", help="Filter by activity type"),
    limit: int = typer.Option(20, "--limit", min=1, help="Rows to show"),
):
    """Show recent activity log entries."""
    from qaflow.database.config import SessionLocal, init_db
    from qaflow.services.activity_service import get_activities

    init_db()
    db = SessionLocal()
    try:
        result = get_activities(db, activity_type, limit=limit)
    finally:
        db.close()

    if not result.success:
        _fail(result.error or "Failed to get activities")

    table = Table(title="Activities")
    table.add_column("id", justify="right")
    table.add_column("created_at")
    table.add_column("type")
    table.add_column("step")
    table.add_column("session")
    for row in result.data:
        table.add_row(
            str(row["id"]),
            row["created_at"] or "",
            row["activity_type"],
            row["step_name"],
            row["session_id"] or "",
        )
    print(table)


@app.command("remote-health")
def remote_health(
    base_url: str = typer.Option(settings.PIPELINE_API_BASE_URL, "--base-url", help="Pipeline service URL"),
):
    """Check the remote pipeline service (/health, Playwright status)."""
    from qaflow.services.pipeline_client import PipelineAPIClient, PipelineAPIError

    async def probe():
        async with PipelineAPIClient(base_url) as api:
            return await api.health(), await api.playwright_status()

    _info(f"Probing {base_url}")
    try:
        health, playwright = asyncio.run(probe())
    except PipelineAPIError as e:
        _fail(str(e))

    _ok(f"status={health.status} version={health.version or '-'}")
    if playwright.installed:
        _ok(f"Playwright installed ({playwright.version or 'unknown version'})")
    else:
        print("[yellow][QA][WARN][/yellow] Playwright not installed on the pipeline service")


if __name__ == "__main__":
    app()
