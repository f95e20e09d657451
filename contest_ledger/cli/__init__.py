"""
Command Line Interface for Contest Ledger organizers.
"""

from typing import Optional

import typer
import uvicorn
from rich import print as rprint
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from ..config import get_settings
from ..contest.enums import ReviewDecision, SubmissionStatus
from ..contest.services import SubmissionService
from ..db.base import get_session_local, init_database
from ..errors import ContestError

app = typer.Typer(help="Contest Ledger - submission and vote integrity engine")
console = Console()


def _service(db) -> SubmissionService:
    return SubmissionService(db, deadline=get_settings().contest_deadline)


@app.command("init-db")
def init_db():
    """Create database tables that do not exist yet."""
    init_database()
    console.print("✅ Database initialized")


@app.command()
def serve(
    host: Optional[str] = typer.Option(None, help="Host to bind the server to"),
    port: Optional[int] = typer.Option(None, help="Port to run the API server on"),
    reload: bool = typer.Option(False, help="Reload on code changes"),
):
    """Run the HTTP API."""
    settings = get_settings()
    rprint(Panel.fit("🗳️ Starting Contest Ledger", style="bold blue"))
    uvicorn.run(
        "contest_ledger.main:app",
        host=host or settings.api_host,
        port=port or settings.api_port,
        reload=reload,
    )


@app.command()
def pending(
    limit: int = typer.Option(50, help="Maximum submissions to list"),
):
    """List submissions waiting for review."""
    db = get_session_local()()
    try:
        rows = _service(db).list_by_status(SubmissionStatus.PENDING, limit=limit)
    finally:
        db.close()

    if not rows:
        console.print("No pending submissions")
        return

    table = Table(title="Pending Submissions", show_header=True, header_style="bold cyan")
    table.add_column("ID", style="yellow")
    table.add_column("Title", style="green")
    table.add_column("Author")
    table.add_column("Demo", style="blue")
    table.add_column("Created")

    for submission, _count in rows:
        table.add_row(
            submission.id,
            submission.title,
            submission.author_name,
            submission.demo_url,
            submission.created_at.isoformat() if submission.created_at else "",
        )

    console.print(table)


@app.command()
def review(
    submission_id: str = typer.Argument(..., help="Submission to review"),
    decision: ReviewDecision = typer.Argument(..., help="approve or reject"),
    note: Optional[str] = typer.Option(None, help="Note shown to the author"),
    reviewer: str = typer.Option("organizer", help="Reviewer identity recorded on the submission"),
):
    """Approve or reject a pending submission."""
    db = get_session_local()()
    try:
        submission = _service(db).review(submission_id, reviewer, decision, note)
        console.print(f"✅ {submission.title} is now {submission.status}")
    except ContestError as e:
        console.print(f"❌ {e.message}")
        raise typer.Exit(code=1)
    finally:
        db.close()


if __name__ == "__main__":
    app()
