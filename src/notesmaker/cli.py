import typer
import time
import threading
from typing import List, Optional
import logging
from rich.console import Console
from rich.progress import Progress, SpinnerColumn, TextColumn, BarColumn
from rich.table import Table
from rich.panel import Panel

from .config import get_settings
from .exceptions import NotesError
from .models import JobState, NotesRequest, TERMINAL_STATES
from .notes_orchestrator import NotesOrchestrator

# Configure logging
logging.basicConfig(level=get_settings().LOG_LEVEL)
logger = logging.getLogger(__name__)

# Initialize Typer app
app = typer.Typer(
    name="notesmaker",
    help="Generate syllabus-aligned study notes as PDF",
    add_completion=False
)

# Initialize console for rich output
console = Console()

# states where the pipeline stops and waits for the user
PARKED_STATES = (JobState.SYLLABUS_NOT_FOUND, JobState.HUMAN_REVIEW)


def run_in_thread(func, *args):
    threading.Thread(target=func, args=args, daemon=True).start()


def wait_for_job(orchestrator: NotesOrchestrator, job_id: str, poll_interval: float = 0.2):
    """Poll a job and show its progress until it finishes or waits for input"""
    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TextColumn("{task.percentage:>3.0f}%"),
        console=console
    ) as progress:
        task = progress.add_task("Starting...", total=100)

        while True:
            status = orchestrator.get_job_status(job_id)
            progress.update(task, completed=status.progress_percent, description=status.message)
            if status.state in TERMINAL_STATES:
                return status
            if status.state in PARKED_STATES:
                return status
            time.sleep(poll_interval)


@app.command()
def generate(
    board: str = typer.Option(..., "--board", "-b", help="Education board (FBISE, Punjab, Sindh)"),
    class_grade: int = typer.Option(..., "--class", "-c", help="Class 9-12"),
    subject: str = typer.Option(..., "--subject", "-s", help="Subject name"),
    chapter: str = typer.Option(..., "--chapter", help="Chapter name"),
    user_id: Optional[str] = typer.Option(None, "--user", help="User id to attach to the job"),
    topics: Optional[List[str]] = typer.Option(None, "--topic", "-t", help="Topics to use if the syllabus is not found"),
    approve: bool = typer.Option(False, "--approve", help="Approve notes that need human review"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging")
):
    """Generate notes for a chapter and compile the PDF"""

    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    orchestrator = NotesOrchestrator()
    request = NotesRequest(class_grade=class_grade, board=board, subject=subject, chapter=chapter, user_id=user_id)

    try:
        job_id = orchestrator.generate_notes(request, runner=run_in_thread)
        console.print(f"[dim]Job ID: {job_id}[/dim]")
        status = wait_for_job(orchestrator, job_id)

        if status.state == JobState.SYLLABUS_NOT_FOUND and topics:
            console.print(f"[yellow]Syllabus not found, using {len(topics)} topics you provided[/yellow]")
            orchestrator.confirm_syllabus(job_id, topics, runner=run_in_thread)
            status = wait_for_job(orchestrator, job_id)

        if status.state == JobState.HUMAN_REVIEW and approve:
            console.print("[yellow]Quality checks failed, approving for compilation[/yellow]")
            orchestrator.approve_review(job_id, runner=run_in_thread)
            status = wait_for_job(orchestrator, job_id)
    except NotesError as e:
        console.print(f"[red]Error: {e.message}[/red]")
        raise typer.Exit(1)

    display_status(status)

    if status.state == JobState.SYLLABUS_NOT_FOUND:
        console.print("[yellow]Syllabus not found. Re-run with --topic for each topic of the chapter.[/yellow]")
    elif status.state == JobState.HUMAN_REVIEW:
        console.print("[yellow]Notes need review. Re-run with --approve to compile them anyway.[/yellow]")
    elif status.state != JobState.COMPLETED:
        raise typer.Exit(1)


@app.command()
def status(
    job_id: str = typer.Argument(..., help="Job id returned by generate")
):
    """Show the status of a job"""
    orchestrator = NotesOrchestrator()
    try:
        display_status(orchestrator.get_job_status(job_id))
    except NotesError as e:
        console.print(f"[red]Error: {e.message}[/red]")
        raise typer.Exit(1)


@app.command()
def boards():
    """List supported boards, classes and subjects"""
    orchestrator = NotesOrchestrator()

    table = Table(title="Supported Boards")
    table.add_column("Code", style="cyan")
    table.add_column("Board", style="magenta")
    table.add_column("Classes")
    table.add_column("Subjects")

    for board in orchestrator.get_board_configs():
        table.add_row(
            board.code,
            board.name,
            ", ".join(str(c) for c in board.classes),
            ", ".join(board.subjects),
        )

    console.print(table)


@app.command()
def cleanup(
    days: Optional[int] = typer.Option(None, "--days", help="Remove finished jobs older than this many days")
):
    """Remove old completed and failed jobs"""
    orchestrator = NotesOrchestrator()
    removed = orchestrator.cleanup_old_jobs(days)
    console.print(f"[green]✓ Removed {removed} old jobs[/green]")


def display_status(status):
    """Display a job status panel"""
    colour = {JobState.COMPLETED: "green", JobState.FAILED: "red"}.get(status.state, "yellow")

    lines = [
        f"[bold]State:[/bold] [{colour}]{status.state.value}[/{colour}]",
        f"[bold]Progress:[/bold] {status.progress_percent}%",
        f"[bold]Message:[/bold] {status.message}",
    ]
    if status.quality_score is not None:
        lines.append(f"[bold]Quality score:[/bold] {status.quality_score:.2f} / 10")
    if status.pdf_url:
        lines.append(f"[bold]PDF:[/bold] {status.pdf_url}")
    if status.error_message:
        lines.append(f"[bold]Error:[/bold] [red]{status.error_message}[/red]")

    console.print(Panel("\n".join(lines), title=f"Job {status.job_id}"))


@app.command()
def serve(
    host: str = typer.Option("0.0.0.0", "--host", help="Host to bind the server to"),
    port: int = typer.Option(8000, "--port", help="Port to bind the server to")
):
    """Start the FastAPI server"""

    console.print(f"[green]Starting server on {host}:{port}[/green]")

    import uvicorn
    uvicorn.run("notesmaker.api:app", host=host, port=port)

if __name__ == "__main__":
    app()
