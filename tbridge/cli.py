import json
import sys

import typer
from rich import print
from dotenv import load_dotenv
from pydantic import ValidationError

from .settings import Settings
from .logs import setup_logging
from .store_base import StoreError, open_store
from .transcript import TranscriptError
from .ingest import HookData, build_ingestor
from .session import SessionGate, YamlSessionStore
from .detect.pipeline import detect_technologies
from .entities import ProjectEntities

app = typer.Typer(add_completion=False)


def _settings() -> Settings:
    load_dotenv()
    st = Settings()
    setup_logging(st.log_level)
    return st


def _hook_from_stdin() -> HookData | None:
    if sys.stdin is None or sys.stdin.isatty():
        return None
    raw = sys.stdin.read().strip()
    if not raw:
        return None
    try:
        return HookData.model_validate_json(raw)
    except ValidationError as e:
        print(f"[red]invalid hook payload[/red]: {e.errors()[0]['msg']}")
        return None


@app.command()
def store_conversation(
    session_id: str = typer.Option(None, help="Claude Code session id"),
    transcript: str = typer.Option(None, help="Path to the session JSONL transcript"),
    cwd: str = typer.Option(None, help="Project working directory"),
):
    """Store the latest exchange of a session.

    Meant to run as a Claude Code Stop hook: without options the hook JSON is
    read from stdin.
    """
    st = _settings()
    if session_id and transcript:
        hook = HookData(session_id=session_id, transcript_path=transcript, cwd=cwd)
    else:
        hook = _hook_from_stdin()
    if hook is None:
        print("[red]ERROR[/red] need --session-id and --transcript, or hook JSON on stdin")
        raise typer.Exit(code=1)

    try:
        report = build_ingestor(st).store_conversation(hook)
    except (TranscriptError, StoreError) as e:
        print(f"[red]ERROR[/red] {e}")
        raise typer.Exit(code=1)

    print(
        f"[green]OK[/green] {report.thread_id}: {report.short_committed} short, "
        f"{report.large_committed} large stored ({report.large_failed} failed), entity pass {report.entity_pass}"
    )


@app.command()
def should_process(project_path: str, session_id: str):
    """Print whether the project entity pass would run for this session."""
    _settings()
    gate = SessionGate(YamlSessionStore())
    print("true" if gate.should_process(project_path, session_id) else "false")


@app.command()
def detect_tech(path: str = typer.Argument("."), threshold: float = typer.Option(None)):
    """Detect the technologies used in a project directory."""
    st = _settings()
    result = detect_technologies(path, st.confidence_threshold if threshold is None else threshold)

    print(f"[bold]Technologies[/bold] (overall confidence {result.overall_confidence:.2f}):")
    for t in result.technologies:
        version = f" {t.version}" if t.version else ""
        print(f"- {t.name}{version}  {t.confidence:.2f}  [dim]{t.source}: {t.context or ''}[/dim]")
    if not result.technologies:
        print("(none above threshold)")


@app.command()
def project(
    path: str = typer.Argument("."),
    ensure: bool = typer.Option(False, help="Create or refresh the project entity"),
    force: bool = typer.Option(False, help="Re-detect technologies even if refreshed recently"),
):
    """Show the project context and what the graph knows about it."""
    st = _settings()
    entities = ProjectEntities(open_store(st), st)

    if ensure:
        result = entities.ensure_project_entity(path, force=force)
        if not result.success:
            print(f"[red]ERROR[/red] {result.error}")
            raise typer.Exit(code=1)
        print(f"[green]OK[/green] {result.message}")

    try:
        summary = entities.project_summary(path)
    except StoreError as e:
        print(f"[red]ERROR[/red] {e}")
        raise typer.Exit(code=1)
    print(json.dumps(summary, indent=2))


@app.command()
def search(
    query: str,
    scope: str = typer.Option("edges", help="edges | nodes | episodes"),
    limit: int = 10,
    thread: str = typer.Option(None, help="Search the messages of one thread, e.g. claude-code-<session id>"),
    project: str = typer.Option(None, help="Search the shared graph of this project group"),
    group: bool = typer.Option(False, help="Search the shared graph of the current project"),
    path: str = typer.Option(".", help="Project directory used with --group"),
):
    """Search the knowledge graph of the configured developer, a project group or a thread."""
    st = _settings()
    if scope not in ("edges", "nodes", "episodes"):
        print(f"[red]ERROR[/red] unknown scope {scope!r}")
        raise typer.Exit(code=1)
    if thread and (project or group):
        print("[red]ERROR[/red] --thread cannot be combined with --project or --group")
        raise typer.Exit(code=1)

    store = open_store(st)
    try:
        if thread:
            episodes = store.search_thread(thread, query, limit=limit)
            for ep in episodes:
                print(f"- {ep.content[:200]} ({ep.score:.2f})")
            if not episodes:
                print("(no results)")
            return
        if project or group:
            res = ProjectEntities(store, st).search_project(query, project, path, scope=scope, limit=limit)
        else:
            res = store.search(st.developer_id, query, scope=scope, limit=limit)
    except (ValueError, StoreError) as e:
        print(f"[red]ERROR[/red] {e}")
        raise typer.Exit(code=1)

    for n in res.nodes:
        print(f"- [bold]{n.name}[/bold] {n.labels} {n.summary} ({n.score:.2f})")
    for e in res.edges:
        print(f"- {e.fact} ({e.score:.2f})")
    for ep in res.episodes:
        print(f"- ({ep.source}) {ep.content[:200]} ({ep.score:.2f})")
    if not (res.nodes or res.edges or res.episodes):
        print("(no results)")


@app.command()
def share_knowledge(
    message: str,
    project: str = typer.Option(None, "--project", "-p", help="Project group to share with (default: current project)"),
    path: str = typer.Option(".", help="Project directory used when --project is not given"),
):
    """Share a piece of knowledge with everyone working on a project."""
    st = _settings()
    result = ProjectEntities(open_store(st), st).share_knowledge(message, project, path)
    if not result.success:
        print(f"[red]ERROR[/red] {result.message}: {result.error}")
        raise typer.Exit(code=1)
    print(f"[green]OK[/green] {result.message}")


@app.command()
def init_db():
    """Initialize the knowledge store schema.

    - STORE_BACKEND=neo4j: creates constraints/indexes in Neo4j
    - STORE_BACKEND=sqlite: creates tables in TBRIDGE_SQLITE_PATH
    - STORE_BACKEND=memory: no-op
    """
    st = _settings()
    try:
        open_store(st).ensure_schema()
    except StoreError as e:
        print(f"[red]ERROR[/red] {e}")
        raise typer.Exit(code=1)
    print(f"[green]OK[/green] schema ensured (backend={st.store_backend})")


@app.command()
def serve(host: str = "127.0.0.1", port: int = 8099):
    """Run the HTTP API. Requires: pip install -e .[server]"""
    st = _settings()
    import uvicorn
    uvicorn.run("tbridge.server:app", host=host, port=port, reload=False, log_level=st.log_level.lower())


if __name__ == "__main__":
    app()
