"""Command-line interface for Qualmatrix."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Annotated

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.markup import escape
from rich.table import Table
from rich.tree import Tree

from qualmatrix import __version__
from qualmatrix.config import load_settings
from qualmatrix.errors import InputError, LLMTransportError, QualityGateError, StaleRecordError
from qualmatrix.models import GuideStructure, ProjectConfig, RawDocument, ValidationResult

app = typer.Typer(
    name="qualmatrix",
    help="Discussion-guide content analysis of interview transcripts.",
    no_args_is_help=True,
)
console = Console(width=min(100, Console().width))


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"qualmatrix {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        bool,
        typer.Option(
            "--version", "-V",
            help="Show version and exit.",
            callback=_version_callback,
            is_eager=True,
        ),
    ] = False,
) -> None:
    """Discussion-guide content analysis of interview transcripts."""


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _load_project(path: Path) -> ProjectConfig:
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        console.print(f"[red]{escape(str(path))} is not valid JSON: {escape(str(exc))}[/red]")
        raise typer.Exit(1)
    try:
        return ProjectConfig.model_validate(data)
    except ValidationError as exc:
        console.print(f"[red]{escape(str(path))} is not a valid project file:[/red]")
        for error in exc.errors():
            where = ".".join(str(part) for part in error["loc"]) or "(top level)"
            console.print(f"  [red]{escape(where)}: {escape(error['msg'])}[/red]")
        raise typer.Exit(1)


def _load_documents(paths: list[Path]) -> list[RawDocument]:
    return [
        RawDocument(id=p.stem, name=p.name, content=p.read_text(encoding="utf-8", errors="replace"))
        for p in paths
    ]


def _print_header(settings: object) -> None:
    from qualmatrix.providers import PROVIDERS

    provider = PROVIDERS.get(settings.llm_provider)  # type: ignore[attr-defined]
    name = provider.display_name if provider else settings.llm_provider  # type: ignore[attr-defined]
    console.print(f"\nQualmatrix [dim]v{__version__} · {name}[/dim]\n")


def _print_guide(guide: GuideStructure) -> None:
    tree = Tree(f"[bold]Discussion guide[/bold] [dim]({guide.source.value})[/dim]")
    for section in sorted(guide.sections, key=lambda s: s.ordinal):
        branch = tree.add(f"[bold]{escape(section.title)}[/bold]")
        for q in section.questions:
            branch.add(escape(q.text))
        for sub in sorted(section.subsections, key=lambda s: s.ordinal):
            sub_branch = branch.add(f"[cyan]{escape(sub.title)}[/cyan]")
            for q in sub.questions:
                sub_branch.add(escape(q.text))
    console.print(tree)
    console.print(f"\n  [dim]{guide.question_count} question(s)[/dim]")


def _print_result(result: ValidationResult) -> None:
    from qualmatrix.llm.kinds import get_kind_spec

    key = get_kind_spec(result.kind).matrix_section.key
    rows = result.data[key]["questions"]

    table = Table(title=f"{key} · {result.status.value}", show_lines=False)
    table.add_column("#", justify="right", style="dim")
    table.add_column("Question")
    table.add_column("Respondents", justify="right")
    for i, row in enumerate(rows, start=1):
        table.add_row(str(i), escape(row["question"]), str(len(row["respondents"])))
    if rows:
        console.print(table)
    else:
        console.print(f"  [yellow]No matrix rows ({result.status.value}).[/yellow]")

    if result.repairs:
        console.print(f"  [dim]{len(result.repairs)} repair(s) applied[/dim]")
    for defect in result.defects:
        console.print(f"  [yellow]![/yellow] {escape(defect.describe())}")


def _write_json(path: Path, data: dict) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data, indent=2, ensure_ascii=False), encoding="utf-8")
    console.print(f"\n  Output:  [link=file://{path.resolve()}]{path}[/link]")


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


@app.command()
def analyze(
    project_file: Annotated[
        Path,
        typer.Argument(help="Project configuration JSON.", exists=True, dir_okay=False),
    ],
    transcripts: Annotated[
        list[Path],
        typer.Argument(help="Transcript text files.", exists=True, dir_okay=False),
    ],
    kind: Annotated[
        str,
        typer.Option("--kind", "-k", help="Analysis kind: content, pro_advanced, standard."),
    ] = "content",
    llm_provider: Annotated[
        str | None,
        typer.Option("--llm", "-l", help="LLM provider: azure, chatgpt, claude, local."),
    ] = None,
    output: Annotated[
        Path | None,
        typer.Option("--output", "-o", help="Where to write the analysis JSON."),
    ] = None,
    db_url: Annotated[
        str | None,
        typer.Option("--db", help="Database URL to store the result in (default: QUALMATRIX_DB_URL, if set)."),
    ] = None,
    user_id: Annotated[
        str,
        typer.Option("--user", "-u", help="User id the stored result belongs to."),
    ] = "cli",
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Enable verbose logging."),
    ] = False,
) -> None:
    """Run the analysis on transcripts and write the validated JSON."""
    from qualmatrix.llm.client import LLMClient
    from qualmatrix.llm.kinds import parse_kind
    from qualmatrix.logging import log_path, setup_logging
    from qualmatrix.pipeline import AnalysisOutcome, iter_analysis

    settings = load_settings(llm_provider=llm_provider, db_url=db_url)
    setup_logging(output_dir=settings.output_dir, verbose=verbose)
    _print_header(settings)

    try:
        analysis_kind = parse_kind(kind)
    except ValueError as exc:
        console.print(f"[red]{escape(str(exc))}[/red]")
        raise typer.Exit(1)

    config = _load_project(project_file)
    documents = _load_documents(transcripts)

    store = None
    if settings.db_url:
        from qualmatrix.server.db import create_session_factory, get_engine, init_db
        from qualmatrix.server.store import ResultStore

        engine = get_engine(settings.db_url)
        init_db(engine)
        store = ResultStore(create_session_factory(engine))

    async def _run() -> AnalysisOutcome | None:
        client = LLMClient(settings)
        outcome: AnalysisOutcome | None = None
        async for event in iter_analysis(
            config,
            documents,
            client,
            kind=analysis_kind,
            settings=settings,
            store=store,
            project_id=config.name or project_file.stem,
            user_id=user_id,
        ):
            console.print(
                f"  [green]✓[/green] {event.phase:<18} [dim]{event.detail}"
                f" ({event.elapsed:.1f}s)[/dim]"
            )
            outcome = event.outcome or outcome
        return outcome

    try:
        outcome = asyncio.run(_run())
    except (InputError, LLMTransportError, QualityGateError, StaleRecordError) as exc:
        console.print(f"\n[red]{escape(str(exc))}[/red]")
        raise typer.Exit(1)

    assert outcome is not None
    result = outcome.result
    console.print()
    _print_result(result)
    if outcome.input_tokens or outcome.output_tokens:
        console.print(
            f"  [dim]LLM: {outcome.input_tokens:,} in · {outcome.output_tokens:,} out[/dim]"
        )

    output = output or settings.output_dir / f"analysis-{analysis_kind.value}.json"
    _write_json(output, result.data)
    console.print(f"  Log:     [dim]{log_path(settings.output_dir)}[/dim]")
    console.print("\n  [green]Done.[/green]")


# British English alias for analyze
analyse = app.command(name="analyse", hidden=True)(analyze)


@app.command()
def speakers(
    transcripts: Annotated[
        list[Path],
        typer.Argument(help="Transcript text files.", exists=True, dir_okay=False),
    ],
) -> None:
    """Show the speaker labels and profile lines found in transcripts."""
    from qualmatrix.stages.speakers import detect_speakers, format_speaker_hints, merge_hints

    settings = load_settings()
    hints = merge_hints(
        *(detect_speakers(d.content, settings.speaker_scan_lines) for d in _load_documents(transcripts))
    )
    console.print(format_speaker_hints(hints), markup=False)


@app.command()
def guide(
    project_file: Annotated[
        Path,
        typer.Argument(help="Project configuration JSON.", exists=True, dir_okay=False),
    ],
    transcripts: Annotated[
        list[Path] | None,
        typer.Argument(help="Transcripts to scan when the project has no guide.", exists=True),
    ] = None,
) -> None:
    """Show the discussion guide the analysis would use."""
    from qualmatrix.stages.guide import extract_guide

    config = _load_project(project_file)
    _print_guide(extract_guide(config, _load_documents(transcripts or [])))


@app.command()
def validate(
    raw_file: Annotated[
        Path,
        typer.Argument(help="Saved model response.", exists=True, dir_okay=False),
    ],
    kind: Annotated[
        str,
        typer.Option("--kind", "-k", help="Analysis kind the response should follow."),
    ] = "content",
    project_file: Annotated[
        Path | None,
        typer.Option("--project", "-p", help="Project JSON whose guide the rows must follow."),
    ] = None,
    output: Annotated[
        Path | None,
        typer.Option("--output", "-o", help="Where to write the repaired JSON."),
    ] = None,
) -> None:
    """Validate and repair a saved model response without calling the model."""
    from qualmatrix.stages.guide import extract_guide
    from qualmatrix.stages.validate import validate_response

    try:
        result_guide = (
            extract_guide(_load_project(project_file), []) if project_file else None
        )
        result = validate_response(
            raw_file.read_text(encoding="utf-8", errors="replace"), kind, result_guide
        )
    except ValueError as exc:
        console.print(f"[red]{escape(str(exc))}[/red]")
        raise typer.Exit(1)

    _print_result(result)
    for repair in result.repairs:
        console.print(f"  [dim]- {escape(repair)}[/dim]", highlight=False)
    if output:
        _write_json(output, result.data)


@app.command()
def show(
    project_id: Annotated[str, typer.Argument(help="Project id.")],
    user_id: Annotated[str, typer.Argument(help="User id.")],
    db_url: Annotated[
        str | None,
        typer.Option("--db", help="Database URL (default: settings or ~/.config/qualmatrix)."),
    ] = None,
) -> None:
    """Print a stored analysis document."""
    from qualmatrix.server.db import create_session_factory, get_engine, init_db
    from qualmatrix.server.store import ResultStore

    settings = load_settings()
    engine = get_engine(db_url or settings.db_url or None)
    init_db(engine)
    record = ResultStore(create_session_factory(engine)).get(project_id, user_id)
    if record is None:
        console.print(f"[red]No analysis stored for project {project_id} / user {user_id}.[/red]")
        raise typer.Exit(1)

    console.print(
        f"[bold]{record.analysis_kind}[/bold] [dim]version {record.version} · "
        f"updated {record.updated_at:%Y-%m-%d %H:%M}[/dim]"
    )
    console.print_json(json.dumps(record.data, ensure_ascii=False))


@app.command()
def serve(
    port: Annotated[
        int,
        typer.Option("--port", "-p", help="Port to serve on."),
    ] = 8160,
    db_url: Annotated[
        str | None,
        typer.Option("--db", help="Database URL (default: settings or ~/.config/qualmatrix)."),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Enable verbose logging."),
    ] = False,
) -> None:
    """Run the analysis HTTP API."""
    import uvicorn

    from qualmatrix.server.app import create_app

    settings = load_settings(db_url=db_url)
    app_instance = create_app(settings=settings, log_dir=settings.output_dir, verbose=verbose)

    console.print(f"\n  API: [bold cyan]http://127.0.0.1:{port}/api/docs[/bold cyan]\n")
    uvicorn.run(
        app_instance,
        host="127.0.0.1",
        port=port,
        log_level="info" if verbose else "warning",
    )
