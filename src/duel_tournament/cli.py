"""CLI for Duel Tournament."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Annotated, Literal

import structlog
import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from duel_tournament import __version__
from duel_tournament.core.config import EngineConfig, load_config
from duel_tournament.core.errors import ConfigurationError, TournamentError
from duel_tournament.models.results import StandingsEntry
from duel_tournament.pipeline import run_simulation
from duel_tournament.services.reporting import export_standings_csv, generate_standings_report
from duel_tournament.services.standings import compute_standings
from duel_tournament.services.storage import TournamentRepository, create_db_engine
from duel_tournament.services.tournament import summarize_round

# Configure structlog
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.dev.ConsoleRenderer(),
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)

app = typer.Typer(
    name="duel-tournament",
    help="Duel Tournament - Swiss and elimination tournaments of timed problem duels",
    add_completion=False,
)
console = Console()


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"duel-tournament v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        bool | None,
        typer.Option("--version", "-v", callback=version_callback, is_eager=True),
    ] = None,
) -> None:
    """Duel Tournament CLI."""


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True)],
    )


def _load_engine_config(
    config_path: Path | None,
    db_path: Path | None,
    seed: int | None = None,
) -> EngineConfig:
    config = load_config(config_path) if config_path else EngineConfig()
    updates: dict[str, object] = {}
    if db_path is not None:
        updates["database_url"] = f"duckdb:///{db_path}"
    if seed is not None:
        updates["seed"] = seed
    return config.model_copy(update=updates) if updates else config


def _standings_table(standings: list[StandingsEntry], title: str) -> Table:
    table = Table(title=title)
    for header in ("#", "Player", "Seed", "Score", "W-L-D", "Tiebreak", "Played"):
        table.add_column(header, justify="left" if header == "Player" else "right")
    for rank, e in enumerate(standings, start=1):
        name = f"[strike]{e.user_id}[/strike]" if e.eliminated else e.user_id
        table.add_row(
            str(rank),
            name,
            str(e.seed),
            f"{e.score:g}",
            f"{e.wins}-{e.losses}-{e.draws}",
            f"{e.tiebreak:g}",
            str(e.matches_played),
        )
    return table


@app.command()
def simulate(
    tournament_format: Annotated[
        Literal["swiss", "elimination", "arena"],
        typer.Option("--format", "-f", help="Tournament format"),
    ] = "swiss",
    players: Annotated[int, typer.Option("--players", "-p", help="Number of participants")] = 8,
    rounds: Annotated[
        int | None, typer.Option("--rounds", "-r", help="Rounds for swiss/arena")
    ] = None,
    seed: Annotated[int | None, typer.Option("--seed", help="Seed for fake duels")] = None,
    config_path: Annotated[
        Path | None, typer.Option("--config", "-c", help="Path to config YAML file")
    ] = None,
    db_path: Annotated[Path | None, typer.Option("--db", help="DuckDB file to write")] = None,
    csv_path: Annotated[
        Path | None, typer.Option("--csv", help="Export final standings to CSV")
    ] = None,
    report_path: Annotated[
        Path | None, typer.Option("--report", help="Write a markdown standings report")
    ] = None,
    verbose: Annotated[bool, typer.Option("--verbose", "-V", help="Verbose output")] = False,
) -> None:
    """Simulate a complete tournament against fake problems and duels."""
    _configure_logging(verbose)

    try:
        config = _load_engine_config(config_path, db_path, seed)
        console.print(
            f"[bold green]Simulating {tournament_format} tournament[/bold green] "
            f"with {players} players (seed {config.seed})"
        )
        result = asyncio.run(
            run_simulation(
                config,
                participants=players,
                tournament_format=tournament_format,
                rounds=rounds,
                show_progress=True,
            )
        )
    except FileNotFoundError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e
    except ConfigurationError as e:
        console.print(f"[red]{e}")
        raise typer.Exit(1) from e
    except TournamentError as e:
        console.print(f"[red]Tournament error:[/red] {e.message}")
        if e.suggestion:
            console.print(f"[yellow]{e.suggestion}[/yellow]")
        raise typer.Exit(1) from e
    except Exception as e:
        console.print(f"[red]Unexpected error:[/red] {e}")
        if verbose:
            console.print_exception()
        raise typer.Exit(1) from e

    console.print(_standings_table(result.standings, f"Final standings ({result.rounds_played} rounds)"))
    console.print(f"[bold]Winner:[/bold] {result.winner_id}")
    console.print(f"Tournament ID: {result.tournament_id}")

    if csv_path is not None:
        export_standings_csv(result.standings, csv_path)
        console.print(f"Standings exported to: {csv_path}")
    if report_path is not None:
        report_path.parent.mkdir(parents=True, exist_ok=True)
        report_path.write_text(
            generate_standings_report(
                result.standings,
                title=f"{result.tournament_format.title()} tournament {result.tournament_id}",
                winner_id=result.winner_id,
            )
        )
        console.print(f"Report saved to: {report_path}")


@app.command()
def standings(
    tournament_id: Annotated[str, typer.Argument(help="Tournament ID")],
    config_path: Annotated[
        Path | None, typer.Option("--config", "-c", help="Path to config YAML file")
    ] = None,
    db_path: Annotated[Path | None, typer.Option("--db", help="DuckDB file to read")] = None,
) -> None:
    """Show the standings of a stored tournament."""
    _configure_logging(False)

    try:
        config = _load_engine_config(config_path, db_path)
    except (FileNotFoundError, ConfigurationError) as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e

    async def _show() -> None:
        engine = create_db_engine(config.get_database_url())
        try:
            repository = TournamentRepository(engine)
            tournament = await repository.get_tournament(tournament_id)
            if tournament is None:
                console.print(f"[red]Tournament not found:[/red] {tournament_id}")
                raise typer.Exit(1)
            matches = await repository.list_matches(tournament_id)
            participants = await repository.list_participants(tournament_id)
            table = _standings_table(
                compute_standings(participants, matches, tournament.format),
                f"{tournament.format} - {tournament.status} - round "
                f"{tournament.current_round}/{tournament.round_count}",
            )
            console.print(table)
            for round_ in await repository.list_rounds(tournament_id):
                summary = summarize_round(round_, matches)
                console.print(
                    f"  Round {summary.round_number} [{summary.status}] "
                    f"{summary.problem.problem_id} {summary.problem.name}: "
                    f"{summary.completed_count}/{summary.match_count} done, "
                    f"{summary.bye_count} bye(s)"
                )
        finally:
            engine.dispose()

    asyncio.run(_show())


@app.command()
def validate(
    config_path: Annotated[Path, typer.Argument(help="Path to config YAML file")],
) -> None:
    """Validate a configuration file without running.

    Args:
        config_path: Path to YAML configuration file.
    """
    try:
        config = load_config(config_path)
        console.print("[green]Configuration is valid![/green]")
        console.print(f"  Database: {config.get_database_url()}")
        console.print(f"  Match lengths: {config.allowed_lengths}")
        console.print(
            f"  Participants: {config.min_participants}-{config.max_participants} "
            f"(lobby default {config.default_max_participants})"
        )
        console.print(f"  Swiss rounds: {config.swiss_min_rounds}-{config.swiss_max_rounds}")
        rating = config.default_rating_range
        console.print(f"  Default rating range: {rating.min}-{rating.max}")

    except FileNotFoundError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e
    except ConfigurationError as e:
        console.print(f"[red]{e}")
        raise typer.Exit(1) from e
    except Exception as e:
        console.print(f"[red]Validation error:[/red] {e}")
        raise typer.Exit(1) from e


@app.command()
def info() -> None:
    """Show tool information and example commands."""
    console.print("[bold]Duel Tournament[/bold]")
    console.print(f"Version: {__version__}\n")

    console.print("[bold]Example Commands:[/bold]")
    console.print("  # Simulate an 8-player swiss tournament")
    console.print("  uv run duel-tournament simulate --players 8\n")

    console.print("  # Simulate an elimination bracket and export standings")
    console.print("  uv run duel-tournament simulate -f elimination -p 13 --csv out/standings.csv\n")

    console.print("  # Show standings of a stored tournament")
    console.print("  uv run duel-tournament standings <tournament-id> --db data/tournament.duckdb\n")

    console.print("  # Validate config")
    console.print("  uv run duel-tournament validate config.yaml")


if __name__ == "__main__":
    app()
