"""Standings reports: markdown tables and CSV export."""

from __future__ import annotations

import csv
from collections.abc import Sequence
from pathlib import Path

from tabulate import tabulate

from duel_tournament.models.results import StandingsEntry

STANDINGS_HEADERS = ("#", "Player", "Seed", "Score", "W", "L", "D", "Tiebreak", "Played", "Out")


def _rows(standings: Sequence[StandingsEntry]) -> list[tuple]:
    return [
        (
            rank,
            e.user_id,
            e.seed,
            f"{e.score:g}",
            e.wins,
            e.losses,
            e.draws,
            f"{e.tiebreak:g}",
            e.matches_played,
            "yes" if e.eliminated else "",
        )
        for rank, e in enumerate(standings, start=1)
    ]


def generate_standings_report(
    standings: Sequence[StandingsEntry],
    title: str,
    winner_id: str | None = None,
) -> str:
    """Render standings as a markdown report.

    Args:
        standings: Standings, best first.
        title: Report title (markdown heading).
        winner_id: Winner line added below the title, if known.

    Returns:
        Markdown report content.
    """
    lines = [f"# {title}", ""]
    if winner_id:
        lines.extend([f"Winner: **{winner_id}**", ""])
    lines.append(tabulate(_rows(standings), headers=STANDINGS_HEADERS, tablefmt="github"))
    return "\n".join(lines)


def export_standings_csv(standings: Sequence[StandingsEntry], path: Path) -> Path:
    """Write standings to a CSV file, creating parent directories."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", newline="", encoding="utf-8") as f:
        writer = csv.writer(f)
        writer.writerow(["rank", *StandingsEntry.model_fields])
        for rank, entry in enumerate(standings, start=1):
            writer.writerow([rank, *entry.model_dump().values()])
    return path
