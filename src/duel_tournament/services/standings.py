"""Standings with a Buchholz-style tiebreak."""

from __future__ import annotations

from collections.abc import Iterable, Sequence

from duel_tournament.models.results import StandingsEntry
from duel_tournament.models.tournament import Participant, TournamentMatch


def compute_standings(
    participants: Sequence[Participant],
    matches: Iterable[TournamentMatch],
    tournament_format: str,
) -> list[StandingsEntry]:
    """Rank every participant of a tournament.

    The tiebreak is the sum of the current scores of every opponent faced in
    a non-bye match, recomputed live rather than frozen at match time.
    ``matches_played`` counts completed matches only.

    Ordering: non-eliminated first (elimination only), then score, tiebreak
    and wins descending, then seed ascending. Distinct seeds make this a
    total order.

    Args:
        participants: All participants of the tournament.
        matches: All matches of the tournament.
        tournament_format: Tournament format.

    Returns:
        Standings, best first.
    """
    if not participants:
        return []

    scores = {p.user_id: p.score for p in participants}
    tiebreak = {p.user_id: 0.0 for p in participants}
    matches_played = {p.user_id: 0 for p in participants}

    for match in matches:
        if match.player2_id is None:
            continue
        p1, p2 = match.player1_id, match.player2_id
        tiebreak[p1] = tiebreak.get(p1, 0.0) + scores.get(p2, 0.0)
        tiebreak[p2] = tiebreak.get(p2, 0.0) + scores.get(p1, 0.0)
        if match.status == "completed":
            matches_played[p1] = matches_played.get(p1, 0) + 1
            matches_played[p2] = matches_played.get(p2, 0) + 1

    entries = [
        StandingsEntry(
            user_id=p.user_id,
            seed=p.seed,
            score=p.score,
            wins=p.wins,
            losses=p.losses,
            draws=p.draws,
            eliminated=p.eliminated,
            tiebreak=tiebreak[p.user_id],
            matches_played=matches_played[p.user_id],
        )
        for p in participants
    ]

    elimination = tournament_format == "elimination"
    entries.sort(
        key=lambda e: (
            e.eliminated if elimination else False,
            -e.score,
            -e.tiebreak,
            -e.wins,
            e.seed,
        )
    )
    return entries


def select_winner(standings: Sequence[StandingsEntry], tournament_format: str) -> str | None:
    """Pick the winner from final standings.

    Elimination prefers the best non-eliminated participant; every other
    format takes the top of the table.
    """
    if not standings:
        return None
    if tournament_format == "elimination":
        survivor = next((e for e in standings if not e.eliminated), None)
        if survivor is not None:
            return survivor.user_id
    return standings[0].user_id
