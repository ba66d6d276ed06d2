"""The single place participant scores and records change."""

from __future__ import annotations

from collections.abc import Mapping, Sequence

from duel_tournament.models.tournament import Participant, utc_now
from duel_tournament.services.outcome import MatchOutcome

WIN_POINTS = 1.0
DRAW_POINTS = 0.5


def apply_outcome(
    participants: Mapping[str, Participant],
    outcome: MatchOutcome,
    players: Sequence[str | None],
    eliminate_loser: bool = False,
) -> list[Participant]:
    """Credit a match or bye result to the participants involved.

    A win adds a point and a win to the winner and a loss to the loser; a
    draw adds half a point and a draw to both players. Byes go through here
    as a win with no loser.

    Args:
        participants: Participants of the tournament by user ID.
        outcome: Resolved outcome.
        players: The match's players (player2 may be None).
        eliminate_loser: Mark the loser eliminated (elimination format).

    Returns:
        The participants that were modified.
    """
    now = utc_now()
    touched: list[Participant] = []

    if outcome.is_draw:
        for user_id in players:
            participant = participants.get(user_id) if user_id else None
            if participant is None:
                continue
            participant.score += DRAW_POINTS
            participant.draws += 1
            participant.updated_at = now
            touched.append(participant)
        return touched

    winner = participants.get(outcome.winner_id) if outcome.winner_id else None
    if winner is not None:
        winner.score += WIN_POINTS
        winner.wins += 1
        winner.updated_at = now
        touched.append(winner)

    loser = participants.get(outcome.loser_id) if outcome.loser_id else None
    if loser is not None:
        loser.losses += 1
        if eliminate_loser:
            loser.eliminated = True
        loser.updated_at = now
        touched.append(loser)

    return touched
