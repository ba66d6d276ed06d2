"""Resolve a finished duel into a win, loss or draw."""

from __future__ import annotations

import sys
from collections.abc import Mapping, Sequence
from dataclasses import dataclass


@dataclass(frozen=True)
class ParticipantResult:
    """One player's result from the challenge runner.

    Attributes:
        user_id: Player identifier.
        solved_at: Unix timestamp of the accepted solve, None if unsolved.
    """

    user_id: str
    solved_at: int | None = None


@dataclass(frozen=True)
class MatchOutcome:
    winner_id: str | None
    loser_id: str | None
    is_draw: bool

    @classmethod
    def draw(cls) -> MatchOutcome:
        return cls(winner_id=None, loser_id=None, is_draw=True)

    @classmethod
    def win(cls, winner_id: str, loser_id: str | None) -> MatchOutcome:
        return cls(winner_id=winner_id, loser_id=loser_id, is_draw=False)


def resolve_match_outcome(
    results: Sequence[ParticipantResult],
    seeds: Mapping[str, int],
    allow_draws: bool,
) -> MatchOutcome:
    """Decide a match from the players' solve times.

    The earlier solve wins; a lone solver wins outright. When nobody solved,
    or both solved at the same second, the match is a draw if draws are
    allowed, otherwise the lower seed wins. Only the first two results are
    considered.

    Args:
        results: Player results reported by the challenge runner.
        seeds: Seed per user ID; unknown users rank last.
        allow_draws: Whether the format scores draws as half points.

    Returns:
        The resolved MatchOutcome.
    """
    if len(results) < 2:
        winner_id = results[0].user_id if results else None
        return MatchOutcome(winner_id=winner_id, loser_id=None, is_draw=False)

    a, b = results[0], results[1]
    if a.solved_at is not None and b.solved_at is not None:
        if a.solved_at != b.solved_at:
            if a.solved_at < b.solved_at:
                return MatchOutcome.win(a.user_id, b.user_id)
            return MatchOutcome.win(b.user_id, a.user_id)
    elif a.solved_at is not None:
        return MatchOutcome.win(a.user_id, b.user_id)
    elif b.solved_at is not None:
        return MatchOutcome.win(b.user_id, a.user_id)

    if allow_draws:
        return MatchOutcome.draw()

    a_seed = seeds.get(a.user_id, sys.maxsize)
    b_seed = seeds.get(b.user_id, sys.maxsize)
    if b_seed < a_seed:
        return MatchOutcome.win(b.user_id, a.user_id)
    return MatchOutcome.win(a.user_id, b.user_id)
