"""Per-format rules, selected in one place."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass

from duel_tournament.services.pairing import (
    Pairing,
    PairingParticipant,
    elimination_pairing,
    swiss_pairing,
)


@dataclass(frozen=True)
class FormatRules:
    """Behaviour that differs between tournament formats.

    Attributes:
        name: Format name.
        pair: Pairing algorithm for a round.
        allow_draws: Whether an undecided match is a half-point draw.
        eliminates_loser: Whether a loss removes the participant.
        fixed_rounds: Whether the tournament ends after ``round_count`` rounds.
    """

    name: str
    pair: Callable[[list[PairingParticipant]], list[Pairing]]
    allow_draws: bool
    eliminates_loser: bool
    fixed_rounds: bool


SWISS_RULES = FormatRules(
    name="swiss",
    pair=swiss_pairing,
    allow_draws=True,
    eliminates_loser=False,
    fixed_rounds=True,
)

ELIMINATION_RULES = FormatRules(
    name="elimination",
    pair=elimination_pairing,
    allow_draws=False,
    eliminates_loser=True,
    fixed_rounds=False,
)

ARENA_RULES = FormatRules(
    name="arena",
    pair=swiss_pairing,
    allow_draws=True,
    eliminates_loser=False,
    fixed_rounds=True,
)


def rules_for(tournament_format: str) -> FormatRules:
    """Get the rules for a format.

    Raises:
        ValueError: If the format is unknown.
    """
    match tournament_format:
        case "swiss":
            return SWISS_RULES
        case "elimination":
            return ELIMINATION_RULES
        case "arena":
            return ARENA_RULES
    msg = f"Unknown tournament format: {tournament_format}"
    raise ValueError(msg)
