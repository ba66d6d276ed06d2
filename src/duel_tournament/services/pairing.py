"""Swiss and single-elimination pairing."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field

from duel_tournament.models.tournament import TournamentMatch

PairingHistory = dict[str, set[str]]


@dataclass
class PairingParticipant:
    """An active participant as seen by the pairing algorithms.

    Attributes:
        user_id: Unique participant identifier.
        score: Current tournament score.
        seed: 1-based seed; lower seed means higher priority.
        played_against: User IDs already faced in non-bye matches.
        byes: Byes received so far in this tournament.
    """

    user_id: str
    score: float = 0.0
    seed: int = 0
    played_against: set[str] = field(default_factory=set)
    byes: int = 0


@dataclass(frozen=True)
class Pairing:
    """A pairing for one round; ``player2_id`` is None for a bye."""

    player1_id: str
    player2_id: str | None = None

    @property
    def is_bye(self) -> bool:
        return self.player2_id is None


def swiss_pairing(participants: list[PairingParticipant]) -> list[Pairing]:
    """Generate Swiss pairings for one round.

    1. Participants are sorted by score (descending), seed breaking ties
    2. With an odd count, one participant is set aside for a bye
    3. Walking the sorted list, each unpaired participant is matched with the
       nearest unpaired participant they have not played yet
    4. If every remaining opponent is a rematch, the nearest one is taken

    The rematch fallback is greedy and does not search for a global
    assignment that minimises rematches.

    Args:
        participants: Active participants with their pairing history.

    Returns:
        Pairings in board order, the bye (if any) last.
    """
    if not participants:
        return []

    ordered = sorted(participants, key=lambda p: (-p.score, p.seed))
    pairing_pool = list(ordered)

    bye_recipient: PairingParticipant | None = None
    if len(pairing_pool) % 2 == 1:
        bye_recipient = _assign_bye(pairing_pool)

    pairs = _create_pairs(pairing_pool)
    if bye_recipient is not None:
        pairs.append(Pairing(bye_recipient.user_id, None))
    return pairs


def _assign_bye(ordered: list[PairingParticipant]) -> PairingParticipant:
    """Remove one participant to receive a bye (lowest ranked with fewest byes).

    Args:
        ordered: Mutable list sorted best-first.

    Returns:
        The participant who received the bye.
    """
    min_byes = min(p.byes for p in ordered)
    index = max(i for i, p in enumerate(ordered) if p.byes == min_byes)
    return ordered.pop(index)


def _create_pairs(ordered: list[PairingParticipant]) -> list[Pairing]:
    """Pair each unpaired participant with the nearest legal opponent below them."""
    pairs: list[Pairing] = []
    used: set[str] = set()

    for i, player in enumerate(ordered):
        if player.user_id in used:
            continue
        used.add(player.user_id)

        remaining = [c for c in ordered[i + 1 :] if c.user_id not in used]
        opponent = next(
            (c for c in remaining if c.user_id not in player.played_against),
            remaining[0] if remaining else None,
        )
        if opponent is None:
            pairs.append(Pairing(player.user_id, None))
            continue

        used.add(opponent.user_id)
        pairs.append(Pairing(player.user_id, opponent.user_id))

    return pairs


def elimination_pairing(participants: list[PairingParticipant]) -> list[Pairing]:
    """Generate a seeded single-elimination round.

    Seeds are folded highest-vs-lowest (1 vs N, 2 vs N-1, ...), which keeps
    the top seeds apart. With an odd count the top seed sits out with a bye
    and keeps their seed for later rounds.

    Args:
        participants: Non-eliminated participants.

    Returns:
        Pairings in bracket order, the bye (if any) last.
    """
    ordered = sorted(participants, key=lambda p: p.seed)
    bye_recipient: PairingParticipant | None = None
    if len(ordered) % 2 == 1:
        bye_recipient = ordered.pop(0)

    pairs: list[Pairing] = []
    while ordered:
        high = ordered.pop(0)
        low = ordered.pop()
        pairs.append(Pairing(high.user_id, low.user_id))

    if bye_recipient is not None:
        pairs.append(Pairing(bye_recipient.user_id, None))
    return pairs


def build_pairing_history(matches: Iterable[TournamentMatch]) -> PairingHistory:
    """Collect who has faced whom from a tournament's non-bye matches."""
    history: PairingHistory = {}
    for match in matches:
        if match.player2_id is None:
            continue
        history.setdefault(match.player1_id, set()).add(match.player2_id)
        history.setdefault(match.player2_id, set()).add(match.player1_id)
    return history


def count_byes(matches: Iterable[TournamentMatch]) -> dict[str, int]:
    """Count byes per user across a tournament's matches."""
    byes: dict[str, int] = {}
    for match in matches:
        if match.player2_id is None:
            byes[match.player1_id] = byes.get(match.player1_id, 0) + 1
    return byes
