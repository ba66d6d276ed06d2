"""Result shapes returned by the tournament services."""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field


class Problem(BaseModel):
    """Problem payload supplied by the problem selector.

    Attributes:
        contest_id: Contest the problem belongs to.
        index: Problem index within the contest (e.g. "C").
        name: Display name.
        rating: Difficulty rating, if known.
        tags: Topic tags.
    """

    contest_id: int
    index: str
    name: str
    rating: int | None = None
    tags: list[str] = Field(default_factory=list)

    @property
    def problem_id(self) -> str:
        return f"{self.contest_id}{self.index}"


class StandingsEntry(BaseModel):
    """One row of the standings table."""

    user_id: str
    seed: int
    score: float
    wins: int
    losses: int
    draws: int
    eliminated: bool
    tiebreak: float
    matches_played: int


class RoundSummary(BaseModel):
    round_number: int
    status: Literal["active", "completed"]
    match_count: int
    completed_count: int
    bye_count: int
    problem: Problem


class MatchSummary(BaseModel):
    match_number: int
    player1_id: str
    player2_id: str | None
    winner_id: str | None
    status: Literal["pending", "completed", "bye"]
    is_draw: bool


class StartResult(BaseModel):
    """Outcome of creating a tournament."""

    status: Literal[
        "started",
        "active_exists",
        "no_lobby",
        "insufficient_participants",
        "invalid",
        "error",
    ]
    tournament_id: str | None = None
    round: RoundSummary | None = None
    message: str | None = None


class AdvanceResult(BaseModel):
    """Outcome of starting or advancing a round.

    ``round_number`` is set for ``round_incomplete``; ``winner_id`` and
    ``tournament_id`` for ``completed``; ``round`` for ``started``.
    """

    status: Literal[
        "no_active",
        "round_incomplete",
        "completed",
        "started",
        "insufficient_participants",
        "error",
    ]
    tournament_id: str | None = None
    round_number: int | None = None
    winner_id: str | None = None
    round: RoundSummary | None = None
    message: str | None = None


class CancelResult(BaseModel):
    status: Literal["cancelled", "nothing_to_cancel"]
    tournament_id: str | None = None
    cancelled_duels: int = 0


class MatchApplication(BaseModel):
    """Record of one applied match completion."""

    tournament_id: str
    round_number: int
    winner_id: str | None
    is_draw: bool
    round_completed: bool


class LobbyInfo(BaseModel):
    id: str
    guild_id: str
    channel_id: str
    host_user_id: str
    format: Literal["swiss", "elimination", "arena"]
    length_minutes: int
    max_participants: int
    rating_ranges: list[dict[str, int]]
    tags: str
    swiss_rounds: int | None
    participants: list[str]


class LobbyResult(BaseModel):
    status: Literal[
        "created",
        "joined",
        "already_joined",
        "left",
        "not_joined",
        "full",
        "no_lobby",
        "lobby_exists",
        "active_exists",
        "invalid",
    ]
    lobby: LobbyInfo | None = None
    message: str | None = None


class HistoryEntry(BaseModel):
    id: str
    format: Literal["swiss", "elimination", "arena"]
    status: Literal["active", "completed", "cancelled"]
    length_minutes: int
    round_count: int
    rating_ranges: list[dict[str, int]]
    tags: str
    created_at: datetime
    updated_at: datetime
    participant_count: int
    winner_id: str | None


class HistoryPage(BaseModel):
    total: int
    entries: list[HistoryEntry]


class HistoryDetail(BaseModel):
    entry: HistoryEntry
    channel_id: str
    host_user_id: str
    standings: list[StandingsEntry]
    rounds: list[RoundSummary]


class RecapRound(BaseModel):
    round_number: int
    status: Literal["active", "completed"]
    problem: Problem
    matches: list[MatchSummary]


class Recap(BaseModel):
    entry: HistoryEntry
    channel_id: str
    host_user_id: str
    standings: list[StandingsEntry]
    rounds: list[RecapRound]


class LastError(BaseModel):
    """Most recent collaborator failure seen by a service."""

    message: str
    timestamp: datetime
