"""Tournament, participant, round and match tables."""

import uuid
from datetime import UTC, datetime
from typing import Literal

from sqlalchemy import Column
from sqlmodel import JSON, Field, SQLModel

TournamentFormat = Literal["swiss", "elimination", "arena"]
TournamentStatus = Literal["active", "completed", "cancelled"]
RoundStatus = Literal["active", "completed"]
MatchStatus = Literal["pending", "completed", "bye"]

TOURNAMENT_FORMATS: tuple[str, ...] = ("swiss", "elimination", "arena")


def _new_id() -> str:
    return str(uuid.uuid4())


def utc_now() -> datetime:
    return datetime.now(UTC)


class Tournament(SQLModel, table=True):
    """A tournament owned by a guild channel.

    ``current_round`` is 0 until the first round starts. Status columns are
    left unindexed because they are updated in place.
    """

    __tablename__ = "tournaments"

    id: str = Field(default_factory=_new_id, primary_key=True)
    guild_id: str = Field(index=True)
    channel_id: str
    host_user_id: str
    format: str
    status: str = "active"
    length_minutes: int
    round_count: int
    current_round: int = 0
    rating_ranges: list[dict[str, int]] = Field(default_factory=list, sa_column=Column(JSON))
    tags: str = ""
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


class Participant(SQLModel, table=True):
    """A participant of one tournament. Seeds are 1-based, in join order."""

    __tablename__ = "tournament_participants"

    id: str = Field(default_factory=_new_id, primary_key=True)
    tournament_id: str = Field(index=True)
    user_id: str
    seed: int
    score: float = 0.0
    wins: int = 0
    losses: int = 0
    draws: int = 0
    eliminated: bool = False
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


class TournamentRound(SQLModel, table=True):
    """A round and the problem every match in it is played on."""

    __tablename__ = "tournament_rounds"

    id: str = Field(default_factory=_new_id, primary_key=True)
    tournament_id: str = Field(index=True)
    round_number: int
    status: str = "active"
    problem_contest_id: int
    problem_index: str
    problem_name: str
    problem_rating: int = 0
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @property
    def problem_id(self) -> str:
        return f"{self.problem_contest_id}{self.problem_index}"


class TournamentMatch(SQLModel, table=True):
    """A head-to-head match, or a bye when ``player2_id`` is None."""

    __tablename__ = "tournament_matches"

    id: str = Field(default_factory=_new_id, primary_key=True)
    tournament_id: str = Field(index=True)
    round_id: str = Field(index=True)
    match_number: int
    challenge_ref: str | None = Field(default=None, index=True)
    player1_id: str
    player2_id: str | None = None
    winner_id: str | None = None
    status: str = "pending"
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @property
    def is_bye(self) -> bool:
        return self.player2_id is None

    @property
    def is_draw(self) -> bool:
        return self.status == "completed" and self.winner_id is None and not self.is_bye
