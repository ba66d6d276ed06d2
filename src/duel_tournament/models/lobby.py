"""Pre-tournament lobby tables."""

import uuid
from datetime import UTC, datetime

from sqlalchemy import Column
from sqlmodel import JSON, Field, SQLModel


class Lobby(SQLModel, table=True):
    """An open sign-up for a guild's next tournament."""

    __tablename__ = "tournament_lobbies"

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    guild_id: str = Field(index=True)
    channel_id: str
    host_user_id: str
    format: str
    length_minutes: int
    max_participants: int
    rating_ranges: list[dict[str, int]] = Field(default_factory=list, sa_column=Column(JSON))
    tags: str = ""
    swiss_rounds: int | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class LobbyParticipant(SQLModel, table=True):
    """A user signed up to a lobby; ``position`` preserves join order."""

    __tablename__ = "tournament_lobby_participants"

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    lobby_id: str = Field(index=True)
    user_id: str
    position: int
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
