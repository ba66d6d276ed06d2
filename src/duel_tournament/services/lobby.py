"""Pre-tournament lobbies: sign-ups that turn into a seeded tournament."""

from __future__ import annotations

import asyncio
from collections.abc import Sequence

import structlog

from duel_tournament.core.config import EngineConfig, RatingRange
from duel_tournament.core.errors import (
    ActiveTournamentExistsError,
    InsufficientParticipantsError,
    InvalidSettingsError,
    LobbyExistsError,
)
from duel_tournament.models.lobby import Lobby
from duel_tournament.models.results import LobbyInfo, LobbyResult, StartResult
from duel_tournament.models.tournament import TOURNAMENT_FORMATS
from duel_tournament.services.storage import LobbyRepository
from duel_tournament.services.tournament import TournamentService

logger = structlog.get_logger()


def _lobby_info(lobby: Lobby, participants: list[str]) -> LobbyInfo:
    return LobbyInfo(
        id=lobby.id,
        guild_id=lobby.guild_id,
        channel_id=lobby.channel_id,
        host_user_id=lobby.host_user_id,
        format=lobby.format,
        length_minutes=lobby.length_minutes,
        max_participants=lobby.max_participants,
        rating_ranges=lobby.rating_ranges,
        tags=lobby.tags,
        swiss_rounds=lobby.swiss_rounds,
        participants=participants,
    )


class LobbyService:
    """Manages one open lobby per guild and starts tournaments from it."""

    def __init__(
        self,
        config: EngineConfig,
        repository: LobbyRepository,
        tournaments: TournamentService,
    ) -> None:
        self.config = config
        self.repository = repository
        self.tournaments = tournaments
        self._locks: dict[str, asyncio.Lock] = {}

    def _lock(self, guild_id: str) -> asyncio.Lock:
        return self._locks.setdefault(guild_id, asyncio.Lock())

    async def get_lobby(self, guild_id: str) -> LobbyInfo | None:
        lobby = await self.repository.get_lobby(guild_id)
        if lobby is None:
            return None
        return _lobby_info(lobby, await self.repository.list_participants(lobby.id))

    async def list_lobby_participants(self, guild_id: str) -> list[str]:
        """Participants in join order; empty when there is no lobby."""
        lobby = await self.repository.get_lobby(guild_id)
        if lobby is None:
            return []
        return await self.repository.list_participants(lobby.id)

    async def create_lobby(
        self,
        guild_id: str,
        channel_id: str,
        host_user_id: str,
        tournament_format: str = "swiss",
        length_minutes: int | None = None,
        max_participants: int | None = None,
        rating_ranges: Sequence[RatingRange] | None = None,
        tags: str = "",
        swiss_rounds: int | None = None,
    ) -> LobbyResult:
        """Open a lobby; the host joins it as the first participant."""
        cfg = self.config
        length = length_minutes if length_minutes is not None else cfg.default_length_minutes
        capacity = max_participants if max_participants is not None else cfg.default_max_participants
        try:
            self._validate(tournament_format, length, capacity, swiss_rounds)
        except InvalidSettingsError as e:
            return LobbyResult(status="invalid", message=e.message)

        ranges = list(rating_ranges) if rating_ranges else [cfg.default_rating_range]

        async with self._lock(guild_id):
            if await self.tournaments.get_active_tournament(guild_id) is not None:
                error = ActiveTournamentExistsError(guild_id)
                return LobbyResult(status="active_exists", message=error.message)
            try:
                lobby = await self.repository.create_lobby(
                    Lobby(
                        guild_id=guild_id,
                        channel_id=channel_id,
                        host_user_id=host_user_id,
                        format=tournament_format,
                        length_minutes=length,
                        max_participants=capacity,
                        rating_ranges=[r.model_dump() for r in ranges],
                        tags=tags,
                        swiss_rounds=swiss_rounds if tournament_format != "elimination" else None,
                    )
                )
            except LobbyExistsError as e:
                return LobbyResult(status="lobby_exists", message=e.message)

        logger.info("lobby_created", guild_id=guild_id, lobby_id=lobby.id, format=tournament_format)
        return LobbyResult(status="created", lobby=_lobby_info(lobby, [host_user_id]))

    def _validate(
        self,
        tournament_format: str,
        length_minutes: int,
        max_participants: int,
        swiss_rounds: int | None,
    ) -> None:
        cfg = self.config
        if tournament_format not in TOURNAMENT_FORMATS:
            raise InvalidSettingsError("format", f"must be one of {', '.join(TOURNAMENT_FORMATS)}")
        if length_minutes not in cfg.allowed_lengths:
            raise InvalidSettingsError("length_minutes", f"must be one of {cfg.allowed_lengths}")
        if not cfg.min_participants <= max_participants <= cfg.max_participants:
            raise InvalidSettingsError(
                "max_participants",
                f"must be between {cfg.min_participants} and {cfg.max_participants}",
            )
        if swiss_rounds is not None and not (
            cfg.swiss_min_rounds <= swiss_rounds <= cfg.swiss_max_rounds
        ):
            raise InvalidSettingsError(
                "swiss_rounds",
                f"must be between {cfg.swiss_min_rounds} and {cfg.swiss_max_rounds}",
            )

    async def join_lobby(self, guild_id: str, user_id: str) -> LobbyResult:
        async with self._lock(guild_id):
            lobby = await self.repository.get_lobby(guild_id)
            if lobby is None:
                return LobbyResult(status="no_lobby")
            status = await self.repository.add_participant(lobby.id, user_id)
            participants = await self.repository.list_participants(lobby.id)

        if status == "joined":
            logger.info("lobby_joined", guild_id=guild_id, user_id=user_id)
        return LobbyResult(status=status, lobby=_lobby_info(lobby, participants))

    async def leave_lobby(self, guild_id: str, user_id: str) -> LobbyResult:
        async with self._lock(guild_id):
            lobby = await self.repository.get_lobby(guild_id)
            if lobby is None:
                return LobbyResult(status="no_lobby")
            removed = await self.repository.remove_participant(lobby.id, user_id)
            participants = await self.repository.list_participants(lobby.id)

        return LobbyResult(
            status="left" if removed else "not_joined",
            lobby=_lobby_info(lobby, participants),
        )

    async def cancel_lobby(self, guild_id: str) -> bool:
        """Close the guild's lobby. Returns False if there was none."""
        async with self._lock(guild_id):
            lobby = await self.repository.get_lobby(guild_id)
            if lobby is None:
                return False
            deleted = await self.repository.delete_lobby(lobby.id)

        if deleted:
            logger.info("lobby_cancelled", guild_id=guild_id, lobby_id=lobby.id)
        return deleted

    async def start_lobby(self, guild_id: str) -> StartResult:
        """Create a tournament from the lobby, seeded in join order.

        The lobby is removed only once the tournament has started.
        """
        async with self._lock(guild_id):
            lobby = await self.repository.get_lobby(guild_id)
            if lobby is None:
                return StartResult(status="no_lobby")

            participants = await self.repository.list_participants(lobby.id)
            if len(participants) < self.config.min_participants:
                error = InsufficientParticipantsError(len(participants))
                return StartResult(status="insufficient_participants", message=error.message)

            result = await self.tournaments.create_tournament(
                guild_id=guild_id,
                channel_id=lobby.channel_id,
                host_user_id=lobby.host_user_id,
                participant_ids=participants,
                tournament_format=lobby.format,
                length_minutes=lobby.length_minutes,
                round_count=lobby.swiss_rounds,
                rating_ranges=[RatingRange.model_validate(r) for r in lobby.rating_ranges],
                tags=lobby.tags,
            )
            if result.status == "started":
                await self.repository.delete_lobby(lobby.id)
                logger.info(
                    "lobby_started",
                    guild_id=guild_id,
                    lobby_id=lobby.id,
                    tournament_id=result.tournament_id,
                )

        return result
