"""Database persistence for tournament lobbies."""

from __future__ import annotations

from typing import TYPE_CHECKING, Literal

from sqlmodel import Session, col, func, select

from duel_tournament.core.errors import LobbyExistsError
from duel_tournament.models.lobby import Lobby, LobbyParticipant

from .repository import AsyncRepository

if TYPE_CHECKING:
    from sqlalchemy import Engine

JoinStatus = Literal["joined", "already_joined", "full", "no_lobby"]


def _participant_ids(session: Session, lobby_id: str) -> list[str]:
    statement = (
        select(LobbyParticipant.user_id)
        .where(LobbyParticipant.lobby_id == lobby_id)
        .order_by(col(LobbyParticipant.position))
    )
    return list(session.exec(statement).all())


class LobbyRepository(AsyncRepository):
    """Persist lobbies and their sign-ups."""

    def __init__(self, engine: Engine) -> None:
        super().__init__(engine)

    async def get_lobby(self, guild_id: str) -> Lobby | None:
        def _get(session: Session) -> Lobby | None:
            return session.exec(select(Lobby).where(Lobby.guild_id == guild_id)).first()

        return await self._run_session(_get)

    async def create_lobby(self, lobby: Lobby) -> Lobby:
        """Insert a lobby with its host as the first participant.

        Raises:
            LobbyExistsError: If the guild already has a lobby.
        """

        def _create(session: Session) -> Lobby:
            existing = session.exec(select(Lobby).where(Lobby.guild_id == lobby.guild_id)).first()
            if existing is not None:
                raise LobbyExistsError(lobby.guild_id)
            session.add(lobby)
            session.add(LobbyParticipant(lobby_id=lobby.id, user_id=lobby.host_user_id, position=1))
            session.commit()
            session.refresh(lobby)
            return lobby

        return await self._run_session(_create)

    async def list_participants(self, lobby_id: str) -> list[str]:
        """User IDs in join order."""
        return await self._run_session(lambda session: _participant_ids(session, lobby_id))

    async def add_participant(self, lobby_id: str, user_id: str) -> JoinStatus:
        def _add(session: Session) -> JoinStatus:
            lobby = session.get(Lobby, lobby_id)
            if lobby is None:
                return "no_lobby"
            members = _participant_ids(session, lobby_id)
            if user_id in members:
                return "already_joined"
            if len(members) >= lobby.max_participants:
                return "full"
            position_stmt = select(func.max(LobbyParticipant.position)).where(
                LobbyParticipant.lobby_id == lobby_id
            )
            last_position = session.exec(position_stmt).one() or 0
            session.add(
                LobbyParticipant(lobby_id=lobby_id, user_id=user_id, position=last_position + 1)
            )
            session.commit()
            return "joined"

        return await self._run_session(_add)

    async def remove_participant(self, lobby_id: str, user_id: str) -> bool:
        def _remove(session: Session) -> bool:
            statement = select(LobbyParticipant).where(
                LobbyParticipant.lobby_id == lobby_id,
                LobbyParticipant.user_id == user_id,
            )
            entry = session.exec(statement).first()
            if entry is None:
                return False
            session.delete(entry)
            session.commit()
            return True

        return await self._run_session(_remove)

    async def delete_lobby(self, lobby_id: str) -> bool:
        """Delete a lobby and its sign-ups. Returns False if it did not exist."""

        def _delete(session: Session) -> bool:
            lobby = session.get(Lobby, lobby_id)
            if lobby is None:
                return False
            members = select(LobbyParticipant).where(LobbyParticipant.lobby_id == lobby_id)
            for entry in session.exec(members).all():
                session.delete(entry)
            session.delete(lobby)
            session.commit()
            return True

        return await self._run_session(_delete)
