from .database import create_db_engine
from .lobby_repository import LobbyRepository
from .tournament_repository import TournamentRepository

__all__ = ["LobbyRepository", "TournamentRepository", "create_db_engine"]
