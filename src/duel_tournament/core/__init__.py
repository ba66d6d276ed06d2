"""Core configuration and utilities for Duel Tournament."""

from duel_tournament.core.config import (
    DEFAULT_DB_FILENAME,
    EngineConfig,
    RatingRange,
    calculate_nr_rounds,
    load_config,
)
from duel_tournament.core.errors import (
    ActiveTournamentExistsError,
    ChallengeUnavailableError,
    ConfigurationError,
    DuelCreationError,
    InsufficientParticipantsError,
    InvalidSettingsError,
    LobbyExistsError,
    ProblemNotFoundError,
    RoundIncompleteError,
    TournamentError,
    ValidationError,
)
from duel_tournament.core.progress import TournamentProgress

__all__ = [
    "DEFAULT_DB_FILENAME",
    "EngineConfig",
    "RatingRange",
    "TournamentProgress",
    "calculate_nr_rounds",
    "load_config",
    "ActiveTournamentExistsError",
    "ChallengeUnavailableError",
    "ConfigurationError",
    "DuelCreationError",
    "InsufficientParticipantsError",
    "InvalidSettingsError",
    "LobbyExistsError",
    "ProblemNotFoundError",
    "RoundIncompleteError",
    "TournamentError",
    "ValidationError",
]
