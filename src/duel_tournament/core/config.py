"""Configuration schemas and loading for the tournament engine."""

from __future__ import annotations

import math
from pathlib import Path

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator

from duel_tournament.core.errors import ValidationError
from duel_tournament.models.tournament import TournamentFormat

DEFAULT_DB_FILENAME = "tournament.duckdb"


class RatingRange(BaseModel):
    """Inclusive problem rating band passed through to the problem selector."""

    min: int = Field(ge=0)
    max: int = Field(ge=0)

    @model_validator(mode="after")
    def validate_bounds(self) -> RatingRange:
        if self.min > self.max:
            msg = f"Rating range minimum {self.min} exceeds maximum {self.max}"
            raise ValueError(msg)
        return self


class EngineConfig(BaseModel):
    """Engine-wide settings.

    Attributes:
        database_url: SQLAlchemy URL. If None, a DuckDB file in ``data_dir``.
        data_dir: Directory for the default database file.
        allowed_lengths: Match lengths (minutes) a host may choose.
        default_length_minutes: Match length used when none is given.
        min_participants: Smallest field that may start a tournament.
        max_participants: Hard cap on lobby size.
        default_max_participants: Lobby cap used when none is given.
        swiss_min_rounds: Lower bound for auto-calculated swiss rounds.
        swiss_max_rounds: Upper bound for swiss rounds.
        default_rating_range: Problem rating band used when none is given.
        duel_retry_attempts: Attempts per duel creation on transient failures.
        duel_retry_wait_seconds: Base backoff between duel creation attempts.
        history_page_size: Entries per history page.
        seed: Seed for dry-run collaborators.
    """

    database_url: str | None = None
    data_dir: str = "./data"
    allowed_lengths: list[int] = Field(default_factory=lambda: [40, 60, 80], min_length=1)
    default_length_minutes: int = 40
    min_participants: int = Field(default=2, ge=2)
    max_participants: int = Field(default=64, ge=2)
    default_max_participants: int = Field(default=24, ge=2)
    swiss_min_rounds: int = Field(default=3, ge=1)
    swiss_max_rounds: int = Field(default=10, ge=1)
    default_rating_range: RatingRange = Field(
        default_factory=lambda: RatingRange(min=800, max=3500)
    )
    duel_retry_attempts: int = Field(default=3, ge=1)
    duel_retry_wait_seconds: float = Field(default=1.0, ge=0)
    history_page_size: int = Field(default=5, ge=1)
    seed: int = 42

    @field_validator("allowed_lengths")
    @classmethod
    def validate_lengths(cls, v: list[int]) -> list[int]:
        for length in v:
            if length <= 0:
                msg = "Match lengths must be positive"
                raise ValueError(msg)
        return v

    @model_validator(mode="after")
    def validate_consistency(self) -> EngineConfig:
        if self.default_length_minutes not in self.allowed_lengths:
            msg = (
                f"default_length_minutes {self.default_length_minutes} "
                f"is not one of {self.allowed_lengths}"
            )
            raise ValueError(msg)
        if self.swiss_min_rounds > self.swiss_max_rounds:
            msg = "swiss_min_rounds cannot exceed swiss_max_rounds"
            raise ValueError(msg)
        if not self.min_participants <= self.default_max_participants <= self.max_participants:
            msg = "default_max_participants must lie between min and max participants"
            raise ValueError(msg)
        return self

    def get_database_url(self) -> str:
        """Get the configured database URL or the default DuckDB file."""
        if self.database_url:
            return self.database_url
        return f"duckdb:///{Path(self.data_dir) / DEFAULT_DB_FILENAME}"


def load_config(path: str | Path) -> EngineConfig:
    """Load and validate configuration from YAML file.

    Args:
        path: Path to YAML configuration file.

    Returns:
        Validated EngineConfig instance.

    Raises:
        FileNotFoundError: If config file doesn't exist.
        ValidationError: If the file is not a mapping.
        pydantic.ValidationError: If a value is invalid.
    """
    config_path = Path(path)
    if not config_path.exists():
        msg = f"Configuration file not found: {config_path}"
        raise FileNotFoundError(msg)

    with config_path.open() as f:
        data = yaml.safe_load(f) or {}

    if not isinstance(data, dict):
        raise ValidationError("config", "Top-level YAML must be a mapping of settings")

    return EngineConfig.model_validate(data)


def calculate_nr_rounds(
    tournament_format: TournamentFormat,
    num_participants: int,
    min_rounds: int = 3,
    max_rounds: int = 10,
) -> int:
    """Calculate the default number of rounds for a field.

    Swiss and arena use ceil(log2(N)) bounded to [min_rounds, max_rounds].
    Elimination needs ceil(log2(N)) rounds to reduce the field to one.

    Args:
        tournament_format: Tournament format.
        num_participants: Number of participants in the tournament.
        min_rounds: Lower bound for swiss/arena.
        max_rounds: Upper bound for swiss/arena.

    Returns:
        Recommended number of rounds (at least 1).
    """
    if num_participants <= 1:
        return 1
    log_rounds = math.ceil(math.log2(num_participants))
    if tournament_format == "elimination":
        return max(1, log_rounds)
    return min(max_rounds, max(min_rounds, log_rounds))
