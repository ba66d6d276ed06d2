"""Custom exceptions for configuration and tournament lifecycle errors."""

from __future__ import annotations


class ConfigurationError(Exception):
    """Base exception for configuration errors with optional suggestions."""

    def __init__(self, message: str, suggestion: str | None = None) -> None:
        self.message = message
        self.suggestion = suggestion
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        msg = f"[Configuration Error] {self.message}"
        if self.suggestion:
            msg += f"\n[Suggestion] {self.suggestion}"
        return msg


class ValidationError(ConfigurationError):
    """Error when configuration validation fails."""

    def __init__(self, field: str, reason: str) -> None:
        super().__init__(
            f"Invalid value for '{field}'",
            f"{reason}",
        )


class TournamentError(Exception):
    """Base exception for tournament operations.

    These never escape a public service operation: the service turns them
    into a typed result carrying ``message``.
    """

    def __init__(self, message: str, suggestion: str | None = None) -> None:
        self.message = message
        self.suggestion = suggestion
        super().__init__(message)


class ActiveTournamentExistsError(TournamentError):
    """A guild already has an active tournament."""

    def __init__(self, guild_id: str) -> None:
        self.guild_id = guild_id
        super().__init__(
            "An active tournament already exists for this server.",
            "Finish or cancel the running tournament first.",
        )


class LobbyExistsError(TournamentError):
    """A guild already has an open lobby."""

    def __init__(self, guild_id: str) -> None:
        self.guild_id = guild_id
        super().__init__(
            "A tournament lobby is already open for this server.",
            "Start or cancel the open lobby first.",
        )


class InsufficientParticipantsError(TournamentError):
    """Fewer than two active participants remain; a round cannot start."""

    def __init__(self, count: int) -> None:
        self.count = count
        super().__init__(f"Not enough participants to start a round ({count} active).")


class RoundIncompleteError(TournamentError):
    """The current round still has pending matches."""

    def __init__(self, round_number: int) -> None:
        self.round_number = round_number
        super().__init__(
            f"Round {round_number} still has pending matches.",
            "Wait for the remaining matches to finish and try again.",
        )


class ProblemNotFoundError(TournamentError):
    """The problem selector found no eligible problem for the round."""

    def __init__(self) -> None:
        super().__init__(
            "No unsolved problems found for this tournament.",
            "Widen the rating ranges or relax the tag filters.",
        )


class DuelCreationError(TournamentError):
    """The challenge runner could not create a duel for a pairing."""

    def __init__(self, player1_id: str, player2_id: str, reason: str) -> None:
        self.player1_id = player1_id
        self.player2_id = player2_id
        super().__init__(f"Failed to create duel for {player1_id} vs {player2_id}: {reason}")


class ChallengeUnavailableError(TournamentError):
    """Transient challenge runner failure; the call may be retried."""


class InvalidSettingsError(TournamentError):
    """Tournament or lobby settings are out of the allowed bounds."""

    def __init__(self, field: str, reason: str) -> None:
        self.field = field
        super().__init__(f"Invalid value for '{field}': {reason}")
