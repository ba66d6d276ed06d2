"""Dry-run simulation of a full tournament against fake collaborators."""

from __future__ import annotations

import asyncio
from collections.abc import Sequence

import structlog
from pydantic import BaseModel

from duel_tournament.core.config import EngineConfig
from duel_tournament.core.errors import TournamentError
from duel_tournament.core.progress import TournamentProgress
from duel_tournament.models.results import StandingsEntry
from duel_tournament.services.collaborators import FakeChallengeRunner, FakeProblemSelector
from duel_tournament.services.storage import TournamentRepository, create_db_engine
from duel_tournament.services.tournament import TournamentService

logger = structlog.get_logger()

SIMULATION_GUILD = "dry-run"


class SimulationResult(BaseModel):
    tournament_id: str
    tournament_format: str
    rounds_played: int
    winner_id: str | None
    standings: list[StandingsEntry]


class TournamentSimulation:
    """Runs a tournament to completion with seeded fake problems and duels.

    Every duel of a round is finished concurrently, then the tournament is
    advanced, until it completes.
    """

    def __init__(
        self,
        config: EngineConfig,
        repository: TournamentRepository,
        solve_probability: float = 0.7,
        progress: TournamentProgress | None = None,
    ) -> None:
        """Initialize the simulation.

        Args:
            config: Engine configuration; ``seed`` drives the fakes.
            repository: Tournament persistence.
            solve_probability: Chance a player solves within the duel window.
            progress: Optional progress display.
        """
        self.config = config
        self.problems = FakeProblemSelector(seed=config.seed)
        self.runner = FakeChallengeRunner(seed=config.seed, solve_probability=solve_probability)
        self.service = TournamentService(config, repository, self.problems, self.runner)
        self.runner.subscribe(self.service)
        self.progress = progress or TournamentProgress(enabled=False)

    async def run(
        self,
        participant_ids: Sequence[str],
        tournament_format: str = "swiss",
        rounds: int | None = None,
    ) -> SimulationResult:
        """Run one tournament from creation to completion.

        Raises:
            TournamentError: If the tournament cannot be created or a round
                cannot be started.
        """
        logger.info(
            "simulation_start",
            format=tournament_format,
            participants=len(participant_ids),
            seed=self.config.seed,
        )
        started = await self.service.create_tournament(
            guild_id=SIMULATION_GUILD,
            channel_id=SIMULATION_GUILD,
            host_user_id=participant_ids[0] if participant_ids else "host",
            participant_ids=participant_ids,
            tournament_format=tournament_format,
            round_count=rounds,
        )
        if started.status != "started" or started.tournament_id is None:
            raise TournamentError(started.message or f"Tournament not started: {started.status}")

        tournament_id = started.tournament_id
        tournament = await self.service.repository.get_tournament(tournament_id)
        total_rounds = tournament.round_count if tournament else 1

        winner_id = None
        rounds_played = 1
        with self.progress.track(total_rounds, description="Simulating rounds") as advance:
            while True:
                await self._finish_round(tournament_id)
                advance(f"round {rounds_played}")

                result = await self.service.advance_tournament(SIMULATION_GUILD)
                if result.status == "completed":
                    winner_id = result.winner_id
                    break
                if result.status != "started":
                    raise TournamentError(result.message or f"Advance failed: {result.status}")
                rounds_played += 1

        standings = await self.service.get_standings(tournament_id)
        logger.info(
            "simulation_complete",
            tournament_id=tournament_id,
            rounds=rounds_played,
            winner=winner_id,
        )
        return SimulationResult(
            tournament_id=tournament_id,
            tournament_format=tournament_format,
            rounds_played=rounds_played,
            winner_id=winner_id,
            standings=standings,
        )

    async def _finish_round(self, tournament_id: str) -> None:
        duels = self.runner.active_duels(tournament_id)
        await asyncio.gather(*(self.runner.finish_duel(d.ref) for d in duels))


def make_participants(count: int) -> list[str]:
    width = max(2, len(str(count)))
    return [f"player-{i:0{width}d}" for i in range(1, count + 1)]


async def run_simulation(
    config: EngineConfig,
    participants: int | Sequence[str] = 8,
    tournament_format: str = "swiss",
    rounds: int | None = None,
    show_progress: bool = False,
) -> SimulationResult:
    """Convenience function to simulate a complete tournament.

    Args:
        config: Engine configuration (database location and seed).
        participants: Participant IDs in seed order, or how many to generate.
        tournament_format: One of swiss, elimination, arena.
        rounds: Rounds for swiss/arena. Calculated from the field if None.
        show_progress: Render a rich progress bar.

    Returns:
        SimulationResult with final standings and winner.
    """
    participant_ids = (
        make_participants(participants) if isinstance(participants, int) else list(participants)
    )
    if len(participant_ids) < 1:
        msg = "participants must be greater than 0"
        raise ValueError(msg)

    engine = create_db_engine(config.get_database_url())
    try:
        simulation = TournamentSimulation(
            config,
            TournamentRepository(engine),
            progress=TournamentProgress(enabled=show_progress),
        )
        return await simulation.run(participant_ids, tournament_format, rounds)
    finally:
        engine.dispose()
