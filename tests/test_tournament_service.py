"""Tests for the tournament service lifecycle."""

import asyncio

import pytest

from duel_tournament.core.config import EngineConfig, RatingRange
from duel_tournament.models.results import Problem
from duel_tournament.services.collaborators import (
    FakeChallengeRunner,
    FakeDuel,
    FakeProblemSelector,
)
from duel_tournament.services.outcome import ParticipantResult
from duel_tournament.services.storage import TournamentRepository, create_db_engine
from duel_tournament.services.tournament import TournamentService

GUILD = "guild-1"


@pytest.fixture
def config(tmp_path):
    """Engine config with fast retries and short swiss tournaments allowed."""
    return EngineConfig(data_dir=str(tmp_path), duel_retry_wait_seconds=0, swiss_min_rounds=1)


class BrokenRecordRepository(TournamentRepository):
    """Repository whose disk fills up when a round is recorded."""

    def __init__(self, engine, fail_from_round: int = 1):
        super().__init__(engine)
        self.fail_from_round = fail_from_round

    async def record_round(self, tournament_id, round_number, problem, dispatched):
        if round_number >= self.fail_from_round:
            raise OSError("disk full")
        return await super().record_round(tournament_id, round_number, problem, dispatched)


@pytest.fixture
def engine(config):
    engine = create_db_engine(config.get_database_url())
    yield engine
    engine.dispose()


@pytest.fixture
def repo(engine):
    return TournamentRepository(engine)


@pytest.fixture
def problems():
    return FakeProblemSelector(seed=1)


@pytest.fixture
def runner():
    return FakeChallengeRunner(seed=1)


@pytest.fixture
def service(config, repo, problems, runner):
    svc = TournamentService(config, repo, problems, runner)
    runner.subscribe(svc)
    return svc


def players(n: int) -> list[str]:
    return [f"p{i}" for i in range(1, n + 1)]


def win(winner: str, loser: str) -> list[ParticipantResult]:
    return [ParticipantResult(winner, solved_at=100), ParticipantResult(loser, solved_at=None)]


def duel_between(runner: FakeChallengeRunner, a: str, b: str) -> FakeDuel:
    return next(d for d in runner.active_duels() if set(d.participant_ids) == {a, b})


async def finish_round(runner: FakeChallengeRunner, tournament_id: str) -> None:
    """Finish every active duel with player1 solving first."""
    for duel in runner.active_duels(tournament_id):
        p1, p2 = duel.participant_ids
        await runner.finish_duel(duel.ref, win(p1, p2))


async def create(service, n=4, fmt="swiss", **kwargs):
    result = await service.create_tournament(
        guild_id=GUILD,
        channel_id="chan",
        host_user_id="p1",
        participant_ids=players(n),
        tournament_format=fmt,
        **kwargs,
    )
    return result


class TestCreateTournament:
    """Tests for creating a tournament and its first round."""

    async def test_starts_round_one(self, service, runner):
        """Test creation starts round 1 with a duel per pair."""
        result = await create(service, n=4)

        assert result.status == "started"
        assert result.round.round_number == 1
        assert result.round.match_count == 2
        assert result.round.bye_count == 0
        assert result.round.status == "active"
        assert len(runner.active_duels(result.tournament_id)) == 2
        assert await service.get_active_count() == 1

    async def test_duels_use_tournament_settings(self, service, runner):
        """Test duels get the round's problem and the configured length."""
        result = await create(service, n=2, length_minutes=60)

        duel = runner.active_duels(result.tournament_id)[0]
        assert duel.length_minutes == 60
        assert duel.problem.problem_id == result.round.problem.problem_id
        assert duel.participant_ids == ["p1", "p2"]

    async def test_default_round_count(self, service, repo):
        """Test rounds are calculated when not given."""
        result = await create(service, n=8)

        tournament = await repo.get_tournament(result.tournament_id)
        assert tournament.round_count == 3
        assert tournament.rating_ranges == [{"min": 800, "max": 3500}]

    async def test_active_tournament_blocks_second(self, service):
        """Test one active tournament per guild."""
        await create(service)

        second = await create(service)

        assert second.status == "active_exists"
        assert await service.get_active_count() == 1

    async def test_other_guild_independent(self, service):
        """Test tournaments in different guilds do not block each other."""
        await create(service)

        other = await service.create_tournament("guild-2", "chan", "x", ["x", "y"])

        assert other.status == "started"
        assert await service.get_active_count() == 2

    async def test_insufficient_participants(self, service):
        """Test a single participant cannot start a tournament."""
        result = await create(service, n=1)

        assert result.status == "insufficient_participants"
        assert await service.get_active_tournament(GUILD) is None

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"length_minutes": 45},
            {"fmt": "round-robin"},
            {"round_count": 11},
        ],
    )
    async def test_invalid_settings(self, service, kwargs):
        """Test out-of-bounds settings are reported as invalid."""
        result = await create(service, **kwargs)

        assert result.status == "invalid"
        assert result.message

    async def test_duplicate_participants(self, service):
        """Test duplicate participants are rejected."""
        result = await service.create_tournament(GUILD, "chan", "a", ["a", "b", "a"])

        assert result.status == "invalid"

    async def test_five_player_swiss_bye(self, service):
        """Test five swiss players yield two pairs and a scored bye."""
        result = await create(service, n=5)

        assert result.round.match_count == 3
        assert result.round.bye_count == 1
        standings = await service.get_standings(result.tournament_id)
        bye = next(e for e in standings if e.user_id == "p5")
        assert bye.score == 1.0
        assert (bye.wins, bye.losses, bye.draws) == (1, 0, 0)
        assert standings[0].user_id == "p5"

    async def test_problem_not_found_discards(self, config, repo, runner):
        """Test a missing problem reports an error and leaves no tournament."""
        service = TournamentService(config, repo, FakeProblemSelector(problems=[]), runner)

        result = await create(service)

        assert result.status == "error"
        assert "No unsolved problems" in result.message
        assert await service.get_active_tournament(GUILD) is None
        assert service.last_error is not None
        assert runner.call_count == 0

    async def test_problem_filters_passed_through(self, service, problems):
        """Test rating ranges, tags and participants reach the selector."""
        catalogue = [
            Problem(contest_id=1, index="A", name="Easy", rating=800, tags=["math"]),
            Problem(contest_id=1, index="B", name="Hard", rating=2400, tags=["math"]),
            Problem(contest_id=1, index="C", name="Mid dp", rating=1400, tags=["dp"]),
            Problem(contest_id=1, index="D", name="Mid math", rating=1200, tags=["math"]),
        ]
        problems.problems = catalogue
        problems.solved = {"p2": {"1A"}}

        result = await create(
            service,
            n=2,
            rating_ranges=[RatingRange(min=800, max=1500)],
            tags="math",
        )

        assert result.status == "started"
        assert "1A" in problems.last_excluded
        assert result.round.problem.problem_id == "1D"

    async def test_duel_failure_rolls_back(self, config, repo, problems):
        """Test a failed duel cancels the ones already created and persists nothing."""
        runner = FakeChallengeRunner(fail_on_calls={2})
        service = TournamentService(config, repo, problems, runner)

        result = await create(service, n=4)

        assert result.status == "error"
        assert "Failed to create duel" in result.message
        assert [d.status for d in runner.duels.values()] == ["cancelled"]
        assert await service.get_active_tournament(GUILD) is None
        assert "Failed to create duel" in service.last_error.message

    async def test_transient_failures_retried(self, config, repo, problems):
        """Test transient runner failures are retried."""
        runner = FakeChallengeRunner(transient_failures=2)
        service = TournamentService(config, repo, problems, runner)

        result = await create(service, n=2)

        assert result.status == "started"
        assert runner.call_count == 3

    async def test_transient_failures_exhausted(self, config, repo, problems):
        """Test retries stop after the configured attempts."""
        runner = FakeChallengeRunner(transient_failures=5)
        service = TournamentService(config, repo, problems, runner)

        result = await create(service, n=2)

        assert result.status == "error"
        assert runner.call_count == config.duel_retry_attempts

    async def test_record_failure_discards_tournament(self, config, engine, problems, runner):
        """Test a storage failure while recording round 1 leaves nothing behind."""
        repo = BrokenRecordRepository(engine)
        service = TournamentService(config, repo, problems, runner)

        result = await create(service, n=4)

        assert result.status == "error"
        assert "disk full" in result.message
        assert "disk full" in service.last_error.message
        assert await service.get_active_tournament(GUILD) is None
        assert all(d.status == "cancelled" for d in runner.duels.values())
        assert len(runner.duels) == 2


class TestMatchCompletion:
    """Tests for applying duel completions."""

    async def test_applies_result(self, service, runner, repo):
        """Test a completion records the winner and scores."""
        result = await create(service, n=2)
        duel = runner.active_duels()[0]

        await runner.finish_duel(duel.ref, win("p2", "p1"))

        standings = await service.get_standings(result.tournament_id)
        assert [e.user_id for e in standings] == ["p2", "p1"]
        assert standings[0].matches_played == 1
        match = await repo.get_match_by_challenge(duel.ref)
        assert (match.status, match.winner_id) == ("completed", "p2")
        current = await service.get_current_round(result.tournament_id)
        assert current.status == "completed"

    async def test_swiss_draw(self, service, runner):
        """Test a double timeout in swiss is a half-point draw."""
        result = await create(service, n=2)
        duel = runner.active_duels()[0]

        applied = await service.on_match_completed(
            duel.ref, [ParticipantResult("p1"), ParticipantResult("p2")]
        )

        assert applied.is_draw
        assert applied.winner_id is None
        standings = await service.get_standings(result.tournament_id)
        assert [e.score for e in standings] == [0.5, 0.5]
        matches = await service.list_round_matches(result.tournament_id, 1)
        assert matches[0].is_draw

    async def test_missing_player_result_counts_as_unsolved(self, service, runner):
        """Test a player absent from the results did not solve."""
        await create(service, n=2)
        duel = runner.active_duels()[0]

        applied = await service.on_match_completed(
            duel.ref, [ParticipantResult("p2", solved_at=50)]
        )

        assert applied.winner_id == "p2"

    async def test_duplicate_completion_ignored(self, service, runner):
        """Test applying the same completion twice changes nothing the second time."""
        result = await create(service, n=2)
        duel = runner.active_duels()[0]

        first = await service.on_match_completed(duel.ref, win("p1", "p2"))
        before = await service.get_standings(result.tournament_id)
        second = await service.on_match_completed(duel.ref, win("p2", "p1"))
        after = await service.get_standings(result.tournament_id)

        assert first is not None
        assert second is None
        assert before == after

    async def test_unknown_ref_ignored(self, service):
        """Test an unknown challenge reference is ignored."""
        await create(service, n=2)

        assert await service.on_match_completed("nope", win("p1", "p2")) is None

    async def test_concurrent_completions_complete_round(self, service, runner):
        """Test simultaneous completions still detect the end of the round."""
        result = await create(service, n=8)
        duels = runner.active_duels(result.tournament_id)

        await asyncio.gather(
            *(
                runner.finish_duel(d.ref, win(d.participant_ids[1], d.participant_ids[0]))
                for d in duels
            )
        )

        current = await service.get_current_round(result.tournament_id)
        assert current.status == "completed"
        assert current.completed_count == 4
        standings = await service.get_standings(result.tournament_id)
        assert sum(e.wins for e in standings) == 4
        assert sum(e.losses for e in standings) == 4

    async def test_completion_during_dispatch_is_applied(self, config, repo, problems):
        """Test a duel finishing before its round is recorded is still applied."""

        class EagerRunner(FakeChallengeRunner):
            def __init__(self):
                super().__init__()
                self.tasks = []

            async def create_duel(self, tournament_id, problem, length_minutes, participant_ids):
                ref = await super().create_duel(
                    tournament_id, problem, length_minutes, participant_ids
                )
                results = win(participant_ids[0], participant_ids[1])
                self.tasks.append(asyncio.create_task(self.finish_duel(ref, results)))
                return ref

        runner = EagerRunner()
        service = TournamentService(config, repo, problems, runner)
        runner.subscribe(service)

        result = await create(service, n=4)
        await asyncio.gather(*runner.tasks)

        current = await service.get_current_round(result.tournament_id)
        assert current.status == "completed"
        assert current.completed_count == 2

    @pytest.mark.parametrize("seed", [1, 2, 3, 4, 5, 6])
    async def test_simultaneous_completions_all_applied(self, config, repo, problems, seed):
        """Test a whole round of completions arriving at once is fully applied."""
        runner = FakeChallengeRunner(seed=seed)
        service = TournamentService(config, repo, problems, runner)
        result = await create(service, n=16)
        duels = runner.active_duels(result.tournament_id)

        applied = await asyncio.gather(
            *(service.on_match_completed(d.ref, runner.random_results(d)) for d in duels)
        )

        assert len(duels) == 8
        assert all(a is not None for a in applied)
        assert sum(a.round_completed for a in applied) == 1
        current = await service.get_current_round(result.tournament_id)
        assert current.status == "completed"
        assert current.completed_count == 8


class TestAdvanceTournament:
    """Tests for advancing rounds and completing tournaments."""

    async def test_no_active(self, service):
        """Test advancing without a tournament reports no_active."""
        assert (await service.advance_tournament(GUILD)).status == "no_active"

    async def test_round_incomplete(self, service, runner):
        """Test a pending match blocks advancement of round 2."""
        result = await create(service, n=4, round_count=3)
        await finish_round(runner, result.tournament_id)
        second = await service.advance_tournament(GUILD)
        assert second.status == "started"
        assert second.round_number == 2

        duel = runner.active_duels(result.tournament_id)[0]
        await runner.finish_duel(duel.ref, win(*duel.participant_ids))
        blocked = await service.advance_tournament(GUILD)

        assert blocked.status == "round_incomplete"
        assert blocked.round_number == 2
        summaries = await service.list_round_summaries(result.tournament_id)
        assert [s.round_number for s in summaries] == [2, 1]
        assert summaries[0].completed_count == 1

    async def test_swiss_avoids_rematch(self, service, runner):
        """Test round 2 does not repeat round 1 pairings."""
        result = await create(service, n=4, round_count=3)
        await finish_round(runner, result.tournament_id)

        await service.advance_tournament(GUILD)

        round1 = await service.list_round_matches(result.tournament_id, 1)
        round2 = await service.list_round_matches(result.tournament_id, 2)
        first = {frozenset((m.player1_id, m.player2_id)) for m in round1}
        second = {frozenset((m.player1_id, m.player2_id)) for m in round2}
        assert not first & second

    async def test_new_round_excludes_used_problems(self, service, runner, problems):
        """Test later rounds never reuse a problem."""
        result = await create(service, n=4, round_count=3)
        await finish_round(runner, result.tournament_id)

        await service.advance_tournament(GUILD)

        summaries = await service.list_round_summaries(result.tournament_id)
        assert summaries[1].problem.problem_id in problems.last_excluded
        assert summaries[0].problem.problem_id != summaries[1].problem.problem_id

    async def test_swiss_completes_after_round_count(self, service, runner):
        """Test swiss completes once round_count rounds are played."""
        result = await create(service, n=2, round_count=1)
        await finish_round(runner, result.tournament_id)

        done = await service.advance_tournament(GUILD)

        assert done.status == "completed"
        assert done.winner_id == "p1"
        assert await service.get_active_tournament(GUILD) is None
        assert (await service.advance_tournament(GUILD)).status == "no_active"

    async def test_three_player_elimination(self, service, runner):
        """Test seed 1 gets a bye and the loser of 2 vs 3 is eliminated."""
        result = await create(service, n=3, fmt="elimination")

        matches = await service.list_round_matches(result.tournament_id, 1)
        assert [(m.player1_id, m.player2_id, m.status) for m in matches] == [
            ("p2", "p3", "pending"),
            ("p1", None, "bye"),
        ]

        await runner.finish_duel(duel_between(runner, "p2", "p3").ref, win("p3", "p2"))

        standings = await service.get_standings(result.tournament_id)
        by_id = {e.user_id: e for e in standings}
        assert by_id["p2"].eliminated
        assert not by_id["p1"].eliminated
        assert not by_id["p3"].eliminated
        assert standings[-1].user_id == "p2"

    async def test_elimination_runs_to_winner(self, service, runner):
        """Test an elimination bracket completes with the last survivor."""
        result = await create(service, n=4, fmt="elimination")
        await runner.finish_duel(duel_between(runner, "p1", "p4").ref, win("p4", "p1"))
        await runner.finish_duel(duel_between(runner, "p2", "p3").ref, win("p2", "p3"))

        second = await service.advance_tournament(GUILD)
        assert second.status == "started"
        assert second.round.match_count == 1
        await runner.finish_duel(duel_between(runner, "p2", "p4").ref, win("p4", "p2"))

        done = await service.advance_tournament(GUILD)

        assert done.status == "completed"
        assert done.winner_id == "p4"
        assert done.tournament_id == result.tournament_id

    async def test_elimination_tie_goes_to_lower_seed(self, service, runner):
        """Test a double timeout in elimination eliminates the higher seed."""
        result = await create(service, n=2, fmt="elimination")
        duel = runner.active_duels()[0]

        await runner.finish_duel(duel.ref, [ParticipantResult("p1"), ParticipantResult("p2")])

        standings = await service.get_standings(result.tournament_id)
        assert [(e.user_id, e.eliminated) for e in standings] == [("p1", False), ("p2", True)]

    async def test_failed_round_keeps_state(self, service, runner):
        """Test a duel failure in a later round leaves the tournament as it was."""
        result = await create(service, n=4, round_count=3)
        await finish_round(runner, result.tournament_id)
        runner.fail_on_calls = {runner.call_count + 2}

        failed = await service.advance_tournament(GUILD)

        assert failed.status == "error"
        current = await service.get_current_round(result.tournament_id)
        assert current.round_number == 1
        assert current.status == "completed"
        assert runner.active_duels(result.tournament_id) == []

        runner.fail_on_calls = set()
        retried = await service.advance_tournament(GUILD)
        assert retried.status == "started"
        assert retried.round_number == 2

    async def test_record_failure_keeps_round(self, config, engine, problems, runner):
        """Test a storage failure while recording a later round reports an error."""
        repo = BrokenRecordRepository(engine, fail_from_round=2)
        service = TournamentService(config, repo, problems, runner)
        runner.subscribe(service)
        result = await create(service, n=4, round_count=3)
        await finish_round(runner, result.tournament_id)

        failed = await service.advance_tournament(GUILD)
        blocked = await service.start_round(result.tournament_id)

        assert failed.status == "error"
        assert blocked.status == "error"
        current = await service.get_current_round(result.tournament_id)
        assert (current.round_number, current.status) == (1, "completed")
        assert runner.active_duels(result.tournament_id) == []
        assert (await service.get_active_tournament(GUILD)).id == result.tournament_id

    async def test_start_round_requires_completed_round(self, service, runner):
        """Test start_round refuses while the current round is pending."""
        result = await create(service, n=4, round_count=3)

        blocked = await service.start_round(result.tournament_id)
        assert blocked.status == "round_incomplete"
        assert blocked.round_number == 1

        await finish_round(runner, result.tournament_id)
        started = await service.start_round(result.tournament_id)
        assert started.status == "started"
        assert started.round_number == 2

    async def test_start_round_unknown_tournament(self, service):
        """Test start_round on an unknown tournament reports no_active."""
        assert (await service.start_round("missing")).status == "no_active"


class TestCancelTournament:
    """Tests for cancellation."""

    async def test_cancels_pending_duels(self, service, runner):
        """Test cancelling cancels every outstanding duel."""
        result = await create(service, n=4)

        cancelled = await service.cancel_tournament(GUILD, cancelled_by="p1")

        assert cancelled.status == "cancelled"
        assert cancelled.cancelled_duels == 2
        assert all(d.status == "cancelled" for d in runner.duels.values())
        assert all(d.cancelled_by == "p1" for d in runner.duels.values())
        assert await service.get_active_tournament(GUILD) is None
        assert cancelled.tournament_id == result.tournament_id

    async def test_nothing_to_cancel(self, service):
        """Test cancelling twice reports nothing to cancel."""
        await create(service, n=2)
        await service.cancel_tournament(GUILD)

        again = await service.cancel_tournament(GUILD)

        assert again.status == "nothing_to_cancel"

    async def test_late_completion_ignored(self, service, runner, repo):
        """Test a duel finishing after cancellation does not change state."""
        result = await create(service, n=2)
        duel = runner.active_duels()[0]
        await service.cancel_tournament(GUILD)

        applied = await service.on_match_completed(duel.ref, win("p1", "p2"))

        assert applied is None
        standings = await service.get_standings(result.tournament_id)
        assert all(e.score == 0 for e in standings)
        tournament = await repo.get_tournament(result.tournament_id)
        assert tournament.status == "cancelled"

    async def test_cancel_failure_still_cancels(self, service, runner):
        """Test a runner failure while cancelling is logged and skipped."""
        await create(service, n=4)

        async def broken_cancel(ref, cancelled_by=None):
            raise RuntimeError("runner offline")

        runner.cancel_duel = broken_cancel

        cancelled = await service.cancel_tournament(GUILD)

        assert cancelled.status == "cancelled"
        assert cancelled.cancelled_duels == 0
        assert "runner offline" in service.last_error.message
