"""Tests for history pages, details and recaps."""

import pytest

from duel_tournament.core.config import EngineConfig
from duel_tournament.services.collaborators import FakeChallengeRunner, FakeProblemSelector
from duel_tournament.services.history import HistoryService
from duel_tournament.services.outcome import ParticipantResult
from duel_tournament.services.storage import TournamentRepository, create_db_engine
from duel_tournament.services.tournament import TournamentService

GUILD = "guild-1"


@pytest.fixture
def config(tmp_path):
    return EngineConfig(
        data_dir=str(tmp_path), duel_retry_wait_seconds=0, swiss_min_rounds=1, history_page_size=2
    )


@pytest.fixture
def repo(config):
    engine = create_db_engine(config.get_database_url())
    yield TournamentRepository(engine)
    engine.dispose()


@pytest.fixture
def runner():
    return FakeChallengeRunner()


@pytest.fixture
def service(config, repo, runner):
    svc = TournamentService(config, repo, FakeProblemSelector(), runner)
    runner.subscribe(svc)
    return svc


@pytest.fixture
def history(config, repo):
    return HistoryService(config, repo)


async def play_swiss(service, runner, players, rounds=1) -> str:
    """Play a swiss tournament where the higher-ranked player always wins."""
    result = await service.create_tournament(
        GUILD, "chan", players[0], players, round_count=rounds
    )
    while True:
        for duel in runner.active_duels(result.tournament_id):
            p1, p2 = duel.participant_ids
            await runner.finish_duel(
                duel.ref, [ParticipantResult(p1, solved_at=10), ParticipantResult(p2)]
            )
        advanced = await service.advance_tournament(GUILD)
        if advanced.status == "completed":
            return result.tournament_id


class TestHistoryPage:
    """Tests for paginated history."""

    async def test_empty(self, history):
        """Test a guild without finished tournaments."""
        page = await history.get_history_page(GUILD)

        assert page.total == 0
        assert page.entries == []

    async def test_pages_newest_first(self, history, service, runner):
        """Test pagination and the winner of completed tournaments."""
        first = await play_swiss(service, runner, ["a", "b"])
        second = await play_swiss(service, runner, ["c", "d", "e"])
        await service.create_tournament(GUILD, "chan", "x", ["x", "y"])
        await service.cancel_tournament(GUILD)

        page1 = await history.get_history_page(GUILD)
        page2 = await history.get_history_page(GUILD, page=2)

        assert page1.total == 3
        assert [e.status for e in page1.entries] == ["cancelled", "completed"]
        assert page1.entries[0].winner_id is None
        assert page1.entries[1].id == second
        assert page1.entries[1].winner_id == "c"
        assert page1.entries[1].participant_count == 3
        assert [e.id for e in page2.entries] == [first]
        assert page2.entries[0].winner_id == "a"

    async def test_page_below_one(self, history, service, runner):
        """Test page numbers below 1 show the first page."""
        await play_swiss(service, runner, ["a", "b"])

        page = await history.get_history_page(GUILD, page=0, page_size=5)

        assert len(page.entries) == 1

    async def test_active_not_listed(self, history, service):
        """Test running tournaments are not history."""
        await service.create_tournament(GUILD, "chan", "a", ["a", "b"])

        assert (await history.get_history_page(GUILD)).total == 0


class TestHistoryDetail:
    """Tests for detail and recap views."""

    async def test_detail(self, history, service, runner):
        """Test detail limits rounds and standings."""
        players = [f"p{i}" for i in range(1, 9)]
        tid = await play_swiss(service, runner, players, rounds=4)

        detail = await history.get_history_detail(GUILD, tid, round_limit=3, standings_limit=5)

        assert detail.entry.winner_id == detail.standings[0].user_id
        assert len(detail.standings) == 5
        assert [r.round_number for r in detail.rounds] == [4, 3, 2]
        assert all(r.status == "completed" for r in detail.rounds)
        assert detail.host_user_id == "p1"

    async def test_recap(self, history, service, runner):
        """Test recap lists every round with its matches."""
        tid = await play_swiss(service, runner, ["a", "b", "c"], rounds=2)

        recap = await history.get_recap(GUILD, tid)

        assert [r.round_number for r in recap.rounds] == [1, 2]
        assert len(recap.standings) == 3
        for round_ in recap.rounds:
            assert [m.match_number for m in round_.matches] == [1, 2]
            assert round_.matches[-1].status == "bye"

    async def test_unknown_or_other_guild(self, history, service, runner):
        """Test lookups are scoped to finished tournaments of the guild."""
        tid = await play_swiss(service, runner, ["a", "b"])

        assert await history.get_history_detail("other", tid) is None
        assert await history.get_recap(GUILD, "missing") is None

    async def test_active_has_no_detail(self, history, service):
        """Test a running tournament has no history detail."""
        result = await service.create_tournament(GUILD, "chan", "a", ["a", "b"])

        assert await history.get_history_detail(GUILD, result.tournament_id) is None
