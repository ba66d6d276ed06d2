"""Read models for finished tournaments: history pages, details and recaps."""

from __future__ import annotations

from collections import defaultdict

from duel_tournament.core.config import EngineConfig
from duel_tournament.models.results import (
    HistoryDetail,
    HistoryEntry,
    HistoryPage,
    Recap,
    RecapRound,
    StandingsEntry,
)
from duel_tournament.models.tournament import Tournament, TournamentMatch
from duel_tournament.services.standings import compute_standings, select_winner
from duel_tournament.services.storage import TournamentRepository
from duel_tournament.services.tournament import round_problem, summarize_match, summarize_round


class HistoryService:
    """Queries over completed and cancelled tournaments of a guild."""

    def __init__(self, config: EngineConfig, repository: TournamentRepository) -> None:
        self.config = config
        self.repository = repository

    async def get_history_page(
        self, guild_id: str, page: int = 1, page_size: int | None = None
    ) -> HistoryPage:
        """Finished tournaments, newest first.

        Args:
            guild_id: Guild to list.
            page: 1-based page number; values below 1 are treated as 1.
            page_size: Entries per page. Defaults to ``history_page_size``.

        Returns:
            HistoryPage with the total count of finished tournaments.
        """
        size = page_size or self.config.history_page_size
        page = max(1, page)
        total = await self.repository.count_finished(guild_id)
        tournaments = await self.repository.list_finished(guild_id, size, (page - 1) * size)
        counts = await self.repository.participant_counts([t.id for t in tournaments])

        entries = []
        for tournament in tournaments:
            winner_id = None
            if tournament.status == "completed":
                standings, _ = await self._standings(tournament)
                winner_id = select_winner(standings, tournament.format)
            entries.append(_history_entry(tournament, counts.get(tournament.id, 0), winner_id))
        return HistoryPage(total=total, entries=entries)

    async def get_history_detail(
        self,
        guild_id: str,
        tournament_id: str,
        round_limit: int = 3,
        standings_limit: int = 5,
    ) -> HistoryDetail | None:
        tournament = await self.repository.get_finished(guild_id, tournament_id)
        if tournament is None:
            return None
        standings, matches = await self._standings(tournament)
        rounds = await self.repository.list_rounds(tournament.id, limit=round_limit, newest_first=True)
        return HistoryDetail(
            entry=self._entry_from_standings(tournament, standings),
            channel_id=tournament.channel_id,
            host_user_id=tournament.host_user_id,
            standings=standings[:standings_limit],
            rounds=[summarize_round(r, matches) for r in rounds],
        )

    async def get_recap(self, guild_id: str, tournament_id: str) -> Recap | None:
        """Full recap: every standing and every round with its matches."""
        tournament = await self.repository.get_finished(guild_id, tournament_id)
        if tournament is None:
            return None
        standings, matches = await self._standings(tournament)
        rounds = await self.repository.list_rounds(tournament.id)

        by_round: dict[str, list[TournamentMatch]] = defaultdict(list)
        for match in matches:
            by_round[match.round_id].append(match)

        return Recap(
            entry=self._entry_from_standings(tournament, standings),
            channel_id=tournament.channel_id,
            host_user_id=tournament.host_user_id,
            standings=standings,
            rounds=[
                RecapRound(
                    round_number=r.round_number,
                    status=r.status,
                    problem=round_problem(r),
                    matches=[
                        summarize_match(m)
                        for m in sorted(by_round[r.id], key=lambda m: m.match_number)
                    ],
                )
                for r in rounds
            ],
        )

    async def _standings(
        self, tournament: Tournament
    ) -> tuple[list[StandingsEntry], list[TournamentMatch]]:
        participants = await self.repository.list_participants(tournament.id)
        matches = await self.repository.list_matches(tournament.id)
        return compute_standings(participants, matches, tournament.format), matches

    @staticmethod
    def _entry_from_standings(
        tournament: Tournament, standings: list[StandingsEntry]
    ) -> HistoryEntry:
        winner_id = None
        if tournament.status == "completed":
            winner_id = select_winner(standings, tournament.format)
        return _history_entry(tournament, len(standings), winner_id)


def _history_entry(tournament: Tournament, participant_count: int, winner_id: str | None) -> HistoryEntry:
    return HistoryEntry(
        id=tournament.id,
        format=tournament.format,
        status=tournament.status,
        length_minutes=tournament.length_minutes,
        round_count=tournament.round_count,
        rating_ranges=tournament.rating_ranges,
        tags=tournament.tags,
        created_at=tournament.created_at,
        updated_at=tournament.updated_at,
        participant_count=participant_count,
        winner_id=winner_id,
    )
