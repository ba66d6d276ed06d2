"""Database persistence for tournaments, participants, rounds and matches."""

from __future__ import annotations

from collections.abc import Sequence
from typing import TYPE_CHECKING

import structlog
from sqlmodel import Session, col, func, select

from duel_tournament.core.errors import TournamentError
from duel_tournament.models.results import MatchApplication, Problem
from duel_tournament.models.tournament import (
    Participant,
    Tournament,
    TournamentMatch,
    TournamentRound,
    utc_now,
)
from duel_tournament.services.outcome import MatchOutcome
from duel_tournament.services.pairing import Pairing
from duel_tournament.services.scoring import apply_outcome

from .repository import AsyncRepository

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = structlog.get_logger()

FINISHED_STATUSES = ("completed", "cancelled")


def _count_pending(session: Session, round_id: str) -> int:
    statement = select(func.count(col(TournamentMatch.id))).where(
        TournamentMatch.round_id == round_id,
        TournamentMatch.status == "pending",
    )
    return int(session.exec(statement).one())


def _participants_by_user(session: Session, tournament_id: str) -> dict[str, Participant]:
    statement = select(Participant).where(Participant.tournament_id == tournament_id)
    return {p.user_id: p for p in session.exec(statement).all()}


class TournamentRepository(AsyncRepository):
    """Persist and query tournament state.

    Every write is a single transaction. Reads return detached rows.
    """

    def __init__(self, engine: Engine) -> None:
        super().__init__(engine)

    # ==================== Tournaments ====================

    async def create_tournament(
        self, tournament: Tournament, participant_ids: Sequence[str]
    ) -> Tournament:
        """Insert a tournament and its participants, seeded in the given order."""

        def _create(session: Session) -> Tournament:
            session.add(tournament)
            for seed, user_id in enumerate(participant_ids, start=1):
                session.add(Participant(tournament_id=tournament.id, user_id=user_id, seed=seed))
            session.commit()
            session.refresh(tournament)
            return tournament

        return await self._run_session(_create)

    async def discard_tournament(self, tournament_id: str) -> bool:
        """Delete a tournament that never got its first round.

        Returns:
            False if the tournament is missing or already has rounds.
        """

        def _discard(session: Session) -> bool:
            tournament = session.get(Tournament, tournament_id)
            if tournament is None or tournament.current_round != 0:
                return False
            for participant in _participants_by_user(session, tournament_id).values():
                session.delete(participant)
            session.delete(tournament)
            session.commit()
            logger.info("tournament_discarded", tournament_id=tournament_id)
            return True

        return await self._run_session(_discard)

    async def get_tournament(self, tournament_id: str) -> Tournament | None:
        def _get(session: Session) -> Tournament | None:
            return session.get(Tournament, tournament_id)

        return await self._run_session(_get)

    async def get_active_tournament(self, guild_id: str) -> Tournament | None:
        def _get(session: Session) -> Tournament | None:
            statement = select(Tournament).where(
                Tournament.guild_id == guild_id,
                Tournament.status == "active",
            )
            return session.exec(statement).first()

        return await self._run_session(_get)

    async def count_active(self) -> int:
        def _count(session: Session) -> int:
            statement = select(func.count(col(Tournament.id))).where(Tournament.status == "active")
            return int(session.exec(statement).one())

        return await self._run_session(_count)

    async def finish_tournament(self, tournament_id: str, status: str) -> bool:
        """Move an active tournament to a terminal status.

        Returns:
            False if the tournament was not active.
        """

        def _finish(session: Session) -> bool:
            tournament = session.get(Tournament, tournament_id)
            if tournament is None or tournament.status != "active":
                return False
            tournament.status = status
            tournament.updated_at = utc_now()
            session.add(tournament)
            session.commit()
            return True

        return await self._run_session(_finish)

    # ==================== Participants ====================

    async def list_participants(self, tournament_id: str) -> list[Participant]:
        def _list(session: Session) -> list[Participant]:
            statement = (
                select(Participant)
                .where(Participant.tournament_id == tournament_id)
                .order_by(col(Participant.seed))
            )
            return list(session.exec(statement).all())

        return await self._run_session(_list)

    async def participant_counts(self, tournament_ids: Sequence[str]) -> dict[str, int]:
        if not tournament_ids:
            return {}

        def _counts(session: Session) -> dict[str, int]:
            statement = (
                select(Participant.tournament_id, func.count(col(Participant.id)))
                .where(col(Participant.tournament_id).in_(list(tournament_ids)))
                .group_by(Participant.tournament_id)
            )
            return {tid: int(count) for tid, count in session.exec(statement).all()}

        return await self._run_session(_counts)

    # ==================== Rounds ====================

    async def record_round(
        self,
        tournament_id: str,
        round_number: int,
        problem: Problem,
        dispatched: Sequence[tuple[Pairing, str | None]],
    ) -> TournamentRound:
        """Persist a new round with its matches in one transaction.

        Byes are written as terminal ``bye`` matches and credited as a win
        through ``apply_outcome``. The tournament's ``current_round`` moves to
        ``round_number``; a round with nothing pending is completed at once.

        Args:
            tournament_id: Tournament the round belongs to.
            round_number: Number of the new round.
            problem: Problem assigned to the round.
            dispatched: Pairings with their challenge reference (None for byes).

        Returns:
            The stored round.

        Raises:
            TournamentError: If the tournament is no longer active or another
                round was started concurrently.
        """

        def _record(session: Session) -> TournamentRound:
            tournament = session.get(Tournament, tournament_id)
            if tournament is None or tournament.status != "active":
                msg = "Tournament is no longer active."
                raise TournamentError(msg)
            if tournament.current_round != round_number - 1:
                msg = f"Round {round_number} conflicts with current round {tournament.current_round}."
                raise TournamentError(msg)

            now = utc_now()
            round_ = TournamentRound(
                tournament_id=tournament_id,
                round_number=round_number,
                status="active",
                problem_contest_id=problem.contest_id,
                problem_index=problem.index,
                problem_name=problem.name,
                problem_rating=problem.rating or 0,
                created_at=now,
                updated_at=now,
            )
            session.add(round_)

            participants = _participants_by_user(session, tournament_id)
            for match_number, (pairing, challenge_ref) in enumerate(dispatched, start=1):
                if pairing.player2_id is None:
                    session.add(
                        TournamentMatch(
                            tournament_id=tournament_id,
                            round_id=round_.id,
                            match_number=match_number,
                            player1_id=pairing.player1_id,
                            winner_id=pairing.player1_id,
                            status="bye",
                        )
                    )
                    bye = MatchOutcome.win(pairing.player1_id, None)
                    for participant in apply_outcome(participants, bye, [pairing.player1_id]):
                        session.add(participant)
                    continue

                session.add(
                    TournamentMatch(
                        tournament_id=tournament_id,
                        round_id=round_.id,
                        match_number=match_number,
                        challenge_ref=challenge_ref,
                        player1_id=pairing.player1_id,
                        player2_id=pairing.player2_id,
                        status="pending",
                    )
                )

            tournament.current_round = round_number
            tournament.updated_at = now
            session.add(tournament)
            session.flush()

            if _count_pending(session, round_.id) == 0:
                round_.status = "completed"
                session.add(round_)

            session.commit()
            session.refresh(round_)
            logger.debug("round_recorded", tournament_id=tournament_id, round=round_number)
            return round_

        return await self._run_session(_record)

    async def get_round(self, tournament_id: str, round_number: int) -> TournamentRound | None:
        def _get(session: Session) -> TournamentRound | None:
            statement = select(TournamentRound).where(
                TournamentRound.tournament_id == tournament_id,
                TournamentRound.round_number == round_number,
            )
            return session.exec(statement).first()

        return await self._run_session(_get)

    async def list_rounds(
        self, tournament_id: str, limit: int | None = None, newest_first: bool = False
    ) -> list[TournamentRound]:
        def _list(session: Session) -> list[TournamentRound]:
            order = col(TournamentRound.round_number)
            statement = (
                select(TournamentRound)
                .where(TournamentRound.tournament_id == tournament_id)
                .order_by(order.desc() if newest_first else order)
            )
            if limit is not None:
                statement = statement.limit(limit)
            return list(session.exec(statement).all())

        return await self._run_session(_list)

    async def used_problem_ids(self, tournament_id: str) -> set[str]:
        """Problems already assigned to rounds of this tournament."""
        rounds = await self.list_rounds(tournament_id)
        return {r.problem_id for r in rounds}

    # ==================== Matches ====================

    async def list_matches(
        self, tournament_id: str, round_id: str | None = None
    ) -> list[TournamentMatch]:
        def _list(session: Session) -> list[TournamentMatch]:
            statement = select(TournamentMatch).where(
                TournamentMatch.tournament_id == tournament_id
            )
            if round_id is not None:
                statement = statement.where(TournamentMatch.round_id == round_id)
            statement = statement.order_by(col(TournamentMatch.match_number))
            return list(session.exec(statement).all())

        return await self._run_session(_list)

    async def get_match_by_challenge(self, challenge_ref: str) -> TournamentMatch | None:
        def _get(session: Session) -> TournamentMatch | None:
            statement = select(TournamentMatch).where(
                TournamentMatch.challenge_ref == challenge_ref
            )
            return session.exec(statement).first()

        return await self._run_session(_get)

    async def pending_challenge_refs(self, tournament_id: str) -> list[str]:
        def _list(session: Session) -> list[str]:
            statement = select(TournamentMatch.challenge_ref).where(
                TournamentMatch.tournament_id == tournament_id,
                TournamentMatch.status == "pending",
            )
            return [ref for ref in session.exec(statement).all() if ref]

        return await self._run_session(_list)

    async def count_pending_matches(self, round_id: str) -> int:
        """Count pending matches of a round as currently persisted."""
        return await self._run_session(lambda session: _count_pending(session, round_id))

    async def apply_match_result(
        self,
        match_id: str,
        outcome: MatchOutcome,
        eliminate_loser: bool,
    ) -> MatchApplication | None:
        """Complete a pending match and credit its result in one transaction.

        The pending count that decides round completion is read after the
        match update has been flushed, inside the same transaction.

        Args:
            match_id: Match to complete.
            outcome: Resolved outcome.
            eliminate_loser: Mark the loser eliminated.

        Returns:
            What was applied, or None if the match is no longer pending or
            its tournament is no longer active.
        """

        def _apply(session: Session) -> MatchApplication | None:
            match = session.get(TournamentMatch, match_id)
            if match is None or match.status != "pending":
                return None
            tournament = session.get(Tournament, match.tournament_id)
            if tournament is None or tournament.status != "active":
                return None

            now = utc_now()
            match.winner_id = outcome.winner_id
            match.status = "completed"
            match.updated_at = now
            session.add(match)

            participants = _participants_by_user(session, tournament.id)
            players = [match.player1_id, match.player2_id]
            for participant in apply_outcome(participants, outcome, players, eliminate_loser):
                session.add(participant)
            session.flush()

            remaining = _count_pending(session, match.round_id)
            round_ = session.get(TournamentRound, match.round_id)
            if round_ is None:
                msg = f"Match {match.id} references a missing round."
                raise TournamentError(msg)
            if remaining == 0 and round_.status != "completed":
                round_.status = "completed"
                round_.updated_at = now
                session.add(round_)

            applied = MatchApplication(
                tournament_id=tournament.id,
                round_number=round_.round_number,
                winner_id=outcome.winner_id,
                is_draw=outcome.is_draw,
                round_completed=remaining == 0,
            )
            session.commit()
            return applied

        return await self._run_session(_apply)

    # ==================== History ====================

    async def count_finished(self, guild_id: str) -> int:
        def _count(session: Session) -> int:
            statement = select(func.count(col(Tournament.id))).where(
                Tournament.guild_id == guild_id,
                col(Tournament.status).in_(FINISHED_STATUSES),
            )
            return int(session.exec(statement).one())

        return await self._run_session(_count)

    async def list_finished(self, guild_id: str, limit: int, offset: int) -> list[Tournament]:
        def _list(session: Session) -> list[Tournament]:
            statement = (
                select(Tournament)
                .where(
                    Tournament.guild_id == guild_id,
                    col(Tournament.status).in_(FINISHED_STATUSES),
                )
                .order_by(col(Tournament.updated_at).desc())
                .limit(limit)
                .offset(offset)
            )
            return list(session.exec(statement).all())

        return await self._run_session(_list)

    async def get_finished(self, guild_id: str, tournament_id: str) -> Tournament | None:
        def _get(session: Session) -> Tournament | None:
            statement = select(Tournament).where(
                Tournament.id == tournament_id,
                Tournament.guild_id == guild_id,
                col(Tournament.status).in_(FINISHED_STATUSES),
            )
            return session.exec(statement).first()

        return await self._run_session(_get)
