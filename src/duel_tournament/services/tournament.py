"""Tournament service: round lifecycle, match completions and advancement."""

from __future__ import annotations

import asyncio
from collections.abc import Iterable, Sequence

import structlog
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from duel_tournament.core.config import EngineConfig, RatingRange, calculate_nr_rounds
from duel_tournament.core.errors import (
    ActiveTournamentExistsError,
    ChallengeUnavailableError,
    DuelCreationError,
    InsufficientParticipantsError,
    InvalidSettingsError,
    ProblemNotFoundError,
    RoundIncompleteError,
    TournamentError,
)
from duel_tournament.models.results import (
    AdvanceResult,
    CancelResult,
    LastError,
    MatchApplication,
    MatchSummary,
    Problem,
    RoundSummary,
    StandingsEntry,
    StartResult,
)
from duel_tournament.models.tournament import (
    TOURNAMENT_FORMATS,
    Tournament,
    TournamentMatch,
    TournamentRound,
    utc_now,
)
from duel_tournament.services.collaborators import ChallengeRunner, ProblemSelector
from duel_tournament.services.formats import rules_for
from duel_tournament.services.outcome import ParticipantResult, resolve_match_outcome
from duel_tournament.services.pairing import (
    Pairing,
    PairingParticipant,
    build_pairing_history,
    count_byes,
)
from duel_tournament.services.standings import compute_standings, select_winner
from duel_tournament.services.storage import TournamentRepository

logger = structlog.get_logger()


def round_problem(round_: TournamentRound) -> Problem:
    return Problem(
        contest_id=round_.problem_contest_id,
        index=round_.problem_index,
        name=round_.problem_name,
        rating=round_.problem_rating or None,
    )


def summarize_round(round_: TournamentRound, matches: Iterable[TournamentMatch]) -> RoundSummary:
    """Summarize a round; byes count as completed matches."""
    match_count = completed_count = bye_count = 0
    for match in matches:
        if match.round_id != round_.id:
            continue
        match_count += 1
        if match.status in ("completed", "bye"):
            completed_count += 1
        if match.status == "bye":
            bye_count += 1
    return RoundSummary(
        round_number=round_.round_number,
        status=round_.status,
        match_count=match_count,
        completed_count=completed_count,
        bye_count=bye_count,
        problem=round_problem(round_),
    )


def summarize_match(match: TournamentMatch) -> MatchSummary:
    return MatchSummary(
        match_number=match.match_number,
        player1_id=match.player1_id,
        player2_id=match.player2_id,
        winner_id=match.winner_id,
        status=match.status,
        is_draw=match.is_draw,
    )


class TournamentService:
    """Drives tournaments from creation to a winner or cancellation.

    All writes for one guild are serialized by a per-guild lock, so round
    starts, advances, cancellations and match completions never interleave
    inside a tournament. Guilds are independent of each other.

    Public operations never raise ``TournamentError``; they return a typed
    result and keep the latest collaborator failure in ``last_error``.
    """

    def __init__(
        self,
        config: EngineConfig,
        repository: TournamentRepository,
        problems: ProblemSelector,
        challenges: ChallengeRunner,
    ) -> None:
        """Initialize tournament service.

        Args:
            config: Engine configuration.
            repository: Tournament persistence.
            problems: Problem selector collaborator.
            challenges: Challenge runner collaborator.
        """
        self.config = config
        self.repository = repository
        self.problems = problems
        self.challenges = challenges
        self._locks: dict[str, asyncio.Lock] = {}
        # challenge ref -> guild, while the round that owns it is being recorded
        self._dispatching: dict[str, str] = {}
        self._last_error: LastError | None = None

    @property
    def last_error(self) -> LastError | None:
        return self._last_error

    def _lock(self, guild_id: str) -> asyncio.Lock:
        return self._locks.setdefault(guild_id, asyncio.Lock())

    def _record_error(self, message: str) -> None:
        self._last_error = LastError(message=message, timestamp=utc_now())

    # ==================== Reads ====================

    async def get_active_count(self) -> int:
        return await self.repository.count_active()

    async def get_active_tournament(self, guild_id: str) -> Tournament | None:
        return await self.repository.get_active_tournament(guild_id)

    async def get_standings(self, tournament_id: str) -> list[StandingsEntry]:
        tournament = await self.repository.get_tournament(tournament_id)
        if tournament is None:
            return []
        participants = await self.repository.list_participants(tournament_id)
        matches = await self.repository.list_matches(tournament_id)
        return compute_standings(participants, matches, tournament.format)

    async def get_current_round(self, tournament_id: str) -> RoundSummary | None:
        tournament = await self.repository.get_tournament(tournament_id)
        if tournament is None or tournament.current_round == 0:
            return None
        round_ = await self.repository.get_round(tournament_id, tournament.current_round)
        if round_ is None:
            return None
        matches = await self.repository.list_matches(tournament_id, round_id=round_.id)
        return summarize_round(round_, matches)

    async def list_round_summaries(
        self, tournament_id: str, limit: int | None = None
    ) -> list[RoundSummary]:
        """Summaries of a tournament's rounds, newest first."""
        rounds = await self.repository.list_rounds(tournament_id, limit=limit, newest_first=True)
        matches = await self.repository.list_matches(tournament_id)
        return [summarize_round(r, matches) for r in rounds]

    async def list_round_matches(self, tournament_id: str, round_number: int) -> list[MatchSummary]:
        round_ = await self.repository.get_round(tournament_id, round_number)
        if round_ is None:
            return []
        matches = await self.repository.list_matches(tournament_id, round_id=round_.id)
        return [summarize_match(m) for m in matches]

    # ==================== Lifecycle ====================

    async def create_tournament(
        self,
        guild_id: str,
        channel_id: str,
        host_user_id: str,
        participant_ids: Sequence[str],
        tournament_format: str = "swiss",
        length_minutes: int | None = None,
        round_count: int | None = None,
        rating_ranges: Sequence[RatingRange] | None = None,
        tags: str = "",
    ) -> StartResult:
        """Create a tournament and start its first round.

        Participants are seeded in the order given. Without ``round_count``
        the number of rounds comes from ``calculate_nr_rounds``. If round 1
        cannot be started the tournament is discarded.

        Args:
            guild_id: Owning guild.
            channel_id: Channel the tournament runs in.
            host_user_id: User who started it.
            participant_ids: Participants in seed order.
            tournament_format: One of swiss, elimination, arena.
            length_minutes: Match length. Defaults to the configured length.
            round_count: Rounds for swiss/arena.
            rating_ranges: Problem rating bands. Defaults to the configured band.
            tags: Problem tag filter.

        Returns:
            StartResult describing what happened.
        """
        try:
            settings = self._validate_settings(
                participant_ids, tournament_format, length_minutes, round_count
            )
        except InsufficientParticipantsError as e:
            return StartResult(status="insufficient_participants", message=e.message)
        except InvalidSettingsError as e:
            return StartResult(status="invalid", message=e.message)

        length, rounds = settings
        ranges = list(rating_ranges) if rating_ranges else [self.config.default_rating_range]

        async with self._lock(guild_id):
            if await self.repository.get_active_tournament(guild_id) is not None:
                error = ActiveTournamentExistsError(guild_id)
                return StartResult(status="active_exists", message=error.message)

            tournament = await self.repository.create_tournament(
                Tournament(
                    guild_id=guild_id,
                    channel_id=channel_id,
                    host_user_id=host_user_id,
                    format=tournament_format,
                    length_minutes=length,
                    round_count=rounds,
                    rating_ranges=[r.model_dump() for r in ranges],
                    tags=tags,
                ),
                participant_ids,
            )

            try:
                summary = await self._start_round(tournament)
            except TournamentError as e:
                await self.repository.discard_tournament(tournament.id)
                logger.warning(
                    "tournament_start_failed", tournament_id=tournament.id, error=e.message
                )
                return StartResult(status="error", message=e.message)

        logger.info(
            "tournament_created",
            tournament_id=tournament.id,
            guild_id=guild_id,
            format=tournament_format,
            participants=len(participant_ids),
            rounds=rounds,
        )
        return StartResult(status="started", tournament_id=tournament.id, round=summary)

    def _validate_settings(
        self,
        participant_ids: Sequence[str],
        tournament_format: str,
        length_minutes: int | None,
        round_count: int | None,
    ) -> tuple[int, int]:
        """Check creation settings and resolve defaults.

        Returns:
            Tuple of (length_minutes, round_count).

        Raises:
            InsufficientParticipantsError: Too few participants.
            InvalidSettingsError: Any other out-of-bounds value.
        """
        cfg = self.config
        if tournament_format not in TOURNAMENT_FORMATS:
            raise InvalidSettingsError("format", f"must be one of {', '.join(TOURNAMENT_FORMATS)}")
        if len(set(participant_ids)) != len(participant_ids):
            raise InvalidSettingsError("participants", "duplicate participants")
        if len(participant_ids) < cfg.min_participants:
            raise InsufficientParticipantsError(len(participant_ids))
        if len(participant_ids) > cfg.max_participants:
            raise InvalidSettingsError("participants", f"at most {cfg.max_participants} allowed")

        length = length_minutes if length_minutes is not None else cfg.default_length_minutes
        if length not in cfg.allowed_lengths:
            raise InvalidSettingsError("length_minutes", f"must be one of {cfg.allowed_lengths}")

        auto_rounds = calculate_nr_rounds(
            tournament_format,
            len(participant_ids),
            cfg.swiss_min_rounds,
            cfg.swiss_max_rounds,
        )
        if tournament_format == "elimination" or round_count is None:
            return length, auto_rounds
        if not cfg.swiss_min_rounds <= round_count <= cfg.swiss_max_rounds:
            raise InvalidSettingsError(
                "round_count",
                f"must be between {cfg.swiss_min_rounds} and {cfg.swiss_max_rounds}",
            )
        return length, round_count

    async def start_round(self, tournament_id: str) -> AdvanceResult:
        """Start the next round of a tournament whose current round is done."""
        tournament = await self.repository.get_tournament(tournament_id)
        if tournament is None:
            return AdvanceResult(status="no_active")

        async with self._lock(tournament.guild_id):
            tournament = await self.repository.get_tournament(tournament_id)
            if tournament is None or tournament.status != "active":
                return AdvanceResult(status="no_active")
            try:
                await self._ensure_round_completed(tournament)
                summary = await self._start_round(tournament)
            except RoundIncompleteError as e:
                return AdvanceResult(
                    status="round_incomplete",
                    tournament_id=tournament_id,
                    round_number=e.round_number,
                    message=e.message,
                )
            except InsufficientParticipantsError as e:
                return AdvanceResult(
                    status="insufficient_participants",
                    tournament_id=tournament_id,
                    message=e.message,
                )
            except TournamentError as e:
                return AdvanceResult(status="error", tournament_id=tournament_id, message=e.message)

        return AdvanceResult(
            status="started",
            tournament_id=tournament_id,
            round_number=summary.round_number,
            round=summary,
        )

    async def advance_tournament(self, guild_id: str) -> AdvanceResult:
        """Complete the guild's tournament or start its next round.

        Fails with ``round_incomplete`` while the current round has pending
        matches; a round is never forced.
        """
        async with self._lock(guild_id):
            tournament = await self.repository.get_active_tournament(guild_id)
            if tournament is None:
                return AdvanceResult(status="no_active")

            try:
                await self._ensure_round_completed(tournament)
            except RoundIncompleteError as e:
                logger.info(
                    "advance_blocked", tournament_id=tournament.id, round=e.round_number
                )
                return AdvanceResult(
                    status="round_incomplete",
                    tournament_id=tournament.id,
                    round_number=e.round_number,
                    message=e.message,
                )

            rules = rules_for(tournament.format)
            participants = await self.repository.list_participants(tournament.id)
            active_count = sum(1 for p in participants if not p.eliminated)
            if rules.fixed_rounds:
                finished = tournament.current_round >= tournament.round_count
            else:
                finished = active_count <= 1

            if finished:
                return await self._complete(tournament)

            try:
                summary = await self._start_round(tournament)
            except InsufficientParticipantsError as e:
                return AdvanceResult(
                    status="insufficient_participants",
                    tournament_id=tournament.id,
                    message=e.message,
                )
            except TournamentError as e:
                return AdvanceResult(status="error", tournament_id=tournament.id, message=e.message)

        return AdvanceResult(
            status="started",
            tournament_id=tournament.id,
            round_number=summary.round_number,
            round=summary,
        )

    async def _complete(self, tournament: Tournament) -> AdvanceResult:
        standings = await self.get_standings(tournament.id)
        winner_id = select_winner(standings, tournament.format)
        await self.repository.finish_tournament(tournament.id, "completed")
        logger.info("tournament_completed", tournament_id=tournament.id, winner=winner_id)
        return AdvanceResult(
            status="completed",
            tournament_id=tournament.id,
            round_number=tournament.current_round,
            winner_id=winner_id,
        )

    async def _ensure_round_completed(self, tournament: Tournament) -> None:
        if tournament.current_round == 0:
            return
        round_ = await self.repository.get_round(tournament.id, tournament.current_round)
        if round_ is not None and round_.status != "completed":
            raise RoundIncompleteError(tournament.current_round)

    async def cancel_tournament(self, guild_id: str, cancelled_by: str | None = None) -> CancelResult:
        """Cancel the guild's active tournament and its outstanding duels."""
        async with self._lock(guild_id):
            tournament = await self.repository.get_active_tournament(guild_id)
            if tournament is None:
                return CancelResult(status="nothing_to_cancel")

            refs = await self.repository.pending_challenge_refs(tournament.id)
            cancelled = await self._cancel_duels(refs, cancelled_by)
            if not await self.repository.finish_tournament(tournament.id, "cancelled"):
                return CancelResult(status="nothing_to_cancel", tournament_id=tournament.id)

        logger.info(
            "tournament_cancelled",
            tournament_id=tournament.id,
            cancelled_by=cancelled_by,
            duels=cancelled,
        )
        return CancelResult(
            status="cancelled", tournament_id=tournament.id, cancelled_duels=cancelled
        )

    async def _cancel_duels(self, refs: Iterable[str], cancelled_by: str | None = None) -> int:
        """Cancel duels one by one; a failure is logged and skipped."""
        cancelled = 0
        for ref in refs:
            try:
                await self.challenges.cancel_duel(ref, cancelled_by)
                cancelled += 1
            except Exception as e:
                logger.warning("duel_cancel_failed", ref=ref, error=str(e))
                self._record_error(f"Failed to cancel duel {ref}: {e}")
        return cancelled

    # ==================== Rounds ====================

    async def _start_round(self, tournament: Tournament) -> RoundSummary:
        """Select a problem, pair, dispatch duels and record the round.

        Nothing is persisted unless every duel was created; duels created
        before a failure are cancelled.

        Raises:
            InsufficientParticipantsError: Fewer than two active participants.
            ProblemNotFoundError: The selector had nothing eligible.
            DuelCreationError: The runner failed to create a duel.
            TournamentError: The round could not be stored.
        """
        rules = rules_for(tournament.format)
        participants = await self.repository.list_participants(tournament.id)
        active = [p for p in participants if not p.eliminated]
        if len(active) < 2:
            raise InsufficientParticipantsError(len(active))

        matches = await self.repository.list_matches(tournament.id)
        history = build_pairing_history(matches)
        byes = count_byes(matches)
        pool = [
            PairingParticipant(
                user_id=p.user_id,
                score=p.score,
                seed=p.seed,
                played_against=history.get(p.user_id, set()),
                byes=byes.get(p.user_id, 0),
            )
            for p in active
        ]

        round_number = tournament.current_round + 1
        try:
            problem = await self.problems.select_problem(
                [RatingRange.model_validate(r) for r in tournament.rating_ranges],
                tournament.tags,
                await self.repository.used_problem_ids(tournament.id),
                [p.user_id for p in active],
            )
        except Exception as e:
            self._record_error(f"Problem selection failed: {e}")
            logger.error("problem_selection_failed", tournament_id=tournament.id, error=str(e))
            raise ProblemNotFoundError() from e
        if problem is None:
            error = ProblemNotFoundError()
            self._record_error(error.message)
            logger.warning("problem_not_found", tournament_id=tournament.id, round=round_number)
            raise error

        pairings = rules.pair(pool)
        dispatched = await self._dispatch_duels(tournament, problem, pairings)
        refs = [ref for _, ref in dispatched if ref is not None]
        try:
            round_ = await self.repository.record_round(
                tournament.id, round_number, problem, dispatched
            )
        except TournamentError:
            await self._cancel_duels(refs)
            raise
        except Exception as e:
            await self._cancel_duels(refs)
            error = TournamentError(f"Failed to record round {round_number}: {e}")
            self._record_error(error.message)
            logger.error(
                "round_record_failed",
                tournament_id=tournament.id,
                round=round_number,
                error=str(e),
                rolled_back=len(refs),
            )
            raise error from e
        finally:
            for ref in refs:
                self._dispatching.pop(ref, None)

        round_matches = await self.repository.list_matches(tournament.id, round_id=round_.id)
        summary = summarize_round(round_, round_matches)
        logger.info(
            "round_started",
            tournament_id=tournament.id,
            round=round_number,
            problem=problem.problem_id,
            matches=summary.match_count,
            byes=summary.bye_count,
        )
        return summary

    async def _dispatch_duels(
        self,
        tournament: Tournament,
        problem: Problem,
        pairings: Sequence[Pairing],
    ) -> list[tuple[Pairing, str | None]]:
        """Create one duel per non-bye pairing, all or nothing."""
        dispatched: list[tuple[Pairing, str | None]] = []
        for pairing in pairings:
            if pairing.player2_id is None:
                dispatched.append((pairing, None))
                continue
            try:
                ref = await self._create_duel(tournament, problem, pairing)
            except Exception as e:
                refs = [r for _, r in dispatched if r is not None]
                for r in refs:
                    self._dispatching.pop(r, None)
                await self._cancel_duels(refs)
                reason = e.message if isinstance(e, TournamentError) else str(e)
                error = DuelCreationError(pairing.player1_id, pairing.player2_id, reason)
                self._record_error(error.message)
                logger.error(
                    "duel_creation_failed",
                    tournament_id=tournament.id,
                    player1=pairing.player1_id,
                    player2=pairing.player2_id,
                    error=reason,
                    rolled_back=len(refs),
                )
                raise error from e
            self._dispatching[ref] = tournament.guild_id
            dispatched.append((pairing, ref))
        return dispatched

    async def _create_duel(self, tournament: Tournament, problem: Problem, pairing: Pairing) -> str:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.config.duel_retry_attempts),
            wait=wait_exponential(multiplier=self.config.duel_retry_wait_seconds, max=30),
            retry=retry_if_exception_type(ChallengeUnavailableError),
            reraise=True,
        )
        return await retrying(
            self.challenges.create_duel,
            tournament.id,
            problem,
            tournament.length_minutes,
            [pairing.player1_id, pairing.player2_id],
        )

    # ==================== Completions ====================

    async def on_match_completed(
        self, challenge_ref: str, results: Sequence[ParticipantResult]
    ) -> MatchApplication | None:
        """Apply a finished duel to its match.

        Unknown refs, matches that are no longer pending and tournaments that
        are no longer active are ignored, so repeated or late deliveries do
        not change state.

        Args:
            challenge_ref: Reference returned by ``create_duel``.
            results: Per-player results from the runner.

        Returns:
            What was applied, or None when the completion was ignored.
        """
        guild_id = self._dispatching.get(challenge_ref)
        if guild_id is None:
            match = await self.repository.get_match_by_challenge(challenge_ref)
            if match is None:
                logger.debug("completion_ignored", ref=challenge_ref, reason="unknown")
                return None
            tournament = await self.repository.get_tournament(match.tournament_id)
            if tournament is None:
                logger.debug("completion_ignored", ref=challenge_ref, reason="unknown")
                return None
            guild_id = tournament.guild_id

        async with self._lock(guild_id):
            return await self._apply_completion(challenge_ref, results)

    async def _apply_completion(
        self, challenge_ref: str, results: Sequence[ParticipantResult]
    ) -> MatchApplication | None:
        match = await self.repository.get_match_by_challenge(challenge_ref)
        if match is None or match.status != "pending" or match.player2_id is None:
            logger.debug("completion_ignored", ref=challenge_ref, reason="not_pending")
            return None
        tournament = await self.repository.get_tournament(match.tournament_id)
        if tournament is None or tournament.status != "active":
            logger.debug("completion_ignored", ref=challenge_ref, reason="not_active")
            return None

        participants = await self.repository.list_participants(tournament.id)
        seeds = {p.user_id: p.seed for p in participants}
        by_user = {r.user_id: r for r in results}
        ordered = [
            by_user.get(user_id, ParticipantResult(user_id=user_id))
            for user_id in (match.player1_id, match.player2_id)
        ]

        rules = rules_for(tournament.format)
        outcome = resolve_match_outcome(ordered, seeds, rules.allow_draws)
        applied = await self.repository.apply_match_result(
            match.id, outcome, eliminate_loser=rules.eliminates_loser
        )
        if applied is None:
            logger.debug("completion_ignored", ref=challenge_ref, reason="raced")
            return None

        logger.info(
            "match_completed",
            tournament_id=applied.tournament_id,
            round=applied.round_number,
            winner=applied.winner_id,
            draw=applied.is_draw,
            round_completed=applied.round_completed,
        )
        return applied
