"""Interfaces for the problem selector and challenge runner, with fakes for dry runs."""

from __future__ import annotations

import random
import time
import uuid
from abc import ABC, abstractmethod
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from typing import Literal, Protocol

import structlog

from duel_tournament.core.config import RatingRange
from duel_tournament.core.errors import ChallengeUnavailableError
from duel_tournament.models.results import Problem
from duel_tournament.services.outcome import ParticipantResult

logger = structlog.get_logger()

FAKE_TAGS = ("greedy", "math", "dp", "graphs", "strings", "implementation", "sortings")


class ProblemSelector(ABC):
    """Abstract base class for problem selection."""

    @abstractmethod
    async def select_problem(
        self,
        rating_ranges: Sequence[RatingRange],
        tags: str,
        excluded_problem_ids: set[str],
        participant_ids: Sequence[str],
    ) -> Problem | None:
        """Pick a problem for a round.

        Implementations must also exclude problems already in any
        participant's solve history.

        Args:
            rating_ranges: Allowed rating bands (any may match).
            tags: Raw tag filter string.
            excluded_problem_ids: Problems already used by this tournament.
            participant_ids: Players of the round.

        Returns:
            A Problem, or None when nothing is eligible.
        """


class ChallengeRunner(ABC):
    """Abstract base class for the timed duel service."""

    @abstractmethod
    async def create_duel(
        self,
        tournament_id: str,
        problem: Problem,
        length_minutes: int,
        participant_ids: Sequence[str],
    ) -> str:
        """Start a timed duel and return its challenge reference.

        Raises:
            ChallengeUnavailableError: On transient failures worth retrying.
        """

    @abstractmethod
    async def cancel_duel(self, challenge_ref: str, cancelled_by: str | None = None) -> None:
        """Cancel a running duel."""


class ChallengeCompletionNotifier(Protocol):
    """Receiver of duel completions."""

    async def on_match_completed(
        self, challenge_ref: str, results: Sequence[ParticipantResult]
    ) -> object: ...


def parse_tag_filters(raw: str) -> tuple[set[str], set[str]]:
    """Split a tag filter string into (include, exclude) sets.

    Tags are separated by commas or whitespace; a leading '-' excludes.
    """
    include: set[str] = set()
    exclude: set[str] = set()
    for token in raw.replace(",", " ").split():
        tag = token.strip().lower()
        if tag.startswith("-"):
            if tag[1:]:
                exclude.add(tag[1:])
        elif tag:
            include.add(tag)
    return include, exclude


def filter_problems(
    problems: Iterable[Problem],
    rating_ranges: Sequence[RatingRange],
    tags: str,
) -> list[Problem]:
    """Keep problems inside any rating range and matching the tag filters."""
    include, exclude = parse_tag_filters(tags)
    selected = []
    for problem in problems:
        if problem.rating is None:
            continue
        if rating_ranges and not any(r.min <= problem.rating <= r.max for r in rating_ranges):
            continue
        problem_tags = {t.lower() for t in problem.tags}
        if include and not include & problem_tags:
            continue
        if exclude & problem_tags:
            continue
        selected.append(problem)
    return selected


class FakeProblemSelector(ProblemSelector):
    """Deterministic problem selector for testing and dry runs."""

    def __init__(
        self,
        problems: list[Problem] | None = None,
        solved: dict[str, set[str]] | None = None,
        seed: int = 42,
    ) -> None:
        """Initialize fake selector.

        Args:
            problems: Problem catalogue. Generated from the seed if None.
            solved: Solve history per user ID.
            seed: Random seed for deterministic picks.
        """
        self.rng = random.Random(seed)  # noqa: S311
        self.problems = problems if problems is not None else self._generate(seed)
        self.solved = solved or {}
        self.call_count = 0
        self.last_excluded: set[str] = set()

    @staticmethod
    def _generate(seed: int) -> list[Problem]:
        rng = random.Random(seed)  # noqa: S311
        problems = []
        for contest_id in range(1500, 1540):
            for index in "ABCDEF":
                rating = 800 + 100 * rng.randint(0, 27)
                tags = rng.sample(FAKE_TAGS, k=2)
                problems.append(
                    Problem(
                        contest_id=contest_id,
                        index=index,
                        name=f"Problem {contest_id}{index}",
                        rating=rating,
                        tags=tags,
                    )
                )
        return problems

    async def select_problem(
        self,
        rating_ranges: Sequence[RatingRange],
        tags: str,
        excluded_problem_ids: set[str],
        participant_ids: Sequence[str],
    ) -> Problem | None:
        self.call_count += 1
        excluded = set(excluded_problem_ids)
        for user_id in participant_ids:
            excluded |= self.solved.get(user_id, set())
        self.last_excluded = excluded

        candidates = [
            p
            for p in filter_problems(self.problems, rating_ranges, tags)
            if p.problem_id not in excluded
        ]
        if not candidates:
            return None
        return self.rng.choice(candidates)


@dataclass
class FakeDuel:
    """A duel tracked by the fake runner."""

    ref: str
    tournament_id: str
    problem: Problem
    length_minutes: int
    participant_ids: list[str]
    started_at: int
    status: Literal["active", "finished", "cancelled"] = "active"
    cancelled_by: str | None = None
    results: list[ParticipantResult] = field(default_factory=list)


class FakeChallengeRunner(ChallengeRunner):
    """In-memory challenge runner for testing and dry runs.

    Duels stay active until ``finish_duel`` is called, which notifies every
    subscriber the way the real runner does when a duel ends.
    """

    def __init__(
        self,
        seed: int = 42,
        fail_on_calls: set[int] | None = None,
        transient_failures: int = 0,
        solve_probability: float = 0.7,
    ) -> None:
        """Initialize fake runner.

        Args:
            seed: Random seed for generated results.
            fail_on_calls: 1-based create_duel call numbers that fail hard.
            transient_failures: Leading create_duel calls that fail transiently.
            solve_probability: Chance a player solves in generated results.
        """
        self.rng = random.Random(seed)  # noqa: S311
        self.fail_on_calls = fail_on_calls or set()
        self.transient_failures = transient_failures
        self.solve_probability = solve_probability
        self.call_count = 0
        self.duels: dict[str, FakeDuel] = {}
        self._subscribers: list[ChallengeCompletionNotifier] = []

    def subscribe(self, notifier: ChallengeCompletionNotifier) -> None:
        self._subscribers.append(notifier)

    async def create_duel(
        self,
        tournament_id: str,
        problem: Problem,
        length_minutes: int,
        participant_ids: Sequence[str],
    ) -> str:
        self.call_count += 1
        if self.transient_failures > 0:
            self.transient_failures -= 1
            msg = "Challenge runner temporarily unavailable"
            raise ChallengeUnavailableError(msg)
        if self.call_count in self.fail_on_calls:
            msg = f"Challenge runner rejected duel #{self.call_count}"
            raise RuntimeError(msg)

        ref = str(uuid.uuid4())
        self.duels[ref] = FakeDuel(
            ref=ref,
            tournament_id=tournament_id,
            problem=problem,
            length_minutes=length_minutes,
            participant_ids=list(participant_ids),
            started_at=int(time.time()),
        )
        return ref

    async def cancel_duel(self, challenge_ref: str, cancelled_by: str | None = None) -> None:
        duel = self.duels.get(challenge_ref)
        if duel is None or duel.status != "active":
            return
        duel.status = "cancelled"
        duel.cancelled_by = cancelled_by

    def active_duels(self, tournament_id: str | None = None) -> list[FakeDuel]:
        return [
            d
            for d in self.duels.values()
            if d.status == "active" and (tournament_id is None or d.tournament_id == tournament_id)
        ]

    def random_results(self, duel: FakeDuel) -> list[ParticipantResult]:
        """Generate solve times inside the duel window (None = timed out)."""
        window = duel.length_minutes * 60
        results = []
        for user_id in duel.participant_ids:
            solved_at = None
            if self.rng.random() < self.solve_probability:
                solved_at = duel.started_at + self.rng.randint(1, window)
            results.append(ParticipantResult(user_id=user_id, solved_at=solved_at))
        return results

    async def finish_duel(
        self, challenge_ref: str, results: Sequence[ParticipantResult] | None = None
    ) -> None:
        """End a duel and notify subscribers.

        Args:
            challenge_ref: Duel to finish.
            results: Player results. Generated if None.
        """
        duel = self.duels[challenge_ref]
        if results is None:
            results = self.random_results(duel)
        duel.status = "finished"
        duel.results = list(results)
        logger.debug("fake_duel_finished", ref=challenge_ref, tournament_id=duel.tournament_id)
        for notifier in self._subscribers:
            await notifier.on_match_completed(challenge_ref, duel.results)
