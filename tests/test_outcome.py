"""Tests for match outcome resolution and format rules."""

import pytest

from duel_tournament.services.formats import rules_for
from duel_tournament.services.outcome import (
    MatchOutcome,
    ParticipantResult,
    resolve_match_outcome,
)
from duel_tournament.services.pairing import elimination_pairing, swiss_pairing

SEEDS = {"a": 1, "b": 2}


class TestResolveMatchOutcome:
    """Tests for resolve_match_outcome."""

    def test_earlier_solve_wins(self):
        """Test the earlier accepted solve wins."""
        results = [ParticipantResult("a", solved_at=200), ParticipantResult("b", solved_at=100)]

        outcome = resolve_match_outcome(results, SEEDS, allow_draws=True)

        assert outcome == MatchOutcome.win("b", "a")

    def test_only_solver_wins(self):
        """Test a lone solver wins outright."""
        results = [ParticipantResult("a"), ParticipantResult("b", solved_at=500)]

        outcome = resolve_match_outcome(results, SEEDS, allow_draws=False)

        assert outcome == MatchOutcome.win("b", "a")

    def test_nobody_solved_is_draw_when_allowed(self):
        """Test a timeout with no solves is a draw in swiss."""
        results = [ParticipantResult("a"), ParticipantResult("b")]

        outcome = resolve_match_outcome(results, SEEDS, allow_draws=True)

        assert outcome.is_draw
        assert outcome.winner_id is None
        assert outcome.loser_id is None

    def test_nobody_solved_lower_seed_wins_without_draws(self):
        """Test elimination resolves a double timeout by seed."""
        results = [ParticipantResult("b"), ParticipantResult("a")]

        outcome = resolve_match_outcome(results, SEEDS, allow_draws=False)

        assert outcome == MatchOutcome.win("a", "b")

    def test_same_second_is_draw_when_allowed(self):
        """Test identical solve timestamps draw in swiss."""
        results = [ParticipantResult("a", solved_at=100), ParticipantResult("b", solved_at=100)]

        assert resolve_match_outcome(results, SEEDS, allow_draws=True).is_draw

    def test_same_second_lower_seed_wins_without_draws(self):
        """Test identical solve timestamps fall back to seed in elimination."""
        results = [ParticipantResult("b", solved_at=100), ParticipantResult("a", solved_at=100)]

        outcome = resolve_match_outcome(results, SEEDS, allow_draws=False)

        assert outcome == MatchOutcome.win("a", "b")

    def test_unknown_seed_ranks_last(self):
        """Test a player without a seed loses a seed tie-break."""
        results = [ParticipantResult("x"), ParticipantResult("b")]

        outcome = resolve_match_outcome(results, SEEDS, allow_draws=False)

        assert outcome.winner_id == "b"

    def test_single_result_wins(self):
        """Test a lone result wins with no loser."""
        outcome = resolve_match_outcome([ParticipantResult("a")], SEEDS, allow_draws=True)

        assert outcome == MatchOutcome(winner_id="a", loser_id=None, is_draw=False)

    def test_no_results(self):
        """Test no results yields no winner and no draw."""
        outcome = resolve_match_outcome([], SEEDS, allow_draws=True)

        assert outcome.winner_id is None
        assert not outcome.is_draw


class TestFormatRules:
    """Tests for the format switch."""

    def test_swiss_rules(self):
        """Test swiss pairs by score, allows draws and has fixed rounds."""
        rules = rules_for("swiss")
        assert rules.pair is swiss_pairing
        assert rules.allow_draws
        assert not rules.eliminates_loser
        assert rules.fixed_rounds

    def test_elimination_rules(self):
        """Test elimination pairs by seed and eliminates the loser."""
        rules = rules_for("elimination")
        assert rules.pair is elimination_pairing
        assert not rules.allow_draws
        assert rules.eliminates_loser
        assert not rules.fixed_rounds

    def test_arena_runs_as_swiss(self):
        """Test arena rounds are played like swiss rounds."""
        rules = rules_for("arena")
        assert rules.pair is swiss_pairing
        assert rules.allow_draws
        assert rules.fixed_rounds

    def test_unknown_format(self):
        """Test unknown formats are rejected."""
        with pytest.raises(ValueError, match="Unknown tournament format"):
            rules_for("round-robin")
