"""
Prediction scoring.

Each innings is worth 50 points: 40 for runs, scaled by the relative run
error, and 10 for wickets, losing 2 points per wicket of error. A match score
is the sum of both innings, so it lies in [0, 100].

Historical scores must stay reproducible, so rounding mirrors JavaScript's
``Number(x.toFixed(3))``: the exact binary value is rounded half-up to three
decimals.
"""
from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from typing import NamedTuple

RUN_POINTS = 40
WICKET_POINTS = 10
WICKET_ERROR_PENALTY = 2
SCORE_PRECISION = Decimal("0.001")


class Innings(NamedTuple):
    runs: int
    wickets: int


class ScoreLine(NamedTuple):
    """Both innings of a match, as predicted or as actually played."""

    team1_score: int
    team1_wickets: int
    team2_score: int
    team2_wickets: int

    @property
    def team1(self) -> Innings:
        return Innings(self.team1_score, self.team1_wickets)

    @property
    def team2(self) -> Innings:
        return Innings(self.team2_score, self.team2_wickets)

    def as_params(self) -> dict[str, int]:
        """Field names as they appear in signed messages and request bodies."""
        return {
            "team1Score": self.team1_score,
            "team1Wickets": self.team1_wickets,
            "team2Score": self.team2_score,
            "team2Wickets": self.team2_wickets,
        }

    @classmethod
    def from_row(cls, row) -> "ScoreLine":
        return cls(
            int(row.team1_score),
            int(row.team1_wickets),
            int(row.team2_score),
            int(row.team2_wickets),
        )


def to_fixed_3(value: float) -> float:
    return float(Decimal(value).quantize(SCORE_PRECISION, rounding=ROUND_HALF_UP))


def calculate_innings_score(predicted: Innings, actual: Innings) -> float:
    """Score one innings out of 50."""
    safe_actual_runs = 1 if actual.runs == 0 else actual.runs

    # Capping the error at the actual runs floors the run score at exactly 0.
    run_error = min(abs(predicted.runs - actual.runs), safe_actual_runs)
    run_score = max(0, RUN_POINTS * (1 - run_error / safe_actual_runs))

    wicket_error = abs(predicted.wickets - actual.wickets)
    wicket_score = max(0, WICKET_POINTS - WICKET_ERROR_PENALTY * wicket_error)

    return to_fixed_3(run_score + wicket_score)


def calculate_match_score(predicted: ScoreLine, actual: ScoreLine) -> float:
    """Score a full-match prediction out of 100."""
    home = calculate_innings_score(predicted.team1, actual.team1)
    away = calculate_innings_score(predicted.team2, actual.team2)
    return to_fixed_3(home + away)
