from __future__ import annotations

import itertools

from strikerate.services.scoring import (
    Innings,
    ScoreLine,
    calculate_innings_score,
    calculate_match_score,
    to_fixed_3,
)


def test_perfect_innings_scores_exactly_fifty():
    assert calculate_innings_score(Innings(100, 5), Innings(100, 5)) == 50.0


def test_perfect_match_scores_exactly_one_hundred():
    line = ScoreLine(180, 6, 150, 8)
    assert calculate_match_score(line, line) == 100.0


def test_partial_prediction_scores_below_one_hundred():
    actual = ScoreLine(180, 6, 150, 8)
    predicted = ScoreLine(150, 5, 140, 7)

    score = calculate_match_score(predicted, actual)

    assert score == 86.666
    assert score < 100


def test_run_error_is_floored_at_zero():
    assert calculate_innings_score(Innings(1000, 3), Innings(100, 3)) == 10.0
    assert calculate_innings_score(Innings(0, 3), Innings(100, 3)) == 10.0


def test_wicket_error_is_floored_at_zero():
    assert calculate_innings_score(Innings(100, 0), Innings(100, 10)) == 40.0
    assert calculate_innings_score(Innings(100, 1), Innings(100, 6)) == 40.0


def test_zero_actual_runs_does_not_divide_by_zero():
    assert calculate_innings_score(Innings(0, 10), Innings(0, 10)) == 50.0
    assert calculate_innings_score(Innings(5, 10), Innings(0, 10)) == 10.0


def test_rounding_matches_javascript_to_fixed():
    # 0.0625 is exact in binary and rounds half up, unlike round().
    assert to_fixed_3(0.0625) == 0.063
    assert to_fixed_3(0.3125) == 0.313
    assert to_fixed_3(2 / 3) == 0.667


def test_scores_stay_within_bounds():
    actual = ScoreLine(160, 7, 159, 9)
    for runs, wickets in itertools.product((0, 40, 159, 160, 320, 999), (0, 3, 7, 10)):
        predicted = ScoreLine(runs, wickets, runs, wickets)
        score = calculate_match_score(predicted, actual)
        assert 0 <= score <= 100


def test_run_score_falls_strictly_until_it_floors():
    actual = Innings(200, 4)
    previous = None
    for runs in range(200, 401, 10):
        score = calculate_innings_score(Innings(runs, 4), actual)
        if previous is not None:
            assert score < previous
        previous = score

    floor = calculate_innings_score(Innings(400, 4), actual)
    assert floor == 10.0
    for runs in (410, 600, 5000):
        assert calculate_innings_score(Innings(runs, 4), actual) == floor
