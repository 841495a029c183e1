from __future__ import annotations

import itertools

import pytest

from hira.errors import MatrixLookupError
from hira.matrices import (
    ACCEPTABLE,
    HIGH,
    ICAO,
    INTEGRATED,
    INTOLERABLE,
    LOW,
    MEDIUM,
    MODERATE,
    PROBABILITY_VALUES,
    SEVERITY_VALUES,
    TOLERABILITY_LEVELS,
    TOLERABLE,
)
from hira.scoring import (
    band_for_score,
    classify_icao,
    classify_integrated,
    highest_risk,
    is_scored,
    requires_controls,
    risk_distribution,
    risk_level,
    score_integrated,
)


@pytest.mark.parametrize(
    "probability, severity, expected",
    [
        (5, "A", INTOLERABLE),
        (4, "D", TOLERABLE),
        (3, "C", TOLERABLE),
        (1, "A", TOLERABLE),
        (1, "E", ACCEPTABLE),
        ("2", "b", TOLERABLE),
    ],
)
def test_classify_icao(probability, severity, expected):
    assert classify_icao(probability, severity) == expected


def test_classify_icao_unknown_cell_falls_back_to_lowest():
    assert classify_icao(9, "Z") == ACCEPTABLE


def test_classify_icao_strict_raises():
    with pytest.raises(MatrixLookupError):
        classify_icao(9, "Z", strict=True)


def test_integrated_score_is_table_lookup_not_product():
    assert score_integrated(3, 3) == 13
    assert score_integrated(3, 5) == 20
    assert score_integrated(4, 1) == 15
    assert score_integrated(1, 4) == 7
    assert score_integrated(0, 3) == 0


@pytest.mark.parametrize(
    "score, band",
    [(1, LOW), (6, LOW), (7, MEDIUM), (14, MEDIUM), (15, MODERATE), (19, MODERATE), (20, HIGH), (25, HIGH)],
)
def test_band_boundaries(score, band):
    assert band_for_score(score) == band


def test_classify_integrated():
    assert classify_integrated(3, 3) == MEDIUM
    assert classify_integrated(5, 5) == HIGH
    assert classify_integrated(6, 1) == LOW
    with pytest.raises(MatrixLookupError):
        classify_integrated(6, 1, strict=True)


def test_is_scored_requires_both_inputs():
    assert is_scored({"probability": 3, "severity": "B"}, ICAO)
    assert not is_scored({"probability": 3, "severity": ""}, ICAO)
    assert not is_scored({"likelihood": 2}, INTEGRATED)
    assert is_scored({"likelihood": "2", "impact": 4}, "integrated")


def test_risk_level_uses_impact_as_severity_axis():
    assert risk_level({"impact": 4, "likelihood": 1}, INTEGRATED) == MODERATE
    assert risk_level({"impact": 1, "likelihood": 4}, INTEGRATED) == MEDIUM


def test_risk_level_falls_back_to_stored_label_for_same_matrix():
    assert risk_level({"tolerability": TOLERABLE}, ICAO) == TOLERABLE
    assert risk_level({"tolerability": HIGH}, ICAO) is None
    assert risk_level({}, INTEGRATED) is None


def test_highest_risk_picks_most_severe():
    rows = [
        {"probability": 1, "severity": "E"},
        {"probability": 5, "severity": "A"},
        {"probability": None, "severity": None},
    ]
    assert highest_risk(rows, ICAO) == INTOLERABLE


def test_highest_risk_of_nothing_is_lowest_level():
    assert highest_risk([], ICAO) == ACCEPTABLE
    assert highest_risk([], INTEGRATED) == LOW


def test_requires_controls_only_above_lowest_band():
    assert requires_controls({"probability": 5, "severity": "A"}, ICAO)
    assert not requires_controls({"probability": 1, "severity": "E"}, ICAO)
    assert not requires_controls({}, ICAO)


def test_risk_distribution_counts_each_level():
    rows = [{"impact": 3, "likelihood": 3}, {"impact": 5, "likelihood": 5}, {"impact": 1, "likelihood": 1}, {}]
    assert risk_distribution(rows, INTEGRATED) == {LOW: 1, MEDIUM: 1, MODERATE: 0, HIGH: 1}


def test_classify_icao_is_total_and_stable():
    for probability in PROBABILITY_VALUES:
        for severity in SEVERITY_VALUES:
            level = classify_icao(probability, severity)
            assert level in TOLERABILITY_LEVELS
            assert classify_icao(probability, severity) == level


def test_highest_risk_ignores_order():
    rows = [
        {"probability": 1, "severity": "E"},
        {"probability": 3, "severity": "C"},
        {"probability": 5, "severity": "A"},
        {"probability": None, "severity": None},
    ]
    results = {highest_risk(list(order), ICAO) for order in itertools.permutations(rows)}
    assert results == {INTOLERABLE}

    integrated = [{"impact": 1, "likelihood": 1}, {"impact": 4, "likelihood": 1}, {}]
    results = {highest_risk(list(order), INTEGRATED) for order in itertools.permutations(integrated)}
    assert results == {MODERATE}
