"""Risk scoring and tolerability classification.

All functions here are pure: they read the static tables in
:mod:`hira.matrices` and never touch the database.
"""

from __future__ import annotations

from typing import Iterable, Mapping, Optional

from .errors import MatrixLookupError
from .matrices import (
    ACCEPTABLE,
    HIGH,
    ICAO,
    ICAO_RISK_MATRIX,
    LOW,
    MEDIUM,
    MODERATE,
    RISK_SCORE_MAP,
    levels_for,
    normalize_matrix_type,
)


def _as_int(value) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(str(value).strip())
    except ValueError:
        return None


def _as_letter(value) -> Optional[str]:
    if not isinstance(value, str) or not value.strip():
        return None
    return value.strip().upper()


def classify_icao(probability, severity, strict: bool = False) -> str:
    """Tolerability of an ICAO (probability, severity) pair.

    Pairs missing from the table fall back to ACCEPTABLE unless ``strict``
    is set, in which case :class:`MatrixLookupError` is raised.
    """
    key = (_as_int(probability), _as_letter(severity))
    try:
        return ICAO_RISK_MATRIX[key]
    except KeyError:
        if strict:
            raise MatrixLookupError(
                f'No ICAO classification for probability={probability!r}, severity={severity!r}')
        return ACCEPTABLE


def score_integrated(severity, probability) -> int:
    """Integrated matrix score in 1..25, or 0 when either input is out of range."""
    return RISK_SCORE_MAP.get((_as_int(severity), _as_int(probability)), 0)


def band_for_score(score: int) -> str:
    if score >= 20:
        return HIGH
    if score >= 15:
        return MODERATE
    if score >= 7:
        return MEDIUM
    return LOW


def classify_integrated(severity, probability, strict: bool = False) -> str:
    score = score_integrated(severity, probability)
    if score == 0 and strict:
        raise MatrixLookupError(
            f'No Integrated score for severity={severity!r}, probability={probability!r}')
    return band_for_score(score)


def lowest_level(matrix_type: str) -> str:
    return levels_for(matrix_type)[0]


def is_scored(row: Mapping, matrix_type: str) -> bool:
    """True when ``row`` carries both scoring inputs for ``matrix_type``."""
    if normalize_matrix_type(matrix_type) == ICAO:
        return _as_int(row.get('probability')) is not None and _as_letter(row.get('severity')) is not None
    return _as_int(row.get('likelihood')) is not None and _as_int(row.get('impact')) is not None


def risk_level(row: Mapping, matrix_type: str, strict: bool = False) -> Optional[str]:
    """Derived risk label for one assessment row.

    Integrated rows score impact on the severity axis and likelihood on the
    probability axis. Returns None when the row is not scored and carries no
    stored label for this matrix.
    """
    matrix_type = normalize_matrix_type(matrix_type)
    if is_scored(row, matrix_type):
        if matrix_type == ICAO:
            return classify_icao(row.get('probability'), row.get('severity'), strict=strict)
        return classify_integrated(row.get('impact'), row.get('likelihood'), strict=strict)

    stored = row.get('tolerability')
    if stored in levels_for(matrix_type):
        return stored
    return None


def highest_risk(assessments: Iterable[Mapping], matrix_type: str, strict: bool = False) -> str:
    """Highest risk level across ``assessments``; the lowest level when empty."""
    levels = levels_for(matrix_type)
    highest_index = 0
    for assessment in assessments:
        level = risk_level(assessment, matrix_type, strict=strict)
        if level is None:
            continue
        idx = levels.index(level)
        if idx > highest_index:
            highest_index = idx
    return levels[highest_index]


def requires_controls(row: Mapping, matrix_type: str, strict: bool = False) -> bool:
    level = risk_level(row, matrix_type, strict=strict)
    return level is not None and level != lowest_level(matrix_type)


def risk_distribution(rows: Iterable[Mapping], matrix_type: str) -> dict[str, int]:
    counts = {level: 0 for level in levels_for(matrix_type)}
    for row in rows:
        level = risk_level(row, matrix_type)
        if level is not None:
            counts[level] += 1
    return counts
