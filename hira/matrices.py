"""Static definitions of the two supported risk matrices.

ICAO: probability (1-5) x severity (A-E) -> tolerability.
Integrated: likelihood (1-5) x impact (1-5) -> score (1-25) -> risk band.
"""

from __future__ import annotations

from .errors import ValidationError

ICAO = 'ICAO'
INTEGRATED = 'Integrated'
MATRIX_TYPES = (ICAO, INTEGRATED)

# --- ICAO ---------------------------------------------------------------

INTOLERABLE = 'INTOLERABLE'
TOLERABLE = 'TOLERABLE'
ACCEPTABLE = 'ACCEPTABLE'

# Lowest first.
TOLERABILITY_LEVELS = (ACCEPTABLE, TOLERABLE, INTOLERABLE)

PROBABILITY_VALUES = {
    5: {'label': 'Frequent',
        'description': 'Likely to occur many times (has occurred frequently)'},
    4: {'label': 'Occasional',
        'description': 'Likely to occur sometimes (has occurred infrequently)'},
    3: {'label': 'Remote',
        'description': 'Unlikely to occur, but possible (has occurred rarely)'},
    2: {'label': 'Improbable',
        'description': 'Very unlikely to occur (not known to have occurred)'},
    1: {'label': 'Extremely Improbable',
        'description': 'Almost inconceivable that the event will occur'},
}

SEVERITY_VALUES = {
    'A': {'label': 'Catastrophic',
          'description': 'Equipment destroyed; multiple deaths'},
    'B': {'label': 'Hazardous',
          'description': ('A large reduction in safety margins, physical distress or a '
                          'workload such that the operators cannot be relied upon to '
                          'perform their tasks accurately or completely. Serious injury '
                          'or death to a small number of occupants')},
    'C': {'label': 'Major',
          'description': ('A significant reduction in safety margins, a reduction in the '
                          'ability of the operators to cope with adverse operating '
                          'conditions as a result of increase in workload, or as a result '
                          'of conditions impairing their efficiency. Serious incident. '
                          'Injury to occupants')},
    'D': {'label': 'Minor',
          'description': ('Nuisance. Operating limitations. Use of emergency procedures. '
                          'Minor incident')},
    'E': {'label': 'Negligible',
          'description': 'Little consequences'},
}

ICAO_RISK_MATRIX = {
    (5, 'A'): INTOLERABLE,
    (5, 'B'): INTOLERABLE,
    (5, 'C'): INTOLERABLE,
    (5, 'D'): INTOLERABLE,
    (5, 'E'): TOLERABLE,
    (4, 'A'): INTOLERABLE,
    (4, 'B'): INTOLERABLE,
    (4, 'C'): INTOLERABLE,
    (4, 'D'): TOLERABLE,
    (4, 'E'): ACCEPTABLE,
    (3, 'A'): INTOLERABLE,
    (3, 'B'): INTOLERABLE,
    (3, 'C'): TOLERABLE,
    (3, 'D'): ACCEPTABLE,
    (3, 'E'): ACCEPTABLE,
    (2, 'A'): INTOLERABLE,
    (2, 'B'): TOLERABLE,
    (2, 'C'): ACCEPTABLE,
    (2, 'D'): ACCEPTABLE,
    (2, 'E'): ACCEPTABLE,
    (1, 'A'): TOLERABLE,
    (1, 'B'): ACCEPTABLE,
    (1, 'C'): ACCEPTABLE,
    (1, 'D'): ACCEPTABLE,
    (1, 'E'): ACCEPTABLE,
}

TOLERABILITY_ACTIONS = {
    INTOLERABLE: 'Unacceptable under the existing circumstances.',
    TOLERABLE: 'Acceptable based on risk mitigation. It may require management decision.',
    ACCEPTABLE: 'Acceptable as is. Consequences are negligible.',
}

# --- Integrated ---------------------------------------------------------

LOW = 'LOW'
MEDIUM = 'MEDIUM'
MODERATE = 'MODERATE'
HIGH = 'HIGH'

# Lowest first.
RISK_BANDS = (LOW, MEDIUM, MODERATE, HIGH)

BAND_COLORS = {
    LOW: 'GREEN',
    MEDIUM: 'YELLOW',
    MODERATE: 'AMBER',
    HIGH: 'RED',
}

LIKELIHOOD_VALUES = {
    5: {'label': 'Very High',
        'description': ('Is expected to occur in most situations or is already happening '
                        '(e.g. more than 75% probability)')},
    4: {'label': 'High',
        'description': 'Will probably occur in most situations (e.g. between 45% to 75% probability)'},
    3: {'label': 'Medium',
        'description': 'Might occur at some time (e.g. between 15% to 45% probability)'},
    2: {'label': 'Low',
        'description': ('May occur only in exceptional circumstances '
                        '(e.g. between 2% to 15% probability)')},
    1: {'label': 'Extremely Low',
        'description': ('Almost inconceivable that the event will occur '
                        '(e.g. less than 2% probability)')},
}

IMPACT_VALUES = {
    5: {'label': 'Very Significant',
        'descriptions': {
            'financial': 'More than 30% decrease in PBT',
            'customer': 'More than 10% of customers lost',
            'reputation': 'Very adverse publicity in local/international press',
            'business': 'Less than 70% OTD',
            'safety': 'Catastrophic accident - loss of aircraft/equipment/life',
        }},
    4: {'label': 'Major',
        'descriptions': {
            'financial': '20% to 30% decrease in PBT',
            'customer': '5% to 10% of customers lost',
            'reputation': 'Adverse publicity, limited to news reports',
            'business': 'Between 70% and 75% OTD',
            'safety': 'Major accident - multiple serious injuries, major damage',
        }},
    3: {'label': 'Moderate',
        'descriptions': {
            'financial': '10% to 20% decrease in PBT',
            'customer': '2% to less than 5% of customers lost',
            'reputation': 'May tarnish reputation with specific group',
            'business': 'Between 75% and 80% OTD',
            'safety': 'Significant reduction in safety margins',
        }},
    2: {'label': 'Minor',
        'descriptions': {
            'financial': '5% to 10% decrease in PBT',
            'customer': 'Up to 2% of customers lost',
            'reputation': 'Minor case of damage to reputation',
            'business': 'Between 80% and 85% OTD',
            'safety': 'Minor injuries or damage',
        }},
    1: {'label': 'Negligible',
        'descriptions': {
            'financial': 'Less than 5% decrease in PBT',
            'customer': 'Negligible customers lost',
            'reputation': 'Isolated case, no media coverage',
            'business': 'More than 85% OTD',
            'safety': 'No accident outcome',
        }},
}

# Keyed by (severity, probability); not a product of the two.
RISK_SCORE_MAP = {
    (1, 1): 1, (1, 2): 2, (1, 3): 3, (1, 4): 7, (1, 5): 8,
    (2, 1): 4, (2, 2): 5, (2, 3): 9, (2, 4): 10, (2, 5): 11,
    (3, 1): 6, (3, 2): 12, (3, 3): 13, (3, 4): 14, (3, 5): 20,
    (4, 1): 15, (4, 2): 16, (4, 3): 17, (4, 4): 21, (4, 5): 22,
    (5, 1): 18, (5, 2): 19, (5, 3): 23, (5, 4): 24, (5, 5): 25,
}

RISK_LEVELS = {
    HIGH: {'label': 'High Risk', 'description': 'Immediate action required',
           'range': (20, 25)},
    MODERATE: {'label': 'Moderate Risk', 'description': 'Management attention needed',
               'range': (15, 19)},
    MEDIUM: {'label': 'Medium Risk', 'description': 'Manage by routine procedures',
             'range': (7, 14)},
    LOW: {'label': 'Low Risk', 'description': 'No immediate concern',
          'range': (1, 6)},
}


def normalize_matrix_type(value) -> str:
    """Return the canonical matrix name for ``value`` (case-insensitive)."""
    if isinstance(value, str):
        for name in MATRIX_TYPES:
            if value.strip().lower() == name.lower():
                return name
    raise ValidationError(f'Invalid matrix type: {value!r}')


def levels_for(matrix_type: str) -> tuple:
    """Ordered risk levels, lowest first, for the given matrix."""
    if normalize_matrix_type(matrix_type) == ICAO:
        return TOLERABILITY_LEVELS
    return RISK_BANDS


def matrix_reference(matrix_type: str) -> dict:
    """JSON-ready description of a matrix, as shown on the reference panel."""
    matrix_type = normalize_matrix_type(matrix_type)
    if matrix_type == ICAO:
        return {
            'matrix_type': ICAO,
            'probability': [dict(value=k, **v) for k, v in PROBABILITY_VALUES.items()],
            'severity': [dict(value=k, **v) for k, v in SEVERITY_VALUES.items()],
            'levels': [{'value': level, 'action': TOLERABILITY_ACTIONS[level]}
                       for level in reversed(TOLERABILITY_LEVELS)],
            'cells': [{'probability': p, 'severity': s, 'tolerability': t}
                      for (p, s), t in ICAO_RISK_MATRIX.items()],
        }

    cells = []
    for (severity, probability), score in RISK_SCORE_MAP.items():
        band = next(b for b in RISK_BANDS
                    if RISK_LEVELS[b]['range'][0] <= score <= RISK_LEVELS[b]['range'][1])
        cells.append({'impact': severity, 'likelihood': probability,
                      'score': score, 'risk_level': band, 'color': BAND_COLORS[band]})
    return {
        'matrix_type': INTEGRATED,
        'likelihood': [dict(value=k, **v) for k, v in LIKELIHOOD_VALUES.items()],
        'impact': [dict(value=k, **v) for k, v in IMPACT_VALUES.items()],
        'levels': [{'value': band, 'color': BAND_COLORS[band],
                    'label': RISK_LEVELS[band]['label'],
                    'description': RISK_LEVELS[band]['description'],
                    'range': list(RISK_LEVELS[band]['range'])}
                   for band in reversed(RISK_BANDS)],
        'cells': cells,
    }
