"""Reshape the Event -> Hazard -> Consequence tree into flat assessment rows."""

from __future__ import annotations

from typing import Iterable, Mapping

from .scoring import requires_controls

SCORING_FIELDS = ('probability', 'severity', 'likelihood', 'impact', 'tolerability')


def _text(value) -> str:
    return value.strip() if isinstance(value, str) else ''


def prune_incomplete(events: Iterable[Mapping]) -> list[dict]:
    """Drop events, hazards and consequences that have no name/description yet."""
    pruned = []
    for event in events or []:
        name = _text(event.get('name'))
        if not name:
            continue
        hazards = []
        for hazard in event.get('hazards') or []:
            description = _text(hazard.get('description'))
            if not description:
                continue
            consequences = [
                {
                    'id': consequence.get('id'),
                    'description': _text(consequence.get('description')),
                    'current_controls': _text(consequence.get('current_controls')),
                }
                for consequence in hazard.get('consequences') or []
                if _text(consequence.get('description'))
            ]
            hazards.append({'id': hazard.get('id'), 'description': description,
                            'consequences': consequences})
        pruned.append({'id': event.get('id'), 'name': name, 'hazards': hazards})
    return pruned


def flatten_hazards(events: Iterable[Mapping]) -> list[dict]:
    """One unscored assessment row per consequence, with its event and hazard denormalised."""
    rows = []
    for event in events or []:
        for hazard in event.get('hazards') or []:
            for consequence in hazard.get('consequences') or []:
                row = {
                    'consequence_id': consequence.get('id'),
                    'consequence': consequence.get('description', ''),
                    'current_controls': consequence.get('current_controls', ''),
                    'event_id': event.get('id'),
                    'event': event.get('name', ''),
                    'hazard_id': hazard.get('id'),
                    'hazard': hazard.get('description', ''),
                    'assessment_id': None,
                    'matrix_type': None,
                }
                row.update({field: None for field in SCORING_FIELDS})
                rows.append(row)
    return rows


def group_by_event(rows: Iterable[Mapping]) -> list[dict]:
    """Partition rows by event id, keeping the order in which events first appear."""
    groups: dict = {}
    for row in rows:
        key = row.get('event_id')
        if key not in groups:
            groups[key] = {'event_id': key, 'event': row.get('event', ''), 'assessments': []}
        groups[key]['assessments'].append(row)
    return list(groups.values())


def merge_assessments(rows: Iterable[Mapping], persisted: Iterable[Mapping]) -> list[dict]:
    """Copy persisted scoring onto flattened rows, matched on ``consequence_id``.

    Persisted rows with no matching consequence are dropped; rows with no
    persisted assessment keep empty scoring fields.
    """
    by_consequence = {}
    for record in persisted or []:
        consequence_id = record.get('consequence_id')
        if consequence_id is not None:
            by_consequence[consequence_id] = record

    merged = []
    for row in rows:
        row = dict(row)
        record = by_consequence.get(row.get('consequence_id'))
        if record is not None:
            for field in SCORING_FIELDS + ('matrix_type',):
                row[field] = record.get(field)
            row['assessment_id'] = record.get('assessment_id', record.get('id'))
        merged.append(row)
    return merged


def assessments_requiring_controls(rows: Iterable[Mapping], matrix_type: str) -> list[dict]:
    return [dict(row) for row in rows if requires_controls(row, matrix_type)]
