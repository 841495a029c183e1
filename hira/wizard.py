"""The four-step HIRA wizard.

A :class:`WizardSession` holds the draft data of one project, decides which
steps may be entered, and persists each step through the data service. The
:class:`WizardRegistry` keeps one session per project for the running app.
"""

from __future__ import annotations

import logging
import threading
import uuid
import weakref
from contextlib import nullcontext
from typing import Iterable, Mapping, Optional

from .aggregation import (
    SCORING_FIELDS,
    assessments_requiring_controls,
    flatten_hazards,
    group_by_event,
    merge_assessments,
    prune_incomplete,
)
from .autosave import Debouncer
from .errors import (
    HiraError,
    StepTransitionError,
    ValidationError,
    format_error_message,
    handle_error,
)
from .matrices import ICAO, INTEGRATED, normalize_matrix_type
from .scoring import highest_risk, is_scored, risk_distribution, risk_level

logger = logging.getLogger(__name__)

DASHBOARD = 0
PROJECT_DETAILS = 1
HAZARD_IDENTIFICATION = 2
RISK_ASSESSMENT = 3
RISK_CONTROLS = 4

STEP_NAMES = {
    DASHBOARD: 'Projects Dashboard',
    PROJECT_DETAILS: 'Project Details',
    HAZARD_IDENTIFICATION: 'Hazard Identification',
    RISK_ASSESSMENT: 'Risk Assessment',
    RISK_CONTROLS: 'Risk Controls',
}

AUTOSAVE_STEPS = (HAZARD_IDENTIFICATION, RISK_ASSESSMENT)
CONTROL_FIELDS = ('additional_mitigation', 'risk_owner', 'target_date', 'date_implemented')
PROVISIONAL_PREFIX = 'tmp-'

# Scoring inputs owned by each matrix; a row scored under one drops the other's.
MATRIX_INPUTS = {
    ICAO: ('probability', 'severity'),
    INTEGRATED: ('likelihood', 'impact'),
}


def new_provisional_id() -> str:
    return PROVISIONAL_PREFIX + uuid.uuid4().hex


def is_provisional(value) -> bool:
    return isinstance(value, str) and value.startswith(PROVISIONAL_PREFIX)


def _key(value):
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return value


def _blank(value) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


class WizardSession:
    """Draft state and step gating for one project.

    Identifiers generated here are provisional (``tmp-...``) until the data
    service returns the server id for them; the accumulated mapping is
    applied to every later submission so resubmitting a draft never creates
    duplicate records.
    """

    def __init__(self, service, *, matrix_type: str = ICAO, autosave_delay: float = 1.0,
                 timer_factory=threading.Timer, context=None):
        self.service = service
        self.matrix_type = normalize_matrix_type(matrix_type)
        self.current_step = DASHBOARD
        self.error: Optional[str] = None
        self.project: Optional[dict] = None
        self.events: list[dict] = []
        self.assessments: list[dict] = []
        self.controls: list[dict] = []
        self._id_map: dict[str, int] = {}
        self._context = context or nullcontext
        self._lock = threading.RLock()
        self._autosaver = Debouncer(autosave_delay, self._autosave, timer_factory=timer_factory)

    @property
    def project_id(self) -> Optional[str]:
        return self.project.get('project_id') if self.project else None

    @property
    def autosave_pending(self) -> bool:
        return self._autosaver.pending

    # --- navigation ---------------------------------------------------------

    def has_step_data(self, step: int) -> bool:
        if step <= DASHBOARD:
            return True
        if step == PROJECT_DETAILS:
            return self.project_id is not None
        if step == HAZARD_IDENTIFICATION:
            return bool(flatten_hazards(prune_incomplete(self.events)))
        if step == RISK_ASSESSMENT:
            return any(is_scored(row, self.matrix_type) for row in self.assessments)
        return bool(self.controls)

    def set_current_step(self, step) -> int:
        """Move to ``step``; entering step N > 1 needs data for step N - 1."""
        try:
            step = int(step)
        except (TypeError, ValueError):
            raise ValidationError(f'Invalid step: {step!r}')
        if step not in STEP_NAMES:
            raise ValidationError(f'Invalid step: {step}')

        with self._lock:
            if step > PROJECT_DETAILS and not self.has_step_data(step - 1):
                message = f'Please complete {STEP_NAMES[step - 1]} first'
                self.error = message
                raise StepTransitionError(message, current_step=self.current_step,
                                          requested_step=step, context=STEP_NAMES[step])
            self.current_step = step
            self.error = None
            return step

    def _fail(self, step: int, exc: Exception):
        err = handle_error(exc, STEP_NAMES[step])
        self.error = f'{STEP_NAMES[step]}: {format_error_message(err)}'
        if err is exc:
            raise err
        raise err from exc

    def _require_project(self) -> None:
        if self.project_id is None:
            raise ValidationError('No active project found. Please ensure the project is created first.')

    # --- step 1: project details ----------------------------------------------

    def save_project_details(self, data: Mapping) -> dict:
        with self._lock:
            try:
                details = self._project_details(data)
                if self.project_id is None:
                    details['matrix_type'] = self.matrix_type
                    project = self.service.create_project(details)
                else:
                    project = self.service.update_project(self.project_id, details)
            except Exception as exc:
                self._fail(PROJECT_DETAILS, exc)
            self.project = project
            self.error = None
            self.current_step = HAZARD_IDENTIFICATION
            return project

    @staticmethod
    def _project_details(data: Mapping) -> dict:
        facilitator = data.get('facilitator') or {}
        required = {
            'title': data.get('title'),
            'facilitator.name': facilitator.get('name'),
            'facilitator.designation': facilitator.get('designation'),
            'operational_desc': data.get('operational_desc'),
        }
        missing = [field for field, value in required.items()
                   if not isinstance(value, str) or not value.strip()]
        if missing:
            raise ValidationError('Please fill in all required fields', details={'fields': missing})

        attendees = [
            {'name': (a.get('name') or '').strip(), 'designation': (a.get('designation') or '').strip()}
            for a in data.get('attendees') or []
            if not _blank(a.get('name')) or not _blank(a.get('designation'))
        ]
        details = {
            'title': data['title'].strip(),
            'date': data.get('date') or None,
            'facilitator': {'name': facilitator['name'].strip(),
                            'designation': facilitator['designation'].strip()},
            'attendees': attendees,
            'operational_desc': data['operational_desc'].strip(),
        }
        if 'operational_files' in data:
            details['operational_files'] = list(data.get('operational_files') or [])
        if data.get('project_id'):
            details['project_id'] = data['project_id']
        return details

    def attach_files(self, files: Iterable[Mapping]) -> dict:
        """Replace the project's attachment list."""
        with self._lock:
            try:
                self._require_project()
                self.project = self.service.update_project(
                    self.project_id, {'operational_files': list(files)})
            except Exception as exc:
                self._fail(PROJECT_DETAILS, exc)
            return self.project

    # --- step 2: hazard identification ------------------------------------------

    def save_hazards(self, events: Iterable[Mapping], advance: bool = True) -> list[dict]:
        self._autosaver.flush()
        with self._lock:
            try:
                self._require_project()
                tree = prune_incomplete(events)
                if not flatten_hazards(tree):
                    raise ValidationError(
                        'Please add at least one safety event with hazards and consequences')
                self.events = self._persist_hazards(self._assign_ids(tree))
            except Exception as exc:
                self._fail(HAZARD_IDENTIFICATION, exc)
            self.error = None
            if advance:
                self.current_step = RISK_ASSESSMENT
            return self.events

    def _assign_ids(self, tree: Iterable[Mapping]) -> list[dict]:
        """Copy of ``tree`` with known provisional ids replaced and missing ones generated."""
        def resolve(node):
            node_id = node.get('id')
            if _blank(node_id):
                return new_provisional_id()
            return self._id_map.get(str(node_id), node_id)

        assigned = []
        for event in tree:
            hazards = []
            for hazard in event.get('hazards') or []:
                consequences = [dict(consequence, id=resolve(consequence))
                                for consequence in hazard.get('consequences') or []]
                hazards.append(dict(hazard, id=resolve(hazard), consequences=consequences))
            assigned.append(dict(event, id=resolve(event), hazards=hazards))
        return assigned

    def _persist_hazards(self, tree: list[dict]) -> list[dict]:
        saved, id_map = self.service.save_events(self.project_id, prune_incomplete(tree))
        self._id_map.update(id_map)
        logger.debug('Saved %d events for %s (%d ids mapped)', len(saved), self.project_id, len(id_map))
        self._rebuild_assessments(saved)
        return saved

    def _rebuild_assessments(self, events: list[dict]) -> None:
        draft = [dict(row, consequence_id=self._id_map.get(str(row.get('consequence_id')),
                                                            row.get('consequence_id')))
                 for row in self.assessments]
        self.assessments = merge_assessments(flatten_hazards(prune_incomplete(events)), draft)

    # --- step 3: risk assessment ----------------------------------------------

    def set_matrix_type(self, matrix_type: str) -> str:
        with self._lock:
            matrix_type = normalize_matrix_type(matrix_type)
            if self.project_id is not None and matrix_type != self.matrix_type:
                try:
                    self.project = self.service.set_matrix_type(self.project_id, matrix_type)
                except Exception as exc:
                    self._fail(RISK_ASSESSMENT, exc)
            self.matrix_type = matrix_type
            self._rescore()
            return matrix_type

    def _rescore(self) -> None:
        for row in self.assessments:
            if is_scored(row, self.matrix_type):
                row['matrix_type'] = self.matrix_type
                row['tolerability'] = risk_level(row, self.matrix_type,
                                                 strict=self.service.strict_matrix)

    def _apply_assessment_draft(self, rows: Iterable[Mapping]) -> None:
        incoming = []
        for row in rows:
            row = dict(row)
            row['consequence_id'] = self._id_map.get(str(_key(row.get('consequence_id'))),
                                                     _key(row.get('consequence_id')))
            row['tolerability'] = None
            incoming.append(row)
        current = {row.get('consequence_id'): row for row in self.assessments}
        for row in incoming:
            target = current.get(row['consequence_id'])
            if target is None:
                continue
            for field in SCORING_FIELDS:
                if field in row:
                    target[field] = row[field]
            if is_scored(target, self.matrix_type):
                self._clear_other_inputs(target)
        self._rescore()

    def _clear_other_inputs(self, row: dict) -> None:
        for matrix_type, fields in MATRIX_INPUTS.items():
            if matrix_type != self.matrix_type:
                for field in fields:
                    row[field] = None

    def save_assessments(self, rows: Optional[Iterable[Mapping]] = None,
                         matrix_type: Optional[str] = None, advance: bool = True) -> list[dict]:
        self._autosaver.flush()
        with self._lock:
            try:
                self._require_project()
                if matrix_type is not None:
                    self.set_matrix_type(matrix_type)
                if rows is not None:
                    self._apply_assessment_draft(rows)
                if advance and not self.has_step_data(RISK_ASSESSMENT):
                    raise ValidationError('Please score at least one consequence before continuing')
                self._persist_assessments()
            except Exception as exc:
                self._fail(RISK_ASSESSMENT, exc)
            self.error = None
            if advance:
                self.current_step = RISK_CONTROLS
            return self.assessments

    def _persist_assessments(self) -> int:
        saved = 0
        for row in self.assessments:
            if not is_scored(row, self.matrix_type):
                continue
            if is_provisional(row.get('consequence_id')):
                raise ValidationError('Save the hazard identification step before scoring its consequences')
            record = self.service.upsert_assessment(row['consequence_id'], self.matrix_type, row)
            row['assessment_id'] = record['assessment_id']
            for field in SCORING_FIELDS + ('matrix_type',):
                row[field] = record[field]
            saved += 1
        self.controls = self.service.list_controls(self.project_id)
        return saved

    # --- step 4: risk controls -------------------------------------------------

    def save_controls(self, controls: Iterable[Mapping]) -> list[dict]:
        self._autosaver.flush()
        with self._lock:
            try:
                self._require_project()
                eligible = {row['assessment_id']: row for row in self.control_rows()
                            if row.get('assessment_id') is not None}
                by_consequence = {row['consequence_id']: assessment_id
                                  for assessment_id, row in eligible.items()}
                for item in controls:
                    if all(_blank(item.get(field)) for field in CONTROL_FIELDS):
                        continue
                    assessment_id = _key(item.get('assessment_id'))
                    if assessment_id is None:
                        consequence_id = _key(item.get('consequence_id'))
                        assessment_id = by_consequence.get(
                            self._id_map.get(str(consequence_id), consequence_id))
                    if assessment_id not in eligible:
                        raise ValidationError(
                            'Risk controls are only recorded for risks above the acceptable level',
                            details={'assessment_id': item.get('assessment_id'),
                                     'consequence_id': item.get('consequence_id')})
                    self.service.upsert_control(assessment_id, item)
                self.controls = self.service.list_controls(self.project_id)
            except Exception as exc:
                self._fail(RISK_CONTROLS, exc)
            self.error = None
            return self.control_rows()

    def control_rows(self) -> list[dict]:
        """Assessments above the lowest band, each with its recorded control (if any)."""
        by_assessment = {control['assessment_id']: control for control in self.controls}
        rows = []
        for row in assessments_requiring_controls(self.assessments, self.matrix_type):
            control = by_assessment.get(row.get('assessment_id')) or {}
            row['control_id'] = control.get('id')
            for field in CONTROL_FIELDS:
                row[field] = control.get(field)
            rows.append(row)
        return rows

    # --- auto-save ------------------------------------------------------------

    def schedule_autosave(self, step: int, data) -> None:
        """Record a draft now and persist it once edits pause."""
        if step not in AUTOSAVE_STEPS:
            raise ValidationError(f'Auto-save is not available for step {step}')
        with self._lock:
            if step == HAZARD_IDENTIFICATION:
                self.events = self._assign_ids(data or [])
            else:
                self._apply_assessment_draft(data or [])
        self._autosaver.trigger(step)

    def _autosave(self, step: int) -> None:
        with self._context():
            with self._lock:
                if self.project_id is None:
                    return
                if step == HAZARD_IDENTIFICATION:
                    if not prune_incomplete(self.events):
                        return
                    self._persist_hazards(self.events)
                    self.events = self._assign_ids(self.events)
                else:
                    self._persist_assessments()
                logger.debug('Auto-saved %s for %s', STEP_NAMES[step], self.project_id)

    # --- lifecycle ------------------------------------------------------------

    def load(self, project_id: str) -> 'WizardSession':
        with self._lock:
            try:
                bundle = self.service.load_project_bundle(project_id)
            except Exception as exc:
                self._fail(DASHBOARD, exc)
            self.project = bundle['project']
            self.matrix_type = normalize_matrix_type(self.project.get('matrix_type') or self.matrix_type)
            self.events = bundle['events']
            self.assessments = merge_assessments(flatten_hazards(self.events), bundle['assessments'])
            self.controls = bundle['controls']
            self._id_map = {}
            self.current_step = PROJECT_DETAILS
            self.error = None
            return self

    def reset(self) -> None:
        self._autosaver.cancel()
        with self._lock:
            self.project = None
            self.events = []
            self.assessments = []
            self.controls = []
            self._id_map = {}
            self.error = None
            self.current_step = DASHBOARD

    def close(self) -> None:
        self._autosaver.cancel()

    # --- views ----------------------------------------------------------------

    def highest_risk(self) -> str:
        return highest_risk(self.assessments, self.matrix_type)

    def assessment_rows(self) -> list[dict]:
        return [dict(row) for row in self.assessments]

    def grouped_assessments(self) -> list[dict]:
        return group_by_event(self.assessments)

    def summary(self) -> dict:
        scored = [row for row in self.assessments if is_scored(row, self.matrix_type)]
        control_rows = self.control_rows()
        return {
            'project_id': self.project_id,
            'title': self.project.get('title') if self.project else None,
            'matrix_type': self.matrix_type,
            'highest_risk': self.highest_risk(),
            'distribution': risk_distribution(self.assessments, self.matrix_type),
            'consequences': len(self.assessments),
            'assessed': len(scored),
            'controls_required': len(control_rows),
            'controls_recorded': sum(1 for row in control_rows if row.get('control_id')),
        }

    def to_dict(self) -> dict:
        return {
            'current_step': self.current_step,
            'step_name': STEP_NAMES[self.current_step],
            'matrix_type': self.matrix_type,
            'project': self.project,
            'events': self.events,
            'assessments': self.assessments,
            'groups': self.grouped_assessments(),
            'controls': self.control_rows(),
            'error': self.error,
            'autosave_pending': self.autosave_pending,
        }


def _close_sessions(sessions: dict) -> None:
    for session in list(sessions.values()):
        session.close()
    sessions.clear()


class WizardRegistry:
    """One wizard session per project id for the running application."""

    def __init__(self, service, *, matrix_type: str = ICAO, autosave_delay: float = 1.0,
                 timer_factory=threading.Timer, context=None):
        self.service = service
        self.matrix_type = matrix_type
        self.autosave_delay = autosave_delay
        self.timer_factory = timer_factory
        self.context = context
        self._sessions: dict[str, WizardSession] = {}
        self._lock = threading.Lock()
        weakref.finalize(self, _close_sessions, self._sessions)

    def create(self) -> WizardSession:
        return WizardSession(self.service, matrix_type=self.matrix_type,
                             autosave_delay=self.autosave_delay,
                             timer_factory=self.timer_factory, context=self.context)

    def register(self, session: WizardSession) -> WizardSession:
        if session.project_id is None:
            raise ValidationError('Only saved projects can be registered')
        with self._lock:
            self._sessions[session.project_id] = session
        return session

    def get(self, project_id: str) -> WizardSession:
        with self._lock:
            session = self._sessions.get(project_id)
        if session is not None:
            return session
        session = self.create().load(project_id)
        with self._lock:
            return self._sessions.setdefault(project_id, session)

    def discard(self, project_id: str) -> None:
        with self._lock:
            session = self._sessions.pop(project_id, None)
        if session is not None:
            session.close()

    def close_all(self) -> None:
        with self._lock:
            sessions = list(self._sessions.values())
            self._sessions.clear()
        for session in sessions:
            session.close()
