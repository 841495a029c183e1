"""Persistence of HIRA projects and their hazard, assessment and control records."""

from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from datetime import date
from typing import Iterable, Mapping, Optional

from sqlalchemy.exc import SQLAlchemyError

from .errors import BackendError, HiraError, NotFoundError, ValidationError
from .matrices import ICAO, normalize_matrix_type
from .models import Assessment, Consequence, Control, Event, Hazard, Project, db
from .project_ids import generate_project_id, is_valid_project_id
from .scoring import is_scored, requires_controls, risk_level

logger = logging.getLogger(__name__)

PROJECT_FIELDS = ('title', 'date', 'facilitator', 'attendees', 'operational_desc',
                  'operational_files', 'matrix_type')
ID_ATTEMPTS = 5


@contextmanager
def backend_operation(context: str):
    """Roll back and re-raise database failures as ``BackendError``."""
    try:
        yield
    except HiraError:
        db.session.rollback()
        raise
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.error('Database error in %s: %s', context, exc)
        raise BackendError('Database operation failed',
                           details={'original_error': str(exc)}, context=context) from exc


def _parse_id(value) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return None


def _required_text(value, label: str) -> str:
    text = value.strip() if isinstance(value, str) else ''
    if not text:
        raise ValidationError(f'{label} is required')
    return text


def _optional_text(value) -> str:
    return value.strip() if isinstance(value, str) else ''


def _optional_int(value, label: str) -> Optional[int]:
    if value is None or value == '':
        return None
    if isinstance(value, bool):
        raise ValidationError(f'{label} must be a whole number')
    try:
        return int(str(value).strip())
    except ValueError:
        raise ValidationError(f'{label} must be a whole number')


def _optional_date(value, label: str) -> Optional[date]:
    if value is None or value == '':
        return None
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value).strip()[:10])
    except ValueError:
        raise ValidationError(f'{label} must be a date in YYYY-MM-DD format')


def _assessment_fields(matrix_type: str, values: Mapping) -> dict:
    if matrix_type == ICAO:
        severity = values.get('severity')
        severity = severity.strip().upper() if isinstance(severity, str) and severity.strip() else None
        return {
            'probability': _optional_int(values.get('probability'), 'Probability'),
            'severity': severity,
            'likelihood': None,
            'impact': None,
        }
    return {
        'probability': None,
        'severity': None,
        'likelihood': _optional_int(values.get('likelihood'), 'Likelihood'),
        'impact': _optional_int(values.get('impact'), 'Impact'),
    }


class HiraDataService:
    """Data access for the wizard. Every public method commits its own work."""

    def __init__(self, list_retries: int = 3, retry_delay: float = 0.5,
                 strict_matrix: bool = False, timezone: str = 'UTC'):
        self.list_retries = max(1, list_retries)
        self.retry_delay = retry_delay
        self.strict_matrix = strict_matrix
        self.timezone = timezone

    @classmethod
    def from_config(cls, config: Mapping) -> 'HiraDataService':
        return cls(
            list_retries=config.get('HIRA_PROJECT_LIST_RETRIES', 3),
            retry_delay=config.get('HIRA_RETRY_DELAY', 0.5),
            strict_matrix=not config.get('HIRA_ICAO_MISSING_FALLBACK', True),
            timezone=config.get('HIRA_TIMEZONE', 'UTC'),
        )

    # --- projects -----------------------------------------------------------

    def _project_or_404(self, project_id) -> Project:
        project = Project.query.filter_by(project_id=project_id).first()
        if project is None:
            raise NotFoundError(f'Project not found: {project_id}')
        return project

    def list_projects(self) -> list[dict]:
        last_error = None
        for attempt in range(1, self.list_retries + 1):
            try:
                projects = Project.query.order_by(Project.created_at.desc(), Project.id.desc()).all()
                return [project.to_dict() for project in projects]
            except SQLAlchemyError as exc:
                db.session.rollback()
                last_error = exc
                logger.warning('Loading projects failed (attempt %d/%d): %s',
                               attempt, self.list_retries, exc)
                if attempt < self.list_retries and self.retry_delay:
                    time.sleep(self.retry_delay * attempt)
        raise BackendError(f'Failed to load projects after {self.list_retries} attempts',
                           details={'original_error': str(last_error)},
                           context='load projects') from last_error

    def get_project(self, project_id) -> dict:
        with backend_operation('load project'):
            return self._project_or_404(project_id).to_dict()

    def _unused_project_id(self) -> str:
        for _ in range(ID_ATTEMPTS):
            project_id = generate_project_id(timezone=self.timezone)
            if Project.query.filter_by(project_id=project_id).first() is None:
                return project_id
            logger.warning('Generated project id %s is taken, retrying', project_id)
        raise BackendError(f'Could not generate a free project id after {ID_ATTEMPTS} attempts',
                           context='create project')

    def create_project(self, data: Mapping) -> dict:
        supplied = data.get('project_id')
        if supplied and not is_valid_project_id(supplied):
            raise ValidationError(f'Invalid project id: {supplied}')
        with backend_operation('create project'):
            if supplied:
                if Project.query.filter_by(project_id=supplied).first() is not None:
                    raise ValidationError(f'Project {supplied} already exists')
                project_id = supplied
            else:
                project_id = self._unused_project_id()
            project = Project(project_id=project_id, title=_required_text(data.get('title'), 'Project title'))
            self._apply_project_fields(project, data)
            db.session.add(project)
            db.session.commit()
            logger.info('Created project %s', project_id)
            return project.to_dict()

    def update_project(self, project_id, data: Mapping) -> dict:
        with backend_operation('update project'):
            project = self._project_or_404(project_id)
            if 'title' in data:
                project.title = _required_text(data.get('title'), 'Project title')
            self._apply_project_fields(project, data)
            db.session.commit()
            return project.to_dict()

    def _apply_project_fields(self, project: Project, data: Mapping) -> None:
        for field in PROJECT_FIELDS:
            if field == 'title' or field not in data:
                continue
            value = data[field]
            if field == 'matrix_type':
                value = normalize_matrix_type(value)
            elif field in ('attendees', 'operational_files'):
                value = list(value or [])
            elif field == 'facilitator':
                value = dict(value or {})
            setattr(project, field, value)

    def set_matrix_type(self, project_id, matrix_type) -> dict:
        return self.update_project(project_id, {'matrix_type': matrix_type})

    def delete_project(self, project_id) -> None:
        with backend_operation('delete project'):
            project = self._project_or_404(project_id)
            db.session.delete(project)
            db.session.commit()
            logger.info('Deleted project %s', project_id)

    def load_project_bundle(self, project_id) -> dict:
        """Project details together with its hazard tree, assessments and controls."""
        return {
            'project': self.get_project(project_id),
            'events': self.load_events(project_id),
            'assessments': self.list_assessments(project_id),
            'controls': self.list_controls(project_id),
        }

    # --- hazard identification ----------------------------------------------

    def load_events(self, project_id) -> list[dict]:
        with backend_operation('load hazards'):
            project = self._project_or_404(project_id)
            return [event.to_dict() for event in project.events]

    def save_events(self, project_id, events: Iterable[Mapping]) -> tuple[list[dict], dict]:
        """Diff-and-upsert the project's hazard tree.

        Records whose submitted id is a persisted id under the same parent are
        updated, the rest are created, and persisted records missing from the
        submission are deleted. Returns the saved tree and a mapping from every
        submitted id (as a string) to its server id. Each event commits on its
        own, so a failure leaves earlier events saved.
        """
        id_map: dict[str, int] = {}
        with backend_operation('save hazards'):
            project = self._project_or_404(project_id)
            existing = {event.id: event for event in project.events}

        kept = set()
        for payload in events:
            with backend_operation('save event'):
                pending = []
                event = existing.get(_parse_id(payload.get('id')))
                name = _required_text(payload.get('name'), 'Safety event name')
                if event is None:
                    event = Event(name=name)
                    project.events.append(event)
                else:
                    event.name = name
                pending.append((payload.get('id'), event))
                self._sync_hazards(event, payload.get('hazards') or [], pending)
                db.session.flush()
                for submitted, record in pending:
                    if submitted is not None and submitted != '':
                        id_map[str(submitted)] = record.id
                db.session.commit()
                kept.add(event.id)

        with backend_operation('remove events'):
            for event_id, event in existing.items():
                if event_id not in kept:
                    db.session.delete(event)
            db.session.commit()
            return [event.to_dict() for event in project.events], id_map

    def _sync_hazards(self, event: Event, hazards: Iterable[Mapping], pending: list) -> None:
        existing = {hazard.id: hazard for hazard in event.hazards if hazard.id is not None}
        keep = []
        for payload in hazards:
            description = _required_text(payload.get('description'), 'Hazard description')
            hazard = existing.get(_parse_id(payload.get('id')))
            if hazard is None:
                hazard = Hazard(description=description)
                event.hazards.append(hazard)
            else:
                hazard.description = description
            keep.append(hazard)
            pending.append((payload.get('id'), hazard))
            self._sync_consequences(hazard, payload.get('consequences') or [], pending)
        for hazard in list(event.hazards):
            if not any(hazard is kept for kept in keep):
                event.hazards.remove(hazard)

    def _sync_consequences(self, hazard: Hazard, consequences: Iterable[Mapping], pending: list) -> None:
        existing = {c.id: c for c in hazard.consequences if c.id is not None}
        keep = []
        for payload in consequences:
            description = _required_text(payload.get('description'), 'Consequence description')
            consequence = existing.get(_parse_id(payload.get('id')))
            if consequence is None:
                consequence = Consequence(description=description)
                hazard.consequences.append(consequence)
            else:
                consequence.description = description
            consequence.current_controls = _optional_text(payload.get('current_controls'))
            keep.append(consequence)
            pending.append((payload.get('id'), consequence))
        for consequence in list(hazard.consequences):
            if not any(consequence is kept for kept in keep):
                hazard.consequences.remove(consequence)

    # --- risk assessment ----------------------------------------------------

    def upsert_assessment(self, consequence_id, matrix_type, values: Mapping,
                          strict: Optional[bool] = None) -> dict:
        """Score a consequence, updating its existing assessment in place."""
        matrix_type = normalize_matrix_type(matrix_type)
        strict = self.strict_matrix if strict is None else strict
        fields = _assessment_fields(matrix_type, values)
        if not is_scored(fields, matrix_type):
            raise ValidationError('Assessment is missing scoring values')
        fields['tolerability'] = risk_level(fields, matrix_type, strict=strict)

        with backend_operation('save assessment'):
            key = _parse_id(consequence_id)
            consequence = db.session.get(Consequence, key) if key is not None else None
            if consequence is None:
                raise NotFoundError(f'Consequence not found: {consequence_id}')

            assessment = consequence.assessment
            if assessment is None:
                assessment = Assessment(matrix_type=matrix_type)
                consequence.assessment = assessment
            assessment.matrix_type = matrix_type
            for field, value in fields.items():
                setattr(assessment, field, value)

            if assessment.control is not None and not requires_controls(fields, matrix_type):
                logger.info('Removing control for consequence %s: risk is now %s',
                            consequence.id, fields['tolerability'])
                assessment.control = None

            db.session.commit()
            return assessment.to_dict()

    def get_assessment_by_consequence(self, consequence_id) -> Optional[dict]:
        with backend_operation('load assessment'):
            assessment = Assessment.query.filter_by(consequence_id=_parse_id(consequence_id)).first()
            return assessment.to_dict() if assessment else None

    def list_assessments(self, project_id) -> list[dict]:
        with backend_operation('load assessments'):
            project = self._project_or_404(project_id)
            assessments = (Assessment.query
                           .join(Consequence, Assessment.consequence_id == Consequence.id)
                           .join(Hazard, Consequence.hazard_id == Hazard.id)
                           .join(Event, Hazard.event_id == Event.id)
                           .filter(Event.project_id == project.id)
                           .order_by(Event.id, Hazard.id, Consequence.id)
                           .all())
            return [assessment.to_dict() for assessment in assessments]

    # --- risk controls ------------------------------------------------------

    def upsert_control(self, assessment_id, data: Mapping) -> dict:
        with backend_operation('save control'):
            key = _parse_id(assessment_id)
            assessment = db.session.get(Assessment, key) if key is not None else None
            if assessment is None:
                raise NotFoundError(f'Assessment not found: {assessment_id}')
            if not requires_controls(assessment.to_dict(), assessment.matrix_type):
                raise ValidationError('Risk controls are only recorded for risks above the acceptable level')

            control = assessment.control
            if control is None:
                control = Control()
                assessment.control = control
            control.additional_mitigation = _optional_text(data.get('additional_mitigation'))
            control.risk_owner = _optional_text(data.get('risk_owner'))
            control.target_date = _optional_date(data.get('target_date'), 'Target date')
            control.date_implemented = _optional_date(data.get('date_implemented'), 'Date implemented')
            db.session.commit()
            return control.to_dict()

    def get_control_by_assessment(self, assessment_id) -> Optional[dict]:
        with backend_operation('load control'):
            control = Control.query.filter_by(assessment_id=_parse_id(assessment_id)).first()
            return control.to_dict() if control else None

    def list_controls(self, project_id) -> list[dict]:
        with backend_operation('load controls'):
            project = self._project_or_404(project_id)
            controls = (Control.query
                        .join(Assessment, Control.assessment_id == Assessment.id)
                        .join(Consequence, Assessment.consequence_id == Consequence.id)
                        .join(Hazard, Consequence.hazard_id == Hazard.id)
                        .join(Event, Hazard.event_id == Event.id)
                        .filter(Event.project_id == project.id)
                        .order_by(Event.id, Hazard.id, Consequence.id)
                        .all())
            return [control.to_dict() for control in controls]

    def delete_control(self, control_id) -> None:
        with backend_operation('delete control'):
            key = _parse_id(control_id)
            control = db.session.get(Control, key) if key is not None else None
            if control is None:
                raise NotFoundError(f'Risk control not found: {control_id}')
            db.session.delete(control)
            db.session.commit()
