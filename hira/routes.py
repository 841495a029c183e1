import logging

from flask import Blueprint, current_app, jsonify, request, send_from_directory
from werkzeug.exceptions import HTTPException

from .errors import (
    API_ERROR,
    NOT_FOUND,
    STEP_LOCKED,
    HiraError,
    ValidationError,
    format_error_message,
    handle_error,
)
from .matrices import ICAO, matrix_reference, normalize_matrix_type
from .scoring import is_scored, requires_controls, risk_level, score_integrated
from .storage import SUBFOLDER, file_size
from .wizard import HAZARD_IDENTIFICATION, PROJECT_DETAILS, RISK_ASSESSMENT, STEP_NAMES

logger = logging.getLogger(__name__)

main_bp = Blueprint('main', __name__)

STATUS_CODES = {
    NOT_FOUND: 404,
    STEP_LOCKED: 409,
    API_ERROR: 502,
}


def _hira():
    return current_app.extensions['hira']


def _wizard(project_id):
    return _hira()['wizards'].get(project_id)


def _payload():
    return request.get_json(silent=True) or {}


@main_bp.errorhandler(HiraError)
def hira_error(error):
    if isinstance(error, ValidationError):
        status = STATUS_CODES.get(error.code, 400)
    else:
        status = STATUS_CODES.get(error.code, 500)
    body = {'success': False, 'message': format_error_message(error), 'code': error.code}
    if error.details:
        body['details'] = error.details
    return jsonify(body), status


@main_bp.errorhandler(Exception)
def unexpected_error(error):
    if isinstance(error, HTTPException):
        return error
    err = handle_error(error, request.endpoint or 'request')
    logger.exception('Unhandled error in %s', request.path)
    return jsonify({'success': False, 'message': format_error_message(err), 'code': err.code}), 500


# --- projects ---

@main_bp.route('/api/projects', methods=['GET'])
def list_projects():
    projects = _hira()['service'].list_projects()
    return jsonify({'success': True, 'projects': projects})


@main_bp.route('/api/projects', methods=['POST'])
def create_project():
    registry = _hira()['wizards']
    wizard = registry.create()
    wizard.set_current_step(PROJECT_DETAILS)
    project = wizard.save_project_details(_payload())
    registry.register(wizard)
    return jsonify({'success': True, 'message': 'Project created',
                    'project': project, 'wizard': wizard.to_dict()}), 201


@main_bp.route('/api/projects/<project_id>', methods=['GET'])
def get_project(project_id):
    wizard = _wizard(project_id)
    return jsonify({'success': True, 'project': wizard.project, 'wizard': wizard.to_dict()})


@main_bp.route('/api/projects/<project_id>', methods=['PUT'])
def update_project(project_id):
    wizard = _wizard(project_id)
    data = dict(_payload())
    data.setdefault('operational_files', wizard.project.get('operational_files', []))
    project = wizard.save_project_details(data)
    return jsonify({'success': True, 'message': 'Project updated', 'project': project})


@main_bp.route('/api/projects/<project_id>', methods=['DELETE'])
def delete_project(project_id):
    hira = _hira()
    hira['service'].get_project(project_id)
    hira['wizards'].discard(project_id)
    removed = hira['storage'].delete_project_files(project_id)
    hira['service'].delete_project(project_id)
    return jsonify({'success': True, 'message': 'Project deleted', 'files_removed': removed})


# --- wizard navigation ---

@main_bp.route('/api/projects/<project_id>/step', methods=['GET'])
def get_step(project_id):
    wizard = _wizard(project_id)
    return jsonify({'success': True, 'current_step': wizard.current_step,
                    'step_name': STEP_NAMES[wizard.current_step]})


@main_bp.route('/api/projects/<project_id>/step', methods=['PUT'])
def set_step(project_id):
    wizard = _wizard(project_id)
    step = wizard.set_current_step(_payload().get('step'))
    return jsonify({'success': True, 'current_step': step, 'step_name': STEP_NAMES[step]})


# --- hazard identification ---

@main_bp.route('/api/projects/<project_id>/hazards', methods=['GET'])
def get_hazards(project_id):
    wizard = _wizard(project_id)
    return jsonify({'success': True, 'events': wizard.events})


@main_bp.route('/api/projects/<project_id>/hazards', methods=['PUT'])
def save_hazards(project_id):
    wizard = _wizard(project_id)
    data = _payload()
    events = wizard.save_hazards(data.get('events') or [], advance=data.get('advance', True))
    return jsonify({'success': True, 'message': 'Hazards saved', 'events': events,
                    'current_step': wizard.current_step})


@main_bp.route('/api/projects/<project_id>/hazards/draft', methods=['POST'])
def draft_hazards(project_id):
    wizard = _wizard(project_id)
    wizard.schedule_autosave(HAZARD_IDENTIFICATION, _payload().get('events') or [])
    return jsonify({'success': True, 'events': wizard.events}), 202


# --- risk assessment ---

def _assessment_view(wizard):
    return {
        'success': True,
        'matrix_type': wizard.matrix_type,
        'assessments': wizard.assessment_rows(),
        'groups': wizard.grouped_assessments(),
        'highest_risk': wizard.highest_risk(),
        'current_step': wizard.current_step,
    }


@main_bp.route('/api/projects/<project_id>/assessments', methods=['GET'])
def get_assessments(project_id):
    return jsonify(_assessment_view(_wizard(project_id)))


@main_bp.route('/api/projects/<project_id>/assessments', methods=['PUT'])
def save_assessments(project_id):
    wizard = _wizard(project_id)
    data = _payload()
    wizard.save_assessments(data.get('assessments'), matrix_type=data.get('matrix_type'),
                            advance=data.get('advance', True))
    return jsonify(_assessment_view(wizard))


@main_bp.route('/api/projects/<project_id>/assessments/draft', methods=['POST'])
def draft_assessments(project_id):
    wizard = _wizard(project_id)
    wizard.schedule_autosave(RISK_ASSESSMENT, _payload().get('assessments') or [])
    return jsonify(_assessment_view(wizard)), 202


@main_bp.route('/api/projects/<project_id>/matrix', methods=['PUT'])
def set_matrix(project_id):
    wizard = _wizard(project_id)
    matrix_type = wizard.set_matrix_type(_payload().get('matrix_type'))
    return jsonify({'success': True, 'matrix_type': matrix_type,
                    'highest_risk': wizard.highest_risk()})


# --- risk controls ---

@main_bp.route('/api/projects/<project_id>/controls', methods=['GET'])
def get_controls(project_id):
    wizard = _wizard(project_id)
    return jsonify({'success': True, 'controls': wizard.control_rows()})


@main_bp.route('/api/projects/<project_id>/controls', methods=['PUT'])
def save_controls(project_id):
    wizard = _wizard(project_id)
    controls = wizard.save_controls(_payload().get('controls') or [])
    return jsonify({'success': True, 'message': 'Risk controls saved', 'controls': controls})


@main_bp.route('/api/projects/<project_id>/summary', methods=['GET'])
def summary(project_id):
    return jsonify({'success': True, 'summary': _wizard(project_id).summary()})


# --- operational files ---

@main_bp.route('/api/projects/<project_id>/files', methods=['GET'])
def list_files(project_id):
    _hira()['service'].get_project(project_id)
    return jsonify({'success': True, 'files': _hira()['storage'].list_files(project_id)})


@main_bp.route('/api/projects/<project_id>/files', methods=['POST'])
def upload_files(project_id):
    store = _hira()['storage']
    wizard = _wizard(project_id)
    files = [f for f in request.files.getlist('files') if f and f.filename]
    if not files:
        raise ValidationError('No files were uploaded')

    existing = store.list_files(project_id)
    store.validate_files([file_size(f) for f in files], existing)
    uploaded = []
    for file in files:
        uploaded.append(store.upload(file, project_id, existing=existing + uploaded))

    known = list(wizard.project.get('operational_files') or [])
    wizard.attach_files(known + uploaded)
    return jsonify({'success': True, 'message': f'{len(uploaded)} file(s) uploaded',
                    'files': uploaded}), 201


@main_bp.route('/api/projects/<project_id>/files/<name>', methods=['DELETE'])
def delete_file(project_id, name):
    store = _hira()['storage']
    wizard = _wizard(project_id)
    path = f'{SUBFOLDER}/{name}'
    if not name.startswith(f'{project_id}_'):
        raise ValidationError(f'File {name} does not belong to project {project_id}')
    store.delete(path)
    remaining = [f for f in wizard.project.get('operational_files') or [] if f.get('path') != path]
    wizard.attach_files(remaining)
    return jsonify({'success': True, 'message': 'File deleted'})


@main_bp.route('/uploads/<path:filename>')
def uploaded_file(filename):
    return send_from_directory(current_app.config['UPLOAD_FOLDER'], filename, as_attachment=True)


# --- matrices ---

@main_bp.route('/api/matrices/<matrix_type>', methods=['GET'])
def get_matrix(matrix_type):
    return jsonify({'success': True, 'matrix': matrix_reference(matrix_type)})


@main_bp.route('/api/risk/score', methods=['POST'])
def score_risk():
    data = _payload()
    matrix_type = normalize_matrix_type(data.get('matrix_type') or ICAO)
    if not is_scored(data, matrix_type):
        raise ValidationError('Both scoring values are required')
    strict = _hira()['service'].strict_matrix
    result = {
        'success': True,
        'matrix_type': matrix_type,
        'risk_level': risk_level(data, matrix_type, strict=strict),
        'requires_controls': requires_controls(data, matrix_type, strict=strict),
    }
    if matrix_type != ICAO:
        result['score'] = score_integrated(data.get('impact'), data.get('likelihood'))
    return jsonify(result)
