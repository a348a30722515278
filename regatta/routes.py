import logging

from flask import Blueprint, current_app, jsonify, request
from werkzeug.exceptions import HTTPException

from .errors import NotFound, RegattaError, StoreError, ValidationError, envelope
from .models import (
    DashboardStats,
    Team,
    STATUS_ACTIVE,
    STATUS_SCHEDULED,
    new_id,
    parse_race_submission,
    parse_regatta,
    parse_team_name,
)
from .standings import compute_standings, rank_standings

logger = logging.getLogger(__name__)

bp = Blueprint('api', __name__)


def _store():
    return current_app.extensions['regatta_store']


def _json_body():
    """Decoded request body; malformed JSON is rejected before any store access."""
    payload = request.get_json(silent=True)
    if payload is None:
        raise ValidationError('Request body must be valid JSON.')
    return payload


def _require_regatta(regatta_id: str):
    regatta = _store().get_regatta(regatta_id)
    if regatta is None:
        raise NotFound(f"Regatta '{regatta_id}' not found.")
    return regatta


@bp.app_errorhandler(RegattaError)
def handle_regatta_error(exc: RegattaError):
    if exc.status_code >= 500:
        logger.error('%s %s -> %s: %s', request.method, request.path, exc.code, exc.message)
    return jsonify(exc.to_dict()), exc.status_code


@bp.app_errorhandler(HTTPException)
def handle_http_error(exc: HTTPException):
    code = (exc.name or 'error').lower().replace(' ', '_')
    return jsonify(envelope(code, exc.description or exc.name)), exc.code


@bp.route('/health/db')
def health_db():
    """Store connectivity check; always HTTP 200 with a status body."""
    try:
        info = _store().ping()
    except StoreError as e:
        return {'connected': False, 'status': 'error', 'error': e.message}
    return {'connected': True, 'status': 'ok', **info}


# -- regattas -------------------------------------------------------------

@bp.route('/api/regattas', methods=['POST'])
def create_regatta():
    regatta = parse_regatta(_json_body(), new_id(), keep_status=False)
    _store().create_regatta(regatta)
    logger.info('create_regatta id=%s name=%r', regatta.id, regatta.name)
    return jsonify(regatta.to_dict()), 201


@bp.route('/api/regattas', methods=['GET'])
def list_regattas():
    regattas = _store().list_regattas()
    logger.info('list_regattas count=%d', len(regattas))
    return jsonify([r.to_dict() for r in regattas])


@bp.route('/api/regattas/<regatta_id>', methods=['GET'])
def get_regatta(regatta_id):
    return jsonify(_require_regatta(regatta_id).to_dict())


@bp.route('/api/regattas/<regatta_id>', methods=['PUT'])
def update_regatta(regatta_id):
    regatta = parse_regatta(_json_body(), regatta_id)
    if not _store().update_regatta(regatta):
        raise NotFound(f"Regatta '{regatta_id}' not found.")
    logger.info('update_regatta id=%s status=%s', regatta_id, regatta.status)
    return jsonify(regatta.to_dict())


@bp.route('/api/regattas/<regatta_id>', methods=['DELETE'])
def delete_regatta(regatta_id):
    _store().delete_regatta(regatta_id)
    logger.info('delete_regatta id=%s', regatta_id)
    return '', 204


# -- teams ----------------------------------------------------------------

@bp.route('/api/regattas/<regatta_id>/teams', methods=['GET'])
def list_teams(regatta_id):
    _require_regatta(regatta_id)
    teams = _store().list_teams(regatta_id)
    return jsonify([t.to_dict() for t in teams])


@bp.route('/api/regattas/<regatta_id>/teams', methods=['POST'])
def add_team(regatta_id):
    name = parse_team_name(_json_body())
    _require_regatta(regatta_id)
    team = _store().create_team(Team(id=new_id(), name=name, regatta_id=regatta_id))
    logger.info('add_team regatta=%s team=%s', regatta_id, team.id)
    return jsonify(team.to_dict()), 201


@bp.route('/api/regattas/<regatta_id>/teams/<team_id>', methods=['PUT'])
def update_team(regatta_id, team_id):
    name = parse_team_name(_json_body())
    if not _store().rename_team(regatta_id, team_id, name):
        logger.info('update_team miss regatta=%s team=%s', regatta_id, team_id)
        raise NotFound("Team not found or doesn't belong to this regatta.")
    team = _store().get_team(regatta_id, team_id)
    if team is None:
        raise NotFound("Team not found or doesn't belong to this regatta.")
    logger.info('update_team regatta=%s team=%s', regatta_id, team_id)
    return jsonify(team.to_dict())


@bp.route('/api/regattas/<regatta_id>/teams/<team_id>', methods=['DELETE'])
def delete_team(regatta_id, team_id):
    if not _store().delete_team(regatta_id, team_id):
        raise NotFound("Team not found or doesn't belong to this regatta.")
    logger.info('delete_team regatta=%s team=%s', regatta_id, team_id)
    return '', 204


# -- race results ---------------------------------------------------------

@bp.route('/api/regattas/<regatta_id>/results', methods=['POST'])
def add_race_results(regatta_id):
    race_number, results = parse_race_submission(_json_body(), regatta_id)
    _require_regatta(regatta_id)
    known = {t.id for t in _store().list_teams(regatta_id)}
    unknown = sorted({r.team_id for r in results} - known)
    if unknown:
        raise ValidationError(f"Teams not registered for this regatta: {', '.join(unknown)}")
    saved = _store().save_race_results(regatta_id, race_number, results)
    logger.info('add_race_results regatta=%s race=%d rows=%d', regatta_id, race_number, saved)
    return '', 204


@bp.route('/api/regattas/<regatta_id>/results', methods=['DELETE'])
def clear_results(regatta_id):
    deleted = _store().clear_results(regatta_id)
    logger.info('clear_results regatta=%s rows=%d', regatta_id, deleted)
    return '', 204


@bp.route('/api/regattas/<regatta_id>/standings', methods=['GET'])
def regatta_standings(regatta_id):
    _require_regatta(regatta_id)
    rows = _store().list_standing_rows(regatta_id)
    table = rank_standings(compute_standings(rows))
    return jsonify([s.to_dict() for s in table])


# -- dashboard ------------------------------------------------------------

@bp.route('/api/dashboard/stats', methods=['GET'])
def dashboard_stats():
    """Four independent counters; a failing one is logged and left at zero."""
    store = _store()
    stats = DashboardStats()
    counters = (
        ('active_regattas', lambda: store.count_regattas_by_status(STATUS_ACTIVE)),
        ('total_teams', store.count_teams),
        ('races_completed', store.count_completed_races),
        ('upcoming_races', lambda: store.count_regattas_by_status(STATUS_SCHEDULED)),
    )
    for attr, fetch in counters:
        try:
            setattr(stats, attr, int(fetch()))
        except Exception:  # pylint: disable=broad-except
            logger.exception('dashboard counter %s failed', attr)
    return jsonify(stats.to_dict())
