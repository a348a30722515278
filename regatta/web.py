"""Browser-facing gateway.

A separate process that reads from the JSON API over HTTP and renders HTML
pages. It never writes and holds no business logic; when the API is down or
answers with something unexpected the page renders with empty data.
"""

import logging
import os
from typing import Any, Dict, Optional

import httpx
from flask import Blueprint, Flask, current_app, jsonify, render_template, request

from .errors import envelope
from .standings import group_by_race

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "http://localhost:8081/api"

EMPTY_STATS = {"activeRegattas": 0, "totalTeams": 0, "racesCompleted": 0, "upcomingRaces": 0}

bp = Blueprint('web', __name__)


class ApiError(Exception):
    """The API could not be reached or returned an unusable response."""


class ApiClient:
    """Thin read-only client for the regatta JSON API."""

    def __init__(self, base_url: str, timeout: float = 10.0) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    def get(self, path: str) -> Any:
        url = f"{self.base_url}/{path.lstrip('/')}"
        try:
            with httpx.Client(timeout=self.timeout) as client:
                response = client.get(url)
                response.raise_for_status()
                return response.json()
        except httpx.HTTPStatusError as exc:
            raise ApiError(f"{url} returned HTTP {exc.response.status_code}") from exc
        except httpx.HTTPError as exc:
            raise ApiError(f"{url} unreachable: {exc}") from exc
        except ValueError as exc:
            raise ApiError(f"{url} returned invalid JSON") from exc

    def dashboard_stats(self) -> Dict[str, Any]:
        return self.get("dashboard/stats")

    def regattas(self):
        return self.get("regattas")

    def regatta(self, regatta_id: str):
        return self.get(f"regattas/{regatta_id}")

    def teams(self, regatta_id: str):
        return self.get(f"regattas/{regatta_id}/teams")

    def standings(self, regatta_id: str):
        return self.get(f"regattas/{regatta_id}/standings")


def _api() -> ApiClient:
    return current_app.extensions['regatta_api']


def _fetch(call, *args, default, expect=list):
    """Run an API read, falling back to ``default`` on any API failure."""
    try:
        data = call(*args)
    except ApiError as e:
        logger.warning("API read failed: %s", e)
        return default
    if not isinstance(data, expect):
        logger.warning("API returned %s, expected %s", type(data).__name__, expect.__name__)
        return default
    return data


def _page(template: str, title: str, active: str, data, **extra):
    return render_template(
        template,
        title=title,
        active=active,
        data=data,
        api_url=_api().base_url,
        **extra,
    )


def _selected_regatta() -> Optional[Dict[str, Any]]:
    regatta_id = (request.args.get('regattaId') or '').strip()
    if not regatta_id:
        return None
    return _fetch(_api().regatta, regatta_id, default={'id': regatta_id, 'name': regatta_id}, expect=dict)


@bp.route('/')
@bp.route('/dashboard')
def dashboard():
    stats = dict(EMPTY_STATS)
    stats.update(_fetch(_api().dashboard_stats, default={}, expect=dict))
    return _page('dashboard.html', 'Dashboard', 'dashboard', stats)


@bp.route('/regattas')
def regattas():
    return _page('regattas.html', 'Manage Regattas', 'regattas', _fetch(_api().regattas, default=[]))


@bp.route('/teams')
def teams():
    regatta = _selected_regatta()
    if regatta is None:
        logger.info("teams page without regattaId")
        teams_list = []
    else:
        teams_list = _fetch(_api().teams, regatta['id'], default=[])
    return _page('teams.html', 'Manage Teams', 'teams', teams_list, regatta=regatta)


@bp.route('/standings')
def standings():
    regatta = _selected_regatta()
    table = _fetch(_api().standings, regatta['id'], default=[]) if regatta else []
    return _page('standings.html', 'Current Standings', 'standings', table, regatta=regatta)


@bp.route('/results')
def results():
    regatta = _selected_regatta()
    table = _fetch(_api().standings, regatta['id'], default=[]) if regatta else []
    return _page('results.html', 'Race Results', 'results', group_by_race(table), regatta=regatta)


@bp.route('/api/dashboard/stats')
def dashboard_stats_passthrough():
    try:
        return jsonify(_api().dashboard_stats())
    except ApiError as e:
        logger.warning("dashboard stats passthrough failed: %s", e)
        return jsonify(envelope('bad_gateway', 'Error fetching dashboard stats')), 502


def create_web_app(api: Optional[ApiClient] = None):
    app = Flask(__name__)
    if api is None:
        try:
            timeout = float(os.environ.get("API_TIMEOUT", "10"))
        except ValueError:
            timeout = 10.0
        api = ApiClient(os.environ.get("API_URL") or DEFAULT_API_URL, timeout=timeout)
    app.extensions['regatta_api'] = api
    app.register_blueprint(bp)
    return app


def main():
    logging.basicConfig(
        level=os.environ.get("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        port = int(os.environ.get("PORT", 8080))
    except ValueError:
        port = 8080
    host = os.environ.get("BASE_URL") or "0.0.0.0"
    logger.info("Web server starting on %s:%s", host, port)
    create_web_app().run(host=host, port=port)


if __name__ == '__main__':
    main()
