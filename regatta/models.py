"""Domain records and request payload parsing.

Records are plain dataclasses; ``to_dict`` produces the camelCase JSON shape
served by the API. The ``parse_*`` helpers validate decoded request bodies
and raise :class:`~regatta.errors.ValidationError` before any store access.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .errors import ValidationError

STATUS_SCHEDULED = "scheduled"
STATUS_ACTIVE = "active"
STATUS_COMPLETED = "completed"
STATUSES = (STATUS_SCHEDULED, STATUS_ACTIVE, STATUS_COMPLETED)


def new_id() -> str:
    """Return a fresh opaque identifier (random, not sequential)."""
    return str(uuid.uuid4())


def normalize_status(value: Any) -> str:
    """Map a client supplied status onto the closed vocabulary.

    Matching is case-insensitive so legacy ``"SCHEDULED"`` values keep
    working. ``None`` or an empty string means ``scheduled``.
    """
    if value is None:
        return STATUS_SCHEDULED
    if not isinstance(value, str):
        raise ValidationError(f"Invalid status {value!r}. Expected one of: {', '.join(STATUSES)}.")
    s = value.strip().lower()
    if not s:
        return STATUS_SCHEDULED
    if s not in STATUSES:
        raise ValidationError(f"Invalid status '{value}'. Expected one of: {', '.join(STATUSES)}.")
    return s


@dataclass
class Regatta:
    id: str
    name: str
    start_date: str
    end_date: str
    location: str
    status: str = STATUS_SCHEDULED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "startDate": self.start_date,
            "endDate": self.end_date,
            "location": self.location,
            "status": self.status,
        }


@dataclass
class Team:
    id: str
    name: str
    regatta_id: str

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "name": self.name, "regattaId": self.regatta_id}


@dataclass
class RaceResult:
    id: str
    regatta_id: str
    team_id: str
    race_number: int
    position: int
    points: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "regattaId": self.regatta_id,
            "teamId": self.team_id,
            "raceNumber": self.race_number,
            "position": self.position,
            "points": self.points,
        }


@dataclass
class TeamStanding:
    team_id: str
    name: str
    total_points: int = 0
    results: List[RaceResult] = field(default_factory=list)
    position: Optional[int] = None

    @property
    def average_position(self) -> float:
        if not self.results:
            return 0.0
        return sum(r.position for r in self.results) / len(self.results)

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "teamId": self.team_id,
            "name": self.name,
            "totalPoints": self.total_points,
            "results": [r.to_dict() for r in self.results],
        }
        if self.position is not None:
            out["position"] = self.position
        return out


@dataclass
class DashboardStats:
    active_regattas: int = 0
    total_teams: int = 0
    races_completed: int = 0
    upcoming_races: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {
            "activeRegattas": self.active_regattas,
            "totalTeams": self.total_teams,
            "racesCompleted": self.races_completed,
            "upcomingRaces": self.upcoming_races,
        }


def _require_object(payload: Any) -> Dict[str, Any]:
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object.")
    return payload


def _field(payload: Dict[str, Any], key: str) -> Any:
    """Look up ``key``, falling back to a case-insensitive match.

    Older clients post entries as ``{"TeamID": ..., "Position": ...}``.
    """
    if key in payload:
        return payload[key]
    folded = key.lower()
    for k, v in payload.items():
        if isinstance(k, str) and k.lower() == folded:
            return v
    return None


def _text(payload: Dict[str, Any], key: str, required: bool = True) -> str:
    val = _field(payload, key)
    if val is None:
        if required:
            raise ValidationError(f"Field '{key}' is required.")
        return ""
    if not isinstance(val, str):
        raise ValidationError(f"Field '{key}' must be a string.")
    val = val.strip()
    if required and not val:
        raise ValidationError(f"Field '{key}' must not be empty.")
    return val


def _integer(payload: Dict[str, Any], key: str, minimum: Optional[int] = None) -> int:
    val = _field(payload, key)
    # bool is an int subclass; reject it explicitly
    if isinstance(val, bool) or not isinstance(val, int):
        raise ValidationError(f"Field '{key}' must be an integer.")
    if minimum is not None and val < minimum:
        raise ValidationError(f"Field '{key}' must be >= {minimum}.")
    return val


def parse_regatta(payload: Any, regatta_id: str, keep_status: bool = True) -> Regatta:
    """Build a Regatta from a request body.

    Creation passes ``keep_status=False`` so any supplied status is ignored.
    """
    body = _require_object(payload)
    status = normalize_status(_field(body, "status")) if keep_status else STATUS_SCHEDULED
    return Regatta(
        id=regatta_id,
        name=_text(body, "name"),
        start_date=_text(body, "startDate", required=False),
        end_date=_text(body, "endDate", required=False),
        location=_text(body, "location", required=False),
        status=status,
    )


def parse_team_name(payload: Any) -> str:
    return _text(_require_object(payload), "name")


def parse_race_submission(payload: Any, regatta_id: str) -> tuple[int, List[RaceResult]]:
    """Validate one race's result set.

    Returns ``(race_number, results)``; the race number comes from the
    envelope and overrides anything on individual entries.
    """
    body = _require_object(payload)
    race_number = _integer(body, "raceNumber", minimum=1)
    entries = _field(body, "results")
    if not isinstance(entries, list):
        raise ValidationError("Field 'results' must be a list.")
    results: List[RaceResult] = []
    seen: set[str] = set()
    for idx, entry in enumerate(entries):
        if not isinstance(entry, dict):
            raise ValidationError(f"results[{idx}] must be an object.")
        team_id = _text(entry, "teamId")
        if team_id in seen:
            raise ValidationError(f"Team '{team_id}' appears more than once in race {race_number}.")
        seen.add(team_id)
        results.append(
            RaceResult(
                id=new_id(),
                regatta_id=regatta_id,
                team_id=team_id,
                race_number=race_number,
                position=_integer(entry, "position", minimum=1),
                points=_integer(entry, "points"),
            )
        )
    return race_number, results
