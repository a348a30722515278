from copy import deepcopy
from threading import RLock
from typing import Any, Dict, List, Optional

from .models import Regatta, RaceResult, Team, STATUSES


class MemoryStore:
    """In-process store with the same interface as ``PgStore``.

    Injected through ``create_app(store=...)`` by the test-suite. Every
    operation holds a lock so multi-step writes are all-or-nothing, matching
    the transactional behaviour of the database store. Records handed out are
    copies; mutating them does not touch stored state.
    """

    def __init__(self) -> None:
        self._lock = RLock()
        self.regattas: Dict[str, Regatta] = {}
        self.teams: Dict[str, Team] = {}
        self.results: Dict[str, RaceResult] = {}

    def init_schema(self) -> None:
        return None

    def ping(self) -> Dict[str, Any]:
        return {"user": None, "database": "memory", "server_version": "memory"}

    def close(self) -> None:
        return None

    # -- regattas -------------------------------------------------------

    def create_regatta(self, regatta: Regatta) -> Regatta:
        with self._lock:
            self.regattas[regatta.id] = deepcopy(regatta)
        return regatta

    def list_regattas(self) -> List[Regatta]:
        with self._lock:
            regattas = sorted(self.regattas.values(), key=lambda r: (r.start_date, r.name))
            return [deepcopy(r) for r in regattas]

    def get_regatta(self, regatta_id: str) -> Optional[Regatta]:
        with self._lock:
            regatta = self.regattas.get(regatta_id)
            return deepcopy(regatta) if regatta else None

    def update_regatta(self, regatta: Regatta) -> bool:
        with self._lock:
            if regatta.id not in self.regattas:
                return False
            self.regattas[regatta.id] = deepcopy(regatta)
            return True

    def delete_regatta(self, regatta_id: str) -> None:
        with self._lock:
            self.results = {k: r for k, r in self.results.items() if r.regatta_id != regatta_id}
            self.teams = {k: t for k, t in self.teams.items() if t.regatta_id != regatta_id}
            self.regattas.pop(regatta_id, None)

    # -- teams ----------------------------------------------------------

    def list_teams(self, regatta_id: str) -> List[Team]:
        with self._lock:
            teams = [t for t in self.teams.values() if t.regatta_id == regatta_id]
            teams.sort(key=lambda t: (t.name, t.id))
            return [deepcopy(t) for t in teams]

    def create_team(self, team: Team) -> Team:
        with self._lock:
            self.teams[team.id] = deepcopy(team)
        return team

    def _owned_team(self, regatta_id: str, team_id: str) -> Optional[Team]:
        team = self.teams.get(team_id)
        if team is None or team.regatta_id != regatta_id:
            return None
        return team

    def get_team(self, regatta_id: str, team_id: str) -> Optional[Team]:
        with self._lock:
            team = self._owned_team(regatta_id, team_id)
            return deepcopy(team) if team else None

    def rename_team(self, regatta_id: str, team_id: str, name: str) -> bool:
        with self._lock:
            team = self._owned_team(regatta_id, team_id)
            if team is None:
                return False
            team.name = name
            return True

    def delete_team(self, regatta_id: str, team_id: str) -> bool:
        with self._lock:
            if self._owned_team(regatta_id, team_id) is None:
                return False
            self.results = {k: r for k, r in self.results.items() if r.team_id != team_id}
            del self.teams[team_id]
            return True

    # -- race results ---------------------------------------------------

    def save_race_results(self, regatta_id: str, race_number: int, results: List[RaceResult]) -> int:
        with self._lock:
            staged = dict(self.results)
            by_slot = {(r.regatta_id, r.team_id, r.race_number): k for k, r in staged.items()}
            for res in results:
                slot = (regatta_id, res.team_id, race_number)
                existing_id = by_slot.get(slot)
                row_id = existing_id or res.id
                staged[row_id] = RaceResult(
                    id=row_id,
                    regatta_id=regatta_id,
                    team_id=res.team_id,
                    race_number=race_number,
                    position=res.position,
                    points=res.points,
                )
                by_slot[slot] = row_id
            self.results = staged
            return len(results)

    def clear_results(self, regatta_id: str) -> int:
        with self._lock:
            before = len(self.results)
            self.results = {k: r for k, r in self.results.items() if r.regatta_id != regatta_id}
            return before - len(self.results)

    def list_standing_rows(self, regatta_id: str) -> List[Dict[str, Any]]:
        with self._lock:
            rows = []
            for r in self.results.values():
                if r.regatta_id != regatta_id:
                    continue
                team = self.teams.get(r.team_id)
                if team is None:
                    continue
                rows.append({
                    "id": r.id,
                    "regatta_id": r.regatta_id,
                    "team_id": r.team_id,
                    "team_name": team.name,
                    "race_number": r.race_number,
                    "position": r.position,
                    "points": r.points,
                })
            rows.sort(key=lambda row: (row["race_number"], row["position"]))
            return rows

    # -- dashboard counters --------------------------------------------

    def count_regattas_by_status(self, status: str) -> int:
        if status not in STATUSES:
            raise ValueError(f"unknown status {status!r}")
        with self._lock:
            return sum(1 for r in self.regattas.values() if r.status == status)

    def count_teams(self) -> int:
        with self._lock:
            return len(self.teams)

    def count_completed_races(self) -> int:
        with self._lock:
            return len({(r.regatta_id, r.race_number) for r in self.results.values()})
