"""Standings aggregation: points per team across a regatta's races."""

from __future__ import annotations

from typing import Any, Dict, Iterable, List

from .models import RaceResult, TeamStanding


def compute_standings(rows: Iterable[Dict[str, Any]]) -> List[TeamStanding]:
    """Group result rows by team and total their points.

    ``rows`` are the regatta's race_results joined with the team name, as
    returned by ``Store.list_standing_rows``:
    ``{id, regatta_id, team_id, team_name, race_number, position, points}``.

    Each team's ``results`` keep the row order (the stores return rows by
    race number). No ranking is applied; output follows first appearance.
    """
    by_team: Dict[str, TeamStanding] = {}
    for row in rows:
        team_id = row["team_id"]
        standing = by_team.get(team_id)
        if standing is None:
            standing = TeamStanding(team_id=team_id, name=row.get("team_name") or "")
            by_team[team_id] = standing
        result = RaceResult(
            id=row.get("id") or "",
            regatta_id=row.get("regatta_id") or "",
            team_id=team_id,
            race_number=int(row["race_number"]),
            position=int(row["position"]),
            points=int(row["points"]),
        )
        standing.results.append(result)
        standing.total_points += result.points
    return list(by_team.values())


def _rank_key(standing: TeamStanding):
    return (-standing.total_points, standing.average_position, standing.name.lower(), standing.team_id)


def rank_standings(standings: Iterable[TeamStanding]) -> List[TeamStanding]:
    """Order standings into a leaderboard and assign ``position``.

    Highest total points first; ties go to the lower average finishing
    position, then team name. Teams level on both points and average
    position share a position (1, 2, 2, 4).
    """
    ranked = sorted(standings, key=_rank_key)
    prev = None
    for idx, standing in enumerate(ranked, start=1):
        tie = (standing.total_points, standing.average_position)
        if prev is not None and tie == prev[0]:
            standing.position = prev[1]
        else:
            standing.position = idx
        prev = (tie, standing.position)
    return ranked


def group_by_race(standings: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Flatten served standings JSON back into per-race result sheets.

    Returns ``[{"raceNumber": n, "scores": [...]}, ...]`` sorted by race
    number, each sheet ordered by finishing position. Scores carry the team
    name so a results page can render without a second lookup.
    """
    races: Dict[int, List[Dict[str, Any]]] = {}
    for standing in standings:
        name = standing.get("name") or ""
        for result in standing.get("results") or []:
            score = dict(result)
            score["teamName"] = name
            races.setdefault(int(score.get("raceNumber") or 0), []).append(score)
    out = []
    for race_number in sorted(races):
        scores = sorted(races[race_number], key=lambda s: (s.get("position") or 0, s["teamName"]))
        out.append({"raceNumber": race_number, "scores": scores})
    return out
