from regatta.errors import StoreError


def test_dashboard_empty_store_all_zero(client):
    res = client.get("/api/dashboard/stats")
    assert res.status_code == 200
    assert res.get_json() == {"activeRegattas": 0, "totalTeams": 0, "racesCompleted": 0, "upcomingRaces": 0}


def test_dashboard_counts(client, seed):
    seed.regatta("r1", status="active")
    seed.regatta("r2", status="scheduled")
    seed.regatta("r3", status="scheduled")
    seed.regatta("r4", status="completed")
    seed.team("a", "r1")
    seed.team("b", "r1")
    seed.team("c", "r2")
    seed.result("x1", "r1", "a", 1, 1, 10)
    seed.result("x2", "r1", "b", 1, 2, 8)
    seed.result("x3", "r1", "a", 2, 1, 10)
    seed.result("x4", "r2", "c", 1, 1, 10)

    stats = client.get("/api/dashboard/stats").get_json()
    assert stats == {"activeRegattas": 1, "totalTeams": 3, "racesCompleted": 3, "upcomingRaces": 2}


def test_created_regatta_counts_as_upcoming(client):
    client.post("/api/regattas", json={"name": "Autumn Cup", "startDate": "2025-10-01", "endDate": "2025-10-02", "location": "Poole"})
    stats = client.get("/api/dashboard/stats").get_json()
    assert stats["upcomingRaces"] == 1
    assert stats["activeRegattas"] == 0


def test_dashboard_survives_failing_counter(client, seed, memory_store, monkeypatch, caplog):
    seed.regatta("r1", status="active")
    seed.team("a", "r1")

    def broken():
        raise StoreError("Database operation 'count_teams' failed.")

    monkeypatch.setattr(memory_store, "count_teams", broken)
    caplog.set_level("ERROR")
    res = client.get("/api/dashboard/stats")
    assert res.status_code == 200
    stats = res.get_json()
    assert stats["totalTeams"] == 0
    assert stats["activeRegattas"] == 1
    assert any("total_teams" in r.getMessage() for r in caplog.records)


def test_dashboard_all_counters_failing(client, memory_store, monkeypatch):
    def broken(*args):
        raise RuntimeError("connection refused")

    for name in ("count_teams", "count_completed_races", "count_regattas_by_status"):
        monkeypatch.setattr(memory_store, name, broken)
    res = client.get("/api/dashboard/stats")
    assert res.status_code == 200
    assert set(res.get_json().values()) == {0}
