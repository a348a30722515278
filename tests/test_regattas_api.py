def _payload(**overrides):
    body = {
        "name": "Summer Series",
        "startDate": "2025-07-01",
        "endDate": "2025-07-04",
        "location": "Lymington",
    }
    body.update(overrides)
    return body


def test_create_regatta_forces_scheduled_status(client, memory_store):
    res = client.post("/api/regattas", json=_payload(status="completed"))
    assert res.status_code == 201
    body = res.get_json()
    assert body["status"] == "scheduled"
    assert body["name"] == "Summer Series"
    assert memory_store.regattas[body["id"]].status == "scheduled"


def test_create_regatta_generates_fresh_ids(client):
    ids = {client.post("/api/regattas", json=_payload()).get_json()["id"] for _ in range(5)}
    assert len(ids) == 5
    assert all(ids)


def test_create_regatta_rejects_malformed_json(client, memory_store):
    res = client.post("/api/regattas", data="{not json", content_type="application/json")
    assert res.status_code == 400
    assert res.get_json()["code"] == "bad_request"
    assert memory_store.regattas == {}


def test_create_regatta_requires_name(client):
    res = client.post("/api/regattas", json=_payload(name=""))
    assert res.status_code == 400
    assert "name" in res.get_json()["message"]


def test_list_and_get_regatta(client, seed):
    seed.regatta("r1", name="Alpha")
    seed.regatta("r2", name="Bravo", status="active")

    res = client.get("/api/regattas")
    assert res.status_code == 200
    listed = {r["id"]: r for r in res.get_json()}
    assert set(listed) == {"r1", "r2"}
    assert listed["r2"]["status"] == "active"

    one = client.get("/api/regattas/r1").get_json()
    assert one == {
        "id": "r1",
        "name": "Alpha",
        "startDate": "2025-06-01",
        "endDate": "2025-06-03",
        "location": "Cowes",
        "status": "scheduled",
    }


def test_list_regattas_empty_is_list(client):
    res = client.get("/api/regattas")
    assert res.status_code == 200
    assert res.get_json() == []


def test_get_missing_regatta_is_not_found(client):
    res = client.get("/api/regattas/nope")
    assert res.status_code == 404
    assert res.get_json()["code"] == "not_found"


def test_update_regatta_full_replace(client, seed, memory_store):
    seed.regatta("r1", status="active")
    res = client.put("/api/regattas/r1", json=_payload(name="Renamed", status="COMPLETED", id="ignored"))
    assert res.status_code == 200
    body = res.get_json()
    assert body["id"] == "r1"
    assert body["status"] == "completed"
    stored = memory_store.regattas["r1"]
    assert stored.name == "Renamed"
    assert stored.location == "Lymington"


def test_update_regatta_without_status_resets_to_scheduled(client, seed, memory_store):
    seed.regatta("r1", status="active")
    res = client.put("/api/regattas/r1", json=_payload())
    assert res.status_code == 200
    assert memory_store.regattas["r1"].status == "scheduled"


def test_update_regatta_rejects_unknown_status(client, seed, memory_store):
    seed.regatta("r1", status="active")
    res = client.put("/api/regattas/r1", json=_payload(status="postponed"))
    assert res.status_code == 400
    assert memory_store.regattas["r1"].status == "active"


def test_update_missing_regatta_is_not_found(client, memory_store):
    res = client.put("/api/regattas/ghost", json=_payload())
    assert res.status_code == 404
    assert "ghost" not in memory_store.regattas


def test_delete_regatta_cascades(client, seed, memory_store):
    seed.regatta("r1")
    seed.regatta("r2")
    seed.team("t1", "r1")
    seed.team("t2", "r2")
    seed.result("x1", "r1", "t1", 1, 1, 10)
    seed.result("x2", "r2", "t2", 1, 1, 10)

    res = client.delete("/api/regattas/r1")
    assert res.status_code == 204
    assert "r1" not in memory_store.regattas
    assert set(memory_store.teams) == {"t2"}
    assert [r.regatta_id for r in memory_store.results.values()] == ["r2"]


def test_delete_missing_regatta_succeeds(client):
    assert client.delete("/api/regattas/ghost").status_code == 204


def test_unknown_route_uses_error_envelope(client):
    res = client.get("/api/nothing-here")
    assert res.status_code == 404
    assert res.get_json()["code"] == "not_found"


def test_wrong_method_uses_error_envelope(client):
    res = client.patch("/api/regattas")
    assert res.status_code == 405
    assert res.get_json()["code"] == "method_not_allowed"
