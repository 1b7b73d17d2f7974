from fastapi.testclient import TestClient


def test_health_endpoint(client: TestClient) -> None:
    response = client.get("/api/v1/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok", "identifier_caches_fresh": {"skills": False, "staff": False}}


def test_health_reports_loaded_skill_cache(client: TestClient) -> None:
    client.post("/api/v1/forecast/demand-matrix", json={"start_month": "2025-01-01", "months": 1})

    response = client.get("/api/v1/health")

    assert response.json()["identifier_caches_fresh"] == {"skills": True, "staff": False}


def test_root_endpoint(client: TestClient) -> None:
    response = client.get("/")

    assert response.status_code == 200
    assert response.json()["status"] == "running"
