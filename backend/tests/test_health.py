"""Test service health endpoints."""


def test_root(client):
    response = client.get("/")
    assert response.status_code == 200
    data = response.json()
    assert data["service"] == "craftiva-backend"
    assert data["status"] == "ok"


def test_health_in_memory(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "healthy", "database": "memory"}
