"""
Tests for health check endpoint
"""


def test_health_endpoint(client):
    response = client.get("/api/v1/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ok"
    assert data["service"] == "leave-management-engine"
    assert "version" in data
    assert data["env"] == "local"


def test_unknown_route_is_404(client):
    response = client.get("/api/v1/does-not-exist")
    assert response.status_code == 404
