"""Tests for the health check endpoint."""


def test_health_check_returns_200(client):
    response = client.get("/health")
    assert response.status_code == 200


def test_health_check_reports_database(client):
    data = client.get("/health").json()
    assert data["status"] == "healthy"
    assert data["service"] == "banking-core"
    assert data["database"] == "healthy"
