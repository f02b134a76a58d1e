"""
Health endpoint tests
"""

import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from scorm_proxy.db.config import get_session


class TestHealthEndpoints:
    """Test health check endpoints"""

    async def test_health_check_success(self, client):
        response = await client.get("/api/v1/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["environment"] == "test"
        assert isinstance(data["uptime"], (int, float))

    async def test_health_check_timestamp_format(self, client):
        data = (await client.get("/api/v1/health")).json()
        datetime.datetime.fromisoformat(data["timestamp"].replace("Z", "+00:00"))

    async def test_readiness_with_database(self, client):
        response = await client.get("/api/v1/health/ready")
        assert response.status_code == 200
        assert response.json()["status"] == "ready"

    async def test_readiness_without_database(self, client, test_app):
        class BrokenSession(AsyncSession):
            async def execute(self, *args, **kwargs):
                raise RuntimeError("database unavailable")

        async def broken_session():
            yield BrokenSession()

        test_app.dependency_overrides[get_session] = broken_session
        response = await client.get("/api/v1/health/ready")
        assert response.status_code == 503
        assert "database unavailable" in response.json()["error"]

    async def test_liveness(self, client):
        data = (await client.get("/api/v1/health/live")).json()
        assert data["status"] == "alive"
        assert isinstance(data["pid"], int)

    async def test_health_does_not_require_auth(self, client):
        response = await client.get("/api/v1/health")
        assert response.status_code == 200


async def test_root_endpoint(client):
    data = (await client.get("/")).json()
    assert data["status"] == "running"
    assert data["ltiLaunchUrl"] == "https://host/lti/launch"


async def test_cors_headers(client):
    response = await client.get(
        "/api/v1/health", headers={"Origin": "http://localhost:3000"}
    )
    assert "access-control-allow-origin" in response.headers
