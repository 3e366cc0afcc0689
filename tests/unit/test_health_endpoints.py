from datetime import datetime

from fastapi.testclient import TestClient

from app.api.v1.features.imagery.mosaic.deps import get_mosaic_cache
from app.api.v1.features.imagery.mosaic.storage import MosaicCache
from app.main import app


class TestHealthEndpoints:
    """Test cases for health check endpoints."""

    def test_liveness_check(self, client: TestClient):
        """Test the liveness probe endpoint."""
        response = client.get("/api/v1/health/live")

        assert response.status_code == 200
        data = response.json()

        assert data["status"] == "alive"
        timestamp = datetime.fromisoformat(data["timestamp"].replace("Z", "+00:00"))
        assert timestamp.tzinfo is not None

    def test_readiness_check(self, client: TestClient, storage_root):
        """Ready once the storage root accepts writes."""
        response = client.get("/api/v1/health/ready")

        assert response.status_code == 200
        data = response.json()

        assert data["status"] == "ready"
        assert data["services"] == {"storage": "healthy"}
        assert storage_root.is_dir()

    def test_readiness_fails_on_unwritable_storage(
        self, client: TestClient, tmp_path
    ):
        blocker = tmp_path / "blocker"
        blocker.write_text("")
        app.dependency_overrides[get_mosaic_cache] = lambda: MosaicCache(blocker)

        response = client.get("/api/v1/health/ready")

        assert response.status_code == 503
        data = response.json()
        assert data["status"] == "unavailable"
        assert data["services"]["storage"] == "unwritable"

    def test_health_endpoints_content_type(self, client: TestClient):
        """Test that health endpoints return JSON content type."""
        live_response = client.get("/api/v1/health/live")
        ready_response = client.get("/api/v1/health/ready")

        assert live_response.headers["content-type"] == "application/json"
        assert ready_response.headers["content-type"] == "application/json"
