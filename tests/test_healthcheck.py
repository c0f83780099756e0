"""Tests for the healthcheck HTTP handlers."""
import json

import pytest

from src.utils.healthcheck import HealthcheckServer


class TestHealthcheck:
    """Tests for /health and /status payloads."""

    @pytest.mark.asyncio
    async def test_health(self):
        server = HealthcheckServer()
        response = await server.health_handler(None)

        body = json.loads(response.text)
        assert response.status == 200
        assert body["status"] == "ok"

    def test_status_includes_providers(self):
        server = HealthcheckServer()
        server.register("scanner", lambda: {"sweeps": 3})

        status = server.build_status()
        assert status["status"] == "running"
        assert status["scanner"] == {"sweeps": 3}
        assert status["uptime"].endswith("m")

    def test_failing_provider_reported(self):
        def broken():
            raise RuntimeError("db down")

        server = HealthcheckServer()
        server.register("dispatcher", broken)

        assert server.build_status()["dispatcher"] == {"error": "db down"}
