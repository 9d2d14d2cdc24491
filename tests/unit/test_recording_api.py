"""
Unit tests for the recording and system HTTP endpoints.

Tests POST /api/start-record, POST /api/stop-record, GET /api/recording-status,
/api/system/* and the health endpoints with fake encoders injected through
dependency overrides.
"""

from unittest.mock import AsyncMock, patch

import pytest
from fastapi.testclient import TestClient

from cctv_recorder.main import create_app
from cctv_recorder.services.container import (
    get_recordings_service,
    get_system_control,
)
from cctv_recorder.services.exceptions import ExecutableNotFound
from cctv_recorder.services.supervisor import ProcessKind
from cctv_recorder.services.system_control import SystemControl

from tests.helpers import FakeSupervisor, SupervisorFactory


@pytest.fixture
def control(settings):
    return SystemControl(
        settings,
        relay=FakeSupervisor("go2rtc", kind=ProcessKind.RELAY),
        tunnel_api=FakeSupervisor("tunnel-api", kind=ProcessKind.TUNNEL),
        tunnel_cam=FakeSupervisor("tunnel-cam", kind=ProcessKind.TUNNEL),
    )


@pytest.fixture
def build_client(settings, control):
    def _build(service):
        app = create_app(settings)
        app.dependency_overrides[get_recordings_service] = lambda: service
        app.dependency_overrides[get_system_control] = lambda: control
        return TestClient(app)

    return _build


@pytest.fixture
def client(build_client, service):
    return build_client(service)


class TestStartRecord:
    """Tests for POST /api/start-record."""

    def test_start_success(self, client):
        response = client.post("/api/start-record", json={
            "camId": "1", "user": "alice", "billId": "B42", "recordType": "out", "streamId": "2",
        })

        assert response.status_code == 200
        assert response.json() == {
            "status": "started",
            "camId": "1",
            "filename": "CCTV_Cam1_alice_B42_OUT_2024-05-01_10-30-00.mp4",
        }
        assert "X-Request-ID" in response.headers

    def test_numeric_ids_accepted(self, client, service):
        response = client.post("/api/start-record", json={"camId": 2, "streamId": 3})

        assert response.status_code == 200
        assert response.json()["camId"] == "2"
        assert service.sessions["2"].source_url == "rtsp://localhost:8554/tapo1"

    def test_missing_camera_id(self, client):
        response = client.post("/api/start-record", json={"user": "alice"})

        assert response.status_code == 400
        body = response.json()
        assert body["code"] == "VALIDATION_ERROR"
        assert body["message"] == "camId is required"

    def test_empty_body(self, client):
        response = client.post("/api/start-record")
        assert response.status_code == 400

    def test_malformed_json(self, client):
        response = client.post(
            "/api/start-record",
            content=b"{not json",
            headers={"Content-Type": "application/json"},
        )

        assert response.status_code == 400
        assert response.json()["code"] == "VALIDATION_ERROR"

    def test_busy_camera(self, client):
        client.post("/api/start-record", json={"camId": "1", "user": "alice"})

        response = client.post("/api/start-record", json={"camId": "1", "user": "bob"})

        assert response.status_code == 409
        body = response.json()
        assert body["code"] == "CAMERA_BUSY"
        assert body["details"] == {"camId": "1", "heldBy": "alice"}
        assert "alice" in body["message"]

    def test_insufficient_storage(self, build_client, make_service):
        client = build_client(make_service(free_gb=12.4))

        response = client.post("/api/start-record", json={"camId": "1"})

        assert response.status_code == 507
        body = response.json()
        assert body["code"] == "INSUFFICIENT_STORAGE"
        assert body["details"]["freeGB"] == pytest.approx(12.4)
        assert body["details"]["minFreeGB"] == 20

    def test_spawn_failure(self, build_client, make_service):
        failing = SupervisorFactory(fail_with=ExecutableNotFound("ffmpeg cam 1 executable not found at ffmpeg"))
        service = make_service(supervisor_factory=failing)
        client = build_client(service)

        response = client.post("/api/start-record", json={"camId": "1"})

        assert response.status_code == 500
        body = response.json()
        assert body["code"] == "PROCESS_SPAWN_FAILED"
        assert "not found" in body["details"]["error"]
        assert service.sessions == {}


class TestStopRecord:
    """Tests for POST /api/stop-record."""

    def test_stop_recording(self, client, factory):
        client.post("/api/start-record", json={"camId": "1"})

        response = client.post("/api/stop-record", json={"camId": 1})

        assert response.status_code == 200
        assert response.json() == {"status": "stopping", "camId": "1"}
        assert factory.last.current.process.stdin.written == [b"q"]

    def test_stop_idle_camera(self, client):
        response = client.post("/api/stop-record", json={"camId": "3"})

        assert response.status_code == 200
        assert response.json() == {"status": "not recording", "camId": "3"}

    def test_stop_without_camera(self, client):
        response = client.post("/api/stop-record", json={})

        assert response.status_code == 400
        assert "stopAll" in response.json()["message"]

    def test_stop_all(self, client):
        client.post("/api/start-record", json={"camId": "1"})
        client.post("/api/start-record", json={"camId": "2"})

        response = client.post("/api/stop-record", json={"stopAll": True})

        assert response.status_code == 200
        assert response.json() == {"status": "stopping_all", "stopped": ["1", "2"]}

    def test_stop_write_failure(self, build_client, make_service):
        service = make_service(supervisor_factory=SupervisorFactory(stdin_fails=True))
        client = build_client(service)
        client.post("/api/start-record", json={"camId": "1"})

        response = client.post("/api/stop-record", json={"camId": "1"})

        assert response.status_code == 500
        body = response.json()
        assert body["code"] == "STOP_FAILED"
        assert "pipe closed" in body["details"]["error"]
        assert service.is_recording("1")


class TestRecordingStatus:

    def test_status(self, client):
        client.post("/api/start-record", json={"camId": "2", "user": "alice", "billId": "B7"})

        response = client.get("/api/recording-status")

        assert response.status_code == 200
        body = response.json()
        assert body["recordingCamIds"] == ["2"]
        assert body["activeCameras"]["2"]["user"] == "alice"
        assert body["activeCameras"]["2"]["billId"] == "B7"


class TestSystemEndpoints:

    @pytest.fixture(autouse=True)
    def port_ready(self):
        with patch("cctv_recorder.services.system_control.wait_for_port", new=AsyncMock(return_value=True)):
            yield

    def test_start_without_tunnels(self, client):
        response = client.post("/api/system/start", json={"startTunnels": False})

        assert response.status_code == 200
        body = response.json()
        assert body["ok"] is True
        assert body["go2rtc"]["msg"] == "go2rtc started"
        assert body["tunnelApi"]["msg"] == "skip tunnel-api"

    def test_start_defaults_to_tunnels(self, client):
        body = client.post("/api/system/start").json()
        assert body["tunnelApi"]["msg"] == "tunnel-api started"

    def test_stop_and_status(self, client):
        client.post("/api/system/start")

        response = client.post("/api/system/stop", json={"stopTunnels": True, "stopGo2rtc": False})

        assert response.json()["results"]["go2rtc"]["msg"] == "skip go2rtc"
        status = client.get("/api/system/status").json()
        assert status["go2rtc"]["running"] is True
        assert status["tunnelApi"]["running"] is False


class TestHealth:

    def test_liveness(self, client):
        assert client.get("/health/live").json() == {"status": "alive"}

    def test_healthy_with_live_sessions(self, build_client, make_service):
        client = build_client(make_service(free_gb=100))
        client.post("/api/start-record", json={"camId": "1"})

        body = client.get("/health").json()

        assert body["status"] == "healthy"
        assert body["recordings"] == {"active": 1, "cameras": ["1"]}
        assert body["disk"]["freeGB"] == pytest.approx(100.0)

    def test_degraded_when_disk_low(self, build_client, make_service):
        body = build_client(make_service(free_gb=3)).get("/health").json()

        assert body["status"] == "degraded"
        assert any("Disk space low" in e for e in body["errors"])

    def test_unavailable_when_check_fails(self, build_client):
        """Should answer 503 SERVICE_UNAVAILABLE when the check itself breaks."""
        response = build_client(object()).get("/health")

        assert response.status_code == 503
        body = response.json()
        assert body["code"] == "SERVICE_UNAVAILABLE"
        assert body["message"].startswith("Health check failed")

    def test_metrics_exposed(self, client):
        response = client.get("/metrics")

        assert response.status_code == 200
        assert "recordings_started_total" in response.text
