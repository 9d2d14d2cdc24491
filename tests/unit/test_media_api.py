"""
Unit tests for GET /api/videos and GET /recordings/{filename}.
"""

import pytest
from fastapi.testclient import TestClient

from cctv_recorder.main import create_app
from cctv_recorder.services.container import get_media_catalog
from cctv_recorder.services.media_catalog import MediaCatalog


CONTENT = bytes(i % 251 for i in range(1000))


@pytest.fixture
def record_dir(tmp_path):
    path = tmp_path / "recordings"
    path.mkdir()
    (path / "CCTV_Cam1_alice_B1_IN_2024-05-01_10-30-00.mp4").write_bytes(CONTENT)
    return path


@pytest.fixture
def client(settings, record_dir):
    app = create_app(settings)
    app.dependency_overrides[get_media_catalog] = lambda: MediaCatalog(record_dir)
    return TestClient(app)


NAME = "CCTV_Cam1_alice_B1_IN_2024-05-01_10-30-00.mp4"


class TestListVideos:

    def test_lists_recordings(self, client, record_dir):
        (record_dir / "empty.mp4").write_bytes(b"")

        response = client.get("/api/videos")

        assert response.status_code == 200
        videos = response.json()
        assert [v["filename"] for v in videos] == [NAME]
        assert videos[0]["url"] == f"/recordings/{NAME}"
        assert videos[0]["size"] == 1000


class TestServeRecording:

    def test_full_body(self, client):
        response = client.get(f"/recordings/{NAME}")

        assert response.status_code == 200
        assert response.content == CONTENT
        assert response.headers["content-length"] == "1000"
        assert response.headers["content-type"] == "video/mp4"
        assert response.headers["accept-ranges"] == "bytes"
        assert response.headers["content-disposition"] == f"inline; filename*=UTF-8''{NAME}"

    def test_partial_body(self, client):
        response = client.get(f"/recordings/{NAME}", headers={"Range": "bytes=100-199"})

        assert response.status_code == 206
        assert response.content == CONTENT[100:200]
        assert response.headers["content-range"] == "bytes 100-199/1000"
        assert response.headers["content-length"] == "100"

    def test_open_ended_range(self, client):
        response = client.get(f"/recordings/{NAME}", headers={"Range": "bytes=990-"})

        assert response.status_code == 206
        assert response.content == CONTENT[990:]
        assert response.headers["content-range"] == "bytes 990-999/1000"

    def test_end_clamped(self, client):
        response = client.get(f"/recordings/{NAME}", headers={"Range": "bytes=900-99999"})

        assert response.status_code == 206
        assert response.headers["content-range"] == "bytes 900-999/1000"

    @pytest.mark.parametrize("header", ["bytes=1000-", "bytes=50-10", "bytes=abc"])
    def test_unsatisfiable_range(self, client, header):
        response = client.get(f"/recordings/{NAME}", headers={"Range": header})

        assert response.status_code == 416
        assert response.headers["content-range"] == "bytes */1000"
        assert response.json()["code"] == "RANGE_NOT_SATISFIABLE"

    def test_percent_encoded_name(self, client, record_dir):
        (record_dir / "clip with space.mp4").write_bytes(b"abc")

        response = client.get("/recordings/clip%20with%20space.mp4")

        assert response.status_code == 200
        assert response.content == b"abc"

    def test_missing_file(self, client):
        response = client.get("/recordings/nothing.mp4")

        assert response.status_code == 404
        assert response.json()["code"] == "NOT_FOUND"

    def test_traversal_is_not_found(self, client, tmp_path):
        (tmp_path / "secret.mp4").write_bytes(b"secret")

        response = client.get("/recordings/..%2Fsecret.mp4")

        assert response.status_code == 404
