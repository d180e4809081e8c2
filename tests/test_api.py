import io
import zipfile

import pytest
from fastapi.testclient import TestClient
from PIL import Image

from app.main import create_app


@pytest.fixture
def client(settings):
    with TestClient(create_app(settings)) as test_client:
        yield test_client


def png_bytes(size=(64, 32)):
    buf = io.BytesIO()
    Image.new("RGB", size, "blue").save(buf, format="PNG")
    return buf.getvalue()


def receive_until(ws, event):
    """Collect frames until ``event`` arrives (inclusive)."""
    frames = []
    while True:
        frame = ws.receive_json()
        frames.append(frame)
        if frame["event"] == event:
            return frames


def test_health(client):
    response = client.get("/api/health")
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "OK"
    assert body["version"] == "1.0.0"
    assert body["activeJobs"] == 0
    assert body["jobs"] == []


def test_generate_single_password(client):
    response = client.post("/api/password-generator/generate", json={"length": 24, "includeSymbols": True})
    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert len(body["data"]["password"]) == 24
    assert body["data"]["strength"]["level"] in {"weak", "fair", "good", "strong", "very-strong"}


def test_invalid_config_is_rejected_with_422(client):
    response = client.post("/api/password-generator/generate", json={"length": 2})
    assert response.status_code == 422


def test_password_bulk_job_end_to_end(client):
    with client.websocket_connect("/ws") as ws:
        ws.send_json({"event": "ping"})
        assert ws.receive_json() == {"event": "pong", "data": {}}

        ws.send_json({"event": "join:job", "data": "pwd-job-1"})
        joined = ws.receive_json()
        assert joined["event"] == "joined:job"
        assert joined["data"]["jobId"] == "pwd-job-1"

        response = client.post(
            "/api/password-generator/generate-bulk",
            json={"config": {"length": 12, "count": 3}, "jobId": "pwd-job-1"},
        )
        assert response.status_code == 200
        assert response.json()["data"] == {"jobId": "pwd-job-1"}

        frames = receive_until(ws, "password-generator:complete")

    events = [f["event"] for f in frames]
    assert events[0] == "password-generator:start"
    assert events.count("password-generator:progress") == 3
    complete = frames[-1]["data"]
    assert complete["totalProcessed"] == 3
    assert complete["downloadUrl"] == "/api/password-generator/download/pwd-job-1"

    first = client.get("/api/password-generator/download/pwd-job-1")
    second = client.get("/api/password-generator/download/pwd-job-1")
    assert first.status_code == second.status_code == 200
    assert first.headers["content-type"] == "application/zip"
    assert first.content == second.content
    with zipfile.ZipFile(io.BytesIO(first.content)) as zf:
        assert sorted(zf.namelist()) == ["passwords.csv", "passwords.json", "passwords.txt"]
        assert len(zf.read("passwords.txt").decode().splitlines()) == 3


def test_invalid_job_id_is_rejected(client):
    response = client.post(
        "/api/password-generator/generate-bulk",
        json={"config": {"count": 1}, "jobId": "../../etc"},
    )
    assert response.status_code == 400
    assert response.json()["detail"]["success"] is False


def test_missing_archive_is_404(client):
    assert client.get("/api/qr-code/download/qr-bulk-0-none").status_code == 404
    assert client.get("/api/qr-code/download/bad%20id").status_code == 404


def test_bulk_without_progress_transport_is_503(settings):
    # without the lifespan no connection manager exists
    client = TestClient(create_app(settings))
    response = client.post("/api/qr-code/generate-bulk", json={"configs": []})
    assert response.status_code == 503


def test_single_qr_code_is_png(client):
    response = client.post(
        "/api/qr-code/generate", json={"type": "url", "content": "example.com", "size": 200}
    )
    assert response.status_code == 200
    assert response.headers["content-type"] == "image/png"
    with Image.open(io.BytesIO(response.content)) as image:
        assert image.size == (200, 200)


def test_single_qr_code_with_bad_wifi_string_is_400(client):
    response = client.post("/api/qr-code/generate", json={"type": "wifi", "content": "nocolon"})
    assert response.status_code == 400
    assert "WiFi" in response.json()["detail"]["error"]


def test_qr_bulk_with_failure(client):
    configs = [
        {"type": "text", "content": "one"},
        {"type": "wifi", "content": "broken"},
        {"type": "text", "content": "three"},
    ]
    response = client.post("/api/qr-code/generate-bulk", json={"configs": configs, "maxConcurrent": 2})
    job_id = response.json()["data"]["jobId"]
    assert job_id.startswith("qr-bulk-")

    archive = client.get(f"/api/qr-code/download/{job_id}")
    with zipfile.ZipFile(io.BytesIO(archive.content)) as zf:
        assert zf.namelist() == ["qr-0001.png", "qr-0003.png"]


def test_resize_single_image(client, settings):
    response = client.post(
        "/api/image-resizer/resize",
        files={"image": ("photo.png", png_bytes(), "image/png")},
        data={"width": "32", "format": "png"},
    )
    assert response.status_code == 200
    assert response.headers["content-type"] == "image/png"
    with Image.open(io.BytesIO(response.content)) as image:
        assert image.size == (32, 16)
    assert list(settings.UPLOAD_DIR.iterdir()) == []


def test_resize_bulk(client, settings):
    response = client.post(
        "/api/image-resizer/resize-bulk",
        files=[
            ("images", ("a.png", png_bytes(), "image/png")),
            ("images", ("b.png", png_bytes(), "image/png")),
        ],
        data={"width": "16", "maintainAspectRatio": "true"},
    )
    assert response.status_code == 200
    job_id = response.json()["data"]["jobId"]

    archive = client.get(f"/api/image-resizer/download/{job_id}")
    with zipfile.ZipFile(io.BytesIO(archive.content)) as zf:
        assert zf.namelist() == ["a.jpg", "b.jpg"]
    assert list(settings.UPLOAD_DIR.iterdir()) == []


def test_invalid_form_config_is_422(client):
    response = client.post(
        "/api/image-resizer/resize",
        files={"image": ("photo.png", png_bytes(), "image/png")},
        data={"quality": "500"},
    )
    assert response.status_code == 422


def test_unsupported_upload_type_is_rejected(client, settings):
    response = client.post(
        "/api/image-resizer/resize-bulk",
        files=[
            ("images", ("a.png", png_bytes(), "image/png")),
            ("images", ("b.exe", b"MZ", "application/x-msdownload")),
        ],
    )
    assert response.status_code == 400
    assert list(settings.UPLOAD_DIR.iterdir()) == []


def test_too_many_files_is_rejected(client, settings):
    files = [("files", (f"{i}.txt", b"x", "text/plain")) for i in range(settings.MAX_BULK_FILES + 1)]
    response = client.post("/api/file-converter/convert-bulk", files=files, data={"outputFormat": "pdf"})
    assert response.status_code == 400


def test_convert_bulk(client):
    response = client.post(
        "/api/file-converter/convert-bulk",
        files=[
            ("files", ("notes.txt", b"hello\nworld", "text/plain")),
            ("files", ("notes.txt", b"second copy", "text/plain")),
        ],
        data={"outputFormat": "docx"},
    )
    job_id = response.json()["data"]["jobId"]

    archive = client.get(f"/api/file-converter/download/{job_id}")
    with zipfile.ZipFile(io.BytesIO(archive.content)) as zf:
        assert zf.namelist() == ["notes.docx", "notes-1.docx"]


def test_convert_single_file(client):
    response = client.post(
        "/api/file-converter/convert",
        files={"file": ("notes.txt", b"hello", "text/plain")},
        data={"outputFormat": "pdf"},
    )
    assert response.status_code == 200
    assert response.headers["content-type"] == "application/pdf"
    assert response.content.startswith(b"%PDF")


def test_document_fetcher_with_only_skipped_rows(client):
    with client.websocket_connect("/ws") as ws:
        ws.send_json({"event": "test", "data": {}})
        assert ws.receive_json()["event"] == "test:response"

        response = client.post(
            "/api/document-fetcher/process-documents",
            json={
                "data": [{"Name": "no reg"}, {"Reg No": "R2", "Resume": "https://example.com/x"}],
                "config": {"columnMapping": {"Resume": "CVs"}},
            },
        )
        assert response.status_code == 200
        frames = receive_until(ws, "document-fetcher:complete")

    complete = frames[-1]["data"]
    assert complete["totalSkipped"] == 2
    assert complete["totalProcessed"] == 0
    archive = client.get(f"/api/document-fetcher/download/{complete['jobId']}")
    with zipfile.ZipFile(io.BytesIO(archive.content)) as zf:
        assert zf.namelist() == []


def test_websocket_rejects_unknown_events(client):
    with client.websocket_connect("/ws") as ws:
        ws.send_text("not json")
        assert ws.receive_json()["data"]["error"] == "Invalid JSON"
        ws.send_json({"event": "dance"})
        assert ws.receive_json()["event"] == "error"
        ws.send_json({"event": "ping"})
        assert ws.receive_json()["event"] == "pong"


def test_resize_bulk_with_supplied_job_id(client):
    files = [("images", ("a.png", png_bytes(), "image/png"))]
    response = client.post(
        "/api/image-resizer/resize-bulk", files=files, data={"jobId": "gallery-1", "width": "8"}
    )
    assert response.status_code == 200
    assert response.json()["data"]["jobId"] == "gallery-1"
    assert client.get("/api/image-resizer/download/gallery-1").status_code == 200

    again = client.post(
        "/api/image-resizer/resize-bulk", files=files, data={"jobId": "gallery-1"}
    )
    assert again.status_code == 400


def test_convert_bulk_with_supplied_job_id(client):
    response = client.post(
        "/api/file-converter/convert-bulk",
        files=[("files", ("notes.txt", b"hello", "text/plain"))],
        data={"outputFormat": "pdf", "jobId": "batch-7"},
    )
    assert response.status_code == 200
    assert response.json()["data"]["jobId"] == "batch-7"

    archive = client.get("/api/file-converter/download/batch-7")
    with zipfile.ZipFile(io.BytesIO(archive.content)) as zf:
        assert zf.namelist() == ["notes.pdf"]
