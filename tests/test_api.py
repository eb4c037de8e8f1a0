from fastapi.testclient import TestClient

import core.globals
from core.errors import UploadError
from core.storage import WriteTarget
from main import app
from schemas.models import Job

client = TestClient(app)


class FakeManager:
    def __init__(self, result="https://clips.s3.amazonaws.com/feed.mp4", error=None):
        self.result = result
        self.error = error
        self.jobs = []

    def create_job(self, source_url, start, end):
        if start < 0 or end <= start:
            raise ValueError("bad range")
        job = Job(source_url=source_url, start_offset=start, end_offset=end)
        self.jobs.append(job)
        return job

    async def run(self, job):
        if self.error:
            raise self.error
        return self.result


class FakeSink:
    def __init__(self, error=None):
        self.error = error

    async def request_write_target(self):
        if self.error:
            raise self.error
        return WriteTarget(url="https://clips.s3.amazonaws.com/k.mp4?X-Amz-Signature=s", key="k.mp4")


def test_health():
    response = client.get("/")
    assert response.status_code == 200
    assert response.text == "server ok"


def test_chunk_success_returns_fileurl(monkeypatch):
    manager = FakeManager()
    monkeypatch.setattr(core.globals, "job_manager", manager)

    response = client.get(
        "/youtubechunk-to-s3",
        params={"url": "https://youtu.be/dQw4w9WgXcQ", "start": 10, "end": 20},
    )

    assert response.status_code == 200
    assert response.json() == {"fileurl": "https://clips.s3.amazonaws.com/feed.mp4"}
    assert (manager.jobs[0].start_offset, manager.jobs[0].end_offset) == (10, 20)


def test_chunk_bounds_round_to_whole_seconds(monkeypatch):
    manager = FakeManager()
    monkeypatch.setattr(core.globals, "job_manager", manager)

    client.get("/youtubechunk-to-s3", params={"url": "https://youtu.be/x", "start": 9.5, "end": 20.4})

    assert (manager.jobs[0].start_offset, manager.jobs[0].end_offset) == (10, 20)


def test_chunk_failure_is_generic(monkeypatch):
    monkeypatch.setattr(
        core.globals, "job_manager",
        FakeManager(error=UploadError("Upload failed with status 403: SignatureDoesNotMatch")),
    )

    response = client.get("/youtubechunk-to-s3", params={"url": "https://youtu.be/x", "start": 0, "end": 5})

    assert response.status_code == 500
    assert response.text == "An error occurred"
    assert "Signature" not in response.text


def test_chunk_rejects_empty_range(monkeypatch):
    monkeypatch.setattr(core.globals, "job_manager", FakeManager())

    response = client.get("/youtubechunk-to-s3", params={"url": "https://youtu.be/x", "start": 20, "end": 20})

    assert response.status_code == 400


def test_chunk_rejects_negative_start(monkeypatch):
    monkeypatch.setattr(core.globals, "job_manager", FakeManager())

    response = client.get("/youtubechunk-to-s3", params={"url": "https://youtu.be/x", "start": -1, "end": 5})

    assert response.status_code == 422


def test_s3url_returns_presigned_url(monkeypatch):
    monkeypatch.setattr(core.globals, "storage_sink", FakeSink())

    response = client.get("/s3url")

    assert response.status_code == 200
    assert response.json()["url"].startswith("https://clips.s3.amazonaws.com/k.mp4?")


def test_s3url_failure_is_generic(monkeypatch):
    monkeypatch.setattr(core.globals, "storage_sink", FakeSink(error=RuntimeError("no credentials")))

    response = client.get("/s3url")

    assert response.status_code == 500
    assert response.text == "An error occurred"


def test_chunk_rejects_non_finite_bounds(monkeypatch):
    manager = FakeManager()
    monkeypatch.setattr(core.globals, "job_manager", manager)
    lenient = TestClient(app, raise_server_exceptions=False)

    for end in ("inf", "nan", "1e400"):
        response = lenient.get("/youtubechunk-to-s3", params={"url": "https://youtu.be/x", "start": 0, "end": end})
        assert response.status_code == 422

    assert manager.jobs == []
