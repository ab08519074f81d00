"""
Shared fixtures and fake collaborators for the Rodin worker tests.
"""
import sys
from pathlib import Path

import pytest
import trimesh

# Add src/ to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from rodin_worker.asset_paths import AssetPaths
from rodin_worker.config import WorkerConfig
from rodin_worker.contracts import JobResult
from rodin_worker.notifier import Notifier
from rodin_worker.result_store import SQLiteResultStore

BASE_URL = "https://cdn.example.test"
TASK_ID = "req-123"


class RecordingNotifier(Notifier):
    def __init__(self):
        self.events = []

    def send(self, task_id, phase, message):
        self.events.append((task_id, getattr(phase, "value", phase), message))

    def phases(self, task_id=None):
        return [p for t, p, _ in self.events if task_id is None or t == task_id]


class FakeClock:
    """Monotonic clock advanced only by the fake sleep."""

    def __init__(self, start=1000.0):
        self.now = start
        self.sleeps = []

    def __call__(self):
        return self.now

    async def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


class ScriptedJobClient:
    """Returns or raises the scripted responses in order; repeats the last."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = 0

    def result(self, task_id):
        index = min(self.calls, len(self.responses) - 1)
        self.calls += 1
        response = self.responses[index]
        if isinstance(response, Exception):
            raise response
        return response


class FakeDownloader:
    def __init__(self, fail_urls=()):
        self.fail_urls = set(fail_urls)
        self.calls = []

    def fetch(self, url, local_path):
        from rodin_worker.errors import DownloadError

        self.calls.append((url, Path(local_path)))
        if url in self.fail_urls:
            raise DownloadError(f"Download of {url} failed: 500 Server Error")
        path = Path(local_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(b"asset:" + url.encode())
        return path


class FakeRenderer:
    def __init__(self, error=None):
        self.error = error
        self.calls = []

    async def render(self, model_ref, output_path):
        self.calls.append((model_ref, Path(output_path)))
        if self.error is not None:
            raise self.error
        Path(output_path).parent.mkdir(parents=True, exist_ok=True)
        Path(output_path).write_bytes(b"\x89PNG fake")
        return Path(output_path)


def rodin_payload(model_url="https://fal.media/files/abc/base_basic_pbr.glb", textures=()):
    return {
        "model_mesh": {"url": model_url, "file_name": "base_basic_pbr.glb"},
        "textures": [{"url": url, "file_name": name} for url, name in textures],
    }


def job_result(**kwargs):
    return JobResult.from_payload(rodin_payload(**kwargs))


@pytest.fixture
def worker_config(tmp_path):
    return WorkerConfig(
        base_url=BASE_URL,
        storage_dir=str(tmp_path / "storage"),
        database_path=str(tmp_path / "worker.db"),
        poll_interval_seconds=5.0,
        max_duration_seconds=600.0,
        fatal_error_window_seconds=60.0,
    )


@pytest.fixture
def asset_paths(worker_config):
    return AssetPaths(worker_config.storage_dir, worker_config.base_url)


@pytest.fixture
def result_store(worker_config):
    store = SQLiteResultStore(worker_config.database_path)
    store.initialize()
    store.ensure_mesh(TASK_ID)
    return store


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def box_glb_file(tmp_path):
    """A 1m box exported as GLB."""
    mesh = trimesh.creation.box(extents=[1.0, 1.0, 1.0])
    path = tmp_path / "box.glb"
    mesh.export(str(path))
    return str(path)
