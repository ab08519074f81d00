"""Tests for the fal queue job client and result parsing."""
from __future__ import annotations

import pytest
import requests

from rodin_worker import job_client as job_client_module
from rodin_worker.contracts import JobResult, TextureAsset
from rodin_worker.errors import JobFailedError, JobNotReadyError
from rodin_worker.job_client import FalQueueClient, classify_job_error


class FakeResponse:
    def __init__(self, status_code=200, payload=None, text=""):
        self.status_code = status_code
        self._payload = payload
        self.text = text

    def json(self):
        if self._payload is None:
            raise ValueError("No JSON")
        return self._payload


def _patch_get(monkeypatch, response=None, error=None):
    calls = []

    def fake_get(url, headers, timeout):
        calls.append((url, headers, timeout))
        if error is not None:
            raise error
        return response

    monkeypatch.setattr(job_client_module.requests, "get", fake_get)
    return calls


class TestClassifyJobError:
    @pytest.mark.parametrize("message", [
        "Request failed with status code 404",
        "Bad Request",
        "Request not found",
        "HTTP 400",
    ])
    def test_not_ready_markers(self, message):
        assert isinstance(classify_job_error(message), JobNotReadyError)

    def test_status_code_wins_over_message(self):
        err = classify_job_error("Request is still in progress", status_code=400)
        assert isinstance(err, JobNotReadyError)
        assert err.status_code == 400

    def test_other_errors_are_fatal(self):
        err = classify_job_error("Internal Server Error", status_code=500)
        assert isinstance(err, JobFailedError)
        assert not isinstance(err, JobNotReadyError)

    def test_known_status_ignores_message_markers(self):
        err = classify_job_error("upstream said: model not found", status_code=502)
        assert isinstance(err, JobFailedError)
        assert not isinstance(err, JobNotReadyError)


def test_result_url_uses_app_owner_and_alias():
    client = FalQueueClient("key", app="fal-ai/hyper3d/rodin")
    assert client.request_url("abc") == "https://queue.fal.run/fal-ai/hyper3d/requests/abc"


def test_result_parses_rodin_payload(monkeypatch):
    payload = {
        "model_mesh": {"url": "https://fal.media/files/m/base_basic_pbr.glb"},
        "textures": [
            {"url": "https://fal.media/files/m/texture_diffuse.png", "file_name": "texture_diffuse.png"},
        ],
    }
    calls = _patch_get(monkeypatch, FakeResponse(200, payload))

    result = FalQueueClient("secret", timeout=7.0).result("req-1")

    assert result.model_url == "https://fal.media/files/m/base_basic_pbr.glb"
    assert result.textures == [
        TextureAsset("https://fal.media/files/m/texture_diffuse.png", "texture_diffuse.png")
    ]
    url, headers, timeout = calls[0]
    assert url.endswith("/requests/req-1")
    assert headers["Authorization"] == "Key secret"
    assert timeout == 7.0


@pytest.mark.parametrize("status", [400, 404])
def test_in_progress_statuses_are_not_ready(monkeypatch, status):
    _patch_get(monkeypatch, FakeResponse(status, text='{"detail": "Request is still in progress"}'))
    with pytest.raises(JobNotReadyError):
        FalQueueClient("key").result("req-1")


@pytest.mark.parametrize("status", [401, 403, 422, 500])
def test_other_statuses_are_fatal(monkeypatch, status):
    _patch_get(monkeypatch, FakeResponse(status, text="upstream exploded"))
    with pytest.raises(JobFailedError) as excinfo:
        FalQueueClient("key").result("req-1")
    assert excinfo.value.status_code == status


def test_transport_error_is_fatal(monkeypatch):
    _patch_get(monkeypatch, error=requests.ConnectionError("connection refused"))
    with pytest.raises(JobFailedError, match="connection refused"):
        FalQueueClient("key").result("req-1")


def test_non_json_body_is_fatal(monkeypatch):
    _patch_get(monkeypatch, FakeResponse(200, payload=None, text="<html>"))
    with pytest.raises(JobFailedError):
        FalQueueClient("key").result("req-1")


class TestJobResultFromPayload:
    def test_sdk_wrapper_is_unwrapped(self):
        result = JobResult.from_payload({"data": {"model_mesh": {"url": "https://x/m.glb"}}, "requestId": "r"})
        assert result.model_url == "https://x/m.glb"
        assert result.textures == []

    def test_missing_model_mesh_is_fatal(self):
        with pytest.raises(JobFailedError):
            JobResult.from_payload({"textures": []})

    def test_null_textures_and_missing_file_name(self):
        result = JobResult.from_payload({
            "model_mesh": {"url": "https://x/m.glb"},
            "textures": [{"url": "https://x/files/tex_a.png"}, {"file_name": "no-url.png"}],
        })
        assert result.textures == [TextureAsset("https://x/files/tex_a.png", "tex_a.png")]
        assert JobResult.from_payload({"model_mesh": {"url": "u"}, "textures": None}).textures == []

    def test_texture_file_names_are_reduced_to_bare_names(self):
        result = JobResult.from_payload({
            "model_mesh": {"url": "https://x/m.glb"},
            "textures": [
                {"url": "https://x/files/a.png", "file_name": "/../../../../../a.png"},
                {"url": "https://x/files/b.png?sig=abc"},
            ],
        })
        assert [t.file_name for t in result.textures] == ["a.png", "b.png"]
