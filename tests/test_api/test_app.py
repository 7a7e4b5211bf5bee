"""Tests for the FastAPI surface: routes, envelopes and status codes."""

import time
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from voicematch.api.app import API_PREFIX, create_app
from voicematch.core.models import AnalysisResult, DimensionScore
from voicematch.utils.errors import (
    AlignmentError,
    ClipNotFoundError,
    DecodeError,
    DurationExceeded,
    ServerError,
)

ANALYZE_URL = f"{API_PREFIX}/analyze-voice"
PUBLIC_CODES = {"INVALID_PARAMETERS", "RESOURCE_NOT_FOUND", "SERVER_ERROR"}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _result():
    dim = DimensionScore(score=0.8, feedback="Good.")
    return AnalysisResult(
        original_clip_id="clip_001",
        user_clip_id="usr_0123456789abcdef",
        similarity_score=0.8,
        feedback="Excellent!",
        pitch=dim,
        rhythm=dim,
        pronunciation=dim,
    )


def _mock_engine(**attrs):
    engine = MagicMock()
    engine.decoder.max_file_size = 1024
    engine.timeout_seconds = 5.0
    engine.extractor.params_version = "abc123"
    engine.analyze.return_value = _result()
    for key, value in attrs.items():
        setattr(engine, key, value)
    return engine


def _post(client, clip_id="clip_001", data=b"RIFFdata", filename="attempt.wav",
          content_type="audio/wav", url=ANALYZE_URL):
    return client.post(
        url,
        data={"originalClipId": clip_id},
        files={"userAudio": (filename, data, content_type)},
    )


@pytest.fixture
def mock_engine():
    return _mock_engine()


@pytest.fixture
def client(mock_engine, config):
    return TestClient(create_app(config, engine=mock_engine), raise_server_exceptions=False)


# ---------------------------------------------------------------------------
# Tests
# ---------------------------------------------------------------------------


class TestAnalyzeVoice:
    def test_success_envelope(self, client, mock_engine):
        response = _post(client)
        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["data"]["originalClipId"] == "clip_001"
        assert body["data"]["similarityScore"] == 0.8
        assert set(body["data"]["analysisDetails"]) == {"pitch", "rhythm", "pronunciation"}
        assert "error" not in body

        args = mock_engine.analyze.call_args[0]
        assert args[0] == "clip_001"
        assert args[1] == b"RIFFdata"
        assert args[2] == "attempt.wav"
        assert args[3] == "audio/wav"

    def test_trailing_slash(self, client):
        assert _post(client, url=f"{ANALYZE_URL}/").status_code == 200

    def test_test_fields_accepted(self, client, mock_engine):
        response = client.post(
            ANALYZE_URL,
            data={"originalClipId": "clip_001", "test_id": "t-9", "test_type": "2"},
            files={"userAudio": ("a.wav", b"RIFF", "audio/wav")},
        )
        assert response.status_code == 200

    def test_request_id_header(self, client):
        response = client.post(
            ANALYZE_URL,
            data={"originalClipId": "clip_001"},
            files={"userAudio": ("a.wav", b"RIFF", "audio/wav")},
            headers={"X-Request-ID": "req-42"},
        )
        assert response.headers["X-Request-ID"] == "req-42"


class TestValidation:
    def test_missing_clip_id(self, client):
        response = client.post(
            ANALYZE_URL, files={"userAudio": ("a.wav", b"RIFF", "audio/wav")}
        )
        assert response.status_code == 400
        body = response.json()
        assert body == {
            "success": False,
            "error": {
                "code": "INVALID_PARAMETERS",
                "message": "Invalid or missing fields: originalClipId",
            },
        }

    def test_missing_audio(self, client):
        response = client.post(ANALYZE_URL, data={"originalClipId": "clip_001"})
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "INVALID_PARAMETERS"
        assert "userAudio" in response.json()["error"]["message"]

    def test_oversize_upload(self, client, mock_engine):
        response = _post(client, data=b"x" * 1025)
        assert response.status_code == 413
        error = response.json()["error"]
        assert error["code"] == "INVALID_PARAMETERS"
        assert error["reason"] == "PAYLOAD_TOO_LARGE"
        mock_engine.analyze.assert_not_called()


class TestErrorMapping:
    @pytest.mark.parametrize("error, status, code", [
        (ClipNotFoundError("clip_001"), 404, "RESOURCE_NOT_FOUND"),
        (DecodeError("corrupt"), 400, "SERVER_ERROR"),
        (AlignmentError("short"), 400, "INVALID_PARAMETERS"),
        (DurationExceeded("long"), 400, "INVALID_PARAMETERS"),
        (ServerError("internal detail"), 500, "SERVER_ERROR"),
    ])
    def test_engine_errors(self, client, mock_engine, error, status, code):
        mock_engine.analyze.side_effect = error
        response = _post(client)
        assert response.status_code == status
        body = response.json()
        assert body["success"] is False
        assert body["error"]["code"] == code
        assert body["error"]["code"] in PUBLIC_CODES
        assert "data" not in body

    def test_unexpected_exception(self, client, mock_engine):
        mock_engine.analyze.side_effect = RuntimeError("secret internals")
        response = _post(client)
        assert response.status_code == 500
        error = response.json()["error"]
        assert error["code"] == "SERVER_ERROR"
        assert "secret" not in error["message"]

    def test_timeout(self, config):
        engine = _mock_engine(timeout_seconds=0.1)
        seen = {}

        def slow(*args):
            seen["cancel_event"] = args[4]
            time.sleep(0.5)
            return _result()

        engine.analyze.side_effect = slow
        client = TestClient(create_app(config, engine=engine))
        response = _post(client)
        assert response.status_code == 503
        assert response.json()["error"]["code"] == "SERVER_ERROR"
        assert response.json()["error"]["reason"] == "PROCESSING_TIMEOUT"
        assert seen["cancel_event"].is_set()


class TestEndToEnd:
    def test_real_engine(self, config, engine, reference_wav):
        client = TestClient(create_app(config, engine=engine))
        response = _post(client, data=reference_wav)
        assert response.status_code == 200
        assert response.json()["data"]["similarityScore"] >= 0.95

    def test_video_upload_rejected(self, config, engine, reference_wav):
        client = TestClient(create_app(config, engine=engine))
        response = _post(client, data=reference_wav, filename="clip.mp4",
                         content_type="video/mp4")
        assert response.status_code == 415
        assert response.json()["error"]["code"] == "INVALID_PARAMETERS"
        assert response.json()["error"]["reason"] == "UNSUPPORTED_MEDIA_TYPE"

    def test_unknown_clip(self, config, engine, reference_wav):
        client = TestClient(create_app(config, engine=engine))
        response = _post(client, clip_id="nope", data=reference_wav)
        assert response.status_code == 404


class TestHealth:
    def test_health(self, client):
        response = client.get(f"{API_PREFIX}/health")
        assert response.status_code == 200
        data = response.json()["data"]
        assert data["status"] == "ok"
        assert data["paramsVersion"] == "abc123"
