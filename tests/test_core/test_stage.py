"""Tests for the BaseStage run wrapper shared by every pipeline stage."""

import logging

import pytest

from voicematch.core.alignment import DTWAligner
from voicematch.core.decoder import AudioDecoder
from voicematch.core.features import FeatureExtractor
from voicematch.core.scorer import Scorer
from voicematch.core.stage import BaseStage
from voicematch.utils.errors import AlignmentError, ServerError


class EchoStage(BaseStage[int]):
    def __init__(self, error=None):
        super().__init__("echo", "0.1.0")
        self.error = error

    def _run_impl(self, value):
        if self.error is not None:
            raise self.error
        return value * 2


class TestBaseStage:
    def test_result_returned(self):
        stage = EchoStage()
        assert stage.run(21) == 42
        assert stage.name == "echo"
        assert stage.version == "0.1.0"

    def test_known_error_passes_through(self, caplog):
        error = AlignmentError("too short", reference_frames=2, user_frames=40)
        with caplog.at_level(logging.INFO, logger="stage.echo"):
            with pytest.raises(AlignmentError) as exc_info:
                EchoStage(error).run(1)
        assert exc_info.value is error
        assert "AUDIO_TOO_SHORT" in caplog.text

    def test_unexpected_error_wrapped(self):
        cause = KeyError("missing")
        with pytest.raises(ServerError) as exc_info:
            EchoStage(cause).run(1)
        assert exc_info.value.stage_name == "echo"
        assert exc_info.value.original_error is cause
        assert exc_info.value.__cause__ is cause

    @pytest.mark.parametrize("stage_cls, name", [
        (AudioDecoder, "decoder"),
        (FeatureExtractor, "feature_extractor"),
        (DTWAligner, "aligner"),
        (Scorer, "scorer"),
    ])
    def test_pipeline_stages_share_base(self, stage_cls, name):
        stage = stage_cls()
        assert isinstance(stage, BaseStage)
        assert stage.name == name
