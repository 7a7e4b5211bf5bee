"""Tests for AudioDecoder: limits, canonical form and silence trimming."""

import io
import tempfile
from unittest.mock import patch

import librosa
import numpy as np
import pytest
import soundfile as sf

from conftest import SR, make_utterance, to_wav_bytes
from voicematch.core.decoder import DECODE_MARGIN_SECONDS, AudioDecoder, create_audio_decoder
from voicematch.utils.errors import (
    AudioError,
    DecodeError,
    DurationExceeded,
    FormatError,
    SizeExceeded,
)


def to_mp3_bytes(samples, sr=SR):
    buf = io.BytesIO()
    sf.write(buf, samples, sr, format='MP3')
    return buf.getvalue()


class TestFormats:
    def test_normalize_format_accepts_names_and_files(self, decoder):
        assert decoder.normalize_format("WAV") == "wav"
        assert decoder.normalize_format(".m4a") == "m4a"
        assert decoder.normalize_format("clip_001.mp3") == "mp3"

    def test_unsupported_format(self, decoder):
        with pytest.raises(FormatError, match="not supported"):
            decoder.decode(b"RIFF....", "ogg")

    def test_missing_format(self, decoder):
        with pytest.raises(FormatError):
            decoder.decode(b"RIFF....", "")


class TestLimits:
    def test_empty_payload(self, decoder):
        with pytest.raises(DecodeError, match="empty"):
            decoder.decode(b"", "wav")

    def test_size_limit(self):
        decoder = AudioDecoder(max_file_size=1000)
        with pytest.raises(SizeExceeded) as exc_info:
            decoder.decode(b"\x00" * 1001, "wav")
        assert exc_info.value.size == 1001
        assert exc_info.value.max_size == 1000

    def test_exactly_max_duration_accepted(self, decoder):
        samples = np.zeros(60 * SR, dtype=np.float32)
        signal = decoder.decode(to_wav_bytes(samples), "wav")
        assert signal.num_samples == 60 * SR

    def test_one_sample_over_rejected(self, decoder):
        samples = np.zeros(60 * SR + 1, dtype=np.float32)
        with pytest.raises(DurationExceeded):
            decoder.decode(to_wav_bytes(samples), "wav")

    def test_duration_checked_at_native_rate(self):
        decoder = AudioDecoder(max_duration=1.0)
        samples = np.zeros(44100 + 1, dtype=np.float32)
        with pytest.raises(DurationExceeded):
            decoder.decode(to_wav_bytes(samples, sr=44100), "wav")

    def test_corrupt_wav(self, decoder):
        with pytest.raises(AudioError):
            decoder.decode(b"RIFF\x00\x00\x00\x00WAVEgarbage", "wav")

    def test_long_wav_read_only_past_limit(self):
        decoder = AudioDecoder(max_duration=1.0)
        samples = np.zeros(5 * SR, dtype=np.float32)
        with pytest.raises(DurationExceeded) as exc_info:
            decoder.decode(to_wav_bytes(samples), "wav")
        assert exc_info.value.duration <= 1.0 + DECODE_MARGIN_SECONDS


@pytest.mark.skipif("MP3" not in sf.available_formats(),
                    reason="libsndfile built without MP3 support")
class TestCompressed:
    def test_mp3_decoded(self, decoder, tmp_path, monkeypatch):
        monkeypatch.setattr(tempfile, "tempdir", str(tmp_path))
        signal = decoder.decode(to_mp3_bytes(make_utterance()), "mp3")

        assert signal.sample_rate == SR
        assert signal.original_format == "MP3"
        assert signal.duration > 1.0
        assert np.isfinite(signal.samples).all()
        assert list(tmp_path.iterdir()) == []

    def test_corrupt_mp3(self, decoder, tmp_path, monkeypatch):
        monkeypatch.setattr(tempfile, "tempdir", str(tmp_path))
        with pytest.raises(DecodeError):
            decoder.decode(b"ID3\x03\x00\x00\x00\x00\x00\x00" + b"\x13\x37" * 400, "mp3")
        assert list(tmp_path.iterdir()) == []

    def test_long_mp3_decoded_only_past_limit(self):
        decoder = AudioDecoder(max_duration=5.0)
        sr = 8000
        t = np.arange(120 * sr) / sr
        tone = (0.3 * np.sin(2 * np.pi * 220.0 * t)).astype(np.float32)
        data = to_mp3_bytes(tone, sr)

        with patch("librosa.load", wraps=librosa.load) as spy:
            with pytest.raises(DurationExceeded) as exc_info:
                decoder.decode(data, "mp3")
        assert spy.call_args.kwargs["duration"] == 5.0 + DECODE_MARGIN_SECONDS
        assert exc_info.value.duration <= 5.0 + DECODE_MARGIN_SECONDS + 0.1


class TestCanonicalForm:
    def test_output_is_mono_float32_at_target_rate(self, decoder):
        signal = decoder.decode(to_wav_bytes(make_utterance()), "wav")
        assert signal.sample_rate == SR
        assert signal.samples.dtype == np.float32
        assert signal.samples.ndim == 1
        assert signal.peak <= 1.0
        assert signal.original_format == "WAV"

    def test_stereo_downmixed(self, decoder):
        mono = make_utterance()
        stereo = np.stack([mono, mono], axis=1)
        signal = decoder.decode(to_wav_bytes(stereo), "wav")
        assert signal.original_channels == 2
        assert signal.samples.ndim == 1

    def test_resampled(self, decoder):
        samples = make_utterance(sr=44100)
        signal = decoder.decode(to_wav_bytes(samples, sr=44100), "wav")
        assert signal.original_sample_rate == 44100
        assert signal.sample_rate == SR
        raw_duration = samples.shape[0] / 44100
        assert signal.duration <= raw_duration + 0.01

    def test_source_hash_is_content_hash(self, decoder):
        data = to_wav_bytes(make_utterance())
        a = decoder.decode(data, "wav")
        b = decoder.decode(data, "wav")
        assert a.source_hash == b.source_hash
        assert np.array_equal(a.samples, b.samples)

    def test_quiet_signal_not_amplified(self, decoder):
        quiet = 0.01 * make_utterance() / 0.5
        signal = decoder.decode(to_wav_bytes(quiet), "wav")
        assert signal.peak < 0.02

    def test_float_clipping_normalized(self, decoder):
        loud = 3.0 * make_utterance()
        signal = decoder.decode(to_wav_bytes(loud, subtype='FLOAT'), "wav")
        assert signal.peak <= 1.0 + 1e-6


class TestTrimming:
    def test_leading_silence_trimmed_with_guard(self, decoder):
        speech = make_utterance()
        padded = np.concatenate([np.zeros(SR, dtype=np.float32), speech])
        signal = decoder.decode(to_wav_bytes(padded), "wav")
        assert signal.trimmed > 0.9
        # Guard band: first samples are still silence
        assert np.all(signal.samples[:int(0.04 * SR)] == 0.0)

    def test_pure_silence_not_emptied(self, decoder):
        samples = np.zeros(2 * SR, dtype=np.float32)
        signal = decoder.decode(to_wav_bytes(samples), "wav")
        assert signal.num_samples == 2 * SR
        assert signal.trimmed == 0.0

    def test_factory_reads_config(self, config):
        config['audio']['max_duration'] = 5.0
        decoder = create_audio_decoder(config['audio'])
        assert decoder.max_duration == 5.0
        assert decoder.target_sr == SR
