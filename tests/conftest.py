"""Shared fixtures: synthetic utterances and configured pipeline stages."""

import io
from typing import Sequence

import numpy as np
import pytest
import soundfile as sf

from voicematch.core.alignment import create_aligner
from voicematch.core.clips import InMemoryClipStore
from voicematch.core.decoder import create_audio_decoder
from voicematch.core.engine import VoiceAnalysisEngine
from voicematch.core.features import create_feature_extractor
from voicematch.core.scorer import create_scorer
from voicematch.utils.config import get_default_config

SR = 16000

# Relative pitch of each syllable; the glide makes the contour non-flat
SYLLABLE_PITCH = (1.0, 1.12, 0.94, 1.2, 0.9)
SYLLABLE_FRICATIVE = (True, False, True, False, True)


# ---------------------------------------------------------------------------
# Synthetic speech
# ---------------------------------------------------------------------------


def _vowel(duration: float, f0_start: float, f0_end: float, sr: int) -> np.ndarray:
    n = int(duration * sr)
    f0 = np.linspace(f0_start, f0_end, n)
    phase = 2.0 * np.pi * np.cumsum(f0) / sr
    y = np.zeros(n)
    for k in range(1, 11):
        y += np.sin(k * phase) / k
    return y * np.hanning(n) ** 0.3


def _fricative(duration: float, rng: np.random.Generator, sr: int) -> np.ndarray:
    n = int(duration * sr)
    noise = np.diff(rng.standard_normal(n + 1))
    return 0.25 * noise * np.hanning(n) ** 0.5


def make_utterance(
    f0: float = 140.0,
    pitch_shift_semitones: float = 0.0,
    tempo: float = 1.0,
    seed: int = 7,
    sr: int = SR,
    pitches: Sequence[float] = SYLLABLE_PITCH,
) -> np.ndarray:
    """
    Deterministic speech-like signal: syllables of fricative noise plus a
    harmonic vowel with a pitch glide, separated by short pauses.

    ``tempo`` < 1 stretches every segment (slower speech); the pitch
    contour is unchanged apart from ``pitch_shift_semitones``.
    """
    rng = np.random.default_rng(seed)
    base = f0 * 2.0 ** (pitch_shift_semitones / 12.0)
    parts = [np.zeros(int(0.15 * sr))]
    for rel, fricative in zip(pitches, SYLLABLE_FRICATIVE):
        if fricative:
            parts.append(_fricative(0.06 / tempo, rng, sr))
        parts.append(_vowel(0.18 / tempo, base * rel, base * rel * 1.04, sr))
        parts.append(np.zeros(int(0.04 / tempo * sr)))
    parts.append(np.zeros(int(0.15 * sr)))
    y = np.concatenate(parts)
    return (0.5 * y / np.max(np.abs(y))).astype(np.float32)


def to_wav_bytes(samples: np.ndarray, sr: int = SR, subtype: str = 'PCM_16') -> bytes:
    buf = io.BytesIO()
    sf.write(buf, samples, sr, format='WAV', subtype=subtype)
    return buf.getvalue()


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def config():
    """Default configuration dict."""
    return get_default_config()


@pytest.fixture
def decoder(config):
    return create_audio_decoder(config['audio'])


@pytest.fixture
def extractor(config):
    return create_feature_extractor(config['features'], sample_rate=SR)


@pytest.fixture
def aligner(config):
    return create_aligner(config['alignment'])


@pytest.fixture
def scorer(config):
    return create_scorer(config['scoring'])


@pytest.fixture(scope="session")
def reference_wav() -> bytes:
    return to_wav_bytes(make_utterance())


@pytest.fixture
def clip_store(reference_wav):
    store = InMemoryClipStore()
    store.add("clip_001", reference_wav, "clip_001.wav")
    return store


@pytest.fixture
def engine(decoder, extractor, aligner, scorer, clip_store):
    """Engine over real stages with an in-memory clip store."""
    eng = VoiceAnalysisEngine(
        decoder=decoder,
        extractor=extractor,
        aligner=aligner,
        scorer=scorer,
        clip_store=clip_store,
        max_workers=2,
        timeout_seconds=60.0,
    )
    yield eng
    eng.shutdown()


def features_of(extractor, decoder, samples: np.ndarray, sr: int = SR):
    """Decode a synthetic signal through WAV and extract features."""
    return extractor.extract(decoder.decode(to_wav_bytes(samples, sr), "wav"))

