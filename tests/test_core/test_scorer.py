"""Tests for the Scorer: per-dimension scores, fallbacks and the overall result."""

import math

import numpy as np
import pytest

from voicematch.core.feedback import DIMENSION_TEMPLATES, INSUFFICIENT, OVERALL_TEMPLATES
from voicematch.core.models import PHONETIC_UNITS, Alignment, FeatureSequence
from voicematch.core.scorer import DIMENSIONS, Scorer, create_scorer

VOWEL = PHONETIC_UNITS.index("vowel")
SILENCE = PHONETIC_UNITS.index("silence")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _sequence(f0, labels=None, confidence=None):
    f0 = np.asarray(f0, dtype=np.float64)
    n = f0.shape[0]
    if labels is None:
        labels = np.where(np.isnan(f0), SILENCE, VOWEL)
    return FeatureSequence(
        f0=f0,
        energy=np.full(n, 0.1),
        energy_db=np.full(n, -20.0),
        labels=np.asarray(labels, dtype=np.int64),
        confidence=np.ones(n) if confidence is None else np.asarray(confidence, float),
        mfcc=np.zeros((n, 13)),
        hop_seconds=0.01,
        window_seconds=0.025,
        params_version="p1",
    )


def _alignment(path, n_user, n_ref):
    path = np.asarray(path, dtype=np.int64)
    return Alignment(
        path=path,
        local_costs=np.zeros(path.shape[0]),
        total_cost=0.0,
        user_length=n_user,
        reference_length=n_ref,
        band_radius=10,
    )


def _diagonal(n):
    return _alignment([(i, i) for i in range(n)], n, n)


def _scaled_path(n_user, n_ref):
    """Contiguous path along the length-scaled diagonal."""
    steps = max(n_user, n_ref)
    return _alignment(
        [
            (int(round(k * (n_user - 1) / (steps - 1))), int(round(k * (n_ref - 1) / (steps - 1))))
            for k in range(steps)
        ],
        n_user,
        n_ref,
    )


def _contour(n, base=150.0):
    return base * 2 ** (np.sin(np.linspace(0, 2 * np.pi, n)) / 4)


def _score(scorer, alignment, reference, user):
    return scorer.score(alignment, reference, user, "clip_001", "usr_test")


# ---------------------------------------------------------------------------
# Tests
# ---------------------------------------------------------------------------


class TestIdentical:
    def test_perfect_scores(self):
        seq = _sequence(_contour(40))
        result = _score(Scorer(), _diagonal(40), seq, seq)
        assert result.pitch.score == 1.0
        assert result.rhythm.score == 1.0
        assert result.pronunciation.score == 1.0
        assert result.similarity_score == 1.0
        assert result.feedback == OVERALL_TEMPLATES["high"]

    def test_ids_carried(self):
        seq = _sequence(_contour(20))
        result = _score(Scorer(), _diagonal(20), seq, seq)
        assert result.original_clip_id == "clip_001"
        assert result.user_clip_id == "usr_test"


class TestPitch:
    @pytest.mark.parametrize("shift, expected", [(0, 1.0), (1.5, 0.75), (3, 0.5), (6, 0.0), (9, 0.0)])
    def test_shift_maps_linearly(self, shift, expected):
        reference = _sequence(_contour(30))
        user = _sequence(reference.f0 * 2 ** (shift / 12))
        score, pairs = Scorer().pitch_score(_diagonal(30), reference, user)
        assert pairs == 30
        assert score == pytest.approx(expected, abs=1e-9)

    def test_monotonic_in_deviation(self):
        reference = _sequence(_contour(30))
        scores = [
            _score(Scorer(), _diagonal(30), reference,
                   _sequence(reference.f0 * 2 ** (s / 12))).pitch.score
            for s in (0, 1, 2, 4, 8)
        ]
        assert scores == sorted(scores, reverse=True)

    def test_register_normalization(self):
        reference = _sequence(_contour(30))
        user = _sequence(reference.f0 * 2.0)
        score, _ = Scorer(normalize_register=True).pitch_score(_diagonal(30), reference, user)
        assert score == pytest.approx(1.0)

    def test_no_voiced_pairs_is_neutral(self):
        reference = _sequence(_contour(30))
        user = _sequence(np.full(30, np.nan))
        result = _score(Scorer(), _diagonal(30), reference, user)
        assert result.pitch.score == 0.5
        assert result.pitch.insufficient
        assert result.pitch.feedback == DIMENSION_TEMPLATES["pitch"][INSUFFICIENT]
        assert result.metadata["voiced_pairs"] == 0

    def test_min_voiced_pairs(self):
        f0 = np.full(30, np.nan)
        f0[:4] = 150.0
        seq = _sequence(f0)
        score, pairs = Scorer(min_voiced_pairs=5).pitch_score(_diagonal(30), seq, seq)
        assert score is None
        assert pairs == 4


class TestRhythm:
    def test_same_pace(self):
        assert Scorer().rhythm_score(_diagonal(50)) == pytest.approx(1.0)

    def test_double_length_is_far_off(self):
        alignment = _alignment([(i, i // 2) for i in range(41)], 41, 21)
        assert Scorer().rhythm_score(alignment) < 0.05

    def test_tolerance_scales_penalty(self):
        alignment = _alignment([(i, i // 2) for i in range(41)], 41, 21)
        assert Scorer(rhythm_tolerance_octaves=2.0).rhythm_score(alignment) == \
            pytest.approx(0.5, abs=0.02)

    def test_slower_speech(self):
        score = Scorer().rhythm_score(_scaled_path(100, 80))
        assert score == pytest.approx(1.0 - math.log2(99 / 79), abs=0.05)

    def test_faster_and_slower_symmetric(self):
        slow = Scorer().rhythm_score(_scaled_path(100, 80))
        fast = Scorer().rhythm_score(_scaled_path(80, 100))
        assert slow == pytest.approx(fast, abs=0.06)


class TestPronunciation:
    def test_all_mismatched(self):
        reference = _sequence(np.full(20, 150.0))
        user = _sequence(np.full(20, np.nan))
        assert Scorer().pronunciation_score(_diagonal(20), reference, user) == pytest.approx(0.0)

    def test_partial_match(self):
        labels = np.full(20, VOWEL)
        user_labels = labels.copy()
        user_labels[:5] = SILENCE
        reference = _sequence(np.full(20, 150.0), labels=labels)
        user = _sequence(np.full(20, 150.0), labels=user_labels)
        assert Scorer().pronunciation_score(_diagonal(20), reference, user) == \
            pytest.approx(0.75)

    def test_low_confidence_counts_less(self):
        labels = np.full(20, VOWEL)
        user_labels = labels.copy()
        user_labels[:5] = SILENCE
        confidence = np.ones(20)
        confidence[:5] = 0.01
        reference = _sequence(np.full(20, 150.0), labels=labels)
        user = _sequence(np.full(20, 150.0), labels=user_labels, confidence=confidence)
        assert Scorer().pronunciation_score(_diagonal(20), reference, user) > 0.9

    def test_zero_confidence_is_neutral(self):
        seq = _sequence(np.full(20, 150.0), confidence=np.zeros(20))
        result = _score(Scorer(), _diagonal(20), seq, seq)
        assert result.pronunciation.score == 0.5
        assert result.pronunciation.insufficient

    def test_matched_pauses_earn_nothing(self):
        f0 = np.full(40, np.nan)
        f0[:10] = 150.0
        reference = _sequence(f0)
        user = _sequence(np.full(40, np.nan))
        assert Scorer().pronunciation_score(_diagonal(40), reference, user) == \
            pytest.approx(0.0)

    def test_only_pauses_is_neutral(self):
        seq = _sequence(np.full(20, np.nan))
        assert Scorer().pronunciation_score(_diagonal(20), seq, seq) is None


class TestSpeechGate:
    def _paused_reference(self):
        # 30 voiced frames then a 70-frame pause
        f0 = np.full(100, np.nan)
        f0[:30] = _contour(30)
        return _sequence(f0)

    def test_silent_user_capped_at_neutral(self):
        reference = self._paused_reference()
        user = _sequence(np.full(100, np.nan))
        result = _score(Scorer(), _diagonal(100), reference, user)
        for dim in (result.pitch, result.rhythm, result.pronunciation):
            assert dim.score <= 0.5
            assert dim.insufficient
        assert result.similarity_score <= 0.5
        assert result.feedback == OVERALL_TEMPLATES[INSUFFICIENT]

    def test_few_voiced_frames_capped(self):
        reference = _sequence(_contour(100))
        f0 = np.full(100, np.nan)
        f0[:10] = reference.f0[:10]
        result = _score(Scorer(), _diagonal(100), reference, _sequence(f0))
        assert result.rhythm.score <= 0.5
        assert result.rhythm.insufficient
        assert result.similarity_score <= 0.5

    def test_enough_speech_scored_normally(self):
        reference = _sequence(_contour(100))
        f0 = np.full(100, np.nan)
        f0[:30] = reference.f0[:30]
        result = _score(Scorer(), _diagonal(100), reference, _sequence(f0))
        assert not result.rhythm.insufficient
        assert result.rhythm.score == 1.0

    def test_has_speech_threshold(self):
        reference = _sequence(_contour(50))
        f0 = np.full(50, np.nan)
        f0[:10] = 150.0
        user = _sequence(f0)
        assert Scorer(min_speech_ratio=0.2).has_speech(reference, user)
        assert not Scorer(min_speech_ratio=0.3).has_speech(reference, user)


class TestOverall:
    def test_weighted_sum(self):
        reference = _sequence(_contour(30))
        user = _sequence(reference.f0 * 2 ** (3 / 12))
        weights = {"pitch": 0.5, "rhythm": 0.25, "pronunciation": 0.25}
        result = _score(Scorer(weights=weights), _diagonal(30), reference, user)
        expected = 0.5 * result.pitch.score + 0.25 * result.rhythm.score \
            + 0.25 * result.pronunciation.score
        assert result.similarity_score == pytest.approx(expected, abs=1e-4)

    def test_weakest_dimension_hint(self):
        reference = _sequence(_contour(30))
        user = _sequence(reference.f0 * 2 ** (4 / 12))
        result = _score(Scorer(), _diagonal(30), reference, user)
        assert "intonation" in result.feedback

    def test_all_insufficient(self):
        one = _sequence(np.full(1, np.nan), confidence=np.zeros(1))
        result = _score(Scorer(), _alignment([(0, 0)], 1, 1), one, one)
        assert result.similarity_score == 0.5
        assert result.feedback == OVERALL_TEMPLATES[INSUFFICIENT]

    def test_scores_rounded_and_bounded(self):
        reference = _sequence(_contour(30))
        user = _sequence(reference.f0 * 2 ** (1 / 12))
        result = _score(Scorer(), _diagonal(30), reference, user)
        for value in (result.similarity_score, result.pitch.score,
                      result.rhythm.score, result.pronunciation.score):
            assert 0.0 <= value <= 1.0
            assert round(value, 4) == value

    def test_metadata(self):
        seq = _sequence(_contour(30))
        result = _score(Scorer(), _diagonal(30), seq, seq)
        assert result.metadata["reference_frames"] == 30
        assert result.metadata["path_length"] == 30
        assert result.metadata["voiced_pairs"] == 30


class TestFinalize:
    def test_nan_becomes_neutral(self):
        assert Scorer(neutral_score=0.5).finalize(float("nan")) == 0.5

    def test_clamped(self):
        assert Scorer().finalize(1.2) == 1.0
        assert Scorer().finalize(-0.1) == 0.0


class TestConstruction:
    def test_default_weights_equal(self):
        scorer = Scorer()
        assert all(scorer.weights[d] == pytest.approx(1 / 3) for d in DIMENSIONS)

    def test_weights_must_sum_to_one(self):
        with pytest.raises(ValueError, match="sum to 1"):
            Scorer(weights={"pitch": 0.6, "rhythm": 0.6, "pronunciation": 0.6})

    def test_weights_must_name_dimensions(self):
        with pytest.raises(ValueError, match="exactly"):
            Scorer(weights={"pitch": 1.0})

    def test_factory(self, config):
        config['scoring']['neutral_score'] = 0.4
        assert create_scorer(config['scoring']).neutral_score == 0.4
