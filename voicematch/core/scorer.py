"""
Scorer for the VoiceMatch analysis service.

Reduces an Alignment and the two FeatureSequences to pitch, rhythm and
pronunciation scores in [0, 1], a weighted overall similarity, and
bucketed feedback text.
"""

import math
from typing import Any, Dict, Optional, Sequence, Tuple

import numpy as np

from voicematch.analyzers.pitch import hz_to_semitones
from voicematch.core import feedback
from voicematch.core.models import (
    LABEL_DISTANCE,
    PHONETIC_UNITS,
    Alignment,
    AnalysisResult,
    DimensionScore,
    FeatureSequence,
)
from voicematch.core.stage import BaseStage

DIMENSIONS = ("pitch", "rhythm", "pronunciation")
SILENCE = PHONETIC_UNITS.index("silence")

# Rhythm slopes are clipped to this many octaves before comparison
_MAX_SLOPE_OCTAVES = 2.0


class Scorer(BaseStage[AnalysisResult]):
    """
    Deterministic, total scoring of an aligned utterance pair.

    Degenerate inputs (no voiced pairs, zero label confidence, NaN) give
    the neutral score instead of an error.
    """

    def __init__(
        self,
        weights: Optional[Dict[str, float]] = None,
        buckets: Sequence[float] = feedback.DEFAULT_BUCKETS,
        neutral_score: float = 0.5,
        pitch_tolerance_semitones: float = 6.0,
        normalize_register: bool = False,
        min_voiced_pairs: int = 5,
        rhythm_window_frames: int = 10,
        rhythm_tolerance_octaves: float = 1.0,
        min_speech_ratio: float = 0.2,
    ):
        """
        Initialize scorer.

        Args:
            weights: Overall weight per dimension, must sum to 1
            buckets: Feedback bucket boundaries (low/mid, mid/high)
            neutral_score: Score used when a dimension cannot be measured
            pitch_tolerance_semitones: Deviation that counts as a full miss
            normalize_register: Compare pitch relative to each speaker's median
            min_voiced_pairs: Fewer voiced aligned pairs give the neutral score
            rhythm_window_frames: Reference frames per local tempo estimate
            rhythm_tolerance_octaves: Tempo ratio (log2) that counts as a full miss
            min_speech_ratio: Voiced user frames needed, as a share of the
                reference's voiced frames, before any dimension counts

        Raises:
            ValueError: If weights are incomplete or do not sum to 1
        """
        super().__init__("scorer", "1.0.0")
        if weights is None:
            weights = {name: 1.0 / len(DIMENSIONS) for name in DIMENSIONS}
        if set(weights) != set(DIMENSIONS):
            raise ValueError(f"weights must name exactly {', '.join(DIMENSIONS)}")
        if any(w < 0 for w in weights.values()) or abs(sum(weights.values()) - 1.0) > 1e-6:
            raise ValueError("weights must be non-negative and sum to 1")

        self.weights = dict(weights)
        self.buckets = tuple(buckets)
        self.neutral_score = neutral_score
        self.pitch_tolerance_semitones = pitch_tolerance_semitones
        self.normalize_register = normalize_register
        self.min_voiced_pairs = min_voiced_pairs
        self.rhythm_window_frames = rhythm_window_frames
        self.rhythm_tolerance_octaves = rhythm_tolerance_octaves
        self.min_speech_ratio = min_speech_ratio

    def score(
        self,
        alignment: Alignment,
        reference: FeatureSequence,
        user: FeatureSequence,
        original_clip_id: str,
        user_clip_id: str,
    ) -> AnalysisResult:
        return self.run(alignment, reference, user, original_clip_id, user_clip_id)

    def _run_impl(
        self,
        alignment: Alignment,
        reference: FeatureSequence,
        user: FeatureSequence,
        original_clip_id: str,
        user_clip_id: str,
    ) -> AnalysisResult:
        # Step 1: Per-dimension raw scores
        pitch_value, voiced_pairs = self.pitch_score(alignment, reference, user)
        rhythm_value = self.rhythm_score(alignment)
        pronunciation_value = self.pronunciation_score(alignment, reference, user)

        # Step 2: A user recording without speech only gets capped scores
        has_speech = self.has_speech(reference, user)
        raw = {
            'pitch': pitch_value,
            'rhythm': rhythm_value,
            'pronunciation': pronunciation_value,
        }
        dims: Dict[str, DimensionScore] = {}
        for name in DIMENSIONS:
            measurable = raw[name] is not None and math.isfinite(raw[name])
            insufficient = not measurable or not has_speech
            if not measurable:
                value = self.neutral_score
            elif insufficient:
                value = min(raw[name], self.neutral_score)
            else:
                value = raw[name]
            value = self.finalize(value)
            dims[name] = DimensionScore(
                score=value,
                feedback=feedback.dimension_feedback(name, value, insufficient, self.buckets),
                insufficient=insufficient,
            )

        # Step 3: Overall
        overall = self.finalize(sum(self.weights[n] * dims[n].score for n in DIMENSIONS))
        all_insufficient = all(d.insufficient for d in dims.values())
        overall_text = feedback.overall_feedback(
            overall,
            {n: dims[n].score for n in DIMENSIONS if not dims[n].insufficient},
            insufficient=all_insufficient,
            buckets=self.buckets,
        )

        return AnalysisResult(
            original_clip_id=original_clip_id,
            user_clip_id=user_clip_id,
            similarity_score=overall,
            feedback=overall_text,
            pitch=dims['pitch'],
            rhythm=dims['rhythm'],
            pronunciation=dims['pronunciation'],
            metadata={
                'reference_frames': len(reference),
                'user_frames': len(user),
                'path_length': len(alignment),
                'band_radius': alignment.band_radius,
                'alignment_cost': round(float(alignment.normalized_cost), 6),
                'voiced_pairs': voiced_pairs,
                'user_voiced_frames': int(np.count_nonzero(user.voiced)),
            },
        )

    def pitch_score(
        self, alignment: Alignment, reference: FeatureSequence, user: FeatureSequence
    ) -> Tuple[Optional[float], int]:
        """
        Pitch similarity over aligned pairs where both frames are voiced.

        Returns:
            Tuple of (score or None when insufficient, number of voiced pairs)
        """
        u_idx, r_idx = alignment.user_indices, alignment.reference_indices
        both = user.voiced[u_idx] & reference.voiced[r_idx]
        n_pairs = int(np.count_nonzero(both))
        if n_pairs < self.min_voiced_pairs:
            return None, n_pairs

        u_st = hz_to_semitones(user.f0[u_idx][both])
        r_st = hz_to_semitones(reference.f0[r_idx][both])
        if self.normalize_register:
            u_st = u_st - np.median(hz_to_semitones(user.f0[user.voiced]))
            r_st = r_st - np.median(hz_to_semitones(reference.f0[reference.voiced]))

        deviation = np.minimum(np.abs(u_st - r_st) / self.pitch_tolerance_semitones, 1.0)
        return 1.0 - float(np.mean(deviation)), n_pairs

    def has_speech(self, reference: FeatureSequence, user: FeatureSequence) -> bool:
        """True when the user recording holds enough voiced frames to judge."""
        needed = max(
            self.min_voiced_pairs,
            math.ceil(self.min_speech_ratio * int(np.count_nonzero(reference.voiced))),
        )
        return int(np.count_nonzero(user.voiced)) >= needed

    def rhythm_score(self, alignment: Alignment) -> Optional[float]:
        """
        Tempo agreement from the local slope of the warping path.

        The path becomes one user position per reference frame; a slope
        of 1 over every window means identical pacing.
        """
        n_ref = alignment.reference_length
        if n_ref < 2:
            return None

        ref = alignment.reference_indices
        counts = np.bincount(ref, minlength=n_ref)
        position = np.bincount(ref, weights=alignment.user_indices, minlength=n_ref) / counts

        window = max(1, min(self.rhythm_window_frames, n_ref - 1))
        slopes = (position[window:] - position[:-window]) / window
        slopes = np.clip(slopes, 2.0 ** -_MAX_SLOPE_OCTAVES, 2.0 ** _MAX_SLOPE_OCTAVES)

        deviation = float(np.mean(np.abs(np.log2(slopes)))) / self.rhythm_tolerance_octaves
        return 1.0 - min(1.0, deviation)

    def pronunciation_score(
        self, alignment: Alignment, reference: FeatureSequence, user: FeatureSequence
    ) -> Optional[float]:
        """
        1 minus the confidence-weighted label distance over aligned pairs.

        Pairs where both frames are silence carry no weight, so matching
        pauses alone earn nothing.
        """
        u_idx, r_idx = alignment.user_indices, alignment.reference_indices
        both_silent = (user.labels[u_idx] == SILENCE) & (reference.labels[r_idx] == SILENCE)
        weights = np.sqrt(user.confidence[u_idx] * reference.confidence[r_idx])
        weights = np.where(both_silent, 0.0, weights)
        total = float(np.sum(weights))
        if total <= 0:
            return None
        distance = LABEL_DISTANCE[user.labels[u_idx], reference.labels[r_idx]]
        return 1.0 - float(np.sum(weights * distance)) / total

    def finalize(self, value: float) -> float:
        """Clamp to [0, 1] and round to 4 decimals; NaN becomes neutral."""
        if value is None or not math.isfinite(value):
            value = self.neutral_score
        return round(min(1.0, max(0.0, float(value))), 4)


def create_scorer(config: Optional[Dict[str, Any]] = None) -> Scorer:
    """
    Factory function to create Scorer from the ``scoring`` config section.
    """
    if config is None:
        config = {}

    return Scorer(
        weights=config.get('weights'),
        buckets=config.get('buckets', feedback.DEFAULT_BUCKETS),
        neutral_score=config.get('neutral_score', 0.5),
        pitch_tolerance_semitones=config.get('pitch_tolerance_semitones', 6.0),
        normalize_register=config.get('normalize_register', False),
        min_voiced_pairs=config.get('min_voiced_pairs', 5),
        rhythm_window_frames=config.get('rhythm_window_frames', 10),
        rhythm_tolerance_octaves=config.get('rhythm_tolerance_octaves', 1.0),
        min_speech_ratio=config.get('min_speech_ratio', 0.2),
    )
