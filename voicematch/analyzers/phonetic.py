"""
Rule-based phonetic-unit classifier for the VoiceMatch analysis service.

Assigns every frame one of the coarse acoustic units in PHONETIC_UNITS
(silence, vowel, sonorant, voiced fricative, fricative, burst) with a
confidence, from energy, voicing, noisiness and onset cues.

The memberships are soft (logistic ramps instead of hard thresholds) and
always sum to one per frame, so the winning membership doubles as the
label confidence.
"""

from dataclasses import dataclass
from typing import Tuple

import numpy as np

from voicematch.core.models import PHONETIC_UNITS

SILENCE, VOWEL, SONORANT, VOICED_FRICATIVE, FRICATIVE, BURST = range(len(PHONETIC_UNITS))


@dataclass(frozen=True)
class FrameCues:
    """Per-frame acoustic cues the classifier consumes."""

    energy_db: np.ndarray  # dBFS
    voiced_probability: np.ndarray  # [0, 1], 0 where energy gate failed
    zero_crossing_rate: np.ndarray  # crossings per sample
    spectral_flatness: np.ndarray  # [0, 1]
    onset_strength: np.ndarray  # arbitrary units


def _ramp(x: np.ndarray, center: float, width: float) -> np.ndarray:
    """Logistic ramp from 0 (x << center) to 1 (x >> center)."""
    return 1.0 / (1.0 + np.exp(-(x - center) / width))


class RuleBasedPhoneticClassifier:
    """
    Deterministic frame classifier over a fixed unit inventory.

    Loudness is judged relative to the utterance's own loud frames so
    that microphone gain does not change the labels.
    """

    def __init__(
        self,
        energy_floor_db: float = -45.0,
        silence_rel_db: float = -35.0,
        strong_rel_db: float = -15.0,
        zcr_center: float = 0.15,
        flatness_center: float = 0.30,
        onset_center: float = 0.5,
    ):
        self.energy_floor_db = energy_floor_db
        self.silence_rel_db = silence_rel_db
        self.strong_rel_db = strong_rel_db
        self.zcr_center = zcr_center
        self.flatness_center = flatness_center
        self.onset_center = onset_center

    def memberships(self, cues: FrameCues) -> np.ndarray:
        """
        Soft unit memberships.

        Returns:
            np.ndarray: Shape (n_frames, len(PHONETIC_UNITS)), rows sum to 1
        """
        energy_db = cues.energy_db
        n = energy_db.shape[0]
        if n == 0:
            return np.zeros((0, len(PHONETIC_UNITS)))

        peak_db = float(np.percentile(energy_db, 95))
        rel_db = energy_db - peak_db

        silent = np.maximum(
            _ramp(-rel_db, -self.silence_rel_db, 3.0),
            _ramp(-energy_db, -self.energy_floor_db, 2.0),
        )
        voiced = np.clip(cues.voiced_probability, 0.0, 1.0)
        strong = _ramp(rel_db, self.strong_rel_db, 4.0)
        noisy = 0.5 * _ramp(cues.zero_crossing_rate, self.zcr_center, 0.04) \
            + 0.5 * _ramp(cues.spectral_flatness, self.flatness_center, 0.08)

        onset_peak = float(np.max(cues.onset_strength)) if n else 0.0
        if onset_peak > 0:
            onset = _ramp(cues.onset_strength / onset_peak, self.onset_center, 0.1)
        else:
            onset = np.zeros(n)

        active = 1.0 - silent
        unvoiced = 1.0 - voiced

        m = np.zeros((n, len(PHONETIC_UNITS)))
        m[:, VOWEL] = active * voiced * strong * (1.0 - noisy)
        m[:, SONORANT] = active * voiced * (1.0 - strong) * (1.0 - noisy)
        m[:, VOICED_FRICATIVE] = active * voiced * noisy
        m[:, BURST] = active * unvoiced * onset
        m[:, FRICATIVE] = active * unvoiced * (1.0 - onset) * noisy
        # Quiet unvoiced frames with no noise or transient behave like pauses
        m[:, SILENCE] = silent + active * unvoiced * (1.0 - onset) * (1.0 - noisy)
        return m

    def classify(self, cues: FrameCues) -> Tuple[np.ndarray, np.ndarray]:
        """
        Label every frame.

        Returns:
            Tuple of (labels, confidence): unit indices and winning memberships
        """
        m = self.memberships(cues)
        if m.shape[0] == 0:
            return np.zeros(0, dtype=np.int64), np.zeros(0)
        labels = np.argmax(m, axis=1).astype(np.int64)
        confidence = np.clip(m[np.arange(m.shape[0]), labels], 0.0, 1.0)
        return labels, confidence
