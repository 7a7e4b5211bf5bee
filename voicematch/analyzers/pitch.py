"""
Librosa pitch tracker for the VoiceMatch analysis service.

Estimates a per-frame fundamental frequency with probabilistic YIN and
marks frames without detectable periodicity, or too quiet to trust,
as unvoiced (NaN), never as zero.
"""

from dataclasses import dataclass

import librosa
import numpy as np


@dataclass(frozen=True)
class PitchTrack:
    """Per-frame pitch estimate."""

    f0: np.ndarray  # Hz, NaN when unvoiced
    voiced_probability: np.ndarray  # [0.0, 1.0]


class PyinPitchTracker:
    """
    Probabilistic YIN (librosa.pyin) on a fixed hop.

    The analysis frame is longer than the feature window because YIN
    needs at least two periods of the lowest pitch; only the hop has to
    match the other per-frame features.
    """

    def __init__(
        self,
        fmin: float = 65.0,
        fmax: float = 500.0,
        frame_length: int = 1024,
        resolution: float = 0.25,
    ):
        """
        Args:
            fmin: Lowest detectable pitch in Hz
            fmax: Highest detectable pitch in Hz
            frame_length: YIN analysis frame in samples
            resolution: Pitch bin resolution in semitones
        """
        self.fmin = fmin
        self.fmax = fmax
        self.frame_length = frame_length
        self.resolution = resolution

    def track(self, samples: np.ndarray, sr: int, hop_length: int) -> PitchTrack:
        """
        Track pitch over a mono signal.

        Args:
            samples: Mono audio samples
            sr: Sample rate
            hop_length: Hop in samples (must match the other features)

        Returns:
            PitchTrack with ``1 + len(samples) // hop_length`` frames
        """
        n_frames = 1 + len(samples) // hop_length

        # Silence gives YIN nothing to work with
        if not np.any(samples):
            return PitchTrack(
                f0=np.full(n_frames, np.nan),
                voiced_probability=np.zeros(n_frames),
            )

        f0, voiced_flag, voiced_prob = librosa.pyin(
            samples,
            fmin=self.fmin,
            fmax=min(self.fmax, sr / 2.0),
            sr=sr,
            frame_length=self.frame_length,
            hop_length=hop_length,
            center=True,
            resolution=self.resolution,
        )

        f0 = np.where(voiced_flag & np.isfinite(f0) & (f0 > 0), f0, np.nan)
        voiced_prob = np.nan_to_num(voiced_prob, nan=0.0)

        return PitchTrack(
            f0=_fit(f0, n_frames, np.nan),
            voiced_probability=np.clip(_fit(voiced_prob, n_frames, 0.0), 0.0, 1.0),
        )


def hz_to_semitones(f0: np.ndarray, reference_hz: float = 440.0) -> np.ndarray:
    """Convert Hz to semitones relative to ``reference_hz`` (NaN stays NaN)."""
    with np.errstate(divide='ignore', invalid='ignore'):
        return 12.0 * np.log2(f0 / reference_hz)


def _fit(values: np.ndarray, n_frames: int, fill: float) -> np.ndarray:
    """Pad or cut a frame array to exactly ``n_frames``."""
    values = np.asarray(values, dtype=np.float64)
    if values.shape[0] >= n_frames:
        return values[:n_frames]
    return np.concatenate([values, np.full(n_frames - values.shape[0], fill)])
