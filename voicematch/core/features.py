"""
Feature extractor for the VoiceMatch analysis service.

Turns an AudioSignal into a FeatureSequence: pitch track, energy
envelope, phonetic-unit labels and a normalized MFCC envelope, all on
the same fixed window and hop.
"""

import hashlib
import json
from typing import Any, Dict, Optional

import librosa
import numpy as np

from voicematch.analyzers.phonetic import FrameCues, RuleBasedPhoneticClassifier
from voicematch.analyzers.pitch import PyinPitchTracker
from voicematch.core.models import AudioSignal, FeatureSequence
from voicematch.core.stage import BaseStage

EXTRACTOR_VERSION = "1.0.0"

# Floor for log energy so digital silence stays finite
_MIN_RMS = 1e-10


class FeatureExtractor(BaseStage[FeatureSequence]):
    """
    Deterministic per-frame feature extraction using librosa.

    The same instance (same parameters) must extract both the reference
    and the user sequence; ``params_version`` identifies the parameters.
    """

    def __init__(
        self,
        sample_rate: int = 16000,
        window_ms: float = 25.0,
        hop_ms: float = 10.0,
        fmin: float = 65.0,
        fmax: float = 500.0,
        energy_floor_db: float = -45.0,
        n_mfcc: int = 13,
        pitch_resolution: float = 0.25,
        pitch_tracker: Optional[PyinPitchTracker] = None,
        classifier: Optional[RuleBasedPhoneticClassifier] = None,
    ):
        """
        Initialize extractor.

        Args:
            sample_rate: Expected sample rate of incoming signals
            window_ms: Analysis window length
            hop_ms: Hop between frames (must be shorter than the window)
            fmin: Lowest pitch considered
            fmax: Highest pitch considered
            energy_floor_db: Frames quieter than this (dBFS) are unvoiced
            n_mfcc: Number of cepstral coefficients
            pitch_resolution: pyin bin width in semitones
            pitch_tracker: Optional pitch tracker override
            classifier: Optional phonetic classifier override

        Raises:
            ValueError: If window is not longer than hop
        """
        super().__init__("feature_extractor", EXTRACTOR_VERSION)
        if window_ms <= hop_ms:
            raise ValueError(f"window_ms ({window_ms}) must exceed hop_ms ({hop_ms})")

        self.sample_rate = sample_rate
        self.window_ms = window_ms
        self.hop_ms = hop_ms
        self.fmin = fmin
        self.fmax = fmax
        self.energy_floor_db = energy_floor_db
        self.n_mfcc = n_mfcc

        self.win_length = int(round(window_ms / 1000.0 * sample_rate))
        self.hop_length = int(round(hop_ms / 1000.0 * sample_rate))
        self.n_fft = int(2 ** np.ceil(np.log2(self.win_length)))

        self.pitch_tracker = pitch_tracker or PyinPitchTracker(
            fmin=fmin, fmax=fmax, resolution=pitch_resolution
        )
        self.classifier = classifier or RuleBasedPhoneticClassifier(
            energy_floor_db=energy_floor_db
        )
        self.params_version = self._compute_params_version()

    def extract(self, signal: AudioSignal) -> FeatureSequence:
        """
        Extract all features from a signal.

        Total over any valid signal: silence yields an all-unvoiced,
        all-silence sequence rather than an error.
        """
        return self.run(signal)

    def _run_impl(self, signal: AudioSignal) -> FeatureSequence:
        if signal.sample_rate != self.sample_rate:
            raise ValueError(
                f"Signal sample rate {signal.sample_rate} does not match "
                f"extractor rate {self.sample_rate}"
            )

        y = np.ascontiguousarray(signal.samples, dtype=np.float32)
        n_frames = 1 + len(y) // self.hop_length

        # Step 1: Spectrum shared by all spectral features
        stft = librosa.stft(
            y,
            n_fft=self.n_fft,
            hop_length=self.hop_length,
            win_length=self.win_length,
            center=True,
        )
        power = np.abs(stft) ** 2

        # Step 2: Energy
        rms = librosa.feature.rms(
            y=y, frame_length=self.win_length, hop_length=self.hop_length, center=True
        )[0]
        rms = _fit(rms, n_frames)
        energy_db = 20.0 * np.log10(np.maximum(rms, _MIN_RMS))

        # Step 3: Pitch, gated by energy
        track = self.pitch_tracker.track(y, self.sample_rate, self.hop_length)
        loud_enough = energy_db > self.energy_floor_db
        f0 = np.where(loud_enough, track.f0, np.nan)
        voiced_prob = np.where(loud_enough & ~np.isnan(f0), track.voiced_probability, 0.0)

        # Step 4: Phonetic units
        mel = librosa.feature.melspectrogram(
            S=power, sr=self.sample_rate, n_mels=40, fmax=self.sample_rate / 2.0
        )
        log_mel = librosa.power_to_db(mel, ref=1.0, amin=_MIN_RMS)
        cues = FrameCues(
            energy_db=energy_db,
            voiced_probability=voiced_prob,
            zero_crossing_rate=_fit(
                librosa.feature.zero_crossing_rate(
                    y, frame_length=self.win_length, hop_length=self.hop_length, center=True
                )[0],
                n_frames,
            ),
            spectral_flatness=_fit(
                librosa.feature.spectral_flatness(S=np.sqrt(power), amin=_MIN_RMS)[0],
                n_frames,
            ),
            onset_strength=_fit(
                librosa.onset.onset_strength(
                    S=log_mel, sr=self.sample_rate, hop_length=self.hop_length
                ),
                n_frames,
            ),
        )
        labels, confidence = self.classifier.classify(cues)

        # Step 5: Spectral envelope for alignment
        mfcc = librosa.feature.mfcc(S=log_mel, n_mfcc=self.n_mfcc)
        mfcc = _normalize_mfcc(_fit(mfcc.T, n_frames))

        return FeatureSequence(
            f0=f0,
            energy=rms,
            energy_db=energy_db,
            labels=labels,
            confidence=confidence,
            mfcc=mfcc,
            hop_seconds=self.hop_length / self.sample_rate,
            window_seconds=self.win_length / self.sample_rate,
            params_version=self.params_version,
        )

    def describe(self) -> Dict[str, Any]:
        """Parameters that determine the extracted features."""
        return {
            'version': EXTRACTOR_VERSION,
            'sample_rate': self.sample_rate,
            'win_length': self.win_length,
            'hop_length': self.hop_length,
            'n_fft': self.n_fft,
            'fmin': self.fmin,
            'fmax': self.fmax,
            'energy_floor_db': self.energy_floor_db,
            'n_mfcc': self.n_mfcc,
            'pitch_frame_length': self.pitch_tracker.frame_length,
            'pitch_resolution': self.pitch_tracker.resolution,
            'classifier': vars(self.classifier),
        }

    def _compute_params_version(self) -> str:
        blob = json.dumps(self.describe(), sort_keys=True, default=str)
        return hashlib.sha256(blob.encode('utf-8')).hexdigest()[:16]


def _fit(values: np.ndarray, n_frames: int) -> np.ndarray:
    """Cut or edge-pad a frames-first array to exactly ``n_frames``."""
    values = np.asarray(values, dtype=np.float64)
    if values.shape[0] >= n_frames:
        return values[:n_frames]
    pad = [(0, n_frames - values.shape[0])] + [(0, 0)] * (values.ndim - 1)
    return np.pad(values, pad, mode='edge') if values.shape[0] else np.zeros((n_frames,) + values.shape[1:])


def _normalize_mfcc(mfcc: np.ndarray) -> np.ndarray:
    """Cepstral mean and variance normalization per sequence."""
    mean = mfcc.mean(axis=0, keepdims=True)
    std = mfcc.std(axis=0, keepdims=True)
    return (mfcc - mean) / np.maximum(std, 1e-8)


def create_feature_extractor(
    config: Optional[Dict[str, Any]] = None, sample_rate: int = 16000
) -> FeatureExtractor:
    """
    Factory function to create FeatureExtractor from the ``features`` config section.

    Args:
        config: Optional configuration dict
        sample_rate: Internal sample rate produced by the decoder

    Returns:
        FeatureExtractor: Configured extractor
    """
    if config is None:
        config = {}

    return FeatureExtractor(
        sample_rate=sample_rate,
        window_ms=config.get('window_ms', 25.0),
        hop_ms=config.get('hop_ms', 10.0),
        fmin=config.get('fmin', 65.0),
        fmax=config.get('fmax', 500.0),
        energy_floor_db=config.get('energy_floor_db', -45.0),
        n_mfcc=config.get('n_mfcc', 13),
        pitch_resolution=config.get('pitch_resolution', 0.25),
    )
